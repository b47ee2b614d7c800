"""
Process-lifetime state owned by the application, not by module globals.

``ProcessingState`` bundles the per-prospect single-flight registry and a
time-boxed cache of the latest progress event for fire-and-forget runs.
It is built in the FastAPI lifespan (or by the CLI) and injected into the
processor.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterator, TypeVar

from brochure.errors import ProspectBusyError

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Dict-like cache whose entries expire *ttl* seconds after being set.

    Expired entries are evicted lazily on access and on ``purge``.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._data: dict[str, tuple[float, V]] = {}

    def set(self, key: str, value: V) -> None:
        self._data[key] = (self._clock() + self.ttl, value)

    def get(self, key: str, default: V | None = None) -> V | None:
        entry = self._data.get(key)
        if entry is None:
            return default
        expires, value = entry
        if expires <= self._clock():
            del self._data[key]
            return default
        return value

    def purge(self) -> int:
        now = self._clock()
        expired = [k for k, (expires, _) in self._data.items() if expires <= now]
        for key in expired:
            del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        self.purge()
        return len(self._data)


@dataclass
class ProcessingState:
    progress: TTLCache[dict[str, Any]]
    in_flight: set[str] = field(default_factory=set)

    @classmethod
    def create(cls, ttl: float) -> "ProcessingState":
        return cls(progress=TTLCache(ttl))

    def is_running(self, prospect_id: str) -> bool:
        return prospect_id in self.in_flight

    @contextmanager
    def single_flight(self, prospect_id: str) -> Iterator[None]:
        """Claim *prospect_id* for one run; a second claim raises ``ProspectBusyError``."""
        if prospect_id in self.in_flight:
            raise ProspectBusyError(f"Prospect {prospect_id} is already being processed")
        self.in_flight.add(prospect_id)
        try:
            yield
        finally:
            self.in_flight.discard(prospect_id)
