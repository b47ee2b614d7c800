"""
Exception taxonomy for the prospect pipeline.

Fatal errors abort a run and mark the prospect ``failed``.  Stage-soft
problems (one image, SEO, localization) never raise out of their stage;
they are logged and replaced with defaults.  Conflicts and guards are
raised to the caller, which maps them to HTTP status codes.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base exception for every pipeline error."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ── Fatal-to-run ─────────────────────────────────────────────────────────

class PdfExtractionError(PipelineError):
    """The PDF could not be parsed at all."""


class ConfigurationError(PipelineError):
    """A required external credential or setting is missing."""


class MappingError(PipelineError):
    """The structured mapper produced nothing usable."""


# ── Source input ─────────────────────────────────────────────────────────

class FetchError(PipelineError):
    """The source PDF could not be fetched."""


class UnsafeUrlError(FetchError):
    """The URL targets a private, loopback or otherwise internal address."""


class InvalidPdfError(FetchError):
    """The payload is not a PDF or exceeds the size ceiling."""


# ── State / lifecycle ────────────────────────────────────────────────────

class ProspectNotFoundError(PipelineError):
    pass


class InvalidTransitionError(PipelineError):
    """A status change that the state machine does not allow."""


class ProspectBusyError(PipelineError):
    """Another run for the same prospect is already in flight."""


class ArtifactPreconditionError(PipelineError):
    """A project / mini-site was requested before its inputs exist."""


# ── Collaborators ────────────────────────────────────────────────────────

class StorageError(PipelineError):
    """Blob storage is unavailable or rejected an operation."""


class LLMError(PipelineError):
    """The language model could not be reached or returned nothing."""
