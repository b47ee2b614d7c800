"""
Fetching source brochures from caller-supplied URLs.

The URL is user-influenced, so ``fetch_pdf`` refuses private, loopback,
link-local and otherwise internal hosts before any network I/O, and does
not follow redirects (a redirect could point back inside the network).
"""

from __future__ import annotations

import ipaddress
import logging
from urllib.parse import urlparse

import httpx

from brochure.config import settings
from brochure.errors import FetchError, InvalidPdfError, UnsafeUrlError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"
_BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}


def is_private_url(url: str) -> bool:
    """True for URLs that must not be fetched server-side.

    Unparseable URLs and non-HTTP schemes count as private.
    """
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return True
    if parsed.scheme not in ("http", "https") or not hostname:
        return True

    hostname = hostname.lower().rstrip(".")
    if hostname in _BLOCKED_HOSTNAMES or hostname.endswith(".localhost"):
        return True

    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False  # a DNS name
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        address = address.ipv4_mapped
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
    )


def validate_pdf_bytes(data: bytes, max_size: int | None = None) -> None:
    """Raise ``InvalidPdfError`` unless *data* looks like a PDF within the size ceiling."""
    limit = max_size or settings.max_file_size
    if len(data) > limit:
        raise InvalidPdfError(
            f"File too large ({len(data)} bytes, limit {limit})",
            {"size": len(data), "limit": limit},
        )
    if data[:4] != PDF_MAGIC:
        raise InvalidPdfError("File is not a valid PDF")


async def fetch_pdf(url: str, client: httpx.AsyncClient | None = None) -> bytes:
    """Download and validate a PDF from a public HTTP(S) URL."""
    if is_private_url(url):
        raise UnsafeUrlError("Refusing to fetch from a private or internal address", {"url": url})

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=settings.fetch_timeout, follow_redirects=False)
    try:
        try:
            async with client.stream("GET", url) as response:
                if response.status_code != 200:
                    raise FetchError(
                        f"Failed to fetch PDF: HTTP {response.status_code}",
                        {"url": url, "status": response.status_code},
                    )
                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > settings.max_file_size:
                    raise InvalidPdfError(f"File too large ({declared} bytes)")

                chunks: list[bytes] = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > settings.max_file_size:
                        raise InvalidPdfError(f"File too large (>{settings.max_file_size} bytes)")
                    chunks.append(chunk)
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch PDF: {exc}", {"url": url}) from exc
    finally:
        if owns_client:
            await client.aclose()

    data = b"".join(chunks)
    validate_pdf_bytes(data)
    logger.info("Fetched %d bytes from %s", len(data), url)
    return data
