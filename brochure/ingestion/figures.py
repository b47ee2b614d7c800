"""
Raster image extraction from brochure PDFs.

Strategy
--------
- Walk every image painted on each page (``page.get_image_info``), covering
  both XObject-referenced images and inline images (``xref == 0``).
- Drop icons / decorations below the minimum width, height or area.
- Decode to RGB(A) (CMYK and grayscale converted), downsample anything above
  the maximum dimension with aspect ratio preserved, re-encode as
  progressive JPEG.
- Upload to blob storage under ``prospects/extracted/<owner>/``; when storage
  is unavailable the image is kept as an inline ``data:`` URL.

Each image produces an ``ImageOutcome`` (extracted / skipped / error) so a
bad image never aborts the remaining images or pages.

Dependencies: PIL (Pillow), PyMuPDF.
"""

from __future__ import annotations

import base64
import io
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

import fitz  # PyMuPDF
from PIL import Image

from brochure.errors import StorageError
from brochure.ingestion.config import ingest_settings
from brochure.ingestion.schemas import ExtractedImage

logger = logging.getLogger(__name__)


class Uploader(Protocol):
    is_configured: bool

    def upload_file(self, buffer: bytes, name: str, content_type: str, folder: str) -> str: ...


@dataclass
class ImageOutcome:
    page: int
    index: int  # 1-based within the page
    status: str  # "extracted" | "skipped" | "error"
    reason: str = ""
    image: ExtractedImage | None = None


@dataclass
class ImageExtractionReport:
    images: list[ExtractedImage] = field(default_factory=list)
    outcomes: list[ImageOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)


def passes_size_filter(width: int, height: int) -> bool:
    """Icon / decoration filter."""
    return (
        width >= ingest_settings.min_image_width
        and height >= ingest_settings.min_image_height
        and width * height >= ingest_settings.min_image_area
    )


# ── Decoding ────────────────────────────────────────────────────────────

def _decode_xref(doc: fitz.Document, xref: int) -> Image.Image:
    pix = fitz.Pixmap(doc, xref)
    if pix.n - pix.alpha != 3:
        pix = fitz.Pixmap(fitz.csRGB, pix)
    mode = "RGBA" if pix.alpha else "RGB"
    return Image.frombytes(mode, (pix.width, pix.height), pix.samples)


def _decode_inline(page: fitz.Page, bbox: tuple[float, ...]) -> Image.Image | None:
    for block in page.get_text("dict")["blocks"]:
        if block.get("type") != 1 or not block.get("image"):
            continue
        if all(abs(a - b) < 1.0 for a, b in zip(block["bbox"], bbox)):
            return Image.open(io.BytesIO(block["image"]))
    return None


def encode_jpeg(img: Image.Image) -> tuple[bytes, int, int]:
    """Flatten, downsample and encode; returns ``(jpeg, width, height)``."""
    if img.mode in ("RGBA", "LA", "P"):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        img = background
    elif img.mode != "RGB":
        img = img.convert("RGB")

    limit = ingest_settings.max_image_dimension
    if img.width > limit or img.height > limit:
        img.thumbnail((limit, limit), Image.Resampling.LANCZOS)

    buf = io.BytesIO()
    img.save(
        buf,
        format="JPEG",
        quality=ingest_settings.jpeg_quality,
        progressive=True,
        optimize=True,
    )
    return buf.getvalue(), img.width, img.height


def to_data_url(jpeg: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")


def _publish(jpeg: bytes, name: str, folder: str, storage: Uploader | None) -> str:
    if storage is None or not storage.is_configured:
        return to_data_url(jpeg)
    try:
        return storage.upload_file(jpeg, name, "image/jpeg", folder)
    except StorageError as exc:
        logger.warning("Upload failed for %s, keeping inline copy: %s", name, exc)
        return to_data_url(jpeg)


# ── Public API ──────────────────────────────────────────────────────────

def extract_images(
    pdf_bytes: bytes,
    owner_id: str,
    storage: Uploader | None = None,
) -> ImageExtractionReport:
    """Extract qualifying raster images from a PDF buffer.

    Best effort: a PDF that cannot be opened yields an empty report.
    """
    report = ImageExtractionReport()
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        logger.warning("Image extraction skipped, PDF could not be opened: %s", exc)
        return report

    folder = f"{ingest_settings.image_folder}/{owner_id}"
    cap = ingest_settings.max_images_per_pdf
    seen_xrefs: set[int] = set()

    try:
        limit = min(doc.page_count, ingest_settings.max_pages or doc.page_count)
        for idx in range(limit):
            page = doc[idx]
            page_number = idx + 1
            try:
                infos = page.get_image_info(xrefs=True)
            except Exception as exc:
                logger.warning("Could not list images on page %d: %s", page_number, exc)
                continue

            for k, info in enumerate(infos, start=1):
                if len(report.images) >= cap:
                    logger.info("Image cap (%d) reached at page %d", cap, page_number)
                    return report

                xref = info.get("xref", 0)
                if xref and xref in seen_xrefs:
                    report.outcomes.append(
                        ImageOutcome(page_number, k, "skipped", "already extracted")
                    )
                    continue

                width, height = int(info.get("width", 0)), int(info.get("height", 0))
                if not passes_size_filter(width, height):
                    report.outcomes.append(
                        ImageOutcome(page_number, k, "skipped", f"too small ({width}x{height})")
                    )
                    continue

                try:
                    if xref:
                        img = _decode_xref(doc, xref)
                    else:
                        img = _decode_inline(page, tuple(info["bbox"]))
                        if img is None:
                            report.outcomes.append(
                                ImageOutcome(page_number, k, "skipped", "inline image not decodable")
                            )
                            continue
                    jpeg, out_w, out_h = encode_jpeg(img)
                    name = f"page{page_number}_img{k}_{uuid.uuid4().hex[:8]}.jpg"
                    url = _publish(jpeg, name, folder, storage)
                except Exception as exc:
                    logger.warning(
                        "Failed to extract image %d on page %d: %s", k, page_number, exc
                    )
                    report.outcomes.append(ImageOutcome(page_number, k, "error", str(exc)))
                    continue

                if xref:
                    seen_xrefs.add(xref)
                image = ExtractedImage(
                    page=page_number, url=url, width=out_w, height=out_h, format="jpeg"
                )
                report.images.append(image)
                report.outcomes.append(ImageOutcome(page_number, k, "extracted", image=image))
    finally:
        doc.close()

    logger.info(
        "Images: %d extracted, %d skipped, %d errors",
        len(report.images), report.count("skipped"), report.count("error"),
    )
    return report
