"""
Prospect pipeline configuration.

All values can be overridden via environment variables prefixed with
``INGEST_`` (e.g. ``INGEST_MAX_IMAGES_PER_PDF=20``).
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class IngestSettings(BaseSettings):
    """Tuneable knobs for every pipeline stage."""

    # ── PDF text ─────────────────────────────────────────────────────────
    max_pages: int = 0  # 0 = unlimited
    table_min_cells: int = 3  # cells needed to open a heuristic table
    table_continue_cells: int = 2  # cells needed to extend an open table
    header_max_length: int = 50
    ruled_tables_enabled: bool = True  # pdfplumber pass

    # ── Image extraction ─────────────────────────────────────────────────
    min_image_width: int = 100
    min_image_height: int = 100
    min_image_area: int = 20_000  # skip icons / decorations
    max_images_per_pdf: int = 50
    max_image_dimension: int = 2000
    jpeg_quality: int = 85
    image_folder: str = "prospects/extracted"

    # ── Image classification ─────────────────────────────────────────────
    classify_batch_size: int = 5
    classify_batch_delay: float = 0.5  # seconds between batches
    classify_temperature: float = 0.1
    classify_max_tokens: int = 1024

    # ── Structured mapping ───────────────────────────────────────────────
    mapper_max_chars: int = 15_000
    mapper_temperature: float = 0.1
    mapper_max_tokens: int = 8192

    # ── Localization / SEO ───────────────────────────────────────────────
    localized_description_min_chars: int = 100  # already substantial
    translate_max_amenities: int = 20
    translate_max_highlights: int = 10
    translate_max_faq: int = 5
    localizer_temperature: float = 0.3
    seo_title_max: int = 60
    seo_description_max: int = 160

    # ── Orchestration ────────────────────────────────────────────────────
    last_error_max_chars: int = 1000

    model_config = {
        "env_prefix": "INGEST_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


ingest_settings = IngestSettings()
