"""
PDF text-layer extraction via PyMuPDF (fitz).

Responsibilities
- Open a PDF from bytes and read the native text layer page by page.
- Segment each page's lines into ``header`` / ``text`` / ``table`` blocks.
- Collect table candidates (heuristic + pdfplumber ruled tables).
- Surface document metadata (title, author, dates …).

A corrupt, encrypted or empty PDF raises ``PdfExtractionError``; the
orchestrator treats that as fatal for the run.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field

import fitz  # PyMuPDF

from brochure.errors import PdfExtractionError
from brochure.ingestion.config import ingest_settings
from brochure.ingestion.schemas import BlockType, ExtractedBlock, ExtractedTable
from brochure.ingestion.tables import (
    extract_ruled_tables,
    is_table_row,
    merge_tables,
    split_cells,
)

logger = logging.getLogger(__name__)

_CAPS_LINE = re.compile(r"^[A-Z][A-Z\s]+$")

METADATA_KEYS = ("title", "author", "subject", "creator", "producer", "creationDate", "modDate")


@dataclass
class PdfContent:
    """Everything the text pass produces for one PDF."""

    text: str
    page_count: int
    blocks: list[ExtractedBlock] = field(default_factory=list)
    tables: list[ExtractedTable] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


def compute_file_hash(data: bytes) -> str:
    """SHA-256 of file contents – used for duplicate detection."""
    return hashlib.sha256(data).hexdigest()


def open_pdf(pdf_bytes: bytes) -> fitz.Document:
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as exc:
        raise PdfExtractionError(f"Unable to parse PDF: {exc}") from exc
    if doc.needs_pass:
        doc.close()
        raise PdfExtractionError("PDF is password protected")
    if doc.page_count == 0:
        doc.close()
        raise PdfExtractionError("PDF has no pages")
    return doc


# ── Line classification ─────────────────────────────────────────────────

def is_header_line(line: str) -> bool:
    """Short all-caps lines, colon-terminated lines and capitalised titles."""
    if line.endswith(":"):
        return True
    if (
        line == line.upper()
        and any(ch.isalpha() for ch in line)
        and 2 < len(line) < ingest_settings.header_max_length
    ):
        return True
    return bool(_CAPS_LINE.match(line))


def segment_page(
    lines: list[str], page: int
) -> tuple[list[ExtractedBlock], list[ExtractedTable]]:
    """Classify the lines of one page into blocks and table candidates.

    Header rules win over the table-row rule, so an all-caps column-title
    line is a header block.  A run of table rows inherits the header block
    directly above it as its header row (split into cells when it has
    several); without one, the first row becomes the header row.
    """
    blocks: list[ExtractedBlock] = []
    tables: list[ExtractedTable] = []
    lines = [ln.strip() for ln in lines if ln.strip()]

    i = 0
    while i < len(lines):
        line = lines[i]

        if is_header_line(line):
            blocks.append(ExtractedBlock(type=BlockType.HEADER, content=line, page=page))
            i += 1
            continue

        if is_table_row(line):
            cells = split_cells(line)
            if blocks and blocks[-1].type == BlockType.HEADER:
                header_cells = split_cells(blocks[-1].content)
                headers = header_cells if len(header_cells) > 1 else [blocks[-1].content]
                rows = [cells]
            else:
                headers, rows = cells, []

            j = i + 1
            while j < len(lines) and is_table_row(lines[j], ingest_settings.table_continue_cells):
                rows.append(split_cells(lines[j]))
                j += 1

            if rows:
                table = ExtractedTable(page=page, headers=headers, rows=rows)
                tables.append(table)
                blocks.append(
                    ExtractedBlock(
                        type=BlockType.TABLE,
                        content=json.dumps({"headers": headers, "rows": rows}, ensure_ascii=False),
                        page=page,
                    )
                )
            else:
                blocks.append(ExtractedBlock(type=BlockType.TEXT, content=line, page=page))
            i = j
            continue

        blocks.append(ExtractedBlock(type=BlockType.TEXT, content=line, page=page))
        i += 1

    return blocks, tables


# ── Public API ──────────────────────────────────────────────────────────

def extract_pdf_content(pdf_bytes: bytes) -> PdfContent:
    """Parse a PDF buffer into text, page-stable blocks, tables and metadata."""
    doc = open_pdf(pdf_bytes)
    try:
        total = doc.page_count
        limit = min(total, ingest_settings.max_pages or total)

        page_texts: list[str] = []
        blocks: list[ExtractedBlock] = []
        tables: list[ExtractedTable] = []
        for idx in range(limit):
            try:
                raw = doc[idx].get_text("text")
            except Exception as exc:
                raise PdfExtractionError(
                    f"Unable to read text on page {idx + 1}: {exc}"
                ) from exc
            page_texts.append(raw)
            page_blocks, page_tables = segment_page(raw.splitlines(), idx + 1)
            blocks.extend(page_blocks)
            tables.extend(page_tables)

        raw_meta = doc.metadata or {}
        metadata = {key: raw_meta[key] for key in METADATA_KEYS if raw_meta.get(key)}
    finally:
        doc.close()

    if ingest_settings.ruled_tables_enabled:
        tables = merge_tables(tables, extract_ruled_tables(pdf_bytes))

    content = PdfContent(
        text="\n".join(t.strip() for t in page_texts if t.strip()),
        page_count=total,
        blocks=blocks,
        tables=tables,
        metadata=metadata,
    )
    logger.info(
        "Extracted %d chars, %d blocks, %d tables from %d pages",
        len(content.text), len(blocks), len(tables), total,
    )
    return content
