"""
Table extraction from brochure PDFs.

Strategy
--------
1. **Text-layer heuristic** – lines whose cells are separated by tabs or
   runs of 2+ spaces are grouped into tables while the page text is being
   segmented (see ``pdf_parser``).  This catches price lists that are laid
   out with whitespace only.
2. **pdfplumber** (MIT) – detects ruled / digitally drawn tables.  Its
   results are merged in when they are not duplicates of a heuristic table.

Helpers here also pick out pricing tables and payment-plan percentages,
which are passed to the mapper as hints.
"""

from __future__ import annotations

import io
import logging
import re

import pdfplumber

from brochure.ingestion.config import ingest_settings
from brochure.ingestion.schemas import ExtractedTable

logger = logging.getLogger(__name__)

CELL_SEPARATOR = re.compile(r"\t| {2,}")
_PERCENT = re.compile(r"(\d+(?:\.\d+)?)\s*%")

PRICING_KEYWORDS = (
    "price", "pricing", "cost", "aed", "usd", "payment", "plan",
    "bedroom", "br", "unit", "type", "size", "sqft", "sqm",
)
_PRICING_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in PRICING_KEYWORDS) + r")\b", re.IGNORECASE
)
_PAYMENT_PATTERN = re.compile(r"payment|instal?lment|milestone|booking|handover", re.IGNORECASE)


def split_cells(line: str) -> list[str]:
    """Split a text-layer line on tabs / multi-space runs."""
    return [cell.strip() for cell in CELL_SEPARATOR.split(line) if cell.strip()]


def is_table_row(line: str, min_cells: int | None = None) -> bool:
    threshold = min_cells if min_cells is not None else ingest_settings.table_min_cells
    return len(split_cells(line)) >= threshold


# ═══════════════════════════════════════════════════════════════════════════
# pdfplumber-based extraction
# ═══════════════════════════════════════════════════════════════════════════

def extract_ruled_tables(pdf_bytes: bytes) -> list[ExtractedTable]:
    """Extract ruled tables from every page using pdfplumber.

    Failures are logged and yield whatever was found so far.
    """
    tables: list[ExtractedTable] = []
    try:
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            limit = ingest_settings.max_pages or len(pdf.pages)
            for idx, page in enumerate(pdf.pages[:limit]):
                for raw in page.extract_tables():
                    rows = [[str(cell).strip() if cell else "" for cell in row] for row in raw]
                    rows = [r for r in rows if any(r)]
                    if len(rows) < 2 or len(rows[0]) < 2:
                        continue
                    tables.append(
                        ExtractedTable(
                            page=idx + 1,
                            headers=rows[0],
                            rows=rows[1:],
                            source="ruled",
                        )
                    )
    except Exception as exc:
        logger.warning("pdfplumber table pass failed: %s", exc)

    return tables


def merge_tables(
    heuristic: list[ExtractedTable], ruled: list[ExtractedTable]
) -> list[ExtractedTable]:
    """Append ruled tables whose content is not already covered."""
    seen = {_table_key(t) for t in heuristic}
    merged = list(heuristic)
    for table in ruled:
        key = _table_key(table)
        if key in seen:
            continue
        seen.add(key)
        merged.append(table)
    return merged


def _table_key(table: ExtractedTable) -> tuple[int, str]:
    cells = [c for row in [table.headers, *table.rows] for c in row]
    return table.page, re.sub(r"\s+", "", "".join(cells)).lower()


# ═══════════════════════════════════════════════════════════════════════════
# Domain helpers
# ═══════════════════════════════════════════════════════════════════════════

def identify_pricing_tables(tables: list[ExtractedTable]) -> list[ExtractedTable]:
    """Tables whose header row or cells mention price / unit / payment terms."""
    found = []
    for table in tables:
        text = " ".join([*table.headers, *(c for row in table.rows for c in row)])
        if _PRICING_PATTERN.search(text):
            found.append(table)
    return found


def extract_payment_milestones(tables: list[ExtractedTable]) -> list[dict]:
    """Pull ``{percentage, description}`` pairs out of payment-plan tables."""
    milestones: list[dict] = []
    for table in tables:
        if not _PAYMENT_PATTERN.search(" ".join(table.headers)) and not any(
            _PAYMENT_PATTERN.search(" ".join(row)) for row in table.rows
        ):
            continue
        for row in table.rows:
            for pos, cell in enumerate(row):
                match = _PERCENT.search(cell)
                if not match:
                    continue
                others = [c for i, c in enumerate(row) if i != pos and c]
                description = " ".join(others) or _PERCENT.sub("", cell).strip() or "Payment"
                milestones.append({"percentage": float(match.group(1)), "description": description})
                break
    return milestones


# ═══════════════════════════════════════════════════════════════════════════
# Formatting helpers
# ═══════════════════════════════════════════════════════════════════════════

def format_tables_for_prompt(tables: list[ExtractedTable]) -> str:
    parts = []
    for i, table in enumerate(tables, start=1):
        rows = [table.headers, *table.rows] if table.headers else table.rows
        parts.append(f"\nTable {i} (page {table.page}):\n{_rows_to_markdown(rows)}")
    return "\n".join(parts)


def _rows_to_markdown(rows: list[list[str]]) -> str:
    if not rows:
        return ""
    # Pad rows to uniform column count
    max_cols = max(len(r) for r in rows)
    padded = [r + [""] * (max_cols - len(r)) for r in rows]

    lines: list[str] = []
    header = "| " + " | ".join(padded[0]) + " |"
    separator = "| " + " | ".join(["---"] * max_cols) + " |"
    lines.append(header)
    lines.append(separator)
    for row in padded[1:]:
        lines.append("| " + " | ".join(row) + " |")
    return "\n".join(lines)
