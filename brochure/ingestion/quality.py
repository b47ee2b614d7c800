"""
Quality gates and confidence scoring for the prospect pipeline.

Each gate is a pure function: input → (pass, reason).
Failed gates are data-quality warnings: the orchestrator logs them and
reports them in progress events, it never alters or rejects the data.
"""

from __future__ import annotations

import logging

from brochure.ingestion.pdf_parser import PdfContent
from brochure.ingestion.schemas import BlockType
from brochure.schemas import PaymentPlan, StructuredProject

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 100
PAYMENT_TOTAL_TOLERANCE = 0.5


def calculate_extraction_confidence(content: PdfContent) -> float:
    """Rough [0, 1] score for how much structure the text pass recovered."""
    score = 0
    text_len = len(content.text)
    score += 10 * sum(text_len > n for n in (100, 500, 1000))

    headers = sum(1 for b in content.blocks if b.type == BlockType.HEADER)
    score += 10 * sum(headers > n for n in (0, 3, 5))

    score += 10 * sum(len(content.tables) > n for n in (0, 2))

    if content.metadata.get("title"):
        score += 10
    if content.metadata.get("author"):
        score += 10
    return score / 100


def validate_extracted_text(content: PdfContent) -> tuple[bool, str]:
    """Detect scanned brochures and garbage text layers."""
    text = content.text.strip()
    if len(text) < MIN_TEXT_LENGTH:
        return False, f"Too little text ({len(text)} chars) – scanned brochure?"

    # Broken font encodings produce mostly non-alphanumeric output
    alnum = sum(1 for c in text if c.isalnum())
    if alnum / len(text) < 0.30:
        return False, f"Low alphanumeric ratio ({alnum / len(text):.2f})"

    return True, "OK"


def validate_payment_plan(plan: PaymentPlan | None) -> tuple[bool, str]:
    """Percentages should add up to 100; partial plans are allowed through."""
    if plan is None:
        return True, "No payment plan"
    if not plan.has_summary() and not plan.milestones:
        return True, "Empty payment plan"
    total = plan.total_percentage()
    if abs(total - 100) > PAYMENT_TOTAL_TOLERANCE:
        return False, f"Payment plan totals {total:g}%"
    return True, "OK"


def validate_units(project: StructuredProject) -> tuple[bool, str]:
    for unit in project.units:
        if unit.price_from is not None and unit.price_from <= 0:
            return False, f"Non-positive price for {unit.type}"
        if (
            unit.price_from is not None
            and unit.price_to is not None
            and unit.price_to < unit.price_from
        ):
            return False, f"Inverted price range for {unit.type}"
        if unit.size_from is not None and unit.size_to is not None and unit.size_to < unit.size_from:
            return False, f"Inverted size range for {unit.type}"
    return True, "OK"


def project_warnings(project: StructuredProject) -> list[str]:
    """Run every project-level gate and return the failure reasons."""
    warnings = []
    for gate in (lambda p: validate_payment_plan(p.payment_plan), validate_units):
        ok, reason = gate(project)
        if not ok:
            warnings.append(reason)
    if warnings:
        logger.warning("Data quality for %r: %s", project.name, "; ".join(warnings))
    return warnings
