"""
Structured mapping: brochure text + tables → ``StructuredProject``.

Strategy
--------
1. One prompt (fixed instructions + schema example + no-invention rules)
   asks the model for a single JSON object.
2. The response is cleaned (fences / preamble stripped, first balanced
   region kept) and decoded.  Undecodable → hard failure, confidence 0.
3. Strict schema validation.  Valid → weighted completeness confidence.
4. Invalid → tolerant reconstruction driven by ``FIELD_ALIASES``, a data
   table of candidate key paths per target field.  Accepted only when it
   yields a name; confidence is then confined to 0.3–0.5.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ValidationError

from brochure.config import settings
from brochure.ingestion.config import ingest_settings
from brochure.ingestion.schemas import ExtractedTable
from brochure.ingestion.tables import format_tables_for_prompt
from brochure.schemas import (
    FAQ,
    Amenity,
    Developer,
    Highlight,
    PaymentMilestone,
    PaymentPlan,
    StructuredProject,
    Unit,
)
from brochure.services import llm

logger = logging.getLogger(__name__)

PARTIAL_MIN_CONFIDENCE = 0.3
PARTIAL_MAX_CONFIDENCE = 0.5

SYSTEM_PROMPT = """\
You are a real-estate data extraction specialist building premium property \
listings. Transform the raw text and tables of a project brochure into one \
JSON object. Every free-text field also gets a {language} version in the \
matching "...Localized" key.

JSON STRUCTURE (example values):
{
  "name": "Project name in English (as printed)",
  "nameLocalized": "project name in {language}",
  "tagline": "English tagline", "taglineLocalized": "...",
  "propertyType": "Residential|Commercial|Mixed-Use",
  "buildingType": "Tower|Villa|Townhouse|Low-Rise",
  "description": "2-3 English paragraphs", "descriptionLocalized": "...",
  "developer": {"name": "Developer", "description": "...", "established": "2005",
                "notableProjects": ["..."]},
  "location": {"area": "Jumeirah Village Circle", "areaLocalized": "...",
               "city": "Dubai", "country": "UAE", "address": "...",
               "description": "...", "descriptionLocalized": "...",
               "nearbyLandmarks": [{"name": "Dubai Mall", "distance": "15 min",
                                    "distanceKm": 12, "type": "mall"}],
               "connectivity": [{"destination": "Dubai Airport",
                                 "timeMinutes": 30, "distance": "25km"}]},
  "specs": {"totalFloors": 25, "totalUnits": 320, "totalParkingSpaces": 400,
            "completionQuarter": "Q4 2026",
            "constructionStatus": "under-construction"},
  "units": [{"type": "Studio", "typeLocalized": "...", "sizeFrom": 400,
             "sizeTo": 500, "sizeUnit": "sqft", "priceFrom": 650000,
             "priceTo": 750000, "availability": "available",
             "view": "Garden View", "features": ["Smart Home"]}],
  "amenities": [{"name": "Infinity Pool", "nameLocalized": "...",
                 "category": "leisure", "subcategory": "Rooftop",
                 "icon": "Waves", "isHighlight": true}],
  "highlights": [{"title": "Completion", "titleLocalized": "...",
                  "value": "Q4 2026", "icon": "Calendar"}],
  "paymentPlan": {"name": "60/40", "downPayment": 20, "duringConstruction": 40,
                  "onHandover": 40, "postHandover": 0,
                  "milestones": [{"percentage": 20, "description": "On booking",
                                  "timing": "Immediate"}]},
  "investmentMetrics": {"expectedRoiPercent": 8, "rentalYieldPercent": 7,
                        "pricePerSqft": 1200},
  "completionDate": "Q4 2026", "priceFrom": 650000, "priceTo": 3500000,
  "priceCurrency": "AED", "totalUnits": 320, "floors": 25, "roiPercent": 8,
  "faq": [{"question": "...", "questionLocalized": "...",
           "answer": "...", "answerLocalized": "..."}]
}

RULES:
1. Extract only what the brochure states. NEVER invent prices, dates,
   unit counts or percentages; omit unknown fields.
2. Numbers are plain JSON numbers: 850000, not "850,000 AED".
3. Dates as "Q1 2025".
4. Amenity category is one of wellness, leisure, kids, outdoor, smart,
   convenience, security, other.
5. Units come from pricing tables, with size and price ranges.
6. Icons are Lucide names (Waves, Dumbbell, Shield, Car, TreePine, Baby,
   Coffee, Sparkles, Sun, Flame, Bell, Heart, Eye, Building2, Award,
   Calendar, TrendingUp, DollarSign).

Respond with valid JSON only.
"""

UNITS_PROMPT = """\
Extract every unit type and its pricing from this real-estate text. For each \
unit give type (e.g. "Studio", "1BR", "Penthouse"), sizeFrom, sizeTo, \
sizeUnit, priceFrom, priceTo, priceCurrency and availability as plain \
numbers / strings. Respond with {"units": [...]} only.
"""

PAYMENT_PLAN_PROMPT = """\
Extract the payment plan from this real-estate text: downPayment (on \
booking), duringConstruction, onHandover, postHandover, postHandoverYears \
(all percentages as numbers) and milestones [{"percentage", "description", \
"timing"}]. Respond with {"paymentPlan": {...}} only, or {} if none is stated.
"""


@dataclass
class MapperResult:
    success: bool
    data: StructuredProject | None = None
    errors: list[str] = field(default_factory=list)
    confidence: float = 0.0
    raw_response: str | None = None
    partial: bool = False


# ═══════════════════════════════════════════════════════════════════════════
# Confidence
# ═══════════════════════════════════════════════════════════════════════════

def calculate_mapping_confidence(project: StructuredProject) -> float:
    """Weighted completeness score in [0, 1]."""
    score = 0
    if project.name:
        score += 10
    if project.location and project.location.area:
        score += 10
    if project.developer and project.developer.name:
        score += 15
    if project.units:
        score += 20
    if project.payment_plan and (
        project.payment_plan.has_summary() or project.payment_plan.milestones
    ):
        score += 15
    if project.price_from:
        score += 15
    if project.amenities:
        score += 10
    if project.completion_date:
        score += 5
    return score / 100


# ═══════════════════════════════════════════════════════════════════════════
# Partial reconstruction
# ═══════════════════════════════════════════════════════════════════════════

# Candidate key paths per target field, tried in order.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("name", "projectName", "project_name", "project_name_en", "projectNameEn", "title"),
    "name_localized": ("nameLocalized", "name_localized", "nameHe", "name_he"),
    "tagline": ("tagline", "slogan"),
    "tagline_localized": ("taglineLocalized", "tagline_localized", "taglineHe", "tagline_he"),
    "description": (
        "description", "projectDescription", "project_description", "overview", "about",
    ),
    "description_localized": (
        "descriptionLocalized", "description_localized", "descriptionHe", "description_he",
    ),
    "property_type": ("propertyType", "property_type"),
    "building_type": ("buildingType", "building_type"),
    "area": (
        "location.area", "location.district", "location.neighborhood", "location.community",
        "area", "district", "community", "neighborhood", "location",
    ),
    "city": ("location.city", "city"),
    "country": ("location.country", "country"),
    "address": ("location.address", "address"),
    "developer": ("developer.name", "developer_name", "developerName", "developer"),
    "price_from": (
        "priceFrom", "price_from", "startingPrice", "starting_price", "minPrice",
        "pricing.from", "pricing.priceFrom",
    ),
    "price_to": ("priceTo", "price_to", "maxPrice", "pricing.to", "pricing.priceTo"),
    "price_currency": ("priceCurrency", "price_currency", "currency", "pricing.currency"),
    "completion_date": (
        "completionDate", "completion_date", "handoverDate", "handover_date",
        "completion", "handover",
    ),
    "amenities": ("amenities", "facilities", "features"),
    "highlights": ("highlights", "keyFeatures", "key_features"),
    "units": ("units", "unitTypes", "unit_types"),
    "payment_plan": ("paymentPlan", "payment_plan", "paymentTerms", "payment_terms"),
    "faq": ("faq", "faqs"),
}

UNIT_ALIASES: dict[str, tuple[str, ...]] = {
    "type": ("type", "unitType", "unit_type", "name"),
    "type_localized": ("typeLocalized", "typeHe", "type_he"),
    "bedrooms": ("bedrooms", "beds"),
    "size_from": ("sizeFrom", "size_from", "minSize", "size"),
    "size_to": ("sizeTo", "size_to", "maxSize"),
    "price_from": ("priceFrom", "price_from", "minPrice", "price"),
    "price_to": ("priceTo", "price_to", "maxPrice"),
}

PAYMENT_ALIASES: dict[str, tuple[str, ...]] = {
    "down_payment": ("downPayment", "down_payment", "booking", "onBooking"),
    "during_construction": ("duringConstruction", "during_construction", "construction"),
    "on_handover": ("onHandover", "on_handover", "handover"),
    "post_handover": ("postHandover", "post_handover"),
}

HIGHLIGHT_ALIASES: dict[str, tuple[str, ...]] = {
    "title": ("title", "key", "name", "label"),
    "title_localized": ("titleLocalized", "titleHe", "title_he"),
    "value": ("value", "detail", "description"),
}

FAQ_ALIASES: dict[str, tuple[str, ...]] = {
    "question": ("question", "q"),
    "answer": ("answer", "a"),
    "question_localized": ("questionLocalized", "questionHe", "question_he"),
    "answer_localized": ("answerLocalized", "answerHe", "answer_he"),
}

_NUMBER = re.compile(r"(\d+(?:\.\d+)?)(?:\s*(million|thousand|m|k)(?![a-z]))?", re.IGNORECASE)
_MULTIPLIERS = {"million": 1_000_000, "m": 1_000_000, "k": 1_000, "thousand": 1_000}


def _get_path(data: dict, path: str) -> Any:
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _present(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return value not in (None, [], {})


def pick(data: dict, aliases: tuple[str, ...], kind: type | None = None) -> Any:
    """First non-empty value among *aliases* (optionally of type *kind*)."""
    for path in aliases:
        value = _get_path(data, path)
        if _present(value) and (kind is None or isinstance(value, kind)):
            return value
    return None


def to_number(value: Any) -> int | float | None:
    """Tolerant numeric read: ``"650,000 AED"`` → 650000, ``"1.2M"`` → 1200000."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        return None
    match = _NUMBER.search(value.replace(",", ""))
    if not match:
        return None
    number = float(match.group(1))
    if match.group(2):
        number *= _MULTIPLIERS[match.group(2).lower()]
    return int(number) if number.is_integer() else number


def _text(value: Any) -> str | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value.strip() if isinstance(value, str) and value.strip() else None


def _valid(model: type[BaseModel], payload: dict) -> BaseModel | None:
    try:
        return model.model_validate(payload)
    except ValidationError:
        return None


def _read_items(raw: Any, build) -> list:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        item = build(entry)
        if item is not None:
            items.append(item)
    return items


def _build_unit(entry: Any) -> Unit | None:
    if isinstance(entry, str):
        entry = {"type": entry}
    if not isinstance(entry, dict):
        return None
    payload = {"type": _text(pick(entry, UNIT_ALIASES["type"]))}
    payload["type_localized"] = _text(pick(entry, UNIT_ALIASES["type_localized"]))
    for key in ("bedrooms", "size_from", "size_to", "price_from", "price_to"):
        payload[key] = to_number(pick(entry, UNIT_ALIASES[key]))
    return _valid(Unit, payload)


def _build_amenity(entry: Any) -> Amenity | None:
    if isinstance(entry, str):
        return _valid(Amenity, {"name": entry.strip()})
    if not isinstance(entry, dict):
        return None
    payload = {
        "name": _text(pick(entry, ("name", "title"))),
        "name_localized": _text(pick(entry, ("nameLocalized", "nameHe", "name_he"))),
        "subcategory": _text(entry.get("subcategory")),
        "icon": _text(entry.get("icon")),
    }
    amenity = _valid(Amenity, {**payload, "category": entry.get("category", "other")})
    return amenity or _valid(Amenity, payload)


def _build_highlight(entry: Any) -> Highlight | None:
    if isinstance(entry, str):
        return _valid(Highlight, {"title": entry.strip()})
    if not isinstance(entry, dict):
        return None
    payload = {key: _text(pick(entry, aliases)) for key, aliases in HIGHLIGHT_ALIASES.items()}
    return _valid(Highlight, payload)


def _build_faq(entry: Any) -> FAQ | None:
    if not isinstance(entry, dict):
        return None
    payload = {key: _text(pick(entry, aliases)) for key, aliases in FAQ_ALIASES.items()}
    return _valid(FAQ, payload)


def _build_payment_plan(raw: Any) -> PaymentPlan | None:
    if not isinstance(raw, dict):
        return None
    payload: dict[str, Any] = {
        key: to_number(pick(raw, aliases)) for key, aliases in PAYMENT_ALIASES.items()
    }
    payload["name"] = _text(raw.get("name"))
    milestones = []
    for entry in raw.get("milestones") or []:
        if not isinstance(entry, dict):
            continue
        milestone = _valid(
            PaymentMilestone,
            {
                "percentage": to_number(entry.get("percentage")),
                "description": _text(pick(entry, ("description", "label", "name"))) or "Payment",
                "timing": _text(entry.get("timing")),
            },
        )
        if milestone is not None:
            milestones.append(milestone)
    payload["milestones"] = milestones
    plan = _valid(PaymentPlan, payload)
    if plan is None or not (plan.has_summary() or plan.milestones):
        return None
    return plan


def reconstruct_project(data: dict) -> StructuredProject | None:
    """Best-effort minimal project from an off-schema response.

    Returns ``None`` unless a name can be found.
    """
    name = _text(pick(data, FIELD_ALIASES["name"], str))
    if not name:
        return None

    developer_name = _text(pick(data, FIELD_ALIASES["developer"], str))
    payload: dict[str, Any] = {
        "name": name,
        "name_localized": _text(pick(data, FIELD_ALIASES["name_localized"], str)),
        "tagline": _text(pick(data, FIELD_ALIASES["tagline"], str)),
        "tagline_localized": _text(pick(data, FIELD_ALIASES["tagline_localized"], str)),
        "description": _text(pick(data, FIELD_ALIASES["description"], str)),
        "description_localized": _text(pick(data, FIELD_ALIASES["description_localized"], str)),
        "property_type": _text(pick(data, FIELD_ALIASES["property_type"], str)) or "Residential",
        "building_type": _text(pick(data, FIELD_ALIASES["building_type"], str)),
        "location": {
            "area": _text(pick(data, FIELD_ALIASES["area"], str)) or "Dubai",
            "city": _text(pick(data, FIELD_ALIASES["city"], str)) or "Dubai",
            "country": _text(pick(data, FIELD_ALIASES["country"], str)) or "UAE",
            "address": _text(pick(data, FIELD_ALIASES["address"], str)),
        },
        "developer": Developer(name=developer_name) if developer_name else None,
        "price_from": to_number(pick(data, FIELD_ALIASES["price_from"])),
        "price_to": to_number(pick(data, FIELD_ALIASES["price_to"])),
        "price_currency": (
            _text(pick(data, FIELD_ALIASES["price_currency"], str)) or settings.default_currency
        ),
        "completion_date": _text(pick(data, FIELD_ALIASES["completion_date"])),
        "units": _read_items(pick(data, FIELD_ALIASES["units"], list), _build_unit),
        "amenities": _read_items(pick(data, FIELD_ALIASES["amenities"], list), _build_amenity),
        "highlights": _read_items(pick(data, FIELD_ALIASES["highlights"], list), _build_highlight),
        "faq": _read_items(pick(data, FIELD_ALIASES["faq"], list), _build_faq),
        "payment_plan": _build_payment_plan(pick(data, FIELD_ALIASES["payment_plan"], dict)),
    }
    try:
        return StructuredProject.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Reconstruction still invalid: %s", exc.error_count())
        return None


def _validation_messages(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Prompting
# ═══════════════════════════════════════════════════════════════════════════

def build_user_prompt(
    text: str,
    tables: list[ExtractedTable],
    metadata: dict[str, Any] | None = None,
) -> str:
    budget = ingest_settings.mapper_max_chars
    body = text if len(text) <= budget else text[:budget] + "... [truncated]"
    parts = [f"BROCHURE TEXT:\n{body}"]
    if tables:
        parts.append(f"TABLES:{format_tables_for_prompt(tables)}")
    if metadata:
        parts.append(f"DOCUMENT METADATA:\n{json.dumps(metadata, ensure_ascii=False, default=str)}")
    return "\n\n".join(parts)


def _system_prompt() -> str:
    return SYSTEM_PROMPT.replace("{language}", settings.target_language)


# ═══════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════

def interpret_response(raw: str) -> MapperResult:
    """Decode + validate one mapper response (no I/O)."""
    try:
        parsed = llm.parse_json_response(raw)
    except json.JSONDecodeError as exc:
        logger.error("Mapper response is not valid JSON: %s", exc)
        return MapperResult(
            success=False, errors=[f"Invalid JSON: {exc}"], confidence=0.0, raw_response=raw
        )
    if not isinstance(parsed, dict):
        return MapperResult(
            success=False,
            errors=["Response is not a JSON object"],
            confidence=0.0,
            raw_response=raw,
        )

    try:
        project = StructuredProject.model_validate(parsed)
    except ValidationError as exc:
        errors = _validation_messages(exc)
        logger.warning("Mapper output failed validation (%d errors), reconstructing", len(errors))
        partial = reconstruct_project(parsed)
        if partial is None:
            return MapperResult(
                success=False,
                errors=["No usable project data (name missing)", *errors],
                confidence=0.0,
                raw_response=raw,
            )
        completeness = calculate_mapping_confidence(partial)
        confidence = PARTIAL_MIN_CONFIDENCE + (
            PARTIAL_MAX_CONFIDENCE - PARTIAL_MIN_CONFIDENCE
        ) * completeness
        partial.confidence = round(confidence, 3)
        return MapperResult(
            success=True,
            data=partial,
            errors=errors,
            confidence=partial.confidence,
            raw_response=raw,
            partial=True,
        )

    project.confidence = calculate_mapping_confidence(project)
    return MapperResult(
        success=True, data=project, confidence=project.confidence, raw_response=raw
    )


async def map_to_structured_project(
    text: str,
    tables: list[ExtractedTable],
    metadata: dict[str, Any] | None = None,
) -> MapperResult:
    """Ask the model for a StructuredProject and validate the answer."""
    logger.info("Mapping %d chars and %d tables", len(text), len(tables))
    try:
        raw = await llm.generate_json(
            _system_prompt(),
            build_user_prompt(text, tables, metadata),
            temperature=ingest_settings.mapper_temperature,
            max_tokens=ingest_settings.mapper_max_tokens,
        )
    except Exception as exc:
        logger.error("Mapper call failed: %s", exc)
        return MapperResult(success=False, errors=[str(exc)], confidence=0.0)

    result = interpret_response(raw)
    logger.info(
        "Mapping %s (confidence %.2f%s)",
        "succeeded" if result.success else "failed",
        result.confidence,
        ", partial" if result.partial else "",
    )
    return result


async def extract_units_with_ai(text: str) -> list[Unit]:
    """Focused unit-type extraction; returns ``[]`` on any failure."""
    try:
        raw = await llm.generate_json(
            UNITS_PROMPT, text[: ingest_settings.mapper_max_chars], temperature=0.1
        )
        parsed = llm.parse_json_response(raw)
    except Exception as exc:
        logger.warning("Unit extraction failed: %s", exc)
        return []
    if isinstance(parsed, dict):
        parsed = pick(parsed, FIELD_ALIASES["units"], list)
    return _read_items(parsed, _build_unit)


async def extract_payment_plan_with_ai(text: str) -> PaymentPlan | None:
    """Focused payment-plan extraction; returns ``None`` on any failure."""
    try:
        raw = await llm.generate_json(
            PAYMENT_PLAN_PROMPT, text[: ingest_settings.mapper_max_chars], temperature=0.1
        )
        parsed = llm.parse_json_response(raw)
    except Exception as exc:
        logger.warning("Payment plan extraction failed: %s", exc)
        return None
    if not isinstance(parsed, dict):
        return None
    return _build_payment_plan(pick(parsed, FIELD_ALIASES["payment_plan"], dict) or parsed)


async def fill_missing_sections(project: StructuredProject, text: str) -> StructuredProject:
    """Run focused extractions for units / payment plan when the main pass missed them."""
    if not project.units:
        units = await extract_units_with_ai(text)
        if units:
            logger.info("Recovered %d unit types with focused extraction", len(units))
            project.units = units
    if project.payment_plan is None:
        plan = await extract_payment_plan_with_ai(text)
        if plan is not None:
            logger.info("Recovered payment plan with focused extraction")
            project.payment_plan = plan
    return project
