"""
Target-locale content and SEO metadata for a mapped project.

Both calls are independent and run concurrently after mapping.  Neither
ever blocks the pipeline: translation failure leaves the English text in
place, SEO failure falls back to ``{name, description[:160], []}``.

Translated list items are keyed by the ``index`` the request sends and the
model echoes back, never by response position.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from brochure.config import settings
from brochure.ingestion.config import ingest_settings
from brochure.schemas import SeoMeta, StructuredProject
from brochure.services import llm

logger = logging.getLogger(__name__)

TRANSLATE_PROMPT = """\
You are a professional real-estate translator and copywriter. Translate the \
JSON you receive into {language} with persuasive marketing tone. Keep the \
same keys. Every list item carries an "index": copy it back unchanged. Do \
not add or drop facts. Respond with JSON only:
{"name": "...", "tagline": "...", "description": "...",
 "amenities": [{"index": 0, "name": "..."}],
 "highlights": [{"index": 0, "title": "...", "value": "..."}],
 "faq": [{"index": 0, "question": "...", "answer": "..."}]}
"""

SEO_PROMPT = """\
You are an SEO specialist for real-estate listings. From the project data, \
write a page title (max 60 characters), a meta description (max 160 \
characters) and 5-10 search keywords. Respond with JSON only: \
{"title": "...", "description": "...", "keywords": ["..."]}
"""


@dataclass
class LocalizedContent:
    name: str | None = None
    tagline: str | None = None
    description: str | None = None
    amenities: dict[int, str] = field(default_factory=dict)
    highlights: dict[int, dict[str, str]] = field(default_factory=dict)
    faq: dict[int, dict[str, str]] = field(default_factory=dict)
    translated: bool = False


def _clean(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) and value.strip() else None


def _indexed(items: Any, limit: int, keys: tuple[str, ...]) -> dict[int, dict[str, str]]:
    """Collect ``{index: {key: text}}`` from echoed items, ignoring bad indexes."""
    out: dict[int, dict[str, str]] = {}
    if not isinstance(items, list):
        return out
    for item in items:
        if not isinstance(item, dict):
            continue
        index = item.get("index")
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < limit:
            continue
        values = {k: _clean(item.get(k)) for k in keys}
        values = {k: v for k, v in values.items() if v}
        if values:
            out[index] = values
    return out


def build_translation_request(project: StructuredProject) -> dict[str, Any]:
    cfg = ingest_settings
    return {
        "name": project.name,
        "tagline": project.tagline,
        "description": project.description,
        "amenities": [
            {"index": i, "name": a.name}
            for i, a in enumerate(project.amenities[: cfg.translate_max_amenities])
        ],
        "highlights": [
            {"index": i, "title": h.title, "value": h.value}
            for i, h in enumerate(project.highlights[: cfg.translate_max_highlights])
        ],
        "faq": [
            {"index": i, "question": f.question, "answer": f.answer}
            for i, f in enumerate(project.faq[: cfg.translate_max_faq])
        ],
    }


def parse_translation(data: Any, project: StructuredProject) -> LocalizedContent:
    if not isinstance(data, dict):
        return LocalizedContent()
    cfg = ingest_settings
    amenities = _indexed(
        data.get("amenities"), min(len(project.amenities), cfg.translate_max_amenities), ("name",)
    )
    return LocalizedContent(
        name=_clean(data.get("name")),
        tagline=_clean(data.get("tagline")),
        description=_clean(data.get("description")),
        amenities={i: v["name"] for i, v in amenities.items()},
        highlights=_indexed(
            data.get("highlights"),
            min(len(project.highlights), cfg.translate_max_highlights),
            ("title", "value"),
        ),
        faq=_indexed(
            data.get("faq"),
            min(len(project.faq), cfg.translate_max_faq),
            ("question", "answer"),
        ),
        translated=True,
    )


async def localize_project(project: StructuredProject) -> LocalizedContent:
    """Translate project copy unless the mapper already produced enough of it."""
    existing = project.description_localized or ""
    if len(existing) > ingest_settings.localized_description_min_chars:
        logger.info("Localized description already present, light pass only")
        return LocalizedContent(
            name=project.name_localized,
            tagline=project.tagline_localized,
            description=project.description_localized,
        )

    try:
        raw = await llm.generate_json(
            TRANSLATE_PROMPT.replace("{language}", settings.target_language),
            json.dumps(build_translation_request(project), ensure_ascii=False),
            temperature=ingest_settings.localizer_temperature,
        )
        content = parse_translation(llm.parse_json_response(raw), project)
    except Exception as exc:
        logger.warning("Localization failed, keeping source text: %s", exc)
        return LocalizedContent()

    logger.info(
        "Localized %d amenities, %d highlights, %d FAQ entries",
        len(content.amenities), len(content.highlights), len(content.faq),
    )
    return content


def apply_localization(project: StructuredProject, content: LocalizedContent) -> StructuredProject:
    """Merge translations onto *project*; text the mapper localized wins."""
    merged = project.model_copy(deep=True)
    merged.name_localized = project.name_localized or content.name or project.name
    merged.tagline_localized = project.tagline_localized or content.tagline
    merged.description_localized = project.description_localized or content.description

    for i, amenity in enumerate(merged.amenities):
        if not amenity.name_localized and i in content.amenities:
            amenity.name_localized = content.amenities[i]
    for i, highlight in enumerate(merged.highlights):
        values = content.highlights.get(i, {})
        highlight.title_localized = highlight.title_localized or values.get("title")
        highlight.value_localized = highlight.value_localized or values.get("value")
    for i, entry in enumerate(merged.faq):
        values = content.faq.get(i, {})
        entry.question_localized = entry.question_localized or values.get("question")
        entry.answer_localized = entry.answer_localized or values.get("answer")
    return merged


# ═══════════════════════════════════════════════════════════════════════════
# SEO
# ═══════════════════════════════════════════════════════════════════════════

def fallback_seo(project: StructuredProject) -> SeoMeta:
    return SeoMeta(
        title=project.name,
        description=(project.description or "")[: ingest_settings.seo_description_max],
        keywords=[],
    )


async def generate_seo(project: StructuredProject) -> SeoMeta:
    """Title / description / keywords for the project page; never raises."""
    summary = {
        "name": project.name,
        "tagline": project.tagline,
        "description": (project.description or "")[:1000],
        "area": project.location.area,
        "city": project.location.city,
        "developer": project.developer.name if project.developer else None,
        "propertyType": project.property_type,
        "priceFrom": project.price_from,
        "currency": project.price_currency,
        "unitTypes": [u.type for u in project.units],
    }
    try:
        raw = await llm.generate_json(
            SEO_PROMPT, json.dumps(summary, ensure_ascii=False), temperature=0.3, max_tokens=512
        )
        data = llm.parse_json_response(raw)
    except Exception as exc:
        logger.warning("SEO generation failed, using fallback: %s", exc)
        return fallback_seo(project)

    if not isinstance(data, dict) or not _clean(data.get("title")):
        return fallback_seo(project)
    keywords = data.get("keywords")
    return SeoMeta(
        title=_clean(data["title"])[: ingest_settings.seo_title_max],
        description=(
            _clean(data.get("description")) or project.description or ""
        )[: ingest_settings.seo_description_max],
        keywords=[k.strip() for k in keywords if isinstance(k, str) and k.strip()][:10]
        if isinstance(keywords, list) else [],
    )
