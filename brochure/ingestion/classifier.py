"""
Vision-model classification of extracted brochure images.

Strategy
--------
- Images are classified in fixed-size batches: concurrent calls within a
  batch (``asyncio.gather``), a short pause between batches to respect the
  provider's rate limits.
- Each response is parsed defensively and validated field by field; any
  failure yields a safe default classification, so one image never aborts
  the batch.
- ``build_image_manifest`` turns the classified list into section buckets
  for the mini-site template (hero, exterior, interiors, amenities, …).
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

import httpx

from brochure.config import settings
from brochure.ingestion.config import ingest_settings
from brochure.ingestion.schemas import (
    ClassifiedImage,
    ExtractedImage,
    ImageCategory,
    ImageManifest,
    ImageQuality,
    ImageRole,
)
from brochure.services import llm

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

QUALITY_WEIGHT = {ImageQuality.HIGH: 3, ImageQuality.MEDIUM: 2, ImageQuality.LOW: 1}

CLASSIFICATION_PROMPT = """\
You are an expert real-estate image classifier. Analyse one image taken from \
a property brochure and classify it.

Respond with a single JSON object:
{
  "category": "hero|exterior|interior_living|interior_bedroom|interior_kitchen|\
interior_bathroom|amenity_pool|amenity_gym|amenity_kids|amenity_rooftop|\
amenity_garden|amenity_lobby|amenity_other|floor_plan|location_map|lifestyle|\
branding|unknown",
  "subcategory": "podium|rooftop|null (amenities only)",
  "role": "hero|gallery|background|technical",
  "quality": "high|medium|low",
  "description": "1-2 sentence description in English",
  "descriptionLocalized": "the same description in {language}",
  "alt": "alt text for accessibility",
  "isHeroCandidate": true/false,
  "confidence": 0.0-1.0,
  "sectionScore": 0.0-1.0
}

Rules:
- "hero": only stunning exterior renders showing the whole building.
- "exterior": other building exterior shots (angles, details, street view).
- "interior_*": by the room shown.
- "amenity_*": pools, gyms, kids areas, rooftop features, gardens, lobby.
- "floor_plan": technical apartment layouts. "location_map": maps, distances.
- "lifestyle": people and mood shots. "branding": logos, text-heavy images.
- quality "high" = sharp professional photography; "low" = blurry or tiny.
- role "technical" for floor plans and maps.
- subcategory "podium" for ground-level amenities, "rooftop" for rooftop ones.
- confidence = certainty of the category; sectionScore = how well the image
  represents that category.
"""


@dataclass
class ClassificationResult:
    classified: list[ClassifiedImage] = field(default_factory=list)
    manifest: ImageManifest = field(default_factory=ImageManifest)
    failures: list[tuple[str, str]] = field(default_factory=list)  # (url, reason)


# ── Parsing ─────────────────────────────────────────────────────────────

def _enum_or(enum_cls: type[E], value: Any, default: E) -> E:
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def _unit_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return min(1.0, max(0.0, float(value)))


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip() and value.strip().lower() != "null":
        return value.strip()
    return None


def _base_fields(image: ExtractedImage) -> dict[str, Any]:
    return image.model_dump(include={"page", "url", "width", "height", "format"})


def default_classification(image: ExtractedImage) -> ClassifiedImage:
    return ClassifiedImage(
        **_base_fields(image),
        category=ImageCategory.UNKNOWN,
        role=ImageRole.GALLERY,
        quality=ImageQuality.MEDIUM,
        description="Image from brochure",
        alt=f"Image from page {image.page}",
        confidence=0.0,
        section_score=0.0,
        is_hero_candidate=False,
    )


def parse_classification(raw: str, image: ExtractedImage) -> ClassifiedImage:
    """Validate a model response field by field; unusable input → defaults."""
    try:
        data = llm.parse_json_response(raw)
    except json.JSONDecodeError:
        logger.warning("Unparseable classification for page %d image", image.page)
        return default_classification(image)
    if not isinstance(data, dict):
        return default_classification(image)

    return ClassifiedImage(
        **_base_fields(image),
        category=_enum_or(ImageCategory, data.get("category"), ImageCategory.UNKNOWN),
        subcategory=_text(data.get("subcategory")),
        role=_enum_or(ImageRole, data.get("role"), ImageRole.GALLERY),
        quality=_enum_or(ImageQuality, data.get("quality"), ImageQuality.MEDIUM),
        description=_text(data.get("description")) or "Image from brochure",
        description_localized=_text(
            data.get("descriptionLocalized") or data.get("descriptionHe")
        ),
        alt=_text(data.get("alt")) or f"Image from page {image.page}",
        confidence=_unit_float(data.get("confidence"), 0.5),
        section_score=_unit_float(data.get("sectionScore"), 0.5),
        is_hero_candidate=data.get("isHeroCandidate") is True,
    )


# ── Model calls ─────────────────────────────────────────────────────────

async def load_image_bytes(url: str) -> tuple[bytes, str]:
    """Return ``(bytes, mime)`` for a data URL or a public image URL."""
    if url.startswith("data:"):
        header, _, payload = url.partition(",")
        mime = header[5:].split(";")[0] or "image/jpeg"
        return base64.b64decode(payload), mime
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(url)
        response.raise_for_status()
        return response.content, response.headers.get("content-type", "image/jpeg")


async def _classify_one(image: ExtractedImage) -> tuple[ClassifiedImage, str | None]:
    try:
        data, mime = await load_image_bytes(image.url)
        raw = await llm.generate_json(
            CLASSIFICATION_PROMPT.replace("{language}", settings.target_language),
            f"Classify this image from page {image.page} "
            f"({image.width}x{image.height}px).",
            image_bytes=data,
            image_mime=mime,
            temperature=ingest_settings.classify_temperature,
            max_tokens=ingest_settings.classify_max_tokens,
        )
    except Exception as exc:
        logger.warning("Classification failed for page %d image: %s", image.page, exc)
        return default_classification(image), str(exc)
    return parse_classification(raw, image), None


async def classify_images(images: list[ExtractedImage]) -> ClassificationResult:
    """Classify *images* in throttled batches and build the manifest."""
    result = ClassificationResult()
    size = max(1, ingest_settings.classify_batch_size)

    for start in range(0, len(images), size):
        batch = images[start:start + size]
        outcomes = await asyncio.gather(*(_classify_one(img) for img in batch))
        for img, (classified, error) in zip(batch, outcomes):
            result.classified.append(classified)
            if error:
                result.failures.append((img.url, error))
        logger.info(
            "Classified %d/%d images", min(start + size, len(images)), len(images)
        )
        if start + size < len(images) and ingest_settings.classify_batch_delay > 0:
            await asyncio.sleep(ingest_settings.classify_batch_delay)

    result.manifest = build_image_manifest(result.classified)
    return result


# ═══════════════════════════════════════════════════════════════════════════
# Manifest
# ═══════════════════════════════════════════════════════════════════════════

_INTERIOR = {
    ImageCategory.INTERIOR_LIVING: "living",
    ImageCategory.INTERIOR_BEDROOM: "bedroom",
    ImageCategory.INTERIOR_KITCHEN: "kitchen",
    ImageCategory.INTERIOR_BATHROOM: "bathroom",
}
_TIERED_AMENITIES = {
    ImageCategory.AMENITY_POOL,
    ImageCategory.AMENITY_GYM,
    ImageCategory.AMENITY_KIDS,
    ImageCategory.AMENITY_GARDEN,
    ImageCategory.AMENITY_LOBBY,
    ImageCategory.AMENITY_OTHER,
}


def select_hero(images: list[ClassifiedImage]) -> ClassifiedImage | None:
    """Best high-quality hero candidate by confidence × section score,
    falling back to the most confident exterior / hero image."""
    candidates = [
        img for img in images if img.is_hero_candidate and img.quality == ImageQuality.HIGH
    ]
    if candidates:
        return max(candidates, key=lambda img: img.confidence * img.section_score)
    exteriors = [
        img for img in images
        if img.category in (ImageCategory.EXTERIOR, ImageCategory.HERO)
    ]
    if exteriors:
        return max(exteriors, key=lambda img: img.confidence)
    return None


def gallery_score(img: ClassifiedImage) -> float:
    return QUALITY_WEIGHT[img.quality] * img.confidence


def build_image_manifest(images: list[ClassifiedImage]) -> ImageManifest:
    manifest = ImageManifest()

    unique: list[ClassifiedImage] = []
    seen: set[str] = set()
    for img in images:
        if img.url not in seen:
            seen.add(img.url)
            unique.append(img)

    manifest.hero = select_hero(unique)
    hero_url = manifest.hero.url if manifest.hero else None
    rest = [img for img in unique if img.url != hero_url]

    for img in rest:
        cat = img.category
        if cat in (ImageCategory.HERO, ImageCategory.EXTERIOR):
            manifest.exterior.append(img)
        elif cat in _INTERIOR:
            getattr(manifest.interior, _INTERIOR[cat]).append(img)
        elif cat == ImageCategory.AMENITY_ROOFTOP:
            manifest.amenities.rooftop.append(img)
        elif cat in _TIERED_AMENITIES:
            if (img.subcategory or "").lower() == "rooftop":
                manifest.amenities.rooftop.append(img)
            else:
                manifest.amenities.podium.append(img)
        elif cat == ImageCategory.FLOOR_PLAN:
            manifest.floor_plans.append(img)
        elif cat == ImageCategory.LOCATION_MAP:
            manifest.location_maps.append(img)
        elif cat == ImageCategory.LIFESTYLE:
            manifest.lifestyle.append(img)
        elif cat == ImageCategory.BRANDING:
            manifest.branding.append(img)

    manifest.gallery = sorted(
        (
            img for img in rest
            if img.category not in (ImageCategory.BRANDING, ImageCategory.FLOOR_PLAN)
        ),
        key=gallery_score,
        reverse=True,
    )
    return manifest


def get_images_for_section(
    manifest: ImageManifest, section: str, count: int = 4
) -> list[ClassifiedImage]:
    """Best images for a mini-site section, highest quality first."""
    if section == "hero":
        return [manifest.hero] if manifest.hero else []
    if section in ("about", "overview"):
        candidates = [*manifest.exterior, *manifest.lifestyle]
    elif section in ("interiors", "units"):
        interior = manifest.interior
        candidates = [*interior.living, *interior.bedroom, *interior.kitchen, *interior.bathroom]
    elif section == "amenities":
        amenities = manifest.amenities
        candidates = [*amenities.podium, *amenities.rooftop, *amenities.special]
    elif section == "location":
        candidates = [*manifest.location_maps, *manifest.exterior]
    elif section == "floor_plans":
        candidates = list(manifest.floor_plans)
    else:
        candidates = list(manifest.gallery)

    candidates.sort(key=lambda img: QUALITY_WEIGHT[img.quality], reverse=True)
    return candidates[:count]
