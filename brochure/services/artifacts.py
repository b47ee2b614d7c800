"""
Materialization of a processed prospect into publishable artifacts.

Responsibilities
- Project: property-page projection of the StructuredProject (grouped,
  icon-tagged amenities; formatted units and payment plan; ordered gallery).
- Mini-site: template-page projection (hero / about / features / pricing /
  location / FAQ) linked to exactly one project.
- Unique slugs per namespace via prefix probing.

Both operations are idempotent: the prospect's ``project_id`` and
``mini_site_id`` are written once and reused afterwards.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from brochure import i18n
from brochure.errors import ArtifactPreconditionError
from brochure.ingestion.classifier import get_images_for_section
from brochure.ingestion.schemas import ExtractedImage, ImageManifest
from brochure.schemas import (
    MATERIALIZABLE,
    Amenity,
    MiniSite,
    PaymentPlan,
    Project,
    Prospect,
    StructuredProject,
    Unit,
)
from brochure.services.store import ProspectStore

logger = logging.getLogger(__name__)

SLUG_INSERT_ATTEMPTS = 3

AMENITY_CATEGORY_ORDER = (
    "wellness", "leisure", "outdoor", "convenience", "security", "kids", "smart", "other",
)

# (keywords, Lucide icon) – first match wins
AMENITY_ICON_RULES: list[tuple[tuple[str, ...], str]] = [
    (("pool", "swim", "infinity", "בריכה"), "Waves"),
    (("gym", "fitness", "workout", "חדר כושר"), "Dumbbell"),
    (("spa", "sauna", "steam", "massage", "ספא"), "Sparkles"),
    (("yoga", "meditation", "יוגה"), "Heart"),
    (("security", "guard", "cctv", "24/7", "אבטחה"), "Shield"),
    (("park", "garden", "landscape", "גינה"), "TreePine"),
    (("bbq", "grill", "ברביקיו"), "Flame"),
    (("rooftop", "terrace", "גג"), "Sun"),
    (("beach", "חוף"), "Umbrella"),
    (("wifi", "internet", "smart"), "Wifi"),
    (("cafe", "coffee", "restaurant", "קפה"), "Coffee"),
    (("lounge", "bar", "לאונג"), "Wine"),
    (("kid", "child", "play", "nursery", "daycare", "ילד"), "Baby"),
    (("pet", "dog", "חיות"), "PawPrint"),
    (("parking", "car", "valet", "חניה"), "Car"),
    (("concierge", "reception", "lobby", "קונסיירז"), "Bell"),
    (("laundry", "dry clean", "כביסה"), "Shirt"),
    (("mail", "package", "delivery"), "Package"),
    (("tennis", "squash", "court"), "Circle"),
    (("basketball", "sport"), "Trophy"),
    (("business", "meeting", "conference", "office"), "Briefcase"),
    (("co-work", "cowork"), "Users"),
    (("view", "panoram", "נוף"), "Eye"),
    (("balcon", "מרפסת"), "Square"),
]

HIGHLIGHT_ICON_RULES: list[tuple[tuple[str, ...], str]] = [
    (("roi", "return", "תשואה"), "TrendingUp"),
    (("completion", "handover", "מסירה"), "Calendar"),
    (("unit", "apartment", "יחיד"), "Home"),
    (("floor", "קומ"), "Building2"),
    (("size", "area", "שטח"), "Ruler"),
    (("price", "מחיר"), "DollarSign"),
]

_PERCENT_VALUE = re.compile(r"(\d+(?:\.\d+)?)")


@dataclass
class ArtifactRef:
    id: str
    slug: str | None
    created: bool


# ═══════════════════════════════════════════════════════════════════════════
# Pure projections
# ═══════════════════════════════════════════════════════════════════════════

def generate_slug(name: str) -> str:
    """``"The Grand Towers"`` → ``"the-grand-towers"``."""
    slug = name.lower()
    slug = re.sub(r"[^\w\s-]", "", slug, flags=re.ASCII)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-") or "project"


def _match_icon(text: str, rules: list[tuple[tuple[str, ...], str]], default: str) -> str:
    lower = text.lower()
    for keywords, icon in rules:
        if any(k in lower for k in keywords):
            return icon
    return default


def map_amenity_to_icon(name: str) -> str:
    return _match_icon(name, AMENITY_ICON_RULES, "Building2")


def map_highlight_to_icon(title: str) -> str:
    return _match_icon(title, HIGHLIGHT_ICON_RULES, "Award")


def _fmt_number(value: float | int) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def format_unit_price(price: float | int | None, currency: str) -> str | None:
    """Millions with one decimal, half-up: 650000 → ``"0.7M AED"``."""
    if not price:
        return None
    millions = (Decimal(str(price)) / Decimal(1_000_000)).quantize(
        Decimal("0.1"), rounding=ROUND_HALF_UP
    )
    return f"{millions}M {currency}"


def format_unit_size(unit: Unit) -> str | None:
    if unit.size_from and unit.size_to:
        return f"{_fmt_number(unit.size_from)}-{_fmt_number(unit.size_to)} {unit.size_unit}"
    if unit.size_from:
        return f"{_fmt_number(unit.size_from)} {unit.size_unit}"
    return None


def format_units(project: StructuredProject) -> list[dict[str, Any]]:
    formatted = []
    for unit in project.units:
        formatted.append(
            {
                "type": unit.type,
                "typeLocalized": unit.type_localized,
                "sizeFrom": unit.size_from,
                "sizeTo": unit.size_to,
                "sizeUnit": unit.size_unit,
                "priceFrom": unit.price_from,
                "priceTo": unit.price_to,
                "view": unit.view,
                "features": unit.features,
                "featuresLocalized": unit.features_localized,
                "bedrooms": unit.bedrooms,
                "size": format_unit_size(unit),
                "price": format_unit_price(unit.price_from, project.price_currency),
                "status": unit.availability or "available",
            }
        )
    return formatted


def group_amenities_by_category(amenities: list[Amenity]) -> list[dict[str, Any]]:
    """Category buckets in display order, localized names preferred."""
    buckets: dict[str, list[dict[str, Any]]] = {}
    for amenity in amenities:
        category = amenity.category if amenity.category in AMENITY_CATEGORY_ORDER else "other"
        buckets.setdefault(category, []).append(
            {
                "icon": amenity.icon or map_amenity_to_icon(amenity.name),
                "name": amenity.name_localized or amenity.name,
                "nameEn": amenity.name,
                "subcategory": amenity.subcategory,
            }
        )
    return [
        {"category": i18n.t(f"amenity.{cat}"), "categoryKey": cat, "items": buckets[cat]}
        for cat in AMENITY_CATEGORY_ORDER
        if cat in buckets
    ]


def format_payment_plan(plan: PaymentPlan | None) -> list[dict[str, Any]]:
    """Summary percentages as milestones; detailed milestones only when no
    summary exists, so the same money is never listed twice."""
    if plan is None:
        return []
    milestones: list[dict[str, Any]] = []
    for key in ("down_payment", "during_construction", "on_handover", "post_handover"):
        value = getattr(plan, key)
        if value:
            milestones.append(
                {
                    "milestone": i18n.t(f"payment.{key}"),
                    "percentage": value,
                    "description": i18n.t(f"payment.{key}.note"),
                }
            )
    if not milestones:
        for m in plan.milestones:
            milestones.append(
                {"milestone": m.description, "percentage": m.percentage, "description": m.timing or ""}
            )
    return milestones


def build_gallery(
    extracted: list[ExtractedImage], project: StructuredProject
) -> list[dict[str, Any]]:
    """Extracted PDF images (largest first) then AI gallery URLs, de-duplicated."""
    title = project.name_localized or project.name
    ordered = sorted(extracted, key=lambda img: img.area, reverse=True)
    candidates = [
        {"url": img.url, "alt": f"{title} - {i18n.t('site.image')} {idx}", "type": "image"}
        for idx, img in enumerate(ordered, start=1)
    ]
    candidates += [
        {"url": img.url, "alt": img.alt or title, "type": "image"} for img in project.gallery
    ]

    seen: set[str] = set()
    gallery = []
    for item in candidates:
        if item["url"] in seen:
            continue
        seen.add(item["url"])
        gallery.append(item)
    return gallery


def roi_from_highlights(project: StructuredProject) -> float | int | None:
    if project.roi_percent:
        return project.roi_percent
    for highlight in project.highlights:
        title = highlight.title.lower()
        if ("roi" in title or "תשואה" in highlight.title) and highlight.value:
            match = _PERCENT_VALUE.search(highlight.value)
            if match:
                value = float(match.group(1))
                return int(value) if value.is_integer() else value
    return None


def build_project(
    prospect: Prospect, data: StructuredProject, project_id: str, slug: str
) -> Project:
    location = data.location
    gallery = build_gallery(prospect.extracted_images, data)
    hero = data.hero_image or (gallery[0]["url"] if gallery else None)
    return Project(
        id=project_id,
        slug=slug,
        name=data.name_localized or data.name,
        name_en=data.name,
        developer=data.developer.name if data.developer else None,
        developer_info=data.developer.model_dump(by_alias=True, exclude_none=True)
        if data.developer else None,
        location=location.area_localized or location.area or location.city,
        location_en=location.area,
        coordinates=location.coordinates.model_dump() if location.coordinates else None,
        location_details=location.model_dump(by_alias=True, exclude_none=True),
        price_from=data.price_from,
        price_to=data.price_to,
        price_currency=data.price_currency,
        roi_percent=roi_from_highlights(data),
        completion_date=data.completion_date or (data.specs.completion_quarter if data.specs else None),
        property_type=data.property_type,
        building_type=data.building_type,
        bedrooms=", ".join(u.type for u in data.units) or None,
        description=data.description_localized or data.description,
        description_en=data.description,
        tagline=data.tagline_localized or data.tagline,
        tagline_en=data.tagline,
        image_url=hero,
        hero_image=hero,
        gallery=gallery,
        highlights=[
            {
                "icon": h.icon or map_highlight_to_icon(h.title),
                "title": h.title_localized or h.title,
                "titleEn": h.title,
                "value": h.value_localized or h.value,
            }
            for h in data.highlights
        ],
        amenities=group_amenities_by_category(data.amenities),
        units=format_units(data),
        payment_plan=format_payment_plan(data.payment_plan),
        payment_plan_details=data.payment_plan.model_dump(by_alias=True, exclude_none=True)
        if data.payment_plan else None,
        neighborhood={
            "description": f"{location.area}, {location.city}",
            "nearbyPlaces": [
                {"name": lm.name, "distance": lm.distance, "type": lm.type or "landmark"}
                for lm in location.nearby_landmarks
            ],
        },
        faqs=[
            {
                "question": f.question_localized or f.question,
                "answer": f.answer_localized or f.answer,
                "questionEn": f.question,
                "answerEn": f.answer,
            }
            for f in data.faq
        ],
        specs=data.specs.model_dump(by_alias=True, exclude_none=True) if data.specs else None,
        investment_metrics=data.investment_metrics.model_dump(by_alias=True, exclude_none=True)
        if data.investment_metrics else None,
        seo=data.seo.model_dump(by_alias=True) if data.seo else None,
        prospect_id=prospect.id,
    )


def _price_label(unit: Unit, currency: str) -> str:
    if not unit.price_from:
        return i18n.t("site.on_request")
    value = unit.price_from
    price = f"{int(value):,}" if float(value).is_integer() else f"{value:,.2f}"
    return i18n.t("site.from", price=price, currency=currency)


def build_mini_site(
    prospect: Prospect,
    data: StructuredProject,
    project_id: str,
    mini_site_id: str,
    slug: str,
) -> MiniSite:
    location = data.location
    manifest: ImageManifest | None = data.image_manifest
    hero_image = (manifest.hero.url if manifest and manifest.hero else None) or data.hero_image
    subtitle = (
        data.tagline_localized
        or data.tagline
        or (data.developer.name if data.developer else None)
        or location.area
    )

    if data.amenities:
        features = [
            {
                "icon": a.icon or map_amenity_to_icon(a.name),
                "title": a.name_localized or a.name,
                "description": a.category,
                "subcategory": a.subcategory,
            }
            for a in data.amenities
        ]
    else:
        features = [
            {
                "icon": h.icon or map_highlight_to_icon(h.title),
                "title": h.title_localized or h.title,
                "description": h.value_localized or h.value or "",
            }
            for h in data.highlights
        ]

    if manifest and manifest.gallery:
        gallery = [img.url for img in manifest.gallery]
    else:
        gallery = [item["url"] for item in build_gallery(prospect.extracted_images, data)]

    address = ", ".join(p for p in (location.address, location.area, location.city) if p)
    return MiniSite(
        id=mini_site_id,
        slug=slug,
        name=data.name,
        project_id=project_id,
        prospect_id=prospect.id,
        hero={"title": data.name_localized or data.name, "subtitle": subtitle, "image": hero_image},
        about={
            "title": i18n.t("site.about"),
            "content": data.description_localized or data.description,
            "images": [img.url for img in get_images_for_section(manifest, "about", 2)]
            if manifest else [],
        },
        features=features,
        gallery=gallery,
        pricing={
            "title": i18n.t("site.pricing"),
            "items": [
                {
                    "name": u.type_localized or u.type,
                    "price": _price_label(u, data.price_currency),
                    "details": format_unit_size(u) or "",
                }
                for u in data.units
            ],
        },
        location={
            "title": i18n.t("site.location"),
            "address": address or location.area,
            "coordinates": location.coordinates.model_dump() if location.coordinates else None,
            "mapEmbed": location.map_embed,
            "nearbyLandmarks": [
                lm.model_dump(by_alias=True, exclude_none=True) for lm in location.nearby_landmarks
            ],
            "connectivity": [
                c.model_dump(by_alias=True, exclude_none=True) for c in location.connectivity
            ],
        },
        faq=[
            {"question": f.question_localized or f.question, "answer": f.answer_localized or f.answer}
            for f in data.faq
        ],
        image_manifest=manifest.model_dump(by_alias=True, mode="json") if manifest else None,
        seo=data.seo.model_dump(by_alias=True) if data.seo else None,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Persistence-backed builder
# ═══════════════════════════════════════════════════════════════════════════

class ArtifactBuilder:
    """Creates project and mini-site records for processed prospects."""

    def __init__(self, store: ProspectStore):
        self.store = store

    def ensure_unique_slug(self, base: str, kind: str) -> str:
        """*base* if free, else ``base-N`` with the lowest free N ≥ 2."""
        taken = self.store.slugs_with_prefix(kind, base)
        if base not in taken:
            return base
        counter = 2
        while f"{base}-{counter}" in taken:
            counter += 1
        return f"{base}-{counter}"

    def _insert_with_unique_slug(self, base: str, kind: str, build, insert):
        last_error: sqlite3.IntegrityError | None = None
        for _ in range(SLUG_INSERT_ATTEMPTS):
            slug = self.ensure_unique_slug(base, kind)
            record = build(slug)
            try:
                return insert(record)
            except sqlite3.IntegrityError as exc:
                logger.warning("Slug %s taken concurrently, probing again", slug)
                last_error = exc
        raise last_error

    @staticmethod
    def _structured(prospect: Prospect) -> StructuredProject:
        if not prospect.generated_sections:
            raise ArtifactPreconditionError(
                "No structured data available", {"prospect_id": prospect.id}
            )
        return StructuredProject.model_validate(prospect.generated_sections)

    def create_project_from_prospect(
        self, prospect_id: str, *, refresh: bool = False, check_status: bool = True
    ) -> ArtifactRef:
        """Create (or, with *refresh*, rewrite in place) the prospect's project."""
        prospect = self.store.get_prospect(prospect_id)
        if check_status and prospect.status not in MATERIALIZABLE:
            raise ArtifactPreconditionError(
                f"Prospect not ready for project creation (status {prospect.status.value})"
            )
        data = self._structured(prospect)

        existing = self.store.get_project(prospect.project_id) if prospect.project_id else None
        if existing is not None:
            if refresh:
                updated = build_project(prospect, data, existing.id, existing.slug)
                updated.created_at = existing.created_at
                updated.status = existing.status
                updated.featured = existing.featured
                self.store.update_project(updated)
                logger.info("Refreshed project %s (%s)", existing.id, existing.slug)
            return ArtifactRef(existing.id, existing.slug, created=False)
        if prospect.project_id:
            logger.warning(
                "Prospect %s links missing project %s, creating a new one",
                prospect_id, prospect.project_id,
            )

        project_id = uuid.uuid4().hex
        project = self._insert_with_unique_slug(
            generate_slug(data.name),
            "project",
            lambda slug: build_project(prospect, data, project_id, slug),
            self.store.insert_project,
        )
        self.store.update_prospect(prospect_id, project_id=project.id, project_slug=project.slug)
        logger.info("Created project %s (%s)", project.id, project.slug)
        return ArtifactRef(project.id, project.slug, created=True)

    def create_mini_site_from_prospect(
        self, prospect_id: str, *, check_status: bool = True
    ) -> ArtifactRef:
        """Create the prospect's mini-site once; later calls return the same ids."""
        prospect = self.store.get_prospect(prospect_id)

        if prospect.mini_site_id:
            slug = prospect.mini_site_slug
            if not slug:
                existing = self.store.get_mini_site(prospect.mini_site_id)
                slug = existing.slug if existing else None
            logger.info("Mini-site already exists for prospect %s: %s", prospect_id, slug)
            return ArtifactRef(prospect.mini_site_id, slug, created=False)

        if check_status and prospect.status not in MATERIALIZABLE:
            raise ArtifactPreconditionError(
                f"Prospect not ready for mini-site creation (status {prospect.status.value})"
            )
        if not prospect.project_id:
            raise ArtifactPreconditionError("A project must exist before its mini-site")
        data = self._structured(prospect)

        mini_site_id = uuid.uuid4().hex
        mini_site = self._insert_with_unique_slug(
            generate_slug(data.name),
            "mini_site",
            lambda slug: build_mini_site(prospect, data, prospect.project_id, mini_site_id, slug),
            self.store.insert_mini_site,
        )
        self.store.update_prospect(
            prospect_id, mini_site_id=mini_site.id, mini_site_slug=mini_site.slug
        )
        logger.info("Created mini-site %s (%s)", mini_site.id, mini_site.slug)
        return ArtifactRef(mini_site.id, mini_site.slug, created=True)
