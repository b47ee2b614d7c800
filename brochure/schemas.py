"""
Domain models shared by the pipeline, the artifact builder and the API.

  - StructuredProject – canonical, schema-validated project extracted from a
                        brochure; the contract between mapper and builder
  - Prospect          – working record tracking one source document
  - Project / MiniSite – terminal, publicly-servable artifacts
  - ProcessingUpdate  – one progress event

Numeric fields are plain numbers: a formatted value such as
``"650,000 AED"`` fails validation and sends the mapper down its
reconstruction path.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Union

from pydantic import Field, field_validator

from brochure.ingestion.schemas import (
    CamelModel,
    ClassifiedImage,
    ExtractedImage,
    ExtractedTable,
    ImageManifest,
)

Number = Union[int, float]

AmenityCategory = Literal[
    "wellness", "leisure", "convenience", "security", "outdoor", "kids", "smart", "other"
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# StructuredProject
# ═══════════════════════════════════════════════════════════════════════════

class Developer(CamelModel):
    name: str = Field(..., min_length=1)
    description: str | None = None
    established: Union[str, int] | None = None
    headquarters: str | None = None
    notable_projects: list[str] = Field(default_factory=list)
    website: str | None = None
    logo: str | None = None


class Coordinates(CamelModel):
    lat: float
    lng: float


class Landmark(CamelModel):
    name: str
    name_localized: str | None = None
    distance: str
    distance_km: Number | None = None
    travel_time_minutes: Number | None = None
    type: str | None = None  # beach, mall, airport, metro, landmark, school, …


class Connectivity(CamelModel):
    destination: str
    destination_localized: str | None = None
    time_minutes: Number | None = None
    distance: str | None = None


class LocationDetails(CamelModel):
    area: str = Field(..., min_length=1)
    area_localized: str | None = None
    city: str = "Dubai"
    country: str = "UAE"
    address: str | None = None
    description: str | None = None
    description_localized: str | None = None
    coordinates: Coordinates | None = None
    nearby_landmarks: list[Landmark] = Field(default_factory=list)
    connectivity: list[Connectivity] = Field(default_factory=list)
    map_embed: str | None = None


class ProjectSpecs(CamelModel):
    total_floors: Number | None = None
    total_units: Number | None = None
    total_parking_spaces: Number | None = None
    plot_size_sqft: Number | None = None
    built_up_area_sqft: Number | None = None
    building_height: Union[str, int, float] | None = None
    completion_quarter: str | None = None
    construction_status: str | None = None  # off-plan, under-construction, ready, completed
    launch_date: str | None = None
    architectural_style: str | None = None


class InvestmentMetrics(CamelModel):
    expected_roi_percent: Number | None = None
    rental_yield_percent: Number | None = None
    price_per_sqft: Number | None = None
    service_charge_per_sqft: Number | None = None
    capital_appreciation_forecast: str | None = None
    golden_visa_eligible: bool | None = None


class Unit(CamelModel):
    type: str = Field(..., min_length=1)
    type_localized: str | None = None
    bedrooms: Number | None = None
    bathrooms: Number | None = None
    size_from: Number | None = None
    size_to: Number | None = None
    size_unit: Literal["sqft", "sqm"] = "sqft"
    price_from: Number | None = None
    price_to: Number | None = None
    price_currency: str = "AED"
    availability: Literal["available", "limited", "sold-out"] | None = None
    floor: str | None = None
    view: str | None = None
    features: list[str] = Field(default_factory=list)
    features_localized: list[str] = Field(default_factory=list)


class PaymentMilestone(CamelModel):
    percentage: Number
    description: str
    timing: str | None = None


class PaymentPlan(CamelModel):
    name: str | None = None
    down_payment: Number | None = None
    during_construction: Number | None = None
    on_handover: Number | None = None
    post_handover: Number | None = None
    post_handover_years: Number | None = None
    milestones: list[PaymentMilestone] = Field(default_factory=list)
    notes: str | None = None

    def has_summary(self) -> bool:
        return any(
            v for v in (
                self.down_payment, self.during_construction,
                self.on_handover, self.post_handover,
            )
        )

    def total_percentage(self) -> float:
        """Sum of the summary fields, or of the milestones when no summary exists."""
        if self.has_summary():
            parts = (
                self.down_payment, self.during_construction,
                self.on_handover, self.post_handover,
            )
            return float(sum(p or 0 for p in parts))
        return float(sum(m.percentage for m in self.milestones))


class Amenity(CamelModel):
    name: str = Field(..., min_length=1)
    name_localized: str | None = None
    category: AmenityCategory = "other"
    subcategory: str | None = None
    icon: str | None = None
    is_highlight: bool = False


class Highlight(CamelModel):
    title: str = Field(..., min_length=1)
    title_localized: str | None = None
    value: str | None = None
    value_localized: str | None = None
    icon: str | None = None


class FAQ(CamelModel):
    question: str
    answer: str
    question_localized: str | None = None
    answer_localized: str | None = None


class GalleryImage(CamelModel):
    url: str
    alt: str | None = None
    category: str | None = None
    is_hero: bool = False


class SeoMeta(CamelModel):
    title: str = ""
    description: str = ""
    keywords: list[str] = Field(default_factory=list)


class StructuredProject(CamelModel):
    """A real-estate project as extracted from one brochure."""

    name: str = Field(..., min_length=1)
    name_localized: str | None = None
    tagline: str | None = None
    tagline_localized: str | None = None
    description: str | None = None
    description_localized: str | None = None

    developer: Developer | None = None
    location: LocationDetails
    property_type: str = "Residential"
    building_type: str | None = None

    price_from: Number | None = None
    price_to: Number | None = None
    price_currency: str = "AED"
    units: list[Unit] = Field(default_factory=list)
    total_units: Number | None = None
    payment_plan: PaymentPlan | None = None

    floors: Number | None = None
    completion_date: str | None = None
    handover_date: str | None = None
    status: str | None = None
    specs: ProjectSpecs | None = None
    investment_metrics: InvestmentMetrics | None = None

    amenities: list[Amenity] = Field(default_factory=list)
    highlights: list[Highlight] = Field(default_factory=list)
    gallery: list[GalleryImage] = Field(default_factory=list)
    hero_image: str | None = None
    brochure_url: str | None = None
    video_url: str | None = None
    image_manifest: ImageManifest | None = None
    classified_images: list[ClassifiedImage] = Field(default_factory=list)

    roi_percent: Number | None = None
    rental_yield: Number | None = None
    service_charge: Number | None = None

    faq: list[FAQ] = Field(default_factory=list)
    seo: SeoMeta | None = None

    source_prospect_id: str | None = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    extracted_at: datetime | None = None

    @field_validator("gallery", mode="before")
    @classmethod
    def _coerce_gallery_strings(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"url": v} if isinstance(v, str) else v for v in value]
        return value

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe camelCase dict for persistence."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ═══════════════════════════════════════════════════════════════════════════
# Prospect lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class ProspectStatus(str, Enum):
    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    MAPPING = "mapping"
    MAPPED = "mapped"
    VALIDATING = "validating"
    READY = "ready"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


# Forward-only edges.  ``failed`` is reachable from anywhere; retry and
# reprocess use their own explicit entry points.
ALLOWED_TRANSITIONS: dict[ProspectStatus, frozenset[ProspectStatus]] = {
    ProspectStatus.UPLOADED: frozenset({ProspectStatus.EXTRACTING}),
    ProspectStatus.EXTRACTING: frozenset({ProspectStatus.EXTRACTED}),
    ProspectStatus.EXTRACTED: frozenset({ProspectStatus.MAPPING}),
    ProspectStatus.MAPPING: frozenset({ProspectStatus.MAPPED}),
    ProspectStatus.MAPPED: frozenset({ProspectStatus.VALIDATING}),
    ProspectStatus.VALIDATING: frozenset({ProspectStatus.READY}),
    ProspectStatus.READY: frozenset({ProspectStatus.PUBLISHING}),
    # project materialization failed: data stays, artifact can be retried
    ProspectStatus.PUBLISHING: frozenset({ProspectStatus.PUBLISHED, ProspectStatus.READY}),
    ProspectStatus.PUBLISHED: frozenset(),
    ProspectStatus.FAILED: frozenset(),
}

MATERIALIZABLE = frozenset({ProspectStatus.READY, ProspectStatus.PUBLISHED})


class Prospect(CamelModel):
    id: str
    file_name: str
    file_url: str | None = None
    file_hash: str | None = None
    status: ProspectStatus = ProspectStatus.UPLOADED

    extracted_text: str | None = None
    extracted_tables: list[ExtractedTable] = Field(default_factory=list)
    extracted_images: list[ExtractedImage] = Field(default_factory=list)
    classified_images: list[ClassifiedImage] = Field(default_factory=list)
    image_manifest: ImageManifest | None = None
    processing_checkpoint: str | None = None

    generated_title: str | None = None
    generated_description: str | None = None
    generated_sections: dict[str, Any] | None = None

    project_id: str | None = None
    project_slug: str | None = None
    mini_site_id: str | None = None
    mini_site_slug: str | None = None

    last_error: str | None = None
    retry_count: int = 0
    processed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class ProcessingUpdate(CamelModel):
    prospect_id: str
    status: str
    progress: int = Field(..., ge=0, le=100)
    message: str
    data: dict[str, Any] | None = None


# ═══════════════════════════════════════════════════════════════════════════
# Artifacts
# ═══════════════════════════════════════════════════════════════════════════

class Project(CamelModel):
    """Property-page projection of a StructuredProject."""

    id: str
    slug: str
    name: str
    name_en: str
    developer: str | None = None
    developer_info: dict[str, Any] | None = None
    location: str
    location_en: str | None = None
    coordinates: dict[str, float] | None = None
    location_details: dict[str, Any] | None = None
    price_from: Number | None = None
    price_to: Number | None = None
    price_currency: str = "AED"
    roi_percent: Number | None = None
    completion_date: str | None = None
    property_type: str = "Residential"
    building_type: str | None = None
    bedrooms: str | None = None
    description: str | None = None
    description_en: str | None = None
    tagline: str | None = None
    tagline_en: str | None = None
    image_url: str | None = None
    hero_image: str | None = None
    gallery: list[dict[str, Any]] = Field(default_factory=list)
    highlights: list[dict[str, Any]] = Field(default_factory=list)
    amenities: list[dict[str, Any]] = Field(default_factory=list)
    units: list[dict[str, Any]] = Field(default_factory=list)
    payment_plan: list[dict[str, Any]] = Field(default_factory=list)
    payment_plan_details: dict[str, Any] | None = None
    neighborhood: dict[str, Any] | None = None
    faqs: list[dict[str, Any]] = Field(default_factory=list)
    specs: dict[str, Any] | None = None
    investment_metrics: dict[str, Any] | None = None
    seo: dict[str, Any] | None = None
    status: str = "draft"
    featured: bool = False
    prospect_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class MiniSite(CamelModel):
    """Template-page projection; always references exactly one Project."""

    id: str
    slug: str
    name: str
    project_id: str
    prospect_id: str | None = None
    status: str = "draft"
    hero: dict[str, Any] = Field(default_factory=dict)
    about: dict[str, Any] = Field(default_factory=dict)
    features: list[dict[str, Any]] = Field(default_factory=list)
    gallery: list[str] = Field(default_factory=list)
    pricing: dict[str, Any] = Field(default_factory=dict)
    location: dict[str, Any] = Field(default_factory=dict)
    faq: list[dict[str, Any]] = Field(default_factory=list)
    image_manifest: dict[str, Any] | None = None
    seo: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)
