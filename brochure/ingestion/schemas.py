"""
Pydantic models for every artifact that flows through the extraction stages.

  - ExtractedBlock   – header / text / table line groups, page-stable
  - ExtractedTable   – header row + data rows (heuristic or ruled)
  - ExtractedImage   – uploaded raster image with its public URL
  - ClassifiedImage  – ExtractedImage + vision-model classification
  - ImageManifest    – section-oriented index over classified images

All models serialise with camelCase keys (``model_dump(by_alias=True)``)
so persisted payloads keep the wire shape the front-end expects.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Enums ────────────────────────────────────────────────────────────────

class BlockType(str, Enum):
    HEADER = "header"
    TEXT = "text"
    TABLE = "table"


class ImageCategory(str, Enum):
    HERO = "hero"
    EXTERIOR = "exterior"
    INTERIOR_LIVING = "interior_living"
    INTERIOR_BEDROOM = "interior_bedroom"
    INTERIOR_KITCHEN = "interior_kitchen"
    INTERIOR_BATHROOM = "interior_bathroom"
    AMENITY_POOL = "amenity_pool"
    AMENITY_GYM = "amenity_gym"
    AMENITY_KIDS = "amenity_kids"
    AMENITY_ROOFTOP = "amenity_rooftop"
    AMENITY_GARDEN = "amenity_garden"
    AMENITY_LOBBY = "amenity_lobby"
    AMENITY_OTHER = "amenity_other"
    FLOOR_PLAN = "floor_plan"
    LOCATION_MAP = "location_map"
    LIFESTYLE = "lifestyle"
    BRANDING = "branding"
    UNKNOWN = "unknown"


class ImageRole(str, Enum):
    HERO = "hero"
    GALLERY = "gallery"
    BACKGROUND = "background"
    TECHNICAL = "technical"


class ImageQuality(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ── Text extraction ──────────────────────────────────────────────────────

class ExtractedBlock(CamelModel):
    type: BlockType
    content: str
    page: int = Field(..., ge=1)


class ExtractedTable(CamelModel):
    page: int = Field(..., ge=1)
    headers: list[str] = Field(default_factory=list)
    rows: list[list[str]] = Field(default_factory=list)
    source: str = "heuristic"  # "heuristic" | "ruled"


# ── Images ───────────────────────────────────────────────────────────────

class ExtractedImage(CamelModel):
    page: int
    url: str
    width: int
    height: int
    format: str = "jpeg"

    @property
    def area(self) -> int:
        return self.width * self.height


class ClassifiedImage(ExtractedImage):
    category: ImageCategory = ImageCategory.UNKNOWN
    subcategory: str | None = None
    role: ImageRole = ImageRole.GALLERY
    quality: ImageQuality = ImageQuality.MEDIUM
    description: str = "Image from brochure"
    description_localized: str | None = None
    alt: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    section_score: float = Field(0.0, ge=0.0, le=1.0)
    is_hero_candidate: bool = False


class InteriorImages(CamelModel):
    living: list[ClassifiedImage] = Field(default_factory=list)
    bedroom: list[ClassifiedImage] = Field(default_factory=list)
    kitchen: list[ClassifiedImage] = Field(default_factory=list)
    bathroom: list[ClassifiedImage] = Field(default_factory=list)


class AmenityImages(CamelModel):
    podium: list[ClassifiedImage] = Field(default_factory=list)
    rooftop: list[ClassifiedImage] = Field(default_factory=list)
    special: list[ClassifiedImage] = Field(default_factory=list)


class ImageManifest(CamelModel):
    """Section-oriented index; the hero URL never appears in another list."""

    hero: ClassifiedImage | None = None
    exterior: list[ClassifiedImage] = Field(default_factory=list)
    interior: InteriorImages = Field(default_factory=InteriorImages)
    amenities: AmenityImages = Field(default_factory=AmenityImages)
    floor_plans: list[ClassifiedImage] = Field(default_factory=list)
    location_maps: list[ClassifiedImage] = Field(default_factory=list)
    lifestyle: list[ClassifiedImage] = Field(default_factory=list)
    branding: list[ClassifiedImage] = Field(default_factory=list)
    gallery: list[ClassifiedImage] = Field(default_factory=list)

    def all_bucketed(self) -> list[ClassifiedImage]:
        """Every image in a non-hero list (gallery included)."""
        return [
            *self.exterior,
            *self.interior.living,
            *self.interior.bedroom,
            *self.interior.kitchen,
            *self.interior.bathroom,
            *self.amenities.podium,
            *self.amenities.rooftop,
            *self.amenities.special,
            *self.floor_plans,
            *self.location_maps,
            *self.lifestyle,
            *self.branding,
            *self.gallery,
        ]
