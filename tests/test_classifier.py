"""Tests for vision classification and the image manifest."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, patch

from conftest import build_pdf


def _image(page=1, url=None, **kwargs):
    from brochure.ingestion.schemas import ClassifiedImage

    return ClassifiedImage(
        page=page, url=url or f"https://cdn.example.com/p{page}.jpg", width=800, height=600,
        **kwargs,
    )


class TestParseClassification:
    def test_valid_fenced_response(self):
        from brochure.ingestion.classifier import parse_classification
        from brochure.ingestion.schemas import ExtractedImage, ImageCategory, ImageQuality

        raw = "```json\n" + json.dumps({
            "category": "amenity_pool", "subcategory": "rooftop", "role": "gallery",
            "quality": "high", "description": "Rooftop pool", "descriptionLocalized": "בריכה",
            "alt": "Pool", "confidence": 0.9, "sectionScore": 0.8, "isHeroCandidate": False,
        }) + "\n```"
        image = ExtractedImage(page=2, url="data:image/jpeg;base64,AA==", width=400, height=300)
        result = parse_classification(raw, image)

        assert result.category == ImageCategory.AMENITY_POOL
        assert result.quality == ImageQuality.HIGH
        assert result.subcategory == "rooftop"
        assert result.description_localized == "בריכה"
        assert (result.page, result.width) == (2, 400)

    def test_invalid_fields_fall_back(self):
        from brochure.ingestion.classifier import parse_classification
        from brochure.ingestion.schemas import ExtractedImage, ImageCategory, ImageRole

        raw = json.dumps({"category": "spaceship", "role": 7, "confidence": 4.2,
                          "sectionScore": "high", "isHeroCandidate": "yes"})
        image = ExtractedImage(page=5, url="u", width=400, height=300)
        result = parse_classification(raw, image)

        assert result.category == ImageCategory.UNKNOWN
        assert result.role == ImageRole.GALLERY
        assert result.confidence == 1.0
        assert result.section_score == 0.5
        assert result.is_hero_candidate is False
        assert result.alt == "Image from page 5"

    def test_garbage_gives_default(self):
        from brochure.ingestion.classifier import parse_classification
        from brochure.ingestion.schemas import ExtractedImage

        image = ExtractedImage(page=1, url="u", width=400, height=300)
        result = parse_classification("I cannot see the image", image)
        assert result.description == "Image from brochure"
        assert result.confidence == 0.0


class TestClassifyImages:
    def test_failures_never_abort_batch(self, monkeypatch):
        from brochure.errors import LLMError
        from brochure.ingestion.classifier import classify_images
        from brochure.ingestion.config import ingest_settings
        from brochure.ingestion.schemas import ExtractedImage, ImageCategory

        monkeypatch.setattr(ingest_settings, "classify_batch_delay", 0.0)
        images = [
            ExtractedImage(page=i, url="data:image/jpeg;base64,AA==", width=400, height=300)
            for i in range(1, 8)
        ]
        with patch(
            "brochure.services.llm.generate_json",
            new=AsyncMock(side_effect=LLMError("rate limited")),
        ) as mocked:
            result = asyncio.run(classify_images(images))

        assert mocked.await_count == 7
        assert len(result.classified) == 7
        assert len(result.failures) == 7
        assert all(c.category == ImageCategory.UNKNOWN for c in result.classified)
        assert result.manifest.hero is None

    def test_batches_pause_between(self, fake_llm, monkeypatch):
        from brochure.ingestion import classifier
        from brochure.ingestion.config import ingest_settings
        from brochure.ingestion.schemas import ExtractedImage

        monkeypatch.setattr(ingest_settings, "classify_batch_delay", 0.25)
        sleep = AsyncMock()
        monkeypatch.setattr(classifier.asyncio, "sleep", sleep)
        images = [
            ExtractedImage(page=i, url="data:image/jpeg;base64,AA==", width=400, height=300)
            for i in range(1, 12)
        ]
        asyncio.run(classifier.classify_images(images))
        # 11 images in batches of 5 → two pauses
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.25)


class TestManifest:
    def test_hero_excluded_everywhere(self):
        from brochure.ingestion.classifier import build_image_manifest
        from brochure.ingestion.schemas import ImageCategory, ImageQuality

        hero = _image(1, category=ImageCategory.EXTERIOR, quality=ImageQuality.HIGH,
                      is_hero_candidate=True, confidence=0.9, section_score=0.9)
        duplicate = _image(1, url=hero.url, category=ImageCategory.EXTERIOR)
        other = _image(2, category=ImageCategory.EXTERIOR, confidence=0.7)
        manifest = build_image_manifest([hero, duplicate, other])

        assert manifest.hero.url == hero.url
        assert hero.url not in [img.url for img in manifest.all_bucketed()]
        assert [img.url for img in manifest.exterior] == [other.url]
        assert [img.url for img in manifest.gallery] == [other.url]

    def test_hero_fallback_to_best_exterior(self):
        from brochure.ingestion.classifier import build_image_manifest
        from brochure.ingestion.schemas import ImageCategory

        low = _image(1, category=ImageCategory.EXTERIOR, confidence=0.4)
        best = _image(2, category=ImageCategory.EXTERIOR, confidence=0.8)
        manifest = build_image_manifest([low, best, _image(3, category=ImageCategory.LIFESTYLE)])
        assert manifest.hero.url == best.url

    def test_buckets_and_gallery_order(self):
        from brochure.ingestion.classifier import build_image_manifest, get_images_for_section
        from brochure.ingestion.schemas import ImageCategory, ImageQuality

        pool = _image(1, category=ImageCategory.AMENITY_POOL, subcategory="rooftop",
                      quality=ImageQuality.HIGH, confidence=0.9)
        gym = _image(2, category=ImageCategory.AMENITY_GYM, confidence=0.9)
        plan = _image(3, category=ImageCategory.FLOOR_PLAN, confidence=1.0)
        logo = _image(4, category=ImageCategory.BRANDING, confidence=1.0)
        kitchen = _image(5, category=ImageCategory.INTERIOR_KITCHEN,
                         quality=ImageQuality.LOW, confidence=0.9)
        manifest = build_image_manifest([pool, gym, plan, logo, kitchen])

        assert manifest.amenities.rooftop == [pool]
        assert manifest.amenities.podium == [gym]
        assert manifest.interior.kitchen == [kitchen]
        assert manifest.floor_plans == [plan]
        assert manifest.branding == [logo]
        # floor plans and branding stay out; quality × confidence descending
        assert [img.page for img in manifest.gallery] == [1, 2, 5]
        assert get_images_for_section(manifest, "amenities", count=1) == [pool]


class TestScenarioGallery:
    def test_ten_page_brochure_gallery_of_eight(self, fake_llm):
        from brochure.ingestion.classifier import classify_images
        from brochure.ingestion.figures import extract_images

        pages = [f"Page {n}" for n in range(1, 11)]
        images = {i: [(400, 300)] for i in range(9)}  # hero render + 8 photos, text-only back page
        report = extract_images(build_pdf(pages, images=images), "prospect-a")
        assert len(report.images) == 9

        result = asyncio.run(classify_images(report.images))
        manifest = result.manifest

        assert manifest.hero is not None
        assert manifest.hero.page == 1
        assert len(manifest.gallery) == 8
        assert manifest.hero.url not in [img.url for img in manifest.gallery]
        assert fake_llm.count("classify") == 9
