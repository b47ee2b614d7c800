"""Tests for project / mini-site projection and materialization."""

from __future__ import annotations

import pytest

from conftest import MAPPED_PROJECT, ready_prospect


def _project(**overrides):
    from brochure.schemas import StructuredProject

    return StructuredProject.model_validate({**MAPPED_PROJECT, **overrides})


class TestFormatting:
    @pytest.mark.parametrize(
        "name, slug",
        [
            ("Marina Heights", "marina-heights"),
            ("  The  Grand_Towers! ", "the-grand-towers"),
            ("Sky Villas @ Phase 2", "sky-villas-phase-2"),
            ("מגדלי הים", "project"),
        ],
    )
    def test_generate_slug(self, name, slug):
        from brochure.services.artifacts import generate_slug

        assert generate_slug(name) == slug

    def test_unit_price_rounds_half_up(self):
        from brochure.services.artifacts import format_unit_price

        assert format_unit_price(650000, "AED") == "0.7M AED"
        assert format_unit_price(1_250_000, "AED") == "1.3M AED"
        assert format_unit_price(2_000_000, "USD") == "2.0M USD"
        assert format_unit_price(None, "AED") is None

    def test_unit_size(self):
        from brochure.schemas import Unit
        from brochure.services.artifacts import format_unit_size

        assert format_unit_size(Unit(type="Studio", size_from=400, size_to=450.0)) == "400-450 sqft"
        assert format_unit_size(Unit(type="1BR", size_from=70, size_unit="sqm")) == "70 sqm"
        assert format_unit_size(Unit(type="2BR")) is None

    @pytest.mark.parametrize(
        "name, icon",
        [
            ("Infinity Pool", "Waves"),
            ("Fitness Center", "Dumbbell"),
            ("Kids Play Area", "Baby"),
            ("Business Centre", "Briefcase"),
            ("Helipad", "Building2"),
        ],
    )
    def test_amenity_icons(self, name, icon):
        from brochure.services.artifacts import map_amenity_to_icon

        assert map_amenity_to_icon(name) == icon

    def test_highlight_icons(self):
        from brochure.services.artifacts import map_highlight_to_icon

        assert map_highlight_to_icon("Expected ROI") == "TrendingUp"
        assert map_highlight_to_icon("Handover Q4 2026") == "Calendar"
        assert map_highlight_to_icon("Iconic design") == "Award"

    def test_amenities_grouped_in_display_order(self):
        from brochure.schemas import Amenity
        from brochure.services.artifacts import group_amenities_by_category

        groups = group_amenities_by_category(
            [
                Amenity(name="Concierge", category="other"),
                Amenity(name="Pool", category="leisure"),
                Amenity(name="Spa", category="wellness", name_localized="ספא"),
            ]
        )
        assert [g["categoryKey"] for g in groups] == ["wellness", "leisure", "other"]
        assert groups[0]["items"][0] == {
            "icon": "Sparkles", "name": "ספא", "nameEn": "Spa", "subcategory": None,
        }

    def test_payment_plan_summary_only(self):
        from brochure.schemas import PaymentPlan
        from brochure.services.artifacts import format_payment_plan

        plan = PaymentPlan.model_validate(
            {"downPayment": 20, "duringConstruction": 40, "onHandover": 40,
             "milestones": [{"percentage": 10, "description": "1st instalment"}]}
        )
        milestones = format_payment_plan(plan)
        assert [m["percentage"] for m in milestones] == [20, 40, 40]

    def test_payment_plan_custom_milestones(self):
        from brochure.schemas import PaymentPlan
        from brochure.services.artifacts import format_payment_plan

        plan = PaymentPlan.model_validate(
            {"milestones": [{"percentage": 30, "description": "Booking", "timing": "Day 1"},
                            {"percentage": 70, "description": "Handover"}]}
        )
        assert format_payment_plan(plan) == [
            {"milestone": "Booking", "percentage": 30, "description": "Day 1"},
            {"milestone": "Handover", "percentage": 70, "description": ""},
        ]
        assert format_payment_plan(None) == []

    def test_gallery_by_area_then_ai_deduped(self):
        from brochure.ingestion.schemas import ExtractedImage
        from brochure.services.artifacts import build_gallery

        small = ExtractedImage(page=1, url="https://cdn/s.jpg", width=300, height=200)
        large = ExtractedImage(page=2, url="https://cdn/l.jpg", width=1200, height=800)
        project = _project(gallery=["https://cdn/l.jpg", "https://cdn/ai.jpg"])
        gallery = build_gallery([small, large], project)
        assert [g["url"] for g in gallery] == [
            "https://cdn/l.jpg", "https://cdn/s.jpg", "https://cdn/ai.jpg",
        ]
        assert all(g["type"] == "image" for g in gallery)

    def test_roi_from_highlights(self):
        from brochure.services.artifacts import roi_from_highlights

        assert roi_from_highlights(_project(highlights=[{"title": "Expected ROI", "value": "8.5%"}])) == 8.5
        assert roi_from_highlights(_project(roiPercent=7)) == 7
        assert roi_from_highlights(_project(highlights=[])) is None


class TestBuilder:
    def test_project_creation_and_idempotency(self, store):
        from brochure.services.artifacts import ArtifactBuilder

        prospect = ready_prospect(store)
        builder = ArtifactBuilder(store)

        first = builder.create_project_from_prospect(prospect.id)
        again = builder.create_project_from_prospect(prospect.id)

        assert first.created and not again.created
        assert (again.id, again.slug) == (first.id, "marina-heights")
        project = store.get_project(first.id)
        assert project.name == "מרינה הייטס"
        assert project.name_en == "Marina Heights"
        assert project.location == "Dubai Marina"
        assert project.bedrooms == "Studio, 1BR"
        assert project.roi_percent == 8
        assert project.neighborhood["nearbyPlaces"][0]["type"] == "beach"
        assert store.get_prospect(prospect.id).project_slug == "marina-heights"

    def test_refresh_rewrites_in_place(self, store):
        from brochure.services.artifacts import ArtifactBuilder

        prospect = ready_prospect(store)
        builder = ArtifactBuilder(store)
        ref = builder.create_project_from_prospect(prospect.id)
        store.update_prospect(
            prospect.id, generated_sections=_project(priceFrom=700000).to_payload()
        )

        refreshed = builder.create_project_from_prospect(prospect.id, refresh=True)
        assert (refreshed.id, refreshed.slug, refreshed.created) == (ref.id, ref.slug, False)
        assert store.get_project(ref.id).price_from == 700000

    def test_duplicate_name_gets_suffix(self, store):
        from brochure.services.artifacts import ArtifactBuilder

        builder = ArtifactBuilder(store)
        slugs = [
            builder.create_project_from_prospect(ready_prospect(store, name=f"{i}.pdf").id).slug
            for i in range(3)
        ]
        assert slugs == ["marina-heights", "marina-heights-2", "marina-heights-3"]

    def test_slug_namespaces_are_separate(self, store):
        from brochure.services.artifacts import ArtifactBuilder

        prospect = ready_prospect(store)
        builder = ArtifactBuilder(store)
        builder.create_project_from_prospect(prospect.id)
        assert builder.ensure_unique_slug("marina-heights", "project") == "marina-heights-2"
        assert builder.ensure_unique_slug("marina-heights", "mini_site") == "marina-heights"

    def test_requires_ready_prospect(self, store):
        from brochure.errors import ArtifactPreconditionError, ProspectNotFoundError
        from brochure.services.artifacts import ArtifactBuilder

        builder = ArtifactBuilder(store)
        fresh = store.create_prospect("new.pdf")
        with pytest.raises(ArtifactPreconditionError):
            builder.create_project_from_prospect(fresh.id)
        with pytest.raises(ProspectNotFoundError):
            builder.create_project_from_prospect("missing")

    def test_mini_site_requires_project(self, store):
        from brochure.errors import ArtifactPreconditionError
        from brochure.services.artifacts import ArtifactBuilder

        prospect = ready_prospect(store)
        with pytest.raises(ArtifactPreconditionError):
            ArtifactBuilder(store).create_mini_site_from_prospect(prospect.id)

    def test_mini_site_idempotent(self, store):
        from brochure.services.artifacts import ArtifactBuilder

        prospect = ready_prospect(store)
        builder = ArtifactBuilder(store)
        project = builder.create_project_from_prospect(prospect.id)

        first = builder.create_mini_site_from_prospect(prospect.id)
        second = builder.create_mini_site_from_prospect(prospect.id)

        assert first.created and not second.created
        assert (second.id, second.slug) == (first.id, first.slug)
        assert store.count_mini_sites(prospect.id) == 1

        site = store.get_mini_site(first.id)
        assert site.project_id == project.id
        assert site.status == "draft"
        assert site.hero["title"] == "מרינה הייטס"
        assert site.hero["subtitle"] == "Waterfront living"
        assert [f["icon"] for f in site.features] == ["Waves", "Dumbbell"]
        assert site.pricing["items"][0]["price"].endswith("650,000 AED")
        assert site.pricing["items"][0]["details"] == "400-450 sqft"
        assert site.location["address"] == "Dubai Marina, Dubai"


class TestScenarioPricing:
    def test_studio_price_and_three_milestones(self, store):
        from brochure.services.artifacts import ArtifactBuilder

        prospect = ready_prospect(
            store,
            {
                "name": "Creek Vista",
                "location": {"area": "Dubai Creek Harbour"},
                "units": [{"type": "Studio", "priceFrom": 650000},
                          {"type": "1BR", "priceFrom": 900000}],
                "paymentPlan": {"downPayment": 20, "duringConstruction": 40, "onHandover": 40},
            },
        )
        ref = ArtifactBuilder(store).create_project_from_prospect(prospect.id)
        project = store.get_project(ref.id)

        studio = next(u for u in project.units if u["type"] == "Studio")
        assert studio["price"] == "0.7M AED"
        assert len(project.payment_plan) == 3
        assert sum(m["percentage"] for m in project.payment_plan) == 100
