"""End-to-end orchestrator runs against a generated PDF and the fake LLM."""

from __future__ import annotations

import asyncio
import json

import pytest

from conftest import ready_prospect


def _run(coro):
    return asyncio.run(coro)


class TestFullRun:
    def test_process_publishes_project_and_mini_site(self, fake_llm, processor, store, brochure_pdf):
        from brochure.schemas import ProspectStatus

        prospect = store.create_prospect("brochure.pdf")
        updates = []

        result = _run(processor.process(prospect.id, brochure_pdf, updates.append))

        assert result.success, result.error
        assert result.project_slug == "marina-heights"
        assert result.mini_site_slug == "marina-heights"
        saved = store.get_prospect(prospect.id)
        assert saved.status == ProspectStatus.PUBLISHED
        assert saved.project_id == result.project_id
        assert saved.mini_site_id == result.mini_site_id
        assert saved.processed_at is not None
        assert len(saved.extracted_images) == 2
        assert saved.image_manifest.hero.page == 1

        sections = saved.generated_sections
        assert sections["confidence"] == 1.0
        assert sections["seo"]["title"] == "Marina Heights | Dubai Marina"
        assert sections["amenities"][0]["nameLocalized"] == "he:Infinity Pool"
        assert sections["sourceProspectId"] == prospect.id

        assert updates[0].progress == 10
        assert updates[-1].status == "published"
        assert updates[-1].progress == 100
        assert updates[-1].data == {"projectSlug": "marina-heights", "miniSiteSlug": "marina-heights"}
        statuses = [u.status for u in updates]
        assert statuses.index("mapping") < statuses.index("validating") < statuses.index("publishing")

        assert fake_llm.count("classify") == 2
        assert fake_llm.count("map") == 1

    def test_async_callback_is_awaited(self, fake_llm, processor, store, brochure_pdf):
        prospect = store.create_prospect("brochure.pdf")
        seen = []

        async def on_progress(update):
            seen.append(update.progress)

        _run(processor.process(prospect.id, brochure_pdf, on_progress))
        assert seen[-1] == 100

    def test_latest_progress_is_cached(self, fake_llm, processor, store, brochure_pdf):
        prospect = store.create_prospect("brochure.pdf")
        _run(processor.process(prospect.id, brochure_pdf))

        status = processor.get_processing_status(prospect.id)
        assert status["status"] == "published"
        assert status["hasStructuredData"] and status["hasProject"] and status["hasMiniSite"]
        assert status["running"] is False
        assert status["progress"]["status"] == "published"
        assert status["progress"]["prospectId"] == prospect.id

    def test_classification_failure_is_soft(self, fake_llm, processor, store, brochure_pdf, monkeypatch):
        from brochure.services import orchestrator

        async def boom(images):
            raise RuntimeError("vision offline")

        monkeypatch.setattr(orchestrator, "classify_images", boom)
        prospect = store.create_prospect("brochure.pdf")
        updates = []

        result = _run(processor.process(prospect.id, brochure_pdf, updates.append))

        assert result.success
        assert any(u.status == "warning" and u.progress == 45 for u in updates)
        saved = store.get_prospect(prospect.id)
        assert saved.classified_images == []
        assert saved.image_manifest.hero is None


class TestFailures:
    def test_missing_api_key_fails_then_retry_succeeds(
        self, fake_llm, processor, store, brochure_pdf, monkeypatch
    ):
        from brochure.config import settings
        from brochure.schemas import ProspectStatus

        prospect = store.create_prospect("brochure.pdf")
        monkeypatch.setattr(settings, "openai_api_key", "")

        failed = _run(processor.process(prospect.id, brochure_pdf))
        assert not failed.success
        saved = store.get_prospect(prospect.id)
        assert saved.status == ProspectStatus.FAILED
        assert "OPENAI_API_KEY" in saved.last_error

        monkeypatch.setattr(settings, "openai_api_key", "test-key")
        retried = _run(processor.retry(prospect.id, brochure_pdf))
        assert retried.success
        saved = store.get_prospect(prospect.id)
        assert saved.status == ProspectStatus.PUBLISHED
        assert saved.retry_count == 1
        assert saved.last_error is None

    def test_mapper_failure_fails_run(self, fake_llm, processor, store, brochure_pdf):
        from brochure import i18n
        from brochure.schemas import ProspectStatus

        fake_llm.responses["map"] = "not json"
        prospect = store.create_prospect("brochure.pdf")
        updates = []

        result = _run(processor.process(prospect.id, brochure_pdf, updates.append))

        assert not result.success
        saved = store.get_prospect(prospect.id)
        assert saved.status == ProspectStatus.FAILED
        assert saved.last_error.startswith("Invalid JSON")
        assert saved.generated_sections is None
        assert saved.project_id is None
        assert updates[-1].status == "failed"
        assert updates[-1].message == i18n.t("progress.mapping_failed", error=saved.last_error)
        assert fake_llm.count("translate") == 0

    def test_corrupt_pdf_fails_run(self, fake_llm, processor, store):
        from brochure.schemas import ProspectStatus

        prospect = store.create_prospect("broken.pdf")
        result = _run(processor.process(prospect.id, b"%PDF-1.4 this is not really a pdf"))

        assert not result.success
        assert store.get_prospect(prospect.id).status == ProspectStatus.FAILED

    def test_project_failure_leaves_prospect_ready(
        self, fake_llm, processor, store, brochure_pdf, monkeypatch
    ):
        from brochure.schemas import ProspectStatus

        def refuse(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(processor.artifacts, "create_project_from_prospect", refuse)
        prospect = store.create_prospect("brochure.pdf")
        updates = []

        result = _run(processor.process(prospect.id, brochure_pdf, updates.append))

        assert result.success
        assert result.project_id is None
        saved = store.get_prospect(prospect.id)
        assert saved.status == ProspectStatus.READY
        assert saved.generated_sections is not None
        assert "database is locked" in saved.last_error
        assert (updates[-1].status, updates[-1].progress) == ("ready", 100)

    def test_mini_site_failure_still_publishes(
        self, fake_llm, processor, store, brochure_pdf, monkeypatch
    ):
        from brochure.schemas import ProspectStatus

        def refuse(*args, **kwargs):
            raise RuntimeError("template missing")

        monkeypatch.setattr(processor.artifacts, "create_mini_site_from_prospect", refuse)
        prospect = store.create_prospect("brochure.pdf")

        result = _run(processor.process(prospect.id, brochure_pdf))

        assert result.success
        assert result.project_slug == "marina-heights"
        assert result.mini_site_id is None
        assert store.get_prospect(prospect.id).status == ProspectStatus.PUBLISHED


class TestReprocess:
    def test_failed_reprocess_restores_previous_state(self, fake_llm, processor, store, brochure_pdf):
        from brochure.schemas import ProspectStatus

        prospect = store.create_prospect("brochure.pdf")
        first = _run(processor.process(prospect.id, brochure_pdf))
        before = store.get_prospect(prospect.id)

        fake_llm.responses["map"] = "not json"
        again = _run(processor.reprocess(prospect.id, brochure_pdf))

        assert not again.success
        after = store.get_prospect(prospect.id)
        assert after.status == ProspectStatus.PUBLISHED
        assert after.generated_sections == before.generated_sections
        assert after.mini_site_id == first.mini_site_id
        assert store.get_mini_site(first.mini_site_id) is not None
        assert store.count_mini_sites(prospect.id) == 1

    def test_project_failure_during_reprocess_restores(
        self, fake_llm, processor, store, brochure_pdf, monkeypatch
    ):
        from brochure.schemas import ProspectStatus

        prospect = store.create_prospect("brochure.pdf")
        first = _run(processor.process(prospect.id, brochure_pdf))

        def refuse(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(processor.artifacts, "create_project_from_prospect", refuse)
        again = _run(processor.reprocess(prospect.id, brochure_pdf))

        assert not again.success
        after = store.get_prospect(prospect.id)
        assert after.status == ProspectStatus.PUBLISHED
        assert after.mini_site_id == first.mini_site_id
        assert store.get_mini_site(first.mini_site_id) is not None
        assert store.count_mini_sites(prospect.id) == 1

    def test_mini_site_failure_during_reprocess_restores(
        self, fake_llm, processor, store, brochure_pdf, monkeypatch
    ):
        from brochure.schemas import ProspectStatus

        prospect = store.create_prospect("brochure.pdf")
        first = _run(processor.process(prospect.id, brochure_pdf))

        def refuse(*args, **kwargs):
            raise RuntimeError("template missing")

        monkeypatch.setattr(processor.artifacts, "create_mini_site_from_prospect", refuse)
        again = _run(processor.reprocess(prospect.id, brochure_pdf))

        assert not again.success
        after = store.get_prospect(prospect.id)
        assert after.status == ProspectStatus.PUBLISHED
        assert (after.mini_site_id, after.mini_site_slug) == (first.mini_site_id, first.mini_site_slug)
        assert store.count_mini_sites(prospect.id) == 1

    def test_successful_reprocess_keeps_project(self, fake_llm, processor, store, brochure_pdf):
        prospect = store.create_prospect("brochure.pdf")
        first = _run(processor.process(prospect.id, brochure_pdf))

        mapped = json.loads(fake_llm.responses["map"])
        mapped["priceFrom"] = 700000
        fake_llm.responses["map"] = json.dumps(mapped)
        again = _run(processor.reprocess(prospect.id, brochure_pdf))

        assert again.success
        assert (again.project_id, again.project_slug) == (first.project_id, first.project_slug)
        assert store.get_project(first.project_id).price_from == 700000
        assert again.mini_site_id != first.mini_site_id
        assert store.get_mini_site(first.mini_site_id) is None
        assert store.count_mini_sites(prospect.id) == 1


class TestGuards:
    def test_second_run_is_rejected_while_in_flight(self, processor, store, brochure_pdf):
        from brochure.errors import ProspectBusyError

        prospect = store.create_prospect("brochure.pdf")
        processor.state.in_flight.add(prospect.id)
        with pytest.raises(ProspectBusyError):
            _run(processor.process(prospect.id, brochure_pdf))

    def test_process_requires_uploaded(self, processor, store, brochure_pdf):
        from brochure.errors import InvalidTransitionError

        prospect = ready_prospect(store)
        with pytest.raises(InvalidTransitionError):
            _run(processor.process(prospect.id, brochure_pdf))
        assert not processor.state.is_running(prospect.id)

    def test_retry_requires_failed(self, processor, store, brochure_pdf):
        from brochure.errors import InvalidTransitionError

        prospect = store.create_prospect("brochure.pdf")
        with pytest.raises(InvalidTransitionError):
            _run(processor.retry(prospect.id, brochure_pdf))

    def test_advance_status_enforces_edges(self, processor, store):
        from brochure.errors import InvalidTransitionError
        from brochure.schemas import ProspectStatus

        prospect = store.create_prospect("brochure.pdf")
        with pytest.raises(InvalidTransitionError):
            processor.advance_status(prospect.id, ProspectStatus.READY)

        moved = processor.advance_status(prospect.id, ProspectStatus.EXTRACTING)
        assert moved.status == ProspectStatus.EXTRACTING
        failed = processor.advance_status(prospect.id, ProspectStatus.FAILED, last_error="x")
        assert (failed.status, failed.last_error) == (ProspectStatus.FAILED, "x")

    def test_status_of_unknown_prospect(self, processor):
        from brochure.errors import ProspectNotFoundError

        with pytest.raises(ProspectNotFoundError):
            processor.get_processing_status("nope")
