"""
Prospect processing orchestrator.

Drives one brochure through the whole pipeline and owns the prospect's
lifecycle status:

    uploaded → extracting → extracted → mapping → mapped → validating
             → ready → publishing → published          (failed from anywhere)

Strategy
1. Text, tables and images are extracted off the event loop
   (``asyncio.to_thread``); image classification is soft.
2. The mapper turns the extracted text into a StructuredProject; a mapper
   failure fails the run.
3. Localization and SEO run concurrently and are merged onto the mapper
   output, which is persisted as the prospect's structured data.
4. Project and mini-site are materialized.  A project failure leaves the
   prospect ``ready`` and the run still succeeds.

Every transition goes through ``advance_status``; every progress event is
delivered to the caller's callback and cached in ``ProcessingState``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from brochure import i18n
from brochure.config import settings
from brochure.errors import (
    ConfigurationError,
    InvalidTransitionError,
    MappingError,
    PipelineError,
)
from brochure.ingestion.classifier import ClassificationResult, classify_images
from brochure.ingestion.config import ingest_settings
from brochure.ingestion.figures import extract_images
from brochure.ingestion.localizer import apply_localization, generate_seo, localize_project
from brochure.ingestion.mapper import fill_missing_sections, map_to_structured_project
from brochure.ingestion.pdf_parser import extract_pdf_content
from brochure.ingestion.quality import (
    calculate_extraction_confidence,
    project_warnings,
    validate_extracted_text,
)
from brochure.ingestion.tables import extract_payment_milestones, identify_pricing_tables
from brochure.schemas import (
    ALLOWED_TRANSITIONS,
    ProcessingUpdate,
    Prospect,
    ProspectStatus,
    StructuredProject,
    utcnow,
)
from brochure.services import llm
from brochure.services.artifacts import ArtifactBuilder
from brochure.services.state import ProcessingState
from brochure.services.store import ProspectStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProcessingUpdate], Union[Awaitable[None], None]]


@dataclass
class PipelineResult:
    """Outcome of one processing run."""

    prospect_id: str
    success: bool
    data: StructuredProject | None = None
    error: str | None = None
    project_id: str | None = None
    project_slug: str | None = None
    mini_site_id: str | None = None
    mini_site_slug: str | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


# Fields restored when a reprocess run fails.
_SNAPSHOT_FIELDS = (
    "status",
    "generated_title",
    "generated_description",
    "generated_sections",
    "project_id",
    "project_slug",
    "mini_site_id",
    "mini_site_slug",
    "last_error",
)


class ProspectProcessor:
    """Runs the pipeline for prospects held in a ``ProspectStore``."""

    def __init__(
        self,
        store: ProspectStore,
        storage=None,
        state: ProcessingState | None = None,
    ):
        self.store = store
        self.storage = storage
        self.state = state or ProcessingState.create(settings.progress_ttl_seconds)
        self.artifacts = ArtifactBuilder(store)

    # ── Status ───────────────────────────────────────────────────────────

    def advance_status(
        self, prospect_id: str, status: ProspectStatus, **fields: Any
    ) -> Prospect:
        """Move the prospect to *status*; ``failed`` is reachable from anywhere."""
        prospect = self.store.get_prospect(prospect_id)
        if status != ProspectStatus.FAILED and status not in ALLOWED_TRANSITIONS[prospect.status]:
            raise InvalidTransitionError(
                f"Cannot move prospect from {prospect.status.value} to {status.value}",
                {"prospect_id": prospect_id},
            )
        return self.store.update_prospect(prospect_id, status=status, **fields)

    def get_processing_status(self, prospect_id: str) -> dict[str, Any]:
        prospect = self.store.get_prospect(prospect_id)
        sections = prospect.generated_sections or {}
        return {
            "status": prospect.status.value,
            "hasStructuredData": bool(sections),
            "hasProject": bool(prospect.project_id),
            "hasMiniSite": bool(prospect.mini_site_id),
            "confidence": sections.get("confidence"),
            "retryCount": prospect.retry_count,
            "lastError": prospect.last_error,
            "running": self.state.is_running(prospect_id),
            "progress": self.state.progress.get(prospect_id),
        }

    # ── Entry points ─────────────────────────────────────────────────────

    async def process(
        self,
        prospect_id: str,
        pdf_bytes: bytes,
        on_progress: ProgressCallback | None = None,
    ) -> PipelineResult:
        """Run the pipeline for a freshly uploaded prospect."""
        with self.state.single_flight(prospect_id):
            prospect = self.store.get_prospect(prospect_id)
            if prospect.status != ProspectStatus.UPLOADED:
                raise InvalidTransitionError(
                    f"Prospect is {prospect.status.value}; use retry or reprocess",
                    {"prospect_id": prospect_id},
                )
            return await self._run(prospect_id, pdf_bytes, on_progress)

    async def retry(
        self,
        prospect_id: str,
        pdf_bytes: bytes,
        on_progress: ProgressCallback | None = None,
    ) -> PipelineResult:
        """Re-run a failed prospect from the start of extraction."""
        with self.state.single_flight(prospect_id):
            prospect = self.store.get_prospect(prospect_id)
            if prospect.status != ProspectStatus.FAILED:
                raise InvalidTransitionError(
                    f"Only failed prospects can be retried (status {prospect.status.value})",
                    {"prospect_id": prospect_id},
                )
            self.store.update_prospect(
                prospect_id,
                status=ProspectStatus.UPLOADED,
                retry_count=prospect.retry_count + 1,
                last_error=None,
            )
            logger.info("Retrying prospect %s (attempt %d)", prospect_id, prospect.retry_count + 1)
            return await self._run(prospect_id, pdf_bytes, on_progress)

    async def reprocess(
        self,
        prospect_id: str,
        pdf_bytes: bytes,
        on_progress: ProgressCallback | None = None,
    ) -> PipelineResult:
        """Re-run a prospect in any state, restoring its previous data on failure."""
        with self.state.single_flight(prospect_id):
            prospect = self.store.get_prospect(prospect_id)
            snapshot = {name: getattr(prospect, name) for name in _SNAPSHOT_FIELDS}
            old_mini_site = (
                self.store.get_mini_site(prospect.mini_site_id) if prospect.mini_site_id else None
            )

            if old_mini_site is not None:
                self.store.delete_mini_site(old_mini_site.id)
            self.store.update_prospect(
                prospect_id,
                status=ProspectStatus.UPLOADED,
                generated_title=None,
                generated_description=None,
                generated_sections=None,
                mini_site_id=None,
                mini_site_slug=None,
                last_error=None,
            )
            logger.info("Reprocessing prospect %s (was %s)", prospect_id, snapshot["status"].value)

            try:
                result = await self._run(prospect_id, pdf_bytes, on_progress)
            except BaseException:
                self._restore(prospect_id, snapshot, old_mini_site)
                raise
            lost_artifact = (
                (snapshot["project_id"] and result.project_id is None)
                or (old_mini_site is not None and result.mini_site_id is None)
            )
            if not result.success or lost_artifact:
                self._restore(prospect_id, snapshot, old_mini_site)
                result.success = False
                result.error = result.error or "Reprocess did not republish the previous artifacts"
            return result

    def _restore(self, prospect_id: str, snapshot: dict[str, Any], mini_site) -> None:
        current = self.store.get_prospect(prospect_id)
        if current.mini_site_id and current.mini_site_id != snapshot["mini_site_id"]:
            self.store.delete_mini_site(current.mini_site_id)
        if mini_site is not None and self.store.get_mini_site(mini_site.id) is None:
            self.store.insert_mini_site(mini_site)
        failed_with = current.last_error
        self.store.update_prospect(prospect_id, **snapshot)
        logger.warning(
            "Reprocess of %s failed (%s), previous state restored", prospect_id, failed_with
        )

    # ── Progress ─────────────────────────────────────────────────────────

    async def _emit(
        self,
        on_progress: ProgressCallback | None,
        prospect_id: str,
        status: str,
        progress: int,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        update = ProcessingUpdate(
            prospect_id=prospect_id, status=status, progress=progress, message=message, data=data
        )
        self.state.progress.set(prospect_id, update.model_dump(by_alias=True))
        logger.debug("[%s] %3d%% %s: %s", prospect_id, progress, status, message)
        if on_progress is None:
            return
        outcome = on_progress(update)
        if inspect.isawaitable(outcome):
            await outcome

    # ── Pipeline ─────────────────────────────────────────────────────────

    async def _run(
        self,
        prospect_id: str,
        pdf_bytes: bytes,
        on_progress: ProgressCallback | None,
    ) -> PipelineResult:
        t0 = time.time()
        logger.info("═══ Processing prospect %s ═══", prospect_id)
        try:
            result = await self._pipeline(prospect_id, pdf_bytes, on_progress)
        except MappingError as exc:
            logger.error("Mapping failed for prospect %s: %s", prospect_id, exc)
            result = await self._fail(prospect_id, str(exc), "progress.mapping_failed", on_progress)
        except PipelineError as exc:
            logger.error("Prospect %s failed: %s", prospect_id, exc)
            result = await self._fail(prospect_id, str(exc), "progress.failed", on_progress)
        except Exception as exc:
            logger.exception("Unexpected error while processing prospect %s", prospect_id)
            result = await self._fail(
                prospect_id, str(exc) or type(exc).__name__, "progress.failed", on_progress
            )
        result.elapsed_seconds = time.time() - t0
        logger.info(
            "Prospect %s %s in %.1fs",
            prospect_id, "processed" if result.success else "failed", result.elapsed_seconds,
        )
        return result

    async def _fail(
        self,
        prospect_id: str,
        error: str,
        message_key: str,
        on_progress: ProgressCallback | None,
    ) -> PipelineResult:
        self.advance_status(
            prospect_id,
            ProspectStatus.FAILED,
            last_error=error[: ingest_settings.last_error_max_chars],
        )
        await self._emit(
            on_progress, prospect_id, ProspectStatus.FAILED.value, 100,
            i18n.t(message_key, error=error),
        )
        return PipelineResult(prospect_id=prospect_id, success=False, error=error)

    async def _pipeline(
        self,
        prospect_id: str,
        pdf_bytes: bytes,
        on_progress: ProgressCallback | None,
    ) -> PipelineResult:
        emit = self._emit
        if not llm.is_configured():
            raise ConfigurationError("LLM API key is not configured (OPENAI_API_KEY)")

        # ── 1. Extraction ────────────────────────────────────────────────
        self.advance_status(
            prospect_id, ProspectStatus.EXTRACTING, processing_checkpoint="started"
        )
        await emit(on_progress, prospect_id, "extracting", 10, i18n.t("progress.extracting"))
        content = await asyncio.to_thread(extract_pdf_content, pdf_bytes)
        warnings: list[str] = []
        text_ok, reason = validate_extracted_text(content)
        if not text_ok:
            logger.warning("Weak text layer for prospect %s: %s", prospect_id, reason)
            warnings.append(reason)
        await emit(
            on_progress, prospect_id, "extracting", 30,
            i18n.t("progress.extracted_text", pages=content.page_count, blocks=len(content.blocks)),
            {"extractionConfidence": calculate_extraction_confidence(content)},
        )

        await emit(on_progress, prospect_id, "extracting", 35, i18n.t("progress.images"))
        report = await asyncio.to_thread(extract_images, pdf_bytes, prospect_id, self.storage)
        await emit(
            on_progress, prospect_id, "extracting", 38,
            i18n.t("progress.images_done", count=len(report.images)),
            {"skipped": report.count("skipped"), "errors": report.count("error")},
        )

        classification = ClassificationResult()
        if report.images:
            await emit(on_progress, prospect_id, "extracting", 42, i18n.t("progress.classifying"))
            try:
                classification = await classify_images(report.images)
            except Exception as exc:
                logger.warning("Image classification failed, continuing without it: %s", exc)
                await emit(
                    on_progress, prospect_id, "warning", 45, i18n.t("progress.classify_failed")
                )
            else:
                manifest = classification.manifest
                await emit(
                    on_progress, prospect_id, "extracting", 48,
                    i18n.t(
                        "progress.classified",
                        count=len(classification.classified),
                        hero=bool(manifest and manifest.hero),
                    ),
                )

        self.store.update_prospect(
            prospect_id,
            extracted_text=content.text,
            extracted_tables=content.tables,
            extracted_images=report.images,
            classified_images=classification.classified,
            image_manifest=classification.manifest,
        )

        await emit(on_progress, prospect_id, "extracting", 40, i18n.t("progress.pricing"))
        pricing_tables = identify_pricing_tables(content.tables)
        milestones = extract_payment_milestones(content.tables)
        if milestones:
            logger.info("Found %d payment milestones in tables", len(milestones))
        self.advance_status(
            prospect_id, ProspectStatus.EXTRACTED, processing_checkpoint="content_extracted"
        )
        await emit(
            on_progress, prospect_id, "extracted", 50,
            i18n.t("progress.extracted", count=len(pricing_tables)),
        )

        # ── 2. Mapping ───────────────────────────────────────────────────
        self.advance_status(
            prospect_id, ProspectStatus.MAPPING, processing_checkpoint="ai_mapping_started"
        )
        await emit(on_progress, prospect_id, "mapping", 60, i18n.t("progress.mapping"))
        mapped = await map_to_structured_project(content.text, content.tables, content.metadata)
        if not mapped.success or mapped.data is None:
            raise MappingError(", ".join(mapped.errors) or "Mapper returned no project")

        project = await fill_missing_sections(mapped.data, content.text)
        self.advance_status(
            prospect_id, ProspectStatus.MAPPED, processing_checkpoint="ai_mapping_complete"
        )
        await emit(
            on_progress, prospect_id, "mapped", 75,
            i18n.t("progress.mapped", confidence=round(mapped.confidence * 100)),
        )

        # ── 3. Localization + SEO ────────────────────────────────────────
        self.advance_status(prospect_id, ProspectStatus.VALIDATING)
        await emit(on_progress, prospect_id, "validating", 80, i18n.t("progress.validating"))
        localized, seo = await asyncio.gather(localize_project(project), generate_seo(project))

        await emit(on_progress, prospect_id, "validating", 90, i18n.t("progress.merging"))
        merged = apply_localization(project, localized)
        manifest = classification.manifest
        merged.image_manifest = manifest
        merged.classified_images = classification.classified
        if manifest and manifest.hero:
            merged.hero_image = manifest.hero.url
        merged.seo = seo
        merged.source_prospect_id = prospect_id
        merged.confidence = mapped.confidence
        merged.extracted_at = utcnow()
        warnings.extend(project_warnings(merged))

        await emit(on_progress, prospect_id, "validating", 92, i18n.t("progress.saving"))
        self.advance_status(
            prospect_id,
            ProspectStatus.READY,
            generated_title=merged.name,
            generated_description=merged.description,
            generated_sections=merged.to_payload(),
            processing_checkpoint="structured_data_saved",
            processed_at=utcnow(),
        )
        result = PipelineResult(
            prospect_id=prospect_id, success=True, data=merged, warnings=warnings
        )

        # ── 4. Artifacts ─────────────────────────────────────────────────
        await self._publish(prospect_id, result, on_progress)
        return result

    async def _publish(
        self,
        prospect_id: str,
        result: PipelineResult,
        on_progress: ProgressCallback | None,
    ) -> None:
        self.advance_status(prospect_id, ProspectStatus.PUBLISHING)
        await self._emit(on_progress, prospect_id, "publishing", 93, i18n.t("progress.publishing"))
        try:
            project = self.artifacts.create_project_from_prospect(
                prospect_id, refresh=True, check_status=False
            )
        except Exception as exc:
            logger.exception("Project creation failed for prospect %s", prospect_id)
            self.advance_status(
                prospect_id,
                ProspectStatus.READY,
                last_error=str(exc)[: ingest_settings.last_error_max_chars],
            )
            await self._emit(
                on_progress, prospect_id, "ready", 100,
                i18n.t("progress.project_failed", error=str(exc)),
            )
            return
        result.project_id, result.project_slug = project.id, project.slug

        await self._emit(on_progress, prospect_id, "publishing", 97, i18n.t("progress.mini_site"))
        try:
            mini_site = self.artifacts.create_mini_site_from_prospect(
                prospect_id, check_status=False
            )
        except Exception as exc:
            logger.warning("Mini-site creation failed for prospect %s: %s", prospect_id, exc)
            message = i18n.t("progress.mini_site_failed", error=str(exc))
        else:
            result.mini_site_id, result.mini_site_slug = mini_site.id, mini_site.slug
            message = i18n.t("progress.published", slug=project.slug)

        self.advance_status(
            prospect_id, ProspectStatus.PUBLISHED, processing_checkpoint="published"
        )
        await self._emit(
            on_progress, prospect_id, "published", 100, message,
            {
                "projectSlug": result.project_slug,
                "miniSiteSlug": result.mini_site_slug,
            },
        )

