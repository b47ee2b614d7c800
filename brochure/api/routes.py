"""REST API routes for brochure prospects."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import Field

from brochure.errors import (
    ArtifactPreconditionError,
    FetchError,
    InvalidTransitionError,
    PipelineError,
    ProspectBusyError,
    ProspectNotFoundError,
)
from brochure.ingestion.pdf_parser import compute_file_hash
from brochure.ingestion.schemas import CamelModel
from brochure.schemas import ProcessingUpdate, ProspectStatus
from brochure.services import llm
from brochure.services.fetcher import fetch_pdf
from brochure.services.orchestrator import ProspectProcessor

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CreateProspectRequest(CamelModel):
    file_url: str = Field(..., min_length=1, description="Public URL of the brochure PDF.")
    file_name: str | None = None


class ProspectResponse(CamelModel):
    id: str
    file_name: str
    status: str


class AcceptedResponse(CamelModel):
    prospect_id: str
    status: str = "processing"


class ArtifactResponse(CamelModel):
    id: str
    slug: str | None = None
    created: bool


class HealthResponse(CamelModel):
    status: str
    llm_configured: bool
    storage_configured: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_STATUS_CODES: list[tuple[type[PipelineError], int]] = [
    (ProspectNotFoundError, 404),
    (ProspectBusyError, 409),
    (InvalidTransitionError, 409),
    (ArtifactPreconditionError, 400),
    (FetchError, 422),
]


def _http_error(exc: PipelineError) -> HTTPException:
    for error_cls, status_code in _STATUS_CODES:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.error("Unhandled pipeline error: %s", exc)
    return HTTPException(status_code=500, detail=str(exc))


def get_processor(request: Request) -> ProspectProcessor:
    return request.app.state.processor


async def _load_pdf(processor: ProspectProcessor, prospect_id: str) -> bytes:
    """Fetch the prospect's PDF, refusing if a run is already in flight."""
    prospect = processor.store.get_prospect(prospect_id)
    if processor.state.is_running(prospect_id):
        raise ProspectBusyError(f"Prospect {prospect_id} is already being processed")
    if not prospect.file_url:
        raise ArtifactPreconditionError("Prospect has no source file URL")
    return await fetch_pdf(prospect.file_url)


async def _run_detached(method, prospect_id: str, pdf_bytes: bytes) -> None:
    try:
        await method(prospect_id, pdf_bytes)
    except PipelineError as exc:
        logger.warning("Background run for %s did not start: %s", prospect_id, exc)


# Streamed runs the client walked away from; held until they finish.
_orphaned_runs: set[asyncio.Task] = set()


def _reap_orphan(task: asyncio.Task) -> None:
    _orphaned_runs.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Streamed run finished after the client left: %s", exc)


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check(request: Request):
    """Return service health and collaborator configuration."""
    processor: ProspectProcessor = request.app.state.processor
    storage = processor.storage
    return HealthResponse(
        status="ok",
        llm_configured=llm.is_configured(),
        storage_configured=bool(storage and storage.is_configured),
    )


@router.post("/prospects", response_model=ProspectResponse, status_code=201, tags=["prospects"])
async def create_prospect(
    body: CreateProspectRequest, processor: ProspectProcessor = Depends(get_processor)
):
    """Register a brochure by URL.  The same PDF bytes are accepted once."""
    try:
        pdf_bytes = await fetch_pdf(body.file_url)
    except PipelineError as exc:
        raise _http_error(exc) from exc

    file_hash = compute_file_hash(pdf_bytes)
    existing = processor.store.find_prospect_by_hash(file_hash)
    if existing is not None:
        raise HTTPException(
            status_code=409,
            detail={"message": "This PDF was already uploaded", "prospectId": existing.id},
        )

    file_name = body.file_name or body.file_url.rstrip("/").rsplit("/", 1)[-1] or "brochure.pdf"
    prospect = processor.store.create_prospect(
        file_name, file_url=body.file_url, file_hash=file_hash
    )
    return ProspectResponse(id=prospect.id, file_name=prospect.file_name, status=prospect.status.value)


@router.post(
    "/prospects/{prospect_id}/process",
    response_model=AcceptedResponse,
    status_code=202,
    tags=["processing"],
)
async def process_prospect(
    prospect_id: str,
    background_tasks: BackgroundTasks,
    processor: ProspectProcessor = Depends(get_processor),
):
    """Start processing in the background; poll ``/status`` for progress."""
    try:
        prospect = processor.store.get_prospect(prospect_id)
        if prospect.status != ProspectStatus.UPLOADED:
            raise InvalidTransitionError(
                f"Prospect is {prospect.status.value}; use retry or reprocess"
            )
        pdf_bytes = await _load_pdf(processor, prospect_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc

    background_tasks.add_task(_run_detached, processor.process, prospect_id, pdf_bytes)
    return AcceptedResponse(prospect_id=prospect_id)


@router.get("/prospects/{prospect_id}/process/stream", tags=["processing"])
async def stream_processing(
    prospect_id: str, processor: ProspectProcessor = Depends(get_processor)
):
    """Process the prospect and stream progress events as Server-Sent Events."""
    try:
        prospect = processor.store.get_prospect(prospect_id)
        if prospect.status != ProspectStatus.UPLOADED:
            raise InvalidTransitionError(
                f"Prospect is {prospect.status.value}; use retry or reprocess"
            )
        pdf_bytes = await _load_pdf(processor, prospect_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc

    queue: asyncio.Queue[ProcessingUpdate | None] = asyncio.Queue()

    async def run() -> dict[str, Any]:
        try:
            result = await processor.process(prospect_id, pdf_bytes, on_progress=queue.put)
        finally:
            await queue.put(None)
        return {
            "type": "complete",
            "success": result.success,
            "error": result.error,
            "projectSlug": result.project_slug,
            "miniSiteSlug": result.mini_site_slug,
        }

    async def events() -> AsyncIterator[str]:
        task = asyncio.create_task(run())
        delivered = False
        try:
            while True:
                update = await queue.get()
                if update is None:
                    break
                yield _sse(update.model_dump(by_alias=True))
            try:
                summary = await task
            except PipelineError as exc:
                summary = {"type": "error", "error": str(exc)}
            delivered = True
            yield _sse(summary)
        finally:
            if not delivered:
                # client left; the run keeps going and is reaped when done
                _orphaned_runs.add(task)
                task.add_done_callback(_reap_orphan)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post(
    "/prospects/{prospect_id}/retry",
    response_model=AcceptedResponse,
    status_code=202,
    tags=["processing"],
)
async def retry_prospect(
    prospect_id: str,
    background_tasks: BackgroundTasks,
    processor: ProspectProcessor = Depends(get_processor),
):
    """Re-run a failed prospect."""
    try:
        prospect = processor.store.get_prospect(prospect_id)
        if prospect.status != ProspectStatus.FAILED:
            raise InvalidTransitionError(
                f"Only failed prospects can be retried (status {prospect.status.value})"
            )
        pdf_bytes = await _load_pdf(processor, prospect_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc

    background_tasks.add_task(_run_detached, processor.retry, prospect_id, pdf_bytes)
    return AcceptedResponse(prospect_id=prospect_id)


@router.post(
    "/prospects/{prospect_id}/reprocess",
    response_model=AcceptedResponse,
    status_code=202,
    tags=["processing"],
)
async def reprocess_prospect(
    prospect_id: str,
    background_tasks: BackgroundTasks,
    processor: ProspectProcessor = Depends(get_processor),
):
    """Re-run a prospect in any state; its previous data is restored on failure."""
    try:
        pdf_bytes = await _load_pdf(processor, prospect_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc

    background_tasks.add_task(_run_detached, processor.reprocess, prospect_id, pdf_bytes)
    return AcceptedResponse(prospect_id=prospect_id)


@router.get("/prospects/{prospect_id}/status", tags=["processing"])
async def prospect_status(prospect_id: str, processor: ProspectProcessor = Depends(get_processor)):
    try:
        return processor.get_processing_status(prospect_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc


@router.post("/prospects/{prospect_id}/project", response_model=ArtifactResponse, tags=["artifacts"])
async def create_project(prospect_id: str, processor: ProspectProcessor = Depends(get_processor)):
    """Create (or return) the project for a ready prospect."""
    try:
        ref = processor.artifacts.create_project_from_prospect(prospect_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return ArtifactResponse(id=ref.id, slug=ref.slug, created=ref.created)


@router.post(
    "/prospects/{prospect_id}/mini-site", response_model=ArtifactResponse, tags=["artifacts"]
)
async def create_mini_site(
    prospect_id: str, processor: ProspectProcessor = Depends(get_processor)
):
    """Create (or return) the mini-site for a prospect that already has a project."""
    try:
        ref = processor.artifacts.create_mini_site_from_prospect(prospect_id)
    except PipelineError as exc:
        raise _http_error(exc) from exc
    return ArtifactResponse(id=ref.id, slug=ref.slug, created=ref.created)
