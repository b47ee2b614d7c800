"""Application entry-point – creates the FastAPI app and wires its collaborators."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from brochure.api.routes import router
from brochure.config import settings
from brochure.services import llm
from brochure.services.orchestrator import ProspectProcessor
from brochure.services.state import ProcessingState
from brochure.services.storage import BlobStorage
from brochure.services.store import ProspectStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: open the store and build the processor; nothing is global."""
    logger.info("=== Starting brochure pipeline ===")

    store = ProspectStore(settings.sqlite_path)
    storage = BlobStorage()
    state = ProcessingState.create(settings.progress_ttl_seconds)
    app.state.processor = ProspectProcessor(store, storage, state)

    if not llm.is_configured():
        logger.warning("OPENAI_API_KEY is not set – processing requests will fail.")
    if not storage.is_configured:
        logger.warning("Blob storage is not configured – images will be kept as data URLs.")

    logger.info("SQLite store: %s", settings.sqlite_path)
    logger.info("=== Startup complete ===")
    yield
    logger.info("Shutting down (%d progress entries cached).", len(state.progress))


app = FastAPI(
    title="Brochure Prospect Pipeline",
    description=(
        "Turns real-estate brochure PDFs into structured, localized project "
        "records and publishable project pages and mini-sites."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router, prefix="/api")
