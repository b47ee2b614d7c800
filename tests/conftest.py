"""Shared fixtures: generated brochure PDFs, a routed fake LLM and a temp store."""

from __future__ import annotations

import io
import json
import re

import fitz
import pytest
from PIL import Image


def png_bytes(width: int, height: int, color=(30, 90, 160)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def build_pdf(pages: list[str], images: dict[int, list[tuple[int, int]]] | None = None,
              title: str | None = None) -> bytes:
    """One page per text entry; ``images`` maps 0-based page → [(w, h), …]."""
    doc = fitz.open()
    images = images or {}
    shade = 0
    for idx, text in enumerate(pages):
        page = doc.new_page()
        page.insert_text((72, 72), text, fontsize=11)
        for k, (w, h) in enumerate(images.get(idx, [])):
            shade += 1
            rect = fitz.Rect(72, 200 + k * 160, 72 + w / 2, 200 + k * 160 + h / 2)
            page.insert_image(rect, stream=png_bytes(w, h, (shade * 7 % 255, 80, 120)))
    if title:
        doc.set_metadata({"title": title})
    data = doc.tobytes()
    doc.close()
    return data


BROCHURE_TEXT = (
    "MARINA HEIGHTS\n"
    "Luxury waterfront living by Emaar Properties in Dubai Marina.\n"
    "Studio apartments from AED 650,000 and one bedroom homes from AED 900,000.\n"
    "Payment plan: 20% on booking, 40% during construction, 40% on handover.\n"
    "Completion expected in Q4 2026 with infinity pool, gym and kids play area."
)


MAPPED_PROJECT = {
    "name": "Marina Heights",
    "nameLocalized": "מרינה הייטס",
    "tagline": "Waterfront living",
    "description": "Luxury waterfront towers in Dubai Marina.",
    "developer": {"name": "Emaar Properties"},
    "location": {
        "area": "Dubai Marina",
        "city": "Dubai",
        "nearbyLandmarks": [{"name": "JBR Beach", "distance": "5 min", "type": "beach"}],
    },
    "priceFrom": 650000,
    "priceCurrency": "AED",
    "completionDate": "Q4 2026",
    "units": [
        {"type": "Studio", "priceFrom": 650000, "sizeFrom": 400, "sizeTo": 450},
        {"type": "1BR", "priceFrom": 900000},
    ],
    "paymentPlan": {"downPayment": 20, "duringConstruction": 40, "onHandover": 40},
    "amenities": [
        {"name": "Infinity Pool", "category": "leisure"},
        {"name": "Gym", "category": "wellness"},
    ],
    "highlights": [{"title": "Expected ROI", "value": "8%"}],
    "faq": [{"question": "When is handover?", "answer": "Q4 2026"}],
}


class FakeLLM:
    """Routes ``generate_json`` calls by the first words of the system prompt."""

    ROUTES = {
        "You are an expert real-estate image classifier": "classify",
        "You are a real-estate data extraction specialist": "map",
        "Extract every unit type": "units",
        "Extract the payment plan": "payment_plan",
        "You are a professional real-estate translator": "translate",
        "You are an SEO specialist": "seo",
    }

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.responses = {
            "classify": self._classify_default,
            "map": json.dumps(MAPPED_PROJECT),
            "units": "{}",
            "payment_plan": "{}",
            "translate": self._translate_default,
            "seo": json.dumps(
                {"title": "Marina Heights | Dubai Marina", "description": "Waterfront towers.",
                 "keywords": ["dubai marina", "off-plan"]}
            ),
        }

    def route(self, system_prompt: str) -> str:
        for prefix, name in self.ROUTES.items():
            if system_prompt.startswith(prefix):
                return name
        raise AssertionError(f"unexpected prompt: {system_prompt[:60]}")

    async def __call__(self, system_prompt, user_prompt, **kwargs):
        name = self.route(system_prompt)
        self.calls.append((name, user_prompt))
        response = self.responses[name]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(user_prompt)
        return response

    def count(self, name: str) -> int:
        return sum(1 for n, _ in self.calls if n == name)

    @staticmethod
    def _classify_default(user_prompt: str) -> str:
        page = int(re.search(r"page (\d+)", user_prompt).group(1))
        if page == 1:
            return json.dumps(
                {"category": "hero", "role": "hero", "quality": "high",
                 "isHeroCandidate": True, "confidence": 0.95, "sectionScore": 0.9,
                 "description": "Tower exterior at dusk", "alt": "Marina Heights tower"}
            )
        category = "interior_living" if page % 2 else "amenity_pool"
        return json.dumps(
            {"category": category, "role": "gallery", "quality": "medium",
             "isHeroCandidate": False, "confidence": 0.8, "sectionScore": 0.7}
        )

    @staticmethod
    def _translate_default(user_prompt: str) -> str:
        request = json.loads(user_prompt)
        return json.dumps(
            {
                "name": "מרינה הייטס",
                "description": "מגדלים יוקרתיים על המים",
                "amenities": [
                    {"index": a["index"], "name": f"he:{a['name']}"} for a in request["amenities"]
                ],
                "highlights": [
                    {"index": h["index"], "title": f"he:{h['title']}", "value": h["value"]}
                    for h in request["highlights"]
                ],
                "faq": [
                    {"index": f["index"], "question": f"he:{f['question']}", "answer": f["answer"]}
                    for f in request["faq"]
                ],
            },
            ensure_ascii=False,
        )


@pytest.fixture
def fake_llm(monkeypatch):
    from brochure.config import settings
    from brochure.ingestion.config import ingest_settings
    from brochure.services import llm

    fake = FakeLLM()
    monkeypatch.setattr(settings, "openai_api_key", "test-key")
    monkeypatch.setattr(ingest_settings, "classify_batch_delay", 0.0)
    monkeypatch.setattr(llm, "generate_json", fake)
    return fake


@pytest.fixture
def store(tmp_path):
    from brochure.services.store import ProspectStore

    return ProspectStore(tmp_path / "prospects.db")


@pytest.fixture
def processor(store):
    from brochure.services.orchestrator import ProspectProcessor
    from brochure.services.state import ProcessingState

    return ProspectProcessor(store, storage=None, state=ProcessingState.create(60))


@pytest.fixture
def brochure_pdf() -> bytes:
    return build_pdf(
        [BROCHURE_TEXT, "LOCATION\nMinutes from JBR Beach and Dubai Marina Mall."],
        images={0: [(400, 300)], 1: [(300, 200)]},
        title="Marina Heights Brochure",
    )


def ready_prospect(store, project: dict | None = None, name: str = "brochure.pdf"):
    """A prospect sitting in ``ready`` with *project* as its structured data."""
    from brochure.schemas import ProspectStatus, StructuredProject

    prospect = store.create_prospect(name)
    payload = StructuredProject.model_validate(project or MAPPED_PROJECT).to_payload()
    return store.update_prospect(
        prospect.id, status=ProspectStatus.READY, generated_sections=payload
    )
