"""HTTP API and CLI tests against a temp database and the fake LLM."""

from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from conftest import ready_prospect


@pytest.fixture
def client(tmp_path, monkeypatch):
    from brochure.config import settings
    from brochure.main import app

    monkeypatch.setattr(settings, "sqlite_path", tmp_path / "api.db")
    monkeypatch.setattr(settings, "storage_bucket", "")
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def serve_pdf(monkeypatch, brochure_pdf):
    """Make every fetch return the generated brochure."""
    from brochure.api import routes

    async def fake_fetch(url, client=None):
        return brochure_pdf

    monkeypatch.setattr(routes, "fetch_pdf", fake_fetch)
    return brochure_pdf


def _create(client, url="https://cdn.example.com/marina-heights.pdf") -> dict:
    response = client.post("/api/prospects", json={"fileUrl": url})
    assert response.status_code == 201, response.text
    return response.json()


class TestApi:
    def test_health(self, fake_llm, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "llmConfigured": True, "storageConfigured": False}

    def test_unknown_prospect_is_404(self, client):
        assert client.get("/api/prospects/missing/status").status_code == 404
        assert client.post("/api/prospects/missing/process").status_code == 404

    def test_private_url_rejected(self, client):
        response = client.post("/api/prospects", json={"fileUrl": "http://169.254.169.254/a.pdf"})
        assert response.status_code == 422
        assert "private" in response.json()["detail"]

    def test_create_and_dedup(self, client, serve_pdf):
        created = _create(client)
        assert created["fileName"] == "marina-heights.pdf"
        assert created["status"] == "uploaded"

        duplicate = client.post("/api/prospects", json={"fileUrl": "https://other.example.com/x.pdf"})
        assert duplicate.status_code == 409
        assert duplicate.json()["detail"]["prospectId"] == created["id"]

    def test_process_in_background(self, fake_llm, client, serve_pdf):
        prospect_id = _create(client)["id"]

        response = client.post(f"/api/prospects/{prospect_id}/process")
        assert response.status_code == 202
        assert response.json() == {"prospectId": prospect_id, "status": "processing"}

        status = client.get(f"/api/prospects/{prospect_id}/status").json()
        assert status["status"] == "published"
        assert status["hasMiniSite"] is True
        assert status["progress"]["progress"] == 100

        again = client.post(f"/api/prospects/{prospect_id}/process")
        assert again.status_code == 409
        assert client.post(f"/api/prospects/{prospect_id}/retry").status_code == 409

    def test_stream_emits_progress_then_complete(self, fake_llm, client, serve_pdf):
        prospect_id = _create(client)["id"]

        response = client.get(f"/api/prospects/{prospect_id}/process/stream")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        events = [
            json.loads(line[len("data: "):])
            for line in response.text.splitlines()
            if line.startswith("data: ")
        ]
        progress = [e["progress"] for e in events if "progress" in e]
        assert progress[0] == 10 and progress[-1] == 100
        assert events[-1] == {
            "type": "complete",
            "success": True,
            "error": None,
            "projectSlug": "marina-heights",
            "miniSiteSlug": "marina-heights",
        }

    def test_abandoned_stream_lets_run_finish(self, fake_llm, processor, store, serve_pdf):
        from brochure.api import routes
        from brochure.schemas import ProspectStatus

        prospect = store.create_prospect(
            "brochure.pdf", file_url="https://cdn.example.com/brochure.pdf"
        )

        async def leave_after_first_event():
            response = await routes.stream_processing(prospect.id, processor=processor)
            events = response.body_iterator
            first = await events.__anext__()
            await events.aclose()

            assert len(routes._orphaned_runs) == 1
            task = next(iter(routes._orphaned_runs))
            await asyncio.wait({task})
            await asyncio.sleep(0)
            return first, task

        first, task = asyncio.run(leave_after_first_event())

        assert json.loads(first[len("data: "):])["progress"] == 10
        assert task not in routes._orphaned_runs
        assert store.get_prospect(prospect.id).status == ProspectStatus.PUBLISHED

    def test_artifact_endpoints(self, client):
        store = client.app.state.processor.store
        prospect = ready_prospect(store)

        early = client.post(f"/api/prospects/{prospect.id}/mini-site")
        assert early.status_code == 400

        project = client.post(f"/api/prospects/{prospect.id}/project")
        assert project.status_code == 200
        assert project.json()["slug"] == "marina-heights"
        assert project.json()["created"] is True

        site = client.post(f"/api/prospects/{prospect.id}/mini-site").json()
        repeat = client.post(f"/api/prospects/{prospect.id}/mini-site").json()
        assert (repeat["id"], repeat["created"]) == (site["id"], False)

    def test_project_requires_processed_prospect(self, client):
        store = client.app.state.processor.store
        prospect = store.create_prospect("a.pdf")
        assert client.post(f"/api/prospects/{prospect.id}/project").status_code == 400


class TestCli:
    def test_process_status_and_duplicate(self, fake_llm, tmp_path, brochure_pdf, capsys):
        from brochure.ingestion.pdf_parser import compute_file_hash
        from brochure.services.cli import main
        from brochure.services.store import ProspectStore

        db = str(tmp_path / "cli.db")
        pdf = tmp_path / "marina-heights.pdf"
        pdf.write_bytes(brochure_pdf)

        assert main(["--db", db, "process", str(pdf)]) == 0
        out = capsys.readouterr().out
        assert "Processing Summary" in out
        assert "Project slug    : marina-heights" in out

        assert main(["--db", db, "process", str(pdf)]) == 1
        assert "Already uploaded as prospect" in capsys.readouterr().out

        prospect = ProspectStore(db).find_prospect_by_hash(compute_file_hash(brochure_pdf))
        assert main(["--db", db, "status", prospect.id]) == 0
        status = json.loads(capsys.readouterr().out)
        assert status["status"] == "published"
        assert status["hasProject"] is True

    def test_status_of_unknown_prospect(self, tmp_path):
        from brochure.services.cli import main

        assert main(["--db", str(tmp_path / "cli.db"), "status", "missing"]) == 2

    def test_rejects_non_pdf(self, tmp_path):
        from brochure.services.cli import main

        bogus = tmp_path / "notes.pdf"
        bogus.write_bytes(b"hello")
        assert main(["--db", str(tmp_path / "cli.db"), "process", str(bogus)]) == 2
