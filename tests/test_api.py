"""Tests for API endpoints (fake model clients, in-memory storage)."""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from src.analysis.engine import MultiModelEngine
from src.analysis.pipeline import AnalysisPipeline
from src.api.deps import Services, get_services
from src.api.main import app
from src.config import Settings, get_settings
from src.ingestion.memory_store import InMemoryVectorStore
from src.jobs import AnalysisJobQueue, AnalysisProcessor
from src.persistence import InMemoryMeetingRepository, NewMeeting
from src.retrieval.search import RAGService
from tests.fakes import PRICE_QUOTE, SAMPLE_TRANSCRIPT

AUTH = {"Authorization": "Bearer s3cret"}


def webhook_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "sellerName": "Ana Souza",
        "sellerEmail": "ana@freelaw.work",
        "meetingDate": "2025-03-10T14:00:00Z",
        "meetingTitle": "Demo - Escritório Silva",
        "recordingUrl": "https://fathom.video/share/abc123",
        "transcript": SAMPLE_TRANSCRIPT,
        "clientEmail": "contato@silva.adv.br",
        "externalId": "abc123",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def services(
    store: InMemoryVectorStore,
    rag: RAGService,
    engine: MultiModelEngine,
    pipeline: AnalysisPipeline,
    repository: InMemoryMeetingRepository,
) -> Services:
    processor = AnalysisProcessor(pipeline, repository)
    return Services(
        store=store,
        rag=rag,
        engine=engine,
        pipeline=pipeline,
        repository=repository,
        processor=processor,
        queue=AnalysisJobQueue(processor, max_retries=0),
    )


@pytest.fixture
def client(services: Services, test_settings: Settings) -> Iterator[TestClient]:
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_settings] = lambda: test_settings
    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(services.queue.stop, False)
    app.dependency_overrides.clear()


def seed_meeting(client: TestClient, services: Services) -> tuple[str, str]:
    meeting = NewMeeting(
        source_id="rec-1",
        title="Demo",
        seller_name="Ana",
        started_at=datetime(2025, 3, 10, 14, 0, tzinfo=UTC),
    )
    return client.portal.call(services.repository.create_meeting_with_transcript, meeting, SAMPLE_TRANSCRIPT)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_analysis_health(client: TestClient) -> None:
    body = client.get("/api/analysis/health").json()
    assert body["healthy"] is True
    assert body["deep_model"] is True
    assert body["queue"]["is_running"] is False


# ---------------------------------------------------------------------------
# n8n webhook
# ---------------------------------------------------------------------------


class TestN8NWebhook:
    def test_missing_bearer_token(self, client: TestClient) -> None:
        response = client.post("/api/webhooks/n8n", json=webhook_payload())
        assert response.status_code == 401

    def test_wrong_bearer_token(self, client: TestClient) -> None:
        response = client.post(
            "/api/webhooks/n8n", json=webhook_payload(), headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    def test_invalid_payload(self, client: TestClient) -> None:
        response = client.post(
            "/api/webhooks/n8n", json=webhook_payload(clientEmail="não-é-email", transcript="curto"), headers=AUTH
        )
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "Dados inválidos"
        fields = {tuple(err["loc"]) for err in detail["details"]}
        assert ("clientEmail",) in fields
        assert ("transcript",) in fields

    def test_malformed_json(self, client: TestClient) -> None:
        response = client.post(
            "/api/webhooks/n8n",
            content=b"{not json",
            headers={**AUTH, "Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_accepted_and_analysed(self, client: TestClient, services: Services) -> None:
        response = client.post("/api/webhooks/n8n", json=webhook_payload(), headers=AUTH)

        assert response.status_code == 202
        body = response.json()
        assert body["success"] is True
        repository = services.repository
        assert isinstance(repository, InMemoryMeetingRepository)
        assert repository.meetings[body["meeting_id"]]["source_id"] == "n8n_abc123"

        client.portal.call(services.queue.join)
        job = client.get(f"/api/analysis/jobs/{body['job_id']}").json()
        assert job["status"] == "completed"
        assert repository.analyses[body["meeting_id"]]["icp_fit"] == "high"

    def test_raw_mode_string_body(self, client: TestClient) -> None:
        response = client.post(
            "/api/webhooks/n8n",
            json=json.dumps(webhook_payload(externalId=None)),
            headers=AUTH,
        )
        assert response.status_code == 202


# ---------------------------------------------------------------------------
# Analysis and chat
# ---------------------------------------------------------------------------


class TestAnalysisRoutes:
    def test_process_single_transcript(self, client: TestClient, services: Services) -> None:
        _, transcript_id = seed_meeting(client, services)

        response = client.post("/api/analysis/process", json={"transcript_id": transcript_id})

        assert response.status_code == 202
        jobs = response.json()["jobs"]
        assert [j["transcript_id"] for j in jobs] == [transcript_id]

    def test_process_pending_batch(self, client: TestClient, services: Services) -> None:
        _, transcript_id = seed_meeting(client, services)
        response = client.post("/api/analysis/process", json={"limit": 5})
        assert [j["transcript_id"] for j in response.json()["jobs"]] == [transcript_id]

    def test_process_limit_validation(self, client: TestClient) -> None:
        assert client.post("/api/analysis/process", json={"limit": 0}).status_code == 422

    def test_unknown_job(self, client: TestClient) -> None:
        assert client.get("/api/analysis/jobs/nope").status_code == 404

    def test_quick_analysis(self, client: TestClient) -> None:
        response = client.post("/api/analysis/quick", json={"meeting_id": "m-1", "transcript": SAMPLE_TRANSCRIPT})
        assert response.status_code == 200
        assert response.json()["summary"].startswith("Cliente com sobrecarga")

    def test_quick_analysis_rejects_short_transcript(self, client: TestClient) -> None:
        response = client.post("/api/analysis/quick", json={"meeting_id": "m-1", "transcript": "oi"})
        assert response.status_code == 422


class TestChatRoute:
    def test_unknown_meeting(self, client: TestClient) -> None:
        response = client.post("/api/meetings/nope/chat", json={"question": "Como foi?"})
        assert response.status_code == 404

    def test_chat_over_stored_transcript(self, client: TestClient, services: Services) -> None:
        meeting_id, _ = seed_meeting(client, services)

        response = client.post(f"/api/meetings/{meeting_id}/chat", json={"question": "O plano ficou caro?"})

        assert response.status_code == 200
        body = response.json()
        assert body["strategy"] == "segments"
        assert PRICE_QUOTE in body["answer"]
        assert body["sources"][0]["speaker"] == "Cliente"

    def test_empty_question_rejected(self, client: TestClient) -> None:
        assert client.post("/api/meetings/m-1/chat", json={"question": ""}).status_code == 422
