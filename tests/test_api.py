"""HTTP-level tests for the contract routes."""

import httpx
import pytest

from app.core.config import settings
from app.core.dependencies import get_chat_service, get_pipeline
from app.core.errors import GenerationFailure, LLMErrorType
from app.main import app
from app.schemas.analysis import Tier
from app.services.contract_chat_service import ContractChatService

PDF_BYTES = b"%PDF-1.4\n%fake\n"
OWNER = {"X-Owner-Id": "owner-1"}
PREMIUM_OWNER = {"X-Owner-Id": "owner-1", "X-Owner-Tier": "premium"}


class StaticExtractor:
    async def extract_text(self, pdf_bytes: bytes) -> str:
        return "This Service Agreement is made between Alpha Ltd and Beta Ltd."


@pytest.fixture
async def client(pipeline, llm, store, rate_limiter):
    chat = ContractChatService(llm, store, rate_limiter)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_chat_service] = lambda: chat
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


async def _analyze_text(client, llm, answer, headers=OWNER, **body):
    llm.responses.append(answer)
    payload = {"documentText": "This Agreement is made between the parties.", "contractType": "Employment"}
    payload.update(body)
    return await client.post("/contracts/analyze-text", json=payload, headers=headers)


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["service"] == settings.APP_NAME


async def test_analyze_text_returns_camel_case_record(client, llm, model_answer):
    response = await _analyze_text(client, llm, model_answer(), headers=PREMIUM_OWNER)

    assert response.status_code == 200
    body = response.json()
    assert body["ownerId"] == "owner-1"
    assert body["tier"] == "premium"
    assert body["overallScore"] == 62
    assert body["keyClauses"] == ["Non-compete", "Confidentiality"]
    assert body["risks"][0]["severity"] == "high"
    assert body["degraded"] is False


async def test_analyze_upload(client, llm, pipeline, fake_redis, model_answer):
    pipeline.extractor = StaticExtractor()
    llm.responses.append(model_answer())

    response = await client.post(
        "/contracts/analyze",
        files={"contract": ("contract.pdf", PDF_BYTES, "application/pdf")},
        data={"contractType": "Service", "projectId": "p-7"},
        headers=OWNER,
    )

    assert response.status_code == 200
    assert response.json()["projectId"] == "p-7"
    assert response.json()["contractText"].startswith("This Service Agreement")
    assert not [key for key in fake_redis.data if key.startswith("upload:")]


async def test_analyze_upload_rejects_non_pdf(client):
    response = await client.post(
        "/contracts/analyze",
        files={"contract": ("notes.txt", b"plain text", "text/plain")},
        data={"contractType": "Service"},
        headers=OWNER,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Only PDF files are allowed"


async def test_detect_type(client, llm, pipeline):
    pipeline.extractor = StaticExtractor()
    llm.contract_type = "Service Agreement"

    response = await client.post(
        "/contracts/detect-type",
        files={"contract": ("contract.pdf", PDF_BYTES, "application/pdf")},
        headers=OWNER,
    )

    assert response.status_code == 200
    assert response.json() == {"detectedType": "Service Agreement"}


async def test_missing_identity_is_unauthorized(client):
    response = await client.get("/contracts")
    assert response.status_code == 401


async def test_api_key_is_checked_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret")

    assert (await client.get("/contracts", headers=OWNER)).status_code == 401
    assert (await client.get("/contracts", headers={**OWNER, "X-API-Key": "wrong"})).status_code == 401
    assert (await client.get("/contracts", headers={**OWNER, "X-API-Key": "secret"})).status_code == 200


async def test_list_get_and_delete(client, llm, model_answer):
    created = (await _analyze_text(client, llm, model_answer(), projectId="p1")).json()

    listed = await client.get("/contracts", params={"projectId": "p1"}, headers=OWNER)
    assert [item["id"] for item in listed.json()] == [created["id"]]
    assert (await client.get("/contracts", params={"projectId": "other"}, headers=OWNER)).json() == []

    fetched = await client.get(f"/contracts/{created['id']}", headers=OWNER)
    assert fetched.status_code == 200

    deleted = await client.delete(f"/contracts/{created['id']}", headers=OWNER)
    assert deleted.status_code == 200

    assert (await client.get(f"/contracts/{created['id']}", headers=OWNER)).status_code == 404


async def test_foreign_and_missing_records_look_the_same(client, llm, model_answer):
    created = (await _analyze_text(client, llm, model_answer())).json()

    foreign = await client.get(f"/contracts/{created['id']}", headers={"X-Owner-Id": "intruder"})
    missing = await client.get("/contracts/no-such-id", headers={"X-Owner-Id": "intruder"})

    assert foreign.status_code == missing.status_code == 404
    assert foreign.json() == missing.json()


async def test_feedback(client, llm, model_answer):
    created = (await _analyze_text(client, llm, model_answer())).json()
    url = f"/contracts/{created['id']}/feedback"

    assert (await client.post(url, json={"rating": 6}, headers=OWNER)).status_code == 422

    response = await client.post(url, json={"rating": 5, "comments": "Spot on"}, headers=OWNER)
    assert response.status_code == 200
    assert response.json()["feedback"] == {"rating": 5, "comments": "Spot on"}


async def test_free_quota_maps_to_forbidden(client, llm, store, record_factory, model_answer):
    for _ in range(3):
        await store.create(record_factory(owner_id="owner-1", tier=Tier.FREE))

    response = await _analyze_text(client, llm, model_answer())

    assert response.status_code == 403
    assert "limited to 3" in response.json()["detail"]


async def test_rate_limit_maps_to_429(client, llm, fake_redis, model_answer):
    fake_redis.data["ratelimit:analyze:127.0.0.1"] = "10"
    fake_redis.ttls["ratelimit:analyze:127.0.0.1"] = 300

    response = await _analyze_text(client, llm, model_answer())

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "300"


async def test_generation_failure_maps_to_bad_gateway(client, llm):
    response = await _analyze_text(client, llm, GenerationFailure("Model server error", LLMErrorType.SERVER_ERROR))

    assert response.status_code == 502


async def test_ask(client, llm, model_answer):
    created = (await _analyze_text(client, llm, model_answer())).json()
    llm.responses.append("Termination requires three months notice.")

    response = await client.post(
        f"/contracts/{created['id']}/ask",
        json={"question": "How can I leave?"},
        headers=OWNER,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["isContractRelated"] is True
    assert body["requiresLegalAdvice"] is False
    assert body["suggestions"] == ["What are the specific conditions for contract termination?"]
