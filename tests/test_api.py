import httpx
import pytest
import pytest_asyncio

from ai.oracle import OracleError
from fakes import FakeExtractor, FakeOracle, judgement
from matchcore.api import app, get_extractor, get_oracle
from matchcore.config import settings
from matchcore.db import get_store


@pytest.fixture
def oracle():
    return FakeOracle(judgement(8.5, "core_fit"))


@pytest_asyncio.fixture
async def client(store, oracle):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_oracle] = lambda: oracle
    app.dependency_overrides[get_extractor] = lambda: FakeExtractor({})
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def application(store, factory):
    company = await factory.company()
    job = await factory.job(company_id=company.id)
    user = await factory.user(full_name="Linus Torvalds")
    candidate = await factory.candidate(user_id=user.id, headline="Kernel hacker", skills=["C"])
    application = await factory.application(job, candidate)
    await store.commit()
    return {"job_id": job.id, "application_id": application.id, "candidate_id": candidate.id}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": settings.version}


@pytest.mark.asyncio
async def test_search_returns_explained_matches(client, application):
    response = await client.post("/search", json={"query": "kernel"})
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    result = body["results"][0]
    assert result["name"] == "Linus Torvalds"
    assert result["matches"][0]["label"] == "Job Title"


@pytest.mark.asyncio
async def test_unknown_candidate_signals_is_404(client):
    response = await client.post("/candidates/999/signals")
    assert response.status_code == 404
    assert response.json() == {"error": "not_found", "detail": "Candidate 999 not found"}


@pytest.mark.asyncio
async def test_candidate_signals(client, application):
    response = await client.post(f"/candidates/{application['candidate_id']}/signals")
    assert response.status_code == 200
    assert response.json()["responsiveness_score"] == "unknown"


@pytest.mark.asyncio
async def test_evaluate_then_read_rankings(client, application):
    response = await client.post(f"/applications/{application['application_id']}/evaluate")
    assert response.status_code == 200
    body = response.json()
    assert body["evaluation"]["score"] == 8.5
    assert body["rank"] == 1
    assert body["ranking_size"] == 1

    response = await client.get(f"/jobs/{application['job_id']}/rankings")
    assert response.status_code == 200
    rankings = response.json()["rankings"]
    assert [r["application_id"] for r in rankings] == [application["application_id"]]
    assert rankings[0]["verdict"] == "Strong fit"


@pytest.mark.asyncio
async def test_oracle_failure_is_502(client, application, oracle):
    oracle.responses = [OracleError("upstream down")]
    response = await client.post(f"/applications/{application['application_id']}/evaluate")
    assert response.status_code == 502
    assert response.json()["error"] == "oracle_error"


@pytest.mark.asyncio
async def test_failed_resume_extraction_is_422(client, application):
    response = await client.post(
        f"/candidates/{application['candidate_id']}/index-resume",
        json={"resume_url": "https://cdn.example.com/missing.pdf"},
    )
    assert response.status_code == 422
    assert response.json()["error"] == "extraction_error"


@pytest.mark.asyncio
async def test_index_resume_without_url_is_400(client, application):
    response = await client.post(f"/candidates/{application['candidate_id']}/index-resume", json={})
    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, -1, 1001])
async def test_rankings_limit_is_bounded(client, application, limit):
    response = await client.get(f"/jobs/{application['job_id']}/rankings", params={"limit": limit})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_rankings_limit_caps_rows(client, application):
    await client.post(f"/applications/{application['application_id']}/evaluate")
    response = await client.get(f"/jobs/{application['job_id']}/rankings", params={"limit": 1})
    assert response.status_code == 200
    assert response.json()["total"] == 1
