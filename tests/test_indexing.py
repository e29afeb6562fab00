import pytest

from fakes import FakeExtractor
from matchcore import models
from matchcore.errors import BadRequestError, NotFoundError
from matchcore.parsers import ResumeExtractionError
from matchcore.pipelines.indexing import index_resume, reindex_all_resumes
from matchcore.pipelines.search import search_candidates
from matchcore.store import EntityStore

RESUME_URL = "https://cdn.example.com/resumes/1.pdf"
RESUME_TEXT = "Platform engineer running Kubernetes clusters and Terraform pipelines"


@pytest.mark.asyncio
async def test_index_resume_stores_text_and_feeds_search(store, factory):
    candidate = await factory.candidate(headline="Engineer", resume_url=RESUME_URL)
    extractor = FakeExtractor({RESUME_URL: RESUME_TEXT})

    result = await index_resume(store, extractor, candidate.id)

    assert result.text_length == len(RESUME_TEXT)
    assert candidate.index_status == "success"
    assert candidate.resume_parsed_text == RESUME_TEXT
    assert candidate.resume_normalized_text == RESUME_TEXT.lower()
    assert candidate.index_timestamp == result.indexed_at

    results = await search_candidates(store, "terraform")
    assert [m.source for m in results[0].matches] == ["resume_text"]


@pytest.mark.asyncio
async def test_index_resume_prefers_explicit_url(store, factory):
    candidate = await factory.candidate(resume_url="https://cdn.example.com/old.pdf")
    extractor = FakeExtractor({RESUME_URL: RESUME_TEXT})

    await index_resume(store, extractor, candidate.id, RESUME_URL)

    assert extractor.calls == [RESUME_URL]


@pytest.mark.asyncio
async def test_index_resume_failure_is_recorded(store, factory):
    candidate = await factory.candidate(resume_url="https://cdn.example.com/missing.pdf")

    with pytest.raises(ResumeExtractionError):
        await index_resume(store, FakeExtractor({}), candidate.id)

    assert candidate.index_status == "failed"
    assert "404" in candidate.index_error
    assert candidate.resume_parsed_text is None


@pytest.mark.asyncio
async def test_index_resume_validates_input(store, factory):
    candidate = await factory.candidate()
    extractor = FakeExtractor({})
    with pytest.raises(BadRequestError):
        await index_resume(store, extractor, None)
    with pytest.raises(NotFoundError):
        await index_resume(store, extractor, 999)
    with pytest.raises(BadRequestError):
        await index_resume(store, extractor, candidate.id)


@pytest.mark.asyncio
async def test_reindex_all_resumes_reports_each_candidate(session_factory):
    async with session_factory() as session:
        seed = EntityStore(session)
        ok = await seed.create(models.Candidate, resume_url=RESUME_URL)
        broken = await seed.create(models.Candidate, resume_url="https://cdn.example.com/broken.pdf")
        await seed.create(models.Candidate)
        ok_id, broken_id = ok.id, broken.id
        await seed.commit()

    report = await reindex_all_resumes(session_factory, FakeExtractor({RESUME_URL: RESUME_TEXT}), batch_size=1)

    assert (report.total, report.success, report.failed) == (2, 1, 1)
    assert report.errors[0]["candidate_id"] == broken_id

    async with session_factory() as session:
        check = EntityStore(session)
        assert (await check.get(models.Candidate, ok_id)).index_status == "success"
        assert (await check.get(models.Candidate, broken_id)).index_status == "failed"
