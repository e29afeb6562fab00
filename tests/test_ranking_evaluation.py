import asyncio
from types import SimpleNamespace

import pytest

from ai.oracle import OracleError
from fakes import FakeOracle, judgement
from matchcore import models
from matchcore.errors import BadRequestError, NotFoundError
from matchcore.pipelines.evaluation import (
    build_job_context,
    build_resume_context,
    evaluate_application,
    parse_oracle_output,
)
from matchcore.pipelines.ranking import get_ranked_candidates, order_applications, recompute_ranking


async def seed_job(factory, applicants=3):
    company = await factory.company(name="Initech")
    job = await factory.job(company_id=company.id, salary_min=90000, salary_max=120000, salary_currency="EUR")
    application_ids = []
    for index in range(applicants):
        user = await factory.user(full_name=f"Applicant {index}")
        candidate = await factory.candidate(user_id=user.id, headline="Frontend developer", skills=["react"])
        application = await factory.application(job, candidate)
        application_ids.append(application.id)
    await factory.store.commit()
    return job.id, application_ids


async def ranking_of(store, job_id):
    rows = await store.filter(
        models.ApplicationRanking,
        job_id=job_id,
        order_by=[models.ApplicationRanking.rank],
    )
    return [(r.rank, r.application_id, r.score, r.fit_range) for r in rows]


def test_order_applications_score_then_fit_then_id():
    applications = [SimpleNamespace(id=i, candidate_id=10 + i) for i in (1, 2, 3, 4)]
    evaluations = {
        1: SimpleNamespace(score=7.0, fit_range="stretch_fit"),
        2: SimpleNamespace(score=7.0, fit_range="core_fit"),
        4: SimpleNamespace(score=9.0, fit_range="adjacent_fit"),
    }
    ordered = order_applications(applications, evaluations)
    assert [e.application_id for e in ordered] == [4, 2, 1, 3]
    assert (ordered[-1].score, ordered[-1].fit_range) == (0.0, "misaligned")


def test_parse_oracle_output_clamps_and_validates():
    assert parse_oracle_output(judgement(14)).score == 10.0
    assert parse_oracle_output(judgement(-2)).score == 0.0
    with pytest.raises(OracleError):
        parse_oracle_output({"score": 5})
    with pytest.raises(OracleError):
        parse_oracle_output(judgement(5, fit_range="great_fit"))


def test_job_context_strips_html_and_formats_salary():
    job = models.Job(
        title="Data Engineer",
        description="<p>Own the <b>warehouse</b></p>",
        salary_min=100000,
        salary_max=None,
        salary_currency="USD",
    )
    context = build_job_context(job, models.Company(name="Hooli"))
    assert "Company: Hooli" in context
    assert "Own the warehouse" in context
    assert "Salary Band: 100,000 - ? USD" in context


@pytest.mark.asyncio
async def test_evaluation_stores_result_and_ranks_every_application(store, factory):
    job_id, (first, second, third) = await seed_job(factory)
    oracle = FakeOracle(judgement(6.0, "adjacent_fit"))

    result = await evaluate_application(store, oracle, first)

    assert result.evaluation.score == 6.0
    assert result.evaluation.fit_range == "adjacent_fit"
    assert "Job Title: Frontend Engineer" in oracle.prompts[0]
    assert "Build React interfaces" in oracle.prompts[0]
    assert "Company: Initech" in oracle.prompts[0]
    assert await ranking_of(store, job_id) == [
        (1, first, 6.0, "adjacent_fit"),
        (2, second, 0.0, "misaligned"),
        (3, third, 0.0, "misaligned"),
    ]

    await evaluate_application(store, FakeOracle(judgement(9.0, "core_fit")), third)
    ranking = await ranking_of(store, job_id)
    assert [r[1] for r in ranking] == [third, first, second]
    assert [r[0] for r in ranking] == [1, 2, 3]


@pytest.mark.asyncio
async def test_reevaluation_overwrites_single_row(store, factory):
    job_id, (first, second) = await seed_job(factory, applicants=2)

    await evaluate_application(store, FakeOracle(judgement(9.0)), first)
    await evaluate_application(store, FakeOracle(judgement(3.0, "stretch_fit")), first)
    await evaluate_application(store, FakeOracle(judgement(5.0, "adjacent_fit")), second)

    evaluations = await store.filter(models.CandidateEvaluation, application_id=first)
    assert len(evaluations) == 1
    assert evaluations[0].score == 3.0
    assert [r[1] for r in await ranking_of(store, job_id)] == [second, first]
    assert len(await store.filter(models.ApplicationRanking)) == 2


@pytest.mark.asyncio
async def test_oracle_failure_leaves_evaluation_and_ranking_untouched(store, factory):
    job_id, (first, second) = await seed_job(factory, applicants=2)
    await evaluate_application(store, FakeOracle(judgement(8.0)), first)
    before = await ranking_of(store, job_id)

    with pytest.raises(OracleError):
        await evaluate_application(store, FakeOracle(OracleError("upstream 503")), second)
    with pytest.raises(OracleError):
        await evaluate_application(store, FakeOracle({"score": 1}), second)

    assert await ranking_of(store, job_id) == before
    evaluations = await store.filter(models.CandidateEvaluation)
    assert [e.application_id for e in evaluations] == [first]
    assert evaluations[0].score == 8.0


@pytest.mark.asyncio
async def test_cancelled_evaluation_writes_nothing(store, factory):
    job_id, (first,) = await seed_job(factory, applicants=1)

    task = asyncio.create_task(evaluate_application(store, FakeOracle(judgement(8.0), delay=2.0), first))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await store.filter(models.CandidateEvaluation) == []
    assert await ranking_of(store, job_id) == []


@pytest.mark.asyncio
async def test_evaluate_validates_application(store):
    with pytest.raises(BadRequestError):
        await evaluate_application(store, FakeOracle(judgement(5.0)), None)
    with pytest.raises(NotFoundError):
        await evaluate_application(store, FakeOracle(judgement(5.0)), 999)


@pytest.mark.asyncio
async def test_recompute_ranking_from_stored_evaluations(store, factory):
    job_id, (first, second) = await seed_job(factory, applicants=2)
    application = await store.get(models.Application, second)
    await store.create(
        models.CandidateEvaluation,
        application_id=second,
        candidate_id=application.candidate_id,
        job_id=job_id,
        score=4.0,
        verdict="Moderate fit",
        fit_range="stretch_fit",
    )

    rows = await recompute_ranking(store, job_id)

    assert [(r.rank, r.application_id) for r in rows] == [(1, second), (2, first)]
    with pytest.raises(NotFoundError):
        await recompute_ranking(store, 999)


@pytest.mark.asyncio
async def test_get_ranked_candidates_joins_details(store, factory):
    job_id, (first, second) = await seed_job(factory, applicants=2)
    await evaluate_application(store, FakeOracle(judgement(7.0, "core_fit", "Strong fit")), second)

    ranked = await get_ranked_candidates(store, job_id)

    assert [r.rank for r in ranked] == [1, 2]
    top = ranked[0]
    assert top.application.id == second
    assert top.user.full_name == "Applicant 1"
    assert top.evaluation.verdict == "Strong fit"
    assert ranked[1].evaluation is None

    assert len(await get_ranked_candidates(store, job_id, limit=1)) == 1
    with pytest.raises(NotFoundError):
        await get_ranked_candidates(store, 999)
    with pytest.raises(BadRequestError):
        await get_ranked_candidates(store, None)


def test_resume_context_skips_malformed_entries():
    candidate = models.Candidate(
        id=1,
        headline="Platform engineer",
        skills={"primary": "go"},
        experience=["Acme 2019-2021", {"title": "SRE", "company": "Initech"}],
        education=[42],
        certifications="CKA",
    )
    context = build_resume_context(candidate)
    assert "- SRE at Initech (? - Present)" in context
    assert "Skills:" not in context
    assert "Education:" not in context
    assert "Certifications:" not in context


@pytest.mark.asyncio
async def test_evaluation_tolerates_malformed_candidate_data(store, factory):
    company = await factory.company()
    job = await factory.job(company_id=company.id)
    candidate = await factory.candidate(
        headline="Frontend developer",
        experience=["Acme 2019-2021"],
        resume_parsed_metadata={"skills": 5},
    )
    application = await factory.application(job, candidate)
    await store.commit()
    job_id, application_id = job.id, application.id
    oracle = FakeOracle(judgement(7.0))

    result = await evaluate_application(store, oracle, application_id)

    assert result.evaluation.score == 7.0
    assert "2019-2021" not in oracle.prompts[0]
    assert [r[1] for r in await ranking_of(store, job_id)] == [application_id]
