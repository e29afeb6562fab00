"""Per-job application ranking.

The ranking of a job is always rebuilt from scratch: every row is deleted
and the dense 1..N ranking reinserted in the same transaction, so scores
that move in any direction never leave gaps, duplicates or stale rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping

from matchcore import models
from matchcore.config import settings
from matchcore.errors import BadRequestError, NotFoundError
from matchcore.models import FitRange, utcnow
from matchcore.store import EntityStore

logger = logging.getLogger(__name__)

FIT_RANGE_PRIORITY: dict[str, int] = {
    FitRange.CORE_FIT.value: 4,
    FitRange.ADJACENT_FIT.value: 3,
    FitRange.STRETCH_FIT.value: 2,
    FitRange.MISALIGNED.value: 1,
}

DEFAULT_SCORE = 0.0
DEFAULT_FIT_RANGE = FitRange.MISALIGNED.value


class RankingError(Exception):
    """Raised when a job ranking cannot be rebuilt or read."""
    pass


@dataclass
class RankedApplication:
    """Sort key material for one application."""
    application_id: int
    candidate_id: int
    score: float
    fit_range: str


@dataclass
class RankedCandidate:
    """Ranking row joined with application, candidate and evaluation."""
    rank: int
    score: float
    fit_range: str
    last_updated: datetime
    application: models.Application
    candidate: models.Candidate | None
    user: models.User | None
    evaluation: models.CandidateEvaluation | None


def order_applications(
    applications: Iterable[models.Application],
    evaluations: Mapping[int, models.CandidateEvaluation],
) -> list[RankedApplication]:
    """Sort applications best first.

    Unevaluated applications count as score 0 / misaligned. Order is score
    desc, then fit range priority desc, then application id asc.
    """
    entries = []
    for application in applications:
        evaluation = evaluations.get(application.id)
        entries.append(RankedApplication(
            application_id=application.id,
            candidate_id=application.candidate_id,
            score=evaluation.score if evaluation is not None else DEFAULT_SCORE,
            fit_range=evaluation.fit_range if evaluation is not None else DEFAULT_FIT_RANGE,
        ))

    entries.sort(key=lambda e: (-e.score, -FIT_RANGE_PRIORITY.get(e.fit_range, 0), e.application_id))
    return entries


async def replace_ranking(store: EntityStore, job_id: int) -> list[models.ApplicationRanking]:
    """Delete and recreate the job's ranking rows inside the current transaction.

    Does not commit: the caller owns the transaction so the ranking can be
    written atomically together with the evaluation that triggered it.
    """
    applications = await store.filter(models.Application, job_id=job_id)
    evaluations = await store.filter(models.CandidateEvaluation, job_id=job_id)
    by_application = {e.application_id: e for e in evaluations}

    ordered = order_applications(applications, by_application)

    removed = await store.delete_where(models.ApplicationRanking, job_id=job_id)
    now = utcnow()
    rows = []
    for rank, entry in enumerate(ordered, start=1):
        row = models.ApplicationRanking(
            job_id=job_id,
            application_id=entry.application_id,
            candidate_id=entry.candidate_id,
            rank=rank,
            score=entry.score,
            fit_range=entry.fit_range,
            last_updated=now,
        )
        store.session.add(row)
        rows.append(row)
    await store.flush()

    logger.info(f"Rebuilt ranking for job {job_id}: {removed} rows replaced by {len(rows)}")
    return rows


async def recompute_ranking(store: EntityStore, job_id: int | None) -> list[models.ApplicationRanking]:
    """Rebuild and commit the ranking of a job.

    Raises:
        BadRequestError: If job_id is missing
        NotFoundError: If the job does not exist
        RankingError: If the rebuild fails (nothing is committed)
    """
    if job_id is None or job_id == "":
        raise BadRequestError("job_id required")

    try:
        job = await store.get(models.Job, job_id)
        if job is None:
            raise NotFoundError("Job", job_id)

        rows = await replace_ranking(store, job_id)
        await store.commit()
        return rows

    except (BadRequestError, NotFoundError):
        await store.rollback()
        raise
    except Exception as e:
        await store.rollback()
        logger.error(f"Ranking recompute failed for job {job_id}: {e}", exc_info=True)
        raise RankingError(f"Failed to rebuild ranking: {e}") from e


async def get_ranked_candidates(
    store: EntityStore,
    job_id: int | None,
    *,
    limit: int | None = None,
) -> list[RankedCandidate]:
    """Ranking of a job, best first, enriched with per-entry detail.

    Args:
        store: Entity store
        job_id: Job to read
        limit: Max rows (default from config)

    Returns:
        List of RankedCandidate ordered by rank

    Raises:
        BadRequestError: If job_id is missing
        NotFoundError: If the job does not exist
    """
    if job_id is None or job_id == "":
        raise BadRequestError("job_id required")

    limit = limit or settings.evaluation.ranking_read_limit

    try:
        job = await store.get(models.Job, job_id)
        if job is None:
            raise NotFoundError("Job", job_id)

        rankings = await store.filter(
            models.ApplicationRanking,
            job_id=job_id,
            order_by=[models.ApplicationRanking.rank],
            limit=limit,
        )
        if not rankings:
            return []

        application_ids = [r.application_id for r in rankings]
        applications = {
            a.id: a for a in await store.filter(models.Application, id=application_ids)
        }
        candidates = {
            c.id: c for c in await store.filter(models.Candidate, id=[r.candidate_id for r in rankings])
        }
        user_ids = [c.user_id for c in candidates.values() if c.user_id is not None]
        users = {u.id: u for u in await store.filter(models.User, id=user_ids)} if user_ids else {}
        evaluations = {
            e.application_id: e
            for e in await store.filter(models.CandidateEvaluation, application_id=application_ids)
        }

    except (BadRequestError, NotFoundError):
        raise
    except Exception as e:
        logger.error(f"Failed to read ranking for job {job_id}: {e}", exc_info=True)
        raise RankingError(f"Failed to read ranking: {e}") from e

    results = []
    for ranking in rankings:
        application = applications.get(ranking.application_id)
        if application is None:
            logger.warning(f"Ranking row {ranking.id} points at missing application {ranking.application_id}")
            continue
        candidate = candidates.get(ranking.candidate_id)
        results.append(RankedCandidate(
            rank=ranking.rank,
            score=ranking.score,
            fit_range=ranking.fit_range,
            last_updated=ranking.last_updated,
            application=application,
            candidate=candidate,
            user=users.get(candidate.user_id) if candidate is not None else None,
            evaluation=evaluations.get(ranking.application_id),
        ))
    return results
