"""Resume indexing: extracted resume text written onto the candidate.

The search index reads ``resume_parsed_text`` and the boolean filter reads
``resume_normalized_text``; this pipeline keeps both current and records the
outcome in ``index_status`` / ``index_timestamp`` / ``index_error``.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchcore import models
from matchcore.config import settings
from matchcore.errors import BadRequestError, NotFoundError
from matchcore.models import IndexStatus, utcnow
from matchcore.parsers import ResumeExtractionError, ResumeTextExtractor
from matchcore.store import EntityStore

logger = logging.getLogger(__name__)


class IndexingError(Exception):
    """Raised when indexing results cannot be stored."""
    pass


@dataclass
class IndexResult:
    candidate_id: int
    text_length: int
    indexed_at: datetime


@dataclass
class ReindexReport:
    """Outcome of a bulk reindex."""
    total: int = 0
    success: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)


async def index_resume(
    store: EntityStore,
    extractor: ResumeTextExtractor,
    candidate_id: int | None,
    resume_url: str | None = None,
) -> IndexResult:
    """Extract a candidate's resume and store the text on the candidate.

    Args:
        store: Entity store
        extractor: Resume text extraction collaborator
        candidate_id: Candidate to index
        resume_url: Document URL (defaults to the candidate's resume_url)

    Returns:
        IndexResult

    Raises:
        BadRequestError: If candidate_id or a resume URL is missing
        NotFoundError: If the candidate does not exist
        ResumeExtractionError: If extraction fails (the failure is recorded)
    """
    if candidate_id is None or candidate_id == "":
        raise BadRequestError("candidate_id required")

    candidate = await store.get(models.Candidate, candidate_id)
    if candidate is None:
        raise NotFoundError("Candidate", candidate_id)

    resume_url = resume_url or candidate.resume_url
    if not resume_url:
        raise BadRequestError("resume_url required")

    try:
        extracted = await extractor.extract(resume_url)
    except ResumeExtractionError as e:
        logger.warning(f"Resume extraction failed for candidate {candidate_id}: {e}")
        await _record_failure(store, candidate, candidate_id, str(e))
        raise

    indexed_at = utcnow()
    try:
        await store.update(
            candidate,
            resume_parsed_text=extracted.plain_text,
            resume_normalized_text=extracted.normalized_text,
            index_status=IndexStatus.SUCCESS.value,
            index_timestamp=indexed_at,
            index_error=None,
        )
        await store.commit()
    except Exception as e:
        await store.rollback()
        logger.error(f"Failed to store resume index for candidate {candidate_id}: {e}", exc_info=True)
        raise IndexingError(f"Failed to store resume index: {e}") from e

    logger.info(f"Indexed resume for candidate {candidate_id} ({len(extracted.plain_text)} chars)")
    return IndexResult(
        candidate_id=candidate.id,
        text_length=len(extracted.plain_text),
        indexed_at=indexed_at,
    )


async def _record_failure(
    store: EntityStore,
    candidate: models.Candidate,
    candidate_id: int,
    error: str,
) -> None:
    try:
        await store.update(
            candidate,
            index_status=IndexStatus.FAILED.value,
            index_timestamp=utcnow(),
            index_error=error,
        )
        await store.commit()
    except Exception as e:
        await store.rollback()
        logger.error(f"Failed to record index failure for candidate {candidate_id}: {e}")


async def reindex_all_resumes(
    session_factory: async_sessionmaker[AsyncSession],
    extractor: ResumeTextExtractor,
    *,
    batch_size: int | None = None,
) -> ReindexReport:
    """Re-index every candidate that has a resume, a few at a time.

    Each candidate is indexed on its own session so one failure never
    affects the rest of the batch.
    """
    batch_size = batch_size or settings.resume.reindex_batch_size

    async with session_factory() as session:
        candidates = await EntityStore(session).filter(models.Candidate)
        targets = [(c.id, c.resume_url) for c in candidates if c.resume_url]

    report = ReindexReport(total=len(targets))
    logger.info(f"Found {report.total} candidates with resumes")

    async def run_one(candidate_id: int, resume_url: str) -> None:
        async with session_factory() as session:
            try:
                await index_resume(EntityStore(session), extractor, candidate_id, resume_url)
                report.success += 1
            except Exception as e:
                report.failed += 1
                report.errors.append({"candidate_id": candidate_id, "error": str(e)})

    for start in range(0, len(targets), batch_size):
        batch = targets[start:start + batch_size]
        await asyncio.gather(*(run_one(cid, url) for cid, url in batch))
        logger.info(f"Processed {min(start + batch_size, len(targets))}/{len(targets)} resumes")

    return report
