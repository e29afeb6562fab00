"""Behavioral signal aggregation for candidates and recruiters.

Derives responsiveness, completion rates and engagement counters from raw
message, interview, swipe and interest-signal history, and upserts exactly
one snapshot row per subject.
"""
from __future__ import annotations

import logging
from bisect import bisect_right
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Sequence

from matchcore import models
from matchcore.config import settings
from matchcore.errors import BadRequestError, NotFoundError
from matchcore.models import Responsiveness, utcnow
from matchcore.store import EntityStore

logger = logging.getLogger(__name__)

SCHEDULED_STATUSES = frozenset({"scheduled", "confirmed", "completed"})


class SignalComputationError(Exception):
    """Raised when a signal snapshot cannot be computed or stored."""
    pass


@dataclass
class MessageStats:
    """Reply statistics of one subject over its direct messages."""
    received_count: int = 0
    replied_count: int = 0
    reply_rate: float = 0.0
    avg_response_time_hours: float = 0.0
    counterparties: set[int] = field(default_factory=set)


@dataclass
class SignalSnapshot:
    """Point-in-time behavioral metrics of one subject."""
    subject_type: str  # candidate | recruiter
    subject_id: int
    user_id: int | None
    profile_completion_percent: int = 0
    message_reply_rate: float = 0.0
    avg_response_time_hours: float = 0.0
    interview_completion_rate: float = 0.0
    video_view_count: int = 0
    profile_view_count: int = 0
    swipe_right_count: int = 0
    avg_pipeline_move_days: float | None = None
    active_conversations: int | None = None
    swipe_activity_count: int | None = None
    match_count: int | None = None
    responsiveness_score: str = Responsiveness.UNKNOWN.value
    last_active: datetime = field(default_factory=utcnow)


def compute_message_stats(
    sent: Sequence[models.DirectMessage],
    received: Sequence[models.DirectMessage],
) -> MessageStats:
    """Reply rate and mean response time of the subject.

    A received message counts as replied when the subject sent something to
    the same counterparty strictly later. The earliest such message is the
    reply used for the response time.
    """
    stats = MessageStats()
    stats.counterparties = {m.receiver_id for m in sent} | {m.sender_id for m in received}
    stats.received_count = len(received)
    if not received:
        return stats

    sent_times: dict[int, list[datetime]] = defaultdict(list)
    for message in sent:
        sent_times[message.receiver_id].append(message.created_at)
    for times in sent_times.values():
        times.sort()

    response_hours: list[float] = []
    for message in received:
        times = sent_times.get(message.sender_id)
        if not times:
            continue
        position = bisect_right(times, message.created_at)
        if position == len(times):
            continue
        reply_at = times[position]
        response_hours.append((reply_at - message.created_at).total_seconds() / 3600)

    stats.replied_count = len(response_hours)
    stats.reply_rate = 100.0 * stats.replied_count / stats.received_count
    if response_hours:
        stats.avg_response_time_hours = sum(response_hours) / len(response_hours)
    return stats


def classify_responsiveness(reply_rate: float, avg_response_time_hours: float) -> Responsiveness:
    cfg = settings.signals
    if reply_rate >= cfg.high_reply_rate and avg_response_time_hours < cfg.high_response_hours:
        return Responsiveness.HIGH
    if reply_rate >= cfg.medium_reply_rate and avg_response_time_hours < cfg.medium_response_hours:
        return Responsiveness.MEDIUM
    if reply_rate > 0:
        return Responsiveness.LOW
    return Responsiveness.UNKNOWN


def _is_complete(value: Any) -> bool:
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None and value is not False


def profile_completion_percent(entity: Any, required_fields: Sequence[str]) -> int:
    """Share of required fields holding a non-empty value, 0-100."""
    if not required_fields:
        return 0
    completed = sum(1 for name in required_fields if _is_complete(getattr(entity, name, None)))
    return round(100 * completed / len(required_fields))


def interview_completion_rate(interviews: Iterable[models.Interview]) -> float:
    scheduled = completed = 0
    for interview in interviews:
        if interview.status in SCHEDULED_STATUSES:
            scheduled += 1
        if interview.status == "completed":
            completed += 1
    return 100.0 * completed / scheduled if scheduled else 0.0


def avg_pipeline_move_days(matches: Iterable[models.Match]) -> float:
    """Mean days between creation and last update, positive deltas only."""
    days = [
        (m.updated_at - m.created_at).total_seconds() / 86400
        for m in matches
        if m.created_at is not None and m.updated_at is not None
    ]
    days = [d for d in days if d > 0]
    return sum(days) / len(days) if days else 0.0


async def _load_messages(
    store: EntityStore,
    user_id: int | None,
) -> tuple[list[models.DirectMessage], list[models.DirectMessage]]:
    if user_id is None:
        return [], []
    sent = await store.filter(models.DirectMessage, sender_id=user_id)
    received = await store.filter(models.DirectMessage, receiver_id=user_id)
    return sent, received


async def compute_candidate_signals(store: EntityStore, candidate_id: int | None) -> SignalSnapshot:
    """Compute and upsert the signal snapshot of a candidate.

    Args:
        store: Entity store
        candidate_id: Candidate to compute

    Returns:
        The stored SignalSnapshot

    Raises:
        BadRequestError: If candidate_id is missing
        NotFoundError: If the candidate does not exist
        SignalComputationError: If computation or persistence fails
    """
    if candidate_id is None or candidate_id == "":
        raise BadRequestError("candidate_id required")

    try:
        candidate = await store.get(models.Candidate, candidate_id)
        if candidate is None:
            raise NotFoundError("Candidate", candidate_id)

        sent, received = await _load_messages(store, candidate.user_id)
        stats = compute_message_stats(sent, received)

        interviews = await store.filter(models.Interview, candidate_id=candidate_id)
        interest = await store.filter(models.InterestSignal, candidate_id=candidate_id)
        swipes = await store.filter(
            models.Swipe,
            target_id=candidate_id,
            target_type="candidate",
            direction="right",
        )

        views = [s for s in interest if s.signal_type == "view"]
        snapshot = SignalSnapshot(
            subject_type="candidate",
            subject_id=candidate.id,
            user_id=candidate.user_id,
            profile_completion_percent=profile_completion_percent(
                candidate, settings.signals.candidate_required_fields
            ),
            message_reply_rate=stats.reply_rate,
            avg_response_time_hours=stats.avg_response_time_hours,
            interview_completion_rate=interview_completion_rate(interviews),
            video_view_count=sum(1 for s in views if (s.metadata_ or {}).get("video")),
            profile_view_count=len(views),
            swipe_right_count=len(swipes),
            responsiveness_score=classify_responsiveness(
                stats.reply_rate, stats.avg_response_time_hours
            ).value,
            last_active=utcnow(),
        )

        await _upsert(store, models.CandidateSignal, "candidate_id", snapshot, {
            "user_id": snapshot.user_id,
            "profile_completion_percent": snapshot.profile_completion_percent,
            "message_reply_rate": snapshot.message_reply_rate,
            "avg_response_time_hours": snapshot.avg_response_time_hours,
            "interview_completion_rate": snapshot.interview_completion_rate,
            "video_view_count": snapshot.video_view_count,
            "profile_view_count": snapshot.profile_view_count,
            "swipe_right_count": snapshot.swipe_right_count,
            "responsiveness_score": snapshot.responsiveness_score,
            "last_active": snapshot.last_active,
        })

        logger.info(
            f"Candidate {candidate_id} signals: reply_rate={snapshot.message_reply_rate:.1f}% "
            f"avg_response={snapshot.avg_response_time_hours:.1f}h "
            f"responsiveness={snapshot.responsiveness_score}"
        )
        return snapshot

    except (BadRequestError, NotFoundError):
        await store.rollback()
        raise
    except Exception as e:
        await store.rollback()
        logger.error(f"Candidate signal computation failed for {candidate_id}: {e}", exc_info=True)
        raise SignalComputationError(f"Failed to compute candidate signals: {e}") from e


async def compute_recruiter_signals(store: EntityStore, company_id: int | None) -> SignalSnapshot:
    """Compute and upsert the signal snapshot of a recruiting company.

    Messages and swipes are those of the company's owning user.

    Raises:
        BadRequestError: If company_id is missing
        NotFoundError: If the company does not exist
        SignalComputationError: If computation or persistence fails
    """
    if company_id is None or company_id == "":
        raise BadRequestError("company_id required")

    try:
        company = await store.get(models.Company, company_id)
        if company is None:
            raise NotFoundError("Company", company_id)

        sent, received = await _load_messages(store, company.user_id)
        stats = compute_message_stats(sent, received)

        interviews = await store.filter(models.Interview, company_id=company_id)
        matches = await store.filter(models.Match, company_id=company_id)
        swipes = await store.filter(models.Swipe, user_id=company.user_id) if company.user_id else []

        snapshot = SignalSnapshot(
            subject_type="recruiter",
            subject_id=company.id,
            user_id=company.user_id,
            profile_completion_percent=profile_completion_percent(
                company, settings.signals.company_required_fields
            ),
            message_reply_rate=stats.reply_rate,
            avg_response_time_hours=stats.avg_response_time_hours,
            interview_completion_rate=interview_completion_rate(interviews),
            avg_pipeline_move_days=avg_pipeline_move_days(matches),
            active_conversations=len(stats.counterparties),
            swipe_activity_count=len(swipes),
            match_count=len(matches),
            responsiveness_score=classify_responsiveness(
                stats.reply_rate, stats.avg_response_time_hours
            ).value,
            last_active=utcnow(),
        )

        await _upsert(store, models.RecruiterSignal, "company_id", snapshot, {
            "user_id": snapshot.user_id,
            "profile_completion_percent": snapshot.profile_completion_percent,
            "message_reply_rate": snapshot.message_reply_rate,
            "avg_response_time_hours": snapshot.avg_response_time_hours,
            "interview_completion_rate": snapshot.interview_completion_rate,
            "avg_pipeline_move_days": snapshot.avg_pipeline_move_days,
            "active_conversations": snapshot.active_conversations,
            "swipe_activity_count": snapshot.swipe_activity_count,
            "match_count": snapshot.match_count,
            "responsiveness_score": snapshot.responsiveness_score,
            "last_active": snapshot.last_active,
        })

        logger.info(
            f"Company {company_id} signals: reply_rate={snapshot.message_reply_rate:.1f}% "
            f"pipeline={snapshot.avg_pipeline_move_days:.1f}d "
            f"conversations={snapshot.active_conversations}"
        )
        return snapshot

    except (BadRequestError, NotFoundError):
        await store.rollback()
        raise
    except Exception as e:
        await store.rollback()
        logger.error(f"Recruiter signal computation failed for {company_id}: {e}", exc_info=True)
        raise SignalComputationError(f"Failed to compute recruiter signals: {e}") from e


async def _upsert(
    store: EntityStore,
    model: type[models.CandidateSignal] | type[models.RecruiterSignal],
    key: str,
    snapshot: SignalSnapshot,
    values: dict[str, Any],
) -> None:
    """Overwrite the subject's snapshot row, creating it on first use."""
    existing = await store.first(model, **{key: snapshot.subject_id})
    if existing is not None:
        await store.update(existing, **values)
    else:
        await store.create(model, **{key: snapshot.subject_id}, **values)
    await store.commit()
