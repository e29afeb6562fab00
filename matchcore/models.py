"""Core SQLAlchemy models (2.x style) for the engine schema.

The collaborator entities (users, companies, candidates, jobs, messages, ...)
mirror what the product stores; the engine owns the evaluation, ranking and
signal tables.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every datetime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FitRange(str, Enum):
    """Coarse suitability bucket produced by the evaluation oracle."""
    CORE_FIT = "core_fit"
    ADJACENT_FIT = "adjacent_fit"
    STRETCH_FIT = "stretch_fit"
    MISALIGNED = "misaligned"


class Responsiveness(str, Enum):
    """Responsiveness bucket derived from reply rate and response time."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"


class IndexStatus(str, Enum):
    """Resume indexing state of a candidate."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


class User(TimestampMixin, Base):
    """Account behind a candidate or a recruiter."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255), index=True)
    role: Mapped[str] = mapped_column(String(50), default="user", nullable=False)


class Company(TimestampMixin, Base):
    """Hiring company, owned by a recruiter account."""
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    logo_url: Mapped[str | None] = mapped_column(String(1024))
    website: Mapped[str | None] = mapped_column(String(1024))
    industry: Mapped[str | None] = mapped_column(String(255))
    location: Mapped[str | None] = mapped_column(String(255))


class Candidate(TimestampMixin, Base):
    """Candidate profile plus indexed resume content."""
    __tablename__ = "candidates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    headline: Mapped[str | None] = mapped_column(String(255))
    bio: Mapped[str | None] = mapped_column(Text)
    skills: Mapped[list[str] | None] = mapped_column(JSON)
    location: Mapped[str | None] = mapped_column(String(255), index=True)
    photo_url: Mapped[str | None] = mapped_column(String(1024))
    resume_url: Mapped[str | None] = mapped_column(String(1024))
    video_url: Mapped[str | None] = mapped_column(String(1024))
    video_metadata: Mapped[dict | None] = mapped_column(JSON)
    experience: Mapped[list[dict] | None] = mapped_column(JSON)  # [{title, company, description, start_date, end_date}]
    education: Mapped[list[dict] | None] = mapped_column(JSON)  # [{degree, major, university}]
    certifications: Mapped[list[dict] | None] = mapped_column(JSON)  # [{name, issuer}]
    experience_level: Mapped[str | None] = mapped_column(String(50), index=True)
    industry: Mapped[str | None] = mapped_column(String(255), index=True)
    experience_years: Mapped[int | None] = mapped_column(Integer)
    job_search_status: Mapped[str | None] = mapped_column(String(50))

    # Resume index
    resume_parsed_text: Mapped[str | None] = mapped_column(Text)
    resume_normalized_text: Mapped[str | None] = mapped_column(Text)
    resume_parsed_metadata: Mapped[dict | None] = mapped_column(JSON)  # may also hold a JSON-encoded string
    index_status: Mapped[str] = mapped_column(String(20), default=IndexStatus.PENDING.value, nullable=False)
    index_timestamp: Mapped[datetime | None] = mapped_column()
    index_error: Mapped[str | None] = mapped_column(Text)


class Job(TimestampMixin, Base):
    """Job postings table."""
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    requirements: Mapped[str | None] = mapped_column(Text)
    responsibilities: Mapped[str | None] = mapped_column(Text)
    skills: Mapped[list[str] | None] = mapped_column(JSON)
    location: Mapped[str | None] = mapped_column(String(255))
    experience_level: Mapped[str | None] = mapped_column(String(50))
    salary_min: Mapped[float | None] = mapped_column(Float)
    salary_max: Mapped[float | None] = mapped_column(Float)
    salary_currency: Mapped[str | None] = mapped_column(String(10))


class Application(TimestampMixin, Base):
    """Candidate application to a job."""
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id: Mapped[int] = mapped_column(
        ForeignKey("candidates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(String(50), default="applied", nullable=False)


class DirectMessage(TimestampMixin, Base):
    """One-to-one chat message between two users."""
    __tablename__ = "direct_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    receiver_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content: Mapped[str | None] = mapped_column(Text)


class Interview(TimestampMixin, Base):
    """Interview between a candidate and a company."""
    __tablename__ = "interviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_id: Mapped[int | None] = mapped_column(ForeignKey("candidates.id", ondelete="CASCADE"), index=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), index=True)
    job_id: Mapped[int | None] = mapped_column(ForeignKey("jobs.id", ondelete="SET NULL"))
    status: Mapped[str] = mapped_column(String(50), nullable=False)  # scheduled, confirmed, completed, cancelled
    scheduled_at: Mapped[datetime | None] = mapped_column()


class Swipe(TimestampMixin, Base):
    """Swipe event: a user swiping on a candidate or a job."""
    __tablename__ = "swipes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    target_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    target_type: Mapped[str] = mapped_column(String(50), default="candidate", nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)  # left, right, super


class InterestSignal(TimestampMixin, Base):
    """Recruiter interest event on a candidate (views, saves, ...)."""
    __tablename__ = "interest_signals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_id: Mapped[int] = mapped_column(
        ForeignKey("candidates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"))
    signal_type: Mapped[str] = mapped_column(String(50), nullable=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)


class Match(TimestampMixin, Base):
    """Mutual match moving through a company's hiring pipeline."""
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id: Mapped[int] = mapped_column(ForeignKey("candidates.id", ondelete="CASCADE"), nullable=False)
    job_id: Mapped[int | None] = mapped_column(ForeignKey("jobs.id", ondelete="SET NULL"))
    stage: Mapped[str] = mapped_column(String(50), default="matched", nullable=False)


class CandidateEvaluation(Base):
    """Latest oracle evaluation of one application (one row per application)."""
    __tablename__ = "candidate_evaluations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    candidate_id: Mapped[int] = mapped_column(ForeignKey("candidates.id", ondelete="CASCADE"), nullable=False)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    verdict: Mapped[str] = mapped_column(Text, nullable=False)
    fit_range: Mapped[str] = mapped_column(String(20), nullable=False)
    alignment_highlights: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    gaps_concerns: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    resume_version: Mapped[str | None] = mapped_column(String(1024))
    job_description_snapshot: Mapped[str | None] = mapped_column(Text)
    generated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class ApplicationRanking(Base):
    """Dense 1-based rank of an application within its job."""
    __tablename__ = "application_rankings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
    )
    candidate_id: Mapped[int] = mapped_column(ForeignKey("candidates.id", ondelete="CASCADE"), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    fit_range: Mapped[str] = mapped_column(String(20), nullable=False)
    last_updated: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("job_id", "rank", name="uq_application_rankings_job_rank"),
        UniqueConstraint("job_id", "application_id", name="uq_application_rankings_job_application"),
        Index("ix_application_rankings_job_rank", "job_id", "rank"),
    )


class CandidateSignal(Base):
    """Behavioral snapshot of a candidate (one row per candidate)."""
    __tablename__ = "candidate_signals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    candidate_id: Mapped[int] = mapped_column(
        ForeignKey("candidates.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[int | None] = mapped_column(Integer)
    profile_completion_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_reply_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_response_time_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    interview_completion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    video_view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    profile_view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    swipe_right_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    responsiveness_score: Mapped[str] = mapped_column(String(20), default=Responsiveness.UNKNOWN.value, nullable=False)
    last_active: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class RecruiterSignal(Base):
    """Behavioral snapshot of a recruiting company (one row per company)."""
    __tablename__ = "recruiter_signals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[int | None] = mapped_column(Integer)
    profile_completion_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_reply_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_response_time_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    interview_completion_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_pipeline_move_days: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    active_conversations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    swipe_activity_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    match_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    responsiveness_score: Mapped[str] = mapped_column(String(20), default=Responsiveness.UNKNOWN.value, nullable=False)
    last_active: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
