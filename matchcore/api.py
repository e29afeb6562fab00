"""FastAPI app exposing search, signals, resume indexing, evaluation and ranking.

Authentication is handled upstream; every route here is request-scoped and
works on an injected entity store.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from functools import lru_cache

from fastapi import Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ai.oracle import LLMOracle, OpenAIOracle, OracleError
from .config import settings
from .db import AsyncSessionMaker, get_store
from .errors import BadRequestError, NotFoundError
from .logging_config import setup_logging
from .parsers import ResumeExtractionError, ResumeTextExtractor
from .pipelines.evaluation import EvaluationError, evaluate_application
from .pipelines.indexing import IndexingError, index_resume, reindex_all_resumes
from .pipelines.ranking import RankedCandidate, RankingError, get_ranked_candidates, recompute_ranking
from .pipelines.search import SearchError, SearchFilters, search_candidates
from .pipelines.signals import SignalComputationError, compute_candidate_signals, compute_recruiter_signals
from .store import EntityStore

logger = logging.getLogger(__name__)


# Pydantic response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class SearchRequest(BaseModel):
    """Candidate search request."""
    query: str = ""
    experience_level: str | None = None
    industry: str | None = None
    location: str | None = None
    min_experience: int | None = Field(default=None, ge=0)
    max_experience: int | None = Field(default=None, ge=0)
    exclude_not_looking: bool = False
    boolean: bool = True
    limit: int | None = Field(default=None, ge=1, le=10000)


class MatchDTO(BaseModel):
    """Why a candidate matched."""
    source: str
    label: str
    term: str
    snippet: str


class SearchResultDTO(BaseModel):
    """Single search hit."""
    candidate_id: int
    user_id: int | None
    name: str | None
    headline: str | None
    score: int
    matches: list[MatchDTO]


class SearchResponse(BaseModel):
    """Search response."""
    total: int
    results: list[SearchResultDTO]


class SignalSnapshotDTO(BaseModel):
    """Signal snapshot of a candidate or recruiter."""
    subject_type: str
    subject_id: int
    user_id: int | None
    profile_completion_percent: int
    message_reply_rate: float
    avg_response_time_hours: float
    interview_completion_rate: float
    video_view_count: int
    profile_view_count: int
    swipe_right_count: int
    avg_pipeline_move_days: float | None = None
    active_conversations: int | None = None
    swipe_activity_count: int | None = None
    match_count: int | None = None
    responsiveness_score: str
    last_active: datetime


class EvaluationDTO(BaseModel):
    """Stored evaluation."""
    application_id: int
    candidate_id: int
    job_id: int
    score: float
    verdict: str
    fit_range: str
    alignment_highlights: list[str]
    gaps_concerns: list[str]
    generated_at: datetime


class EvaluationResponse(BaseModel):
    """Evaluate application response."""
    status: str
    evaluation: EvaluationDTO
    ranking_size: int
    rank: int | None


class RankedCandidateDTO(BaseModel):
    """Ranking entry with application, candidate and evaluation detail."""
    rank: int
    application_id: int
    candidate_id: int
    name: str | None
    headline: str | None
    application_status: str
    score: float
    fit_range: str
    verdict: str | None
    alignment_highlights: list[str] = Field(default_factory=list)
    gaps_concerns: list[str] = Field(default_factory=list)
    last_updated: datetime


class RankingResponse(BaseModel):
    """Ranked candidates for a job."""
    job_id: int
    total: int
    rankings: list[RankedCandidateDTO]


class IndexResumeRequest(BaseModel):
    """Resume indexing request."""
    resume_url: str | None = None


class IndexResumeResponse(BaseModel):
    """Resume indexing response."""
    status: str
    candidate_id: int
    text_length: int
    indexed_at: datetime


class ReindexResponse(BaseModel):
    """Bulk reindex report."""
    status: str
    total: int
    success: int
    failed: int
    errors: list[dict]


@lru_cache(maxsize=1)
def get_oracle() -> LLMOracle:
    """Process-wide oracle client."""
    return OpenAIOracle()


def get_extractor() -> ResumeTextExtractor:
    return ResumeTextExtractor()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionMaker


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title="Talent Signal Engine",
    version=settings.version,
    description="Candidate search, behavioral signals and AI-assisted application ranking",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],  # Frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=str(exc)).model_dump(),
    )


# Exception handlers
@app.exception_handler(BadRequestError)
async def bad_request_handler(request, exc: BadRequestError):
    logger.warning(f"Bad request: {exc}")
    return _error(status.HTTP_400_BAD_REQUEST, "bad_request", exc)


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    logger.warning(f"Not found: {exc}")
    return _error(status.HTTP_404_NOT_FOUND, "not_found", exc)


@app.exception_handler(OracleError)
async def oracle_error_handler(request, exc: OracleError):
    """Oracle failures are retry-safe: nothing was written."""
    logger.error(f"Oracle error: {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "oracle_error", exc)


@app.exception_handler(ResumeExtractionError)
async def extraction_error_handler(request, exc: ResumeExtractionError):
    logger.error(f"Resume extraction error: {exc}")
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "extraction_error", exc)


@app.exception_handler(SearchError)
@app.exception_handler(SignalComputationError)
@app.exception_handler(EvaluationError)
@app.exception_handler(RankingError)
@app.exception_handler(IndexingError)
async def pipeline_error_handler(request, exc: Exception):
    """Handle internal pipeline errors."""
    logger.error(f"{type(exc).__name__}: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_error", exc)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok", version=settings.version)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "search": "/search",
            "candidate_signals": "/candidates/{candidate_id}/signals",
            "recruiter_signals": "/companies/{company_id}/signals",
            "index_resume": "/candidates/{candidate_id}/index-resume",
            "reindex_resumes": "/resumes/reindex",
            "evaluate": "/applications/{application_id}/evaluate",
            "rankings": "/jobs/{job_id}/rankings",
            "docs": "/docs",
        },
    }


@app.post("/search", response_model=SearchResponse)
async def search_endpoint(
    request: SearchRequest,
    store: EntityStore = Depends(get_store),
) -> SearchResponse:
    """Free-text / boolean candidate search with match explanations."""
    filters = SearchFilters(
        experience_level=request.experience_level,
        industry=request.industry,
        location=request.location,
        min_experience=request.min_experience,
        max_experience=request.max_experience,
        exclude_not_looking=request.exclude_not_looking,
    )
    results = await search_candidates(
        store,
        request.query,
        filters,
        boolean=request.boolean,
        limit=request.limit,
    )
    return SearchResponse(
        total=len(results),
        results=[
            SearchResultDTO(
                candidate_id=r.candidate.id,
                user_id=r.candidate.user_id,
                name=r.user.full_name if r.user is not None else None,
                headline=r.candidate.headline,
                score=r.score,
                matches=[MatchDTO(**asdict(m)) for m in r.matches],
            )
            for r in results
        ],
    )


@app.post("/candidates/{candidate_id}/signals", response_model=SignalSnapshotDTO)
async def candidate_signals(
    candidate_id: int,
    store: EntityStore = Depends(get_store),
) -> SignalSnapshotDTO:
    """Recompute and return a candidate's signal snapshot."""
    snapshot = await compute_candidate_signals(store, candidate_id)
    return SignalSnapshotDTO(**asdict(snapshot))


@app.post("/companies/{company_id}/signals", response_model=SignalSnapshotDTO)
async def recruiter_signals(
    company_id: int,
    store: EntityStore = Depends(get_store),
) -> SignalSnapshotDTO:
    """Recompute and return a recruiter's signal snapshot."""
    snapshot = await compute_recruiter_signals(store, company_id)
    return SignalSnapshotDTO(**asdict(snapshot))


@app.post("/candidates/{candidate_id}/index-resume", response_model=IndexResumeResponse)
async def index_resume_endpoint(
    candidate_id: int,
    request: IndexResumeRequest = IndexResumeRequest(),
    store: EntityStore = Depends(get_store),
    extractor: ResumeTextExtractor = Depends(get_extractor),
) -> IndexResumeResponse:
    """Extract and index a candidate's resume text."""
    result = await index_resume(store, extractor, candidate_id, request.resume_url)
    return IndexResumeResponse(
        status="success",
        candidate_id=result.candidate_id,
        text_length=result.text_length,
        indexed_at=result.indexed_at,
    )


@app.post("/resumes/reindex", response_model=ReindexResponse)
async def reindex_resumes(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    extractor: ResumeTextExtractor = Depends(get_extractor),
) -> ReindexResponse:
    """Re-index every candidate that has a resume."""
    report = await reindex_all_resumes(session_factory, extractor)
    return ReindexResponse(status="success", **asdict(report))


@app.post("/applications/{application_id}/evaluate", response_model=EvaluationResponse)
async def evaluate(
    application_id: int,
    store: EntityStore = Depends(get_store),
    oracle: LLMOracle = Depends(get_oracle),
) -> EvaluationResponse:
    """Evaluate an application with the oracle and rebuild its job ranking."""
    result = await evaluate_application(store, oracle, application_id)
    evaluation = result.evaluation
    rank = next((r.rank for r in result.rankings if r.application_id == evaluation.application_id), None)
    return EvaluationResponse(
        status="success",
        evaluation=EvaluationDTO(
            application_id=evaluation.application_id,
            candidate_id=evaluation.candidate_id,
            job_id=evaluation.job_id,
            score=evaluation.score,
            verdict=evaluation.verdict,
            fit_range=evaluation.fit_range,
            alignment_highlights=evaluation.alignment_highlights or [],
            gaps_concerns=evaluation.gaps_concerns or [],
            generated_at=evaluation.generated_at,
        ),
        ranking_size=len(result.rankings),
        rank=rank,
    )


def _ranking_response(job_id: int, ranked: list[RankedCandidate]) -> RankingResponse:
    return RankingResponse(
        job_id=job_id,
        total=len(ranked),
        rankings=[
            RankedCandidateDTO(
                rank=r.rank,
                application_id=r.application.id,
                candidate_id=r.application.candidate_id,
                name=r.user.full_name if r.user is not None else None,
                headline=r.candidate.headline if r.candidate is not None else None,
                application_status=r.application.status,
                score=r.score,
                fit_range=r.fit_range,
                verdict=r.evaluation.verdict if r.evaluation is not None else None,
                alignment_highlights=(r.evaluation.alignment_highlights or []) if r.evaluation is not None else [],
                gaps_concerns=(r.evaluation.gaps_concerns or []) if r.evaluation is not None else [],
                last_updated=r.last_updated,
            )
            for r in ranked
        ],
    )


@app.get("/jobs/{job_id}/rankings", response_model=RankingResponse)
async def job_rankings(
    job_id: int,
    limit: int | None = Query(default=None, ge=1, le=1000),
    store: EntityStore = Depends(get_store),
) -> RankingResponse:
    """Ranked candidates for a job, best first."""
    ranked = await get_ranked_candidates(store, job_id, limit=limit)
    return _ranking_response(job_id, ranked)


@app.post("/jobs/{job_id}/rankings/recompute", response_model=RankingResponse)
async def recompute_job_rankings(
    job_id: int,
    store: EntityStore = Depends(get_store),
) -> RankingResponse:
    """Rebuild a job ranking from the stored evaluations."""
    await recompute_ranking(store, job_id)
    ranked = await get_ranked_candidates(store, job_id)
    return _ranking_response(job_id, ranked)
