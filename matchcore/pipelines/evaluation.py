"""Application evaluation: oracle judgement persisted per application.

Workflow:
1. Resolve application, candidate and job (NotFound before any write)
2. Assemble resume and job context
3. Ask the oracle for a rubric-bound, schema-shaped judgement
4. Overwrite the application's evaluation
5. Rebuild the job ranking, in the same transaction as step 4
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ai.oracle import LLMOracle, OracleError, invoke_oracle
from matchcore import models
from matchcore.config import settings
from matchcore.errors import BadRequestError, NotFoundError
from matchcore.models import FitRange, utcnow
from matchcore.pipelines.normalization import as_list, dict_entries, extract_plain_text
from matchcore.pipelines.ranking import replace_ranking
from matchcore.store import EntityStore

logger = logging.getLogger(__name__)


EVALUATION_RUBRIC = """You are acting as a senior recruiter making a submission recommendation to a hiring manager.
Assess the candidate resume provided against the job description provided.

Your evaluation must be strict and calibrated. Assume that no candidate below an 8.5 out of 10 should be submitted as a primary candidate.
A score of 8.5 or higher means a strong recommendation to submit.
If the difference between a 5 and a 7 is unclear, your scoring is not precise enough.

Do not be generous. Do not assume potential.
Score only on demonstrated experience and evidence in the resume.

Use clear, concise, manager-ready language.
No fluff. No filler.

Output your evaluation in the following JSON format:
{
  "score": <number 0-10>,
  "verdict": "<1-2 sentence verdict including fit range: Strong fit/Moderate fit/Not recommended and Core fit/Adjacent fit/Stretch fit/Misaligned>",
  "fit_range": "<core_fit|adjacent_fit|stretch_fit|misaligned>",
  "alignment_highlights": ["<bullet point 1>", "<bullet point 2>", ...],
  "gaps_concerns": ["<gap 1>", "<gap 2>", ...]
}"""

EVALUATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "score": {"type": "number"},
        "verdict": {"type": "string"},
        "fit_range": {"type": "string", "enum": [f.value for f in FitRange]},
        "alignment_highlights": {"type": "array", "items": {"type": "string"}},
        "gaps_concerns": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["score", "verdict", "fit_range", "alignment_highlights", "gaps_concerns"],
    "additionalProperties": False,
}


class EvaluationError(Exception):
    """Raised when an evaluation cannot be persisted."""
    pass


class EvaluationOutput(BaseModel):
    """Validated oracle judgement."""
    score: float
    verdict: str = Field(min_length=1)
    fit_range: FitRange
    alignment_highlights: list[str] = Field(default_factory=list)
    gaps_concerns: list[str] = Field(default_factory=list)

    @field_validator("score")
    @classmethod
    def clamp_score(cls, v: float) -> float:
        return min(max(v, 0.0), 10.0)

    @field_validator("alignment_highlights", "gaps_concerns", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return v or []


@dataclass
class EvaluationResult:
    """Stored evaluation plus the ranking it produced."""
    evaluation: models.CandidateEvaluation
    rankings: list[models.ApplicationRanking]


def _salary_band(job: models.Job) -> str:
    if job.salary_min is None and job.salary_max is None:
        return "Not specified"
    currency = f" {job.salary_currency}" if job.salary_currency else ""
    low = f"{job.salary_min:,.0f}" if job.salary_min is not None else "?"
    high = f"{job.salary_max:,.0f}" if job.salary_max is not None else "?"
    return f"{low} - {high}{currency}"


def build_resume_context(candidate: models.Candidate, user: models.User | None = None) -> str:
    """Plain-text resume block handed to the oracle."""
    excerpt = settings.evaluation.experience_excerpt_chars
    owner = f"candidate {candidate.id}"
    lines: list[str] = []

    if user is not None and user.full_name:
        lines.append(f"Name: {user.full_name}")
    if candidate.resume_url:
        lines.append(f"Resume URL: {candidate.resume_url}")
    lines.append(f"Candidate: {candidate.headline or 'No title'}")
    lines.append(f"Location: {candidate.location or 'Not specified'}")
    lines.append(f"Bio: {extract_plain_text(candidate.bio) or 'Not provided'}")
    lines.append("")

    skills = as_list(candidate.skills, "skills", owner)
    if skills:
        lines.append(f"Skills: {', '.join(str(s) for s in skills)}")
        lines.append("")

    experience = dict_entries(candidate.experience, "experience", owner)
    if experience:
        lines.append("Experience:")
        for exp in experience:
            period = f"{exp.get('start_date') or '?'} - {exp.get('end_date') or 'Present'}"
            lines.append(f"- {exp.get('title') or 'Untitled'} at {exp.get('company') or 'Unknown'} ({period})")
            description = extract_plain_text(exp.get("description"))
            if description:
                suffix = "..." if len(description) > excerpt else ""
                lines.append(f"  {description[:excerpt]}{suffix}")
        lines.append("")

    education = dict_entries(candidate.education, "education", owner)
    if education:
        lines.append("Education:")
        for edu in education:
            school = edu.get("university") or edu.get("school") or "Unknown school"
            lines.append(f"- {edu.get('degree') or 'Degree'} in {edu.get('major') or 'Unspecified'} from {school}")
        lines.append("")

    certifications = dict_entries(candidate.certifications, "certifications", owner)
    if certifications:
        lines.append("Certifications:")
        for cert in certifications:
            issuer = f" ({cert['issuer']})" if cert.get("issuer") else ""
            lines.append(f"- {cert.get('name') or 'Unnamed'}{issuer}")
        lines.append("")

    if candidate.resume_parsed_metadata:
        metadata = candidate.resume_parsed_metadata
        if not isinstance(metadata, str):
            metadata = json.dumps(metadata, ensure_ascii=False)
        lines.append(f"Resume metadata: {metadata}")
        lines.append("")

    if candidate.resume_parsed_text:
        limit = settings.evaluation.resume_excerpt_chars
        lines.append("Resume text:")
        lines.append(candidate.resume_parsed_text[:limit])
        lines.append("")

    if candidate.video_metadata:
        lines.append(f"Video introduction: {json.dumps(candidate.video_metadata, ensure_ascii=False)}")

    return "\n".join(lines).strip()


def build_job_context(job: models.Job, company: models.Company | None = None) -> str:
    """Plain-text job block handed to the oracle."""
    skills = ", ".join(str(s) for s in as_list(job.skills, "skills", f"job {job.id}")) or "Not specified"
    return f"""Job Title: {job.title}
Company: {company.name if company is not None else job.company_id}
Location: {job.location or 'Not specified'}
Experience Level: {job.experience_level or 'Not specified'}
Salary Band: {_salary_band(job)}
Skills: {skills}

Description:
{extract_plain_text(job.description) or 'Not provided'}

Requirements:
{extract_plain_text(job.requirements) or 'Not specified'}

Responsibilities:
{extract_plain_text(job.responsibilities) or 'Not specified'}"""


def build_evaluation_prompt(resume_context: str, job_context: str) -> str:
    return f"""{EVALUATION_RUBRIC}

=== RESUME ===
{resume_context}

=== JOB DESCRIPTION ===
{job_context}

Provide your evaluation in JSON format as specified above."""


def parse_oracle_output(raw: dict[str, Any]) -> EvaluationOutput:
    """Validate the oracle payload; shape errors count as oracle failures."""
    try:
        return EvaluationOutput.model_validate(raw)
    except ValidationError as e:
        raise OracleError(f"Oracle output does not match the evaluation schema: {e}") from e


async def evaluate_application(
    store: EntityStore,
    oracle: LLMOracle,
    application_id: int | None,
) -> EvaluationResult:
    """Evaluate one application and rebuild its job ranking.

    The evaluation write and the ranking rebuild are committed together;
    an oracle failure, a cancellation or any other error leaves both the
    previous evaluation and the previous ranking untouched.

    Args:
        store: Entity store
        oracle: LLM judge
        application_id: Application to evaluate

    Returns:
        EvaluationResult with the stored evaluation and new ranking rows

    Raises:
        BadRequestError: If application_id is missing
        NotFoundError: If the application, candidate or job does not exist
        OracleError: If the oracle fails after its retry budget
        EvaluationError: If persistence fails
    """
    if application_id is None or application_id == "":
        raise BadRequestError("application_id required")

    try:
        application = await store.get(models.Application, application_id)
        if application is None:
            raise NotFoundError("Application", application_id)

        candidate = await store.get(models.Candidate, application.candidate_id)
        if candidate is None:
            raise NotFoundError("Candidate", application.candidate_id)

        job = await store.get(models.Job, application.job_id)
        if job is None:
            raise NotFoundError("Job", application.job_id)

        user = await store.get(models.User, candidate.user_id)
        company = await store.get(models.Company, job.company_id)

        prompt = build_evaluation_prompt(
            build_resume_context(candidate, user),
            build_job_context(job, company),
        )

        logger.info(f"Evaluating application {application_id} (candidate {candidate.id}, job {job.id})")
        raw = await invoke_oracle(oracle, prompt, EVALUATION_SCHEMA)
        output = parse_oracle_output(raw)

        values = {
            "candidate_id": candidate.id,
            "job_id": job.id,
            "score": output.score,
            "verdict": output.verdict,
            "fit_range": output.fit_range.value,
            "alignment_highlights": list(output.alignment_highlights),
            "gaps_concerns": list(output.gaps_concerns),
            "resume_version": candidate.resume_url,
            "job_description_snapshot": job.description,
            "generated_at": utcnow(),
        }
        evaluation = await store.first(models.CandidateEvaluation, application_id=application.id)
        if evaluation is not None:
            evaluation = await store.update(evaluation, **values)
        else:
            evaluation = await store.create(models.CandidateEvaluation, application_id=application.id, **values)

        rankings = await replace_ranking(store, job.id)
        await store.commit()

        logger.info(
            f"Application {application_id} scored {output.score:.1f} ({output.fit_range.value}); "
            f"job {job.id} ranking has {len(rankings)} entries"
        )
        return EvaluationResult(evaluation=evaluation, rankings=rankings)

    except asyncio.CancelledError:
        await store.rollback()
        raise
    except (BadRequestError, NotFoundError, OracleError):
        await store.rollback()
        raise
    except Exception as e:
        await store.rollback()
        logger.error(f"Evaluation failed for application {application_id}: {e}", exc_info=True)
        raise EvaluationError(f"Failed to store evaluation: {e}") from e
