"""LLM oracle client: prompt + JSON schema in, schema-conforming dict out.

Wraps an OpenAI-compatible chat completions endpoint with a per-attempt
timeout and tenacity retries. Any failure that survives the retry budget is
surfaced as ``OracleError``.
"""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from openai import AsyncOpenAI, OpenAIError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from matchcore.config import settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a meticulous recruiting analyst. Respond only with valid JSON matching the requested schema."


class OracleError(Exception):
    """Raised when the oracle fails, times out or returns unusable output."""
    pass


class LLMOracle(ABC):
    """Abstract LLM judge."""

    @abstractmethod
    async def invoke(self, prompt: str, json_schema: dict[str, Any]) -> dict[str, Any]:
        """Run the prompt and return an object conforming to ``json_schema``.

        Raises:
            OracleError: If the call fails or the output is not JSON
        """
        raise NotImplementedError


class OpenAIOracle(LLMOracle):
    """Oracle backed by the OpenAI (or any compatible) chat completions API."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model or settings.llm.model
        self.temperature = settings.llm.temperature if temperature is None else temperature
        self.client = client or AsyncOpenAI(
            api_key=api_key or settings.llm.api_key,
            base_url=base_url or settings.llm.base_url,
        )
        logger.info(f"Initialized OpenAI oracle with model {self.model}")

    async def invoke(self, prompt: str, json_schema: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "evaluation", "schema": json_schema, "strict": True},
                },
            )
        except OpenAIError as e:
            raise OracleError(f"LLM request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise OracleError("LLM returned an empty response")

        try:
            payload = json.loads(content)
        except ValueError as e:
            raise OracleError(f"LLM returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise OracleError(f"LLM returned {type(payload).__name__}, expected an object")
        return payload


async def invoke_oracle(
    oracle: LLMOracle,
    prompt: str,
    json_schema: dict[str, Any],
    *,
    timeout_s: float | None = None,
    max_attempts: int | None = None,
    backoff_s: float | None = None,
) -> dict[str, Any]:
    """Call the oracle with a per-attempt timeout and a retry budget.

    Args:
        oracle: Oracle implementation
        prompt: Full prompt text
        json_schema: Output schema
        timeout_s: Per-attempt timeout (default from config)
        max_attempts: Attempts before giving up (default from config)
        backoff_s: Exponential backoff multiplier (default from config)

    Returns:
        Oracle output

    Raises:
        OracleError: After the last failed attempt
    """
    cfg = settings.evaluation
    timeout_s = timeout_s or cfg.oracle_timeout_s
    max_attempts = max_attempts or cfg.oracle_max_attempts
    backoff_s = cfg.oracle_backoff_s if backoff_s is None else backoff_s

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=backoff_s, min=0, max=10 * backoff_s),
        retry=retry_if_exception_type((OracleError, asyncio.TimeoutError)),
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    logger.warning(f"Retrying oracle call (attempt {number}/{max_attempts})")
                return await asyncio.wait_for(oracle.invoke(prompt, json_schema), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        logger.error(f"Oracle timed out after {max_attempts} attempts ({timeout_s}s each)")
        raise OracleError(f"Oracle timed out after {timeout_s}s") from e
    except OracleError:
        logger.error(f"Oracle failed after {max_attempts} attempts")
        raise
    except Exception as e:
        logger.error(f"Oracle call failed: {e}", exc_info=True)
        raise OracleError(f"Oracle call failed: {e}") from e
    raise OracleError("Oracle returned no result")
