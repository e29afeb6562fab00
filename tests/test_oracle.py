import json
from types import SimpleNamespace

import pytest

from ai.oracle import OpenAIOracle, OracleError, invoke_oracle
from fakes import FakeOracle, judgement

SCHEMA = {"type": "object"}


@pytest.mark.asyncio
async def test_invoke_oracle_returns_first_success():
    oracle = FakeOracle(judgement(8.0))
    assert (await invoke_oracle(oracle, "prompt", SCHEMA))["score"] == 8.0
    assert oracle.prompts == ["prompt"]


@pytest.mark.asyncio
async def test_invoke_oracle_retries_then_succeeds():
    oracle = FakeOracle(OracleError("flaky"), judgement(6.0))
    result = await invoke_oracle(oracle, "prompt", SCHEMA, max_attempts=3, backoff_s=0)
    assert result["score"] == 6.0
    assert len(oracle.prompts) == 2


@pytest.mark.asyncio
async def test_invoke_oracle_gives_up_after_budget():
    oracle = FakeOracle(OracleError("down"))
    with pytest.raises(OracleError):
        await invoke_oracle(oracle, "prompt", SCHEMA, max_attempts=2, backoff_s=0)
    assert len(oracle.prompts) == 2


@pytest.mark.asyncio
async def test_invoke_oracle_times_out_each_attempt():
    oracle = FakeOracle(judgement(9.0), delay=1.0)
    with pytest.raises(OracleError, match="timed out"):
        await invoke_oracle(oracle, "prompt", SCHEMA, timeout_s=0.05, max_attempts=2, backoff_s=0)
    assert len(oracle.prompts) == 2


@pytest.mark.asyncio
async def test_invoke_oracle_wraps_unexpected_errors():
    oracle = FakeOracle(RuntimeError("boom"))
    with pytest.raises(OracleError, match="boom"):
        await invoke_oracle(oracle, "prompt", SCHEMA, max_attempts=3, backoff_s=0)
    assert len(oracle.prompts) == 1


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(content):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.mark.asyncio
async def test_openai_oracle_requests_strict_schema():
    client, completions = fake_client(json.dumps(judgement(7.5)))
    oracle = OpenAIOracle(client=client, model="test-model", temperature=0.0)

    payload = await oracle.invoke("prompt", SCHEMA)

    assert payload["score"] == 7.5
    call = completions.calls[0]
    assert call["model"] == "test-model"
    assert call["response_format"]["json_schema"]["strict"] is True
    assert call["messages"][-1] == {"role": "user", "content": "prompt"}


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "not json", "[1, 2]"])
async def test_openai_oracle_rejects_unusable_output(content):
    client, _ = fake_client(content)
    with pytest.raises(OracleError):
        await OpenAIOracle(client=client).invoke("prompt", SCHEMA)

