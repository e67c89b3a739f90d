"""Tests for the LLM layer and the summarizer."""

import json

import httpx
import pytest

from archrag.embedding.resilience import CircuitState, ResiliencePolicy
from archrag.errors import ProviderError, TransientProviderError
from archrag.llm.base import BaseLLM, LLMResponse
from archrag.llm.factory import create_llm
from archrag.llm.gemini import GeminiLLM
from archrag.llm.summarizer import LLMSummarizer
from archrag.monitoring.telemetry import AnalysisTelemetry
from archrag.pipeline.config import LLMConfig


class ScriptedLLM(BaseLLM):
    """Returns queued responses or raises queued errors."""

    def __init__(self, outcomes):
        super().__init__(model="gemini-2.5-flash")
        self.outcomes = list(outcomes)
        self.prompts = []
        self.closed = False

    async def generate(self, prompt, temperature=None, max_tokens=None):
        self.prompts.append(prompt)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def aclose(self):
        self.closed = True


def fast_policy(**overrides):
    values = dict(name="llm", timeout_seconds=1.0, max_retry_attempts=2, retry_base_delay_seconds=0.001)
    values.update(overrides)
    return ResiliencePolicy(**values)


def test_llm_response_defaults():
    """Test LLMResponse optional fields."""
    response = LLMResponse(content="Hello", model="gemini-2.5-flash")

    assert response.content == "Hello"
    assert response.tokens_used is None
    assert response.finish_reason is None
    assert response.input_tokens is None
    assert not response.has_usage
    assert LLMResponse(content="", model="m", input_tokens=3, output_tokens=0).has_usage


class TestGeminiLLM:
    """Tests for the Gemini adapter over a mocked transport."""

    async def test_generate(self):
        seen = []

        def handler(request):
            seen.append((request, json.loads(request.content)))
            return httpx.Response(200, json={
                "candidates": [{
                    "content": {"parts": [{"text": "Hello "}, {"text": "world"}]},
                    "finishReason": "STOP",
                }],
                "usageMetadata": {
                    "promptTokenCount": 12,
                    "candidatesTokenCount": 3,
                    "totalTokenCount": 15,
                },
            })

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        llm = GeminiLLM(api_key="k", temperature=0.1, max_tokens=256, client=client)

        response = await llm.generate("Summarize this")

        assert response.content == "Hello world"
        assert response.finish_reason == "STOP"
        assert response.tokens_used == 15
        assert response.input_tokens == 12
        assert response.output_tokens == 3

        request, body = seen[0]
        assert "models/gemini-2.5-flash:generateContent" in str(request.url)
        assert body["contents"][0]["parts"][0]["text"] == "Summarize this"
        assert body["generationConfig"] == {"temperature": 0.1, "maxOutputTokens": 256}
        await client.aclose()

    async def test_server_error_is_transient(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503, text="busy"))
        )
        llm = GeminiLLM(api_key="k", client=client)

        with pytest.raises(TransientProviderError):
            await llm.generate("x")
        await client.aclose()

    async def test_missing_candidates(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []}))
        )
        llm = GeminiLLM(api_key="k", client=client)

        with pytest.raises(ProviderError, match="Unexpected Gemini API response"):
            await llm.generate("x")
        await client.aclose()

    async def test_non_json_body(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>oops"))
        )
        llm = GeminiLLM(api_key="k", client=client)

        with pytest.raises(ProviderError, match="non-JSON"):
            await llm.generate("x")
        await client.aclose()

    async def test_malformed_parts(self):
        """Test oddly shaped candidates raise ProviderError instead of TypeError."""
        payloads = [
            ["not", "an", "object"],
            {"candidates": [{"content": {"parts": ["plain string"]}}]},
            {"candidates": [{"content": None}]},
        ]
        for payload in payloads:
            client = httpx.AsyncClient(
                transport=httpx.MockTransport(
                    lambda request, payload=payload: httpx.Response(200, json=payload)
                )
            )
            llm = GeminiLLM(api_key="k", client=client)

            with pytest.raises(ProviderError, match="Unexpected Gemini API response"):
                await llm.generate("x")
            await client.aclose()

    def test_requires_api_key(self):
        with pytest.raises(ValueError, match="API key"):
            GeminiLLM(api_key="")


class TestFactory:
    """Tests for create_llm."""

    def test_no_provider(self):
        assert create_llm(LLMConfig(provider="")) is None

    def test_gemini(self):
        llm = create_llm(LLMConfig(provider="gemini", api_key="k", model="gemini-2.5-pro"))
        assert isinstance(llm, GeminiLLM)
        assert llm.model == "gemini-2.5-pro"

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unsupported LLM provider"):
            create_llm(LLMConfig(provider="anthropic"))


class TestLLMSummarizer:
    """Tests for the resilient summarizer."""

    async def test_records_reported_usage(self):
        llm = ScriptedLLM([
            LLMResponse(content="summary", model="gemini-2.5-flash", input_tokens=100, output_tokens=20),
        ])
        telemetry = AnalysisTelemetry()
        summarizer = LLMSummarizer(llm, fast_policy(), telemetry=telemetry)

        assert await summarizer.summarize("prompt", project_id="p1") == "summary"

        summary = telemetry.get_project_summary("p1")
        assert summary.total_tokens == 120
        assert summary.model_calls == {"gemini-2.5-flash": 1}

    async def test_estimates_missing_usage(self):
        """Test providers without usage data are charged an estimate."""
        llm = ScriptedLLM([LLMResponse(content="b" * 40, model="gemini-2.5-flash")])
        telemetry = AnalysisTelemetry()
        summarizer = LLMSummarizer(llm, fast_policy(), telemetry=telemetry)

        await summarizer.summarize("a" * 400, project_id="p1")

        assert telemetry.get_project_summary("p1").total_tokens == 110

    async def test_retries_transient_failure(self):
        llm = ScriptedLLM([
            TransientProviderError("503"),
            LLMResponse(content="ok", model="gemini-2.5-flash"),
        ])
        summarizer = LLMSummarizer(llm, fast_policy())

        assert await summarizer.summarize("prompt") == "ok"
        assert len(llm.prompts) == 2

    async def test_failure_is_recorded_and_raised(self):
        llm = ScriptedLLM([ProviderError("bad request", status_code=400)])
        telemetry = AnalysisTelemetry()
        summarizer = LLMSummarizer(llm, fast_policy(), telemetry=telemetry)

        with pytest.raises(ProviderError):
            await summarizer.summarize("prompt", project_id="p1")

        assert telemetry.get_project_summary("p1").model_calls == {"gemini-2.5-flash": 1}
        assert summarizer.breaker.state is CircuitState.CLOSED

    async def test_aclose_closes_llm(self):
        llm = ScriptedLLM([])
        await LLMSummarizer(llm).aclose()
        assert llm.closed
