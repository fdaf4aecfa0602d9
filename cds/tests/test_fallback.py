"""Tests for ordered provider fallback."""

import asyncio
import logging

import pytest

from llm.client import ProviderCallError, ProviderResponse
from llm.fallback import AllProvidersFailedError, FallbackOrchestrator


class FakeProvider:
    def __init__(self, name, content=None, error=None, delay=0.0):
        self.name = name
        self.content = content
        self.error = error
        self.delay = delay
        self.calls = []

    async def call(self, prompt):
        self.calls.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProviderResponse(provider=self.name, model=f"{self.name}-model", content=self.content)


class TestFallbackOrchestrator:
    def test_first_provider_wins(self):
        a = FakeProvider("claude", content="A")
        b = FakeProvider("grok", content="B")
        response = asyncio.run(FallbackOrchestrator([a, b]).call_with_fallback("p"))
        assert response.content == "A"
        assert b.calls == []

    def test_falls_through_in_order(self):
        a = FakeProvider("claude", error=ProviderCallError("claude", "overloaded", 529))
        b = FakeProvider("grok", error=RuntimeError("connection reset"))
        c = FakeProvider("openai", content="C")
        response = asyncio.run(FallbackOrchestrator([a, b, c]).call_with_fallback("p"))
        assert response.provider == "openai"
        assert len(a.calls) == len(b.calls) == len(c.calls) == 1

    def test_each_provider_tried_once_on_exhaustion(self):
        providers = [
            FakeProvider("claude", error=ProviderCallError("claude", "500", 500)),
            FakeProvider("grok", error=ProviderCallError("grok", "429", 429)),
        ]
        with pytest.raises(AllProvidersFailedError) as exc_info:
            asyncio.run(FallbackOrchestrator(providers).call_with_fallback("p"))

        err = exc_info.value
        assert [f.provider for f in err.failures] == ["claude", "grok"]
        assert err.last_error is providers[-1].error
        assert all(len(p.calls) == 1 for p in providers)

    def test_timeout_moves_to_next_provider(self, caplog):
        slow = FakeProvider("claude", content="late", delay=1.0)
        fast = FakeProvider("grok", content="B")
        with caplog.at_level(logging.WARNING, logger="llm.fallback"):
            response = asyncio.run(
                FallbackOrchestrator([slow, fast], timeout_seconds=0.05).call_with_fallback("p")
            )
        assert response.content == "B"
        assert "timed out" in caplog.text

    def test_timeout_recorded_as_failure(self):
        slow = FakeProvider("claude", content="late", delay=1.0)
        with pytest.raises(AllProvidersFailedError) as exc_info:
            asyncio.run(FallbackOrchestrator([slow], timeout_seconds=0.05).call_with_fallback("p"))
        assert isinstance(exc_info.value.last_error, asyncio.TimeoutError)

    def test_no_providers(self):
        with pytest.raises(AllProvidersFailedError) as exc_info:
            asyncio.run(FallbackOrchestrator([]).call_with_fallback("p"))
        assert exc_info.value.failures == []
        assert exc_info.value.last_error is None
        assert "no providers configured" in str(exc_info.value)

    def test_provider_names(self):
        orchestrator = FallbackOrchestrator([FakeProvider("claude"), FakeProvider("openai")])
        assert orchestrator.provider_names == ["claude", "openai"]
