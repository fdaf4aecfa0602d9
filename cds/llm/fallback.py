"""
Ordered provider fallback.

Providers are tried one at a time in their configured priority order. Each
call runs under a hard timeout; a timeout, an error status or any other
exception moves on to the next provider. Nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from llm.client import ProviderResponse

logger = logging.getLogger(__name__)


class Provider(Protocol):
    name: str

    async def call(self, prompt: str) -> ProviderResponse:
        ...


@dataclass
class ProviderFailure:
    provider: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.provider}: {self.error}"


class AllProvidersFailedError(RuntimeError):
    """Every configured provider failed for one prompt."""

    def __init__(self, failures: list[ProviderFailure]):
        self.failures = failures
        self.last_error: Optional[BaseException] = failures[-1].error if failures else None
        if failures:
            detail = "; ".join(str(f) for f in failures)
        else:
            detail = "no providers configured"
        super().__init__(f"All LLM providers failed: {detail}")


class FallbackOrchestrator:
    def __init__(self, providers: Sequence[Provider], timeout_seconds: float = 30.0):
        self._providers = list(providers)
        self._timeout = timeout_seconds

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    async def call_with_fallback(self, prompt: str) -> ProviderResponse:
        """Return the first successful provider response.

        Raises AllProvidersFailedError when every provider has failed once.
        """
        failures: list[ProviderFailure] = []

        for provider in self._providers:
            try:
                response = await asyncio.wait_for(
                    provider.call(prompt), timeout=self._timeout
                )
            except asyncio.TimeoutError as e:
                logger.warning(
                    "LLM provider %s timed out after %.1fs", provider.name, self._timeout
                )
                failures.append(ProviderFailure(provider.name, e))
                continue
            except Exception as e:
                logger.warning("LLM provider %s failed: %s", provider.name, e)
                failures.append(ProviderFailure(provider.name, e))
                continue

            if failures:
                logger.info(
                    "LLM provider %s succeeded after %d failure(s)",
                    provider.name, len(failures),
                )
            return response

        logger.error("All %d LLM providers failed", len(self._providers))
        raise AllProvidersFailedError(failures)
