"""
Runtime settings for the validation pipeline.

Read from environment variables; provider API keys fall back to the OS
keychain when the environment does not carry them.

Public API: get_settings, get_api_key_for_provider, build_provider_clients.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field

from llm.client import LLMClient, LLMProvider
from storage.keychain import get_keychain

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_ORDER = "claude,grok,openai"

# Environment variable holding each provider's key and model name.
_API_KEY_ENV = {
    "claude": "ANTHROPIC_API_KEY",
    "grok": "GROK_API_KEY",
    "openai": "OPENAI_API_KEY",
}
_MODEL_ENV = {
    "claude": "CLAUDE_MODEL_NAME",
    "grok": "GROK_MODEL_NAME",
    "openai": "GPT_MODEL_NAME",
    "bedrock": "BEDROCK_MODEL_NAME",
}


class ProviderSettings(BaseModel):
    provider: LLMProvider
    model: Optional[str] = None
    api_key: Optional[str | dict] = Field(default=None, repr=False)


class PipelineSettings(BaseModel):
    providers: list[ProviderSettings] = Field(default_factory=list)
    max_tokens: int = 4000
    timeout_ms: int = 30000
    word_limit: int = 33
    context_max_chars: int = 4000
    require_baa: bool = False
    baa_providers: list[str] = Field(default_factory=lambda: ["bedrock"])

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


def _env_bool(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %d", name, raw, default)
        return default


def _split_csv(raw: str) -> list[str]:
    return [p.strip().lower() for p in raw.split(",") if p.strip()]


def get_api_key_for_provider(provider: str) -> str | dict | None:
    """Credentials for one provider: environment first, then keychain.

    Bedrock without explicit keys uses the IAM role / default boto3 chain.
    """
    if provider == "bedrock":
        keychain = get_keychain()
        access_key = os.getenv("AWS_ACCESS_KEY_ID") or keychain.get_aws_access_key()
        secret_key = os.getenv("AWS_SECRET_ACCESS_KEY") or keychain.get_aws_secret_key()
        region = os.getenv("AWS_REGION", "us-east-1")
        if not access_key or not secret_key:
            return {"access_key": "iam_role", "secret_key": "", "region": region}
        return {"access_key": access_key, "secret_key": secret_key, "region": region}

    env_name = _API_KEY_ENV.get(provider)
    if env_name is None:
        return None
    return os.getenv(env_name) or get_keychain().get_provider_key(provider)


def get_settings() -> PipelineSettings:
    """Return current settings (read fresh from the environment)."""
    require_baa = _env_bool("REQUIRE_BAA")
    baa_providers = _split_csv(os.getenv("BAA_PROVIDERS", "bedrock"))

    providers: list[ProviderSettings] = []
    seen: set[str] = set()
    for name in _split_csv(os.getenv("LLM_PROVIDER_ORDER", DEFAULT_PROVIDER_ORDER)):
        try:
            provider = LLMProvider(name)
        except ValueError:
            logger.warning("Unknown LLM provider %r in LLM_PROVIDER_ORDER; skipping", name)
            continue
        if name in seen:
            continue
        seen.add(name)
        # BAA guard: only vendors with a signed BAA may receive dictation text
        if require_baa and name not in baa_providers:
            logger.info("Provider %s excluded: not BAA-covered", name)
            continue
        providers.append(
            ProviderSettings(
                provider=provider,
                model=os.getenv(_MODEL_ENV[name]) or None,
                api_key=get_api_key_for_provider(name),
            )
        )

    return PipelineSettings(
        providers=providers,
        max_tokens=_env_int("LLM_MAX_TOKENS", 4000),
        timeout_ms=_env_int("LLM_TIMEOUT", 30000),
        word_limit=_env_int("VALIDATION_WORD_LIMIT", 33),
        context_max_chars=_env_int("CONTEXT_MAX_CHARS", 4000),
        require_baa=require_baa,
        baa_providers=baa_providers,
    )


def build_provider_clients(settings: PipelineSettings) -> list[LLMClient]:
    """One LLMClient per configured provider, in priority order.

    Providers without credentials are skipped with a warning.
    """
    clients: list[LLMClient] = []
    for ps in settings.providers:
        if not ps.api_key:
            logger.warning("No API key for provider %s; skipping", ps.provider.value)
            continue
        clients.append(
            LLMClient(
                provider=ps.provider,
                api_key=ps.api_key,
                model=ps.model,
                timeout=settings.timeout_seconds,
                max_tokens=settings.max_tokens,
            )
        )
    return clients
