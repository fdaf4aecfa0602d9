"""
LLM provider adapters: Claude, Grok (xAI), OpenAI and Bedrock.

Each adapter performs exactly one request per call. SDK-level retries are
disabled so that the fallback orchestrator alone decides what happens after
a failure. Every failure surfaces as ProviderCallError.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

GROK_BASE_URL = "https://api.x.ai/v1"

DEFAULT_MODELS = {
    "claude": "claude-sonnet-4-6",
    "grok": "grok-3",
    "openai": "gpt-4.1-mini",
    "bedrock": "claude-sonnet-4-6",
}

# Mapping from Anthropic model IDs to Bedrock inference profile IDs.
# Bedrock requires inference profile IDs (with regional prefix) for on-demand use.
_BEDROCK_MODEL_MAP = {
    "claude-sonnet-4-6": "us.anthropic.claude-sonnet-4-6",
    "claude-sonnet-4-5": "us.anthropic.claude-sonnet-4-5-20250929-v1:0",
    "claude-sonnet-4-20250514": "us.anthropic.claude-sonnet-4-20250514-v1:0",
    "claude-haiku-4-5-20251001": "us.anthropic.claude-haiku-4-5-20251001-v1:0",
    "claude-3-5-sonnet-20241022": "us.anthropic.claude-3-5-sonnet-20241022-v2:0",
}

# Region prefix mapping for inference profiles
_BEDROCK_REGION_PREFIX = {
    "us-east-1": "us",
    "us-east-2": "us",
    "us-west-2": "us",
    "eu-west-1": "eu",
    "eu-central-1": "eu",
    "ap-northeast-1": "ap",
    "ap-southeast-1": "ap",
}


def _to_bedrock_model_id(model: str, region: str = "us-east-1") -> str:
    """Convert an Anthropic model ID to its Bedrock inference profile ID."""
    prefix = _BEDROCK_REGION_PREFIX.get(region, "us")
    if model[:3] in ("us.", "eu.", "ap.") and "anthropic." in model:
        return model
    if "anthropic." in model:
        return f"{prefix}.{model}"
    if model in _BEDROCK_MODEL_MAP:
        return f"{prefix}.{_BEDROCK_MODEL_MAP[model][3:]}"
    return f"{prefix}.anthropic.{model}-v1:0"


class LLMProvider(str, Enum):
    CLAUDE = "claude"
    GROK = "grok"
    OPENAI = "openai"
    BEDROCK = "bedrock"


@dataclass
class ProviderResponse:
    """One successful provider completion plus usage metrics."""

    provider: str
    model: str
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0


class ProviderCallError(Exception):
    """A single provider call failed (HTTP error, transport error, empty output)."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        detail = f" (status {status_code})" if status_code is not None else ""
        super().__init__(f"{provider}: {message}{detail}")


class LLMClient:
    """Single-provider client. Built once per provider from settings."""

    def __init__(
        self,
        provider: LLMProvider,
        api_key: str | dict | None,
        model: Optional[str] = None,
        timeout: float = 30.0,
        max_tokens: int = 4000,
        temperature: float = 0.2,
    ):
        self.provider = LLMProvider(provider)
        self.api_key = api_key
        self.model = model or DEFAULT_MODELS[self.provider.value]
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

    @property
    def name(self) -> str:
        return self.provider.value

    async def call(self, prompt: str) -> ProviderResponse:
        """Send one prompt as a single user message and return the completion."""
        if not self.api_key:
            raise ProviderCallError(self.name, "no API credentials configured")

        started = time.monotonic()
        if self.provider == LLMProvider.CLAUDE:
            response = await self._call_claude(prompt)
        elif self.provider == LLMProvider.BEDROCK:
            response = await self._call_bedrock(prompt)
        else:
            response = await self._call_openai_compatible(prompt)
        response.latency_ms = int((time.monotonic() - started) * 1000)

        if not response.content.strip():
            raise ProviderCallError(self.name, "empty response content")
        return response

    async def _call_claude(self, prompt: str) -> ProviderResponse:
        import anthropic

        client = anthropic.AsyncAnthropic(
            api_key=self.api_key, timeout=self.timeout, max_retries=0,
        )
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            raise ProviderCallError(self.name, str(e), status_code=e.status_code) from e
        except anthropic.APIError as e:
            raise ProviderCallError(self.name, str(e)) from e

        raw_text = ""
        for block in response.content:
            if block.type == "text":
                raw_text += block.text

        prompt_tokens = response.usage.input_tokens
        completion_tokens = response.usage.output_tokens
        return ProviderResponse(
            provider=self.name,
            model=response.model,
            content=raw_text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    async def _call_openai_compatible(self, prompt: str) -> ProviderResponse:
        """OpenAI chat completions; Grok speaks the same API on its own base URL."""
        import openai

        kwargs = {"api_key": self.api_key, "timeout": self.timeout, "max_retries": 0}
        if self.provider == LLMProvider.GROK:
            kwargs["base_url"] = GROK_BASE_URL
        client = openai.AsyncOpenAI(**kwargs)
        try:
            response = await client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except openai.APIStatusError as e:
            raise ProviderCallError(self.name, str(e), status_code=e.status_code) from e
        except openai.APIError as e:
            raise ProviderCallError(self.name, str(e)) from e

        if not response.choices:
            raise ProviderCallError(self.name, "response contained no choices")
        raw_text = response.choices[0].message.content or ""

        usage = response.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0
        total_tokens = usage.total_tokens if usage else 0
        return ProviderResponse(
            provider=self.name,
            model=response.model,
            content=raw_text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens or prompt_tokens + completion_tokens,
        )

    def _get_bedrock_client(self):
        """Create a boto3 Bedrock Runtime client from the stored credentials.

        When access_key is "iam_role", creates the client without explicit
        credentials so boto3 uses the default credential chain.
        """
        import boto3
        from botocore.config import Config

        creds = self.api_key
        if not isinstance(creds, dict):
            raise ProviderCallError(self.name, "Bedrock provider requires AWS credentials dict")

        config = Config(
            read_timeout=self.timeout,
            connect_timeout=min(self.timeout, 10),
            retries={"total_max_attempts": 1},
        )
        region = creds.get("region", "us-east-1")

        if creds.get("access_key") == "iam_role":
            return boto3.client("bedrock-runtime", region_name=region, config=config)

        return boto3.client(
            "bedrock-runtime",
            aws_access_key_id=creds["access_key"],
            aws_secret_access_key=creds["secret_key"],
            region_name=region,
            config=config,
        )

    async def _call_bedrock(self, prompt: str) -> ProviderResponse:
        from botocore.exceptions import BotoCoreError, ClientError

        bedrock = self._get_bedrock_client()
        region = self.api_key.get("region", "us-east-1")
        model_id = _to_bedrock_model_id(self.model, region)

        def _invoke():
            return bedrock.converse(
                modelId=model_id,
                messages=[{"role": "user", "content": [{"text": prompt}]}],
                inferenceConfig={"maxTokens": self.max_tokens, "temperature": self.temperature},
            )

        try:
            response = await asyncio.get_running_loop().run_in_executor(None, _invoke)
        except ClientError as e:
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            raise ProviderCallError(self.name, str(e), status_code=status) from e
        except BotoCoreError as e:
            raise ProviderCallError(self.name, str(e)) from e

        raw_text = ""
        for block in response["output"]["message"]["content"]:
            if "text" in block:
                raw_text += block["text"]

        usage = response.get("usage", {})
        prompt_tokens = usage.get("inputTokens", 0)
        completion_tokens = usage.get("outputTokens", 0)
        return ProviderResponse(
            provider=self.name,
            model=model_id,
            content=raw_text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=usage.get("totalTokens", prompt_tokens + completion_tokens),
        )
