"""Tests for the provider adapters (SDKs mocked)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from llm.client import (
    GROK_BASE_URL,
    LLMClient,
    LLMProvider,
    ProviderCallError,
    _to_bedrock_model_id,
)


def _anthropic_response(text='{"status": "appropriate"}'):
    block = MagicMock()
    block.type = "text"
    block.text = text
    response = MagicMock()
    response.content = [block]
    response.model = "claude-sonnet-4-6"
    response.usage.input_tokens = 120
    response.usage.output_tokens = 30
    return response


def _openai_response(text='{"status": "appropriate"}', model="gpt-4.1-mini"):
    choice = MagicMock()
    choice.message.content = text
    response = MagicMock()
    response.choices = [choice]
    response.model = model
    response.usage.prompt_tokens = 100
    response.usage.completion_tokens = 25
    response.usage.total_tokens = 125
    return response


class TestClaude:
    def test_call(self):
        sdk_client = MagicMock()
        sdk_client.messages.create = AsyncMock(return_value=_anthropic_response())
        with patch("anthropic.AsyncAnthropic", return_value=sdk_client) as ctor:
            client = LLMClient(LLMProvider.CLAUDE, "sk-ant", timeout=12.0, max_tokens=4000)
            result = asyncio.run(client.call("prompt"))

        ctor.assert_called_once_with(api_key="sk-ant", timeout=12.0, max_retries=0)
        kwargs = sdk_client.messages.create.call_args.kwargs
        assert kwargs["max_tokens"] == 4000
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
        assert result.provider == "claude"
        assert result.content == '{"status": "appropriate"}'
        assert result.prompt_tokens == 120
        assert result.completion_tokens == 30
        assert result.total_tokens == 150
        assert result.latency_ms >= 0

    def test_missing_key(self):
        client = LLMClient(LLMProvider.CLAUDE, None)
        with pytest.raises(ProviderCallError) as exc_info:
            asyncio.run(client.call("prompt"))
        assert exc_info.value.provider == "claude"

    def test_empty_content(self):
        sdk_client = MagicMock()
        sdk_client.messages.create = AsyncMock(return_value=_anthropic_response(text="  "))
        with patch("anthropic.AsyncAnthropic", return_value=sdk_client):
            with pytest.raises(ProviderCallError, match="empty"):
                asyncio.run(LLMClient(LLMProvider.CLAUDE, "k").call("prompt"))


class TestOpenAICompatible:
    def test_grok_uses_xai_endpoint(self):
        sdk_client = MagicMock()
        sdk_client.chat.completions.create = AsyncMock(
            return_value=_openai_response(model="grok-3")
        )
        with patch("openai.AsyncOpenAI", return_value=sdk_client) as ctor:
            result = asyncio.run(LLMClient(LLMProvider.GROK, "xai-key").call("prompt"))

        kwargs = ctor.call_args.kwargs
        assert kwargs["base_url"] == GROK_BASE_URL
        assert kwargs["max_retries"] == 0
        assert result.provider == "grok"
        assert result.model == "grok-3"
        assert result.total_tokens == 125

    def test_openai_default_endpoint(self):
        sdk_client = MagicMock()
        sdk_client.chat.completions.create = AsyncMock(return_value=_openai_response())
        with patch("openai.AsyncOpenAI", return_value=sdk_client) as ctor:
            result = asyncio.run(LLMClient(LLMProvider.OPENAI, "sk-openai").call("prompt"))

        assert "base_url" not in ctor.call_args.kwargs
        assert sdk_client.chat.completions.create.call_args.kwargs["model"] == "gpt-4.1-mini"
        assert result.provider == "openai"

    def test_status_error_is_wrapped(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        error = openai.APIStatusError(
            "rate limited", response=httpx.Response(429, request=request), body=None
        )
        sdk_client = MagicMock()
        sdk_client.chat.completions.create = AsyncMock(side_effect=error)
        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            with pytest.raises(ProviderCallError) as exc_info:
                asyncio.run(LLMClient(LLMProvider.OPENAI, "sk").call("prompt"))
        assert exc_info.value.status_code == 429
        assert exc_info.value.provider == "openai"

    def test_no_choices(self):
        response = _openai_response()
        response.choices = []
        sdk_client = MagicMock()
        sdk_client.chat.completions.create = AsyncMock(return_value=response)
        with patch("openai.AsyncOpenAI", return_value=sdk_client):
            with pytest.raises(ProviderCallError):
                asyncio.run(LLMClient(LLMProvider.OPENAI, "sk").call("prompt"))


class TestBedrock:
    CREDS = {"access_key": "AKIA", "secret_key": "secret", "region": "us-east-1"}

    def test_call(self):
        runtime = MagicMock()
        runtime.converse.return_value = {
            "output": {"message": {"content": [{"text": '{"status": '}, {"text": '"override"}'}]}},
            "usage": {"inputTokens": 80, "outputTokens": 12, "totalTokens": 92},
        }
        with patch("boto3.client", return_value=runtime) as boto_client:
            result = asyncio.run(LLMClient(LLMProvider.BEDROCK, self.CREDS).call("prompt"))

        assert boto_client.call_args.kwargs["region_name"] == "us-east-1"
        assert runtime.converse.call_args.kwargs["modelId"] == "us.anthropic.claude-sonnet-4-6"
        assert result.content == '{"status": "override"}'
        assert result.total_tokens == 92

    def test_requires_credentials_dict(self):
        with pytest.raises(ProviderCallError):
            asyncio.run(LLMClient(LLMProvider.BEDROCK, "not-a-dict").call("prompt"))


class TestBedrockModelIds:
    def test_known_model(self):
        assert _to_bedrock_model_id("claude-sonnet-4-6", "eu-west-1") == "eu.anthropic.claude-sonnet-4-6"

    def test_profile_id_passes_through(self):
        model = "us.anthropic.claude-3-5-sonnet-20241022-v2:0"
        assert _to_bedrock_model_id(model) == model

    def test_bare_bedrock_id_gets_prefix(self):
        assert _to_bedrock_model_id("anthropic.claude-x-v1:0", "ap-northeast-1") == "ap.anthropic.claude-x-v1:0"

    def test_unknown_model(self):
        assert _to_bedrock_model_id("claude-new") == "us.anthropic.claude-new-v1:0"
