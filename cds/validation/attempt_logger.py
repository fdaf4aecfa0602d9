"""
Best-effort audit logging of validation attempts and LLM usage.

A failed audit write never fails a validation: every error is logged and
swallowed here.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Optional

from api.validation_models import ValidationResult
from llm.client import ProviderResponse
from storage.database import UsageLogUnavailableError

logger = logging.getLogger(__name__)


async def _call(fn, *args, **kwargs) -> Any:
    """Call a store method that may be sync (SQLite) or async (PostgreSQL)."""
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


class AttemptLogger:
    def __init__(self, store: Any) -> None:
        self._store = store

    async def log_attempt(
        self,
        order_id: Optional[int],
        input_text: str,
        result: ValidationResult,
        provider_response: ProviderResponse,
        user_id: Optional[int],
    ) -> None:
        try:
            await self._insert_attempt(order_id, input_text, result, user_id)
        except Exception:
            logger.exception("Failed to record validation attempt for order %s", order_id)

        try:
            await self._insert_usage(provider_response)
        except Exception:
            logger.exception(
                "Failed to record LLM usage for provider %s", provider_response.provider
            )

    async def _next_attempt_number(self, order_id: Optional[int]) -> int:
        if order_id is None:
            return 1
        current = await _call(self._store.get_max_attempt_number, order_id)
        return (current or 0) + 1

    async def _insert_attempt(
        self,
        order_id: Optional[int],
        input_text: str,
        result: ValidationResult,
        user_id: Optional[int],
    ) -> None:
        attempt_number = await self._next_attempt_number(order_id)
        await _call(
            self._store.insert_validation_attempt,
            order_id=order_id,
            attempt_number=attempt_number,
            validation_input_text=input_text,
            validation_outcome=result.validation_status.value,
            generated_icd10_codes=[c.model_dump() for c in result.suggested_icd10_codes],
            generated_cpt_codes=[c.model_dump() for c in result.suggested_cpt_codes],
            generated_feedback_text=result.feedback,
            generated_compliance_score=result.compliance_score,
            user_id=user_id,
        )
        logger.info("Recorded validation attempt %d for order %s", attempt_number, order_id)

    async def _insert_usage(self, response: ProviderResponse) -> None:
        row = dict(
            provider=response.provider,
            model=response.model,
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
            total_tokens=response.total_tokens,
            latency_ms=response.latency_ms,
        )
        try:
            await _call(self._store.insert_llm_usage, **row)
        except UsageLogUnavailableError:
            logger.warning("llm_usage_logs table missing; provisioning it")
            await _call(self._store.ensure_llm_usage_table)
            await _call(self._store.insert_llm_usage, **row)
