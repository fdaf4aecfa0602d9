"""
Validation pipeline: dictation in, structured appropriateness result out.

sanitize -> extract keywords -> build context -> construct prompt ->
call providers with fallback -> parse and validate -> log attempt.
Every step up to validation raises typed errors; audit logging never fails
the request.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Optional

from api.validation_models import ValidationContext, ValidationResult
from extraction.context_builder import ContextBuilder, DatabaseReferenceLookup
from extraction.keywords import KeywordCategory, extract_categorized_keywords
from llm.fallback import FallbackOrchestrator
from llm.prompt_engine import (
    DEFAULT_PROMPT_TEMPLATE,
    DatabaseTemplateStore,
    TemplateStore,
    construct_prompt,
)
from llm.response_parser import parse_and_validate_response
from phi.sanitizer import SanitizerOptions, sanitize_with_report
from validation.attempt_logger import AttemptLogger

logger = logging.getLogger(__name__)


class ValidationPipeline:
    """Composition root. Collaborators are injected; nothing is global."""

    def __init__(
        self,
        template_store: TemplateStore,
        context_builder: ContextBuilder,
        orchestrator: FallbackOrchestrator,
        attempt_logger: Optional[AttemptLogger] = None,
        sanitizer_options: Optional[SanitizerOptions] = None,
        default_word_limit: int = 33,
    ) -> None:
        self._templates = template_store
        self._context_builder = context_builder
        self._orchestrator = orchestrator
        self._attempt_logger = attempt_logger
        self._sanitizer_options = sanitizer_options
        self._default_word_limit = default_word_limit

    async def run_validation(
        self,
        text: str,
        context: ValidationContext,
        test_mode: bool = False,
    ) -> ValidationResult:
        if not text or not text.strip():
            raise ValueError("Dictation text is empty")

        # Resolve the template first: no provider is called without one.
        template = await self._templates.get_active_template()

        scrub = sanitize_with_report(text, self._sanitizer_options)
        if scrub.redaction_count:
            logger.info(
                "Sanitized dictation: %d redaction(s) in %s",
                scrub.redaction_count, ", ".join(scrub.phi_found),
            )

        keywords = extract_categorized_keywords(scrub.sanitized_text)
        context_blob = await self._context_builder.build([kw.term for kw in keywords])
        logger.debug(
            "Extracted %d keywords (%d codes); context blob %d chars",
            len(keywords),
            sum(1 for kw in keywords if kw.category == KeywordCategory.CODE),
            len(context_blob),
        )

        word_limit = template.word_limit or self._default_word_limit
        prompt = construct_prompt(
            template.content_template,
            scrub.sanitized_text,
            context_blob,
            word_limit,
            context.is_override_validation,
        )

        response = await self._orchestrator.call_with_fallback(prompt)
        logger.info(
            "LLM response from %s/%s: %d tokens in %dms",
            response.provider, response.model, response.total_tokens, response.latency_ms,
        )

        result = parse_and_validate_response(response.content)

        if not test_mode and self._attempt_logger is not None:
            await self._attempt_logger.log_attempt(
                context.order_id, text, result, response, context.user_id,
            )
        return result


def build_pipeline(settings: Any = None, db: Any = None) -> ValidationPipeline:
    """Wire a pipeline from settings and the active database."""
    from api.settings_store import build_provider_clients, get_settings
    from storage import get_active_db

    settings = settings or get_settings()
    db = db if db is not None else get_active_db()

    return ValidationPipeline(
        template_store=DatabaseTemplateStore(db),
        context_builder=ContextBuilder(
            DatabaseReferenceLookup(db), max_chars=settings.context_max_chars
        ),
        orchestrator=FallbackOrchestrator(
            build_provider_clients(settings), timeout_seconds=settings.timeout_seconds
        ),
        attempt_logger=AttemptLogger(db),
        default_word_limit=settings.word_limit,
    )


async def seed_default_template(db: Any) -> bool:
    """Install the built-in prompt template when the store has none."""
    seeded = db.seed_prompt_template_if_empty(
        "Default imaging appropriateness", DEFAULT_PROMPT_TEMPLATE
    )
    if inspect.isawaitable(seeded):
        seeded = await seeded
    if seeded:
        logger.info("Seeded default prompt template")
    return bool(seeded)


_default_pipeline: ValidationPipeline | None = None


def get_pipeline() -> ValidationPipeline:
    """Return the module-level pipeline singleton."""
    global _default_pipeline
    if _default_pipeline is None:
        _default_pipeline = build_pipeline()
    return _default_pipeline


async def run_validation(
    text: str, context: ValidationContext, test_mode: bool = False
) -> ValidationResult:
    return await get_pipeline().run_validation(text, context, test_mode)
