"""End-to-end tests for the validation pipeline with mocked providers."""

import asyncio
import json
import os
import tempfile
from unittest.mock import MagicMock

import pytest

from api.validation_models import MedicalCode, ValidationContext, ValidationStatus
from extraction.context_builder import ContextBuilder, DatabaseReferenceLookup
from llm.client import ProviderCallError, ProviderResponse
from llm.fallback import AllProvidersFailedError, FallbackOrchestrator
from llm.prompt_engine import (
    OVERRIDE_NOTICE,
    DatabaseTemplateStore,
    TemplateUnavailableError,
)
from llm.response_parser import MissingRequiredFieldsError
from storage.database import Database
from validation.attempt_logger import AttemptLogger
from validation.pipeline import ValidationPipeline, seed_default_template

DICTATION = "45F with RLQ pain, r/o appendicitis, CT abdomen pelvis w contrast"

PROVIDER_OUTPUT = json.dumps({
    "status": "appropriate",
    "score": 8,
    "feedback": "CT abdomen/pelvis with contrast is appropriate for suspected appendicitis.",
    "icd10_codes": "R10.31",
    "cpt_codes": ["74177"],
})

TEMPLATE = (
    "Reference:\n{{DATABASE_CONTEXT}}\n\nDictation:\n{{DICTATION_TEXT}}\n\n"
    "Answer in at most {{WORD_LIMIT}} words."
)


class RecordingProvider:
    def __init__(self, name="claude", content=PROVIDER_OUTPUT, error=None):
        self.name = name
        self.content = content
        self.error = error
        self.prompts = []

    async def call(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return ProviderResponse(
            provider=self.name, model=f"{self.name}-model", content=self.content,
            prompt_tokens=200, completion_tokens=40, total_tokens=240, latency_ms=900,
        )


@pytest.fixture
def db():
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    try:
        database = Database(db_path=path)
        database.load_icd10_codes([{"code": "R10.31", "description": "Right lower quadrant pain"}])
        database.load_cpt_codes([
            {"code": "74177", "description": "CT abdomen and pelvis with contrast", "modality": "CT"},
        ])
        yield database
    finally:
        os.unlink(path)


def _context(**overrides):
    data = {"user_id": 11, "org_id": 3, "order_id": 42}
    data.update(overrides)
    return ValidationContext(**data)


def _pipeline(db, providers, **kwargs):
    return ValidationPipeline(
        template_store=DatabaseTemplateStore(db),
        context_builder=ContextBuilder(DatabaseReferenceLookup(db)),
        orchestrator=FallbackOrchestrator(providers, timeout_seconds=5),
        attempt_logger=AttemptLogger(db),
        **kwargs,
    )


class TestRunValidation:
    def test_end_to_end(self, db):
        db.create_prompt_template("v1", TEMPLATE, word_limit=33, active=True)
        provider = RecordingProvider()

        result = asyncio.run(_pipeline(db, [provider]).run_validation(DICTATION, _context()))

        assert result.validation_status == ValidationStatus.APPROPRIATE
        assert result.compliance_score == 8
        assert result.suggested_icd10_codes == [MedicalCode(code="R10.31", description="")]
        assert result.suggested_cpt_codes == [MedicalCode(code="74177", description="")]

        prompt = provider.prompts[0]
        assert DICTATION in prompt
        assert "R10.31: Right lower quadrant pain" in prompt
        assert "at most 33 words" in prompt

        attempts = db.list_validation_attempts(order_id=42)
        assert len(attempts) == 1
        assert attempts[0]["validation_outcome"] == "appropriate"
        assert attempts[0]["validation_input_text"] == DICTATION
        assert db.list_llm_usage()[0]["provider"] == "claude"

    def test_prompt_is_sanitized_but_audit_keeps_raw_text(self, db):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        provider = RecordingProvider()
        text = "John Smith, MRN: 12345678, phone 555-123-4567. " + DICTATION

        asyncio.run(_pipeline(db, [provider]).run_validation(text, _context()))

        prompt = provider.prompts[0]
        assert "John" not in prompt
        assert "12345678" not in prompt
        assert "555-123-4567" not in prompt
        assert "[NAME]" in prompt and "[MRN]" in prompt and "[PHONE]" in prompt
        assert db.list_validation_attempts()[0]["validation_input_text"] == text

    def test_falls_back_to_next_provider(self, db):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        failing = RecordingProvider("claude", error=ProviderCallError("claude", "overloaded", 529))
        backup = RecordingProvider("grok")

        result = asyncio.run(
            _pipeline(db, [failing, backup]).run_validation(DICTATION, _context())
        )

        assert result.validation_status == ValidationStatus.APPROPRIATE
        assert failing.prompts == backup.prompts
        assert db.list_llm_usage()[0]["provider"] == "grok"

    def test_test_mode_writes_nothing(self, db):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        asyncio.run(
            _pipeline(db, [RecordingProvider()]).run_validation(DICTATION, _context(), test_mode=True)
        )
        assert db.list_validation_attempts() == []
        assert db.list_llm_usage() == []

    def test_audit_failure_does_not_fail_validation(self, db):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        broken_logger = AttemptLogger(MagicMock(
            get_max_attempt_number=MagicMock(side_effect=RuntimeError("db gone")),
            insert_llm_usage=MagicMock(side_effect=RuntimeError("db gone")),
        ))
        pipeline = ValidationPipeline(
            template_store=DatabaseTemplateStore(db),
            context_builder=ContextBuilder(DatabaseReferenceLookup(db)),
            orchestrator=FallbackOrchestrator([RecordingProvider()]),
            attempt_logger=broken_logger,
        )
        result = asyncio.run(pipeline.run_validation(DICTATION, _context()))
        assert result.validation_status == ValidationStatus.APPROPRIATE

    def test_missing_template_skips_providers(self, db):
        provider = RecordingProvider()
        with pytest.raises(TemplateUnavailableError):
            asyncio.run(_pipeline(db, [provider]).run_validation(DICTATION, _context()))
        assert provider.prompts == []

    def test_override_request(self, db):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        provider = RecordingProvider()
        asyncio.run(
            _pipeline(db, [provider]).run_validation(
                DICTATION, _context(is_override_validation=True)
            )
        )
        assert OVERRIDE_NOTICE in provider.prompts[0]

    def test_default_word_limit(self, db):
        db.create_prompt_template("v1", TEMPLATE, word_limit=None, active=True)
        provider = RecordingProvider()
        asyncio.run(
            _pipeline(db, [provider], default_word_limit=45).run_validation(DICTATION, _context())
        )
        assert "at most 45 words" in provider.prompts[0]

    @pytest.mark.parametrize("text", ["", "   \n"])
    def test_empty_text(self, db, text):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        provider = RecordingProvider()
        with pytest.raises(ValueError):
            asyncio.run(_pipeline(db, [provider]).run_validation(text, _context()))
        assert provider.prompts == []

    def test_malformed_response_is_rejected(self, db):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        provider = RecordingProvider(content='{"status": "appropriate", "score": 8}')
        with pytest.raises(MissingRequiredFieldsError) as exc_info:
            asyncio.run(_pipeline(db, [provider]).run_validation(DICTATION, _context()))
        assert "feedback" in exc_info.value.missing_fields
        assert db.list_validation_attempts() == []

    def test_all_providers_fail(self, db):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        providers = [
            RecordingProvider("claude", error=ProviderCallError("claude", "down", 500)),
            RecordingProvider("openai", error=ProviderCallError("openai", "down", 503)),
        ]
        with pytest.raises(AllProvidersFailedError):
            asyncio.run(_pipeline(db, providers).run_validation(DICTATION, _context()))

    def test_extracted_keywords_drive_reference_lookup(self, db):
        db.create_prompt_template("v1", TEMPLATE, active=True)
        lookup = MagicMock()
        lookup.lookup.return_value = "REFERENCE ROWS"
        provider = RecordingProvider()
        pipeline = ValidationPipeline(
            template_store=DatabaseTemplateStore(db),
            context_builder=ContextBuilder(lookup),
            orchestrator=FallbackOrchestrator([provider]),
        )

        asyncio.run(pipeline.run_validation(DICTATION + ", dx R10.31", _context()))

        terms = lookup.lookup.call_args.args[0]
        assert {"appendicitis", "abdomen", "ct", "r10.31"} <= set(terms)
        assert "REFERENCE ROWS" in provider.prompts[0]


class TestSeedDefaultTemplate:
    def test_seeds_once(self, db):
        assert asyncio.run(seed_default_template(db)) is True
        assert asyncio.run(seed_default_template(db)) is False
        template = db.get_active_prompt_template()
        assert "{{DICTATION_TEXT}}" in template["content_template"]
