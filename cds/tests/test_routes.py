"""Tests for the HTTP surface (pipeline replaced by a stub)."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import router
from api.validation_models import MedicalCode, ValidationResult, ValidationStatus
from llm.fallback import AllProvidersFailedError, ProviderFailure
from llm.prompt_engine import TemplateUnavailableError
from llm.response_parser import InvalidStatusError, MissingRequiredFieldsError
from main import _before_send, create_app
from validation.pipeline import get_pipeline

RESULT = ValidationResult(
    validation_status=ValidationStatus.APPROPRIATE,
    compliance_score=8,
    feedback="Appropriate.",
    suggested_icd10_codes=[MedicalCode(code="R10.31")],
    suggested_cpt_codes=[MedicalCode(code="74177", description="CT A/P w contrast")],
)

BODY = {
    "text": "45F with RLQ pain, r/o appendicitis, CT abdomen pelvis w contrast",
    "context": {"userId": 42, "orgId": 7, "orderId": 1001},
}


@pytest.fixture
def pipeline():
    return MagicMock(run_validation=AsyncMock(return_value=RESULT))


@pytest.fixture
def client(pipeline):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    return TestClient(app)


class TestHealth:
    def test_ok(self, client):
        with patch("api.routes.get_active_db"):
            assert client.get("/health").json() == {"status": "ok"}

    def test_starting(self, client):
        with patch("api.routes.get_active_db", side_effect=RuntimeError("pool not ready")):
            assert client.get("/health").json() == {"status": "starting"}


class TestValidate:
    def test_success_uses_camel_case(self, client, pipeline):
        response = client.post("/validate", json=BODY)
        assert response.status_code == 200
        body = response.json()
        assert body["validationStatus"] == "appropriate"
        assert body["complianceScore"] == 8
        assert body["suggestedICD10Codes"] == [{"code": "R10.31", "description": ""}]
        assert body["suggestedCPTCodes"][0]["code"] == "74177"

        text, context = pipeline.run_validation.await_args.args
        assert text == BODY["text"]
        assert context.order_id == 1001
        assert context.user_id == 42
        assert context.org_id == 7
        assert context.is_override_validation is False
        assert pipeline.run_validation.await_args.kwargs["test_mode"] is False

    def test_test_mode_and_override_flags(self, client, pipeline):
        body = {
            "text": "CT head",
            "context": {"userId": 42, "orgId": 7, "isOverrideValidation": True},
            "testMode": True,
        }
        assert client.post("/validate", json=body).status_code == 200
        _, context = pipeline.run_validation.await_args.args
        assert context.is_override_validation is True
        assert pipeline.run_validation.await_args.kwargs["test_mode"] is True

    def test_empty_text(self, client, pipeline):
        response = client.post("/validate", json=dict(BODY, text="   "))
        assert response.status_code == 422
        pipeline.run_validation.assert_not_called()

    def test_missing_context(self, client):
        assert client.post("/validate", json={"text": "CT head"}).status_code == 422

    def test_order_id_is_optional(self, client, pipeline):
        body = {"text": "CT head", "context": {"userId": 42, "orgId": 7}}
        assert client.post("/validate", json=body).status_code == 200
        _, context = pipeline.run_validation.await_args.args
        assert context.order_id is None

    def test_non_numeric_ids_rejected(self, client, pipeline):
        body = dict(BODY, context={"userId": "dr-1", "orgId": 7, "orderId": 1001})
        assert client.post("/validate", json=body).status_code == 422
        pipeline.run_validation.assert_not_called()

    def test_no_template(self, client, pipeline):
        pipeline.run_validation.side_effect = TemplateUnavailableError("none active")
        assert client.post("/validate", json=BODY).status_code == 503

    def test_all_providers_failed(self, client, pipeline):
        pipeline.run_validation.side_effect = AllProvidersFailedError([
            ProviderFailure("claude", RuntimeError("500")),
            ProviderFailure("grok", RuntimeError("timeout")),
        ])
        response = client.post("/validate", json=BODY)
        assert response.status_code == 503
        assert response.json()["detail"]["providers"] == ["claude", "grok"]

    def test_incomplete_llm_response(self, client, pipeline):
        pipeline.run_validation.side_effect = MissingRequiredFieldsError(["feedback"])
        response = client.post("/validate", json=BODY)
        assert response.status_code == 502
        assert response.json()["detail"]["missingFields"] == ["feedback"]

    def test_invalid_status(self, client, pipeline):
        pipeline.run_validation.side_effect = InvalidStatusError("unsure")
        assert client.post("/validate", json=BODY).status_code == 502


class TestSentryScrubbing:
    def test_before_send_sanitizes_messages(self):
        event = {
            "exception": {"values": [{"value": "failed for MRN: 12345678"}]},
            "breadcrumbs": {"values": [{"message": "call 555-123-4567"}, {"category": "http"}]},
        }
        scrubbed = _before_send(event, None)
        assert scrubbed["exception"]["values"][0]["value"] == "failed for [MRN]"
        assert scrubbed["breadcrumbs"]["values"][0]["message"] == "call [PHONE]"


class TestAppFactory:
    @pytest.fixture
    def app_client(self, pipeline, monkeypatch):
        monkeypatch.delenv("ALLOWED_ORIGINS", raising=False)
        app = create_app()
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        return TestClient(app)

    def test_responses_are_not_cached(self, app_client):
        response = app_client.post("/validate", json=BODY)
        assert response.status_code == 200
        assert "no-store" in response.headers["cache-control"]

    def test_cors_headers(self, app_client):
        response = app_client.post(
            "/validate", json=BODY, headers={"Origin": "https://emr.example.org"}
        )
        assert response.headers["access-control-allow-origin"] in ("*", "https://emr.example.org")

    def test_requests_are_audited(self, app_client, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            app_client.post("/validate", json=BODY, headers={"x-user-id": "dr-1"})
        assert "user=dr-1 method=POST path=/validate status=200" in caplog.text
        assert "appendicitis" not in caplog.text

    def test_unhandled_error_returns_json_500(self, pipeline):
        pipeline.run_validation.side_effect = RuntimeError("boom")
        app = create_app()
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        response = TestClient(app, raise_server_exceptions=False).post("/validate", json=BODY)
        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error."}
