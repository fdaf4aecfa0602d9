import logging

from fastapi import APIRouter, Depends, HTTPException

from api.validation_models import ValidateRequest, ValidationResult
from llm.fallback import AllProvidersFailedError
from llm.prompt_engine import TemplateUnavailableError
from llm.response_parser import MissingRequiredFieldsError, ResponseValidationError
from storage import get_active_db
from validation.pipeline import ValidationPipeline, get_pipeline

_logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    try:
        get_active_db()
        return {"status": "ok"}
    except Exception:
        return {"status": "starting"}


@router.post(
    "/validate",
    response_model=ValidationResult,
    response_model_by_alias=True,
)
async def validate_order(
    request: ValidateRequest,
    pipeline: ValidationPipeline = Depends(get_pipeline),
):
    """Validate one imaging-order dictation."""
    if not request.text or not request.text.strip():
        raise HTTPException(status_code=422, detail="Dictation text is required.")

    try:
        return await pipeline.run_validation(
            request.text, request.context, test_mode=request.test_mode,
        )
    except TemplateUnavailableError as e:
        _logger.error("Validation unavailable: %s", e)
        raise HTTPException(
            status_code=503, detail="No active prompt template is configured."
        )
    except AllProvidersFailedError as e:
        _logger.error("Validation failed: %d provider failure(s)", len(e.failures))
        raise HTTPException(
            status_code=503,
            detail={
                "message": "All LLM providers failed.",
                "providers": [f.provider for f in e.failures],
            },
        )
    except MissingRequiredFieldsError as e:
        _logger.warning("Rejected LLM response; missing %s", ", ".join(e.missing_fields))
        raise HTTPException(
            status_code=502,
            detail={
                "message": "LLM response was incomplete.",
                "missingFields": e.missing_fields,
            },
        )
    except ResponseValidationError as e:
        _logger.warning("Rejected LLM response: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
