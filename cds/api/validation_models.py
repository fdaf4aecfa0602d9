from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ValidationStatus(str, Enum):
    APPROPRIATE = "appropriate"
    INAPPROPRIATE = "inappropriate"
    NEEDS_CLARIFICATION = "needs_clarification"
    OVERRIDE = "override"


class MedicalCode(BaseModel):
    code: str
    description: str = ""


class ValidationResult(BaseModel):
    """Canonical result contract. Serialized with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    validation_status: ValidationStatus = Field(alias="validationStatus")
    compliance_score: float = Field(alias="complianceScore")
    feedback: str
    suggested_icd10_codes: list[MedicalCode] = Field(
        default_factory=list, alias="suggestedICD10Codes"
    )
    suggested_cpt_codes: list[MedicalCode] = Field(
        default_factory=list, alias="suggestedCPTCodes"
    )
    internal_reasoning: Optional[str] = Field(default=None, alias="internalReasoning")


class ValidationContext(BaseModel):
    """Caller identity and order context for one validation request."""

    model_config = ConfigDict(populate_by_name=True)

    patient_info: Optional[dict[str, Any]] = Field(default=None, alias="patientInfo")
    user_id: int = Field(alias="userId")
    org_id: int = Field(alias="orgId")
    order_id: Optional[int] = Field(default=None, alias="orderId")
    is_override_validation: bool = Field(default=False, alias="isOverrideValidation")


class ValidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    context: ValidationContext
    test_mode: bool = Field(default=False, alias="testMode")
