"""Pydantic schemas for signature material and signature endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from aft_engine.workflow.states import StepType


class SignatureInput(BaseModel):
    """Certificate-backed signature as supplied by the signing client."""

    signature_material: str = Field(..., min_length=1)
    certificate_thumbprint: str = Field(..., min_length=1, max_length=128)
    signed_data: str = ""
    signature_algorithm: str = "RSA-SHA256"
    certificate_subject: str = ""
    certificate_issuer: str = ""
    certificate_serial: str = ""
    certificate_not_before: Optional[datetime] = None
    certificate_not_after: Optional[datetime] = None
    signature_reason: Optional[str] = None
    # Only meaningful for the secondary signature of a dual-signed step.
    signer_id: Optional[str] = None


class SignatureCreate(SignatureInput):
    step_type: StepType


class SignatureResponse(BaseModel):
    id: str
    request_id: str
    signer_id: str
    step_type: str
    certificate_thumbprint: str
    certificate_subject: str
    signature_algorithm: str
    signature_reason: Optional[str] = None
    is_verified: bool
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}
