"""Pydantic schemas for AFT request endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from aft_engine.workflow.states import Classification, SecondarySignerType, TransferType


class RequestCreate(BaseModel):
    classification: Classification
    transfer_type: TransferType
    media_control_number: str = Field("", max_length=64)
    media_type: str = Field("", max_length=20)
    source_system: str = Field("", max_length=255)
    destination_system: str = Field("", max_length=255)
    transfer_purpose: str = ""
    data_description: str = ""
    form_data: dict[str, Any] = Field(default_factory=dict)
    enable_dual_signature: bool = False
    secondary_signer_type: Optional[SecondarySignerType] = None
    secondary_signer_id: Optional[str] = None


class RequestUpdate(BaseModel):
    classification: Optional[Classification] = None
    transfer_type: Optional[TransferType] = None
    media_control_number: Optional[str] = Field(None, max_length=64)
    media_type: Optional[str] = Field(None, max_length=20)
    source_system: Optional[str] = Field(None, max_length=255)
    destination_system: Optional[str] = Field(None, max_length=255)
    transfer_purpose: Optional[str] = None
    data_description: Optional[str] = None
    form_data: Optional[dict[str, Any]] = None
    enable_dual_signature: Optional[bool] = None
    secondary_signer_type: Optional[SecondarySignerType] = None
    secondary_signer_id: Optional[str] = None
    expected_version: Optional[int] = Field(None, ge=1)


class RequestResponse(BaseModel):
    id: str
    request_number: str
    requestor_id: str
    status: str
    version: int
    classification: str
    transfer_type: str
    media_control_number: str = ""
    media_type: str = ""
    source_system: str = ""
    destination_system: str = ""
    transfer_purpose: str = ""
    data_description: str = ""
    form_data: dict[str, Any] = {}
    enable_dual_signature: bool
    secondary_signer_type: Optional[str] = None
    secondary_signer_id: Optional[str] = None
    approval_data: dict[str, Any] = {}
    transfer_data: dict[str, Any] = {}
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
