"""Pydantic schemas for lifecycle action payloads and results."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from aft_engine.aft_requests.schemas import RequestResponse
from aft_engine.signatures.schemas import SignatureInput


class DispositionRecord(BaseModel):
    """Media custodian's record of what happened to the transfer media."""

    optical_destroyed: Optional[bool] = None
    optical_retained: Optional[bool] = None
    ssd_sanitized: Optional[bool] = None
    method: Optional[str] = None
    comments: str = ""


class ScanResult(BaseModel):
    performed: bool
    files_scanned: int = Field(..., ge=0)
    threats_found: int = Field(..., ge=0)


class AntivirusScan(BaseModel):
    """Section IV anti-virus results on the origination and destination systems."""

    origination_scan: ScanResult
    destination_scan: ScanResult
    date: Optional[datetime] = None


class ActionPayload(BaseModel):
    signature: Optional[SignatureInput] = None
    secondary_signature: Optional[SignatureInput] = None
    acknowledge_terms: bool = False
    rejection_reason: Optional[str] = None
    comments: str = ""
    disposition: Optional[DispositionRecord] = None
    disposition_method: Optional[str] = None
    transfer_details: dict[str, Any] = Field(default_factory=dict)
    files_transferred: Optional[int] = Field(None, ge=0)
    antivirus_scan: Optional[AntivirusScan] = None
    tpi_maintained: Optional[bool] = None
    date: Optional[datetime] = None


class ActionResult(BaseModel):
    action: str
    from_status: str
    to_status: str
    route: Optional[str] = None
    role_used: str
    audit_entry_id: str
    request: RequestResponse
