"""Pydantic schemas for audit log API responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class AuditEntryResponse(BaseModel):
    id: str
    request_id: str
    sequence: int
    actor_id: str
    actor_role_used: Optional[str] = None
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    outcome: str
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    detail: dict[str, Any] = {}
    prev_hash: Optional[str] = None
    event_hash: str
    signature: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditChainVerification(BaseModel):
    valid: bool
    entries_checked: int
    break_at: Optional[str] = None
