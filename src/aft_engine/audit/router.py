"""Audit log API router (read-only)."""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query

from aft_engine.common.security import require_api_key
from aft_engine.audit.schemas import AuditEntryResponse, AuditChainVerification

router = APIRouter()


def _get_service():
    from aft_engine.deps import get_audit_service
    return get_audit_service()


def _get_db():
    from aft_engine.deps import get_db
    return get_db()


@router.get("/audit", response_model=list[AuditEntryResponse])
async def list_audit_entries(
    request_id: str | None = Query(None),
    actor_id: str | None = Query(None),
    action: str | None = Query(None),
    outcome: Literal["success", "denied", "error"] | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        entries = await svc.query(
            session, request_id=request_id, actor_id=actor_id, action=action,
            outcome=outcome, start=start, end=end, limit=limit, offset=offset,
        )
        return [AuditEntryResponse.model_validate(e) for e in entries]


@router.get("/audit/{request_id}", response_model=list[AuditEntryResponse])
async def get_request_audit(request_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        entries = await svc.get_entries(session, request_id)
        return [AuditEntryResponse.model_validate(e) for e in entries]


@router.get("/audit/{request_id}/verify", response_model=AuditChainVerification)
async def verify_audit_chain(request_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        result = await svc.verify_chain(session, request_id)
        return AuditChainVerification(**result)
