"""Signature API router — record a step signature ahead of the action that consumes it."""

from fastapi import APIRouter, Depends

from aft_engine.common.security import ActorContext, require_actor, require_api_key
from aft_engine.signatures.schemas import SignatureCreate, SignatureInput, SignatureResponse
from aft_engine.signatures.verifier import check_step_permission

router = APIRouter(prefix="/requests/{request_id}/signatures", tags=["signatures"])


def _get_service():
    from aft_engine.deps import get_signature_service
    return get_signature_service()


def _get_store():
    from aft_engine.deps import get_request_store
    return get_request_store()


def _get_resolver():
    from aft_engine.deps import get_role_resolver
    return get_role_resolver()


def _get_db():
    from aft_engine.deps import get_db
    return get_db()


@router.post("", response_model=SignatureResponse, status_code=201)
async def record_signature(
    request_id: str,
    body: SignatureCreate,
    actor_ctx: ActorContext = Depends(require_actor),
):
    svc = _get_service()
    store = _get_store()
    db = _get_db()
    async with db.get_session() as session:
        actor = await _get_resolver().resolve(session, actor_ctx.actor_id)
        request = await store.load_request(session, request_id, include_archived=False)
        check_step_permission(actor, request, store.status_of(request), body.step_type)
        signature = await svc.record_signature(
            session,
            request.id,
            body.step_type,
            actor.id,
            SignatureInput.model_validate(body.model_dump(exclude={"step_type"})),
            ip_address=actor_ctx.ip_address,
            user_agent=actor_ctx.user_agent,
        )
        return SignatureResponse.model_validate(signature)


@router.get("", response_model=list[SignatureResponse])
async def list_signatures(
    request_id: str,
    include_inactive: bool = False,
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        signatures = await svc.list_signatures(
            session, request_id, include_inactive=include_inactive,
        )
        return [SignatureResponse.model_validate(s) for s in signatures]
