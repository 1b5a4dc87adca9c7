"""AFT request API router — create, read, edit drafts, archive."""

from fastapi import APIRouter, Depends, Query

from aft_engine.aft_requests.schemas import RequestCreate, RequestResponse, RequestUpdate
from aft_engine.common.schemas import PaginatedResponse, PaginationParams, pagination_params
from aft_engine.common.security import ActorContext, require_actor, require_api_key
from aft_engine.workflow.states import Status

router = APIRouter(prefix="/requests", tags=["requests"])


def _get_service():
    from aft_engine.deps import get_request_service
    return get_request_service()


def _get_db():
    from aft_engine.deps import get_db
    return get_db()


@router.post("", response_model=RequestResponse, status_code=201)
async def create_request(body: RequestCreate, actor: ActorContext = Depends(require_actor)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        request = await svc.create_request(
            session, actor.actor_id, **body.model_dump(mode="json", exclude_none=True),
        )
        return RequestResponse.model_validate(request)


@router.get("", response_model=PaginatedResponse[RequestResponse])
async def list_requests(
    status: Status | None = Query(None),
    requestor_id: str | None = Query(None),
    include_archived: bool = False,
    pagination: PaginationParams = Depends(pagination_params),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        requests, total = await svc.list_requests(
            session,
            status=status.value if status else None,
            requestor_id=requestor_id,
            include_archived=include_archived,
            limit=pagination.page_size,
            offset=pagination.offset,
        )
        return PaginatedResponse[RequestResponse](
            items=[RequestResponse.model_validate(r) for r in requests],
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
        )


@router.get("/{request_id}", response_model=RequestResponse)
async def get_request(request_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        request = await svc.get_request(session, request_id)
        return RequestResponse.model_validate(request)


@router.patch("/{request_id}", response_model=RequestResponse)
async def update_request(
    request_id: str,
    body: RequestUpdate,
    actor: ActorContext = Depends(require_actor),
):
    svc = _get_service()
    db = _get_db()
    fields = body.model_dump(mode="json", exclude_unset=True)
    expected_version = fields.pop("expected_version", None)
    async with db.get_session() as session:
        request = await svc.update_draft(
            session, actor.actor_id, request_id,
            expected_version=expected_version, **fields,
        )
        return RequestResponse.model_validate(request)


@router.post("/{request_id}/archive", response_model=RequestResponse)
async def archive_request(request_id: str, actor: ActorContext = Depends(require_actor)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        request = await svc.archive_request(
            session, actor.actor_id, request_id,
            ip_address=actor.ip_address, user_agent=actor.user_agent,
        )
        return RequestResponse.model_validate(request)
