"""User directory API router — requires the service API key."""

from fastapi import APIRouter, Depends, HTTPException

from aft_engine.common.security import require_api_key
from aft_engine.users.models import UserModel
from aft_engine.users.schemas import RoleAssignment, UserCreate, UserResponse

router = APIRouter(prefix="/users", tags=["users"])


def _get_service():
    from aft_engine.deps import get_user_service
    return get_user_service()


def _get_db():
    from aft_engine.deps import get_db
    return get_db()


def _to_response(user: UserModel) -> UserResponse:
    roles = [user.primary_role] + [
        r.role for r in user.roles if r.is_active and r.role != user.primary_role
    ]
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        primary_role=user.primary_role,
        roles=roles,
        organization=user.organization,
        is_active=user.is_active,
        created_at=user.created_at,
    )


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(body: UserCreate, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        if await svc.get_by_email(session, body.email):
            raise HTTPException(status_code=409, detail="Email already registered")
        user = await svc.create_user(
            session,
            email=body.email,
            first_name=body.first_name,
            last_name=body.last_name,
            primary_role=body.primary_role.value,
            additional_roles=[r.value for r in body.additional_roles],
            organization=body.organization,
        )
        return _to_response(user)


@router.get("", response_model=list[UserResponse])
async def list_users(include_inactive: bool = False, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        users = await svc.list_users(session, include_inactive=include_inactive)
        return [_to_response(u) for u in users]


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        user = await svc.get_by_id(session, user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return _to_response(user)


@router.post("/{user_id}/roles", response_model=UserResponse)
async def assign_role(user_id: str, body: RoleAssignment, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        user = await svc.assign_role(
            session, user_id, body.role.value, assigned_by=body.assigned_by,
        )
        return _to_response(user)


@router.delete("/{user_id}/roles/{role}", response_model=UserResponse)
async def revoke_role(user_id: str, role: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        user = await svc.revoke_role(session, user_id, role)
        return _to_response(user)


@router.post("/{user_id}/deactivate", response_model=UserResponse)
async def deactivate_user(user_id: str, _=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        user = await svc.deactivate(session, user_id)
        return _to_response(user)
