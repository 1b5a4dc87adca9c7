"""User directory and actor/role resolution."""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aft_engine.common.exceptions import AFTError, AuthenticationError
from aft_engine.common.logging import get_logger
from aft_engine.users.models import UserModel, UserRoleModel
from aft_engine.workflow.states import Role

logger = get_logger("users")


class UserNotFoundError(AFTError):
    http_status = 404
    outcome = "error"

    def __init__(self, message: str = "User not found"):
        super().__init__(message, code="NOT_FOUND")


@dataclass(frozen=True)
class Actor:
    """A resolved principal: primary role plus every active role it holds."""

    id: str
    primary_role: Role
    roles: frozenset[Role]
    display_name: str = ""
    email: str = ""

    def has_any(self, *roles: Role) -> bool:
        return bool(self.roles.intersection(roles))


def _parse_role(value: str) -> Role:
    try:
        return Role(value)
    except ValueError:
        raise AFTError(f"Unknown role '{value}'", code="UNKNOWN_ROLE") from None


class UserService:
    """User and role-assignment management. Users are deactivated, never deleted."""

    async def create_user(
        self,
        session: AsyncSession,
        email: str,
        first_name: str,
        last_name: str,
        primary_role: str,
        additional_roles: list[str] | None = None,
        organization: str = "",
    ) -> UserModel:
        _parse_role(primary_role)
        user = UserModel(
            email=email.lower(),
            first_name=first_name,
            last_name=last_name,
            primary_role=primary_role,
            organization=organization,
        )
        session.add(user)
        await session.flush()
        for role in dict.fromkeys(additional_roles or []):
            _parse_role(role)
            if role != primary_role:
                session.add(UserRoleModel(user_id=user.id, role=role))
        await session.flush()
        await session.refresh(user, attribute_names=["roles"])
        return user

    async def get_by_id(self, session: AsyncSession, user_id: str) -> UserModel | None:
        return await session.get(UserModel, user_id)

    async def get_by_email(self, session: AsyncSession, email: str) -> UserModel | None:
        result = await session.execute(
            select(UserModel).where(UserModel.email == email.lower())
        )
        return result.scalar_one_or_none()

    async def list_users(
        self, session: AsyncSession, include_inactive: bool = False,
    ) -> list[UserModel]:
        query = select(UserModel)
        if not include_inactive:
            query = query.where(UserModel.is_active == True)  # noqa: E712
        result = await session.execute(query.order_by(UserModel.email))
        return list(result.scalars().all())

    async def assign_role(
        self, session: AsyncSession, user_id: str, role: str,
        assigned_by: str | None = None,
    ) -> UserModel:
        _parse_role(role)
        user = await self.get_by_id(session, user_id)
        if user is None:
            raise UserNotFoundError()
        existing = next((r for r in user.roles if r.role == role), None)
        if existing is not None:
            existing.is_active = True
            existing.assigned_by = assigned_by
        elif role != user.primary_role:
            session.add(UserRoleModel(user_id=user.id, role=role, assigned_by=assigned_by))
        await session.flush()
        await session.refresh(user, attribute_names=["roles"])
        return user

    async def revoke_role(self, session: AsyncSession, user_id: str, role: str) -> UserModel:
        user = await self.get_by_id(session, user_id)
        if user is None:
            raise UserNotFoundError()
        if role == user.primary_role:
            raise AFTError(
                "Cannot revoke the primary role; change primary_role instead",
                code="PRIMARY_ROLE",
            )
        for assignment in user.roles:
            if assignment.role == role:
                assignment.is_active = False
        await session.flush()
        return user

    async def deactivate(self, session: AsyncSession, user_id: str) -> UserModel:
        user = await self.get_by_id(session, user_id)
        if user is None:
            raise UserNotFoundError()
        user.is_active = False
        await session.flush()
        return user


class RoleResolver:
    """Maps an authenticated principal id to its role set."""

    async def resolve(self, session: AsyncSession, actor_id: str) -> Actor:
        user = await session.get(UserModel, actor_id) if actor_id else None
        if user is None:
            raise AuthenticationError(f"Unknown actor '{actor_id}'")
        if not user.is_active:
            raise AuthenticationError(f"Actor '{actor_id}' is deactivated")

        try:
            primary = Role(user.primary_role)
        except ValueError:
            raise AuthenticationError(
                f"Actor '{actor_id}' has unrecognized primary role '{user.primary_role}'"
            ) from None

        roles = {primary}
        for assignment in user.roles:
            if not assignment.is_active:
                continue
            try:
                roles.add(Role(assignment.role))
            except ValueError:
                logger.warning(
                    "Ignoring unrecognized role assignment %s", assignment.role,
                    extra={"actor_id": actor_id},
                )
        return Actor(
            id=user.id,
            primary_role=primary,
            roles=frozenset(roles),
            display_name=user.display_name,
            email=user.email,
        )
