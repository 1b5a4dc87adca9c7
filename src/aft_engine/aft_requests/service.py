"""Request service — create, edit, list and archive AFT requests.

Status never changes here; every status move goes through the lifecycle
orchestrator. This service owns the editable draft fields and archiving.
"""

import secrets
import string
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from aft_engine.aft_requests.models import AFTRequestModel
from aft_engine.aft_requests.store import RequestStore
from aft_engine.audit.service import AuditService
from aft_engine.common.config import AFTSettings
from aft_engine.common.exceptions import (
    AuthenticationError,
    AuthorizationError,
    IllegalTransition,
    PersistenceError,
    ValidationError,
)
from aft_engine.common.logging import get_logger
from aft_engine.common.models import utcnow
from aft_engine.users.service import RoleResolver
from aft_engine.workflow.states import (
    Classification,
    Role,
    SecondarySignerType,
    Status,
    TERMINAL_STATUSES,
    TransferType,
)

logger = get_logger("requests")

_NUMBER_ALPHABET = string.ascii_uppercase + string.digits

# Roles allowed to open a new request; each may also submit and cancel its own draft.
CREATOR_ROLES = (Role.REQUESTOR, Role.ADMIN)

EDITABLE_FIELDS = frozenset({
    "classification",
    "transfer_type",
    "media_control_number",
    "media_type",
    "source_system",
    "destination_system",
    "transfer_purpose",
    "data_description",
    "form_data",
    "enable_dual_signature",
    "secondary_signer_type",
    "secondary_signer_id",
})

# Editable fields an edit may explicitly clear with null.
NULLABLE_FIELDS = frozenset({"secondary_signer_type", "secondary_signer_id"})


def generate_request_number(prefix: str = "AFT") -> str:
    """``<prefix><yymmdd>-<XXXX>`` with four random uppercase alphanumerics."""
    suffix = "".join(secrets.choice(_NUMBER_ALPHABET) for _ in range(4))
    return f"{prefix}{utcnow():%y%m%d}-{suffix}"


class RequestService:
    """Draft lifecycle outside the state machine: create, edit, list, archive."""

    def __init__(
        self,
        settings: AFTSettings,
        store: RequestStore,
        role_resolver: RoleResolver,
        audit_service: AuditService,
    ):
        self.settings = settings
        self.store = store
        self.resolver = role_resolver
        self.audit = audit_service

    # ── Create ──

    async def create_request(
        self, session: AsyncSession, actor_id: str, **fields: Any,
    ) -> AFTRequestModel:
        actor = await self.resolver.resolve(session, actor_id)
        if not actor.has_any(*CREATOR_ROLES):
            raise AuthorizationError(
                f"Creating a request requires one of roles "
                f"[{', '.join(r.value for r in CREATOR_ROLES)}]; actor holds "
                f"[{', '.join(sorted(r.value for r in actor.roles))}]"
            )

        values = self._normalize(fields)
        values.setdefault("enable_dual_signature", False)
        await self._check_dual_signature(session, values)

        request = AFTRequestModel(
            request_number=await self._unique_request_number(session),
            requestor_id=actor.id,
            status=Status.DRAFT.value,
            version=1,
            approval_data={},
            transfer_data={},
            **values,
        )
        await self.store.add_request(session, request)
        logger.info(
            "Created request %s", request.request_number,
            extra={"request_id": request.id, "actor_id": actor.id},
        )
        return request

    async def _unique_request_number(self, session: AsyncSession, attempts: int = 5) -> str:
        for _ in range(attempts):
            number = generate_request_number(self.settings.request_number_prefix)
            result = await session.execute(
                select(func.count())
                .select_from(AFTRequestModel)
                .where(AFTRequestModel.request_number == number)
            )
            if result.scalar_one() == 0:
                return number
        raise PersistenceError("Could not allocate a unique request number")

    # ── Read ──

    async def get_request(self, session: AsyncSession, request_id: str) -> AFTRequestModel:
        return await self.store.load_request(session, request_id)

    async def list_requests(
        self,
        session: AsyncSession,
        status: Optional[str] = None,
        requestor_id: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[AFTRequestModel], int]:
        query = select(AFTRequestModel)
        count_query = select(func.count()).select_from(AFTRequestModel)
        filters = []
        if status:
            filters.append(AFTRequestModel.status == Status(status).value)
        if requestor_id:
            filters.append(AFTRequestModel.requestor_id == requestor_id)
        if not include_archived:
            filters.append(AFTRequestModel.is_archived == False)  # noqa: E712
        for f in filters:
            query = query.where(f)
            count_query = count_query.where(f)

        total = (await session.execute(count_query)).scalar_one()
        result = await session.execute(
            query.order_by(AFTRequestModel.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    # ── Edit ──

    async def update_draft(
        self,
        session: AsyncSession,
        actor_id: str,
        request_id: str,
        expected_version: Optional[int] = None,
        **fields: Any,
    ) -> AFTRequestModel:
        """Edit a draft's metadata. Only the requestor or an admin, only in draft."""
        actor = await self.resolver.resolve(session, actor_id)
        request = await self.store.load_request(session, request_id, include_archived=False)

        if request.requestor_id != actor.id and Role.ADMIN not in actor.roles:
            raise AuthorizationError(
                f"Only the requestor ({request.requestor_id}) or an admin may edit "
                f"request {request.request_number}"
            )
        if request.status != Status.DRAFT.value:
            raise IllegalTransition(
                f"Request {request.request_number} is {request.status}; "
                f"only draft requests can be edited"
            )

        changes = self._normalize(fields)
        if not changes:
            return request
        merged = {
            "enable_dual_signature": request.enable_dual_signature,
            "secondary_signer_type": request.secondary_signer_type,
            "secondary_signer_id": request.secondary_signer_id,
        }
        merged.update(
            {k: v for k, v in changes.items() if k in merged}
        )
        await self._check_dual_signature(session, merged)
        changes.update(merged)

        version = expected_version if expected_version is not None else request.version
        return await self.store.save_request(session, request, version, **changes)

    # ── Archive ──

    async def archive_request(
        self,
        session: AsyncSession,
        actor_id: str,
        request_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AFTRequestModel:
        """Soft-deactivate a request in a terminal status (admin only)."""
        actor = await self.resolver.resolve(session, actor_id)
        if Role.ADMIN not in actor.roles:
            raise AuthorizationError("Archiving a request requires the admin role")
        request = await self.store.load_request(session, request_id)
        status = self.store.status_of(request)
        if status not in TERMINAL_STATUSES:
            raise IllegalTransition(
                f"Request {request.request_number} is {status.value}; only completed, "
                f"disposed or cancelled requests can be archived"
            )
        if request.is_archived:
            raise IllegalTransition(f"Request {request.request_number} is already archived")

        await self.store.save_request(
            session, request, request.version, is_archived=True, archived_at=utcnow(),
        )
        await self.audit.append(
            session,
            request_id=request.id,
            actor_id=actor.id,
            actor_role_used=Role.ADMIN.value,
            action="archive",
            from_status=status.value,
            to_status=status.value,
            outcome="success",
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return request

    # ── Internal helpers ──

    @staticmethod
    def _normalize(fields: dict[str, Any]) -> dict[str, Any]:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
        values = {
            k: v for k, v in fields.items() if v is not None or k in NULLABLE_FIELDS
        }
        try:
            if "classification" in values:
                values["classification"] = Classification(values["classification"]).value
            if "transfer_type" in values:
                values["transfer_type"] = TransferType(values["transfer_type"]).value
            if values.get("secondary_signer_type") is not None:
                values["secondary_signer_type"] = SecondarySignerType(
                    values["secondary_signer_type"]
                ).value
        except ValueError as exc:
            raise ValidationError(str(exc)) from None
        return values

    async def _check_dual_signature(
        self, session: AsyncSession, values: dict[str, Any],
    ) -> None:
        """Validate the dual-signature configuration in ``values`` in place.

        When disabled, the secondary signer fields are cleared. When enabled, a
        signer type is required and any named signer must hold that role.
        """
        if not values.get("enable_dual_signature"):
            values["secondary_signer_type"] = None
            values["secondary_signer_id"] = None
            return

        signer_type = values.get("secondary_signer_type")
        if not signer_type:
            raise ValidationError(
                "secondary_signer_type (dta or sme) is required when dual signature is enabled"
            )
        signer_id = values.get("secondary_signer_id")
        if signer_id is None:
            return
        try:
            signer = await self.resolver.resolve(session, signer_id)
        except AuthenticationError as exc:
            raise ValidationError(
                f"Secondary signer '{signer_id}' is not an active user"
            ) from exc
        if Role(signer_type) not in signer.roles:
            raise ValidationError(
                f"Secondary signer '{signer_id}' does not hold the {signer_type} role"
            )
