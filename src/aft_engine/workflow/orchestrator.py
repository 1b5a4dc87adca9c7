"""Lifecycle orchestrator — the single entry point that moves AFT requests.

One call to ``perform_action`` runs in one transaction:

    resolve actor → load request → transition defined? → authorize
    → guards → verify signatures/TPI → save (version-conditioned)
    → record signatures → append audit entry → commit

Any failure rolls the transaction back and a denied/error audit entry is
appended in a fresh transaction, so every call leaves exactly one entry.
If that entry cannot be written either, the caller gets ``AuditWriteError``.
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aft_engine.aft_requests.models import AFTRequestModel
from aft_engine.aft_requests.store import RequestStore
from aft_engine.audit.models import AuditEntryModel
from aft_engine.audit.service import AuditService
from aft_engine.common.database import DatabaseManager
from aft_engine.common.exceptions import (
    AFTError,
    AuditWriteError,
    IllegalTransition,
    PersistenceError,
    ValidationError,
)
from aft_engine.common.logging import get_logger
from aft_engine.common.models import utcnow
from aft_engine.signatures.service import SignatureService
from aft_engine.signatures.verifier import SignatureVerifier
from aft_engine.users.service import Actor, RoleResolver
from aft_engine.workflow.authorization import require_authorized
from aft_engine.workflow.effects import build_changes
from aft_engine.workflow.schemas import ActionPayload
from aft_engine.workflow.states import (
    Action,
    Classification,
    Role,
    SecondarySignerType,
    Status,
    TransferType,
    requires_dao_review,
)
from aft_engine.workflow.transitions import (
    TransitionContext,
    TransitionPlan,
    plan_transition,
    require_defined,
)

logger = get_logger("workflow")


@dataclass
class _Attempt:
    """What is known about a call so far; feeds the refusal audit entry."""

    request_id: str
    actor_id: str
    action: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    role_used: Optional[str] = None
    from_status: Optional[str] = None


@dataclass(frozen=True)
class ActionOutcome:
    request: AFTRequestModel
    plan: TransitionPlan
    role_used: Role
    audit_entry: AuditEntryModel

    @property
    def from_status(self) -> Status:
        return self.plan.from_status

    @property
    def to_status(self) -> Status:
        return self.plan.to_status


def parse_payload(payload: Union[ActionPayload, dict[str, Any], None]) -> ActionPayload:
    if payload is None:
        return ActionPayload()
    if isinstance(payload, ActionPayload):
        return payload
    try:
        return ActionPayload.model_validate(payload)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'payload'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(f"Invalid action payload: {problems}") from None


class LifecycleOrchestrator:
    """Performs lifecycle actions atomically with their audit entry."""

    def __init__(
        self,
        db: DatabaseManager,
        store: RequestStore,
        role_resolver: RoleResolver,
        verifier: SignatureVerifier,
        signature_service: SignatureService,
        audit_service: AuditService,
    ):
        self.db = db
        self.store = store
        self.resolver = role_resolver
        self.verifier = verifier
        self.signatures = signature_service
        self.audit = audit_service

    async def perform_action(
        self,
        request_id: str,
        actor_id: str,
        action: Union[Action, str],
        payload: Union[ActionPayload, dict[str, Any], None] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ActionOutcome:
        """Perform ``action`` on a request as ``actor_id``.

        Raises one of the ``AFTError`` subclasses on refusal; the stored
        request is unchanged in that case.
        """
        attempt = _Attempt(
            request_id=request_id,
            actor_id=actor_id or "unknown",
            action=action.value if isinstance(action, Action) else str(action),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            parsed_action = self._parse_action(action)
            parsed_payload = parse_payload(payload)
            async with self.db.get_session() as session:
                outcome = await self._perform(session, attempt, parsed_action, parsed_payload)
        except AFTError as exc:
            await self._record_refusal(attempt, exc)
            raise
        except SQLAlchemyError as exc:
            error = PersistenceError(f"Storage failure during {attempt.action}: {exc}")
            await self._record_refusal(attempt, error)
            raise error from exc

        logger.info(
            "%s %s", attempt.action, outcome.request.request_number,
            extra={
                "request_id": request_id,
                "actor_id": attempt.actor_id,
                "action": attempt.action,
                "from_status": outcome.from_status.value,
                "to_status": outcome.to_status.value,
            },
        )
        return outcome

    async def _perform(
        self,
        session: AsyncSession,
        attempt: _Attempt,
        action: Action,
        payload: ActionPayload,
    ) -> ActionOutcome:
        now = utcnow()
        actor = await self.resolver.resolve(session, attempt.actor_id)
        request = await self.store.load_request(
            session, attempt.request_id, include_archived=False,
        )
        status = self.store.status_of(request)
        attempt.from_status = status.value

        require_defined(status, action)
        role_used = require_authorized(actor.roles, status, action)
        attempt.role_used = role_used.value

        ctx = self._context(request, status, actor, payload)
        plan = plan_transition(status, action, ctx)
        signatures = await self.verifier.verify(session, request, actor, action, payload, now)

        changes = build_changes(
            request, plan, actor, role_used, payload, signatures, now,
            dao_required=ctx.dao_required,
        )
        await self.store.save_request(session, request, request.version, **changes)

        for ref in signatures.pending:
            await self.signatures.record_signature(
                session, request.id, ref.step, ref.signer_id, ref.signature,
                ip_address=attempt.ip_address,
                user_agent=attempt.user_agent,
                thumbprint=ref.thumbprint,
            )
        if action == Action.RETURN_TO_DRAFT:
            await self.signatures.supersede_for_request(session, request.id)

        entry = await self.audit.append(
            session,
            request_id=request.id,
            actor_id=actor.id,
            actor_role_used=role_used.value,
            action=action.value,
            from_status=plan.from_status.value,
            to_status=plan.to_status.value,
            outcome="success",
            ip_address=attempt.ip_address,
            user_agent=attempt.user_agent,
            detail={
                "version": request.version,
                "route": plan.route.value if plan.route else None,
                "steps": [step.action.value for step in plan.steps],
                "signatures": [
                    {"step": s.step.value, "signer_id": s.signer_id,
                     "certificate_thumbprint": s.thumbprint}
                    for s in (signatures.primary, signatures.secondary) if s is not None
                ],
            },
        )
        return ActionOutcome(request=request, plan=plan, role_used=role_used, audit_entry=entry)

    # ── Internal helpers ──

    @staticmethod
    def _parse_action(action: Union[Action, str]) -> Action:
        try:
            return Action(action)
        except ValueError:
            raise IllegalTransition(f"Unknown action '{action}'") from None

    @staticmethod
    def _context(
        request: AFTRequestModel, status: Status, actor: Actor, payload: ActionPayload,
    ) -> TransitionContext:
        classification = Classification(request.classification)
        transfer_type = TransferType(request.transfer_type)

        # Routing is fixed once submitted; re-derive only for a draft.
        routing = (request.approval_data or {}).get("routing")
        if status != Status.DRAFT and routing is not None:
            dao_required = bool(routing.get("dao_required"))
        else:
            dao_required = requires_dao_review(classification, transfer_type)

        disposition = payload.disposition
        return TransitionContext(
            actor_id=actor.id,
            actor_roles=actor.roles,
            requestor_id=request.requestor_id,
            classification=classification,
            transfer_type=transfer_type,
            dao_required=dao_required,
            enable_dual_signature=request.enable_dual_signature,
            secondary_signer_type=(
                SecondarySignerType(request.secondary_signer_type)
                if request.secondary_signer_type else None
            ),
            secondary_signer_id=request.secondary_signer_id,
            rejection_reason=payload.rejection_reason,
            disposition=disposition.model_dump(exclude_defaults=True) if disposition else None,
            disposition_method=payload.disposition_method or (
                disposition.method if disposition else None
            ),
            tpi_maintained=payload.tpi_maintained,
        )

    async def _record_refusal(self, attempt: _Attempt, exc: AFTError) -> None:
        logger.warning(
            "%s refused: %s", attempt.action, exc.message,
            extra={
                "request_id": attempt.request_id,
                "actor_id": attempt.actor_id,
                "action": attempt.action,
                "from_status": attempt.from_status,
                "reason": exc.message,
            },
        )
        try:
            await self.audit.append_isolated(
                self.db,
                request_id=attempt.request_id,
                actor_id=attempt.actor_id,
                actor_role_used=attempt.role_used,
                action=attempt.action,
                from_status=attempt.from_status,
                to_status=None,
                outcome=exc.outcome,
                reason=exc.message,
                ip_address=attempt.ip_address,
                user_agent=attempt.user_agent,
                detail={"code": exc.code, "error": type(exc).__name__},
            )
        except AuditWriteError as audit_exc:
            logger.error(
                "Audit entry for refused %s could not be written", attempt.action,
                exc_info=True,
                extra={"request_id": attempt.request_id, "actor_id": attempt.actor_id},
            )
            raise audit_exc from exc
