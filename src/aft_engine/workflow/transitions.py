"""AFT request transition table.

A fixed, enumerable state machine for one document type. Every legal move is
an entry in ``TRANSITIONS``; anything else is an ``IllegalTransition``.

State Flow:
    draft → submitted → [pending_dao →] pending_approver → pending_cpso
          → approved → active_transfer → [pending_sme →] pending_media_custodian
          → completed | disposed

    submitted | pending_* → rejected → draft (return-to-draft)
    draft → cancelled

Terminal States: completed, disposed, cancelled

``submit`` is immediately followed by the routing step (``advance-dao`` or
``advance-skip-dao``) decided from the request attributes at submission time,
so a submitted request lands in ``pending_dao`` or ``pending_approver`` in a
single call.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from aft_engine.common.exceptions import (
    AuthorizationError,
    IllegalTransition,
    ValidationError,
)
from aft_engine.workflow.states import (
    Action,
    Classification,
    REVIEW_STATUSES,
    Role,
    SecondarySignerType,
    Status,
    TERMINAL_STATUSES,
    TransferType,
)


@dataclass(frozen=True)
class TransitionContext:
    """Request attributes and actor identity the guards evaluate."""

    actor_id: str
    actor_roles: frozenset[Role]
    requestor_id: str
    classification: Classification
    transfer_type: TransferType
    dao_required: bool
    enable_dual_signature: bool = False
    secondary_signer_type: Optional[SecondarySignerType] = None
    secondary_signer_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    disposition: Optional[dict[str, Any]] = None
    disposition_method: Optional[str] = None
    tpi_maintained: Optional[bool] = None

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.actor_roles


Guard = Callable[[TransitionContext], None]


@dataclass(frozen=True)
class Transition:
    action: Action
    sources: frozenset[Status]
    target: Status
    condition: str = ""
    guard: Optional[Guard] = None


@dataclass(frozen=True)
class TransitionStep:
    action: Action
    from_status: Status
    to_status: Status


@dataclass(frozen=True)
class TransitionPlan:
    """Outcome of a legal action: the ordered steps and the final status."""

    action: Action
    steps: tuple[TransitionStep, ...]

    @property
    def from_status(self) -> Status:
        return self.steps[0].from_status

    @property
    def to_status(self) -> Status:
        return self.steps[-1].to_status

    @property
    def route(self) -> Optional[Action]:
        """Routing action chained after submit, if any."""
        return self.steps[1].action if len(self.steps) > 1 else None


# ── Guards ──


def _requestor_or_admin(ctx: TransitionContext, action: Action) -> None:
    if ctx.actor_id != ctx.requestor_id and not ctx.is_admin:
        raise AuthorizationError(
            f"{action.value} may only be performed by the requestor "
            f"({ctx.requestor_id}) or an admin; actor is {ctx.actor_id}"
        )


def _guard_submit(ctx: TransitionContext) -> None:
    _requestor_or_admin(ctx, Action.SUBMIT)


def _guard_advance_dao(ctx: TransitionContext) -> None:
    if not ctx.dao_required:
        raise IllegalTransition(
            "advance-dao requires a high-to-low transfer or SECRET-or-above "
            f"classification at submission; request was submitted as "
            f"{ctx.transfer_type.value}/{ctx.classification.value}"
        )


def _guard_advance_skip_dao(ctx: TransitionContext) -> None:
    if ctx.dao_required:
        raise IllegalTransition(
            "advance-skip-dao is not allowed: request requires DAO review "
            f"({ctx.transfer_type.value}/{ctx.classification.value})"
        )


def _guard_reject(ctx: TransitionContext) -> None:
    if not (ctx.rejection_reason or "").strip():
        raise ValidationError("Rejection reason is required")


def _guard_return_to_draft(ctx: TransitionContext) -> None:
    _requestor_or_admin(ctx, Action.RETURN_TO_DRAFT)


def _guard_initiate_transfer(ctx: TransitionContext) -> None:
    if not ({Role.DTA, Role.ADMIN} & ctx.actor_roles):
        raise AuthorizationError("initiate-transfer requires the dta or admin role")


def _guard_sme_sign(ctx: TransitionContext) -> None:
    if not ctx.enable_dual_signature or ctx.secondary_signer_type != SecondarySignerType.SME:
        raise IllegalTransition(
            "sme-sign requires dual signature with a secondary SME signer configured"
        )
    if (
        ctx.secondary_signer_id is not None
        and ctx.actor_id != ctx.secondary_signer_id
        and not ctx.is_admin
    ):
        raise AuthorizationError(
            f"sme-sign is reserved for the configured secondary signer "
            f"{ctx.secondary_signer_id}; actor is {ctx.actor_id}"
        )


def _guard_complete_transfer(ctx: TransitionContext) -> None:
    if ctx.tpi_maintained is False:
        raise ValidationError("complete-transfer requires two-person integrity to be confirmed")


def _guard_disposition_complete(ctx: TransitionContext) -> None:
    if not ctx.disposition:
        raise ValidationError("disposition-complete requires a disposition record")


def _guard_disposition_dispose(ctx: TransitionContext) -> None:
    if not (ctx.disposition_method or "").strip():
        raise ValidationError("disposition-dispose requires a disposition method")


def _guard_cancel(ctx: TransitionContext) -> None:
    _requestor_or_admin(ctx, Action.CANCEL)


# ── Table ──

_RETURNABLE = REVIEW_STATUSES | {Status.REJECTED}

TRANSITIONS: dict[Action, Transition] = {
    t.action: t
    for t in (
        Transition(
            Action.SUBMIT, frozenset({Status.DRAFT}), Status.SUBMITTED,
            "requestor signature + acknowledgement present", _guard_submit,
        ),
        Transition(
            Action.ADVANCE_DAO, frozenset({Status.SUBMITTED}), Status.PENDING_DAO,
            "transfer is high-to-low or classification >= secret", _guard_advance_dao,
        ),
        Transition(
            Action.ADVANCE_SKIP_DAO, frozenset({Status.SUBMITTED}), Status.PENDING_APPROVER,
            "DAO review not required", _guard_advance_skip_dao,
        ),
        Transition(
            Action.DAO_APPROVE, frozenset({Status.PENDING_DAO}), Status.PENDING_APPROVER,
            "DAO signature present",
        ),
        Transition(
            Action.APPROVER_APPROVE, frozenset({Status.PENDING_APPROVER}), Status.PENDING_CPSO,
            "Approver signature present",
        ),
        Transition(
            Action.CPSO_APPROVE, frozenset({Status.PENDING_CPSO}), Status.APPROVED,
            "CPSO signature present",
        ),
        Transition(
            Action.REJECT, REVIEW_STATUSES, Status.REJECTED,
            "non-empty rejection reason", _guard_reject,
        ),
        Transition(
            Action.RETURN_TO_DRAFT, _RETURNABLE, Status.DRAFT,
            "actor is requestor or admin", _guard_return_to_draft,
        ),
        Transition(
            Action.INITIATE_TRANSFER, frozenset({Status.APPROVED, Status.PENDING_DTA}),
            Status.ACTIVE_TRANSFER,
            "actor holds dta or admin role", _guard_initiate_transfer,
        ),
        Transition(
            Action.SME_SIGN, frozenset({Status.ACTIVE_TRANSFER}), Status.PENDING_SME,
            "secondary SME signer configured", _guard_sme_sign,
        ),
        Transition(
            Action.COMPLETE_TRANSFER, frozenset({Status.ACTIVE_TRANSFER, Status.PENDING_SME}),
            Status.PENDING_MEDIA_CUSTODIAN,
            "dual-signature check satisfied when enabled, TPI not denied", _guard_complete_transfer,
        ),
        Transition(
            Action.DISPOSITION_COMPLETE, frozenset({Status.PENDING_MEDIA_CUSTODIAN}),
            Status.COMPLETED,
            "custodian signature + disposition payload present", _guard_disposition_complete,
        ),
        Transition(
            Action.DISPOSITION_DISPOSE, frozenset({Status.PENDING_MEDIA_CUSTODIAN}),
            Status.DISPOSED,
            "custodian signature + disposition method present", _guard_disposition_dispose,
        ),
        Transition(
            Action.CANCEL, frozenset({Status.DRAFT}), Status.CANCELLED,
            "actor is requestor or admin", _guard_cancel,
        ),
    )
}


def is_defined(status: Status, action: Action) -> bool:
    """Check whether ``action`` is listed for ``status`` without evaluating guards."""
    transition = TRANSITIONS.get(action)
    return transition is not None and status in transition.sources


def require_defined(status: Status, action: Action) -> Transition:
    """Return the table entry for (status, action) or raise IllegalTransition."""
    transition = TRANSITIONS.get(action)
    if transition is None or status not in transition.sources:
        if status in TERMINAL_STATUSES:
            raise IllegalTransition(
                f"{action.value} is not allowed: request is in terminal status {status.value}"
            )
        allowed = sorted(s.value for s in transition.sources) if transition else []
        raise IllegalTransition(
            f"{action.value} is not defined for status {status.value}; "
            f"allowed from: {', '.join(allowed) or 'nowhere'}"
        )
    return transition


def plan_transition(
    status: Status, action: Action, ctx: TransitionContext,
) -> TransitionPlan:
    """Compute the next status for ``action`` taken at ``status``.

    Raises:
        IllegalTransition: action not defined for the status, or its
            attribute condition does not hold.
        AuthorizationError: identity conditions (requestor-or-admin,
            configured secondary signer) fail.
        ValidationError: required payload fields are missing.
    """
    transition = require_defined(status, action)
    if transition.guard is not None:
        transition.guard(ctx)
    steps = [TransitionStep(action, status, transition.target)]

    if action == Action.SUBMIT:
        route = Action.ADVANCE_DAO if ctx.dao_required else Action.ADVANCE_SKIP_DAO
        routed = plan_transition(transition.target, route, ctx)
        steps.extend(routed.steps)

    return TransitionPlan(action=action, steps=tuple(steps))


def legal_actions(status: Status) -> list[Action]:
    """Actions listed for ``status`` in table order."""
    return [a for a, t in TRANSITIONS.items() if status in t.sources]
