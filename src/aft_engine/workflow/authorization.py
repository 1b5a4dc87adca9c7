"""Role-based authorization gate.

Answers "who may act" independently of the transition table, which answers
"what happens". A role is granted an action only at the statuses listed in
``PERMISSIONS``; admin holds the union of every other role's grants.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from aft_engine.common.exceptions import AuthorizationError
from aft_engine.workflow.states import ACTION_LABELS, Action, Role, Status

_S = Status

PERMISSIONS: dict[Role, dict[Action, frozenset[Status]]] = {
    Role.REQUESTOR: {
        Action.SUBMIT: frozenset({_S.DRAFT}),
        Action.RETURN_TO_DRAFT: frozenset({
            _S.SUBMITTED, _S.PENDING_DAO, _S.PENDING_APPROVER, _S.PENDING_CPSO, _S.REJECTED,
        }),
        Action.CANCEL: frozenset({_S.DRAFT}),
    },
    # DAO treats new submissions as awaiting triage.
    Role.DAO: {
        Action.ADVANCE_DAO: frozenset({_S.SUBMITTED}),
        Action.ADVANCE_SKIP_DAO: frozenset({_S.SUBMITTED}),
        Action.DAO_APPROVE: frozenset({_S.PENDING_DAO, _S.SUBMITTED}),
        Action.REJECT: frozenset({_S.SUBMITTED, _S.PENDING_DAO}),
    },
    Role.APPROVER: {
        Action.APPROVER_APPROVE: frozenset({_S.PENDING_APPROVER}),
        Action.REJECT: frozenset({_S.PENDING_APPROVER}),
    },
    Role.CPSO: {
        Action.CPSO_APPROVE: frozenset({_S.PENDING_CPSO}),
        Action.REJECT: frozenset({_S.PENDING_CPSO}),
    },
    Role.DTA: {
        Action.INITIATE_TRANSFER: frozenset({_S.APPROVED, _S.PENDING_DTA}),
        Action.COMPLETE_TRANSFER: frozenset({_S.ACTIVE_TRANSFER, _S.PENDING_SME}),
    },
    Role.SME: {
        Action.SME_SIGN: frozenset({_S.ACTIVE_TRANSFER}),
    },
    Role.MEDIA_CUSTODIAN: {
        Action.DISPOSITION_COMPLETE: frozenset({_S.PENDING_MEDIA_CUSTODIAN}),
        Action.DISPOSITION_DISPOSE: frozenset({_S.PENDING_MEDIA_CUSTODIAN}),
    },
}


def _admin_grants() -> dict[Action, frozenset[Status]]:
    grants: dict[Action, set[Status]] = {}
    for role_grants in PERMISSIONS.values():
        for action, statuses in role_grants.items():
            grants.setdefault(action, set()).update(statuses)
    return {action: frozenset(statuses) for action, statuses in grants.items()}


PERMISSIONS[Role.ADMIN] = _admin_grants()

# Preferred order when several held roles permit the same action; the most
# specific role is recorded as the one used.
_ROLE_PRIORITY = [
    Role.REQUESTOR, Role.DAO, Role.APPROVER, Role.CPSO,
    Role.DTA, Role.SME, Role.MEDIA_CUSTODIAN, Role.ADMIN,
]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    role: Optional[Role] = None
    reason: str = ""


def roles_for(action: Action) -> list[Role]:
    """Roles that hold ``action`` at any status, in priority order."""
    return [r for r in _ROLE_PRIORITY if action in PERMISSIONS.get(r, {})]


def authorize(roles: Iterable[Role], status: Status, action: Action) -> Decision:
    """Decide whether any of ``roles`` may perform ``action`` at ``status``."""
    held = set(roles)
    label = ACTION_LABELS.get(action, action.value)

    for role in _ROLE_PRIORITY:
        if role not in held:
            continue
        statuses = PERMISSIONS[role].get(action)
        if statuses and status in statuses:
            return Decision(allowed=True, role=role)

    eligible = [r for r in roles_for(action) if r in held]
    if eligible:
        required = sorted(
            s.value for r in eligible for s in PERMISSIONS[r][action]
        )
        return Decision(
            allowed=False,
            reason=(
                f"{label} requires status {' or '.join(dict.fromkeys(required))}, "
                f"current status is {status.value}"
            ),
        )

    held_names = ", ".join(sorted(r.value for r in held)) or "none"
    needed = ", ".join(r.value for r in roles_for(action))
    return Decision(
        allowed=False,
        reason=f"{label} requires one of roles [{needed}]; actor holds [{held_names}]",
    )


def require_authorized(roles: Iterable[Role], status: Status, action: Action) -> Role:
    """Return the role used, or raise AuthorizationError with the denial reason."""
    decision = authorize(roles, status, action)
    if not decision.allowed:
        raise AuthorizationError(decision.reason)
    return decision.role
