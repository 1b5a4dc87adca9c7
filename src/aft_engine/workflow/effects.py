"""Column changes produced by a successful transition.

``approval_data`` and ``transfer_data`` are append-only per stage: a stage key
is written once and never overwritten. Returning a request to draft moves the
current round into ``approval_data["history"]`` instead of erasing it.
"""

import copy
from datetime import datetime
from typing import Any, Optional

from aft_engine.aft_requests.models import AFTRequestModel
from aft_engine.common.exceptions import DataIntegrityError
from aft_engine.signatures.verifier import VerifiedSignatures
from aft_engine.users.service import Actor
from aft_engine.workflow.schemas import ActionPayload
from aft_engine.workflow.states import Action, Role, Status
from aft_engine.workflow.transitions import TransitionPlan

# approval_data["signatures"] key per approval action
APPROVAL_STAGES: dict[Action, str] = {
    Action.SUBMIT: "requestor",
    Action.DAO_APPROVE: "dao",
    Action.APPROVER_APPROVE: "approver",
    Action.CPSO_APPROVE: "cpso",
}

# Actions that may carry the Section IV anti-virus scan results.
SCAN_ACTIONS = frozenset({Action.INITIATE_TRANSFER, Action.COMPLETE_TRANSFER})


def _record_stage(container: dict[str, Any], key: str, value: dict[str, Any]) -> None:
    if key in container:
        raise DataIntegrityError(f"Stage '{key}' is already recorded and cannot be overwritten")
    container[key] = value


def _stage_record(
    actor: Actor,
    role_used: Role,
    payload: ActionPayload,
    signatures: VerifiedSignatures,
    now: datetime,
) -> dict[str, Any]:
    return {
        "actor_id": actor.id,
        "actor_name": actor.display_name,
        "role": role_used.value,
        "comments": payload.comments,
        "signature": signatures.primary.summary(now) if signatures.primary else None,
        "recorded_at": now.isoformat(),
    }


def build_changes(
    request: AFTRequestModel,
    plan: TransitionPlan,
    actor: Actor,
    role_used: Role,
    payload: ActionPayload,
    signatures: VerifiedSignatures,
    now: datetime,
    dao_required: Optional[bool] = None,
) -> dict[str, Any]:
    """Return the column values to persist for ``plan``."""
    approval = copy.deepcopy(request.approval_data or {})
    transfer = copy.deepcopy(request.transfer_data or {})
    changes: dict[str, Any] = {"status": plan.to_status.value}
    record = _stage_record(actor, role_used, payload, signatures, now)
    action = plan.action

    if action in APPROVAL_STAGES:
        _record_stage(approval.setdefault("signatures", {}), APPROVAL_STAGES[action], record)

    if action == Action.SUBMIT:
        approval["routing"] = {
            "dao_required": bool(dao_required),
            "classification": request.classification,
            "transfer_type": request.transfer_type,
            "route": plan.route.value if plan.route else None,
            "decided_at": now.isoformat(),
        }
        changes["submitted_at"] = now

    elif action == Action.CPSO_APPROVE:
        changes["approval_date"] = payload.date or now

    elif action == Action.REJECT:
        reason = (payload.rejection_reason or "").strip()
        approval.setdefault("rejections", []).append(
            {**record, "reason": reason, "from_status": plan.from_status.value}
        )
        changes["rejection_reason"] = reason

    elif action == Action.RETURN_TO_DRAFT:
        round_ = {
            key: approval.pop(key)
            for key in ("routing", "signatures", "rejections")
            if key in approval
        }
        round_.update({
            "returned_by": actor.id,
            "returned_at": now.isoformat(),
            "from_status": plan.from_status.value,
            "rejection_reason": request.rejection_reason,
            "comments": payload.comments,
        })
        approval.setdefault("history", []).append(round_)
        changes["rejection_reason"] = None
        changes["submitted_at"] = None

    elif action == Action.INITIATE_TRANSFER:
        started = payload.date or now
        _record_stage(transfer, "transfer_initiation", {
            **record,
            "started_at": started.isoformat(),
            "details": payload.transfer_details,
        })
        changes["actual_start_date"] = started

    elif action == Action.SME_SIGN:
        _record_stage(transfer, "sme_signature", record)

    elif action == Action.COMPLETE_TRANSFER:
        ended = payload.date or now
        _record_stage(transfer, "transfer_completion", {
            **record,
            "secondary_signature": (
                signatures.secondary.summary(now) if signatures.secondary else None
            ),
            "dual_signature": bool(request.enable_dual_signature),
            "files_transferred": payload.files_transferred,
            "tpi_maintained": payload.tpi_maintained,
            "completed_at": ended.isoformat(),
            "details": payload.transfer_details,
        })
        changes["actual_end_date"] = ended

    elif action in (Action.DISPOSITION_COMPLETE, Action.DISPOSITION_DISPOSE):
        disposition = payload.disposition.model_dump() if payload.disposition else {}
        method = payload.disposition_method or disposition.get("method")
        _record_stage(transfer, "media_disposition", {
            **record,
            "outcome": plan.to_status.value,
            "method": method,
            "disposition": disposition,
        })
        if plan.to_status == Status.COMPLETED:
            approval["completed_at"] = now.isoformat()

    elif action == Action.CANCEL:
        _record_stage(approval, "cancellation", record)

    if payload.antivirus_scan is not None and action in SCAN_ACTIONS:
        scan = payload.antivirus_scan
        _record_stage(transfer, "antivirus_scan", {
            "actor_id": actor.id,
            "actor_name": actor.display_name,
            "role": role_used.value,
            "scan_date": (scan.date or now).isoformat(),
            "recorded_at": now.isoformat(),
            "origination_scan": scan.origination_scan.model_dump(),
            "destination_scan": scan.destination_scan.model_dump(),
        })

    changes["approval_data"] = approval
    changes["transfer_data"] = transfer
    return changes
