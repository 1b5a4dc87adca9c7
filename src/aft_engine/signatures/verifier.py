"""Signature and two-person-integrity verification for lifecycle actions.

Each signed action names the step it signs (``SIGNATURE_STEPS``). The signature
may arrive in the action payload or have been recorded ahead of time through
the signatures endpoint; either way it must be well-formed and belong to the
acting principal. When dual signature is enabled, ``complete-transfer`` also
needs the configured secondary signer's signature, and the two must resolve to
distinct identities (signer id and certificate thumbprint).
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from aft_engine.aft_requests.models import AFTRequestModel
from aft_engine.common.exceptions import (
    AuthorizationError,
    DuplicateSignatureError,
    SignatureError,
    TPIViolation,
    ValidationError,
)
from aft_engine.signatures.schemas import SignatureInput
from aft_engine.signatures.service import SignatureService
from aft_engine.users.service import Actor
from aft_engine.workflow.authorization import require_authorized
from aft_engine.workflow.schemas import ActionPayload
from aft_engine.workflow.states import (
    ACTION_LABELS,
    Action,
    Role,
    SecondarySignerType,
    Status,
    StepType,
)

SIGNATURE_STEPS: dict[Action, StepType] = {
    Action.SUBMIT: StepType.REQUESTOR_SUBMISSION,
    Action.DAO_APPROVE: StepType.DAO_APPROVAL,
    Action.APPROVER_APPROVE: StepType.APPROVER_APPROVAL,
    Action.CPSO_APPROVE: StepType.CPSO_APPROVAL,
    Action.REJECT: StepType.REJECTION,
    Action.SME_SIGN: StepType.SME_SIGNATURE,
    Action.COMPLETE_TRANSFER: StepType.DTA_COMPLETION,
    Action.DISPOSITION_COMPLETE: StepType.CUSTODIAN_DISPOSITION,
    Action.DISPOSITION_DISPOSE: StepType.CUSTODIAN_DISPOSITION,
}

# Action whose authorization covers recording a signature for the step ahead
# of time.
STEP_ACTIONS: dict[StepType, Action] = {
    StepType.REQUESTOR_SUBMISSION: Action.SUBMIT,
    StepType.DAO_APPROVAL: Action.DAO_APPROVE,
    StepType.APPROVER_APPROVAL: Action.APPROVER_APPROVE,
    StepType.CPSO_APPROVAL: Action.CPSO_APPROVE,
    StepType.REJECTION: Action.REJECT,
    StepType.SME_SIGNATURE: Action.SME_SIGN,
    StepType.DTA_COMPLETION: Action.COMPLETE_TRANSFER,
    StepType.DTA_SECONDARY: Action.COMPLETE_TRANSFER,
    StepType.CUSTODIAN_DISPOSITION: Action.DISPOSITION_COMPLETE,
}


def secondary_step(signer_type: Optional[str]) -> StepType:
    if signer_type == SecondarySignerType.SME.value:
        return StepType.SME_SIGNATURE
    return StepType.DTA_SECONDARY


@dataclass(frozen=True)
class SignatureRef:
    """A signature satisfying one step: either pending (from the payload) or recorded."""

    step: StepType
    signer_id: str
    thumbprint: str
    signature: Optional[SignatureInput] = None
    recorded_id: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.signature is not None

    def summary(self, signed_at: datetime) -> dict[str, Any]:
        return {
            "step": self.step.value,
            "signer_id": self.signer_id,
            "certificate_thumbprint": self.thumbprint,
            "signature_id": self.recorded_id,
            "signed_at": signed_at.isoformat(),
        }


@dataclass(frozen=True)
class VerifiedSignatures:
    primary: Optional[SignatureRef] = None
    secondary: Optional[SignatureRef] = None

    @property
    def pending(self) -> list[SignatureRef]:
        return [s for s in (self.primary, self.secondary) if s is not None and s.pending]


class SignatureVerifier:
    """Confirms the signatures an action requires before it may advance."""

    def __init__(self, signature_service: SignatureService):
        self.signatures = signature_service

    async def verify(
        self,
        session: AsyncSession,
        request: AFTRequestModel,
        actor: Actor,
        action: Action,
        payload: ActionPayload,
        at: datetime,
    ) -> VerifiedSignatures:
        """Resolve and check the signatures for ``action``.

        Raises:
            ValidationError: submission without acknowledgement, or a secondary
                signature supplied that cannot be attributed.
            SignatureError: a required signature is missing or malformed.
            DuplicateSignatureError: the signer already signed this step.
            TPIViolation: primary and secondary resolve to one identity.
        """
        if action == Action.SUBMIT and not payload.acknowledge_terms:
            raise ValidationError("Submission requires acknowledgement of the transfer terms")

        step = SIGNATURE_STEPS.get(action)
        if step is None:
            return VerifiedSignatures()

        label = ACTION_LABELS[action]
        primary = await self._resolve(
            session, request.id, step, actor.id, payload.signature, at,
            missing=f"{label} requires a {step.value} signature from {actor.id}",
        )

        secondary = None
        if action == Action.COMPLETE_TRANSFER:
            if request.enable_dual_signature:
                secondary = await self._resolve_secondary(session, request, payload, at)
                self._check_two_person_integrity(primary, secondary)
                if (
                    request.secondary_signer_id
                    and secondary.signer_id != request.secondary_signer_id
                ):
                    raise SignatureError(
                        f"Secondary signature must come from the configured signer "
                        f"{request.secondary_signer_id}, got {secondary.signer_id}",
                        step=secondary.step.value,
                    )
            elif payload.secondary_signature is not None:
                raise ValidationError(
                    "A secondary signature was supplied but dual signature is not "
                    "enabled for this request"
                )

        result = VerifiedSignatures(primary=primary, secondary=secondary)
        for ref in result.pending:
            await self._ensure_unsigned(session, request.id, ref)
        return result

    # ── Internal helpers ──

    async def _resolve(
        self,
        session: AsyncSession,
        request_id: str,
        step: StepType,
        signer_id: str,
        supplied: Optional[SignatureInput],
        at: datetime,
        missing: str,
    ) -> SignatureRef:
        if supplied is not None:
            thumbprint = self.signatures.validate(supplied, step, at)
            return SignatureRef(step, signer_id, thumbprint, signature=supplied)

        existing = await self.signatures.get_active(session, request_id, step, signer_id)
        if existing is None or not existing.is_verified:
            raise SignatureError(missing, step=step.value)
        return SignatureRef(
            step, signer_id, existing.certificate_thumbprint, recorded_id=existing.id,
        )

    async def _resolve_secondary(
        self,
        session: AsyncSession,
        request: AFTRequestModel,
        payload: ActionPayload,
        at: datetime,
    ) -> SignatureRef:
        step = secondary_step(request.secondary_signer_type)
        supplied = payload.secondary_signature
        missing = (
            f"Dual signature is enabled: transfer completion requires a {step.value} "
            f"signature from the secondary signer"
        )
        if supplied is not None:
            signer_id = supplied.signer_id or request.secondary_signer_id
            if not signer_id:
                raise ValidationError("secondary_signature.signer_id is required")
            return await self._resolve(session, request.id, step, signer_id, supplied, at, missing)

        existing = await self.signatures.get_active(
            session, request.id, step, request.secondary_signer_id,
        )
        if existing is None or not existing.is_verified:
            raise SignatureError(missing, step=step.value)
        return SignatureRef(
            step, existing.signer_id, existing.certificate_thumbprint,
            recorded_id=existing.id,
        )

    @staticmethod
    def _check_two_person_integrity(primary: SignatureRef, secondary: SignatureRef) -> None:
        if secondary.signer_id == primary.signer_id:
            raise TPIViolation(
                f"Primary and secondary signatures both belong to {primary.signer_id}; "
                f"two distinct signers are required"
            )
        if secondary.thumbprint == primary.thumbprint:
            raise TPIViolation(
                f"Primary and secondary signatures use the same certificate "
                f"({primary.thumbprint}); two distinct signers are required"
            )

    async def _ensure_unsigned(
        self, session: AsyncSession, request_id: str, ref: SignatureRef,
    ) -> None:
        existing = await self.signatures.get_active(session, request_id, ref.step, ref.signer_id)
        if existing is not None:
            raise DuplicateSignatureError(
                f"Signer {ref.signer_id} already signed step {ref.step.value}",
                step=ref.step.value,
            )


def check_step_permission(
    actor: Actor, request: AFTRequestModel, status: Status, step: StepType,
) -> Role:
    """Authorize recording a ``step`` signature ahead of the consuming action.

    Returns the role that grants it. The signer must be allowed to perform
    the action the step belongs to at the current status; secondary steps are
    further limited to the configured secondary signer.
    """
    action = STEP_ACTIONS[step]
    role = require_authorized(actor.roles, status, action)
    is_admin = Role.ADMIN in actor.roles

    if step in (StepType.DTA_SECONDARY, StepType.SME_SIGNATURE):
        expected = secondary_step(request.secondary_signer_type)
        if not request.enable_dual_signature or step != expected:
            raise SignatureError(
                f"Step {step.value} is not part of this request's dual-signature "
                f"configuration",
                step=step.value,
            )
        if (
            request.secondary_signer_id
            and actor.id != request.secondary_signer_id
            and not is_admin
        ):
            raise AuthorizationError(
                f"Step {step.value} is reserved for the configured secondary signer "
                f"{request.secondary_signer_id}; actor is {actor.id}"
            )
    elif step == StepType.REQUESTOR_SUBMISSION:
        if actor.id != request.requestor_id and not is_admin:
            raise AuthorizationError(
                f"Only the requestor ({request.requestor_id}) or an admin may sign "
                f"the submission"
            )
    return role
