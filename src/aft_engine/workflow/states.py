"""Lifecycle vocabulary: statuses, actions, roles and request attributes.

The string values are the persisted representation and must not change.
"""

from enum import Enum


class Status(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    PENDING_DAO = "pending_dao"
    PENDING_APPROVER = "pending_approver"
    PENDING_CPSO = "pending_cpso"
    APPROVED = "approved"
    PENDING_DTA = "pending_dta"
    ACTIVE_TRANSFER = "active_transfer"
    PENDING_SME = "pending_sme"
    PENDING_MEDIA_CUSTODIAN = "pending_media_custodian"
    COMPLETED = "completed"
    DISPOSED = "disposed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({Status.COMPLETED, Status.DISPOSED, Status.CANCELLED})

# Statuses in which a request is still awaiting an approval decision.
REVIEW_STATUSES = frozenset({
    Status.SUBMITTED,
    Status.PENDING_DAO,
    Status.PENDING_APPROVER,
    Status.PENDING_CPSO,
})


class Action(str, Enum):
    SUBMIT = "submit"
    ADVANCE_DAO = "advance-dao"
    ADVANCE_SKIP_DAO = "advance-skip-dao"
    DAO_APPROVE = "dao-approve"
    APPROVER_APPROVE = "approver-approve"
    CPSO_APPROVE = "cpso-approve"
    REJECT = "reject"
    RETURN_TO_DRAFT = "return-to-draft"
    INITIATE_TRANSFER = "initiate-transfer"
    SME_SIGN = "sme-sign"
    COMPLETE_TRANSFER = "complete-transfer"
    DISPOSITION_COMPLETE = "disposition-complete"
    DISPOSITION_DISPOSE = "disposition-dispose"
    CANCEL = "cancel"


ACTION_LABELS: dict[Action, str] = {
    Action.SUBMIT: "Submission",
    Action.ADVANCE_DAO: "DAO routing",
    Action.ADVANCE_SKIP_DAO: "Approver routing",
    Action.DAO_APPROVE: "DAO approval",
    Action.APPROVER_APPROVE: "Approver approval",
    Action.CPSO_APPROVE: "CPSO approval",
    Action.REJECT: "Rejection",
    Action.RETURN_TO_DRAFT: "Return to draft",
    Action.INITIATE_TRANSFER: "Transfer initiation",
    Action.SME_SIGN: "SME signature",
    Action.COMPLETE_TRANSFER: "Transfer completion",
    Action.DISPOSITION_COMPLETE: "Media disposition (complete)",
    Action.DISPOSITION_DISPOSE: "Media disposition (dispose)",
    Action.CANCEL: "Cancellation",
}


class Role(str, Enum):
    ADMIN = "admin"
    REQUESTOR = "requestor"
    DAO = "dao"
    APPROVER = "approver"
    CPSO = "cpso"
    DTA = "dta"
    SME = "sme"
    MEDIA_CUSTODIAN = "media_custodian"


class Classification(str, Enum):
    """Ordered by sensitivity; compare with ``rank``."""

    UNCLASSIFIED = "unclassified"
    CUI = "cui"
    CONFIDENTIAL = "confidential"
    SECRET = "secret"
    TOP_SECRET = "top-secret"
    TOP_SECRET_SCI = "top-secret-sci"

    @property
    def rank(self) -> int:
        return _CLASSIFICATION_ORDER.index(self)


_CLASSIFICATION_ORDER = list(Classification)


class TransferType(str, Enum):
    LOW_TO_LOW = "low-to-low"
    LOW_TO_HIGH = "low-to-high"
    HIGH_TO_LOW = "high-to-low"
    HIGH_TO_HIGH = "high-to-high"


class SecondarySignerType(str, Enum):
    DTA = "dta"
    SME = "sme"


class StepType(str, Enum):
    """Signature steps; one per signed stage of the lifecycle."""

    REQUESTOR_SUBMISSION = "requestor_submission"
    DAO_APPROVAL = "dao_approval"
    APPROVER_APPROVAL = "approver_approval"
    CPSO_APPROVAL = "cpso_approval"
    REJECTION = "rejection"
    SME_SIGNATURE = "sme_signature"
    DTA_COMPLETION = "dta_completion"
    DTA_SECONDARY = "dta_secondary"
    CUSTODIAN_DISPOSITION = "custodian_disposition"


def requires_dao_review(classification: Classification, transfer_type: TransferType) -> bool:
    """High-to-low transfers and anything SECRET or above go through the DAO."""
    return (
        transfer_type == TransferType.HIGH_TO_LOW
        or classification.rank >= Classification.SECRET.rank
    )
