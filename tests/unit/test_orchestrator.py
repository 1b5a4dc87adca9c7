"""Tests for the lifecycle orchestrator: transitions, refusals and their audit trail."""

import pytest

from aft_engine.common.exceptions import (
    AuditWriteError,
    AuthenticationError,
    AuthorizationError,
    DataIntegrityError,
    DuplicateSignatureError,
    IllegalTransition,
    RequestNotFoundError,
    SignatureError,
    TPIViolation,
    ValidationError,
)
from aft_engine.aft_requests.service import CREATOR_ROLES
from aft_engine.common.models import as_utc
from aft_engine.signatures.schemas import SignatureInput
from aft_engine.workflow.states import Action, Role, Status, StepType
from aft_engine.workflow.transitions import legal_actions

from tests.conftest import signature_for, thumbprint_for


def signed(seed: str, **extra) -> dict:
    return {"signature": signature_for(seed), **extra}


async def _create(svc, users, actor="requestor", **fields):
    fields.setdefault("classification", "cui")
    fields.setdefault("transfer_type", "low-to-low")
    async with svc.db.get_session() as session:
        return await svc.requests.create_request(session, users[actor], **fields)


async def _act(svc, request_id, actor_id, action, payload=None, **kwargs):
    return await svc.orchestrator.perform_action(request_id, actor_id, action, payload, **kwargs)


async def _reload(svc, request_id):
    async with svc.db.get_session() as session:
        return await svc.store.load_request(session, request_id)


async def _entries(svc, request_id):
    async with svc.db.get_session() as session:
        return await svc.audit.get_entries(session, request_id)


async def _submit(svc, users, request):
    return await _act(
        svc, request.id, users["requestor"], "submit",
        signed("requestor", acknowledge_terms=True),
    )


async def _to_approved(svc, users, **fields):
    request = await _create(svc, users, **fields)
    await _submit(svc, users, request)
    await _act(svc, request.id, users["approver"], "approver-approve", signed("approver"))
    await _act(svc, request.id, users["cpso"], "cpso-approve", signed("cpso"))
    return request


async def _to_active(svc, users, **fields):
    request = await _to_approved(svc, users, **fields)
    await _act(svc, request.id, users["dta"], "initiate-transfer")
    return request


async def _to_custodian(svc, users, **fields):
    request = await _to_active(svc, users, **fields)
    await _act(svc, request.id, users["dta"], "complete-transfer", signed("dta"))
    return request


async def _force_status(svc, request_id, status: Status):
    async with svc.db.get_session() as session:
        request = await svc.store.load_request(session, request_id)
        await svc.store.save_request(session, request, request.version, status=status.value)


class TestScenarios:
    async def test_low_to_low_lifecycle(self, svc, users):
        request = await _create(svc, users)

        outcome = await _submit(svc, users, request)
        assert outcome.from_status == Status.DRAFT
        assert outcome.to_status == Status.PENDING_APPROVER
        assert outcome.plan.route == Action.ADVANCE_SKIP_DAO

        outcome = await _act(svc, request.id, users["approver"], "approver-approve",
                             signed("approver", comments="Looks complete"))
        assert outcome.to_status == Status.PENDING_CPSO
        outcome = await _act(svc, request.id, users["cpso"], "cpso-approve", signed("cpso"))
        assert outcome.to_status == Status.APPROVED
        outcome = await _act(svc, request.id, users["dta"], "initiate-transfer",
                             {"transfer_details": {"media": "DVD-R"}})
        assert outcome.to_status == Status.ACTIVE_TRANSFER
        outcome = await _act(svc, request.id, users["dta"], "complete-transfer",
                             signed("dta", files_transferred=12))
        assert outcome.to_status == Status.PENDING_MEDIA_CUSTODIAN
        outcome = await _act(
            svc, request.id, users["custodian"], "disposition-complete",
            signed("custodian", disposition={"optical_destroyed": True, "method": "shred"}),
        )
        assert outcome.to_status == Status.COMPLETED

        final = await _reload(svc, request.id)
        assert final.status == "completed"
        assert final.version == 7
        assert final.submitted_at is not None
        assert final.approval_date is not None
        assert final.actual_start_date is not None
        assert final.actual_end_date is not None
        assert set(final.approval_data["signatures"]) == {"requestor", "approver", "cpso"}
        assert final.approval_data["signatures"]["approver"]["comments"] == "Looks complete"
        assert final.approval_data["routing"]["dao_required"] is False
        assert "completed_at" in final.approval_data
        completion = final.transfer_data["transfer_completion"]
        assert completion["files_transferred"] == 12
        assert completion["dual_signature"] is False
        assert completion["secondary_signature"] is None
        assert final.transfer_data["media_disposition"]["disposition"]["optical_destroyed"] is True
        assert final.transfer_data["media_disposition"]["method"] == "shred"

        async with svc.db.get_session() as session:
            signatures = await svc.signatures.list_signatures(session, request.id)
            chain = await svc.audit.verify_chain(session, request.id)
        assert [s.step_type for s in signatures] == [
            "requestor_submission", "approver_approval", "cpso_approval",
            "dta_completion", "custodian_disposition",
        ]
        assert [s.signer_id for s in signatures if s.step_type == "dta_completion"] == [users["dta"]]

        entries = await _entries(svc, request.id)
        assert [e.action for e in entries] == [
            "submit", "approver-approve", "cpso-approve", "initiate-transfer",
            "complete-transfer", "disposition-complete",
        ]
        assert {e.outcome for e in entries} == {"success"}
        assert chain == {"valid": True, "entries_checked": 6, "break_at": None}

    async def test_high_to_low_routes_to_dao_and_cpso_cannot_approve(self, svc, users):
        request = await _create(svc, users, transfer_type="high-to-low", classification="unclassified")
        outcome = await _submit(svc, users, request)
        assert outcome.to_status == Status.PENDING_DAO
        assert outcome.plan.route == Action.ADVANCE_DAO

        with pytest.raises(AuthorizationError, match="DAO approval requires one of roles"):
            await _act(svc, request.id, users["cpso"], "dao-approve", signed("cpso"))

        assert (await _reload(svc, request.id)).status == "pending_dao"
        denied = (await _entries(svc, request.id))[-1]
        assert denied.action == "dao-approve"
        assert denied.outcome == "denied"
        assert denied.actor_id == users["cpso"]
        assert denied.from_status == "pending_dao"
        assert denied.to_status is None
        assert "DAO approval" in denied.reason

    async def test_reject_with_empty_reason(self, svc, users):
        request = await _create(svc, users)
        await _submit(svc, users, request)

        with pytest.raises(ValidationError, match="Rejection reason is required"):
            await _act(svc, request.id, users["approver"], "reject",
                       signed("approver", rejection_reason=""))

        reloaded = await _reload(svc, request.id)
        assert reloaded.status == "pending_approver"
        assert reloaded.version == 2
        entries = await _entries(svc, request.id)
        denied = [e for e in entries if e.outcome == "denied"]
        assert len(denied) == 1
        assert denied[0].action == "reject"
        assert denied[0].actor_role_used == "approver"


class TestOwnerActions:
    @pytest.mark.parametrize("creator", [r.value for r in CREATOR_ROLES])
    async def test_creator_can_submit_own_draft(self, svc, users, creator):
        request = await _create(svc, users, actor=creator)
        outcome = await _act(svc, request.id, users[creator], "submit",
                             signed(creator, acknowledge_terms=True))
        assert outcome.to_status == Status.PENDING_APPROVER

    @pytest.mark.parametrize("creator", [r.value for r in CREATOR_ROLES])
    async def test_creator_can_cancel_own_draft(self, svc, users, creator):
        request = await _create(svc, users, actor=creator)
        outcome = await _act(svc, request.id, users[creator], "cancel")
        assert outcome.to_status == Status.CANCELLED


class TestSubmission:
    async def test_secret_classification_routes_to_dao(self, svc, users):
        request = await _create(svc, users, classification="secret")
        outcome = await _submit(svc, users, request)
        assert outcome.to_status == Status.PENDING_DAO
        routing = outcome.request.approval_data["routing"]
        assert routing["dao_required"] is True
        assert routing["classification"] == "secret"
        assert routing["route"] == "advance-dao"

    async def test_dao_chain(self, svc, users):
        request = await _create(svc, users, transfer_type="high-to-low")
        await _submit(svc, users, request)
        outcome = await _act(svc, request.id, users["dao"], "dao-approve", signed("dao"))
        assert outcome.to_status == Status.PENDING_APPROVER
        assert outcome.role_used == Role.DAO
        assert "dao" in outcome.request.approval_data["signatures"]

    async def test_acknowledgement_required(self, svc, users):
        request = await _create(svc, users)
        with pytest.raises(ValidationError, match="acknowledgement"):
            await _act(svc, request.id, users["requestor"], "submit", signed("requestor"))
        assert (await _reload(svc, request.id)).status == "draft"

    async def test_signature_required(self, svc, users):
        request = await _create(svc, users)
        with pytest.raises(SignatureError, match="requestor_submission") as exc:
            await _act(svc, request.id, users["requestor"], "submit", {"acknowledge_terms": True})
        assert exc.value.step == "requestor_submission"

    async def test_malformed_signature(self, svc, users):
        request = await _create(svc, users)
        payload = {
            "signature": signature_for("requestor", certificate_thumbprint="not-hex"),
            "acknowledge_terms": True,
        }
        with pytest.raises(SignatureError, match="thumbprint"):
            await _act(svc, request.id, users["requestor"], "submit", payload)
        async with svc.db.get_session() as session:
            assert await svc.signatures.list_signatures(session, request.id) == []

    async def test_prerecorded_signature_used(self, svc, users):
        request = await _create(svc, users)
        async with svc.db.get_session() as session:
            await svc.signatures.record_signature(
                session, request.id, StepType.REQUESTOR_SUBMISSION, users["requestor"],
                SignatureInput(**signature_for("requestor")),
            )
        outcome = await _act(svc, request.id, users["requestor"], "submit",
                             {"acknowledge_terms": True})
        assert outcome.to_status == Status.PENDING_APPROVER
        recorded = outcome.request.approval_data["signatures"]["requestor"]["signature"]
        assert recorded["signature_id"] is not None
        assert recorded["certificate_thumbprint"] == thumbprint_for("requestor")

    async def test_other_requestor_cannot_submit(self, svc, users):
        request = await _create(svc, users)
        with pytest.raises(AuthorizationError, match="requestor"):
            await _act(svc, request.id, users["other_requestor"], "submit",
                       signed("other_requestor", acknowledge_terms=True))

    async def test_admin_submits_on_behalf(self, svc, users):
        request = await _create(svc, users)
        outcome = await _act(svc, request.id, users["admin"], "submit",
                             signed("admin", acknowledge_terms=True))
        assert outcome.role_used == Role.ADMIN
        assert outcome.to_status == Status.PENDING_APPROVER


class TestSignatures:
    async def test_duplicate_signature_conflicts(self, svc, users):
        request = await _create(svc, users, transfer_type="high-to-low")
        await _submit(svc, users, request)
        async with svc.db.get_session() as session:
            await svc.signatures.record_signature(
                session, request.id, StepType.DAO_APPROVAL, users["dao"],
                SignatureInput(**signature_for("dao")),
            )
        with pytest.raises(DuplicateSignatureError):
            await _act(svc, request.id, users["dao"], "dao-approve", signed("dao"))
        assert (await _reload(svc, request.id)).status == "pending_dao"

        outcome = await _act(svc, request.id, users["dao"], "dao-approve")
        assert outcome.to_status == Status.PENDING_APPROVER
        async with svc.db.get_session() as session:
            rows = await svc.signatures.list_signatures(session, request.id)
        assert [r.step_type for r in rows].count("dao_approval") == 1

    async def test_reject_requires_signature(self, svc, users):
        request = await _create(svc, users)
        await _submit(svc, users, request)
        with pytest.raises(SignatureError):
            await _act(svc, request.id, users["approver"], "reject",
                       {"rejection_reason": "Incomplete"})


class TestRejectAndReturn:
    async def test_reject_return_resubmit(self, svc, users):
        request = await _create(svc, users)
        await _submit(svc, users, request)

        outcome = await _act(svc, request.id, users["approver"], "reject",
                             signed("approver", rejection_reason="  Missing DD-2875  "))
        assert outcome.to_status == Status.REJECTED
        assert outcome.request.rejection_reason == "Missing DD-2875"
        assert outcome.request.approval_data["rejections"][0]["reason"] == "Missing DD-2875"

        outcome = await _act(svc, request.id, users["requestor"], "return-to-draft",
                             {"comments": "Will attach the form"})
        assert outcome.to_status == Status.DRAFT
        returned = outcome.request
        assert returned.rejection_reason is None
        assert returned.submitted_at is None
        assert "signatures" not in returned.approval_data
        history = returned.approval_data["history"]
        assert len(history) == 1
        assert history[0]["rejection_reason"] == "Missing DD-2875"
        assert history[0]["comments"] == "Will attach the form"
        assert set(history[0]) >= {"routing", "signatures", "rejections", "returned_by"}

        async with svc.db.get_session() as session:
            assert await svc.signatures.list_signatures(session, request.id) == []
            inactive = await svc.signatures.list_signatures(
                session, request.id, include_inactive=True,
            )
        assert {s.step_type for s in inactive} == {"requestor_submission", "rejection"}

        outcome = await _submit(svc, users, request)
        assert outcome.to_status == Status.PENDING_APPROVER
        assert "requestor" in outcome.request.approval_data["signatures"]
        assert len(outcome.request.approval_data["history"]) == 1

    async def test_return_from_pending_by_requestor(self, svc, users):
        request = await _create(svc, users)
        await _submit(svc, users, request)
        outcome = await _act(svc, request.id, users["requestor"], "return-to-draft")
        assert outcome.to_status == Status.DRAFT

    async def test_return_by_other_requestor_refused(self, svc, users):
        request = await _create(svc, users)
        await _submit(svc, users, request)
        with pytest.raises(AuthorizationError):
            await _act(svc, request.id, users["other_requestor"], "return-to-draft")

    async def test_rejected_does_not_resume(self, svc, users):
        request = await _create(svc, users)
        await _submit(svc, users, request)
        await _act(svc, request.id, users["approver"], "reject",
                   signed("approver", rejection_reason="No"))
        with pytest.raises(IllegalTransition):
            await _act(svc, request.id, users["approver"], "approver-approve", signed("approver"))


class TestTransfer:
    async def test_requestor_cannot_initiate(self, svc, users):
        request = await _to_approved(svc, users)
        with pytest.raises(AuthorizationError):
            await _act(svc, request.id, users["requestor"], "initiate-transfer")

    async def test_initiate_from_pending_dta(self, svc, users):
        request = await _to_approved(svc, users)
        await _force_status(svc, request.id, Status.PENDING_DTA)
        outcome = await _act(svc, request.id, users["dta"], "initiate-transfer")
        assert outcome.to_status == Status.ACTIVE_TRANSFER

    async def test_secondary_without_dual_signature(self, svc, users):
        request = await _to_active(svc, users)
        payload = signed("dta", secondary_signature=signature_for("dta2", signer_id=users["dta2"]))
        with pytest.raises(ValidationError, match="dual signature is not enabled"):
            await _act(svc, request.id, users["dta"], "complete-transfer", payload)

    async def test_dispose(self, svc, users):
        request = await _to_custodian(svc, users)
        outcome = await _act(svc, request.id, users["custodian"], "disposition-dispose",
                             signed("custodian", disposition_method="degauss"))
        assert outcome.to_status == Status.DISPOSED
        assert outcome.request.transfer_data["media_disposition"]["method"] == "degauss"
        assert outcome.request.transfer_data["media_disposition"]["outcome"] == "disposed"
        assert "completed_at" not in outcome.request.approval_data

    async def test_dispose_method_from_disposition_record(self, svc, users):
        request = await _to_custodian(svc, users)
        outcome = await _act(svc, request.id, users["custodian"], "disposition-dispose",
                             signed("custodian", disposition={"method": "incinerate"}))
        assert outcome.request.transfer_data["media_disposition"]["method"] == "incinerate"

    async def test_dispose_requires_method(self, svc, users):
        request = await _to_custodian(svc, users)
        with pytest.raises(ValidationError, match="disposition method"):
            await _act(svc, request.id, users["custodian"], "disposition-dispose",
                       signed("custodian"))

    async def test_complete_requires_disposition_record(self, svc, users):
        request = await _to_custodian(svc, users)
        with pytest.raises(ValidationError, match="disposition record"):
            await _act(svc, request.id, users["custodian"], "disposition-complete",
                       signed("custodian"))

    async def test_dta_cannot_dispose(self, svc, users):
        request = await _to_custodian(svc, users)
        with pytest.raises(AuthorizationError):
            await _act(svc, request.id, users["dta"], "disposition-dispose",
                       signed("dta", disposition_method="degauss"))


SCAN = {
    "origination_scan": {"performed": True, "files_scanned": 12, "threats_found": 0},
    "destination_scan": {"performed": True, "files_scanned": 12, "threats_found": 0},
}


class TestTransferRecord:
    async def test_scan_recorded_at_initiation(self, svc, users):
        request = await _to_approved(svc, users)
        outcome = await _act(svc, request.id, users["dta"], "initiate-transfer",
                             {"antivirus_scan": SCAN})
        scan = outcome.request.transfer_data["antivirus_scan"]
        assert scan["actor_id"] == users["dta"]
        assert scan["origination_scan"] == SCAN["origination_scan"]
        assert scan["destination_scan"]["files_scanned"] == 12

        reloaded = await _reload(svc, request.id)
        assert reloaded.transfer_data["antivirus_scan"]["role"] == "dta"

    async def test_scan_recorded_at_completion(self, svc, users):
        request = await _to_active(svc, users)
        outcome = await _act(svc, request.id, users["dta"], "complete-transfer",
                             signed("dta", antivirus_scan=SCAN, tpi_maintained=True))
        transfer = outcome.request.transfer_data
        assert transfer["antivirus_scan"]["origination_scan"]["performed"] is True
        assert transfer["transfer_completion"]["tpi_maintained"] is True

    @pytest.mark.parametrize("side,field", [
        ("origination_scan", "files_scanned"),
        ("destination_scan", "threats_found"),
    ])
    async def test_negative_counts_refused(self, svc, users, side, field):
        request = await _to_approved(svc, users)
        scan = {key: dict(value) for key, value in SCAN.items()}
        scan[side][field] = -1
        with pytest.raises(ValidationError, match=f"antivirus_scan.{side}.{field}"):
            await _act(svc, request.id, users["dta"], "initiate-transfer",
                       {"antivirus_scan": scan})

        reloaded = await _reload(svc, request.id)
        assert reloaded.status == "approved"
        assert "antivirus_scan" not in reloaded.transfer_data

    async def test_scan_requires_both_sides(self, svc, users):
        request = await _to_approved(svc, users)
        with pytest.raises(ValidationError, match="destination_scan"):
            await _act(svc, request.id, users["dta"], "initiate-transfer",
                       {"antivirus_scan": {"origination_scan": SCAN["origination_scan"]}})

    async def test_scan_not_overwritten(self, svc, users):
        request = await _to_approved(svc, users)
        await _act(svc, request.id, users["dta"], "initiate-transfer", {"antivirus_scan": SCAN})
        with pytest.raises(DataIntegrityError, match="antivirus_scan"):
            await _act(svc, request.id, users["dta"], "complete-transfer",
                       signed("dta", antivirus_scan=SCAN))
        assert (await _reload(svc, request.id)).status == "active_transfer"

    async def test_unconfirmed_tpi_refused(self, svc, users):
        request = await _to_active(svc, users)
        with pytest.raises(ValidationError, match="two-person integrity"):
            await _act(svc, request.id, users["dta"], "complete-transfer",
                       signed("dta", tpi_maintained=False))
        assert (await _reload(svc, request.id)).status == "active_transfer"


class TestDualSignatureDta:
    FIELDS = {"enable_dual_signature": True, "secondary_signer_type": "dta"}

    async def _active(self, svc, users, configured="dta2"):
        fields = dict(self.FIELDS)
        if configured:
            fields["secondary_signer_id"] = users[configured]
        return await _to_active(svc, users, **fields)

    async def test_same_signer_is_tpi_violation(self, svc, users):
        request = await self._active(svc, users)
        payload = signed("dta", secondary_signature=signature_for("dta2", signer_id=users["dta"]))
        with pytest.raises(TPIViolation):
            await _act(svc, request.id, users["dta"], "complete-transfer", payload)

    async def test_same_certificate_is_tpi_violation(self, svc, users):
        request = await self._active(svc, users)
        payload = signed("dta", secondary_signature=signature_for("dta", signer_id=users["dta2"]))
        with pytest.raises(TPIViolation, match="same certificate"):
            await _act(svc, request.id, users["dta"], "complete-transfer", payload)

    async def test_tpi_violation_leaves_nothing_behind(self, svc, users):
        request = await self._active(svc, users)
        payload = signed("dta", secondary_signature=signature_for("dta", signer_id=users["dta"]))
        with pytest.raises(TPIViolation):
            await _act(svc, request.id, users["dta"], "complete-transfer", payload)

        reloaded = await _reload(svc, request.id)
        assert reloaded.status == "active_transfer"
        assert "transfer_completion" not in reloaded.transfer_data
        async with svc.db.get_session() as session:
            steps = [s.step_type for s in await svc.signatures.list_signatures(session, request.id)]
        assert "dta_completion" not in steps
        assert "dta_secondary" not in steps
        last = (await _entries(svc, request.id))[-1]
        assert last.outcome == "denied"
        assert last.detail["code"] == "TPI_VIOLATION"

    async def test_missing_secondary(self, svc, users):
        request = await self._active(svc, users)
        with pytest.raises(SignatureError, match="Dual signature is enabled"):
            await _act(svc, request.id, users["dta"], "complete-transfer", signed("dta"))

    async def test_secondary_from_unconfigured_signer(self, svc, users):
        request = await self._active(svc, users)
        payload = signed("dta", secondary_signature=signature_for("admin", signer_id=users["admin"]))
        with pytest.raises(SignatureError, match="configured signer"):
            await _act(svc, request.id, users["dta"], "complete-transfer", payload)

    async def test_unattributed_secondary(self, svc, users):
        request = await self._active(svc, users, configured=None)
        payload = signed("dta", secondary_signature=signature_for("dta2"))
        with pytest.raises(ValidationError, match="signer_id is required"):
            await _act(svc, request.id, users["dta"], "complete-transfer", payload)

    async def test_two_distinct_signers(self, svc, users):
        request = await self._active(svc, users)
        payload = signed("dta", secondary_signature=signature_for("dta2"))
        outcome = await _act(svc, request.id, users["dta"], "complete-transfer", payload)
        assert outcome.to_status == Status.PENDING_MEDIA_CUSTODIAN

        completion = outcome.request.transfer_data["transfer_completion"]
        assert completion["dual_signature"] is True
        assert completion["secondary_signature"]["signer_id"] == users["dta2"]
        assert completion["secondary_signature"]["step"] == "dta_secondary"
        async with svc.db.get_session() as session:
            rows = await svc.signatures.list_signatures(session, request.id)
        signers = {(r.step_type, r.signer_id) for r in rows}
        assert ("dta_completion", users["dta"]) in signers
        assert ("dta_secondary", users["dta2"]) in signers
        entry = (await _entries(svc, request.id))[-1]
        assert len(entry.detail["signatures"]) == 2

    async def test_prerecorded_secondary(self, svc, users):
        request = await self._active(svc, users)
        async with svc.db.get_session() as session:
            await svc.signatures.record_signature(
                session, request.id, StepType.DTA_SECONDARY, users["dta2"],
                SignatureInput(**signature_for("dta2")),
            )
        outcome = await _act(svc, request.id, users["dta"], "complete-transfer", signed("dta"))
        secondary = outcome.request.transfer_data["transfer_completion"]["secondary_signature"]
        assert secondary["signer_id"] == users["dta2"]
        assert secondary["signature_id"] is not None

    async def test_prerecorded_secondary_by_primary_signer(self, svc, users):
        request = await self._active(svc, users, configured=None)
        async with svc.db.get_session() as session:
            await svc.signatures.record_signature(
                session, request.id, StepType.DTA_SECONDARY, users["dta"],
                SignatureInput(**signature_for("dta-other-card")),
            )
        with pytest.raises(TPIViolation):
            await _act(svc, request.id, users["dta"], "complete-transfer", signed("dta"))


class TestDualSignatureSme:
    async def test_sme_then_complete(self, svc, users):
        request = await _to_active(
            svc, users, enable_dual_signature=True,
            secondary_signer_type="sme", secondary_signer_id=users["sme"],
        )
        outcome = await _act(svc, request.id, users["sme"], "sme-sign", signed("sme"))
        assert outcome.to_status == Status.PENDING_SME
        assert "sme_signature" in outcome.request.transfer_data

        outcome = await _act(svc, request.id, users["dta"], "complete-transfer", signed("dta"))
        assert outcome.to_status == Status.PENDING_MEDIA_CUSTODIAN
        secondary = outcome.request.transfer_data["transfer_completion"]["secondary_signature"]
        assert secondary["step"] == "sme_signature"
        assert secondary["signer_id"] == users["sme"]

    async def test_complete_before_sme_signs(self, svc, users):
        request = await _to_active(
            svc, users, enable_dual_signature=True,
            secondary_signer_type="sme", secondary_signer_id=users["sme"],
        )
        with pytest.raises(SignatureError, match="sme_signature"):
            await _act(svc, request.id, users["dta"], "complete-transfer", signed("dta"))

    async def test_sme_sign_without_sme_configuration(self, svc, users):
        request = await _to_active(svc, users)
        with pytest.raises(IllegalTransition, match="secondary SME"):
            await _act(svc, request.id, users["sme"], "sme-sign", signed("sme"))

    async def test_dual_role_user_cannot_sign_both(self, svc, users):
        async with svc.db.get_session() as session:
            await svc.users.assign_role(session, users["dta"], "sme")
        request = await _to_active(
            svc, users, enable_dual_signature=True,
            secondary_signer_type="sme", secondary_signer_id=users["dta"],
        )
        outcome = await _act(svc, request.id, users["dta"], "sme-sign", signed("dta-sme-card"))
        assert outcome.role_used == Role.SME
        with pytest.raises(TPIViolation):
            await _act(svc, request.id, users["dta"], "complete-transfer", signed("dta"))
        assert (await _reload(svc, request.id)).status == "pending_sme"


class TestIllegalTransitions:
    @pytest.mark.parametrize("status", list(Status))
    async def test_undefined_pairs_refused(self, svc, users, status):
        request = await _create(svc, users)
        if status != Status.DRAFT:
            await _force_status(svc, request.id, status)
        before = await _reload(svc, request.id)

        illegal = [a for a in Action if a not in legal_actions(status)]
        for action in illegal:
            with pytest.raises(IllegalTransition):
                await _act(svc, request.id, users["admin"], action, signed("admin"))

        after = await _reload(svc, request.id)
        assert after.status == status.value
        assert after.version == before.version
        entries = await _entries(svc, request.id)
        assert len(entries) == len(illegal)
        assert {e.outcome for e in entries} <= {"denied"}

    async def test_terminal_request_refuses_everything(self, svc, users):
        request = await _create(svc, users)
        await _act(svc, request.id, users["requestor"], "cancel")
        with pytest.raises(IllegalTransition, match="terminal status cancelled"):
            await _act(svc, request.id, users["requestor"], "submit",
                       signed("requestor", acknowledge_terms=True))

    async def test_unknown_action(self, svc, users):
        request = await _create(svc, users)
        with pytest.raises(IllegalTransition, match="Unknown action"):
            await _act(svc, request.id, users["requestor"], "teleport")
        entry = (await _entries(svc, request.id))[0]
        assert entry.action == "teleport"
        assert entry.outcome == "denied"


class TestRefusals:
    async def test_unknown_actor(self, svc, users):
        request = await _create(svc, users)
        with pytest.raises(AuthenticationError):
            await _act(svc, request.id, "ghost", "cancel")
        entry = (await _entries(svc, request.id))[0]
        assert entry.actor_id == "ghost"
        assert entry.actor_role_used is None
        assert entry.outcome == "denied"

    async def test_deactivated_actor(self, svc, users):
        request = await _create(svc, users)
        async with svc.db.get_session() as session:
            await svc.users.deactivate(session, users["requestor"])
        with pytest.raises(AuthenticationError, match="deactivated"):
            await _act(svc, request.id, users["requestor"], "cancel")

    async def test_unknown_request(self, svc, users):
        with pytest.raises(RequestNotFoundError):
            await _act(svc, "missing-request", users["requestor"], "submit")
        entries = await _entries(svc, "missing-request")
        assert len(entries) == 1
        assert entries[0].outcome == "error"

    @pytest.mark.parametrize("payload,match", [
        ({"files_transferred": -1}, "files_transferred"),
        ({"signature": {"certificate_thumbprint": thumbprint_for("x")}}, "signature_material"),
        ({"acknowledge_terms": "perhaps"}, "acknowledge_terms"),
    ])
    async def test_malformed_payload(self, svc, users, payload, match):
        request = await _create(svc, users)
        with pytest.raises(ValidationError, match=match):
            await _act(svc, request.id, users["requestor"], "submit", payload)
        entry = (await _entries(svc, request.id))[0]
        assert entry.outcome == "denied"
        assert entry.detail["code"] == "VALIDATION_FAILED"

    async def test_stage_overwrite_is_integrity_error(self, svc, users):
        request = await _create(svc, users)
        await _submit(svc, users, request)
        async with svc.db.get_session() as session:
            loaded = await svc.store.load_request(session, request.id)
            approval = dict(loaded.approval_data)
            approval["signatures"] = {**approval["signatures"], "approver": {"actor_id": "x"}}
            await svc.store.save_request(session, loaded, loaded.version, approval_data=approval)

        with pytest.raises(DataIntegrityError, match="approver"):
            await _act(svc, request.id, users["approver"], "approver-approve", signed("approver"))
        assert (await _reload(svc, request.id)).status == "pending_approver"
        assert (await _entries(svc, request.id))[-1].outcome == "error"


class TestAuditCoupling:
    async def test_one_entry_per_call(self, svc, users):
        request = await _create(svc, users)
        calls = [
            (users["dao"], "cancel", None),
            (users["requestor"], "submit", signed("requestor")),
            (users["requestor"], "submit", signed("requestor", acknowledge_terms=True)),
            (users["requestor"], "teleport", None),
            (users["approver"], "approver-approve", None),
            (users["approver"], "approver-approve", signed("approver")),
            (users["requestor"], "cancel", None),
            ("ghost", "cpso-approve", signed("cpso")),
            (users["cpso"], "cpso-approve", signed("cpso")),
        ]
        for actor_id, action, payload in calls:
            try:
                await _act(svc, request.id, actor_id, action, payload)
            except Exception:
                pass

        async with svc.db.get_session() as session:
            assert await svc.audit.count_entries(session, request.id) == len(calls)
            chain = await svc.audit.verify_chain(session, request.id)
        assert chain["valid"] is True
        outcomes = [e.outcome for e in await _entries(svc, request.id)]
        assert outcomes == [
            "denied", "denied", "success", "denied", "denied",
            "success", "denied", "denied", "success",
        ]

    async def test_success_entry_detail(self, svc, users):
        request = await _create(svc, users)
        outcome = await _act(
            svc, request.id, users["requestor"], "submit",
            signed("requestor", acknowledge_terms=True),
            ip_address="10.1.2.3", user_agent="aft-ui/1.0",
        )
        entry = outcome.audit_entry
        assert entry.actor_role_used == "requestor"
        assert entry.from_status == "draft"
        assert entry.to_status == "pending_approver"
        assert entry.ip_address == "10.1.2.3"
        assert entry.user_agent == "aft-ui/1.0"
        assert entry.detail["version"] == 2
        assert entry.detail["steps"] == ["submit", "advance-skip-dao"]
        assert entry.detail["route"] == "advance-skip-dao"
        assert entry.detail["signatures"][0]["step"] == "requestor_submission"

    async def test_audit_failure_voids_transition(self, svc, users, monkeypatch):
        request = await _create(svc, users)

        async def broken_append(session, **fields):
            raise AuditWriteError("audit store unavailable")

        monkeypatch.setattr(svc.audit, "append", broken_append)
        with pytest.raises(AuditWriteError):
            await _submit(svc, users, request)

        reloaded = await _reload(svc, request.id)
        assert reloaded.status == "draft"
        assert reloaded.version == 1
        async with svc.db.get_session() as session:
            assert await svc.signatures.list_signatures(session, request.id) == []
        entries = await _entries(svc, request.id)
        assert len(entries) == 1
        assert entries[0].outcome == "error"
        assert entries[0].detail["code"] == "AUDIT_WRITE_FAILED"

    async def test_refusal_unrecordable(self, svc, users, monkeypatch):
        request = await _create(svc, users)

        async def broken_isolated(db, **fields):
            raise AuditWriteError("audit store unavailable")

        monkeypatch.setattr(svc.audit, "append_isolated", broken_isolated)
        with pytest.raises(AuditWriteError):
            await _act(svc, request.id, users["dao"], "cancel")
        assert await _entries(svc, request.id) == []


class TestReadBack:
    async def test_version_and_timestamp_advance(self, svc, users):
        request = await _create(svc, users)
        first = await _reload(svc, request.id)

        outcome = await _submit(svc, users, request)
        second = await _reload(svc, request.id)
        assert second.status == outcome.to_status.value
        assert second.version == first.version + 1
        assert as_utc(second.updated_at) >= as_utc(first.updated_at)

        outcome = await _act(svc, request.id, users["approver"], "approver-approve", signed("approver"))
        third = await _reload(svc, request.id)
        assert third.status == outcome.to_status.value == "pending_cpso"
        assert third.version == second.version + 1
        assert as_utc(third.updated_at) >= as_utc(second.updated_at)
