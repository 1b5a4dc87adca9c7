"""Signature service: validate, record and look up certificate-backed signatures."""

import base64
import binascii
import re
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from aft_engine.common.exceptions import DuplicateSignatureError, SignatureError
from aft_engine.common.logging import get_logger
from aft_engine.common.models import as_utc, utcnow
from aft_engine.signatures.models import SignatureModel
from aft_engine.signatures.schemas import SignatureInput
from aft_engine.workflow.states import StepType

logger = get_logger("signatures")

_THUMBPRINT_RE = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")


def normalize_thumbprint(raw: str) -> str:
    """Canonical thumbprint form: lowercase hex with separators stripped.

    Accepts SHA-1 (40 hex) and SHA-256 (64 hex) thumbprints, with or
    without ``:`` or space separators.
    """
    value = re.sub(r"[\s:]", "", raw or "").lower()
    if not _THUMBPRINT_RE.match(value):
        raise SignatureError(
            f"Certificate thumbprint '{raw}' is not a SHA-1 or SHA-256 hex digest"
        )
    return value


class SignatureService:
    """Certificate-backed signatures, one active row per (request, step, signer)."""

    def validate(
        self, signature: SignatureInput, step: StepType, at: datetime | None = None,
    ) -> str:
        """Check the signature is well-formed; return the normalized thumbprint."""
        if not signature.signature_material.strip():
            raise SignatureError("Signature material is empty", step=step.value)
        try:
            base64.b64decode(signature.signature_material, validate=True)
        except (binascii.Error, ValueError):
            raise SignatureError(
                "Signature material is not valid base64", step=step.value,
            ) from None

        thumbprint = normalize_thumbprint(signature.certificate_thumbprint)

        moment = as_utc(at) or utcnow()
        not_before = as_utc(signature.certificate_not_before)
        not_after = as_utc(signature.certificate_not_after)
        if not_before and not_after and not_before > not_after:
            raise SignatureError(
                "Certificate validity window is inverted", step=step.value,
            )
        if not_before and moment < not_before:
            raise SignatureError("Certificate is not yet valid", step=step.value)
        if not_after and moment > not_after:
            raise SignatureError("Certificate has expired", step=step.value)
        return thumbprint

    async def get_active(
        self, session: AsyncSession, request_id: str, step: StepType,
        signer_id: str | None = None,
    ) -> SignatureModel | None:
        """Active signature for a step; the earliest one when ``signer_id`` is omitted."""
        query = select(SignatureModel).where(
            SignatureModel.request_id == request_id,
            SignatureModel.step_type == step.value,
            SignatureModel.is_active == True,  # noqa: E712
        )
        if signer_id is not None:
            query = query.where(SignatureModel.signer_id == signer_id)
        result = await session.execute(query.order_by(SignatureModel.created_at.asc()).limit(1))
        return result.scalar_one_or_none()

    async def has_verified_signature(
        self, session: AsyncSession, request_id: str, step: StepType, signer_id: str,
    ) -> bool:
        existing = await self.get_active(session, request_id, step, signer_id)
        return existing is not None and existing.is_verified

    async def list_signatures(
        self, session: AsyncSession, request_id: str, include_inactive: bool = False,
    ) -> list[SignatureModel]:
        query = select(SignatureModel).where(SignatureModel.request_id == request_id)
        if not include_inactive:
            query = query.where(SignatureModel.is_active == True)  # noqa: E712
        result = await session.execute(query.order_by(SignatureModel.created_at.asc()))
        return list(result.scalars().all())

    async def record_signature(
        self,
        session: AsyncSession,
        request_id: str,
        step: StepType,
        signer_id: str,
        signature: SignatureInput,
        ip_address: str | None = None,
        user_agent: str | None = None,
        thumbprint: str | None = None,
    ) -> SignatureModel:
        """Validate and persist a signature.

        Raises DuplicateSignatureError if the signer already holds an active
        signature for this step of this request.
        """
        thumbprint = thumbprint or self.validate(signature, step)
        if await self.get_active(session, request_id, step, signer_id) is not None:
            raise DuplicateSignatureError(
                f"Signer {signer_id} already signed step {step.value} "
                f"of request {request_id}",
                step=step.value,
            )

        now = utcnow()
        row = SignatureModel(
            request_id=request_id,
            signer_id=signer_id,
            step_type=step.value,
            signature_material=signature.signature_material,
            signed_data=signature.signed_data,
            signature_algorithm=signature.signature_algorithm,
            certificate_thumbprint=thumbprint,
            certificate_subject=signature.certificate_subject,
            certificate_issuer=signature.certificate_issuer,
            certificate_serial=signature.certificate_serial,
            certificate_not_before=signature.certificate_not_before,
            certificate_not_after=signature.certificate_not_after,
            signature_reason=signature.signature_reason,
            ip_address=ip_address,
            user_agent=user_agent,
            is_verified=True,
            verified_at=now,
        )
        session.add(row)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise DuplicateSignatureError(
                f"Signer {signer_id} already signed step {step.value} "
                f"of request {request_id}",
                step=step.value,
            ) from exc
        logger.info(
            "Recorded %s signature", step.value,
            extra={"request_id": request_id, "actor_id": signer_id},
        )
        return row

    async def supersede_for_request(self, session: AsyncSession, request_id: str) -> int:
        """Deactivate every active signature on a request; returns the count."""
        result = await session.execute(
            update(SignatureModel)
            .where(
                SignatureModel.request_id == request_id,
                SignatureModel.is_active == True,  # noqa: E712
            )
            .values(is_active=False, superseded_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
