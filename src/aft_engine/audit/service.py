"""Audit service — append, verify, and query the per-request event chain."""

import hashlib
import hmac as hmac_mod
import json
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aft_engine.audit.models import AuditEntryModel
from aft_engine.common.config import AFTSettings
from aft_engine.common.database import DatabaseManager
from aft_engine.common.exceptions import AuditWriteError
from aft_engine.common.logging import get_logger
from aft_engine.common.models import as_utc, utcnow

logger = get_logger("audit")

OUTCOMES = ("success", "denied", "error")


class AuditService:
    """Append-only, hash-chained audit log per AFT request.

    Only append and lookups are exposed; rows are protected against ORM
    updates and deletes by listeners on ``AuditEntryModel``.
    """

    def __init__(self, settings: AFTSettings):
        self.settings = settings

    # ── Write ──

    async def append(self, session: AsyncSession, **fields: Any) -> AuditEntryModel:
        """Append an entry inside the caller's transaction.

        Any storage failure is raised as ``AuditWriteError`` so the caller
        aborts the transition the entry describes.
        """
        try:
            return await self._append(session, **fields)
        except SQLAlchemyError as exc:
            raise AuditWriteError(f"Audit append failed: {exc}") from exc

    async def append_isolated(self, db: DatabaseManager, **fields: Any) -> AuditEntryModel:
        """Append an entry in its own transaction (used for refused actions).

        Retries when a concurrent writer took the same chain position.
        """
        attempts = max(1, self.settings.audit_append_retries)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                async with db.get_session() as session:
                    return await self._append(session, **fields)
            except IntegrityError as exc:
                last_error = exc
                logger.warning(
                    "Audit chain position taken, retrying (%d/%d)", attempt, attempts,
                    extra={"request_id": fields.get("request_id")},
                )
            except SQLAlchemyError as exc:
                raise AuditWriteError(f"Audit append failed: {exc}") from exc
        raise AuditWriteError(
            f"Audit append failed after {attempts} attempts: {last_error}"
        ) from last_error

    async def _append(
        self,
        session: AsyncSession,
        request_id: str,
        actor_id: str,
        action: str,
        outcome: str,
        actor_role_used: str | None = None,
        from_status: str | None = None,
        to_status: str | None = None,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> AuditEntryModel:
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown audit outcome '{outcome}'")
        detail = detail or {}

        head = await self.get_chain_head(session, request_id)
        sequence = head.sequence + 1 if head else 1
        prev_hash = head.event_hash if head else None
        created_at = utcnow()

        entry = AuditEntryModel(
            request_id=request_id,
            sequence=sequence,
            actor_id=actor_id,
            actor_role_used=actor_role_used,
            action=action,
            from_status=from_status,
            to_status=to_status,
            outcome=outcome,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
            detail=detail,
            prev_hash=prev_hash,
            created_at=created_at,
        )
        entry.event_hash = self._compute_event_hash(entry)
        entry.signature = self._sign(entry.event_hash)
        session.add(entry)
        await session.flush()
        return entry

    # ── Read ──

    async def get_chain_head(
        self, session: AsyncSession, request_id: str,
    ) -> AuditEntryModel | None:
        """Return the most recent entry for a request."""
        result = await session.execute(
            select(AuditEntryModel)
            .where(AuditEntryModel.request_id == request_id)
            .order_by(AuditEntryModel.sequence.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_entries(
        self, session: AsyncSession, request_id: str,
    ) -> list[AuditEntryModel]:
        """Every entry for a request, oldest first."""
        result = await session.execute(
            select(AuditEntryModel)
            .where(AuditEntryModel.request_id == request_id)
            .order_by(AuditEntryModel.sequence.asc())
        )
        return list(result.scalars().all())

    async def count_entries(self, session: AsyncSession, request_id: str) -> int:
        result = await session.execute(
            select(func.count())
            .select_from(AuditEntryModel)
            .where(AuditEntryModel.request_id == request_id)
        )
        return result.scalar_one()

    async def query(
        self,
        session: AsyncSession,
        request_id: str | None = None,
        actor_id: str | None = None,
        action: str | None = None,
        outcome: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditEntryModel]:
        """Filtered entry list, oldest first."""
        query = select(AuditEntryModel)
        if request_id:
            query = query.where(AuditEntryModel.request_id == request_id)
        if actor_id:
            query = query.where(AuditEntryModel.actor_id == actor_id)
        if action:
            query = query.where(AuditEntryModel.action == action)
        if outcome:
            query = query.where(AuditEntryModel.outcome == outcome)
        if start:
            query = query.where(AuditEntryModel.created_at >= as_utc(start))
        if end:
            query = query.where(AuditEntryModel.created_at <= as_utc(end))
        query = (
            query.order_by(AuditEntryModel.created_at.asc(), AuditEntryModel.sequence.asc())
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    # ── Verify ──

    async def verify_chain(
        self, session: AsyncSession, request_id: str,
    ) -> dict[str, Any]:
        """Walk the chain oldest→newest, verify sequence, hashes and signatures."""
        entries = await self.get_entries(session, request_id)
        if not entries:
            return {"valid": True, "entries_checked": 0, "break_at": None}

        prev_hash = None
        for index, entry in enumerate(entries):
            intact = (
                entry.sequence == index + 1
                and entry.prev_hash == prev_hash
                and entry.event_hash == self._compute_event_hash(entry)
                and self._verify_signature(entry.event_hash, entry.signature)
            )
            if not intact:
                logger.warning(
                    "Audit chain broken at entry %s", entry.id,
                    extra={"request_id": request_id},
                )
                return {"valid": False, "entries_checked": index, "break_at": entry.id}
            prev_hash = entry.event_hash

        return {"valid": True, "entries_checked": len(entries), "break_at": None}

    # ── Internal helpers ──

    @staticmethod
    def _compute_event_hash(entry: AuditEntryModel) -> str:
        """SHA-256 of canonical JSON of the entry fields."""
        canonical = json.dumps(
            {
                "request_id": entry.request_id,
                "sequence": entry.sequence,
                "actor_id": entry.actor_id,
                "actor_role_used": entry.actor_role_used,
                "action": entry.action,
                "from_status": entry.from_status,
                "to_status": entry.to_status,
                "outcome": entry.outcome,
                "reason": entry.reason,
                "ip_address": entry.ip_address,
                "user_agent": entry.user_agent,
                "detail": entry.detail or {},
                "created_at": as_utc(entry.created_at).isoformat(),
                "prev_hash": entry.prev_hash,
            },
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(canonical.encode()).hexdigest()

    def _sign(self, event_hash: str) -> str:
        """HMAC-SHA256 of event_hash with the current HMAC key."""
        return hmac_mod.new(
            self.settings.current_hmac_key.encode(),
            event_hash.encode(),
            hashlib.sha256,
        ).hexdigest()

    def _verify_signature(self, event_hash: str, signature: str) -> bool:
        """Verify signature against all keys in the keyring."""
        for _version, key in self.settings.hmac_keyring.items():
            expected = hmac_mod.new(
                key.encode(), event_hash.encode(), hashlib.sha256,
            ).hexdigest()
            if hmac_mod.compare_digest(expected, signature):
                return True
        return False
