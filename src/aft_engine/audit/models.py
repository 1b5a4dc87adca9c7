"""SQLAlchemy model for the append-only, hash-chained audit log."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from aft_engine.common.exceptions import ImmutableRecordError
from aft_engine.common.logging import get_logger
from aft_engine.common.models import Base, generate_uuid, utcnow

logger = get_logger("audit")


class AuditEntryModel(Base):
    __tablename__ = "audit_entries"
    __table_args__ = (
        UniqueConstraint("request_id", "sequence", name="uq_audit_request_sequence"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    # No foreign key: denials against unknown request ids are still recorded.
    request_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    actor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    actor_role_used: Mapped[str | None] = mapped_column(String(30), nullable=True)
    action: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    from_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    to_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    outcome: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    detail: Mapped[dict] = mapped_column(JSON, default=dict)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    signature: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )


@event.listens_for(AuditEntryModel, "before_update")
def _refuse_update(mapper, connection, target):
    logger.error(
        "Blocked update of audit entry %s", target.id,
        extra={"request_id": target.request_id},
    )
    raise ImmutableRecordError(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditEntryModel, "before_delete")
def _refuse_delete(mapper, connection, target):
    logger.error(
        "Blocked delete of audit entry %s", target.id,
        extra={"request_id": target.request_id},
    )
    raise ImmutableRecordError(f"Audit entry {target.id} cannot be deleted")
