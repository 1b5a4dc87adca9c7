"""SQLAlchemy model for certificate-backed workflow signatures."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from aft_engine.common.models import Base, TimestampMixin, generate_uuid


class SignatureModel(Base, TimestampMixin):
    __tablename__ = "signatures"
    __table_args__ = (
        # Partial index: at most one active signature per (request, step, signer)
        Index(
            "uq_signature_active_step_signer",
            "request_id", "step_type", "signer_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    request_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("aft_requests.id"), nullable=False, index=True
    )
    signer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    step_type: Mapped[str] = mapped_column(String(40), nullable=False)

    signature_material: Mapped[str] = mapped_column(Text, nullable=False)
    signed_data: Mapped[str] = mapped_column(Text, default="")
    signature_algorithm: Mapped[str] = mapped_column(String(30), default="RSA-SHA256")
    certificate_thumbprint: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    certificate_subject: Mapped[str] = mapped_column(String(512), default="")
    certificate_issuer: Mapped[str] = mapped_column(String(512), default="")
    certificate_serial: Mapped[str] = mapped_column(String(128), default="")
    certificate_not_before: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    certificate_not_after: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    signature_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)

    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Superseded when the request returns to draft; rows are never deleted.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
