"""SQLAlchemy model for AFT requests."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from aft_engine.common.models import ArchivableMixin, Base, TimestampMixin, generate_uuid


class AFTRequestModel(Base, TimestampMixin, ArchivableMixin):
    __tablename__ = "aft_requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    request_number: Mapped[str] = mapped_column(
        String(32), unique=True, nullable=False, index=True
    )
    requestor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )

    # Written only by the lifecycle orchestrator; see RequestStore.save_request.
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft", index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    classification: Mapped[str] = mapped_column(String(30), nullable=False)
    transfer_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # Transfer description (Sections I-II of the request form)
    media_control_number: Mapped[str] = mapped_column(String(64), default="")
    media_type: Mapped[str] = mapped_column(String(20), default="")
    source_system: Mapped[str] = mapped_column(String(255), default="")
    destination_system: Mapped[str] = mapped_column(String(255), default="")
    transfer_purpose: Mapped[str] = mapped_column(Text, default="")
    data_description: Mapped[str] = mapped_column(Text, default="")
    form_data: Mapped[dict] = mapped_column(JSON, default=dict)

    # Two-person integrity configuration, fixed at creation
    enable_dual_signature: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    secondary_signer_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    secondary_signer_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )

    # Stage payloads; append-only per stage
    approval_data: Mapped[dict] = mapped_column(JSON, default=dict)
    transfer_data: Mapped[dict] = mapped_column(JSON, default=dict)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_start_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
