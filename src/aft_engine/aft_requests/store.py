"""Durable store for AFT requests with optimistic concurrency."""

from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from aft_engine.aft_requests.models import AFTRequestModel
from aft_engine.common.exceptions import (
    ConcurrentModification,
    DataIntegrityError,
    PersistenceError,
    RequestNotFoundError,
)
from aft_engine.common.models import utcnow
from aft_engine.workflow.states import Classification, Status, TransferType


class RequestStore:
    """Load and conditionally save AFT requests.

    Every write is conditioned on the version observed at read time; a write
    against a stale version fails with ``ConcurrentModification`` instead of
    overwriting the winner's state.
    """

    async def load_request(
        self, session: AsyncSession, request_id: str, include_archived: bool = True,
    ) -> AFTRequestModel:
        try:
            request = await session.get(AFTRequestModel, request_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load request {request_id}: {exc}") from exc
        if request is None or (request.is_archived and not include_archived):
            raise RequestNotFoundError(f"AFT request '{request_id}' not found")
        self.check_integrity(request)
        return request

    @staticmethod
    def check_integrity(request: AFTRequestModel) -> None:
        """Refuse rows whose enumerated columns hold unknown values."""
        for column, enum_type in (
            ("status", Status),
            ("classification", Classification),
            ("transfer_type", TransferType),
        ):
            value = getattr(request, column)
            try:
                enum_type(value)
            except ValueError:
                raise DataIntegrityError(
                    f"Request {request.id} has unrecognized {column} '{value}'"
                ) from None

    @staticmethod
    def status_of(request: AFTRequestModel) -> Status:
        try:
            return Status(request.status)
        except ValueError:
            raise DataIntegrityError(
                f"Request {request.id} has unrecognized status '{request.status}'"
            ) from None

    async def add_request(self, session: AsyncSession, request: AFTRequestModel) -> AFTRequestModel:
        try:
            session.add(request)
            await session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to create request: {exc}") from exc
        return request

    async def save_request(
        self,
        session: AsyncSession,
        request: AFTRequestModel,
        expected_version: int,
        **changes: Any,
    ) -> AFTRequestModel:
        """Apply ``changes`` if the stored version still equals ``expected_version``.

        Bumps ``version`` and ``updated_at`` and refreshes ``request`` in place.
        """
        values = dict(changes)
        if "status" in values:
            values["status"] = Status(values["status"]).value
        values["version"] = expected_version + 1
        values["updated_at"] = utcnow()

        try:
            result = await session.execute(
                update(AFTRequestModel)
                .where(
                    AFTRequestModel.id == request.id,
                    AFTRequestModel.version == expected_version,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save request {request.id}: {exc}") from exc

        if result.rowcount != 1:
            raise ConcurrentModification(
                f"Request {request.request_number} was modified after version "
                f"{expected_version} was read"
            )

        try:
            await session.refresh(request)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to reload request {request.id}: {exc}") from exc
        return request
