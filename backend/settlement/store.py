"""
Prediction store access.

The engine needs exactly two operations on the producer-owned table:
select the non-terminal rows and move one row forward. The forward-only
rule is part of the UPDATE's WHERE clause, so a row that some other writer
already settled is left alone and the call reports False.
"""
from __future__ import annotations

import abc
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from shared.errors import PersistenceError
from shared.models.domain import PendingFilter, PredictionRecord
from shared.models.enums import PredictionStatus
from shared.models.orm import PredictionORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

NON_TERMINAL = (PredictionStatus.PENDING.value, PredictionStatus.MATCHED.value)


class PredictionStore(abc.ABC):
    @abc.abstractmethod
    async def select_pending(self, flt: PendingFilter) -> list[PredictionRecord]:
        """Non-terminal predictions, oldest first."""

    @abc.abstractmethod
    async def update_status(
        self,
        prediction_id: str,
        status: PredictionStatus,
        fixture_ref: Optional[int] = None,
        reason: Optional[str] = None,
        score: Optional[str] = None,
    ) -> bool:
        """
        Move a prediction forward. Returns False when the row is missing or
        already past a state that may precede `status`.

        Raises:
            PersistenceError: the store could not be written.
        """


class SqlPredictionStore(PredictionStore):
    """PredictionStore over the predictions table via SQLAlchemy async."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def select_pending(self, flt: PendingFilter) -> list[PredictionRecord]:
        stmt = select(PredictionORM).where(PredictionORM.status.in_(NON_TERMINAL))
        if flt.since is not None:
            stmt = stmt.where(PredictionORM.received_at >= flt.since)
        stmt = stmt.order_by(PredictionORM.received_at).limit(flt.limit)

        try:
            async with self._db.read_session() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"select pending failed: {exc}") from exc

        records: list[PredictionRecord] = []
        for row in rows:
            try:
                records.append(row.to_record())
            except (ValueError, ValidationError) as exc:
                logger.warning("prediction_row_unreadable", prediction_id=row.id, error=str(exc))
        return records

    async def update_status(
        self,
        prediction_id: str,
        status: PredictionStatus,
        fixture_ref: Optional[int] = None,
        reason: Optional[str] = None,
        score: Optional[str] = None,
    ) -> bool:
        allowed = [s.value for s in status.predecessors()]
        if not allowed:
            raise ValueError(f"cannot move a prediction to {status.value}")

        values: dict[str, Any] = {"status": status.value, "updated_at": func.now()}
        if fixture_ref is not None:
            values["fixture_id"] = fixture_ref
        if status.is_terminal:
            values.update(result_log=reason, result_score=score, settled_at=func.now())

        stmt = (
            update(PredictionORM)
            .where(PredictionORM.id == prediction_id, PredictionORM.status.in_(allowed))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._db.write_session() as session:
                result = await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"update {prediction_id} -> {status.value} failed: {exc}") from exc

        updated = result.rowcount == 1
        if not updated:
            logger.info(
                "prediction_update_skipped",
                prediction_id=prediction_id,
                status=status.value,
                reason="row missing or already past this state",
            )
        return updated
