"""
SQLAlchemy 2.0 ORM mapping of the prediction rows.
The table is owned by the upstream producer; the engine ships no migrations
and only writes the status, fixture reference and settlement columns.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from shared.models.domain import PredictionRecord
from shared.models.enums import PredictionStatus


class Base(DeclarativeBase):
    pass


class PredictionORM(Base):
    __tablename__ = "predictions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    home_team_name: Mapped[str] = mapped_column(String(200), nullable=False)
    away_team_name: Mapped[str] = mapped_column(String(200), nullable=False)
    fixture_id: Mapped[Optional[int]] = mapped_column(Integer)
    prediction_type: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    raw_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PredictionStatus.PENDING.value)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    kickoff_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    result_log: Mapped[Optional[str]] = mapped_column(Text)
    result_score: Mapped[Optional[str]] = mapped_column(String(20))
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_predictions_status_received", "status", "received_at"),
    )

    def to_record(self) -> PredictionRecord:
        return PredictionRecord(
            id=self.id,
            home_team=self.home_team_name,
            away_team=self.away_team_name,
            fixture_ref=self.fixture_id,
            market_tag=self.prediction_type or "",
            market_text=self.raw_text or "",
            status=PredictionStatus(self.status),
            created_at=self.received_at,
            expected_kickoff=self.kickoff_at,
        )
