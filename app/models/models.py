"""
ODDSMITH - Database Models

SQLAlchemy 2.0 models for the prediction store read by the backtester.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


# =============================================================================
# ENUMS
# =============================================================================

class PredictionStatusDB(str, PyEnum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"


# =============================================================================
# PREDICTIONS
# =============================================================================

class AlgorithmPrediction(Base):
    """One algorithm's pick for one match, settled once the match is final."""
    __tablename__ = "algorithm_predictions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    match_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    algorithm_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    prediction: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=PredictionStatusDB.PENDING.value, index=True)
    predicted_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    # Match context
    league: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, index=True)
    match_title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    home_team: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    away_team: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # Scores
    home_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    away_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    projected_home_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    projected_away_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    __table_args__ = (
        Index("ix_algorithm_predictions_status_predicted_at", "status", "predicted_at"),
    )
