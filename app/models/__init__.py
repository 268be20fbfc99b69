"""
ODDSMITH - Database Models
"""

from app.models.models import (
    # Base
    Base,

    # Enums
    PredictionStatusDB,

    # Predictions
    AlgorithmPrediction,
)

__all__ = [
    "Base",
    "PredictionStatusDB",
    "AlgorithmPrediction",
]
