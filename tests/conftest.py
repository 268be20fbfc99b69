"""
ODDSMITH - Test Configuration
Pytest fixtures and prediction factories for the test suite.
"""

from datetime import datetime, timedelta
from typing import List, Optional

import pytest
from redis.exceptions import ConnectionError

from app.services.backtesting.predictions import (
    ALGORITHM_IDS,
    InMemoryPredictionSource,
    PredictionRecord,
    PredictionStatus,
)

ML_POWER_INDEX = ALGORITHM_IDS["ML_POWER_INDEX"]
VALUE_PICK_FINDER = ALGORITHM_IDS["VALUE_PICK_FINDER"]
STATISTICAL_EDGE = ALGORITHM_IDS["STATISTICAL_EDGE"]

BASE_TIME = datetime(2024, 3, 1, 18, 0)


def make_prediction(
    match_id: str = "m1",
    algorithm_id: Optional[str] = ML_POWER_INDEX,
    prediction: Optional[str] = "Home",
    confidence: float = 60.0,
    status: PredictionStatus = PredictionStatus.WON,
    predicted_at: Optional[datetime] = None,
    **kwargs
) -> PredictionRecord:
    """Build a prediction record with sensible defaults"""
    kwargs.setdefault("league", "NBA")
    kwargs.setdefault("home_team", f"Home {match_id}")
    kwargs.setdefault("away_team", f"Away {match_id}")
    return PredictionRecord(
        match_id=match_id,
        algorithm_id=algorithm_id,
        prediction=prediction,
        confidence=confidence,
        status=status,
        predicted_at=predicted_at or BASE_TIME,
        **kwargs
    )


def make_match(
    match_id: str,
    picks: List[str],
    confidences: List[float],
    status: PredictionStatus = PredictionStatus.WON,
    predicted_at: Optional[datetime] = None,
    **kwargs
) -> List[PredictionRecord]:
    """One prediction per algorithm for the same match"""
    algorithms = [ML_POWER_INDEX, VALUE_PICK_FINDER, STATISTICAL_EDGE]
    return [
        make_prediction(
            match_id=match_id,
            algorithm_id=algorithm,
            prediction=pick,
            confidence=confidence,
            status=status,
            predicted_at=predicted_at,
            **kwargs
        )
        for algorithm, pick, confidence in zip(algorithms, picks, confidences)
    ]


def make_history(results: List[bool], confidence: float = 60.0, start: datetime = BASE_TIME) -> List[PredictionRecord]:
    """A unanimous match per day, won or lost as given"""
    records = []
    for i, won in enumerate(results):
        records.extend(make_match(
            f"match-{i}",
            ["Home", "Home", "Home"],
            [confidence, confidence, confidence],
            status=PredictionStatus.WON if won else PredictionStatus.LOST,
            predicted_at=start + timedelta(days=i),
        ))
    return records


@pytest.fixture
def winning_history() -> List[PredictionRecord]:
    """Three unanimous winning matches on consecutive days"""
    return make_history([True, True, True])


@pytest.fixture
def losing_history() -> List[PredictionRecord]:
    """Three unanimous losing matches on consecutive days"""
    return make_history([False, False, False])


@pytest.fixture
def mixed_history() -> List[PredictionRecord]:
    """Twelve matches with a mix of results and split picks"""
    records = make_history([True, False, True, True, False, True, False, True, True, False], confidence=66.0)
    records.extend(make_match(
        "split-1", ["Home", "Away", "Away"], [70.0, 58.0, 61.0],
        status=PredictionStatus.LOST, predicted_at=BASE_TIME + timedelta(days=11),
    ))
    records.extend(make_match(
        "split-2", ["Over", "Under", "Over"], [55.0, 75.0, 62.0],
        status=PredictionStatus.WON, predicted_at=BASE_TIME + timedelta(days=12),
    ))
    return records


@pytest.fixture
def memory_source(mixed_history) -> InMemoryPredictionSource:
    return InMemoryPredictionSource(mixed_history)


class InMemoryRedis:
    """Stands in for the redis.asyncio client calls the prediction cache makes"""

    def __init__(self, fail: bool = False):
        self.data = {}
        self.ttls = {}
        self.fail = fail
        self.closed = False

    async def get(self, key):
        if self.fail:
            raise ConnectionError("connection refused")
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        if self.fail:
            raise ConnectionError("connection refused")
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def aclose(self):
        self.closed = True
