"""
ODDSMITH - Prediction Store Contract
Settled prediction records and the sources that supply them to the backtester
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd
from sqlalchemy import select

from app.core.cache import CachePrefix, PredictionCache
from app.core.database import DatabaseManager
from app.core.exceptions import PredictionSourceError
from app.models import AlgorithmPrediction

logger = logging.getLogger(__name__)


# =============================================================================
# ALGORITHM REGISTRY
# =============================================================================

ALGORITHM_IDS = {
    "ML_POWER_INDEX": "f4ce9fdc-c41a-4a5c-9f18-5d732674c5b8",
    "VALUE_PICK_FINDER": "3a7e2d9b-8c5f-4b1f-9e17-7b31a4dce6c2",
    "STATISTICAL_EDGE": "85c48bbe-5b1a-4c1e-a0d5-e284e9e952f1",
    "SHARP_MONEY": "d7f3e8a2-9b4c-4e1a-8f5d-6c2b1a0e9d8f",
}

ALGORITHM_NAMES = {
    ALGORITHM_IDS["ML_POWER_INDEX"]: "ML Power Index",
    ALGORITHM_IDS["VALUE_PICK_FINDER"]: "Value Pick Finder",
    ALGORITHM_IDS["STATISTICAL_EDGE"]: "Statistical Edge",
    ALGORITHM_IDS["SHARP_MONEY"]: "Sharp Money",
}


class PredictionStatus(str, Enum):
    WON = "won"
    LOST = "lost"
    PENDING = "pending"

    @classmethod
    def parse(cls, value: Any) -> "PredictionStatus":
        if isinstance(value, cls):
            return value
        if _is_missing(value):
            return cls.PENDING
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown prediction status: {value!r}")


SETTLED_STATUSES: Tuple[PredictionStatus, ...] = (PredictionStatus.WON, PredictionStatus.LOST)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class PredictionRecord:
    """A single algorithm's settled (or pending) pick for a match"""
    match_id: str
    algorithm_id: Optional[str]
    prediction: Optional[str]
    confidence: float
    status: PredictionStatus
    predicted_at: datetime
    league: Optional[str] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    projected_home_score: Optional[float] = None
    projected_away_score: Optional[float] = None
    match_title: Optional[str] = None
    algorithm_name: Optional[str] = None

    @property
    def is_settled(self) -> bool:
        """Only won/lost picks with a prediction take part in a backtest"""
        return self.status in SETTLED_STATUSES and bool(self.prediction)

    @property
    def won(self) -> bool:
        return self.status == PredictionStatus.WON

    @property
    def resolved_algorithm_name(self) -> Optional[str]:
        return ALGORITHM_NAMES.get(self.algorithm_id or "", self.algorithm_name)

    @property
    def title(self) -> str:
        if self.match_title:
            return self.match_title
        if self.home_team and self.away_team:
            return f"{self.away_team} @ {self.home_team}"
        return "Unknown"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PredictionRecord":
        """Build a record from a raw row (JSON, CSV or database mapping)"""
        if _is_missing(data.get("match_id")):
            raise ValueError("Prediction row is missing match_id")
        if _is_missing(data.get("predicted_at")):
            raise ValueError(f"Prediction row for match {data['match_id']} is missing predicted_at")

        return cls(
            match_id=str(data["match_id"]),
            algorithm_id=_optional_str(data.get("algorithm_id")),
            prediction=_optional_str(data.get("prediction")),
            confidence=_optional_float(data.get("confidence")) or 0.0,
            status=PredictionStatus.parse(data.get("status")),
            predicted_at=parse_timestamp(data["predicted_at"]),
            league=_optional_str(data.get("league")),
            home_team=_optional_str(data.get("home_team")),
            away_team=_optional_str(data.get("away_team")),
            home_score=_optional_int(data.get("home_score")),
            away_score=_optional_int(data.get("away_score")),
            projected_home_score=_optional_float(data.get("projected_home_score")),
            projected_away_score=_optional_float(data.get("projected_away_score")),
            match_title=_optional_str(data.get("match_title")),
            algorithm_name=_optional_str(data.get("algorithm_name")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'match_id': self.match_id,
            'algorithm_id': self.algorithm_id,
            'prediction': self.prediction,
            'confidence': self.confidence,
            'status': self.status.value,
            'predicted_at': self.predicted_at.isoformat(),
            'league': self.league,
            'home_team': self.home_team,
            'away_team': self.away_team,
            'home_score': self.home_score,
            'away_score': self.away_score,
            'projected_home_score': self.projected_home_score,
            'projected_away_score': self.projected_away_score,
            'match_title': self.match_title,
            'algorithm_name': self.algorithm_name,
        }


def parse_timestamp(value: Union[str, datetime, pd.Timestamp]) -> datetime:
    """Parse a timestamp into a naive UTC datetime"""
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if not isinstance(value, datetime):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def _optional_str(value: Any) -> Optional[str]:
    if _is_missing(value):
        return None
    return str(value)


def _optional_float(value: Any) -> Optional[float]:
    if _is_missing(value) or value == "":
        return None
    return float(value)


def _optional_int(value: Any) -> Optional[int]:
    number = _optional_float(value)
    return int(number) if number is not None else None


def group_by_match(records: Iterable[PredictionRecord]) -> Dict[str, List[PredictionRecord]]:
    """Group records by match id, keeping first-seen order for matches and picks"""
    by_match: Dict[str, List[PredictionRecord]] = {}
    for record in records:
        by_match.setdefault(record.match_id, []).append(record)
    return by_match


# =============================================================================
# SOURCES
# =============================================================================

@dataclass(frozen=True)
class PredictionQuery:
    """Lookup parameters for settled predictions"""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    league: Optional[str] = None
    statuses: Tuple[PredictionStatus, ...] = field(default=SETTLED_STATUSES)

    def matches(self, record: PredictionRecord) -> bool:
        if record.status not in self.statuses or not record.prediction:
            return False
        if self.start_date and record.predicted_at < self.start_date:
            return False
        if self.end_date and record.predicted_at > self.end_date:
            return False
        if self.league and self.league != "all" and record.league != self.league:
            return False
        return True

    def cache_key(self) -> str:
        return PredictionCache.make_key(
            CachePrefix.PREDICTIONS,
            start_date=self.start_date,
            end_date=self.end_date,
            league=self.league,
            statuses=[s.value for s in self.statuses],
        )


class PredictionSource(ABC):
    """Supplies settled predictions ordered by predicted_at"""

    name = "prediction_source"

    @abstractmethod
    async def fetch(self, query: PredictionQuery) -> List[PredictionRecord]:
        """Return the records matching ``query`` in chronological order"""


class InMemoryPredictionSource(PredictionSource):
    """Prediction source over records already loaded in memory"""

    name = "memory"

    def __init__(self, records: Iterable[PredictionRecord]):
        self._records = list(records)

    async def fetch(self, query: PredictionQuery) -> List[PredictionRecord]:
        selected = [r for r in self._records if query.matches(r)]
        selected.sort(key=lambda r: r.predicted_at)
        return selected


class DatabasePredictionSource(PredictionSource):
    """Reads the algorithm_predictions table"""

    name = "database"

    def __init__(self, database: DatabaseManager):
        self.database = database

    async def fetch(self, query: PredictionQuery) -> List[PredictionRecord]:
        stmt = (
            select(AlgorithmPrediction)
            .where(AlgorithmPrediction.prediction.is_not(None))
            .where(AlgorithmPrediction.status.in_([s.value for s in query.statuses]))
            .order_by(AlgorithmPrediction.predicted_at.asc())
        )
        if query.start_date:
            stmt = stmt.where(AlgorithmPrediction.predicted_at >= query.start_date)
        if query.end_date:
            stmt = stmt.where(AlgorithmPrediction.predicted_at <= query.end_date)
        if query.league and query.league != "all":
            stmt = stmt.where(AlgorithmPrediction.league == query.league)

        try:
            async with self.database.session() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except Exception as e:
            logger.error(f"Error fetching predictions for backtest: {e}")
            raise PredictionSourceError(f"Failed to load predictions: {e}", source=self.name) from e

        records = [_row_to_record(row) for row in rows]
        logger.info(f"Loaded {len(records)} predictions from database")
        return records


def _row_to_record(row: AlgorithmPrediction) -> PredictionRecord:
    return PredictionRecord(
        match_id=row.match_id,
        algorithm_id=row.algorithm_id,
        prediction=row.prediction,
        confidence=row.confidence or 0.0,
        status=PredictionStatus.parse(row.status),
        predicted_at=parse_timestamp(row.predicted_at),
        league=row.league,
        home_team=row.home_team,
        away_team=row.away_team,
        home_score=row.home_score,
        away_score=row.away_score,
        projected_home_score=row.projected_home_score,
        projected_away_score=row.projected_away_score,
        match_title=row.match_title,
    )


class CachingPredictionSource(PredictionSource):
    """Wraps a source with a caller-owned TTL cache keyed by the query"""

    name = "cached"

    def __init__(self, source: PredictionSource, cache: PredictionCache):
        self.source = source
        self.cache = cache

    async def fetch(self, query: PredictionQuery) -> List[PredictionRecord]:
        key = query.cache_key()
        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug(f"Prediction cache hit for {key}")
            return [PredictionRecord.from_dict(row) for row in cached]

        records = await self.source.fetch(query)
        await self.cache.set(key, [r.to_dict() for r in records])
        return records


def load_predictions_file(path: Union[str, Path]) -> List[PredictionRecord]:
    """Load prediction rows from a JSON array or CSV file"""
    path = Path(path)
    try:
        if path.suffix.lower() == ".csv":
            frame = pd.read_csv(path, dtype=str)
        elif path.suffix.lower() == ".json":
            frame = pd.read_json(path, dtype=False, convert_dates=False)
        else:
            raise PredictionSourceError(f"Unsupported predictions file type: {path.suffix}", source="file")
        frame = frame.astype(object).where(pd.notna(frame), None)
        records = [PredictionRecord.from_dict(row) for row in frame.to_dict(orient="records")]
    except (OSError, ValueError) as e:
        raise PredictionSourceError(f"Failed to read {path}: {e}", source="file") from e

    logger.info(f"Loaded {len(records)} predictions from {path}")
    return records
