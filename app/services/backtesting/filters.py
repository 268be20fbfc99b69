"""
ODDSMITH - Situational Filters
Optional post-selection filters applied before a bet is sized.

The sharp-money and conference-game filters are approximations: there is
no market or schedule data behind them, only the fixed heuristics below.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence

from app.services.backtesting.predictions import PredictionRecord

logger = logging.getLogger(__name__)


SHARP_MIN_AGREEMENT = 2
SHARP_MIN_CONFIDENCE = 65.0
BACK_TO_BACK_WINDOW = timedelta(hours=24)
CONFERENCE_HASH_THRESHOLD = 40   # ~40% of matches classify as conference games


class HomeAwayFilter(str, Enum):
    ALL = "all"
    HOME = "home"
    AWAY = "away"


class FilterReason(str, Enum):
    HOME_AWAY = "home_away"
    MIN_ALGORITHMS = "min_algorithms_agreeing"
    SHARP_MONEY = "sharp_money_alignment"
    BACK_TO_BACK = "back_to_back"
    CONFERENCE = "conference_games_only"


@dataclass(frozen=True)
class SituationalFilters:
    """Toggleable filters for a backtest run; the defaults filter nothing"""
    home_away: HomeAwayFilter = HomeAwayFilter.ALL
    sharp_money_alignment: bool = False
    exclude_back_to_back: bool = False
    conference_games_only: bool = False
    min_algorithms_agreeing: int = 1

    def __post_init__(self):
        object.__setattr__(self, "home_away", HomeAwayFilter(self.home_away))
        if self.min_algorithms_agreeing < 1:
            raise ValueError("min_algorithms_agreeing must be at least 1")

    @property
    def is_active(self) -> bool:
        return (
            self.home_away != HomeAwayFilter.ALL
            or self.sharp_money_alignment
            or self.exclude_back_to_back
            or self.conference_games_only
            or self.min_algorithms_agreeing > 1
        )

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SituationalFilters":
        if not data:
            return cls()
        return cls(
            home_away=data.get("home_away", HomeAwayFilter.ALL),
            sharp_money_alignment=bool(data.get("sharp_money_alignment", False)),
            exclude_back_to_back=bool(data.get("exclude_back_to_back", False)),
            conference_games_only=bool(data.get("conference_games_only", False)),
            min_algorithms_agreeing=int(data.get("min_algorithms_agreeing") or 1),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'home_away': self.home_away.value,
            'sharp_money_alignment': self.sharp_money_alignment,
            'exclude_back_to_back': self.exclude_back_to_back,
            'conference_games_only': self.conference_games_only,
            'min_algorithms_agreeing': self.min_algorithms_agreeing,
        }


# =============================================================================
# CLASSIFIERS
# =============================================================================

def _mentions_team(text: str, team: Optional[str]) -> bool:
    if not team:
        return False
    nickname = team.lower().split(' ')[-1]
    return bool(nickname) and nickname in text


def is_home_pick(record: PredictionRecord) -> bool:
    text = (record.prediction or "").lower()
    return "home" in text or _mentions_team(text, record.home_team)


def is_away_pick(record: PredictionRecord) -> bool:
    text = (record.prediction or "").lower()
    return "away" in text or _mentions_team(text, record.away_team)


def is_sharp_aligned(record: PredictionRecord, algorithms_agreed: int) -> bool:
    """Approximation: agreement plus high confidence stands in for sharp action"""
    return algorithms_agreed >= SHARP_MIN_AGREEMENT and record.confidence >= SHARP_MIN_CONFIDENCE


def is_conference_game(match_id: str) -> bool:
    """Approximation: deterministic character-sum hash of the match id"""
    return sum(ord(c) for c in match_id) % 100 < CONFERENCE_HASH_THRESHOLD


def _shares_team(a: PredictionRecord, b: PredictionRecord) -> bool:
    pairs = (
        (a.home_team, b.home_team),
        (a.away_team, b.away_team),
        (a.home_team, b.away_team),
        (a.away_team, b.home_team),
    )
    return any(x and y and x == y for x, y in pairs)


def is_back_to_back(
    record: PredictionRecord,
    matches: Mapping[str, Sequence[PredictionRecord]]
) -> bool:
    """Another candidate match within 24 hours involves one of the same teams"""
    for match_id, others in matches.items():
        if match_id == record.match_id or not others:
            continue
        other = others[0]
        if abs(record.predicted_at - other.predicted_at) <= BACK_TO_BACK_WINDOW and _shares_team(record, other):
            return True
    return False


# =============================================================================
# FILTER
# =============================================================================

class SituationalFilter:
    """Evaluates the configured filters in a fixed order"""

    def __init__(
        self,
        filters: SituationalFilters,
        matches: Mapping[str, Sequence[PredictionRecord]]
    ):
        self.filters = filters
        self.matches = matches

    def rejection_reason(self, record: PredictionRecord, algorithms_agreed: int) -> Optional[FilterReason]:
        """First filter that rejects the selection, or None if it passes"""
        f = self.filters
        if not f.is_active:
            return None

        if f.home_away == HomeAwayFilter.HOME and not is_home_pick(record):
            return FilterReason.HOME_AWAY
        if f.home_away == HomeAwayFilter.AWAY and not is_away_pick(record):
            return FilterReason.HOME_AWAY

        if f.min_algorithms_agreeing > 1 and algorithms_agreed < f.min_algorithms_agreeing:
            return FilterReason.MIN_ALGORITHMS

        if f.sharp_money_alignment and not is_sharp_aligned(record, algorithms_agreed):
            return FilterReason.SHARP_MONEY

        if f.exclude_back_to_back and is_back_to_back(record, self.matches):
            return FilterReason.BACK_TO_BACK

        if f.conference_games_only and not is_conference_game(record.match_id):
            return FilterReason.CONFERENCE

        return None

    def passes(self, record: PredictionRecord, algorithms_agreed: int) -> bool:
        reason = self.rejection_reason(record, algorithms_agreed)
        if reason is not None:
            logger.debug(f"Match {record.match_id} skipped by {reason.value} filter")
            return False
        return True
