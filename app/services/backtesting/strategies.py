"""
ODDSMITH - Strategy Selection
Picks at most one prediction per match from the competing algorithm picks
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from app.services.backtesting.predictions import PredictionRecord

logger = logging.getLogger(__name__)


class BacktestStrategy(str, Enum):
    """Built-in selection strategies"""
    ALL_AGREE = "all_agree"
    MAJORITY_AGREE = "majority_agree"
    HIGHEST_CONFIDENCE = "highest_confidence"
    BEST_PERFORMER = "best_performer"
    ML_POWER_INDEX = "ml_power_index"
    VALUE_PICK_FINDER = "value_pick_finder"
    STATISTICAL_EDGE = "statistical_edge"

    @property
    def algorithm_name(self) -> Optional[str]:
        """Algorithm followed by a single-algorithm strategy"""
        return {
            'ml_power_index': 'ML Power Index',
            'value_pick_finder': 'Value Pick Finder',
            'statistical_edge': 'Statistical Edge',
        }.get(self.value)

    @property
    def display_name(self) -> str:
        return {
            'all_agree': 'All 3 Agree',
            'majority_agree': '2+ Agree (Majority)',
            'highest_confidence': 'Highest Confidence',
            'best_performer': 'Best Performer',
        }.get(self.value) or self.algorithm_name

    @property
    def description(self) -> str:
        return {
            'all_agree': 'Only bet when all 3 algorithms agree on the same prediction. Most conservative.',
            'majority_agree': 'Bet when at least 2 algorithms agree. Balanced approach with more opportunities.',
            'highest_confidence': 'Always follow the algorithm with the highest confidence for each match.',
            'best_performer': 'Follow the algorithm with the best historical win rate.',
        }.get(self.value) or f"Always follow {self.algorithm_name} predictions."


# A strategy is either a built-in or the literal name of an algorithm to follow
StrategyLike = Union[BacktestStrategy, str]

ALL_STRATEGIES: List[BacktestStrategy] = list(BacktestStrategy)


def resolve_strategy(strategy: StrategyLike) -> StrategyLike:
    """Map strategy ids onto the enum; anything else is an algorithm name"""
    if isinstance(strategy, BacktestStrategy):
        return strategy
    try:
        return BacktestStrategy(strategy)
    except ValueError:
        if not strategy or not str(strategy).strip():
            raise ValueError("Strategy must be a known strategy id or an algorithm name")
        return str(strategy)


def strategy_id(strategy: StrategyLike) -> str:
    return strategy.value if isinstance(strategy, BacktestStrategy) else strategy


def strategy_display_name(strategy: StrategyLike) -> str:
    return strategy.display_name if isinstance(strategy, BacktestStrategy) else strategy


@dataclass(frozen=True)
class Selection:
    """The prediction a strategy chose to act on for one match"""
    prediction: PredictionRecord
    algorithms_agreed: int


@dataclass
class AlgorithmStats:
    wins: int = 0
    total: int = 0

    @property
    def win_rate(self) -> float:
        return self.wins / self.total if self.total > 0 else 0.0


def compute_algorithm_stats(records: Sequence[PredictionRecord]) -> Dict[str, AlgorithmStats]:
    """Historical win/total per algorithm id over the whole participating set"""
    stats: Dict[str, AlgorithmStats] = {}
    for record in records:
        entry = stats.setdefault(record.algorithm_id or "unknown", AlgorithmStats())
        entry.total += 1
        if record.won:
            entry.wins += 1
    return stats


def _most_confident(records: Sequence[PredictionRecord]) -> PredictionRecord:
    best = records[0]
    for record in records[1:]:
        if record.confidence > best.confidence:
            best = record
    return best


class StrategySelector:
    """
    Applies a selection strategy to the predictions of one match.

    ``algorithm_stats`` must be precomputed over the full historical set
    before the replay starts; only ``best_performer`` reads it.
    """

    def __init__(
        self,
        strategy: StrategyLike,
        algorithm_stats: Optional[Mapping[str, AlgorithmStats]] = None
    ):
        self.strategy = resolve_strategy(strategy)
        self.algorithm_stats = algorithm_stats or {}

    def select(self, predictions: Sequence[PredictionRecord]) -> Optional[Selection]:
        if not predictions:
            return None

        groups = self._group_by_pick(predictions)
        max_agreement = max(len(group) for group in groups.values())

        if self.strategy == BacktestStrategy.ALL_AGREE:
            if len(predictions) >= 3 and max_agreement == len(predictions):
                return Selection(_most_confident(predictions), len(predictions))
            return None

        if self.strategy == BacktestStrategy.MAJORITY_AGREE:
            if max_agreement < 2:
                return None
            majority = next(g for g in groups.values() if len(g) == max_agreement)
            return Selection(_most_confident(majority), len(majority))

        if self.strategy == BacktestStrategy.HIGHEST_CONFIDENCE:
            selected = _most_confident(predictions)
        elif self.strategy == BacktestStrategy.BEST_PERFORMER:
            selected = self._best_performer(predictions)
        else:
            selected = self._follow_algorithm(predictions)

        if selected is None:
            return None
        return Selection(selected, len(groups.get(selected.prediction or "", ())) or 1)

    @staticmethod
    def _group_by_pick(predictions: Sequence[PredictionRecord]) -> Dict[str, List[PredictionRecord]]:
        groups: Dict[str, List[PredictionRecord]] = {}
        for record in predictions:
            groups.setdefault(record.prediction or "", []).append(record)
        return groups

    def _best_performer(self, predictions: Sequence[PredictionRecord]) -> Optional[PredictionRecord]:
        best_rate = 0.0
        selected = None
        for record in predictions:
            stats = self.algorithm_stats.get(record.algorithm_id or "unknown")
            if stats and stats.total > 0 and stats.win_rate > best_rate:
                best_rate = stats.win_rate
                selected = record
        return selected

    def _follow_algorithm(self, predictions: Sequence[PredictionRecord]) -> Optional[PredictionRecord]:
        if isinstance(self.strategy, BacktestStrategy):
            target = self.strategy.algorithm_name
        else:
            target = self.strategy
        return next((r for r in predictions if r.resolved_algorithm_name == target), None)


def list_strategies() -> List[Tuple[str, str, str]]:
    """(id, display name, description) for every built-in strategy"""
    return [(s.value, s.display_name, s.description) for s in ALL_STRATEGIES]
