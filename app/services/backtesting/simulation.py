"""
ODDSMITH - Monte Carlo Simulator
Reshuffles a realized bet sequence to estimate the distribution of outcomes
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from app.services.backtesting.backtest_engine import BacktestBet, BacktestConfig
from app.services.backtesting.staking import StakeSizer, StakeType, settle_profit

logger = logging.getLogger(__name__)


PERCENTILES = (5, 25, 50, 75, 95)
PROFIT_BUCKETS = 10
DRAWDOWN_BUCKETS = (
    ("0-10%", 10.0),
    ("10-20%", 20.0),
    ("20-30%", 30.0),
    ("30-50%", 50.0),
    ("50%+", float("inf")),
)


@dataclass(frozen=True)
class MonteCarloConfig:
    """Configuration for Monte Carlo simulation"""
    starting_bankroll: float = 1000.0
    stake_type: StakeType = StakeType.FLAT
    stake_amount: float = 100.0
    num_simulations: int = 500
    min_bets: int = 5
    max_path_steps: int = 50

    def __post_init__(self):
        object.__setattr__(self, "stake_type", StakeType(self.stake_type))
        if self.starting_bankroll <= 0:
            raise ValueError("starting_bankroll must be positive")
        if self.stake_amount <= 0:
            raise ValueError("stake_amount must be positive")
        if self.min_bets < 1:
            raise ValueError("min_bets must be at least 1")
        if self.num_simulations < 1:
            raise ValueError("num_simulations must be at least 1")
        if self.max_path_steps < 1:
            raise ValueError("max_path_steps must be at least 1")

    @classmethod
    def from_backtest(cls, config: BacktestConfig, num_simulations: int = 500, **kwargs: Any) -> "MonteCarloConfig":
        return cls(
            starting_bankroll=config.starting_bankroll,
            stake_type=config.stake_type,
            stake_amount=config.stake_amount,
            num_simulations=num_simulations,
            **kwargs,
        )


@dataclass(frozen=True)
class SimulationRun:
    final_bankroll: float
    total_profit: float
    max_drawdown: float
    max_drawdown_pct: float
    peak_bankroll: float
    bust: bool


@dataclass(frozen=True)
class PercentileBand:
    p5: float
    p25: float
    p50: float
    p75: float
    p95: float

    def to_dict(self) -> Dict[str, float]:
        return {k: round(v, 2) for k, v in vars(self).items()}


@dataclass(frozen=True)
class HistogramBucket:
    range: str
    count: int
    percentage: float


@dataclass(frozen=True)
class PathBand:
    """Bankroll percentiles across runs at one sampled step"""
    step: int
    p5: float
    p25: float
    p50: float
    p75: float
    p95: float


@dataclass(frozen=True)
class MonteCarloSummary:
    """Condensed Monte Carlo figures used when comparing strategies"""
    profit_probability: float
    bust_probability: float
    median_profit: float
    p5_profit: float
    p95_profit: float
    avg_max_drawdown: float

    def to_dict(self) -> Dict[str, float]:
        return {k: round(v, 2) for k, v in vars(self).items()}


@dataclass(frozen=True)
class MonteCarloResult:
    """Results from Monte Carlo simulation"""
    num_simulations: int
    percentiles: PercentileBand
    profit_percentiles: PercentileBand
    bust_probability: float
    profit_probability: float
    avg_final_bankroll: float
    avg_profit: float
    avg_max_drawdown: float
    distribution: List[HistogramBucket] = field(default_factory=list)
    drawdown_distribution: List[HistogramBucket] = field(default_factory=list)
    cumulative_paths: List[PathBand] = field(default_factory=list)
    simulations: List[SimulationRun] = field(default_factory=list)

    def summary(self) -> MonteCarloSummary:
        return MonteCarloSummary(
            profit_probability=self.profit_probability,
            bust_probability=self.bust_probability,
            median_profit=self.profit_percentiles.p50,
            p5_profit=self.profit_percentiles.p5,
            p95_profit=self.profit_percentiles.p95,
            avg_max_drawdown=self.avg_max_drawdown,
        )

    def to_dict(self, include_simulations: bool = False) -> Dict[str, Any]:
        data = {
            'num_simulations': self.num_simulations,
            'percentiles': self.percentiles.to_dict(),
            'profit_percentiles': self.profit_percentiles.to_dict(),
            'bust_probability': round(self.bust_probability, 2),
            'profit_probability': round(self.profit_probability, 2),
            'avg_final_bankroll': round(self.avg_final_bankroll, 2),
            'avg_profit': round(self.avg_profit, 2),
            'avg_max_drawdown': round(self.avg_max_drawdown, 2),
            'distribution': [vars(b).copy() for b in self.distribution],
            'drawdown_distribution': [vars(b).copy() for b in self.drawdown_distribution],
            'cumulative_paths': [vars(p).copy() for p in self.cumulative_paths],
        }
        if include_simulations:
            data['simulations'] = [vars(s).copy() for s in self.simulations]
        return data


def nearest_rank_percentile(sorted_values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile of an ascending sequence (0 when empty)"""
    n = len(sorted_values)
    if n == 0:
        return 0.0
    index = math.ceil(percentile * n / 100) - 1
    return float(sorted_values[max(0, min(index, n - 1))])


def _band(sorted_values: Sequence[float]) -> PercentileBand:
    return PercentileBand(*(nearest_rank_percentile(sorted_values, p) for p in PERCENTILES))


class MonteCarloSimulator:
    """
    Monte Carlo resampling of a backtest's bet history.

    Randomness comes only from the injected generator, so a seeded simulator
    reproduces its results exactly.
    """

    def __init__(self, seed: Optional[int] = None, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def run(self, bets: Sequence[BacktestBet], config: MonteCarloConfig) -> Optional[MonteCarloResult]:
        """
        Run Monte Carlo simulation

        Args:
            bets: Realized bets from a backtest
            config: Simulation configuration

        Returns:
            MonteCarloResult, or None when there are too few bets to resample
        """
        if len(bets) < config.min_bets:
            logger.info(f"Skipping Monte Carlo: {len(bets)} bets (minimum {config.min_bets})")
            return None

        logger.info(f"Starting Monte Carlo simulation with {config.num_simulations} iterations")

        n = len(bets)
        won = np.array([b.won for b in bets], dtype=bool)
        confidence = np.array([b.confidence for b in bets], dtype=float)
        sizer = StakeSizer(config.stake_type, config.stake_amount)

        steps = min(n, config.max_path_steps)
        sample_at = np.rint(np.linspace(0, n, steps + 1)).astype(int)

        runs: List[SimulationRun] = []
        paths = np.empty((config.num_simulations, steps + 1))
        for i in range(config.num_simulations):
            order = self.rng.permutation(n)
            run, trajectory = self._run_single_simulation(won[order], confidence[order], sizer, config)
            runs.append(run)
            paths[i] = trajectory[sample_at]

        return self._aggregate(runs, paths)

    def _run_single_simulation(
        self,
        won: np.ndarray,
        confidence: np.ndarray,
        sizer: StakeSizer,
        config: MonteCarloConfig
    ):
        """Replay one shuffled ordering; returns the run and its bankroll after every bet"""
        bankroll = config.starting_bankroll
        peak_bankroll = bankroll
        max_drawdown = 0.0
        max_drawdown_pct = 0.0
        bust = False

        trajectory = np.empty(len(won) + 1)
        trajectory[0] = bankroll
        played = 0

        for played in range(len(won)):
            stake = sizer.calculate(bankroll, float(confidence[played]))
            if stake > 0:
                bankroll += settle_profit(stake, bool(won[played]))

                if bankroll > peak_bankroll:
                    peak_bankroll = bankroll
                drawdown = peak_bankroll - bankroll
                if drawdown > max_drawdown:
                    max_drawdown = drawdown
                    max_drawdown_pct = drawdown / peak_bankroll * 100

                if bankroll <= 0:
                    bust = True
                    bankroll = 0.0

            trajectory[played + 1] = bankroll
            if bust:
                break

        # Post-bust steps hold the final bankroll
        trajectory[played + 2:] = bankroll

        run = SimulationRun(
            final_bankroll=bankroll,
            total_profit=bankroll - config.starting_bankroll,
            max_drawdown=max_drawdown,
            max_drawdown_pct=max_drawdown_pct,
            peak_bankroll=peak_bankroll,
            bust=bust,
        )
        return run, trajectory

    def _aggregate(self, runs: List[SimulationRun], paths: np.ndarray) -> MonteCarloResult:
        total = len(runs)
        final_bankrolls = np.array([r.final_bankroll for r in runs])
        profits = np.array([r.total_profit for r in runs])
        drawdown_pcts = np.array([r.max_drawdown_pct for r in runs])

        sorted_paths = np.sort(paths, axis=0)
        cumulative_paths = [
            PathBand(step, *(nearest_rank_percentile(sorted_paths[:, step], p) for p in PERCENTILES))
            for step in range(paths.shape[1])
        ]

        bust_count = sum(1 for r in runs if r.bust)
        profit_count = int(np.sum(profits > 0))

        result = MonteCarloResult(
            num_simulations=total,
            percentiles=_band(np.sort(final_bankrolls)),
            profit_percentiles=_band(np.sort(profits)),
            bust_probability=bust_count / total * 100,
            profit_probability=profit_count / total * 100,
            avg_final_bankroll=float(np.mean(final_bankrolls)),
            avg_profit=float(np.mean(profits)),
            avg_max_drawdown=float(np.mean(drawdown_pcts)),
            distribution=self._profit_histogram(profits),
            drawdown_distribution=self._drawdown_histogram(drawdown_pcts),
            cumulative_paths=cumulative_paths,
            simulations=runs,
        )

        logger.info(
            f"Monte Carlo completed: profit probability={result.profit_probability:.1f}%, "
            f"bust probability={result.bust_probability:.1f}%"
        )
        return result

    @staticmethod
    def _profit_histogram(profits: np.ndarray) -> List[HistogramBucket]:
        """Equal-width buckets from the lowest to the highest profit, last bucket inclusive"""
        total = len(profits)
        low = float(profits.min())
        span = float(profits.max()) - low or 1.0
        width = span / PROFIT_BUCKETS

        index = np.minimum(((profits - low) / width).astype(int), PROFIT_BUCKETS - 1)
        counts = np.bincount(index, minlength=PROFIT_BUCKETS)

        buckets = []
        for i, count in enumerate(counts):
            bucket_min = low + i * width
            bucket_max = low + (i + 1) * width
            buckets.append(HistogramBucket(
                range=f"${bucket_min:.0f} to ${bucket_max:.0f}",
                count=int(count),
                percentage=count / total * 100,
            ))
        return buckets

    @staticmethod
    def _drawdown_histogram(drawdown_pcts: np.ndarray) -> List[HistogramBucket]:
        total = len(drawdown_pcts)
        counts = [0] * len(DRAWDOWN_BUCKETS)
        for pct in drawdown_pcts:
            for i, (_, upper) in enumerate(DRAWDOWN_BUCKETS):
                if pct < upper:
                    counts[i] += 1
                    break

        return [
            HistogramBucket(range=label, count=count, percentage=count / total * 100)
            for (label, _), count in zip(DRAWDOWN_BUCKETS, counts)
        ]
