"""
ODDSMITH - Backtesting Engine
Chronological replay of a selection strategy and staking policy over settled predictions
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.services.backtesting.filters import (
    SituationalFilter,
    SituationalFilters,
    is_home_pick,
    is_sharp_aligned,
)
from app.services.backtesting.predictions import (
    PredictionQuery,
    PredictionRecord,
    PredictionSource,
    PredictionStatus,
    group_by_match,
    parse_timestamp,
)
from app.services.backtesting.staking import STANDARD_ODDS, StakeSizer, StakeType, settle_profit
from app.services.backtesting.strategies import (
    BacktestStrategy,
    StrategyLike,
    StrategySelector,
    compute_algorithm_stats,
    resolve_strategy,
    strategy_display_name,
    strategy_id,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC now, matching the naive UTC timestamps on records"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class BacktestConfig:
    """Configuration for a backtesting run"""
    strategy: StrategyLike = BacktestStrategy.MAJORITY_AGREE
    starting_bankroll: float = 1000.0
    stake_type: StakeType = StakeType.FLAT
    stake_amount: float = 100.0
    min_confidence: float = 50.0
    days: Optional[int] = 30
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    league: Optional[str] = None
    filters: SituationalFilters = field(default_factory=SituationalFilters)

    def __post_init__(self):
        object.__setattr__(self, "strategy", resolve_strategy(self.strategy))
        try:
            object.__setattr__(self, "stake_type", StakeType(self.stake_type))
        except ValueError:
            raise ValueError(f"Unknown stake type: {self.stake_type!r}")
        if self.filters is None:
            object.__setattr__(self, "filters", SituationalFilters())
        # Records carry naive UTC timestamps
        for name in ("start_date", "end_date"):
            value = getattr(self, name)
            if value is not None:
                object.__setattr__(self, name, parse_timestamp(value))

        if self.starting_bankroll <= 0:
            raise ValueError("starting_bankroll must be positive")
        if self.stake_amount <= 0:
            raise ValueError("stake_amount must be positive")
        if not 0 <= self.min_confidence <= 100:
            raise ValueError("min_confidence must be between 0 and 100")
        if self.days is not None and self.days < 1:
            raise ValueError("days must be at least 1")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")

    @property
    def strategy_name(self) -> str:
        return strategy_display_name(self.strategy)

    def resolve_date_range(self, now: Optional[datetime] = None) -> Tuple[Optional[datetime], Optional[datetime]]:
        """Explicit dates win; otherwise look back ``days`` from the start of today"""
        now = now or utcnow()
        start = self.start_date
        if start is None and self.days:
            start = (now - timedelta(days=self.days)).replace(hour=0, minute=0, second=0, microsecond=0)
        end = self.end_date or now
        return start, end

    def to_query(self, now: Optional[datetime] = None) -> PredictionQuery:
        """Store lookup for this run; without an explicit end the query stays open-ended"""
        start, _ = self.resolve_date_range(now)
        return PredictionQuery(start_date=start, end_date=self.end_date, league=self.league)

    def with_changes(self, **changes: Any) -> "BacktestConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class BacktestBet:
    """A single settled bet placed during a backtest"""
    date: datetime
    match_id: str
    match_title: str
    league: str
    prediction: str
    confidence: float
    stake: float
    odds: int
    result: PredictionStatus
    profit: float
    bankroll_after: float
    strategy: str
    algorithms_agreed: int
    is_home_pick: bool = False
    sharp_aligned: bool = False

    @property
    def bankroll_before(self) -> float:
        return self.bankroll_after - self.profit

    @property
    def won(self) -> bool:
        return self.result == PredictionStatus.WON

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'match_id': self.match_id,
            'match_title': self.match_title,
            'league': self.league,
            'prediction': self.prediction,
            'confidence': self.confidence,
            'stake': round(self.stake, 2),
            'odds': self.odds,
            'result': self.result.value,
            'profit': round(self.profit, 2),
            'bankroll_after': round(self.bankroll_after, 2),
            'strategy': self.strategy,
            'algorithms_agreed': self.algorithms_agreed,
            'is_home_pick': self.is_home_pick,
            'sharp_aligned': self.sharp_aligned,
        }


@dataclass(frozen=True)
class DayResult:
    date: Optional[date]
    profit: float


@dataclass(frozen=True)
class DailyProfit:
    """Profit for one calendar day, with running totals"""
    date: date
    profit: float
    cumulative: float
    bankroll: float
    bets: int


@dataclass(frozen=True)
class FiltersApplied:
    home_away: str = "all"
    sharp_money_alignment: bool = False
    exclude_back_to_back: bool = False
    conference_games_only: bool = False
    min_algorithms_agreeing: int = 1
    skipped_by_filters: int = 0

    @classmethod
    def from_filters(cls, filters: SituationalFilters, skipped: int) -> "FiltersApplied":
        return cls(skipped_by_filters=skipped, **filters.to_dict())


@dataclass(frozen=True)
class BacktestResult:
    """Results from a backtesting run"""
    strategy: str
    strategy_name: str
    starting_bankroll: float
    final_bankroll: float

    # Betting metrics
    total_bets: int
    wins: int
    losses: int
    win_rate: float

    # Profit metrics
    total_profit: float
    total_staked: float
    roi: float
    avg_bet_size: float

    # Risk metrics
    max_drawdown: float
    max_drawdown_pct: float
    longest_win_streak: int
    longest_lose_streak: int
    best_day: DayResult
    worst_day: DayResult

    filters_applied: FiltersApplied = field(default_factory=FiltersApplied)
    profit_by_day: List[DailyProfit] = field(default_factory=list)
    bet_history: List[BacktestBet] = field(default_factory=list)

    @classmethod
    def empty(cls, config: BacktestConfig) -> "BacktestResult":
        return cls(
            strategy=strategy_id(config.strategy),
            strategy_name=config.strategy_name,
            starting_bankroll=config.starting_bankroll,
            final_bankroll=config.starting_bankroll,
            total_bets=0, wins=0, losses=0, win_rate=0.0,
            total_profit=0.0, total_staked=0.0, roi=0.0, avg_bet_size=0.0,
            max_drawdown=0.0, max_drawdown_pct=0.0,
            longest_win_streak=0, longest_lose_streak=0,
            best_day=DayResult(None, 0.0), worst_day=DayResult(None, 0.0),
            filters_applied=FiltersApplied.from_filters(config.filters, 0),
        )

    def daily_returns(self) -> List[float]:
        """Per-bet return on the bankroll at risk"""
        return [b.profit / b.bankroll_before for b in self.bet_history if b.bankroll_before > 0]

    def to_dict(self, include_bets: bool = True) -> Dict[str, Any]:
        data = {
            'strategy': self.strategy,
            'strategy_name': self.strategy_name,
            'starting_bankroll': round(self.starting_bankroll, 2),
            'final_bankroll': round(self.final_bankroll, 2),
            'total_bets': self.total_bets,
            'wins': self.wins,
            'losses': self.losses,
            'win_rate': round(self.win_rate, 2),
            'total_profit': round(self.total_profit, 2),
            'total_staked': round(self.total_staked, 2),
            'roi': round(self.roi, 2),
            'avg_bet_size': round(self.avg_bet_size, 2),
            'max_drawdown': round(self.max_drawdown, 2),
            'max_drawdown_pct': round(self.max_drawdown_pct, 2),
            'longest_win_streak': self.longest_win_streak,
            'longest_lose_streak': self.longest_lose_streak,
            'best_day': _day_to_dict(self.best_day),
            'worst_day': _day_to_dict(self.worst_day),
            'filters_applied': vars(self.filters_applied).copy(),
            'profit_by_day': [
                {
                    'date': d.date.isoformat(),
                    'profit': round(d.profit, 2),
                    'cumulative': round(d.cumulative, 2),
                    'bankroll': round(d.bankroll, 2),
                    'bets': d.bets,
                }
                for d in self.profit_by_day
            ],
        }
        if include_bets:
            data['bet_history'] = [b.to_dict() for b in self.bet_history]
        return data


def _day_to_dict(day: DayResult) -> Dict[str, Any]:
    return {'date': day.date.isoformat() if day.date else None, 'profit': round(day.profit, 2)}


class BacktestEngine:
    """
    Backtesting engine for evaluating selection strategies.

    ``run`` performs the one-shot fetch from the prediction source and then
    hands the records to ``simulate``, which is pure and safe to call from
    several threads at once.
    """

    def __init__(self, prediction_source: Optional[PredictionSource] = None):
        self.prediction_source = prediction_source

    async def fetch(self, config: BacktestConfig, now: Optional[datetime] = None) -> List[PredictionRecord]:
        if self.prediction_source is None:
            raise ValueError("BacktestEngine has no prediction source")
        query = config.to_query(now)
        records = await self.prediction_source.fetch(query)
        logger.info(f"Loaded {len(records)} predictions for {query.start_date} - {query.end_date or 'now'}")
        return records

    async def run(self, config: BacktestConfig) -> BacktestResult:
        """
        Fetch predictions and execute the backtest

        Args:
            config: Backtest configuration

        Returns:
            BacktestResult with the bankroll trajectory and statistics
        """
        records = await self.fetch(config)
        return self.simulate(records, config)

    def simulate(self, records: Sequence[PredictionRecord], config: BacktestConfig) -> BacktestResult:
        """Replay ``records`` match by match under ``config``"""
        logger.info(f"Starting backtest: {config.strategy_name}")

        participating = [r for r in records if r.is_settled]
        if not participating:
            logger.info("No settled predictions; returning empty backtest result")
            return BacktestResult.empty(config)

        matches = group_by_match(participating)
        ordered = sorted(matches.items(), key=lambda item: min(r.predicted_at for r in item[1]))

        selector = StrategySelector(config.strategy, compute_algorithm_stats(participating))
        situational = SituationalFilter(config.filters, matches)
        sizer = StakeSizer(config.stake_type, config.stake_amount)
        strategy_name = config.strategy_name

        bankroll = config.starting_bankroll
        peak_bankroll = bankroll
        max_drawdown = 0.0
        max_drawdown_pct = 0.0
        total_staked = 0.0
        win_streak = lose_streak = 0
        longest_win_streak = longest_lose_streak = 0
        skipped_by_filters = 0
        profit_by_day: Dict[date, List[float]] = {}
        bets: List[BacktestBet] = []

        for match_id, match_preds in ordered:
            selection = selector.select(match_preds)
            if selection is None or selection.prediction.confidence < config.min_confidence:
                continue

            pick = selection.prediction
            if not situational.passes(pick, selection.algorithms_agreed):
                skipped_by_filters += 1
                continue

            stake = sizer.calculate(bankroll, pick.confidence)
            if stake <= 0:
                continue

            profit = settle_profit(stake, pick.won)
            bankroll += profit
            total_staked += stake

            # Drawdown against the running peak
            if bankroll > peak_bankroll:
                peak_bankroll = bankroll
            drawdown = peak_bankroll - bankroll
            if drawdown > max_drawdown:
                max_drawdown = drawdown
                max_drawdown_pct = drawdown / peak_bankroll * 100

            if pick.won:
                win_streak += 1
                lose_streak = 0
                longest_win_streak = max(longest_win_streak, win_streak)
            else:
                lose_streak += 1
                win_streak = 0
                longest_lose_streak = max(longest_lose_streak, lose_streak)

            day = profit_by_day.setdefault(pick.predicted_at.date(), [0.0, 0])
            day[0] += profit
            day[1] += 1

            bets.append(BacktestBet(
                date=pick.predicted_at,
                match_id=match_id,
                match_title=pick.title,
                league=pick.league or "Unknown",
                prediction=pick.prediction or "",
                confidence=pick.confidence,
                stake=stake,
                odds=STANDARD_ODDS,
                result=pick.status,
                profit=profit,
                bankroll_after=bankroll,
                strategy=strategy_name,
                algorithms_agreed=selection.algorithms_agreed,
                is_home_pick=is_home_pick(pick),
                sharp_aligned=is_sharp_aligned(pick, selection.algorithms_agreed),
            ))

        result = self._calculate_results(
            config, bets, bankroll, total_staked, max_drawdown, max_drawdown_pct,
            longest_win_streak, longest_lose_streak, profit_by_day, skipped_by_filters
        )

        logger.info(f"Backtest completed: ROI={result.roi:.2f}%, Win Rate={result.win_rate:.2f}%")
        return result

    def _calculate_results(
        self,
        config: BacktestConfig,
        bets: List[BacktestBet],
        final_bankroll: float,
        total_staked: float,
        max_drawdown: float,
        max_drawdown_pct: float,
        longest_win_streak: int,
        longest_lose_streak: int,
        profit_by_day: Dict[date, List[float]],
        skipped_by_filters: int
    ) -> BacktestResult:
        """Aggregate the replay state into a BacktestResult"""
        wins = sum(1 for b in bets if b.won)
        losses = len(bets) - wins
        total_bets = len(bets)
        total_profit = final_bankroll - config.starting_bankroll

        daily: List[DailyProfit] = []
        cumulative = 0.0
        for day in sorted(profit_by_day):
            profit, count = profit_by_day[day]
            cumulative += profit
            daily.append(DailyProfit(
                date=day,
                profit=profit,
                cumulative=cumulative,
                bankroll=config.starting_bankroll + cumulative,
                bets=int(count),
            ))

        best_day = worst_day = DayResult(None, 0.0)
        if daily:
            best = worst = daily[0]
            for d in daily[1:]:
                if d.profit > best.profit:
                    best = d
                if d.profit < worst.profit:
                    worst = d
            best_day = DayResult(best.date, best.profit)
            worst_day = DayResult(worst.date, worst.profit)

        return BacktestResult(
            strategy=strategy_id(config.strategy),
            strategy_name=config.strategy_name,
            starting_bankroll=config.starting_bankroll,
            final_bankroll=final_bankroll,
            total_bets=total_bets,
            wins=wins,
            losses=losses,
            win_rate=(wins / total_bets * 100) if total_bets > 0 else 0.0,
            total_profit=total_profit,
            total_staked=total_staked,
            roi=(total_profit / total_staked * 100) if total_staked > 0 else 0.0,
            avg_bet_size=total_staked / total_bets if total_bets > 0 else 0.0,
            max_drawdown=max_drawdown,
            max_drawdown_pct=max_drawdown_pct,
            longest_win_streak=longest_win_streak,
            longest_lose_streak=longest_lose_streak,
            best_day=best_day,
            worst_day=worst_day,
            filters_applied=FiltersApplied.from_filters(config.filters, skipped_by_filters),
            profit_by_day=daily,
            bet_history=bets,
        )
