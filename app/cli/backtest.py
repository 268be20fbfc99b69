"""
ODDSMITH - CLI Backtest Commands
Command-line interface for backtests, Monte Carlo runs, optimization and comparisons
"""

import asyncio
import functools
import json
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from app.core.config import configure_logging, get_settings
from app.core.database import get_database_manager
from app.core.exceptions import PredictionSourceError
from app.services.backtesting.backtest_engine import BacktestConfig, BacktestEngine, BacktestResult
from app.services.backtesting.comparison import ComparisonConfig, StrategyComparator
from app.services.backtesting.filters import SituationalFilters
from app.services.backtesting.optimizer import (
    ConfidenceRange,
    OptimizationConfig,
    OptimizationReport,
    StrategyOptimizer,
)
from app.services.backtesting.predictions import (
    DatabasePredictionSource,
    InMemoryPredictionSource,
    PredictionSource,
    load_predictions_file,
)
from app.services.backtesting.simulation import MonteCarloConfig, MonteCarloResult, MonteCarloSimulator
from app.services.backtesting.strategies import ALL_STRATEGIES, list_strategies

console = Console()
settings = get_settings()

T = TypeVar("T")

STAKE_TYPES = click.Choice(["flat", "percentage", "kelly"])
HOME_AWAY = click.Choice(["all", "home", "away"])


@click.group()
@click.option("--log-level", default="WARNING", show_default=True, help="Logging level")
def cli(log_level: str):
    """ODDSMITH - Backtest & Monte Carlo Risk Engine"""
    configure_logging(log_level)


# ============== Shared options ==============

def data_options(f):
    """Prediction source and date window options"""
    options = [
        click.option("--predictions", "-p", "predictions_file", type=click.Path(exists=True, dir_okay=False),
                     help="JSON or CSV prediction file (default: the database)"),
        click.option("--days", type=int, default=None,
                     help="Lookback window in days (default: all rows of a file, "
                          f"{settings.DEFAULT_LOOKBACK_DAYS} for the database)"),
        click.option("--start-date", type=click.DateTime(), default=None, help="Window start"),
        click.option("--end-date", type=click.DateTime(), default=None, help="Window end"),
        click.option("--league", "-l", default=None, help="League filter"),
        click.option("--bankroll", type=float, default=settings.DEFAULT_BANKROLL, show_default=True,
                     help="Starting bankroll"),
        click.option("--home-away", type=HOME_AWAY, default="all", show_default=True, help="Home/away pick filter"),
        click.option("--sharp-money", is_flag=True, help="Only sharp-aligned picks"),
        click.option("--exclude-back-to-back", is_flag=True, help="Skip back-to-back matches"),
        click.option("--conference-only", is_flag=True, help="Only conference games"),
        click.option("--min-agreeing", type=int, default=1, show_default=True,
                     help="Minimum algorithms agreeing"),
        click.option("--json", "as_json", is_flag=True, help="Emit JSON instead of tables"),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def stake_options(f):
    options = [
        click.option("--stake-type", type=STAKE_TYPES, default=settings.DEFAULT_STAKE_TYPE, show_default=True),
        click.option("--stake-amount", type=float, default=settings.DEFAULT_STAKE_AMOUNT, show_default=True,
                     help="Flat amount, bankroll percent or Kelly multiplier"),
        click.option("--min-confidence", type=float, default=settings.DEFAULT_MIN_CONFIDENCE, show_default=True),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def handle_errors(f):
    """Map configuration and source failures onto CLI errors"""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except PredictionSourceError as e:
            raise click.ClickException(f"Could not load predictions: {e}")
        except ValueError as e:
            raise click.UsageError(str(e))
    return wrapper


def _filters(kwargs: dict) -> SituationalFilters:
    return SituationalFilters(
        home_away=kwargs["home_away"],
        sharp_money_alignment=kwargs["sharp_money"],
        exclude_back_to_back=kwargs["exclude_back_to_back"],
        conference_games_only=kwargs["conference_only"],
        min_algorithms_agreeing=kwargs["min_agreeing"],
    )


def _days(kwargs: dict) -> Optional[int]:
    if kwargs["days"] is not None:
        return kwargs["days"]
    return None if kwargs["predictions_file"] else settings.DEFAULT_LOOKBACK_DAYS


def _backtest_config(strategy: str, kwargs: dict) -> BacktestConfig:
    return BacktestConfig(
        strategy=strategy,
        starting_bankroll=kwargs["bankroll"],
        stake_type=kwargs["stake_type"],
        stake_amount=kwargs["stake_amount"],
        min_confidence=kwargs["min_confidence"],
        days=_days(kwargs),
        start_date=kwargs["start_date"],
        end_date=kwargs["end_date"],
        league=kwargs["league"],
        filters=_filters(kwargs),
    )


def run_with_source(predictions_file: Optional[str], work: Callable[[PredictionSource], Awaitable[T]]) -> T:
    """Run ``work`` against a file-backed or database-backed prediction source"""
    if predictions_file:
        source = InMemoryPredictionSource(load_predictions_file(predictions_file))
        return asyncio.run(work(source))

    async def run():
        db_manager = get_database_manager()
        await db_manager.initialize()
        try:
            return await work(DatabasePredictionSource(db_manager))
        finally:
            await db_manager.close()

    return asyncio.run(run())


def emit_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# ============== Rendering ==============

def _money(value: float) -> str:
    style = "green" if value >= 0 else "red"
    return f"[{style}]${value:,.2f}[/{style}]"


def render_backtest(result: BacktestResult) -> None:
    tbl = Table(title=f"Backtest: {result.strategy_name}")
    tbl.add_column("Metric", style="cyan")
    tbl.add_column("Value", justify="right")

    tbl.add_row("Total Bets", str(result.total_bets))
    tbl.add_row("Record", f"{result.wins}-{result.losses}")
    tbl.add_row("Win Rate", f"{result.win_rate:.1f}%")
    tbl.add_row("Total Profit", _money(result.total_profit))
    tbl.add_row("ROI", f"{result.roi:.2f}%")
    tbl.add_row("Final Bankroll", f"${result.final_bankroll:,.2f}")
    tbl.add_row("Avg Bet Size", f"${result.avg_bet_size:,.2f}")
    tbl.add_row("Max Drawdown", f"${result.max_drawdown:,.2f} ({result.max_drawdown_pct:.1f}%)")
    tbl.add_row("Longest Win Streak", str(result.longest_win_streak))
    tbl.add_row("Longest Lose Streak", str(result.longest_lose_streak))
    if result.best_day.date:
        tbl.add_row("Best Day", f"{result.best_day.date:%b %d} {_money(result.best_day.profit)}")
        tbl.add_row("Worst Day", f"{result.worst_day.date:%b %d} {_money(result.worst_day.profit)}")
    tbl.add_row("Skipped by Filters", str(result.filters_applied.skipped_by_filters))

    console.print(tbl)


def render_monte_carlo(result: Optional[MonteCarloResult]) -> None:
    if result is None:
        console.print("[yellow]Not enough bets for a Monte Carlo simulation (need at least "
                      f"{settings.MONTE_CARLO_MIN_BETS})[/yellow]")
        return

    console.print(Panel.fit(
        f"Profit probability: [green]{result.profit_probability:.1f}%[/green]\n"
        f"Bust probability: [red]{result.bust_probability:.1f}%[/red]\n"
        f"Average profit: {_money(result.avg_profit)}\n"
        f"Average max drawdown: {result.avg_max_drawdown:.1f}%",
        title=f"Monte Carlo ({result.num_simulations} simulations)"
    ))

    tbl = Table(title="Outcome Percentiles")
    tbl.add_column("Percentile", style="cyan")
    tbl.add_column("Final Bankroll", justify="right")
    tbl.add_column("Profit", justify="right")
    for name in ("p5", "p25", "p50", "p75", "p95"):
        tbl.add_row(
            name.upper(),
            f"${getattr(result.percentiles, name):,.2f}",
            _money(getattr(result.profit_percentiles, name)),
        )
    console.print(tbl)

    dist = Table(title="Max Drawdown Distribution")
    dist.add_column("Range", style="cyan")
    dist.add_column("Runs", justify="right")
    dist.add_column("Share", justify="right")
    for bucket in result.drawdown_distribution:
        dist.add_row(bucket.range, str(bucket.count), f"{bucket.percentage:.1f}%")
    console.print(dist)


def render_optimization(report: OptimizationReport, limit: int) -> None:
    console.print(f"[bold]{report.message}[/bold] "
                  f"({report.completed_combinations}/{report.total_combinations} combinations)")
    if not report.results:
        return

    tbl = Table(title=f"Top {min(limit, len(report.results))} by ROI")
    tbl.add_column("Strategy", style="cyan")
    tbl.add_column("Min Conf", justify="right")
    tbl.add_column("Stake")
    tbl.add_column("Bets", justify="right")
    tbl.add_column("Win Rate", justify="right")
    tbl.add_column("Profit", justify="right")
    tbl.add_column("ROI", justify="right", style="green")
    tbl.add_column("Max DD", justify="right")
    tbl.add_column("Sharpe", justify="right")

    for row in report.results[:limit]:
        tbl.add_row(
            row.strategy_name,
            f"{row.min_confidence:g}%",
            f"{row.stake_type.value} {row.stake_amount:g}",
            str(row.total_bets),
            f"{row.win_rate:.1f}%",
            _money(row.total_profit),
            f"{row.roi:.2f}%",
            f"{row.max_drawdown_pct:.1f}%",
            f"{row.sharpe_ratio:.2f}",
        )
    console.print(tbl)


# ============== Commands ==============

@cli.command()
def strategies():
    """List available selection strategies"""
    tbl = Table(title="Strategies")
    tbl.add_column("ID", style="cyan")
    tbl.add_column("Name")
    tbl.add_column("Description")
    for strategy, name, description in list_strategies():
        tbl.add_row(strategy, name, description)
    console.print(tbl)


@cli.command()
@click.option("--strategy", "-s", default="majority_agree", show_default=True,
              help="Strategy id or algorithm name")
@data_options
@stake_options
@click.option("--show-bets", is_flag=True, help="Include the bet history")
@handle_errors
def backtest(strategy: str, show_bets: bool, **kwargs):
    """Replay a strategy over settled predictions"""
    config = _backtest_config(strategy, kwargs)
    result = run_with_source(kwargs["predictions_file"], lambda source: BacktestEngine(source).run(config))

    if kwargs["as_json"]:
        emit_json(result.to_dict(include_bets=show_bets))
        return

    render_backtest(result)
    if show_bets and result.bet_history:
        tbl = Table(title="Bet History")
        for column in ("Date", "Match", "Pick", "Conf", "Stake", "Result", "Profit", "Bankroll"):
            tbl.add_column(column)
        for bet in result.bet_history:
            tbl.add_row(
                f"{bet.date:%b %d, %Y}", bet.match_title, bet.prediction, f"{bet.confidence:.0f}",
                f"${bet.stake:,.2f}", bet.result.value, _money(bet.profit), f"${bet.bankroll_after:,.2f}",
            )
        console.print(tbl)


@cli.command("monte-carlo")
@click.option("--strategy", "-s", default="majority_agree", show_default=True,
              help="Strategy id or algorithm name")
@data_options
@stake_options
@click.option("--simulations", "-n", type=int, default=settings.MONTE_CARLO_SIMULATIONS, show_default=True)
@click.option("--seed", type=int, default=settings.RANDOM_SEED, help="Seed for reproducible runs")
@handle_errors
def monte_carlo(strategy: str, simulations: int, seed: Optional[int], **kwargs):
    """Backtest a strategy, then reshuffle its bets"""
    config = _backtest_config(strategy, kwargs)
    mc_config = MonteCarloConfig.from_backtest(
        config,
        num_simulations=simulations,
        min_bets=settings.MONTE_CARLO_MIN_BETS,
        max_path_steps=settings.MONTE_CARLO_MAX_PATH_STEPS,
    )
    result = run_with_source(kwargs["predictions_file"], lambda source: BacktestEngine(source).run(config))
    monte_carlo_result = MonteCarloSimulator(seed=seed).run(result.bet_history, mc_config)

    if kwargs["as_json"]:
        emit_json({
            "backtest": result.to_dict(include_bets=False),
            "monte_carlo": monte_carlo_result.to_dict() if monte_carlo_result else None,
        })
        return

    render_backtest(result)
    render_monte_carlo(monte_carlo_result)


@cli.command()
@click.option("--strategy", "-s", "strategy_ids", multiple=True,
              help="Strategy to include (repeatable; default: all)")
@data_options
@click.option("--confidence-min", type=float, default=50.0, show_default=True)
@click.option("--confidence-max", type=float, default=70.0, show_default=True)
@click.option("--confidence-step", type=float, default=5.0, show_default=True)
@click.option("--stake-type", "stake_types", type=STAKE_TYPES, multiple=True,
              help="Stake type to sweep (repeatable; default: all)")
@click.option("--kelly-fraction", "kelly_fractions", type=float, multiple=True,
              help="Kelly multiplier in percent (repeatable; default: 25 and 50)")
@click.option("--jobs", "-j", type=int, default=settings.OPTIMIZER_N_JOBS, show_default=True,
              help="Worker threads")
@click.option("--top", type=int, default=10, show_default=True, help="Rows to show")
@handle_errors
def optimize(
    strategy_ids: Sequence[str],
    confidence_min: float,
    confidence_max: float,
    confidence_step: float,
    stake_types: Sequence[str],
    kelly_fractions: Sequence[float],
    jobs: int,
    top: int,
    **kwargs
):
    """Sweep strategies, confidence thresholds and staking schemes"""
    config = OptimizationConfig(
        strategies=tuple(strategy_ids) or tuple(ALL_STRATEGIES),
        starting_bankroll=kwargs["bankroll"],
        confidence_range=ConfidenceRange(confidence_min, confidence_max, confidence_step),
        stake_types=tuple(stake_types) or ("flat", "percentage", "kelly"),
        kelly_fractions=tuple(kelly_fractions) or (25.0, 50.0),
        days=_days(kwargs),
        start_date=kwargs["start_date"],
        end_date=kwargs["end_date"],
        league=kwargs["league"],
        filters=_filters(kwargs),
        n_jobs=jobs,
    )

    if kwargs["as_json"]:
        report = run_with_source(kwargs["predictions_file"], lambda source: StrategyOptimizer(source).run(config))
        emit_json(report.to_dict())
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Fetching predictions...", total=None)

        def on_progress(completed: int, total: int, label: str) -> None:
            progress.update(task, completed=completed, total=total, description=label)

        report = run_with_source(
            kwargs["predictions_file"],
            lambda source: StrategyOptimizer(source, progress_callback=on_progress).run(config),
        )

    render_optimization(report, top)


@cli.command()
@click.option("--strategy", "-s", "strategy_ids", multiple=True,
              help="Strategy to compare (repeatable; default: the four consensus strategies)")
@data_options
@stake_options
@click.option("--simulations", "-n", type=int, default=settings.COMPARISON_SIMULATIONS, show_default=True)
@click.option("--seed", type=int, default=settings.RANDOM_SEED, help="Seed for reproducible runs")
@handle_errors
def compare(strategy_ids: Sequence[str], simulations: int, seed: Optional[int], **kwargs):
    """Compare strategies side by side with Monte Carlo risk figures"""
    base = ComparisonConfig()
    config = ComparisonConfig(
        strategies=tuple(strategy_ids) or base.strategies,
        starting_bankroll=kwargs["bankroll"],
        stake_type=kwargs["stake_type"],
        stake_amount=kwargs["stake_amount"],
        min_confidence=kwargs["min_confidence"],
        days=_days(kwargs),
        start_date=kwargs["start_date"],
        end_date=kwargs["end_date"],
        league=kwargs["league"],
        filters=_filters(kwargs),
        num_simulations=simulations,
        seed=seed,
    )
    comparisons = run_with_source(kwargs["predictions_file"], lambda source: StrategyComparator(source).run(config))

    if kwargs["as_json"]:
        emit_json([c.to_dict() for c in comparisons])
        return

    tbl = Table(title="Strategy Comparison")
    tbl.add_column("Strategy", style="cyan")
    tbl.add_column("Bets", justify="right")
    tbl.add_column("Win Rate", justify="right")
    tbl.add_column("Profit", justify="right")
    tbl.add_column("ROI", justify="right")
    tbl.add_column("Max DD", justify="right")
    tbl.add_column("P(Profit)", justify="right")
    tbl.add_column("P(Bust)", justify="right")
    tbl.add_column("Median MC Profit", justify="right")

    for c in comparisons:
        summary = c.monte_carlo_summary
        tbl.add_row(
            c.strategy_name,
            str(c.result.total_bets),
            f"{c.result.win_rate:.1f}%",
            _money(c.result.total_profit),
            f"{c.result.roi:.2f}%",
            f"{c.result.max_drawdown_pct:.1f}%",
            f"{summary.profit_probability:.1f}%" if summary else "N/A",
            f"{summary.bust_probability:.1f}%" if summary else "N/A",
            _money(summary.median_profit) if summary else "N/A",
        )
    console.print(tbl)


if __name__ == "__main__":
    cli()
