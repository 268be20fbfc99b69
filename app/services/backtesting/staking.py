"""
ODDSMITH - Stake Sizing
Converts a selected bet and the current bankroll into a monetary stake.

Supported policies:
- Flat: fixed amount per bet
- Percentage: fixed share of the current bankroll
- Kelly: fractional Kelly from the pick's confidence against fair -110 odds,
  hard-capped at a quarter of the bankroll
"""

import logging
from enum import Enum

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

STANDARD_ODDS = -110            # American odds assumed for every bet
WIN_PAYOUT = 0.9091             # Profit per unit staked on a -110 winner
BREAKEVEN_CONFIDENCE = 52.38    # Break-even win probability at -110, on the 0-100 scale
KELLY_DIVISOR = 0.4762          # 1 - break-even probability
MAX_KELLY_FRACTION = 0.25       # Kelly stakes never exceed 25% of bankroll


class StakeType(str, Enum):
    FLAT = "flat"
    PERCENTAGE = "percentage"
    KELLY = "kelly"


# =============================================================================
# SETTLEMENT
# =============================================================================

def win_profit(stake: float) -> float:
    """Profit on a winning -110 bet"""
    return stake * WIN_PAYOUT


def settle_profit(stake: float, won: bool) -> float:
    """Profit of a settled -110 bet"""
    return win_profit(stake) if won else -stake


# =============================================================================
# STAKE SIZER
# =============================================================================

class StakeSizer:
    """
    Stake sizing policy.

    ``stake_amount`` means the flat amount for ``flat``, the bankroll
    percentage for ``percentage`` and the Kelly multiplier in percent
    (25 = quarter Kelly) for ``kelly``.
    """

    def __init__(self, stake_type: StakeType, stake_amount: float):
        self.stake_type = StakeType(stake_type)
        self.stake_amount = stake_amount

    def calculate(self, bankroll: float, confidence: float) -> float:
        """
        Stake for a bet at ``confidence`` given the current ``bankroll``.

        Returns 0 when no bet should be placed (non-positive stake or a
        stake larger than the bankroll).
        """
        if self.stake_type == StakeType.FLAT:
            stake = min(self.stake_amount, bankroll)
        elif self.stake_type == StakeType.PERCENTAGE:
            stake = min(bankroll * (self.stake_amount / 100), bankroll)
        else:
            stake = self._kelly_stake(bankroll, confidence)

        if stake <= 0 or stake > bankroll:
            return 0.0
        return stake

    def _kelly_stake(self, bankroll: float, confidence: float) -> float:
        edge = (confidence - BREAKEVEN_CONFIDENCE) / 100
        if edge <= 0:
            return 0.0

        fraction = (edge / KELLY_DIVISOR) * (self.stake_amount / 100)
        return min(bankroll * fraction, bankroll * MAX_KELLY_FRACTION)

    def __repr__(self) -> str:
        return f"StakeSizer({self.stake_type.value}, {self.stake_amount})"
