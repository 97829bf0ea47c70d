"""
Exacta settlement.

compute_payouts()  - pure: which wagers won and how much each is owed
settle_wagers()    - credits the payouts to the balance ledger in one batch

Payout for a wager whose (first_pick, second_pick) equals the winning
exacta is ``amount * multiplier``.  Losing stakes were debited at
placement and stay in the pot.  A winning pair with no configured
multiplier pays nobody.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from exacta_race.core.odds_table import OddsTable
from exacta_race.services.ledger import BalanceLedger
from exacta_race.services.wagers import Wager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Payout:
    bettor: str
    bet_amount: int
    multiplier: int
    payout_amount: int
    exacta: Tuple[int, int]

    def to_dict(self) -> dict:
        return {
            "bettor": self.bettor,
            "bet_amount": self.bet_amount,
            "multiplier": self.multiplier,
            "payout_amount": self.payout_amount,
            "exacta": list(self.exacta),
        }


# ---------------------------------------------------------------------------
# Payout calculation (pure functions, no ledger)
# ---------------------------------------------------------------------------

def calculate_payout(
    wager: Wager, winning_exacta: Tuple[int, int], multiplier: int
) -> Optional[Payout]:
    """
    Payout for a single wager, or None when it does not win.

    A zero multiplier means no payout is defined for the winning pair,
    which is treated the same as a losing wager.
    """
    if wager.exacta != tuple(winning_exacta) or multiplier <= 0:
        return None
    return Payout(
        bettor=wager.bettor,
        bet_amount=wager.amount,
        multiplier=multiplier,
        payout_amount=wager.amount * multiplier,
        exacta=tuple(winning_exacta),
    )


def compute_payouts(
    wagers: Sequence[Wager],
    winning_exacta: Tuple[int, int],
    odds: OddsTable,
) -> List[Payout]:
    """Payouts for every winning wager, in placement order."""
    multiplier = odds.multiplier(*winning_exacta)
    payouts = []
    for wager in wagers:
        payout = calculate_payout(wager, winning_exacta, multiplier)
        if payout is not None:
            payouts.append(payout)
    return payouts


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

def settle_wagers(
    balances: BalanceLedger,
    wagers: Sequence[Wager],
    winning_exacta: Tuple[int, int],
    odds: OddsTable,
) -> List[Payout]:
    """
    Compute payouts and credit them all in one ledger batch.

    If the batch fails nothing is credited and the exception propagates.
    """
    payouts = compute_payouts(wagers, winning_exacta, odds)
    balances.credit_many((p.bettor, p.payout_amount) for p in payouts)

    total_paid = sum(p.payout_amount for p in payouts)
    logger.info(
        "Settled exacta %d->%d: %d of %d wagers won, %d paid",
        winning_exacta[0], winning_exacta[1], len(payouts), len(wagers), total_paid,
    )
    return payouts
