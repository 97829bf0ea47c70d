"""
Wager ledger for the active race.

Validation order for a new wager (deterministic error reporting):
  1. first_pick in range, then second_pick in range  -> InvalidParticipantError
  2. first_pick != second_pick                        -> SamePickError
  3. amount > 0                                       -> InvalidAmountError
  4. bettor balance >= amount                         -> InsufficientFundsError
  5. pot and bettor's worst-case payout within the
     ledger's max_balance                             -> InvalidAmountError

Authorization and lifecycle are checked by the race engine before any
of these.  A wager is recorded only after its stake has been debited.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from exacta_race.core.odds_table import OddsTable
from exacta_race.errors import (
    InvalidAmountError,
    InvalidParticipantError,
    SamePickError,
)
from exacta_race.services.ledger import BalanceLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Wager:
    """An exacta wager: ``first_pick`` to win, ``second_pick`` to run second."""

    bettor: str
    amount: int
    first_pick: int
    second_pick: int
    placed_at: datetime

    @property
    def exacta(self) -> Tuple[int, int]:
        return (self.first_pick, self.second_pick)

    def to_dict(self) -> dict:
        return {
            "bettor": self.bettor,
            "amount": self.amount,
            "first_pick": self.first_pick,
            "second_pick": self.second_pick,
            "placed_at": self.placed_at.isoformat(),
        }


def validate_selection(first_pick: int, second_pick: int, num_participants: int) -> None:
    """Range before distinctness; raises on the first failing check."""
    for pick in (first_pick, second_pick):
        if not 0 <= pick < num_participants:
            raise InvalidParticipantError(pick, num_participants)
    if first_pick == second_pick:
        raise SamePickError(first_pick)


def validate_amount(amount: int) -> None:
    if amount <= 0:
        raise InvalidAmountError(amount)


class WagerLedger:
    """Ordered wagers and pot total for the race currently accepting bets."""

    def __init__(self, num_participants: int, odds: Optional[OddsTable] = None):
        self.num_participants = num_participants
        self.odds = odds
        self._wagers: List[Wager] = []
        self.total_pot = 0

    @property
    def wagers(self) -> List[Wager]:
        return list(self._wagers)

    def __len__(self) -> int:
        return len(self._wagers)

    def worst_case_payout(self, bettor: str, extra: Optional[Wager] = None) -> int:
        """
        Largest amount ``bettor`` could be credited at settlement.

        Only one exacta wins, so this is the best single pair's total
        ``amount * multiplier`` across the bettor's wagers (plus ``extra``).
        """
        if self.odds is None:
            return 0
        by_pair: Dict[Tuple[int, int], int] = {}
        candidates = self._wagers + ([extra] if extra is not None else [])
        for wager in candidates:
            if wager.bettor != bettor:
                continue
            by_pair[wager.exacta] = (
                by_pair.get(wager.exacta, 0)
                + wager.amount * self.odds.multiplier(*wager.exacta)
            )
        return max(by_pair.values(), default=0)

    def place(
        self,
        balances: BalanceLedger,
        bettor: str,
        first_pick: int,
        second_pick: int,
        amount: int,
        placed_at: datetime,
    ) -> Wager:
        validate_selection(first_pick, second_pick, self.num_participants)
        validate_amount(amount)
        balances.ensure_funds(bettor, amount)

        wager = Wager(
            bettor=bettor,
            amount=amount,
            first_pick=first_pick,
            second_pick=second_pick,
            placed_at=placed_at,
        )
        if self.total_pot + amount > balances.max_balance:
            raise InvalidAmountError(
                amount, f"pot could exceed the maximum {balances.max_balance}"
            )
        # Balance after the debit plus everything this bettor could win
        balances.ensure_headroom(bettor, self.worst_case_payout(bettor, extra=wager) - amount, amount)

        balances.debit(bettor, amount)
        self._wagers.append(wager)
        self.total_pot += amount

        logger.info(
            "Wager placed: %s %d->%d for %d (pot %d, %d wagers)",
            bettor, first_pick, second_pick, amount, self.total_pot, len(self._wagers),
        )
        return wager

    def restore(self, wagers: Iterable[Wager]) -> None:
        """Replace the collection with already-debited ``wagers`` (e.g. after a restart)."""
        self._wagers = list(wagers)
        self.total_pot = sum(w.amount for w in self._wagers)

    def clear(self) -> None:
        self._wagers.clear()
        self.total_pot = 0
