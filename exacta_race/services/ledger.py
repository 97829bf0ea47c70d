"""
Balance ledger: validated, non-negative bookkeeping over a BalanceStore.

Public API:
  deposit(account, amount)   -> new balance   (InvalidAmountError past max_balance)
  withdraw(account, amount)  -> new balance   (InsufficientFundsError if short)
  debit(account, amount)     -> new balance   (wager placement)
  credit_many(credits)       -> new balances  (settlement, one atomic batch)
  balance(account)           -> int

Every check runs before the store is touched, so a rejected call never
mutates a balance.

Balances are capped at ``max_balance``.  ``reserved`` is the largest
payout the account could still receive from open wagers; a deposit or
wager that could push balance + reserved past the cap is rejected up
front, so settlement credits never overflow the store.
"""

import logging
from typing import Dict, Iterable, Tuple

from exacta_race.core.interfaces import BalanceStore
from exacta_race.core.race_config import MAX_BALANCE
from exacta_race.errors import InsufficientFundsError, InvalidAmountError

logger = logging.getLogger(__name__)


def _require_non_negative(amount: int) -> None:
    if amount < 0:
        raise InvalidAmountError(amount, "amount cannot be negative")


class BalanceLedger:
    def __init__(self, store: BalanceStore, max_balance: int = MAX_BALANCE):
        self.store = store
        self.max_balance = max_balance

    def balance(self, account: str) -> int:
        return self.store.get(account)

    def ensure_headroom(self, account: str, incoming: int, amount: int) -> None:
        """
        Raise InvalidAmountError if crediting ``incoming`` to ``account``
        would take it past ``max_balance``.  ``amount`` is the value
        reported in the error.
        """
        if self.store.get(account) + incoming > self.max_balance:
            raise InvalidAmountError(
                amount, f"balance of {account!r} could exceed the maximum {self.max_balance}"
            )

    def deposit(self, account: str, amount: int, reserved: int = 0) -> int:
        _require_non_negative(amount)
        self.ensure_headroom(account, amount + reserved, amount)
        new_balance = self.store.get(account) + amount
        self.store.set(account, new_balance)
        logger.info("Deposit: %s +%d -> %d", account, amount, new_balance)
        return new_balance

    def withdraw(self, account: str, amount: int) -> int:
        _require_non_negative(amount)
        new_balance = self._checked_debit(account, amount)
        logger.info("Withdraw: %s -%d -> %d", account, amount, new_balance)
        return new_balance

    def ensure_funds(self, account: str, amount: int) -> None:
        """Raise InsufficientFundsError unless ``account`` holds at least ``amount``."""
        current = self.store.get(account)
        if current < amount:
            raise InsufficientFundsError(account, current, amount)

    def debit(self, account: str, amount: int) -> int:
        _require_non_negative(amount)
        return self._checked_debit(account, amount)

    def credit_many(self, credits: Iterable[Tuple[str, int]]) -> Dict[str, int]:
        """
        Add every ``(account, amount)`` to its balance in one store batch.

        Repeated accounts accumulate.  Returns the new balance of each
        credited account.
        """
        totals: Dict[str, int] = {}
        for account, amount in credits:
            _require_non_negative(amount)
            totals[account] = totals.get(account, 0) + amount
        if not totals:
            return {}

        new_balances = {
            account: self.store.get(account) + amount
            for account, amount in totals.items()
        }
        self.store.apply(new_balances)
        return new_balances

    def _checked_debit(self, account: str, amount: int) -> int:
        current = self.store.get(account)
        if current < amount:
            raise InsufficientFundsError(account, current, amount)
        new_balance = current - amount
        self.store.set(account, new_balance)
        return new_balance
