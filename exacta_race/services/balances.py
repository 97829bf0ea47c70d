"""
Balance store implementations.

InMemoryBalanceStore  - dict-backed, for tests and single-process demos
SqlBalanceStore       - SQLAlchemy ``accounts`` table; batches run in one transaction
"""

import logging
from typing import Callable, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from exacta_race.core.interfaces import BalanceStore
from exacta_race.models import Account

logger = logging.getLogger(__name__)


class InMemoryBalanceStore(BalanceStore):
    def __init__(self, initial: Optional[Mapping[str, int]] = None):
        self._balances: Dict[str, int] = dict(initial or {})

    def get(self, account: str) -> int:
        return self._balances.get(account, 0)

    def set(self, account: str, balance: int) -> None:
        self._balances[account] = balance

    def apply(self, balances: Mapping[str, int]) -> None:
        self._balances.update(balances)

    def accounts(self) -> Mapping[str, int]:
        return dict(self._balances)


class SqlBalanceStore(BalanceStore):
    """
    Balances persisted in the ``accounts`` table.

    Each call opens its own session from ``session_factory`` and commits
    before returning.  On any database error the session is rolled back
    and the exception propagates, so a failed :meth:`apply` leaves every
    balance as it was.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, account: str) -> int:
        db = self._session_factory()
        try:
            row = db.query(Account).filter(Account.account == account).first()
            return row.balance if row else 0
        finally:
            db.close()

    def set(self, account: str, balance: int) -> None:
        self.apply({account: balance})

    def apply(self, balances: Mapping[str, int]) -> None:
        if not balances:
            return
        db = self._session_factory()
        try:
            rows = {
                row.account: row
                for row in db.query(Account).filter(Account.account.in_(list(balances))).all()
            }
            for account, balance in balances.items():
                row = rows.get(account)
                if row is None:
                    db.add(Account(account=account, balance=balance))
                else:
                    row.balance = balance
            db.commit()
        except Exception as exc:
            logger.error("Balance batch of %d account(s) failed: %s", len(balances), exc)
            db.rollback()
            raise
        finally:
            db.close()

    def accounts(self) -> Mapping[str, int]:
        db = self._session_factory()
        try:
            return {row.account: row.balance for row in db.query(Account).all()}
        finally:
            db.close()
