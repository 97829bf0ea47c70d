"""Dependency-injection interfaces for the host-provided capabilities.

The race engine never reaches for a global caller, database or event
bus.  It is constructed with collaborators that satisfy the
contracts below:

* :class:`IdentityProvider`: who is calling the current operation.
* :class:`BalanceStore`: key-value storage of account balances.
* :class:`NotificationSink`: delivery of :mod:`~exacta_race.core.events`.
* :class:`RaceStateStore`: optional durable copy of wagers and lifecycle.

This enables:

* **Unit testing**: a :class:`ContextIdentity` plus an in-memory store
  and a recording sink run the full lifecycle without I/O.
* **Hosting**: the API swaps in a SQL-backed store and a sink that
  persists events, without touching the engine.

Design choices
--------------
* ABCs rather than ``typing.Protocol`` so constructors can guard with
  ``isinstance`` and implementers inherit the documented contract.
* :meth:`BalanceStore.apply` exists so settlement can credit every
  winner in one atomic step; a store that cannot commit the batch must
  raise and leave every balance unchanged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Iterator, Mapping, Optional

if TYPE_CHECKING:
    from exacta_race.core.events import RaceEvent


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class IdentityProvider(ABC):
    """Accessor for the identity of the caller of the current operation."""

    @abstractmethod
    def current_caller(self) -> str:
        """Return the caller identity.  Raise ``LookupError`` if none is bound."""


class ContextIdentity(IdentityProvider):
    """Caller identity bound per execution context.

    Usage::

        identity = ContextIdentity()
        with identity.acting_as("user1"):
            engine.start_race(42)
    """

    def __init__(self, default: Optional[str] = None):
        self._var: ContextVar[Optional[str]] = ContextVar("exacta_race_caller", default=default)

    def current_caller(self) -> str:
        caller = self._var.get()
        if caller is None:
            raise LookupError("No caller bound; wrap the call in acting_as()")
        return caller

    @contextmanager
    def acting_as(self, caller: str) -> Iterator[None]:
        token = self._var.set(caller)
        try:
            yield
        finally:
            self._var.reset(token)


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------


class BalanceStore(ABC):
    """Key-value storage of non-negative integer balances.

    Unknown accounts read as ``0``.  The store does not validate amounts;
    :class:`~exacta_race.services.ledger.BalanceLedger` does.
    """

    @abstractmethod
    def get(self, account: str) -> int:
        """Current balance of ``account``."""

    @abstractmethod
    def set(self, account: str, balance: int) -> None:
        """Overwrite the balance of ``account``."""

    @abstractmethod
    def apply(self, balances: Mapping[str, int]) -> None:
        """Overwrite several balances atomically (all or none)."""

    @abstractmethod
    def accounts(self) -> Mapping[str, int]:
        """Snapshot of every stored balance."""


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationSink(ABC):
    """Receiver of engine notifications.

    Delivery is fire-and-forget from the engine's point of view; sinks
    are called only after the state change they describe has been made.
    """

    @abstractmethod
    def emit(self, event: "RaceEvent") -> None:
        """Deliver one event."""


# ---------------------------------------------------------------------------
# Race state
# ---------------------------------------------------------------------------


class RaceStateStore(ABC):
    """Durable copy of the engine's per-race state.

    A snapshot is a plain mapping with the keys ``race_id``, ``state``,
    ``seed``, ``owner``, ``betting_opened_at``, ``race_started_at``,
    ``wagers`` (list of wager field mappings, placement order) and
    ``history`` (list of outcome mappings, race-id order).  Balances are
    not part of it; they live in the :class:`BalanceStore`.
    """

    @abstractmethod
    def load(self) -> Optional[Mapping]:
        """Last saved snapshot, or ``None`` if nothing was ever saved."""

    @abstractmethod
    def save(self, snapshot: Mapping) -> None:
        """Replace the stored snapshot (all or none)."""
