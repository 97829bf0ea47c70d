"""
Race engine: lifecycle state machine and public operations.

    ACCEPTING --start_race(seed)--> RUNNING --run_outcome()--> FINISHED
        ^                                                          |
        +------reset()------ CLOSED <--------settle()--------------+

Every operation checks, in order, authorization (owner-only calls),
the required lifecycle state, then its own arguments, and raises the
first failure as a RaceError before mutating anything.  Notifications
are emitted only after the state change they describe.

The engine is a plain object: no module-level state, so tests and the
API can build as many independent instances as they need.  Calls are
expected to be serialized by the host.  With a ``state_store`` the
engine saves its wagers, lifecycle and history after every change and
resumes from the last save when constructed again.

Usage::

    identity = ContextIdentity()
    engine = RaceEngine(owner="house", identity=identity)
    with identity.acting_as("house"):
        engine.deposit("alice", 500)
        engine.place_wager("alice", 0, 5, 100)
        engine.start_race(seed=12345)
    outcome = engine.run_outcome()
    payouts = engine.settle()
"""

import enum
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, List, Mapping, Optional, Tuple

from exacta_race.core.events import (
    Deposited,
    PayoutDistributed,
    RaceEvent,
    RaceFinished,
    RaceStarted,
    WagerPlaced,
    Withdrawn,
)
from exacta_race.core.interfaces import (
    BalanceStore,
    IdentityProvider,
    NotificationSink,
    RaceStateStore,
)
from exacta_race.core.odds_table import OddsTable
from exacta_race.core.outcome import draw_finish_order
from exacta_race.core.probability import ExactaProbability, exacta_probability, probability_table
from exacta_race.core.race_config import MAX_SEED, RaceConfig
from exacta_race.core.strength import Participant, build_field, find_participant
from exacta_race.errors import (
    NotOwnerError,
    RaceNotAcceptingError,
    RaceNotClosedError,
    RaceNotFinishedError,
    RaceNotRunningError,
)
from exacta_race.services.balances import InMemoryBalanceStore
from exacta_race.services.ledger import BalanceLedger
from exacta_race.services.notifications import LoggingSink
from exacta_race.services.settlement import Payout, compute_payouts, settle_wagers
from exacta_race.services.wagers import Wager, WagerLedger

logger = logging.getLogger(__name__)


class RaceState(str, enum.Enum):
    ACCEPTING = "accepting"
    RUNNING = "running"
    FINISHED = "finished"
    CLOSED = "closed"


@dataclass(frozen=True)
class RaceOutcome:
    race_id: int
    rankings: Tuple[int, ...]
    finish_times: Tuple[int, ...]
    winning_exacta: Tuple[int, int]
    total_pot: int
    seed_used: int

    def to_dict(self) -> dict:
        return {
            "race_id": self.race_id,
            "rankings": list(self.rankings),
            "finish_times": list(self.finish_times),
            "winning_exacta": list(self.winning_exacta),
            "total_pot": self.total_pot,
            "seed_used": self.seed_used,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RaceEngine:
    """Owns the field, odds, ledger, wagers and lifecycle of one race at a time."""

    def __init__(
        self,
        owner: str,
        identity: IdentityProvider,
        store: Optional[BalanceStore] = None,
        sink: Optional[NotificationSink] = None,
        config: Optional[RaceConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
        state_store: Optional[RaceStateStore] = None,
    ):
        if not isinstance(identity, IdentityProvider):
            raise TypeError(f"identity must be an IdentityProvider, got {type(identity).__name__}")

        self.config = config or RaceConfig.canonical()
        self.identity = identity
        self.sink = sink or LoggingSink()
        self.clock = clock
        self.state_store = state_store

        self._owner = owner
        self._field: List[Participant] = build_field(self.config)
        self._odds = OddsTable.from_config(self.config)
        self._ledger = BalanceLedger(store or InMemoryBalanceStore())
        self._wagers = WagerLedger(self.config.num_participants, self._odds)

        self._state = RaceState.ACCEPTING
        self._race_id = 0
        self._seed: Optional[int] = None
        self._latest: Optional[RaceOutcome] = None
        self._history: List[RaceOutcome] = []
        self._payouts: List[Payout] = []

        self.betting_opened_at: datetime = clock()
        self.race_started_at: Optional[datetime] = None

        if state_store is not None:
            snapshot = state_store.load()
            if snapshot is not None:
                self._restore(snapshot)

    # ------------------------------------------------------------------ #
    #  Persistence                                                         #
    # ------------------------------------------------------------------ #

    def snapshot(self) -> dict:
        """Everything needed to rebuild this engine except the balances."""
        return {
            "race_id": self._race_id,
            "state": self._state.value,
            "seed": self._seed,
            "owner": self._owner,
            "betting_opened_at": self.betting_opened_at,
            "race_started_at": self.race_started_at,
            "wagers": [asdict(w) for w in self._wagers.wagers],
            "history": [o.to_dict() for o in self._history],
        }

    def _restore(self, snapshot: Mapping) -> None:
        self._state = RaceState(snapshot["state"])
        self._race_id = snapshot["race_id"]
        self._seed = snapshot["seed"]
        self._owner = snapshot["owner"]
        self.betting_opened_at = snapshot["betting_opened_at"]
        self.race_started_at = snapshot["race_started_at"]
        self._wagers.restore(Wager(**w) for w in snapshot["wagers"])
        self._history = [
            RaceOutcome(
                race_id=h["race_id"],
                rankings=tuple(h["rankings"]),
                finish_times=tuple(h["finish_times"]),
                winning_exacta=tuple(h["winning_exacta"]),
                total_pot=h["total_pot"],
                seed_used=h["seed_used"],
            )
            for h in snapshot["history"]
        ]
        self._latest = self._history[-1] if self._history else None
        if self._state is RaceState.CLOSED and self._latest is not None:
            self._payouts = compute_payouts(
                self._wagers.wagers, self._latest.winning_exacta, self._odds,
            )
        logger.info(
            "Restored race %d in state %s: %d wagers, pot %d",
            self._race_id, self._state.value, len(self._wagers), self._wagers.total_pot,
        )

    def _persist(self) -> None:
        if self.state_store is not None:
            self.state_store.save(self.snapshot())

    # ------------------------------------------------------------------ #
    #  Guards                                                              #
    # ------------------------------------------------------------------ #

    def _require_owner(self, operation: str) -> str:
        caller = self.identity.current_caller()
        if caller != self._owner:
            logger.warning("%s rejected: caller %s is not the owner", operation, caller)
            raise NotOwnerError(caller, operation)
        return caller

    def _require_state(self, required: RaceState, error_cls: type, operation: str) -> None:
        if self._state is not required:
            logger.warning(
                "%s rejected: state is %s, requires %s",
                operation, self._state.value, required.value,
            )
            raise error_cls(self._state.value, operation)

    def _emit(self, event: RaceEvent) -> None:
        self.sink.emit(event)

    # ------------------------------------------------------------------ #
    #  Balances                                                            #
    # ------------------------------------------------------------------ #

    def deposit(self, account: str, amount: int) -> int:
        """Owner-only credit of ``amount`` to ``account``.  Returns the new balance."""
        self._require_owner("deposit")
        # Open wagers of a settled race have already been paid out
        reserved = 0 if self._state is RaceState.CLOSED else self._wagers.worst_case_payout(account)
        new_balance = self._ledger.deposit(account, amount, reserved=reserved)
        self._emit(Deposited(account=account, amount=amount))
        return new_balance

    def withdraw(self, amount: int) -> int:
        """Debit the caller's own balance.  Returns the new balance."""
        caller = self.identity.current_caller()
        new_balance = self._ledger.withdraw(caller, amount)
        self._emit(Withdrawn(account=caller, amount=amount))
        return new_balance

    def get_balance(self, account: str) -> int:
        return self._ledger.balance(account)

    # ------------------------------------------------------------------ #
    #  Wagers                                                              #
    # ------------------------------------------------------------------ #

    def place_wager(self, bettor: str, first_pick: int, second_pick: int, amount: int) -> Wager:
        """
        Record an exacta wager on behalf of ``bettor`` (owner-relayed).

        Check order: owner, ACCEPTING state, pick range, distinct picks,
        positive amount, bettor balance, then the pot and the bettor's
        worst-case payout against the balance cap.  The stake is debited
        with the wager; nothing is recorded if any check fails.
        """
        self._require_owner("place_wager")
        self._require_state(RaceState.ACCEPTING, RaceNotAcceptingError, "place_wager")
        wager = self._wagers.place(
            self._ledger, bettor, first_pick, second_pick, amount, self.clock()
        )
        self._persist()
        self._emit(WagerPlaced(
            bettor=bettor, first_pick=first_pick, second_pick=second_pick, amount=amount,
        ))
        return wager

    # ------------------------------------------------------------------ #
    #  Lifecycle                                                           #
    # ------------------------------------------------------------------ #

    def start_race(self, seed: int) -> int:
        """ACCEPTING -> RUNNING.  Records the seed and returns the new race id."""
        self._require_owner("start_race")
        self._require_state(RaceState.ACCEPTING, RaceNotAcceptingError, "start_race")
        if not 0 <= seed <= MAX_SEED:
            raise ValueError(f"seed must be in 0..{MAX_SEED}, got {seed}")

        self._seed = seed
        self._race_id += 1
        self._state = RaceState.RUNNING
        self.race_started_at = self.clock()
        self._persist()

        logger.info(
            "Race %d started: seed=%d, %d wagers, pot %d",
            self._race_id, seed, len(self._wagers), self._wagers.total_pot,
        )
        self._emit(RaceStarted(race_id=self._race_id, seed=seed, total_wagers=len(self._wagers)))
        return self._race_id

    def run_outcome(self) -> RaceOutcome:
        """RUNNING -> FINISHED.  Draws the finish order from the recorded seed."""
        self._require_state(RaceState.RUNNING, RaceNotRunningError, "run_outcome")

        draw = draw_finish_order(self._seed, self.config)
        outcome = RaceOutcome(
            race_id=self._race_id,
            rankings=draw.rankings,
            finish_times=draw.finish_times,
            winning_exacta=(draw.rankings[0], draw.rankings[1]),
            total_pot=self._wagers.total_pot,
            seed_used=self._seed,
        )
        self._latest = outcome
        self._history.append(outcome)
        self._state = RaceState.FINISHED
        self._persist()

        logger.info(
            "Race %d finished: order=%s, exacta %d->%d",
            outcome.race_id, list(outcome.rankings), *outcome.winning_exacta,
        )
        self._emit(RaceFinished(
            race_id=outcome.race_id,
            first_place=outcome.rankings[0],
            second_place=outcome.rankings[1],
            third_place=outcome.rankings[2] if len(outcome.rankings) > 2 else None,
        ))
        return outcome

    def settle(self) -> List[Payout]:
        """FINISHED -> CLOSED.  Credits every exact match ``amount * multiplier``."""
        self._require_state(RaceState.FINISHED, RaceNotFinishedError, "settle")

        payouts = settle_wagers(
            self._ledger, self._wagers.wagers, self._latest.winning_exacta, self._odds,
        )
        self._payouts.extend(payouts)
        self._state = RaceState.CLOSED
        self._persist()

        for payout in payouts:
            self._emit(PayoutDistributed(
                bettor=payout.bettor,
                amount=payout.payout_amount,
                multiplier=payout.multiplier,
            ))
        return payouts

    def reset(self) -> None:
        """CLOSED -> ACCEPTING.  Clears wagers, payouts, pot and seed."""
        self._require_owner("reset")
        self._require_state(RaceState.CLOSED, RaceNotClosedError, "reset")

        self._wagers.clear()
        self._payouts.clear()
        self._seed = None
        self._state = RaceState.ACCEPTING
        self.betting_opened_at = self.clock()
        self.race_started_at = None
        self._persist()
        logger.info("Race %d reset; accepting wagers for the next race", self._race_id)

    def simulate_complete_race(self, seed: int) -> RaceOutcome:
        """Owner-only shortcut for ``start_race(seed)`` followed by ``run_outcome()``."""
        self.start_race(seed)
        return self.run_outcome()

    def set_owner(self, new_owner: str) -> None:
        previous = self._require_owner("set_owner")
        self._owner = new_owner
        self._persist()
        logger.info("Ownership transferred: %s -> %s", previous, new_owner)

    # ------------------------------------------------------------------ #
    #  Read-only accessors                                                 #
    # ------------------------------------------------------------------ #

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def state(self) -> RaceState:
        return self._state

    @property
    def race_id(self) -> int:
        return self._race_id

    @property
    def current_seed(self) -> Optional[int]:
        return self._seed

    @property
    def total_pot(self) -> int:
        return self._wagers.total_pot

    @property
    def odds(self) -> OddsTable:
        return self._odds

    def participants(self) -> List[Participant]:
        return list(self._field)

    def participant(self, participant_id: int) -> Optional[Participant]:
        return find_participant(self._field, participant_id)

    def normalized_share(self, participant_id: int) -> int:
        found = self.participant(participant_id)
        return found.normalized_share if found else 0

    def wagers(self) -> List[Wager]:
        return self._wagers.wagers

    def payouts(self) -> List[Payout]:
        return list(self._payouts)

    def latest_outcome(self) -> Optional[RaceOutcome]:
        return self._latest

    def history(self) -> List[RaceOutcome]:
        return list(self._history)

    def winners(self) -> Optional[Tuple[int, int]]:
        return self._latest.winning_exacta if self._latest else None

    def multiplier(self, first: int, second: int) -> int:
        return self._odds.multiplier(first, second)

    def probability(self, first: int, second: int) -> int:
        return exacta_probability(self.config, first, second)

    def probability_table(self) -> List[ExactaProbability]:
        return probability_table(self.config, self._odds)
