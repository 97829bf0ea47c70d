"""
Tests for the race lifecycle engine
Run with: pytest tests/test_race_engine.py -v
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from exacta_race.core.events import (
    Deposited,
    PayoutDistributed,
    RaceFinished,
    RaceStarted,
    WagerPlaced,
    Withdrawn,
)
from exacta_race.core.interfaces import ContextIdentity
from exacta_race.core.outcome import DrawResult, draw_finish_order
from exacta_race.core.race_config import MAX_BALANCE, RaceConfig
from exacta_race.errors import (
    InsufficientFundsError,
    InvalidAmountError,
    InvalidParticipantError,
    LifecycleError,
    NotOwnerError,
    RaceNotAcceptingError,
    RaceNotClosedError,
    RaceNotFinishedError,
    RaceNotRunningError,
    SamePickError,
)
from exacta_race.models import Base
from exacta_race.services.balances import InMemoryBalanceStore, SqlBalanceStore
from exacta_race.services.notifications import RecordingSink
from exacta_race.services.race import RaceEngine, RaceState


OWNER = "house"


def _make_engine(balances=None, config=None):
    identity = ContextIdentity()
    sink = RecordingSink()
    engine = RaceEngine(
        owner=OWNER,
        identity=identity,
        store=InMemoryBalanceStore(balances or {}),
        sink=sink,
        config=config,
    )
    return engine, identity, sink


def _force_draw(monkeypatch, rankings):
    """Make every draw finish in ``rankings`` order."""
    result = DrawResult(rankings=tuple(rankings), finish_times=tuple(50 + 2 * i for i in range(len(rankings))))
    monkeypatch.setattr("exacta_race.services.race.draw_finish_order", lambda seed, config: result)


def _run_to_finish(engine, identity, seed=12345):
    with identity.acting_as(OWNER):
        engine.start_race(seed)
    return engine.run_outcome()


# ============================================================================
# CONSTRUCTION AND ACCESSORS
# ============================================================================

class TestEngineSetup:

    def test_initial_state(self):
        engine, _, _ = _make_engine()

        assert engine.state is RaceState.ACCEPTING
        assert engine.race_id == 0
        assert engine.current_seed is None
        assert engine.total_pot == 0
        assert engine.latest_outcome() is None
        assert engine.winners() is None

    def test_rejects_non_identity_provider(self):
        with pytest.raises(TypeError):
            RaceEngine(owner=OWNER, identity="house")

    def test_participants(self):
        engine, _, _ = _make_engine()

        field = engine.participants()
        assert len(field) == 6
        assert engine.participant(3).name == "Dark Knight"
        assert engine.participant(6) is None

    def test_normalized_share(self):
        engine, _, _ = _make_engine()

        assert engine.normalized_share(0) == 2857
        assert engine.normalized_share(5) == 476
        assert engine.normalized_share(6) == 0

    def test_odds_and_probability(self):
        engine, _, _ = _make_engine()

        assert engine.multiplier(0, 5) == 60
        assert engine.multiplier(2, 2) == 0
        assert engine.probability(0, 1) == 952
        assert len(engine.probability_table()) == 30

    def test_unbound_caller(self):
        engine, _, _ = _make_engine()

        with pytest.raises(LookupError):
            engine.start_race(1)


# ============================================================================
# BALANCES
# ============================================================================

class TestBalances:

    def test_owner_deposit(self):
        engine, identity, sink = _make_engine()

        with identity.acting_as(OWNER):
            assert engine.deposit("alice", 500) == 500
        assert engine.get_balance("alice") == 500
        assert sink.of_type(Deposited) == [Deposited(account="alice", amount=500)]

    def test_non_owner_deposit_rejected(self):
        engine, identity, sink = _make_engine()

        with identity.acting_as("alice"), pytest.raises(NotOwnerError):
            engine.deposit("alice", 500)
        assert engine.get_balance("alice") == 0
        assert sink.events == []

    def test_withdraw_acts_on_caller(self):
        engine, identity, sink = _make_engine({"alice": 300, "bob": 300})

        with identity.acting_as("alice"):
            assert engine.withdraw(100) == 200
        assert engine.get_balance("bob") == 300
        assert sink.of_type(Withdrawn) == [Withdrawn(account="alice", amount=100)]

    def test_overdraw_rejected(self):
        engine, identity, _ = _make_engine({"alice": 30})

        with identity.acting_as("alice"), pytest.raises(InsufficientFundsError):
            engine.withdraw(31)
        assert engine.get_balance("alice") == 30


# ============================================================================
# WAGERS
# ============================================================================

class TestPlaceWager:

    def test_owner_relays_wager(self):
        engine, identity, sink = _make_engine({"alice": 1000})

        with identity.acting_as(OWNER):
            wager = engine.place_wager("alice", 0, 5, 100)

        assert wager.bettor == "alice"
        assert engine.get_balance("alice") == 900
        assert engine.total_pot == 100
        assert len(engine.wagers()) == 1
        assert sink.of_type(WagerPlaced) == [
            WagerPlaced(bettor="alice", first_pick=0, second_pick=5, amount=100)
        ]

    def test_non_owner_rejected_before_validation(self):
        engine, identity, _ = _make_engine({"alice": 1000})

        # Also an invalid selection, but ownership is checked first
        with identity.acting_as("alice"), pytest.raises(NotOwnerError):
            engine.place_wager("alice", 9, 9, 0)

    def test_state_checked_before_selection(self):
        engine, identity, _ = _make_engine({"alice": 1000})

        with identity.acting_as(OWNER):
            engine.start_race(1)
            with pytest.raises(RaceNotAcceptingError):
                engine.place_wager("alice", 9, 9, 0)

    @pytest.mark.parametrize("first, second, amount, error", [
        (6, 0, 10, InvalidParticipantError),
        (0, 6, 10, InvalidParticipantError),
        (2, 2, 10, SamePickError),
        (0, 1, 0, InvalidAmountError),
        (0, 1, 1001, InsufficientFundsError),
    ])
    def test_rejections_leave_state_untouched(self, first, second, amount, error):
        engine, identity, sink = _make_engine({"alice": 1000})

        with identity.acting_as(OWNER), pytest.raises(error):
            engine.place_wager("alice", first, second, amount)

        assert engine.get_balance("alice") == 1000
        assert engine.total_pot == 0
        assert engine.wagers() == []
        assert sink.events == []

    def test_exact_balance_wager(self):
        engine, identity, _ = _make_engine({"alice": 100})

        with identity.acting_as(OWNER):
            engine.place_wager("alice", 0, 1, 100)
        assert engine.get_balance("alice") == 0


# ============================================================================
# LIFECYCLE
# ============================================================================

class TestLifecycle:

    def test_full_cycle(self):
        engine, identity, sink = _make_engine()

        with identity.acting_as(OWNER):
            assert engine.start_race(12345) == 1
        assert engine.state is RaceState.RUNNING
        assert engine.current_seed == 12345

        outcome = engine.run_outcome()
        assert engine.state is RaceState.FINISHED
        assert outcome.rankings[0] == 3
        assert outcome.winning_exacta == outcome.rankings[:2]
        assert outcome.seed_used == 12345

        engine.settle()
        assert engine.state is RaceState.CLOSED

        with identity.acting_as(OWNER):
            engine.reset()
        assert engine.state is RaceState.ACCEPTING
        assert engine.current_seed is None

        assert sink.of_type(RaceStarted) == [RaceStarted(race_id=1, seed=12345, total_wagers=0)]
        finished = sink.of_type(RaceFinished)[0]
        assert (finished.first_place, finished.second_place, finished.third_place) == outcome.rankings[:3]

    def test_start_requires_owner(self):
        engine, identity, _ = _make_engine()

        with identity.acting_as("alice"), pytest.raises(NotOwnerError):
            engine.start_race(1)
        assert engine.state is RaceState.ACCEPTING

    def test_start_twice_rejected(self):
        engine, identity, _ = _make_engine()

        with identity.acting_as(OWNER):
            engine.start_race(1)
            with pytest.raises(RaceNotAcceptingError):
                engine.start_race(2)
        assert engine.current_seed == 1
        assert engine.race_id == 1

    @pytest.mark.parametrize("seed", [-1, 2 ** 64])
    def test_seed_out_of_range(self, seed):
        engine, identity, _ = _make_engine()

        with identity.acting_as(OWNER), pytest.raises(ValueError):
            engine.start_race(seed)
        assert engine.state is RaceState.ACCEPTING

    def test_run_requires_running(self):
        engine, _, _ = _make_engine()

        with pytest.raises(RaceNotRunningError):
            engine.run_outcome()

    def test_run_needs_no_owner(self):
        engine, identity, _ = _make_engine()
        with identity.acting_as(OWNER):
            engine.start_race(5)

        with identity.acting_as("anyone"):
            engine.run_outcome()
        assert engine.state is RaceState.FINISHED

    def test_settle_requires_finished(self):
        engine, identity, _ = _make_engine()

        with pytest.raises(RaceNotFinishedError):
            engine.settle()

        with identity.acting_as(OWNER):
            engine.start_race(5)
        with pytest.raises(RaceNotFinishedError):
            engine.settle()

    def test_no_double_settlement(self, monkeypatch):
        _force_draw(monkeypatch, [0, 5, 1, 2, 3, 4])
        engine, identity, _ = _make_engine({"alice": 100})
        with identity.acting_as(OWNER):
            engine.place_wager("alice", 0, 5, 100)
        _run_to_finish(engine, identity)

        engine.settle()
        with pytest.raises(RaceNotFinishedError):
            engine.settle()
        assert engine.get_balance("alice") == 6000

    def test_reset_requires_closed(self):
        engine, identity, _ = _make_engine()

        with identity.acting_as(OWNER):
            with pytest.raises(RaceNotClosedError):
                engine.reset()
            engine.start_race(5)
            with pytest.raises(RaceNotClosedError):
                engine.reset()

    def test_reset_requires_owner(self):
        engine, identity, _ = _make_engine()
        _run_to_finish(engine, identity)
        engine.settle()

        with identity.acting_as("alice"), pytest.raises(NotOwnerError):
            engine.reset()
        assert engine.state is RaceState.CLOSED

    def test_lifecycle_errors_share_a_base(self):
        engine, _, _ = _make_engine()

        with pytest.raises(LifecycleError) as exc:
            engine.run_outcome()
        assert exc.value.actual == "accepting"
        assert exc.value.required == "running"

    def test_simulate_complete_race(self):
        engine, identity, _ = _make_engine()

        with identity.acting_as(OWNER):
            outcome = engine.simulate_complete_race(0)

        assert engine.state is RaceState.FINISHED
        assert outcome.rankings[0] == 4
        assert outcome.finish_times[0] == 51

    def test_simulate_complete_race_respects_guards(self):
        engine, identity, _ = _make_engine()

        with identity.acting_as("alice"), pytest.raises(NotOwnerError):
            engine.simulate_complete_race(0)
        assert engine.state is RaceState.ACCEPTING

    def test_set_owner(self):
        engine, identity, _ = _make_engine()

        with identity.acting_as(OWNER):
            engine.set_owner("alice")
        assert engine.owner == "alice"

        with identity.acting_as(OWNER), pytest.raises(NotOwnerError):
            engine.start_race(1)
        with identity.acting_as("alice"):
            engine.start_race(1)

    def test_set_owner_requires_owner(self):
        engine, identity, _ = _make_engine()

        with identity.acting_as("alice"), pytest.raises(NotOwnerError):
            engine.set_owner("alice")
        assert engine.owner == OWNER


# ============================================================================
# SETTLEMENT THROUGH THE ENGINE
# ============================================================================

class TestEngineSettlement:

    def test_winner_paid(self, monkeypatch):
        _force_draw(monkeypatch, [0, 5, 1, 2, 3, 4])
        engine, identity, sink = _make_engine({"alice": 1000, "bob": 1000})
        with identity.acting_as(OWNER):
            engine.place_wager("alice", 0, 5, 100)
            engine.place_wager("bob", 5, 0, 100)
        _run_to_finish(engine, identity)

        payouts = engine.settle()

        assert [(p.bettor, p.payout_amount) for p in payouts] == [("alice", 6000)]
        assert engine.get_balance("alice") == 6900
        assert engine.get_balance("bob") == 900
        assert engine.winners() == (0, 5)
        assert sink.of_type(PayoutDistributed) == [
            PayoutDistributed(bettor="alice", amount=6000, multiplier=60)
        ]

    def test_seeded_winner_paid(self):
        seed = 2024
        first, second = draw_finish_order(seed, RaceConfig.canonical()).rankings[:2]
        engine, identity, _ = _make_engine({"alice": 10})
        with identity.acting_as(OWNER):
            engine.place_wager("alice", first, second, 10)
        _run_to_finish(engine, identity, seed=seed)

        engine.settle()

        assert engine.get_balance("alice") == 10 * engine.multiplier(first, second)

    def test_missing_multiplier_pays_nobody(self, monkeypatch):
        _force_draw(monkeypatch, [0, 1])
        config = replace(RaceConfig.canonical(), names=("A", "B"), strengths=(2, 1), odds=())
        engine, identity, _ = _make_engine({"alice": 50}, config=config)
        with identity.acting_as(OWNER):
            engine.place_wager("alice", 0, 1, 50)
        _run_to_finish(engine, identity)

        assert engine.settle() == []
        assert engine.get_balance("alice") == 0
        assert engine.state is RaceState.CLOSED

    def test_failed_credit_batch_keeps_race_finished(self, monkeypatch):
        _force_draw(monkeypatch, [0, 5, 1, 2, 3, 4])
        store = InMemoryBalanceStore({"alice": 100})
        identity = ContextIdentity()
        engine = RaceEngine(owner=OWNER, identity=identity, store=store, sink=RecordingSink())
        with identity.acting_as(OWNER):
            engine.place_wager("alice", 0, 5, 100)
        _run_to_finish(engine, identity)

        monkeypatch.setattr(store, "apply", MagicMock(side_effect=RuntimeError("store down")))
        with pytest.raises(RuntimeError):
            engine.settle()

        assert engine.state is RaceState.FINISHED
        assert engine.payouts() == []
        assert engine.get_balance("alice") == 0

    def test_payouts_accessor(self, monkeypatch):
        _force_draw(monkeypatch, [2, 3, 0, 1, 4, 5])
        engine, identity, _ = _make_engine({"alice": 10})
        with identity.acting_as(OWNER):
            engine.place_wager("alice", 2, 3, 10)
        _run_to_finish(engine, identity)
        engine.settle()

        assert [p.payout_amount for p in engine.payouts()] == [80]


# ============================================================================
# RESET AND DETERMINISM ACROSS RACES
# ============================================================================

class TestResetAndReplay:

    def test_reset_clears_race_state(self):
        engine, identity, _ = _make_engine({"alice": 1000})
        with identity.acting_as(OWNER):
            engine.place_wager("alice", 0, 1, 100)
        _run_to_finish(engine, identity)
        engine.settle()

        with identity.acting_as(OWNER):
            engine.reset()

        assert engine.wagers() == []
        assert engine.total_pot == 0
        assert engine.payouts() == []
        assert engine.current_seed is None
        assert engine.race_id == 1

    def test_same_seed_same_outcome_after_reset(self):
        engine, identity, _ = _make_engine()
        first = _run_to_finish(engine, identity, seed=12345)
        engine.settle()
        with identity.acting_as(OWNER):
            engine.reset()
        second = _run_to_finish(engine, identity, seed=12345)

        assert first.rankings == second.rankings
        assert first.finish_times == second.finish_times
        assert (first.race_id, second.race_id) == (1, 2)
        assert [o.race_id for o in engine.history()] == [1, 2]

    def test_wagers_accepted_again_after_reset(self):
        engine, identity, _ = _make_engine({"alice": 100})
        _run_to_finish(engine, identity)
        engine.settle()
        with identity.acting_as(OWNER):
            engine.reset()
            engine.place_wager("alice", 0, 1, 10)

        assert engine.total_pot == 10

    def test_balances_never_negative(self):
        engine, identity, _ = _make_engine({"alice": 100, "bob": 40})
        with identity.acting_as(OWNER):
            engine.place_wager("alice", 0, 1, 60)
            with pytest.raises(InsufficientFundsError):
                engine.place_wager("alice", 0, 2, 60)
            engine.place_wager("bob", 1, 0, 40)
        _run_to_finish(engine, identity, seed=99)
        engine.settle()

        assert engine.get_balance("alice") >= 0
        assert engine.get_balance("bob") >= 0


class TestPhaseTimestamps:

    def test_clock_drives_phase_timestamps(self):
        times = iter([
            datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc),
            datetime(2026, 1, 1, 12, 14, tzinfo=timezone.utc),
        ])
        identity = ContextIdentity()
        engine = RaceEngine(owner=OWNER, identity=identity, sink=RecordingSink(), clock=lambda: next(times))

        with identity.acting_as(OWNER):
            engine.start_race(1)

        assert engine.race_started_at - engine.betting_opened_at == timedelta(minutes=14)


# ============================================================================
# BALANCE CAP
# ============================================================================

def _make_sql_engine():
    db = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=db)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=db)
    identity = ContextIdentity()
    engine = RaceEngine(
        owner=OWNER, identity=identity, store=SqlBalanceStore(factory), sink=RecordingSink(),
    )
    return engine, identity


class TestBalanceCap:
    """Seed 1 finishes 4 then 0, an exacta paying 40x"""

    def test_stake_whose_payout_overflows_rejected(self):
        engine, identity = _make_sql_engine()
        with identity.acting_as(OWNER):
            engine.deposit("alice", 2 ** 62)
            with pytest.raises(InvalidAmountError):
                engine.place_wager("alice", 4, 0, 2 ** 62)

        assert engine.get_balance("alice") == 2 ** 62
        assert engine.total_pot == 0
        assert engine.wagers() == []

    def test_largest_allowed_stake_settles(self):
        engine, identity = _make_sql_engine()
        stake = MAX_BALANCE // 40
        with identity.acting_as(OWNER):
            engine.deposit("alice", stake)
            engine.place_wager("alice", 4, 0, stake)
        outcome = _run_to_finish(engine, identity, seed=1)

        payouts = engine.settle()

        assert outcome.winning_exacta == (4, 0)
        assert engine.state is RaceState.CLOSED
        assert payouts[0].payout_amount == stake * 40
        assert engine.get_balance("alice") == stake * 40 <= MAX_BALANCE

    def test_deposit_cannot_eat_into_pending_payout(self):
        engine, identity = _make_sql_engine()
        stake = MAX_BALANCE // 40
        with identity.acting_as(OWNER):
            engine.deposit("alice", stake)
            engine.place_wager("alice", 4, 0, stake)

            # 40 * stake leaves MAX_BALANCE % 40 == 7 of headroom
            with pytest.raises(InvalidAmountError):
                engine.deposit("alice", 8)
            assert engine.deposit("alice", 7) == 7

        _run_to_finish(engine, identity, seed=1)
        engine.settle()

        assert engine.get_balance("alice") == MAX_BALANCE
