"""
Timed race cycle.

advance_cycle(engine, now) performs at most one lifecycle transition,
acting as the engine owner:

  ACCEPTING -> RUNNING    once betting_window_sec has elapsed since betting opened
  RUNNING   -> FINISHED   once race_duration_sec has elapsed since the start
  FINISHED  -> CLOSED     immediately (settlement)
  CLOSED    -> ACCEPTING  immediately (reset)

Called on an interval by the scheduler in main.py.  The engine itself
has no notion of time; every timing gate lives here.
"""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from exacta_race.core.race_config import MAX_SEED
from exacta_race.services.race import RaceEngine, RaceState

logger = logging.getLogger(__name__)


def random_seed() -> int:
    """Non-cryptographic 64-bit seed for the next race."""
    return random.getrandbits(64)


def advance_cycle(
    engine: RaceEngine,
    act_as_owner,
    now: Optional[datetime] = None,
    seed_source: Callable[[], int] = random_seed,
) -> Dict:
    """
    Move the race one step along its cycle if its timing gate allows.

    ``act_as_owner`` is a zero-argument context-manager factory that binds
    the owner identity (e.g. ``lambda: identity.acting_as(engine.owner)``).
    """
    now = now or datetime.now(timezone.utc)
    cfg = engine.config
    state_before = engine.state
    action = "none"

    with act_as_owner():
        if state_before is RaceState.ACCEPTING:
            if now - engine.betting_opened_at >= timedelta(seconds=cfg.betting_window_sec):
                seed = seed_source() & MAX_SEED
                engine.start_race(seed)
                action = "started"
        elif state_before is RaceState.RUNNING:
            if now - engine.race_started_at >= timedelta(seconds=cfg.race_duration_sec):
                engine.run_outcome()
                action = "finished"
        elif state_before is RaceState.FINISHED:
            engine.settle()
            action = "settled"
        elif state_before is RaceState.CLOSED:
            engine.reset()
            action = "reset"

    summary = _cycle_summary(engine, state_before, action, now)
    if action != "none":
        logger.info("Race cycle: %s", summary)
    return summary


def _cycle_summary(engine: RaceEngine, state_before: RaceState, action: str, now: datetime) -> Dict:
    return {
        "race_id": engine.race_id,
        "state_before": state_before.value,
        "state_after": engine.state.value,
        "action": action,
        "timestamp": now.isoformat(),
    }
