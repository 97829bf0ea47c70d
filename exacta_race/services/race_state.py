"""
Race state store implementations.

InMemoryRaceStateStore - keeps a deep copy of the last snapshot
SqlRaceStateStore      - ``race_state`` / ``wagers`` / ``race_outcomes`` tables,
                         each save in one transaction
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from sqlalchemy.orm import Session

from exacta_race.core.interfaces import RaceStateStore
from exacta_race.models import RaceOutcomeRecord, RaceStateRecord, WagerRecord

logger = logging.getLogger(__name__)

_ROW_ID = 1


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands DateTime columns back without tzinfo
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class InMemoryRaceStateStore(RaceStateStore):
    def __init__(self):
        self._snapshot: Optional[dict] = None

    def load(self) -> Optional[Mapping]:
        return copy.deepcopy(self._snapshot)

    def save(self, snapshot: Mapping) -> None:
        self._snapshot = copy.deepcopy(dict(snapshot))


class SqlRaceStateStore(RaceStateStore):
    """
    Race state persisted next to the balances.

    ``save`` rewrites the single ``race_state`` row and the open
    ``wagers``, and appends outcomes whose race id is not stored yet.
    On any database error the session is rolled back and the exception
    propagates, so the stored snapshot is either the old or the new one.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def load(self) -> Optional[Mapping]:
        db = self._session_factory()
        try:
            row = db.get(RaceStateRecord, _ROW_ID)
            if row is None:
                return None
            wagers = db.query(WagerRecord).order_by(WagerRecord.position).all()
            outcomes = db.query(RaceOutcomeRecord).order_by(RaceOutcomeRecord.race_id).all()
            return {
                "race_id": row.race_id,
                "state": row.state,
                "seed": int(row.seed) if row.seed is not None else None,
                "owner": row.owner,
                "betting_opened_at": _as_utc(row.betting_opened_at),
                "race_started_at": _as_utc(row.race_started_at),
                "wagers": [
                    {
                        "bettor": w.bettor,
                        "amount": w.amount,
                        "first_pick": w.first_pick,
                        "second_pick": w.second_pick,
                        "placed_at": _as_utc(w.placed_at),
                    }
                    for w in wagers
                ],
                "history": [
                    {
                        "race_id": o.race_id,
                        "rankings": list(o.rankings),
                        "finish_times": list(o.finish_times),
                        "winning_exacta": [o.first_place, o.second_place],
                        "total_pot": o.total_pot,
                        "seed_used": int(o.seed),
                    }
                    for o in outcomes
                ],
            }
        finally:
            db.close()

    def save(self, snapshot: Mapping) -> None:
        db = self._session_factory()
        try:
            row = db.get(RaceStateRecord, _ROW_ID)
            if row is None:
                row = RaceStateRecord(id=_ROW_ID)
                db.add(row)
            seed = snapshot["seed"]
            row.race_id = snapshot["race_id"]
            row.state = snapshot["state"]
            row.seed = str(seed) if seed is not None else None
            row.owner = snapshot["owner"]
            row.betting_opened_at = snapshot["betting_opened_at"]
            row.race_started_at = snapshot["race_started_at"]

            db.query(WagerRecord).delete()
            for position, wager in enumerate(snapshot["wagers"]):
                db.add(WagerRecord(position=position, **wager))

            stored = {race_id for (race_id,) in db.query(RaceOutcomeRecord.race_id).all()}
            for outcome in snapshot["history"]:
                if outcome["race_id"] in stored:
                    continue
                first, second = outcome["winning_exacta"]
                db.add(RaceOutcomeRecord(
                    race_id=outcome["race_id"],
                    seed=str(outcome["seed_used"]),
                    rankings=list(outcome["rankings"]),
                    finish_times=list(outcome["finish_times"]),
                    first_place=first,
                    second_place=second,
                    total_pot=outcome["total_pot"],
                ))
            db.commit()
        except Exception as exc:
            logger.error("Saving race %s state failed: %s", snapshot.get("race_id"), exc)
            db.rollback()
            raise
        finally:
            db.close()
