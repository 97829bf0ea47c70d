"""Notification DTOs emitted by the race engine.

Each event carries exactly the fields its notice is defined with.  Sinks
receive the dataclass and may serialise it with :meth:`to_dict`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional


@dataclass(frozen=True)
class RaceEvent:
    """Base class; ``event_type`` is the stable wire name."""

    event_type = "race_event"

    def to_dict(self) -> dict:
        return {"event_type": self.event_type, **asdict(self)}


@dataclass(frozen=True)
class RaceStarted(RaceEvent):
    event_type = "race_started"

    race_id: int
    seed: int
    total_wagers: int


@dataclass(frozen=True)
class RaceFinished(RaceEvent):
    event_type = "race_finished"

    race_id: int
    first_place: int
    second_place: int
    third_place: Optional[int]


@dataclass(frozen=True)
class WagerPlaced(RaceEvent):
    event_type = "wager_placed"

    bettor: str
    first_pick: int
    second_pick: int
    amount: int


@dataclass(frozen=True)
class PayoutDistributed(RaceEvent):
    event_type = "payout_distributed"

    bettor: str
    amount: int
    multiplier: int


@dataclass(frozen=True)
class Deposited(RaceEvent):
    event_type = "deposited"

    account: str
    amount: int


@dataclass(frozen=True)
class Withdrawn(RaceEvent):
    event_type = "withdrawn"

    account: str
    amount: int
