"""
Pydantic request/response schemas for the exacta race API.

Using explicit schemas instead of raw dicts keeps the OpenAPI docs
accurate and rejects malformed payloads before they reach the engine.
Range checks that the engine owns (participant ids, positive wager
amounts) are left to the engine so its error precedence holds.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from exacta_race.core.race_config import MAX_SEED


# ---------------------------------------------------------------------------
# Participants / odds
# ---------------------------------------------------------------------------

class ParticipantResponse(BaseModel):
    id: int
    name: str
    strength: int
    normalized_share: int
    base_speed: int


class OddsResponse(BaseModel):
    first: int
    second: int
    multiplier: int
    probability: int


class ProbabilityRow(BaseModel):
    first: int
    second: int
    probability: int
    multiplier: int


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------

class DepositRequest(BaseModel):
    """Payload for POST /api/balances/deposit (owner only)."""

    account: str = Field(..., min_length=1, max_length=120)
    amount: int = Field(..., ge=0)


class WithdrawRequest(BaseModel):
    """Payload for POST /api/balances/withdraw (caller's own balance)."""

    amount: int = Field(..., ge=0)


class BalanceResponse(BaseModel):
    account: str
    balance: int


# ---------------------------------------------------------------------------
# Wagers
# ---------------------------------------------------------------------------

class WagerCreate(BaseModel):
    """
    Payload for POST /api/wagers.

    Wagers are relayed by the owner on behalf of ``bettor``.
    """

    bettor: str = Field(..., min_length=1, max_length=120)
    first_pick: int = Field(..., description="Participant id predicted to win")
    second_pick: int = Field(..., description="Participant id predicted to run second")
    amount: int = Field(..., description="Stake, debited from the bettor's balance")

    model_config = {
        "json_schema_extra": {
            "example": {"bettor": "alice", "first_pick": 0, "second_pick": 5, "amount": 100}
        }
    }


class WagerResponse(BaseModel):
    bettor: str
    amount: int
    first_pick: int
    second_pick: int
    placed_at: datetime


class PayoutResponse(BaseModel):
    bettor: str
    bet_amount: int
    multiplier: int
    payout_amount: int
    exacta: List[int]


# ---------------------------------------------------------------------------
# Race lifecycle
# ---------------------------------------------------------------------------

class StartRaceRequest(BaseModel):
    seed: int = Field(..., ge=0, le=MAX_SEED)


class OwnerUpdate(BaseModel):
    new_owner: str = Field(..., min_length=1, max_length=120)


class RaceOutcomeResponse(BaseModel):
    race_id: int
    rankings: List[int]
    finish_times: List[int]
    winning_exacta: List[int]
    total_pot: int
    seed_used: int


class RaceStatusResponse(BaseModel):
    race_id: int
    state: str
    total_pot: int
    wager_count: int
    owner: str
    current_seed: Optional[int] = None
    winners: Optional[List[int]] = None
