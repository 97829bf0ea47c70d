"""
Exception taxonomy for the race engine.

Every public engine operation either returns its result or raises
exactly one of these, leaving all state untouched.  ``code`` is a
stable identifier used in API error bodies.
"""

from typing import Optional


class RaceError(Exception):
    """Base class for every rejected engine operation."""

    code = "race_error"

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": str(self)}


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------

class NotOwnerError(RaceError):
    code = "not_owner"

    def __init__(self, caller: str, operation: str):
        super().__init__(f"{operation} requires the owner; called by {caller!r}")
        self.caller = caller
        self.operation = operation


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class LifecycleError(RaceError):
    """Operation invoked outside the state it requires."""

    code = "lifecycle"
    required: Optional[str] = None

    def __init__(self, actual: str, operation: str):
        super().__init__(
            f"{operation} requires race state {self.required}, current state is {actual}"
        )
        self.actual = actual
        self.operation = operation


class RaceNotAcceptingError(LifecycleError):
    code = "race_not_accepting"
    required = "accepting"


class RaceNotRunningError(LifecycleError):
    code = "race_not_running"
    required = "running"


class RaceNotFinishedError(LifecycleError):
    code = "race_not_finished"
    required = "finished"


class RaceNotClosedError(LifecycleError):
    code = "race_not_closed"
    required = "closed"


# ---------------------------------------------------------------------------
# Wager validation
# ---------------------------------------------------------------------------

class InvalidSelectionError(RaceError):
    code = "invalid_selection"


class InvalidParticipantError(InvalidSelectionError):
    code = "invalid_participant"

    def __init__(self, participant_id: int, num_participants: int):
        super().__init__(
            f"Participant id {participant_id} is out of range 0..{num_participants - 1}"
        )
        self.participant_id = participant_id


class SamePickError(InvalidSelectionError):
    code = "same_pick"

    def __init__(self, participant_id: int):
        super().__init__(f"First and second pick are both {participant_id}")
        self.participant_id = participant_id


class InvalidAmountError(RaceError):
    code = "invalid_amount"

    def __init__(self, amount: int, reason: str = "amount must be greater than 0"):
        super().__init__(f"Invalid amount {amount}: {reason}")
        self.amount = amount


# ---------------------------------------------------------------------------
# Funds
# ---------------------------------------------------------------------------

class InsufficientFundsError(RaceError):
    code = "insufficient_funds"

    def __init__(self, account: str, balance: int, required: int):
        super().__init__(
            f"Account {account!r} has {balance}, {required} required"
        )
        self.account = account
        self.balance = balance
        self.required = required
