from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class PoolCreationEvent:
    token_mint: str
    raw_log_lines: tuple[str, ...]
    signature: str = ""


class RiskReason(str, enum.Enum):
    ACCEPTED = "accepted"
    MINT_AUTHORITY = "mint_authority_present"
    FREEZE_AUTHORITY = "freeze_authority_present"
    LOW_SUPPLY = "supply_below_threshold"
    ACCOUNT_MISSING = "account_missing"
    NOT_A_MINT = "not_a_mint"
    FETCH_FAILED = "fetch_failed"
    MALFORMED = "malformed_response"


@dataclass(frozen=True)
class RiskVerdict:
    accepted: bool
    reason: RiskReason
    decimals: int | None = None


@dataclass(eq=False)
class SwapQuoteRoute:
    input_mint: str
    output_mint: str
    in_amount: int
    expected_out_amount: int
    descriptor: dict[str, Any]
    # Set by SwapExecutor; a route is spent after one execution attempt
    consumed: bool = field(default=False, repr=False)


@dataclass(frozen=True)
class SwapResult:
    signature: str
    realized_out_amount: int


class TxStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    # Not seen on chain and past its last valid block height
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class PositionState(str, enum.Enum):
    OPEN = "open"
    ENTERING = "entering"
    HOLDING = "holding"
    EXITING = "exiting"
    CLOSED = "closed"
    ABANDONED = "abandoned"

    @property
    def terminal(self) -> bool:
        return self in (PositionState.CLOSED, PositionState.ABANDONED)


ALLOWED_TRANSITIONS: dict[PositionState, frozenset[PositionState]] = {
    PositionState.OPEN: frozenset({PositionState.ENTERING}),
    PositionState.ENTERING: frozenset({PositionState.HOLDING, PositionState.ABANDONED}),
    PositionState.HOLDING: frozenset({PositionState.EXITING}),
    PositionState.EXITING: frozenset({PositionState.HOLDING, PositionState.CLOSED}),
    PositionState.CLOSED: frozenset(),
    PositionState.ABANDONED: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class Position:
    token_mint: str
    state: PositionState = PositionState.OPEN
    entry_amount_in: int = 0
    entry_amount_out: int = 0
    entry_signature: str | None = None
    exit_amount_out: int | None = None
    exit_signature: str | None = None
    profit: int | None = None
    failed_exit_attempts: int = 0
    opened_at: datetime | None = None
    closed_at: datetime | None = None
    record_id: int | None = None

    @property
    def entry_price(self) -> float:
        if not self.entry_amount_out:
            return 0.0
        return self.entry_amount_in / self.entry_amount_out

    @property
    def active(self) -> bool:
        return not self.state.terminal

    def transition(self, new_state: PositionState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.token_mint}: {self.state.value} -> {new_state.value}")
        self.state = new_state
