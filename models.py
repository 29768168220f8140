from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import Optional
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Context, Decimal

ZERO = Decimal("0")

MAX_CLIENT_ID = 2**16 - 1
MAX_TRANSACTION_ID = 2**32 - 1

# Input amounts are bounded so sums over any number of records stay exact
# inside LEDGER_CONTEXT.
MAX_AMOUNT_DIGITS = 64
LEDGER_CONTEXT = Context(prec=128, rounding=ROUND_HALF_EVEN)


class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"


class Transaction(BaseModel):
    """One input record. Read, dispatched once, then discarded."""

    type: TransactionType = Field(..., description="Transaction type")
    client: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Client identifier")
    tx: int = Field(..., ge=0, le=MAX_TRANSACTION_ID, description="Transaction identifier")
    amount: Optional[Decimal] = Field(
        default=None,
        max_digits=MAX_AMOUNT_DIGITS,
        description="Used by deposits and withdrawals, ignored otherwise",
    )

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("amount", mode="before")
    @classmethod
    def blank_amount_is_missing(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
        return v

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        if v is not None and not v.is_finite():
            raise ValueError("Amount must be a finite decimal number")
        return v

    @property
    def value(self) -> Decimal:
        """The amount, or zero when the row has none."""
        return self.amount if self.amount is not None else ZERO


class Account(BaseModel):
    """Per-client balances. `available` is always derived, never stored."""

    held: Decimal = ZERO
    total: Decimal = ZERO
    locked: bool = False

    @property
    def available(self) -> Decimal:
        return LEDGER_CONTEXT.subtract(self.total, self.held)

    @classmethod
    def opened_with(cls, amount: Decimal) -> "Account":
        return cls(total=amount)


class CachedTx(BaseModel):
    """A deposit retained so later disputes can find it."""

    amount: Decimal
    client: int
    disputed: bool = False


class ProcessingStats(BaseModel):
    seen: int = 0
    applied: int = 0
    ignored: int = 0

    def record(self, applied: bool) -> None:
        self.seen += 1
        if applied:
            self.applied += 1
        else:
            self.ignored += 1


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    line: Optional[int] = Field(default=None, description="Offending input line, if known")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    batches_processed: int = Field(..., description="Number of CSV batches processed")
    last_batch: Optional[ProcessingStats] = Field(
        default=None, description="Counters for the most recent batch"
    )
