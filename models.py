from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum
from typing import Optional
from datetime import datetime


MAX_CLIENT_ID = 2**16 - 1
MAX_TX_ID = 2**32 - 1


class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"


class TransactionRecord(BaseModel):
    """One input event, immutable once parsed."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    type: TransactionType = Field(..., description="Transaction kind")
    client: int = Field(..., ge=0, le=MAX_CLIENT_ID, description="Client identifier (one account per client)")
    tx: int = Field(..., ge=0, le=MAX_TX_ID, description="Globally unique transaction identifier")
    amount: Optional[float] = Field(
        None,
        description="Funds moved; only meaningful for deposits and withdrawals"
    )

    @field_validator('type', mode='before')
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def empty_amount_is_absent(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Account(BaseModel):
    available: float = 0.0
    held: float = 0.0
    total: float = 0.0
    locked: bool = False


class HistoryEntry(BaseModel):
    """A stored deposit or withdrawal, kept to service later dispute lookups."""

    record: TransactionRecord
    under_dispute: bool = False

    @property
    def amount(self) -> float:
        if self.record.amount is None:
            return 0.0
        return self.record.amount


class AccountSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    client: int
    available: float
    held: float
    total: float
    locked: bool

    @classmethod
    def from_account(cls, client: int, account: Account) -> "AccountSnapshot":
        return cls(
            client=client,
            available=account.available,
            held=account.held,
            total=account.total,
            locked=account.locked
        )


class ReplayStats(BaseModel):
    applied: int = Field(0, description="Records applied to the ledger")
    rejected: int = Field(0, description="Records refused by the ledger and skipped")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    line: Optional[int] = Field(None, description="Input line of a malformed record")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(default_factory=datetime.now)
