from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from enum import Enum
from typing import Annotated, Dict, List, Literal, Mapping, Optional, Union
from datetime import datetime
from decimal import Decimal

from errors import ErrorCode


ClientId = Annotated[int, Field(ge=0, le=2**16 - 1)]
TransactionId = Annotated[int, Field(ge=0, le=2**32 - 1)]
# At most 14 integer digits and 4 decimals
Money = Annotated[Decimal, Field(ge=0, max_digits=18, decimal_places=4)]


class OperationType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"


class TransactionRecord(BaseModel):
    """A row of the transaction log as read, before its operation is interpreted."""

    model_config = ConfigDict(str_strip_whitespace=True)

    type: str = Field(..., description="Operation name")
    client: ClientId = Field(..., description="Client identifier")
    tx: TransactionId = Field(..., description="Transaction identifier")
    amount: Optional[Money] = Field(None, description="Amount, only meaningful for deposits and withdrawals")

    @field_validator('client', 'tx', 'amount', mode='before')
    @classmethod
    def blank_cell_is_absent(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if not v:
                return None
        return v


class Deposit(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["deposit"] = "deposit"
    amount: Money


class Withdrawal(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["withdrawal"] = "withdrawal"
    amount: Money


class Dispute(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["dispute"] = "dispute"


class Resolve(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["resolve"] = "resolve"


class Chargeback(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["chargeback"] = "chargeback"


Operation = Annotated[
    Union[Deposit, Withdrawal, Dispute, Resolve, Chargeback],
    Field(discriminator="kind"),
]


class Transaction(BaseModel):
    """A validated, immutable ledger transaction."""

    model_config = ConfigDict(frozen=True)

    id: TransactionId = Field(..., description="Transaction identifier, unique across clients")
    client: ClientId = Field(..., description="Client the transaction applies to")
    operation: Operation


class AccountSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    client: ClientId = Field(..., description="Client identifier")
    available: Decimal = Field(..., description="Funds available for withdrawal")
    held: Decimal = Field(..., description="Funds held by open disputes")
    total: Decimal = Field(..., description="available + held")
    locked: bool = Field(..., description="Whether a chargeback locked the account")

    @field_serializer('available', 'held', 'total', when_used='json')
    def serialize_money(self, value: Decimal) -> str:
        return str(value)


class ProcessingSummary(BaseModel):
    processed: int = Field(0, description="Transactions handed to the processor")
    applied: int = Field(0, description="Transactions applied to an account")
    skipped: int = Field(0, description="Transactions discarded by the processor")
    rejected: int = Field(0, description="Rows dropped by the parser")
    skipped_by_code: Dict[ErrorCode, int] = Field(default_factory=dict)

    def record_applied(self) -> None:
        self.processed += 1
        self.applied += 1

    def record_skipped(self, error_code: ErrorCode) -> None:
        self.processed += 1
        self.skipped += 1
        self._count(error_code, 1)

    def add_rejections(self, rejections: Mapping[ErrorCode, int]) -> None:
        for error_code, count in rejections.items():
            self.rejected += count
            self._count(error_code, count)

    def _count(self, error_code: ErrorCode, count: int) -> None:
        self.skipped_by_code[error_code] = self.skipped_by_code.get(error_code, 0) + count


class LedgerResponse(BaseModel):
    accounts: List[AccountSnapshot] = Field(..., description="Final account states, ordered by client id")
    summary: ProcessingSummary


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(default_factory=datetime.now)
