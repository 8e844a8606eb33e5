from enum import Enum
from typing import Any, Dict


class ErrorCode(str, Enum):
    unrecognized_operation = "UNRECOGNIZED_OPERATION"
    missing_amount = "MISSING_AMOUNT"
    malformed_record = "MALFORMED_RECORD"
    duplicate_transaction_id = "DUPLICATE_TRANSACTION_ID"
    transaction_not_found = "TRANSACTION_NOT_FOUND"
    account_locked = "ACCOUNT_LOCKED"
    insufficient_funds = "INSUFFICIENT_FUNDS"
    duplicate_dispute = "DUPLICATE_DISPUTE"
    dispute_not_found = "DISPUTE_NOT_FOUND"
    source_unavailable = "SOURCE_UNAVAILABLE"


class LedgerError(Exception):
    """Base class for every error raised by the ledger.

    Row-level errors are skippable: the offending transaction is discarded and
    the run continues. Fatal errors abort the run.
    """

    error_code: ErrorCode
    fatal: bool = False

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context: Dict[str, Any] = context

    def __str__(self) -> str:
        return f"{self.error_code.value}: {self.detail}"


class UnrecognizedOperationError(LedgerError):
    error_code = ErrorCode.unrecognized_operation


class MissingAmountError(LedgerError):
    error_code = ErrorCode.missing_amount


class MalformedRecordError(LedgerError):
    error_code = ErrorCode.malformed_record


class DuplicateTransactionIdError(LedgerError):
    error_code = ErrorCode.duplicate_transaction_id


class TransactionNotFoundError(LedgerError):
    error_code = ErrorCode.transaction_not_found


class AccountLockedError(LedgerError):
    error_code = ErrorCode.account_locked


class InsufficientFundsError(LedgerError):
    error_code = ErrorCode.insufficient_funds


class DuplicateDisputeError(LedgerError):
    error_code = ErrorCode.duplicate_dispute


class DisputeNotFoundError(LedgerError):
    error_code = ErrorCode.dispute_not_found


class SourceUnavailableError(LedgerError):
    """The transaction log could not be opened or read."""

    error_code = ErrorCode.source_unavailable
    fatal = True
