import csv
from collections import Counter
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, TextIO, Union
from pydantic import ValidationError
import structlog

from errors import (
    ErrorCode,
    LedgerError,
    MalformedRecordError,
    MissingAmountError,
    SourceUnavailableError,
    UnrecognizedOperationError,
)
from models import (
    Chargeback,
    Deposit,
    Dispute,
    OperationType,
    Resolve,
    Transaction,
    TransactionRecord,
    Withdrawal,
)

logger = structlog.get_logger()

# Column order of the transaction log is fixed
COLUMNS = ("type", "client", "tx", "amount")

_FUNDED_OPERATIONS = {
    OperationType.deposit: Deposit,
    OperationType.withdrawal: Withdrawal,
}

_REFERENCE_OPERATIONS = {
    OperationType.dispute: Dispute,
    OperationType.resolve: Resolve,
    OperationType.chargeback: Chargeback,
}


def parse_record(record: TransactionRecord) -> Transaction:
    """Interpret a raw record as one of the closed set of operations.

    Deposits and withdrawals must carry an amount; disputes, resolves and
    chargebacks ignore any amount present.
    """
    try:
        operation_type = OperationType(record.type)
    except ValueError:
        raise UnrecognizedOperationError(
            f"Unrecognized operation '{record.type}'",
            client=record.client,
            tx=record.tx,
        ) from None

    if operation_type in _FUNDED_OPERATIONS:
        if record.amount is None:
            raise MissingAmountError(
                f"Operation '{operation_type.value}' requires an amount",
                client=record.client,
                tx=record.tx,
            )
        operation = _FUNDED_OPERATIONS[operation_type](amount=record.amount)
    else:
        operation = _REFERENCE_OPERATIONS[operation_type]()

    return Transaction(id=record.tx, client=record.client, operation=operation)


class TransactionParser:
    """Turns raw rows into transactions, dropping the rows it cannot interpret.

    Rejections never end the stream; they are logged and counted per error
    code in ``rejected``.
    """

    def __init__(self, detailed_logging: bool = True):
        self.detailed_logging = detailed_logging
        self.rejected: Counter = Counter()

    def parse_row(self, row: Mapping[str, Optional[str]]) -> Transaction:
        try:
            record = TransactionRecord.model_validate(row)
        except ValidationError as e:
            raise MalformedRecordError(
                "Record could not be interpreted",
                fields=[".".join(str(part) for part in error["loc"]) for error in e.errors()],
            ) from e
        return parse_record(record)

    def parse(self, rows: Iterable[Mapping[str, Optional[str]]]) -> Iterator[Transaction]:
        for index, row in enumerate(rows, start=1):
            try:
                transaction = self.parse_row(row)
            except LedgerError as e:
                self.reject(e, row=index)
                continue
            yield transaction

    def reject(self, error: LedgerError, **location: Any) -> None:
        """Count and log a row that never became a transaction."""
        self.rejected[error.error_code] += 1
        log = logger.info if self.detailed_logging else logger.debug
        log(
            "Row rejected",
            **location,
            error_code=error.error_code.value,
            detail=error.detail,
            **error.context
        )

    @property
    def rejected_count(self) -> int:
        return sum(self.rejected.values())

    def rejections(self) -> Dict[ErrorCode, int]:
        return dict(self.rejected)


RowErrorHandler = Callable[[LedgerError], None]


def _log_row_error(error: LedgerError) -> None:
    logger.info("Row rejected", error_code=error.error_code.value, detail=error.detail, **error.context)


def read_rows(
    stream: TextIO,
    has_header: bool = True,
    on_error: Optional[RowErrorHandler] = None,
) -> Iterator[Dict[str, str]]:
    """Read CSV rows from ``stream`` as dicts keyed by column name.

    Cells are trimmed, a trailing amount column may be left out and blank
    lines are ignored. A row the CSV reader cannot split, such as one with an
    oversized cell, is handed to ``on_error`` as a ``MalformedRecordError``
    and reading carries on with the next line. I/O and decoding errors
    propagate.
    """
    on_error = on_error or _log_row_error
    reader = csv.reader(stream)
    while True:
        try:
            cells = next(reader)
        except StopIteration:
            return
        except csv.Error as e:
            on_error(MalformedRecordError(f"Row could not be read: {e}", line=reader.line_num))
            continue

        if has_header and reader.line_num == 1:
            continue
        cells = [cell.strip() for cell in cells]
        if not any(cells):
            continue
        yield dict(zip(COLUMNS, cells))


def iter_transaction_log(
    path: Union[str, Path],
    has_header: bool = True,
    on_error: Optional[RowErrorHandler] = None,
) -> Iterator[Dict[str, str]]:
    """Lazily read the rows of the transaction log stored at ``path``."""
    try:
        stream = open(path, newline="", encoding="utf-8")
    except OSError as e:
        raise SourceUnavailableError(
            f"Could not open transaction log {path}: {e.strerror}",
            path=str(path),
        ) from e

    with stream:
        try:
            yield from read_rows(stream, has_header=has_header, on_error=on_error)
        except (OSError, UnicodeDecodeError) as e:
            raise SourceUnavailableError(
                f"Could not read transaction log {path}: {e}",
                path=str(path),
            ) from e


def read_transactions(
    path: Union[str, Path],
    parser: Optional[TransactionParser] = None,
    has_header: bool = True,
) -> Iterator[Transaction]:
    """Lazily read the transactions of the log at ``path``.

    Rows that cannot be read or interpreted are counted on ``parser``.
    """
    parser = parser or TransactionParser()
    rows = iter_transaction_log(path, has_header=has_header, on_error=parser.reject)
    return parser.parse(rows)
