from typing import Iterable, Optional
import structlog

from account import Account
from errors import LedgerError
from models import Chargeback, Deposit, Dispute, ProcessingSummary, Resolve, Transaction, Withdrawal
from repositories import (
    AccountRepository,
    DepositRepository,
    InMemoryAccountRepository,
    InMemoryDepositRepository,
)

# Configure structured logging
logger = structlog.get_logger()


class TransactionProcessor:
    """Applies transactions, in arrival order, to one run's accounts.

    The processor is the single writer of its account and deposit
    repositories; callers that share a processor between threads or tasks
    must serialize calls to ``apply``/``process`` themselves.
    """

    def __init__(
        self,
        account_repo: AccountRepository,
        deposit_repo: DepositRepository,
        detailed_logging: bool = True,
    ):
        self.account_repo = account_repo
        self.deposit_repo = deposit_repo
        self.detailed_logging = detailed_logging

    def apply(self, transaction: Transaction) -> Account:
        """Apply a single transaction. Raises LedgerError if it cannot be applied."""
        account = self.account_repo.get_or_create(transaction.client)
        operation = transaction.operation

        if isinstance(operation, Deposit):
            # A locked account must not claim the transaction id
            account.ensure_active()
            self.deposit_repo.record(transaction.id, operation.amount)
            account.deposit(operation.amount)
        elif isinstance(operation, Withdrawal):
            account.withdraw(operation.amount)
        elif isinstance(operation, Dispute):
            amount = self.deposit_repo.lookup(transaction.id)
            account.dispute(transaction.id, amount)
        elif isinstance(operation, Resolve):
            account.resolve(transaction.id)
        elif isinstance(operation, Chargeback):
            account.chargeback(transaction.id)
        else:
            raise TypeError(f"Unsupported operation {operation!r}")

        return account

    def process(
        self,
        transactions: Iterable[Transaction],
        summary: Optional[ProcessingSummary] = None,
    ) -> ProcessingSummary:
        """Apply every transaction, discarding the ones that fail.

        Row-level errors are logged and counted; fatal errors, such as a
        transaction source that can no longer be read, propagate.
        """
        summary = summary or ProcessingSummary()

        for transaction in transactions:
            try:
                self.apply(transaction)
            except LedgerError as e:
                if e.fatal:
                    raise
                summary.record_skipped(e.error_code)
                self._log_skipped(transaction, e)
                continue
            summary.record_applied()

        logger.info(
            "Transactions processed",
            processed=summary.processed,
            applied=summary.applied,
            skipped=summary.skipped,
            accounts=self.account_repo.count(),
        )
        return summary

    def _log_skipped(self, transaction: Transaction, error: LedgerError) -> None:
        log = logger.info if self.detailed_logging else logger.debug
        log(
            "Transaction skipped",
            tx=transaction.id,
            client=transaction.client,
            operation=transaction.operation.kind,
            error_code=error.error_code.value,
            detail=error.detail,
        )


def process_transactions(
    transactions: Iterable[Transaction],
    account_repo: Optional[AccountRepository] = None,
    deposit_repo: Optional[DepositRepository] = None,
) -> AccountRepository:
    """Run a whole transaction sequence and return the resulting accounts."""
    account_repo = account_repo if account_repo is not None else InMemoryAccountRepository()
    deposit_repo = deposit_repo if deposit_repo is not None else InMemoryDepositRepository()
    TransactionProcessor(account_repo, deposit_repo).process(transactions)
    return account_repo


# Factory function for dependency injection
def get_transaction_processor(
    account_repo: AccountRepository,
    deposit_repo: DepositRepository,
    detailed_logging: bool = True,
) -> TransactionProcessor:
    return TransactionProcessor(account_repo, deposit_repo, detailed_logging=detailed_logging)
