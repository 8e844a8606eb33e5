import pytest
from decimal import Decimal
from unittest.mock import patch

from errors import (
    AccountLockedError,
    DuplicateTransactionIdError,
    ErrorCode,
    SourceUnavailableError,
    TransactionNotFoundError,
)
from models import (
    Chargeback,
    Deposit,
    Dispute,
    ProcessingSummary,
    Resolve,
    Transaction,
    Withdrawal,
)
from repositories import InMemoryAccountRepository, InMemoryDepositRepository
from services import TransactionProcessor, get_transaction_processor, process_transactions


def deposit(tx, amount, client=1):
    return Transaction(id=tx, client=client, operation=Deposit(amount=Decimal(amount)))


def withdrawal(tx, amount, client=1):
    return Transaction(id=tx, client=client, operation=Withdrawal(amount=Decimal(amount)))


def dispute(tx, client=1):
    return Transaction(id=tx, client=client, operation=Dispute())


def resolve(tx, client=1):
    return Transaction(id=tx, client=client, operation=Resolve())


def chargeback(tx, client=1):
    return Transaction(id=tx, client=client, operation=Chargeback())


def balances(account):
    return (account.available, account.held, account.total, account.locked)


@pytest.fixture
def processor():
    return get_transaction_processor(InMemoryAccountRepository(), InMemoryDepositRepository())


class TestApply:
    """Test applying single transactions."""

    def test_deposits_and_withdrawal(self, processor):
        """Test balances after deposits and a withdrawal."""
        for transaction in (deposit(1, "1.0"), deposit(2, "2.0"), withdrawal(3, "1.2")):
            account = processor.apply(transaction)

        assert balances(account) == (Decimal("1.8"), 0, Decimal("1.8"), False)

    def test_dispute_takes_amount_from_deposit(self, processor):
        """Test that a dispute holds the recorded deposit amount."""
        processor.apply(deposit(1, "1.0"))
        processor.apply(deposit(33, "2.0"))

        account = processor.apply(dispute(33))

        assert account.available == Decimal("1.0")
        assert account.held == Decimal("2.0")
        assert account.active_disputes == {33: Decimal("2.0")}

    def test_duplicate_deposit_id_never_touches_balance(self, processor):
        """Test that a reused deposit id leaves the balance alone."""
        processor.apply(deposit(1, "1.0"))

        with pytest.raises(DuplicateTransactionIdError):
            processor.apply(deposit(1, "5.0"))

        account = processor.account_repo.get(1)
        assert account.available == Decimal("1.0")
        assert processor.deposit_repo.lookup(1) == Decimal("1.0")

    def test_duplicate_deposit_id_across_clients(self, processor):
        """Test that deposit ids are unique across clients."""
        processor.apply(deposit(1, "1.0", client=1))

        with pytest.raises(DuplicateTransactionIdError):
            processor.apply(deposit(1, "1.0", client=2))

        assert processor.account_repo.get(2).available == 0

    def test_dispute_of_unknown_transaction(self, processor):
        """Test disputing an id that was never deposited."""
        processor.apply(deposit(1, "1.0"))

        with pytest.raises(TransactionNotFoundError):
            processor.apply(dispute(66))

        account = processor.account_repo.get(1)
        assert balances(account) == (Decimal("1.0"), 0, Decimal("1.0"), False)
        assert account.active_disputes == {}

    def test_locked_account_does_not_claim_deposit_id(self, processor):
        """Test that a refused deposit leaves its id free."""
        processor.apply(deposit(1, "1.0"))
        processor.apply(dispute(1))
        processor.apply(chargeback(1))

        with pytest.raises(AccountLockedError):
            processor.apply(deposit(2, "1.0"))

        assert 2 not in processor.deposit_repo
        processor.apply(deposit(2, "1.0", client=2))
        assert processor.account_repo.get(2).available == Decimal("1.0")


class TestProcess:
    """Test applying transaction streams."""

    def test_multiple_disputes_scenario(self, processor):
        """Test disputes, a resolve and a chargeback over several batches."""
        transactions = [
            deposit(1, "1.0"),
            deposit(33, "1.2"),
            deposit(66, "1.0"),
            withdrawal(2, "0.2"),
            dispute(33),
            dispute(66),
        ]
        processor.process(transactions)
        account = processor.account_repo.get(1)
        assert balances(account) == (Decimal("0.8"), Decimal("2.2"), Decimal("3.0"), False)

        processor.process([resolve(66)])
        assert balances(account) == (Decimal("1.8"), Decimal("1.2"), Decimal("3.0"), False)

        processor.process([chargeback(33)])
        assert balances(account) == (Decimal("1.8"), 0, Decimal("1.8"), True)

        summary = processor.process([deposit(100, "1.0"), withdrawal(101, "0.1"), dispute(1)])
        assert balances(account) == (Decimal("1.8"), 0, Decimal("1.8"), True)
        assert summary.skipped_by_code == {ErrorCode.account_locked: 3}

    def test_failures_are_skipped_and_counted(self, processor):
        """Test that failed transactions are skipped and counted by code."""
        transactions = [
            deposit(1, "1.0"),
            deposit(1, "1.0"),
            withdrawal(2, "5.0"),
            dispute(9),
            resolve(1),
            dispute(1),
            dispute(1),
            deposit(3, "2.0", client=2),
        ]

        summary = processor.process(transactions)

        assert summary.processed == 8
        assert summary.applied == 3
        assert summary.skipped == 5
        assert summary.skipped_by_code == {
            ErrorCode.duplicate_transaction_id: 1,
            ErrorCode.insufficient_funds: 1,
            ErrorCode.transaction_not_found: 1,
            ErrorCode.dispute_not_found: 1,
            ErrorCode.duplicate_dispute: 1,
        }

    def test_invariants_hold_after_every_transaction(self, processor):
        """Test balance invariants after each transaction."""
        transactions = [
            deposit(1, "10.0"),
            deposit(2, "5.5", client=2),
            withdrawal(3, "2.25"),
            dispute(1),
            deposit(4, "3.0"),
            dispute(2),
            resolve(1),
            withdrawal(5, "100"),
            dispute(1),
            chargeback(1),
            resolve(1),
            deposit(6, "1.0"),
        ]

        for transaction in transactions:
            processor.process([transaction])
            for account in processor.account_repo.accounts():
                assert account.total == account.available + account.held
                assert account.held == sum(account.active_disputes.values(), Decimal("0"))
                assert account.available >= 0

    def test_fatal_errors_propagate(self, processor):
        """Test that fatal errors stop processing."""
        def transactions():
            yield deposit(1, "1.0")
            raise SourceUnavailableError("Could not read transaction log")

        with pytest.raises(SourceUnavailableError):
            processor.process(transactions())

        assert processor.account_repo.get(1).available == Decimal("1.0")

    def test_summary_is_extended(self, processor):
        """Test that an existing summary keeps its counts."""
        summary = ProcessingSummary()
        summary.add_rejections({ErrorCode.malformed_record: 2})

        processor.process([deposit(1, "1.0"), deposit(1, "1.0")], summary)

        assert summary.rejected == 2
        assert summary.processed == 2
        assert summary.skipped_by_code == {
            ErrorCode.malformed_record: 2,
            ErrorCode.duplicate_transaction_id: 1,
        }

    @patch('services.logger')
    def test_skipped_transactions_are_logged(self, mock_logger, processor):
        """Test logging of skipped transactions."""
        processor.process([withdrawal(1, "1.0")])

        mock_logger.info.assert_any_call(
            "Transaction skipped",
            tx=1,
            client=1,
            operation="withdrawal",
            error_code="INSUFFICIENT_FUNDS",
            detail="Insufficient funds",
        )

    @patch('services.logger')
    def test_quiet_processor_logs_skips_at_debug(self, mock_logger):
        """Test that skips are logged at debug without detailed logging."""
        processor = TransactionProcessor(
            InMemoryAccountRepository(),
            InMemoryDepositRepository(),
            detailed_logging=False,
        )

        processor.process([withdrawal(1, "1.0")])

        mock_logger.debug.assert_called()


class TestProcessTransactions:
    """Test the one-shot processing helper."""

    def test_returns_accounts_of_the_run(self):
        """Test that the run's accounts are returned."""
        accounts = process_transactions([
            deposit(1, "1.0", client=2),
            deposit(2, "2.0", client=1),
            withdrawal(3, "0.5", client=2),
        ])

        snapshots = accounts.snapshot()
        assert [s.client for s in snapshots] == [1, 2]
        assert snapshots[0].available == Decimal("2.0")
        assert snapshots[1].available == Decimal("0.5")

    def test_runs_are_independent(self):
        """Test that separate runs share no state."""
        first = process_transactions([deposit(1, "1.0")])
        second = process_transactions([deposit(1, "1.0")])

        assert first.get(1).available == Decimal("1.0")
        assert second.get(1).available == Decimal("1.0")

    def test_uses_given_repositories(self):
        """Test that supplied repositories are used."""
        deposits = InMemoryDepositRepository()

        process_transactions([deposit(7, "1.0")], deposit_repo=deposits)

        assert deposits.lookup(7) == Decimal("1.0")
