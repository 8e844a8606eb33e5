from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional
from decimal import Decimal

from account import Account
from errors import DuplicateTransactionIdError, TransactionNotFoundError
from models import AccountSnapshot


class AccountRepository(ABC):
    @abstractmethod
    def get_or_create(self, client_id: int) -> Account:
        """Get the client's account, opening an empty unlocked one if needed."""
        pass

    @abstractmethod
    def get(self, client_id: int) -> Optional[Account]:
        """Get the client's account. Returns None if it was never opened."""
        pass

    @abstractmethod
    def accounts(self) -> Iterator[Account]:
        """Iterate over all accounts in ascending client id order."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of accounts."""
        pass

    def snapshot(self) -> List[AccountSnapshot]:
        return [account.snapshot() for account in self.accounts()]


class DepositRepository(ABC):
    @abstractmethod
    def record(self, tx_id: int, amount: Decimal) -> None:
        """Record an accepted deposit. Raises DuplicateTransactionIdError if tx_id is taken."""
        pass

    @abstractmethod
    def lookup(self, tx_id: int) -> Decimal:
        """Get a deposit's amount. Raises TransactionNotFoundError if absent."""
        pass

    @abstractmethod
    def __contains__(self, tx_id: int) -> bool:
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of recorded deposits."""
        pass


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self._accounts: Dict[int, Account] = {}

    def get_or_create(self, client_id: int) -> Account:
        account = self._accounts.get(client_id)
        if account is None:
            account = self._accounts[client_id] = Account(client_id)
        return account

    def get(self, client_id: int) -> Optional[Account]:
        return self._accounts.get(client_id)

    def accounts(self) -> Iterator[Account]:
        for client_id in sorted(self._accounts):
            yield self._accounts[client_id]

    def count(self) -> int:
        return len(self._accounts)


class InMemoryDepositRepository(DepositRepository):
    def __init__(self):
        self._deposits: Dict[int, Decimal] = {}

    def record(self, tx_id: int, amount: Decimal) -> None:
        if tx_id in self._deposits:
            raise DuplicateTransactionIdError(f"Transaction {tx_id} was already deposited", tx=tx_id)
        self._deposits[tx_id] = amount

    def lookup(self, tx_id: int) -> Decimal:
        try:
            return self._deposits[tx_id]
        except KeyError:
            raise TransactionNotFoundError(f"No deposit with transaction {tx_id}", tx=tx_id) from None

    def __contains__(self, tx_id: int) -> bool:
        return tx_id in self._deposits

    def count(self) -> int:
        return len(self._deposits)


# Each call opens a new run: repositories are never shared between runs
def get_account_repository() -> AccountRepository:
    return InMemoryAccountRepository()


def get_deposit_repository() -> DepositRepository:
    return InMemoryDepositRepository()
