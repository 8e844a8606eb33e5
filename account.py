from decimal import Decimal
from enum import Enum
from typing import Dict
import structlog

from errors import (
    AccountLockedError,
    DisputeNotFoundError,
    DuplicateDisputeError,
    InsufficientFundsError,
)
from models import AccountSnapshot

logger = structlog.get_logger()


class AccountStatus(str, Enum):
    active = "active"
    locked = "locked"


class Account:
    """Balances of a single client.

    ``held`` always equals the sum of ``active_disputes`` and ``total`` is
    derived, so ``total == available + held`` holds at every observation
    point. A chargeback moves the account to the terminal locked state, after
    which every operation raises ``AccountLockedError``.

    Each operation checks all of its preconditions before touching any field.
    """

    def __init__(self, client: int):
        self.client = client
        self.available = Decimal("0")
        self.held = Decimal("0")
        self.locked = False
        self.active_disputes: Dict[int, Decimal] = {}

    @property
    def total(self) -> Decimal:
        return self.available + self.held

    @property
    def status(self) -> AccountStatus:
        return AccountStatus.locked if self.locked else AccountStatus.active

    def deposit(self, amount: Decimal) -> None:
        self.ensure_active()
        self.available += amount

        logger.debug("Deposit applied", client=self.client, amount=str(amount), available=str(self.available))

    def withdraw(self, amount: Decimal) -> None:
        self.ensure_active()
        self._ensure_available(amount)
        self.available -= amount

        logger.debug("Withdrawal applied", client=self.client, amount=str(amount), available=str(self.available))

    def dispute(self, tx_id: int, amount: Decimal) -> None:
        """Hold ``amount`` of available funds against deposit ``tx_id``."""
        self.ensure_active()
        if tx_id in self.active_disputes:
            raise DuplicateDisputeError(
                f"Transaction {tx_id} is already under dispute",
                client=self.client,
                tx=tx_id,
            )
        self._ensure_available(amount)

        self.available -= amount
        self.held += amount
        self.active_disputes[tx_id] = amount

        logger.debug(
            "Dispute opened",
            client=self.client,
            tx=tx_id,
            amount=str(amount),
            available=str(self.available),
            held=str(self.held),
        )

    def resolve(self, tx_id: int) -> None:
        """Release a disputed hold back into available funds."""
        self.ensure_active()
        amount = self._close_dispute(tx_id)
        self.available += amount
        self.held -= amount

        logger.debug("Dispute resolved", client=self.client, tx=tx_id, amount=str(amount))

    def chargeback(self, tx_id: int) -> None:
        """Remove disputed funds for good and lock the account."""
        self.ensure_active()
        amount = self._close_dispute(tx_id)
        self.held -= amount
        self.locked = True

        logger.info("Account locked by chargeback", client=self.client, tx=tx_id, amount=str(amount))

    def snapshot(self) -> AccountSnapshot:
        return AccountSnapshot(
            client=self.client,
            available=self.available,
            held=self.held,
            total=self.total,
            locked=self.locked,
        )

    def _close_dispute(self, tx_id: int) -> Decimal:
        try:
            return self.active_disputes.pop(tx_id)
        except KeyError:
            raise DisputeNotFoundError(
                f"No open dispute for transaction {tx_id}",
                client=self.client,
                tx=tx_id,
            ) from None

    def ensure_active(self) -> None:
        if self.locked:
            raise AccountLockedError(f"Account {self.client} is locked", client=self.client)

    def _ensure_available(self, amount: Decimal) -> None:
        if self.available < amount:
            raise InsufficientFundsError(
                "Insufficient funds",
                client=self.client,
                requested=str(amount),
                available=str(self.available),
            )

    def __repr__(self) -> str:
        return (
            f"Account(client={self.client}, available={self.available}, "
            f"held={self.held}, locked={self.locked})"
        )
