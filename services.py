import math
from typing import Iterable, List, Optional
import structlog

from exceptions import (
    AccountLockedError,
    AmountOverflowError,
    DuplicateTransactionError,
    InsufficientFundsError,
    InvalidAmountError,
    LedgerError,
    NotDisputedError,
    UnknownClientError,
    UnknownTransactionError,
)
from models import Account, AccountSnapshot, HistoryEntry, ReplayStats, TransactionRecord, TransactionType
from repositories import AccountRepository, TransactionHistoryRepository

# Configure structured logging
logger = structlog.get_logger()


class LedgerService:
    """Applies transaction records to client accounts.

    Every call to ``apply`` either mutates state as the record kind dictates
    or raises a ``LedgerError`` subclass. The ledger never recovers from a
    rejected record on its own; the caller decides whether to stop or skip.
    """

    def __init__(self, account_repo: AccountRepository, history_repo: TransactionHistoryRepository):
        self.account_repo = account_repo
        self.history_repo = history_repo
        self._handlers = {
            TransactionType.deposit: self._process_deposit,
            TransactionType.withdrawal: self._process_withdrawal,
            TransactionType.dispute: self._process_dispute,
            TransactionType.resolve: self._process_resolve,
            TransactionType.chargeback: self._process_chargeback,
        }

    def apply(self, record: TransactionRecord) -> None:
        """Apply a single transaction record."""

        # Accounts exist from their first reference, even when the record is rejected
        self.account_repo.get_or_create(record.client)

        logger.debug(
            "Processing transaction",
            type=record.type.value,
            client=record.client,
            tx=record.tx,
            amount=record.amount
        )

        self._handlers[record.type](record)

    def replay(self, records: Iterable[TransactionRecord], skip_rejected: bool = False) -> ReplayStats:
        """Apply records strictly in order.

        With ``skip_rejected`` a refused record is logged and counted instead of
        aborting the run. Errors raised by ``records`` itself always propagate.
        """
        stats = ReplayStats()

        for record in records:
            try:
                self.apply(record)
            except LedgerError as e:
                if not skip_rejected:
                    raise
                stats.rejected += 1
                logger.warning(
                    "Transaction rejected",
                    type=record.type.value,
                    client=record.client,
                    tx=record.tx,
                    error_code=e.error_code,
                    error=str(e)
                )
                continue
            stats.applied += 1

        logger.info(
            "Replay finished",
            applied=stats.applied,
            rejected=stats.rejected,
            accounts=self.account_repo.count()
        )
        return stats

    def export(self) -> List[AccountSnapshot]:
        """Snapshot of every known account, in first-reference order."""
        return [AccountSnapshot.from_account(client, account) for client, account in self.account_repo.all()]

    def get_account(self, client: int) -> Optional[AccountSnapshot]:
        account = self.account_repo.get(client)
        if account is None:
            return None
        return AccountSnapshot.from_account(client, account)

    def _get_account(self, client: int) -> Account:
        account = self.account_repo.get(client)
        if account is None:
            raise UnknownClientError(client)
        return account

    def _get_history_entry(self, tx: int) -> HistoryEntry:
        entry = self.history_repo.get(tx)
        if entry is None:
            logger.warning("Transaction not found", tx=tx)
            raise UnknownTransactionError(tx)
        return entry

    def _validated_amount(self, record: TransactionRecord) -> float:
        amount = record.amount
        # NaN compares false against zero
        if amount is None or not math.isfinite(amount) or amount <= 0:
            raise InvalidAmountError(record.tx, amount)
        return amount

    def _check_funds_movement(self, record: TransactionRecord) -> float:
        """Checks shared by deposits and withdrawals, in rejection order."""
        if self.history_repo.contains(record.tx):
            logger.warning("Duplicate transaction", client=record.client, tx=record.tx)
            raise DuplicateTransactionError(record.tx)

        amount = self._validated_amount(record)

        if self._get_account(record.client).locked:
            logger.warning("Account locked", client=record.client, tx=record.tx)
            raise AccountLockedError(record.client)

        return amount

    def _process_deposit(self, record: TransactionRecord) -> None:
        amount = self._check_funds_movement(record)
        account = self._get_account(record.client)

        old_available = account.available
        old_total = account.total

        account.available += amount
        account.total += amount

        # An absorbed addition leaves the mutated account as it is
        if account.available == old_available or account.total == old_total:
            logger.error(
                "Deposit absorbed by account amount range",
                client=record.client,
                tx=record.tx,
                amount=amount,
                available=account.available
            )
            raise AmountOverflowError(record.client, record.tx)

        self.history_repo.store(record)

    def _process_withdrawal(self, record: TransactionRecord) -> None:
        amount = self._check_funds_movement(record)
        account = self._get_account(record.client)

        if amount > account.available:
            logger.warning(
                "Insufficient funds for withdrawal",
                client=record.client,
                tx=record.tx,
                available=account.available,
                requested_amount=amount
            )
            raise InsufficientFundsError(record.client, amount, account.available)

        account.available -= amount
        account.total -= amount

        self.history_repo.store(record)

    def _process_dispute(self, record: TransactionRecord) -> None:
        entry = self._get_history_entry(record.tx)
        account = self._get_account(record.client)

        account.available -= entry.amount
        account.held += entry.amount
        entry.under_dispute = True

    def _process_resolve(self, record: TransactionRecord) -> None:
        entry = self._get_disputed_entry(record.tx)
        account = self._get_account(record.client)

        account.held -= entry.amount
        account.available += entry.amount
        entry.under_dispute = False

    def _process_chargeback(self, record: TransactionRecord) -> None:
        entry = self._get_disputed_entry(record.tx)
        account = self._get_account(record.client)

        account.held -= entry.amount
        account.total -= entry.amount
        account.locked = True
        entry.under_dispute = False

        logger.info("Account locked after chargeback", client=record.client, tx=record.tx)

    def _get_disputed_entry(self, tx: int) -> HistoryEntry:
        entry = self._get_history_entry(tx)
        if not entry.under_dispute:
            logger.warning("Transaction is not under dispute", tx=tx)
            raise NotDisputedError(tx)
        return entry


# Factory function for dependency injection
def get_ledger_service(
    account_repo: AccountRepository,
    history_repo: TransactionHistoryRepository
) -> LedgerService:
    return LedgerService(account_repo, history_repo)
