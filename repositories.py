from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from models import Account, HistoryEntry, TransactionRecord


class AccountRepository(ABC):
    @abstractmethod
    def get_or_create(self, client: int) -> Account:
        """Get the client's account, creating a zeroed one on first reference."""
        pass

    @abstractmethod
    def get(self, client: int) -> Optional[Account]:
        """Get account. Returns None if the client was never referenced."""
        pass

    @abstractmethod
    def all(self) -> List[Tuple[int, Account]]:
        """All accounts as (client, account) pairs, in first-reference order."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of accounts."""
        pass


class TransactionHistoryRepository(ABC):
    @abstractmethod
    def get(self, tx: int) -> Optional[HistoryEntry]:
        """Get stored deposit/withdrawal by transaction id."""
        pass

    @abstractmethod
    def contains(self, tx: int) -> bool:
        pass

    @abstractmethod
    def store(self, record: TransactionRecord) -> HistoryEntry:
        """Store an applied deposit/withdrawal. Existing ids are never overwritten."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of stored transactions."""
        pass


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self.accounts: Dict[int, Account] = {}

    def get_or_create(self, client: int) -> Account:
        account = self.accounts.get(client)
        if account is None:
            account = Account()
            self.accounts[client] = account
        return account

    def get(self, client: int) -> Optional[Account]:
        return self.accounts.get(client)

    def all(self) -> List[Tuple[int, Account]]:
        return list(self.accounts.items())

    def count(self) -> int:
        return len(self.accounts)


class InMemoryTransactionHistoryRepository(TransactionHistoryRepository):
    def __init__(self):
        self.entries: Dict[int, HistoryEntry] = {}

    def get(self, tx: int) -> Optional[HistoryEntry]:
        return self.entries.get(tx)

    def contains(self, tx: int) -> bool:
        return tx in self.entries

    def store(self, record: TransactionRecord) -> HistoryEntry:
        if record.tx in self.entries:
            raise ValueError(f"Transaction {record.tx} is already stored")
        entry = HistoryEntry(record=record)
        self.entries[record.tx] = entry
        return entry

    def count(self) -> int:
        return len(self.entries)


def get_account_repository() -> AccountRepository:
    return InMemoryAccountRepository()


def get_transaction_history_repository() -> TransactionHistoryRepository:
    return InMemoryTransactionHistoryRepository()
