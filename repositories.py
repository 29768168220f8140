from abc import ABC, abstractmethod
from typing import Dict, Iterator, Optional, Tuple

from models import Account, CachedTx


class AccountRepository(ABC):
    @abstractmethod
    def get(self, client: int) -> Optional[Account]:
        """Get the live account for a client. Returns None if it doesn't exist."""
        pass

    @abstractmethod
    def add(self, client: int, account: Account) -> None:
        """Insert or overwrite the account for a client."""
        pass

    @abstractmethod
    def items(self) -> Iterator[Tuple[int, Account]]:
        """Iterate over all (client, account) pairs."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of accounts."""
        pass

    def __contains__(self, client: int) -> bool:
        return self.get(client) is not None


class TransactionCache(ABC):
    @abstractmethod
    def get(self, tx: int) -> Optional[CachedTx]:
        """Get the live cached deposit. Returns None if it was never accepted."""
        pass

    @abstractmethod
    def add(self, tx: int, cached: CachedTx) -> None:
        """Insert or overwrite a cached deposit."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of cached deposits."""
        pass

    def __contains__(self, tx: int) -> bool:
        return self.get(tx) is not None


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self.accounts: Dict[int, Account] = {}

    def get(self, client: int) -> Optional[Account]:
        return self.accounts.get(client)

    def add(self, client: int, account: Account) -> None:
        self.accounts[client] = account

    def items(self) -> Iterator[Tuple[int, Account]]:
        return iter(self.accounts.items())

    def count(self) -> int:
        return len(self.accounts)

    def __contains__(self, client: int) -> bool:
        return client in self.accounts


class InMemoryTransactionCache(TransactionCache):
    def __init__(self):
        self.store: Dict[int, CachedTx] = {}

    def get(self, tx: int) -> Optional[CachedTx]:
        return self.store.get(tx)

    def add(self, tx: int, cached: CachedTx) -> None:
        self.store[tx] = cached

    def count(self) -> int:
        return len(self.store)

    def __contains__(self, tx: int) -> bool:
        return tx in self.store


# Fresh stores per run; nothing is shared between runs.
def get_account_repository() -> AccountRepository:
    return InMemoryAccountRepository()


def get_transaction_cache() -> TransactionCache:
    return InMemoryTransactionCache()
