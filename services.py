from decimal import localcontext
from typing import Iterable, Optional, TextIO, Tuple

import structlog

from config import Settings, get_settings
from csv_io import read_transactions, write_accounts
from models import LEDGER_CONTEXT, Account, CachedTx, ProcessingStats, Transaction, TransactionType
from repositories import (
    AccountRepository,
    TransactionCache,
    get_account_repository,
    get_transaction_cache,
)

logger = structlog.get_logger()


class TransactionProcessor:
    """Apply transactions, one at a time and in order, to an account store.

    Business-rule violations never raise. A rejected record is logged at
    debug level and leaves both stores untouched.
    """

    def __init__(self, accounts: AccountRepository, tx_cache: TransactionCache):
        self.accounts = accounts
        self.tx_cache = tx_cache
        self.stats = ProcessingStats()
        self._handlers = {
            TransactionType.deposit: self._handle_deposit,
            TransactionType.withdrawal: self._handle_withdrawal,
            TransactionType.dispute: self._handle_dispute,
            TransactionType.resolve: self._handle_resolve,
            TransactionType.chargeback: self._handle_chargeback,
        }

    def process(self, transaction: Transaction) -> bool:
        """Apply one transaction. Returns False if it was ignored."""
        logger.debug(
            "Processing transaction",
            type=transaction.type.value,
            client=transaction.client,
            tx=transaction.tx,
            amount=str(transaction.amount) if transaction.amount is not None else None,
        )

        account = self.accounts.get(transaction.client)
        if account is not None and account.locked:
            logger.debug(
                "Ignoring transaction on locked account",
                client=transaction.client,
                tx=transaction.tx,
            )
            applied = False
        else:
            with localcontext(LEDGER_CONTEXT):
                applied = self._handlers[transaction.type](transaction)

        self.stats.record(applied)
        return applied

    def process_all(self, transactions: Iterable[Transaction]) -> ProcessingStats:
        for transaction in transactions:
            self.process(transaction)
        return self.stats

    def _handle_deposit(self, transaction: Transaction) -> bool:
        """Credit the client, opening the account on first deposit.

        This is the only place accounts are created. A repeated tx id is
        ignored even if the amount differs.
        """
        if transaction.tx in self.tx_cache:
            logger.debug("Ignoring duplicate deposit", client=transaction.client, tx=transaction.tx)
            return False

        amount = transaction.value
        account = self.accounts.get(transaction.client)
        if account is None:
            logger.debug("New client", client=transaction.client)
            self.accounts.add(transaction.client, Account.opened_with(amount))
        else:
            account.total += amount

        self.tx_cache.add(transaction.tx, CachedTx(amount=amount, client=transaction.client))
        return True

    def _handle_withdrawal(self, transaction: Transaction) -> bool:
        """Debit the client if enough funds are available.

        Withdrawals are never cached, so they can never be disputed.
        """
        account = self.accounts.get(transaction.client)
        if account is None:
            logger.debug("Ignoring missing client", client=transaction.client, tx=transaction.tx)
            return False

        amount = transaction.value
        if account.available < amount:
            logger.debug(
                "Ignoring withdrawal exceeding available funds",
                client=transaction.client,
                tx=transaction.tx,
                available=str(account.available),
                requested=str(amount),
            )
            return False

        account.total -= amount
        return True

    def _handle_dispute(self, transaction: Transaction) -> bool:
        found = self._lookup_disputable(transaction)
        if found is None:
            return False
        account, cached = found

        if cached.disputed:
            logger.debug("Ignoring already disputed tx", client=transaction.client, tx=transaction.tx)
            return False

        cached.disputed = True
        account.held += cached.amount
        return True

    def _handle_resolve(self, transaction: Transaction) -> bool:
        found = self._lookup_disputable(transaction)
        if found is None:
            return False
        account, cached = found

        if not cached.disputed:
            logger.debug("Ignoring resolve on undisputed tx", client=transaction.client, tx=transaction.tx)
            return False

        account.held -= cached.amount
        cached.disputed = False
        return True

    def _handle_chargeback(self, transaction: Transaction) -> bool:
        found = self._lookup_disputable(transaction)
        if found is None:
            return False
        account, cached = found

        if not cached.disputed:
            logger.debug(
                "Ignoring chargeback on undisputed tx", client=transaction.client, tx=transaction.tx
            )
            return False

        account.held -= cached.amount
        account.total -= cached.amount
        account.locked = True
        cached.disputed = False
        logger.info("Account locked after chargeback", client=transaction.client, tx=transaction.tx)
        return True

    def _lookup_disputable(self, transaction: Transaction) -> Optional[Tuple[Account, CachedTx]]:
        """Find the account and cached deposit a dispute-family record refers to.

        Returns None when the client has no account, the tx was never a
        cached deposit, or the deposit belongs to another client.
        """
        account = self.accounts.get(transaction.client)
        if account is None:
            logger.debug("Ignoring missing client", client=transaction.client, tx=transaction.tx)
            return None

        cached = self.tx_cache.get(transaction.tx)
        if cached is None:
            logger.debug("Ignoring missing tx", client=transaction.client, tx=transaction.tx)
            return None

        if cached.client != transaction.client:
            logger.debug(
                "Ignoring client mismatch for tx",
                client=transaction.client,
                owner=cached.client,
                tx=transaction.tx,
            )
            return None

        return account, cached


def run(source: TextIO, sink: TextIO, settings: Optional[Settings] = None) -> ProcessingStats:
    """Replay every record from `source` and write final balances to `sink`.

    Nothing is written unless the whole input is consumed; an
    InputFormatError from the reader propagates before any output.
    """
    settings = settings or get_settings()
    processor = get_transaction_processor(get_account_repository(), get_transaction_cache())

    stats = processor.process_all(read_transactions(source))
    write_accounts(sink, processor.accounts, sort=settings.sort_output)

    logger.info(
        "Run completed",
        seen=stats.seen,
        applied=stats.applied,
        ignored=stats.ignored,
        accounts=processor.accounts.count(),
    )
    return stats


# Factory function for dependency injection
def get_transaction_processor(
    accounts: AccountRepository,
    tx_cache: TransactionCache,
) -> TransactionProcessor:
    return TransactionProcessor(accounts, tx_cache)
