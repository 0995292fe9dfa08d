"""
Transactional store boundary for the rewards ledger.

All balance, stock and workflow mutations run inside a LedgerTransaction.
Services expose ``*_within(txn, ...)`` methods that only accept an open
handle, so a multi-step operation (a redemption) composes them into one
all-or-nothing unit:

    with ledger_transaction() as txn:
        ledger.debit_within(txn, user_id, 100, 'Redeemed: Water bottle')
        catalog.adjust_stock_within(txn, reward_id, -1)

Mutations are conditional UPDATE statements (``SET col = col + :delta
WHERE <guard>``); the number of rows they touch tells the caller whether
the guard held at write time. On SQLite a ledger transaction is opened
with BEGIN IMMEDIATE so writers are serialized by the database lock;
plain reads run in autocommit and never hold it.
"""
import logging
import time
from contextlib import contextmanager
from typing import Callable, Optional, TypeVar

from flask import current_app
from sqlalchemy import event
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from .extensions import db
from .utils.exceptions import StorageError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Connection execution option marking a connection that will write
LEDGER_WRITE_OPTION = 'ledger_write'


class LedgerTransaction:
    """
    Handle for one open store transaction.

    Only valid inside the ``ledger_transaction()`` block that created it.
    """

    def __init__(self, session, deadline: Optional[float] = None):
        self.session = session
        self.deadline = deadline
        self.active = True

    def require_active(self) -> None:
        """Raise StorageError if the handle is closed or past its deadline."""
        if not self.active:
            raise StorageError('Ledger transaction is no longer active')
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise StorageError('Ledger transaction timed out')

    def execute(self, statement, params: Optional[dict] = None):
        self.require_active()
        return self.session.execute(statement, params or {})

    def add(self, instance) -> None:
        self.require_active()
        self.session.add(instance)

    def flush(self) -> None:
        self.require_active()
        self.session.flush()

    def __repr__(self):
        state = 'active' if self.active else 'closed'
        return f'<LedgerTransaction {state}>'


@contextmanager
def ledger_transaction(timeout: Optional[float] = None, session=None):
    """
    Open a store transaction and yield its handle.

    Commits when the block exits cleanly, rolls back on any exception.
    SQLAlchemy errors are re-raised as StorageError; lock and
    serialization failures are flagged retryable. A transaction that
    runs past ``timeout`` seconds is rolled back, never committed.

    Args:
        timeout: Seconds before the transaction is abandoned
            (defaults to LEDGER_TRANSACTION_TIMEOUT)
        session: Session to use (defaults to db.session)
    """
    session = session or db.session
    if timeout is None:
        timeout = current_app.config.get('LEDGER_TRANSACTION_TIMEOUT')
    deadline = time.monotonic() + timeout if timeout else None

    # A read-only transaction left open by earlier queries already holds a
    # connection; end it so the write connection below is freshly begun.
    if session.in_transaction():
        session.commit()

    txn = LedgerTransaction(session, deadline)
    try:
        session.connection(execution_options={LEDGER_WRITE_OPTION: True})
        yield txn
        txn.require_active()
        session.commit()
    except StorageError:
        session.rollback()
        raise
    except OperationalError as e:
        session.rollback()
        logger.warning(f'Store transaction aborted: {e}')
        raise StorageError(
            'Store transaction aborted by a lock or serialization conflict',
            original_error=e,
            retryable=True
        ) from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception(f'Store transaction failed: {e}')
        raise StorageError('Store transaction failed', original_error=e) from e
    except BaseException:
        session.rollback()
        raise
    finally:
        txn.active = False


def run_in_transaction(
    work: Callable[[LedgerTransaction], T],
    retries: Optional[int] = None,
    backoff: Optional[float] = None,
    timeout: Optional[float] = None
) -> T:
    """
    Run ``work(txn)`` in its own transaction, retrying on retryable errors.

    Every attempt starts from a rolled-back state, so ``work`` must read
    everything it needs through the handle it is given.

    Args:
        work: Callable taking a LedgerTransaction
        retries: Extra attempts after the first (defaults to LEDGER_TRANSACTION_RETRIES)
        backoff: Linear backoff step in seconds (defaults to LEDGER_RETRY_BACKOFF)
        timeout: Per-attempt timeout in seconds

    Returns:
        Whatever ``work`` returns
    """
    config = current_app.config
    if retries is None:
        retries = config.get('LEDGER_TRANSACTION_RETRIES', 3)
    if backoff is None:
        backoff = config.get('LEDGER_RETRY_BACKOFF', 0.05)

    attempt = 0
    while True:
        attempt += 1
        try:
            with ledger_transaction(timeout=timeout) as txn:
                return work(txn)
        except StorageError as e:
            if not e.retryable or attempt > retries:
                if e.retryable:
                    logger.error(f'Store conflict persisted after {attempt} attempts: {e.message}')
                raise
            logger.warning(f'Store conflict on attempt {attempt}, retrying: {e.message}')
            if backoff:
                time.sleep(backoff * attempt)


def configure_sqlite_engine(engine) -> None:
    """
    Make ledger transactions take the SQLite write lock up front.

    pysqlite's own transaction handling is switched off so that
    SAVEPOINT works. Connections opened by ``ledger_transaction()`` begin
    with BEGIN IMMEDIATE; every other connection emits no BEGIN, so its
    reads run in autocommit and release their shared lock per statement.
    """
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _begin_immediate_for_writes(conn):
        if conn.get_execution_options().get(LEDGER_WRITE_OPTION):
            conn.exec_driver_sql('BEGIN IMMEDIATE')
