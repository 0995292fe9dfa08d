"""
Points Ledger Service.

Owns the balance invariants of every PointsAccount:
- Credits (earned / bonus) create the account on first use
- Debits are all-or-nothing: insufficient balance means no mutation
- Every balance change appends exactly one PointTransaction
- History and statistics are read straight from the log

Balance columns are only ever changed with a guarded UPDATE, never with
a read-modify-write in Python, so concurrent credits and debits for the
same user cannot lose updates or overdraw the account.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from flask import current_app
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.points import (
    PointsAccount,
    PointTransaction,
    PointTransactionType,
    CREDIT_TYPES,
    DEBIT_TYPES,
)
from ..store import LedgerTransaction, run_in_transaction
from ..utils.exceptions import AccountNotFoundError, ValidationError, StorageError
from ..utils.validation import validate_positive_int, validate_text, validate_metadata


def _validate_entry(user_id, amount, description, metadata) -> None:
    validate_text(user_id, 'user_id', required=True, max_length=128)
    validate_positive_int(amount, 'amount')
    validate_text(description, 'description', required=True, max_length=500)
    validate_metadata(metadata)


class PointsLedgerService:
    """
    Credit, debit and query points balances.

    The public methods open their own transaction. The ``*_within``
    variants take an open LedgerTransaction so callers such as the
    redemption engine can combine them with other writes.
    """

    # ==================== Mutations ====================

    def credit(
        self,
        user_id: str,
        amount: int,
        description: str,
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        transaction_type: str = PointTransactionType.EARNED.value
    ) -> PointTransaction:
        """
        Add points to a user's balance.

        Args:
            user_id: Identity provider user id
            amount: Positive number of points
            description: Shown in the user's history
            related_id: Optional source reference
            metadata: Optional free-form payload
            transaction_type: 'earned' or 'bonus'

        Returns:
            The appended PointTransaction

        Raises:
            ValidationError: Bad amount or transaction type
            StorageError: The store failed; nothing was written
        """
        entry = run_in_transaction(
            lambda txn: self.credit_within(
                txn, user_id, amount, description, related_id, metadata, transaction_type
            )
        )
        current_app.logger.info(
            f"Credited {amount} pts ({transaction_type}) to {user_id}: {description}"
        )
        return entry

    def credit_within(
        self,
        txn: LedgerTransaction,
        user_id: str,
        amount: int,
        description: str,
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        transaction_type: str = PointTransactionType.EARNED.value
    ) -> PointTransaction:
        txn.require_active()
        _validate_entry(user_id, amount, description, metadata)
        transaction_type = getattr(transaction_type, 'value', transaction_type)
        if transaction_type not in CREDIT_TYPES:
            raise ValidationError(
                f"Credit type must be one of {', '.join(CREDIT_TYPES)}",
                field='transaction_type'
            )

        self._ensure_account(txn, user_id)

        now = datetime.utcnow()
        result = txn.execute(
            update(PointsAccount)
            .where(PointsAccount.user_id == user_id)
            .values(
                total_points=PointsAccount.total_points + amount,
                available_points=PointsAccount.available_points + amount,
                earned_points=PointsAccount.earned_points + amount,
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StorageError(f'Points account for {user_id} vanished during credit')

        return self._append(txn, user_id, transaction_type, amount, description, related_id, metadata, now)

    def debit(
        self,
        user_id: str,
        amount: int,
        description: str,
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Spend points from a user's balance.

        Returns:
            True if debited, False if the balance was insufficient
            (in which case nothing changed)
        """
        entry = run_in_transaction(
            lambda txn: self.debit_within(txn, user_id, amount, description, related_id, metadata)
        )
        if entry is None:
            current_app.logger.warning(f"Debit of {amount} pts refused for {user_id}: insufficient points")
            return False

        current_app.logger.info(f"Debited {amount} pts from {user_id}: {description}")
        return True

    def debit_within(
        self,
        txn: LedgerTransaction,
        user_id: str,
        amount: int,
        description: str,
        related_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[PointTransaction]:
        """
        Debit inside an open transaction.

        Returns:
            The appended PointTransaction, or None if the balance was
            insufficient at write time
        """
        txn.require_active()
        _validate_entry(user_id, amount, description, metadata)

        now = datetime.utcnow()
        result = txn.execute(
            update(PointsAccount)
            .where(
                PointsAccount.user_id == user_id,
                PointsAccount.available_points >= amount
            )
            .values(
                available_points=PointsAccount.available_points - amount,
                redeemed_points=PointsAccount.redeemed_points + amount,
                last_updated=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        return self._append(
            txn, user_id, PointTransactionType.REDEEMED.value, amount,
            description, related_id, metadata, now
        )

    # ==================== Queries ====================

    def get_balance(self, user_id: str) -> PointsAccount:
        """
        Get a user's points account. Never creates one.

        Raises:
            AccountNotFoundError: The user has never been credited
        """
        account = db.session.get(PointsAccount, user_id, populate_existing=True)
        if not account:
            raise AccountNotFoundError(user_id)
        return account

    def get_within(self, txn: LedgerTransaction, user_id: str) -> Optional[PointsAccount]:
        """Read the account as of the open transaction, or None."""
        txn.require_active()
        return txn.session.get(PointsAccount, user_id, populate_existing=True)

    def history(self, user_id: str, limit: Optional[int] = None) -> List[PointTransaction]:
        """
        Get a user's transactions, newest first.

        ``limit`` is clamped to [1, HISTORY_MAX_LIMIT] and defaults to
        HISTORY_DEFAULT_LIMIT.
        """
        config = current_app.config
        if limit is None:
            limit = config.get('HISTORY_DEFAULT_LIMIT', 50)
        limit = max(1, min(int(limit), config.get('HISTORY_MAX_LIMIT', 500)))

        return (
            PointTransaction.query
            .filter_by(user_id=user_id)
            .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
            .limit(limit)
            .all()
        )

    def stats(self, user_id: str) -> Dict[str, Any]:
        """Summary of a user's points activity."""
        account = db.session.get(PointsAccount, user_id, populate_existing=True)
        transaction_count = PointTransaction.query.filter_by(user_id=user_id).count()

        return {
            'user_id': user_id,
            'total_earned': account.earned_points if account else 0,
            'total_redeemed': account.redeemed_points if account else 0,
            'current_balance': account.available_points if account else 0,
            'transaction_count': transaction_count,
        }

    # ==================== Reconciliation ====================

    def reconcile(self, user_id: str) -> Dict[str, Any]:
        """
        Check a user's account against the transaction log.

        Read-only: reports violations, repairs nothing.

        Returns:
            Dict with the stored balances, the balances derived from the
            log, ``ok`` and a list of ``violations``
        """
        account = self.get_balance(user_id)
        sums = dict(
            db.session.execute(
                select(PointTransaction.transaction_type, func.coalesce(func.sum(PointTransaction.amount), 0))
                .where(PointTransaction.user_id == user_id)
                .group_by(PointTransaction.transaction_type)
            ).all()
        )

        log_credits = sum(sums.get(t, 0) for t in CREDIT_TYPES)
        log_redeemed = sums.get(PointTransactionType.REDEEMED.value, 0)
        log_debits = sum(sums.get(t, 0) for t in DEBIT_TYPES)
        log_balance = log_credits - log_debits

        violations = []
        if account.available_points < 0:
            violations.append(f'available_points is negative ({account.available_points})')
        if account.available_points != account.earned_points - account.redeemed_points:
            violations.append(
                f'available_points {account.available_points} != earned_points '
                f'{account.earned_points} - redeemed_points {account.redeemed_points}'
            )
        if account.earned_points != log_credits:
            violations.append(f'earned_points {account.earned_points} != credits in log {log_credits}')
        if account.redeemed_points != log_redeemed:
            violations.append(f'redeemed_points {account.redeemed_points} != redemptions in log {log_redeemed}')
        if account.available_points != log_balance:
            violations.append(f'available_points {account.available_points} != log balance {log_balance}')

        if violations:
            current_app.logger.error(f"Ledger mismatch for {user_id}: {'; '.join(violations)}")

        return {
            'user_id': user_id,
            'available_points': account.available_points,
            'earned_points': account.earned_points,
            'redeemed_points': account.redeemed_points,
            'log_balance': log_balance,
            'ok': not violations,
            'violations': violations,
        }

    def reconcile_all(self) -> List[Dict[str, Any]]:
        """Reconcile every account."""
        user_ids = db.session.execute(
            select(PointsAccount.user_id).order_by(PointsAccount.user_id)
        ).scalars().all()
        return [self.reconcile(user_id) for user_id in user_ids]

    # ==================== Helpers ====================

    def _ensure_account(self, txn: LedgerTransaction, user_id: str) -> None:
        """Create a zero account if the user has none yet."""
        exists = txn.execute(
            select(PointsAccount.user_id).where(PointsAccount.user_id == user_id)
        ).first()
        if exists:
            return

        try:
            # Savepoint so a concurrent first credit only loses the INSERT
            with txn.session.begin_nested():
                txn.session.add(PointsAccount(
                    user_id=user_id,
                    total_points=0,
                    available_points=0,
                    earned_points=0,
                    redeemed_points=0,
                ))
        except IntegrityError:
            current_app.logger.info(f"Points account for {user_id} created concurrently")
        else:
            current_app.logger.info(f"Created points account for {user_id}")

    def _append(
        self,
        txn: LedgerTransaction,
        user_id: str,
        transaction_type: str,
        amount: int,
        description: str,
        related_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
        created_at: datetime
    ) -> PointTransaction:
        entry = PointTransaction(
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            description=description,
            related_id=str(related_id) if related_id is not None else None,
            transaction_metadata=dict(metadata) if metadata else None,
            created_at=created_at,
        )
        txn.add(entry)
        txn.flush()
        return entry
