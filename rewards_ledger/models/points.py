"""
Points ledger models.

PointsAccount is the per-user balance; PointTransaction is the append-only
log it can always be reconciled against:

    available_points == earned_points - redeemed_points
    available_points == sum(earned + bonus) - sum(redeemed + expired)

Both are written only by PointsLedgerService.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any

from sqlalchemy import event

from ..extensions import db


# ==================== Enums ====================

class PointTransactionType(str, Enum):
    """Types of points transactions."""
    EARNED = 'earned'       # Points earned (credit)
    REDEEMED = 'redeemed'   # Points spent on a reward (debit)
    EXPIRED = 'expired'     # Points expired (debit)
    BONUS = 'bonus'         # Bonus points (credit)


CREDIT_TYPES = (PointTransactionType.EARNED.value, PointTransactionType.BONUS.value)
DEBIT_TYPES = (PointTransactionType.REDEEMED.value, PointTransactionType.EXPIRED.value)


# ==================== Models ====================

class PointsAccount(db.Model):
    """
    Current points balance for a user.

    Design notes:
    - One row per user, keyed by the identity provider's user id
    - Created lazily by the first credit, never deleted
    - Balance columns only move through guarded UPDATE statements
    """
    __tablename__ = 'points_accounts'

    user_id = db.Column(db.String(128), primary_key=True)

    total_points = db.Column(db.Integer, default=0, nullable=False)      # Lifetime credited
    available_points = db.Column(db.Integer, default=0, nullable=False)  # Spendable balance
    earned_points = db.Column(db.Integer, default=0, nullable=False)     # Cumulative credits
    redeemed_points = db.Column(db.Integer, default=0, nullable=False)   # Cumulative debits

    last_updated = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('available_points >= 0', name='ck_points_accounts_available_non_negative'),
        db.CheckConstraint(
            'available_points = earned_points - redeemed_points',
            name='ck_points_accounts_balance_consistent'
        ),
    )

    def __repr__(self):
        return f'<PointsAccount user={self.user_id} pts={self.available_points}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user_id': self.user_id,
            'total_points': self.total_points,
            'available_points': self.available_points,
            'earned_points': self.earned_points,
            'redeemed_points': self.redeemed_points,
            'last_updated': self.last_updated.isoformat() if self.last_updated else None,
            'exists': True,
        }

    @staticmethod
    def empty_dict(user_id: str) -> Dict[str, Any]:
        """Zero balance for a user who has never been credited."""
        return {
            'user_id': user_id,
            'total_points': 0,
            'available_points': 0,
            'earned_points': 0,
            'redeemed_points': 0,
            'last_updated': None,
            'exists': False,
        }


class PointTransaction(db.Model):
    """
    Immutable points log entry, one per balance mutation.

    ``amount`` is always positive; the direction comes from
    ``transaction_type``. ``related_id`` points at the reward, request or
    other source the entry came from.
    """
    __tablename__ = 'point_transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), nullable=False)

    transaction_type = db.Column(db.String(20), nullable=False)  # PointTransactionType
    amount = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(500))
    related_id = db.Column(db.String(128))

    # Free-form key/value payload, conventions only (e.g. requested_points_cost)
    transaction_metadata = db.Column('metadata', db.JSON)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint('amount > 0', name='ck_point_transactions_amount_positive'),
        db.Index('ix_point_transactions_user_created', 'user_id', 'created_at'),
        db.Index('ix_point_transactions_related', 'related_id'),
    )

    def __repr__(self):
        return f'<PointTransaction {self.id}: {self.transaction_type} {self.amount} pts for {self.user_id}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'type': self.transaction_type,
            'amount': self.amount,
            'description': self.description,
            'related_id': self.related_id,
            'metadata': self.transaction_metadata or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@event.listens_for(PointTransaction, 'before_update')
def _reject_transaction_update(mapper, connection, target):
    raise ValueError(f'PointTransaction {target.id} is immutable')
