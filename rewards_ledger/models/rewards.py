"""
Reward catalog and redemption models.
"""

import secrets
from datetime import datetime
from enum import Enum
from typing import Dict, Any

from ..extensions import db


# ==================== Enums ====================

class RewardType(str, Enum):
    """Types of redeemable rewards."""
    PRODUCT = 'product'     # Physical item handed out at the front desk
    DISCOUNT = 'discount'   # Percentage off a plan or product
    SERVICE = 'service'     # Session, class or other service


class RedemptionStatus(str, Enum):
    """Fulfilment status of a redemption."""
    PENDING = 'pending'       # Points spent, reward not yet handed out
    COMPLETED = 'completed'   # Reward delivered
    CANCELLED = 'cancelled'   # Fulfilment cancelled by an admin


# ==================== Models ====================

class RewardItem(db.Model):
    """
    Catalog entry that users can spend points on.

    ``stock`` of NULL means unlimited. A defined stock never goes below
    zero; it is only changed through guarded UPDATE statements.
    """
    __tablename__ = 'reward_items'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    reward_type = db.Column(db.String(20), nullable=False)  # RewardType
    points_cost = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    stock = db.Column(db.Integer)  # NULL = unlimited
    discount_percentage = db.Column(db.Integer)  # discount rewards only, 1-100

    category = db.Column(db.String(50))
    image_url = db.Column(db.String(500))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('stock IS NULL OR stock >= 0', name='ck_reward_items_stock_non_negative'),
        db.CheckConstraint('points_cost > 0', name='ck_reward_items_points_cost_positive'),
        db.Index('ix_reward_items_active_created', 'is_active', 'created_at'),
    )

    @property
    def has_stock_limit(self) -> bool:
        return self.stock is not None

    def __repr__(self):
        return f'<RewardItem {self.id}: {self.name} ({self.points_cost} pts)>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'name': self.name,
            'type': self.reward_type,
            'points_cost': self.points_cost,
            'description': self.description,
            'is_active': self.is_active,
            'stock': self.stock,
            'discount_percentage': self.discount_percentage,
            'category': self.category,
            'image_url': self.image_url,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class RewardRedemption(db.Model):
    """
    Audit record written by every successful redemption.

    Design notes:
    - reward_id is a plain reference, rewards are hard deleted
    - reward_name and points_used are snapshots at redemption time
    - transaction_id is the debit entry in point_transactions
    - Cancelling a redemption does not refund points or restock
    """
    __tablename__ = 'reward_redemptions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(128), nullable=False)
    reward_id = db.Column(db.Integer, nullable=False)
    request_id = db.Column(db.Integer)
    transaction_id = db.Column(db.Integer, db.ForeignKey('point_transactions.id'))

    redemption_code = db.Column(db.String(50), unique=True, nullable=False)  # RD-YYYYMMDD-XXXXXXXX

    reward_name = db.Column(db.String(100), nullable=False)
    points_used = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), default=RedemptionStatus.PENDING.value, nullable=False)

    redeemed_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    cancelled_reason = db.Column(db.String(500))

    __table_args__ = (
        db.Index('ix_reward_redemptions_user_redeemed', 'user_id', 'redeemed_at'),
        db.Index('ix_reward_redemptions_status', 'status'),
    )

    def __repr__(self):
        return f'<RewardRedemption {self.redemption_code}: {self.points_used} pts>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'reward_id': self.reward_id,
            'request_id': self.request_id,
            'transaction_id': self.transaction_id,
            'redemption_code': self.redemption_code,
            'reward_name': self.reward_name,
            'points_used': self.points_used,
            'status': self.status,
            'redeemed_at': self.redeemed_at.isoformat() if self.redeemed_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'cancelled_reason': self.cancelled_reason,
        }

    @staticmethod
    def generate_redemption_code() -> str:
        """Generate unique redemption reference code."""
        today = datetime.utcnow().strftime('%Y%m%d')
        random_suffix = secrets.token_hex(4).upper()
        return f'RD-{today}-{random_suffix}'
