"""
Reward request model - the approval workflow unit.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any

from ..extensions import db


class RequestStatus(str, Enum):
    """Status of a reward request. Approved and rejected are terminal."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class RewardRequest(db.Model):
    """
    A user's request to redeem a reward, pending admin review.

    Reward name and cost are snapshotted when the request is created so
    later catalog edits cannot change what the user asked for. No points
    or stock move until an admin approves the request.
    """
    __tablename__ = 'reward_requests'

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.String(128), nullable=False)
    user_name = db.Column(db.String(200))
    user_email = db.Column(db.String(200))

    reward_id = db.Column(db.Integer, nullable=False)
    reward_name = db.Column(db.String(100), nullable=False)
    reward_points_cost = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(20), default=RequestStatus.PENDING.value, nullable=False)

    request_date = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    processed_date = db.Column(db.DateTime)
    processed_by = db.Column(db.String(128))

    admin_notes = db.Column(db.Text)
    user_notes = db.Column(db.Text)

    # Set when an approval was reversed because the redemption failed
    auto_reversed = db.Column(db.Boolean, default=False, nullable=False)

    __table_args__ = (
        db.Index('ix_reward_requests_status_date', 'status', 'request_date'),
        db.Index('ix_reward_requests_user_date', 'user_id', 'request_date'),
    )

    def __repr__(self):
        return f'<RewardRequest {self.id}: {self.reward_name} for {self.user_id} ({self.status})>'

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for API responses."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'user_name': self.user_name,
            'user_email': self.user_email,
            'reward_id': self.reward_id,
            'reward_name': self.reward_name,
            'reward_points_cost': self.reward_points_cost,
            'status': self.status,
            'request_date': self.request_date.isoformat() if self.request_date else None,
            'processed_date': self.processed_date.isoformat() if self.processed_date else None,
            'processed_by': self.processed_by,
            'admin_notes': self.admin_notes,
            'user_notes': self.user_notes,
            'auto_reversed': self.auto_reversed,
        }
