"""
Reward Catalog Service.

CRUD over reward definitions plus stock adjustment. Stock is changed
with a single guarded UPDATE so concurrent adjustments of the same
reward cannot lose updates or push stock below zero.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from flask import current_app
from sqlalchemy import select, update, func

from ..extensions import db
from ..models.rewards import RewardItem, RewardType, RewardRedemption, RedemptionStatus
from ..store import LedgerTransaction, ledger_transaction, run_in_transaction
from ..utils.exceptions import RewardNotFoundError, ValidationError, InsufficientStockError
from ..utils.validation import MAX_INT, is_int, validate_int_range, validate_text

REWARD_TYPES = [t.value for t in RewardType]

# Input field -> model column
EDITABLE_FIELDS = {
    'name': 'name',
    'type': 'reward_type',
    'points_cost': 'points_cost',
    'description': 'description',
    'is_active': 'is_active',
    'stock': 'stock',
    'discount_percentage': 'discount_percentage',
    'category': 'category',
    'image_url': 'image_url',
}


class RewardCatalogService:
    """Manage the reward catalog."""

    # ==================== CRUD ====================

    def create(self, data: Dict[str, Any]) -> RewardItem:
        """
        Create a reward.

        Raises:
            ValidationError: A field is missing or invalid
        """
        fields = self._validate(data, partial=False)
        fields.setdefault('is_active', True)

        with ledger_transaction() as txn:
            reward = RewardItem(**fields)
            txn.add(reward)
            txn.flush()
            reward_id = reward.id

        current_app.logger.info(f"Created reward {reward_id}: {fields['name']} ({fields['points_cost']} pts)")
        return reward

    def update(self, reward_id: int, data: Dict[str, Any]) -> RewardItem:
        """
        Update the given fields of a reward.

        Passing ``stock: None`` makes the reward unlimited.
        """
        fields = self._validate(data, partial=True)

        with ledger_transaction() as txn:
            reward = self.get_within(txn, reward_id)
            if not reward:
                raise RewardNotFoundError(reward_id)

            for column, value in fields.items():
                setattr(reward, column, value)
            reward.updated_at = datetime.utcnow()

        current_app.logger.info(f"Updated reward {reward_id}: {', '.join(sorted(fields))}")
        return reward

    def delete(self, reward_id: int) -> None:
        """
        Hard delete a reward.

        Pending requests that reference it are left as they are and fail
        with REWARD_NOT_FOUND if approved.
        """
        with ledger_transaction() as txn:
            reward = self.get_within(txn, reward_id)
            if not reward:
                raise RewardNotFoundError(reward_id)
            txn.session.delete(reward)

        current_app.logger.info(f"Deleted reward {reward_id}")

    def get_by_id(self, reward_id: int) -> RewardItem:
        """
        Raises:
            RewardNotFoundError: No reward with that id
        """
        reward = db.session.get(RewardItem, reward_id, populate_existing=True)
        if not reward:
            raise RewardNotFoundError(reward_id)
        return reward

    def get_within(self, txn: LedgerTransaction, reward_id: int) -> Optional[RewardItem]:
        """Read a reward as of the open transaction, or None."""
        txn.require_active()
        return txn.session.get(RewardItem, reward_id, populate_existing=True)

    def list_active(self) -> List[RewardItem]:
        """Active rewards, newest first."""
        return (
            RewardItem.query
            .filter_by(is_active=True)
            .order_by(RewardItem.created_at.desc(), RewardItem.id.desc())
            .all()
        )

    def list_all(self) -> List[RewardItem]:
        """All rewards including inactive ones, newest first."""
        return (
            RewardItem.query
            .order_by(RewardItem.created_at.desc(), RewardItem.id.desc())
            .all()
        )

    # ==================== Stock ====================

    def adjust_stock(self, reward_id: int, delta: int) -> int:
        """
        Atomically apply ``stock += delta``.

        Returns:
            The new stock level

        Raises:
            RewardNotFoundError: No reward with that id
            ValidationError: The reward has unlimited stock, or delta is not an integer
            InsufficientStockError: The result would be negative
        """
        new_stock = run_in_transaction(lambda txn: self.adjust_stock_within(txn, reward_id, delta))
        current_app.logger.info(f"Adjusted stock of reward {reward_id} by {delta:+d}, now {new_stock}")
        return new_stock

    def adjust_stock_within(self, txn: LedgerTransaction, reward_id: int, delta: int) -> int:
        txn.require_active()
        validate_int_range(delta, 'delta')

        result = txn.execute(
            update(RewardItem)
            .where(
                RewardItem.id == reward_id,
                RewardItem.stock.isnot(None),
                RewardItem.stock + delta >= 0,
                RewardItem.stock + delta <= MAX_INT
            )
            .values(stock=RewardItem.stock + delta, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )

        row = txn.execute(select(RewardItem.id, RewardItem.stock).where(RewardItem.id == reward_id)).first()
        if result.rowcount == 1:
            return row.stock

        if row is None:
            raise RewardNotFoundError(reward_id)
        if row.stock is None:
            raise ValidationError(f'Reward {reward_id} has unlimited stock', field='stock')
        if row.stock + delta > MAX_INT:
            raise ValidationError(f'Stock of reward {reward_id} cannot exceed {MAX_INT}', field='delta')
        raise InsufficientStockError(reward_id, row.stock, delta)

    # ==================== Statistics ====================

    def stats(self) -> Dict[str, int]:
        """Catalog and redemption counts."""
        total_rewards = db.session.scalar(select(func.count(RewardItem.id)))
        active_rewards = db.session.scalar(
            select(func.count(RewardItem.id)).where(RewardItem.is_active.is_(True))
        )
        total_redemptions = db.session.scalar(select(func.count(RewardRedemption.id)))
        pending_redemptions = db.session.scalar(
            select(func.count(RewardRedemption.id))
            .where(RewardRedemption.status == RedemptionStatus.PENDING.value)
        )

        return {
            'total_rewards': total_rewards or 0,
            'active_rewards': active_rewards or 0,
            'total_redemptions': total_redemptions or 0,
            'pending_redemptions': pending_redemptions or 0,
        }

    # ==================== Validation ====================

    def _validate(self, data: Dict[str, Any], partial: bool) -> Dict[str, Any]:
        """Check reward input and map it onto model columns."""
        if not isinstance(data, dict):
            raise ValidationError('Reward data must be an object')

        unknown = set(data) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown reward fields: {', '.join(sorted(unknown))}")

        if not partial:
            for required in ('name', 'type', 'points_cost'):
                if data.get(required) in (None, ''):
                    raise ValidationError(f'{required} is required', field=required)

        if 'name' in data:
            name = data['name']
            if not isinstance(name, str) or not name.strip():
                raise ValidationError('name is required', field='name')
            if len(name.strip()) > 100:
                raise ValidationError('name must be at most 100 characters', field='name')

        if 'type' in data and data['type'] not in REWARD_TYPES:
            raise ValidationError(f"type must be one of {', '.join(REWARD_TYPES)}", field='type')

        if 'points_cost' in data:
            if not is_int(data['points_cost']) or not 0 < data['points_cost'] <= MAX_INT:
                raise ValidationError(f'points_cost must be a positive integer no greater than {MAX_INT}', field='points_cost')

        if 'stock' in data and data['stock'] is not None:
            if not is_int(data['stock']) or not 0 <= data['stock'] <= MAX_INT:
                raise ValidationError(f'stock must be null or an integer from 0 to {MAX_INT}', field='stock')

        if data.get('discount_percentage') is not None:
            pct = data['discount_percentage']
            if not is_int(pct) or not 1 <= pct <= 100:
                raise ValidationError('discount_percentage must be between 1 and 100', field='discount_percentage')

        validate_text(data.get('description'), 'description')
        validate_text(data.get('category'), 'category', max_length=50)
        validate_text(data.get('image_url'), 'image_url', max_length=500)

        if 'is_active' in data and not isinstance(data['is_active'], bool):
            raise ValidationError('is_active must be true or false', field='is_active')

        fields = {}
        for key, value in data.items():
            if isinstance(value, str) and key != 'type':
                value = value.strip()
            fields[EDITABLE_FIELDS[key]] = value
        return fields
