"""
Redemption Engine.

Exchanges points for a reward as one isolated store transaction:

    1. load the reward (must exist and be active)
    2. check stock (if limited)
    3. check the user's balance
    4. decrement stock by one (if limited)
    5. debit the reward's live points cost
    6. write a RewardRedemption record
    7. commit

Business-rule failures (steps 1-3, or a guard losing a race at 4-5) roll
the transaction back and come back as a RedemptionResult with
``success=False``. Storage failures roll back and raise StorageError.
Either way no partial stock decrement or debit survives.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from flask import current_app
from sqlalchemy import select, update

from ..extensions import db
from ..models.rewards import RewardRedemption, RedemptionStatus
from ..store import LedgerTransaction, run_in_transaction
from ..utils.exceptions import (
    InsufficientStockError,
    InvalidStatusTransitionError,
    RedemptionNotFoundError,
)
from ..utils.validation import validate_text
from .points_ledger import PointsLedgerService
from .reward_catalog import RewardCatalogService


class RedemptionFailure(str, Enum):
    """Business reasons a redemption can be refused."""
    REWARD_NOT_FOUND = 'reward_not_found'
    REWARD_INACTIVE = 'reward_inactive'
    OUT_OF_STOCK = 'out_of_stock'
    INSUFFICIENT_POINTS = 'insufficient_points'


FAILURE_MESSAGES = {
    RedemptionFailure.REWARD_NOT_FOUND: 'Reward not found',
    RedemptionFailure.REWARD_INACTIVE: 'Reward is not available',
    RedemptionFailure.OUT_OF_STOCK: 'Reward is out of stock',
    RedemptionFailure.INSUFFICIENT_POINTS: 'Insufficient points',
}


@dataclass
class RedemptionResult:
    """Outcome of a redemption attempt."""
    success: bool
    message: str
    reason: Optional[RedemptionFailure] = None
    transaction_id: Optional[int] = None
    redemption_id: Optional[int] = None
    redemption_code: Optional[str] = None
    points_charged: Optional[int] = None
    price_changed: bool = False

    @classmethod
    def failure(cls, reason: RedemptionFailure, message: str = None) -> 'RedemptionResult':
        return cls(success=False, message=message or FAILURE_MESSAGES[reason], reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['reason'] = self.reason.value if self.reason else None
        return data


class RedemptionRejected(Exception):
    """
    Raised inside a transaction to abort it for a business reason.

    ``RedemptionEngine.redeem`` turns it into a failed RedemptionResult
    after the rollback.
    """

    def __init__(self, reason: RedemptionFailure, message: str = None):
        self.result = RedemptionResult.failure(reason, message)
        super().__init__(self.result.message)


class RedemptionEngine:
    """Atomic points-for-reward exchange."""

    def __init__(self, ledger: PointsLedgerService, catalog: RewardCatalogService):
        self.ledger = ledger
        self.catalog = catalog

    def redeem(
        self,
        user_id: str,
        reward_id: int,
        request_id: Optional[int] = None,
        expected_points_cost: Optional[int] = None
    ) -> RedemptionResult:
        """
        Redeem a reward for a user.

        Args:
            user_id: User spending the points
            reward_id: Reward to redeem
            request_id: Reward request this redemption fulfils, if any
            expected_points_cost: Price the user agreed to (request snapshot);
                a different live price is charged but flagged

        Returns:
            RedemptionResult; ``success=False`` carries the business reason

        Raises:
            StorageError: The store failed; nothing was written
        """
        try:
            result = run_in_transaction(
                lambda txn: self.redeem_within(txn, user_id, reward_id, request_id, expected_points_cost)
            )
        except RedemptionRejected as rejected:
            current_app.logger.warning(
                f"Redemption of reward {reward_id} by {user_id} refused: {rejected.result.message}"
            )
            return rejected.result

        current_app.logger.info(
            f"Redeemed reward {reward_id} for {user_id}: {result.points_charged} pts "
            f"(transaction {result.transaction_id}, {result.redemption_code})"
        )
        return result

    def redeem_within(
        self,
        txn: LedgerTransaction,
        user_id: str,
        reward_id: int,
        request_id: Optional[int] = None,
        expected_points_cost: Optional[int] = None
    ) -> RedemptionResult:
        """
        Run the redemption steps inside an open transaction.

        Raises:
            RedemptionRejected: A business rule failed; the caller must
                let the transaction roll back
        """
        txn.require_active()

        reward = self.catalog.get_within(txn, reward_id)
        if reward is None:
            raise RedemptionRejected(RedemptionFailure.REWARD_NOT_FOUND)
        if not reward.is_active:
            raise RedemptionRejected(RedemptionFailure.REWARD_INACTIVE)
        if reward.has_stock_limit and reward.stock <= 0:
            raise RedemptionRejected(RedemptionFailure.OUT_OF_STOCK)

        points_cost = reward.points_cost
        account = self.ledger.get_within(txn, user_id)
        available = account.available_points if account else 0
        if available < points_cost:
            raise RedemptionRejected(
                RedemptionFailure.INSUFFICIENT_POINTS,
                f'Insufficient points: {available} available, {points_cost} required'
            )

        price_changed = expected_points_cost is not None and expected_points_cost != points_cost
        metadata = {'reward_name': reward.name, 'reward_type': reward.reward_type}
        if request_id is not None:
            metadata['request_id'] = request_id
        if price_changed:
            metadata['requested_points_cost'] = expected_points_cost
            metadata['charged_points_cost'] = points_cost
            current_app.logger.warning(
                f"Price of reward {reward_id} changed since request {request_id}: "
                f"requested {expected_points_cost} pts, charging {points_cost} pts"
            )

        if reward.has_stock_limit:
            try:
                self.catalog.adjust_stock_within(txn, reward_id, -1)
            except InsufficientStockError:
                raise RedemptionRejected(RedemptionFailure.OUT_OF_STOCK) from None

        entry = self.ledger.debit_within(
            txn,
            user_id,
            points_cost,
            f'Redeemed: {reward.name}',
            related_id=str(reward_id),
            metadata=metadata,
        )
        if entry is None:
            raise RedemptionRejected(RedemptionFailure.INSUFFICIENT_POINTS)

        redemption = RewardRedemption(
            user_id=user_id,
            reward_id=reward_id,
            request_id=request_id,
            transaction_id=entry.id,
            redemption_code=RewardRedemption.generate_redemption_code(),
            reward_name=reward.name,
            points_used=points_cost,
            status=RedemptionStatus.PENDING.value,
        )
        txn.add(redemption)
        txn.flush()

        return RedemptionResult(
            success=True,
            message=f'Redeemed {reward.name} for {points_cost} points',
            transaction_id=entry.id,
            redemption_id=redemption.id,
            redemption_code=redemption.redemption_code,
            points_charged=points_cost,
            price_changed=price_changed,
        )

    # ==================== Redemption records ====================

    def get_redemption(self, redemption_id: int) -> RewardRedemption:
        redemption = db.session.get(RewardRedemption, redemption_id, populate_existing=True)
        if not redemption:
            raise RedemptionNotFoundError(redemption_id)
        return redemption

    def list_redemptions(self, user_id: str = None, status: str = None) -> List[RewardRedemption]:
        """Redemption records, newest first."""
        query = RewardRedemption.query
        if user_id:
            query = query.filter_by(user_id=user_id)
        if status:
            query = query.filter_by(status=status)
        return query.order_by(RewardRedemption.redeemed_at.desc(), RewardRedemption.id.desc()).all()

    def complete_redemption(self, redemption_id: int) -> RewardRedemption:
        """Mark a pending redemption as handed out."""
        self._transition(
            redemption_id,
            RedemptionStatus.COMPLETED,
            completed_at=datetime.utcnow(),
        )
        current_app.logger.info(f"Completed redemption {redemption_id}")
        return self.get_redemption(redemption_id)

    def cancel_redemption(self, redemption_id: int, reason: str = None) -> RewardRedemption:
        """
        Cancel a pending redemption.

        Points are not refunded and stock is not restored; a refund is a
        separate administrative credit.
        """
        validate_text(reason, 'reason', max_length=500)
        self._transition(
            redemption_id,
            RedemptionStatus.CANCELLED,
            cancelled_at=datetime.utcnow(),
            cancelled_reason=reason,
        )
        current_app.logger.info(f"Cancelled redemption {redemption_id}: {reason or 'no reason given'}")
        return self.get_redemption(redemption_id)

    def _transition(self, redemption_id: int, to_status: RedemptionStatus, **values) -> None:
        def work(txn):
            result = txn.execute(
                update(RewardRedemption)
                .where(
                    RewardRedemption.id == redemption_id,
                    RewardRedemption.status == RedemptionStatus.PENDING.value
                )
                .values(status=to_status.value, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return

            current = txn.execute(
                select(RewardRedemption.status).where(RewardRedemption.id == redemption_id)
            ).scalar()
            if current is None:
                raise RedemptionNotFoundError(redemption_id)
            raise InvalidStatusTransitionError('redemption', current, to_status.value)

        run_in_transaction(work)
