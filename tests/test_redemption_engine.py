"""
Tests for the Redemption Engine.

Covers:
- Successful redemption (stock, balance, log and redemption record together)
- Business-rule rejections with no mutation
- Atomicity under injected storage failures
- Price drift between request snapshot and live catalog
- Redemption record fulfilment transitions
"""
import re
import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from rewards_ledger.models import PointTransaction, RewardRedemption
from rewards_ledger.services import get_services, PointsLedgerService, RedemptionFailure
from rewards_ledger.utils.exceptions import (
    StorageError,
    InvalidStatusTransitionError,
    RedemptionNotFoundError,
    ValidationError,
)


def _snapshot(user_id, reward_id):
    """Balance, stock and row counts that a failed redemption must not change."""
    services = get_services()
    account = services.ledger.get_balance(user_id)
    return {
        'available': account.available_points,
        'redeemed': account.redeemed_points,
        'stock': services.catalog.get_by_id(reward_id).stock,
        'transactions': PointTransaction.query.filter_by(user_id=user_id).count(),
        'redemptions': RewardRedemption.query.count(),
    }


class TestRedeemSuccess:
    """Tests for a successful redemption."""

    def test_redeem_updates_everything(self, app, make_reward, credit_user):
        reward_id = make_reward(name='Smoothie', points_cost=150, stock=3)
        credit_user('user-1', 400)
        with app.app_context():
            services = get_services()
            result = services.engine.redeem('user-1', reward_id)

            assert result.success is True
            assert result.reason is None
            assert result.points_charged == 150
            assert result.price_changed is False

            account = services.ledger.get_balance('user-1')
            assert account.available_points == 250
            assert account.redeemed_points == 150
            assert services.catalog.get_by_id(reward_id).stock == 2

            entry = PointTransaction.query.get(result.transaction_id)
            assert entry.transaction_type == 'redeemed'
            assert entry.amount == 150
            assert entry.related_id == str(reward_id)
            assert 'Smoothie' in entry.description

            redemption = RewardRedemption.query.get(result.redemption_id)
            assert redemption.status == 'pending'
            assert redemption.transaction_id == result.transaction_id
            assert redemption.points_used == 150
            assert re.match(r'^RD-\d{8}-[0-9A-F]{8}$', redemption.redemption_code)

    def test_redeem_unlimited_stock(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=100, stock=None)
        credit_user('user-1', 300)
        with app.app_context():
            services = get_services()
            for _ in range(3):
                assert services.engine.redeem('user-1', reward_id).success is True
            assert services.catalog.get_by_id(reward_id).stock is None
            assert services.ledger.get_balance('user-1').available_points == 0

    def test_redeem_last_unit(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=100, stock=1)
        credit_user('user-1', 300)
        with app.app_context():
            services = get_services()
            assert services.engine.redeem('user-1', reward_id).success is True
            second = services.engine.redeem('user-1', reward_id)
            assert second.success is False
            assert second.reason == RedemptionFailure.OUT_OF_STOCK
            assert services.catalog.get_by_id(reward_id).stock == 0


class TestRedeemRejections:
    """Business-rule rejections never mutate anything."""

    def test_reward_not_found(self, app, credit_user):
        credit_user('user-1', 100)
        with app.app_context():
            result = get_services().engine.redeem('user-1', 404)
            assert result.success is False
            assert result.reason == RedemptionFailure.REWARD_NOT_FOUND
            assert get_services().ledger.get_balance('user-1').available_points == 100

    def test_inactive_reward(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=50, stock=5, is_active=False)
        credit_user('user-1', 100)
        with app.app_context():
            before = _snapshot('user-1', reward_id)
            result = get_services().engine.redeem('user-1', reward_id)

            assert result.success is False
            assert result.reason == RedemptionFailure.REWARD_INACTIVE
            assert _snapshot('user-1', reward_id) == before

    def test_out_of_stock(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=50, stock=0)
        credit_user('user-1', 100)
        with app.app_context():
            before = _snapshot('user-1', reward_id)
            result = get_services().engine.redeem('user-1', reward_id)

            assert result.reason == RedemptionFailure.OUT_OF_STOCK
            assert _snapshot('user-1', reward_id) == before

    def test_insufficient_points(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=500, stock=5)
        credit_user('user-1', 499)
        with app.app_context():
            before = _snapshot('user-1', reward_id)
            result = get_services().engine.redeem('user-1', reward_id)

            assert result.reason == RedemptionFailure.INSUFFICIENT_POINTS
            assert '499' in result.message
            assert _snapshot('user-1', reward_id) == before

    def test_user_without_account(self, app, make_reward):
        reward_id = make_reward(points_cost=10, stock=5)
        with app.app_context():
            result = get_services().engine.redeem('ghost', reward_id)
            assert result.reason == RedemptionFailure.INSUFFICIENT_POINTS
            assert get_services().catalog.get_by_id(reward_id).stock == 5

    def test_lost_debit_race_rolls_back_stock(self, app, make_reward, credit_user):
        """A debit guard failing after the stock decrement undoes the decrement."""
        reward_id = make_reward(points_cost=100, stock=5)
        credit_user('user-1', 200)
        with app.app_context():
            before = _snapshot('user-1', reward_id)
            with patch.object(PointsLedgerService, 'debit_within', return_value=None):
                result = get_services().engine.redeem('user-1', reward_id)

            assert result.reason == RedemptionFailure.INSUFFICIENT_POINTS
            assert _snapshot('user-1', reward_id) == before


class TestRedeemAtomicity:
    """Storage failures inside a redemption leave no partial state."""

    def test_failure_between_stock_and_debit(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=100, stock=5)
        credit_user('user-1', 300)
        with app.app_context():
            before = _snapshot('user-1', reward_id)
            error = OperationalError('UPDATE points_accounts', {}, Exception('database is locked'))

            with patch.object(PointsLedgerService, 'debit_within', side_effect=error) as debit:
                with pytest.raises(StorageError) as exc_info:
                    get_services().engine.redeem('user-1', reward_id)

            assert exc_info.value.retryable is True
            # first attempt plus the configured retries
            assert debit.call_count == 1 + app.config['LEDGER_TRANSACTION_RETRIES']
            assert _snapshot('user-1', reward_id) == before

    def test_failure_after_debit(self, app, make_reward, credit_user):
        """Stock decremented and points debited, then the record write fails."""
        reward_id = make_reward(points_cost=100, stock=5)
        credit_user('user-1', 300)
        with app.app_context():
            before = _snapshot('user-1', reward_id)
            error = OperationalError('INSERT INTO reward_redemptions', {}, Exception('disk I/O error'))

            with patch.object(RewardRedemption, 'generate_redemption_code', side_effect=error):
                with pytest.raises(StorageError):
                    get_services().engine.redeem('user-1', reward_id)

            assert _snapshot('user-1', reward_id) == before

    def test_unexpected_error_rolls_back(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=100, stock=5)
        credit_user('user-1', 300)
        with app.app_context():
            before = _snapshot('user-1', reward_id)
            with patch.object(RewardRedemption, 'generate_redemption_code', side_effect=RuntimeError('boom')):
                with pytest.raises(RuntimeError):
                    get_services().engine.redeem('user-1', reward_id)

            assert _snapshot('user-1', reward_id) == before

    def test_transient_failure_is_retried(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=100, stock=5)
        credit_user('user-1', 300)
        with app.app_context():
            services = get_services()
            real_debit = PointsLedgerService.debit_within
            calls = []

            def flaky_debit(self, txn, *args, **kwargs):
                calls.append(1)
                if len(calls) == 1:
                    raise OperationalError('UPDATE points_accounts', {}, Exception('database is locked'))
                return real_debit(self, txn, *args, **kwargs)

            with patch.object(PointsLedgerService, 'debit_within', flaky_debit):
                result = services.engine.redeem('user-1', reward_id)

            assert result.success is True
            assert len(calls) == 2
            assert services.ledger.get_balance('user-1').available_points == 200

    def test_cancel_reason_must_be_text(self, app, make_reward, credit_user):
        redemption_id = self._redeem(app, make_reward, credit_user)
        with app.app_context():
            engine = get_services().engine
            with pytest.raises(ValidationError) as exc_info:
                engine.cancel_redemption(redemption_id, {'why': 'moved'})

            assert exc_info.value.field == 'reason'
            assert engine.get_redemption(redemption_id).status == 'pending'
            assert services.catalog.get_by_id(reward_id).stock == 4
            assert RewardRedemption.query.count() == 1


class TestPriceDrift:
    """Live price differs from the price the user requested at."""

    def test_live_price_charged_and_flagged(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=120, stock=5)
        credit_user('user-1', 500)
        with app.app_context():
            services = get_services()
            result = services.engine.redeem('user-1', reward_id, request_id=7, expected_points_cost=100)

            assert result.success is True
            assert result.price_changed is True
            assert result.points_charged == 120
            assert services.ledger.get_balance('user-1').available_points == 380

            entry = PointTransaction.query.get(result.transaction_id)
            assert entry.transaction_metadata['requested_points_cost'] == 100
            assert entry.transaction_metadata['charged_points_cost'] == 120
            assert entry.transaction_metadata['request_id'] == 7

    def test_matching_price_not_flagged(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=100, stock=5)
        credit_user('user-1', 500)
        with app.app_context():
            result = get_services().engine.redeem('user-1', reward_id, expected_points_cost=100)
            assert result.price_changed is False


class TestRedemptionRecords:
    """Fulfilment transitions on redemption records."""

    def _redeem(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=100, stock=5)
        credit_user('user-1', 300)
        with app.app_context():
            return get_services().engine.redeem('user-1', reward_id).redemption_id

    def test_complete_redemption(self, app, make_reward, credit_user):
        redemption_id = self._redeem(app, make_reward, credit_user)
        with app.app_context():
            redemption = get_services().engine.complete_redemption(redemption_id)
            assert redemption.status == 'completed'
            assert redemption.completed_at is not None

    def test_cancel_does_not_refund(self, app, make_reward, credit_user):
        redemption_id = self._redeem(app, make_reward, credit_user)
        with app.app_context():
            services = get_services()
            redemption = services.engine.cancel_redemption(redemption_id, 'Member left the gym')

            assert redemption.status == 'cancelled'
            assert redemption.cancelled_reason == 'Member left the gym'
            assert services.ledger.get_balance('user-1').available_points == 200

    def test_terminal_redemption_cannot_transition(self, app, make_reward, credit_user):
        redemption_id = self._redeem(app, make_reward, credit_user)
        with app.app_context():
            engine = get_services().engine
            engine.complete_redemption(redemption_id)
            with pytest.raises(InvalidStatusTransitionError):
                engine.cancel_redemption(redemption_id)
            with pytest.raises(InvalidStatusTransitionError):
                engine.complete_redemption(redemption_id)

    def test_missing_redemption(self, app):
        with app.app_context():
            with pytest.raises(RedemptionNotFoundError):
                get_services().engine.complete_redemption(12345)

    def test_list_redemptions_filters(self, app, make_reward, credit_user):
        reward_id = make_reward(points_cost=10, stock=None)
        credit_user('user-1', 100)
        credit_user('user-2', 100)
        with app.app_context():
            engine = get_services().engine
            first = engine.redeem('user-1', reward_id)
            engine.redeem('user-1', reward_id)
            engine.redeem('user-2', reward_id)
            engine.complete_redemption(first.redemption_id)

            assert len(engine.list_redemptions()) == 3
            assert len(engine.list_redemptions(user_id='user-1')) == 2
            pending = engine.list_redemptions(user_id='user-1', status='pending')
            assert len(pending) == 1
            assert pending[0].id != first.redemption_id
