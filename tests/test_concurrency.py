"""
Concurrency tests for the ledger, engine and workflow.

These run on a file-backed SQLite database with one app context per
worker thread, so every worker has its own session and connection.
"""
import threading
from concurrent.futures import ThreadPoolExecutor

from rewards_ledger.models import PointTransaction, RewardRedemption
from rewards_ledger.services import get_services, RedemptionFailure, DecisionOutcome


def _run_concurrently(app, count, fn):
    """Run ``fn(i)`` in ``count`` threads released together; return the results in order."""
    barrier = threading.Barrier(count)

    def worker(i):
        with app.app_context():
            barrier.wait()
            return fn(i)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(worker, range(count)))


class TestConcurrentRedemptions:

    def test_balance_covers_only_some_redemptions(self, file_app, make_reward, credit_user):
        """Eight redemptions race for a balance that covers three."""
        reward_id = make_reward(target_app=file_app, points_cost=100, stock=None)
        credit_user('user-1', 300, target_app=file_app)

        def redeem(_):
            result = get_services().engine.redeem('user-1', reward_id)
            return result.success, result.reason

        results = _run_concurrently(file_app, 8, redeem)

        assert sum(1 for success, _ in results if success) == 3
        assert [reason for success, reason in results if not success] == [RedemptionFailure.INSUFFICIENT_POINTS] * 5

        with file_app.app_context():
            account = get_services().ledger.get_balance('user-1')
            assert account.available_points == 0
            assert account.redeemed_points == 300
            assert RewardRedemption.query.count() == 3
            assert PointTransaction.query.filter_by(transaction_type='redeemed').count() == 3
            assert get_services().ledger.reconcile('user-1')['ok'] is True

    def test_stock_limits_redemptions_across_users(self, file_app, make_reward, credit_user):
        reward_id = make_reward(target_app=file_app, points_cost=50, stock=2)
        for i in range(6):
            credit_user(f'user-{i}', 100, target_app=file_app)

        def redeem(i):
            result = get_services().engine.redeem(f'user-{i}', reward_id)
            return result.success, result.reason

        results = _run_concurrently(file_app, 6, redeem)

        assert sum(1 for success, _ in results if success) == 2
        assert all(reason == RedemptionFailure.OUT_OF_STOCK for success, reason in results if not success)

        with file_app.app_context():
            services = get_services()
            assert services.catalog.get_by_id(reward_id).stock == 0
            balances = sorted(services.ledger.get_balance(f'user-{i}').available_points for i in range(6))
            assert balances == [50, 50, 100, 100, 100, 100]
            assert all(report['ok'] for report in services.ledger.reconcile_all())


class TestConcurrentApprovals:

    def test_two_approvals_for_one_balance(self, file_app, make_reward, credit_user):
        """Two 500-point requests approved at once against a 500-point balance."""
        reward_id = make_reward(target_app=file_app, points_cost=500, stock=1)
        credit_user('user-1', 500, target_app=file_app)

        with file_app.app_context():
            workflow = get_services().workflow
            request_ids = [workflow.create_request('user-1', reward_id).id for _ in range(2)]

        def approve(i):
            return get_services().workflow.decide(request_ids[i], 'approved', 'admin-1').outcome

        outcomes = _run_concurrently(file_app, 2, approve)

        assert sorted(outcomes) == [DecisionOutcome.APPROVED, DecisionOutcome.REVERSED]

        with file_app.app_context():
            services = get_services()
            assert services.ledger.get_balance('user-1').available_points == 0
            assert services.catalog.get_by_id(reward_id).stock == 0

            requests = [services.workflow.get_request(rid) for rid in request_ids]
            assert sorted(r.status for r in requests) == ['approved', 'rejected']
            assert [r.auto_reversed for r in requests if r.status == 'rejected'] == [True]
            notes = [r.admin_notes for r in requests if r.status == 'rejected'][0]
            assert 'Automatic redemption failed' in notes
            assert any(cause in notes.lower() for cause in ('out of stock', 'insufficient points'))

    def test_same_request_decided_once(self, file_app, make_reward, credit_user):
        reward_id = make_reward(target_app=file_app, points_cost=100, stock=5)
        credit_user('user-1', 1000, target_app=file_app)

        with file_app.app_context():
            request_id = get_services().workflow.create_request('user-1', reward_id).id

        def approve(_):
            try:
                return get_services().workflow.decide(request_id, 'approved', 'admin-1').outcome
            except Exception as e:
                return type(e).__name__

        outcomes = _run_concurrently(file_app, 4, approve)

        assert outcomes.count(DecisionOutcome.APPROVED) == 1
        assert outcomes.count('InvalidStatusTransitionError') == 3

        with file_app.app_context():
            services = get_services()
            assert services.ledger.get_balance('user-1').available_points == 900
            assert services.catalog.get_by_id(reward_id).stock == 4


class TestConcurrentLedger:

    def test_interleaved_credits_and_debits(self, file_app, credit_user):
        credit_user('user-1', 100, target_app=file_app)

        def mutate(i):
            ledger = get_services().ledger
            if i % 2:
                return ledger.debit('user-1', 30, f'debit {i}')
            ledger.credit('user-1', 10, f'credit {i}')
            return None

        results = _run_concurrently(file_app, 10, mutate)
        debited = sum(1 for r in results if r is True)

        with file_app.app_context():
            ledger = get_services().ledger
            account = ledger.get_balance('user-1')
            assert account.earned_points == 150
            assert account.redeemed_points == 30 * debited
            assert account.available_points == 150 - 30 * debited
            assert account.available_points >= 0
            assert ledger.reconcile('user-1')['ok'] is True


class TestReadsDoNotBlockWriters:

    def test_open_read_context_does_not_block_credit(self, file_app, credit_user):
        """A request that has read a balance and is still running must not hold the write lock."""
        credit_user('user-1', 100, target_app=file_app)
        read_done = threading.Event()
        write_done = threading.Event()
        outcome = {}

        def reader():
            with file_app.app_context():
                outcome['balance'] = get_services().ledger.get_balance('user-1').available_points
                read_done.set()
                outcome['write_seen_while_reading'] = write_done.wait(timeout=5)

        def writer():
            read_done.wait(timeout=5)
            with file_app.app_context():
                try:
                    get_services().ledger.credit('user-2', 5, 'Class attendance')
                    outcome['write'] = 'ok'
                except Exception as e:
                    outcome['write'] = f'{type(e).__name__}: {e}'
                finally:
                    write_done.set()

        threads = [threading.Thread(target=reader), threading.Thread(target=writer)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert outcome['balance'] == 100
        assert outcome['write'] == 'ok'
        assert outcome['write_seen_while_reading'] is True

        with file_app.app_context():
            assert get_services().ledger.get_balance('user-2').available_points == 5

    def test_read_then_write_in_one_context(self, file_app, credit_user):
        credit_user('user-1', 100, target_app=file_app)

        with file_app.app_context():
            ledger = get_services().ledger
            assert ledger.get_balance('user-1').available_points == 100
            ledger.debit('user-1', 40, 'Smoothie')
            assert ledger.get_balance('user-1').available_points == 60
