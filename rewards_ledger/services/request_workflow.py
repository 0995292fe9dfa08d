"""
Reward Request Workflow.

State machine for the approval step in front of a redemption:

    pending --approve--> approved   (redemption succeeded)
    pending --reject---> rejected
    approved --compensate--> rejected (redemption failed, auto_reversed)

Approval is written first and the redemption runs afterwards as its own
transaction, because the two touch different records. If the redemption
fails for any reason the approval is reversed by a compensating write,
and the caller is told the net outcome was a reversal.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any

from flask import current_app
from sqlalchemy import select, update, func

from ..extensions import db
from ..models.requests import RewardRequest, RequestStatus
from ..store import ledger_transaction, run_in_transaction
from ..utils.exceptions import (
    LedgerError,
    StorageError,
    CompensationError,
    InvalidStatusTransitionError,
    RequestNotFoundError,
    RewardNotFoundError,
    ValidationError,
)
from ..utils.validation import validate_positive_int, validate_text
from .audit import AuditRecorder
from .redemption_engine import RedemptionEngine, RedemptionResult
from .reward_catalog import RewardCatalogService

REQUEST_STATUSES = [s.value for s in RequestStatus]
DECISIONS = (RequestStatus.APPROVED.value, RequestStatus.REJECTED.value)


class DecisionOutcome:
    APPROVED = 'approved'
    REJECTED = 'rejected'
    REVERSED = 'reversed'  # approved, then reversed because the redemption failed


@dataclass
class DecisionResult:
    """Net outcome of an admin decision."""
    request: RewardRequest
    outcome: str
    message: str
    redemption: Optional[RedemptionResult] = None
    error: Optional[Exception] = None

    @property
    def reversed(self) -> bool:
        return self.outcome == DecisionOutcome.REVERSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request': self.request.to_dict(),
            'outcome': self.outcome,
            'message': self.message,
            'redemption': self.redemption.to_dict() if self.redemption else None,
            'error': getattr(self.error, 'message', str(self.error)) if self.error else None,
        }


class RequestWorkflow:
    """Create, decide and query reward requests."""

    def __init__(self, engine: RedemptionEngine, catalog: RewardCatalogService, audit: AuditRecorder):
        self.engine = engine
        self.catalog = catalog
        self.audit = audit

    # ==================== Create ====================

    def create_request(
        self,
        user_id: str,
        reward_id: int,
        user_notes: Optional[str] = None,
        user_name: Optional[str] = None,
        user_email: Optional[str] = None
    ) -> RewardRequest:
        """
        Create a pending request, snapshotting the reward's name and cost.

        Balance, stock and the active flag are not checked here; they can
        change before an admin reviews the request.

        Raises:
            RewardNotFoundError: No reward with that id
        """
        validate_text(user_id, 'user_id', required=True, max_length=128)
        validate_positive_int(reward_id, 'reward_id')
        validate_text(user_notes, 'user_notes')
        validate_text(user_name, 'user_name', max_length=200)
        validate_text(user_email, 'user_email', max_length=200)

        with ledger_transaction() as txn:
            reward = self.catalog.get_within(txn, reward_id)
            if not reward:
                raise RewardNotFoundError(reward_id)

            request = RewardRequest(
                user_id=user_id,
                user_name=user_name,
                user_email=user_email,
                reward_id=reward.id,
                reward_name=reward.name,
                reward_points_cost=reward.points_cost,
                status=RequestStatus.PENDING.value,
                user_notes=user_notes,
            )
            txn.add(request)
            txn.flush()
            request_id = request.id
            reward_name = reward.name
            points_cost = reward.points_cost

        current_app.logger.info(
            f"Reward request {request_id} created by {user_id} for '{reward_name}' ({points_cost} pts)"
        )
        self.audit.record('request.created', request_id=request_id, user_id=user_id, reward_id=reward_id)
        return request

    # ==================== Decide ====================

    def decide(
        self,
        request_id: int,
        decision: str,
        processed_by: str,
        admin_notes: Optional[str] = None
    ) -> DecisionResult:
        """
        Approve or reject a pending request.

        Approving runs the redemption. If it fails (business rule or
        storage error) the approval is reversed and the outcome is
        'reversed'.

        Raises:
            ValidationError: Unknown decision
            RequestNotFoundError: No request with that id
            InvalidStatusTransitionError: The request is not pending
            CompensationError: The redemption failed and the reversal
                could not be written
        """
        decision = getattr(decision, 'value', decision)
        if decision not in DECISIONS:
            raise ValidationError(f"decision must be one of {', '.join(DECISIONS)}", field='decision')
        validate_text(processed_by, 'processed_by', required=True, max_length=128)
        validate_text(admin_notes, 'admin_notes')

        self._mark_decided(request_id, decision, processed_by, admin_notes)
        request = self.get_request(request_id)
        user_id = request.user_id
        reward_id = request.reward_id
        snapshot_cost = request.reward_points_cost

        current_app.logger.info(f"Reward request {request_id} {decision} by {processed_by}")
        self.audit.record(f'request.{decision}', request_id=request_id, processed_by=processed_by)

        if decision == RequestStatus.REJECTED.value:
            return DecisionResult(request=request, outcome=DecisionOutcome.REJECTED, message='Request rejected')

        try:
            redemption = self.engine.redeem(
                user_id,
                reward_id,
                request_id=request_id,
                expected_points_cost=snapshot_cost,
            )
        except LedgerError as e:
            current_app.logger.error(f"Redemption for approved request {request_id} failed: {e.message}")
            return self._reverse(request_id, e.message, error=e)
        except Exception as e:
            # Unexpected failure: still undo the approval, then let it propagate
            self.compensate(request_id, str(e))
            raise

        if not redemption.success:
            return self._reverse(request_id, redemption.message, redemption=redemption)

        return DecisionResult(
            request=self.get_request(request_id),
            outcome=DecisionOutcome.APPROVED,
            message=redemption.message,
            redemption=redemption,
        )

    def compensate(self, request_id: int, reason: str) -> RewardRequest:
        """
        Reverse an approval whose redemption failed.

        Sets the request to rejected with ``auto_reversed`` and a note
        carrying ``reason``. Calling it again on a request it already
        reversed is a no-op.

        Raises:
            CompensationError: The request is in any other state, or the
                reversal could not be written
        """
        note = f"{current_app.config['AUTO_REVERSAL_NOTE']} Reason: {reason}"

        try:
            reversed_now = self._write_reversal(request_id, note)
        except CompensationError as e:
            self._report_compensation_failure(e)
            raise
        except StorageError as e:
            error = CompensationError(request_id, reason, original_error=e)
            self._report_compensation_failure(error)
            raise error from e

        if reversed_now:
            current_app.logger.warning(f"Approval of request {request_id} reversed: {reason}")
            self.audit.record('request.reversed', level=logging.WARNING, request_id=request_id, reason=reason)
        else:
            current_app.logger.info(f"Request {request_id} already reversed, nothing to do")

        return self.get_request(request_id)

    # ==================== Queries ====================

    def get_request(self, request_id: int) -> RewardRequest:
        request = db.session.get(RewardRequest, request_id, populate_existing=True)
        if not request:
            raise RequestNotFoundError(request_id)
        return request

    def list_requests(self, status: str = None, user_id: str = None) -> List[RewardRequest]:
        """Requests, newest first, optionally filtered."""
        query = RewardRequest.query
        if status:
            if status not in REQUEST_STATUSES:
                raise ValidationError(f"status must be one of {', '.join(REQUEST_STATUSES)}", field='status')
            query = query.filter_by(status=status)
        if user_id:
            query = query.filter_by(user_id=user_id)
        return query.order_by(RewardRequest.request_date.desc(), RewardRequest.id.desc()).all()

    def stats(self) -> Dict[str, int]:
        counts = dict(
            db.session.execute(
                select(RewardRequest.status, func.count(RewardRequest.id)).group_by(RewardRequest.status)
            ).all()
        )
        result = {status: counts.get(status, 0) for status in REQUEST_STATUSES}
        result['total'] = sum(counts.values())
        return result

    # ==================== Helpers ====================

    def _mark_decided(self, request_id: int, decision: str, processed_by: str, admin_notes: Optional[str]) -> None:
        """Guarded pending -> decision write."""
        def work(txn):
            result = txn.execute(
                update(RewardRequest)
                .where(
                    RewardRequest.id == request_id,
                    RewardRequest.status == RequestStatus.PENDING.value
                )
                .values(
                    status=decision,
                    processed_date=datetime.utcnow(),
                    processed_by=processed_by,
                    admin_notes=admin_notes,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return

            current = txn.execute(
                select(RewardRequest.status).where(RewardRequest.id == request_id)
            ).scalar()
            if current is None:
                raise RequestNotFoundError(request_id)
            raise InvalidStatusTransitionError('reward request', current, decision)

        run_in_transaction(work)

    def _write_reversal(self, request_id: int, note: str) -> bool:
        """
        Guarded approved -> rejected write.

        Returns:
            True if this call reversed the request, False if it had
            already been reversed
        """
        def work(txn):
            result = txn.execute(
                update(RewardRequest)
                .where(
                    RewardRequest.id == request_id,
                    RewardRequest.status == RequestStatus.APPROVED.value
                )
                .values(
                    status=RequestStatus.REJECTED.value,
                    auto_reversed=True,
                    admin_notes=note,
                    processed_date=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return True

            row = txn.execute(
                select(RewardRequest.status, RewardRequest.auto_reversed).where(RewardRequest.id == request_id)
            ).first()
            if row is not None and row.status == RequestStatus.REJECTED.value and row.auto_reversed:
                return False
            state = row.status if row is not None else 'missing'
            raise CompensationError(request_id, f'request is {state}, expected approved')

        return run_in_transaction(work)

    def _reverse(
        self,
        request_id: int,
        reason: str,
        redemption: Optional[RedemptionResult] = None,
        error: Optional[Exception] = None
    ) -> DecisionResult:
        request = self.compensate(request_id, reason)
        return DecisionResult(
            request=request,
            outcome=DecisionOutcome.REVERSED,
            message=f'Approval reversed: redemption failed ({reason})',
            redemption=redemption,
            error=error,
        )

    def _report_compensation_failure(self, error: CompensationError) -> None:
        current_app.logger.critical(
            f"Compensation failed for request {error.request_id}: {error.message}"
        )
        self.audit.record(
            'request.compensation_failed',
            level=logging.CRITICAL,
            request_id=error.request_id,
            reason=error.reason,
        )
