"""
Points API endpoints.

Handles:
- Balance, history and statistics for the caller (or any user, for admins)
- Manual credits and deductions (admin)
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.auth import require_auth, require_admin
from ..models.points import PointsAccount, PointTransactionType
from ..services import get_services
from ..utils.errors import bad_request, forbidden, ErrorCode
from ..utils.exceptions import AccountNotFoundError

points_bp = Blueprint('points', __name__)


def _target_user_id():
    """The caller's own id, or ?user_id= when the caller is an admin."""
    user_id = request.args.get('user_id')
    if not user_id or user_id == g.user_id:
        return g.user_id, None
    if not g.is_admin:
        return None, forbidden("Cannot view another user's points")
    return user_id, None


def _balance_dict(user_id: str) -> dict:
    try:
        return get_services().ledger.get_balance(user_id).to_dict()
    except AccountNotFoundError:
        return PointsAccount.empty_dict(user_id)


# ==============================================================================
# BALANCE & HISTORY
# ==============================================================================

@points_bp.route('/balance', methods=['GET'])
@require_auth
def get_balance():
    """
    Get a points balance.

    Query params:
        user_id: Another user's id (admin only)

    Returns:
        Balance; users never credited get zeros with exists=false
    """
    user_id, error = _target_user_id()
    if error:
        return error

    return jsonify({'balance': _balance_dict(user_id)})


@points_bp.route('/history', methods=['GET'])
@require_auth
def get_history():
    """
    Get points transactions, newest first.

    Query params:
        limit: Max entries (default 50)
        user_id: Another user's id (admin only)
    """
    user_id, error = _target_user_id()
    if error:
        return error

    limit = request.args.get('limit')
    if limit is not None:
        try:
            limit = int(limit)
        except ValueError:
            return bad_request('limit must be an integer', ErrorCode.INVALID_FIELD)

    transactions = get_services().ledger.history(user_id, limit)
    return jsonify({
        'transactions': [t.to_dict() for t in transactions],
        'count': len(transactions)
    })


@points_bp.route('/stats', methods=['GET'])
@require_auth
def get_stats():
    user_id, error = _target_user_id()
    if error:
        return error

    return jsonify(get_services().ledger.stats(user_id))


# ==============================================================================
# ADMIN ADJUSTMENTS
# ==============================================================================

@points_bp.route('/credit', methods=['POST'])
@require_admin
def credit_points():
    """
    Credit points to a user.

    JSON body:
        user_id: User to credit (required)
        amount: Positive integer (required)
        description: Reason shown in history (required)
        type: 'earned' (default) or 'bonus'
        related_id: Optional source reference
        metadata: Optional object

    Returns:
        Created transaction and the new balance
    """
    data = request.get_json(silent=True) or {}
    for field in ('user_id', 'amount', 'description'):
        if data.get(field) in (None, ''):
            return bad_request(f'{field} is required', ErrorCode.MISSING_FIELD)

    metadata = data.get('metadata')
    if metadata is not None and not isinstance(metadata, dict):
        return bad_request('metadata must be an object', ErrorCode.INVALID_FIELD)
    metadata = dict(metadata or {}, credited_by=g.user_id)

    user_id = str(data['user_id'])
    entry = get_services().ledger.credit(
        user_id,
        data['amount'],
        data['description'],
        related_id=data.get('related_id'),
        metadata=metadata,
        transaction_type=data.get('type', PointTransactionType.EARNED.value),
    )

    return jsonify({
        'transaction': entry.to_dict(),
        'balance': _balance_dict(user_id)
    }), 201


@points_bp.route('/debit', methods=['POST'])
@require_admin
def debit_points():
    """
    Deduct points from a user.

    JSON body:
        user_id, amount, description (required), related_id (optional)

    Returns:
        success=false with the unchanged balance when points are insufficient
    """
    data = request.get_json(silent=True) or {}
    for field in ('user_id', 'amount', 'description'):
        if data.get(field) in (None, ''):
            return bad_request(f'{field} is required', ErrorCode.MISSING_FIELD)

    user_id = str(data['user_id'])
    success = get_services().ledger.debit(
        user_id,
        data['amount'],
        data['description'],
        related_id=data.get('related_id'),
        metadata={'debited_by': g.user_id},
    )

    response = {'success': success, 'balance': _balance_dict(user_id)}
    if not success:
        response['message'] = 'Insufficient points'
    return jsonify(response)
