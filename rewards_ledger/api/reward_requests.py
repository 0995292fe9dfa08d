"""
Reward Requests API endpoints.

Users request a reward; admins approve or reject. Approval runs the
redemption and may come back as 'reversed' when it fails.
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.auth import require_auth, require_admin
from ..services import get_services
from ..utils.errors import bad_request, ErrorCode
from ..utils.exceptions import AuthorizationError

reward_requests_bp = Blueprint('reward_requests', __name__)


@reward_requests_bp.route('', methods=['POST'])
@require_auth
def create_request():
    """
    Request a reward for the caller.

    JSON body:
        reward_id: Reward to request (required)
        user_notes: Optional note for the admin

    Returns:
        The pending request
    """
    data = request.get_json(silent=True) or {}
    reward_id = data.get('reward_id')
    if reward_id is None:
        return bad_request('reward_id is required', ErrorCode.MISSING_FIELD)
    if not isinstance(reward_id, int) or isinstance(reward_id, bool):
        return bad_request('reward_id must be an integer', ErrorCode.INVALID_FIELD)

    reward_request = get_services().workflow.create_request(
        g.user_id,
        reward_id,
        user_notes=data.get('user_notes'),
        user_name=g.user_name,
        user_email=g.user_email,
    )
    return jsonify({'request': reward_request.to_dict()}), 201


@reward_requests_bp.route('', methods=['GET'])
@require_auth
def list_requests():
    """
    List requests, newest first.

    Query params:
        status: pending, approved or rejected
        user_id: Filter by user (admin only; others always see their own)
    """
    status = request.args.get('status')
    user_id = request.args.get('user_id') if g.is_admin else g.user_id

    requests = get_services().workflow.list_requests(status=status, user_id=user_id)
    return jsonify({
        'requests': [r.to_dict() for r in requests],
        'count': len(requests)
    })


@reward_requests_bp.route('/stats', methods=['GET'])
@require_admin
def requests_stats():
    return jsonify(get_services().workflow.stats())


@reward_requests_bp.route('/<id:request_id>', methods=['GET'])
@require_auth
def get_request(request_id):
    reward_request = get_services().workflow.get_request(request_id)
    if reward_request.user_id != g.user_id and not g.is_admin:
        raise AuthorizationError("Cannot view another user's request")
    return jsonify({'request': reward_request.to_dict()})


@reward_requests_bp.route('/<id:request_id>/decision', methods=['POST'])
@require_admin
def decide_request(request_id):
    """
    Approve or reject a pending request.

    JSON body:
        decision: 'approved' or 'rejected' (required)
        admin_notes: Optional note

    Returns:
        outcome: approved, rejected, or reversed (approved but the
        redemption failed, so the approval was undone)
    """
    data = request.get_json(silent=True) or {}
    decision = data.get('decision')
    if not decision:
        return bad_request('decision is required', ErrorCode.MISSING_FIELD)

    result = get_services().workflow.decide(
        request_id,
        decision,
        processed_by=g.user_id,
        admin_notes=data.get('admin_notes'),
    )
    return jsonify(result.to_dict())
