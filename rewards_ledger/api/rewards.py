"""
Rewards API endpoints.

Handles:
- Rewards catalog (read for everyone, write for admins)
- Stock adjustment (admin)
- Redemption records and their fulfilment (admin)
"""
from flask import Blueprint, request, jsonify, g

from ..middleware.auth import require_auth, require_admin
from ..models.rewards import RedemptionStatus
from ..services import get_services
from ..utils.errors import bad_request, not_found, ErrorCode

rewards_bp = Blueprint('rewards', __name__)

REDEMPTION_STATUSES = [s.value for s in RedemptionStatus]


# ==============================================================================
# REWARDS CATALOG
# ==============================================================================

@rewards_bp.route('', methods=['GET'])
@require_auth
def list_rewards():
    """
    List rewards, newest first.

    Query params:
        include_inactive: Include inactive rewards (admin only, default false)
    """
    include_inactive = request.args.get('include_inactive', 'false').lower() == 'true'
    catalog = get_services().catalog

    if include_inactive and g.is_admin:
        rewards = catalog.list_all()
    else:
        rewards = catalog.list_active()

    return jsonify({
        'rewards': [r.to_dict() for r in rewards],
        'count': len(rewards)
    })


@rewards_bp.route('', methods=['POST'])
@require_admin
def create_reward():
    """
    Create a new reward.

    JSON body:
        name: Reward name (required)
        type: 'product', 'discount' or 'service' (required)
        points_cost: Points required to redeem (required)
        description, category, image_url: Optional text
        stock: Limited stock (null = unlimited)
        discount_percentage: 1-100 (discount rewards)
        is_active: Default true
    """
    data = request.get_json(silent=True) or {}
    reward = get_services().catalog.create(data)
    return jsonify({'reward': reward.to_dict()}), 201


@rewards_bp.route('/stats', methods=['GET'])
@require_admin
def rewards_stats():
    return jsonify(get_services().catalog.stats())


@rewards_bp.route('/<id:reward_id>', methods=['GET'])
@require_auth
def get_reward(reward_id):
    reward = get_services().catalog.get_by_id(reward_id)
    if not reward.is_active and not g.is_admin:
        return not_found(f'Reward with ID {reward_id} not found')
    return jsonify({'reward': reward.to_dict()})


@rewards_bp.route('/<id:reward_id>', methods=['PUT'])
@require_admin
def update_reward(reward_id):
    data = request.get_json(silent=True) or {}
    reward = get_services().catalog.update(reward_id, data)
    return jsonify({'reward': reward.to_dict()})


@rewards_bp.route('/<id:reward_id>', methods=['DELETE'])
@require_admin
def delete_reward(reward_id):
    get_services().catalog.delete(reward_id)
    return jsonify({'success': True, 'deleted_id': reward_id})


@rewards_bp.route('/<id:reward_id>/stock', methods=['POST'])
@require_admin
def adjust_stock(reward_id):
    """
    Adjust stock by a delta.

    JSON body:
        delta: Integer, negative to remove stock (required)
    """
    data = request.get_json(silent=True) or {}
    if 'delta' not in data:
        return bad_request('delta is required', ErrorCode.MISSING_FIELD)

    new_stock = get_services().catalog.adjust_stock(reward_id, data['delta'])
    return jsonify({'reward_id': reward_id, 'stock': new_stock})


# ==============================================================================
# REDEMPTIONS
# ==============================================================================

@rewards_bp.route('/redemptions', methods=['GET'])
@require_auth
def list_redemptions():
    """
    List redemption records, newest first.

    Query params:
        status: pending, completed or cancelled
        user_id: Filter by user (admin only; others always see their own)
    """
    status = request.args.get('status')
    if status and status not in REDEMPTION_STATUSES:
        return bad_request(f"status must be one of {', '.join(REDEMPTION_STATUSES)}", ErrorCode.INVALID_FIELD)

    user_id = request.args.get('user_id') if g.is_admin else g.user_id
    redemptions = get_services().engine.list_redemptions(user_id=user_id, status=status)

    return jsonify({
        'redemptions': [r.to_dict() for r in redemptions],
        'count': len(redemptions)
    })


@rewards_bp.route('/redemptions/<id:redemption_id>/complete', methods=['POST'])
@require_admin
def complete_redemption(redemption_id):
    redemption = get_services().engine.complete_redemption(redemption_id)
    return jsonify({'redemption': redemption.to_dict()})


@rewards_bp.route('/redemptions/<id:redemption_id>/cancel', methods=['POST'])
@require_admin
def cancel_redemption(redemption_id):
    """
    Cancel a pending redemption. Does not refund points.

    JSON body:
        reason: Optional text
    """
    data = request.get_json(silent=True) or {}
    redemption = get_services().engine.cancel_redemption(redemption_id, data.get('reason'))
    return jsonify({'redemption': redemption.to_dict()})
