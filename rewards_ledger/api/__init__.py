"""
API blueprints for the rewards ledger.
"""
from .converters import RecordIdConverter
from .points import points_bp
from .rewards import rewards_bp
from .reward_requests import reward_requests_bp
