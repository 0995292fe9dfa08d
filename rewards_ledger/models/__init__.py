"""
Database models for the rewards ledger.
Points balances, the points log, the reward catalog and reward requests.
"""
from .points import (
    PointTransactionType,
    CREDIT_TYPES,
    DEBIT_TYPES,
    PointsAccount,
    PointTransaction,
)
from .rewards import RewardType, RedemptionStatus, RewardItem, RewardRedemption
from .requests import RequestStatus, RewardRequest

__all__ = [
    # Points
    'PointTransactionType',
    'CREDIT_TYPES',
    'DEBIT_TYPES',
    'PointsAccount',
    'PointTransaction',
    # Catalog
    'RewardType',
    'RedemptionStatus',
    'RewardItem',
    'RewardRedemption',
    # Workflow
    'RequestStatus',
    'RewardRequest',
]
