"""
Business logic services for the rewards ledger.
"""
from flask import current_app

from .points_ledger import PointsLedgerService
from .reward_catalog import RewardCatalogService
from .redemption_engine import RedemptionEngine, RedemptionResult, RedemptionFailure, RedemptionRejected
from .request_workflow import RequestWorkflow, DecisionResult, DecisionOutcome
from .audit import AuditRecorder

__all__ = [
    'PointsLedgerService',
    'RewardCatalogService',
    'RedemptionEngine',
    'RedemptionResult',
    'RedemptionFailure',
    'RedemptionRejected',
    'RequestWorkflow',
    'DecisionResult',
    'DecisionOutcome',
    'AuditRecorder',
    'LoyaltyServices',
    'init_services',
    'get_services',
]


class LoyaltyServices:
    """The wired-up service graph for one application."""

    def __init__(self, audit: AuditRecorder = None):
        self.ledger = PointsLedgerService()
        self.catalog = RewardCatalogService()
        self.engine = RedemptionEngine(self.ledger, self.catalog)
        self.audit = audit or AuditRecorder()
        self.workflow = RequestWorkflow(self.engine, self.catalog, self.audit)

    def open(self) -> 'LoyaltyServices':
        self.audit.open()
        return self

    def close(self) -> None:
        self.audit.close()


def init_services(app, audit: AuditRecorder = None) -> LoyaltyServices:
    """Build the services for ``app`` and open their audit recorder."""
    services = LoyaltyServices(audit=audit).open()
    app.extensions['loyalty'] = services
    return services


def get_services() -> LoyaltyServices:
    return current_app.extensions['loyalty']
