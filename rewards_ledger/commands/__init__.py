"""
CLI Commands for the rewards ledger.

Usage:
    flask ledger reconcile                      # Check all accounts against the log
    flask ledger reconcile --user-id u-123      # Check one account
    flask ledger credit u-123 100 --description "Welcome bonus" --bonus
    flask ledger stats                          # Catalog and request statistics
"""
from .ledger import init_app as init_ledger_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_ledger_commands(app)
