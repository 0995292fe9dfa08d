"""
Middleware package for the rewards ledger.
"""
from .auth import require_auth, require_admin, decode_access_token
