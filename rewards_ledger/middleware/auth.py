"""
Bearer Token Authentication Middleware.

Verifies JWTs issued by the identity provider and exposes the caller on
``flask.g``. Tokens are HS256-signed with the app's SECRET_KEY and carry:
- sub: User id
- role: 'admin' grants the admin capability
- name: Display name (snapshotted on reward requests)
- email: Email (snapshotted on reward requests)
- exp: Expiration time

With AUTH_DEV_MODE on, X-User-ID / X-User-Role headers are accepted
when no token is sent.
"""
import logging
import jwt
from functools import wraps
from flask import request, g, current_app

from ..utils.errors import unauthorized, forbidden, ErrorCode

logger = logging.getLogger(__name__)

ADMIN_ROLE = 'admin'


def decode_access_token(token: str) -> dict | None:
    """
    Decode and verify an access token.

    Args:
        token: JWT from the Authorization header

    Returns:
        Decoded token payload or None if invalid
    """
    if not token:
        return None

    config = current_app.config
    audience = config.get('JWT_AUDIENCE')

    try:
        return jwt.decode(
            token,
            config['SECRET_KEY'],
            algorithms=[config.get('JWT_ALGORITHM', 'HS256')],
            audience=audience,
            options={
                'verify_aud': bool(audience),
                'verify_exp': True,
                'require': ['sub'],
            }
        )
    except jwt.ExpiredSignatureError:
        logger.info('Access token expired')
        return None
    except jwt.InvalidAudienceError:
        logger.warning('Invalid token audience')
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f'Invalid token: {e}')
        return None


def _set_identity(user_id: str, role: str = None, name: str = None, email: str = None, method: str = None):
    g.user_id = str(user_id)
    g.is_admin = role == ADMIN_ROLE
    g.user_name = name
    g.user_email = email
    g.auth_method = method


def _authenticate() -> tuple | None:
    """Populate g from the request, or return an error response."""
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        token = auth_header.split(' ', 1)[1].strip()
        payload = decode_access_token(token)
        if not payload:
            return unauthorized('Invalid or expired token', ErrorCode.INVALID_TOKEN)
        _set_identity(
            payload['sub'],
            role=payload.get('role'),
            name=payload.get('name'),
            email=payload.get('email'),
            method='bearer_token',
        )
        return None

    if current_app.config.get('AUTH_DEV_MODE'):
        user_id = request.headers.get('X-User-ID')
        if user_id:
            _set_identity(
                user_id,
                role=request.headers.get('X-User-Role'),
                name=request.headers.get('X-User-Name'),
                email=request.headers.get('X-User-Email'),
                method='dev_header',
            )
            return None

    return unauthorized()


def require_auth(f):
    """
    Decorator to require an authenticated user.

    Sets g.user_id, g.is_admin, g.user_name and g.user_email.

    Usage:
        @require_auth
        def my_endpoint():
            user_id = g.user_id
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        error = _authenticate()
        if error:
            return error
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Decorator to require an authenticated admin. Implies require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        error = _authenticate()
        if error:
            return error
        if not g.is_admin:
            logger.warning(f'Admin endpoint {request.path} refused for {g.user_id}')
            return forbidden('Admin access required')
        return f(*args, **kwargs)

    return decorated_function
