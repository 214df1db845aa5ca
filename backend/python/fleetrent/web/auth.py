"""
JWT Authentication for the fleet API.

Validates bearer tokens and maps the caller's role to a Scope. This is the
only place roles are interpreted; everything below the web layer works
with the resolved Scope.
"""

from datetime import timedelta
from functools import wraps

import jwt
from flask import current_app, g, request

from ..common.date_utils import utcnow
from ..common.exceptions import AccessDeniedError, FleetError
from ..common.scope import Scope

SUPER_ADMIN = 'SUPER_ADMIN'
COMPANY_ADMIN = 'COMPANY_ADMIN'
COMPANY_MANAGER = 'COMPANY_MANAGER'

COMPANY_ROLES = (COMPANY_ADMIN, COMPANY_MANAGER)


class AuthError(FleetError):
    """Authentication error with status code."""
    status_code = 401
    kind = 'Authentication failed'


def _get_jwt_secret():
    """JWT secret from the app config, then the environment. Raises if neither is set."""
    secret = current_app.config.get('JWT_SECRET')
    if secret:
        return secret

    from ..common.config_loader import get_config
    secret = get_config().get_secret('JWT_SECRET')
    if secret:
        return secret
    raise AuthError('JWT secret not configured', 500)


def _get_jwt_algorithm():
    algorithm = current_app.config.get('JWT_ALGORITHM')
    if algorithm:
        return algorithm

    from ..common.config_loader import get_config
    jwt_cfg = get_config().app.jwt
    return (jwt_cfg.algorithm if jwt_cfg else None) or 'HS256'


def get_token_from_header():
    """
    Extract JWT token from Authorization header.

    Returns:
        str: Token string or None
    """
    auth_header = request.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[7:]
    return None


def decode_token(token):
    """
    Decode and validate JWT token.

    Args:
        token: JWT token string

    Returns:
        dict: Decoded payload

    Raises:
        AuthError: If token is invalid
    """
    try:
        return jwt.decode(token, _get_jwt_secret(), algorithms=[_get_jwt_algorithm()])
    except jwt.ExpiredSignatureError:
        raise AuthError('Token has expired')
    except jwt.InvalidTokenError as e:
        raise AuthError(f'Invalid token: {str(e)}')


def create_token(claims, secret, algorithm='HS256', expires_in=timedelta(hours=12)):
    """Issue a signed token (used by operators' tooling and tests)."""
    payload = dict(claims)
    payload['exp'] = utcnow() + expires_in
    return jwt.encode(payload, secret, algorithm=algorithm)


def scope_from_claims(payload) -> Scope:
    """
    Map token claims to a Scope.

    SUPER_ADMIN is unrestricted; company roles are limited to the
    company_id claim. Any other role is rejected.
    """
    role = payload.get('role', '')
    if role == SUPER_ADMIN:
        return Scope.all_companies()
    if role in COMPANY_ROLES:
        company_id = payload.get('company_id')
        if not company_id:
            raise AccessDeniedError('User must belong to a company')
        return Scope.for_company(company_id)
    raise AccessDeniedError(f'Role "{role}" does not have API access')


def require_scope(unrestricted_only=False):
    """
    Decorator factory requiring a valid token.
    Sets g.current_user (claims) and g.scope.

    Usage:
        @api_bp.route('/billing/run', methods=['POST'])
        @require_scope(unrestricted_only=True)
        def run_billing():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            token = get_token_from_header()
            if not token:
                raise AuthError('Missing authentication token')

            payload = decode_token(token)
            scope = scope_from_claims(payload)
            if unrestricted_only and not scope.unrestricted:
                raise AccessDeniedError('This endpoint requires an unrestricted scope')

            g.current_user = payload
            g.scope = scope
            return f(*args, **kwargs)

        return decorated
    return decorator
