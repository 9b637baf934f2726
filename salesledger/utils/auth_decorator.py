from flask import request, jsonify
from functools import wraps
import logging
import jwt

from .. import config

logger = logging.getLogger(__name__)


class AuthError(Exception):
    pass


def extract_token():
    # Authorization header, X-Auth-Token header, or token cookie
    auth_header = request.headers.get('Authorization') or request.headers.get('X-Auth-Token') or request.cookies.get('token')
    if not auth_header:
        return None
    if auth_header.startswith('Bearer '):
        return auth_header[len('Bearer '):]
    return auth_header


def decode_token(token):
    """Decode a HS256 JWT into the caller dict stored on request.user."""
    try:
        # Decode with explicit leeway to handle minor clock skew
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=['HS256'],
            options={"verify_exp": True},
            leeway=10
        )
    except jwt.ExpiredSignatureError:
        raise AuthError('Token has expired')
    except jwt.InvalidTokenError:
        raise AuthError('Invalid token')

    if not payload.get('employee_id'):
        raise AuthError('Invalid token payload')
    return {
        'employee_id': payload.get('employee_id'),
        'role': str(payload.get('role') or '').lower(),
        'branch_id': payload.get('branch_id'),
    }


def authenticate_request():
    """Populate request.user from the JWT; return an error response or None."""
    token = extract_token()
    if not token:
        return jsonify({'error': 'Authentication token is missing'}), 401
    try:
        request.user = decode_token(token)
    except AuthError as e:
        return jsonify({'error': str(e)}), 401
    return None


def token_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        # Allow OPTIONS requests to pass through
        if request.method == 'OPTIONS':
            return f(*args, **kwargs)
        if not getattr(request, 'user', None):
            denied = authenticate_request()
            if denied:
                return denied
        return f(*args, **kwargs)

    return decorated


def is_unrestricted(user):
    return str((user or {}).get('role') or '').lower() in config.UNRESTRICTED_ROLES


def branch_scope(user, requested_ids=None):
    """Branch ids the caller may read.

    Restricted roles only ever get their own branch. Unrestricted roles get
    the requested ids, or None (meaning every branch) when none were asked for.
    """
    if not is_unrestricted(user):
        own = (user or {}).get('branch_id')
        return [own] if own is not None else []
    if requested_ids:
        return list(requested_ids)
    return None
