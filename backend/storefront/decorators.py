# Overview: Request decorators for API routes.

from functools import wraps

from flask import g, request

from .responses import envelope
from .services import session_service


def require_auth(f):
    """
    Require a bearer session token.

    Sets g.user_id, g.phone, g.role and g.session_context. Returns 401 when
    the Authorization header is missing or the token is invalid or expired.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return envelope(False, "Access denied. No token provided.", status=401)

        context = session_service.validate_session(auth_header.split(" ", 1)[1])
        if context is None:
            return envelope(False, "Invalid token", status=401)

        g.user_id = context.user_id
        g.phone = context.phone
        g.role = context.role
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require @require_auth first; 403 unless the session role is one of `roles`."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "role"):
                return envelope(False, "Access denied. No token provided.", status=401)
            if g.role not in roles:
                return envelope(False, "You are not authorized to access this resource", status=403)
            return f(*args, **kwargs)

        return decorated_function
    return decorator
