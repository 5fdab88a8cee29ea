"""
Flask decorators for bearer-token authorization.

Admin endpoints accept the access token the backend issued to a signed-in
staff member (HS256, signed with the project's JWT secret). The caller's role
is read from ``app_metadata.role`` only. That section is writable with the
service-role key alone; ``user_metadata`` is editable by the signed-in user
and is never consulted for authorization.
"""

import logging
from functools import wraps
from typing import Any, Dict, Iterable, Optional

import jwt
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidSignatureError,
    InvalidTokenError,
)
from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)


class TokenValidationError(Exception):
    """Exception raised when JWT token validation fails."""
    pass


def validate_jwt_token(token: str) -> Dict[str, Any]:
    """Validate an HS256 access token and return its claims.

    Raises:
        TokenValidationError: If signature, expiry or audience checks fail
    """
    cfg = current_app.config["APP_CONFIG"]
    try:
        return jwt.decode(
            token,
            cfg.jwt_secret,
            algorithms=["HS256"],
            audience=cfg.jwt_audience,
            options={"require": ["exp", "sub"]},
            leeway=5,
        )
    except ExpiredSignatureError:
        raise TokenValidationError("Token expired")
    except InvalidAudienceError:
        raise TokenValidationError("Invalid audience")
    except InvalidSignatureError:
        raise TokenValidationError("Invalid signature")
    except DecodeError as e:
        raise TokenValidationError(f"Malformed token: {e}")
    except InvalidTokenError as e:
        raise TokenValidationError(f"Token validation failed: {e}")


def role_from_claims(claims: dict) -> Optional[str]:
    section = claims.get("app_metadata") or {}
    if isinstance(section, dict) and section.get("role"):
        return section["role"]
    return None


def require_bearer_token(roles: Optional[Iterable[str]] = None):
    """
    Require a valid bearer token; optionally restrict to caller roles.

    Args:
        roles: Allowed caller roles. ``None`` uses the configured admin roles.

    Returns:
        401 when the token is missing or invalid, 403 when the role is not
        allowed; otherwise calls the view with ``g.operator`` set to the
        caller's account id.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if current_app.config.get("TESTING") and current_app.config.get("SKIP_AUTH_FOR_TESTS"):
                g.operator = "test-operator"
                return fn(*args, **kwargs)

            auth_header = request.headers.get("Authorization", "")
            if not auth_header.startswith("Bearer ") or not auth_header[7:].strip():
                logger.warning("Admin request without bearer token: path=%s", request.path)
                return jsonify({"error": "Authorization header must be 'Bearer <token>'"}), 401

            try:
                claims = validate_jwt_token(auth_header[7:].strip())
            except TokenValidationError as e:
                logger.warning("Admin JWT validation failed: %s", e)
                return jsonify({"error": str(e)}), 401

            allowed = list(roles) if roles is not None else current_app.config["APP_CONFIG"].admin_roles
            caller_role = role_from_claims(claims)
            if caller_role not in allowed:
                logger.warning("Caller %s with role %s denied on %s", claims.get("sub"), caller_role, request.path)
                return jsonify({"error": f"Required role: {', '.join(allowed)}"}), 403

            g.operator = claims["sub"]
            g.operator_role = caller_role
            return fn(*args, **kwargs)

        return wrapper
    return decorator


def current_operator() -> str:
    """Account id of the authenticated caller (``anonymous`` outside auth)."""
    return getattr(g, "operator", None) or "anonymous"
