"""
Actor resolution — parses the bearer token and sets ``g.actor_id``.

Every ``/api/v1/`` route except health requires a valid access token. The
token only names the user; role and project access are re-read from the
database by the authorization service on each operation, so a deactivated
user is refused even while their token is still valid.
"""

import jwt as pyjwt
from flask import g, request

from siteledger.services.token_service import decode_access_token
from siteledger.utils.errors import E, api_error

# Paths that skip token auth entirely
AUTH_SKIP_PREFIXES = (
    "/api/v1/health",
)


def current_actor_id() -> int | None:
    return getattr(g, "actor_id", None)


def init_actor_auth(app):
    """Register token parsing as a before_request hook."""

    @app.before_request
    def _resolve_actor():
        g.actor_id = None

        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(AUTH_SKIP_PREFIXES):
            return None
        if request.method == "OPTIONS":
            return None

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return api_error(E.UNAUTHORIZED, "Bearer token required")

        try:
            payload = decode_access_token(auth_header[7:])
            g.actor_id = int(payload["sub"])
        except pyjwt.ExpiredSignatureError:
            return api_error(E.UNAUTHORIZED, "Token expired")
        except (pyjwt.InvalidTokenError, KeyError, ValueError):
            return api_error(E.UNAUTHORIZED, "Invalid token")
        return None
