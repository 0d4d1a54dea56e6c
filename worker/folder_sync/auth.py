import hmac
import os
from functools import wraps
from typing import Any, Dict

import jwt
from flask import g, jsonify, request
from jwt import PyJWKClient


TENANT_ID = os.getenv("ENTRA_TENANT_ID")
WORKER_API_AUDIENCE = os.getenv("WORKER_API_AUDIENCE")
ADMIN_GROUP_ID = os.getenv("ADMIN_GROUP_ID")

ISSUER = None
JWKS_URL = None
_jwks_client = None
if TENANT_ID and WORKER_API_AUDIENCE:
    ISSUER = f"https://login.microsoftonline.com/{TENANT_ID}/v2.0"
    JWKS_URL = f"https://login.microsoftonline.com/{TENANT_ID}/discovery/v2.0/keys"
    _jwks_client = PyJWKClient(JWKS_URL)


def _get_token_from_header() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    value = auth_header.split(" ", 1)[1].strip()
    return value or None


def is_cron_secret(provided_token: str | None) -> bool:
    expected_token = os.getenv("SYNC_CRON_SECRET", "").strip()
    if not expected_token or not provided_token:
        return False
    return hmac.compare_digest(provided_token, expected_token)


def decode_token(token: str) -> Dict[str, Any]:
    if not _jwks_client or not ISSUER or not WORKER_API_AUDIENCE:
        raise RuntimeError("Admin auth is disabled (WORKER_API_AUDIENCE not set)")
    signing_key = _jwks_client.get_signing_key_from_jwt(token).key
    return jwt.decode(
        token,
        signing_key,
        algorithms=["RS256"],
        audience=WORKER_API_AUDIENCE,
        issuer=ISSUER,
    )


def _groups_from_claims(claims: Dict[str, Any]) -> list[str]:
    groups = claims.get("groups") or []
    if isinstance(groups, list):
        return groups
    return []


def is_admin(claims: Dict[str, Any]) -> bool:
    return bool(ADMIN_GROUP_ID) and ADMIN_GROUP_ID in _groups_from_claims(claims)


def require_sync_caller(fn):
    """Accept the cron shared secret or an admin JWT.

    Sets ``g.sync_trigger`` to ``"cron"`` or ``"manual"`` and ``g.claims``
    to the JWT claims for manual callers.
    """

    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = _get_token_from_header()
        if not token:
            return jsonify({"error": "missing_bearer_token"}), 401
        if is_cron_secret(token):
            g.sync_trigger = "cron"
            g.claims = None
            return fn(*args, **kwargs)
        try:
            claims = decode_token(token)
        except Exception:
            return jsonify({"error": "invalid_token"}), 401
        if not is_admin(claims):
            return jsonify({"error": "forbidden"}), 403
        g.sync_trigger = "manual"
        g.claims = claims
        return fn(*args, **kwargs)

    return wrapper
