"""
Database helper utilities for handling user context and authentication.
"""
import contextvars
import hashlib
import hmac
import os
import time
from typing import Mapping, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from fintrack.errors import AuthError, FintrackError
from fintrack.models import User

INTERNAL_AUTH_USER_HEADER = "x-fintrack-user-id"
INTERNAL_AUTH_TIMESTAMP_HEADER = "x-fintrack-timestamp"
INTERNAL_AUTH_SIGNATURE_HEADER = "x-fintrack-signature"
DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS = 60

_request_user_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_user_id",
    default=None,
)


def set_request_user_id(user_id: str) -> contextvars.Token:
    return _request_user_id.set(user_id)


def clear_request_user_id(token: contextvars.Token) -> None:
    _request_user_id.reset(token)


def get_request_user_id() -> Optional[str]:
    return _request_user_id.get()


def _get_internal_auth_secret() -> str:
    secret = os.getenv("INTERNAL_AUTH_SECRET", "").strip()
    if not secret:
        raise FintrackError("Internal authentication secret is not configured.")
    return secret


def _get_max_signature_age_seconds() -> int:
    raw_value = os.getenv(
        "INTERNAL_AUTH_MAX_AGE_SECONDS",
        str(DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS),
    )
    try:
        parsed = int(raw_value)
        if parsed <= 0:
            return DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS
        return parsed
    except ValueError:
        return DEFAULT_INTERNAL_AUTH_MAX_AGE_SECONDS


def _build_signature_payload(
    method: str,
    path_with_query: str,
    user_id: str,
    timestamp: str,
) -> str:
    return "\n".join(
        [
            method.upper(),
            path_with_query,
            user_id,
            timestamp,
        ]
    )


def sign_internal_request(
    method: str,
    path_with_query: str,
    user_id: str,
    timestamp: str,
    secret: str,
) -> str:
    payload = _build_signature_payload(method, path_with_query, user_id, timestamp)
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def authenticate_internal_request_from_headers(
    method: str,
    path_with_query: str,
    headers: Mapping[str, str],
) -> str:
    user_id = headers.get(INTERNAL_AUTH_USER_HEADER, "").strip()
    timestamp = headers.get(INTERNAL_AUTH_TIMESTAMP_HEADER, "").strip()
    signature = headers.get(INTERNAL_AUTH_SIGNATURE_HEADER, "").strip()

    if not user_id or not timestamp or not signature:
        raise AuthError("Missing internal authentication headers.")

    try:
        timestamp_int = int(timestamp)
    except ValueError as exc:
        raise AuthError("Invalid internal authentication timestamp.") from exc

    now = int(time.time())
    max_age = _get_max_signature_age_seconds()
    if abs(now - timestamp_int) > max_age:
        raise AuthError("Expired internal authentication signature.")

    secret = _get_internal_auth_secret()
    expected_signature = sign_internal_request(method, path_with_query, user_id, timestamp, secret)

    if not hmac.compare_digest(expected_signature, signature):
        raise AuthError("Invalid internal authentication signature.")

    return user_id


def authenticate(request: Request) -> Optional[str]:
    """
    Resolve the owner id of a request, or ``None`` when it is unauthenticated.

    Configuration problems (no shared secret) still raise.
    """
    path_with_query = request.url.path
    if request.url.query:
        path_with_query = f"{path_with_query}?{request.url.query}"

    try:
        return authenticate_internal_request_from_headers(
            method=request.method,
            path_with_query=path_with_query,
            headers=request.headers,
        )
    except AuthError:
        return None


def get_user_id() -> str:
    """
    Owner id of the current request, set by the auth middleware.

    Raises:
        AuthError: If the request was not authenticated
    """
    request_user_id = get_request_user_id()
    if not request_user_id:
        raise AuthError()
    return request_user_id


def ensure_user(db: Session, user_id: str) -> User:
    """
    Get or lazily create the local row for an authenticated owner.

    Args:
        db: Database session
        user_id: Identity-provider user id

    Returns:
        User object (flushed, not committed)
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        user = User(id=user_id)
        db.add(user)
        db.flush()
    return user
