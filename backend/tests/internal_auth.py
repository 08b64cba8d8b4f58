"""
Helpers for generating signed internal auth headers in integration tests.
"""
import os
import time

from fintrack.db_helpers import (
    INTERNAL_AUTH_SIGNATURE_HEADER,
    INTERNAL_AUTH_TIMESTAMP_HEADER,
    INTERNAL_AUTH_USER_HEADER,
    sign_internal_request,
)


def build_internal_auth_headers(method: str, path_with_query: str, user_id: str) -> dict[str, str]:
    """
    Build signed headers accepted by backend internal auth middleware.
    """
    secret = os.getenv("INTERNAL_AUTH_SECRET", "").strip()
    if not secret:
        raise RuntimeError("INTERNAL_AUTH_SECRET is required for backend integration tests.")

    timestamp = str(int(time.time()))
    signature = sign_internal_request(method, path_with_query, user_id, timestamp, secret)

    return {
        INTERNAL_AUTH_USER_HEADER: user_id,
        INTERNAL_AUTH_TIMESTAMP_HEADER: timestamp,
        INTERNAL_AUTH_SIGNATURE_HEADER: signature,
    }
