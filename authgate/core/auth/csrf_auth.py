"""
Anti-forgery values.

The login CSRF token is stored in the signed session cookie, as the login form is submitted to the same session.
The `state` value must survive the authorize -> callback redirect round trip: the session present at login may not
be the one present at callback time. It is thus carried by a dedicated httpOnly cookie.
"""

import secrets
from typing import Any

from fastapi import Response

from authgate.core.auth.utils_auth import STATE_COOKIE_NAME
from authgate.core.utils.config import Settings
from authgate.core.utils.security import generate_token

CSRF_SESSION_KEY = "csrf_token"


def _is_same_token(expected: str | None, presented: str | None) -> bool:
    """
    Exact, case sensitive and constant time comparison. A missing value never matches
    """
    if not expected or not presented:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


def issue_csrf_token(session: dict[str, Any]) -> str:
    """
    Generate a CSRF token for a form and store it in the session.
    A new token replaces the previous one.
    """
    csrf_token = generate_token()
    session[CSRF_SESSION_KEY] = csrf_token
    return csrf_token


def verify_csrf_token(session: dict[str, Any], presented: str | None) -> bool:
    """
    Compare the presented token with the one stored in the session.
    The stored token is discarded whatever the result: a token can only be checked once.
    """
    expected = session.pop(CSRF_SESSION_KEY, None)
    return _is_same_token(expected, presented)


def issue_state(response: Response, settings: Settings) -> str:
    """
    Generate a `state` value and store it in the `state` cookie of the response
    """
    state = generate_token()
    response.set_cookie(
        key=STATE_COOKIE_NAME,
        value=state,
        max_age=settings.STATE_COOKIE_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="lax",
    )
    return state


def verify_state(cookie_state: str | None, presented: str | None) -> bool:
    """
    Compare the `state` sent back by the client with the value of the `state` cookie
    """
    return _is_same_token(cookie_state, presented)
