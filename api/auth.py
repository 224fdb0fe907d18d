"""
Password login and signed session tokens.

A token is base64(JSON {"iat": <ms>}) + "." + hex HMAC-SHA256 of the base64
part. There is no server-side session table; the signature and the issue
time are all that is checked.
"""

import base64
import hashlib
import hmac
import json
import secrets
import time
from typing import Any, Dict, Optional


COOKIE_NAME = "token"


class AuthError(Exception):
    """Session token is missing, malformed, forged or expired."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _sign(secret: str, payload_b64: str) -> str:
    return hmac.new(secret.encode("utf-8"), payload_b64.encode("ascii"), hashlib.sha256).hexdigest()


def check_password(supplied: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time password check. An unset expected password never matches."""
    if not supplied or not expected:
        return False
    return secrets.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


def sign_token(secret: str, issued_at_ms: Optional[int] = None) -> str:
    payload = json.dumps({"iat": _now_ms() if issued_at_ms is None else issued_at_ms})
    payload_b64 = base64.b64encode(payload.encode("utf-8")).decode("ascii")
    return f"{payload_b64}.{_sign(secret, payload_b64)}"


def verify_token(
    token: str, secret: str, max_age_sec: int, now_ms: Optional[int] = None
) -> Dict[str, Any]:
    """
    Verify a session token and return its payload.

    Raises:
        AuthError: With the message to send back to the client
    """
    payload_b64, _, sig = (token or "").partition(".")
    if not payload_b64 or not sig:
        raise AuthError("Invalid token")

    if not secrets.compare_digest(sig, _sign(secret, payload_b64)):
        raise AuthError("Invalid token signature")

    try:
        payload = json.loads(base64.b64decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        raise AuthError("Invalid token payload")
    if not isinstance(payload, dict):
        raise AuthError("Invalid token payload")

    issued_at = payload.get("iat") or 0
    if not isinstance(issued_at, (int, float)):
        raise AuthError("Invalid token payload")

    age_ms = (_now_ms() if now_ms is None else now_ms) - issued_at
    if age_ms > max_age_sec * 1000:
        raise AuthError("Session expired")

    return payload


def token_from_cookie_header(header: Optional[str]) -> Optional[str]:
    """Find the session token in a raw Cookie header."""
    for part in (header or "").split(";"):
        part = part.strip()
        if part.startswith(f"{COOKIE_NAME}="):
            return part[len(COOKIE_NAME) + 1:] or None
    return None


def build_session_cookie(token: str, max_age: int, secure: bool = False) -> str:
    cookie = f"{COOKIE_NAME}={token}; HttpOnly; Path=/; Max-Age={max_age}; SameSite=Lax"
    if secure:
        cookie += "; Secure"
    return cookie
