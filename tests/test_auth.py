"""
Tests for api/auth.py
"""

import base64
import hashlib
import hmac

import pytest

from api.auth import (
    AuthError,
    build_session_cookie,
    check_password,
    sign_token,
    token_from_cookie_header,
    verify_token,
)


SECRET = "unit-test-secret"


@pytest.mark.unit
def test_sign_and_verify_round_trip():
    token = sign_token(SECRET, issued_at_ms=1_000_000)

    payload = verify_token(token, SECRET, max_age_sec=3600, now_ms=1_000_500)

    assert payload == {"iat": 1_000_000}


@pytest.mark.unit
def test_token_format():
    payload_b64, sig = sign_token(SECRET, issued_at_ms=42).split(".")

    assert base64.b64decode(payload_b64) == b'{"iat": 42}'
    assert len(sig) == 64


@pytest.mark.unit
def test_verify_rejects_wrong_secret():
    token = sign_token(SECRET)

    with pytest.raises(AuthError, match="Invalid token signature"):
        verify_token(token, "other-secret", max_age_sec=3600)


@pytest.mark.unit
def test_verify_rejects_tampered_payload():
    token = sign_token(SECRET, issued_at_ms=1)
    _, sig = token.split(".")
    forged = base64.b64encode(b'{"iat": 99999999999999}').decode("ascii")

    with pytest.raises(AuthError, match="Invalid token signature"):
        verify_token(f"{forged}.{sig}", SECRET, max_age_sec=3600)


@pytest.mark.unit
@pytest.mark.parametrize("token", ["", "no-dot", ".sig", "payload."])
def test_verify_rejects_malformed(token):
    with pytest.raises(AuthError, match="Invalid token"):
        verify_token(token, SECRET, max_age_sec=3600)


@pytest.mark.unit
def test_verify_rejects_bad_payload():
    payload_b64 = base64.b64encode(b"not json").decode("ascii")
    sig = hmac.new(SECRET.encode(), payload_b64.encode(), hashlib.sha256).hexdigest()

    with pytest.raises(AuthError, match="Invalid token payload"):
        verify_token(f"{payload_b64}.{sig}", SECRET, max_age_sec=3600)


@pytest.mark.unit
def test_verify_rejects_expired():
    token = sign_token(SECRET, issued_at_ms=0)

    with pytest.raises(AuthError, match="Session expired"):
        verify_token(token, SECRET, max_age_sec=60, now_ms=61_000)


@pytest.mark.unit
def test_token_from_cookie_header():
    assert token_from_cookie_header("theme=dark; token=abc=.def; other=1") == "abc=.def"
    assert token_from_cookie_header("theme=dark") is None
    assert token_from_cookie_header("token=") is None
    assert token_from_cookie_header(None) is None


@pytest.mark.unit
def test_build_session_cookie():
    assert build_session_cookie("t", 3600) == "token=t; HttpOnly; Path=/; Max-Age=3600; SameSite=Lax"
    assert build_session_cookie("t", 60, secure=True).endswith("; Secure")


@pytest.mark.unit
def test_check_password():
    assert check_password("hunter2", "hunter2")
    assert not check_password("hunter3", "hunter2")
    assert not check_password("", "hunter2")
    assert not check_password("anything", None)
