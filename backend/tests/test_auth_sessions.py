from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import jwt
import pytest
from fastapi import HTTPException


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from auth.utils import (  # noqa: E402
    MAX_PASSWORD_BYTES,
    create_token,
    hash_password,
    read_claims,
    session_cookie_name,
    verify_password,
)
from config import Settings, settings  # noqa: E402


def _signed(payload: dict) -> str:
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def test_token_round_trips_user_and_version():
    claims = read_claims(create_token(42, token_version=3))
    assert claims.user_id == 42
    assert claims.token_version == 3


def test_expired_and_malformed_tokens_are_unauthorized():
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    expired = _signed({"sub": "1", "tv": 0, "exp": past})
    no_subject = _signed({"tv": 0, "exp": past + timedelta(hours=2)})
    bad_subject = _signed({"sub": "admin", "exp": past + timedelta(hours=2)})

    for token in (expired, no_subject, bad_subject, "not-a-jwt"):
        with pytest.raises(HTTPException) as excinfo:
            read_claims(token)
        assert excinfo.value.status_code == 401


def test_passwords_beyond_bcrypt_limit_are_rejected():
    hashed = hash_password("Learn!Pass123")
    assert verify_password("Learn!Pass123", hashed)
    assert not verify_password("learn!pass123", hashed)

    too_long = "é" * (MAX_PASSWORD_BYTES // 2 + 1)
    with pytest.raises(ValueError):
        hash_password(too_long)
    assert not verify_password(too_long, hashed)


def test_blank_cookie_name_falls_back_to_default(monkeypatch):
    monkeypatch.setattr(settings, "AUTH_COOKIE_NAME", "   ")
    assert session_cookie_name() == "learning_plan_session"


def test_production_security_gate_rejects_insecure_cookie():
    prod = Settings(
        ENVIRONMENT="production",
        SECRET_KEY="a-long-random-secret-for-this-deployment",
        AUTH_COOKIE_SECURE=False,
    )
    with pytest.raises(RuntimeError):
        prod.validate_security_configuration()
