from datetime import timedelta

import jwt
import pytest

from fandiag.config import Settings
from fandiag.security import decode_token, hash_password, issue_token, verify_password
from fandiag.store import now_utc

SETTINGS = Settings(jwt_secret="test-secret", jwt_expire_minutes=5)
USER = {"id": 7, "username": "budi", "email": "budi@example.com", "role": "user"}


def test_password_hashing():
    hashed = hash_password("rahasia123")
    assert hashed != "rahasia123"
    assert verify_password("rahasia123", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("rahasia123", "not-a-bcrypt-hash")


def test_token_roundtrip():
    user = decode_token(issue_token(USER, SETTINGS), SETTINGS)
    assert user.id == 7
    assert user.username == "budi"
    assert not user.is_admin


def test_token_signed_with_other_secret_is_rejected():
    token = issue_token(USER, Settings(jwt_secret="someone-else"))
    with pytest.raises(jwt.InvalidTokenError):
        decode_token(token, SETTINGS)


def test_expired_token_is_rejected():
    claims = {"sub": "7", "role": "admin", "exp": now_utc() - timedelta(minutes=1)}
    token = jwt.encode(claims, SETTINGS.jwt_secret, algorithm="HS256")
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_token(token, SETTINGS)
