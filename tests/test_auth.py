"""Tests for access-token verification."""
from __future__ import annotations

import time

import jwt
import pytest

from app.core.auth import CurrentUser, verify_access_token

from conftest import JWT_SECRET, make_token


def test_valid_token(settings):
    user = verify_access_token(make_token("user-1", "u1@example.com"), settings)
    assert user == CurrentUser(id="user-1", email="u1@example.com")


def test_wrong_secret(settings):
    token = jwt.encode(
        {"sub": "x", "aud": "authenticated"}, "another-secret-of-at-least-32-bytes", algorithm="HS256"
    )
    with pytest.raises(jwt.PyJWTError):
        verify_access_token(token, settings)


def test_expired(settings):
    with pytest.raises(jwt.ExpiredSignatureError):
        verify_access_token(make_token("x", exp=int(time.time()) - 10), settings)


def test_wrong_audience(settings):
    with pytest.raises(jwt.InvalidAudienceError):
        verify_access_token(make_token("x", aud="someone-else"), settings)


def test_missing_subject(settings):
    token = jwt.encode({"aud": "authenticated"}, JWT_SECRET, algorithm="HS256")
    with pytest.raises(jwt.PyJWTError):
        verify_access_token(token, settings)
