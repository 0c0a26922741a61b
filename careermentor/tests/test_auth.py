"""Supabase JWT verification and admin key checks."""

from types import SimpleNamespace

import pytest

from careermentor.core.admin_auth import verify_admin_key
from careermentor.core.auth import verify_supabase_jwt
from careermentor.core.errors import UnauthorizedError
from careermentor.tests.helpers import make_token


def test_valid_token_yields_user():
    user = verify_supabase_jwt(make_token("user_alice", "alice@example.com"))
    assert user.user_id == "user_alice"
    assert user.email == "alice@example.com"


def test_token_without_email():
    assert verify_supabase_jwt(make_token("user_bob", None)).email is None


def test_expired_token():
    with pytest.raises(UnauthorizedError, match="expired"):
        verify_supabase_jwt(make_token(expires_in=-10))


def test_wrong_audience():
    with pytest.raises(UnauthorizedError):
        verify_supabase_jwt(make_token(audience="anon"))


def test_wrong_secret():
    with pytest.raises(UnauthorizedError):
        verify_supabase_jwt(make_token(secret="another-secret-that-is-32-bytes-long"))


def test_garbage_token():
    with pytest.raises(UnauthorizedError):
        verify_supabase_jwt("not.a.jwt")


def test_unconfigured_secret(monkeypatch):
    from careermentor.core.config import settings

    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", None)
    with pytest.raises(UnauthorizedError):
        verify_supabase_jwt(make_token(secret="test-jwt-secret-with-at-least-32-bytes!"))


def _request(headers):
    return SimpleNamespace(headers=headers)


def test_admin_key_match_yields_hashed_actor():
    actor = verify_admin_key(_request({"X-Admin-Key": "test-admin-key"}))
    assert actor.actor_id.startswith("admin_key:")
    assert "test-admin-key" not in actor.actor_id


def test_admin_key_env_override(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "env-key")
    assert verify_admin_key(_request({"X-Admin-Key": "env-key"})) is not None
    assert verify_admin_key(_request({"X-Admin-Key": "test-admin-key"})) is None


def test_admin_key_mismatch():
    assert verify_admin_key(_request({"X-Admin-Key": "nope"})) is None
    assert verify_admin_key(_request({})) is None
