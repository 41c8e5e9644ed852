"""
tests/test_two_factor.py -- Unit tests for auth/two_factor.py.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from auth.errors import SessionInvalidOrExpired
from auth.two_factor import TwoFactorSessionManager


@pytest.fixture
def sessions(secret_store, hasher, clock) -> TwoFactorSessionManager:
    return TwoFactorSessionManager(secret_store, hasher, clock=clock)


def test_create_returns_256_bit_token(sessions, clock):
    token, session = sessions.create(7)
    assert len(token) == 64
    int(token, 16)
    assert session.account_id == 7
    assert session.expires_at == clock() + timedelta(minutes=10)


def test_token_stored_only_as_digest(sessions, hasher):
    token, session = sessions.create(7)
    assert session.token_digest != token
    assert session.token_digest == hasher.digest(token)


def test_validate_returns_session(sessions):
    token, created = sessions.create(7)
    session = sessions.validate(token)
    assert session.id == created.id
    assert session.account_id == 7


def test_unknown_token_rejected(sessions):
    sessions.create(7)
    with pytest.raises(SessionInvalidOrExpired):
        sessions.validate("f" * 64)


def test_create_replaces_previous_session(sessions):
    first, _ = sessions.create(7)
    second, _ = sessions.create(7)
    with pytest.raises(SessionInvalidOrExpired):
        sessions.validate(first)
    assert sessions.validate(second).account_id == 7


def test_sessions_for_different_accounts_coexist(sessions):
    a, _ = sessions.create(1)
    b, _ = sessions.create(2)
    assert sessions.validate(a).account_id == 1
    assert sessions.validate(b).account_id == 2


def test_mark_used_is_single_use(sessions):
    token, _ = sessions.create(7)
    session = sessions.validate(token)
    sessions.mark_used(session)
    assert session.used is True
    with pytest.raises(SessionInvalidOrExpired):
        sessions.validate(token)


def test_mark_used_twice_loses_race(sessions):
    token, _ = sessions.create(7)
    first = sessions.validate(token)
    second = sessions.validate(token)
    sessions.mark_used(first)
    with pytest.raises(SessionInvalidOrExpired):
        sessions.mark_used(second)


def test_valid_one_millisecond_before_expiry(sessions, clock):
    token, _ = sessions.create(7)
    clock.advance(minutes=10, milliseconds=-1)
    assert sessions.validate(token).account_id == 7


def test_invalid_at_expiry(sessions, clock):
    token, _ = sessions.create(7)
    clock.advance(minutes=10)
    with pytest.raises(SessionInvalidOrExpired):
        sessions.validate(token)


def test_invalidate(sessions):
    token, _ = sessions.create(7)
    assert sessions.invalidate(7) == 1
    with pytest.raises(SessionInvalidOrExpired):
        sessions.validate(token)
