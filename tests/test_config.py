"""
tests/test_config.py -- Signing key policy in core/config.py [M6][M7][M8].
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

ACCESS_KEY = "a" * 32
REFRESH_KEY = "b" * 32
PEPPER = "c" * 32


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("SECRET_KEY", "REFRESH_SECRET_KEY", "DIGEST_PEPPER"):
        monkeypatch.delenv(name, raising=False)


def test_debug_generates_distinct_keys():
    settings = Settings(debug=True, _env_file=None)
    assert len(settings.secret_key) >= 32
    assert len(settings.refresh_secret_key) >= 32
    assert len(settings.digest_pepper) >= 32
    assert len({settings.secret_key, settings.refresh_secret_key, settings.digest_pepper}) == 3


def test_production_requires_keys():
    with pytest.raises(ValidationError, match="SECRET_KEY is required"):
        Settings(debug=False, _env_file=None)


def test_production_requires_pepper():
    with pytest.raises(ValidationError, match="DIGEST_PEPPER is required"):
        Settings(debug=False, secret_key=ACCESS_KEY, refresh_secret_key=REFRESH_KEY, _env_file=None)


def test_production_accepts_explicit_keys():
    settings = Settings(
        debug=False,
        secret_key=ACCESS_KEY,
        refresh_secret_key=REFRESH_KEY,
        digest_pepper=PEPPER,
        _env_file=None,
    )
    assert settings.secret_key == ACCESS_KEY
    assert settings.digest_pepper == PEPPER


def test_short_key_rejected():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(debug=True, secret_key="short", refresh_secret_key=REFRESH_KEY, _env_file=None)


def test_equal_keys_rejected():
    with pytest.raises(ValidationError, match="must differ"):
        Settings(debug=True, secret_key=ACCESS_KEY, refresh_secret_key=ACCESS_KEY, _env_file=None)


@pytest.mark.parametrize("pepper", [ACCESS_KEY, REFRESH_KEY])
def test_pepper_equal_to_a_signing_key_rejected(pepper):
    with pytest.raises(ValidationError, match="DIGEST_PEPPER must differ"):
        Settings(
            debug=True,
            secret_key=ACCESS_KEY,
            refresh_secret_key=REFRESH_KEY,
            digest_pepper=pepper,
            _env_file=None,
        )


def test_bcrypt_rounds_bounds():
    with pytest.raises(ValidationError):
        Settings(debug=True, bcrypt_rounds=3, _env_file=None)


def test_defaults():
    settings = Settings(debug=True, _env_file=None)
    assert settings.otp_ttl_seconds == 240
    assert settings.otp_max_attempts == 3
    assert settings.reset_token_ttl_seconds == 1800
    assert settings.access_token_expire_seconds == 3600
