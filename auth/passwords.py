"""
auth/passwords.py -- Temporary password generation and password policy.

Temporary passwords are what an admin-created account receives by email when
the admin did not choose one. They are:
  - 12 characters long
  - guaranteed to contain an upper-case letter, a lower-case letter, a digit
    and a symbol
  - drawn from an alphabet without look-alikes (no 0/O, 1/l/I)
  - built with the `secrets` module, then shuffled with SystemRandom so the
    guaranteed characters are not always in the first four positions.
"""

from __future__ import annotations

import re
import secrets
from random import SystemRandom

UPPERCASE = "ABCDEFGHJKLMNPQRSTUVWXYZ"
LOWERCASE = "abcdefghijkmnpqrstuvwxyz"
DIGITS = "23456789"
SYMBOLS = "@$!%*?&"  # same set the chosen-password policy requires
TEMPORARY_ALPHABET = UPPERCASE + LOWERCASE + DIGITS + SYMBOLS
TEMPORARY_LENGTH = 12

# Chosen passwords: at least 8 chars with lower, upper, digit and one of @$!%*?&.
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
# bcrypt only reads the first 72 bytes; anything past that would be ignored.
MAX_PASSWORD_BYTES = 72
PASSWORD_SYMBOLS = "@$!%*?&"
_STRENGTH_RULES = (
    (re.compile(r"[a-z]"), "a lower-case letter"),
    (re.compile(r"[A-Z]"), "an upper-case letter"),
    (re.compile(r"\d"), "a digit"),
    (re.compile(r"[@$!%*?&]"), f"one of {PASSWORD_SYMBOLS}"),
)

_rng = SystemRandom()


def generate_temporary_password(length: int = TEMPORARY_LENGTH) -> str:
    if length < 4:
        raise ValueError("temporary passwords need room for all four character classes")
    chars = [
        secrets.choice(UPPERCASE),
        secrets.choice(LOWERCASE),
        secrets.choice(DIGITS),
        secrets.choice(SYMBOLS),
    ]
    chars.extend(secrets.choice(TEMPORARY_ALPHABET) for _ in range(length - len(chars)))
    _rng.shuffle(chars)
    return "".join(chars)


def password_problems(password: str) -> list[str]:
    """Return the policy rules `password` breaks; empty means acceptable."""
    problems: list[str] = []
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f"at least {MIN_PASSWORD_LENGTH} characters")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        problems.append(f"no more than {MAX_PASSWORD_BYTES} bytes once UTF-8 encoded")
    for pattern, description in _STRENGTH_RULES:
        if not pattern.search(password):
            problems.append(description)
    return problems
