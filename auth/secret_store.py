"""
auth/secret_store.py -- Persistence for short-lived secrets.

Holds the three secret-bearing tables: one-time codes, 2FA sessions and
password-reset tokens. The authorities in otp.py, two_factor.py and
password_reset.py own the rules; this module owns the SQL.

Exclusivity:
  Each table carries a partial UNIQUE index over its "active key" restricted
  to used = 0:
      one_time_codes         (account_id, purpose) WHERE used = 0
      two_factor_sessions    (account_id)          WHERE used = 0
      password_reset_tokens  (account_id)          WHERE used = 0
  Replacing a secret removes the old rows and inserts the new one inside ONE
  transaction. Sessions and reset tokens are deleted; codes are retired
  (used = 1) so a superseded code can still be recognised as such until the
  sweeper removes it. If two writers race for the same key, the loser's
  INSERT hits the index, rolls back, and retries from the start. At most one
  unused row per key can therefore ever exist, which is stronger than "at
  most one active" (an unused row may still be expired until replaced or
  swept).

State changes are conditional updates (WHERE used = 0 ...) whose rowcount
tells the caller whether it won. That is what keeps a code single-use when
two requests present it at the same moment.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import OneTimeCode, PasswordResetToken, TwoFactorSession
from auth.store import make_engine
from core.clock import from_iso, to_iso

logger = logging.getLogger("gatehouse.auth.secret_store")

_REPLACE_ATTEMPTS = 3

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_codes = Table(
    "one_time_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False),
    Column("code_hash", Text, nullable=False),  # bcrypt
    Column("purpose", String(20), nullable=False),  # "login", "password-reset", "2fa"
    Column("expires_at", String(32), nullable=False),
    Column("attempts_remaining", Integer, nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)
Index(
    "uq_one_time_codes_active",
    _codes.c.account_id,
    _codes.c.purpose,
    unique=True,
    sqlite_where=_codes.c.used == 0,
    postgresql_where=_codes.c.used == 0,
)
Index("ix_one_time_codes_expires_at", _codes.c.expires_at)

_sessions = Table(
    "two_factor_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False),
    Column("token_digest", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)
Index(
    "uq_two_factor_sessions_active",
    _sessions.c.account_id,
    unique=True,
    sqlite_where=_sessions.c.used == 0,
    postgresql_where=_sessions.c.used == 0,
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False),
    Column("token_hash", Text, nullable=False),  # bcrypt
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)
Index(
    "uq_password_reset_tokens_active",
    _reset_tokens.c.account_id,
    unique=True,
    sqlite_where=_reset_tokens.c.used == 0,
    postgresql_where=_reset_tokens.c.used == 0,
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SecretStore:
    """Repository for OneTimeCode, TwoFactorSession and PasswordResetToken rows.

    Every method that depends on "now" takes it as an argument. The store has
    no clock of its own; the authorities decide what time it is.
    """

    def __init__(self, db_url: str = "sqlite:///gatehouse.db") -> None:
        self.engine: Engine = make_engine(db_url)
        _metadata.create_all(self.engine)

    def _replace(self, table: Table, stale, values: dict, retire: bool = False) -> int:
        """Atomically remove the rows matched by `stale` and insert `values`.

        With retire=True the stale rows are marked used instead of deleted.

        Retries when a concurrent writer won the partial UNIQUE index. Returns
        the new row's ID.
        """
        for attempt in range(1, _REPLACE_ATTEMPTS + 1):
            try:
                with self.engine.begin() as conn:
                    if retire:
                        conn.execute(table.update().where(stale).values(used=1))
                    else:
                        conn.execute(table.delete().where(stale))
                    result = conn.execute(table.insert().values(**values))
                    return result.inserted_primary_key[0]
            except IntegrityError:
                if attempt == _REPLACE_ATTEMPTS:
                    raise
                logger.info("Concurrent replace on %s, retrying (attempt %d)", table.name, attempt)
        raise RuntimeError("unreachable")

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    def replace_code(self, code: OneTimeCode) -> OneTimeCode:
        """Retire every unused code for (account_id, purpose) and store `code`."""
        code.id = self._replace(
            _codes,
            (_codes.c.account_id == code.account_id) & (_codes.c.purpose == code.purpose) & (_codes.c.used == 0),
            {
                "account_id": code.account_id,
                "code_hash": code.code_hash,
                "purpose": code.purpose,
                "expires_at": to_iso(code.expires_at),
                "attempts_remaining": code.attempts_remaining,
                "used": 1 if code.used else 0,
                "created_at": to_iso(code.created_at),
            },
            retire=True,
        )
        return code

    def get_active_code(self, account_id: int, purpose: str, now: datetime) -> OneTimeCode | None:
        """Return the active code for (account_id, purpose), or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _codes.select()
                .where(
                    (_codes.c.account_id == account_id)
                    & (_codes.c.purpose == purpose)
                    & (_codes.c.used == 0)
                    & (_codes.c.expires_at > to_iso(now))
                    & (_codes.c.attempts_remaining > 0)
                )
                .order_by(_codes.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_code(row) if row is not None else None

    def list_spent_codes(self, account_id: int, purpose: str, now: datetime) -> list[OneTimeCode]:
        """Used or superseded codes for (account_id, purpose) that have not expired yet."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _codes.select()
                .where(
                    (_codes.c.account_id == account_id)
                    & (_codes.c.purpose == purpose)
                    & (_codes.c.used == 1)
                    & (_codes.c.expires_at > to_iso(now))
                )
                .order_by(_codes.c.id.desc())
            ).fetchall()
        return [_row_to_code(r) for r in rows]

    def record_code_failure(self, code_id: int) -> int | None:
        """Decrement attempts_remaining; mark used when it reaches zero.

        Returns the remaining count after the decrement, or None if the code
        was no longer live (consumed or exhausted by a concurrent request).
        Both columns are written as literals computed from the count that was
        read, guarded by that count in the WHERE clause. No column value
        depends on the order a backend evaluates SET assignments in, and a
        concurrent decrement makes the guard miss so the loop reads again.
        """
        live = (_codes.c.id == code_id) & (_codes.c.used == 0) & (_codes.c.attempts_remaining > 0)
        while True:
            with self.engine.begin() as conn:
                current = conn.execute(select(_codes.c.attempts_remaining).where(live)).scalar()
                if current is None:
                    return None
                remaining = current - 1
                result = conn.execute(
                    _codes.update()
                    .where(live & (_codes.c.attempts_remaining == current))
                    .values(attempts_remaining=remaining, used=1 if remaining <= 0 else 0)
                )
                if result.rowcount > 0:
                    return remaining
            logger.info("Concurrent failure recorded on code id=%s, re-reading", code_id)

    def consume_code(self, code_id: int) -> bool:
        """Mark a live code used. True only for the caller that flipped it."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _codes.update()
                .where((_codes.c.id == code_id) & (_codes.c.used == 0) & (_codes.c.attempts_remaining > 0))
                .values(used=1)
            )
        return result.rowcount > 0

    def invalidate_codes(self, account_id: int, purpose: str | None = None) -> int:
        where = (_codes.c.account_id == account_id) & (_codes.c.used == 0)
        if purpose is not None:
            where = where & (_codes.c.purpose == purpose)
        with self.engine.begin() as conn:
            result = conn.execute(_codes.update().where(where).values(used=1))
        return result.rowcount

    def code_stats(self, now: datetime) -> dict[str, int]:
        """Counts for monitoring: total, active, expired, used."""
        now_iso = to_iso(now)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_codes)).scalar() or 0
            active = (
                conn.execute(
                    select(func.count())
                    .select_from(_codes)
                    .where(
                        (_codes.c.used == 0) & (_codes.c.expires_at > now_iso) & (_codes.c.attempts_remaining > 0)
                    )
                ).scalar()
                or 0
            )
            expired = (
                conn.execute(select(func.count()).select_from(_codes).where(_codes.c.expires_at <= now_iso)).scalar()
                or 0
            )
            used = conn.execute(select(func.count()).select_from(_codes).where(_codes.c.used == 1)).scalar() or 0
        return {"total": total, "active": active, "expired": expired, "used": used}

    def purge_codes(self, now: datetime) -> int:
        """Delete codes that are expired, used, or out of attempts."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _codes.delete().where(
                    or_(
                        _codes.c.expires_at <= to_iso(now),
                        _codes.c.used == 1,
                        _codes.c.attempts_remaining <= 0,
                    )
                )
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # 2FA sessions
    # ------------------------------------------------------------------

    def replace_session(self, session: TwoFactorSession) -> TwoFactorSession:
        """Drop every session for the account and store `session`."""
        session.id = self._replace(
            _sessions,
            _sessions.c.account_id == session.account_id,
            {
                "account_id": session.account_id,
                "token_digest": session.token_digest,
                "expires_at": to_iso(session.expires_at),
                "used": 1 if session.used else 0,
                "created_at": to_iso(session.created_at),
            },
        )
        return session

    def get_active_session(self, token_digest: str, now: datetime) -> TwoFactorSession | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.token_digest == token_digest)
                    & (_sessions.c.used == 0)
                    & (_sessions.c.expires_at > to_iso(now))
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def consume_session(self, session_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update().where((_sessions.c.id == session_id) & (_sessions.c.used == 0)).values(used=1)
            )
        return result.rowcount > 0

    def invalidate_sessions(self, account_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.account_id == account_id) & (_sessions.c.used == 0))
                .values(used=1)
            )
        return result.rowcount

    def purge_sessions(self, now: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.delete().where(or_(_sessions.c.expires_at <= to_iso(now), _sessions.c.used == 1))
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Password-reset tokens
    # ------------------------------------------------------------------

    def replace_reset_token(self, token: PasswordResetToken) -> PasswordResetToken:
        """Drop every reset token for the account and store `token`."""
        token.id = self._replace(
            _reset_tokens,
            _reset_tokens.c.account_id == token.account_id,
            {
                "account_id": token.account_id,
                "token_hash": token.token_hash,
                "expires_at": to_iso(token.expires_at),
                "used": 1 if token.used else 0,
                "created_at": to_iso(token.created_at),
            },
        )
        return token

    def list_active_reset_tokens(self, now: datetime) -> list[PasswordResetToken]:
        """Every unused, unexpired reset token across all accounts."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _reset_tokens.select()
                .where((_reset_tokens.c.used == 0) & (_reset_tokens.c.expires_at > to_iso(now)))
                .order_by(_reset_tokens.c.id)
            ).fetchall()
        return [_row_to_reset_token(r) for r in rows]

    def consume_reset_token(self, token_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _reset_tokens.update()
                .where((_reset_tokens.c.id == token_id) & (_reset_tokens.c.used == 0))
                .values(used=1)
            )
        return result.rowcount > 0

    def purge_reset_tokens(self, now: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _reset_tokens.delete().where(
                    or_(_reset_tokens.c.expires_at <= to_iso(now), _reset_tokens.c.used == 1)
                )
            )
        return result.rowcount

    def ping(self) -> bool:
        """Cheap connectivity probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_code(row) -> OneTimeCode:
    return OneTimeCode(
        id=row.id,
        account_id=row.account_id,
        code_hash=row.code_hash,
        purpose=row.purpose,
        expires_at=from_iso(row.expires_at),
        attempts_remaining=row.attempts_remaining,
        used=bool(row.used),
        created_at=from_iso(row.created_at),
    )


def _row_to_session(row) -> TwoFactorSession:
    return TwoFactorSession(
        id=row.id,
        account_id=row.account_id,
        token_digest=row.token_digest,
        expires_at=from_iso(row.expires_at),
        used=bool(row.used),
        created_at=from_iso(row.created_at),
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        account_id=row.account_id,
        token_hash=row.token_hash,
        expires_at=from_iso(row.expires_at),
        used=bool(row.used),
        created_at=from_iso(row.created_at),
    )
