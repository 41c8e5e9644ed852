"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper. Orchestrator
and dependency code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are normalized (strip + lower) on every write and every lookup, so
  the UNIQUE constraint on accounts.email is effectively case-insensitive.

  password_hash is only read when the caller passes include_secrets=True.
  The default read path leaves Account.password_hash as None.

  Refresh tokens are kept as rows (one per issued token) holding a keyed
  digest, never the token itself. The per-account set semantics live in
  auth/refresh.py; this module only stores rows.

Layer rule: no imports from api/ or notify/.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import EmailAlreadyExists
from auth.models import Account
from core.clock import Clock, from_iso, to_iso, utcnow

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),  # always lower-cased
    Column("full_name", String(255), nullable=False),
    Column("password_hash", Text),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("must_change_password", Integer, nullable=False, server_default="0"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("token_digest", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)

# Columns that update_account() may touch. Anything else is a programming error.
_UPDATABLE = {"full_name", "password_hash", "role", "is_active", "must_change_password"}


# ---------------------------------------------------------------------------
# Engine helpers (shared with auth/secret_store.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore the pragma.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite settings every Gatehouse store expects."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account records and their refresh-token rows.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account_id = store.create_account(Account(email="a@example.com", full_name="A"), password_hash)
        account = store.get_by_email("A@Example.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///gatehouse.db", clock: Clock = utcnow) -> None:
        self.engine: Engine = make_engine(db_url)
        self._clock = clock
        _metadata.create_all(self.engine)

    def _now_iso(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def has_accounts(self) -> bool:
        """Return True if at least one account exists (first-run detection)."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (result or 0) > 0

    def create_account(self, account: Account, password_hash: str | None) -> int:
        """Insert a new account and return its assigned ID.

        Raises EmailAlreadyExists if the normalized email is taken. The UNIQUE
        constraint is the arbiter, so two concurrent registrations for the
        same address cannot both succeed [M1].
        """
        now = self._now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _accounts.insert().values(
                        email=normalize_email(account.email),
                        full_name=account.full_name,
                        password_hash=password_hash,
                        role=account.role,
                        is_active=1 if account.is_active else 0,
                        must_change_password=1 if account.must_change_password else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise EmailAlreadyExists() from exc

    def get_by_email(self, email: str, include_secrets: bool = False) -> Account | None:
        """Look up an account by case-insensitive email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row, include_secrets) if row is not None else None

    def get_by_id(self, account_id: int, include_secrets: bool = False) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row, include_secrets) if row is not None else None

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields on an existing account.

        Accepted fields: full_name, password_hash, role, is_active,
        must_change_password. Booleans are converted to int for SQLite.
        Unknown fields raise ValueError rather than being silently ignored.

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        for key in ("is_active", "must_change_password"):
            if key in fields:
                fields[key] = 1 if fields[key] else 0
        fields["updated_at"] = self._now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
        return result.rowcount > 0

    def set_password(self, account_id: int, password_hash: str, must_change_password: bool = False) -> bool:
        """Store a new password hash and set must_change_password in one write."""
        return self.update_account(
            account_id,
            password_hash=password_hash,
            must_change_password=must_change_password,
        )

    def update_last_login(self, account_id: int) -> None:
        """Stamp the current UTC timestamp as last_login."""
        with self.engine.begin() as conn:
            conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(last_login=self._now_iso()))

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_accounts)
                .where((_accounts.c.role == "admin") & (_accounts.c.is_active == 1))
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Refresh-token rows
    # ------------------------------------------------------------------

    def insert_refresh_token(self, account_id: int, token_digest: str, expires_at: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    account_id=account_id,
                    token_digest=token_digest,
                    created_at=self._now_iso(),
                    expires_at=to_iso(expires_at),
                )
            )

    def has_refresh_token(self, account_id: int, token_digest: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_refresh_tokens.c.id).where(
                    (_refresh_tokens.c.account_id == account_id) & (_refresh_tokens.c.token_digest == token_digest)
                )
            ).fetchone()
        return row is not None

    def delete_refresh_token(self, account_id: int, token_digest: str) -> bool:
        """Delete one refresh-token row. Returns True only for the caller that removed it.

        Rotation relies on this: two concurrent refreshes with the same token
        both pass the membership check, but only one sees rowcount == 1.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(
                    (_refresh_tokens.c.account_id == account_id) & (_refresh_tokens.c.token_digest == token_digest)
                )
            )
        return result.rowcount > 0

    def delete_all_refresh_tokens(self, account_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.account_id == account_id))
        return result.rowcount

    def count_refresh_tokens(self, account_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_refresh_tokens).where(_refresh_tokens.c.account_id == account_id)
            ).scalar()
        return result or 0

    def purge_expired_refresh_tokens(self) -> int:
        """Delete refresh-token rows whose JWT has already expired."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= self._now_iso()))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row, include_secrets: bool) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        password_hash=row.password_hash if include_secrets else None,
        role=row.role,
        is_active=bool(row.is_active),
        must_change_password=bool(row.must_change_password),
        last_login=from_iso(row.last_login),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
