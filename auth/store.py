"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. The credential service never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.
  UNIQUE(email) is enforced in SQL -- it is the only thing that makes two
  racing registrations for the same address end with exactly one account.

Connection lifecycle:
  __init__ builds the engine but does not connect. connect() pings the
  database and creates the schema; the ConnectionSupervisor calls it in the
  background and keeps retrying with backoff until it succeeds. This keeps
  process startup independent of database availability.

Layer rule: no imports from api/, cache/, or notify/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text, create_engine, event, false, text
from sqlalchemy.engine import Engine

from auth.models import Account

_DEFAULT_DB_URL = "sqlite:///credgate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("is_verified", Boolean, nullable=False, server_default=false()),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore("sqlite:///credgate.db")
        store.connect()
        store.create(Account(name="Alice", email="alice@x.com", hashed_password=hash_password("secret1")))
        account = store.find_by_email("alice@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)

    def connect(self) -> None:
        """Ping the database and make sure the schema exists.

        Raises sqlalchemy.exc.OperationalError (or the driver's error) when the
        database is unreachable. create_all is idempotent -- safe on every call.
        """
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Account | None:
        """Look up an account by normalized email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def create(self, account: Account) -> Account:
        """Insert a new account and return it with id and timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The credential service turns that into AlreadyExists -- it is the
        signal that a concurrent registration won the race.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    name=account.name,
                    email=account.email,
                    hashed_password=account.hashed_password,
                    is_verified=account.is_verified,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            new_id = result.inserted_primary_key[0]
        return Account(
            id=new_id,
            name=account.name,
            email=account.email,
            hashed_password=account.hashed_password,
            is_verified=account.is_verified,
            created_at=now,
            updated_at=now,
        )

    def update_verified(self, email: str, verified: bool) -> Account | None:
        """Set is_verified for the account with this email.

        Returns the updated Account, or None if no account matched.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.email == email)
                .values(is_verified=verified, updated_at=_now_iso())
            )
            conn.commit()
            if result.rowcount == 0:
                return None
            row = conn.execute(_accounts.select().where(_accounts.c.email == email)).fetchone()
        return _row_to_account(row) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
