"""
Storage Backend Module

Provides the abstract storage interface and implementations for in-memory
(testing), SQLite (single host persistence) and PostgreSQL (shared store for
multiple API processes). All monetary values are exact decimals: NUMERIC on
PostgreSQL, decimal strings on SQLite and in memory.

Balances are only ever mutated inside ``atomic()`` after ``lock_account()``
has taken the row lock; the lock is held until commit or rollback.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union, Iterator
from decimal import Decimal
from datetime import datetime, timezone
import copy
import sqlite3
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import BankingError, ErrorKind
from .logging_config import get_logger


logger = get_logger("mobile_bank.storage")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO-8601 string; sorts lexically in time order"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class StorageRecord:
    """Base class for stored records with audit timestamps"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = to_iso(self.created_at)
        result['updated_at'] = to_iso(self.updated_at)
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


@dataclass
class TransactionQuery:
    """Storage-level filter for the transaction log (all predicates ANDed)"""
    user_id: str
    type: Optional[str] = None
    status: Optional[str] = None
    search: Optional[str] = None
    start: Optional[datetime] = None   # inclusive
    end: Optional[datetime] = None     # exclusive


class StorageInterface(ABC):
    """Abstract interface for ledger storage backends"""

    # Accounts

    @abstractmethod
    def insert_account(self, data: Dict[str, Any]) -> None:
        """Insert a provisioned account row"""
        pass

    @abstractmethod
    def get_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Read an account without locking; filters by owner when given"""
        pass

    @abstractmethod
    def list_accounts(self, user_id: str) -> List[Dict[str, Any]]:
        """List a user's accounts, newest first"""
        pass

    @abstractmethod
    def lock_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Take the exclusive row lock on an account and return its current row.

        Must be called inside an open transaction. When user_id is given the
        lookup filters on id AND owner; a miss returns None either way.
        """
        pass

    @abstractmethod
    def set_balance(self, account_id: str, balance: Decimal, updated_at: datetime) -> None:
        """Write a new balance for an account whose lock is held"""
        pass

    # Transactions

    @abstractmethod
    def insert_transaction(self, data: Dict[str, Any]) -> None:
        """Insert an immutable transaction record"""
        pass

    @abstractmethod
    def query_transactions(self, query: TransactionQuery, limit: int,
                           offset: int) -> Tuple[List[Dict[str, Any]], int]:
        """Return one page of matching rows (date desc, id desc) and the total count"""
        pass

    # Users

    @abstractmethod
    def insert_user(self, data: Dict[str, Any]) -> None:
        """Insert a user; duplicate email raises DUPLICATE_ENTRY"""
        pass

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update selected user columns and return the new row"""
        pass

    # Lifecycle

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """True when the calling thread has an open transaction"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a database transaction"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit current transaction and release row locks"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Rollback current transaction and release row locks"""
        pass

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Context manager for atomic operations; nested calls join the outer one"""
        if self.in_transaction:
            yield
            return

        self.begin_transaction()
        try:
            yield
            self.commit()
        except BaseException:
            self.rollback()
            raise

    def _require_transaction(self, operation: str) -> None:
        if not self.in_transaction:
            raise BankingError(
                ErrorKind.TRANSACTION_FAILED,
                f"{operation} requires an open transaction"
            )


USER_UPDATABLE_FIELDS = {"name", "phone_number", "password_hash", "biometric_enabled", "updated_at"}


def _search_matches(row: Dict[str, Any], term: str) -> bool:
    needle = term.casefold()
    return (
        needle in (row.get('description') or '').casefold()
        or needle in (row.get('recipient_name') or '').casefold()
    )


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    Row locks are real per-account locks so concurrent transfers serialize
    exactly as they would against a database; an undo log per thread
    restores prior state on rollback.
    """

    def __init__(self, lock_timeout: float = 30.0):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {
            "accounts": {},
            "transactions": {},
            "users": {},
        }
        self._lock = threading.RLock()
        self._row_locks: Dict[str, threading.Lock] = {}
        self._local = threading.local()
        self.lock_timeout = lock_timeout

    def _tx(self) -> Optional[Dict[str, Any]]:
        return getattr(self._local, 'tx', None)

    @property
    def in_transaction(self) -> bool:
        return self._tx() is not None

    def _record_undo(self, table: str, record_id: str) -> None:
        tx = self._tx()
        if tx is not None:
            previous = self._data[table].get(record_id)
            tx['undo'].append((table, record_id, copy.deepcopy(previous)))

    def _write(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._record_undo(table, record_id)
            self._data[table][record_id] = copy.deepcopy(data)

    def insert_account(self, data: Dict[str, Any]) -> None:
        with self._lock:
            if data['id'] in self._data['accounts']:
                raise BankingError(ErrorKind.DUPLICATE_ENTRY, "Account already exists")
            self._write('accounts', data['id'], data)

    def get_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._data['accounts'].get(account_id)
            if record is None or (user_id is not None and record['user_id'] != user_id):
                return None
            return copy.deepcopy(record)

    def list_accounts(self, user_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._data['accounts'].values() if r['user_id'] == user_id]
        rows.sort(key=lambda r: (r['created_at'], r['id']), reverse=True)
        return rows

    def lock_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        self._require_transaction("lock_account")
        # Accounts are never deleted, so an existence check before locking is stable
        if self.get_account(account_id, user_id) is None:
            return None

        tx = self._tx()
        if account_id not in tx['locks']:
            with self._lock:
                row_lock = self._row_locks.setdefault(account_id, threading.Lock())
            if not row_lock.acquire(timeout=self.lock_timeout):
                raise BankingError(ErrorKind.TRANSACTION_FAILED, "Timed out waiting for account lock")
            tx['locks'][account_id] = row_lock

        # Re-read under the lock
        return self.get_account(account_id, user_id)

    def set_balance(self, account_id: str, balance: Decimal, updated_at: datetime) -> None:
        self._require_transaction("set_balance")
        if account_id not in self._tx()['locks']:
            raise BankingError(ErrorKind.TRANSACTION_FAILED, f"Account {account_id} is not locked")
        with self._lock:
            record = copy.deepcopy(self._data['accounts'][account_id])
            record['balance'] = str(balance)
            record['updated_at'] = to_iso(updated_at)
            self._write('accounts', account_id, record)

    def insert_transaction(self, data: Dict[str, Any]) -> None:
        with self._lock:
            if data['id'] in self._data['transactions']:
                raise BankingError(ErrorKind.DUPLICATE_ENTRY, "Transaction already exists")
            self._write('transactions', data['id'], data)

    def query_transactions(self, query: TransactionQuery, limit: int,
                           offset: int) -> Tuple[List[Dict[str, Any]], int]:
        start = to_iso(query.start) if query.start else None
        end = to_iso(query.end) if query.end else None

        with self._lock:
            rows = []
            for row in self._data['transactions'].values():
                if row['user_id'] != query.user_id:
                    continue
                if query.type and row['type'] != query.type:
                    continue
                if query.status and row['status'] != query.status:
                    continue
                if query.search and not _search_matches(row, query.search):
                    continue
                if start and row['date'] < start:
                    continue
                if end and row['date'] >= end:
                    continue
                rows.append(copy.deepcopy(row))

        rows.sort(key=lambda r: (r['date'], r['id']), reverse=True)
        return rows[offset:offset + limit], len(rows)

    def insert_user(self, data: Dict[str, Any]) -> None:
        with self._lock:
            email = data['email'].lower()
            if any(u['email'].lower() == email for u in self._data['users'].values()):
                raise BankingError(ErrorKind.DUPLICATE_ENTRY, "User with this email already exists")
            self._write('users', data['id'], data)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._data['users'].get(user_id)
            return copy.deepcopy(record) if record else None

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            for record in self._data['users'].values():
                if record['email'].lower() == email.lower():
                    return copy.deepcopy(record)
            return None

    def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._data['users'].get(user_id)
            if record is None:
                return None
            updated = copy.deepcopy(record)
            for key, value in fields.items():
                if key in USER_UPDATABLE_FIELDS:
                    updated[key] = to_iso(value) if isinstance(value, datetime) else value
            self._write('users', user_id, updated)
            return copy.deepcopy(updated)

    def begin_transaction(self) -> None:
        if not self.in_transaction:
            self._local.tx = {'undo': [], 'locks': {}}

    def _release(self) -> None:
        tx = self._tx()
        self._local.tx = None
        for row_lock in tx['locks'].values():
            row_lock.release()

    def commit(self) -> None:
        if self.in_transaction:
            self._release()

    def rollback(self) -> None:
        tx = self._tx()
        if tx is None:
            return
        with self._lock:
            for table, record_id, previous in reversed(tx['undo']):
                if previous is None:
                    self._data[table].pop(record_id, None)
                else:
                    self._data[table][record_id] = previous
        self._release()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        name TEXT NOT NULL,
        phone_number TEXT,
        password_hash TEXT NOT NULL,
        biometric_enabled INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('checking', 'savings', 'credit')),
        name TEXT NOT NULL,
        number TEXT NOT NULL,
        balance TEXT NOT NULL,
        currency TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_accounts_user_id ON accounts(user_id)",
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL CHECK (type IN ('transfer', 'payment', 'deposit', 'withdrawal')),
        amount TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        date TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ('completed', 'pending', 'failed')),
        from_account_id TEXT,
        to_account_id TEXT,
        recipient_name TEXT,
        user_id TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date DESC, id DESC)",
]

ACCOUNT_COLUMNS = ("id", "user_id", "type", "name", "number", "balance", "currency",
                   "created_at", "updated_at")
TRANSACTION_COLUMNS = ("id", "type", "amount", "description", "date", "status",
                       "from_account_id", "to_account_id", "recipient_name", "user_id")
USER_COLUMNS = ("id", "email", "name", "phone_number", "password_hash", "biometric_enabled",
                "created_at", "updated_at")


def build_transaction_filter(query: TransactionQuery, placeholder: str,
                             convert_time=to_iso) -> Tuple[str, List[Any]]:
    """
    Build a parameterized WHERE clause for the transaction log.

    Only fixed column names appear in the SQL text; every caller-supplied
    value travels as a bound parameter.
    """
    conditions = [f"user_id = {placeholder}"]
    params: List[Any] = [query.user_id]

    if query.type:
        conditions.append(f"type = {placeholder}")
        params.append(query.type)
    if query.status:
        conditions.append(f"status = {placeholder}")
        params.append(query.status)
    if query.search:
        conditions.append(
            f"(strpos_ci(description, {placeholder}) OR strpos_ci(COALESCE(recipient_name, ''), {placeholder}))"
        )
        params.extend([query.search, query.search])
    if query.start:
        conditions.append(f"date >= {placeholder}")
        params.append(convert_time(query.start))
    if query.end:
        conditions.append(f"date < {placeholder}")
        params.append(convert_time(query.end))

    return " AND ".join(conditions), params


def _sqlite_contains_ci(haystack: Optional[str], needle: Optional[str]) -> int:
    if haystack is None or needle is None:
        return 0
    return 1 if needle.casefold() in haystack.casefold() else 0


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    SQLite has no row locks: ``BEGIN IMMEDIATE`` takes the database write lock
    and the connection lock is held by the owning thread until commit, so
    locked sections serialize database-wide.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 30.0):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly with BEGIN IMMEDIATE
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None, timeout=timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._connection.create_function("strpos_ci", 2, _sqlite_contains_ci, deterministic=True)
        self._lock = threading.RLock()
        self._owner: Optional[int] = None

        with self._lock:
            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            for statement in SQLITE_SCHEMA:
                self._connection.execute(statement)

    @property
    def in_transaction(self) -> bool:
        return self._owner == threading.get_ident()

    @staticmethod
    def _row(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        return dict(row) if row is not None else None

    def _execute(self, sql: str, params: Tuple[Any, ...] = ()) -> int:
        """Run a write statement and return the affected row count"""
        with self._lock:
            return self._connection.execute(sql, params).rowcount

    def _fetch_one(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(sql, params).fetchone()

    def _fetch_all(self, sql: str, params: Tuple[Any, ...] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(sql, params).fetchall()

    def _insert(self, table: str, columns: Tuple[str, ...], data: Dict[str, Any]) -> None:
        placeholders = ", ".join("?" for _ in columns)
        values = tuple(data.get(column) for column in columns)
        try:
            self._execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})", values
            )
        except sqlite3.IntegrityError as e:
            raise BankingError(ErrorKind.DUPLICATE_ENTRY, f"Duplicate {table} entry") from e

    def insert_account(self, data: Dict[str, Any]) -> None:
        row = dict(data, balance=str(data['balance']))
        self._insert("accounts", ACCOUNT_COLUMNS, row)

    def get_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if user_id is None:
            row = self._fetch_one("SELECT * FROM accounts WHERE id = ?", (account_id,))
        else:
            row = self._fetch_one(
                "SELECT * FROM accounts WHERE id = ? AND user_id = ?", (account_id, user_id)
            )
        return self._row(row)

    def list_accounts(self, user_id: str) -> List[Dict[str, Any]]:
        rows = self._fetch_all(
            "SELECT * FROM accounts WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,)
        )
        return [dict(row) for row in rows]

    def lock_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        self._require_transaction("lock_account")
        # The write lock was taken by BEGIN IMMEDIATE
        return self.get_account(account_id, user_id)

    def set_balance(self, account_id: str, balance: Decimal, updated_at: datetime) -> None:
        self._require_transaction("set_balance")
        updated = self._execute(
            "UPDATE accounts SET balance = ?, updated_at = ? WHERE id = ?",
            (str(balance), to_iso(updated_at), account_id)
        )
        if updated != 1:
            raise BankingError(ErrorKind.TRANSACTION_FAILED, f"Account {account_id} was not updated")

    def insert_transaction(self, data: Dict[str, Any]) -> None:
        row = dict(data, amount=str(data['amount']))
        self._insert("transactions", TRANSACTION_COLUMNS, row)

    def query_transactions(self, query: TransactionQuery, limit: int,
                           offset: int) -> Tuple[List[Dict[str, Any]], int]:
        where, params = build_transaction_filter(query, "?")
        with self._lock:
            total = self._connection.execute(
                f"SELECT COUNT(*) AS total FROM transactions WHERE {where}", params
            ).fetchone()['total']
            rows = self._connection.execute(
                f"SELECT * FROM transactions WHERE {where} "
                f"ORDER BY date DESC, id DESC LIMIT ? OFFSET ?",
                params + [limit, offset]
            ).fetchall()
        return [dict(row) for row in rows], total

    @staticmethod
    def _user(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        data = dict(row)
        data['biometric_enabled'] = bool(data['biometric_enabled'])
        return data

    def insert_user(self, data: Dict[str, Any]) -> None:
        row = dict(data, biometric_enabled=1 if data.get('biometric_enabled') else 0)
        try:
            self._insert("users", USER_COLUMNS, row)
        except BankingError as e:
            raise BankingError(ErrorKind.DUPLICATE_ENTRY, "User with this email already exists") from e

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._user(self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,)))

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self._user(self._fetch_one("SELECT * FROM users WHERE email = ?", (email,)))

    def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updates = {k: v for k, v in fields.items() if k in USER_UPDATABLE_FIELDS}
        if updates:
            assignments = ", ".join(f"{column} = ?" for column in updates)
            values = []
            for value in updates.values():
                if isinstance(value, datetime):
                    value = to_iso(value)
                elif isinstance(value, bool):
                    value = 1 if value else 0
                values.append(value)
            self._execute(f"UPDATE users SET {assignments} WHERE id = ?", tuple(values) + (user_id,))
        return self.get_user(user_id)

    def begin_transaction(self) -> None:
        if self.in_transaction:
            return
        self._lock.acquire()
        try:
            self._connection.execute("BEGIN IMMEDIATE")
        except Exception:
            self._lock.release()
            raise
        self._owner = threading.get_ident()

    def _finish(self, statement: str) -> None:
        if not self.in_transaction:
            return
        try:
            self._connection.execute(statement)
        finally:
            self._owner = None
            self._lock.release()

    def commit(self) -> None:
        self._finish("COMMIT")

    def rollback(self) -> None:
        self._finish("ROLLBACK")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


POSTGRES_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        name TEXT NOT NULL,
        phone_number TEXT,
        password_hash TEXT NOT NULL,
        biometric_enabled BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users (lower(email))",
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL CHECK (type IN ('checking', 'savings', 'credit')),
        name TEXT NOT NULL,
        number TEXT NOT NULL,
        balance NUMERIC(19, 4) NOT NULL,
        currency CHAR(3) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_accounts_user_id ON accounts(user_id)",
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL CHECK (type IN ('transfer', 'payment', 'deposit', 'withdrawal')),
        amount NUMERIC(19, 4) NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        date TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        status TEXT NOT NULL CHECK (status IN ('completed', 'pending', 'failed')),
        from_account_id TEXT,
        to_account_id TEXT,
        recipient_name TEXT,
        user_id TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_user_date ON transactions(user_id, date DESC, id DESC)",
    """
    CREATE OR REPLACE FUNCTION strpos_ci(haystack TEXT, needle TEXT) RETURNS BOOLEAN AS $$
        SELECT strpos(lower(haystack), lower(needle)) > 0
    $$ LANGUAGE SQL IMMUTABLE
    """,
]


class PostgreSQLStorage(StorageInterface):
    """
    PostgreSQL storage backend with ACID transaction support.

    Each atomic section checks a connection out of a thread-safe pool and
    keeps it for its whole duration; ``SELECT ... FOR UPDATE`` holds the row
    lock in the database, so it also serializes across API processes.
    """

    def __init__(self, connection_string: str, pool_size: int = 5, lock_timeout: float = 30.0):
        try:
            import psycopg2
            import psycopg2.errors
            import psycopg2.extras
            import psycopg2.pool
            self.psycopg2 = psycopg2
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.lock_timeout = lock_timeout
        self._pool = psycopg2.pool.ThreadedConnectionPool(
            1, pool_size, connection_string,
            cursor_factory=psycopg2.extras.RealDictCursor
        )
        self._local = threading.local()
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        with self._cursor() as cursor:
            for statement in POSTGRES_SCHEMA:
                cursor.execute(statement)

    def _tx_connection(self):
        return getattr(self._local, 'connection', None)

    @property
    def in_transaction(self) -> bool:
        return self._tx_connection() is not None

    @contextmanager
    def _cursor(self):
        """Cursor on the thread's transaction connection, or an autocommitted pooled one"""
        connection = self._tx_connection()
        if connection is not None:
            cursor = connection.cursor()
            try:
                yield cursor
            finally:
                cursor.close()
            return

        connection = self._pool.getconn()
        try:
            cursor = connection.cursor()
            try:
                yield cursor
            finally:
                cursor.close()
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            self._pool.putconn(connection)

    @staticmethod
    def _row(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        data = dict(row)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = to_iso(value)
        return data

    def _insert(self, table: str, columns: Tuple[str, ...], data: Dict[str, Any]) -> None:
        placeholders = ", ".join("%s" for _ in columns)
        values = tuple(data.get(column) for column in columns)
        try:
            with self._cursor() as cursor:
                cursor.execute(
                    f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})", values
                )
        except self.psycopg2.errors.UniqueViolation as e:
            raise BankingError(ErrorKind.DUPLICATE_ENTRY, f"Duplicate {table} entry") from e

    def insert_account(self, data: Dict[str, Any]) -> None:
        self._insert("accounts", ACCOUNT_COLUMNS, dict(data, balance=Decimal(str(data['balance']))))

    def get_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        with self._cursor() as cursor:
            if user_id is None:
                cursor.execute("SELECT * FROM accounts WHERE id = %s", (account_id,))
            else:
                cursor.execute(
                    "SELECT * FROM accounts WHERE id = %s AND user_id = %s", (account_id, user_id)
                )
            return self._row(cursor.fetchone())

    def list_accounts(self, user_id: str) -> List[Dict[str, Any]]:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM accounts WHERE user_id = %s ORDER BY created_at DESC, id DESC",
                (user_id,)
            )
            return [self._row(row) for row in cursor.fetchall()]

    def lock_account(self, account_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        self._require_transaction("lock_account")
        try:
            with self._cursor() as cursor:
                if user_id is None:
                    cursor.execute("SELECT * FROM accounts WHERE id = %s FOR UPDATE", (account_id,))
                else:
                    cursor.execute(
                        "SELECT * FROM accounts WHERE id = %s AND user_id = %s FOR UPDATE",
                        (account_id, user_id)
                    )
                return self._row(cursor.fetchone())
        except self.psycopg2.errors.LockNotAvailable as e:
            raise BankingError(ErrorKind.TRANSACTION_FAILED, "Timed out waiting for account lock") from e

    def set_balance(self, account_id: str, balance: Decimal, updated_at: datetime) -> None:
        self._require_transaction("set_balance")
        with self._cursor() as cursor:
            cursor.execute(
                "UPDATE accounts SET balance = %s, updated_at = %s WHERE id = %s",
                (balance, updated_at, account_id)
            )
            if cursor.rowcount != 1:
                raise BankingError(ErrorKind.TRANSACTION_FAILED, f"Account {account_id} was not updated")

    def insert_transaction(self, data: Dict[str, Any]) -> None:
        self._insert("transactions", TRANSACTION_COLUMNS, dict(data, amount=Decimal(str(data['amount']))))

    def query_transactions(self, query: TransactionQuery, limit: int,
                           offset: int) -> Tuple[List[Dict[str, Any]], int]:
        where, params = build_transaction_filter(query, "%s", convert_time=lambda value: value)
        with self._cursor() as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM transactions WHERE {where}", params)
            total = cursor.fetchone()['total']
            cursor.execute(
                f"SELECT * FROM transactions WHERE {where} "
                f"ORDER BY date DESC, id DESC LIMIT %s OFFSET %s",
                params + [limit, offset]
            )
            return [self._row(row) for row in cursor.fetchall()], total

    def insert_user(self, data: Dict[str, Any]) -> None:
        try:
            self._insert("users", USER_COLUMNS, data)
        except BankingError as e:
            raise BankingError(ErrorKind.DUPLICATE_ENTRY, "User with this email already exists") from e

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM users WHERE id = %s", (user_id,))
            return self._row(cursor.fetchone())

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM users WHERE lower(email) = lower(%s)", (email,))
            return self._row(cursor.fetchone())

    def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updates = {k: v for k, v in fields.items() if k in USER_UPDATABLE_FIELDS}
        if not updates:
            return self.get_user(user_id)
        assignments = ", ".join(f"{column} = %s" for column in updates)
        with self._cursor() as cursor:
            cursor.execute(
                f"UPDATE users SET {assignments} WHERE id = %s RETURNING *",
                tuple(updates.values()) + (user_id,)
            )
            return self._row(cursor.fetchone())

    def begin_transaction(self) -> None:
        if not self.in_transaction:
            # psycopg2 opens the transaction implicitly on the first statement
            connection = self._pool.getconn()
            try:
                with connection.cursor() as cursor:
                    # Transaction-local, so pooled connections keep the server default
                    cursor.execute(
                        "SELECT set_config('lock_timeout', %s, true)",
                        (f"{int(self.lock_timeout * 1000)}ms",)
                    )
            except Exception:
                connection.rollback()
                self._pool.putconn(connection)
                raise
            self._local.connection = connection

    def _finish(self, commit: bool) -> None:
        connection = self._tx_connection()
        if connection is None:
            return
        self._local.connection = None
        try:
            if commit:
                connection.commit()
            else:
                connection.rollback()
        finally:
            self._pool.putconn(connection)

    def commit(self) -> None:
        self._finish(commit=True)

    def rollback(self) -> None:
        self._finish(commit=False)

    def close(self) -> None:
        """Close all pooled PostgreSQL connections"""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None


def create_storage(database_url: str, pool_size: int = 5, lock_timeout: float = 30.0) -> StorageInterface:
    """
    Build a storage backend from a database URL.

    ``memory://`` -> InMemoryStorage, ``sqlite:///path`` (or ``sqlite://`` for an
    in-memory database) -> SQLiteStorage, ``postgresql://...`` -> PostgreSQLStorage.
    ``lock_timeout`` bounds how long a writer waits for a locked row or database.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage(lock_timeout=lock_timeout)
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:", timeout=lock_timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url, pool_size=pool_size, lock_timeout=lock_timeout)
    raise ValueError(f"Unsupported database URL: {database_url}")
