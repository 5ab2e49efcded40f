"""
db.py
SQLite helpers + initialization (creates DB/tables, inserts default business account, etc.)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone

from config import settings
from models import HISTORY_TYPES, MEMBER_PAYMENT_METHODS, PAYMENT_METHODS, PLAN_TYPES, TRANSACTION_TYPES

logger = logging.getLogger(__name__)

DB_FILE = settings.database_file

# ISO-8601 UTC timestamp with milliseconds, assigned by SQLite itself
NOW_SQL = "(strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))"


def _sql_in(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


@contextmanager
def get_conn():
    """
    One connection = one transaction. Everything executed inside the block is
    committed together on exit, or discarded if the block raises.
    """
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def _create_tables() -> None:
    statements = [
        """
        CREATE TABLE IF NOT EXISTS businesses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            business_name TEXT NOT NULL,
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS subscription_plans (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            business_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            plan_type TEXT CHECK(plan_type IN ({_sql_in(PLAN_TYPES)})),
            duration_days REAL NOT NULL DEFAULT 0,
            sessions INTEGER NOT NULL DEFAULT 0,
            price REAL NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT {NOW_SQL},
            FOREIGN KEY(business_id) REFERENCES businesses(id) ON DELETE CASCADE
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS services (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            business_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            price REAL NOT NULL DEFAULT 0,
            duration_minutes INTEGER NOT NULL DEFAULT 0,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT {NOW_SQL},
            FOREIGN KEY(business_id) REFERENCES businesses(id) ON DELETE CASCADE
        )
        """,
        # plan_id is a soft reference: the member keeps its plan after the plan row is deleted
        f"""
        CREATE TABLE IF NOT EXISTS members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            business_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            phone TEXT NOT NULL,
            email TEXT,
            notes TEXT,
            plan_id INTEGER,
            plan_name TEXT,
            plan_type TEXT CHECK(plan_type IS NULL OR plan_type IN ({_sql_in(PLAN_TYPES)})),
            plan_start_at TEXT,
            expires_at TEXT,
            sessions_total INTEGER NOT NULL DEFAULT 0,
            sessions_used INTEGER NOT NULL DEFAULT 0,
            is_frozen INTEGER NOT NULL DEFAULT 0,
            frozen_at TEXT,
            debt REAL NOT NULL DEFAULT 0 CHECK(debt >= 0),
            created_at TEXT NOT NULL DEFAULT {NOW_SQL},
            updated_at TEXT NOT NULL DEFAULT {NOW_SQL},
            FOREIGN KEY(business_id) REFERENCES businesses(id) ON DELETE CASCADE
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS subscription_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            business_id INTEGER NOT NULL,
            member_id INTEGER NOT NULL,
            plan_id INTEGER,
            plan_name TEXT,
            type TEXT NOT NULL CHECK(type IN ({_sql_in(HISTORY_TYPES)})),
            amount REAL NOT NULL DEFAULT 0,
            payment_method TEXT CHECK(payment_method IS NULL OR payment_method IN ({_sql_in(MEMBER_PAYMENT_METHODS)})),
            sessions_added INTEGER NOT NULL DEFAULT 0,
            sessions_before INTEGER,
            sessions_after INTEGER,
            expires_before TEXT,
            expires_after TEXT,
            old_plan_id INTEGER,
            old_plan_name TEXT,
            new_plan_id INTEGER,
            new_plan_name TEXT,
            notes TEXT,
            created_at TEXT NOT NULL DEFAULT {NOW_SQL},
            FOREIGN KEY(business_id) REFERENCES businesses(id) ON DELETE CASCADE,
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE CASCADE
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            business_id INTEGER NOT NULL,
            member_id INTEGER,
            type TEXT NOT NULL CHECK(type IN ({_sql_in(TRANSACTION_TYPES)})),
            payment_method TEXT NOT NULL CHECK(payment_method IN ({_sql_in(PAYMENT_METHODS)})),
            amount REAL NOT NULL,
            discount REAL NOT NULL DEFAULT 0,
            notes TEXT,
            items TEXT,
            created_at TEXT NOT NULL DEFAULT {NOW_SQL},
            FOREIGN KEY(business_id) REFERENCES businesses(id) ON DELETE CASCADE,
            FOREIGN KEY(member_id) REFERENCES members(id) ON DELETE SET NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_members_business ON members(business_id, name)",
        "CREATE INDEX IF NOT EXISTS idx_history_member ON subscription_history(member_id, created_at)",
        "CREATE INDEX IF NOT EXISTS idx_transactions_business ON transactions(business_id, created_at)",
        # Small settings table (used to force password change on first login)
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """,
    ]
    with get_conn() as conn:
        for sql in statements:
            conn.execute(sql)


def _get_setting(key: str, default: str | None = None) -> str | None:
    row = fetch_one("SELECT value FROM app_settings WHERE key = ?", (key,))
    if row:
        return str(row["value"])
    return default


def _set_setting(key: str, value: str) -> None:
    execute(
        """
        INSERT INTO app_settings(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def _force_change_key(business_id: int) -> str:
    return f"force_password_change:{business_id}"


def init_db(default_admin_hash: str) -> None:
    """
    Initialize the database.
    - Create tables
    - Insert the default business account if no account exists
    - Force password change on its first login
    """
    _create_tables()

    account = fetch_one("SELECT id FROM businesses LIMIT 1")
    if not account:
        now = datetime.now(timezone.utc).isoformat(timespec="seconds")
        business_id = execute(
            "INSERT INTO businesses(username, business_name, password_hash, created_at) VALUES(?,?,?,?)",
            (settings.DEFAULT_ADMIN_USERNAME, settings.APP_NAME, default_admin_hash, now),
        )
        _set_setting(_force_change_key(business_id), "1")
        logger.info("Created default business account %r (id=%s)", settings.DEFAULT_ADMIN_USERNAME, business_id)


def is_force_password_change(business_id: int) -> bool:
    return _get_setting(_force_change_key(business_id)) == "1"


def clear_force_password_change(business_id: int) -> None:
    _set_setting(_force_change_key(business_id), "0")
