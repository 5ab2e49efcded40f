"""
auth.py
Business accounts (bcrypt hashing, verify, login, register, change password).

Each business account is a tenant: its id is the business_id every other
table is scoped by.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone

import bcrypt

import db
from config import settings

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password; truncate explicitly.
    """
    return password.encode("utf-8")[:72]


def hash_password(password: str, rounds: int | None = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_to_bcrypt_secret(password), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(_to_bcrypt_secret(password), password_hash.encode("utf-8"))


def get_business_by_username(username: str):
    return db.fetch_one("SELECT * FROM businesses WHERE username = ?", (username,))


def login(username: str, password: str):
    """Returns the business row on success, None otherwise."""
    business = get_business_by_username(username)
    if not business or not verify_password(password, business["password_hash"]):
        logger.warning("Failed login for %r", username)
        return None
    return business


def validate_new_password(new1: str, new2: str) -> list[str]:
    errors: list[str] = []
    if len(new1) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if new1 != new2:
        errors.append("Passwords do not match.")
    return errors


def register_business(username: str, business_name: str, password: str) -> int:
    if not username.strip() or not business_name.strip():
        raise ValueError("Username and business name are required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    now = datetime.now(timezone.utc).isoformat(timespec="seconds")
    try:
        business_id = db.execute(
            "INSERT INTO businesses(username, business_name, password_hash, created_at) VALUES(?,?,?,?)",
            (username.strip(), business_name.strip(), hash_password(password), now),
        )
    except sqlite3.IntegrityError as exc:
        raise ValueError(f"Username {username!r} is already taken.") from exc
    logger.info("Registered business %s (%r)", business_id, username)
    return business_id


def change_password(business_id: int, new_password: str) -> None:
    db.execute(
        "UPDATE businesses SET password_hash = ? WHERE id = ?",
        (hash_password(new_password), business_id),
    )
    db.clear_force_password_change(business_id)
    logger.info("Password changed for business %s", business_id)
