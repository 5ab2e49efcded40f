"""
Shared fixtures: every test gets its own SQLite file with the schema created.
"""

import pytest

import auth
import db
import repository
from config import settings
from models import PACKAGE, SINGLE, SUBSCRIPTION, UNLIMITED_DAYS


@pytest.fixture(autouse=True)
def tmp_db(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_FILE", tmp_path / "test.db")
    # Fast hashing for tests
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)
    db.init_db(auth.hash_password(settings.DEFAULT_ADMIN_PASSWORD))
    return db.DB_FILE


@pytest.fixture
def business_id():
    return auth.register_business("gym1", "Gym One", "secret1")


@pytest.fixture
def other_business_id():
    return auth.register_business("gym2", "Gym Two", "secret2")


@pytest.fixture
def plans(business_id):
    return {
        "monthly": repository.save_plan(business_id, "Monthly", SUBSCRIPTION, 30, 0, 50.0),
        "unlimited": repository.save_plan(business_id, "Unlimited", SUBSCRIPTION, UNLIMITED_DAYS, 0, 400.0),
        "pack": repository.save_plan(business_id, "10 sessions", PACKAGE, 0, 10, 80.0),
        "single": repository.save_plan(business_id, "Single session", SINGLE, 0, 1, 10.0),
        "free": repository.save_plan(business_id, "Trial", SUBSCRIPTION, 3, 0, 0.0),
    }


@pytest.fixture
def service_id(business_id):
    return repository.save_service(business_id, "Massage", 25.0, duration_minutes=30)
