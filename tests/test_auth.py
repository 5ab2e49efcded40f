import pytest

import auth
import db
from config import settings


def test_hash_and_verify():
    hashed = auth.hash_password("s3cret!", rounds=4)
    assert auth.verify_password("s3cret!", hashed)
    assert not auth.verify_password("wrong", hashed)


def test_long_passwords_truncated_to_72_bytes():
    hashed = auth.hash_password("x" * 100, rounds=4)
    assert auth.verify_password("x" * 72 + "different tail", hashed)


def test_default_account_must_change_password():
    business = auth.login(settings.DEFAULT_ADMIN_USERNAME, settings.DEFAULT_ADMIN_PASSWORD)
    assert business is not None
    assert db.is_force_password_change(business["id"])

    auth.change_password(business["id"], "new-password")
    assert not db.is_force_password_change(business["id"])
    assert auth.login(settings.DEFAULT_ADMIN_USERNAME, "new-password")["id"] == business["id"]


def test_init_db_is_idempotent():
    db.init_db(auth.hash_password("other"))
    assert db.fetch_one("SELECT COUNT(*) AS c FROM businesses")["c"] == 1


def test_register_and_login(business_id):
    assert auth.login("gym1", "secret1")["id"] == business_id
    assert auth.login("gym1", "nope") is None
    assert auth.login("missing", "secret1") is None
    assert not db.is_force_password_change(business_id)


def test_duplicate_username(business_id):
    with pytest.raises(ValueError):
        auth.register_business("gym1", "Another", "secret1")


@pytest.mark.parametrize("username,name,password", [("", "Gym", "secret1"), ("u", " ", "secret1"), ("u", "Gym", "123")])
def test_register_validation(username, name, password):
    with pytest.raises(ValueError):
        auth.register_business(username, name, password)


def test_validate_new_password():
    assert auth.validate_new_password("abcdef", "abcdef") == []
    assert len(auth.validate_new_password("abc", "abd")) == 2
