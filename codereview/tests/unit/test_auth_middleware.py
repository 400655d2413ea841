import pytest
from fastapi import HTTPException
from jose import jwt

from codereview.services.external import auth_middleware
from codereview.services.external.auth_middleware import DEFAULT_DEV_USER, resolve_user_id


@pytest.fixture
def auth_settings(monkeypatch):
    monkeypatch.setattr(auth_middleware.settings, "is_production", False)
    monkeypatch.setattr(auth_middleware.settings, "auth_jwt_secret", None)
    return auth_middleware.settings


def test_dev_token_outside_production(auth_settings):
    assert resolve_user_id("dev_test_token_alice") == "alice"


def test_dev_token_rejected_in_production(auth_settings, monkeypatch):
    monkeypatch.setattr(auth_settings, "is_production", True)

    with pytest.raises(HTTPException) as exc_info:
        resolve_user_id("dev_test_token_alice")

    assert exc_info.value.status_code == 401


def test_jwt_subject_is_user_id(auth_settings, monkeypatch):
    monkeypatch.setattr(auth_settings, "auth_jwt_secret", "unit-test-signing-key")
    token = jwt.encode({"sub": "user_42"}, "unit-test-signing-key", algorithm="HS256")

    assert resolve_user_id(token) == "user_42"


def test_jwt_with_wrong_key_rejected(auth_settings, monkeypatch):
    monkeypatch.setattr(auth_settings, "auth_jwt_secret", "unit-test-signing-key")
    token = jwt.encode({"sub": "user_42"}, "another-key", algorithm="HS256")

    with pytest.raises(HTTPException) as exc_info:
        resolve_user_id(token)

    assert exc_info.value.status_code == 401


def test_unconfigured_development_falls_back_to_default_user(auth_settings):
    assert resolve_user_id("opaque-token") == DEFAULT_DEV_USER


def test_empty_token_rejected(auth_settings):
    with pytest.raises(HTTPException):
        resolve_user_id("")
