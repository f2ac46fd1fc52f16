"""Configuration class tests."""

import pytest

from admissions import create_app
from admissions.config import ProductionConfig, TestingConfig, config


def test_testing_config_is_deterministic(app):
    assert app.config["TESTING"] is True
    assert app.config["NOTIFY_ASYNC"] is False
    assert app.config["MAIL_SERVER"] is None
    assert TestingConfig.SQLALCHEMY_DATABASE_URI.startswith("sqlite")


def test_production_requires_database_url(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        create_app("production")


def test_production_requires_secret_key(monkeypatch):
    monkeypatch.setattr(ProductionConfig, "SQLALCHEMY_DATABASE_URI", "postgresql://u:p@db/admissions")
    monkeypatch.delenv("SECRET_KEY", raising=False)
    with pytest.raises(RuntimeError, match="SECRET_KEY"):
        create_app("production")


def test_environment_names():
    assert set(config) == {"development", "testing", "production"}


def test_testing_config_disables_rate_limits(app):
    assert app.config["RATELIMIT_ENABLED"] is False
    assert app.config["RATELIMIT_STORAGE_URI"] == "memory://"
    assert app.config["REDIS_URL"] == ""
