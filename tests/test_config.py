import pytest

from config import Config


def test_postgres_url_is_normalised():
    config = Config(SECRET_KEY='x', DATABASE_URL='postgres://shop:pw@db:5432/shop')
    assert config.SQLALCHEMY_DATABASE_URI == 'postgresql://shop:pw@db:5432/shop'
    assert config.SQLALCHEMY_ENGINE_OPTIONS['pool_pre_ping'] is True


def test_sqlite_has_no_pool_options():
    config = Config(SECRET_KEY='x', DATABASE_URL='sqlite:///:memory:')
    assert config.SQLALCHEMY_DATABASE_URI == 'sqlite:///:memory:'
    assert config.SQLALCHEMY_ENGINE_OPTIONS == {}


def test_grant_defaults():
    config = Config(SECRET_KEY='x')
    assert config.DOWNLOAD_EXPIRATION_HOURS == 72
    assert config.DOWNLOAD_MAX_USES == 5
    assert config.LICENSE_EXPIRY_DAYS == 365
    assert config.FILE_GATE_TTL_SECONDS == 3600
    assert config.TOKEN_GENERATION_ATTEMPTS == 10
    assert config.GRANT_RETENTION_DAYS == 30
    assert config.GRANT_SWEEP_INTERVAL_HOURS == 24


def test_inline_comments_are_stripped():
    config = Config(SECRET_KEY='x', DOWNLOAD_EXPIRATION_HOURS='48  # two days')
    assert config.DOWNLOAD_EXPIRATION_HOURS == 48


def test_download_horizon_must_lie_within_bounds():
    with pytest.raises(ValueError):
        Config(SECRET_KEY='x', DOWNLOAD_EXPIRATION_HOURS=200)


def test_sweep_interval_must_be_positive():
    with pytest.raises(ValueError):
        Config(SECRET_KEY='x', GRANT_SWEEP_INTERVAL_HOURS=0)


def test_file_gate_secret_falls_back_to_secret_key(app):
    gate = app.extensions['file_gate']
    assert gate._secret == app.config['SECRET_KEY']
