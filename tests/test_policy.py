import re
from datetime import datetime, timedelta

import pytest

from app.services.grants.errors import InvalidPolicy
from app.services.grants.policy import (
    GrantPolicy, LicenseType, LICENSE_MAX_ACTIVATIONS,
    resolve_max_uses, resolve_expiry, download_horizon_hours, check_extension_days,
    generate_download_token, generate_license_key, generate_token
)

pytestmark = pytest.mark.usefixtures('app')

NOW = datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def config(app):
    return app.config


def test_license_max_activations_by_type(config):
    assert resolve_max_uses(GrantPolicy.license(LicenseType.SINGLE), config) == 1
    assert resolve_max_uses(GrantPolicy.license(LicenseType.MULTIPLE), config) == 5
    assert resolve_max_uses(GrantPolicy.license(LicenseType.UNLIMITED), config) == 999999
    assert LICENSE_MAX_ACTIVATIONS[LicenseType.UNLIMITED] == 999999


def test_explicit_max_uses_overrides_table(config):
    assert resolve_max_uses(GrantPolicy.license(LicenseType.SINGLE, max_uses=3), config) == 3
    assert resolve_max_uses(GrantPolicy.download(max_uses=10), config) == 10


def test_download_max_uses_default_and_bounds(config):
    assert resolve_max_uses(GrantPolicy.download(), config) == 5
    assert resolve_max_uses(GrantPolicy.download(max_uses=50), config) == 50

    with pytest.raises(InvalidPolicy):
        resolve_max_uses(GrantPolicy.download(max_uses=0), config)
    with pytest.raises(InvalidPolicy):
        resolve_max_uses(GrantPolicy.download(max_uses=51), config)


def test_unknown_license_type_rejected(config):
    with pytest.raises(InvalidPolicy):
        resolve_max_uses(GrantPolicy.license('site'), config)


def test_download_expiry_default_and_bounds(config):
    assert resolve_expiry(GrantPolicy.download(), config, NOW) == NOW + timedelta(hours=72)
    assert resolve_expiry(GrantPolicy.download(expiration_hours=1), config, NOW) == NOW + timedelta(hours=1)
    assert resolve_expiry(GrantPolicy.download(expiration_hours=168), config, NOW) == NOW + timedelta(hours=168)

    for hours in (0, 169, -5):
        with pytest.raises(InvalidPolicy) as exc:
            download_horizon_hours(hours, config)
        assert exc.value.kind == 'invalid_policy'


def test_license_expiry_default_and_explicit(config):
    assert resolve_expiry(GrantPolicy.license(LicenseType.SINGLE), config, NOW) == NOW + timedelta(days=365)

    later = NOW + timedelta(days=10)
    assert resolve_expiry(GrantPolicy.license(LicenseType.SINGLE, expires_at=later), config, NOW) == later

    with pytest.raises(InvalidPolicy):
        resolve_expiry(GrantPolicy.license(LicenseType.SINGLE, expires_at=NOW - timedelta(days=1)), config, NOW)


def test_extension_days_bounds(config):
    assert check_extension_days(30, config) == 30
    assert check_extension_days(3650, config) == 3650
    for days in (0, -1, 3651):
        with pytest.raises(InvalidPolicy):
            check_extension_days(days, config)


def test_download_token_is_64_hex_chars():
    token = generate_download_token()
    assert re.fullmatch(r'[0-9a-f]{64}', token)
    assert token != generate_download_token()


def test_license_key_format():
    key = generate_license_key()
    assert re.fullmatch(r'LIC-[0-9A-F]{64}', key)
    assert key != generate_license_key()
    assert generate_token('license').startswith('LIC-')
    assert len(generate_token('download')) == 64
