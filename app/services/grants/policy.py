"""
Grant policy tables.

Download and license grants share one record type; they differ only in the
defaults below (how many uses, how long they live, what the token looks like).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import secrets

from app.services.grants.errors import InvalidPolicy
from app.utils.messages import (
    EXPIRATION_OUT_OF_RANGE, MAX_USES_OUT_OF_RANGE, EXTENSION_OUT_OF_RANGE
)


class GrantKind:
    DOWNLOAD = 'download'
    LICENSE = 'license'

    ALL = (DOWNLOAD, LICENSE)


class GrantStatus:
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    SUSPENDED = 'suspended'
    EXHAUSTED = 'exhausted'
    EXPIRED = 'expired'
    REVOKED = 'revoked'

    ALL = (ACTIVE, INACTIVE, SUSPENDED, EXHAUSTED, EXPIRED, REVOKED)


class LicenseType:
    SINGLE = 'single'
    MULTIPLE = 'multiple'
    UNLIMITED = 'unlimited'

    ALL = (SINGLE, MULTIPLE, UNLIMITED)


LICENSE_MAX_ACTIVATIONS = {
    LicenseType.SINGLE: 1,
    LicenseType.MULTIPLE: 5,
    LicenseType.UNLIMITED: 999999,
}

LICENSE_KEY_PREFIX = 'LIC'
DOWNLOAD_TOKEN_BYTES = 32


@dataclass(frozen=True)
class GrantPolicy:
    """Caller-supplied knobs for a new grant. ``None`` means "use the default"."""
    kind: str = GrantKind.DOWNLOAD
    max_uses: Optional[int] = None
    expiration_hours: Optional[int] = None
    license_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    manual_key: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def download(cls, max_uses=None, expiration_hours=None):
        return cls(kind=GrantKind.DOWNLOAD, max_uses=max_uses, expiration_hours=expiration_hours)

    @classmethod
    def license(cls, license_type, max_uses=None, expires_at=None, manual_key=None,
                notes=None, metadata=None):
        return cls(kind=GrantKind.LICENSE, license_type=license_type, max_uses=max_uses,
                   expires_at=expires_at, manual_key=manual_key, notes=notes, metadata=metadata)


def resolve_max_uses(policy: GrantPolicy, config) -> int:
    """Explicit value first, then the per-license-type table, then the flat download default."""
    if policy.kind == GrantKind.LICENSE:
        if policy.max_uses is not None:
            if policy.max_uses < 1:
                raise InvalidPolicy(MAX_USES_OUT_OF_RANGE % {'max': LICENSE_MAX_ACTIVATIONS[LicenseType.UNLIMITED]})
            return int(policy.max_uses)
        if policy.license_type not in LICENSE_MAX_ACTIVATIONS:
            raise InvalidPolicy(f"Unknown license type: {policy.license_type}")
        return LICENSE_MAX_ACTIVATIONS[policy.license_type]

    ceiling = config.get('DOWNLOAD_MAX_USES_CEILING', 50)
    if policy.max_uses is not None:
        if not 1 <= policy.max_uses <= ceiling:
            raise InvalidPolicy(MAX_USES_OUT_OF_RANGE % {'max': ceiling})
        return int(policy.max_uses)
    return config.get('DOWNLOAD_MAX_USES', 5)


def resolve_expiry(policy: GrantPolicy, config, now: datetime) -> datetime:
    if policy.kind == GrantKind.LICENSE:
        if policy.expires_at is not None:
            if policy.expires_at <= now:
                raise InvalidPolicy("License expiry must be in the future")
            return policy.expires_at
        return now + timedelta(days=config.get('LICENSE_EXPIRY_DAYS', 365))

    return now + timedelta(hours=download_horizon_hours(policy.expiration_hours, config))


def download_horizon_hours(requested: Optional[int], config) -> int:
    low = config.get('DOWNLOAD_MIN_EXPIRATION_HOURS', 1)
    high = config.get('DOWNLOAD_MAX_EXPIRATION_HOURS', 168)
    if requested is None:
        return config.get('DOWNLOAD_EXPIRATION_HOURS', 72)
    if not low <= requested <= high:
        raise InvalidPolicy(EXPIRATION_OUT_OF_RANGE % {'min': low, 'max': high})
    return int(requested)


def check_extension_days(days: int, config) -> int:
    ceiling = config.get('LICENSE_MAX_EXTENSION_DAYS', 3650)
    if not 1 <= days <= ceiling:
        raise InvalidPolicy(EXTENSION_OUT_OF_RANGE % {'max': ceiling})
    return int(days)


def generate_download_token() -> str:
    return secrets.token_hex(DOWNLOAD_TOKEN_BYTES)


def generate_license_key() -> str:
    """``LIC-<64 upper hex chars>``, carrying the same entropy as a download token."""
    return f"{LICENSE_KEY_PREFIX}-{secrets.token_hex(DOWNLOAD_TOKEN_BYTES).upper()}"


def generate_token(kind: str) -> str:
    if kind == GrantKind.LICENSE:
        return generate_license_key()
    return generate_download_token()
