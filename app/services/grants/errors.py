"""
Failure taxonomy for capability grants.

Every domain failure carries a stable ``kind`` (used by callers and the HTTP
layer) and a human-readable message. ``GrantResult`` is the value returned
across the service boundary; exceptions stay inside the services.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class GrantError(Exception):
    kind = 'error'
    http_status = 400

    def __init__(self, message, details: Optional[Dict[str, Any]] = None):
        self.message = str(message)
        self.details = details or {}
        super().__init__(self.message)


class NotAuthorized(GrantError):
    kind = 'not_authorized'
    http_status = 403


class InvalidResource(GrantError):
    kind = 'invalid_resource'


class InvalidPolicy(GrantError):
    kind = 'invalid_policy'


class InvalidToken(GrantError):
    kind = 'invalid_token'
    http_status = 404


class NotFound(GrantError):
    kind = 'not_found'
    http_status = 404


class Expired(GrantError):
    kind = 'expired'
    http_status = 410


class Exhausted(GrantError):
    kind = 'exhausted'
    http_status = 409


class Revoked(GrantError):
    kind = 'revoked'
    http_status = 403


class Suspended(GrantError):
    kind = 'suspended'
    http_status = 403


class Inactive(GrantError):
    kind = 'inactive'
    http_status = 403


class AlreadyActivated(GrantError):
    kind = 'already_activated'
    http_status = 409


class DeviceNotActivated(GrantError):
    kind = 'device_not_activated'


class DuplicateKey(GrantError):
    kind = 'duplicate_key'
    http_status = 409


class IssuanceExhausted(GrantError):
    kind = 'issuance_exhausted'
    http_status = 500


class ConcurrentModification(GrantError):
    kind = 'conflict'
    http_status = 409


class InfrastructureError(GrantError):
    """Store-level failure (connectivity, timeout). Not a domain outcome."""
    kind = 'infrastructure'
    http_status = 503


@dataclass
class GrantResult:
    ok: bool
    message: str
    kind: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    http_status: int = 200
    meta: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, message, http_status=200, **data):
        return cls(ok=True, message=str(message), data=data, http_status=http_status)

    @classmethod
    def failure(cls, error: GrantError):
        return cls(ok=False, message=error.message, kind=error.kind,
                   data=dict(error.details), http_status=error.http_status)

    def to_dict(self):
        body = {'success': self.ok, 'message': self.message, 'data': self.data or None}
        if self.kind:
            body['error'] = self.kind
        if self.meta is not None:
            body['meta'] = self.meta
        return body
