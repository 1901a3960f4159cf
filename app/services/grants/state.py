"""
Pure grant state transitions.

Each function takes an immutable ``GrantState`` snapshot and returns a
``Transition``: the new state, the side effects to persist alongside it
(history rows, device activations) and, for failed attempts, the error to
report. Nothing here touches the database; ``GrantLedger.apply`` writes a
transition atomically, guarded by ``before.version``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Dict, FrozenSet, Optional, Tuple

from app.services.grants.errors import (
    GrantError, Expired, Exhausted, Revoked, Suspended, Inactive,
    AlreadyActivated, DeviceNotActivated, InvalidPolicy
)
from app.services.grants.policy import GrantKind, GrantStatus
from app.utils import messages


@dataclass(frozen=True)
class UsageContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None
    device_name: Optional[str] = None


@dataclass(frozen=True)
class GrantState:
    id: int
    kind: str
    token: str
    owner_id: int
    resource_id: int
    used_count: int
    max_uses: int
    expires_at: Optional[datetime]
    status: str
    is_active: bool
    version: int
    is_activated: bool = False
    activated_at: Optional[datetime] = None
    license_type: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    open_devices: FrozenSet[str] = frozenset()

    @classmethod
    def from_record(cls, record):
        return cls(
            id=record.id,
            kind=record.kind,
            token=record.token,
            owner_id=record.owner_id,
            resource_id=record.resource_id,
            used_count=record.used_count,
            max_uses=record.max_uses,
            expires_at=record.expires_at,
            status=record.status,
            is_active=record.is_active,
            version=record.version,
            is_activated=record.is_activated,
            activated_at=record.activated_at,
            license_type=record.license_type,
            notes=record.notes,
            metadata=record.grant_metadata,
            open_devices=frozenset(a.device_id for a in record.activations if a.deactivated_at is None),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    @property
    def remaining_uses(self) -> int:
        return max(0, self.max_uses - self.used_count)

    def effective_status(self, now: datetime) -> str:
        """Status as of ``now``, whether or not it has been persisted yet."""
        if self.status != GrantStatus.ACTIVE:
            return self.status
        if self.is_expired(now):
            return GrantStatus.EXPIRED
        if self.kind == GrantKind.DOWNLOAD and self.used_count >= self.max_uses:
            return GrantStatus.EXHAUSTED
        return self.status


# Side effects persisted together with the new state

@dataclass(frozen=True)
class RecordUsage:
    action: str
    success: bool
    at: datetime
    context: UsageContext = UsageContext()
    reason: Optional[str] = None


@dataclass(frozen=True)
class OpenActivation:
    device_id: str
    at: datetime
    context: UsageContext = UsageContext()


@dataclass(frozen=True)
class CloseActivation:
    device_id: str
    at: datetime


@dataclass(frozen=True)
class ClearHistory:
    pass


@dataclass(frozen=True)
class Transition:
    before: GrantState
    after: GrantState
    effects: Tuple[Any, ...] = ()
    error: Optional[GrantError] = field(default=None, compare=False)

    @property
    def changed(self) -> bool:
        return self.after != self.before or bool(self.effects)

    @property
    def ok(self) -> bool:
        return self.error is None


def _unchanged(state, error=None):
    return Transition(before=state, after=state, error=error)


def status_error(state: GrantState) -> GrantError:
    """Failure for a grant whose persisted status is not ACTIVE."""
    download = state.kind == GrantKind.DOWNLOAD
    if state.status == GrantStatus.REVOKED:
        return Revoked(messages.DOWNLOAD_REVOKED if download else messages.LICENSE_REVOKED)
    if state.status == GrantStatus.SUSPENDED:
        return Suspended(messages.LICENSE_SUSPENDED)
    if state.status == GrantStatus.EXPIRED:
        return Expired(messages.DOWNLOAD_EXPIRED if download else messages.LICENSE_EXPIRED)
    if state.status == GrantStatus.EXHAUSTED:
        return Exhausted(messages.DOWNLOAD_LIMIT_REACHED if download else messages.LICENSE_MAX_ACTIVATIONS)
    return Inactive(messages.DOWNLOAD_NOT_ACTIVE if download else messages.LICENSE_INACTIVE)


def expire(state: GrantState, now: datetime, context: UsageContext = UsageContext()) -> Transition:
    """Flip an ACTIVE grant past its expiry to EXPIRED and record the failed attempt."""
    error = Expired(messages.DOWNLOAD_EXPIRED if state.kind == GrantKind.DOWNLOAD else messages.LICENSE_EXPIRED)
    after = replace(state, status=GrantStatus.EXPIRED, is_active=False)
    usage = RecordUsage(action='expire', success=False, at=now, context=context, reason=error.message)
    return Transition(before=state, after=after, effects=(usage,), error=error)


def _gate(state: GrantState, now: datetime, context: UsageContext) -> Optional[Transition]:
    """Common status/expiry checks. Returns a failing transition or None."""
    if state.status != GrantStatus.ACTIVE:
        return _unchanged(state, status_error(state))
    if state.is_expired(now):
        return expire(state, now, context)
    return None


def redeem(state: GrantState, now: datetime, context: UsageContext = UsageContext()) -> Transition:
    """One download attempt."""
    failed = _gate(state, now, context)
    if failed is not None:
        return failed
    if state.used_count >= state.max_uses:
        return _unchanged(state, Exhausted(messages.DOWNLOAD_LIMIT_REACHED))

    used = state.used_count + 1
    after = replace(state, used_count=used)
    if used >= state.max_uses:
        after = replace(after, status=GrantStatus.EXHAUSTED, is_active=False)
    usage = RecordUsage(action='redeem', success=True, at=now, context=context)
    return Transition(before=state, after=after, effects=(usage,))


def check(state: GrantState, now: datetime) -> Transition:
    """Would ``redeem`` succeed right now? Only the lazy expiry flip is persisted."""
    failed = _gate(state, now, UsageContext())
    if failed is not None:
        return failed
    if state.used_count >= state.max_uses:
        return _unchanged(state, Exhausted(messages.DOWNLOAD_LIMIT_REACHED))
    return _unchanged(state)


def activate(state: GrantState, device_id: str, now: datetime,
             context: UsageContext = UsageContext()) -> Transition:
    failed = _gate(state, now, context)
    if failed is not None:
        return failed
    if device_id in state.open_devices:
        return _unchanged(state, AlreadyActivated(messages.LICENSE_ALREADY_ACTIVATED))
    if state.used_count >= state.max_uses:
        return _unchanged(state, Exhausted(messages.LICENSE_MAX_ACTIVATIONS))

    after = replace(
        state,
        used_count=state.used_count + 1,
        is_activated=True,
        activated_at=state.activated_at or now,
        open_devices=state.open_devices | {device_id},
    )
    effects = (
        OpenActivation(device_id=device_id, at=now, context=context),
        RecordUsage(action='activate', success=True, at=now, context=context),
    )
    return Transition(before=state, after=after, effects=effects)


def deactivate(state: GrantState, device_id: str, now: datetime,
               context: UsageContext = UsageContext()) -> Transition:
    if device_id not in state.open_devices:
        return _unchanged(state, DeviceNotActivated(messages.LICENSE_NOT_ACTIVATED))

    after = replace(
        state,
        used_count=max(0, state.used_count - 1),
        open_devices=state.open_devices - {device_id},
    )
    effects = (
        CloseActivation(device_id=device_id, at=now),
        RecordUsage(action='deactivate', success=True, at=now, context=context),
    )
    return Transition(before=state, after=after, effects=effects)


def validate(state: GrantState, device_id: str, now: datetime) -> Transition:
    """Read-only license check for one device (persists only the lazy expiry flip)."""
    failed = _gate(state, now, UsageContext(device_id=device_id))
    if failed is not None:
        return failed
    if device_id not in state.open_devices:
        return _unchanged(state, DeviceNotActivated(messages.LICENSE_NOT_ACTIVATED))
    return _unchanged(state)


def revoke(state: GrantState) -> Transition:
    if state.status == GrantStatus.REVOKED:
        return _unchanged(state)
    return Transition(before=state, after=replace(state, status=GrantStatus.REVOKED, is_active=False))


def regenerate(state: GrantState, new_token: str, expires_at: datetime) -> Transition:
    after = replace(
        state,
        token=new_token,
        expires_at=expires_at,
        status=GrantStatus.ACTIVE,
        is_active=True,
        used_count=0,
        is_activated=False,
        activated_at=None,
        open_devices=frozenset(),
    )
    return Transition(before=state, after=after, effects=(ClearHistory(),))


def extend(state: GrantState, days: int, now: datetime) -> Transition:
    if state.status != GrantStatus.ACTIVE:
        return _unchanged(state, InvalidPolicy(messages.LICENSE_CANNOT_EXTEND % {'status': state.status}))
    base = state.expires_at or now
    return Transition(before=state, after=replace(state, expires_at=base + timedelta(days=days)))


def update(state: GrantState, changes: Dict[str, Any]) -> Transition:
    """Administrative edit of status, limits, expiry, notes or metadata."""
    after = state
    if 'max_uses' in changes and changes['max_uses'] is not None:
        max_uses = int(changes['max_uses'])
        if max_uses < 1 or max_uses < state.used_count:
            return _unchanged(state, InvalidPolicy(
                f"max_uses must be at least 1 and not below the current usage ({state.used_count})"))
        after = replace(after, max_uses=max_uses)
    if 'expires_at' in changes:
        after = replace(after, expires_at=changes['expires_at'])
    if 'notes' in changes:
        after = replace(after, notes=changes['notes'])
    if 'metadata' in changes:
        after = replace(after, metadata=changes['metadata'])
    if changes.get('status'):
        status = changes['status']
        if status not in GrantStatus.ALL:
            return _unchanged(state, InvalidPolicy(f"Unknown status: {status}"))
        after = replace(after, status=status, is_active=status == GrantStatus.ACTIVE)
    if (after.kind == GrantKind.DOWNLOAD and after.status == GrantStatus.ACTIVE
            and after.used_count >= after.max_uses):
        after = replace(after, status=GrantStatus.EXHAUSTED, is_active=False)
    return Transition(before=state, after=after)
