"""
Redemption of download grants and device activation of license grants.

Every attempt goes through ``GrantLedger.mutate``: read the grant fresh,
evaluate a pure transition from ``state`` and apply it with compare-and-swap,
so a grant can't be redeemed past its limit.
"""

from datetime import datetime
from typing import Callable, Dict, Optional, Tuple
import logging

from app.models import CapabilityGrant
from app.services.grants import state as transitions
from app.services.grants.errors import InvalidToken, InvalidResource
from app.services.grants.ledger import GrantLedger, MAX_CAS_ATTEMPTS
from app.services.grants.policy import GrantKind
from app.services.grants.state import GrantState, Transition, UsageContext
from app.utils import messages
from app.utils.timeutil import utcnow

logger = logging.getLogger(__name__)


class RedemptionService:

    def __init__(self, config, ledger: GrantLedger, file_gate,
                 clock: Callable[[], datetime] = None, max_attempts: int = MAX_CAS_ATTEMPTS):
        self.config = config
        self.ledger = ledger
        self.file_gate = file_gate
        self.clock = clock or utcnow
        self.max_attempts = max_attempts

    def _run(self, token: str, kind: str, step) -> Tuple[CapabilityGrant, Transition]:
        unknown = messages.DOWNLOAD_INVALID_TOKEN if kind == GrantKind.DOWNLOAD else messages.LICENSE_NOT_FOUND

        def load():
            grant = self.ledger.get_by_token(token)
            if grant is None or grant.kind != kind:
                return None
            return grant

        return self.ledger.mutate(load, step, self.clock, InvalidToken(unknown), attempts=self.max_attempts)

    # Downloads

    def redeem(self, token: str, context: UsageContext = UsageContext()) -> Dict:
        """One download. Returns a short-lived file capability for the product's first file."""
        picked = {}

        def step(state, grant, now):
            transition = transitions.redeem(state, now, context)
            if transition.ok:
                files = grant.resource.files
                if not files:
                    return Transition(before=state, after=state,
                                      error=InvalidResource(messages.RESOURCE_NO_FILES))
                first = files[0]
                picked.update(path=first.file_path, name=first.original_name, size=first.file_size,
                              mime_type=first.mime_type)
            return transition

        _, transition = self._run(token, GrantKind.DOWNLOAD, step)
        after = transition.after
        ttl = self.config.get('FILE_GATE_TTL_SECONDS', 3600)
        file_token = self.file_gate.mint(picked['path'], ttl_seconds=ttl)

        logger.info(f"RedemptionService: Download {after.used_count}/{after.max_uses} on grant {after.id}")
        return {
            'file_token': file_token,
            'file_name': picked['name'],
            'file_size': picked['size'],
            'mime_type': picked['mime_type'],
            'file_expires_in': ttl,
            'remaining_uses': after.remaining_uses,
            'expires_at': _iso(after.expires_at),
            'status': after.status,
        }

    def check(self, token: str) -> Dict:
        """Would a redemption succeed now? Counters are never touched."""
        _, transition = self._run(token, GrantKind.DOWNLOAD,
                                  lambda state, grant, now: transitions.check(state, now))
        state = transition.after
        return {
            'redeemable': True,
            'remaining_uses': state.remaining_uses,
            'max_uses': state.max_uses,
            'expires_at': _iso(state.expires_at),
            'status': state.status,
        }

    # Licenses

    def activate(self, license_key: str, device_id: str, context: UsageContext = UsageContext()) -> Dict:
        context = _with_device(context, device_id)
        _, transition = self._run(license_key, GrantKind.LICENSE,
                                  lambda state, grant, now: transitions.activate(state, device_id, now, context))
        logger.info(f"RedemptionService: Device {device_id} activated on license {transition.after.id}")
        return _license_summary(transition.after)

    def deactivate(self, license_key: str, device_id: str, context: UsageContext = UsageContext()) -> Dict:
        context = _with_device(context, device_id)
        _, transition = self._run(license_key, GrantKind.LICENSE,
                                  lambda state, grant, now: transitions.deactivate(state, device_id, now, context))
        logger.info(f"RedemptionService: Device {device_id} deactivated on license {transition.after.id}")
        return _license_summary(transition.after)

    def validate(self, license_key: str, device_id: str) -> Dict:
        _, transition = self._run(license_key, GrantKind.LICENSE,
                                  lambda state, grant, now: transitions.validate(state, device_id, now))
        summary = _license_summary(transition.after)
        summary['is_valid'] = True
        return summary


def _with_device(context: UsageContext, device_id: str) -> UsageContext:
    return UsageContext(ip_address=context.ip_address, user_agent=context.user_agent,
                        device_id=device_id, device_name=context.device_name)


def _license_summary(state: GrantState) -> Dict:
    return {
        'license_id': state.id,
        'license_key': state.token,
        'license_type': state.license_type,
        'status': state.status,
        'current_activations': state.used_count,
        'max_activations': state.max_uses,
        'remaining_activations': state.remaining_uses,
        'is_activated': state.is_activated,
        'activated_at': _iso(state.activated_at),
        'expires_at': _iso(state.expires_at),
        'devices': sorted(state.open_devices),
    }


def _iso(value: Optional[datetime]):
    return value.isoformat() if value is not None else None
