"""Administrative grant operations: revoke, regenerate, extend, edit, delete, listings."""

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
import logging

from app.models import CapabilityGrant
from app.services.grants import state as transitions
from app.services.grants.errors import NotFound, IssuanceExhausted
from app.services.grants.ledger import GrantLedger
from app.services.grants.policy import (
    GrantKind, download_horizon_hours, check_extension_days, generate_token
)
from app.utils import messages

logger = logging.getLogger(__name__)


class AdminService:

    def __init__(self, config, ledger: GrantLedger, clock: Callable[[], datetime]):
        self.config = config
        self.ledger = ledger
        self.clock = clock

    def _loader(self, grant_id: int, kind: Optional[str]):
        def load():
            grant = self.ledger.get_by_id(grant_id)
            if grant is None or (kind and grant.kind != kind):
                return None
            return grant
        return load

    def _not_found(self, kind):
        if kind == GrantKind.LICENSE:
            return NotFound(messages.LICENSE_NOT_FOUND)
        return NotFound(messages.ERROR_NOT_FOUND % {'item': 'Grant'})

    def _mutate(self, grant_id: int, kind: Optional[str], step) -> CapabilityGrant:
        grant, _ = self.ledger.mutate(self._loader(grant_id, kind), step, self.clock, self._not_found(kind))
        return self.ledger.get_by_id(grant.id)

    def get(self, grant_id: int, kind: Optional[str] = None) -> CapabilityGrant:
        grant = self._loader(grant_id, kind)()
        if grant is None:
            raise self._not_found(kind)
        return grant

    def get_by_token(self, token: str, kind: Optional[str] = None) -> CapabilityGrant:
        grant = self.ledger.get_by_token(token)
        if grant is None or (kind and grant.kind != kind):
            raise self._not_found(kind)
        return grant

    def revoke(self, grant_id: int, kind: Optional[str] = None) -> CapabilityGrant:
        """Idempotent: revoking a revoked grant succeeds without writing."""
        grant = self._mutate(grant_id, kind, lambda state, record, now: transitions.revoke(state))
        logger.info(f"AdminService: Revoked {grant.kind} grant {grant.id}")
        return grant

    def regenerate(self, grant_id: int, kind: Optional[str] = None,
                   expiration_hours: Optional[int] = None, expiration_days: Optional[int] = None) -> CapabilityGrant:
        """Rotate the token, reset counters and history, and restart the validity window.

        The original purchase is not re-validated.
        """
        def step(state, record, now):
            if state.kind == GrantKind.LICENSE:
                days = expiration_days or self.config.get('LICENSE_EXPIRY_DAYS', 365)
                expires_at = now + timedelta(days=check_extension_days(days, self.config))
            else:
                expires_at = now + timedelta(hours=download_horizon_hours(expiration_hours, self.config))
            return transitions.regenerate(state, self._fresh_token(state.kind), expires_at)

        grant = self._mutate(grant_id, kind, step)
        logger.info(f"AdminService: Regenerated {grant.kind} grant {grant.id}, valid until {grant.expires_at}")
        return grant

    def _fresh_token(self, kind: str) -> str:
        attempts = self.config.get('TOKEN_GENERATION_ATTEMPTS', 10)
        for _ in range(attempts):
            token = generate_token(kind)
            if not self.ledger.token_exists(token):
                return token
        raise IssuanceExhausted(messages.ISSUANCE_EXHAUSTED)

    def extend(self, grant_id: int, days: int) -> CapabilityGrant:
        days = check_extension_days(days, self.config)
        grant = self._mutate(grant_id, GrantKind.LICENSE,
                             lambda state, record, now: transitions.extend(state, days, now))
        logger.info(f"AdminService: Extended license {grant.id} by {days} days to {grant.expires_at}")
        return grant

    def update(self, grant_id: int, changes: Dict, kind: Optional[str] = None) -> CapabilityGrant:
        grant = self._mutate(grant_id, kind, lambda state, record, now: transitions.update(state, changes))
        logger.info(f"AdminService: Updated grant {grant.id}: {sorted(changes)}")
        return grant

    def delete(self, grant_id: int, kind: Optional[str] = None) -> None:
        self.get(grant_id, kind)
        self.ledger.delete(grant_id)
        logger.info(f"AdminService: Deleted grant {grant_id}")

    def list_for_owner(self, owner_id: int, kind: Optional[str] = None, status: Optional[str] = None,
                       page: int = 1, per_page: int = 20):
        return self.ledger.paginate(page=page, per_page=per_page, owner_id=owner_id, kind=kind, status=status)

    def list_all(self, page: int = 1, per_page: int = 20, **filters):
        return self.ledger.paginate(page=page, per_page=per_page, **filters)

    def stats(self, kind: Optional[str] = None, issued_from: Optional[datetime] = None,
              issued_to: Optional[datetime] = None) -> Dict:
        return self.ledger.stats(kind=kind, issued_from=issued_from, issued_to=issued_to)
