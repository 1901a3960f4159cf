"""
Capability grants: download links and license keys.

``GrantService`` is the boundary used by routes, the CLI and the scheduler.
Every operation returns a ``GrantResult``; domain errors and store errors are
converted here and never escape.

Usage:
    grants = current_app.extensions['grants']
    result = grants.issue_download(owner_id=1, resource_id=7, purchase_id=3)
    if result.ok:
        token = result.data['token']
"""

from datetime import datetime
from typing import Callable, Dict, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError

from app import db
from app.services.grants.admin import AdminService
from app.services.grants.errors import GrantError, GrantResult, InfrastructureError
from app.services.grants.issuance import IssuanceService
from app.services.grants.ledger import GrantLedger
from app.services.grants.policy import GrantKind, GrantPolicy, GrantStatus, LicenseType
from app.services.grants.redemption import RedemptionService
from app.services.grants.state import UsageContext
from app.utils import messages
from app.utils.audit_log import log_action
from app.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

__all__ = [
    'GrantService',
    'GrantResult',
    'GrantKind',
    'GrantStatus',
    'LicenseType',
    'UsageContext',
]


class GrantService:

    def __init__(self, config, file_gate, dispatcher=None, clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.clock = clock or utcnow
        self.ledger = GrantLedger()
        self.issuance = IssuanceService(config, self.ledger, dispatcher=dispatcher, clock=self._now)
        self.redemption = RedemptionService(config, self.ledger, file_gate, clock=self._now)
        self.admin = AdminService(config, self.ledger, clock=self._now)

    def _now(self) -> datetime:
        return self.clock()

    def _guard(self, operation: str, func: Callable[[], GrantResult], read_only: bool = False,
               audit_rejections: bool = False) -> GrantResult:
        """Run ``func`` and convert failures into results.

        Store errors roll back the session. Read-only operations get one more
        attempt; mutating ones are never retried here.
        """
        attempts = 2 if read_only else 1
        for attempt in range(1, attempts + 1):
            try:
                return func()
            except GrantError as e:
                db.session.rollback()
                logger.info(f"GrantService: {operation} rejected ({e.kind}): {e.message}")
                if audit_rejections:
                    log_action(f"GRANT_{operation.upper()}_REJECTED", e.message,
                               additional_info={'kind': e.kind}, success=False)
                return GrantResult.failure(e)
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"GrantService: {operation} failed on store error "
                             f"(attempt {attempt}/{attempts}): {e}")
        return GrantResult.failure(InfrastructureError(messages.ERROR_INFRASTRUCTURE))

    # Issuance

    def issue_download(self, owner_id: int, resource_id: int, purchase_id: int,
                       expiration_hours: Optional[int] = None, max_uses: Optional[int] = None) -> GrantResult:
        def run():
            policy = GrantPolicy.download(max_uses=max_uses, expiration_hours=expiration_hours)
            grant = self.issuance.issue(owner_id, resource_id, purchase_id, policy)
            log_action('DOWNLOAD_ISSUED', f"Download grant {grant.id} issued for product {resource_id}",
                       subject=grant, additional_info={'order_id': purchase_id, 'max_uses': grant.max_uses})
            return GrantResult.success(
                messages.DOWNLOAD_TOKEN_GENERATED, http_status=201,
                token=grant.token,
                grant_id=grant.id,
                max_uses=grant.max_uses,
                expires_at=grant.expires_at.isoformat(),
            )
        return self._guard('issue_download', run, audit_rejections=True)

    def issue_license(self, owner_id: int, resource_id: int, purchase_id: int,
                      license_type: Optional[str] = None, max_uses: Optional[int] = None,
                      expires_at: Optional[datetime] = None, manual_key: Optional[str] = None,
                      notes: Optional[str] = None, metadata: Optional[Dict] = None) -> GrantResult:
        def run():
            policy = GrantPolicy.license(license_type, max_uses=max_uses, expires_at=expires_at,
                                         manual_key=manual_key, notes=notes, metadata=metadata)
            grant = self.issuance.issue(owner_id, resource_id, purchase_id, policy)
            log_action('LICENSE_ISSUED', f"License {grant.id} issued for product {resource_id}",
                       subject=grant, additional_info={'order_id': purchase_id, 'license_type': grant.license_type})
            return GrantResult.success(messages.LICENSE_GENERATED, http_status=201, license=grant.to_dict())
        return self._guard('issue_license', run, audit_rejections=True)

    # Redemption

    def redeem(self, token: str, context: UsageContext = UsageContext()) -> GrantResult:
        return self._guard(
            'redeem',
            lambda: GrantResult.success(messages.DOWNLOAD_READY, **self.redemption.redeem(token, context)),
            audit_rejections=True,
        )

    def check(self, token: str) -> GrantResult:
        return self._guard(
            'check',
            lambda: GrantResult.success(messages.DOWNLOAD_REDEEMABLE, **self.redemption.check(token)),
            read_only=True,
        )

    def activate(self, license_key: str, device_id: str, context: UsageContext = UsageContext()) -> GrantResult:
        return self._guard(
            'activate',
            lambda: GrantResult.success(messages.LICENSE_ACTIVATED,
                                        **self.redemption.activate(license_key, device_id, context)),
            audit_rejections=True,
        )

    def deactivate(self, license_key: str, device_id: str, context: UsageContext = UsageContext()) -> GrantResult:
        return self._guard(
            'deactivate',
            lambda: GrantResult.success(messages.LICENSE_DEACTIVATED,
                                        **self.redemption.deactivate(license_key, device_id, context)),
        )

    def validate(self, license_key: str, device_id: str) -> GrantResult:
        return self._guard(
            'validate',
            lambda: GrantResult.success(messages.LICENSE_VALID, **self.redemption.validate(license_key, device_id)),
            read_only=True,
        )

    # Administration

    def get(self, grant_id: int, kind: Optional[str] = None) -> GrantResult:
        return self._guard(
            'get',
            lambda: GrantResult.success('OK', grant=self.admin.get(grant_id, kind).to_dict()),
            read_only=True,
        )

    def get_by_token(self, token: str, kind: Optional[str] = None) -> GrantResult:
        return self._guard(
            'get_by_token',
            lambda: GrantResult.success('OK', grant=self.admin.get_by_token(token, kind).to_dict()),
            read_only=True,
        )

    def revoke(self, grant_id: int, kind: Optional[str] = None) -> GrantResult:
        def run():
            grant = self.admin.revoke(grant_id, kind)
            log_action('GRANT_REVOKED', f"{grant.kind} grant {grant.id} revoked", subject=grant)
            message = messages.LICENSE_REVOKED if grant.kind == GrantKind.LICENSE else messages.GRANT_REVOKED
            return GrantResult.success(message, grant=grant.to_dict())
        return self._guard('revoke', run)

    def regenerate(self, grant_id: int, kind: Optional[str] = None, expiration_hours: Optional[int] = None,
                   expiration_days: Optional[int] = None) -> GrantResult:
        def run():
            grant = self.admin.regenerate(grant_id, kind, expiration_hours=expiration_hours,
                                          expiration_days=expiration_days)
            log_action('GRANT_REGENERATED', f"{grant.kind} grant {grant.id} regenerated", subject=grant,
                       additional_info={'expires_at': grant.expires_at.isoformat()})
            return GrantResult.success(messages.GRANT_REGENERATED, grant=grant.to_dict())
        return self._guard('regenerate', run)

    def extend(self, grant_id: int, days: int) -> GrantResult:
        def run():
            grant = self.admin.extend(grant_id, days)
            log_action('LICENSE_EXTENDED', f"License {grant.id} extended by {days} days", subject=grant)
            return GrantResult.success(messages.LICENSE_EXTENDED, grant=grant.to_dict())
        return self._guard('extend', run)

    def update(self, grant_id: int, changes: Dict, kind: Optional[str] = None) -> GrantResult:
        def run():
            grant = self.admin.update(grant_id, changes, kind)
            log_action('GRANT_UPDATED', f"{grant.kind} grant {grant.id} updated", subject=grant,
                       additional_info={'fields': sorted(changes)})
            return GrantResult.success(messages.LICENSE_UPDATED, grant=grant.to_dict())
        return self._guard('update', run)

    def delete(self, grant_id: int, kind: Optional[str] = None) -> GrantResult:
        def run():
            self.admin.delete(grant_id, kind)
            log_action('GRANT_DELETED', f"Grant {grant_id} deleted", additional_info={'grant_id': grant_id})
            return GrantResult.success(messages.LICENSE_DELETED, grant_id=grant_id)
        return self._guard('delete', run)

    def list_for_owner(self, owner_id: int, kind: Optional[str] = None, status: Optional[str] = None,
                       page: int = 1, per_page: int = 20) -> GrantResult:
        def run():
            pagination = self.admin.list_for_owner(owner_id, kind=kind, status=status, page=page, per_page=per_page)
            return _paginated(pagination)
        return self._guard('list_for_owner', run, read_only=True)

    def list_all(self, page: int = 1, per_page: int = 20, **filters) -> GrantResult:
        return self._guard('list_all', lambda: _paginated(self.admin.list_all(page, per_page, **filters)),
                           read_only=True)

    def stats(self, kind: Optional[str] = None, issued_from: Optional[datetime] = None,
              issued_to: Optional[datetime] = None) -> GrantResult:
        return self._guard(
            'stats',
            lambda: GrantResult.success('OK', **self.admin.stats(kind, issued_from, issued_to)),
            read_only=True,
        )

    # Sweeper

    def sweep(self, retention_days: Optional[int] = None) -> GrantResult:
        """Delete expired grants and inactive grants past the retention window."""
        def run():
            days = self.config.get('GRANT_RETENTION_DAYS', 30) if retention_days is None else retention_days
            deleted = self.ledger.delete_swept(self._now(), days)
            logger.info(f"GrantService: Sweep removed {deleted} grants (retention {days} days)")
            if deleted:
                log_action('GRANTS_SWEPT', f"Sweep removed {deleted} grants",
                           additional_info={'deleted_count': deleted, 'retention_days': days})
            return GrantResult.success(messages.GRANTS_SWEPT, deleted_count=deleted)
        return self._guard('sweep', run)


def _paginated(pagination) -> GrantResult:
    result = GrantResult.success('OK', items=[g.to_dict() for g in pagination.items])
    result.meta = {
        'page': pagination.page,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'pages': pagination.pages,
    }
    return result
