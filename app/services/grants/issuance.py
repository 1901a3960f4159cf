"""
Grant issuance.

Turns a completed purchase of a digital or licensable product into a new
ACTIVE grant, then hands a best-effort notification to the dispatcher.
"""

from datetime import datetime
from typing import Callable
import logging

from sqlalchemy.exc import IntegrityError

from app import db
from app.models import CapabilityGrant
from app.services.collaborators import find_completed_purchase, find_resource
from app.services.grants.errors import InvalidResource, InvalidPolicy, DuplicateKey, IssuanceExhausted
from app.services.grants.ledger import GrantLedger
from app.services.grants.policy import (
    GrantKind, GrantPolicy, GrantStatus, LicenseType, resolve_max_uses, resolve_expiry, generate_token
)
from app.utils import messages

logger = logging.getLogger(__name__)


class IssuanceService:

    def __init__(self, config, ledger: GrantLedger, dispatcher=None, clock: Callable[[], datetime] = None):
        self.config = config
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.clock = clock

    def issue(self, owner_id: int, resource_id: int, purchase_id: int, policy: GrantPolicy) -> CapabilityGrant:
        """Create a grant for ``owner_id`` on ``resource_id`` bought in ``purchase_id``.

        Raises:
            NotAuthorized: purchase missing, not owned, unpaid or without the resource
            InvalidResource: resource is not digital (downloads) or licensable (licenses)
            InvalidPolicy: caller overrides out of bounds
            DuplicateKey: manual license key already taken
            IssuanceExhausted: no unique token within the retry budget
        """
        order = find_completed_purchase(owner_id, resource_id, purchase_id)
        product = find_resource(resource_id)

        if policy.kind == GrantKind.LICENSE:
            if not product.is_licensable:
                raise InvalidResource(messages.RESOURCE_NOT_LICENSABLE)
            # an explicit type from the caller overrides the product default
            license_type = policy.license_type or product.license_type
            if license_type not in LicenseType.ALL:
                raise InvalidPolicy(f"Unknown license type: {license_type}")
            if policy.license_type is None:
                policy = GrantPolicy.license(license_type, max_uses=policy.max_uses, expires_at=policy.expires_at,
                                             manual_key=policy.manual_key, notes=policy.notes,
                                             metadata=policy.metadata)
        else:
            if not product.is_digital:
                raise InvalidResource(messages.RESOURCE_NOT_DIGITAL)
            license_type = None

        now = self.clock()
        fields = dict(
            kind=policy.kind,
            owner_id=owner_id,
            resource_id=product.id,
            purchase_id=order.id,
            used_count=0,
            max_uses=resolve_max_uses(policy, self.config),
            issued_at=now,
            expires_at=resolve_expiry(policy, self.config, now),
            updated_at=now,
            status=GrantStatus.ACTIVE,
            is_active=True,
            license_type=license_type,
            notes=policy.notes,
            grant_metadata=policy.metadata,
            version=1,
        )

        grant = self._persist_with_unique_token(policy, fields)
        logger.info(f"IssuanceService: Issued {grant.kind} grant {grant.id} "
                    f"(product {product.id}, order {order.order_number}, max uses {grant.max_uses})")

        self._notify(grant, product, order)
        return grant

    def _persist_with_unique_token(self, policy: GrantPolicy, fields: dict) -> CapabilityGrant:
        if policy.manual_key:
            key = policy.manual_key.strip()
            if self.ledger.token_exists(key):
                raise DuplicateKey(messages.DUPLICATE_LICENSE_KEY)
            try:
                return self.ledger.create(token=key, **fields)
            except IntegrityError:
                db.session.rollback()
                raise DuplicateKey(messages.DUPLICATE_LICENSE_KEY)

        attempts = self.config.get('TOKEN_GENERATION_ATTEMPTS', 10)
        for attempt in range(1, attempts + 1):
            token = generate_token(policy.kind)
            if self.ledger.token_exists(token):
                logger.warning(f"IssuanceService: Token collision on attempt {attempt}/{attempts}")
                continue
            try:
                return self.ledger.create(token=token, **fields)
            except IntegrityError:
                # another writer took the same token between the check and the insert
                db.session.rollback()
                logger.warning(f"IssuanceService: Token collision on insert, attempt {attempt}/{attempts}")

        logger.error(f"IssuanceService: Gave up generating a unique {policy.kind} token after {attempts} attempts")
        raise IssuanceExhausted(messages.ISSUANCE_EXHAUSTED)

    def _notify(self, grant: CapabilityGrant, product, order) -> None:
        if self.dispatcher is None:
            return
        user = grant.owner
        try:
            if grant.kind == GrantKind.LICENSE:
                params = {
                    'name': user.username,
                    'title': product.title,
                    'key': grant.token,
                    'license_type': grant.license_type,
                    'max_uses': grant.max_uses,
                    'order': order.order_number,
                    'expires': grant.expires_at.strftime('%Y-%m-%d') if grant.expires_at else '-',
                }
                self.dispatcher.dispatch(
                    email=user.email,
                    phone=user.phone,
                    subject=str(messages.NOTIFY_LICENSE_SUBJECT % params),
                    body=str(messages.NOTIFY_LICENSE_BODY % params),
                    sms_body=str(messages.NOTIFY_LICENSE_SMS % params),
                )
            else:
                base_url = self.config.get('PUBLIC_BASE_URL', '').rstrip('/')
                params = {
                    'name': user.username,
                    'title': product.title,
                    'url': f"{base_url}/api/download/{grant.token}",
                    'max_uses': grant.max_uses,
                    'expires': grant.expires_at.strftime('%Y-%m-%d %H:%M UTC'),
                }
                self.dispatcher.dispatch(
                    email=user.email,
                    subject=str(messages.NOTIFY_DOWNLOAD_SUBJECT % params),
                    body=str(messages.NOTIFY_DOWNLOAD_BODY % params),
                )
        except Exception as e:
            # notification is best-effort; the grant is already committed
            logger.error(f"IssuanceService: Could not queue notification for grant {grant.id}: {e}")
