"""
Grant ledger: the only component that reads or writes ``CapabilityGrant`` rows.

Mutations are applied with a compare-and-swap on ``version``::

    UPDATE capability_grant SET ..., version = version + 1
     WHERE id = :id AND version = :expected

so two concurrent redemptions that both read ``used_count < max_uses`` cannot
both commit. The loser gets ``ConcurrentModification`` and re-evaluates.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
import logging

from sqlalchemy import select, update, delete, func, or_, and_
from sqlalchemy.orm import selectinload

from app import db
from app.models import CapabilityGrant, GrantUsage, DeviceActivation
from app.services.grants.errors import GrantError, ConcurrentModification
from app.services.grants.state import (
    GrantState, Transition, RecordUsage, OpenActivation, CloseActivation, ClearHistory
)
from app.utils import messages

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 5

# GrantState field -> mapped attribute
_COLUMNS = {
    'token': CapabilityGrant.token,
    'used_count': CapabilityGrant.used_count,
    'max_uses': CapabilityGrant.max_uses,
    'expires_at': CapabilityGrant.expires_at,
    'status': CapabilityGrant.status,
    'is_active': CapabilityGrant.is_active,
    'is_activated': CapabilityGrant.is_activated,
    'activated_at': CapabilityGrant.activated_at,
    'notes': CapabilityGrant.notes,
    'metadata': CapabilityGrant.grant_metadata,
}


class GrantLedger:

    def _fresh(self, *criteria) -> Optional[CapabilityGrant]:
        stmt = (
            select(CapabilityGrant)
            .where(*criteria)
            .options(selectinload(CapabilityGrant.activations))
            .execution_options(populate_existing=True)
        )
        return db.session.execute(stmt).scalar_one_or_none()

    def get_by_token(self, token: str) -> Optional[CapabilityGrant]:
        if not token:
            return None
        return self._fresh(CapabilityGrant.token == token)

    def get_by_id(self, grant_id: int) -> Optional[CapabilityGrant]:
        return self._fresh(CapabilityGrant.id == grant_id)

    def token_exists(self, token: str) -> bool:
        stmt = select(CapabilityGrant.id).where(CapabilityGrant.token == token).limit(1)
        return db.session.execute(stmt).first() is not None

    def create(self, **fields) -> CapabilityGrant:
        grant = CapabilityGrant(**fields)
        db.session.add(grant)
        db.session.commit()
        logger.info(f"GrantLedger: Created {grant.kind} grant {grant.id} for owner {grant.owner_id}")
        return grant

    def apply(self, transition: Transition, now: datetime) -> None:
        """Persist ``transition`` atomically or raise ``ConcurrentModification``.

        The grant row update and every side effect share one transaction.
        """
        before, after = transition.before, transition.after
        values = {
            column: getattr(after, name)
            for name, column in _COLUMNS.items()
            if getattr(after, name) != getattr(before, name)
        }
        values[CapabilityGrant.updated_at] = now
        values[CapabilityGrant.version] = before.version + 1

        stmt = (
            update(CapabilityGrant)
            .where(CapabilityGrant.id == before.id, CapabilityGrant.version == before.version)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            db.session.rollback()
            logger.info(f"GrantLedger: Lost update race on grant {before.id} (version {before.version})")
            raise ConcurrentModification(messages.ERROR_CONFLICT)

        for effect in transition.effects:
            self._apply_effect(before.id, effect)

        db.session.commit()

    def mutate(self, load: Callable[[], Optional[CapabilityGrant]], step, clock: Callable[[], datetime],
               missing: GrantError, attempts: int = MAX_CAS_ATTEMPTS):
        """Read-evaluate-apply loop around ``apply``.

        ``step(state, grant, now)`` returns a ``Transition``. A lost race re-reads
        the grant and evaluates ``step`` again; the stale transition is dropped.
        A failed transition that still changes state (the lazy EXPIRED flip) is
        persisted before its error is raised.
        """
        for attempt in range(1, attempts + 1):
            grant = load()
            if grant is None:
                raise missing

            now = clock()
            transition = step(GrantState.from_record(grant), grant, now)
            if transition.changed:
                try:
                    self.apply(transition, now)
                except ConcurrentModification:
                    logger.info(f"GrantLedger: Re-evaluating grant {grant.id} (attempt {attempt}/{attempts})")
                    continue
            if transition.error is not None:
                raise transition.error
            return grant, transition

        logger.warning(f"GrantLedger: Gave up after {attempts} concurrent updates")
        raise ConcurrentModification(messages.ERROR_CONFLICT)

    def _apply_effect(self, grant_id: int, effect) -> None:
        if isinstance(effect, RecordUsage):
            db.session.add(GrantUsage(
                grant_id=grant_id,
                occurred_at=effect.at,
                action=effect.action,
                success=effect.success,
                reason=effect.reason,
                ip_address=effect.context.ip_address,
                user_agent=_truncate(effect.context.user_agent, 255),
                device_id=effect.context.device_id,
            ))
        elif isinstance(effect, OpenActivation):
            db.session.add(DeviceActivation(
                grant_id=grant_id,
                device_id=effect.device_id,
                device_name=effect.context.device_name,
                activated_at=effect.at,
                ip_address=effect.context.ip_address,
                user_agent=_truncate(effect.context.user_agent, 255),
            ))
        elif isinstance(effect, CloseActivation):
            db.session.execute(
                update(DeviceActivation)
                .where(DeviceActivation.grant_id == grant_id,
                       DeviceActivation.device_id == effect.device_id,
                       DeviceActivation.deactivated_at.is_(None))
                .values(deactivated_at=effect.at)
                .execution_options(synchronize_session=False)
            )
        elif isinstance(effect, ClearHistory):
            db.session.execute(delete(GrantUsage).where(GrantUsage.grant_id == grant_id)
                               .execution_options(synchronize_session=False))
            db.session.execute(delete(DeviceActivation).where(DeviceActivation.grant_id == grant_id)
                               .execution_options(synchronize_session=False))
        else:
            raise TypeError(f"Unknown grant effect: {effect!r}")

    def delete(self, grant_id: int) -> bool:
        self._delete_children(select(CapabilityGrant.id).where(CapabilityGrant.id == grant_id))
        result = db.session.execute(
            delete(CapabilityGrant).where(CapabilityGrant.id == grant_id)
            .execution_options(synchronize_session=False))
        db.session.commit()
        return result.rowcount == 1

    def delete_swept(self, now: datetime, retention_days: int) -> int:
        """Delete expired grants and inactive grants untouched for ``retention_days``."""
        cutoff = now - timedelta(days=retention_days)
        predicate = or_(
            and_(CapabilityGrant.expires_at.isnot(None), CapabilityGrant.expires_at < now),
            and_(CapabilityGrant.is_active.is_(False), CapabilityGrant.updated_at < cutoff),
        )
        self._delete_children(select(CapabilityGrant.id).where(predicate))
        result = db.session.execute(
            delete(CapabilityGrant).where(predicate).execution_options(synchronize_session=False))
        db.session.commit()
        return result.rowcount

    def _delete_children(self, grant_ids):
        db.session.execute(delete(GrantUsage).where(GrantUsage.grant_id.in_(grant_ids))
                           .execution_options(synchronize_session=False))
        db.session.execute(delete(DeviceActivation).where(DeviceActivation.grant_id.in_(grant_ids))
                           .execution_options(synchronize_session=False))

    def query(self, kind: Optional[str] = None, owner_id: Optional[int] = None,
              resource_id: Optional[int] = None, status: Optional[str] = None,
              is_active: Optional[bool] = None, issued_from: Optional[datetime] = None,
              issued_to: Optional[datetime] = None):
        stmt = select(CapabilityGrant)
        if kind:
            stmt = stmt.where(CapabilityGrant.kind == kind)
        if owner_id is not None:
            stmt = stmt.where(CapabilityGrant.owner_id == owner_id)
        if resource_id is not None:
            stmt = stmt.where(CapabilityGrant.resource_id == resource_id)
        if status:
            stmt = stmt.where(CapabilityGrant.status == status)
        if is_active is not None:
            stmt = stmt.where(CapabilityGrant.is_active.is_(is_active))
        if issued_from is not None:
            stmt = stmt.where(CapabilityGrant.issued_at >= issued_from)
        if issued_to is not None:
            stmt = stmt.where(CapabilityGrant.issued_at <= issued_to)
        return stmt.order_by(CapabilityGrant.issued_at.desc(), CapabilityGrant.id.desc())

    def paginate(self, page: int = 1, per_page: int = 20, **filters):
        return db.paginate(self.query(**filters), page=page, per_page=per_page, error_out=False)

    def list(self, **filters):
        return db.session.execute(self.query(**filters)).scalars().all()

    def stats(self, kind: Optional[str] = None, issued_from: Optional[datetime] = None,
              issued_to: Optional[datetime] = None) -> Dict:
        conditions = []
        if kind:
            conditions.append(CapabilityGrant.kind == kind)
        if issued_from is not None:
            conditions.append(CapabilityGrant.issued_at >= issued_from)
        if issued_to is not None:
            conditions.append(CapabilityGrant.issued_at <= issued_to)

        by_status = dict(db.session.execute(
            select(CapabilityGrant.status, func.count(CapabilityGrant.id))
            .where(*conditions)
            .group_by(CapabilityGrant.status)
        ).all())
        total, total_uses, average_uses = db.session.execute(
            select(func.count(CapabilityGrant.id),
                   func.coalesce(func.sum(CapabilityGrant.used_count), 0),
                   func.coalesce(func.avg(CapabilityGrant.used_count), 0))
            .where(*conditions)
        ).one()
        return {
            'total': total,
            'by_status': by_status,
            'total_uses': int(total_uses),
            'average_uses': round(float(average_uses), 2),
        }


def _truncate(value, length):
    if value is None:
        return None
    return value[:length]
