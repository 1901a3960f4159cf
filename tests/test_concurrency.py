from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from app import create_app, db
from app.models import CapabilityGrant, GrantUsage

WORKERS = 12


@pytest.fixture
def app(tmp_path):
    """A file-backed database so every worker thread gets its own connection."""
    app = create_app(
        TESTING=True,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'grants.db'}",
        SQLALCHEMY_ENGINE_OPTIONS={'connect_args': {'timeout': 30}},
        GRANT_SWEEPER_ENABLED=False,
        NOTIFICATIONS_ASYNC=False,
        UPLOAD_FOLDER=str(tmp_path / 'uploads'),
        AUDIT_LOG_DIR=str(tmp_path / 'logs'),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def run_together(app, call):
    barrier = threading.Barrier(WORKERS)

    def worker(index):
        with app.app_context():
            barrier.wait()
            result = call(index)
            return result.ok, result.kind

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        return list(pool.map(worker, range(WORKERS)))


def test_parallel_redemptions_never_exceed_max_uses(app, grants, clock, customer, ebook, paid_order):
    token = grants.issue_download(customer.id, ebook.id, paid_order.id, max_uses=3).data['token']

    results = run_together(app, lambda index: grants.redeem(token))

    succeeded = [ok for ok, _ in results if ok]
    assert 1 <= len(succeeded) <= 3
    assert {kind for ok, kind in results if not ok} <= {'exhausted', 'conflict', 'infrastructure'}

    db.session.expire_all()
    grant = CapabilityGrant.query.filter_by(token=token).one()
    assert grant.used_count == len(succeeded)
    assert GrantUsage.query.filter_by(grant_id=grant.id, action='redeem', success=True).count() == len(succeeded)


def test_parallel_activations_bind_one_device(app, grants, clock, customer, ebook, paid_order):
    key = grants.issue_license(customer.id, ebook.id, paid_order.id).data['license']['token']

    results = run_together(app, lambda index: grants.activate(key, f"device-{index}"))

    assert len([ok for ok, _ in results if ok]) == 1

    db.session.expire_all()
    grant = CapabilityGrant.query.filter_by(token=key).one()
    assert grant.used_count == 1
    assert len(grant.open_activations) == 1
