import re
from datetime import timedelta

from app import db
from app.models import CapabilityGrant, Product
from app.services.grants import issuance as issuance_module


def test_issue_download_with_defaults(grants, clock, customer, ebook, paid_order):
    result = grants.issue_download(customer.id, ebook.id, paid_order.id)

    assert result.ok
    assert result.http_status == 201
    assert re.fullmatch(r'[0-9a-f]{64}', result.data['token'])
    assert result.data['max_uses'] == 5

    grant = db.session.get(CapabilityGrant, result.data['grant_id'])
    assert grant.kind == 'download'
    assert grant.owner_id == customer.id
    assert grant.purchase_id == paid_order.id
    assert grant.used_count == 0
    assert grant.status == 'active' and grant.is_active
    assert grant.issued_at == clock.now
    assert grant.expires_at == clock.now + timedelta(hours=72)
    assert grant.usages == []


def test_issue_download_with_overrides(grants, clock, customer, ebook, paid_order):
    result = grants.issue_download(customer.id, ebook.id, paid_order.id, expiration_hours=1, max_uses=1)

    grant = db.session.get(CapabilityGrant, result.data['grant_id'])
    assert grant.max_uses == 1
    assert grant.expires_at == clock.now + timedelta(hours=1)


def test_issue_download_rejects_out_of_range_policy(grants, customer, ebook, paid_order):
    too_long = grants.issue_download(customer.id, ebook.id, paid_order.id, expiration_hours=169)
    too_many = grants.issue_download(customer.id, ebook.id, paid_order.id, max_uses=51)

    assert too_long.kind == 'invalid_policy'
    assert too_many.kind == 'invalid_policy'
    assert CapabilityGrant.query.count() == 0


def test_unpaid_order_not_authorized(grants, customer, ebook, order_factory):
    order = order_factory(customer, [ebook], status='pending', number='ORD-2001')
    result = grants.issue_download(customer.id, ebook.id, order.id)

    assert not result.ok
    assert result.kind == 'not_authorized'
    assert result.http_status == 403


def test_foreign_order_not_authorized(grants, other_customer, ebook, paid_order):
    result = grants.issue_download(other_customer.id, ebook.id, paid_order.id)
    assert result.kind == 'not_authorized'


def test_missing_order_not_authorized(grants, customer, ebook):
    assert grants.issue_download(customer.id, ebook.id, 9999).kind == 'not_authorized'


def test_product_missing_from_order_not_authorized(grants, customer, ebook, order_factory):
    other = Product(title='Another eBook', is_digital=True)
    db.session.add(other)
    db.session.commit()
    order = order_factory(customer, [ebook], number='ORD-2002')

    result = grants.issue_download(customer.id, other.id, order.id)
    assert result.kind == 'not_authorized'


def test_physical_product_is_invalid_resource(grants, customer, physical_book, paid_order):
    result = grants.issue_download(customer.id, physical_book.id, paid_order.id)
    assert result.kind == 'invalid_resource'


def test_inactive_product_is_invalid_resource(grants, customer, ebook, paid_order):
    ebook.is_active = False
    db.session.commit()
    assert grants.issue_download(customer.id, ebook.id, paid_order.id).kind == 'invalid_resource'


def test_issue_license_uses_product_type(grants, clock, customer, ebook, paid_order):
    result = grants.issue_license(customer.id, ebook.id, paid_order.id)

    assert result.ok
    license = result.data['license']
    assert re.fullmatch(r'LIC-[0-9A-F]{64}', license['token'])
    assert license['license_type'] == 'single'
    assert license['max_uses'] == 1
    assert license['used_count'] == 0
    assert license['is_activated'] is False
    assert license['expires_at'] == (clock.now + timedelta(days=365)).isoformat()


def test_issue_license_type_override(grants, customer, ebook, paid_order):
    multiple = grants.issue_license(customer.id, ebook.id, paid_order.id, license_type='multiple')
    unlimited = grants.issue_license(customer.id, ebook.id, paid_order.id, license_type='unlimited')
    custom = grants.issue_license(customer.id, ebook.id, paid_order.id, max_uses=3,
                                  notes='volume deal', metadata={'seats': 3})

    assert multiple.data['license']['max_uses'] == 5
    assert unlimited.data['license']['max_uses'] == 999999
    assert custom.data['license']['max_uses'] == 3
    assert custom.data['license']['notes'] == 'volume deal'
    assert custom.data['license']['metadata'] == {'seats': 3}


def test_issue_license_for_unlicensed_product(grants, customer, physical_book, paid_order):
    assert grants.issue_license(customer.id, physical_book.id, paid_order.id).kind == 'invalid_resource'


def test_manual_license_key(grants, customer, ebook, paid_order):
    first = grants.issue_license(customer.id, ebook.id, paid_order.id, manual_key='VENDOR-KEY-0001')
    duplicate = grants.issue_license(customer.id, ebook.id, paid_order.id, manual_key='VENDOR-KEY-0001')

    assert first.data['license']['token'] == 'VENDOR-KEY-0001'
    assert duplicate.kind == 'duplicate_key'
    assert duplicate.http_status == 409
    assert CapabilityGrant.query.count() == 1


def test_token_collision_is_retried(grants, customer, ebook, paid_order, monkeypatch):
    taken = grants.issue_download(customer.id, ebook.id, paid_order.id).data['token']
    fresh = 'f' * 64
    candidates = iter([taken, taken, fresh])
    monkeypatch.setattr(issuance_module, 'generate_token', lambda kind: next(candidates))

    result = grants.issue_download(customer.id, ebook.id, paid_order.id)

    assert result.ok
    assert result.data['token'] == fresh


def test_issuance_gives_up_after_attempt_budget(app, grants, customer, ebook, paid_order, monkeypatch):
    taken = grants.issue_download(customer.id, ebook.id, paid_order.id).data['token']
    calls = []

    def always_taken(kind):
        calls.append(kind)
        return taken

    monkeypatch.setattr(issuance_module, 'generate_token', always_taken)
    app.config['TOKEN_GENERATION_ATTEMPTS'] = 3

    result = grants.issue_download(customer.id, ebook.id, paid_order.id)

    assert result.kind == 'issuance_exhausted'
    assert len(calls) == 3
    assert CapabilityGrant.query.count() == 1
