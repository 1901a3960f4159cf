import pytest

from app.models import CapabilityGrant, DeviceActivation, GrantUsage
from app.services.grants import UsageContext


@pytest.fixture
def license_key(grants, clock, customer, ebook, paid_order):
    result = grants.issue_license(customer.id, ebook.id, paid_order.id)
    assert result.ok, result.message
    return result.data['license']['token']


def test_single_license_device_swap(grants, license_key):
    first = grants.activate(license_key, 'device-A')
    assert first.ok
    assert first.data['current_activations'] == 1
    assert first.data['remaining_activations'] == 0
    assert first.data['devices'] == ['device-A']

    blocked = grants.activate(license_key, 'device-B')
    assert blocked.kind == 'exhausted'
    assert blocked.message == 'Maximum activations reached for this license'

    released = grants.deactivate(license_key, 'device-A')
    assert released.ok
    assert released.data['current_activations'] == 0

    second = grants.activate(license_key, 'device-B')
    assert second.ok
    assert second.data['devices'] == ['device-B']

    grant = CapabilityGrant.query.filter_by(token=license_key).one()
    assert grant.used_count == 1
    assert grant.status == 'active'
    assert grant.is_activated is True


def test_same_device_twice(grants, customer, ebook, paid_order):
    key = grants.issue_license(customer.id, ebook.id, paid_order.id,
                               license_type='multiple').data['license']['token']
    grants.activate(key, 'laptop')

    result = grants.activate(key, 'laptop')
    assert result.kind == 'already_activated'
    assert result.http_status == 409
    assert CapabilityGrant.query.filter_by(token=key).one().used_count == 1


def test_deactivate_device_never_activated(grants, license_key):
    result = grants.deactivate(license_key, 'device-A')
    assert result.kind == 'device_not_activated'


def test_activation_rows_are_kept(grants, license_key, clock):
    context = UsageContext(ip_address='198.51.100.7', user_agent='installer/1.0', device_name='Work laptop')
    grants.activate(license_key, 'device-A', context)
    clock.advance(minutes=5)
    grants.deactivate(license_key, 'device-A')
    grants.activate(license_key, 'device-A')

    rows = DeviceActivation.query.order_by(DeviceActivation.id).all()
    assert len(rows) == 2
    assert rows[0].device_name == 'Work laptop'
    assert rows[0].ip_address == '198.51.100.7'
    assert rows[0].deactivated_at == clock.now
    assert rows[1].deactivated_at is None

    actions = [u.action for u in GrantUsage.query.order_by(GrantUsage.id)]
    assert actions == ['activate', 'deactivate', 'activate']


def test_validate(grants, license_key):
    grants.activate(license_key, 'device-A')

    valid = grants.validate(license_key, 'device-A')
    assert valid.ok
    assert valid.data['is_valid'] is True
    assert valid.data['license_type'] == 'single'
    assert valid.data['max_activations'] == 1

    assert grants.validate(license_key, 'device-B').kind == 'device_not_activated'
    assert grants.validate('LIC-unknown-000000000000', 'device-A').kind == 'invalid_token'


def test_expired_license(grants, license_key, clock):
    grants.activate(license_key, 'device-A')
    clock.advance(days=366)

    assert grants.validate(license_key, 'device-A').kind == 'expired'
    assert grants.activate(license_key, 'device-B').kind == 'expired'
    grant = CapabilityGrant.query.filter_by(token=license_key).one()
    assert grant.status == 'expired'
    assert grant.is_active is False


def test_suspended_license(grants, license_key):
    grant_id = CapabilityGrant.query.filter_by(token=license_key).one().id
    grants.update(grant_id, {'status': 'suspended'})

    result = grants.activate(license_key, 'device-A')
    assert result.kind == 'suspended'


def test_deactivate_allowed_on_revoked_license(grants, license_key):
    grants.activate(license_key, 'device-A')
    grant_id = CapabilityGrant.query.filter_by(token=license_key).one().id
    grants.revoke(grant_id)

    assert grants.activate(license_key, 'device-B').kind == 'revoked'
    assert grants.deactivate(license_key, 'device-A').ok


def test_unlimited_license(grants, customer, ebook, paid_order):
    key = grants.issue_license(customer.id, ebook.id, paid_order.id,
                               license_type='unlimited').data['license']['token']
    for n in range(20):
        assert grants.activate(key, f'device-{n}').ok

    grant = CapabilityGrant.query.filter_by(token=key).one()
    assert grant.used_count == 20
    assert grant.max_uses == 999999


def test_download_token_is_not_a_license(grants, customer, ebook, paid_order):
    token = grants.issue_download(customer.id, ebook.id, paid_order.id).data['token']
    result = grants.activate(token, 'device-A')
    assert result.kind == 'invalid_token'
    assert result.message == 'License key not found'
