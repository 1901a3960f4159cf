from datetime import datetime, timedelta

import pytest

from app.services.grants import state as transitions
from app.services.grants.state import (
    GrantState, UsageContext, RecordUsage, OpenActivation, CloseActivation, ClearHistory
)

pytestmark = pytest.mark.usefixtures('app')

NOW = datetime(2026, 1, 1, 12, 0, 0)


def download_state(**overrides):
    values = dict(id=1, kind='download', token='tok', owner_id=1, resource_id=1, used_count=0, max_uses=1,
                  expires_at=NOW + timedelta(hours=1), status='active', is_active=True, version=1)
    values.update(overrides)
    return GrantState(**values)


def license_state(**overrides):
    values = dict(id=2, kind='license', token='LIC-abc-0123456789AB', owner_id=1, resource_id=1, used_count=0,
                  max_uses=1, expires_at=NOW + timedelta(days=365), status='active', is_active=True, version=1,
                  license_type='single')
    values.update(overrides)
    return GrantState(**values)


class TestRedeem:

    def test_last_use_exhausts_grant(self):
        transition = transitions.redeem(download_state(), NOW, UsageContext(ip_address='10.0.0.1'))

        assert transition.ok
        assert transition.after.used_count == 1
        assert transition.after.status == 'exhausted'
        assert transition.after.is_active is False
        usage, = transition.effects
        assert isinstance(usage, RecordUsage)
        assert usage.action == 'redeem' and usage.success
        assert usage.context.ip_address == '10.0.0.1'

    def test_use_below_limit_stays_active(self):
        transition = transitions.redeem(download_state(max_uses=3), NOW)
        assert transition.after.used_count == 1
        assert transition.after.status == 'active'
        assert transition.after.remaining_uses == 2

    def test_expired_grant_flips_status_without_counting(self):
        state = download_state(expires_at=NOW - timedelta(seconds=1))
        transition = transitions.redeem(state, NOW)

        assert transition.error.kind == 'expired'
        assert transition.changed
        assert transition.after.status == 'expired'
        assert transition.after.is_active is False
        assert transition.after.used_count == 0
        usage, = transition.effects
        assert usage.action == 'expire' and usage.success is False

    def test_expiry_boundary_is_exclusive(self):
        transition = transitions.redeem(download_state(expires_at=NOW), NOW)
        assert transition.ok

    @pytest.mark.parametrize('status, kind', [
        ('revoked', 'revoked'),
        ('exhausted', 'exhausted'),
        ('expired', 'expired'),
        ('inactive', 'inactive'),
        ('suspended', 'suspended'),
    ])
    def test_non_active_status_rejected_without_write(self, status, kind):
        transition = transitions.redeem(download_state(status=status, is_active=False), NOW)
        assert transition.error.kind == kind
        assert not transition.changed

    def test_counter_at_limit_rejected(self):
        transition = transitions.redeem(download_state(used_count=1), NOW)
        assert transition.error.kind == 'exhausted'
        assert not transition.changed

    def test_check_never_counts(self):
        state = download_state(max_uses=2)
        transition = transitions.check(state, NOW)
        assert transition.ok
        assert not transition.changed


class TestActivation:

    def test_single_license_second_device_rejected(self):
        first = transitions.activate(license_state(), 'device-A', NOW)
        assert first.ok
        assert first.after.used_count == 1
        assert first.after.is_activated
        assert first.after.activated_at == NOW
        assert first.after.open_devices == frozenset({'device-A'})
        assert [type(e) for e in first.effects] == [OpenActivation, RecordUsage]

        second = transitions.activate(first.after, 'device-B', NOW)
        assert second.error.kind == 'exhausted'
        assert not second.changed
        # a full license keeps its status
        assert second.after.status == 'active'

    def test_same_device_twice_rejected(self):
        state = license_state(max_uses=5, used_count=1, open_devices=frozenset({'device-A'}))
        transition = transitions.activate(state, 'device-A', NOW)
        assert transition.error.kind == 'already_activated'

    def test_first_activation_time_is_kept(self):
        earlier = NOW - timedelta(days=3)
        state = license_state(max_uses=5, used_count=1, is_activated=True, activated_at=earlier,
                              open_devices=frozenset({'device-A'}))
        transition = transitions.activate(state, 'device-B', NOW)
        assert transition.after.activated_at == earlier

    def test_deactivate_frees_a_slot(self):
        state = license_state(used_count=1, is_activated=True, activated_at=NOW,
                              open_devices=frozenset({'device-A'}))
        transition = transitions.deactivate(state, 'device-A', NOW)

        assert transition.ok
        assert transition.after.used_count == 0
        assert transition.after.open_devices == frozenset()
        close, usage = transition.effects
        assert isinstance(close, CloseActivation) and close.device_id == 'device-A'
        assert usage.action == 'deactivate'

        again = transitions.activate(transition.after, 'device-B', NOW)
        assert again.ok

    def test_deactivate_unknown_device(self):
        transition = transitions.deactivate(license_state(), 'device-A', NOW)
        assert transition.error.kind == 'device_not_activated'
        assert not transition.changed

    def test_deactivate_never_goes_negative(self):
        state = license_state(used_count=0, open_devices=frozenset({'device-A'}))
        assert transitions.deactivate(state, 'device-A', NOW).after.used_count == 0

    def test_activate_expired_license(self):
        state = license_state(expires_at=NOW - timedelta(days=1))
        transition = transitions.activate(state, 'device-A', NOW)
        assert transition.error.kind == 'expired'
        assert transition.after.status == 'expired'

    def test_validate(self):
        state = license_state(used_count=1, open_devices=frozenset({'device-A'}))
        assert transitions.validate(state, 'device-A', NOW).ok
        assert transitions.validate(state, 'device-B', NOW).error.kind == 'device_not_activated'
        assert not transitions.validate(state, 'device-A', NOW).changed


class TestAdministration:

    def test_revoke_is_idempotent(self):
        revoked = transitions.revoke(download_state())
        assert revoked.after.status == 'revoked'
        assert revoked.after.is_active is False

        again = transitions.revoke(revoked.after)
        assert again.ok
        assert not again.changed

    def test_regenerate_resets_everything(self):
        state = license_state(used_count=1, is_activated=True, activated_at=NOW, status='revoked',
                              is_active=False, open_devices=frozenset({'device-A'}))
        new_expiry = NOW + timedelta(days=365)
        transition = transitions.regenerate(state, 'LIC-new-FFFFFFFFFFFF', new_expiry)

        after = transition.after
        assert after.token == 'LIC-new-FFFFFFFFFFFF'
        assert after.used_count == 0
        assert after.status == 'active' and after.is_active
        assert after.is_activated is False and after.activated_at is None
        assert after.open_devices == frozenset()
        assert after.expires_at == new_expiry
        assert transition.effects == (ClearHistory(),)

    def test_extend_active_license(self):
        state = license_state()
        transition = transitions.extend(state, 30, NOW)
        assert transition.after.expires_at == state.expires_at + timedelta(days=30)

    def test_extend_requires_active_status(self):
        transition = transitions.extend(license_state(status='revoked', is_active=False), 30, NOW)
        assert transition.error.kind == 'invalid_policy'

    def test_update_rejects_limit_below_usage(self):
        transition = transitions.update(license_state(max_uses=5, used_count=3), {'max_uses': 2})
        assert transition.error.kind == 'invalid_policy'

    def test_update_status_drives_is_active(self):
        transition = transitions.update(license_state(), {'status': 'suspended', 'notes': 'chargeback'})
        assert transition.after.status == 'suspended'
        assert transition.after.is_active is False
        assert transition.after.notes == 'chargeback'

        restored = transitions.update(transition.after, {'status': 'active'})
        assert restored.after.is_active is True

    def test_update_download_limit_to_usage_exhausts(self):
        transition = transitions.update(download_state(max_uses=5, used_count=2), {'max_uses': 2})
        assert transition.after.status == 'exhausted'


def test_effective_status():
    assert download_state().effective_status(NOW) == 'active'
    assert download_state(expires_at=NOW - timedelta(minutes=1)).effective_status(NOW) == 'expired'
    assert download_state(used_count=1).effective_status(NOW) == 'exhausted'
    assert license_state(used_count=1).effective_status(NOW) == 'active'
    assert download_state(status='revoked').effective_status(NOW) == 'revoked'
