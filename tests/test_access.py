from datetime import timedelta

import pytest

from lanvault.core.clock import utcnow
from lanvault.core.crypto import generate_key_pair
from lanvault.core.errors import AuthError, AuthzError, NotFoundError, ValidationError
from lanvault.core.security import hash_secret
from lanvault.models.api_key import ApiKey
from lanvault.services.access import AccessGate, Principal, require_permission
from lanvault.services.ledger import DeviceRegistry


@pytest.fixture
def gate(db, identity, self_device):
    return AccessGate(db, identity)


class TestAuthenticate:
    def test_issued_key_authenticates(self, gate, identity):
        record, plaintext = gate.issue_key("read,write")
        principal = gate.authenticate(plaintext)
        assert principal.key_id == record.id
        assert principal.device_id == identity.device_id
        assert principal.permissions == {"read", "write"}

    def test_only_hash_is_stored(self, gate, db):
        record, plaintext = gate.issue_key()
        stored = db.get(ApiKey, record.id)
        assert stored.key_hash == hash_secret(plaintext)
        assert stored.key_hash != plaintext

    @pytest.mark.parametrize("presented", [None, ""])
    def test_missing_key(self, gate, presented):
        with pytest.raises(AuthError, match="required"):
            gate.authenticate(presented)

    def test_unknown_key(self, gate):
        gate.issue_key()
        with pytest.raises(AuthError, match="Invalid"):
            gate.authenticate("0" * 64)

    def test_expired_key(self, gate):
        _, plaintext = gate.issue_key(expires_in_hours=1)
        gate.authenticate(plaintext)
        with pytest.raises(AuthError, match="expired"):
            gate.authenticate(plaintext, now=utcnow() + timedelta(hours=2))

    def test_revoked_key_fails_but_row_is_kept(self, gate, db):
        record, plaintext = gate.issue_key()
        db.commit()
        revoked = gate.revoke(record.id)
        db.commit()
        assert revoked.is_active is False
        assert db.get(ApiKey, record.id).key_hash == hash_secret(plaintext)
        with pytest.raises(AuthError):
            gate.authenticate(plaintext)

    def test_revoke_twice(self, gate, db):
        record, _ = gate.issue_key()
        gate.revoke(record.id)
        with pytest.raises(NotFoundError):
            gate.revoke(record.id)

    def test_revoke_unknown(self, gate):
        with pytest.raises(NotFoundError):
            gate.revoke("missing")


class TestPermissions:
    def test_read_only_key_cannot_write(self, gate):
        _, plaintext = gate.issue_key("read")
        principal = gate.authenticate(plaintext)
        require_permission(principal, "read")
        with pytest.raises(AuthzError):
            require_permission(principal, "write")

    def test_admin_passes_every_check(self):
        principal = Principal(key_id="k", device_id=None, permissions=frozenset({"admin"}))
        for permission in ("read", "write", "admin"):
            require_permission(principal, permission)

    def test_cannot_grant_what_you_do_not_hold(self, gate):
        _, plaintext = gate.issue_key("read,write")
        writer = gate.authenticate(plaintext)
        with pytest.raises(AuthzError):
            gate.issue_key("read,write,admin", granted_by=writer)
        record, _ = gate.issue_key("read", granted_by=writer)
        assert record.permissions == "read"

    def test_unknown_permission(self, gate):
        with pytest.raises(ValidationError):
            gate.issue_key("read,superuser")

    def test_non_positive_expiry(self, gate):
        with pytest.raises(ValidationError):
            gate.issue_key(expires_in_hours=0)

    @pytest.mark.parametrize("hours", [1e12, float("inf"), float("nan")])
    def test_out_of_range_expiry(self, gate, db, hours):
        with pytest.raises(ValidationError):
            gate.issue_key("read", expires_in_hours=hours)
        assert db.query(ApiKey).count() == 0

    def test_deleting_device_revokes_its_keys(self, gate, db, identity):
        registry = DeviceRegistry(db, identity)
        device, _ = registry.record_sighting(
            name="phone", public_key=generate_key_pair().public_key, ip_address="10.0.0.9")
        _, device_key = gate.issue_key("read", device_id=device.id)
        _, node_key = gate.issue_key("read")
        db.commit()

        registry.delete(device.id)
        db.commit()
        with pytest.raises(AuthError):
            gate.authenticate(device_key)
        assert gate.authenticate(node_key).device_id == identity.device_id

    def test_key_for_registered_device(self, gate, db, identity):
        device, _ = DeviceRegistry(db, identity).record_sighting(
            name="phone", public_key=generate_key_pair().public_key, ip_address="10.0.0.9")
        record, plaintext = gate.issue_key("read", device_id=device.id)
        assert gate.authenticate(plaintext).device_id == device.id

    def test_key_for_unknown_device(self, gate):
        with pytest.raises(NotFoundError):
            gate.issue_key("read", device_id="missing")


class TestBootstrap:
    def test_bootstrap_once(self, gate, db):
        record, plaintext = gate.bootstrap()
        db.commit()
        assert gate.authenticate(plaintext).permissions == {"read", "write", "admin"}
        with pytest.raises(ValidationError):
            gate.bootstrap()

    def test_bootstrap_reopens_after_all_keys_revoked(self, gate, db):
        record, _ = gate.bootstrap()
        gate.revoke(record.id)
        db.commit()
        gate.bootstrap()

    def test_operator_key_registered_once(self, gate):
        assert gate.register_operator_key("operator-secret") is True
        assert gate.register_operator_key("operator-secret") is False
        assert gate.authenticate("operator-secret").permissions == {"read", "write"}
