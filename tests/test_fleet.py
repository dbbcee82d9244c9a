"""Unit tests for entropy.core.fleet."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from conftest import NOW
from entropy.core.errors import (
    IdentityError,
    LeaseNotFoundError,
    LocalStoreError,
    ProtocolError,
    TransportError,
)
from entropy.core.fleet import Fleet
from entropy.core.orchestrator import EligibilityError, Orchestrator, ProvisionedVM, RenewResult
from entropy.core.registry import PENDING_IP


@pytest.fixture
def orchestrator():
    mock = Mock(spec=Orchestrator)
    mock.payer_id = "0xPAYER"
    return mock


@pytest.fixture
def fleet(registry, orchestrator):
    return Fleet(registry, lambda: orchestrator)


def _vm(provider_id=101, name="entropy-101", ip=""):
    return ProvisionedVM(
        provider_id=provider_id,
        name=name,
        ip=ip,
        tier="eco-small",
        region="nbg1",
        password="hunter2",
        expires_at=NOW + timedelta(hours=1),
        raw={},
    )


class TestDestroy:
    """Teardown ordering between the orchestrator and the registry."""

    def test_success_removes_record(self, fleet, registry, orchestrator, make_lease):
        registry.create(make_lease())

        removed = fleet.destroy("web-prod")

        orchestrator.destroy.assert_called_once_with("entropy-101")
        assert removed.alias == "web-prod"
        assert registry.list_all() == []

    @pytest.mark.parametrize("error", [
        ProtocolError("Teardown failed", status_code=500),
        TransportError("timed out"),
    ])
    def test_remote_failure_keeps_record(self, fleet, registry, orchestrator, make_lease, error):
        registry.create(make_lease())
        orchestrator.destroy.side_effect = error

        with pytest.raises(type(error)):
            fleet.destroy("web-prod")

        assert registry.find("web-prod") == make_lease()

    def test_force_removes_despite_failure(self, fleet, registry, orchestrator, make_lease):
        registry.create(make_lease())
        orchestrator.destroy.side_effect = ProtocolError("gone", status_code=404)

        fleet.destroy("web-prod", force=True)

        assert registry.list_all() == []

    def test_force_works_without_identity(self, registry, make_lease):
        registry.create(make_lease())

        def no_identity():
            raise IdentityError()

        Fleet(registry, no_identity).destroy("web-prod", force=True)

        assert registry.list_all() == []

    def test_unknown_alias(self, fleet, orchestrator):
        with pytest.raises(LeaseNotFoundError):
            fleet.destroy("ghost")
        orchestrator.destroy.assert_not_called()


class TestProvision:
    """Provisioning records the new lease."""

    def _provision(self, fleet, alias=None):
        return fleet.provision(
            tier="eco-small",
            region="nbg1",
            duration="1h",
            distro="ubuntu-24.04",
            ssh_public_key="ssh-ed25519 AAAA test",
            ssh_key_path="/keys/id_ed25519.pub",
            alias=alias,
        )

    def test_records_lease_with_pending_ip(self, fleet, registry, orchestrator):
        orchestrator.provision.return_value = _vm()

        vm, lease = self._provision(fleet)

        orchestrator.validate.assert_called_once_with("eco-small", "nbg1", "1h")
        assert lease.alias == "entropy-101"
        assert lease.ip == PENDING_IP
        assert lease.owner_wallet == "0xPAYER"
        assert registry.find(101) == lease

    def test_ineligible_request_never_provisions(self, fleet, orchestrator):
        orchestrator.validate.side_effect = EligibilityError("no", status_code=403)

        with pytest.raises(EligibilityError):
            self._provision(fleet)
        orchestrator.provision.assert_not_called()

    def test_local_failure_after_remote_success(self, fleet, registry, orchestrator, make_lease):
        registry.create(make_lease(alias="taken"))
        orchestrator.provision.return_value = _vm(provider_id=202)

        with pytest.raises(LocalStoreError) as excinfo:
            self._provision(fleet, alias="taken")
        assert excinfo.value.remote_succeeded
        assert "202" in str(excinfo.value)


class TestRenew:
    def test_updates_expiry(self, fleet, registry, orchestrator, make_lease):
        registry.create(make_lease())
        new_expiry = NOW + timedelta(hours=3)
        orchestrator.renew.return_value = RenewResult("success", new_expiry, "Lease extended.", {})

        result, lease = fleet.renew("web-prod", "2h")

        orchestrator.renew.assert_called_once_with("entropy-101", "2h")
        assert lease.expires_at == new_expiry
        assert registry.find("web-prod").expires_at == new_expiry

    def test_without_new_expiry_leaves_record(self, fleet, registry, orchestrator, make_lease):
        registry.create(make_lease())
        orchestrator.renew.return_value = RenewResult("success", None, "", {})

        _, lease = fleet.renew("web-prod", "1h")

        assert lease == make_lease()
