"""
State-changing lease operations and the registry bookkeeping around them.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple, Union

from .errors import EntropyError, LocalStoreError
from .orchestrator import Orchestrator, ProvisionedVM, RenewResult
from .registry import PENDING_IP, Lease, LeaseRegistry

__all__ = ["Fleet"]


class Fleet:
    """
    Provision, renew and tear down leases.

    The orchestrator is built on first use so purely local work (a forced
    removal, for instance) does not require a linked identity.
    """

    def __init__(
        self,
        registry: LeaseRegistry,
        orchestrator: Callable[[], Orchestrator],
    ) -> None:
        self.registry = registry
        self._orchestrator = orchestrator

    def provision(
        self,
        *,
        tier: str,
        region: str,
        duration: str,
        distro: str,
        ssh_public_key: str,
        ssh_key_path: str,
        alias: Optional[str] = None,
        check_eligibility: bool = True,
    ) -> Tuple[ProvisionedVM, Lease]:
        orchestrator = self._orchestrator()
        if check_eligibility:
            orchestrator.validate(tier, region, duration)

        logging.info("Provisioning %s tier in %s for %s", tier, region, duration)
        vm = orchestrator.provision(
            tier=tier,
            region=region,
            duration=duration,
            distro=distro,
            ssh_public_key=ssh_public_key,
        )
        lease = Lease(
            provider_id=vm.provider_id,
            alias=alias or vm.name,
            server_name=vm.name,
            ip=vm.ip or PENDING_IP,
            region=vm.region or region,
            tier=vm.tier or tier,
            ssh_key_path=ssh_key_path,
            owner_wallet=orchestrator.payer_id,
            expires_at=vm.expires_at,
        )
        try:
            self.registry.create(lease)
        except LocalStoreError as exc:
            raise LocalStoreError(
                f"VM {vm.name} (provider id {vm.provider_id}) was provisioned but could "
                f"not be saved to the local registry: {exc}",
                remote_succeeded=True,
            ) from exc
        return vm, lease

    def renew(self, key: Union[str, int], duration: str) -> Tuple[RenewResult, Lease]:
        lease = self.registry.find(key)
        result = self._orchestrator().renew(lease.server_name or lease.alias, duration)
        if result.new_expiry is None:
            return result, lease
        try:
            lease = self.registry.update(lease.provider_id, expires_at=result.new_expiry)
        except LocalStoreError as exc:
            raise LocalStoreError(
                f"Lease {lease.alias} was renewed but the new expiry could not be "
                f"recorded locally: {exc}",
                remote_succeeded=True,
            ) from exc
        return result, lease

    def destroy(self, key: Union[str, int], *, force: bool = False) -> Lease:
        """
        Tear the lease down remotely, then forget it locally.

        If the remote call fails the record is kept and the error raised,
        unless ``force`` is set, in which case the record is dropped anyway.
        """
        lease = self.registry.find(key)
        try:
            self._orchestrator().destroy(lease.server_name or lease.alias)
        except EntropyError as exc:
            if not force:
                raise
            logging.warning(
                "Remote teardown of %s failed (%s); removing local record because --force was given",
                lease.alias,
                exc,
            )
        self.registry.delete(lease)
        logging.info("Lease %s removed from registry", lease.alias)
        return lease
