"""
Per-session wiring of configuration, registry, identities and clients.
"""

from __future__ import annotations

import threading
from typing import Dict, Mapping, Optional

import requests

from .client import PaymentClient
from .config import EntropyConfig
from .fleet import Fleet
from .identity import CredentialStore, IdentityResolver
from .orchestrator import Orchestrator, RemoteLeaseView
from .reconcile import Reconciler
from .registry import LeaseRegistry

__all__ = ["EntropyContext"]


class EntropyContext:
    """
    Everything one CLI invocation or dashboard session needs.

    Built once and handed to every component; nothing here is global.
    Clients are created lazily because building them requires a linked
    identity.
    """

    def __init__(
        self,
        config: EntropyConfig,
        *,
        session: Optional[requests.Session] = None,
        environ: Optional[Mapping[str, str]] = None,
        registry: Optional[LeaseRegistry] = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.registry = registry or LeaseRegistry(config.db_path)
        self.credentials = CredentialStore(config.credentials_file, environ=environ)
        self.identities = IdentityResolver(
            self.credentials,
            default_monero_rpc=config.monero_rpc_url,
            wallet_timeout=config.request_timeout_seconds,
        )
        self._lock = threading.Lock()
        self._orchestrator: Optional[Orchestrator] = None
        self._reconciler: Optional[Reconciler] = None

    def payment_client(self) -> PaymentClient:
        payer_id, schemes = self.identities.build_schemes()
        return PaymentClient(
            self.config.base_url,
            payer_id,
            schemes,
            preference=self.config.pay_method,
            fallback=self.config.payment_fallback,
            timeout=self.config.request_timeout_seconds,
            user_agent=self.config.user_agent,
            session=self.session,
        )

    def orchestrator(self) -> Orchestrator:
        with self._lock:
            if self._orchestrator is None:
                self._orchestrator = Orchestrator(self.payment_client())
            return self._orchestrator

    def _fetch_remote(self) -> Dict[int, RemoteLeaseView]:
        return self.orchestrator().list_leases()

    def reconciler(self) -> Reconciler:
        with self._lock:
            if self._reconciler is None:
                self._reconciler = Reconciler(self.registry, self._fetch_remote)
            return self._reconciler

    def fleet(self) -> Fleet:
        return Fleet(self.registry, self.orchestrator)
