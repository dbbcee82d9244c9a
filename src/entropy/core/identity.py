"""
Payer identities and the credentials store that links them.

Identities live in a ``.env`` formatted credentials file next to the lease
database. Values from the process environment take precedence so a CI job
can inject a key without touching disk.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

import requests

from .environment import build_environment, write_env_file
from .errors import IdentityError
from .evm import ExactEvmScheme, derive_address, normalize_private_key
from .monero import MoneroWalletScheme, fetch_primary_address
from .schemes import SchemeRegistry

__all__ = [
    "CredentialStore",
    "DOMAIN_EVM",
    "DOMAIN_XMR",
    "IdentityResolver",
    "PayerIdentity",
    "derive_monero_id",
]

DOMAIN_EVM = "evm"
DOMAIN_XMR = "xmr"

EVM_KEY = "ENTROPY_EVM_PRIVATE_KEY"
EVM_ADDRESS = "ENTROPY_EVM_ADDRESS"
XMR_ADDRESS = "ENTROPY_XMR_ADDRESS"
XMR_RPC_URL = "ENTROPY_XMR_RPC_URL"

_CREDENTIAL_KEYS = (EVM_KEY, EVM_ADDRESS, XMR_ADDRESS, XMR_RPC_URL)


def derive_monero_id(address: str) -> str:
    """
    Stable pseudonymous id for a Monero address.

    The primary address is hashed so it never appears in request headers.
    """
    digest = hashlib.sha256(("entropy-v1-" + address).encode("utf-8")).hexdigest()
    return f"xmr-{digest}"


@dataclass(frozen=True)
class PayerIdentity:
    domain: str
    identifier: str
    credential_ref: str = field(default="", repr=False)


class CredentialStore:
    """
    Reads and writes linked identities.

    ``environ`` defaults to :data:`os.environ`; tests pass an empty mapping.
    """

    def __init__(self, path: Path, *, environ: Optional[Mapping[str, str]] = None) -> None:
        self.path = Path(path)
        self._environ = environ

    def values(self) -> Dict[str, str]:
        environment = build_environment(env_file=str(self.path), base=self._environ)
        return {
            key: environment.variables[key]
            for key in _CREDENTIAL_KEYS
            if environment.variables.get(key)
        }

    def get(self, key: str) -> Optional[str]:
        return self.values().get(key)

    def link_evm(self, private_key: str) -> str:
        key = normalize_private_key(private_key)
        address = derive_address(key)
        write_env_file(self.path, {EVM_KEY: key, EVM_ADDRESS: address})
        logging.info("Linked EVM identity %s", address)
        return address

    def link_monero(
        self,
        rpc_url: str,
        *,
        session: Optional[requests.Session] = None,
    ) -> str:
        address = fetch_primary_address(rpc_url, session=session)
        write_env_file(self.path, {XMR_ADDRESS: address, XMR_RPC_URL: rpc_url})
        logging.info("Linked Monero wallet at %s", rpc_url)
        return address

    def unlink(self, domain: str) -> None:
        keys = {
            DOMAIN_EVM: (EVM_KEY, EVM_ADDRESS),
            DOMAIN_XMR: (XMR_ADDRESS, XMR_RPC_URL),
        }.get(domain)
        if keys is None:
            raise ValueError(f"Unknown identity domain '{domain}'")
        write_env_file(self.path, {key: "" for key in keys})


def _primary(identities: List[PayerIdentity]) -> str:
    if not identities:
        raise IdentityError()
    for identity in identities:
        if identity.domain == DOMAIN_EVM:
            return identity.identifier
    return identities[0].identifier


class IdentityResolver:
    """
    Works out who is paying for the current session.

    An EVM identity is preferred as the primary payer id because its address
    is already public; a Monero-only session uses the hashed id from
    :func:`derive_monero_id`.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        default_monero_rpc: str,
        wallet_timeout: float = 120,
    ) -> None:
        self.store = store
        self.default_monero_rpc = default_monero_rpc
        self.wallet_timeout = wallet_timeout

    def _identities(self, values: Mapping[str, str]) -> List[PayerIdentity]:
        identities: List[PayerIdentity] = []
        if values.get(EVM_KEY):
            address = values.get(EVM_ADDRESS) or derive_address(values[EVM_KEY])
            identities.append(PayerIdentity(DOMAIN_EVM, address, EVM_KEY))
        if values.get(XMR_ADDRESS):
            identities.append(
                PayerIdentity(DOMAIN_XMR, derive_monero_id(values[XMR_ADDRESS]), XMR_ADDRESS)
            )
        return identities

    def active_identities(self) -> FrozenSet[PayerIdentity]:
        return frozenset(self._identities(self.store.values()))

    def primary_payer_id(self) -> str:
        return _primary(self._identities(self.store.values()))

    def display_id(self) -> str:
        """Primary payer id, or a placeholder when nothing is linked."""
        try:
            return self.primary_payer_id()
        except IdentityError:
            return "0xUNREGISTERED"

    def build_schemes(self) -> Tuple[str, SchemeRegistry]:
        """
        Return the primary payer id and a registry with one scheme per
        linked domain.
        """
        values = self.store.values()
        identities = self._identities(values)
        if not identities:
            raise IdentityError()

        registry = SchemeRegistry()
        for identity in identities:
            if identity.domain == DOMAIN_EVM:
                registry.register("eip155:*", ExactEvmScheme(values[identity.credential_ref]))
            elif identity.domain == DOMAIN_XMR:
                rpc_url = values.get(XMR_RPC_URL) or self.default_monero_rpc
                registry.register(
                    "monero:*",
                    MoneroWalletScheme(rpc_url, timeout=self.wallet_timeout),
                )
        return _primary(identities), registry
