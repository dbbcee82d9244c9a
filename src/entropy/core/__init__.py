"""
Core primitives: the x402 payment client, settlement schemes, the lease
registry and reconciliation.
"""

from .client import PaymentClient, select_requirement
from .config import EntropyConfig, EntropyParameters, load_config
from .context import EntropyContext
from .environment import EntropyEnvironment, build_environment
from .errors import (
    ConfigError,
    EntropyError,
    IdentityError,
    InvalidRequirementError,
    LeaseConflictError,
    LeaseNotFoundError,
    LocalStoreError,
    ProtocolError,
    SettlementError,
    TransportError,
    WalletExecutionError,
    WalletUnreachableError,
)
from .evm import ExactEvmScheme
from .fleet import Fleet
from .identity import CredentialStore, IdentityResolver, PayerIdentity, derive_monero_id
from .monero import MoneroWalletScheme
from .orchestrator import Orchestrator, RemoteLeaseView
from .reconcile import LeaseView, Reconciler, SyncResult
from .registry import PENDING_IP, Lease, LeaseRegistry
from .schemes import SchemeRegistry, SettlementScheme
from .wire import build_payment, encode_payment, parse_challenge, parse_challenge_header

__all__ = [
    "ConfigError",
    "CredentialStore",
    "EntropyConfig",
    "EntropyContext",
    "EntropyEnvironment",
    "EntropyError",
    "EntropyParameters",
    "ExactEvmScheme",
    "Fleet",
    "IdentityError",
    "IdentityResolver",
    "InvalidRequirementError",
    "Lease",
    "LeaseConflictError",
    "LeaseNotFoundError",
    "LeaseRegistry",
    "LeaseView",
    "LocalStoreError",
    "MoneroWalletScheme",
    "Orchestrator",
    "PENDING_IP",
    "PayerIdentity",
    "PaymentClient",
    "ProtocolError",
    "Reconciler",
    "RemoteLeaseView",
    "SchemeRegistry",
    "SettlementError",
    "SettlementScheme",
    "SyncResult",
    "TransportError",
    "WalletExecutionError",
    "WalletUnreachableError",
    "build_environment",
    "build_payment",
    "derive_monero_id",
    "encode_payment",
    "load_config",
    "parse_challenge",
    "parse_challenge_header",
    "select_requirement",
]
