"""
Public facade for the entropy client.

The module re-exports the most useful pieces for integrators so they can
``from entropy import ...`` without navigating the package.
"""

__version__ = "1.2.5"

from .api import (
    destroy_lease,
    fetch_options,
    fetch_stats,
    link_evm,
    link_monero,
    list_leases,
    open_context,
    provision_lease,
    register_notifications,
    renew_lease,
)
from .core import (
    ConfigError,
    EntropyConfig,
    EntropyContext,
    EntropyError,
    IdentityError,
    Lease,
    LeaseRegistry,
    LocalStoreError,
    PaymentClient,
    ProtocolError,
    SettlementError,
    SyncResult,
    TransportError,
    load_config,
)

__all__ = (
    "ConfigError",
    "EntropyConfig",
    "EntropyContext",
    "EntropyError",
    "IdentityError",
    "Lease",
    "LeaseRegistry",
    "LocalStoreError",
    "PaymentClient",
    "ProtocolError",
    "SettlementError",
    "SyncResult",
    "TransportError",
    "__version__",
    "destroy_lease",
    "fetch_options",
    "fetch_stats",
    "link_evm",
    "link_monero",
    "list_leases",
    "load_config",
    "open_context",
    "provision_lease",
    "register_notifications",
    "renew_lease",
)
