"""
Public, high-level helpers for driving the orchestrator.

Every helper takes an :class:`EntropyContext`; build one per session with
:func:`open_context`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import requests

from .core.config import EntropyConfig, EntropyParameters, load_config
from .core.context import EntropyContext
from .core.errors import ConfigError
from .core.orchestrator import ProvisionedVM, RenewResult, fetch_public
from .core.reconcile import SyncResult
from .core.registry import Lease
from .core.ssh import default_key, read_public_key

__all__ = [
    "destroy_lease",
    "fetch_options",
    "fetch_stats",
    "find_lease",
    "link_evm",
    "link_monero",
    "list_leases",
    "open_context",
    "provision_lease",
    "register_notifications",
    "renew_lease",
]

NOTIFY_METHODS = ("telegram", "webhook")


def open_context(
    *,
    config: Optional[EntropyConfig] = None,
    session: Optional[requests.Session] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[EntropyParameters] = None,
) -> EntropyContext:
    """
    Construct an :class:`EntropyContext`.

    Callers can either supply a ready-made :class:`EntropyConfig` or let the
    helper assemble one from environment data.
    """
    if config is not None:
        if any(item for item in (overrides, base, parameters)):
            raise ValueError(
                "Provide either a pre-built EntropyConfig or individual parameters, not both."
            )
        cfg = config
    else:
        cfg = load_config(
            env_file=env_file,
            overrides=overrides,
            base=base,
            parameters=parameters,
        )
    return EntropyContext(cfg, session=session, environ=base)


def link_evm(context: EntropyContext, private_key: str) -> str:
    return context.credentials.link_evm(private_key)


def link_monero(context: EntropyContext, rpc_url: Optional[str] = None) -> str:
    return context.credentials.link_monero(
        rpc_url or context.config.monero_rpc_url, session=context.session
    )


def provision_lease(
    context: EntropyContext,
    *,
    tier: str = "eco-small",
    region: str = "nbg1",
    duration: str = "1h",
    distro: str = "ubuntu-24.04",
    alias: Optional[str] = None,
    key_path: Optional[str] = None,
) -> Tuple[ProvisionedVM, Lease]:
    """
    Pay for and provision a new lease, then record it locally.

    Without ``key_path`` the session's default key is used (and generated
    when missing).
    """
    public_key_path = Path(key_path).expanduser() if key_path else default_key(context.config.keys_dir)
    public_key = read_public_key(public_key_path)
    return context.fleet().provision(
        tier=tier,
        region=region,
        duration=duration,
        distro=distro,
        ssh_public_key=public_key,
        ssh_key_path=str(public_key_path),
        alias=alias or None,
    )


def find_lease(context: EntropyContext, key: str) -> Lease:
    """Look a recorded lease up by alias or provider id."""
    return context.registry.find(key)


def list_leases(context: EntropyContext) -> SyncResult:
    return context.reconciler().sync()


def renew_lease(context: EntropyContext, alias: str, duration: str = "1h") -> Tuple[RenewResult, Lease]:
    return context.fleet().renew(alias, duration)


def destroy_lease(context: EntropyContext, alias: str, *, force: bool = False) -> Lease:
    return context.fleet().destroy(alias, force=force)


def register_notifications(
    context: EntropyContext,
    method: str = "telegram",
    identifier: str = "",
) -> Dict[str, Any]:
    method = method.strip().lower()
    if method not in NOTIFY_METHODS:
        raise ConfigError(f"Notification method must be one of {', '.join(NOTIFY_METHODS)}")
    if method == "webhook" and not identifier:
        raise ConfigError("A webhook URL is required when method is webhook")
    return context.orchestrator().register_notifications(method, identifier)


def fetch_options(context: EntropyContext) -> Dict[str, Any]:
    return fetch_public(context.config.base_url, "/options", session=context.session)


def fetch_stats(context: EntropyContext) -> Dict[str, Any]:
    return fetch_public(context.config.base_url, "/stats", session=context.session)
