"""
Settlement scheme interface and the network-pattern registry.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from x402.schemas import find_schemes_by_network

from .wire import Requirement

__all__ = [
    "SchemeRegistry",
    "SettlementScheme",
]


class SettlementScheme(ABC):
    """
    A client-side x402 scheme (``x402.SchemeNetworkClient``) that may
    block while it settles.

    Implementations either return the inner payload of a completed (or
    fully authorized) transfer, or raise a
    :class:`~entropy.core.errors.SettlementError`; nothing in between.
    ``timeout`` is whatever remains of the caller's deadline.
    """

    #: Human readable rail name used in log lines.
    rail: str = ""

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Payment scheme identifier, e.g. ``exact``."""

    @abstractmethod
    def create_payment_payload(
        self,
        requirements: Requirement,
        *,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Settle ``requirements`` and return the scheme-specific proof."""


class SchemeRegistry:
    """
    Maps network patterns such as ``eip155:*`` to settlement schemes, one
    per scheme name.

    Lookup follows the SDK's rule: an exact network entry wins over a
    wildcard pattern.
    """

    def __init__(self) -> None:
        self._schemes: Dict[str, Dict[str, SettlementScheme]] = {}

    def register(self, network: str, scheme: SettlementScheme) -> "SchemeRegistry":
        pattern = network.strip().lower()
        if not pattern:
            raise ValueError("Scheme network pattern must not be empty")
        by_scheme = self._schemes.setdefault(pattern, {})
        if scheme.scheme in by_scheme:
            raise ValueError(f"A {scheme.scheme} scheme is already registered for '{pattern}'")
        by_scheme[scheme.scheme] = scheme
        logging.debug("Registered %s scheme for %s", scheme.scheme, pattern)
        return self

    def patterns(self) -> List[str]:
        return list(self._schemes)

    def lookup(self, requirement: Requirement) -> Optional[SettlementScheme]:
        by_scheme = find_schemes_by_network(self._schemes, requirement.network.lower())
        if not by_scheme:
            return None
        return by_scheme.get(requirement.scheme)

    def __len__(self) -> int:
        return sum(len(by_scheme) for by_scheme in self._schemes.values())
