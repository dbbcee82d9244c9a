"""
Error taxonomy shared by the payment client, the schemes and the registry.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "EntropyError",
    "ConfigError",
    "IdentityError",
    "ProtocolError",
    "SettlementError",
    "WalletUnreachableError",
    "WalletExecutionError",
    "InvalidRequirementError",
    "TransportError",
    "LocalStoreError",
    "LeaseConflictError",
    "LeaseNotFoundError",
]


class EntropyError(Exception):
    """Base error for everything raised by this package."""


class ConfigError(EntropyError):
    """Raised when the supplied configuration is invalid."""


class IdentityError(EntropyError):
    """No payer identity has been linked."""

    def __init__(self, message: str = "no identity linked: run 'entropy login' first") -> None:
        super().__init__(message)


class ProtocolError(EntropyError):
    """
    The remote side answered with something the client cannot act on.

    Covers malformed payment challenges, challenges no registered scheme can
    satisfy, and unexpected status codes.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SettlementError(EntropyError):
    """A settlement scheme could not produce a proof of payment."""


class WalletUnreachableError(SettlementError):
    """The wallet or signing facility could not be reached."""


class WalletExecutionError(SettlementError):
    """The wallet refused or failed to execute the transfer."""

    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class InvalidRequirementError(SettlementError):
    """The payment requirement carried an unusable amount or address."""


class TransportError(EntropyError):
    """The orchestrator could not be reached or timed out."""


class LocalStoreError(EntropyError):
    """
    The lease registry could not complete an operation.

    ``remote_succeeded`` is set when the failure happened after the
    orchestrator already acted, so the caller can tell the user that local
    bookkeeping is out of step with the remote side.
    """

    def __init__(self, message: str, *, remote_succeeded: bool = False) -> None:
        super().__init__(message)
        self.remote_succeeded = remote_succeeded


class LeaseConflictError(LocalStoreError):
    """A lease with the same alias or provider id is already recorded."""


class LeaseNotFoundError(LocalStoreError):
    """No lease matches the given alias or provider id."""
