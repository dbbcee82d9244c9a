"""
Exact-amount settlement on EVM networks via signed ERC-3009 authorizations.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Dict, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_account.messages import encode_typed_data
from eth_utils import is_hex_address, to_checksum_address
from hexbytes import HexBytes

from .errors import ConfigError, InvalidRequirementError
from .schemes import SettlementScheme
from .wire import Requirement, amount_units

__all__ = [
    "ExactEvmScheme",
    "derive_address",
    "normalize_private_key",
    "resolve_chain_id",
]

# v1 challenges use short names instead of CAIP-2 identifiers
_LEGACY_CHAIN_IDS = {
    "base": 8453,
    "base-sepolia": 84532,
    "bsc": 56,
    "ethereum": 1,
    "polygon": 137,
    "avalanche": 43114,
}


def normalize_private_key(raw_key: str) -> str:
    key = raw_key.strip()
    if not key:
        raise ConfigError("EVM private key must not be empty")
    if not key.startswith("0x"):
        key = "0x" + key
    if len(key) != 66:
        raise ConfigError("EVM private key must be 32 bytes (64 hex chars)")
    return key


def _load_account(raw_key: str) -> LocalAccount:
    key = normalize_private_key(raw_key)
    try:
        return Account.from_key(key)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"EVM private key is not a valid secp256k1 key: {exc}") from exc


def derive_address(raw_key: str) -> str:
    """Return the checksummed address controlled by ``raw_key``."""
    return _load_account(raw_key).address


def resolve_chain_id(network: str) -> int:
    value = network.strip().lower()
    if value.startswith("eip155:"):
        reference = value.split(":", 1)[1]
        try:
            return int(reference)
        except ValueError as exc:
            raise InvalidRequirementError(
                f"Network {network} does not carry a numeric chain id"
            ) from exc
    try:
        return _LEGACY_CHAIN_IDS[value]
    except KeyError as exc:
        raise InvalidRequirementError(f"Unknown EVM network '{network}'") from exc


def _checksum(raw_address: str, field_name: str) -> str:
    value = raw_address.strip()
    if not value.startswith("0x"):
        value = "0x" + value
    if not is_hex_address(value):
        raise InvalidRequirementError(f"{field_name} is not a valid EVM address")
    return to_checksum_address(value)


class ExactEvmScheme(SettlementScheme):
    """
    Signs a ``TransferWithAuthorization`` for the exact amount requested.

    Nothing is broadcast by the client: the facilitator submits the signed
    authorization, so a raised error always means no transfer exists.
    """

    rail = "evm"

    def __init__(
        self,
        private_key: str,
        *,
        backdate_seconds: int = 600,
        clock: Optional[Callable[[], float]] = None,
        nonce_factory: Optional[Callable[[], bytes]] = None,
    ) -> None:
        self._account = _load_account(private_key)
        self._backdate_seconds = backdate_seconds
        self._clock = clock or time.time
        self._nonce_factory = nonce_factory or (lambda: secrets.token_bytes(32))

    def __repr__(self) -> str:
        return f"ExactEvmScheme(address={self.address!r})"

    @property
    def scheme(self) -> str:
        return "exact"

    @property
    def address(self) -> str:
        return self._account.address

    def build_authorization(self, requirement: Requirement) -> Dict[str, Any]:
        """
        Construct and sign the ERC-3009 TransferWithAuthorization payload.
        """
        value = amount_units(requirement)

        pay_to = _checksum(requirement.pay_to, "payTo")
        asset = _checksum(requirement.asset, "asset")
        chain_id = resolve_chain_id(requirement.network)

        now = int(self._clock())
        nonce_bytes = self._nonce_factory()
        valid_after = now - self._backdate_seconds
        valid_before = now + requirement.max_timeout_seconds

        message = {
            "from": self.address,
            "to": pay_to,
            "value": value,
            "validAfter": valid_after,
            "validBefore": valid_before,
            "nonce": HexBytes(nonce_bytes),
        }
        extra = requirement.get_extra() or {}
        domain = {
            "name": str(extra.get("name", "USD Coin")),
            "version": str(extra.get("version", "2")),
            "chainId": chain_id,
            "verifyingContract": asset,
        }
        typed_data = {
            "types": {
                "EIP712Domain": [
                    {"name": "name", "type": "string"},
                    {"name": "version", "type": "string"},
                    {"name": "chainId", "type": "uint256"},
                    {"name": "verifyingContract", "type": "address"},
                ],
                "TransferWithAuthorization": [
                    {"name": "from", "type": "address"},
                    {"name": "to", "type": "address"},
                    {"name": "value", "type": "uint256"},
                    {"name": "validAfter", "type": "uint256"},
                    {"name": "validBefore", "type": "uint256"},
                    {"name": "nonce", "type": "bytes32"},
                ],
            },
            "primaryType": "TransferWithAuthorization",
            "domain": domain,
            "message": message,
        }

        signable = encode_typed_data(full_message=typed_data)
        signature = self._account.sign_message(signable).signature
        signature_hex = signature.hex()
        if not signature_hex.startswith("0x"):
            signature_hex = "0x" + signature_hex

        return {
            "signature": signature_hex,
            "authorization": {
                "from": self.address,
                "to": pay_to,
                "value": str(value),
                "validAfter": str(valid_after),
                "validBefore": str(valid_before),
                "nonce": "0x" + nonce_bytes.hex(),
            },
        }

    def create_payment_payload(
        self,
        requirements: Requirement,
        *,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        # signing is local; nothing to bound by the deadline
        return self.build_authorization(requirements)
