"""
Exact-amount settlement on Monero through a running ``monero-wallet-rpc``.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Optional

import requests

from .errors import InvalidRequirementError, WalletExecutionError, WalletUnreachableError
from .schemes import SettlementScheme
from .wire import Requirement, amount_units

__all__ = [
    "MoneroWalletScheme",
    "fetch_primary_address",
    "wallet_rpc",
]


def wallet_rpc(
    session: requests.Session,
    rpc_url: str,
    method: str,
    params: Dict[str, Any],
    *,
    timeout: float,
) -> Dict[str, Any]:
    """
    Call ``method`` on the wallet JSON-RPC endpoint and return its ``result``.
    """
    body = {"jsonrpc": "2.0", "id": "0", "method": method, "params": params}
    try:
        response = session.post(rpc_url, json=body, timeout=timeout)
    except requests.RequestException as exc:
        raise WalletUnreachableError(f"monero-wallet-rpc unreachable at {rpc_url}: {exc}") from exc

    if response.status_code >= 400:
        raise WalletUnreachableError(
            f"monero-wallet-rpc responded with {response.status_code}: {response.text}"
        )
    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError) as exc:
        raise WalletExecutionError(
            f"Failed to parse JSON from monero-wallet-rpc: {response.text}"
        ) from exc
    if not isinstance(payload, dict):
        raise WalletExecutionError(f"{method} returned a non-object reply: {response.text}")

    error = payload.get("error")
    if error:
        if isinstance(error, dict):
            raise WalletExecutionError(
                f"{method} failed: {error.get('message', error)}",
                code=error.get("code"),
            )
        raise WalletExecutionError(f"{method} failed: {error}")

    result = payload.get("result")
    if not isinstance(result, dict):
        raise WalletExecutionError(f"{method} returned no result")
    return result


def fetch_primary_address(
    rpc_url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 30,
) -> str:
    """Ask the wallet for the primary address of account 0."""
    result = wallet_rpc(
        session or requests.Session(),
        rpc_url,
        "get_address",
        {"account_index": 0},
        timeout=timeout,
    )
    address = result.get("address")
    if not address:
        raise WalletExecutionError("get_address returned an empty address")
    return str(address)


class MoneroWalletScheme(SettlementScheme):
    """
    Pays by instructing the wallet to transfer the exact amount.

    The proof is the transaction id plus the transaction key, which lets the
    receiver verify the output without any view key. Transfers are
    serialized per instance so two calls never build transactions
    concurrently against the same wallet.
    """

    rail = "xmr"

    def __init__(
        self,
        rpc_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 120,
    ) -> None:
        self.rpc_url = rpc_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"MoneroWalletScheme(rpc_url={self.rpc_url!r})"

    @property
    def scheme(self) -> str:
        return "exact"

    def create_payment_payload(
        self,
        requirements: Requirement,
        *,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        amount = amount_units(requirements)
        address = requirements.pay_to.strip()
        if not address:
            raise InvalidRequirementError("payTo must be a Monero address")

        params = {
            "destinations": [{"amount": amount, "address": address}],
            "get_tx_key": True,
        }
        with self._lock:
            logging.info("Requesting %d piconero transfer from wallet at %s", amount, self.rpc_url)
            result = wallet_rpc(
                self.session,
                self.rpc_url,
                "transfer",
                params,
                timeout=self.timeout if timeout is None else min(self.timeout, timeout),
            )

        tx_hash = result.get("tx_hash")
        tx_key = result.get("tx_key")
        if not tx_hash or not tx_key:
            raise WalletExecutionError("transfer returned no tx_hash/tx_key")

        logging.info("Wallet broadcast transfer %s", tx_hash)
        return {"address": address, "tx_id": tx_hash, "tx_key": tx_key}
