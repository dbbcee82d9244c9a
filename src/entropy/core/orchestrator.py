"""
Typed wrappers around the orchestrator's HTTP endpoints.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import requests

from .client import PaymentClient
from .errors import ProtocolError, TransportError
from .timefmt import parse_timestamp

__all__ = [
    "EligibilityError",
    "Orchestrator",
    "ProvisionedVM",
    "RemoteLeaseView",
    "RenewResult",
    "fetch_public",
]

STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"
STATUS_ABSENT = "absent"

_SUSPENDED_STATES = frozenset({"suspended", "paused", "off", "stopped", "grace"})


class EligibilityError(ProtocolError):
    """The pre-flight check refused the request."""


def _json_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError) as exc:
        raise ProtocolError(
            f"Failed to parse JSON from orchestrator: {response.text}",
            status_code=response.status_code,
            body=response.text,
        ) from exc


def _expect_ok(response: requests.Response, action: str) -> None:
    if not 200 <= response.status_code < 300:
        raise ProtocolError(
            f"{action} failed: server responded with {response.status_code}: {response.text}",
            status_code=response.status_code,
            body=response.text,
        )


def _optional_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_timestamp(str(value))
    except ValueError:
        logging.warning("Ignoring unparseable timestamp %r from orchestrator", value)
        return None


@dataclass(frozen=True)
class RemoteLeaseView:
    provider_id: int
    status: str
    ip: str = ""
    expires_at: Optional[datetime] = None

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "RemoteLeaseView":
        try:
            provider_id = int(payload["ProviderID"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(f"Lease entry without a usable ProviderID: {payload}") from exc
        raw_status = str(payload.get("Status") or "").strip().lower()
        status = STATUS_SUSPENDED if raw_status in _SUSPENDED_STATES else STATUS_ACTIVE
        return cls(
            provider_id=provider_id,
            status=status,
            ip=str(payload.get("IP") or ""),
            expires_at=_optional_timestamp(payload.get("ExpiresAt")),
        )


@dataclass(frozen=True)
class ProvisionedVM:
    provider_id: int
    name: str
    ip: str
    tier: str
    region: str
    password: str
    expires_at: datetime
    raw: Mapping[str, Any]

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "ProvisionedVM":
        vm = payload.get("vm")
        if not isinstance(vm, Mapping):
            raise ProtocolError(f"Provision response carries no vm object: {payload}")
        try:
            provider_id = int(vm["ProviderID"])
            expires_at = parse_timestamp(str(vm["ExpiresAt"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(f"Provision response is incomplete: {vm}") from exc
        return cls(
            provider_id=provider_id,
            name=str(vm.get("Name") or ""),
            ip=str(vm.get("IP") or ""),
            tier=str(vm.get("Tier") or ""),
            region=str(vm.get("Region") or ""),
            password=str(vm.get("Password") or ""),
            expires_at=expires_at,
            raw=dict(payload),
        )


@dataclass(frozen=True)
class RenewResult:
    status: str
    new_expiry: Optional[datetime]
    message: str
    raw: Mapping[str, Any]

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "RenewResult":
        return cls(
            status=str(payload.get("status") or ""),
            new_expiry=_optional_timestamp(payload.get("new_expiry")),
            message=str(payload.get("message") or ""),
            raw=dict(payload),
        )


class Orchestrator:
    """
    The payment-gated endpoints, spoken through a :class:`PaymentClient`.
    """

    def __init__(self, client: PaymentClient) -> None:
        self.client = client

    @property
    def payer_id(self) -> str:
        return self.client.payer_id

    def list_leases(self) -> Dict[int, RemoteLeaseView]:
        response = self.client.send("GET", "/list")
        _expect_ok(response, "Listing leases")
        body = _json_body(response)
        entries = body.get("vms") if isinstance(body, dict) else None
        if entries is None:
            entries = []
        if not isinstance(entries, list):
            raise ProtocolError(f"Unexpected /list payload: {body}")
        views = [RemoteLeaseView.from_response(entry) for entry in entries]
        return {view.provider_id: view for view in views}

    def validate(self, tier: str, region: str, duration: str) -> None:
        headers = {"X-VM-TIER": tier, "X-VM-DURATION": duration, "X-VM-REGION": region}
        response = self.client.send("POST", "/validate", headers=headers)
        if response.status_code == 403:
            raise EligibilityError(
                f"Eligibility check failed: {response.text}",
                status_code=403,
                body=response.text,
            )

    def provision(
        self,
        *,
        tier: str,
        region: str,
        duration: str,
        distro: str,
        ssh_public_key: str,
    ) -> ProvisionedVM:
        headers = {"X-VM-TIER": tier, "X-VM-DURATION": duration, "X-VM-REGION": region}
        params = {
            "tier": tier,
            "distro": distro,
            "duration": duration,
            "region": region,
            "ssh_key": ssh_public_key,
        }
        response = self.client.send("POST", "/provision", headers=headers, params=params)
        _expect_ok(response, "Provisioning")
        return ProvisionedVM.from_response(_json_body(response))

    def renew(self, server_name: str, duration: str) -> RenewResult:
        headers = {"X-VM-NAME": server_name, "X-VM-DURATION": duration}
        params = {"vm_name": server_name, "duration": duration}
        response = self.client.send("POST", "/renew", headers=headers, params=params)
        _expect_ok(response, "Renewal")
        body = _json_body(response)
        return RenewResult.from_response(body if isinstance(body, dict) else {})

    def destroy(self, server_name: str) -> None:
        headers = {"X-VM-NAME": server_name}
        response = self.client.send(
            "DELETE", "/provision", headers=headers, params={"vm_name": server_name}
        )
        _expect_ok(response, "Teardown")

    def register_notifications(self, method: str, identifier: str) -> Dict[str, Any]:
        response = self.client.send(
            "POST",
            "/notifications",
            body={"method": method, "identifier": identifier},
            headers={"Content-Type": "application/json"},
        )
        _expect_ok(response, "Notification registration")
        body = _json_body(response)
        return body if isinstance(body, dict) else {"response": body}


def fetch_public(
    base_url: str,
    path: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: float = 30,
) -> Dict[str, Any]:
    """
    GET one of the read-only endpoints (``/options``, ``/stats``).

    These need neither a payer identity nor payment.
    """
    url = f"{base_url.rstrip('/')}{path}"
    try:
        response = (session or requests.Session()).get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise TransportError(f"Orchestrator unreachable: {exc}") from exc
    _expect_ok(response, f"GET {path}")
    body = _json_body(response)
    if not isinstance(body, dict):
        raise ProtocolError(f"Unexpected {path} payload: {body}")
    return body
