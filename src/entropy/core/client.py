"""
HTTP client that answers x402 payment challenges from the orchestrator.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

import requests
from x402.schemas import matches_network_pattern

from .errors import ProtocolError, TransportError
from .schemes import SchemeRegistry
from .wire import (
    PAYMENT_REQUIRED_HEADER,
    Challenge,
    Requirement,
    build_payment,
    encode_payment,
    parse_challenge,
    parse_challenge_header,
)

__all__ = [
    "MIN_RETRY_TIMEOUT_SECONDS",
    "PAYER_HEADER",
    "PaymentClient",
    "preference_pattern",
    "select_requirement",
]

PAYMENT_REQUIRED_STATUS = 402
PAYER_HEADER = "X-VM-PAYER"

# once a payment exists the paid retry is always sent, with at least this long
MIN_RETRY_TIMEOUT_SECONDS = 30.0

_PREFERENCE_PATTERNS = {
    "usdc": "eip155:*",
    "evm": "eip155:*",
    "xmr": "monero:*",
    "monero": "monero:*",
}


def preference_pattern(preference: str) -> str:
    """Map a ``--pay`` value to the network pattern it prefers."""
    value = preference.strip().lower()
    return _PREFERENCE_PATTERNS.get(value, value)


def select_requirement(
    requirements: Sequence[Requirement],
    preference: str,
    *,
    fallback: str = "first",
) -> Requirement:
    """
    Pick the requirement to pay.

    The first offer, in server order, whose network matches ``preference``
    wins. Without a match the ``first`` policy takes the server's first
    offer; ``strict`` refuses.
    """
    if not requirements:
        raise ProtocolError("Payment challenge offered no requirements")

    pattern = preference_pattern(preference)
    for requirement in requirements:
        if matches_network_pattern(requirement.network.lower(), pattern):
            return requirement

    if fallback == "strict":
        offered = ", ".join(requirement.network for requirement in requirements)
        raise ProtocolError(
            f"No payment option matches preference '{preference}' (offered: {offered})"
        )
    return requirements[0]


def _parse_challenge(response: requests.Response) -> Challenge:
    header = response.headers.get(PAYMENT_REQUIRED_HEADER)
    if header:
        return parse_challenge_header(header)
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError) as exc:
        raise ProtocolError(
            "402 response carried neither a PAYMENT-REQUIRED header nor a JSON body",
            status_code=response.status_code,
            body=response.text,
        ) from exc
    if not isinstance(body, dict):
        raise ProtocolError("402 response body is not a JSON object", body=response.text)
    return parse_challenge(body)


class PaymentClient:
    """
    Sends orchestrator requests and pays for them when challenged.

    Every request carries the payer id header. A ``402`` answer is settled
    through the registered scheme and the request is replayed exactly once;
    whatever comes back from the replay is returned, so a single call never
    pays twice.

    The overall ``timeout`` bounds the first request and the settlement.
    Once settlement has produced a payment the replay is sent regardless,
    with at least :data:`MIN_RETRY_TIMEOUT_SECONDS`.
    """

    def __init__(
        self,
        base_url: str,
        payer_id: str,
        schemes: SchemeRegistry,
        *,
        preference: str = "usdc",
        fallback: str = "first",
        timeout: float = 150,
        user_agent: str = "Entropy-CLI/1.0",
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.payer_id = payer_id
        self.schemes = schemes
        self.preference = preference
        self.fallback = fallback
        self.timeout = timeout
        self.user_agent = user_agent
        self.session = session or requests.Session()
        self._clock = clock or time.monotonic

    def _request(
        self,
        method: str,
        url: str,
        *,
        body: Any,
        headers: Dict[str, str],
        params: Optional[Mapping[str, str]],
        timeout: float,
    ) -> requests.Response:
        kwargs: Dict[str, Any] = {"headers": headers, "params": params, "timeout": timeout}
        if isinstance(body, (dict, list)):
            kwargs["json"] = body
        elif body is not None:
            kwargs["data"] = body
        try:
            return self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

    def _remaining(self, deadline: float, method: str, url: str) -> float:
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise TransportError(f"{method} {url} exceeded the {self.timeout}s deadline")
        return remaining

    def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        *,
        params: Optional[Mapping[str, str]] = None,
    ) -> requests.Response:
        url = f"{self.base_url}{path}"
        deadline = self._clock() + self.timeout
        request_headers = {"User-Agent": self.user_agent, PAYER_HEADER: self.payer_id}
        request_headers.update(headers or {})

        response = self._request(
            method,
            url,
            body=body,
            headers=request_headers,
            params=params,
            timeout=self._remaining(deadline, method, url),
        )
        if response.status_code != PAYMENT_REQUIRED_STATUS:
            return response

        challenge = _parse_challenge(response)
        requirement = select_requirement(
            challenge.accepts, self.preference, fallback=self.fallback
        )
        scheme = self.schemes.lookup(requirement)
        if scheme is None:
            raise ProtocolError(
                f"No settlement capability registered for {requirement.scheme} on "
                f"{requirement.network}; link a matching wallet with 'entropy login'",
                status_code=response.status_code,
            )

        remaining = self._remaining(deadline, method, url)
        logging.info(
            "Paying %s (%s) on %s to %s for %s %s",
            requirement.get_amount(),
            requirement.asset or "native",
            requirement.network,
            requirement.pay_to,
            method,
            path,
        )
        inner = scheme.create_payment_payload(requirement, timeout=remaining)
        header_name, header_value = encode_payment(build_payment(challenge, requirement, inner))

        retry_headers = dict(request_headers)
        retry_headers[header_name] = header_value
        retry_timeout = max(deadline - self._clock(), MIN_RETRY_TIMEOUT_SECONDS)

        retried = self._request(
            method,
            url,
            body=body,
            headers=retry_headers,
            params=params,
            timeout=retry_timeout,
        )
        if retried.status_code == PAYMENT_REQUIRED_STATUS:
            logging.warning("Payment for %s %s was not accepted by the server", method, path)
        return retried
