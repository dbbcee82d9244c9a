"""
Glue between HTTP responses and the x402 SDK's payment schemas.

Challenges arrive either as a v2 ``PAYMENT-REQUIRED`` header or as a v1
JSON body; both are validated into the SDK's pydantic models. Payments go
back as the matching SDK payload model, serialized under the header the
challenge's version expects.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict, Mapping, Tuple, Union

from x402.schemas import (
    PaymentPayload,
    PaymentPayloadV1,
    PaymentRequired,
    PaymentRequiredV1,
    PaymentRequirements,
    PaymentRequirementsV1,
)

from .errors import InvalidRequirementError, ProtocolError

__all__ = [
    "Challenge",
    "LEGACY_PAYMENT_HEADER",
    "Payment",
    "PAYMENT_REQUIRED_HEADER",
    "PAYMENT_SIGNATURE_HEADER",
    "Requirement",
    "amount_units",
    "build_payment",
    "encode_payment",
    "parse_challenge",
    "parse_challenge_header",
]

PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_SIGNATURE_HEADER = "PAYMENT-SIGNATURE"
LEGACY_PAYMENT_HEADER = "X-PAYMENT"

Requirement = Union[PaymentRequirements, PaymentRequirementsV1]
Challenge = Union[PaymentRequired, PaymentRequiredV1]
Payment = Union[PaymentPayload, PaymentPayloadV1]


def parse_challenge(data: Mapping[str, Any]) -> Challenge:
    """Validate a decoded challenge into the SDK model for its version."""
    try:
        version = int(data.get("x402Version", 1))
    except (TypeError, ValueError) as exc:
        raise ProtocolError("Payment challenge has a non-numeric x402Version") from exc

    model = PaymentRequiredV1 if version == 1 else PaymentRequired
    try:
        challenge = model.model_validate(dict(data))
    except ValueError as exc:
        raise ProtocolError(f"Malformed payment challenge: {exc}") from exc
    if not challenge.accepts:
        raise ProtocolError("Payment challenge offered no requirements")
    return challenge


def parse_challenge_header(value: str) -> Challenge:
    try:
        decoded = json.loads(base64.b64decode(value, validate=True))
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError(f"Malformed {PAYMENT_REQUIRED_HEADER} header: {exc}") from exc
    if not isinstance(decoded, dict):
        raise ProtocolError(f"Malformed {PAYMENT_REQUIRED_HEADER} header: expected a JSON object")
    return parse_challenge(decoded)


def amount_units(requirement: Requirement) -> int:
    """The requested amount in the asset's smallest unit."""
    raw = requirement.get_amount()
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidRequirementError(f"Payment amount '{raw}' is not an integer") from exc
    if value <= 0:
        raise InvalidRequirementError("Payment amount must be greater than zero")
    return value


def build_payment(
    challenge: Challenge,
    requirement: Requirement,
    inner: Dict[str, Any],
) -> Payment:
    """Wrap a scheme's inner payload in the envelope ``challenge`` asks for."""
    if challenge.x402_version == 1:
        return PaymentPayloadV1(
            x402_version=1,
            scheme=requirement.scheme,
            network=requirement.network,
            payload=inner,
        )
    return PaymentPayload(
        x402_version=challenge.x402_version,
        payload=inner,
        accepted=requirement,
        resource=getattr(challenge, "resource", None),
    )


def encode_payment(payment: Payment) -> Tuple[str, str]:
    """Return the ``(header name, header value)`` carrying ``payment``."""
    name = LEGACY_PAYMENT_HEADER if payment.x402_version == 1 else PAYMENT_SIGNATURE_HEADER
    body = payment.model_dump_json(by_alias=True, exclude_none=True)
    return name, base64.b64encode(body.encode("utf-8")).decode("ascii")
