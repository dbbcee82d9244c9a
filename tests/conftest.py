"""Shared fixtures for the entropy test suite."""

import base64
import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
import requests

from entropy.core.config import EntropyConfig
from entropy.core.registry import Lease, LeaseRegistry
from entropy.core.schemes import SettlementScheme

TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
MERCHANT = "0x209693Bc6afc0C5328bA36FaF03C514EF312287C"
NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_response(status_code=200, body=None, headers=None, text=None):
    """Build a real ``requests.Response`` without touching the network."""
    response = requests.Response()
    response.status_code = status_code
    if body is not None:
        response._content = json.dumps(body).encode("utf-8")
        response.headers["Content-Type"] = "application/json"
    else:
        response._content = (text or "").encode("utf-8")
    for key, value in (headers or {}).items():
        response.headers[key] = value
    response.encoding = "utf-8"
    return response


def requirement_dict(network="eip155:8453", amount="10000", pay_to=MERCHANT, asset=USDC_BASE):
    return {
        "scheme": "exact",
        "network": network,
        "amount": amount,
        "payTo": pay_to,
        "asset": asset,
        "maxTimeoutSeconds": 300,
        "extra": {"name": "USD Coin", "version": "2"},
    }


def v1_requirement_dict(network="eip155:8453", amount="10000", pay_to=MERCHANT, asset=USDC_BASE):
    return {
        "scheme": "exact",
        "network": network,
        "maxAmountRequired": amount,
        "resource": "https://orchestrator.test/notifications",
        "description": "notification subscription",
        "mimeType": "application/json",
        "payTo": pay_to,
        "maxTimeoutSeconds": 300,
        "asset": asset,
        "extra": {"name": "USD Coin", "version": "2"},
    }


def encode_header(data):
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


def decode_header(value):
    return json.loads(base64.b64decode(value))


def challenge_response(*requirements, version=2):
    body = {"x402Version": version, "accepts": list(requirements)}
    if version == 1:
        return make_response(402, body=body)
    return make_response(402, body={}, headers={"PAYMENT-REQUIRED": encode_header(body)})


class RecordingScheme(SettlementScheme):
    """Settlement scheme that records what it was asked to pay."""

    def __init__(self, error: Optional[Exception] = None):
        self.calls: List = []
        self.timeouts: List[Optional[float]] = []
        self.error = error

    @property
    def scheme(self):
        return "exact"

    def create_payment_payload(self, requirements, *, timeout=None):
        self.calls.append(requirements)
        self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        return {"proof": f"paid-{len(self.calls)}"}


@pytest.fixture
def registry(tmp_path):
    return LeaseRegistry(tmp_path / "entropy.db")


@pytest.fixture
def make_lease():
    def factory(provider_id=101, alias="web-prod", **overrides):
        values = dict(
            provider_id=provider_id,
            alias=alias,
            server_name=f"entropy-{provider_id}",
            ip="203.0.113.10",
            region="nbg1",
            tier="eco-small",
            ssh_key_path="/home/user/.config/entropy/keys/id_ed25519.pub",
            owner_wallet="0xabc",
            expires_at=NOW + timedelta(hours=1),
            created_at=NOW - timedelta(minutes=5),
        )
        values.update(overrides)
        return Lease(**values)

    return factory


@pytest.fixture
def config(tmp_path):
    return EntropyConfig.from_mapping(
        {
            "ENTROPY_BASE_URL": "https://orchestrator.test",
            "ENTROPY_CONFIG_DIR": str(tmp_path),
        }
    )
