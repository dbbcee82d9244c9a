"""Unit tests for the settlement schemes and their registry."""

from unittest.mock import Mock

import pytest
import requests
from eth_account import Account
from x402.schemas import PaymentRequirements

from conftest import MERCHANT, TEST_PRIVATE_KEY, RecordingScheme, make_response, requirement_dict
from entropy.core.errors import (
    ConfigError,
    InvalidRequirementError,
    WalletExecutionError,
    WalletUnreachableError,
)
from entropy.core.evm import ExactEvmScheme, resolve_chain_id
from entropy.core.monero import MoneroWalletScheme, fetch_primary_address
from entropy.core.schemes import SchemeRegistry

XMR_ADDRESS = "44AFFq5kSiGBoZ4NMDwYtN18obc8AemS33DBLWs3H7otXft3XjrpDtQGv7SqSsaBYBb98uNbr2VBBEt7f2wfn3RVGQBEP3A"


def _requirement(**kwargs):
    return PaymentRequirements.model_validate(requirement_dict(**kwargs))


class TestExactEvmScheme:
    """Test signing of ERC-3009 authorizations."""

    def _scheme(self):
        return ExactEvmScheme(
            TEST_PRIVATE_KEY,
            clock=lambda: 1_700_000_000,
            nonce_factory=lambda: b"\x11" * 32,
        )

    def test_creates_signed_payload(self):
        scheme = self._scheme()
        requirement = _requirement()

        payload = scheme.create_payment_payload(requirement)

        assert scheme.scheme == "exact"
        assert payload["signature"].startswith("0x")
        assert len(payload["signature"]) == 132
        authorization = payload["authorization"]
        assert authorization["from"] == Account.from_key(TEST_PRIVATE_KEY).address
        assert authorization["to"] == MERCHANT
        assert authorization["value"] == "10000"
        assert authorization["validAfter"] == str(1_700_000_000 - 600)
        assert authorization["validBefore"] == str(1_700_000_000 + 300)
        assert authorization["nonce"] == "0x" + "11" * 32

    def test_rejects_non_integer_amount(self):
        with pytest.raises(InvalidRequirementError):
            self._scheme().create_payment_payload(_requirement(amount="0.5"))

    def test_rejects_bad_pay_to(self):
        with pytest.raises(InvalidRequirementError):
            self._scheme().create_payment_payload(_requirement(pay_to="not-an-address"))

    def test_chain_ids(self):
        assert resolve_chain_id("eip155:8453") == 8453
        assert resolve_chain_id("base-sepolia") == 84532
        with pytest.raises(InvalidRequirementError):
            resolve_chain_id("solana:mainnet")

    def test_repr_hides_private_key(self):
        assert TEST_PRIVATE_KEY[2:] not in repr(self._scheme())

    def test_invalid_hex_key_is_a_config_error(self):
        with pytest.raises(ConfigError, match="not a valid"):
            ExactEvmScheme("0x" + "zz" * 32)


class TestMoneroWalletScheme:
    """Test transfers through monero-wallet-rpc."""

    def _scheme(self, response=None, error=None):
        session = Mock(spec=requests.Session)
        if error is not None:
            session.post.side_effect = error
        else:
            session.post.return_value = response
        return MoneroWalletScheme("http://127.0.0.1:18084/json_rpc", session=session), session

    def test_transfer_returns_proof(self):
        scheme, session = self._scheme(
            make_response(200, body={"result": {"tx_hash": "abc", "tx_key": "def"}})
        )
        requirement = _requirement(network="monero:mainnet", amount="1500000000", pay_to=XMR_ADDRESS)

        payload = scheme.create_payment_payload(requirement)

        assert payload == {"address": XMR_ADDRESS, "tx_id": "abc", "tx_key": "def"}
        rpc_body = session.post.call_args.kwargs["json"]
        assert rpc_body["method"] == "transfer"
        assert rpc_body["params"]["destinations"] == [
            {"amount": 1500000000, "address": XMR_ADDRESS}
        ]
        assert rpc_body["params"]["get_tx_key"] is True

    def test_wallet_error_is_an_execution_error(self):
        scheme, _ = self._scheme(
            make_response(200, body={"error": {"code": -17, "message": "not enough money"}})
        )

        with pytest.raises(WalletExecutionError) as excinfo:
            scheme.create_payment_payload(_requirement(network="monero:mainnet", pay_to=XMR_ADDRESS))
        assert excinfo.value.code == -17

    def test_non_object_reply_is_an_execution_error(self):
        scheme, _ = self._scheme(make_response(200, body=[]))

        with pytest.raises(WalletExecutionError, match="non-object"):
            scheme.create_payment_payload(
                _requirement(network="monero:mainnet", pay_to=XMR_ADDRESS)
            )

    def test_wallet_call_is_bounded_by_caller_timeout(self):
        scheme, session = self._scheme(
            make_response(200, body={"result": {"tx_hash": "abc", "tx_key": "def"}})
        )
        requirement = _requirement(network="monero:mainnet", pay_to=XMR_ADDRESS)

        scheme.create_payment_payload(requirement, timeout=12.5)
        assert session.post.call_args.kwargs["timeout"] == 12.5

        scheme.create_payment_payload(requirement, timeout=500)
        assert session.post.call_args.kwargs["timeout"] == 120

    def test_unreachable_wallet(self):
        scheme, _ = self._scheme(error=requests.ConnectionError("refused"))

        with pytest.raises(WalletUnreachableError):
            scheme.create_payment_payload(_requirement(network="monero:mainnet", pay_to=XMR_ADDRESS))

    def test_bad_amount_never_reaches_wallet(self):
        scheme, session = self._scheme(make_response(200, body={"result": {}}))

        with pytest.raises(InvalidRequirementError):
            scheme.create_payment_payload(
                _requirement(network="monero:mainnet", amount="lots", pay_to=XMR_ADDRESS)
            )
        session.post.assert_not_called()

    def test_fetch_primary_address(self):
        session = Mock(spec=requests.Session)
        session.post.return_value = make_response(200, body={"result": {"address": XMR_ADDRESS}})

        assert fetch_primary_address("http://wallet.test/json_rpc", session=session) == XMR_ADDRESS
        assert session.post.call_args.kwargs["json"]["method"] == "get_address"


class TestSchemeRegistry:
    """Test network pattern lookup."""

    def test_wildcard_lookup(self):
        registry = SchemeRegistry()
        evm = RecordingScheme()
        registry.register("eip155:*", evm)

        assert registry.lookup(_requirement(network="eip155:8453")) is evm
        assert registry.lookup(_requirement(network="monero:mainnet")) is None

    def test_exact_pattern_beats_glob(self):
        registry = SchemeRegistry()
        generic, specific = RecordingScheme(), RecordingScheme()
        registry.register("eip155:*", generic)
        registry.register("eip155:8453", specific)

        assert registry.lookup(_requirement(network="eip155:8453")) is specific
        assert registry.lookup(_requirement(network="eip155:1")) is generic

    def test_scheme_name_must_match(self):
        registry = SchemeRegistry()
        registry.register("eip155:*", RecordingScheme())
        requirement = PaymentRequirements.model_validate({**requirement_dict(), "scheme": "upto"})

        assert registry.lookup(requirement) is None

    def test_duplicate_pattern_rejected(self):
        registry = SchemeRegistry()
        registry.register("eip155:*", RecordingScheme())

        with pytest.raises(ValueError):
            registry.register("EIP155:*", RecordingScheme())
