"""Unit tests for entropy.core.identity."""

import stat
from unittest.mock import Mock

import pytest
import requests
from eth_account import Account

from conftest import TEST_PRIVATE_KEY, make_response
from entropy.core.environment import parse_env_file
from entropy.core.errors import ConfigError, IdentityError
from entropy.core.identity import (
    DOMAIN_EVM,
    DOMAIN_XMR,
    CredentialStore,
    IdentityResolver,
    derive_monero_id,
)

XMR_ADDRESS = "44AFFq5kSiGBoZ4NMDwYtN18obc8AemS33DBLWs3H7otXft3XjrpDtQGv7SqSsaBYBb98uNbr2VBBEt7f2wfn3RVGQBEP3A"
EVM_ADDRESS = Account.from_key(TEST_PRIVATE_KEY).address


@pytest.fixture
def store(tmp_path):
    return CredentialStore(tmp_path / "credentials.env", environ={})


@pytest.fixture
def resolver(store):
    return IdentityResolver(store, default_monero_rpc="http://127.0.0.1:18084/json_rpc")


def _link_xmr(store):
    session = Mock(spec=requests.Session)
    session.post.return_value = make_response(200, body={"result": {"address": XMR_ADDRESS}})
    return store.link_monero("http://127.0.0.1:18084/json_rpc", session=session)


def test_monero_id_is_stable_and_hides_address():
    first = derive_monero_id(XMR_ADDRESS)

    assert first == derive_monero_id(XMR_ADDRESS)
    assert first.startswith("xmr-")
    assert len(first) == len("xmr-") + 64
    assert XMR_ADDRESS not in first


def test_nothing_linked(resolver):
    with pytest.raises(IdentityError):
        resolver.primary_payer_id()
    with pytest.raises(IdentityError):
        resolver.build_schemes()
    assert resolver.active_identities() == frozenset()
    assert resolver.display_id() == "0xUNREGISTERED"


def test_evm_identity_is_primary(store, resolver):
    _link_xmr(store)
    store.link_evm(TEST_PRIVATE_KEY[2:])

    assert resolver.primary_payer_id() == EVM_ADDRESS
    domains = {identity.domain for identity in resolver.active_identities()}
    assert domains == {DOMAIN_EVM, DOMAIN_XMR}


def test_monero_only_uses_derived_id(store, resolver):
    _link_xmr(store)

    assert resolver.primary_payer_id() == derive_monero_id(XMR_ADDRESS)


def test_build_schemes_registers_one_per_domain(store, resolver):
    _link_xmr(store)
    store.link_evm(TEST_PRIVATE_KEY)

    payer_id, registry = resolver.build_schemes()

    assert payer_id == EVM_ADDRESS
    assert registry.patterns() == ["eip155:*", "monero:*"]


def test_credentials_file_is_private(store):
    store.link_evm(TEST_PRIVATE_KEY)

    mode = stat.S_IMODE(store.path.stat().st_mode)
    assert mode == 0o600
    assert parse_env_file(store.path)["ENTROPY_EVM_ADDRESS"] == EVM_ADDRESS


def test_identity_repr_never_shows_credentials(store, resolver):
    store.link_evm(TEST_PRIVATE_KEY)

    for identity in resolver.active_identities():
        assert "ENTROPY_EVM_PRIVATE_KEY" not in repr(identity)
        assert TEST_PRIVATE_KEY not in repr(identity)


def test_environment_overrides_file(tmp_path):
    store = CredentialStore(
        tmp_path / "credentials.env", environ={"ENTROPY_EVM_PRIVATE_KEY": TEST_PRIVATE_KEY}
    )
    resolver = IdentityResolver(store, default_monero_rpc="http://127.0.0.1:18084/json_rpc")

    assert resolver.primary_payer_id() == EVM_ADDRESS


def test_unlink(store, resolver):
    store.link_evm(TEST_PRIVATE_KEY)
    store.unlink(DOMAIN_EVM)

    with pytest.raises(IdentityError):
        resolver.primary_payer_id()


def test_invalid_private_key(store):
    with pytest.raises(ConfigError):
        store.link_evm("0x1234")
