"""End-to-end tests for the argparse front end."""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from conftest import make_response
from entropy.cli import build_parser, run_cli
from entropy.core.context import EntropyContext
from entropy.core.registry import PENDING_IP


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def context(config, session):
    return EntropyContext(config, session=session, environ={})


def _run(context, *argv):
    return run_cli(list(argv), context_factory=lambda **_: context)


def test_ls_without_identity_is_offline(context, make_lease, capsys):
    context.registry.create(make_lease())

    assert _run(context, "ls") == 0

    out = capsys.readouterr().out
    assert "Offline Mode" in out
    assert "web-prod" in out
    assert "UNKNOWN" in out


def test_ls_json(context, make_lease, capsys):
    context.registry.create(make_lease())

    assert _run(context, "--json", "ls") == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["stale"] is True
    assert payload["leases"][0]["alias"] == "web-prod"


def test_rm_unknown_alias_fails(context):
    assert _run(context, "rm", "ghost") == 1


def test_rm_without_identity_needs_force(context, make_lease):
    context.registry.create(make_lease())

    assert _run(context, "rm", "web-prod") == 1
    assert context.registry.find("web-prod")

    assert _run(context, "rm", "web-prod", "--force") == 0
    assert context.registry.list_all() == []


def test_webhook_requires_identifier(context):
    assert _run(context, "notify", "-m", "webhook") == 1


def test_stats_is_public(context, session, capsys):
    session.get.return_value = make_response(
        200, body={"status": "ok", "active_vms": 4, "cpu_usage": 12.5, "uptime": 3600}
    )

    assert _run(context, "stats") == 0

    assert "ACTIVE_VMS:  4" in capsys.readouterr().out


def test_pay_flag_becomes_override(context, session):
    session.get.return_value = make_response(200, body={"status": "ok"})
    seen = {}

    def factory(**kwargs):
        seen.update(kwargs)
        return context

    run_cli(["--pay", "xmr", "--set", "ENTROPY_SYNC_INTERVAL_SECONDS=5", "stats"], context_factory=factory)

    assert seen["overrides"] == {"ENTROPY_SYNC_INTERVAL_SECONDS": "5", "ENTROPY_PAY_METHOD": "xmr"}


def test_set_requires_key_value():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--set", "NOPE", "ls"])


def test_ssh_looks_lease_up_by_alias(context, make_lease):
    context.registry.create(make_lease(ssh_key_path=""))

    with patch("entropy.cli.subprocess.run", return_value=Mock(returncode=3)) as run:
        assert _run(context, "ssh", "web-prod", "uptime") == 3

    argv = run.call_args.args[0]
    assert argv[0] == "ssh"
    assert "root@203.0.113.10" in argv
    assert argv[-1] == "uptime"


def test_ssh_to_allocating_lease_fails(context, make_lease):
    context.registry.create(make_lease(ip=PENDING_IP))

    with patch("entropy.cli.subprocess.run") as run:
        assert _run(context, "ssh", "web-prod") == 1
    run.assert_not_called()


def test_ssh_unknown_alias_fails(context):
    with patch("entropy.cli.subprocess.run") as run:
        assert _run(context, "ssh", "ghost") == 1
    run.assert_not_called()
