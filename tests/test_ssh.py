"""Unit tests for SSH glue and timestamp helpers."""

import subprocess
from datetime import timezone
from unittest.mock import patch

import pytest

from entropy.core.registry import PENDING_IP
from entropy.core.ssh import SSHError, build_ssh_command, default_key, read_public_key
from entropy.core.timefmt import format_duration, parse_timestamp


def test_ssh_command_uses_private_half_of_key(make_lease):
    args = build_ssh_command(make_lease(), ["uptime", "-p"])

    assert args[:3] == ["ssh", "-i", "/home/user/.config/entropy/keys/id_ed25519"]
    assert "root@203.0.113.10" in args
    assert args[-1] == "uptime -p"


def test_ssh_refuses_pending_address(make_lease):
    with pytest.raises(SSHError, match="still being allocated"):
        build_ssh_command(make_lease(ip=PENDING_IP))


def test_default_key_reuses_existing_pair(tmp_path):
    (tmp_path / "id_ed25519").write_text("private", encoding="utf-8")

    with patch("entropy.core.ssh.subprocess.run") as run:
        assert default_key(tmp_path) == tmp_path / "id_ed25519.pub"
    run.assert_not_called()


def test_default_key_generates_pair(tmp_path):
    keys = tmp_path / "keys"
    with patch("entropy.core.ssh.subprocess.run") as run:
        default_key(keys)

    command = run.call_args.args[0]
    assert command[:4] == ["ssh-keygen", "-q", "-t", "ed25519"]
    assert command[-1] == str(keys / "id_ed25519")


def test_default_key_reports_keygen_failure(tmp_path):
    error = subprocess.CalledProcessError(1, "ssh-keygen", stderr=b"no entropy")
    with patch("entropy.core.ssh.subprocess.run", side_effect=error):
        with pytest.raises(SSHError, match="no entropy"):
            default_key(tmp_path)


def test_empty_public_key(tmp_path):
    path = tmp_path / "id.pub"
    path.write_text("\n", encoding="utf-8")

    with pytest.raises(SSHError):
        read_public_key(path)


@pytest.mark.parametrize("seconds, expected", [
    (0, "0s"),
    (-5, "0s"),
    (59, "59s"),
    (300, "5m0s"),
    (3723, "1h2m3s"),
    (90000, "25h0m0s"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_parse_timestamp_with_offset():
    parsed = parse_timestamp("2026-01-01T14:00:00+02:00")

    assert parsed.tzinfo == timezone.utc
    assert parsed.hour == 12
