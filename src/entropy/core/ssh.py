"""
Glue to the system OpenSSH tools: key generation and connecting to a lease.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from .errors import EntropyError
from .registry import Lease

__all__ = [
    "SSHError",
    "build_ssh_command",
    "default_key",
    "private_key_path",
    "read_public_key",
]


class SSHError(EntropyError):
    """Key generation or key loading failed."""


def default_key(keys_dir: Path) -> Path:
    """
    Return the session's default public key, generating an ed25519 pair
    with ``ssh-keygen`` the first time.
    """
    keys_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    private_path = keys_dir / "id_ed25519"
    public_path = private_path.with_name(private_path.name + ".pub")
    if private_path.exists():
        return public_path

    try:
        subprocess.run(
            ["ssh-keygen", "-q", "-t", "ed25519", "-N", "", "-C", "entropy", "-f", str(private_path)],
            check=True,
            capture_output=True,
        )
    except FileNotFoundError as exc:
        raise SSHError("ssh-keygen not found; install OpenSSH or pass --key") from exc
    except subprocess.CalledProcessError as exc:
        raise SSHError(f"ssh-keygen failed: {exc.stderr.decode(errors='replace').strip()}") from exc

    logging.info("Generated new anonymous keypair: %s", public_path)
    return public_path


def read_public_key(path: Path) -> str:
    try:
        content = path.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise SSHError(f"Failed to read SSH key file [{path}]: {exc}") from exc
    if not content:
        raise SSHError(f"SSH key file [{path}] is empty")
    return content


def private_key_path(lease: Lease) -> str:
    path = lease.ssh_key_path
    if path.endswith(".pub"):
        return path[: -len(".pub")]
    return path


def build_ssh_command(lease: Lease, command: Optional[Sequence[str]] = None) -> List[str]:
    """
    Arguments for ``ssh`` into ``lease`` as root.

    Host keys are neither checked nor stored; leased hosts are ephemeral and
    their addresses get reused.
    """
    if lease.ip_pending:
        raise SSHError(
            f"IP for {lease.alias} is still being allocated by the orchestrator. "
            "Try again in 10 seconds."
        )
    args = ["ssh"]
    if lease.ssh_key_path:
        args += ["-i", private_key_path(lease)]
    args += [
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "LogLevel=ERROR",
        f"root@{lease.ip}",
    ]
    if command:
        args.append(" ".join(command))
    return args
