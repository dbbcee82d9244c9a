"""
Layered ``KEY=VALUE`` settings.

Settings come from three places, weakest first: a .env file, the process
environment and explicit overrides. The same file format holds the linked
wallet credentials, which is why this module can also write it back.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

_QUOTES = ("'", '"')


def _split_line(raw_line: str) -> Optional[Tuple[str, str]]:
    line = raw_line.strip()
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    key, value = (part.strip() for part in line.split("=", 1))
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTES:
        value = value[1:-1]
    return (key, value) if key else None


def parse_env_file(path: Path) -> Dict[str, str]:
    """Read ``path``; a missing file reads as empty."""
    if not path.is_file():
        return {}
    pairs = (_split_line(line) for line in path.read_text(encoding="utf-8").splitlines())
    return dict(pair for pair in pairs if pair is not None)


def write_env_file(path: Path, values: Mapping[str, str], *, mode: int = 0o600) -> None:
    """
    Merge ``values`` into the file at ``path``.

    An empty value deletes its key. The file is (re)created with ``mode``
    because it holds private keys.
    """
    merged = parse_env_file(path)
    merged.update(values)
    body = "".join(f"{key}={value}\n" for key, value in sorted(merged.items()) if value != "")

    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(body)
    os.chmod(path, mode)


@dataclass(frozen=True)
class EntropyEnvironment:
    variables: Mapping[str, str]

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.variables.get(key, default)


def build_environment(
    *,
    env_file: Optional[str] = ".env",
    base: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, str]] = None,
) -> EntropyEnvironment:
    """
    Layer ``env_file`` under ``base`` under ``overrides``.

    ``base`` defaults to :data:`os.environ`; pass an empty mapping to ignore
    the process environment. ``env_file=None`` skips the file.
    """
    layers = [
        parse_env_file(Path(env_file)) if env_file is not None else {},
        os.environ if base is None else base,
        overrides or {},
    ]
    merged: Dict[str, str] = {}
    for layer in layers:
        merged.update(layer)
    return EntropyEnvironment(variables=merged)
