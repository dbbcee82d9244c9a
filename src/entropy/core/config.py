"""
Configuration objects and helpers for the entropy client.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .environment import build_environment
from .errors import ConfigError

__all__ = [
    "ConfigError",
    "DEFAULT_BASE_URL",
    "DEFAULT_MONERO_RPC",
    "EntropyConfig",
    "EntropyParameters",
    "FALLBACK_POLICIES",
    "load_config",
]

DEFAULT_BASE_URL = "https://api.x402systems.online"
DEFAULT_MONERO_RPC = "http://127.0.0.1:18084/json_rpc"
FALLBACK_POLICIES = ("first", "strict")

_PARAMETER_TO_ENV_KEY = {
    "base_url": "ENTROPY_BASE_URL",
    "config_dir": "ENTROPY_CONFIG_DIR",
    "db_path": "ENTROPY_DB_PATH",
    "credentials_file": "ENTROPY_CREDENTIALS_FILE",
    "pay_method": "ENTROPY_PAY_METHOD",
    "payment_fallback": "ENTROPY_PAYMENT_FALLBACK",
    "request_timeout_seconds": "ENTROPY_REQUEST_TIMEOUT_SECONDS",
    "sync_interval_seconds": "ENTROPY_SYNC_INTERVAL_SECONDS",
    "monero_rpc_url": "ENTROPY_MONERO_RPC_URL",
}


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class EntropyParameters:
    """
    Explicit parameter bundle for constructing :class:`EntropyConfig`.

    Values left as ``None`` fall through to the environment and .env file.
    """

    base_url: Optional[str] = None
    config_dir: Optional[str] = None
    db_path: Optional[str] = None
    credentials_file: Optional[str] = None
    pay_method: Optional[str] = None
    payment_fallback: Optional[str] = None
    request_timeout_seconds: Optional[int | str] = None
    sync_interval_seconds: Optional[int | str] = None
    monero_rpc_url: Optional[str] = None

    def as_overrides(self) -> Dict[str, str]:
        overrides: Dict[str, str] = {}
        for field_name, env_key in _PARAMETER_TO_ENV_KEY.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            overrides[env_key] = _stringify(value)
        return overrides


def _positive_int(values: Mapping[str, str], key: str, default: str) -> int:
    raw = values.get(key, default)
    try:
        parsed = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer, got '{raw}'") from exc
    if parsed <= 0:
        raise ConfigError(f"{key} must be greater than zero")
    return parsed


def _normalize_url(raw_url: str, field_name: str) -> str:
    value = raw_url.strip().rstrip("/")
    if not value.startswith(("http://", "https://")):
        raise ConfigError(f"{field_name} must be an http(s) URL, got '{raw_url}'")
    return value


@dataclass(frozen=True)
class EntropyConfig:
    base_url: str
    config_dir: Path
    db_path: Path
    credentials_file: Path
    pay_method: str = "usdc"
    payment_fallback: str = "first"
    request_timeout_seconds: int = 150
    sync_interval_seconds: int = 20
    monero_rpc_url: str = DEFAULT_MONERO_RPC
    user_agent: str = "Entropy-CLI/1.0"

    @property
    def keys_dir(self) -> Path:
        return self.config_dir / "keys"

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "EntropyConfig":
        base_url = _normalize_url(
            values.get("ENTROPY_BASE_URL", DEFAULT_BASE_URL), "ENTROPY_BASE_URL"
        )

        config_dir = Path(
            values.get("ENTROPY_CONFIG_DIR", "~/.config/entropy")
        ).expanduser()
        db_path = Path(
            values.get("ENTROPY_DB_PATH", str(config_dir / "entropy.db"))
        ).expanduser()
        credentials_file = Path(
            values.get("ENTROPY_CREDENTIALS_FILE", str(config_dir / "credentials.env"))
        ).expanduser()

        pay_method = values.get("ENTROPY_PAY_METHOD", "usdc").strip().lower()
        if not pay_method:
            raise ConfigError("ENTROPY_PAY_METHOD must not be empty")

        payment_fallback = values.get("ENTROPY_PAYMENT_FALLBACK", "first").strip().lower()
        if payment_fallback not in FALLBACK_POLICIES:
            raise ConfigError(
                f"ENTROPY_PAYMENT_FALLBACK must be one of {', '.join(FALLBACK_POLICIES)}, "
                f"got '{payment_fallback}'"
            )

        request_timeout_seconds = _positive_int(
            values, "ENTROPY_REQUEST_TIMEOUT_SECONDS", "150"
        )
        sync_interval_seconds = _positive_int(
            values, "ENTROPY_SYNC_INTERVAL_SECONDS", "20"
        )
        monero_rpc_url = _normalize_url(
            values.get("ENTROPY_MONERO_RPC_URL", DEFAULT_MONERO_RPC),
            "ENTROPY_MONERO_RPC_URL",
        )

        return cls(
            base_url=base_url,
            config_dir=config_dir,
            db_path=db_path,
            credentials_file=credentials_file,
            pay_method=pay_method,
            payment_fallback=payment_fallback,
            request_timeout_seconds=request_timeout_seconds,
            sync_interval_seconds=sync_interval_seconds,
            monero_rpc_url=monero_rpc_url,
        )


def load_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[EntropyParameters] = None,
) -> EntropyConfig:
    """
    Build an :class:`EntropyConfig` from the process environment.

    The configuration can be provided through environment variables, a
    ``.env`` file, explicit overrides, or any combination of the three.
    ``parameters`` win over ``overrides``.
    """
    merged_overrides = dict(overrides or {})
    if parameters is not None:
        merged_overrides.update(parameters.as_overrides())

    environment = build_environment(
        env_file=env_file,
        base=base,
        overrides=merged_overrides,
    )
    return EntropyConfig.from_mapping(environment.variables)
