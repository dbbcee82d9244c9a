"""
Command-line interface for managing leases on the x402 orchestrator.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import subprocess
import sys
from typing import Any, Callable, Dict, Iterable, Optional, Sequence, Tuple

from . import __version__
from .api import (
    destroy_lease,
    fetch_options,
    fetch_stats,
    find_lease,
    link_evm,
    link_monero,
    list_leases,
    open_context,
    provision_lease,
    register_notifications,
    renew_lease,
)
from .core.context import EntropyContext
from .core.errors import (
    ConfigError,
    EntropyError,
    IdentityError,
    LocalStoreError,
    ProtocolError,
    SettlementError,
    TransportError,
    WalletUnreachableError,
)
from .core.identity import derive_monero_id
from .core.ssh import build_ssh_command
from .dashboard import Dashboard
from .render import format_leases, format_table


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _env_override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _collect_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, value in pairs:
        overrides[key] = value
    return overrides


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _report(exc: EntropyError) -> int:
    """Log ``exc`` with a hint matched to its kind and return the exit code."""
    if isinstance(exc, IdentityError):
        logging.error("%s", exc)
    elif isinstance(exc, WalletUnreachableError):
        logging.error("Wallet unreachable: %s. Is monero-wallet-rpc running with the wallet open?", exc)
    elif isinstance(exc, SettlementError):
        logging.error("Payment failed: %s. Check your balance and try again.", exc)
    elif isinstance(exc, LocalStoreError) and exc.remote_succeeded:
        logging.error("%s", exc)
        logging.error("The orchestrator already acted; record the details above manually.")
    elif isinstance(exc, LocalStoreError):
        logging.error("Local registry error: %s", exc)
    elif isinstance(exc, TransportError):
        logging.error("Orchestrator unreachable: %s", exc)
    elif isinstance(exc, ProtocolError):
        logging.error("%s", exc)
    elif isinstance(exc, ConfigError):
        logging.error("Invalid configuration: %s", exc)
    else:
        logging.error("%s", exc)
    return 1


def _cmd_login_evm(context: EntropyContext, args: argparse.Namespace) -> int:
    private_key = getpass.getpass("Enter Private Key (Will not be displayed): ")
    address = link_evm(context, private_key)
    print("EVM identity linked successfully.")
    print(f"Management Address: {address}")
    return 0


def _cmd_login_xmr(context: EntropyContext, args: argparse.Namespace) -> int:
    rpc_url = args.rpc or context.config.monero_rpc_url
    logging.info("Connecting to Monero wallet RPC at %s", rpc_url)
    address = link_monero(context, rpc_url)
    print("Monero wallet linked successfully.")
    print(f"Primary Address: {address}")
    print(f"Entropy Management ID: {derive_monero_id(address)}")
    return 0


def _cmd_up(context: EntropyContext, args: argparse.Namespace) -> int:
    if not args.json:
        logging.info("Initializing provisioning for %s tier (%s)", args.tier, args.duration)
    vm, lease = provision_lease(
        context,
        tier=args.tier,
        region=args.region,
        duration=args.duration,
        distro=args.distro,
        alias=args.alias,
        key_path=args.key,
    )
    if args.json:
        _print_json(dict(vm.raw))
        return 0
    print("PROVISION_SUCCESSFUL")
    print(f"ID:       {vm.provider_id}")
    print(f"NAME:     {vm.name}")
    print(f"ALIAS:    {lease.alias}")
    print(f"IP:       {lease.ip}")
    print(f"PASSWORD: {vm.password}")
    print(f"EXPIRES:  {vm.expires_at.strftime('%a, %d %b %Y %H:%M:%S %Z')}")
    print(f"\nRun 'entropy ssh {lease.alias}' to connect once the IP is live.")
    return 0


def _cmd_ls(context: EntropyContext, args: argparse.Namespace) -> int:
    result = list_leases(context)
    if args.json:
        _print_json(
            {
                "stale": result.stale,
                "error": str(result.error) if result.error else None,
                "leases": [view.as_dict() for view in result.views],
            }
        )
        return 0
    if result.stale:
        print(f"Offline Mode: {result.error}")
    print("[ X402_FLEET_MANIFEST ]")
    print(format_leases(result.views))
    print(f"\nTotal tracked nodes: {len(result.views)}")
    return 0


def _cmd_renew(context: EntropyContext, args: argparse.Namespace) -> int:
    result, lease = renew_lease(context, args.alias, args.duration)
    if args.json:
        _print_json(
            {
                "status": "success",
                "action": "renew",
                "alias": lease.alias,
                "duration": args.duration,
                "new_expiry": result.new_expiry.isoformat() if result.new_expiry else None,
                "message": result.message,
            }
        )
        return 0
    print(result.message or "Lease extended.")
    print(f"   New expiry: {lease.expires_at.isoformat()}")
    return 0


def _cmd_rm(context: EntropyContext, args: argparse.Namespace) -> int:
    lease = destroy_lease(context, args.alias, force=args.force)
    if args.json:
        _print_json({"status": "success", "action": "rm", "alias": lease.alias})
        return 0
    print(f"{lease.alias} destroyed and removed from registry.")
    return 0


def _cmd_notify(context: EntropyContext, args: argparse.Namespace) -> int:
    result = register_notifications(context, args.method, args.id)
    if args.json:
        _print_json(result)
        return 0
    if args.method.lower() == "telegram":
        print("TELEGRAM_LINK_GENERATED")
        print(f"MAGIC_LINK: {result.get('link')}")
        print(f"INSTRUCTIONS: {result.get('instructions')}")
        print("\nNote: Alerts will not be active until you click 'Start' in the bot.")
    else:
        print(f"{args.method.upper()} alerts configured successfully.")
    return 0


def _cmd_options(context: EntropyContext, args: argparse.Namespace) -> int:
    options = fetch_options(context)
    if args.json:
        _print_json(options)
        return 0
    rows = []
    for name, info in sorted((options.get("tiers") or {}).items()):
        regions = info.get("Regions") or {}
        priced = ", ".join(
            f"{region} (${details.get('HourlyCost')})" for region, details in sorted(regions.items())
        )
        rows.append((name, info.get("CPU", ""), info.get("RAM", ""), info.get("Disk", ""), priced))
    print("[ AVAILABLE_HARDWARE_TIERS ]")
    print(format_table(("TIER", "CPU", "RAM", "DISK", "REGIONS (EST. HOURLY)"), rows))
    print(f"[ SUPPORTED_DISTROS ] {', '.join(map(str, options.get('distros') or []))}")
    print(f"[ GEO_REGIONS ] {', '.join(map(str, options.get('regions') or []))}")
    if options.get("note"):
        print(f"\nNOTE: {options['note']}")
    return 0


def _cmd_stats(context: EntropyContext, args: argparse.Namespace) -> int:
    stats = fetch_stats(context)
    if args.json:
        _print_json(stats)
        return 0
    print("[ X402_SYSTEM_TELEMETRY ]")
    print(f"STATUS:      {stats.get('status')}")
    print(f"ACTIVE_VMS:  {stats.get('active_vms')}")
    print(f"GATEWAY_CPU: {stats.get('cpu_usage')}%")
    print(f"UPTIME:      {stats.get('uptime')} seconds")
    return 0


def _run_ssh(context: EntropyContext, target: str, command: Sequence[str]) -> int:
    lease = find_lease(context, target)
    ssh_args = build_ssh_command(lease, command)
    if command:
        logging.info("Executing on %s: %s", lease.alias, " ".join(command))
    else:
        logging.info("Connecting to %s (%s) as root", lease.alias, lease.ip)
    try:
        completed = subprocess.run(ssh_args, check=False)
    except FileNotFoundError:
        logging.error("ssh client not found on PATH")
        return 1
    return completed.returncode


def _cmd_ssh(context: EntropyContext, args: argparse.Namespace) -> int:
    return _run_ssh(context, args.alias, args.remote_command)


def _cmd_dashboard(context: EntropyContext, args: argparse.Namespace) -> int:
    dashboard = Dashboard(context, provision=provision_lease, version=__version__)
    state = dashboard.run()
    if state.ssh_target:
        return _run_ssh(context, state.ssh_target, ())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="entropy",
        description="Provision and manage ephemeral VMs paid per request over x402",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing ENTROPY_* settings (default: .env)",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_env_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output responses as raw JSON",
    )
    parser.add_argument(
        "-p",
        "--pay",
        default=None,
        help="Preferred payment rail: usdc or xmr (default: ENTROPY_PAY_METHOD or usdc)",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    login = commands.add_parser("login", help="Link a wallet identity (EVM or Monero)")
    login_commands = login.add_subparsers(dest="login_command", metavar="RAIL", required=True)
    login_commands.add_parser("evm", help="Link an EVM wallet using a private key").set_defaults(
        handler=_cmd_login_evm
    )
    xmr = login_commands.add_parser("xmr", help="Link a Monero wallet via monero-wallet-rpc")
    xmr.add_argument("-u", "--rpc", default=None, help="Monero wallet RPC URL")
    xmr.set_defaults(handler=_cmd_login_xmr)

    up = commands.add_parser("up", help="Provision a new ephemeral VM")
    up.add_argument("-t", "--tier", default="eco-small", help="Hardware tier")
    up.add_argument("-d", "--distro", default="ubuntu-24.04", help="OS distro")
    up.add_argument("-r", "--region", default="nbg1", help="Region")
    up.add_argument("-l", "--duration", default="1h", help="Lease duration")
    up.add_argument("-k", "--key", default=None, help="Path to public SSH key")
    up.add_argument("-a", "--alias", default=None, help="Local nickname")
    up.set_defaults(handler=_cmd_up)

    commands.add_parser("ls", help="List leases with their live status").set_defaults(handler=_cmd_ls)

    renew = commands.add_parser("renew", help="Extend the lease of an active (or suspended) VM")
    renew.add_argument("alias")
    renew.add_argument("-l", "--duration", default="1h", help="Extension length")
    renew.set_defaults(handler=_cmd_renew)

    rm = commands.add_parser("rm", help="Immediately destroy a VM")
    rm.add_argument("alias")
    rm.add_argument(
        "--force",
        action="store_true",
        help="Remove the local record even if the remote teardown fails",
    )
    rm.set_defaults(handler=_cmd_rm)

    notify = commands.add_parser("notify", help="Configure VM expiry alerts (Telegram or webhook)")
    notify.add_argument("-m", "--method", default="telegram", help="telegram or webhook")
    notify.add_argument("-i", "--id", default="", help="Webhook URL (required for webhook)")
    notify.set_defaults(handler=_cmd_notify)

    commands.add_parser("options", help="List hardware tiers, regions and distros").set_defaults(
        handler=_cmd_options
    )
    commands.add_parser("stats", help="Check orchestrator health and capacity").set_defaults(
        handler=_cmd_stats
    )

    ssh = commands.add_parser("ssh", help="Connect to a VM or run a command on it")
    ssh.add_argument("alias")
    ssh.add_argument("remote_command", nargs=argparse.REMAINDER)
    ssh.set_defaults(handler=_cmd_ssh)

    commands.add_parser("dashboard", help="Open the interactive fleet dashboard").set_defaults(
        handler=_cmd_dashboard
    )
    return parser


def run_cli(
    argv: Sequence[str] | None = None,
    *,
    context_factory: Optional[Callable[..., EntropyContext]] = None,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    overrides: Dict[str, str] = _collect_overrides(args.set or ())
    if args.pay:
        overrides["ENTROPY_PAY_METHOD"] = args.pay

    handler = getattr(args, "handler", _cmd_dashboard)
    try:
        context = (context_factory or open_context)(env_file=args.env_file, overrides=overrides)
        return handler(context, args)
    except EntropyError as exc:
        return _report(exc)
    except KeyboardInterrupt:
        return 130


def main() -> None:
    sys.exit(run_cli())
