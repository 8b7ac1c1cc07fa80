#!/usr/bin/env python3
"""
GTA (Grant Temporary Access) - temporary IAM roles on GCP

Roles granted with `grant` are bound with an expiry condition and revoked
again when the program receives an interrupt signal.

Usage examples
--------------
# Grant roles to the current user (revoked on Ctrl+C)
python gta.py grant roles/viewer roles/editor --project=my-project

# Grant roles to a specific user for 30 minutes
python gta.py grant viewer --project=my-project --user=user@example.com --ttl=30m

# Preview changes without applying them
python gta.py grant roles/viewer --project=my-project --dry-run

# List temporary bindings, optionally for one user
python gta.py list --project=my-project --user=user@example.com

# Clean up temporary bindings (preview first)
python gta.py clean --project=my-project --dry-run
python gta.py clean --project=my-project
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Any, Dict, List, Optional

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError

import gta_config
import gta_logging
from gcp_iam import GCPOptions, GCPProvider
from gta_errors import GTAError

logger = logging.getLogger("gta.cli")

DEFAULT_TTL = "1h"


# ---------------------------- helpers ----------------------------------------

def make_provider(dry_run: bool) -> GCPProvider:
    return GCPProvider(dry_run=dry_run)


def wait_for_interrupt(stop: Optional[threading.Event] = None, poll: float = 0.5) -> int:
    """Block until SIGINT or SIGTERM arrives (or stop is set). Returns the signal number, 0 if none."""
    stop = stop or threading.Event()
    received: List[int] = []

    def _on_signal(signum, frame):
        received.append(signum)
        stop.set()

    previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        while not stop.wait(poll):
            pass
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    return received[0] if received else 0


def _options(args: argparse.Namespace) -> GCPOptions:
    return GCPOptions(
        project=args.project,
        roles=list(getattr(args, "roles", []) or []),
        user=args.user or "",
        ttl=getattr(args, "ttl", None) or gta_config.parse_duration(DEFAULT_TTL),
    )


def resolve_args(parser: argparse.ArgumentParser, args: argparse.Namespace,
                 config: Dict[str, Any]) -> argparse.Namespace:
    """Fill unset flags from the config, then validate them."""
    for key in ("project", "user"):
        if getattr(args, key, None) is None:
            setattr(args, key, config.get(key))
    if args.verbosity is None:
        args.verbosity = config.get("verbosity", "info")
    if args.format is None:
        args.format = config.get("format", "plain")
    if not args.quiet:
        args.quiet = bool(config.get("quiet", False))

    if not args.project:
        parser.error("the following arguments are required: --project/-p")

    if hasattr(args, "ttl"):
        try:
            args.ttl = gta_config.parse_duration(args.ttl or config.get("ttl") or DEFAULT_TTL)
        except ValueError as e:
            parser.error(str(e))
        if args.ttl.total_seconds() <= 0:
            parser.error("--ttl must be positive")
    return args


# ---------------------------- CLI commands -----------------------------------

def cmd_grant(args: argparse.Namespace) -> int:
    if args.dry_run:
        logger.info("Running in dry-run mode - no changes will be made")

    provider = make_provider(args.dry_run)
    opts = _options(args)
    try:
        provider.grant(opts)
    except KeyboardInterrupt:
        # Ctrl+C mid-loop: undo what this call already granted
        logger.warning("Interrupted while granting, revoking roles granted so far...")
        provider.revoke(opts)
        raise

    if args.dry_run:
        return 0

    logger.info("Waiting for interrupt signal to revoke roles (Ctrl+C to exit)...")
    signum = wait_for_interrupt()
    logger.debug("Received signal %s", signum)

    logger.info("Revoking roles...")
    provider.revoke(opts)
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    provider = make_provider(False)
    provider.list_temporary_bindings(_options(args))
    return 0


def cmd_clean(args: argparse.Namespace) -> int:
    if args.dry_run:
        logger.info("Running in dry-run mode - no changes will be made")

    provider = make_provider(args.dry_run)
    provider.clean_temporary_bindings(_options(args))
    return 0


# ---------------------------- main -------------------------------------------

def _add_global_options(p: argparse.ArgumentParser, default: Any = None) -> None:
    p.add_argument("--config", default=default, help="Config file (default is $HOME/.gta.yaml)")
    p.add_argument("-v", "--verbosity", default=default, help="Log level (debug, info, warn, error)")
    p.add_argument("--format", default=default, help="Log format (plain, json)")
    p.add_argument("-q", "--quiet", action="store_true",
                   default=False if default is None else default, help="Quiet mode, only show errors")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="gta",
        description="Grant Temporary Access - manage temporary IAM roles on GCP",
    )
    _add_global_options(p)

    # global options are accepted after the subcommand too
    common = argparse.ArgumentParser(add_help=False)
    _add_global_options(common, default=argparse.SUPPRESS)

    sub = p.add_subparsers(dest="cmd", required=True)

    sg = sub.add_parser("grant", parents=[common], help="Grant temporary IAM roles (revoked on interrupt)")
    sg.add_argument("roles", nargs="+", help="Roles to grant, e.g. roles/viewer or viewer")
    sg.add_argument("-p", "--project", default=None, help="Project ID (required)")
    sg.add_argument("-u", "--user", default=None,
                    help="User or service account to grant the role to (defaults to current user)")
    sg.add_argument("-t", "--ttl", default=None, help="Time-to-live for the granted permission (default 1h)")
    sg.add_argument("-d", "--dry-run", action="store_true", help="Preview changes without applying them")
    sg.set_defaults(func=cmd_grant)

    sl = sub.add_parser("list", parents=[common], help="List temporary IAM role bindings")
    sl.add_argument("-p", "--project", default=None, help="Project ID")
    sl.add_argument("-u", "--user", default=None, help="Filter bindings by user")
    sl.set_defaults(func=cmd_list)

    sc = sub.add_parser("clean", parents=[common], help="Clean up temporary IAM role bindings")
    sc.add_argument("-p", "--project", default=None, help="Project ID")
    sc.add_argument("-u", "--user", default=None, help="Filter bindings by user")
    sc.add_argument("-d", "--dry-run", action="store_true",
                    help="Preview bindings that would be cleaned without making any changes")
    sc.set_defaults(func=cmd_clean)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = gta_config.load_config(args.config)
        resolve_args(parser, args, config)
        gta_logging.setup_logging(args.verbosity, args.format, quiet=args.quiet)
    except (ValueError, GTAError) as e:
        parser.error(str(e))

    logger.debug("Starting command execution: %s", args.cmd)
    logger.debug("Arguments: %s", vars(args))

    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.warning("Aborted by user.")
        return 130
    except (GTAError, GoogleAPIError, GoogleAuthError) as e:
        logger.error("Error: %s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
