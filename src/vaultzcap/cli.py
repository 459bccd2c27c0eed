#!/usr/bin/env python3
"""
vaultzcap CLI - Issue and inspect vault capabilities.

Commands:
  vaultzcap root <resource>              Mint the root capability of a resource
  vaultzcap delegate <resource> <vm>     Delegate read/write to a verification method
  vaultzcap show <key>                   Print a stored capability
  vaultzcap keygen                       Generate an invoker key (did:key)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .capability import parse_capability
from .defaults import DB_PATH, LOG_LEVEL
from .didkey import create_did_key
from .errors import ZcapError
from .service import ZcapService
from .store import SQLiteStoreProvider


def get_service(args: argparse.Namespace) -> ZcapService:
    """Build a service over the SQLite store selected by ``--db``."""
    return ZcapService(store_provider=SQLiteStoreProvider(args.db))


def print_capability(data: bytes) -> None:
    print(json.dumps(parse_capability(data).to_dict(), indent=2))


# ============================================================================
# Commands
# ============================================================================

def cmd_root(args: argparse.Namespace) -> int:
    """Mint a root capability."""
    service = get_service(args)
    print_capability(asyncio.run(service.create_root(args.resource)))
    return 0


def cmd_delegate(args: argparse.Namespace) -> int:
    """Mint a delegated capability."""
    service = get_service(args)
    print_capability(asyncio.run(service.create_delegated(args.resource, args.invoker)))
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    """Print a stored capability."""
    service = get_service(args)
    capability = asyncio.run(service.get_capability(args.key))
    print(json.dumps(capability.to_dict(), indent=2))
    return 0


def cmd_keygen(args: argparse.Namespace) -> int:
    """Generate an Ed25519 invoker key."""
    private_key = Ed25519PrivateKey.generate()
    did, verification_method = create_did_key(private_key.public_key().public_bytes_raw())
    print(json.dumps({
        "did": did,
        "verificationMethod": verification_method,
        "privateKey": private_key.private_bytes_raw().hex(),
    }, indent=2))
    return 0


# ============================================================================
# Main
# ============================================================================

def app() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog='vaultzcap',
        description='Issue and inspect vault capabilities',
    )
    parser.add_argument('--db', default=str(DB_PATH), help='SQLite capability store path')
    parser.add_argument('--log-level', default=LOG_LEVEL, help='Logging level')

    subparsers = parser.add_subparsers(dest='command', required=True)

    root_parser = subparsers.add_parser('root', help='Mint the root capability of a resource')
    root_parser.add_argument('resource', help='Resource identifier')

    delegate_parser = subparsers.add_parser('delegate', help='Delegate access to an invoker')
    delegate_parser.add_argument('resource', help='Resource identifier')
    delegate_parser.add_argument('invoker', help='Invoker verification method (did:key URL)')

    show_parser = subparsers.add_parser('show', help='Print a stored capability')
    show_parser.add_argument('key', help='Capability id or resource identifier')

    subparsers.add_parser('keygen', help='Generate an invoker key')

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = app()
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format='%(levelname)s %(name)s: %(message)s')

    commands = {
        'root': cmd_root,
        'delegate': cmd_delegate,
        'show': cmd_show,
        'keygen': cmd_keygen,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return handler(args)
    except ZcapError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
