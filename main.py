#!/usr/bin/env python3
"""
AuditForge: Smart Contract Security Audit Aggregator

Main entry point for the CLI interface.
"""

import argparse
import asyncio
import logging
import sys

from rich.logging import RichHandler

from cli.main import AuditForgeCLI
from auditforge.config_manager import ConfigManager
from auditforge.models import LANGUAGES


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # The SDK clients are chatty at DEBUG
    for noisy in ('httpx', 'httpcore', 'openai', 'urllib3'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auditforge",
        description="AuditForge: Smart Contract Security Audit Aggregator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  auditforge audit contracts/Staking.sol
  auditforge audit programs/vault.rs --format markdown -o reports/vault.md
  auditforge fetch https://etherscan.io/address/0xdAC17F958D2ee523a2206206994597C13D831ec7 --audit
  auditforge fix contracts/Staking.sol -o contracts/Staking.fixed.sol
  auditforge chat "audit this please" --file contracts/Staking.sol
        """
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose (DEBUG) logging')
    parser.add_argument('--config', default="~/.auditforge/config.yaml", help='Configuration file')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    audit_parser = subparsers.add_parser('audit', help='Audit a Solidity or Rust contract file')
    audit_parser.add_argument('contract', help='Path to the contract source file')
    audit_parser.add_argument('--language', choices=LANGUAGES, help='Contract language (default: from file extension)')
    audit_parser.add_argument('--name', help='Contract name (default: file name)')
    audit_parser.add_argument('--format', choices=['display', 'json', 'markdown'], default='display', help='Output format')
    audit_parser.add_argument('--output', '-o', help='Write the report to this path')

    fetch_parser = subparsers.add_parser('fetch', help='Fetch a verified contract from a block explorer')
    fetch_parser.add_argument('target', help='Contract address or explorer URL')
    fetch_parser.add_argument('--chain', help='Network (ethereum, goerli, sepolia, bsc, polygon, arbitrum, optimism, base)')
    fetch_parser.add_argument('--audit', action='store_true', help='Audit the fetched source')
    fetch_parser.add_argument('--output', '-o', help='Save the fetched source to this path')

    fix_parser = subparsers.add_parser('fix', help='Generate corrected code for critical/high findings')
    fix_parser.add_argument('contract', help='Path to the contract source file')
    fix_parser.add_argument('--language', choices=LANGUAGES, help='Contract language (default: from file extension)')
    fix_parser.add_argument('--finding', help='Fix only the finding with this title')
    fix_parser.add_argument('--output', '-o', help='Write the corrected contract to this path')

    chat_parser = subparsers.add_parser('chat', help='Ask the audit assistant')
    chat_parser.add_argument('message', help='Your message (may contain a contract address)')
    chat_parser.add_argument('--file', help='Attach a contract source file')
    chat_parser.add_argument('--chain', help='Network for contract addresses')

    history_parser = subparsers.add_parser('history', help='Show recent audits')
    history_parser.add_argument('--limit', type=int, default=10, help='Number of audits to show')

    config_parser = subparsers.add_parser('config', help='Show or change configuration')
    config_parser.add_argument('--show', action='store_true', help='Show current configuration')
    config_parser.add_argument('--set', action='append', metavar='KEY=VALUE', help='Set a configuration value')

    subparsers.add_parser('version', help='Show version information')
    return parser


def main(argv=None) -> int:
    """Main entry point for AuditForge CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config_manager = ConfigManager(args.config)
    setup_logging('DEBUG' if args.verbose else config_manager.config.log_level)

    cli = AuditForgeCLI(config_manager=config_manager)

    try:
        if args.command == 'audit':
            return asyncio.run(cli.run_audit(args.contract, args.language, args.name, args.format, args.output))
        elif args.command == 'fetch':
            return asyncio.run(cli.run_fetch(args.target, args.chain, args.audit, args.output))
        elif args.command == 'fix':
            return asyncio.run(cli.run_fix(args.contract, args.language, args.finding, args.output))
        elif args.command == 'chat':
            return asyncio.run(cli.run_chat(args.message, args.file, args.chain))
        elif args.command == 'history':
            return cli.show_history(args.limit)
        elif args.command == 'config':
            return cli.run_config(args.show, args.set)
        elif args.command == 'version':
            cli.show_version()
            return 0
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 1
    except Exception as e:
        print(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
