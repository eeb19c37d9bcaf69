#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Command line administration of the schema ledger.

Usage:
    schema-ledger install
    schema-ledger --config ledger.yaml migrate batch.json
    schema-ledger status
    schema-ledger rollback-to 002

Every subcommand returns 0 on success and 1 when a MigrationError is raised
or the batch file cannot be read.

`lock` is an administrative freeze: each invocation is its own lock session,
so the lease it takes blocks every later `migrate` until `unlock` runs or the
lease expires.
"""
import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path

from schemaledger.config import LOG_FORMAT, configure_logger, load_config, normalize_database_url
from schemaledger.exceptions import MigrationError
from schemaledger.service import MigrationService


def read_batch_file(path) -> dict:
    """Load a batch document ``{"versioned": [...], "repeatable": [...]}``."""
    with open(path, 'r', encoding='utf-8') as fp:
        batch = json.load(fp)
    if not isinstance(batch, dict):
        raise ValueError(f"Batch file must contain a JSON object: {path}")
    return batch


def read_script(args) -> str:
    if args.file:
        return Path(args.file).read_text(encoding='utf-8')
    return args.script


async def cmd_install(service, args):
    await service.install()
    print("✓ Ledger tables installed")


async def cmd_uninstall(service, args):
    if not args.yes:
        print("✗ Refusing to uninstall without --yes (all migration history is deleted)",
              file=sys.stderr)
        return 1
    await service.uninstall(confirm=True)
    print("✓ Ledger tables dropped")


async def cmd_info(service, args):
    info = await service.info()
    print(f"Current version:  {info['current_version']}")
    print(f"Total migrations: {info['total_migrations']}")
    print(f"  successful:     {info['successful_migrations']}")
    print(f"  failed:         {info['failed_migrations']}")
    if info['last_migration_version'] is not None:
        print(f"Last migration:   {info['last_migration_version']} "
              f"at {info['last_migration_at']:%Y-%m-%d %H:%M:%S}")
    print(f"Locked:           {'yes' if info['is_locked'] else 'no'}")


async def cmd_status(service, args):
    rows = await service.status()
    if not rows:
        print("No migrations recorded")
        return
    for row in rows:
        print(f"{row['state']:<8} {row['kind']:<10} {row['version']:<24} "
              f"{row['duration_display']:>8}  {row['checksum_prefix']}  {row['description']}")


async def cmd_history(service, args):
    entries = await service.history(limit=args.limit, include_failed=args.include_failed)
    for entry in entries:
        marker = '✓' if entry.success else '✗'
        print(f"{marker} {entry.version:<24} {entry.executed_at:%Y-%m-%d %H:%M:%S} "
              f"{entry.executed_by:<16} {entry.description}")


async def cmd_lock(service, args):
    """Freeze migrations by taking a lease no later invocation holds."""
    if args.wait is None:
        if not await service.acquire_lock():
            print("✗ Migration lock is held by another session", file=sys.stderr)
            return 1
    else:
        await service.acquire_lock_wait(args.wait)
    holder = await service.lock_holder()
    print(f"✓ Migration lock acquired (expires at {holder.expires_at:.0f})")


async def cmd_unlock(service, args):
    if await service.force_release_lock():
        print("✓ Migration lock released")
    else:
        print("✓ Migration lock was not held")


async def cmd_lock_holder(service, args):
    holder = await service.lock_holder()
    if holder is None:
        print("Migration lock is free")
        return
    print(json.dumps(holder.to_dict(), indent=2, default=str))


async def cmd_migrate(service, args):
    batch = read_batch_file(args.batch_file)
    result = await service.run_all(
        versioned=batch.get('versioned', []),
        repeatable=batch.get('repeatable', []),
        lock_timeout=args.lock_timeout,
    )
    if result.applied:
        print(f"✓ Applied {len(result.applied)} migrations:")
        for applied in result.applied:
            print(f"  - {applied.version} ({applied.execution_time_ms}ms)")
    else:
        print("✓ No new migrations to apply (already up-to-date)")
    print(f"✓ Current schema version: {await service.current_version()}")


async def cmd_baseline(service, args):
    await service.set_baseline(args.version, args.description)
    print(f"✓ Baseline set to version {args.version}")


async def cmd_register_rollback(service, args):
    await service.register_rollback(args.version, read_script(args))
    print(f"✓ Rollback script registered for version {args.version}")


async def cmd_rollback(service, args):
    entry = await service.rollback(args.version)
    print(f"✓ Rolled back version {args.version} ({entry.execution_time_ms}ms)")


async def cmd_rollback_to(service, args):
    count = await service.rollback_to(args.version)
    print(f"✓ Rolled back {count} migrations to version {args.version}")


async def cmd_rollback_candidates(service, args):
    for candidate in await service.list_rollback_candidates():
        marker = '✓' if candidate.has_rollback_script else '✗'
        print(f"{marker} {candidate.version:<24} {candidate.description}")


async def cmd_validate(service, args):
    batch = read_batch_file(args.batch_file)
    reports = await service.validate_checksums(batch.get('versioned', []))
    for report in reports:
        print(repr(report))
    modified = [r for r in reports if r.is_modified]
    if modified:
        print(f"✗ {len(modified)} applied migrations were modified", file=sys.stderr)
        return 1


async def cmd_clear_failed(service, args):
    count = await service.clear_failed()
    print(f"✓ Cleared {count} failed migration records")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='schema-ledger',
        description='Versioned and repeatable schema migrations with a durable changelog',
    )
    parser.add_argument('--config', help='Path to a .json, .yaml or .yml config file')
    parser.add_argument('--database-url', help='Override the configured database URL')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('install', help='Create the ledger tables').set_defaults(handler=cmd_install)

    p = sub.add_parser('uninstall', help='Drop the ledger tables and all history')
    p.add_argument('--yes', action='store_true', help='Confirm deletion of all history')
    p.set_defaults(handler=cmd_uninstall)

    sub.add_parser('info', help='Show a summary').set_defaults(handler=cmd_info)
    sub.add_parser('status', help='Show every changelog row').set_defaults(handler=cmd_status)

    p = sub.add_parser('history', help='Show recent migrations')
    p.add_argument('--limit', type=int, default=50)
    p.add_argument('--include-failed', action='store_true')
    p.set_defaults(handler=cmd_history)

    p = sub.add_parser(
        'lock', help='Freeze migrations: hold the lock until unlock or lease expiry')
    p.add_argument('--wait', type=float, help='Seconds to wait for the lock')
    p.set_defaults(handler=cmd_lock)

    sub.add_parser('unlock', help='Force-release the migration lock').set_defaults(
        handler=cmd_unlock)
    sub.add_parser('lock-holder', help='Show the current lock holder').set_defaults(
        handler=cmd_lock_holder)

    p = sub.add_parser('migrate', help='Apply a batch file')
    p.add_argument('batch_file', help='JSON file with "versioned" and "repeatable" lists')
    p.add_argument('--lock-timeout', type=float, help='Seconds to wait for the lock')
    p.set_defaults(handler=cmd_migrate)

    p = sub.add_parser('baseline', help='Mark an existing schema as at a version')
    p.add_argument('version')
    p.add_argument('--description', default='Baseline')
    p.set_defaults(handler=cmd_baseline)

    p = sub.add_parser('register-rollback', help='Register a rollback script')
    p.add_argument('version')
    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument('--file', help='File containing the rollback script')
    source.add_argument('--script', help='Rollback script text')
    p.set_defaults(handler=cmd_register_rollback)

    p = sub.add_parser('rollback', help='Roll back one version')
    p.add_argument('version')
    p.set_defaults(handler=cmd_rollback)

    p = sub.add_parser('rollback-to', help='Roll back every version newer than the target')
    p.add_argument('version')
    p.set_defaults(handler=cmd_rollback_to)

    sub.add_parser('rollback-candidates', help='List applied versions and their scripts').set_defaults(
        handler=cmd_rollback_candidates)

    p = sub.add_parser('validate', help='Compare batch file checksums with the changelog')
    p.add_argument('batch_file')
    p.set_defaults(handler=cmd_validate)

    sub.add_parser('clear-failed', help='Delete failed changelog rows').set_defaults(
        handler=cmd_clear_failed)

    return parser


async def run(args) -> int:
    config = load_config(args.config)
    if args.database_url:
        config = dataclasses.replace(
            config, database_url=normalize_database_url(args.database_url)
        )
    if config.log_file:
        configure_logger('schemaledger', config.log_file, log_level=config.log_level_value)

    service = MigrationService.from_config(config)
    try:
        return await args.handler(service, args) or 0
    except (MigrationError, OSError, ValueError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    finally:
        await service.close()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        format=LOG_FORMAT,
        level=logging.DEBUG if args.verbose else logging.WARNING,
    )
    return asyncio.run(run(args))


if __name__ == '__main__':
    sys.exit(main())
