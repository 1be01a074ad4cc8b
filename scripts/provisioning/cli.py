"""CLI entry point: reconcile, check, ensure-schema, list-admins."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from scripts.provisioning.config import load_config
from scripts.provisioning.db import Database
from scripts.provisioning.errors import ProvisioningError
from scripts.provisioning.identity_provider import IdentityProviderClient
from scripts.provisioning.logging_config import configure_logging
from scripts.provisioning.models import DesiredState, ProvisioningResult
from scripts.provisioning.reconciler import build_reconciler
from scripts.provisioning.role_store import RoleStore
from scripts.provisioning.schema import ALL_TABLES, get_table
from scripts.provisioning.schema_ensurer import SchemaEnsurer

logger = logging.getLogger("provisioning.cli")

EXIT_VERIFIED = 0
EXIT_FAILED = 1
EXIT_VERIFIED_WITH_WARNINGS = 3


def exit_code_for(results: list[ProvisioningResult]) -> int:
    """Worst outcome wins: failed > verified with warnings > verified."""
    outcomes = {r.outcome for r in results}
    if not results or "failed" in outcomes:
        return EXIT_FAILED
    if "verified_with_warnings" in outcomes:
        return EXIT_VERIFIED_WITH_WARNINGS
    return EXIT_VERIFIED


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_reconcile(args: argparse.Namespace) -> int:
    """Grant or revoke the admin role for one or more identities."""
    config = load_config()
    desired = DesiredState.GRANTED if args.grant else DesiredState.REVOKED
    workers = args.workers or config.max_workers
    # Each worker holds one pooled connection at a time
    if workers > config.database.max_connections:
        logger.warning(
            "Capping workers at %d (DB_MAX_CONNECTIONS)", config.database.max_connections,
            extra={"operation": "reconcile"},
        )
        workers = config.database.max_connections

    db = Database(config.database)
    idp = IdentityProviderClient(config.identity_provider)
    try:
        reconciler = build_reconciler(config, db, idp)
        results = reconciler.reconcile_many(args.references, desired, max_workers=workers)
    finally:
        idp.close()
        db.close()

    _print_json([r.to_dict() for r in results])
    return exit_code_for(results)


def cmd_check(args: argparse.Namespace) -> int:
    """Verify-only: does the identity currently hold the admin role?"""
    config = load_config()
    db = Database(config.database)
    idp = IdentityProviderClient(config.identity_provider)
    try:
        result = build_reconciler(config, db, idp).check_admin(args.reference)
    finally:
        idp.close()
        db.close()

    _print_json(result.to_dict())
    return EXIT_VERIFIED if result.verified else EXIT_FAILED


def cmd_ensure_schema(args: argparse.Namespace) -> int:
    """Ensure every defined table (or the named ones) exists."""
    config = load_config()
    tables = [get_table(name) for name in args.table] if args.table else list(ALL_TABLES)

    db = Database(config.database)
    try:
        outcomes = SchemaEnsurer(db).ensure_all(tables)
    except ProvisioningError as exc:
        logger.error("Schema ensure failed: %s", exc, extra={"operation": exc.operation})
        _print_json({"error": exc.to_dict()})
        return EXIT_FAILED
    finally:
        db.close()

    for outcome in outcomes:
        print(f"{outcome.table:<24} {'created' if outcome.created else 'present'}")
    return EXIT_VERIFIED


def cmd_list_admins(args: argparse.Namespace) -> int:
    """Show every identity holding the admin role."""
    config = load_config()
    db = Database(config.database)
    try:
        holders = RoleStore(db).list_role_holders(config.admin_role)
    except ProvisioningError as exc:
        logger.error("Listing admins failed: %s", exc, extra={"operation": exc.operation})
        return EXIT_FAILED
    finally:
        db.close()

    if not holders:
        print("No admin role holders found.")
        return EXIT_VERIFIED

    fmt = "{:<36}  {:<10}  {}"
    print(fmt.format("IDENTITY", "ROLE", "GRANTED AT"))
    print("-" * 72)
    for record in holders:
        granted = str(record.created_at)[:19] if record.created_at else ""
        print(fmt.format(record.identity_key, record.role, granted))
    return EXIT_VERIFIED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="provisioning",
        description="Storefront admin role and schema provisioning",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # reconcile command
    rec_parser = subparsers.add_parser("reconcile", help="Grant or revoke the admin role")
    rec_parser.add_argument(
        "references",
        nargs="+",
        metavar="REF",
        help="Identity key (UUID) or email",
    )
    state = rec_parser.add_mutually_exclusive_group(required=True)
    state.add_argument("--grant", action="store_true", help="Converge to admin")
    state.add_argument("--revoke", action="store_true", help="Converge to non-admin")
    rec_parser.add_argument(
        "--workers", "-w",
        type=int,
        default=None,
        help="Concurrent reconciliations for distinct identities (default: RECONCILE_MAX_WORKERS)",
    )
    rec_parser.set_defaults(func=cmd_reconcile)

    # check command
    check_parser = subparsers.add_parser("check", help="Verify an identity's admin role")
    check_parser.add_argument("reference", metavar="REF", help="Identity key (UUID) or email")
    check_parser.set_defaults(func=cmd_check)

    # ensure-schema command
    schema_parser = subparsers.add_parser("ensure-schema", help="Create missing tables")
    schema_parser.add_argument(
        "--table", "-t",
        action="append",
        choices=[t.name for t in ALL_TABLES],
        help="Limit to this table (repeatable)",
    )
    schema_parser.set_defaults(func=cmd_ensure_schema)

    # list-admins command
    list_parser = subparsers.add_parser("list-admins", help="Show admin role holders")
    list_parser.set_defaults(func=cmd_list_admins)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    args = build_parser().parse_args(argv)
    sys.exit(args.func(args))
