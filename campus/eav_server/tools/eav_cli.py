"""
Command-line tool for the Campus EAV core.

Commands:
- seed: Upsert the predefined attribute catalog
- attributes: List the attribute registry
- show: Print the projection of one entity as JSON
- serve: Run the HTTP gateway

Usage:
    campus-eav seed
    campus-eav attributes --type STUDENT
    campus-eav show <entity-id> --include ENROLLED_IN:from:courses
    campus-eav serve

The database path comes from EAV_DATABASE_PATH unless --db is given.

Invariants:
    - NotFound and validation errors print a message and exit with code 1
    - JSON output is deterministic (sorted keys)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from typing import Any

from ..config import ServerConfig
from ..errors import NotFoundError, ValidationError
from ..main import serve, setup_logging
from ..service import EavService

logger = logging.getLogger(__name__)


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, sort_keys=True, default=str)


async def cmd_seed(service: EavService, args: argparse.Namespace) -> int:
    await service.initialize()
    names = await service.seed_catalog()
    if args.json:
        print(_dump(names))
    else:
        print(f"Seeded {len(names)} attribute(s):")
        for name in names:
            print(f"  - {name}")
    return 0


async def cmd_attributes(service: EavService, args: argparse.Namespace) -> int:
    await service.initialize()
    attributes = await service.list_attributes(args.type)
    if args.json:
        print(_dump([a.to_dict() for a in attributes]))
        return 0
    for attribute in attributes:
        kinds = ",".join(attribute.entity_types) or "-"
        required = " (required)" if attribute.is_required else ""
        print(f"{attribute.name:<24} {attribute.data_type.value:<9} {kinds}{required}")
    return 0


async def cmd_show(service: EavService, args: argparse.Namespace) -> int:
    await service.initialize()
    projection = await service.get_entity(args.entity_id, args.include)
    print(_dump(projection))
    return 0


COMMANDS = {
    "seed": cmd_seed,
    "attributes": cmd_attributes,
    "show": cmd_show,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="campus-eav", description="Campus EAV management tool")
    parser.add_argument("--db", help="SQLite database path (default: $EAV_DATABASE_PATH)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    seed_parser = subparsers.add_parser("seed", help="Seed the attribute catalog")
    seed_parser.add_argument("--json", action="store_true", help="Output as JSON")

    attributes_parser = subparsers.add_parser("attributes", help="List attributes")
    attributes_parser.add_argument("--type", help="Only attributes declared for this entity kind")
    attributes_parser.add_argument("--json", action="store_true", help="Output as JSON")

    show_parser = subparsers.add_parser("show", help="Print an entity projection")
    show_parser.add_argument("entity_id", help="Entity ID")
    show_parser.add_argument(
        "--include",
        action="append",
        default=[],
        metavar="TYPE:direction:as",
        help="Attach related entities (repeatable)",
    )

    subparsers.add_parser("serve", help="Run the HTTP gateway")
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    if args.db:
        config = replace(config, storage=replace(config.storage, database_path=args.db))

    if args.command == "serve":
        setup_logging(config)
        serve(config)
        return 0

    logging.basicConfig(level=logging.WARNING)
    service = EavService.from_config(config)
    try:
        return asyncio.run(COMMANDS[args.command](service, args))
    except (NotFoundError, ValidationError) as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
