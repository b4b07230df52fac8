"""
Schema CLI tool for MasterDB.

This tool manages persisted schema definitions:
- list: Show registered schemas
- export: Write schema definitions to JSON
- import: Create schemas from a JSON file, referenced schemas first
- migrate: Move definitions from the legacy master_schemas collection

Usage:
    masterdb-schema list
    masterdb-schema export > schemas.json
    masterdb-schema import schemas.json --skip-existing
    masterdb-schema migrate --dry-run

The tool talks to the configured document store directly (same environment
variables as the server); with the Kafka event bus configured, running
servers pick up imported schemas through the usual schema events.

Invariants:
    - Export output is deterministic (sorted by name, sorted keys)
    - Import never creates a schema before the schemas it references
    - Migration never overwrites a schema that already exists

How to change safely:
    - Keep the export format readable by import
    - Add new commands, don't modify existing ones
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..config import ServerConfig
from ..errors import MasterDbError, ValidationError
from ..schema.types import SchemaDefinition
from ..service import MasterDataService
from ..store.base import DocumentStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1
LEGACY_SCHEMA_COLLECTION = "master_schemas"


@dataclass
class MigrationResult:
    """Outcome of a legacy schema migration.

    Attributes:
        migrated: Names copied into the schema collection
        skipped: Names that already existed there
        failed: Descriptions of legacy documents that could not be read
        source_dropped: Whether the legacy collection was removed
    """

    migrated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    source_dropped: bool = False


def dependency_order(schemas: Sequence[SchemaDefinition]) -> list[SchemaDefinition]:
    """Order schemas so every referenced schema comes before its referrers.

    References to schemas outside ``schemas`` and self-references impose no
    order. Ties keep the input order.

    Raises:
        ValidationError: If the schemas reference each other in a cycle
    """
    by_key = {schema.key: schema for schema in schemas}
    pending = {
        schema.key: {
            (f.master_type or "").lower()
            for f in schema.master_fields()
            if (f.master_type or "").lower() in by_key and (f.master_type or "").lower() != schema.key
        }
        for schema in schemas
    }

    ordered: list[SchemaDefinition] = []
    while pending:
        ready = [key for key, deps in pending.items() if not deps]
        if not ready:
            raise ValidationError(
                f"Circular schema references: {', '.join(sorted(pending))}",
                errors=sorted(pending),
            )
        for key in ready:
            ordered.append(by_key[key])
            del pending[key]
        for deps in pending.values():
            deps.difference_update(ready)
    return ordered


class SchemaCLI:
    """CLI tool for schema management.

    Example:
        >>> cli = SchemaCLI(service)
        >>> print(await cli.export())
        >>> await cli.import_schemas(json.load(open("schemas.json")))
    """

    def __init__(self, service: MasterDataService) -> None:
        self.service = service

    @property
    def store(self) -> DocumentStore:
        return self.service.store

    async def list_schemas(self) -> list[dict[str, Any]]:
        """Summaries of every registered schema, sorted by name."""
        schemas = sorted(await self.service.registry.get_all_schemas(), key=lambda s: s.key)
        return [
            {
                "name": schema.name,
                "displayName": schema.display_name,
                "groupId": schema.group_id,
                "fields": len(schema.fields),
                "references": sorted({f.master_type for f in schema.master_fields() if f.master_type}),
            }
            for schema in schemas
        ]

    async def export(self, names: Sequence[str] | None = None) -> str:
        """Export schema definitions to JSON.

        Args:
            names: Schemas to export (default: all)

        Returns:
            JSON string representation

        Raises:
            NotFoundError: If a named schema does not exist
        """
        if names:
            schemas = [await self.service.registry.get_schema(name) for name in names]
        else:
            schemas = await self.service.registry.get_all_schemas()

        output = {
            "version": EXPORT_VERSION,
            "schemas": [s.to_dict() for s in sorted(schemas, key=lambda s: s.key)],
        }
        return json.dumps(output, indent=2, sort_keys=True)

    async def import_schemas(
        self,
        data: Mapping[str, Any] | Sequence[Mapping[str, Any]],
        skip_existing: bool = False,
    ) -> list[str]:
        """Create schemas from an export document or a list of definitions.

        Args:
            data: Export output, or a bare list of definitions
            skip_existing: Leave already registered schemas untouched
                instead of failing

        Returns:
            Names of the schemas created

        Raises:
            ValidationError: If a definition is invalid or references form a cycle
            ConflictError: If a schema exists and skip_existing is False
        """
        raw = data.get("schemas", []) if isinstance(data, Mapping) else data
        if not isinstance(raw, (list, tuple)):
            raise ValidationError("Import data must contain a list of schemas")
        schemas = [SchemaDefinition.from_dict(item).normalized() for item in raw]

        created: list[str] = []
        for schema in dependency_order(schemas):
            if skip_existing and schema.key in self.service.cache:
                logger.info(f"Skipping existing schema {schema.name}")
                continue
            await self.service.registry.create_schema(schema)
            created.append(schema.name)
        return created

    async def migrate(
        self,
        source: str = LEGACY_SCHEMA_COLLECTION,
        dry_run: bool = False,
        keep_source: bool = False,
    ) -> MigrationResult:
        """Copy legacy schema documents into the schema collection.

        Documents are copied as-is (names lower-cased) without reference
        checks, since the legacy collection may hold them in any order. The
        source collection is dropped once everything was copied, unless
        ``keep_source`` is set or some documents could not be read.

        Args:
            source: Legacy collection name
            dry_run: Report what would happen without writing
            keep_source: Never drop the legacy collection
        """
        result = MigrationResult()
        target = self.service.registry.collection

        if source not in await self.store.list_collections():
            logger.info(f"No {source} collection found. Nothing to migrate.")
            return result

        documents = await self.store.find(source)
        logger.info(f"Found {len(documents)} legacy schema document(s)", extra={"source": source})

        for document in documents:
            try:
                schema = SchemaDefinition.from_dict(document.get("schema", document)).normalized()
            except ValidationError as e:
                result.failed.append(e.message)
                logger.warning(f"Skipping unreadable legacy schema: {e.message}")
                continue

            if await self.store.exists(target, {"schema.name": schema.key}):
                result.skipped.append(schema.name)
                continue
            if not dry_run:
                await self.store.insert_one(target, {"schema": schema.to_dict()})
            result.migrated.append(schema.name)

        if not dry_run and not keep_source and not result.failed:
            result.source_dropped = await self.store.drop_collection(source)

        if not dry_run and result.migrated:
            await self.service.registry.load()

        logger.info(
            "Legacy schema migration finished",
            extra={
                "migrated": len(result.migrated),
                "skipped": len(result.skipped),
                "failed": len(result.failed),
                "dry_run": dry_run,
            },
        )
        return result


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MasterDB schema management tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # list command
    subparsers.add_parser("list", help="List registered schemas")

    # export command
    export_parser = subparsers.add_parser("export", help="Export schemas to JSON")
    export_parser.add_argument("names", nargs="*", help="Schemas to export (default: all)")
    export_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    # import command
    import_parser = subparsers.add_parser("import", help="Create schemas from a JSON file")
    import_parser.add_argument("file", help="Export file or JSON list of definitions")
    import_parser.add_argument(
        "--skip-existing", action="store_true", help="Skip schemas that already exist"
    )

    # migrate command
    migrate_parser = subparsers.add_parser(
        "migrate", help="Move legacy master_schemas into the schema collection"
    )
    migrate_parser.add_argument(
        "--source", default=LEGACY_SCHEMA_COLLECTION, help="Legacy collection name"
    )
    migrate_parser.add_argument("--dry-run", action="store_true", help="Report only")
    migrate_parser.add_argument(
        "--keep-source", action="store_true", help="Do not drop the legacy collection"
    )

    return parser


async def run(args: argparse.Namespace, service: MasterDataService) -> int:
    """Execute one parsed command against a started service."""
    cli = SchemaCLI(service)

    if args.command == "list":
        schemas = await cli.list_schemas()
        if not schemas:
            print("No schemas registered")
        for schema in schemas:
            refs = f" -> {', '.join(schema['references'])}" if schema["references"] else ""
            print(f"{schema['name']} ({schema['fields']} field(s)){refs}")
        return 0

    if args.command == "export":
        output = await cli.export(args.names)
        if args.output:
            with open(args.output, "w") as f:
                f.write(output)
            print(f"Schemas exported to {args.output}", file=sys.stderr)
        else:
            print(output)
        return 0

    if args.command == "import":
        with open(args.file) as f:
            data = json.load(f)
        created = await cli.import_schemas(data, skip_existing=args.skip_existing)
        print(f"Created {len(created)} schema(s)")
        for name in created:
            print(f"  - {name}")
        return 0

    if args.command == "migrate":
        result = await cli.migrate(args.source, dry_run=args.dry_run, keep_source=args.keep_source)
        prefix = "[dry run] " if args.dry_run else ""
        print(f"{prefix}Migrated {len(result.migrated)}, skipped {len(result.skipped)}")
        for problem in result.failed:
            print(f"  failed: {problem}")
        if result.source_dropped:
            print(f"Dropped {args.source} collection")
        return 1 if result.failed else 0

    raise ValueError(f"Unknown command: {args.command}")


async def _main(args: argparse.Namespace, config: ServerConfig) -> int:
    service = MasterDataService.from_config(config)
    await service.start()
    try:
        return await run(args, service)
    finally:
        await service.stop()


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for schema tool."""
    args = build_parser().parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        code = asyncio.run(_main(args, config))
    except MasterDbError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
