"""
Schema initialization.

This script:
- Connects to every configured schema (``DB_SCHEMAS``)
- Imports the application's entity modules so their tables are registered
- Creates the schemas and their tables
- Can reset them (drop and recreate)

Usage:
    # Create tables for the entities in myapp.entities in every schema
    python -m schemarepo.database.init_db --models myapp.entities

    # Only some schemas
    python -m schemarepo.database.init_db --models myapp.entities --schemas s1 s2

    # Reset (drops all tables and recreates)
    python -m schemarepo.database.init_db --models myapp.entities --reset
"""

import argparse
import importlib
from typing import Iterable, List, Optional, Sequence

from schemarepo.config import Settings, get_settings
from schemarepo.core.logging import configure_logging
from schemarepo.database.registry import ConnectionRegistry
from schemarepo.database.session import ConnectionParams
from schemarepo.models.base import Base


def load_models(modules: Iterable[str]) -> List[str]:
    """
    Import entity modules so their tables land on ``Base.metadata``.

    Returns:
        Names of all registered tables
    """
    for module in modules:
        importlib.import_module(module)
    return sorted(table.name for table in Base.metadata.sorted_tables)


def create_tables(registry: ConnectionRegistry, schema_names: Sequence[str], reset: bool = False) -> None:
    """
    Create all registered tables in each schema.

    Args:
        registry: Connected registry
        schema_names: Schemas to initialize
        reset: If True, drop existing tables first
    """
    for schema_name in schema_names:
        if reset:
            print(f"Dropping tables in {schema_name}...")
            registry.drop_tables(schema_name)
        print(f"Creating tables in {schema_name}...")
        registry.migrate(schema_name)
        print(f"  {schema_name}: ok")


def print_database_status(registry: ConnectionRegistry) -> None:
    """Print registered schemas and their pool counters."""
    print("\n" + "=" * 60)
    print("Database Status")
    print("=" * 60)
    for schema_name in registry.schema_names:
        stats = registry.stats(schema_name)
        marker = " (default)" if schema_name == registry.default_schema else ""
        print(f"  {schema_name}{marker}: open={stats.open} idle={stats.idle} in_use={stats.in_use}")
    print("=" * 60)


def initialize_database(
    modules: Iterable[str],
    schema_names: Optional[Sequence[str]] = None,
    reset: bool = False,
    current: Optional[Settings] = None,
    params: Optional[ConnectionParams] = None,
) -> ConnectionRegistry:
    """
    Connect, create schemas and tables, print status, then close.

    Returns:
        The (closed) registry, for inspection
    """
    current = current or get_settings()
    schema_names = list(schema_names or current.db_schemas)
    tables = load_models(modules)
    print(f"Registered tables: {', '.join(tables) or '(none)'}")

    registry = ConnectionRegistry.from_settings(current)
    registry.connect(params or ConnectionParams.from_settings(current), schema_names)
    try:
        create_tables(registry, schema_names, reset=reset)
        print_database_status(registry)
    finally:
        registry.close()
    return registry


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(
        description="Create the configured schemas and their entity tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m schemarepo.database.init_db --models myapp.entities
  python -m schemarepo.database.init_db --models myapp.entities --schemas s1 s2 --reset
        """
    )

    parser.add_argument(
        "--models",
        nargs="+",
        required=True,
        help="Dotted module paths declaring entities"
    )

    parser.add_argument(
        "--schemas",
        nargs="+",
        default=None,
        help="Schemas to initialize (default: DB_SCHEMAS)"
    )

    parser.add_argument(
        "--reset",
        action="store_true",
        help="Drop existing tables before creating (WARNING: deletes all data!)"
    )

    parser.add_argument(
        "--yes",
        action="store_true",
        help="Do not ask for confirmation on --reset"
    )

    args = parser.parse_args(argv)
    configure_logging()

    # Confirm reset if requested
    if args.reset and not args.yes:
        print("WARNING: This will DELETE ALL DATA in the selected schemas!")
        response = input("Are you sure? Type 'yes' to continue: ")
        if response.lower() != 'yes':
            print("Aborted")
            return

    initialize_database(args.models, schema_names=args.schemas, reset=args.reset)
    print("\nSchema initialization complete!")


if __name__ == "__main__":
    main()
