#!/usr/bin/env python3
"""
Initialize the shopping taxonomy database.

Run this script to create the key/value table and seed the default
root categories.
"""
import argparse
import asyncio
from pathlib import Path

from shopping_taxonomy.config.logging_config import configure_logging
from shopping_taxonomy.config.settings import Settings
from shopping_taxonomy.services.container import build_services, open_sqlite_storage


async def initialize(db_path: Path, settings: Settings) -> None:
    storage = open_sqlite_storage(db_path)
    try:
        services = await build_services(storage, settings)
        created = await services.taxonomy.seed_default_categories()

        print(f"✓ Database initialized successfully!")
        print(f"  Seeded categories: {len(created)}")
        print(f"  Total categories: {len(services.taxonomy)}")
        print(f"  Stored keys: {', '.join(storage.keys()) or '-'}")
    finally:
        storage.db.close()


def main():
    """initialize the database."""
    settings = Settings.load()

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--db", type=Path, default=Path(settings.database_path))
    args = parser.parse_args()

    configure_logging(level=settings.log_level, json_logs=settings.json_logs)

    print(f"Initializing database at: {args.db}")
    asyncio.run(initialize(args.db, settings))


if __name__ == "__main__":
    main()
