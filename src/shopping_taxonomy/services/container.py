from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from shopping_taxonomy.categorization.rules import RuleEngine
from shopping_taxonomy.categorization.suggestions import SuggestionEngine
from shopping_taxonomy.config.settings import Settings
from shopping_taxonomy.database.connection import DatabaseConfig, DatabaseManager
from shopping_taxonomy.repositories.base import StorageBackend
from shopping_taxonomy.repositories.sqlite_storage import SQLiteStorage
from shopping_taxonomy.services.taxonomy_store import TaxonomyStore
from shopping_taxonomy.services.transfer_service import TransferService


@dataclass
class Services:
    """The taxonomy services sharing one storage backend"""
    storage: StorageBackend
    settings: Settings
    taxonomy: TaxonomyStore
    rules: RuleEngine
    suggestions: SuggestionEngine
    transfer: TransferService


async def build_services(storage: StorageBackend, settings: Optional[Settings] = None) -> Services:
    """
    Wire the services on top of a storage backend and load their state.

    Usage:
        services = await build_services(InMemoryStorage())
        food = await services.taxonomy.create_category("Lebensmittel", "#4CAF50")
    """
    settings = settings or Settings.load()
    taxonomy = TaxonomyStore(storage)
    rules = RuleEngine(storage, taxonomy)
    suggestions = SuggestionEngine(storage, taxonomy)

    await taxonomy.reload_categories()
    await rules.reload_rules()
    await suggestions.reload_history()

    return Services(
        storage=storage,
        settings=settings,
        taxonomy=taxonomy,
        rules=rules,
        suggestions=suggestions,
        transfer=TransferService(taxonomy, rules, settings),
    )


def open_sqlite_storage(db_path: Path | str) -> SQLiteStorage:
    """SQLite-backed storage; close it with storage.db.close()."""
    return SQLiteStorage(DatabaseManager(DatabaseConfig(db_path)))
