import pytest

from shopping_taxonomy.categorization.rules import RuleEngine
from shopping_taxonomy.categorization.suggestions import SuggestionEngine
from shopping_taxonomy.config.settings import Settings
from shopping_taxonomy.repositories.base import InMemoryStorage
from shopping_taxonomy.services.taxonomy_store import TaxonomyStore
from shopping_taxonomy.services.transfer_service import TransferService

GERMAN_STRINGS = {
    "de": {
        "imported_suffix": "(Importiert)",
        "unknown": "Unbekannt",
        "template_name": "Benutzerdefinierte Vorlage",
        "template_description": "Exportierte Kategorie-Vorlage",
    },
    "en": {
        "imported_suffix": "(Imported)",
        "unknown": "Unknown",
        "template_name": "Custom Template",
        "template_description": "Exported category template",
    },
}


@pytest.fixture
def storage() -> InMemoryStorage:
    """Fresh in-memory storage for each test"""
    return InMemoryStorage()


@pytest.fixture
def settings() -> Settings:
    """Settings built directly, independent of any settings.json"""
    return Settings(default_language="de", fallback_language="en", strings=GERMAN_STRINGS)


@pytest.fixture
def store(storage) -> TaxonomyStore:
    return TaxonomyStore(storage)


@pytest.fixture
def rule_engine(storage, store) -> RuleEngine:
    return RuleEngine(storage, store)


@pytest.fixture
def suggestion_engine(storage, store) -> SuggestionEngine:
    return SuggestionEngine(storage, store)


@pytest.fixture
def transfer(store, rule_engine, settings) -> TransferService:
    return TransferService(store, rule_engine, settings)


@pytest.fixture
async def food_tree(store):
    """
    Lebensmittel
    ├── Milchprodukte
    │   └── Käse
    └── Obst
    """
    food = await store.create_category("Lebensmittel", "#4CAF50", icon="food", tags=["food"])
    dairy = await store.create_category("Milchprodukte", "#FFFFFF", parent_category=food.id, tags=["dairy"])
    cheese = await store.create_category("Käse", "#FFEB3B", parent_category=dairy.id)
    fruit = await store.create_category("Obst", "#FF9800", parent_category=food.id)
    return {"food": food, "dairy": dairy, "cheese": cheese, "fruit": fruit}
