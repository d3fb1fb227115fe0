import json
import uuid
from datetime import date
from typing import Dict, List, Optional

import structlog

from shopping_taxonomy.categorization.similarity import name_similarity
from shopping_taxonomy.config.settings import HISTORY_KEY
from shopping_taxonomy.domain.enums import Season
from shopping_taxonomy.domain.exceptions import StorageError
from shopping_taxonomy.domain.models import (
    AlternativeCategory,
    Category,
    CategorySuggestion,
    ScoreFactors,
    ShoppingHistoryItem,
    SimilarProduct,
    utc_now,
)
from shopping_taxonomy.repositories.base import StorageBackend
from shopping_taxonomy.services.taxonomy_store import TaxonomyStore

logger = structlog.get_logger(__name__)

MAX_ALTERNATIVES = 3
MAX_SIMILAR_PRODUCTS = 5
SIMILAR_PRODUCT_THRESHOLD = 0.5


def normalize_product_name(name: str) -> str:
    return name.lower().strip()


class SuggestionEngine:
    """
    Suggests a category for a product name from the purchase ledger.

    Every active category is scored on four factors in [0, 1]:

    - purchase history (0.4): the ledger already files this product under it
    - name similarity (0.3): edit-distance similarity of product and category name
    - seasonality (0.2): the product's recorded weight for the current season
    - user preference (0.1): share of ledger entries filed under the category

    Usage:
        engine = SuggestionEngine(storage, store)
        await engine.reload_history()

        await engine.add_purchase("Bio-Milch 1L", dairy.id)
        suggestion = engine.suggest_category("Frische Milch")
        print(suggestion.suggested_category, suggestion.reason)
    """

    def __init__(self, storage: StorageBackend, taxonomy: TaxonomyStore):
        self.storage = storage
        self.taxonomy = taxonomy
        self._history: Dict[str, ShoppingHistoryItem] = {}

    async def reload_history(self) -> None:
        """Re-read the purchase ledger. A failed read keeps the current ledger."""
        try:
            blob = await self.storage.get_item(HISTORY_KEY)
            history: Dict[str, ShoppingHistoryItem] = {}
            if blob:
                for name, data in json.loads(blob).items():
                    history[name] = ShoppingHistoryItem.from_dict(data)
        except (StorageError, ValueError, KeyError) as e:
            logger.error("purchase_history_load_failed", error=str(e))
            return

        self._history = history

    async def persist(self) -> bool:
        blob = json.dumps(
            {name: item.to_dict() for name, item in self._history.items()},
            ensure_ascii=False,
        )
        try:
            await self.storage.set_item(HISTORY_KEY, blob)
        except Exception as e:
            logger.error("purchase_history_save_failed", error=str(e))
            return False
        return True

    def get_history_item(self, product_name: str) -> Optional[ShoppingHistoryItem]:
        return self._history.get(normalize_product_name(product_name))

    def get_purchase_history(self) -> List[ShoppingHistoryItem]:
        return list(self._history.values())

    async def add_purchase(
        self,
        product_name: str,
        category_id: Optional[str] = None,
    ) -> ShoppingHistoryItem:
        """
        Record a purchase in the ledger.

        A known product gets its frequency bumped; passing a category files
        it there with full confidence.

        Args:
            product_name: Free-text product name, normalized before lookup
            category_id: Category the user assigned, if any

        Returns:
            The ledger entry
        """
        name = normalize_product_name(product_name)
        now = utc_now()
        item = self._history.get(name)

        if item is not None:
            item.frequency += 1
            item.last_purchased = now
            if category_id:
                item.category = category_id
                item.confidence = 1.0
        else:
            item = ShoppingHistoryItem(
                id=f"hist_{uuid.uuid4().hex[:12]}",
                product_name=name,
                category=category_id,
                purchase_date=now,
                last_purchased=now,
                frequency=1,
                confidence=1.0 if category_id else 0.0,
            )
            self._history[name] = item

        await self.persist()
        logger.info("purchase_recorded", product=name, category=item.category, frequency=item.frequency)
        return item

    async def annotate_purchase(
        self,
        product_name: str,
        seasonality: Optional[Dict[str, float]] = None,
        tags: Optional[List[str]] = None,
        notes: Optional[str] = None,
    ) -> ShoppingHistoryItem:
        """
        Attach seasonality weights, tags or notes to a ledger entry.

        Raises:
            KeyError: If the product was never purchased
            ValueError: If seasonality has unknown season names or weights outside [0, 1]
        """
        item = self._history[normalize_product_name(product_name)]

        if seasonality is not None:
            seasons = {season.value for season in Season}
            unknown = set(seasonality) - seasons
            if unknown:
                raise ValueError(f"Unknown seasons: {', '.join(sorted(unknown))}")
            if any(not 0 <= weight <= 1 for weight in seasonality.values()):
                raise ValueError("Seasonality weights must be between 0 and 1")
            item.metadata["seasonality"] = {
                season.value: float(seasonality.get(season.value, 0.0)) for season in Season
            }
        if tags is not None:
            item.metadata["tags"] = list(tags)
        if notes is not None:
            item.metadata["notes"] = notes

        await self.persist()
        return item

    def suggest_category(
        self,
        product_name: str,
        today: Optional[date] = None,
    ) -> Optional[CategorySuggestion]:
        """
        Rank the active categories for a product name.

        Args:
            product_name: Free-text product name
            today: Date used to pick the season, defaults to today

        Returns:
            The best suggestion with up to three alternatives, or None when
            there is no active category
        """
        name = normalize_product_name(product_name)
        season = Season.for_month((today or date.today()).month)

        scored = [
            (category.id, self.score_category(name, category, season))
            for category in self.taxonomy.get_active_categories()
        ]
        if not scored:
            return None

        best_id, best_factors = max(scored, key=lambda entry: entry[1].score)
        alternatives = sorted(
            (entry for entry in scored if entry[0] != best_id),
            key=lambda entry: entry[1].score,
            reverse=True,
        )[:MAX_ALTERNATIVES]

        item = self._history.get(name)
        return CategorySuggestion(
            product_name=name,
            suggested_category=best_id,
            confidence=best_factors.score,
            reason=best_factors.dominant_reason(),
            factors=best_factors,
            alternative_categories=[
                AlternativeCategory(category_id=category_id, confidence=factors.score)
                for category_id, factors in alternatives
            ],
            frequency=item.frequency if item else 0,
            seasonal_confidence=self._seasonal_weight(item, season),
            last_purchased=item.last_purchased if item else None,
            similar_products=self.find_similar_products(name),
        )

    def score_category(self, product_name: str, category: Category, season: Season) -> ScoreFactors:
        """The four raw factors for one (normalized) product name and category"""
        item = self._history.get(product_name)
        return ScoreFactors(
            purchase_history=1.0 if item is not None and item.category == category.id else 0.0,
            name_similarity=name_similarity(product_name, category.name),
            seasonality=self._seasonal_weight(item, season),
            user_preference=self._category_share(category.id),
        )

    def find_similar_products(self, product_name: str) -> List[SimilarProduct]:
        """Other categorized ledger products whose names are more than 50% similar"""
        name = normalize_product_name(product_name)
        similar = []
        for other_name, item in self._history.items():
            if other_name == name or not item.category:
                continue
            similarity = name_similarity(name, other_name)
            if similarity > SIMILAR_PRODUCT_THRESHOLD:
                similar.append(SimilarProduct(name=other_name, category_id=item.category, similarity=similarity))

        similar.sort(key=lambda product: product.similarity, reverse=True)
        return similar[:MAX_SIMILAR_PRODUCTS]

    def _category_share(self, category_id: str) -> float:
        if not self._history:
            return 0.0
        assigned = sum(1 for item in self._history.values() if item.category == category_id)
        return assigned / len(self._history)

    @staticmethod
    def _seasonal_weight(item: Optional[ShoppingHistoryItem], season: Season) -> float:
        if item is None or not item.seasonality:
            return 0.0
        return float(item.seasonality.get(season.value, 0.0))

    def __repr__(self) -> str:
        return f"SuggestionEngine({len(self._history)} ledger entries)"
