"""
Product classification for the category taxonomy.

Two complementary ways of finding a category for a product name:
priority-ordered pattern rules, and suggestions scored from purchase history.

Quick Start:
    >>> from shopping_taxonomy.categorization import RuleEngine, SuggestionEngine
    >>>
    >>> rules = RuleEngine(storage, store)
    >>> category = rules.find_matching_category("Bio-Milch 1L")
    >>>
    >>> suggestions = SuggestionEngine(storage, store)
    >>> suggestion = suggestions.suggest_category("Frische Milch")
"""
from shopping_taxonomy.categorization.rules import RuleEngine, validate_rule
from shopping_taxonomy.categorization.similarity import edit_distance, name_similarity
from shopping_taxonomy.categorization.suggestions import SuggestionEngine, normalize_product_name

__all__ = [
    "RuleEngine",
    "SuggestionEngine",
    "validate_rule",
    "edit_distance",
    "name_similarity",
    "normalize_product_name",
]
