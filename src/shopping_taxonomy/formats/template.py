"""
Portable multi-language category templates.

A template carries categories without ids or hierarchy; names and
descriptions are locale -> text maps so one file can be imported in
several languages.

Document shape:
    {
        "version": "1.1",
        "name": {"de": "...", "en": "..."},
        "description": {"de": "...", "en": "..."},
        "metadata": {"languages": ["de"], "defaultLanguage": "de",
                     "createdAt": "...", "creator": "system"},
        "categories": [
            {"name": {"de": "Milchprodukte"}, "description": {}, "color": "#FFF",
             "tags": [], "translations": {}}
        ]
    }
"""
import json
from typing import Any, Dict, List, Optional

from shopping_taxonomy.domain.exceptions import ImportFormatError
from shopping_taxonomy.domain.models import Category, utc_now

TEMPLATE_VERSION = "1.1"


def build_template(
    categories: List[Category],
    languages: List[str],
    default_language: str,
    title: Dict[str, str],
    description: Dict[str, str],
    include_metadata: bool = False,
) -> str:
    """
    Serialize categories into a template document.

    Each category's name and description are seeded for the default
    language only; existing translations are passed through as-is.
    """
    entries = []
    for category in categories:
        entry: Dict[str, Any] = {
            "name": {default_language: category.name},
            "description": {},
            "color": category.color,
        }
        if category.metadata.get("description"):
            entry["description"][default_language] = category.metadata["description"]
        if category.icon is not None:
            entry["icon"] = category.icon
        if include_metadata:
            entry["metadata"] = category.metadata
        entry["tags"] = list(category.tags)
        entry["translations"] = category.metadata.get("translations") or {}
        entries.append(entry)

    template = {
        "version": TEMPLATE_VERSION,
        "name": title,
        "description": description,
        "metadata": {
            "languages": languages,
            "defaultLanguage": default_language,
            "createdAt": utc_now(),
            "creator": "system",
        },
        "categories": entries,
    }
    return json.dumps(template, indent=2, ensure_ascii=False)


def parse_template(data: str) -> Dict[str, Any]:
    """
    Raises:
        ImportFormatError: If the text is not JSON or has no categories array
    """
    try:
        template = json.loads(data)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Invalid template JSON: {e}") from e

    if not isinstance(template, dict) or not isinstance(template.get("categories"), list):
        raise ImportFormatError("Invalid template format: missing 'categories' array")
    return template


def translate(values: Any, target_language: str, fallback_language: str) -> Optional[str]:
    """Pick the target language entry of a locale map, else the fallback one."""
    if not isinstance(values, dict):
        return None
    return values.get(target_language) or values.get(fallback_language) or None
