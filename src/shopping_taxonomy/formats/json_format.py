import json
from typing import List, Optional

from shopping_taxonomy.domain.exceptions import ImportFormatError
from shopping_taxonomy.domain.models import Category, CategoryRule, utc_now
from shopping_taxonomy.formats.base import CategoryFormat, ParsedDocument, ParsedRecord

EXPORT_VERSION = "1.0"


class JsonFormat(CategoryFormat):
    """
    Full-fidelity JSON export.

    Document shape:
        {
            "version": "1.0",
            "exportDate": "2025-01-15T10:00:00.000Z",
            "categories": [{...}, ...],
            "rules": [{...}, ...]      // only when rules were requested
        }
    """

    def serialize(
        self,
        categories: List[Category],
        rules: Optional[List[CategoryRule]] = None,
        include_metadata: bool = True,
    ) -> str:
        document = {
            "version": EXPORT_VERSION,
            "exportDate": utc_now(),
            "categories": [category.to_dict(include_metadata=include_metadata) for category in categories],
        }
        if rules is not None:
            document["rules"] = [rule.to_dict() for rule in rules]

        return json.dumps(document, indent=2, ensure_ascii=False)

    def parse(self, data: str) -> ParsedDocument:
        try:
            document = json.loads(data)
        except json.JSONDecodeError as e:
            raise ImportFormatError(f"Invalid JSON: {e}") from e

        if not isinstance(document, dict) or not isinstance(document.get("categories"), list):
            raise ImportFormatError("Invalid import format: missing 'categories' array")

        rules = document.get("rules") or []
        if not isinstance(rules, list):
            raise ImportFormatError("Invalid import format: 'rules' must be an array")

        records = []
        for index, entry in enumerate(document["categories"], start=1):
            if not isinstance(entry, dict):
                records.append(ParsedRecord(key=f"row_{index}", error="Category entry is not an object"))
            elif not entry.get("id"):
                records.append(ParsedRecord(key=f"row_{index}", data=entry, error="Category has no id"))
            else:
                records.append(ParsedRecord(key=str(entry["id"]), data=entry))

        return ParsedDocument(records=records, rules=rules)
