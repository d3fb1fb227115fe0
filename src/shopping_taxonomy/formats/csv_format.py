import csv
import io
from typing import Any, Dict, List, Optional

import pandas as pd

from shopping_taxonomy.domain.enums import CategoryStatus
from shopping_taxonomy.domain.exceptions import ImportFormatError
from shopping_taxonomy.domain.models import Category, CategoryRule
from shopping_taxonomy.formats.base import CategoryFormat, ParsedDocument, ParsedRecord


class CsvFormat(CategoryFormat):
    """
    Flat CSV export of the tabular category fields.

    Handles the format with:
    - A plain header row in fixed column order
    - Every data field double-quoted, embedded quotes doubled
    - Tags joined with ';'
    - Rows separated by '\\n', no trailing newline

    Rules and metadata are not part of this format.
    """

    COLUMNS = ["id", "name", "color", "icon", "parentCategory", "level", "tags", "status"]
    TAG_SEPARATOR = ";"

    def serialize(
        self,
        categories: List[Category],
        rules: Optional[List[CategoryRule]] = None,
        include_metadata: bool = True,
    ) -> str:
        header = ",".join(self.COLUMNS)
        if not categories:
            return header

        rows = [
            [
                category.id,
                category.name,
                category.color,
                category.icon or "",
                category.parent_category or "",
                str(category.level),
                self.TAG_SEPARATOR.join(category.tags),
                category.status.value,
            ]
            for category in categories
        ]
        frame = pd.DataFrame(rows, columns=self.COLUMNS, dtype=str)
        body = frame.to_csv(
            index=False,
            header=False,
            quoting=csv.QUOTE_ALL,
            lineterminator="\n",
        )
        return header + "\n" + body.removesuffix("\n")

    def parse(self, data: str) -> ParsedDocument:
        if not data.strip():
            raise ImportFormatError("CSV document is empty")

        bad_lines: List[List[str]] = []

        def collect_bad_line(fields: List[str]) -> None:
            bad_lines.append(fields)
            return None

        try:
            frame = pd.read_csv(
                io.StringIO(data),
                dtype=str,
                keep_default_na=False,
                na_filter=False,
                engine="python",
                on_bad_lines=collect_bad_line,
            )
        except (pd.errors.ParserError, pd.errors.EmptyDataError, csv.Error) as e:
            raise ImportFormatError(f"Unreadable CSV: {e}") from e

        if list(frame.columns) != self.COLUMNS:
            raise ImportFormatError(
                f"Unexpected CSV header {list(frame.columns)}, expected {self.COLUMNS}"
            )

        records = [
            self._parse_row(row, index)
            for index, row in enumerate(frame.to_dict(orient="records"), start=1)
        ]
        for fields in bad_lines:
            key = fields[0] if fields and fields[0] else "row_?"
            records.append(ParsedRecord(
                key=key,
                error=f"Expected {len(self.COLUMNS)} columns, got {len(fields)}",
            ))

        return ParsedDocument(records=records, columns_only=True)

    def _parse_row(self, row: Dict[str, Any], index: int) -> ParsedRecord:
        """Convert one positional row into storage-shaped category fields."""
        missing = [column for column in self.COLUMNS if not isinstance(row.get(column), str)]
        if missing:
            return ParsedRecord(key=f"row_{index}", error=f"Missing columns: {', '.join(missing)}")

        if not row["id"]:
            return ParsedRecord(key=f"row_{index}", error="Category has no id")
        key = row["id"]

        try:
            level = int(row["level"])
        except ValueError:
            return ParsedRecord(key=key, error=f"Invalid level '{row['level']}'")

        statuses = [status.value for status in CategoryStatus]
        if row["status"] not in statuses:
            return ParsedRecord(key=key, error=f"Invalid status '{row['status']}'")

        data: Dict[str, Any] = {
            "id": row["id"],
            "name": row["name"],
            "color": row["color"],
            "level": level,
            "tags": row["tags"].split(self.TAG_SEPARATOR) if row["tags"] else [],
            "status": row["status"],
        }
        if row["icon"]:
            data["icon"] = row["icon"]
        if row["parentCategory"]:
            data["parentCategory"] = row["parentCategory"]

        return ParsedRecord(key=key, data=data)
