from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shopping_taxonomy.domain.models import Category, CategoryRule


@dataclass
class ParsedRecord:
    """One category record read from an import document"""
    key: str # category id, or row_<n> when the id is unusable
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass
class ParsedDocument:
    """
    Everything an import document contained.

    `columns_only` marks formats that carry just a subset of the category
    fields (CSV), so an overwrite keeps the stored values of the others.
    """
    records: List[ParsedRecord] = field(default_factory=list)
    rules: List[Dict[str, Any]] = field(default_factory=list)
    columns_only: bool = False


class CategoryFormat(ABC):
    """
    Abstract base class for category export/import formats.

    Each transport format gets its own concrete class (Strategy pattern);
    FormatFactory maps format names to them.
    """

    @abstractmethod
    def serialize(
        self,
        categories: List[Category],
        rules: Optional[List[CategoryRule]] = None,
        include_metadata: bool = True,
    ) -> str:
        """
        Serialize categories (and optionally rules) to a document.

        Args:
            categories: Categories in store order
            rules: Rules to embed, None to leave them out
            include_metadata: Whether to keep each category's metadata map

        Returns:
            The document text
        """
        pass

    @abstractmethod
    def parse(self, data: str) -> ParsedDocument:
        """
        Parse a document into per-category records.

        Problems with a single record are reported on that record; only a
        document that cannot be read at all raises.

        Raises:
            ImportFormatError: If the document structure is unusable
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
