"""
Service layer models - DTOs for service operations.

These models represent the results of service operations, not domain entities.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class ImportIssue:
    """One rejected or reported record of an import, keyed by its id"""
    id: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "error": self.error}


@dataclass
class ImportResult:
    """
    Result of importing categories (and optionally rules).

    Import is partial-failure: a bad record lands in `errors` and the
    remaining records are still processed.
    """
    imported: int = 0
    skipped: int = 0
    errors: List[ImportIssue] = field(default_factory=list)

    rules_imported: int = 0
    duplicate_rules: List[ImportIssue] = field(default_factory=list)
    imported_ids: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Import is successful if nothing was rejected"""
        return not self.errors

    @property
    def partial_success(self) -> bool:
        """Some categories imported but some failed"""
        return self.imported > 0 and bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imported": self.imported,
            "skipped": self.skipped,
            "errors": [issue.to_dict() for issue in self.errors],
        }

    def __str__(self) -> str:
        "Human-readable summary"
        lines = [
            f"Imported: {self.imported}",
            f"Skipped: {self.skipped}",
        ]
        if self.rules_imported or self.duplicate_rules:
            lines.append(f"Rules imported: {self.rules_imported}")
            lines.append(f"Duplicate rules: {len(self.duplicate_rules)}")
        if self.errors:
            lines.append(f"Errors: {len(self.errors)}")
        return "\n".join(lines)


@dataclass
class TemplateImportResult:
    created: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class StructureIssue:
    """A hierarchy inconsistency found by TaxonomyStore.validate_structure()"""
    error_type: str # invalid-parent, circular-reference, path-mismatch
    category_id: str
    message: str
