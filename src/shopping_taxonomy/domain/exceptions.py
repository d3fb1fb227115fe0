"""Exception hierarchy for taxonomy, rule and import errors."""


class TaxonomyError(Exception):
    """Base exception for everything raised by the taxonomy core."""

    def __init__(self, message: str, *args):
        self.message = message
        super().__init__(message, *args)


class CategoryNotFoundError(TaxonomyError):
    """Raised when a category id is not in the store."""

    def __init__(self, category_id: str):
        self.category_id = category_id
        super().__init__(f"Category not found: {category_id}")


class StructureError(TaxonomyError):
    """Raised when an operation would break the hierarchy invariants."""
    pass


class ParentNotFoundError(StructureError):
    """Raised when a referenced parent category does not exist."""

    def __init__(self, parent_id: str):
        self.parent_id = parent_id
        super().__init__(f"Parent category not found: {parent_id}")


class HierarchyCycleError(StructureError):
    """Raised when a move would make a category its own ancestor."""

    def __init__(self, category_id: str, new_parent_id: str):
        self.category_id = category_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Moving {category_id} under {new_parent_id} would create a cycle"
        )


class RuleValidationError(TaxonomyError):
    """Raised when a rule draft fails validation."""
    pass


class ImportFormatError(TaxonomyError):
    """Raised when an import document cannot be parsed at all."""
    pass


class StorageError(TaxonomyError):
    """Raised by storage backends when a read or write fails."""
    pass
