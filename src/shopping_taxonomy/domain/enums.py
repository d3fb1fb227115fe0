import re
from enum import Enum
from typing import Callable, Dict


def _contains(text: str, value: str) -> bool:
    return value.lower() in text.lower()


def _equals(text: str, value: str) -> bool:
    return text.lower() == value.lower()


def _starts_with(text: str, value: str) -> bool:
    return text.lower().startswith(value.lower())


def _ends_with(text: str, value: str) -> bool:
    return text.lower().endswith(value.lower())


def _regex(text: str, value: str) -> bool:
    # re.error propagates; the rule engine turns it into "no match"
    return re.search(value, text, re.IGNORECASE) is not None


class RuleOperator(Enum):
    """How a rule condition compares its value against product text"""
    CONTAINS = "contains"
    EQUALS = "equals"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"
    REGEX = "regex"

    def matches(self, text: str, value: str) -> bool:
        """Evaluate this operator case-insensitively."""
        return _OPERATOR_FUNCTIONS[self](text, value)


_OPERATOR_FUNCTIONS: Dict[RuleOperator, Callable[[str, str], bool]] = {
    RuleOperator.CONTAINS: _contains,
    RuleOperator.EQUALS: _equals,
    RuleOperator.STARTS_WITH: _starts_with,
    RuleOperator.ENDS_WITH: _ends_with,
    RuleOperator.REGEX: _regex,
}


class CategoryStatus(Enum):
    ACTIVE = "active"
    ARCHIVED = "archived" # terminal


class PermissionRole(Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class ConflictResolution(Enum):
    """What to do when an imported id already exists"""
    SKIP = "skip"
    OVERWRITE = "overwrite"
    RENAME = "rename"


class ExportFormat(Enum):
    JSON = "json"
    CSV = "csv"


class SuggestionReason(Enum):
    """The scoring factor that dominated a suggestion"""
    PURCHASE_HISTORY = "purchase_history"
    NAME_SIMILARITY = "name_similarity"
    SEASONAL_PATTERN = "seasonal_pattern"
    USER_PREFERENCE = "user_preference"


class Season(Enum):
    WINTER = "winter"
    SPRING = "spring"
    SUMMER = "summer"
    AUTUMN = "autumn"

    @classmethod
    def for_month(cls, month: int) -> "Season":
        """Map a calendar month (1-12) to its season."""
        if 3 <= month <= 5:
            return cls.SPRING
        if 6 <= month <= 8:
            return cls.SUMMER
        if 9 <= month <= 11:
            return cls.AUTUMN
        return cls.WINTER
