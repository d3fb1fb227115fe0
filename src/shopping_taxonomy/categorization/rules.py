import json
import math
import re
import uuid
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional

import structlog

from shopping_taxonomy.config.settings import RULES_KEY
from shopping_taxonomy.domain.enums import RuleOperator
from shopping_taxonomy.domain.exceptions import RuleValidationError, StorageError
from shopping_taxonomy.domain.models import Category, CategoryRule, RuleCondition, utc_now
from shopping_taxonomy.repositories.base import StorageBackend
from shopping_taxonomy.services.taxonomy_store import TaxonomyStore

logger = structlog.get_logger(__name__)

VALID_OPERATORS = [operator.value for operator in RuleOperator]


def validate_rule(draft: Mapping[str, Any]) -> None:
    """
    Validate a rule draft in its storage/export shape.

    Example:
        ```
        validate_rule({
            "name": "Milk",
            "condition": {"field": "name", "operator": "contains", "value": "milch"},
            "priority": 10,
            "isActive": True,
        })
        ```

    Raises:
        RuleValidationError: Describing the first problem found
    """
    condition = draft.get("condition")
    if not isinstance(condition, Mapping):
        raise RuleValidationError("Rule must contain a condition")

    operator = condition.get("operator")
    value = condition.get("value")
    if not operator or not value:
        raise RuleValidationError("Rule condition needs an operator and a value")

    if operator not in VALID_OPERATORS:
        raise RuleValidationError(
            f"Invalid operator '{operator}'. Allowed values are: {', '.join(VALID_OPERATORS)}"
        )

    if not isinstance(value, str):
        raise RuleValidationError("Rule condition value must be a string")

    if operator == RuleOperator.REGEX.value:
        try:
            re.compile(value)
        except re.error as e:
            raise RuleValidationError(f"Invalid regular expression '{value}': {e}") from e

    priority = draft.get("priority")
    if isinstance(priority, bool) or not isinstance(priority, Real) or not math.isfinite(priority) or priority < 0:
        raise RuleValidationError("Priority must be a finite, non-negative number")

    if "isActive" in draft and not isinstance(draft["isActive"], bool):
        raise RuleValidationError("isActive must be a boolean")


class RuleEngine:
    """
    Stores category rules and matches product text against them.

    Rules are evaluated highest priority first; ties keep insertion order.
    A rule does not point at a category; categories reference rules through
    metadata.rules, and the first active category referencing a matching
    rule wins.

    Usage:
        engine = RuleEngine(storage, store)
        await engine.reload_rules()

        rule = await engine.add_category_rule({
            "name": "Milk",
            "condition": {"field": "name", "operator": "contains", "value": "milch"},
            "priority": 10,
        })
        await store.attach_rule(dairy.id, rule.id)

        category = engine.find_matching_category("Bio-Milch 1L")
    """

    def __init__(self, storage: StorageBackend, taxonomy: TaxonomyStore):
        self.storage = storage
        self.taxonomy = taxonomy
        self._rules: Dict[str, CategoryRule] = {}

    async def reload_rules(self) -> None:
        """Re-read rules from storage. A failed read keeps the current rules."""
        try:
            blob = await self.storage.get_item(RULES_KEY)
            rules: Dict[str, CategoryRule] = {}
            if blob:
                for rule_id, data in json.loads(blob).items():
                    rules[rule_id] = CategoryRule.from_dict(data)
        except (StorageError, ValueError, KeyError) as e:
            logger.error("rules_load_failed", error=str(e))
            return

        self._rules = rules

    async def persist(self) -> bool:
        blob = json.dumps(
            {rule_id: rule.to_dict() for rule_id, rule in self._rules.items()},
            ensure_ascii=False,
        )
        try:
            await self.storage.set_item(RULES_KEY, blob)
        except Exception as e:
            logger.error("rules_save_failed", error=str(e), count=len(self._rules))
            return False
        return True

    def get_rule(self, rule_id: str) -> Optional[CategoryRule]:
        return self._rules.get(rule_id)

    def get_rules(self) -> List[CategoryRule]:
        return list(self._rules.values())

    async def add_category_rule(self, draft: Mapping[str, Any]) -> CategoryRule:
        """
        Validate and store a new rule.

        Args:
            draft: Rule fields in storage shape; id and createdAt are assigned

        Returns:
            The stored rule

        Raises:
            RuleValidationError: If the draft is invalid. Nothing is stored.
        """
        validate_rule(draft)
        rule = self._rule_from_draft(draft, rule_id=self._new_id(), created_at=utc_now())

        self._rules[rule.id] = rule
        await self.persist()
        logger.info("rule_added", rule_id=rule.id, operator=rule.condition.operator.value)
        return rule

    async def insert_rule(self, draft: Mapping[str, Any]) -> CategoryRule:
        """
        Validate and store a rule, keeping its id and createdAt if usable.

        Used by imports so categories that reference the rule by id keep
        pointing at it.

        Raises:
            RuleValidationError: If the draft is invalid
        """
        validate_rule(draft)
        rule_id = draft.get("id")
        if not rule_id or rule_id in self._rules:
            rule_id = self._new_id()
        rule = self._rule_from_draft(draft, rule_id=rule_id, created_at=draft.get("createdAt") or utc_now())

        self._rules[rule.id] = rule
        await self.persist()
        return rule

    async def set_rule_active(self, rule_id: str, is_active: bool) -> CategoryRule:
        """
        Raises:
            KeyError: If the rule does not exist
        """
        rule = self._rules[rule_id]
        rule.is_active = is_active
        await self.persist()
        return rule

    def find_duplicate(self, operator: str, value: str) -> Optional[CategoryRule]:
        """An existing rule with exactly this operator and value"""
        for rule in self._rules.values():
            if rule.condition.operator.value == operator and rule.condition.value == value:
                return rule
        return None

    def test_rule(self, text: str, rule: CategoryRule) -> bool:
        """
        Check a text against one rule, case-insensitively.

        A regex that does not compile (e.g. stored before validation
        existed) never matches.
        """
        try:
            return rule.condition.operator.matches(text, rule.condition.value)
        except re.error:
            logger.debug("rule_regex_invalid", rule_id=rule.id, pattern=rule.condition.value)
            return False

    def find_matching_category(self, text: str) -> Optional[Category]:
        """
        First active category referencing the highest-priority matching rule.

        Returns:
            The category, or None if no active rule leads to one
        """
        active_rules = sorted(
            (rule for rule in self._rules.values() if rule.is_active),
            key=lambda rule: rule.priority,
            reverse=True,
        )

        for rule in active_rules:
            if not self.test_rule(text, rule):
                continue
            for category in self.taxonomy.get_active_categories():
                if rule.id in category.rule_ids:
                    return category

        return None

    def _new_id(self) -> str:
        while True:
            rule_id = f"rule_{uuid.uuid4().hex[:12]}"
            if rule_id not in self._rules:
                return rule_id

    @staticmethod
    def _rule_from_draft(draft: Mapping[str, Any], rule_id: str, created_at: str) -> CategoryRule:
        condition = draft["condition"]
        return CategoryRule(
            id=rule_id,
            name=draft.get("name", ""),
            condition=RuleCondition(
                field=condition.get("field", "name"),
                operator=RuleOperator(condition["operator"]),
                value=condition["value"],
            ),
            priority=draft["priority"],
            is_active=draft.get("isActive", True),
            created_at=created_at,
        )

    def __repr__(self) -> str:
        return f"RuleEngine({len(self._rules)} rules)"
