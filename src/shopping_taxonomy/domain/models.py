from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from shopping_taxonomy.domain.enums import (
    CategoryStatus,
    PermissionRole,
    RuleOperator,
    SuggestionReason,
)


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string with millisecond precision"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class CategoryPermissions:
    """Sharing settings persisted with a category. Not enforced by the core."""
    owner: str = ""
    shared_with: List[str] = field(default_factory=list)
    public: bool = False
    role: PermissionRole = PermissionRole.VIEWER

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "sharedWith": list(self.shared_with),
            "public": self.public,
            "role": self.role.value,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CategoryPermissions":
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError(f"permissions must be an object, got {type(data).__name__}")
        return cls(
            owner=data.get("owner", ""),
            shared_with=list(data.get("sharedWith", [])),
            public=bool(data.get("public", False)),
            role=PermissionRole(data.get("role", PermissionRole.VIEWER.value)),
        )


@dataclass
class Category:
    """
    A node of the category taxonomy.

    Parent and children are referenced by id only; the store's id -> Category
    map is the sole owner of every node.

    Invariants kept by TaxonomyStore:
    - path == parent.path + [parent.id] (or [] for a root)
    - level == len(path)
    """
    id: str
    name: str
    color: str = ""
    icon: Optional[str] = None
    parent_category: Optional[str] = None
    sub_categories: List[str] = field(default_factory=list)
    path: List[str] = field(default_factory=list)
    level: int = 0
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    permissions: CategoryPermissions = field(default_factory=CategoryPermissions)
    status: CategoryStatus = CategoryStatus.ACTIVE
    created_at: str = ""
    last_modified: str = ""
    created_by: str = ""
    modified_by: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == CategoryStatus.ACTIVE

    @property
    def rule_ids(self) -> List[str]:
        """Ids of the rules referenced in metadata.rules"""
        refs = self.metadata.get("rules")
        if not isinstance(refs, list):
            return []

        ids = []
        for ref in refs:
            # Older exports embedded whole rule objects
            if isinstance(ref, dict):
                ref = ref.get("id")
            if ref:
                ids.append(ref)
        return ids

    def to_dict(self, include_metadata: bool = True) -> Dict[str, Any]:
        """Serialize using the camelCase field names of the storage format."""
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "color": self.color,
        }
        if self.icon is not None:
            data["icon"] = self.icon
        if self.parent_category is not None:
            data["parentCategory"] = self.parent_category
        data["subCategories"] = list(self.sub_categories)
        data["path"] = list(self.path)
        data["level"] = self.level
        data["tags"] = list(self.tags)
        if include_metadata:
            data["metadata"] = self.metadata
        data["permissions"] = self.permissions.to_dict()
        data["status"] = self.status.value
        data["createdAt"] = self.created_at
        data["lastModified"] = self.last_modified
        data["createdBy"] = self.created_by
        data["modifiedBy"] = self.modified_by
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Category":
        """
        Build a category from its storage/export representation.

        Only id and name are required; everything else falls back to
        defaults so partial records (CSV rows, hand-written files) load.

        Raises:
            KeyError: If id or name is missing
            ValueError: If status, role or level hold invalid values, or
                metadata/permissions are not objects
        """
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise ValueError(f"metadata must be an object, got {type(metadata).__name__}")

        path = list(data.get("path") or [])
        return cls(
            id=str(data["id"]),
            name=data["name"],
            color=data.get("color", ""),
            icon=data.get("icon") or None,
            parent_category=data.get("parentCategory") or None,
            sub_categories=list(data.get("subCategories") or []),
            path=path,
            level=int(data.get("level", len(path))),
            tags=list(data.get("tags") or []),
            metadata=dict(metadata),
            permissions=CategoryPermissions.from_dict(data.get("permissions")),
            status=CategoryStatus(data.get("status", CategoryStatus.ACTIVE.value)),
            created_at=data.get("createdAt", ""),
            last_modified=data.get("lastModified", ""),
            created_by=data.get("createdBy", ""),
            modified_by=data.get("modifiedBy", ""),
        )

    def __repr__(self) -> str:
        return f"Category({self.id}, {self.name!r}, level={self.level}, {self.status.value})"


@dataclass
class RuleCondition:
    field: str
    operator: RuleOperator
    value: str

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}


@dataclass
class CategoryRule:
    """A named, prioritized text-matching condition"""
    id: str
    name: str
    condition: RuleCondition
    priority: float = 0
    is_active: bool = True
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "condition": self.condition.to_dict(),
            "priority": self.priority,
            "isActive": self.is_active,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategoryRule":
        condition = data["condition"]
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            condition=RuleCondition(
                field=condition.get("field", "name"),
                operator=RuleOperator(condition["operator"]),
                value=condition["value"],
            ),
            priority=data.get("priority", 0),
            is_active=data.get("isActive", True),
            created_at=data.get("createdAt", ""),
        )


@dataclass
class ShoppingHistoryItem:
    """Purchase ledger entry keyed by the normalized product name"""
    id: str
    product_name: str
    purchase_date: str
    last_purchased: str
    category: Optional[str] = None
    frequency: int = 1
    confidence: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def seasonality(self) -> Optional[Dict[str, float]]:
        return self.metadata.get("seasonality")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "productName": self.product_name,
        }
        if self.category is not None:
            data["category"] = self.category
        data["purchaseDate"] = self.purchase_date
        data["lastPurchased"] = self.last_purchased
        data["frequency"] = self.frequency
        data["confidence"] = self.confidence
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShoppingHistoryItem":
        return cls(
            id=data["id"],
            product_name=data["productName"],
            purchase_date=data.get("purchaseDate", ""),
            last_purchased=data.get("lastPurchased", ""),
            category=data.get("category"),
            frequency=int(data.get("frequency", 1)),
            confidence=float(data.get("confidence", 0.0)),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class ScoreFactors:
    """The four raw factors, each in [0, 1], behind a category score"""
    purchase_history: float = 0.0
    name_similarity: float = 0.0
    seasonality: float = 0.0
    user_preference: float = 0.0

    WEIGHTS = {
        "purchase_history": 0.4,
        "name_similarity": 0.3,
        "seasonality": 0.2,
        "user_preference": 0.1,
    }

    @property
    def score(self) -> float:
        return (
            self.purchase_history * self.WEIGHTS["purchase_history"]
            + self.name_similarity * self.WEIGHTS["name_similarity"]
            + self.seasonality * self.WEIGHTS["seasonality"]
            + self.user_preference * self.WEIGHTS["user_preference"]
        )

    def dominant_reason(self) -> SuggestionReason:
        """
        Largest raw (unweighted) factor. Ties go to the earlier factor in
        purchase_history, name_similarity, seasonality, user_preference order.
        """
        ordered = [
            (self.purchase_history, SuggestionReason.PURCHASE_HISTORY),
            (self.name_similarity, SuggestionReason.NAME_SIMILARITY),
            (self.seasonality, SuggestionReason.SEASONAL_PATTERN),
            (self.user_preference, SuggestionReason.USER_PREFERENCE),
        ]
        best_value, best_reason = ordered[0]
        for value, reason in ordered[1:]:
            if value > best_value:
                best_value, best_reason = value, reason
        return best_reason

    def to_dict(self) -> Dict[str, float]:
        return {
            "purchaseHistory": self.purchase_history,
            "nameSimilarity": self.name_similarity,
            "seasonality": self.seasonality,
            "userPreference": self.user_preference,
        }


@dataclass
class AlternativeCategory:
    category_id: str
    confidence: float


@dataclass
class SimilarProduct:
    name: str
    category_id: str
    similarity: float


@dataclass
class CategorySuggestion:
    """Ranked category suggestion for a product name. Derived, never persisted."""
    product_name: str
    suggested_category: str
    confidence: float
    reason: SuggestionReason
    factors: ScoreFactors
    alternative_categories: List[AlternativeCategory] = field(default_factory=list)
    frequency: int = 0
    seasonal_confidence: float = 0.0
    last_purchased: Optional[str] = None
    similar_products: List[SimilarProduct] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productName": self.product_name,
            "suggestedCategory": self.suggested_category,
            "confidence": self.confidence,
            "reason": self.reason.value,
            "alternativeCategories": [
                {"categoryId": alt.category_id, "confidence": alt.confidence}
                for alt in self.alternative_categories
            ],
            "metadata": {
                "frequency": self.frequency,
                "seasonalConfidence": self.seasonal_confidence,
                "lastPurchased": self.last_purchased,
                "similarProducts": [
                    {
                        "name": product.name,
                        "categoryId": product.category_id,
                        "similarity": product.similarity,
                    }
                    for product in self.similar_products
                ],
            },
            "factors": self.factors.to_dict(),
        }
