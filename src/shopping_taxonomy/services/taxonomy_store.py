import json
import uuid
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import structlog

from shopping_taxonomy.config.settings import CATEGORIES_KEY, ConfigLoader
from shopping_taxonomy.domain.enums import CategoryStatus
from shopping_taxonomy.domain.exceptions import (
    CategoryNotFoundError,
    HierarchyCycleError,
    ParentNotFoundError,
    StorageError,
)
from shopping_taxonomy.domain.models import Category, CategoryPermissions, utc_now
from shopping_taxonomy.repositories.base import StorageBackend
from shopping_taxonomy.services.models import StructureIssue

logger = structlog.get_logger(__name__)


class TaxonomyStore:
    """
    Authoritative id -> Category map for the category hierarchy.

    Every mutation recomputes the affected paths/levels in memory and then
    writes the whole map under the 'categories' key in one call, so a reader
    never sees a half-updated tree.

    Usage:
        store = TaxonomyStore(storage)
        await store.reload_categories()

        food = await store.create_category("Lebensmittel", "#4CAF50")
        dairy = await store.create_category("Milchprodukte", "#FFFFFF", parent_category=food.id)
        await store.move_category(dairy.id, None)
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage
        self._categories: Dict[str, Category] = {}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def reload_categories(self) -> None:
        """
        Discard the in-memory map and re-read it from storage.

        A failed read is logged and keeps the current map.
        """
        try:
            blob = await self.storage.get_item(CATEGORIES_KEY)
            categories: Dict[str, Category] = {}
            if blob:
                for category_id, data in json.loads(blob).items():
                    categories[category_id] = Category.from_dict(data)
        except (StorageError, ValueError, KeyError) as e:
            logger.error("categories_load_failed", error=str(e))
            return

        self._categories = categories
        logger.debug("categories_loaded", count=len(categories))

    def serialize(self) -> str:
        """The persisted representation of the whole store"""
        return json.dumps(
            {category_id: category.to_dict() for category_id, category in self._categories.items()},
            ensure_ascii=False,
        )

    async def persist(self) -> bool:
        """
        Write the whole map to storage.

        The in-memory state is already updated when this runs; a failing
        write is logged and not retried.

        Returns:
            True if the write went through
        """
        try:
            await self.storage.set_item(CATEGORIES_KEY, self.serialize())
        except Exception as e:
            logger.error("categories_save_failed", error=str(e), count=len(self._categories))
            return False
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_category(self, category_id: str) -> Optional[Category]:
        return self._categories.get(category_id)

    def get_all_categories(self, include_archived: bool = True) -> List[Category]:
        """All categories in insertion order"""
        return [
            category for category in self._categories.values()
            if include_archived or category.is_active
        ]

    def get_active_categories(self) -> List[Category]:
        return self.get_all_categories(include_archived=False)

    def get_subcategories(self, parent_id: str) -> List[Category]:
        """Direct children of a category, found through their parent pointers"""
        return [
            category for category in self._categories.values()
            if category.parent_category == parent_id
        ]

    def get_category_path(self, category_id: str) -> List[Category]:
        """
        Ancestors of a category from the root down to the category itself.

        Raises:
            CategoryNotFoundError: If the category does not exist
        """
        category = self._require(category_id)
        lineage = [category]
        seen = {category.id}
        current = category.parent_category
        while current and current not in seen:
            parent = self._categories.get(current)
            if parent is None:
                break
            lineage.append(parent)
            seen.add(current)
            current = parent.parent_category

        lineage.reverse()
        return lineage

    def __contains__(self, category_id: str) -> bool:
        return category_id in self._categories

    def __len__(self) -> int:
        return len(self._categories)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_category(
        self,
        name: str,
        color: str,
        parent_category: Optional[str] = None,
        icon: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        permissions: Optional[CategoryPermissions] = None,
        created_by: str = "user",
    ) -> Category:
        """
        Create a category, optionally below an existing parent.

        Args:
            name: Display name
            color: Display color (e.g. '#4CAF50')
            parent_category: Id of the parent, None for a root category
            icon: Optional icon name
            tags: Free-form tags
            metadata: Open metadata map (description, rules, customFields, ...)
            permissions: Sharing settings, defaults to private to created_by
            created_by: User recorded as creator

        Returns:
            The stored category with id, path and level filled in

        Raises:
            ParentNotFoundError: If parent_category does not exist
        """
        category = self._build_category(
            name=name,
            color=color,
            parent_category=parent_category,
            icon=icon,
            tags=tags,
            metadata=metadata,
            permissions=permissions,
            created_by=created_by,
        )
        await self.persist()
        logger.info(
            "category_created",
            category_id=category.id,
            name=category.name,
            parent=category.parent_category,
        )
        return category

    async def move_category(
        self,
        category_id: str,
        new_parent_id: Optional[str] = None,
        modified_by: Optional[str] = None,
    ) -> Category:
        """
        Re-parent a category, or make it a root with new_parent_id=None.

        Paths and levels are recomputed for the category and all of its
        descendants. Archival status is not touched.

        Raises:
            CategoryNotFoundError: If the category does not exist
            ParentNotFoundError: If the new parent does not exist
            HierarchyCycleError: If the new parent is the category itself
                or one of its descendants. Nothing is changed.
        """
        category = self._require(category_id)

        if new_parent_id is not None:
            if new_parent_id not in self._categories:
                raise ParentNotFoundError(new_parent_id)
            if self._would_create_cycle(category_id, new_parent_id):
                raise HierarchyCycleError(category_id, new_parent_id)

        old_parent = self._categories.get(category.parent_category or "")
        if old_parent and category_id in old_parent.sub_categories:
            old_parent.sub_categories.remove(category_id)

        category.parent_category = new_parent_id
        if new_parent_id is not None:
            new_parent = self._categories[new_parent_id]
            if category_id not in new_parent.sub_categories:
                new_parent.sub_categories.append(category_id)

        self._refresh_paths(category_id)
        self._touch(category, modified_by)

        await self.persist()
        logger.info(
            "category_moved",
            category_id=category_id,
            old_parent=old_parent.id if old_parent else None,
            new_parent=new_parent_id,
        )
        return category

    async def archive_category(
        self,
        category_id: str,
        modified_by: Optional[str] = None,
    ) -> List[str]:
        """
        Archive a category and, recursively, all of its subcategories.

        Nodes that are already archived are left as they are.

        Returns:
            Ids of the categories that changed to archived

        Raises:
            CategoryNotFoundError: If the category does not exist
        """
        self._require(category_id)

        archived = []
        stack = [category_id]
        visited = set()
        while stack:
            current_id = stack.pop()
            if current_id in visited:
                continue
            visited.add(current_id)

            node = self._categories.get(current_id)
            if node is None:
                continue
            if node.status != CategoryStatus.ARCHIVED:
                node.status = CategoryStatus.ARCHIVED
                self._touch(node, modified_by)
                archived.append(current_id)
            stack.extend(reversed(node.sub_categories))

        await self.persist()
        logger.info("category_archived", category_id=category_id, archived=len(archived))
        return archived

    async def update_category_permissions(
        self,
        category_id: str,
        permissions: Union[CategoryPermissions, Mapping[str, Any]],
        modified_by: Optional[str] = None,
    ) -> Category:
        """
        Replace the permissions object of a category.

        Raises:
            CategoryNotFoundError: If the category does not exist
            ValueError: If the role is not admin, editor or viewer
        """
        category = self._require(category_id)
        if not isinstance(permissions, CategoryPermissions):
            permissions = CategoryPermissions.from_dict(dict(permissions))

        category.permissions = permissions
        self._touch(category, modified_by)
        await self.persist()
        logger.info("category_permissions_updated", category_id=category_id, role=permissions.role.value)
        return category

    async def update_category(
        self,
        category_id: str,
        *,
        name: Optional[str] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        modified_by: Optional[str] = None,
    ) -> Category:
        """
        Edit the descriptive fields of a category.

        Hierarchy fields and status change only through move_category and
        archive_category.
        """
        category = self._require(category_id)
        if name is not None:
            category.name = name
        if color is not None:
            category.color = color
        if icon is not None:
            category.icon = icon
        if tags is not None:
            category.tags = list(tags)
        if metadata is not None:
            category.metadata = dict(metadata)

        self._touch(category, modified_by)
        await self.persist()
        return category

    async def attach_rule(self, category_id: str, rule_id: str) -> Category:
        """Reference a rule from metadata.rules of a category"""
        category = self._require(category_id)
        rules = category.metadata.setdefault("rules", [])
        if rule_id not in category.rule_ids:
            rules.append(rule_id)
            self._touch(category)
            await self.persist()
        return category

    async def detach_rule(self, category_id: str, rule_id: str) -> Category:
        category = self._require(category_id)
        rules = category.metadata.get("rules") or []
        remaining = [
            ref for ref in rules
            if (ref.get("id") if isinstance(ref, dict) else ref) != rule_id
        ]
        if len(remaining) != len(rules):
            category.metadata["rules"] = remaining
            self._touch(category)
            await self.persist()
        return category

    async def seed_default_categories(self) -> List[Category]:
        """
        Create the bundled default root categories if the store is empty.

        Returns:
            The created categories (empty if the store already had data)
        """
        if self._categories:
            return []

        created = [
            self._build_category(
                name=entry["name"],
                color=entry.get("color", ""),
                icon=entry.get("icon"),
                tags=entry.get("tags"),
                metadata=entry.get("metadata"),
                created_by="system",
            )
            for entry in ConfigLoader.load_default_categories()
        ]
        await self.persist()
        logger.info("default_categories_seeded", count=len(created))
        return created

    # ------------------------------------------------------------------
    # Bulk primitives for import
    # ------------------------------------------------------------------

    def put_category(self, category: Category) -> Optional[Category]:
        """
        Insert or replace a category as-is, without persisting.

        Call relink() and persist() once the batch is complete.

        Returns:
            The category previously stored under the same id, if any
        """
        previous = self._categories.get(category.id)
        self._categories[category.id] = category
        return previous

    def relink(self, category_ids: Iterable[str], extra_parents: Iterable[str] = ()) -> None:
        """
        Re-synchronize hierarchy fields after a bulk insert.

        subCategories of every touched parent are rebuilt from the children's
        parent pointers (keeping the existing order), then path and level are
        recomputed for the given categories and their descendants wherever
        the ancestor chain resolves.

        Args:
            category_ids: Categories that were inserted or replaced
            extra_parents: Former parents of replaced categories
        """
        category_ids = [cid for cid in category_ids if cid in self._categories]
        affected = set(extra_parents)
        for category_id in category_ids:
            affected.add(category_id)
            parent_id = self._categories[category_id].parent_category
            if parent_id:
                affected.add(parent_id)

        children_of: Dict[str, List[str]] = defaultdict(list)
        for category in self._categories.values():
            if category.parent_category:
                children_of[category.parent_category].append(category.id)

        for parent_id in affected:
            parent = self._categories.get(parent_id)
            if parent is None:
                continue
            children = children_of.get(parent_id, [])
            kept = [child for child in parent.sub_categories if child in children]
            parent.sub_categories = kept + [child for child in children if child not in kept]

        for category_id in category_ids:
            self._refresh_paths(category_id)

    # ------------------------------------------------------------------
    # Structure checks
    # ------------------------------------------------------------------

    def validate_structure(self) -> List[StructureIssue]:
        """
        Report hierarchy inconsistencies without changing anything.

        Checks for parent pointers to missing categories, ancestor cycles and
        path/level values that disagree with the parent chain.
        """
        issues: List[StructureIssue] = []
        for category in self._categories.values():
            parent_id = category.parent_category
            if parent_id and parent_id not in self._categories:
                issues.append(StructureIssue(
                    error_type="invalid-parent",
                    category_id=category.id,
                    message=f"'{category.name}' references missing parent {parent_id}",
                ))
                continue

            if self._in_cycle(category.id):
                issues.append(StructureIssue(
                    error_type="circular-reference",
                    category_id=category.id,
                    message=f"'{category.name}' is part of a circular reference",
                ))
                continue

            expected = self._path_for(parent_id)
            if expected is not None and (category.path != expected or category.level != len(expected)):
                issues.append(StructureIssue(
                    error_type="path-mismatch",
                    category_id=category.id,
                    message=(
                        f"'{category.name}' has path {category.path} (level {category.level}), "
                        f"expected {expected}"
                    ),
                ))
        return issues

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, category_id: str) -> Category:
        category = self._categories.get(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    def _new_id(self) -> str:
        while True:
            category_id = f"cat_{uuid.uuid4().hex[:12]}"
            if category_id not in self._categories:
                return category_id

    def _build_category(
        self,
        name: str,
        color: str,
        parent_category: Optional[str] = None,
        icon: Optional[str] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        permissions: Optional[CategoryPermissions] = None,
        created_by: str = "user",
    ) -> Category:
        parent = None
        if parent_category is not None:
            parent = self._categories.get(parent_category)
            if parent is None:
                raise ParentNotFoundError(parent_category)

        path: List[str] = []
        if parent is not None:
            path = self._path_for(parent.id) or parent.path + [parent.id]

        now = utc_now()
        category = Category(
            id=self._new_id(),
            name=name,
            color=color,
            icon=icon,
            parent_category=parent_category,
            path=path,
            level=len(path),
            tags=list(tags or []),
            metadata=dict(metadata or {}),
            permissions=permissions or CategoryPermissions(owner=created_by),
            status=CategoryStatus.ACTIVE,
            created_at=now,
            last_modified=now,
            created_by=created_by,
            modified_by=created_by,
        )

        self._categories[category.id] = category
        if parent is not None:
            parent.sub_categories.append(category.id)
        return category

    def _path_for(self, parent_id: Optional[str]) -> Optional[List[str]]:
        """
        Path of a child of parent_id, walking parent pointers to the root.

        Returns None when the chain is broken (missing ancestor) or loops.
        """
        chain: List[str] = []
        seen = set()
        current = parent_id
        while current is not None:
            if current in seen:
                return None
            seen.add(current)
            node = self._categories.get(current)
            if node is None:
                return None
            chain.append(current)
            current = node.parent_category

        chain.reverse()
        return chain

    def _would_create_cycle(self, category_id: str, new_parent_id: str) -> bool:
        """Walk up from the new parent looking for the moved category."""
        current: Optional[str] = new_parent_id
        seen = set()
        while current is not None:
            if current == category_id:
                return True
            if current in seen:
                break
            seen.add(current)
            node = self._categories.get(current)
            if node is None:
                break
            current = node.parent_category
        return False

    def _in_cycle(self, category_id: str) -> bool:
        category = self._categories[category_id]
        if not category.parent_category:
            return False
        return self._would_create_cycle(category_id, category.parent_category)

    def _refresh_paths(self, category_id: str) -> None:
        """Recompute path/level for a category and every descendant."""
        stack = [category_id]
        visited = set()
        while stack:
            current_id = stack.pop()
            if current_id in visited:
                continue
            visited.add(current_id)

            node = self._categories.get(current_id)
            if node is None:
                continue

            path = self._path_for(node.parent_category)
            if path is None:
                logger.warning(
                    "category_path_unresolved",
                    category_id=current_id,
                    parent=node.parent_category,
                )
                node.level = len(node.path)
            else:
                node.path = path
                node.level = len(path)
            stack.extend(node.sub_categories)

    @staticmethod
    def _touch(category: Category, modified_by: Optional[str] = None) -> None:
        category.last_modified = utc_now()
        if modified_by:
            category.modified_by = modified_by

    def __repr__(self) -> str:
        return f"TaxonomyStore({len(self._categories)} categories)"
