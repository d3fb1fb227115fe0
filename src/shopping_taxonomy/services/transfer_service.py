import time
from typing import Any, Dict, List, Optional, Union

import structlog

from shopping_taxonomy.categorization.rules import RuleEngine, validate_rule
from shopping_taxonomy.config.settings import Settings
from shopping_taxonomy.domain.enums import ConflictResolution, ExportFormat, PermissionRole
from shopping_taxonomy.domain.exceptions import RuleValidationError, TaxonomyError
from shopping_taxonomy.domain.models import Category, CategoryPermissions, utc_now
from shopping_taxonomy.formats.base import ParsedRecord
from shopping_taxonomy.formats.factory import FormatFactory
from shopping_taxonomy.formats.template import build_template, parse_template, translate
from shopping_taxonomy.services.models import ImportIssue, ImportResult, TemplateImportResult
from shopping_taxonomy.services.taxonomy_store import TaxonomyStore

logger = structlog.get_logger(__name__)


class TransferService:
    """
    Export and import of the taxonomy (and its rules).

    Imports are partial-failure: a bad record is reported in the result and
    the rest of the document is still processed. Only a document that
    cannot be read at all raises ImportFormatError.
    """

    def __init__(
        self,
        taxonomy: TaxonomyStore,
        rules: RuleEngine,
        settings: Optional[Settings] = None,
    ):
        self.taxonomy = taxonomy
        self.rules = rules
        self.settings = settings or Settings.load()

    def export_categories(
        self,
        export_format: Union[ExportFormat, str] = ExportFormat.JSON,
        include_rules: bool = False,
        include_metadata: bool = True,
    ) -> str:
        """
        Serialize every category in the store.

        Args:
            export_format: 'json' or 'csv'
            include_rules: Embed the rule set (JSON only)
            include_metadata: Keep each category's metadata map (JSON only)

        Returns:
            The exported document
        """
        codec = FormatFactory.create(export_format)
        rules = self.rules.get_rules() if include_rules else None
        return codec.serialize(
            self.taxonomy.get_all_categories(),
            rules=rules,
            include_metadata=include_metadata,
        )

    async def import_categories(
        self,
        data: str,
        export_format: Union[ExportFormat, str] = ExportFormat.JSON,
        conflict_resolution: Union[ConflictResolution, str] = ConflictResolution.SKIP,
        validate_hierarchy: bool = False,
        import_rules: bool = False,
    ) -> ImportResult:
        """
        Import categories (and optionally rules) from an exported document.

        Rules are processed first so categories can reference them. For an
        id that already exists the conflict policy decides:

        - skip: keep the stored category, count it as skipped
        - overwrite: replace it (CSV only replaces its own columns)
        - rename: import under '<id>_imported_<ms>' with a localized name suffix

        Args:
            data: Document text
            export_format: 'json' or 'csv'
            conflict_resolution: 'skip', 'overwrite' or 'rename'
            validate_hierarchy: Reject categories whose parent is not in the store
            import_rules: Also import the document's rules (JSON only)

        Returns:
            Counts plus the per-record errors

        Raises:
            ImportFormatError: If the document cannot be parsed at all
        """
        policy = ConflictResolution(conflict_resolution)
        codec = FormatFactory.create(export_format)
        document = codec.parse(data)

        result = ImportResult()

        if import_rules and document.rules:
            await self._import_rules(document.rules, result)

        previous_parents: List[str] = []
        for record in document.records:
            if record.error:
                result.errors.append(ImportIssue(id=record.key, error=record.error))
                continue
            try:
                self._import_record(record, policy, validate_hierarchy, document.columns_only, result, previous_parents)
            except (KeyError, ValueError, TypeError) as e:
                result.errors.append(ImportIssue(id=record.key, error=f"Import failed: {e}"))

        if result.imported_ids:
            self.taxonomy.relink(result.imported_ids, extra_parents=previous_parents)
            await self.taxonomy.persist()

        logger.info(
            "categories_imported",
            format=codec.__class__.__name__,
            policy=policy.value,
            imported=result.imported,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    def export_template(
        self,
        category_ids: List[str],
        languages: Optional[List[str]] = None,
        default_language: Optional[str] = None,
        include_metadata: bool = False,
    ) -> str:
        """
        Export selected categories as a portable multi-language template.

        Unknown ids are left out.
        """
        default_language = default_language or self.settings.default_language
        languages = languages or [default_language]
        categories = [
            category for category in
            (self.taxonomy.get_category(category_id) for category_id in category_ids)
            if category is not None
        ]

        title_languages = list(dict.fromkeys([default_language, self.settings.fallback_language]))
        return build_template(
            categories,
            languages=languages,
            default_language=default_language,
            title={lang: self.settings.text("template_name", lang) for lang in title_languages},
            description={lang: self.settings.text("template_description", lang) for lang in title_languages},
            include_metadata=include_metadata,
        )

    async def import_template(
        self,
        data: str,
        target_language: Optional[str] = None,
        fallback_language: Optional[str] = None,
        preserve_translations: bool = False,
    ) -> TemplateImportResult:
        """
        Create root categories from a template in the requested language.

        Names resolve target language first, then the fallback. A target
        language the template does not declare only produces a warning.

        Raises:
            ImportFormatError: If the template cannot be parsed at all
        """
        template = parse_template(data)
        result = TemplateImportResult()

        template_meta = template.get("metadata") or {}
        languages = template_meta.get("languages") or [self.settings.default_language]
        target = target_language or template_meta.get("defaultLanguage") or self.settings.default_language
        fallback = fallback_language or self.settings.fallback_language

        if target not in languages:
            result.warnings.append(
                f"Target language '{target}' is not available in the template. "
                f"Available languages: {', '.join(languages)}"
            )

        template_name = translate(template.get("name"), target, fallback)

        for entry in template["categories"]:
            if not isinstance(entry, dict):
                result.errors.append("Template category entry is not an object")
                continue

            name = translate(entry.get("name"), target, fallback)
            if not name:
                label = self._any_translation(entry.get("name")) or self.settings.text("unknown", target)
                result.errors.append(
                    f"Could not create category '{label}': no name for '{target}' or '{fallback}'"
                )
                continue

            try:
                metadata = self._template_metadata(entry, target, fallback, template_name, preserve_translations)
                await self.taxonomy.create_category(
                    name=name,
                    color=entry.get("color", ""),
                    icon=entry.get("icon"),
                    tags=entry.get("tags"),
                    metadata=metadata,
                    permissions=CategoryPermissions(
                        owner="system",
                        shared_with=[],
                        public=True,
                        role=PermissionRole.VIEWER,
                    ),
                    created_by="template",
                )
                result.created += 1
            except TaxonomyError as e:
                result.errors.append(f"Could not create category '{name}': {e.message}")
            except (TypeError, ValueError) as e:
                result.errors.append(f"Could not create category '{name}': {e}")

        logger.info(
            "template_imported",
            language=target,
            created=result.created,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    @staticmethod
    def _template_metadata(
        entry: Dict[str, Any],
        target: str,
        fallback: str,
        template_name: Optional[str],
        preserve_translations: bool,
    ) -> Dict[str, Any]:
        """
        Raises:
            ValueError: If the entry's metadata is not an object
        """
        raw = entry.get("metadata") or {}
        if not isinstance(raw, dict):
            raise ValueError(f"metadata must be an object, got {type(raw).__name__}")

        metadata: Dict[str, Any] = dict(raw)
        description = translate(entry.get("description"), target, fallback)
        if description:
            metadata.setdefault("description", description)
        if preserve_translations:
            metadata["translations"] = {
                "name": entry.get("name"),
                "description": entry.get("description") or {},
            }
        metadata["importedFrom"] = {
            "template": template_name,
            "language": target,
            "date": utc_now(),
        }
        return metadata

    async def _import_rules(self, rules: List[Any], result: ImportResult) -> None:
        for raw in rules:
            if not isinstance(raw, dict):
                result.errors.append(ImportIssue(id="unknown", error="Rule entry is not an object"))
                continue

            key = str(raw.get("id") or "unknown")
            try:
                validate_rule(raw)
            except RuleValidationError as e:
                result.errors.append(ImportIssue(id=key, error=f"Invalid rule: {e.message}"))
                continue

            condition = raw["condition"]
            duplicate = self.rules.find_duplicate(condition["operator"], condition["value"])
            if duplicate is not None:
                result.duplicate_rules.append(ImportIssue(
                    id=key,
                    error=f"A matching rule already exists (id: {duplicate.id})",
                ))
                logger.info("rule_import_duplicate", rule_id=key, existing=duplicate.id)
                continue

            await self.rules.insert_rule(raw)
            result.rules_imported += 1

    def _import_record(
        self,
        record: ParsedRecord,
        policy: ConflictResolution,
        validate_hierarchy: bool,
        columns_only: bool,
        result: ImportResult,
        previous_parents: List[str],
    ) -> None:
        data = dict(record.data)
        existing = self.taxonomy.get_category(record.key)

        if existing is not None:
            if policy == ConflictResolution.SKIP:
                result.skipped += 1
                logger.info("category_import_skipped", category_id=record.key)
                return
            if policy == ConflictResolution.RENAME:
                data["id"] = self._renamed_id(record.key)
                data["name"] = f"{data.get('name', '')} {self.settings.text('imported_suffix')}"
                existing = None

        parent_id = data.get("parentCategory")
        if validate_hierarchy and parent_id and parent_id not in self.taxonomy:
            result.errors.append(ImportIssue(
                id=str(data["id"]),
                error=f"Parent category not found: {parent_id}",
            ))
            return

        if columns_only:
            data = self._complete_columns(data, existing)

        category = Category.from_dict(data)
        previous = self.taxonomy.put_category(category)
        if previous is not None and previous.parent_category and previous.parent_category != category.parent_category:
            previous_parents.append(previous.parent_category)

        result.imported += 1
        result.imported_ids.append(category.id)

    @staticmethod
    def _complete_columns(data: Dict[str, Any], existing: Optional[Category]) -> Dict[str, Any]:
        """Fill the fields a tabular row does not carry."""
        if existing is not None:
            merged = existing.to_dict()
            merged.update(data)
            merged["icon"] = data.get("icon")
            merged["parentCategory"] = data.get("parentCategory")
            return merged

        now = utc_now()
        completed = dict(data)
        completed.setdefault("createdAt", now)
        completed.setdefault("lastModified", now)
        completed.setdefault("createdBy", "import")
        completed.setdefault("modifiedBy", "import")
        return completed

    def _renamed_id(self, category_id: str) -> str:
        new_id = f"{category_id}_imported_{int(time.time() * 1000)}"
        suffix = 1
        candidate = new_id
        while candidate in self.taxonomy:
            candidate = f"{new_id}_{suffix}"
            suffix += 1
        return candidate

    @staticmethod
    def _any_translation(values: Any) -> Optional[str]:
        if not isinstance(values, dict):
            return None
        return next((value for value in values.values() if value), None)
