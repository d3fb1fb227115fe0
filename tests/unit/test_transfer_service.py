import json

import pytest

from shopping_taxonomy.categorization.rules import RuleEngine
from shopping_taxonomy.config.settings import Settings
from shopping_taxonomy.domain.enums import CategoryStatus, PermissionRole
from shopping_taxonomy.domain.exceptions import ImportFormatError
from shopping_taxonomy.repositories.base import InMemoryStorage
from shopping_taxonomy.services.taxonomy_store import TaxonomyStore
from shopping_taxonomy.services.transfer_service import TransferService


@pytest.fixture
def target_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def target(target_storage, settings) -> TransferService:
    """A second, empty taxonomy to import into"""
    store = TaxonomyStore(target_storage)
    return TransferService(store, RuleEngine(target_storage, store), settings)


@pytest.mark.unit
class TestJsonExport:
    """Test the JSON document"""

    async def test_export_shape(self, transfer: TransferService, food_tree):
        # Act
        document = json.loads(transfer.export_categories("json"))

        # Assert
        assert document["version"] == "1.0"
        assert document["exportDate"].endswith("Z")
        assert [category["name"] for category in document["categories"]] == [
            "Lebensmittel", "Milchprodukte", "Käse", "Obst",
        ]
        assert "rules" not in document

    async def test_export_with_rules(self, transfer: TransferService, rule_engine: RuleEngine, food_tree):
        await rule_engine.add_category_rule({
            "name": "Milk",
            "condition": {"field": "name", "operator": "contains", "value": "milch"},
            "priority": 10,
        })

        document = json.loads(transfer.export_categories("json", include_rules=True))

        assert [rule["name"] for rule in document["rules"]] == ["Milk"]

    async def test_export_without_metadata(self, transfer: TransferService, store: TaxonomyStore):
        await store.create_category("Lebensmittel", "#4CAF50", metadata={"description": "Essen"})

        document = json.loads(transfer.export_categories("json", include_metadata=False))

        assert "metadata" not in document["categories"][0]

    async def test_unknown_format(self, transfer: TransferService):
        with pytest.raises(ValueError):
            transfer.export_categories("xml")


@pytest.mark.unit
class TestJsonImport:
    """Test importing JSON exports"""

    async def test_import_into_empty_store(self, transfer: TransferService, target: TransferService, food_tree):
        # Arrange
        document = transfer.export_categories("json")

        # Act
        result = await target.import_categories(document, "json")

        # Assert
        assert (result.imported, result.skipped, result.errors) == (4, 0, [])
        cheese = target.taxonomy.get_category(food_tree["cheese"].id)
        assert cheese.path == food_tree["cheese"].path
        assert target.taxonomy.validate_structure() == []

    async def test_skip_is_idempotent(self, transfer: TransferService, storage: InMemoryStorage, food_tree):
        # Arrange
        document = transfer.export_categories("json")
        before_blob = storage.items["categories"]
        before = transfer.taxonomy.serialize()

        # Act
        result = await transfer.import_categories(document, "json", conflict_resolution="skip")

        # Assert
        assert (result.imported, result.skipped) == (0, 4)
        assert transfer.taxonomy.serialize() == before
        assert storage.items["categories"] == before_blob

    async def test_overwrite_replaces_record(self, transfer: TransferService, food_tree):
        # Arrange
        document = json.loads(transfer.export_categories("json"))
        document["categories"][3]["name"] = "Obst & Gemüse"
        document["categories"][3]["tags"] = ["fresh"]

        # Act
        result = await transfer.import_categories(json.dumps(document), "json", conflict_resolution="overwrite")

        # Assert
        assert result.imported == 4
        fruit = transfer.taxonomy.get_category(food_tree["fruit"].id)
        assert fruit.name == "Obst & Gemüse"
        assert fruit.tags == ["fresh"]

    async def test_rename_creates_copies(self, transfer: TransferService, food_tree):
        # Arrange
        food = food_tree["food"]
        document = {"categories": [food.to_dict()]}

        # Act
        result = await transfer.import_categories(json.dumps(document), "json", conflict_resolution="rename")

        # Assert
        assert result.imported == 1
        new_id = result.imported_ids[0]
        assert new_id.startswith(f"{food.id}_imported_")
        assert transfer.taxonomy.get_category(new_id).name == "Lebensmittel (Importiert)"
        assert transfer.taxonomy.get_category(food.id).name == "Lebensmittel"

    async def test_rename_uses_english_suffix(self, store, rule_engine, food_tree):
        english = TransferService(store, rule_engine, Settings(default_language="en", strings={
            "en": {"imported_suffix": "(Imported)"},
        }))
        document = {"categories": [food_tree["fruit"].to_dict()]}

        result = await english.import_categories(json.dumps(document), "json", conflict_resolution="rename")

        assert store.get_category(result.imported_ids[0]).name == "Obst (Imported)"

    async def test_validate_hierarchy_rejects_only_orphans(self, target: TransferService):
        # Arrange
        document = {"categories": [
            {"id": "root", "name": "Lebensmittel"},
            {"id": "child", "name": "Milchprodukte", "parentCategory": "root"},
            {"id": "orphan", "name": "Waise", "parentCategory": "missing"},
        ]}

        # Act
        result = await target.import_categories(json.dumps(document), "json", validate_hierarchy=True)

        # Assert
        assert result.imported == 2
        assert [issue.id for issue in result.errors] == ["orphan"]
        assert "missing" in result.errors[0].error
        child = target.taxonomy.get_category("child")
        assert child.path == ["root"]
        assert target.taxonomy.get_category("root").sub_categories == ["child"]

    async def test_bad_records_do_not_stop_import(self, target: TransferService):
        document = {"categories": [
            "not an object",
            {"name": "No id"},
            {"id": "bad_status", "name": "X", "status": "deleted"},
            {"id": "ok", "name": "Haushalt"},
        ]}

        result = await target.import_categories(json.dumps(document), "json")

        assert result.imported == 1
        assert [issue.id for issue in result.errors] == ["row_1", "row_2", "bad_status"]
        assert result.partial_success

    @pytest.mark.parametrize("field, value", [
        ("permissions", "everyone"),
        ("permissions", ["anna"]),
        ("metadata", "oops"),
    ])
    async def test_non_object_fields_are_row_errors(self, target: TransferService, field, value):
        # Arrange
        document = {"categories": [
            {"id": "bad", "name": "Bad", field: value},
            {"id": "good", "name": "Good"},
        ]}

        # Act
        result = await target.import_categories(json.dumps(document), "json")

        # Assert
        assert result.imported == 1
        assert [issue.id for issue in result.errors] == ["bad"]
        assert "good" in target.taxonomy
        assert "bad" not in target.taxonomy

    async def test_non_list_rule_refs_do_not_break_matching(self, target: TransferService):
        # Arrange
        document = {"categories": [{"id": "odd", "name": "Odd", "metadata": {"rules": 5}}]}
        await target.import_categories(json.dumps(document), "json")
        await target.rules.add_category_rule({
            "name": "Milk",
            "condition": {"field": "name", "operator": "contains", "value": "milch"},
            "priority": 10,
        })

        # Act & Assert
        assert target.taxonomy.get_category("odd").rule_ids == []
        assert target.rules.find_matching_category("Milch") is None

    @pytest.mark.parametrize("data", [
        "{not json",
        json.dumps({"version": "1.0"}),
        json.dumps({"categories": {}}),
        json.dumps({"categories": [], "rules": "all"}),
    ])
    async def test_unparsable_document_raises(self, target: TransferService, data):
        with pytest.raises(ImportFormatError):
            await target.import_categories(data, "json")

    async def test_import_rules(self, transfer: TransferService, target: TransferService, rule_engine, store, food_tree):
        # Arrange
        milk = await rule_engine.add_category_rule({
            "name": "Milk",
            "condition": {"field": "name", "operator": "contains", "value": "milch"},
            "priority": 10,
        })
        await store.attach_rule(food_tree["dairy"].id, milk.id)
        document = json.loads(transfer.export_categories("json", include_rules=True))
        document["rules"].append({
            "id": "rule_bad",
            "name": "Broken",
            "condition": {"field": "name", "operator": "regex", "value": "(unclosed"},
            "priority": 1,
        })

        # Act
        result = await target.import_categories(json.dumps(document), "json", import_rules=True)
        again = await target.import_categories(json.dumps(document), "json", import_rules=True)

        # Assert
        assert result.rules_imported == 1
        assert [issue.id for issue in result.errors] == ["rule_bad"]
        assert target.rules.get_rule(milk.id) is not None
        assert target.rules.find_matching_category("Frische Milch").id == food_tree["dairy"].id

        assert again.rules_imported == 0
        assert [issue.id for issue in again.duplicate_rules] == [milk.id]
        assert again.skipped == 4

    async def test_rules_ignored_unless_requested(self, transfer: TransferService, target: TransferService, rule_engine, food_tree):
        await rule_engine.add_category_rule({
            "name": "Milk",
            "condition": {"field": "name", "operator": "contains", "value": "milch"},
            "priority": 10,
        })
        document = transfer.export_categories("json", include_rules=True)

        result = await target.import_categories(document, "json")

        assert result.rules_imported == 0
        assert target.rules.get_rules() == []


@pytest.mark.unit
class TestCsv:
    """Test the CSV format"""

    async def test_export_quotes_every_field(self, transfer: TransferService, store: TaxonomyStore):
        # Arrange
        category = await store.create_category('Obst, "frisch"', "#FF9800", tags=["fresh", "bio"])

        # Act
        document = transfer.export_categories("csv")

        # Assert
        lines = document.split("\n")
        assert lines[0] == "id,name,color,icon,parentCategory,level,tags,status"
        assert lines[1] == f'"{category.id}","Obst, ""frisch""","#FF9800","","","0","fresh;bio","active"'
        assert not document.endswith("\n")

    async def test_export_empty_store(self, transfer: TransferService):
        assert transfer.export_categories("csv") == "id,name,color,icon,parentCategory,level,tags,status"

    async def test_round_trip_with_overwrite(self, transfer: TransferService, store: TaxonomyStore, food_tree):
        # Arrange
        await store.create_category('Snacks; "süß", salzig', "#795548", icon="cookie", tags=["a b", "c,d", 'e"f'])
        await store.update_category(food_tree["food"].id, metadata={"description": "Essen"})
        before = {category.id: category.to_dict() for category in store.get_all_categories()}
        document = transfer.export_categories("csv")

        # Act
        result = await transfer.import_categories(document, "csv", conflict_resolution="overwrite")

        # Assert
        assert (result.imported, result.skipped, result.errors) == (5, 0, [])
        after = {category.id: category.to_dict() for category in store.get_all_categories()}
        assert after == before

    async def test_import_into_empty_store(self, transfer: TransferService, target: TransferService, food_tree):
        # Arrange
        document = transfer.export_categories("csv")

        # Act
        result = await target.import_categories(document, "csv")

        # Assert
        assert result.imported == 4
        dairy = target.taxonomy.get_category(food_tree["dairy"].id)
        assert dairy.sub_categories == [food_tree["cheese"].id]
        assert dairy.tags == ["dairy"]
        assert dairy.created_by == "import"
        assert target.taxonomy.validate_structure() == []

    async def test_bad_rows_are_reported(self, target: TransferService):
        document = "\n".join([
            "id,name,color,icon,parentCategory,level,tags,status",
            '"a","Lebensmittel","#4CAF50","","","0","","active"',
            '"b","Kaputt","#000000","","","zwei","","active"',
            '"c","Gelöscht","#000000","","","0","","deleted"',
        ])

        result = await target.import_categories(document, "csv")

        assert result.imported == 1
        assert [issue.id for issue in result.errors] == ["b", "c"]

    async def test_orphan_row_keeps_level_consistent(self, target: TransferService):
        # Arrange
        document = "\n".join([
            "id,name,color,icon,parentCategory,level,tags,status",
            '"x","X","#fff","","ghost","2","","active"',
        ])

        # Act
        result = await target.import_categories(document, "csv")

        # Assert
        assert result.imported == 1
        orphan = target.taxonomy.get_category("x")
        assert orphan.parent_category == "ghost"
        assert orphan.level == len(orphan.path)
        assert [issue.error_type for issue in target.taxonomy.validate_structure()] == ["invalid-parent"]

    @pytest.mark.parametrize("data", [
        "",
        "name,id\n\"x\",\"y\"",
    ])
    async def test_unparsable_csv_raises(self, target: TransferService, data):
        with pytest.raises(ImportFormatError):
            await target.import_categories(data, "csv")


@pytest.mark.unit
class TestTemplates:
    """Test multi-language templates"""

    async def test_export_template(self, transfer: TransferService, store: TaxonomyStore, food_tree):
        # Arrange
        await store.update_category(food_tree["dairy"].id, metadata={"description": "Milch und mehr"})

        # Act
        template = json.loads(transfer.export_template(
            [food_tree["dairy"].id, "cat_unknown"],
            languages=["de", "en"],
        ))

        # Assert
        assert template["version"] == "1.1"
        assert template["name"] == {"de": "Benutzerdefinierte Vorlage", "en": "Custom Template"}
        assert template["metadata"]["languages"] == ["de", "en"]
        assert template["metadata"]["defaultLanguage"] == "de"
        assert template["categories"] == [{
            "name": {"de": "Milchprodukte"},
            "description": {"de": "Milch und mehr"},
            "color": "#FFFFFF",
            "tags": ["dairy"],
            "translations": {},
        }]

    async def test_import_template_in_target_language(self, target: TransferService):
        # Arrange
        template = json.dumps({
            "version": "1.1",
            "name": {"de": "Vorlage", "en": "Template"},
            "metadata": {"languages": ["de", "en"], "defaultLanguage": "de"},
            "categories": [
                {"name": {"de": "Getränke", "en": "Drinks"}, "color": "#03A9F4", "tags": ["drinks"]},
                {"name": {"de": "Backwaren"}, "color": "#795548"},
            ],
        })

        # Act
        result = await target.import_template(template, target_language="en", fallback_language="de")

        # Assert
        assert (result.created, result.errors, result.warnings) == (2, [], [])
        names = sorted(category.name for category in target.taxonomy.get_all_categories())
        assert names == ["Backwaren", "Drinks"]
        drinks = next(c for c in target.taxonomy.get_all_categories() if c.name == "Drinks")
        assert drinks.created_by == "template"
        assert drinks.parent_category is None
        assert drinks.permissions.owner == "system"
        assert drinks.permissions.public is True
        assert drinks.permissions.role == PermissionRole.VIEWER
        assert drinks.metadata["importedFrom"]["template"] == "Template"
        assert drinks.metadata["importedFrom"]["language"] == "en"
        assert drinks.status == CategoryStatus.ACTIVE

    async def test_import_template_missing_language(self, target: TransferService):
        # Arrange
        template = json.dumps({
            "metadata": {"languages": ["fr"], "defaultLanguage": "fr"},
            "categories": [
                {"name": {"fr": "Boissons"}, "color": "#03A9F4"},
                {"name": {}, "color": "#000000"},
            ],
        })

        # Act
        result = await target.import_template(template, target_language="de", fallback_language="en")

        # Assert
        assert result.created == 0
        assert len(result.warnings) == 1
        assert "'de'" in result.warnings[0]
        assert "Boissons" in result.errors[0]
        assert "Unbekannt" in result.errors[1]

    async def test_bad_entry_metadata_does_not_stop_import(self, target: TransferService):
        # Arrange
        template = json.dumps({
            "categories": [
                {"name": {"de": "Kaputt"}, "metadata": "oops"},
                {"name": {"de": "Gut"}},
            ],
        })

        # Act
        result = await target.import_template(template)

        # Assert
        assert result.created == 1
        assert len(result.errors) == 1
        assert "Kaputt" in result.errors[0]
        assert [category.name for category in target.taxonomy.get_all_categories()] == ["Gut"]

    async def test_preserve_translations(self, target: TransferService):
        template = json.dumps({
            "categories": [{
                "name": {"de": "Getränke", "en": "Drinks"},
                "description": {"de": "Alles zum Trinken"},
                "color": "#03A9F4",
            }],
        })

        await target.import_template(template, preserve_translations=True)

        category = target.taxonomy.get_all_categories()[0]
        assert category.name == "Getränke"
        assert category.metadata["description"] == "Alles zum Trinken"
        assert category.metadata["translations"]["name"] == {"de": "Getränke", "en": "Drinks"}

    async def test_template_round_trip(self, transfer: TransferService, target: TransferService, food_tree):
        document = transfer.export_template([category.id for category in food_tree.values()])

        result = await target.import_template(document)

        assert result.created == 4
        assert sorted(c.name for c in target.taxonomy.get_all_categories()) == [
            "Käse", "Lebensmittel", "Milchprodukte", "Obst",
        ]

    async def test_unparsable_template_raises(self, target: TransferService):
        with pytest.raises(ImportFormatError):
            await target.import_template(json.dumps({"name": {"de": "Leer"}}))
