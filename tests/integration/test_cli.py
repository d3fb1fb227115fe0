import json

import pytest
from typer.testing import CliRunner

from shopping_taxonomy.cli import app

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "taxonomy.db"


def invoke(db_path, *args):
    return runner.invoke(app, ["--db", str(db_path), *args])


def export_json(db_path, tmp_path):
    output = tmp_path / "export.json"
    result = invoke(db_path, "export", "--output", str(output), "--rules")
    assert result.exit_code == 0, result.output
    return json.loads(output.read_text(encoding="utf-8"))


def category_id(document, name):
    return next(category["id"] for category in document["categories"] if category["name"] == name)


@pytest.mark.integration
class TestCli:
    """Drive the CLI end to end against a temp SQLite file"""

    def test_seed_and_export(self, db_path, tmp_path):
        # Act
        seeded = invoke(db_path, "seed")
        again = invoke(db_path, "seed")

        # Assert
        assert seeded.exit_code == 0
        assert "Seeded 3 categories" in seeded.output
        assert "nothing seeded" in again.output
        document = export_json(db_path, tmp_path)
        assert [category["name"] for category in document["categories"]] == [
            "Lebensmittel", "Haushalt", "Hygiene",
        ]

    def test_create_move_and_archive(self, db_path, tmp_path):
        # Arrange
        invoke(db_path, "create", "Lebensmittel", "--color", "#4CAF50")
        food_id = category_id(export_json(db_path, tmp_path), "Lebensmittel")

        # Act
        created = invoke(db_path, "create", "Milchprodukte", "--parent", food_id, "--tag", "dairy")
        dairy_id = category_id(export_json(db_path, tmp_path), "Milchprodukte")
        cycle = invoke(db_path, "move", food_id, "--parent", dairy_id)
        archived = invoke(db_path, "archive", food_id)

        # Assert
        assert created.exit_code == 0
        assert "level 1" in created.output
        assert cycle.exit_code == 1
        assert "cycle" in cycle.output
        assert "Archived 2 categories" in archived.output

        document = export_json(db_path, tmp_path)
        statuses = {category["name"]: category["status"] for category in document["categories"]}
        assert statuses == {"Lebensmittel": "archived", "Milchprodukte": "archived"}

    def test_missing_parent_is_an_error(self, db_path):
        result = invoke(db_path, "create", "Waise", "--parent", "cat_missing")

        assert result.exit_code == 1
        assert "Parent category not found" in result.output

    def test_rules_and_suggestions(self, db_path, tmp_path):
        # Arrange
        invoke(db_path, "create", "Milchprodukte")
        dairy_id = category_id(export_json(db_path, tmp_path), "Milchprodukte")

        # Act
        added = invoke(db_path, "add-rule", "Milk", "--value", "milch", "--priority", "10", "--category", dairy_id)
        matched = invoke(db_path, "match", "Bio-Milch")
        unmatched = invoke(db_path, "match", "Seife")
        invalid = invoke(db_path, "add-rule", "Broken", "--operator", "regex", "--value", "(oops")
        purchased = invoke(db_path, "purchase", "Bio-Milch 1L", "--category", dairy_id)
        suggested = invoke(db_path, "suggest", "Bio-Milch 1L", "--json")

        # Assert
        assert added.exit_code == 0
        assert "Milchprodukte" in matched.output
        assert "No rule matched" in unmatched.output
        assert invalid.exit_code == 1
        assert "Invalid regular expression" in invalid.output
        assert purchased.exit_code == 0
        assert '"suggestedCategory"' in suggested.output
        assert '"purchase_history"' in suggested.output

    def test_import_into_second_database(self, db_path, tmp_path):
        # Arrange
        invoke(db_path, "seed")
        export_json(db_path, tmp_path)
        other_db = tmp_path / "other.db"

        # Act
        imported = invoke(other_db, "import", str(tmp_path / "export.json"), "--rules")
        skipped = invoke(other_db, "import", str(tmp_path / "export.json"))
        validated = invoke(other_db, "validate")

        # Assert
        assert "Imported 3 categories" in imported.output
        assert "Skipped 3" in skipped.output
        assert validated.exit_code == 0
        assert "consistent" in validated.output

    def test_csv_export_to_stdout(self, db_path):
        invoke(db_path, "seed")

        result = invoke(db_path, "export", "--format", "csv")

        assert result.exit_code == 0
        assert result.output.startswith("id,name,color,icon,parentCategory,level,tags,status")
        assert '"Lebensmittel","#4CAF50","food"' in result.output

    def test_unknown_conflict_policy(self, db_path, tmp_path):
        invoke(db_path, "seed")
        export_json(db_path, tmp_path)

        result = invoke(db_path, "import", str(tmp_path / "export.json"), "--conflict", "merge")

        assert result.exit_code == 1

    def test_template_round_trip(self, db_path, tmp_path):
        # Arrange
        invoke(db_path, "seed")
        food_id = category_id(export_json(db_path, tmp_path), "Lebensmittel")
        template_file = tmp_path / "template.json"
        other_db = tmp_path / "other.db"

        # Act
        exported = invoke(db_path, "export-template", food_id, "--language", "de", "--output", str(template_file))
        imported = invoke(other_db, "import-template", str(template_file), "--language", "en", "--fallback", "de")

        # Assert
        assert exported.exit_code == 0
        assert "Created 1 categories" in imported.output
        assert "Warning" in imported.output
