import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from shopping_taxonomy.config.logging_config import configure_logging
from shopping_taxonomy.config.settings import Settings
from shopping_taxonomy.domain.models import Category
from shopping_taxonomy.services.container import Services, build_services, open_sqlite_storage

app = typer.Typer(
    name="shopping-taxonomy",
    help="Manage a hierarchical shopping category taxonomy",
    add_completion=False,
)

console = Console()

T = TypeVar("T")


class State:
    verbose: bool = False
    db_path: Optional[Path] = None
    settings: Optional[Settings] = None


state = State()


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="SQLite database file (defaults to database_path from settings)",
    ),
):
    """
    Shopping Taxonomy - Organize categories, rules and product suggestions.
    """
    state.settings = Settings.load()
    state.verbose = verbose
    state.db_path = db or Path(state.settings.database_path)

    configure_logging(
        level="DEBUG" if verbose else state.settings.log_level,
        json_logs=state.settings.json_logs,
    )


def _run(action: Callable[[Services], Awaitable[T]]) -> T:
    """Open the database, load the services and run one async action."""

    async def runner() -> T:
        storage = open_sqlite_storage(state.db_path)
        try:
            services = await build_services(storage, state.settings)
            return await action(services)
        finally:
            storage.db.close()

    try:
        return asyncio.run(runner())
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        if state.verbose:
            console.print_exception()
        raise typer.Exit(code=1)


def _write_output(document: str, output: Optional[Path]) -> None:
    if output is None:
        typer.echo(document)
        return
    output.write_text(document, encoding="utf-8")
    console.print(f"[green]✓[/green] Written to {output}")


@app.command(name="list")
def list_categories(
    include_archived: bool = typer.Option(
        False,
        "--all", "-a",
        help="Include archived categories",
    ),
):
    """
    List categories.

    Examples:
        shopping-taxonomy list
        shopping-taxonomy list --all
    """

    async def action(services: Services) -> List[Category]:
        return services.taxonomy.get_all_categories(include_archived=include_archived)

    categories = _run(action)
    if not categories:
        console.print(Panel(
            "[yellow]No categories yet. Run 'seed' or 'create' first.[/yellow]",
            title="Empty Taxonomy",
            border_style="yellow",
        ))
        return

    table = Table(title=f"Categories ({len(categories)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Level", justify="right")
    table.add_column("Parent", style="dim")
    table.add_column("Tags", style="magenta")
    table.add_column("Status", justify="center")

    for category in categories:
        status = "[green]active[/green]" if category.is_active else "[yellow]archived[/yellow]"
        table.add_row(
            category.id,
            category.name,
            str(category.level),
            category.parent_category or "-",
            ", ".join(category.tags),
            status,
        )

    console.print(table)


@app.command(name="create")
def create_category(
    name: str = typer.Argument(..., help="Category name"),
    color: str = typer.Option("#9E9E9E", "--color", "-c", help="Display color"),
    parent: Optional[str] = typer.Option(None, "--parent", "-p", help="Parent category id"),
    icon: Optional[str] = typer.Option(None, "--icon", help="Icon name"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", "-t", help="Tag (repeatable)"),
):
    """
    Create a category.

    Examples:
        shopping-taxonomy create Lebensmittel --color "#4CAF50"
        shopping-taxonomy create Milchprodukte --parent cat_1a2b3c4d5e6f --tag dairy
    """

    async def action(services: Services) -> Category:
        return await services.taxonomy.create_category(
            name=name,
            color=color,
            parent_category=parent,
            icon=icon,
            tags=tags,
        )

    category = _run(action)
    console.print(f"[bold green]✓ Created {category.name}[/bold green] ({category.id}, level {category.level})")


@app.command(name="move")
def move_category(
    category_id: str = typer.Argument(..., help="Category to move"),
    parent: Optional[str] = typer.Option(
        None,
        "--parent", "-p",
        help="New parent id (omit to make it a root category)",
    ),
):
    """
    Move a category (and its subtree) under a new parent.

    Examples:
        shopping-taxonomy move cat_1a2b3c4d5e6f --parent cat_0f9e8d7c6b5a
        shopping-taxonomy move cat_1a2b3c4d5e6f
    """

    async def action(services: Services) -> Category:
        return await services.taxonomy.move_category(category_id, parent)

    category = _run(action)
    target = category.parent_category or "root"
    console.print(f"[bold green]✓ Moved {category.name}[/bold green] to {target} (level {category.level})")


@app.command(name="archive")
def archive_category(
    category_id: str = typer.Argument(..., help="Category to archive"),
):
    """
    Archive a category and all of its subcategories.
    """

    async def action(services: Services) -> List[str]:
        return await services.taxonomy.archive_category(category_id)

    archived = _run(action)
    console.print(f"[bold green]✓ Archived {len(archived)} categories[/bold green]")
    if state.verbose:
        for archived_id in archived:
            console.print(f"[dim]  {archived_id}[/dim]")


@app.command(name="tree")
def show_tree(
    include_archived: bool = typer.Option(False, "--all", "-a", help="Include archived categories"),
):
    """
    Show the category hierarchy.
    """

    async def action(services: Services) -> List[Category]:
        return services.taxonomy.get_all_categories(include_archived=include_archived)

    categories = _run(action)
    by_id = {category.id: category for category in categories}

    root = Tree("[bold cyan]Categories[/bold cyan]")
    visited = set()

    def add_branch(node: Tree, category: Category) -> None:
        visited.add(category.id)
        label = f"{category.name} [dim]({category.id})[/dim]"
        if not category.is_active:
            label += " [yellow]archived[/yellow]"
        branch = node.add(label)
        for child_id in category.sub_categories:
            child = by_id.get(child_id)
            if child is not None and child_id not in visited:
                add_branch(branch, child)

    for category in categories:
        if category.parent_category not in by_id:
            add_branch(root, category)

    console.print(root)


@app.command(name="validate")
def validate_structure():
    """
    Check the hierarchy for broken parents, cycles and stale paths.
    """

    async def action(services: Services):
        return services.taxonomy.validate_structure()

    issues = _run(action)
    if not issues:
        console.print("[bold green]✓ Hierarchy is consistent[/bold green]")
        return

    table = Table(title=f"Structure issues ({len(issues)})")
    table.add_column("Type", style="red")
    table.add_column("Category", style="cyan")
    table.add_column("Message")
    for issue in issues:
        table.add_row(issue.error_type, issue.category_id, issue.message)
    console.print(table)
    raise typer.Exit(code=1)


@app.command(name="add-rule")
def add_rule(
    name: str = typer.Argument(..., help="Rule name"),
    operator: str = typer.Option(
        "contains",
        "--operator", "-o",
        help="Match operator (contains, equals, startsWith, endsWith, regex)",
    ),
    value: str = typer.Option(..., "--value", help="Text or pattern to match"),
    priority: float = typer.Option(0, "--priority", "-p", help="Higher priorities are tested first"),
    category_id: Optional[str] = typer.Option(
        None,
        "--category", "-c",
        help="Category that should reference the rule",
    ),
):
    """
    Add a categorization rule.

    Examples:
        shopping-taxonomy add-rule Milk --value milch --priority 10 --category cat_1a2b3c4d5e6f
        shopping-taxonomy add-rule Cheese --operator regex --value "k(ä|ae)se"
    """

    async def action(services: Services):
        rule = await services.rules.add_category_rule({
            "name": name,
            "condition": {"field": "name", "operator": operator, "value": value},
            "priority": priority,
            "isActive": True,
        })
        if category_id:
            await services.taxonomy.attach_rule(category_id, rule.id)
        return rule

    rule = _run(action)
    console.print(f"[bold green]✓ Added rule {rule.name}[/bold green] ({rule.id})")


@app.command(name="match")
def match_product(
    text: str = typer.Argument(..., help="Product text"),
):
    """
    Find the category the rules assign to a product.
    """

    async def action(services: Services) -> Optional[Category]:
        return services.rules.find_matching_category(text)

    category = _run(action)
    if category is None:
        console.print("[yellow]No rule matched[/yellow]")
        return
    console.print(f"[bold]{text}[/bold] → [cyan]{category.name}[/cyan] ({category.id})")


@app.command(name="purchase")
def record_purchase(
    product: str = typer.Argument(..., help="Product name"),
    category_id: Optional[str] = typer.Option(None, "--category", "-c", help="Category to file it under"),
):
    """
    Record a purchase in the shopping history.
    """

    async def action(services: Services):
        return await services.suggestions.add_purchase(product, category_id)

    item = _run(action)
    console.print(
        f"[bold green]✓ Recorded {item.product_name}[/bold green] "
        f"(bought {item.frequency}x, category: {item.category or 'none'})"
    )


@app.command(name="suggest")
def suggest_category(
    product: str = typer.Argument(..., help="Product name"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw suggestion"),
):
    """
    Suggest a category for a product from the purchase history.
    """

    async def action(services: Services) -> Any:
        suggestion = services.suggestions.suggest_category(product)
        if suggestion is None:
            return None, {}
        names = {category.id: category.name for category in services.taxonomy.get_all_categories()}
        return suggestion, names

    suggestion, names = _run(action)
    if suggestion is None:
        console.print("[yellow]No active categories to suggest from[/yellow]")
        return

    if as_json:
        typer.echo(json.dumps(suggestion.to_dict(), indent=2, ensure_ascii=False))
        return

    console.print(Panel.fit(
        f"[bold]{names.get(suggestion.suggested_category, suggestion.suggested_category)}[/bold]\n"
        f"Confidence: {suggestion.confidence:.2f}\n"
        f"Reason: {suggestion.reason.value}",
        title=f"Suggestion for '{suggestion.product_name}'",
        border_style="cyan",
    ))

    if suggestion.alternative_categories:
        table = Table(title="Alternatives", box=None, padding=(0, 2))
        table.add_column("Category", style="cyan")
        table.add_column("Confidence", justify="right")
        for alternative in suggestion.alternative_categories:
            table.add_row(names.get(alternative.category_id, alternative.category_id), f"{alternative.confidence:.2f}")
        console.print(table)


@app.command(name="export")
def export_categories(
    export_format: str = typer.Option("json", "--format", "-f", help="Export format (json, csv)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout"),
    include_rules: bool = typer.Option(False, "--rules", help="Embed the rules (JSON only)"),
    include_metadata: bool = typer.Option(True, "--metadata/--no-metadata", help="Keep category metadata"),
):
    """
    Export all categories.

    Examples:
        shopping-taxonomy export --output categories.json --rules
        shopping-taxonomy export --format csv
    """

    async def action(services: Services) -> str:
        return services.transfer.export_categories(
            export_format,
            include_rules=include_rules,
            include_metadata=include_metadata,
        )

    _write_output(_run(action), output)


@app.command(name="import")
def import_categories(
    filepath: Path = typer.Argument(
        ...,
        help="Exported category file",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    export_format: str = typer.Option("json", "--format", "-f", help="File format (json, csv)"),
    conflict: str = typer.Option(
        "skip",
        "--conflict",
        help="What to do with ids that already exist (skip, overwrite, rename)",
    ),
    validate_hierarchy: bool = typer.Option(
        False,
        "--validate-hierarchy",
        help="Reject categories whose parent is unknown",
    ),
    import_rules: bool = typer.Option(False, "--rules", help="Also import rules (JSON only)"),
):
    """
    Import categories from an export file.

    Examples:
        shopping-taxonomy import categories.json --rules
        shopping-taxonomy import categories.csv --format csv --conflict overwrite
    """
    data = filepath.read_text(encoding="utf-8")

    async def action(services: Services):
        return await services.transfer.import_categories(
            data,
            export_format,
            conflict_resolution=conflict,
            validate_hierarchy=validate_hierarchy,
            import_rules=import_rules,
        )

    result = _run(action)

    console.print(f"[bold green]✓ Imported {result.imported} categories[/bold green]")
    if result.skipped:
        console.print(f"[yellow]⏭️  Skipped {result.skipped} existing categories[/yellow]")
    if import_rules:
        console.print(f"Rules imported: {result.rules_imported}")
        for issue in result.duplicate_rules:
            console.print(f"[yellow]Duplicate rule {issue.id}:[/yellow] {issue.error}")

    if result.errors:
        table = Table(title=f"Errors ({len(result.errors)})")
        table.add_column("ID", style="cyan")
        table.add_column("Error", style="red")
        for issue in result.errors:
            table.add_row(issue.id, issue.error)
        console.print(table)


@app.command(name="export-template")
def export_template(
    category_ids: List[str] = typer.Argument(..., help="Categories to include"),
    languages: Optional[List[str]] = typer.Option(None, "--language", "-l", help="Template language (repeatable)"),
    default_language: Optional[str] = typer.Option(None, "--default-language", help="Language of the names"),
    include_metadata: bool = typer.Option(False, "--metadata", help="Include category metadata"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout"),
):
    """
    Export categories as a multi-language template.
    """

    async def action(services: Services) -> str:
        return services.transfer.export_template(
            category_ids,
            languages=languages,
            default_language=default_language,
            include_metadata=include_metadata,
        )

    _write_output(_run(action), output)


@app.command(name="import-template")
def import_template(
    filepath: Path = typer.Argument(
        ...,
        help="Template file",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="Target language"),
    fallback: Optional[str] = typer.Option(None, "--fallback", help="Fallback language"),
    preserve_translations: bool = typer.Option(
        False,
        "--preserve-translations",
        help="Keep all translations in the category metadata",
    ),
):
    """
    Create categories from a template.
    """
    data = filepath.read_text(encoding="utf-8")

    async def action(services: Services):
        return await services.transfer.import_template(
            data,
            target_language=language,
            fallback_language=fallback,
            preserve_translations=preserve_translations,
        )

    result = _run(action)
    console.print(f"[bold green]✓ Created {result.created} categories[/bold green]")
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    for error in result.errors:
        console.print(f"[red]Error:[/red] {error}")


@app.command(name="seed")
def seed_categories():
    """
    Create the default root categories in an empty taxonomy.
    """

    async def action(services: Services) -> List[Category]:
        return await services.taxonomy.seed_default_categories()

    created = _run(action)
    if not created:
        console.print("[yellow]Taxonomy is not empty, nothing seeded[/yellow]")
        return
    console.print(f"[bold green]✓ Seeded {len(created)} categories[/bold green]")


def cli_main():
    """Entry point for the CLI"""
    app()


if __name__ == "__main__":
    cli_main()
