"""
CLI interface for meal-guard.

Generate recipes for a household file and inspect usage, history and cache.
"""

import json
import logging
import sys
from dataclasses import fields, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from meal_guard.config.loader import PipelineConfig, load_pipeline_config
from meal_guard.core.admission import AdmissionController
from meal_guard.core.family import HouseholdPreferences
from meal_guard.core.orchestrator import GenerationResult, RecipeOrchestrator
from meal_guard.core.prompt import GenerationRequest, SpecialOccasion
from meal_guard.core.recipe import GeneratedRecipe
from meal_guard.storage.repository import MealGuardRepository, get_repository

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _load_config(ctx: typer.Context) -> PipelineConfig:
    return ctx.obj["config"]


def _repository(config: PipelineConfig) -> MealGuardRepository:
    return get_repository(config.db_path, timeout=config.storage_timeout_seconds)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None, "--config", "-c", help="YAML pipeline configuration file"
    ),
    db_path: Optional[str] = typer.Option(
        None, "--db", help="Override the SQLite database path"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """meal-guard: cost-protected, allergen-checked recipe generation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    try:
        config = load_pipeline_config(config_path)
        if db_path:
            config = replace(config, db_path=db_path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        raise typer.Exit(EXIT_CODE_FAIL)
    ctx.obj = {"config": config}
    if ctx.invoked_subcommand is None:
        console.print("meal-guard - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the meal-guard database."""
    config = _load_config(ctx)
    try:
        _repository(config).initialize_schema()
        console.print(f"[green]✓[/] Database initialized at {config.db_path}")
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


def _load_household(path: Path) -> HouseholdPreferences:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError("household file must contain a mapping")
    return HouseholdPreferences.from_dict(data)


@app.command()
def generate(
    ctx: typer.Context,
    household_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Household YAML file"),
    user: str = typer.Option(..., "--user", "-u", help="Requesting user id"),
    meal_type: str = typer.Option("dinner", "--meal-type", "-m", help="breakfast, lunch, dinner or snack"),
    occasion: Optional[str] = typer.Option(None, "--occasion", help="Special occasion type"),
    guests: int = typer.Option(0, "--guests", help="Number of guests for the occasion"),
    guest_restriction: List[str] = typer.Option([], "--guest-restriction", help="Guest dietary restriction"),
    presentation: str = typer.Option("standard", "--presentation", help="casual, standard or impressive"),
    pantry: List[str] = typer.Option([], "--pantry", "-p", help="Ingredient already at hand"),
    premium: bool = typer.Option(False, "--premium", help="Use the premium daily cost ceiling"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw result as JSON")
):
    """Generate one recipe for the household described in HOUSEHOLD_FILE."""
    config = _load_config(ctx)
    try:
        preferences = _load_household(household_file)
        special_occasion = None
        if occasion:
            special_occasion = SpecialOccasion(
                occasion_type=occasion,
                guest_count=guests,
                guest_dietary_restrictions=tuple(guest_restriction),
                presentation_level=presentation,
            )
        request = GenerationRequest(
            user_id=user,
            preferences=preferences,
            meal_type=meal_type,
            special_occasion=special_occasion,
            pantry_items=tuple(pantry),
            premium=premium,
        )
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid request:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    repository = _repository(config)
    repository.initialize_schema()
    result = RecipeOrchestrator(config, repository=repository).generate(request)

    if as_json:
        console.print_json(json.dumps(_result_to_dict(result)))
    else:
        _display_result(result)
    sys.exit(EXIT_CODE_PASS if result.success else EXIT_CODE_FAIL)


@app.command()
def usage(
    ctx: typer.Context,
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    premium: bool = typer.Option(False, "--premium", help="Report against the premium ceiling"),
    recent: int = typer.Option(5, "--recent", "-n", help="Number of recent requests to list")
):
    """Show today's spend, the current rate window and recent requests for a user."""
    config = _load_config(ctx)
    repository = _repository(config)
    repository.initialize_schema()
    controller = AdmissionController(repository, config)
    now = datetime.now(timezone.utc)

    cost = controller.check_cost_limits(user, premium=premium, now=now)
    rate = controller.check_rate_limit(user, now=now)

    table = Table(title=f"Usage for {user}")
    table.add_column("Gate")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Status")
    table.add_row("Daily cost", _format_currency(cost.observed), _format_currency(cost.limit),
                  _status(cost.allowed))
    table.add_row(f"Requests / {config.rate_window_minutes} min", f"{rate.observed:g}",
                  f"{rate.limit:g}", _status(rate.allowed))
    console.print(table)

    entries = repository.fetch_usage_entries(user, limit=recent) if recent > 0 else []
    if entries:
        recent_table = Table(title="Recent requests")
        recent_table.add_column("When")
        recent_table.add_column("Meal")
        recent_table.add_column("Tokens", justify="right")
        recent_table.add_column("Cost", justify="right")
        recent_table.add_column("Source")
        for entry in entries:
            recent_table.add_row(
                entry.timestamp.strftime("%Y-%m-%d %H:%M"),
                entry.meal_type,
                str(entry.total_tokens),
                _format_currency(entry.cost),
                "cache" if entry.cache_hit else "provider",
            )
        console.print(recent_table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    ctx: typer.Context,
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of recipes to show")
):
    """List a user's most recent generated recipes."""
    config = _load_config(ctx)
    repository = _repository(config)
    repository.initialize_schema()
    rows = repository.fetch_recipe_history(user, limit=limit)
    if not rows:
        console.print(f"[dim]No recipes generated for {user} yet.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Recipe history for {user}")
    table.add_column("When")
    table.add_column("Meal")
    table.add_column("Title")
    table.add_column("Safety", justify="right")
    table.add_column("Cost", justify="right")
    for row in rows:
        recipe = GeneratedRecipe.from_json(row.recipe_json)
        table.add_row(
            row.created_at.strftime("%Y-%m-%d %H:%M"),
            row.meal_type,
            recipe.title,
            str(recipe.safety_score),
            _format_currency(recipe.generation_cost),
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command("purge-cache")
def purge_cache(
    ctx: typer.Context,
    expired_only: bool = typer.Option(False, "--expired-only", help="Only remove expired entries")
):
    """Remove cached recipes."""
    config = _load_config(ctx)
    repository = _repository(config)
    repository.initialize_schema()
    removed = repository.purge_cache(datetime.now(timezone.utc) if expired_only else None)
    console.print(f"[green]✓[/] Removed {removed} cached recipe{'' if removed == 1 else 's'}")
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount: float) -> str:
    return f"£{amount:,.6f}"


def _status(allowed: bool) -> str:
    return "[green]OK[/]" if allowed else "[red]LIMIT REACHED[/]"


def _result_to_dict(result: GenerationResult) -> dict:
    data = {f.name: getattr(result, f.name) for f in fields(result) if f.name != "recipe"}
    data["recipe"] = result.recipe.to_dict() if result.recipe else None
    return data


def _display_result(result: GenerationResult) -> None:
    if not result.success:
        console.print(f"\n[bold red]{result.error}[/]")
        if result.user_message:
            console.print(result.user_message)
        return

    recipe = result.recipe
    console.print(f"\n[bold]{recipe.title}[/bold]" + (" [dim](cached)[/]" if recipe.cache_hit else ""))
    console.print(recipe.description)
    console.print(f"[dim]{recipe.total_time} min · serves {recipe.servings} · {recipe.difficulty}[/]")
    if result.family_summary:
        console.print(f"\n[italic]{result.family_summary}[/italic]")

    console.print("\n[bold]Ingredients[/bold]")
    for ingredient in recipe.ingredients:
        console.print(f"  • {ingredient}")
    console.print("\n[bold]Instructions[/bold]")
    for number, step in enumerate(recipe.instructions, start=1):
        console.print(f"  {number}. {step}")

    score_colour = "green" if recipe.safety_score >= 85 else "yellow" if recipe.safety_score >= 50 else "red"
    console.print(f"\n[bold]Safety score:[/bold] [{score_colour}]{recipe.safety_score}/100[/]")
    for warning in recipe.safety_warnings:
        style = "bold red" if warning.startswith("CRITICAL") else "yellow"
        console.print(f"[{style}]! {warning}[/]")
    if result.storage_warning:
        console.print(f"\n[yellow]{result.user_message}[/]")
    console.print(f"\n[dim]Cost: {_format_currency(recipe.generation_cost)} · "
                  f"{recipe.generation_time_ms} ms[/]")


if __name__ == "__main__":
    app()
