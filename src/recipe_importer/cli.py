#!/usr/bin/env python3
"""CLI for recipe-importer: import a recipe from a URL, text, photo or video.

The CLI is responsible for:
- Argument parsing
- Progress display (Rich UI)
- Error presentation
- Calling the pipeline for business logic
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from .classifier import FileDescriptor, ImportInput
from .config import VALID_POLICIES, ImportConfig
from .exceptions import ImportAbstainError, InputValidationError, RecipeImportError
from .models import ImportResult, format_quantity
from .pipeline import create_default_pipeline, import_recipe
from .services import ServiceFactory

console = Console()


def setup_logging(log_file: str = "recipe_importer.log") -> None:
    """Log to a file only; console output is handled by Rich."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.FileHandler(log_file, mode="w")],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Import a recipe from a URL, pasted text, a photo or a video",
        prog="recipe-import",
    )
    parser.add_argument(
        "source", type=str, help="URL, path to an image/video file, or - to read text from stdin"
    )
    parser.add_argument("--text", action="store_true", help="Treat SOURCE as literal recipe text")
    parser.add_argument("--model", type=str, help="Chat model to use for parsing")
    parser.add_argument(
        "--single-stage", action="store_true", help="Parse with one model call instead of four"
    )
    parser.add_argument("--policy", choices=sorted(VALID_POLICIES), help="Import policy")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--config", type=str, help="Path to a project config file")
    parser.add_argument(
        "--log-file", type=str, default="recipe_importer.log", help="Log file path"
    )
    return parser.parse_args(argv)


def build_request(source: str, as_text: bool = False) -> ImportInput:
    """Map the SOURCE argument onto an import request.

    Example:
        >>> build_request("https://example.com/soup")
        ImportInput(url='https://example.com/soup', text=None, file=None)
    """
    if source == "-":
        return ImportInput(text=sys.stdin.read())
    if as_text:
        return ImportInput(text=source)
    if source.startswith(("http://", "https://")):
        return ImportInput(url=source)
    path = Path(source)
    if path.is_file():
        mime_type, _ = mimetypes.guess_type(path.name)
        return ImportInput(
            file=FileDescriptor(
                uri=str(path.resolve()),
                mime_type=mime_type,
                name=path.name,
                size=path.stat().st_size,
            )
        )
    return ImportInput(text=source)


def build_config(args: argparse.Namespace) -> ImportConfig:
    config = ImportConfig.load(config_path=args.config)
    overrides: dict[str, Any] = {}
    if args.model:
        overrides["model"] = args.model
    if args.single_stage:
        overrides["use_multi_stage"] = False
    if args.policy:
        overrides["import_policy"] = args.policy
    if overrides:
        config.update(**overrides)
    return config


def result_to_dict(result: ImportResult) -> dict[str, Any]:
    """JSON-ready view of an import result."""
    data: dict[str, Any] = {
        "recipe": result.recipe.model_dump(mode="json", exclude_none=True),
        "provenance": asdict(result.provenance),
    }
    if result.recovery is not None:
        data["recovery"] = asdict(result.recovery)
    return data


def display_recipe(result: ImportResult) -> None:
    """Render the recipe, provenance and recovery notes."""
    recipe = result.recipe
    provenance = result.provenance

    console.print()
    subtitle = f"[dim]{provenance.source_kind.value} via {provenance.method}[/dim]"
    console.print(
        Panel.fit(
            f"[bold cyan]{recipe.title}[/bold cyan]\n{subtitle}",
            title="[bold]Recipe Import[/bold]",
            border_style="cyan",
        )
    )

    ingredients = Table(title="Ingredients", show_header=True, header_style="bold cyan")
    ingredients.add_column("Qty", justify="right")
    ingredients.add_column("Unit")
    ingredients.add_column("Ingredient")
    ingredients.add_column("Conf", justify="right")
    for ing in recipe.ingredients:
        name = f"{ing.name}, {ing.notes}" if ing.notes else ing.name
        if ing.inferred:
            name = f"[yellow]{name} (inferred)[/yellow]"
        ingredients.add_row(
            format_quantity(ing.quantity) if ing.quantity is not None else "",
            ing.unit or "",
            name,
            f"{ing.confidence:.2f}",
        )
    console.print(ingredients)

    console.print("[bold]Instructions[/bold]")
    for number, step in enumerate(recipe.instructions, 1):
        console.print(f"  {number}. {step}")

    details = Table(title="Provenance", show_header=False)
    details.add_column("Field", style="cyan")
    details.add_column("Value", style="green")
    details.add_row("Confidence", f"{recipe.confidence:.2f}")
    details.add_row("Structured", "yes" if provenance.structured else "no")
    if provenance.platform:
        details.add_row("Platform", provenance.platform)
    for method, confidence in provenance.method_confidences:
        details.add_row(f"Method {method}", f"{confidence:.2f}")
    if provenance.support is not None:
        details.add_row(
            "Evidence support",
            f"ingredients {provenance.support.ingredient_support:.0%}, "
            f"steps {provenance.support.step_support:.0%}",
        )
    if provenance.fallback_used:
        details.add_row("Fallback used", "yes")
    if result.recovery is not None:
        details.add_row("Recovery confidence", f"{result.recovery.confidence:.2f}")
    console.print()
    console.print(details)

    notes = list(provenance.parser_notes)
    if result.recovery is not None:
        notes.extend(issue.description for issue in result.recovery.inconsistencies)
    if notes:
        console.print()
        console.print(Panel("\n".join(f"- {note}" for note in notes), title="Notes"))
    console.print()


def display_error(title: str, message: str) -> None:
    console.print()
    console.print(Panel(message, title=f"[bold red]{title}[/bold red]", border_style="red"))
    console.print()


def describe_failure(error: RecipeImportError) -> tuple[str, str]:
    """Title and body for a failed import, naming the stage that failed."""
    stage = error.context.get("stage", "unknown")
    if isinstance(error, InputValidationError):
        reasons = "\n".join(f"- {reason}" for reason in error.reasons)
        return "Input rejected", f"{reasons}\n\n[dim]Nothing was fetched or sent to a model.[/dim]"
    if isinstance(error, ImportAbstainError):
        missing = f"\nMissing: {', '.join(error.missing)}" if error.missing else ""
        return (
            "Model declined",
            f"Stage [bold]{stage}[/bold]: insufficient evidence ({error.reason}){missing}",
        )
    body = f"Stage [bold]{stage}[/bold]: {error.message}"
    trail = error.context.get("trail")
    if trail:
        body += f"\n\n[dim]{trail}[/dim]"
    return "Import failed", body


async def main_async(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_file)

    config = build_config(args)
    request = build_request(args.source, args.text)
    factory = ServiceFactory(config=config)
    pipeline = create_default_pipeline()

    try:
        if args.json:
            result = await import_recipe(request, factory, pipeline)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            ) as progress:
                progress.add_task("Importing recipe...", total=None)
                result = await import_recipe(request, factory, pipeline)
    except RecipeImportError as e:
        title, body = describe_failure(e)
        display_error(title, body)
        return 1
    finally:
        await factory.aclose()

    if args.json:
        console.print_json(json.dumps(result_to_dict(result), default=str))
    else:
        display_recipe(result)
    return 0


def main() -> None:
    """Entry point for the recipe-import command."""
    try:
        code = asyncio.run(main_async())
    except KeyboardInterrupt:
        console.print("[yellow]Import interrupted by user[/yellow]")
        code = 130
    except Exception as e:  # Intentional catch-all for CLI entry point
        display_error(
            "Error",
            f"[bold red]An unexpected error occurred:[/bold red]\n\n{e!s}\n\n"
            f"[dim]Check the log file for details.[/dim]",
        )
        logging.exception("Unexpected error during import")
        raise
    raise SystemExit(code)


if __name__ == "__main__":
    main()
