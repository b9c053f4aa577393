"""Entry point: wires Config → StorageManager → AppCoordinator behind a small CLI."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from img2prompt.analysis.openrouter import OpenRouterAnalysisClient
from img2prompt.config import Config
from img2prompt.constants import LANGUAGES, OUTPUT_FORMATS, PERIOD_OPTIONS, SORT_OPTIONS
from img2prompt.coordinator import AppCoordinator
from img2prompt.errors import Img2PromptError
from img2prompt.imaging import load_from_path, load_from_url, validate_image_url
from img2prompt.models import AnalysisRecord
from img2prompt.storage import records_since, sort_records

console = Console()
PROMPT_PREVIEW_CHARS = 80


def _setup_logging(level: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    list(map(root.removeHandler, root.handlers[:]))
    root.addHandler(RichHandler(rich_tracebacks=True))


def _fail(error: object) -> int:
    console.print(f"[red]Error:[/red] {error}")
    return 1


def _print_records(records: list[AnalysisRecord]) -> None:
    table = Table("id", "time", "image", "prompt")
    list(map(
        lambda r: table.add_row(
            r.id,
            r.timestamp.strftime("%Y-%m-%d %H:%M"),
            r.image_name,
            r.prompt[:PROMPT_PREVIEW_CHARS],
        ),
        records,
    ))
    console.print(table)


# ── commands ──────────────────────────────────────────────────────────────────


async def cmd_analyze(app: AppCoordinator, args: argparse.Namespace) -> int:
    match (validate_image_url(args.source), args.download):
        case (True, False):
            app.set_image_url(args.source)
        case (True, True):
            try:
                image = await load_from_url(args.source, timeout=app.config.request_timeout)
            except Img2PromptError as exc:
                return _fail(exc)
            await app.process_image_file(image)
        case (False, _):
            path = Path(args.source)
            match path.is_file():
                case False:
                    return _fail(f"{path} does not exist")
                case True:
                    await app.process_image_file(load_from_path(path))

    match app.state.error:
        case None:
            pass
        case error:
            return _fail(error)

    record = await app.analyze()
    match record:
        case None:
            return _fail(app.state.error)
        case r:
            console.print(r.prompt)
            return 0


def cmd_history(app: AppCoordinator, args: argparse.Namespace) -> int:
    records = sort_records(records_since(app.load_history(), args.period), args.sort)
    _print_records(records)
    return 0


def cmd_search(app: AppCoordinator, args: argparse.Namespace) -> int:
    _print_records(app.search_history(args.query))
    return 0


def cmd_delete(app: AppCoordinator, args: argparse.Namespace) -> int:
    app.delete_history_items(args.ids)
    console.print(f"{len(app.state.history)} record(s) left")
    return 0


def cmd_clear(app: AppCoordinator, args: argparse.Namespace) -> int:
    app.clear_history()
    console.print("History cleared")
    return 0


def cmd_export(app: AppCoordinator, args: argparse.Namespace) -> int:
    payload = app.export_history()
    match args.file:
        case None:
            console.print(payload, markup=False, highlight=False)
        case path:
            Path(path).write_text(payload, encoding="utf-8")
            console.print(f"Exported {len(app.state.history)} record(s) to {path}")
    return 0


def cmd_import(app: AppCoordinator, args: argparse.Namespace) -> int:
    path = Path(args.file)
    match path.is_file():
        case False:
            return _fail(f"{path} does not exist")
        case True:
            pass
    match app.import_history(path.read_text(encoding="utf-8")):
        case True:
            console.print(f"History now holds {len(app.state.history)} record(s)")
            return 0
        case False:
            return _fail("import file is not a JSON list of records")


def cmd_stats(app: AppCoordinator, args: argparse.Namespace) -> int:
    stats = app.storage_stats()
    console.print(f"Records : {stats.count}")
    console.print(f"Size    : {stats.formatted_size}")
    console.print(f"Oldest  : {stats.oldest or '-'}")
    console.print(f"Newest  : {stats.newest or '-'}")
    return 0


async def cmd_set_key(app: AppCoordinator, args: argparse.Namespace) -> int:
    match (args.service, args.test):
        case ("openrouter", True):
            valid = await app.test_analysis_key(args.key)
        case ("imgbb", True):
            valid = await app.test_hosting_key(args.key)
        case _:
            valid = True
    match valid:
        case False:
            return _fail(f"{args.service} key was rejected")
        case True:
            pass
    match args.service:
        case "openrouter":
            app.update_credentials(openrouter_key=args.key)
        case "imgbb":
            app.update_credentials(imgbb_key=args.key)
    console.print(f"{args.service} key saved")
    return 0


def cmd_settings(app: AppCoordinator, args: argparse.Namespace) -> int:
    changes = {
        k: v
        for k, v in (
            ("language", args.language),
            ("output_format", args.format),
            ("auto_save", args.auto_save),
            ("max_history_items", args.max_items),
        )
        if v is not None
    }
    prefs = app.update_preferences(**changes) if changes else app.state.preferences
    list(map(lambda kv: console.print(f"{kv[0]:<18}: {kv[1]}"), prefs.to_dict().items()))
    return 0


def cmd_models(app: AppCoordinator, args: argparse.Namespace) -> int:
    list(map(console.print, OpenRouterAnalysisClient().available_models()))
    return 0


# ── parser ────────────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="img2prompt", description="Turn images into generation prompts")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyse an image file or URL")
    analyze.add_argument("source", help="Path to an image, or an http(s) URL")
    analyze.add_argument("--download", action="store_true", help="Fetch URL images locally first")
    analyze.set_defaults(func=cmd_analyze)

    history = sub.add_parser("history", help="List saved prompts")
    history.add_argument("--sort", choices=SORT_OPTIONS, default="newest")
    history.add_argument("--period", choices=PERIOD_OPTIONS, default="all")
    history.set_defaults(func=cmd_history)

    search = sub.add_parser("search", help="Search prompts and image names")
    search.add_argument("query")
    search.set_defaults(func=cmd_search)

    delete = sub.add_parser("delete", help="Delete records by id")
    delete.add_argument("ids", nargs="+")
    delete.set_defaults(func=cmd_delete)

    clear = sub.add_parser("clear", help="Delete all records")
    clear.set_defaults(func=cmd_clear)

    export = sub.add_parser("export", help="Export history as JSON")
    export.add_argument("file", nargs="?")
    export.set_defaults(func=cmd_export)

    import_ = sub.add_parser("import", help="Merge a JSON export into history")
    import_.add_argument("file")
    import_.set_defaults(func=cmd_import)

    stats = sub.add_parser("stats", help="Show storage usage")
    stats.set_defaults(func=cmd_stats)

    set_key = sub.add_parser("set-key", help="Save an API key")
    set_key.add_argument("service", choices=("openrouter", "imgbb"))
    set_key.add_argument("key")
    set_key.add_argument("--test", action="store_true", help="Verify the key before saving")
    set_key.set_defaults(func=cmd_set_key)

    settings = sub.add_parser("settings", help="Show or change preferences")
    settings.add_argument("--language", choices=LANGUAGES)
    settings.add_argument("--format", choices=OUTPUT_FORMATS)
    settings.add_argument("--auto-save", action=argparse.BooleanOptionalAction, default=None)
    settings.add_argument("--max-items", type=int)
    settings.set_defaults(func=cmd_settings)

    models = sub.add_parser("models", help="List suggested models")
    models.set_defaults(func=cmd_models)
    return parser


def run(argv: Optional[list[str]] = None, config: Optional[Config] = None) -> int:
    args = build_parser().parse_args(argv)
    config = config or Config.from_env()
    _setup_logging(config.log_level)

    with AppCoordinator(config) as app:
        app.initialize()
        outcome = args.func(app, args)
        return asyncio.run(outcome) if asyncio.iscoroutine(outcome) else outcome


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
