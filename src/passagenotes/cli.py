"""Admin command-line tool for committed passage annotations.

Works directly against durable storage (``STORAGE__URL``); no session state is
involved.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from passagenotes import _setup_logging
from passagenotes.annotation.store import AnnotationStore
from passagenotes.annotation.wrapping import list_annotations
from passagenotes.config import get_settings
from passagenotes.markup.tree import parse_markup
from passagenotes.persistence.bridge import PersistenceBridge
from passagenotes.persistence.records import PersistedRecord
from passagenotes.persistence.storage import create_storage

if TYPE_CHECKING:
    from collections.abc import Sequence

console = Console()


def _format_millis(millis: int) -> str:
    if millis <= 0:
        return "Never"
    return datetime.fromtimestamp(millis / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S")


def _build_parser() -> argparse.ArgumentParser:
    """Build argparse parser for passage-notes subcommands."""
    parser = argparse.ArgumentParser(
        prog="passage-notes",
        description="Inspect, export, import and clear committed passage annotations.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # list
    sub.add_parser("list", help="List passages with committed annotations")

    # show
    show_p = sub.add_parser("show", help="Show one passage's annotations")
    show_p.add_argument("document_id", help="Passage id (e.g. 'pt1,passage1')")

    # export
    export_p = sub.add_parser("export", help="Export every committed record as JSON")
    export_p.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Write to file (default: stdout)",
    )

    # import
    import_p = sub.add_parser("import", help="Restore records from an exported bundle")
    import_p.add_argument("file", type=Path, help="Bundle written by 'export'")

    # clear
    clear_p = sub.add_parser("clear", help="Delete committed records")
    target = clear_p.add_mutually_exclusive_group(required=True)
    target.add_argument("document_id", nargs="?", default=None, help="Passage id")
    target.add_argument("--all", action="store_true", help="Delete every record")

    return parser


async def _cmd_list(
    bridge: PersistenceBridge, *, console: Console | None = None
) -> None:
    """List committed passages as a Rich table."""
    con = console or globals()["console"]
    document_ids = await bridge.stored_ids()
    if not document_ids:
        con.print("[yellow]No committed annotations.[/]")
        return

    table = Table(title="Committed passages")
    table.add_column("Passage", style="cyan")
    table.add_column("Last modified")
    table.add_column("Annotations", justify="right")
    table.add_column("Paragraphs", justify="right")

    for document_id in document_ids:
        record = await bridge.read(document_id)
        if record is None:
            table.add_row(document_id, "[red]corrupt[/]", "-", "-")
            continue
        table.add_row(
            document_id,
            _format_millis(record.last_modified),
            str(len(list_annotations(parse_markup(record.annotated)))),
            str(len(record.paragraphs)),
        )

    con.print(table)


async def _cmd_show(
    bridge: PersistenceBridge,
    document_id: str,
    *,
    console: Console | None = None,
) -> None:
    """Show a single passage's committed annotations."""
    con = console or globals()["console"]
    record = await bridge.read(document_id)
    if record is None:
        con.print(f"[red]Error:[/] no committed record for '{document_id}'")
        sys.exit(1)

    con.print(f"\n[bold]{document_id}[/]")
    con.print(f"  Last modified: {_format_millis(record.last_modified)}")
    con.print(f"  Paragraphs: {len(record.paragraphs)}")

    annotations = list_annotations(parse_markup(record.annotated))
    if not annotations:
        con.print("\n  [dim]No annotations.[/]")
        return

    table = Table(title="Annotations")
    table.add_column("Path", style="dim")
    table.add_column("Style")
    table.add_column("Text")
    for info in annotations:
        table.add_row(".".join(map(str, info.path)), info.style.value, info.text)
    con.print(table)


async def _cmd_export(
    bridge: PersistenceBridge,
    *,
    output: Path | None = None,
    console: Console | None = None,
) -> dict[str, dict[str, Any]]:
    """Export every readable committed record as a JSON bundle."""
    con = console or globals()["console"]
    bundle: dict[str, dict[str, Any]] = {}
    for document_id in await bridge.stored_ids():
        record = await bridge.read(document_id)
        if record is not None:
            bundle[document_id] = record.model_dump(mode="json", by_alias=True)

    text = json.dumps(bundle, indent=2, ensure_ascii=False)
    if output is None:
        con.print_json(text)
    else:
        output.write_text(text, encoding="utf-8")
        con.print(f"[green]Exported[/] {len(bundle)} records to {output}")
    return bundle


async def _cmd_import(
    bridge: PersistenceBridge,
    path: Path,
    *,
    console: Console | None = None,
) -> int:
    """Restore records from a bundle; newer committed records are kept."""
    con = console or globals()["console"]
    try:
        bundle = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        con.print(f"[red]Error:[/] cannot read bundle {path}: {exc}")
        sys.exit(1)
    if not isinstance(bundle, dict):
        con.print(f"[red]Error:[/] {path} is not an exported bundle")
        sys.exit(1)

    restored = 0
    for document_id, payload in bundle.items():
        try:
            record = PersistedRecord.model_validate(payload)
        except ValidationError as exc:
            con.print(
                f"[yellow]Skipped[/] '{document_id}': {exc.error_count()} errors"
            )
            continue
        if await bridge.restore(document_id, record):
            restored += 1
        else:
            con.print(f"[yellow]Kept newer record[/] for '{document_id}'")

    con.print(f"[green]Restored[/] {restored} of {len(bundle)} records.")
    return restored


async def _cmd_clear(
    bridge: PersistenceBridge,
    document_id: str | None,
    *,
    clear_all: bool = False,
    console: Console | None = None,
) -> int:
    """Delete one record or all of them."""
    con = console or globals()["console"]
    if clear_all:
        removed = await bridge.clear_all()
        con.print(f"[green]Cleared[/] {removed} records.")
        return removed

    assert document_id is not None  # argparse requires one of the two
    if await bridge.clear_one(document_id):
        con.print(f"[green]Cleared[/] '{document_id}'.")
        return 1
    con.print(f"[yellow]No record:[/] '{document_id}'.")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """Manage committed passage annotations.

    Usage:
        passage-notes <command> [options]

    Commands:
        list                  List passages with committed annotations
        show <id>             Show one passage's annotations
        export [--output F]   Export every record as JSON
        import <file>         Restore records from an exported bundle
        clear <id> | --all    Delete committed records
    """
    parser = _build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    settings = get_settings()
    _setup_logging(settings.app.log_dir, settings.app.log_level)

    async def _run() -> None:
        storage = create_storage(settings.storage.url)
        bridge = PersistenceBridge(
            AnnotationStore(), storage, key_prefix=settings.storage.key_prefix
        )
        try:
            match args.command:
                case "list":
                    await _cmd_list(bridge)
                case "show":
                    await _cmd_show(bridge, args.document_id)
                case "export":
                    await _cmd_export(bridge, output=args.output)
                case "import":
                    await _cmd_import(bridge, args.file)
                case "clear":
                    await _cmd_clear(bridge, args.document_id, clear_all=args.all)
        finally:
            await storage.close()

    asyncio.run(_run())
