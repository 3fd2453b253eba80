# downloads_sorter/cli/main.py

import logging
from pathlib import Path

import click
from PySide6.QtCore import Qt
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from tqdm import tqdm

from downloads_sorter.core import path_resolver
from downloads_sorter.core.config_manager import RuleStore, default_config_dir
from downloads_sorter.core.path_resolver import FileMetadata
from downloads_sorter.core.sort_engine import SortEngine
from downloads_sorter.core.statistics_store import StatisticsStore, STATISTICS_FILE_NAME
from downloads_sorter.core.undo_manager import UndoStatus
from downloads_sorter.utils.logger import setup_logging

console = Console()
logger = logging.getLogger(__name__)

WATCH_COMMANDS = ('pause', 'resume', 'undo', 'stats', 'quit')


def _build_engine(rule_store: RuleStore) -> SortEngine:
    statistics_store = StatisticsStore(rule_store.config_dir / STATISTICS_FILE_NAME)
    return SortEngine(rule_store, statistics_store)


def _print_statistics(engine: SortEngine):
    stats = engine.statistics
    table = Table(title="Statistics", show_header=False)
    table.add_column("Counter", style="cyan")
    table.add_column("Value", style="bold magenta")
    table.add_row("Files sorted today", str(stats.files_processed_today))
    table.add_row("Files sorted in total", str(stats.total_files_processed))
    table.add_row("Last sorting day", stats.last_processed_date or "-")
    console.print(table)


def _print_undo_result(status: UndoStatus, restored: Path | None):
    if status is UndoStatus.RESTORED:
        console.print(f"[green]Restored to {restored}[/green]")
    elif status is UndoStatus.NOTHING_TO_UNDO:
        console.print("[yellow]Nothing to undo.[/yellow]")
    elif status is UndoStatus.FILE_MISSING:
        console.print("[yellow]The moved file no longer exists, nothing to restore.[/yellow]")
    else:
        console.print("[red]Undo failed, see the log for details.[/red]")


# --- Main Command Group ---
@click.group(context_settings=dict(help_option_names=['-h', '--help']))
@click.version_option(version="1.0", prog_name="Downloads Sorter")
@click.option('--config-dir', type=click.Path(file_okay=False, dir_okay=True, path_type=Path), default=None,
              help="Directory holding rules.json, settings.json and statistics.json.")
@click.option('-v', '--verbose', is_flag=True, help="Show debug messages on the console.")
@click.pass_context
def sorter(ctx: click.Context, config_dir: Path | None, verbose: bool):
    """
    Downloads Sorter - keeps a downloads folder tidy by moving files into
    category folders as soon as they finish downloading.

    Use `[COMMAND] --help` for more information on a specific command.
    """
    config_dir = config_dir or default_config_dir()
    setup_logging(config_dir, verbose)
    ctx.obj = RuleStore(config_dir)


@sorter.command()
@click.pass_obj
def watch(rule_store: RuleStore):
    """Watches the source folder and sorts files as they arrive."""
    engine = _build_engine(rule_store)
    # Signals fire on worker threads and there is no Qt event loop here,
    # so the console slots must be called directly.
    engine.log_message.connect(lambda line: console.print(line, markup=False), Qt.ConnectionType.DirectConnection)
    engine.file_moved.connect(
        lambda name, category: console.print(f"[bold green]Sorted[/bold green] {escape(name)} -> {escape(category)}"),
        Qt.ConnectionType.DirectConnection)

    engine.start()
    console.print(f"Commands: {', '.join(WATCH_COMMANDS)}")
    try:
        while True:
            command = click.prompt("", prompt_suffix="> ", default="", show_default=False).strip().lower()
            if command in ('quit', 'q', 'exit'):
                break
            elif command == 'pause':
                engine.pause()
            elif command == 'resume':
                engine.resume()
            elif command == 'undo':
                _print_undo_result(*engine.undo_last())
            elif command == 'stats':
                _print_statistics(engine)
            elif command:
                console.print(f"[yellow]Unknown command '{command}'. Try: {', '.join(WATCH_COMMANDS)}[/yellow]")
    except (KeyboardInterrupt, EOFError, click.Abort):
        console.print()
    finally:
        engine.close()


@sorter.command()
@click.option('--dry-run', is_flag=True, help="List what would be moved without moving anything.")
@click.pass_obj
def sort(rule_store: RuleStore, dry_run: bool):
    """Sorts the files already in the source folder once, then exits."""
    engine = _build_engine(rule_store)
    try:
        files = engine.list_backlog()
        if not files:
            console.print("[bold green]Nothing to sort.[/bold green]")
            return

        if dry_run:
            table = Table(title="Sorting Plan Preview", style="cyan", title_style="bold magenta")
            table.add_column("File", style="green", no_wrap=True)
            table.add_column("Will be Moved To", style="yellow")
            for path in files:
                destination = path_resolver.resolve(
                    path, FileMetadata.from_path(path), rule_store, rule_store.settings, engine.source_dir)
                if destination is not None:
                    table.add_row(path.name, str(destination.path))
            console.print(table)
            return

        moved = 0
        for path in tqdm(files, desc="Sorting", unit="file"):
            if engine.sort_now(path) is not None:
                moved += 1
        console.print(f"[bold green]Moved {moved} of {len(files)} files.[/bold green]")
    finally:
        engine.close()


@sorter.command()
@click.pass_obj
def stats(rule_store: RuleStore):
    """Shows how many files have been sorted."""
    engine = _build_engine(rule_store)
    try:
        _print_statistics(engine)
    finally:
        engine.close()


# --- Rules ---

@sorter.group()
def rules():
    """Manage extension -> category rules (rules.json)."""
    pass


@rules.command(name="list")
@click.pass_obj
def list_rules(rule_store: RuleStore):
    """Lists all rules, grouped by category."""
    table = Table(title="Sorting Rules", style="cyan", title_style="bold magenta")
    table.add_column("Extension", style="green")
    table.add_column("Category", style="yellow")
    for extension, category in sorted(rule_store.rules.items(), key=lambda item: (item[1], item[0])):
        table.add_row(extension, category)
    console.print(table)


@rules.command(name="add")
@click.argument('extension')
@click.argument('category')
@click.pass_obj
def add_rule(rule_store: RuleStore, extension: str, category: str):
    """Sorts files with EXTENSION into the CATEGORY folder."""
    if rule_store.add_rule(extension, category):
        console.print(f"[green]Files ending in {extension} now go to {category}.[/green]")
    else:
        console.print("[red]The rule could not be saved, see the log for details.[/red]")
        raise SystemExit(1)


@rules.command(name="remove")
@click.argument('extension')
@click.pass_obj
def remove_rule(rule_store: RuleStore, extension: str):
    """Stops sorting files with EXTENSION."""
    if rule_store.remove_rule(extension):
        console.print(f"[green]Removed the rule for {extension}.[/green]")
    else:
        console.print(f"[yellow]There is no rule for {extension}.[/yellow]")


# --- Settings ---

@sorter.group()
def settings():
    """View and change settings (settings.json)."""
    pass


@settings.command(name="show")
@click.pass_obj
def show_settings(rule_store: RuleStore):
    """Shows the current settings."""
    current = rule_store.settings
    table = Table(title="Settings", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="bold magenta")
    table.add_row("Source folder", current.source_path or f"(default) {current.resolve_source_path()}")
    table.add_row("Minimum file size", f"{current.min_file_size} bytes")
    table.add_row("Organize by date", "yes" if current.organize_by_date else "no")
    table.add_row("Notifications", "on" if current.notifications_enabled else "off")
    table.add_row("Start with the system", "on" if current.autostart_enabled else "off")
    console.print(table)


@settings.command(name="set")
@click.option('--source', type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
              default=None, help="Folder to watch.")
@click.option('--min-size', type=click.IntRange(min=0), default=None,
              help="Files smaller than this many bytes are left alone.")
@click.option('--by-date/--no-by-date', default=None, help="Add a YYYY-MM-DD folder under each category.")
@click.option('--notifications/--no-notifications', default=None, help="Announce every moved file.")
@click.option('--autostart/--no-autostart', default=None, help="Remember whether to start with the system.")
@click.pass_obj
def set_settings(rule_store: RuleStore, source: Path | None, min_size: int | None, by_date: bool | None,
                 notifications: bool | None, autostart: bool | None):
    """Changes one or more settings."""
    changes = {
        'source_path': str(source.resolve()) if source else None,
        'min_file_size': min_size,
        'organize_by_date': by_date,
        'notifications_enabled': notifications,
        'autostart_enabled': autostart,
    }
    changes = {key: value for key, value in changes.items() if value is not None}
    if not changes:
        console.print("[yellow]No changes given. See --help.[/yellow]")
        return

    if rule_store.update_settings(**changes):
        console.print("[green]Settings saved.[/green]")
    else:
        console.print("[red]Settings could not be saved, see the log for details.[/red]")
        raise SystemExit(1)
