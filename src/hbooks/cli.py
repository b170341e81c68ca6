"""Command-line interface for hbooks."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table

from . import __version__
from .errors import HBooksError
from .logging_utils import setup_logging
from .paths import log_dir, settings_path, store_path
from .runtime_config import normalize_transport_name, resolve_log_level
from .services.auth import InMemoryIdentityProvider, is_authenticated
from .services.catalog_store import (
    Book,
    extract_categories,
    filter_by_category,
    search_books,
)
from .services.documents import JsonFileDocumentStore
from .services.fake_transport import FakeTransport
from .services.playback_coordinator import PlayerState
from .services.storage_resolver import PublicBlobStorage
from .session import HBooksSession
from .settings_store import AppSettings, load_settings_with_notice
from .utils.time_format import format_time_ms, format_time_pair_ms
from .version import build_help_epilog

logger = logging.getLogger(__name__)

CLI_ACCOUNT_EMAIL = "listener@hbooks.local"
CLI_ACCOUNT_PASSWORD = "hbooks-local"

CommandHandler = Callable[[HBooksSession, argparse.Namespace, Console], Awaitable[int]]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hbooks",
        description="Audiobook catalog, progress and playback from the terminal.",
        epilog=build_help_epilog(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument("--log-file", help="Write logs to a file path")
    parser.add_argument("--store", help="Path of the JSON document store")
    parser.add_argument(
        "--user",
        help="Act as this signed-in user id (anonymous when omitted).",
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    subparsers.add_parser("seed", help="Load the built-in catalog when it is empty")

    books = subparsers.add_parser("books", help="List catalog books")
    books.add_argument("--search", default="", help="Match title, author or category")
    books.add_argument("--category", help="Only books in this category")

    play = subparsers.add_parser("play", help="Play a book with the fake transport")
    play.add_argument("book_id", metavar="BOOK_ID")
    play.add_argument(
        "--seconds",
        type=float,
        default=5.0,
        help="How long to keep playing before saving progress (default: 5).",
    )

    subparsers.add_parser(
        "progress", help="Show saved positions and recently played books"
    )
    return parser


def build_session(
    *,
    settings: AppSettings,
    documents_path: Path,
    identity: InMemoryIdentityProvider,
) -> HBooksSession:
    transport_name = normalize_transport_name(settings.transport)
    logger.info("Media transport selected: %s", transport_name)
    return HBooksSession(
        identity=identity,
        documents=JsonFileDocumentStore(documents_path),
        storage=PublicBlobStorage(),
        transport=FakeTransport(),
        legacy_bucket_host=settings.legacy_bucket_host,
        current_bucket_host=settings.current_bucket_host,
        tick_interval_s=settings.tick_interval_s,
        auto_save_ticks=settings.auto_save_ticks,
        initial_speed=settings.default_speed,
    )


def resolve_store_path(cli_store: str | None, settings: AppSettings) -> Path:
    """--store beats the settings file, which beats the platform default."""
    if cli_store:
        return Path(cli_store).expanduser()
    if settings.document_store_path:
        return Path(settings.document_store_path).expanduser()
    return store_path()


async def run_command(
    args: argparse.Namespace, settings: AppSettings, console: Console
) -> int:
    identity = InMemoryIdentityProvider()
    if args.user:
        identity.add_account(CLI_ACCOUNT_EMAIL, CLI_ACCOUNT_PASSWORD, uid=args.user)
        await identity.sign_in(CLI_ACCOUNT_EMAIL, CLI_ACCOUNT_PASSWORD)
    session = build_session(
        settings=settings,
        documents_path=resolve_store_path(args.store, settings),
        identity=identity,
    )
    handler = _COMMANDS[args.command]
    async with session:
        return await handler(session, args, console)


async def _seed(
    session: HBooksSession, args: argparse.Namespace, console: Console
) -> int:
    written = await session.catalog.seed_if_empty()
    if written:
        console.print(f"Seeded {written} books.")
    else:
        console.print("Catalog already has books; nothing to seed.")
    return 0


async def _books(
    session: HBooksSession, args: argparse.Namespace, console: Console
) -> int:
    books = await session.catalog.list_books()
    categories = extract_categories(books)
    selected = filter_by_category(search_books(books, args.search), args.category)
    if not selected:
        console.print("No books match.")
        return 0
    console.print(_books_table(selected))
    if categories:
        console.print(f"Categories: {', '.join(categories)}", markup=False)
    return 0


async def _play(
    session: HBooksSession, args: argparse.Namespace, console: Console
) -> int:
    coordinator = session.coordinator
    await coordinator.play(args.book_id)
    if coordinator.state.value.error:
        console.print(coordinator.state.value.error, style="red", markup=False)
        return 1
    await asyncio.sleep(max(0.0, args.seconds))
    console.print(_playback_table(coordinator.state.value))
    if not is_authenticated(session.auth.current_identity()):
        console.print("Progress is not saved for anonymous listeners; pass --user.")
    return 0


async def _progress(
    session: HBooksSession, args: argparse.Namespace, console: Console
) -> int:
    if not is_authenticated(session.auth.current_identity()):
        console.print("Pass --user to show saved progress.")
        return 0
    titles = {book.id: book.title for book in await session.catalog.list_books()}
    positions = session.positions.positions.value
    if positions:
        table = Table(title="Saved positions")
        table.add_column("Book")
        table.add_column("Title")
        table.add_column("Position", justify="right")
        for book_id, saved in sorted(positions.items()):
            position, duration = format_time_pair_ms(saved.position_ms, saved.duration_ms)
            table.add_row(book_id, titles.get(book_id, "?"), f"{position} / {duration}")
        console.print(table)
    else:
        console.print("No saved positions.")
    recent = session.recently_played.recently_played.value
    if recent:
        console.print(
            "Recently played: "
            + ", ".join(titles.get(book_id, book_id) for book_id in recent),
            markup=False,
        )
    return 0


_COMMANDS: dict[str, CommandHandler] = {
    "seed": _seed,
    "books": _books,
    "play": _play,
    "progress": _progress,
}


def _books_table(books: Sequence[Book]) -> Table:
    table = Table(title="Catalog")
    table.add_column("Id")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("Categories")
    for book in books:
        table.add_row(book.id, book.title, book.author, ", ".join(book.categories))
    return table


def _playback_table(state: PlayerState) -> Table:
    table = Table(title="Now playing", show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    book = state.current_book
    table.add_row("Book", f"{book.title} ({book.author})" if book else "-")
    position, duration = format_time_pair_ms(state.position_ms, state.duration_ms)
    table.add_row("Position", f"{position} / {duration}")
    table.add_row("Status", "playing" if state.is_playing else state.status)
    table.add_row("Speed", f"{state.speed:g}x")
    if state.sleep_timer_remaining_ms is not None:
        table.add_row("Sleep timer", format_time_ms(state.sleep_timer_remaining_ms))
    return table


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2
    console = Console()
    try:
        settings, notice = load_settings_with_notice(settings_path())
        if args.verbose or args.quiet:
            level = resolve_log_level(verbose=args.verbose, quiet=args.quiet)
        else:
            level = settings.log_level
        setup_logging(
            log_dir=log_dir(),
            level=level,
            log_file=Path(args.log_file) if args.log_file else None,
            console_level=None if args.verbose else "WARNING",
        )
        if notice:
            print(notice, file=sys.stderr)
        logger.info("Running hbooks %s", args.command)
        return asyncio.run(run_command(args, settings, console))
    except HBooksError as exc:
        logger.error("Command %s failed: %s", args.command, exc)
        print(str(exc), file=sys.stderr)
        return 1
    except Exception as exc:  # pragma: no cover - top-level safety net
        logger.exception("Unhandled error: %s", exc)
        print("Unexpected error. Re-run with --verbose for details.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
