import logging
import os
import subprocess
import sys
import time
from typing import Optional

import typer
from rich.console import Console

import librarydesk.database as database
from librarydesk.config import settings
from librarydesk.errors import LibraryError
from librarydesk.library import Library
from librarydesk.models import Book
from librarydesk.services.notification_service import NotificationService
from librarydesk.services.user_service import UserService
from librarydesk.ui_helpers import (
    print_books_result,
    print_scan_result,
    print_stats_result,
    print_users_result,
    set_output_mode,
)

logger = logging.getLogger(__name__)

console = Console()

SAMPLE_BOOKS = [
    Book(
        title="To Kill a Mockingbird",
        author="Harper Lee",
        description="A gripping tale of racial injustice and childhood innocence set in the Deep South during the 1930s.",
        category="Fiction",
        isbn="978-0-06-112008-4",
    ),
    Book(
        title="1984",
        author="George Orwell",
        description="A dystopian social science fiction novel that follows the life of Winston Smith in a totalitarian state.",
        category="Science Fiction",
        isbn="978-0-452-28423-4",
    ),
    Book(
        title="Pride and Prejudice",
        author="Jane Austen",
        description="A romantic novel of manners that follows the character development of Elizabeth Bennet.",
        category="Romance",
        isbn="978-0-14-143951-8",
    ),
    Book(
        title="The Great Gatsby",
        author="F. Scott Fitzgerald",
        description="A tragic story of Jay Gatsby and his pursuit of the American Dream in the Jazz Age.",
        category="Fiction",
        isbn="978-0-7432-7356-5",
    ),
    Book(
        title="Sapiens: A Brief History of Humankind",
        author="Yuval Noah Harari",
        description="An exploration of the history of humanity from the Stone Age to the modern age.",
        category="Non-Fiction",
        isbn="978-0-06-231609-7",
    ),
    Book(
        title="The Hobbit",
        author="J.R.R. Tolkien",
        description="A fantasy novel about Bilbo Baggins' unexpected journey to help dwarves reclaim their mountain home.",
        category="Fantasy",
        isbn="978-0-547-92822-7",
    ),
]

app = typer.Typer(help="Library Desk CLI")


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite file to use instead of LIBRARY_DB_FILE"),
):
    """Global options (output mode, database file)."""
    logging.basicConfig(level=settings.log_level)
    if output:
        set_output_mode(output)
    if db:
        database.DATABASE_FILE = db


@app.command("serve")
def cli_serve(
    reload: Optional[bool] = typer.Option(
        None, "--reload/--no-reload", help="Restart the server when source files change (default: DEBUG)"
    ),
):
    """Run the HTTP API under uvicorn."""
    if reload is None:
        reload = settings.debug
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "librarydesk.api:app",
        "--host", host,
        "--port", str(port),
        "--log-level", settings.log_level.lower(),
    ]
    if reload:
        args.append("--reload")
    env = dict(os.environ, LIBRARY_DB_FILE=database.DATABASE_FILE)
    try:
        subprocess.run(args, env=env, check=False)
    except KeyboardInterrupt:
        console.print("[dim]Server stopped[/]")


@app.command("notify")
def cli_notify(
    every: Optional[int] = typer.Option(
        None,
        "--every",
        help="Repeat the scan every N seconds (0 = run once)",
    ),
    watch: bool = typer.Option(
        False,
        "--watch",
        help="Repeat the scan every NOTIFICATION_CHECK_INTERVAL seconds",
    ),
):
    """Create due-date reminders and overdue notices for borrowed books."""
    if every is None:
        every = settings.notification_check_interval if watch else 0
    Library()
    service = NotificationService()
    try:
        while True:
            print_scan_result(service.check_due_dates())
            if every <= 0:
                break
            time.sleep(every)
    except KeyboardInterrupt:
        console.print("[dim]Notification worker stopped[/]")


@app.command("seed-users")
def cli_seed_users():
    """Create the admin and librarian accounts if they are missing."""
    Library()
    try:
        seeded = UserService().seed_staff()
    except LibraryError as e:
        print(f"Error: {e.message}")
        raise typer.Exit(code=1)
    print_users_result(seeded)


@app.command("seed-books")
def cli_seed_books():
    """Add the sample catalog, skipping titles that already exist."""
    lib = Library()
    existing = {b.title for b in lib.list_books()}
    added = []
    for sample in SAMPLE_BOOKS:
        if sample.title in existing:
            continue
        added.append(lib.add_book(sample))
    print(f"Added {len(added)} books")
    print_books_result(lib.list_books())


@app.command("list")
def cli_list(
    status: Optional[str] = typer.Option(None, "--status", "-s", help="Available | Borrowed"),
    search: Optional[str] = typer.Option(None, "--search", help="Match title, author or category"),
):
    """List the catalog."""
    print_books_result(Library().list_books(status=status, search=search))


@app.command("stats")
def cli_stats():
    """Show catalog statistics."""
    print_stats_result(Library().get_statistics())


if __name__ == "__main__":
    app()
