import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# CLI output mode: 'plain' (default), 'json' or 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_books_result(books: List[Any]) -> None:
    """Print catalog rows in the current output mode.

    - plain: '<id> - <title> by <author> [<status>]' lines
    - json: array of id/title/author/status/dueDate
    - rich: table
    """
    if not books:
        print("No books in library.")
        return

    mode = get_output_mode()
    if mode == "json":
        payload = [
            {
                "id": b.id,
                "title": b.title,
                "author": b.author,
                "status": b.status,
                "dueDate": b.to_dict()["dueDate"],
            }
            for b in books
        ]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("Status", style="green")
        for b in books:
            table.add_row(str(b.id), b.title, b.author, b.status)
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.status}]")


def print_stats_result(stats: Dict[str, Any]) -> None:
    if not stats:
        print("No statistics available.")
        return

    total = stats.get("total", 0)
    available = stats.get("available", 0)
    borrowed = stats.get("borrowed", 0)

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({"total": total, "available": available, "borrowed": borrowed}))
    elif mode == "rich":
        content = (
            f"[bold]Total Books:[/] {total}\n"
            f"[bold]Available:[/] {available}\n"
            f"[bold]Borrowed:[/] {borrowed}"
        )
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        print(f"Total Books: {total}")
        print(f"Available: {available}")
        print(f"Borrowed: {borrowed}")


def print_scan_result(result: Dict[str, int]) -> None:
    """Totals from one due-date scan."""
    reminders = result.get("reminders_created", 0)
    overdue = result.get("overdue_created", 0)

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps({"remindersCreated": reminders, "overdueCreated": overdue}))
    elif mode == "rich":
        _console.print(Panel.fit(
            f"[bold]Reminders:[/] {reminders}\n[bold]Overdue notices:[/] {overdue}",
            title="🔔 Notification check",
            border_style="yellow" if overdue else "green",
        ))
    else:
        print(f"Reminders created: {reminders}")
        print(f"Overdue notices created: {overdue}")


def print_users_result(users: List[Any]) -> None:
    if not users:
        print("No users.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([{"id": u.id, "email": u.email, "role": u.role} for u in users]))
    elif mode == "rich":
        table = Table(title="👤 Users", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Email", style="white")
        table.add_column("Role", style="green")
        for u in users:
            table.add_row(str(u.id), u.email, u.role)
        _console.print(table)
    else:
        for u in users:
            print(f"{u.id} - {u.email} ({u.role})")
