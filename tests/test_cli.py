import json
from datetime import timedelta
from unittest.mock import MagicMock

from typer.testing import CliRunner

from librarydesk import cli
from librarydesk.cli import app
from librarydesk.config import settings
from librarydesk.models import utcnow

runner = CliRunner()


def test_list_no_books(lib):
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_list_plain(lib, book, member):
    lib.borrow_book(book.id, member)
    result = runner.invoke(app, ["list", "--status", "Borrowed"])
    assert result.exit_code == 0
    assert f"{book.id} - The Hobbit by J.R.R. Tolkien [Borrowed]" in result.stdout


def test_stats_plain_and_json(lib, make_book, member):
    first = make_book()
    make_book(title="Dune")
    lib.borrow_book(first.id, member)

    plain = runner.invoke(app, ["stats"])
    assert plain.exit_code == 0
    assert "Total Books: 2" in plain.stdout
    assert "Borrowed: 1" in plain.stdout

    as_json = runner.invoke(app, ["-o", "json", "stats"])
    assert as_json.exit_code == 0
    assert json.loads(as_json.stdout.strip().splitlines()[-1]) == {"total": 2, "available": 1, "borrowed": 1}


def test_notify_runs_scan_once(lib, book, member):
    lib.borrow_book(book.id, member, now=utcnow() - timedelta(days=13))

    result = runner.invoke(app, ["notify"])
    assert result.exit_code == 0
    assert "Reminders created: 1" in result.stdout
    assert "Overdue notices created: 0" in result.stdout

    rerun = runner.invoke(app, ["notify"])
    assert "Reminders created: 0" in rerun.stdout


def test_notify_every_loops_until_interrupted(lib, monkeypatch):
    sleep = MagicMock(side_effect=[None, KeyboardInterrupt])
    monkeypatch.setattr(cli.time, "sleep", sleep)

    result = runner.invoke(app, ["notify", "--every", "5"])
    assert result.exit_code == 0
    assert result.stdout.count("Reminders created: 0") == 2
    sleep.assert_called_with(5)


def test_notify_watch_uses_configured_interval(lib, monkeypatch):
    sleep = MagicMock(side_effect=KeyboardInterrupt)
    monkeypatch.setattr(cli.time, "sleep", sleep)
    monkeypatch.setattr(settings, "notification_check_interval", 90)

    result = runner.invoke(app, ["notify", "--watch"])
    assert result.exit_code == 0
    sleep.assert_called_once_with(90)


def test_seed_users_and_books(lib):
    users = runner.invoke(app, ["seed-users"])
    assert users.exit_code == 0
    assert "admin@library.com (admin)" in users.stdout
    assert "librarian@library.com (librarian)" in users.stdout

    books = runner.invoke(app, ["seed-books"])
    assert books.exit_code == 0
    assert f"Added {len(cli.SAMPLE_BOOKS)} books" in books.stdout

    again = runner.invoke(app, ["seed-books"])
    assert "Added 0 books" in again.stdout
    assert len(lib.list_books()) == len(cli.SAMPLE_BOOKS)


def test_serve_launches_uvicorn(lib, monkeypatch):
    run_mock = MagicMock()
    monkeypatch.setattr(cli.subprocess, "run", run_mock)
    monkeypatch.setattr(settings, "debug", False)

    result = runner.invoke(app, ["serve"])
    assert result.exit_code == 0
    args = run_mock.call_args[0][0]
    assert "uvicorn" in args
    assert "librarydesk.api:app" in args
    assert "--reload" not in args


def test_serve_reloads_in_debug(lib, monkeypatch):
    run_mock = MagicMock()
    monkeypatch.setattr(cli.subprocess, "run", run_mock)
    monkeypatch.setattr(settings, "debug", True)

    assert runner.invoke(app, ["serve"]).exit_code == 0
    assert "--reload" in run_mock.call_args[0][0]

    assert runner.invoke(app, ["serve", "--no-reload"]).exit_code == 0
    assert "--reload" not in run_mock.call_args[0][0]
