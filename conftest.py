import pytest
from fastapi.testclient import TestClient

import librarydesk.database as database
from librarydesk.library import Library
from librarydesk.models import ROLE_ADMIN, ROLE_LIBRARIAN, ROLE_USER, Book
from librarydesk.security import create_access_token
from librarydesk.services.user_service import UserService, session_for
from librarydesk.ui_helpers import OUTPUT_MODE_ENV


@pytest.fixture(autouse=True)
def db_file(tmp_path, monkeypatch):
    # Each test gets its own SQLite file
    path = str(tmp_path / "library.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    monkeypatch.setenv(OUTPUT_MODE_ENV, "plain")
    database.initialize_database()
    return path


@pytest.fixture
def lib(db_file):
    return Library()


@pytest.fixture
def user_service(db_file):
    return UserService()


@pytest.fixture
def make_user(user_service):
    counter = {"n": 0}

    def _make(role=ROLE_USER, first_name="Test", last_name="Reader", password="secret123", email=None):
        counter["n"] += 1
        email = email or f"{role}{counter['n']}@example.com"
        return user_service.register(first_name, last_name, email, password, role=role)

    return _make


@pytest.fixture
def member(make_user):
    return session_for(make_user(ROLE_USER, first_name="Alice", last_name="Reader"))


@pytest.fixture
def other_member(make_user):
    return session_for(make_user(ROLE_USER, first_name="Bob", last_name="Borrower"))


@pytest.fixture
def librarian(make_user):
    return session_for(make_user(ROLE_LIBRARIAN, first_name="Lena", last_name="Librarian"))


@pytest.fixture
def admin(make_user):
    return session_for(make_user(ROLE_ADMIN, first_name="Ada", last_name="Admin"))


@pytest.fixture
def make_book(lib):
    def _make(title="The Hobbit", author="J.R.R. Tolkien", category="Fantasy",
              description="A hobbit goes on an unexpected journey."):
        return lib.add_book(Book(title=title, author=author, description=description, category=category))

    return _make


@pytest.fixture
def book(make_book):
    return make_book()


@pytest.fixture
def client(db_file):
    from librarydesk.api import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(session):
        token = create_access_token(session.user_id, session.role)
        return {"Authorization": f"Bearer {token}"}

    return _headers
