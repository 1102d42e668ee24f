import logging
import sqlite3
from datetime import timedelta

from fastapi.testclient import TestClient

from librarydesk import api
from librarydesk.config import settings
from librarydesk.models import from_iso, utcnow

BOOK_PAYLOAD = {
    "title": "The Left Hand of Darkness",
    "author": "Ursula K. Le Guin",
    "description": "An envoy visits a planet whose people have no fixed sex.",
    "category": "Science Fiction",
    "isbn": "978-0-441-47812-5",
}
COMMENT = "A thoughtful and beautifully written book."


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db"] is True


def test_register_login_me(client):
    response = client.post("/auth/register", json={
        "firstName": "Grace", "lastName": "Hopper", "email": "grace@example.com", "password": "cobol123",
    })
    assert response.status_code == 201
    assert response.json()["user"]["email"] == "grace@example.com"
    assert "password" not in response.json()["user"]

    duplicate = client.post("/auth/register", json={
        "firstName": "Grace", "lastName": "Hopper", "email": "grace@example.com", "password": "cobol123",
    })
    assert duplicate.status_code == 409
    assert "error" in duplicate.json()

    login = client.post("/auth/login", json={"email": "grace@example.com", "password": "cobol123"})
    assert login.status_code == 200
    token = login.json()["token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["firstName"] == "Grace"


def test_register_validation_is_400(client):
    response = client.post("/auth/register", json={"firstName": "Grace"})
    assert response.status_code == 400
    assert response.json() == {"error": "All fields are required"}


def test_login_failure(client):
    response = client.post("/auth/login", json={"email": "ghost@example.com", "password": "whatever"})
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}


def test_requires_token(client, book):
    assert client.post(f"/books/{book.id}/borrow").status_code == 401
    bad = client.post(f"/books/{book.id}/borrow", headers={"Authorization": "Bearer nonsense"})
    assert bad.status_code == 401


def test_catalog_permissions(client, member, librarian, admin, auth_headers):
    assert client.post("/books", json=BOOK_PAYLOAD, headers=auth_headers(member)).status_code == 403

    created = client.post("/books", json=BOOK_PAYLOAD, headers=auth_headers(librarian))
    assert created.status_code == 201
    book = created.json()["book"]
    assert book["status"] == "Available"
    assert book["averageRating"] == 0

    update = dict(BOOK_PAYLOAD, category="Classics")
    updated = client.put(f"/books/{book['id']}", json=update, headers=auth_headers(librarian))
    assert updated.status_code == 200
    assert updated.json()["book"]["category"] == "Classics"

    assert client.delete(f"/books/{book['id']}", headers=auth_headers(librarian)).status_code == 403
    assert client.delete(f"/books/{book['id']}", headers=auth_headers(admin)).status_code == 200
    assert client.get(f"/books/{book['id']}").status_code == 404


def test_create_book_validation(client, librarian, auth_headers):
    response = client.post("/books", json=dict(BOOK_PAYLOAD, description="short"), headers=auth_headers(librarian))
    assert response.status_code == 400
    assert "Description" in response.json()["error"]


def test_list_books_and_stats(client, book, make_book):
    make_book(title="Dune", author="Frank Herbert", category="Science Fiction")

    listed = client.get("/books", params={"category": "Science Fiction"})
    assert [b["title"] for b in listed.json()["books"]] == ["Dune"]

    stats = client.get("/books/stats").json()["stats"]
    assert stats == {"total": 2, "available": 2, "borrowed": 0}


def test_borrow_extend_return_flow(client, book, member, other_member, auth_headers):
    borrowed = client.post(f"/books/{book.id}/borrow", headers=auth_headers(member))
    assert borrowed.status_code == 200
    payload = borrowed.json()["book"]
    assert payload["status"] == "Borrowed"
    assert payload["borrowedBy"] == member.user_id
    borrowed_date = from_iso(payload["borrowedDate"])
    due_date = from_iso(payload["dueDate"])
    assert due_date - borrowed_date == timedelta(days=settings.borrow_period_days)

    again = client.post(f"/books/{book.id}/borrow", headers=auth_headers(other_member))
    assert again.status_code == 400
    assert again.json() == {"error": "Book is already borrowed"}

    mine = client.get("/books/my-books", headers=auth_headers(member)).json()["books"]
    assert [b["id"] for b in mine] == [book.id]

    assert client.post(f"/books/{book.id}/extend", headers=auth_headers(other_member)).status_code == 403
    extended = client.post(f"/books/{book.id}/extend", headers=auth_headers(member))
    assert from_iso(extended.json()["book"]["dueDate"]) == due_date + timedelta(days=7)

    assert client.post(f"/books/{book.id}/return", headers=auth_headers(other_member)).status_code == 403
    returned = client.post(f"/books/{book.id}/return", headers=auth_headers(member)).json()["book"]
    assert returned["status"] == "Available"
    assert returned["borrowedBy"] is None
    assert returned["dueDate"] is None

    assert client.post(f"/books/{book.id}/return", headers=auth_headers(member)).status_code == 400


def test_borrow_missing_book(client, member, auth_headers):
    response = client.post("/books/999/borrow", headers=auth_headers(member))
    assert response.status_code == 404
    assert response.json() == {"error": "Book not found"}


def test_reserve_slot_endpoints(client, book, member, other_member, auth_headers):
    assert client.post(f"/books/{book.id}/reserve", headers=auth_headers(member)).status_code == 200
    assert client.post(f"/books/{book.id}/reserve", headers=auth_headers(other_member)).status_code == 400
    assert client.delete(f"/books/{book.id}/reserve", headers=auth_headers(other_member)).status_code == 403

    released = client.delete(f"/books/{book.id}/reserve", headers=auth_headers(member))
    assert released.status_code == 200
    assert released.json()["book"]["reservedBy"] is None


def test_reservation_lifecycle(client, book, member, librarian, auth_headers):
    created = client.post("/reservations", json={"bookId": book.id}, headers=auth_headers(member))
    assert created.status_code == 201
    reservation = created.json()["reservation"]
    assert reservation["status"] == "Pending"
    assert reservation["bookId"]["title"] == book.title

    duplicate = client.post("/reservations", json={"bookId": book.id}, headers=auth_headers(member))
    assert duplicate.status_code == 400

    assert client.patch(f"/reservations/{reservation['id']}", headers=auth_headers(member)).status_code == 403

    confirmed = client.patch(f"/reservations/{reservation['id']}", headers=auth_headers(librarian))
    assert confirmed.status_code == 200
    assert confirmed.json()["reservation"]["status"] == "Confirmed"
    assert confirmed.json()["book"]["borrowedBy"] == member.user_id

    cancel = client.delete(f"/reservations/{reservation['id']}", headers=auth_headers(librarian))
    assert cancel.status_code == 400

    listed = client.get("/reservations", headers=auth_headers(member)).json()["reservations"]
    assert [r["id"] for r in listed] == [reservation["id"]]


def test_reservation_requires_book_id(client, member, auth_headers):
    response = client.post("/reservations", json={}, headers=auth_headers(member))
    assert response.status_code == 400
    assert response.json() == {"error": "Book ID is required"}


def test_reviews_endpoints(client, book, member, other_member, librarian, auth_headers):
    assert client.get("/reviews").status_code == 400

    first = client.post("/reviews", json={"bookId": book.id, "rating": 4, "comment": COMMENT},
                        headers=auth_headers(member))
    assert first.status_code == 201
    second = client.post("/reviews", json={"bookId": book.id, "rating": 5, "comment": COMMENT},
                         headers=auth_headers(other_member))
    assert second.status_code == 201

    rated = client.get(f"/books/{book.id}").json()["book"]
    assert rated["averageRating"] == 4.5
    assert rated["reviewCount"] == 2

    repeat = client.post("/reviews", json={"bookId": book.id, "rating": 3, "comment": COMMENT},
                         headers=auth_headers(member))
    assert repeat.status_code == 400

    bad_rating = client.post("/reviews", json={"bookId": book.id, "rating": 7, "comment": COMMENT},
                             headers=auth_headers(librarian))
    assert bad_rating.status_code == 400

    review_id = first.json()["review"]["id"]
    forbidden = client.put(f"/reviews/{review_id}", json={"rating": 1, "comment": COMMENT},
                           headers=auth_headers(other_member))
    assert forbidden.status_code == 403

    assert client.delete(f"/reviews/{review_id}", headers=auth_headers(librarian)).status_code == 200
    listed = client.get("/reviews", params={"bookId": book.id}).json()["reviews"]
    assert len(listed) == 1
    assert client.get(f"/books/{book.id}").json()["book"]["averageRating"] == 5


def test_notification_endpoints(client, lib, book, member, librarian, auth_headers):
    lib.borrow_book(book.id, member, now=utcnow() - timedelta(days=13))

    assert client.post("/notifications/check", headers=auth_headers(member)).status_code == 403
    first = client.post("/notifications/check", headers=auth_headers(librarian)).json()
    assert first["remindersCreated"] == 1
    assert first["overdueCreated"] == 0

    again = client.get("/notifications/check").json()
    assert again["remindersCreated"] == 0

    inbox = client.get("/notifications", headers=auth_headers(member)).json()
    assert inbox["unreadCount"] == 1
    notification = inbox["notifications"][0]
    assert notification["type"] == "reminder"
    assert notification["bookId"]["title"] == book.title

    marked = client.patch("/notifications", json={"notificationId": notification["id"]},
                          headers=auth_headers(member))
    assert marked.status_code == 200
    unread = client.get("/notifications", params={"unreadOnly": "true"}, headers=auth_headers(member))
    assert unread.json()["notifications"] == []

    assert client.patch("/notifications", json={}, headers=auth_headers(member)).status_code == 400
    assert client.delete("/notifications", headers=auth_headers(member)).status_code == 400
    deleted = client.delete("/notifications", params={"deleteAll": "true"}, headers=auth_headers(member))
    assert deleted.json()["deleted"] == 1


def test_notification_settings(client, member, auth_headers):
    current = client.get("/notifications/settings", headers=auth_headers(member)).json()
    assert current["notificationPreferences"] == {"dueDateReminders": True, "overdueNotices": True}

    assert client.patch("/notifications/settings", json={}, headers=auth_headers(member)).status_code == 400

    updated = client.patch("/notifications/settings", json={"dueDateReminders": False},
                           headers=auth_headers(member))
    assert updated.json()["notificationPreferences"] == {"dueDateReminders": False, "overdueNotices": True}


def test_user_admin_endpoints(client, member, librarian, admin, auth_headers):
    assert client.get("/users", headers=auth_headers(librarian)).status_code == 403

    everyone = client.get("/users", headers=auth_headers(admin)).json()["users"]
    assert len(everyone) == 3
    assert all("password" not in u for u in everyone)

    self_block = client.patch("/users", json={"userId": admin.user_id, "blocked": True},
                              headers=auth_headers(admin))
    assert self_block.status_code == 400

    blocked = client.patch("/users", json={"userId": member.user_id, "blocked": True},
                           headers=auth_headers(admin))
    assert blocked.status_code == 200
    assert blocked.json()["user"]["blocked"] is True

    # Existing tokens stop working once the account is blocked
    assert client.get("/auth/me", headers=auth_headers(member)).status_code == 403

    only_blocked = client.get("/users", params={"status": "blocked"}, headers=auth_headers(admin)).json()
    assert [u["id"] for u in only_blocked["users"]] == [member.user_id]


def test_database_error_is_generic_500(client, book, monkeypatch, caplog):
    def broken_get_book(book_id):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(api.library, "get_book", broken_get_book)
    with caplog.at_level(logging.ERROR, logger="librarydesk.api"):
        response = client.get(f"/books/{book.id}")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    record = next(r for r in caplog.records if r.name == "librarydesk.api")
    assert "Database error on GET" in record.getMessage()
    assert record.exc_info[0] is sqlite3.OperationalError


def test_unexpected_error_is_generic_500(book, monkeypatch, caplog):
    def broken_get_book(book_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(api.library, "get_book", broken_get_book)
    with TestClient(api.app, raise_server_exceptions=False) as client:
        with caplog.at_level(logging.ERROR, logger="librarydesk.api"):
            response = client.get(f"/books/{book.id}")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    assert "boom" not in response.text
    assert any(r.exc_info and r.exc_info[0] is RuntimeError for r in caplog.records)


def test_invalid_path_param_is_400(client):
    response = client.get("/books/not-a-number")
    assert response.status_code == 400
    assert "error" in response.json()
