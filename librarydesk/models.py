from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

BOOK_AVAILABLE = "Available"
BOOK_BORROWED = "Borrowed"
BOOK_STATUSES = (BOOK_AVAILABLE, BOOK_BORROWED)

RESERVATION_PENDING = "Pending"
RESERVATION_CONFIRMED = "Confirmed"
RESERVATION_CANCELLED = "Cancelled"
RESERVATION_STATUSES = (RESERVATION_PENDING, RESERVATION_CONFIRMED, RESERVATION_CANCELLED)
ACTIVE_RESERVATION_STATUSES = (RESERVATION_PENDING, RESERVATION_CONFIRMED)

NOTIFICATION_REMINDER = "reminder"
NOTIFICATION_OVERDUE = "overdue"

ROLE_USER = "user"
ROLE_LIBRARIAN = "librarian"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_LIBRARIAN, ROLE_ADMIN)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_get(row: sqlite3.Row, key: str, default: Any = None) -> Any:
    return row[key] if key in row.keys() else default


@dataclass
class Book:
    """A catalog entry together with its circulation state."""

    title: str
    author: str
    description: str
    category: str
    status: str = BOOK_AVAILABLE
    cover_image: Optional[str] = None
    publication_date: Optional[str] = None
    isbn: Optional[str] = None
    borrowed_by: Optional[int] = None
    borrowed_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    reserved_by: Optional[int] = None
    reserved_date: Optional[datetime] = None
    average_rating: float = 0.0
    review_count: int = 0
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_borrowed(self) -> bool:
        return self.status == BOOK_BORROWED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "description": self.description,
            "category": self.category,
            "status": self.status,
            "coverImage": self.cover_image,
            "publicationDate": self.publication_date,
            "isbn": self.isbn,
            "borrowedBy": self.borrowed_by,
            "borrowedDate": to_iso(self.borrowed_date),
            "dueDate": to_iso(self.due_date),
            "reservedBy": self.reserved_by,
            "reservedDate": to_iso(self.reserved_date),
            "averageRating": self.average_rating,
            "reviewCount": self.review_count,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Book":
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            description=row["description"],
            category=row["category"],
            status=row["status"],
            cover_image=row["cover_image"],
            publication_date=row["publication_date"],
            isbn=row["isbn"],
            borrowed_by=row["borrowed_by"],
            borrowed_date=from_iso(row["borrowed_date"]),
            due_date=from_iso(row["due_date"]),
            reserved_by=_row_get(row, "reserved_by"),
            reserved_date=from_iso(_row_get(row, "reserved_date")),
            average_rating=row["average_rating"] or 0.0,
            review_count=row["review_count"] or 0,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class NotificationPreferences:
    due_date_reminders: bool = True
    overdue_notices: bool = True

    def to_dict(self) -> Dict[str, bool]:
        return {
            "dueDateReminders": self.due_date_reminders,
            "overdueNotices": self.overdue_notices,
        }


@dataclass
class User:
    first_name: str
    last_name: str
    email: str
    password: str = field(repr=False)
    role: str = ROLE_USER
    blocked: bool = False
    notification_preferences: NotificationPreferences = field(default_factory=NotificationPreferences)
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Public representation; the password hash never leaves the store."""
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "role": self.role,
            "blocked": self.blocked,
            "notificationPreferences": self.notification_preferences.to_dict(),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "User":
        return User(
            id=row["id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            password=row["password"],
            role=row["role"],
            blocked=bool(row["blocked"]),
            notification_preferences=NotificationPreferences(
                due_date_reminders=bool(row["due_date_reminders"]),
                overdue_notices=bool(row["overdue_notices"]),
            ),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Reservation:
    user_id: int
    book_id: int
    status: str = RESERVATION_PENDING
    reservation_date: Optional[datetime] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    # Populated by joined queries only
    user: Optional[Dict[str, Any]] = None
    book: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user if self.user is not None else self.user_id,
            "bookId": self.book if self.book is not None else self.book_id,
            "status": self.status,
            "reservationDate": to_iso(self.reservation_date),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Reservation":
        keys = row.keys()
        user = None
        if "user_email" in keys and row["user_email"] is not None:
            user = {
                "id": row["user_id"],
                "firstName": row["user_first_name"],
                "lastName": row["user_last_name"],
                "email": row["user_email"],
            }
        book = None
        if "book_title" in keys and row["book_title"] is not None:
            book = {
                "id": row["book_id"],
                "title": row["book_title"],
                "author": row["book_author"],
                "coverImage": row["book_cover_image"],
            }
        return Reservation(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            status=row["status"],
            reservation_date=from_iso(row["reservation_date"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            user=user,
            book=book,
        )


@dataclass
class Review:
    book_id: int
    user_id: int
    rating: int
    comment: str
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    user: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "bookId": self.book_id,
            "userId": self.user if self.user is not None else self.user_id,
            "rating": self.rating,
            "comment": self.comment,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Review":
        user = None
        if "user_email" in row.keys() and row["user_email"] is not None:
            user = {
                "id": row["user_id"],
                "firstName": row["user_first_name"],
                "lastName": row["user_last_name"],
                "email": row["user_email"],
            }
        return Review(
            id=row["id"],
            book_id=row["book_id"],
            user_id=row["user_id"],
            rating=row["rating"],
            comment=row["comment"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            user=user,
        )


@dataclass
class Notification:
    user_id: int
    book_id: int
    type: str
    message: str
    read: bool = False
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    book: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "bookId": self.book if self.book is not None else self.book_id,
            "type": self.type,
            "message": self.message,
            "read": self.read,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @staticmethod
    def from_row(row: sqlite3.Row) -> "Notification":
        book = None
        if "book_title" in row.keys() and row["book_title"] is not None:
            book = {
                "id": row["book_id"],
                "title": row["book_title"],
                "author": row["book_author"],
                "coverImage": row["book_cover_image"],
            }
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            type=row["type"],
            message=row["message"],
            read=bool(row["read"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            book=book,
        )
