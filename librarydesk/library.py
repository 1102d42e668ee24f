import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import librarydesk.database as database
from librarydesk.access import Session, can_cancel_hold, can_extend, can_return, is_owner
from librarydesk.config import settings
from librarydesk.database import get_db_connection, initialize_database
from librarydesk.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from librarydesk.models import BOOK_AVAILABLE, BOOK_BORROWED, Book, to_iso, utcnow
from librarydesk.validators import TextValidator, validate_book_fields

logger = logging.getLogger(__name__)

_UNSET = object()


def checkout(conn: sqlite3.Connection, book_id: int, user_id: int, now: datetime,
             period_days: Optional[int] = None) -> Optional[datetime]:
    """Mark an available book as borrowed in one conditional update.

    Returns the due date, or None when the book was not available at write
    time. The caller owns the commit.
    """
    days = period_days if period_days is not None else settings.borrow_period_days
    due_date = now + timedelta(days=days)
    cursor = conn.execute(
        """
        UPDATE books
        SET status = ?, borrowed_by = ?, borrowed_date = ?, due_date = ?, updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (BOOK_BORROWED, user_id, to_iso(now), to_iso(due_date), to_iso(now), book_id, BOOK_AVAILABLE),
    )
    if cursor.rowcount == 0:
        return None
    return due_date


class Library:
    """Book catalog and the borrow/return/extend/hold lifecycle."""

    def __init__(self, db_file: Optional[str] = None, initialize: bool = True) -> None:
        if db_file:
            database.DATABASE_FILE = db_file
        if initialize:
            initialize_database()

    # ------------------------- Catalog ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Validate and insert a new catalog entry. New books are always Available."""
        validate_book_fields(book.title, book.author, book.description, book.category, book.status)
        if book.status != BOOK_AVAILABLE:
            raise ValidationError("New books must be Available; use the borrow endpoint to lend them")

        now = to_iso(utcnow())
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                """
                INSERT INTO books (title, author, description, category, status, cover_image,
                                   publication_date, isbn, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    TextValidator.clean(book.title),
                    TextValidator.clean(book.author),
                    TextValidator.clean(book.description),
                    TextValidator.clean(book.category),
                    BOOK_AVAILABLE,
                    TextValidator.clean(book.cover_image) or None,
                    book.publication_date,
                    TextValidator.clean(book.isbn) or None,
                    now,
                    now,
                ),
            )
            conn.commit()
            book_id = cursor.lastrowid
        finally:
            conn.close()
        logger.info(f"Book {book_id} added: {book.title!r}")
        return self.get_book(book_id)

    def find_book(self, book_id: int) -> Optional[Book]:
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        finally:
            conn.close()
        return Book.from_row(row) if row else None

    def get_book(self, book_id: int) -> Book:
        book = self.find_book(book_id)
        if not book:
            raise NotFoundError("Book not found")
        return book

    def list_books(self, status: Optional[str] = None, category: Optional[str] = None,
                   search: Optional[str] = None) -> List[Book]:
        """List the catalog, newest first. ``"all"`` disables a filter."""
        clauses: List[str] = []
        params: List[Any] = []
        if status and status != "all":
            clauses.append("status = ?")
            params.append(status)
        if category and category != "all":
            clauses.append("category = ?")
            params.append(category)
        if search:
            like = f"%{search.strip()}%"
            clauses.append("(title LIKE ? OR author LIKE ? OR category LIKE ?)")
            params.extend([like, like, like])

        query = "SELECT * FROM books"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC"

        conn = get_db_connection()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [Book.from_row(r) for r in rows]

    def update_book(self, book_id: int, *, title: str, author: str, description: str, category: str,
                    status: Optional[str] = None, cover_image: Optional[str] = None,
                    publication_date: Any = _UNSET, isbn: Optional[str] = None) -> Book:
        """Replace the catalog fields of a book.

        Setting ``status`` to Available on a borrowed book checks it back in;
        a book can only become Borrowed through ``borrow_book``.
        """
        validate_book_fields(title, author, description, category, status)
        book = self.get_book(book_id)

        if status == BOOK_BORROWED and not book.is_borrowed:
            raise ValidationError("Use the borrow endpoint to lend a book")

        assignments = [
            "title = ?", "author = ?", "description = ?", "category = ?",
            "cover_image = ?", "isbn = ?", "updated_at = ?",
        ]
        now = to_iso(utcnow())
        params: List[Any] = [
            TextValidator.clean(title),
            TextValidator.clean(author),
            TextValidator.clean(description),
            TextValidator.clean(category),
            TextValidator.clean(cover_image) or None,
            TextValidator.clean(isbn) or None,
            now,
        ]
        if publication_date is not _UNSET:
            assignments.append("publication_date = ?")
            params.append(publication_date)
        conditions = ["id = ?"]
        condition_params: List[Any] = [book_id]
        if status == BOOK_AVAILABLE and book.is_borrowed:
            assignments.append("status = ?, borrowed_by = NULL, borrowed_date = NULL, due_date = NULL")
            params.append(BOOK_AVAILABLE)
            # Only clear the loan that was read above
            conditions.append("status = ? AND borrowed_by = ?")
            condition_params.extend([BOOK_BORROWED, book.borrowed_by])

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                f"UPDATE books SET {', '.join(assignments)} WHERE {' AND '.join(conditions)}",
                (*params, *condition_params),
            )
            if cursor.rowcount == 0:
                raise ConflictError("Book was modified by another request, please retry")
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Book {book_id} updated")
        return self.get_book(book_id)

    def remove_book(self, book_id: int) -> bool:
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            conn.commit()
            removed = cursor.rowcount > 0
        finally:
            conn.close()
        if removed:
            logger.info(f"Book {book_id} deleted")
        return removed

    def list_borrowed_by(self, user_id: int) -> List[Book]:
        conn = get_db_connection()
        try:
            rows = conn.execute(
                "SELECT * FROM books WHERE borrowed_by = ? AND status = ? ORDER BY borrowed_date DESC",
                (user_id, BOOK_BORROWED),
            ).fetchall()
        finally:
            conn.close()
        return [Book.from_row(r) for r in rows]

    def get_statistics(self) -> Dict[str, int]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COALESCE(SUM(CASE WHEN status = ? THEN 1 ELSE 0 END), 0) AS available,
                       COALESCE(SUM(CASE WHEN status = ? THEN 1 ELSE 0 END), 0) AS borrowed
                FROM books
                """,
                (BOOK_AVAILABLE, BOOK_BORROWED),
            ).fetchone()
        finally:
            conn.close()
        return {"total": row["total"], "available": row["available"], "borrowed": row["borrowed"]}

    # ------------------------- Circulation ------------------------- #
    def borrow_book(self, book_id: int, session: Session, now: Optional[datetime] = None) -> Book:
        now = now or utcnow()
        book = self.get_book(book_id)
        if book.is_borrowed:
            raise ConflictError("Book is already borrowed")

        conn = get_db_connection()
        try:
            due_date = checkout(conn, book_id, session.user_id, now)
            if due_date is None:
                raise ConflictError("Book is already borrowed")
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Book {book_id} borrowed by user {session.user_id}, due {to_iso(due_date)}")
        return self.get_book(book_id)

    def return_book(self, book_id: int, session: Session) -> Book:
        book = self.get_book(book_id)
        if not book.is_borrowed:
            raise BadRequestError("Book is not currently borrowed")
        if not can_return(session, book.borrowed_by):
            logger.warning(f"User {session.user_id} tried to return book {book_id} borrowed by {book.borrowed_by}")
            raise ForbiddenError("You can only return books you borrowed")

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE books
                SET status = ?, borrowed_by = NULL, borrowed_date = NULL, due_date = NULL, updated_at = ?
                WHERE id = ? AND status = ? AND borrowed_by = ?
                """,
                (BOOK_AVAILABLE, to_iso(utcnow()), book_id, BOOK_BORROWED, book.borrowed_by),
            )
            if cursor.rowcount == 0:
                raise ConflictError("Book was modified by another request, please retry")
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Book {book_id} returned (borrower {book.borrowed_by}, by user {session.user_id})")
        return self.get_book(book_id)

    def extend_book(self, book_id: int, session: Session, days: Optional[int] = None) -> Book:
        """Push the due date forward from the current due date, not from now."""
        book = self.get_book(book_id)
        if not book.is_borrowed:
            raise BadRequestError("Book is not currently borrowed")
        if not can_extend(session, book.borrowed_by):
            raise ForbiddenError("You can only extend books you borrowed")
        if not book.due_date:
            raise BadRequestError("Book has no due date set")

        extension = days if days is not None else settings.extension_days
        new_due_date = book.due_date + timedelta(days=extension)

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE books SET due_date = ?, updated_at = ?
                WHERE id = ? AND status = ? AND borrowed_by = ? AND due_date = ?
                """,
                (to_iso(new_due_date), to_iso(utcnow()), book_id, BOOK_BORROWED,
                 session.user_id, to_iso(book.due_date)),
            )
            if cursor.rowcount == 0:
                raise ConflictError("Book was modified by another request, please retry")
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Book {book_id} extended to {to_iso(new_due_date)}")
        return self.get_book(book_id)

    def reserve_book(self, book_id: int, session: Session, now: Optional[datetime] = None) -> Book:
        """Take the single reservation slot stored on the book itself."""
        now = now or utcnow()
        book = self.get_book(book_id)
        if is_owner(session, book.reserved_by):
            raise ConflictError("You have already reserved this book")
        if book.reserved_by is not None:
            raise ConflictError("Book is already reserved by another user")

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE books SET reserved_by = ?, reserved_date = ?, updated_at = ?
                WHERE id = ? AND reserved_by IS NULL
                """,
                (session.user_id, to_iso(now), to_iso(now), book_id),
            )
            if cursor.rowcount == 0:
                raise ConflictError("Book is already reserved by another user")
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Book {book_id} held for user {session.user_id}")
        return self.get_book(book_id)

    def cancel_book_reservation(self, book_id: int, session: Session) -> Book:
        book = self.get_book(book_id)
        if book.reserved_by is None:
            raise BadRequestError("Book is not currently reserved")
        if not can_cancel_hold(session, book.reserved_by):
            raise ForbiddenError("You can only cancel your own reservations")

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE books SET reserved_by = NULL, reserved_date = NULL, updated_at = ?
                WHERE id = ? AND reserved_by = ?
                """,
                (to_iso(utcnow()), book_id, book.reserved_by),
            )
            if cursor.rowcount == 0:
                raise ConflictError("Book was modified by another request, please retry")
            conn.commit()
        finally:
            conn.close()
        logger.info(f"Hold on book {book_id} released by user {session.user_id}")
        return self.get_book(book_id)
