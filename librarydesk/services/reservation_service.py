import logging
from datetime import datetime
from typing import List, Optional, Tuple

from librarydesk.access import Session, is_staff, require_staff
from librarydesk.database import get_db_connection
from librarydesk.errors import BadRequestError, ConflictError, NotFoundError, ValidationError
from librarydesk.library import checkout
from librarydesk.models import (
    ACTIVE_RESERVATION_STATUSES,
    BOOK_BORROWED,
    RESERVATION_CANCELLED,
    RESERVATION_CONFIRMED,
    RESERVATION_PENDING,
    Book,
    Reservation,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)

_JOINED_SELECT = """
    SELECT r.*,
           u.first_name AS user_first_name, u.last_name AS user_last_name, u.email AS user_email,
           b.title AS book_title, b.author AS book_author, b.cover_image AS book_cover_image
    FROM reservations r
    LEFT JOIN users u ON u.id = r.user_id
    LEFT JOIN books b ON b.id = r.book_id
"""


class ReservationService:
    """Reservation queue: Pending -> Confirmed (pickup) or Pending -> Cancelled."""

    def create_reservation(self, session: Session, book_id: Optional[int],
                           now: Optional[datetime] = None) -> Reservation:
        if not book_id:
            raise ValidationError("Book ID is required")
        now = now or utcnow()

        conn = get_db_connection()
        try:
            if not conn.execute("SELECT id FROM books WHERE id = ?", (book_id,)).fetchone():
                raise NotFoundError("Book not found")

            placeholders = ", ".join("?" for _ in ACTIVE_RESERVATION_STATUSES)
            existing = conn.execute(
                f"SELECT id FROM reservations WHERE user_id = ? AND book_id = ? AND status IN ({placeholders})",
                (session.user_id, book_id, *ACTIVE_RESERVATION_STATUSES),
            ).fetchone()
            if existing:
                raise ConflictError("You already have an active reservation for this book")

            stamp = to_iso(now)
            cursor = conn.execute(
                """
                INSERT INTO reservations (user_id, book_id, status, reservation_date, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (session.user_id, book_id, RESERVATION_PENDING, stamp, stamp, stamp),
            )
            conn.commit()
            reservation_id = cursor.lastrowid
        finally:
            conn.close()

        logger.info(f"Reservation {reservation_id} created by user {session.user_id} for book {book_id}")
        return self.get_reservation(reservation_id)

    def get_reservation(self, reservation_id: int) -> Reservation:
        conn = get_db_connection()
        try:
            row = conn.execute(_JOINED_SELECT + " WHERE r.id = ?", (reservation_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFoundError("Reservation not found")
        return Reservation.from_row(row)

    def list_reservations(self, session: Session, status: Optional[str] = "all",
                          search: Optional[str] = None) -> List[Reservation]:
        """Staff see every reservation; everybody else sees their own."""
        clauses: List[str] = []
        params: list = []
        if not is_staff(session):
            clauses.append("r.user_id = ?")
            params.append(session.user_id)
        if status and status != "all":
            clauses.append("r.status = ?")
            params.append(status)

        query = _JOINED_SELECT
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY r.created_at DESC, r.id DESC"

        conn = get_db_connection()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        reservations = [Reservation.from_row(r) for r in rows]

        if search:
            needle = search.lower()

            def matches(reservation: Reservation) -> bool:
                user = reservation.user or {}
                book = reservation.book or {}
                user_name = f"{user.get('firstName')} {user.get('lastName')}".lower()
                title = (book.get("title") or "").lower()
                return needle in user_name or needle in title

            reservations = [r for r in reservations if matches(r)]
        return reservations

    def confirm_pickup(self, session: Session, reservation_id: int,
                       now: Optional[datetime] = None) -> Tuple[Reservation, Book]:
        """Hand the book to the reserving user and close the reservation.

        The borrow and the status change are committed together.
        """
        require_staff(session)
        now = now or utcnow()

        conn = get_db_connection()
        try:
            reservation_row = conn.execute("SELECT * FROM reservations WHERE id = ?", (reservation_id,)).fetchone()
            if not reservation_row:
                raise NotFoundError("Reservation not found")
            reservation = Reservation.from_row(reservation_row)
            if reservation.status != RESERVATION_PENDING:
                raise BadRequestError(f"Cannot confirm {reservation.status.lower()} reservation")

            book_row = conn.execute("SELECT * FROM books WHERE id = ?", (reservation.book_id,)).fetchone()
            if not book_row:
                raise NotFoundError("Book not found")
            if book_row["status"] == BOOK_BORROWED:
                raise BadRequestError("Book is already borrowed")

            if checkout(conn, reservation.book_id, reservation.user_id, now) is None:
                conn.rollback()
                raise BadRequestError("Book is already borrowed")

            cursor = conn.execute(
                "UPDATE reservations SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (RESERVATION_CONFIRMED, to_iso(now), reservation_id, RESERVATION_PENDING),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise ConflictError("Reservation was modified by another request, please retry")
            conn.commit()

            book = Book.from_row(conn.execute("SELECT * FROM books WHERE id = ?", (reservation.book_id,)).fetchone())
        finally:
            conn.close()

        logger.info(f"Reservation {reservation_id} confirmed by user {session.user_id}; book {book.id} lent to user {book.borrowed_by}")
        return self.get_reservation(reservation_id), book

    def cancel_reservation(self, session: Session, reservation_id: int) -> Reservation:
        require_staff(session)
        reservation = self.get_reservation(reservation_id)
        if reservation.status != RESERVATION_PENDING:
            raise BadRequestError(f"Cannot cancel {reservation.status.lower()} reservation")

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "UPDATE reservations SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
                (RESERVATION_CANCELLED, to_iso(utcnow()), reservation_id, RESERVATION_PENDING),
            )
            if cursor.rowcount == 0:
                raise ConflictError("Reservation was modified by another request, please retry")
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Reservation {reservation_id} cancelled by user {session.user_id}")
        return self.get_reservation(reservation_id)
