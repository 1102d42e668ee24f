import logging
import sqlite3
from typing import Any, Dict, List, Optional

from librarydesk.access import Session, can_delete_review, can_edit_review
from librarydesk.database import get_db_connection
from librarydesk.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from librarydesk.models import Review, to_iso, utcnow
from librarydesk.validators import validate_review

logger = logging.getLogger(__name__)

_JOINED_SELECT = """
    SELECT rv.*, u.first_name AS user_first_name, u.last_name AS user_last_name, u.email AS user_email
    FROM reviews rv
    LEFT JOIN users u ON u.id = rv.user_id
"""


def update_book_rating(conn: sqlite3.Connection, book_id: int) -> Dict[str, Any]:
    """Recompute the rating cache on a book from every review it has."""
    row = conn.execute(
        "SELECT AVG(rating) AS avg_rating, COUNT(*) AS review_count FROM reviews WHERE book_id = ?",
        (book_id,),
    ).fetchone()
    review_count = row["review_count"] or 0
    average_rating = round(row["avg_rating"], 1) if review_count else 0
    conn.execute(
        "UPDATE books SET average_rating = ?, review_count = ?, updated_at = ? WHERE id = ?",
        (average_rating, review_count, to_iso(utcnow()), book_id),
    )
    return {"averageRating": average_rating, "reviewCount": review_count}


class ReviewService:
    """One review per user per book, with the book's rating cache kept in step."""

    def list_reviews(self, book_id: Optional[int]) -> List[Review]:
        if not book_id:
            raise ValidationError("Book ID is required")
        conn = get_db_connection()
        try:
            rows = conn.execute(
                _JOINED_SELECT + " WHERE rv.book_id = ? ORDER BY rv.created_at DESC, rv.id DESC",
                (book_id,),
            ).fetchall()
        finally:
            conn.close()
        return [Review.from_row(r) for r in rows]

    def get_review(self, review_id: int) -> Review:
        conn = get_db_connection()
        try:
            row = conn.execute(_JOINED_SELECT + " WHERE rv.id = ?", (review_id,)).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFoundError("Review not found")
        return Review.from_row(row)

    def create_review(self, session: Session, book_id: Optional[int], rating: Any,
                      comment: Optional[str]) -> Review:
        if not book_id or rating is None or not comment:
            raise ValidationError("Book ID, rating, and comment are required")
        comment = validate_review(rating, comment)

        conn = get_db_connection()
        try:
            if not conn.execute("SELECT id FROM books WHERE id = ?", (book_id,)).fetchone():
                raise NotFoundError("Book not found")
            existing = conn.execute(
                "SELECT id FROM reviews WHERE book_id = ? AND user_id = ?",
                (book_id, session.user_id),
            ).fetchone()
            if existing:
                raise ConflictError("You have already reviewed this book")

            now = to_iso(utcnow())
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO reviews (book_id, user_id, rating, comment, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (book_id, session.user_id, rating, comment, now, now),
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError("You have already reviewed this book") from e
            rating_cache = update_book_rating(conn, book_id)
            conn.commit()
            review_id = cursor.lastrowid
        finally:
            conn.close()

        logger.info(f"Review {review_id} added to book {book_id} by user {session.user_id}; rating now {rating_cache}")
        return self.get_review(review_id)

    def update_review(self, session: Session, review_id: int, rating: Any, comment: Optional[str]) -> Review:
        comment = validate_review(rating, comment)
        review = self.get_review(review_id)
        if not can_edit_review(session, review.user_id):
            raise ForbiddenError("You can only edit your own reviews")

        conn = get_db_connection()
        try:
            conn.execute(
                "UPDATE reviews SET rating = ?, comment = ?, updated_at = ? WHERE id = ?",
                (rating, comment, to_iso(utcnow()), review_id),
            )
            update_book_rating(conn, review.book_id)
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Review {review_id} updated by user {session.user_id}")
        return self.get_review(review_id)

    def delete_review(self, session: Session, review_id: int) -> None:
        review = self.get_review(review_id)
        if not can_delete_review(session, review.user_id):
            raise ForbiddenError("You can only delete your own reviews")

        conn = get_db_connection()
        try:
            conn.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
            update_book_rating(conn, review.book_id)
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Review {review_id} deleted by user {session.user_id}")
