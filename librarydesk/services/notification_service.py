import logging
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from librarydesk.access import Session
from librarydesk.config import settings
from librarydesk.database import get_db_connection
from librarydesk.errors import NotFoundError, ValidationError
from librarydesk.models import (
    BOOK_BORROWED,
    NOTIFICATION_OVERDUE,
    NOTIFICATION_REMINDER,
    Notification,
    NotificationPreferences,
    from_iso,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)


def format_date(value: datetime) -> str:
    """M/D/YYYY, no zero padding."""
    return f"{value.month}/{value.day}/{value.year}"


def overdue_message(title: str, due_date: datetime) -> str:
    return f'Book "{title}" is overdue! It was due on {format_date(due_date)}.'


def reminder_message(title: str, due_date: datetime, now: datetime) -> str:
    days_left = math.ceil((due_date - now) / timedelta(days=1))
    return f'Book "{title}" is due in {days_left} day(s) on {format_date(due_date)}.'


class NotificationService:
    """Due-date scan plus the per-user notification inbox."""

    def check_due_dates(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Create missing reminder/overdue notifications for every borrowed book.

        Safe to run repeatedly: a (user, book, type) triple is notified once.
        """
        now = now or utcnow()
        window_end = now + timedelta(days=settings.reminder_window_days)
        reminders_created = 0
        overdue_created = 0

        conn = get_db_connection()
        try:
            rows = conn.execute(
                """
                SELECT b.id AS book_id, b.title, b.due_date, b.borrowed_by,
                       u.id AS user_id, u.due_date_reminders, u.overdue_notices
                FROM books b
                LEFT JOIN users u ON u.id = b.borrowed_by
                WHERE b.status = ? AND b.borrowed_by IS NOT NULL AND b.due_date IS NOT NULL
                """,
                (BOOK_BORROWED,),
            ).fetchall()

            for row in rows:
                if row["user_id"] is None:
                    logger.warning(f"Book {row['book_id']} is borrowed by missing user {row['borrowed_by']}; skipping")
                    continue
                due_date = from_iso(row["due_date"])

                if due_date < now:
                    if row["overdue_notices"] == 0:
                        continue
                    kind = NOTIFICATION_OVERDUE
                    message = overdue_message(row["title"], due_date)
                elif due_date <= window_end:
                    if row["due_date_reminders"] == 0:
                        continue
                    kind = NOTIFICATION_REMINDER
                    message = reminder_message(row["title"], due_date, now)
                else:
                    continue

                existing = conn.execute(
                    "SELECT id FROM notifications WHERE user_id = ? AND book_id = ? AND type = ?",
                    (row["user_id"], row["book_id"], kind),
                ).fetchone()
                if existing:
                    continue

                stamp = to_iso(now)
                conn.execute(
                    """
                    INSERT INTO notifications (user_id, book_id, type, message, read, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 0, ?, ?)
                    """,
                    (row["user_id"], row["book_id"], kind, message, stamp, stamp),
                )
                if kind == NOTIFICATION_OVERDUE:
                    overdue_created += 1
                else:
                    reminders_created += 1
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Due date scan finished: {reminders_created} reminders, {overdue_created} overdue notices")
        return {"reminders_created": reminders_created, "overdue_created": overdue_created}

    # ------------------------- Inbox ------------------------- #
    def list_notifications(self, session: Session, unread_only: bool = False) -> List[Notification]:
        query = """
            SELECT n.*, b.title AS book_title, b.author AS book_author, b.cover_image AS book_cover_image
            FROM notifications n
            LEFT JOIN books b ON b.id = n.book_id
            WHERE n.user_id = ?
        """
        params: list = [session.user_id]
        if unread_only:
            query += " AND n.read = 0"
        query += " ORDER BY n.created_at DESC, n.id DESC LIMIT ?"
        params.append(settings.notification_list_limit)

        conn = get_db_connection()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [Notification.from_row(r) for r in rows]

    def unread_count(self, session: Session) -> int:
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS unread FROM notifications WHERE user_id = ? AND read = 0",
                (session.user_id,),
            ).fetchone()
        finally:
            conn.close()
        return row["unread"]

    def mark_read(self, session: Session, notification_id: int) -> None:
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "UPDATE notifications SET read = 1, updated_at = ? WHERE id = ? AND user_id = ?",
                (to_iso(utcnow()), notification_id, session.user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Notification not found")
            conn.commit()
        finally:
            conn.close()

    def mark_all_read(self, session: Session) -> int:
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "UPDATE notifications SET read = 1, updated_at = ? WHERE user_id = ? AND read = 0",
                (to_iso(utcnow()), session.user_id),
            )
            conn.commit()
            updated = cursor.rowcount
        finally:
            conn.close()
        return updated

    def delete_notification(self, session: Session, notification_id: int) -> None:
        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "DELETE FROM notifications WHERE id = ? AND user_id = ?",
                (notification_id, session.user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("Notification not found")
            conn.commit()
        finally:
            conn.close()

    def delete_all(self, session: Session) -> int:
        conn = get_db_connection()
        try:
            cursor = conn.execute("DELETE FROM notifications WHERE user_id = ?", (session.user_id,))
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()
        logger.info(f"User {session.user_id} cleared {deleted} notifications")
        return deleted

    # ------------------------- Preferences ------------------------- #
    def get_preferences(self, session: Session) -> NotificationPreferences:
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT due_date_reminders, overdue_notices FROM users WHERE id = ?",
                (session.user_id,),
            ).fetchone()
        finally:
            conn.close()
        if not row:
            raise NotFoundError("User not found")
        return NotificationPreferences(
            due_date_reminders=bool(row["due_date_reminders"]),
            overdue_notices=bool(row["overdue_notices"]),
        )

    def update_preferences(self, session: Session, due_date_reminders: Optional[bool] = None,
                           overdue_notices: Optional[bool] = None) -> NotificationPreferences:
        if due_date_reminders is None and overdue_notices is None:
            raise ValidationError("At least one notification setting must be provided")

        assignments: List[str] = []
        params: list = []
        if due_date_reminders is not None:
            assignments.append("due_date_reminders = ?")
            params.append(int(bool(due_date_reminders)))
        if overdue_notices is not None:
            assignments.append("overdue_notices = ?")
            params.append(int(bool(overdue_notices)))
        assignments.append("updated_at = ?")
        params.append(to_iso(utcnow()))

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                f"UPDATE users SET {', '.join(assignments)} WHERE id = ?",
                (*params, session.user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("User not found")
            conn.commit()
        finally:
            conn.close()
        return self.get_preferences(session)
