import logging
import sqlite3
from typing import Any, Dict, List, Optional

from librarydesk.access import Session, can_block, require_admin
from librarydesk.config import settings
from librarydesk.database import get_db_connection
from librarydesk.errors import (
    BadRequestError,
    EmailAlreadyRegistered,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from librarydesk.models import ROLE_ADMIN, ROLE_LIBRARIAN, ROLE_USER, ROLES, User, to_iso, utcnow
from librarydesk.security import create_access_token, decode_access_token, hash_password, verify_password
from librarydesk.validators import EmailValidator, TextValidator, validate_registration

logger = logging.getLogger(__name__)


class UserService:
    """Accounts: registration, login, session lookup and admin blocking."""

    def register(self, first_name: Optional[str], last_name: Optional[str], email: Optional[str],
                 password: Optional[str], role: str = ROLE_USER) -> User:
        validate_registration(first_name, last_name, email, password)
        if role not in ROLES:
            raise BadRequestError(f"Unknown role: {role}")
        email = EmailValidator.normalize(email)

        now = to_iso(utcnow())
        conn = get_db_connection()
        try:
            if conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone():
                raise EmailAlreadyRegistered("User with this email already exists")
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (first_name, last_name, email, password, role, blocked,
                                       due_date_reminders, overdue_notices, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 0, 1, 1, ?, ?)
                    """,
                    (
                        TextValidator.clean(first_name),
                        TextValidator.clean(last_name),
                        email,
                        hash_password(password),
                        role,
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise EmailAlreadyRegistered("User with this email already exists") from e
            conn.commit()
            user_id = cursor.lastrowid
        finally:
            conn.close()

        logger.info(f"Registered user {user_id} ({email}) with role {role}")
        return self.get_user(user_id)

    def find_user(self, user_id: int) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        finally:
            conn.close()
        return User.from_row(row) if row else None

    def find_by_email(self, email: str) -> Optional[User]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?", (EmailValidator.normalize(email),)
            ).fetchone()
        finally:
            conn.close()
        return User.from_row(row) if row else None

    def get_user(self, user_id: int) -> User:
        user = self.find_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def login(self, email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
        """Check credentials and issue a bearer token.

        Returns ``{"user": User, "token": str}``.
        """
        if not email or not password:
            raise UnauthorizedError("Invalid credentials")
        user = self.find_by_email(email)
        if not user or not verify_password(password, user.password):
            logger.warning(f"Failed login for {EmailValidator.normalize(email)}")
            raise UnauthorizedError("Invalid credentials")
        if user.blocked:
            logger.warning(f"Blocked user {user.id} tried to log in")
            raise ForbiddenError("Your account has been blocked. Please contact the library")

        token = create_access_token(user.id, user.role)
        logger.info(f"User {user.id} logged in")
        return {"user": user, "token": token}

    def session_for_token(self, token: str) -> Session:
        """Resolve a bearer token to a live session.

        The user row is re-read so role changes and blocks apply immediately.
        """
        payload = decode_access_token(token)
        try:
            user_id = int(payload["sub"])
        except (TypeError, ValueError) as e:
            raise UnauthorizedError("Invalid or expired token") from e
        user = self.find_user(user_id)
        if not user:
            raise UnauthorizedError("User no longer exists")
        if user.blocked:
            raise ForbiddenError("Your account has been blocked. Please contact the library")
        return session_for(user)

    # ------------------------- Administration ------------------------- #
    def list_users(self, session: Session, search: Optional[str] = None,
                   status: Optional[str] = "all") -> List[User]:
        require_admin(session)
        clauses: List[str] = []
        params: List[Any] = []
        if search:
            like = f"%{search.strip()}%"
            clauses.append("(first_name LIKE ? OR last_name LIKE ? OR email LIKE ?)")
            params.extend([like, like, like])
        if status == "active":
            clauses.append("blocked = 0")
        elif status == "blocked":
            clauses.append("blocked = 1")

        query = "SELECT * FROM users"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC, id DESC"

        conn = get_db_connection()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [User.from_row(r) for r in rows]

    def set_blocked(self, session: Session, user_id: Optional[int], blocked: Optional[bool]) -> User:
        require_admin(session)
        if user_id is None or blocked is None:
            raise BadRequestError("User ID and blocked status are required")
        if not can_block(session, user_id):
            logger.warning(f"Admin {session.user_id} tried to change their own blocked status")
            raise BadRequestError("You cannot block yourself")

        conn = get_db_connection()
        try:
            cursor = conn.execute(
                "UPDATE users SET blocked = ?, updated_at = ? WHERE id = ?",
                (int(bool(blocked)), to_iso(utcnow()), user_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("User not found")
            conn.commit()
        finally:
            conn.close()

        logger.info(f"User {user_id} {'blocked' if blocked else 'unblocked'} by admin {session.user_id}")
        return self.get_user(user_id)

    def ensure_user(self, first_name: str, last_name: str, email: str, password: str, role: str) -> User:
        """Create the account unless the email is taken; used by seeding."""
        existing = self.find_by_email(email)
        if existing:
            return existing
        return self.register(first_name, last_name, email, password, role=role)

    def seed_staff(self) -> List[User]:
        seeded: List[User] = []
        if settings.seed_admin_password:
            seeded.append(self.ensure_user("Admin", "User", settings.seed_admin_email,
                                           settings.seed_admin_password, ROLE_ADMIN))
        if settings.seed_librarian_password:
            seeded.append(self.ensure_user("Librarian", "User", settings.seed_librarian_email,
                                           settings.seed_librarian_password, ROLE_LIBRARIAN))
        return seeded


def session_for(user: User) -> Session:
    return Session(
        user_id=user.id,
        role=user.role,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
    )
