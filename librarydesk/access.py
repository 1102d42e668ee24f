"""Request-scoped session context and the role/ownership predicates.

Handlers receive a ``Session`` explicitly instead of looking one up; every
check here is a pure function of that session and the document's owner.
"""
from dataclasses import dataclass
from typing import Optional

from librarydesk.errors import ForbiddenError
from librarydesk.models import ROLE_ADMIN, ROLE_LIBRARIAN, ROLE_USER

STAFF_ROLES = (ROLE_LIBRARIAN, ROLE_ADMIN)


@dataclass(frozen=True)
class Session:
    user_id: int
    role: str = ROLE_USER
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.user_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role,
        }


def is_staff(session: Session) -> bool:
    return session.role in STAFF_ROLES


def is_admin(session: Session) -> bool:
    return session.role == ROLE_ADMIN


def is_owner(session: Session, owner_id: Optional[int]) -> bool:
    return owner_id is not None and owner_id == session.user_id


def can_return(session: Session, borrowed_by: Optional[int]) -> bool:
    return is_owner(session, borrowed_by) or is_staff(session)


def can_extend(session: Session, borrowed_by: Optional[int]) -> bool:
    return is_owner(session, borrowed_by)


def can_cancel_hold(session: Session, reserved_by: Optional[int]) -> bool:
    return is_owner(session, reserved_by) or is_staff(session)


def can_edit_review(session: Session, review_user_id: int) -> bool:
    return is_owner(session, review_user_id)


def can_delete_review(session: Session, review_user_id: int) -> bool:
    return is_owner(session, review_user_id) or is_staff(session)


def can_block(session: Session, target_user_id: int) -> bool:
    """Admins manage other accounts; nobody blocks themselves."""
    return is_admin(session) and target_user_id != session.user_id


def require_staff(session: Session) -> None:
    if not is_staff(session):
        raise ForbiddenError("Librarian or admin privileges required")


def require_admin(session: Session) -> None:
    if not is_admin(session):
        raise ForbiddenError("Admin privileges required")
