import re
from typing import Any, List, Optional

from librarydesk.config import settings
from librarydesk.errors import ValidationError
from librarydesk.models import BOOK_STATUSES

EMAIL_PATTERN = re.compile(r"^\w+([\.-]?\w+)*@\w+([\.-]?\w+)*(\.\w{2,3})+$")


class TextValidator:
    """Length checks on trimmed text."""

    @staticmethod
    def clean(text: Optional[str]) -> str:
        if text is None:
            return ""
        return text.strip()

    @staticmethod
    def length_between(text: Optional[str], minimum: int, maximum: int) -> bool:
        t = TextValidator.clean(text)
        return minimum <= len(t) <= maximum


class EmailValidator:
    @staticmethod
    def normalize(email: Optional[str]) -> str:
        return TextValidator.clean(email).lower()

    @staticmethod
    def is_valid(email: Optional[str]) -> bool:
        if not email:
            return False
        return EMAIL_PATTERN.match(EmailValidator.normalize(email)) is not None


class PasswordValidator:
    @staticmethod
    def is_valid(password: Optional[str]) -> bool:
        return password is not None and len(password) >= settings.password_min_length


class RatingValidator:
    @staticmethod
    def is_valid(rating: Any) -> bool:
        # bool is an int subclass; True must not count as a rating of 1
        return isinstance(rating, int) and not isinstance(rating, bool) and 1 <= rating <= 5


def validate_review(rating: Any, comment: Optional[str]) -> str:
    """Check a rating/comment pair and return the trimmed comment."""
    if rating is None or not comment:
        raise ValidationError("Rating and comment are required")
    if not RatingValidator.is_valid(rating):
        raise ValidationError("Rating must be between 1 and 5")
    cleaned = TextValidator.clean(comment)
    if len(cleaned) < 10:
        raise ValidationError("Comment must be at least 10 characters")
    if len(cleaned) > 1000:
        raise ValidationError("Comment cannot exceed 1000 characters")
    return cleaned


def validate_book_fields(title: Optional[str], author: Optional[str], description: Optional[str],
                         category: Optional[str], status: Optional[str] = None) -> None:
    """Raise a ValidationError listing every catalog field that is out of bounds."""
    if not title or not author or not description or not category:
        raise ValidationError("Title, author, description, and category are required")

    errors: List[str] = []
    if not TextValidator.length_between(title, 1, 200):
        errors.append("Title must be between 1 and 200 characters")
    if not TextValidator.length_between(author, 1, 100):
        errors.append("Author must be between 1 and 100 characters")
    if not TextValidator.length_between(description, 10, 2000):
        errors.append("Description must be between 10 and 2000 characters")
    if not TextValidator.clean(category):
        errors.append("Category is required")
    if status is not None and status not in BOOK_STATUSES:
        errors.append("Status must be either Available or Borrowed")
    if errors:
        raise ValidationError(", ".join(errors))


def validate_registration(first_name: Optional[str], last_name: Optional[str],
                          email: Optional[str], password: Optional[str]) -> None:
    if not first_name or not last_name or not email or not password:
        raise ValidationError("All fields are required")
    if not EmailValidator.is_valid(email):
        raise ValidationError("Please provide a valid email address")
    if not PasswordValidator.is_valid(password):
        raise ValidationError(
            f"Password must be at least {settings.password_min_length} characters long"
        )
    errors: List[str] = []
    if not TextValidator.length_between(first_name, 2, 50):
        errors.append("First name must be between 2 and 50 characters")
    if not TextValidator.length_between(last_name, 2, 50):
        errors.append("Last name must be between 2 and 50 characters")
    if errors:
        raise ValidationError(", ".join(errors))
