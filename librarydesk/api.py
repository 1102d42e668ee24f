import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Query, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from librarydesk.access import Session, require_admin, require_staff
from librarydesk.config import settings
from librarydesk.database import get_db_connection, initialize_database
from librarydesk.errors import LibraryError, NotFoundError, UnauthorizedError, ValidationError
from librarydesk.library import Library
from librarydesk.models import BOOK_AVAILABLE, Book, utcnow, to_iso
from librarydesk.services.notification_service import NotificationService
from librarydesk.services.reservation_service import ReservationService
from librarydesk.services.review_service import ReviewService
from librarydesk.services.user_service import UserService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

library = Library(initialize=False)
reservations = ReservationService()
reviews = ReviewService()
notifications = NotificationService()
users = UserService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    initialize_database()
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield


app = FastAPI(title=f"{settings.app_name} API", version=settings.app_version, lifespan=lifespan)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error responses ---
@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"error": ", ".join(problems) or "Invalid request"})


@app.exception_handler(sqlite3.Error)
async def database_error_handler(request: Request, exc: sqlite3.Error):
    logger.exception(f"Database error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# --- Security ---
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> Session:
    """Resolve the bearer token into a request-scoped session."""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Unauthorized")
    return users.session_for_token(credentials.credentials)


# --- Request models ---
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class BookPayload(CamelModel):
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    status: Optional[str] = None
    cover_image: Optional[str] = None
    publication_date: Optional[str] = None
    isbn: Optional[str] = None


class ReservationCreateRequest(CamelModel):
    book_id: Optional[int] = None


class ReviewCreateRequest(CamelModel):
    book_id: Optional[int] = None
    rating: Any = None
    comment: Optional[str] = None


class ReviewUpdateRequest(CamelModel):
    rating: Any = None
    comment: Optional[str] = None


class NotificationUpdateRequest(CamelModel):
    notification_id: Optional[int] = None
    mark_all_as_read: bool = False


class NotificationSettingsRequest(CamelModel):
    due_date_reminders: Optional[bool] = None
    overdue_notices: Optional[bool] = None


class UserBlockRequest(CamelModel):
    user_id: Optional[int] = None
    blocked: Optional[bool] = None


# --- Health ---
@app.get("/health")
def health() -> Dict[str, Any]:
    """Liveness probe with a quick database round trip."""
    db_ok = True
    try:
        conn = get_db_connection()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except sqlite3.Error:
        logger.exception("Health check could not reach the database")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": to_iso(utcnow()),
        "db": db_ok,
        "version": settings.app_version,
    }


# --- Auth ---
@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest):
    user = users.register(payload.first_name, payload.last_name, payload.email, payload.password)
    return {"message": "User registered successfully", "user": user.to_dict()}


@app.post("/auth/login")
def login(payload: LoginRequest):
    result = users.login(payload.email, payload.password)
    return {
        "message": "Login successful",
        "token": result["token"],
        "tokenType": "bearer",
        "user": result["user"].to_dict(),
    }


@app.get("/auth/me")
def me(session: Session = Depends(get_current_session)):
    return {"user": users.get_user(session.user_id).to_dict()}


# --- Books ---
@app.get("/books")
def list_books(
    status: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
):
    books = library.list_books(status=status, category=category, search=search)
    return {"books": [b.to_dict() for b in books]}


@app.post("/books", status_code=201)
def create_book(payload: BookPayload, session: Session = Depends(get_current_session)):
    require_staff(session)
    book = library.add_book(Book(
        title=payload.title,
        author=payload.author,
        description=payload.description,
        category=payload.category,
        status=payload.status or BOOK_AVAILABLE,
        cover_image=payload.cover_image,
        publication_date=payload.publication_date,
        isbn=payload.isbn,
    ))
    return {"message": "Book created successfully", "book": book.to_dict()}


@app.get("/books/my-books")
def my_books(session: Session = Depends(get_current_session)):
    return {"books": [b.to_dict() for b in library.list_borrowed_by(session.user_id)]}


@app.get("/books/stats")
def book_stats():
    return {"stats": library.get_statistics()}


@app.get("/books/{book_id}")
def get_book(book_id: int):
    return {"book": library.get_book(book_id).to_dict()}


@app.put("/books/{book_id}")
def update_book(book_id: int, payload: BookPayload, session: Session = Depends(get_current_session)):
    require_staff(session)
    changes: Dict[str, Any] = {}
    if "publication_date" in payload.model_fields_set:
        changes["publication_date"] = payload.publication_date
    book = library.update_book(
        book_id,
        title=payload.title,
        author=payload.author,
        description=payload.description,
        category=payload.category,
        status=payload.status,
        cover_image=payload.cover_image,
        isbn=payload.isbn,
        **changes,
    )
    return {"message": "Book updated successfully", "book": book.to_dict()}


@app.delete("/books/{book_id}")
def delete_book(book_id: int, session: Session = Depends(get_current_session)):
    require_admin(session)
    if not library.remove_book(book_id):
        raise NotFoundError("Book not found")
    return {"message": "Book deleted successfully"}


@app.post("/books/{book_id}/borrow")
def borrow_book(book_id: int, session: Session = Depends(get_current_session)):
    book = library.borrow_book(book_id, session)
    return {"message": "Book borrowed successfully", "book": book.to_dict()}


@app.post("/books/{book_id}/return")
def return_book(book_id: int, session: Session = Depends(get_current_session)):
    book = library.return_book(book_id, session)
    return {"message": "Book returned successfully", "book": book.to_dict()}


@app.post("/books/{book_id}/extend")
def extend_book(book_id: int, session: Session = Depends(get_current_session)):
    book = library.extend_book(book_id, session)
    return {"message": "Due date extended successfully", "book": book.to_dict()}


@app.post("/books/{book_id}/reserve")
def reserve_book(book_id: int, session: Session = Depends(get_current_session)):
    book = library.reserve_book(book_id, session)
    return {"message": "Book reserved successfully", "book": book.to_dict()}


@app.delete("/books/{book_id}/reserve")
def cancel_book_reservation(book_id: int, session: Session = Depends(get_current_session)):
    book = library.cancel_book_reservation(book_id, session)
    return {"message": "Reservation cancelled successfully", "book": book.to_dict()}


# --- Reservations ---
@app.get("/reservations")
def list_reservations(
    status: Optional[str] = Query("all"),
    search: Optional[str] = Query(None),
    session: Session = Depends(get_current_session),
):
    found = reservations.list_reservations(session, status=status, search=search)
    return {"reservations": [r.to_dict() for r in found]}


@app.post("/reservations", status_code=201)
def create_reservation(payload: ReservationCreateRequest, session: Session = Depends(get_current_session)):
    reservation = reservations.create_reservation(session, payload.book_id)
    return {"message": "Reservation created successfully", "reservation": reservation.to_dict()}


@app.patch("/reservations/{reservation_id}")
def confirm_pickup(reservation_id: int, session: Session = Depends(get_current_session)):
    reservation, book = reservations.confirm_pickup(session, reservation_id)
    return {
        "message": "Pickup confirmed. Book is now borrowed.",
        "reservation": reservation.to_dict(),
        "book": book.to_dict(),
    }


@app.delete("/reservations/{reservation_id}")
def cancel_reservation(reservation_id: int, session: Session = Depends(get_current_session)):
    reservation = reservations.cancel_reservation(session, reservation_id)
    return {"message": "Reservation cancelled successfully", "reservation": reservation.to_dict()}


# --- Reviews ---
@app.get("/reviews")
def list_reviews(book_id: Optional[int] = Query(None, alias="bookId")):
    return {"reviews": [r.to_dict() for r in reviews.list_reviews(book_id)]}


@app.post("/reviews", status_code=201)
def create_review(payload: ReviewCreateRequest, session: Session = Depends(get_current_session)):
    review = reviews.create_review(session, payload.book_id, payload.rating, payload.comment)
    return {"message": "Review created successfully", "review": review.to_dict()}


@app.put("/reviews/{review_id}")
def update_review(review_id: int, payload: ReviewUpdateRequest, session: Session = Depends(get_current_session)):
    review = reviews.update_review(session, review_id, payload.rating, payload.comment)
    return {"message": "Review updated successfully", "review": review.to_dict()}


@app.delete("/reviews/{review_id}")
def delete_review(review_id: int, session: Session = Depends(get_current_session)):
    reviews.delete_review(session, review_id)
    return {"message": "Review deleted successfully"}


# --- Notifications ---
@app.post("/notifications/check")
def trigger_notification_check(session: Session = Depends(get_current_session)):
    require_staff(session)
    return _run_notification_check()


@app.get("/notifications/check")
def notification_check():
    return _run_notification_check()


def _run_notification_check() -> Dict[str, Any]:
    result = notifications.check_due_dates()
    return {
        "message": "Notification check completed",
        "remindersCreated": result["reminders_created"],
        "overdueCreated": result["overdue_created"],
    }


@app.get("/notifications/settings")
def get_notification_settings(session: Session = Depends(get_current_session)):
    return {"notificationPreferences": notifications.get_preferences(session).to_dict()}


@app.patch("/notifications/settings")
def update_notification_settings(payload: NotificationSettingsRequest,
                                 session: Session = Depends(get_current_session)):
    preferences = notifications.update_preferences(
        session,
        due_date_reminders=payload.due_date_reminders,
        overdue_notices=payload.overdue_notices,
    )
    return {
        "message": "Notification settings updated successfully",
        "notificationPreferences": preferences.to_dict(),
    }


@app.get("/notifications")
def list_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    session: Session = Depends(get_current_session),
):
    found = notifications.list_notifications(session, unread_only=unread_only)
    return {
        "notifications": [n.to_dict() for n in found],
        "unreadCount": notifications.unread_count(session),
    }


@app.patch("/notifications")
def update_notifications(payload: NotificationUpdateRequest, session: Session = Depends(get_current_session)):
    if payload.mark_all_as_read:
        updated = notifications.mark_all_read(session)
        return {"message": "All notifications marked as read", "updated": updated}
    if payload.notification_id:
        notifications.mark_read(session, payload.notification_id)
        return {"message": "Notification marked as read"}
    raise ValidationError("Invalid request parameters")


@app.delete("/notifications")
def delete_notifications(
    notification_id: Optional[int] = Query(None, alias="id"),
    delete_all: bool = Query(False, alias="deleteAll"),
    session: Session = Depends(get_current_session),
):
    if delete_all:
        deleted = notifications.delete_all(session)
        return {"message": "All notifications deleted", "deleted": deleted}
    if notification_id:
        notifications.delete_notification(session, notification_id)
        return {"message": "Notification deleted"}
    raise ValidationError("Invalid request parameters")


# --- Users ---
@app.get("/users")
def list_users(
    search: Optional[str] = Query(None),
    status: Optional[str] = Query("all"),
    session: Session = Depends(get_current_session),
):
    found = users.list_users(session, search=search, status=status)
    return {"users": [u.to_dict() for u in found]}


@app.patch("/users")
def update_user(payload: UserBlockRequest, session: Session = Depends(get_current_session)):
    user = users.set_blocked(session, payload.user_id, payload.blocked)
    action = "blocked" if user.blocked else "unblocked"
    return {"message": f"User {action} successfully", "user": user.to_dict()}
