import logging
import sqlite3

from librarydesk.config import settings

logger = logging.getLogger(__name__)

# Module level so tests and the CLI can point every handler at another file
# before the first connection is opened.
DATABASE_FILE = settings.database_file


def get_db_connection() -> sqlite3.Connection:
    """Open a connection to the SQLite store with dict-like rows."""
    conn = sqlite3.connect(DATABASE_FILE)
    conn.row_factory = sqlite3.Row
    return conn


def create_tables() -> None:
    """Create the collections if they do not exist yet."""
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                first_name TEXT NOT NULL,
                last_name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                password TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'user' CHECK(role IN ('user', 'librarian', 'admin')),
                blocked INTEGER NOT NULL DEFAULT 0,
                due_date_reminders INTEGER NOT NULL DEFAULT 1,
                overdue_notices INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                description TEXT NOT NULL,
                category TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'Available' CHECK(status IN ('Available', 'Borrowed')),
                cover_image TEXT,
                publication_date TEXT,
                isbn TEXT,
                borrowed_by INTEGER,
                borrowed_date TEXT,
                due_date TEXT,
                reserved_by INTEGER,
                reserved_date TEXT,
                average_rating REAL NOT NULL DEFAULT 0,
                review_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (borrowed_by) REFERENCES users(id),
                FOREIGN KEY (reserved_by) REFERENCES users(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reservations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'Pending' CHECK(status IN ('Pending', 'Confirmed', 'Cancelled')),
                reservation_date TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (book_id) REFERENCES books(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reviews (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                rating INTEGER NOT NULL CHECK(rating >= 1 AND rating <= 5),
                comment TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (book_id, user_id),
                FOREIGN KEY (book_id) REFERENCES books(id),
                FOREIGN KEY (user_id) REFERENCES users(id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                type TEXT NOT NULL CHECK(type IN ('reminder', 'overdue')),
                message TEXT NOT NULL,
                read INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (book_id) REFERENCES books(id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_status ON books(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_borrowed_by ON books(borrowed_by)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_user_status ON reservations(user_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_book_status ON reservations(book_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reviews_book_id ON reviews(book_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user_read ON notifications(user_id, read)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_notifications_user_book_type ON notifications(user_id, book_id, type)")

        conn.commit()
    finally:
        conn.close()


def initialize_database() -> None:
    """Create tables and indexes."""
    create_tables()
    logger.debug(f"Database ready at {DATABASE_FILE}")
