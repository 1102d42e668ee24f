import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")

    # Security settings
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", secret_key)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_expiration_minutes: int = int(os.getenv("JWT_EXPIRATION_MINUTES", "43200"))  # 30 days
    password_min_length: int = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))

    # Circulation rules
    borrow_period_days: int = int(os.getenv("BORROW_PERIOD_DAYS", "14"))
    extension_days: int = int(os.getenv("EXTENSION_DAYS", "7"))
    reminder_window_days: int = int(os.getenv("REMINDER_WINDOW_DAYS", "2"))

    # Notification settings
    notification_list_limit: int = int(os.getenv("NOTIFICATION_LIST_LIMIT", "50"))
    notification_check_interval: int = int(os.getenv("NOTIFICATION_CHECK_INTERVAL", "3600"))  # 1 hour

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Library Desk")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Seed accounts created by `librarydesk seed-users`
    seed_admin_email: str = os.getenv("SEED_ADMIN_EMAIL", "admin@library.com")
    seed_admin_password: Optional[str] = os.getenv("SEED_ADMIN_PASSWORD", "admin123")
    seed_librarian_email: str = os.getenv("SEED_LIBRARIAN_EMAIL", "librarian@library.com")
    seed_librarian_password: Optional[str] = os.getenv("SEED_LIBRARIAN_PASSWORD", "librarian123")


settings = Settings()
