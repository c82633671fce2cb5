import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

from dotenv import load_dotenv

DEFAULT_MONGODB_URI = "mongodb://localhost:27017/movie-streaming"
DEFAULT_DB_NAME = "movie-streaming"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def env_int(name: str, default: int):
    """
    Read an integer environment variable.

    Args:
        name (str): Variable name.
        default (int): Value used when the variable is unset or not a number.

    Returns:
        int: Parsed value or the default.
    """
    raw_value = os.environ.get(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def env_flag(name: str, default: bool = False):
    """
    Read a boolean environment variable (`true`, `1`, `yes`, `on`).

    Args:
        name (str): Variable name.
        default (bool): Value used when the variable is unset.

    Returns:
        bool: Parsed flag.
    """
    raw_value = os.environ.get(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def database_name_from_uri(uri: str):
    """
    Extract the database name embedded in a MongoDB connection string.

    Args:
        uri (str): Connection string such as ``mongodb://host:27017/movie-streaming``.

    Returns:
        str: Database name, or the default name when the URI has none.
    """
    path = urlparse(uri).path.lstrip("/")
    return path or DEFAULT_DB_NAME


@dataclass
class Settings:
    """Runtime configuration shared by the MovieHub services."""

    mongodb_uri: str = DEFAULT_MONGODB_URI
    mongo_db_name: str = DEFAULT_DB_NAME
    mongo_timeout_ms: int = 2000
    redis_url: str | None = None
    redis_timeout_seconds: int = 2
    rate_limit_per_min: int = 120

    user_jwt_secret: str | None = None
    admin_jwt_secret: str | None = None
    admin_user: str | None = None
    admin_pass: str | None = None
    admin_pass_hash: str | None = None
    admin_login_max_attempts: int = 5
    admin_login_window_seconds: int = 900
    bcrypt_rounds: int = 10

    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_secure: bool = False
    smtp_user: str | None = None
    smtp_pass: str | None = None
    contact_email_to: str | None = None
    contact_email_from: str | None = None
    reset_email_from: str | None = None
    app_url: str = "https://localhost:5000"

    upload_dir: str = "uploads"
    tmdb_api_key: str | None = None
    tmdb_base_url: str = "https://api.themoviedb.org/3"
    log_level: str = "INFO"
    sentry_dsn: str | None = None
    ssl_key_path: str | None = None
    ssl_cert_path: str | None = None
    force_https: bool = False

    ports: dict = field(default_factory=lambda: {"movies": 5000, "users": 5001, "contact": 5002})

    @property
    def smtp_configured(self):
        return bool(self.smtp_host and self.smtp_user and self.smtp_pass)

    @property
    def ssl_context(self):
        """`(cert, key)` pair for `app.run` when both paths are set, else None."""
        if self.ssl_cert_path and self.ssl_key_path:
            return self.ssl_cert_path, self.ssl_key_path
        return None

    @classmethod
    def from_env(cls):
        """
        Build settings from the process environment and an optional `.env` file.

        Returns:
            Settings: Populated configuration.
        """
        load_dotenv()
        mongodb_uri = os.environ.get("MONGODB_URI", DEFAULT_MONGODB_URI)
        return cls(
            mongodb_uri=mongodb_uri,
            mongo_db_name=os.environ.get("MONGO_DB_NAME") or database_name_from_uri(mongodb_uri),
            mongo_timeout_ms=env_int("MONGO_TIMEOUT_MS", 2000),
            redis_url=os.environ.get("REDIS_URL") or None,
            redis_timeout_seconds=env_int("REDIS_TIMEOUT_SECONDS", 2),
            rate_limit_per_min=env_int("RATE_LIMIT_PER_MIN", 120),
            user_jwt_secret=os.environ.get("USER_JWT_SECRET") or None,
            admin_jwt_secret=os.environ.get("ADMIN_JWT_SECRET") or None,
            admin_user=os.environ.get("ADMIN_USER") or None,
            admin_pass=os.environ.get("ADMIN_PASS") or None,
            admin_pass_hash=os.environ.get("ADMIN_PASS_HASH") or None,
            admin_login_max_attempts=env_int("ADMIN_LOGIN_MAX_ATTEMPTS", 5),
            admin_login_window_seconds=env_int("ADMIN_LOGIN_WINDOW_SECONDS", 900),
            bcrypt_rounds=env_int("BCRYPT_ROUNDS", 10),
            smtp_host=os.environ.get("SMTP_HOST") or None,
            smtp_port=env_int("SMTP_PORT", 587),
            smtp_secure=env_flag("SMTP_SECURE"),
            smtp_user=os.environ.get("SMTP_USER") or None,
            smtp_pass=os.environ.get("SMTP_PASS") or None,
            contact_email_to=os.environ.get("CONTACT_EMAIL_TO") or None,
            contact_email_from=os.environ.get("CONTACT_EMAIL_FROM") or None,
            reset_email_from=os.environ.get("RESET_EMAIL_FROM") or None,
            app_url=os.environ.get("APP_URL", "https://localhost:5000"),
            upload_dir=os.environ.get("UPLOAD_DIR", "uploads"),
            tmdb_api_key=os.environ.get("TMDB_API_KEY") or None,
            tmdb_base_url=os.environ.get("TMDB_BASE_URL", "https://api.themoviedb.org/3"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            sentry_dsn=os.environ.get("SENTRY_DSN") or None,
            ssl_key_path=os.environ.get("SSL_KEY_PATH") or None,
            ssl_cert_path=os.environ.get("SSL_CERT_PATH") or None,
            force_https=env_flag("FORCE_HTTPS"),
            ports={
                "movies": env_int("MOVIES_PORT", 5000),
                "users": env_int("USERS_PORT", 5001),
                "contact": env_int("CONTACT_PORT", 5002),
            },
        )


def configure_logging(level: str = "INFO"):
    """
    Configure root logging once per process.

    Args:
        level (str): Level name such as ``INFO`` or ``DEBUG``.
    """
    logging.basicConfig(level=str(level).upper(), format=LOG_FORMAT)
