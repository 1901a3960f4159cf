import os
from pydantic_settings import BaseSettings
from pydantic import model_validator, field_validator
from typing import Optional

BASE_DIR = os.path.abspath(os.path.dirname(__file__))
DEFAULT_DB_URI = f'sqlite:///{os.path.join(BASE_DIR, "shopvault.db")}'


def _strip_inline_comment(v):
    """Allow numeric values in .env with inline comments like '72  # hours'."""
    if isinstance(v, str):
        return v.split('#', 1)[0].strip()
    return v


class Config(BaseSettings):
    # Security configuration
    SECRET_KEY: str

    # Database
    DATABASE_URL: str = DEFAULT_DB_URI
    SQLALCHEMY_DATABASE_URI: Optional[str] = None
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}

    # Email settings
    MAIL_SERVER: Optional[str] = None
    MAIL_PORT: Optional[int] = None
    MAIL_USERNAME: Optional[str] = None
    MAIL_PASSWORD: Optional[str] = None
    MAIL_USE_TLS: bool = False
    MAIL_USE_SSL: bool = False
    MAIL_DEFAULT_SENDER: Optional[str] = None

    # SMS gateway (form-encoded POST to {SMS_GATEWAY_URL}/smsapi)
    SMS_GATEWAY_URL: Optional[str] = None
    SMS_API_KEY: Optional[str] = None
    SMS_SENDER_ID: Optional[str] = None
    SMS_TIMEOUT: float = 30.0

    # Notifications are dispatched on a small thread pool unless disabled
    NOTIFICATIONS_ASYNC: bool = True
    NOTIFICATION_WORKERS: int = 2

    # Used to build absolute links in notification emails
    PUBLIC_BASE_URL: str = 'http://localhost:5000'

    # Digital files live under this root; file-gate paths are relative to it
    UPLOAD_FOLDER: str = os.path.join(BASE_DIR, 'uploads')

    # Secure file gate. Falls back to SECRET_KEY when not set.
    FILE_GATE_SECRET: Optional[str] = None
    FILE_GATE_TTL_SECONDS: int = 3600

    # Download grants
    DOWNLOAD_EXPIRATION_HOURS: int = 72
    DOWNLOAD_MIN_EXPIRATION_HOURS: int = 1
    DOWNLOAD_MAX_EXPIRATION_HOURS: int = 168
    DOWNLOAD_MAX_USES: int = 5
    DOWNLOAD_MAX_USES_CEILING: int = 50

    # License grants
    LICENSE_EXPIRY_DAYS: int = 365
    LICENSE_MAX_EXTENSION_DAYS: int = 3650

    # Token generation collision budget
    TOKEN_GENERATION_ATTEMPTS: int = 10

    # Grant sweeper
    GRANT_SWEEPER_ENABLED: bool = True
    GRANT_SWEEP_INTERVAL_HOURS: int = 24
    GRANT_RETENTION_DAYS: int = 30

    # Audit log directory (JSON lines, one file per day)
    AUDIT_LOG_DIR: str = os.path.join(BASE_DIR, 'logs')
    AUDIT_RETENTION_DAYS: int = 30

    # Internationalization
    LANGUAGES: list = ['en']
    BABEL_DEFAULT_LOCALE: str = 'en'
    BABEL_DEFAULT_TIMEZONE: str = 'UTC'
    BABEL_TRANSLATION_DIRECTORIES: str = os.path.join(BASE_DIR, 'translations')

    # File upload
    MAX_CONTENT_LENGTH: int = 16 * 1024 * 1024  # 16MB max request size

    # Application environment: development | staging | production
    APP_ENV: str = os.getenv('FLASK_ENV', 'development')

    @model_validator(mode='after')
    def set_database_config(self) -> 'Config':
        """Set SQLALCHEMY_DATABASE_URI from DATABASE_URL and configure engine options"""
        # SQLAlchemy expects postgresql:// not postgres://
        if self.DATABASE_URL.startswith('postgres://'):
            self.DATABASE_URL = self.DATABASE_URL.replace('postgres://', 'postgresql://', 1)

        self.SQLALCHEMY_DATABASE_URI = self.DATABASE_URL

        if self.DATABASE_URL.startswith('postgresql'):
            self.SQLALCHEMY_ENGINE_OPTIONS = {
                'pool_size': 10,
                'pool_recycle': 3600,
                'pool_pre_ping': True,
                'max_overflow': 20,
            }

        return self

    @field_validator(
        'MAX_CONTENT_LENGTH', 'FILE_GATE_TTL_SECONDS', 'DOWNLOAD_EXPIRATION_HOURS',
        'DOWNLOAD_MAX_USES', 'LICENSE_EXPIRY_DAYS', 'GRANT_SWEEP_INTERVAL_HOURS',
        'GRANT_RETENTION_DAYS', mode='before')
    def _parse_int_with_comment(cls, v):
        return _strip_inline_comment(v)

    @model_validator(mode='after')
    def check_grant_bounds(self) -> 'Config':
        if not (self.DOWNLOAD_MIN_EXPIRATION_HOURS <= self.DOWNLOAD_EXPIRATION_HOURS
                <= self.DOWNLOAD_MAX_EXPIRATION_HOURS):
            raise ValueError('DOWNLOAD_EXPIRATION_HOURS must lie within the min/max expiration bounds')
        if self.GRANT_SWEEP_INTERVAL_HOURS < 1:
            raise ValueError('GRANT_SWEEP_INTERVAL_HOURS must be at least 1')
        return self

    class Config:
        env_file = '.env'
        env_file_encoding = 'utf-8'
        case_sensitive = False
        extra = 'ignore'  # Ignore extra fields from .env
