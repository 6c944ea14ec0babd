"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_list(name: str, default: str = '') -> list:
    """Split a comma separated environment variable into a clean list."""
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(',') if item.strip()]


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'campstore')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'campstore')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'campstore')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Checkout
    SHIPPING_FEE = os.getenv('SHIPPING_FEE', '450')
    CARD_PAYMENTS_ENABLED = os.getenv('CARD_PAYMENTS_ENABLED', 'false').lower() == 'true'
    MAX_RENTAL_DAYS = int(os.getenv('MAX_RENTAL_DAYS', '365'))
    DEFAULT_DELIVERY_COUNTRY = os.getenv('DEFAULT_DELIVERY_COUNTRY', 'SL')

    # Customer self-service windows
    EDIT_WINDOW_HOURS = int(os.getenv('EDIT_WINDOW_HOURS', '24'))
    CANCEL_REASON_MAX_LENGTH = int(os.getenv('CANCEL_REASON_MAX_LENGTH', '500'))

    # Rentals
    RENTAL_LATE_FEE_PER_DAY = os.getenv('RENTAL_LATE_FEE_PER_DAY', '10')

    # Stock alerts
    LOW_STOCK_THRESHOLD = int(os.getenv('LOW_STOCK_THRESHOLD', '5'))
    LOW_STOCK_ALERT_RECIPIENTS = _env_list('LOW_STOCK_ALERT_RECIPIENTS')

    # Email configuration
    MAIL_SERVER = os.getenv('SMTP_HOST', 'smtp.gmail.com')
    MAIL_PORT = int(os.getenv('SMTP_PORT', 587))
    MAIL_USE_TLS = True
    MAIL_USE_SSL = False
    MAIL_USERNAME = os.getenv('SMTP_USER') or ''
    MAIL_PASSWORD = os.getenv('SMTP_PASSWORD') or ''
    MAIL_DEFAULT_SENDER = (
        os.getenv('SMTP_FROM')
        or MAIL_USERNAME
        or 'no-reply@localhost'
    )
    MAIL_SUPPRESS_SEND = os.getenv('MAIL_SUPPRESS_SEND', 'false').lower() == 'true'

    # Object Storage Configuration (MinIO/S3) for payment slips
    # Compatible with AWS S3, DigitalOcean Spaces, MinIO
    S3_ENDPOINT = os.getenv('S3_ENDPOINT', 'http://minio:9000')
    S3_ACCESS_KEY = os.getenv('S3_ACCESS_KEY', 'minioadmin')
    S3_SECRET_KEY = os.getenv('S3_SECRET_KEY', 'minioadmin')
    S3_BUCKET = os.getenv('S3_BUCKET', 'payment-slips')
    S3_REGION = os.getenv('S3_REGION', 'us-east-1')
    S3_PUBLIC_URL = os.getenv('S3_PUBLIC_URL', 'http://localhost:9000')

    # Payment slip constraints
    MAX_SLIP_SIZE = int(os.getenv('MAX_SLIP_SIZE', 24 * 1024 * 1024))  # 24MB
    ALLOWED_SLIP_MIME_TYPES = {
        'application/pdf',
        'image/jpeg',
        'image/png'
    }
    # Request body must fit the slip plus the order payload
    MAX_CONTENT_LENGTH = MAX_SLIP_SIZE + 1024 * 1024


class TestingConfig(Config):
    """Configuration used by the pytest suite."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///:memory:')
    SQLALCHEMY_ECHO = False
    MAIL_SUPPRESS_SEND = True
    LOW_STOCK_ALERT_RECIPIENTS = []
