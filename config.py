"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


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

    # Admin allowlist (comma separated). Empty means any signed-in admin session.
    ADMIN_EMAILS = os.getenv('ADMIN_EMAILS') or os.getenv('ADMIN_EMAIL', '')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'storefront')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'storefront')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'storefront')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Checkout
    # Flat shipping cost used when the customer picks no shipping option
    SHIPPING_CENTS = os.getenv('SHIPPING_CENTS', '0')
    SETTLEMENT_CURRENCY = os.getenv('SETTLEMENT_CURRENCY', 'eur')
    DEFAULT_COUNTRY = os.getenv('DEFAULT_COUNTRY', 'FR')

    # Payment providers (database settings take precedence when present)
    STRIPE_SECRET_KEY = os.getenv('STRIPE_SECRET_KEY', '')
    PAYPAL_CLIENT_ID = os.getenv('PAYPAL_CLIENT_ID', '')
    PAYPAL_CLIENT_SECRET = os.getenv('PAYPAL_CLIENT_SECRET', '')
    PAYPAL_ENV = os.getenv('PAYPAL_ENV', 'sandbox')

    # Carrier (Sendcloud)
    SENDCLOUD_PUBLIC_KEY = os.getenv('SENDCLOUD_PUBLIC_KEY', '')
    SENDCLOUD_PRIVATE_KEY = os.getenv('SENDCLOUD_PRIVATE_KEY', '')
    SENDCLOUD_WEBHOOK_SECRET = os.getenv('SENDCLOUD_WEBHOOK_SECRET', '')

    # AES-256 key (hex or base64) for secrets stored in website_setting
    SETTINGS_ENCRYPTION_KEY = os.getenv('SETTINGS_ENCRYPTION_KEY', '')

    # HTTP timeout for provider calls (seconds)
    PROVIDER_TIMEOUT = int(os.getenv('PROVIDER_TIMEOUT', '10'))

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
    MAIL_SUPPRESS_SEND = os.getenv('EMAIL_DISABLED', 'false').lower() == 'true'


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    SHIPPING_CENTS = '500'
    ADMIN_EMAILS = 'admin@example.com'
    STRIPE_SECRET_KEY = 'sk_test_dummy'
    PAYPAL_CLIENT_ID = 'paypal-client'
    PAYPAL_CLIENT_SECRET = 'paypal-secret'
    SENDCLOUD_PUBLIC_KEY = 'sc-public'
    SENDCLOUD_PRIVATE_KEY = 'sc-private'
    SENDCLOUD_WEBHOOK_SECRET = 'sc-webhook-secret'
    SETTINGS_ENCRYPTION_KEY = '00' * 32
    MAIL_SUPPRESS_SEND = True
