"""Configuration module for the estimates service."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '0') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'facilities')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'facilities')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'facilities')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', '0') == '1' or DEBUG
    DB_CREATE_ALL = os.getenv('DB_CREATE_ALL', 'false').lower() == 'true'

    # Document numbering
    ESTIMATE_NUMBER_PREFIX = os.getenv('ESTIMATE_NUMBER_PREFIX', 'EST')
    QUOTE_NUMBER_PREFIX = os.getenv('QUOTE_NUMBER_PREFIX', 'QT')
    QUOTE_VALID_DAYS = int(os.getenv('QUOTE_VALID_DAYS', '30'))

    # Commercial defaults for new estimates (same as the estimate form)
    DEFAULT_VAT_RATE = os.getenv('DEFAULT_VAT_RATE', '10')
    DEFAULT_PROFIT_MARGIN_TYPE = os.getenv('DEFAULT_PROFIT_MARGIN_TYPE', 'PERCENTAGE')
    DEFAULT_PROFIT_MARGIN_VALUE = os.getenv('DEFAULT_PROFIT_MARGIN_VALUE', '10')

    # Presentation only; calculations keep full precision
    CURRENCY_CODE = os.getenv('CURRENCY_CODE', 'BHD')
    MONEY_DECIMALS = int(os.getenv('MONEY_DECIMALS', '3'))

    # API
    API_PAGE_SIZE = int(os.getenv('API_PAGE_SIZE', '20'))
    API_MAX_PAGE_SIZE = int(os.getenv('API_MAX_PAGE_SIZE', '100'))
    ACTOR_HEADER = os.getenv('ACTOR_HEADER', 'X-Actor-Id')


class TestConfig(Config):
    """Configuration for the test suite (in-memory SQLite)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    DB_CREATE_ALL = True
