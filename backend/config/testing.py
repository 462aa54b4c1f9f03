"""Testing configuration."""
from datetime import timedelta

from .base import Config


class TestingConfig(Config):
    """Testing configuration class."""

    DEBUG = False
    TESTING = True
    SECRET_KEY = 'test-secret-key'

    # Database (in-memory SQLite for testing)
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # JWT Configuration
    JWT_SECRET_KEY = 'test-jwt-secret-with-enough-length-for-hs256'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=5)

    # Rate Limiting (disabled for testing)
    RATELIMIT_ENABLED = False

    # Video back-end is replaced by a fake in tests
    VIDEO_API_URL = 'http://video.test'
    VIDEO_API_SECRET = 'test-video-secret-with-enough-length'
    EXTERNAL_PORTAL_URL = 'https://portal.test/'

    # Logging
    LOG_LEVEL = 'WARNING'
