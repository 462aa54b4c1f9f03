"""Base configuration shared by every environment."""
import os
from datetime import timedelta


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = False

    # JWT Configuration (tokens are minted by the identity provider)
    JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY') or 'jwt-secret-key-change-in-production'
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=2)
    JWT_ALGORITHM = 'HS256'
    JWT_ROLE_CLAIM = 'role'
    JWT_CAMPUS_CLAIM = 'campus_id'

    # CORS
    CORS_ORIGINS = ["http://localhost:*", "http://127.0.0.1:*"]

    # Rate Limiting
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'
    RATELIMIT_DEFAULT = "200 per day, 50 per hour"
    HEARTBEAT_RATE_LIMIT = "10 per minute"

    # Scheduling
    DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'UTC')
    RECURRENCE_MAX_OCCURRENCES = 52
    RESCHEDULE_KEEPS_RECURRENCE_LINK = True
    JOIN_EARLY_MINUTES = 10
    JOIN_LATE_MINUTES = 5

    # Attendance policy
    ATTENDANCE_PRESENT_RATIO = 0.5
    ATTENDANCE_PARTIAL_RATIO = 0.1
    HEARTBEAT_TIMEOUT_SECONDS = 180
    HEARTBEAT_REORDER_TOLERANCE_SECONDS = 5

    # Video back-end (LiveKit compatible room service)
    VIDEO_API_URL = os.environ.get('VIDEO_API_URL', 'http://localhost:7880')
    VIDEO_API_KEY = os.environ.get('VIDEO_API_KEY', 'devkey')
    VIDEO_API_SECRET = os.environ.get('VIDEO_API_SECRET', 'devsecret')
    VIDEO_ROOM_MAX_PARTICIPANTS = 50
    VIDEO_TOKEN_TTL_SECONDS = 6 * 60 * 60
    VIDEO_REQUEST_TIMEOUT = 10  # seconds

    # External learning portal
    EXTERNAL_PORTAL_URL = os.environ.get('EXTERNAL_PORTAL_URL', 'https://portal.example.org/')
    EXTERNAL_PORTAL_TITLE = 'Learning Portal'
    EXTERNAL_PORTAL_PERMISSIONS = 'camera; microphone; fullscreen'

    # Logging
    LOG_LEVEL = 'INFO'
    LOG_FILE = 'logs/app.log'
