import os
import tempfile
from datetime import timedelta


def _env_int(name, default):
    """Read an integer from the environment, falling back on missing or bad values."""
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    """Base configuration"""

    # Flask
    # Get SECRET_KEY from environment, or generate a persistent one in development
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        # Try to read from persistent file in /data directory
        secret_file = '/data/.secret_key'
        if os.path.exists(secret_file):
            with open(secret_file, 'r') as f:
                SECRET_KEY = f.read().strip()
        else:
            # Fallback for development mode - sessions will not survive a restart
            import secrets
            SECRET_KEY = secrets.token_hex(32)
            print("WARNING: Using non-persistent SECRET_KEY. Set SECRET_KEY environment variable.")

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/twikoo-backup.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Twikoo backend
    TWIKOO_URL = os.environ.get('TWIKOO_URL', '')
    TWIKOO_PASSWORD = os.environ.get('TWIKOO_PASSWORD', '')
    TWIKOO_TIMEOUT = _env_int('TWIKOO_TIMEOUT', 30)

    # Retention: number of snapshots to keep (BACKUP_KEEP_DAYS is the legacy name)
    BACKUP_KEEP_COUNT = os.environ.get('BACKUP_KEEP_COUNT') or os.environ.get('BACKUP_KEEP_DAYS')

    # Pipeline step retries
    STEP_RETRY_LIMIT = _env_int('STEP_RETRY_LIMIT', 5)
    STEP_RETRY_DELAY = _env_int('STEP_RETRY_DELAY', 10)

    # Admin login
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', '')
    REMEMBER_COOKIE_DURATION = timedelta(days=_env_int('COOKIE_LIFETIME_DAYS', 7))
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(days=_env_int('COOKIE_LIFETIME_DAYS', 7))
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # CSRF
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = None

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR')

    # Scheduler
    SCHEDULER_AUTOSTART = True
    SCHEDULER_TIMEZONE = 'UTC'
    BACKUP_CRON = os.environ.get('BACKUP_CRON') or '0 0 * * *'
    DISPATCH_INTERVAL_SECONDS = _env_int('DISPATCH_INTERVAL_SECONDS', 15)

    # Finished pipeline runs kept (with their step logs) for /runs lookups
    RUN_HISTORY_LIMIT = _env_int('RUN_HISTORY_LIMIT', 20)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{os.path.join(DATA_DIR, "twikoo-backup.db")}'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False

    # Production security
    SESSION_COOKIE_SECURE = os.environ.get('HTTPS_ENABLED', 'false').lower() == 'true'
    REMEMBER_COOKIE_SECURE = SESSION_COOKIE_SECURE


class TestingConfig(Config):
    """Test configuration: in-memory database, no background scheduler"""
    TESTING = True
    DEBUG = False
    SECRET_KEY = 'test-secret-key'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    WTF_CSRF_ENABLED = False
    SCHEDULER_AUTOSTART = False
    LOG_DIR = os.path.join(tempfile.gettempdir(), 'twikoo-backup-tests')

    TWIKOO_URL = 'https://twikoo.example.com/'
    TWIKOO_PASSWORD = 'twikoo-secret'
    BACKUP_KEEP_COUNT = '3'
    STEP_RETRY_LIMIT = 3
    STEP_RETRY_DELAY = 0
    ADMIN_PASSWORD = 'Admin123'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
