"""
Configuration settings for the subscription workflow engine.
"""

import os
from pathlib import Path

from dotenv import load_dotenv


class Config:
    """Configuration settings."""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///subscout.db')

    # Unsubscribe workflow policy
    MAX_RETRIES = int(os.getenv('MAX_RETRIES', '3'))
    MAX_ATTEMPTS = int(os.getenv('MAX_ATTEMPTS', '3'))
    MONITORING_DAYS = int(os.getenv('MONITORING_DAYS', '7'))
    RETRY_BASE_SECONDS = int(os.getenv('RETRY_BASE_SECONDS', '60'))
    RETRY_CAP_SECONDS = int(os.getenv('RETRY_CAP_SECONDS', '3600'))
    EXECUTE_TIMEOUT = float(os.getenv('EXECUTE_TIMEOUT', '30'))
    RESPONSE_SNIPPET_LIMIT = int(os.getenv('RESPONSE_SNIPPET_LIMIT', '500'))

    # Cancellation HTTP capability
    REQUEST_TIMEOUT = int(os.getenv('REQUEST_TIMEOUT', '10'))
    USER_AGENT = os.getenv('USER_AGENT', 'SubScout/1.0')
    VERIFY_SSL = os.getenv('VERIFY_SSL', 'true').lower() == 'true'

    # Background processing
    WORKER_COUNT = int(os.getenv('WORKER_COUNT', '4'))
    SWEEP_INTERVAL = float(os.getenv('SWEEP_INTERVAL', '300'))
    ACTIVITY_WINDOW_DAYS = int(os.getenv('ACTIVITY_WINDOW_DAYS', '30'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')

    @classmethod
    def get_data_dir(cls) -> Path:
        """Get the data directory for storing database and logs."""
        data_dir = Path(os.getenv('DATA_DIR', Path.cwd() / 'data'))
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    @classmethod
    def get_database_url(cls) -> str:
        """Get the database URL, placing relative SQLite files in the data directory."""
        if cls.DATABASE_URL.startswith('sqlite:///') and ':memory:' not in cls.DATABASE_URL:
            db_file = cls.DATABASE_URL[10:]
            if not os.path.isabs(db_file):
                db_path = cls.get_data_dir() / db_file
                return f"sqlite:///{db_path}"
        return cls.DATABASE_URL


def load_config_from_env_file(env_file: str = '.env'):
    """Load configuration from environment file."""
    env_path = Path(env_file)
    if env_path.exists():
        load_dotenv(env_path)
