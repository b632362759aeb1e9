import os
import secrets
from dotenv import load_dotenv
from typing import Optional
from cryptography.fernet import Fernet

# Find the absolute path of the root directory
basedir = os.path.abspath(os.path.dirname(__file__))

# Load the .env file from the root directory
load_dotenv(os.path.join(basedir, '.env'))


def _env_bool(key: str, default: str = 'false') -> bool:
    return os.environ.get(key, default).lower() in ('true', '1', 'yes', 'on')


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid"""
    pass


class Config:
    """
    Base configuration class. Contains default configuration settings
    and settings applicable to all environments.
    """
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
    FLASK_ENV = os.environ.get('FLASK_ENV')

    # Keys checked by ProductionConfig.init_app
    REQUIRED_PRODUCTION_VARS = [
        'SECRET_KEY',
        'DATABASE_URL',
        'TOKEN_ENCRYPTION_KEY',
        'GOOGLE_CLIENT_ID',
        'GOOGLE_CLIENT_SECRET',
        'GEMINI_API_KEY',
    ]

    @classmethod
    def validate_required_config(cls) -> None:
        """Validate that all required configuration is present"""
        if os.environ.get('FLASK_ENV') == 'testing' or os.environ.get('SKIP_ENV_VALIDATION'):
            return

        missing_vars = [var for var in cls.REQUIRED_PRODUCTION_VARS if not os.environ.get(var)]
        if missing_vars:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

    @staticmethod
    def get_required_env(key: str) -> str:
        """Get required environment variable or raise error"""
        value = os.environ.get(key)
        if not value:
            raise ConfigurationError(f"Required environment variable {key} is not set")
        return value

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'promopal.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Credential encryption at rest (Fernet key)
    TOKEN_ENCRYPTION_KEY = os.environ.get('TOKEN_ENCRYPTION_KEY')

    # Google OAuth (Gmail sending)
    GOOGLE_CLIENT_ID = os.environ.get('GOOGLE_CLIENT_ID')
    GOOGLE_CLIENT_SECRET = os.environ.get('GOOGLE_CLIENT_SECRET')
    GOOGLE_REDIRECT_URI = os.environ.get('GOOGLE_REDIRECT_URI', 'http://localhost:5000/api/integrations/gmail/callback')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER', 'PromoPal <noreply@promopal.com>')

    # Square OAuth (customer/booking sync)
    SQUARE_CLIENT_ID = os.environ.get('SQUARE_CLIENT_ID')
    SQUARE_CLIENT_SECRET = os.environ.get('SQUARE_CLIENT_SECRET')
    SQUARE_REDIRECT_URI = os.environ.get('SQUARE_REDIRECT_URI', 'http://localhost:5000/api/integrations/square/callback')
    SQUARE_ENVIRONMENT = os.environ.get('SQUARE_ENVIRONMENT', 'production')  # 'production' or 'sandbox'
    SQUARE_API_VERSION = os.environ.get('SQUARE_API_VERSION', '2024-01-17')

    # Gemini API
    GEMINI_API_KEY = os.environ.get('GEMINI_API_KEY')
    GEMINI_MODEL = os.environ.get('GEMINI_MODEL', 'gemini-2.5-flash')
    GEMINI_CLEANING_MODEL = os.environ.get('GEMINI_CLEANING_MODEL', 'gemini-2.5-pro')
    AI_CALL_TIMEOUT = float(os.environ.get('AI_CALL_TIMEOUT', '30'))  # seconds, generation is slow

    # Celery maps these uppercase names onto its lowercase settings
    CELERY_BROKER_URL = os.environ.get('REDIS_URL') or 'redis://localhost:6379/0'
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL') or 'redis://localhost:6379/0'

    # External calls and campaign delivery
    EXTERNAL_CALL_TIMEOUT = float(os.environ.get('EXTERNAL_CALL_TIMEOUT', '10'))  # seconds, per call
    SEND_MAX_WORKERS = int(os.environ.get('SEND_MAX_WORKERS', '8'))

    # Unknown audience segments fall back to all clients unless strict
    SEGMENT_STRICT_MODE = _env_bool('SEGMENT_STRICT_MODE')

    # Auto-campaign cadence
    AUTO_CAMPAIGN_INTERVAL_DAYS = int(os.environ.get('AUTO_CAMPAIGN_INTERVAL_DAYS', '14'))
    AUTO_CAMPAIGN_HORIZON = int(os.environ.get('AUTO_CAMPAIGN_HORIZON', '3'))
    AUTO_CAMPAIGN_SEND_HOUR = int(os.environ.get('AUTO_CAMPAIGN_SEND_HOUR', '15'))  # UTC

    # Signed OAuth state lifetime
    OAUTH_STATE_MAX_AGE = int(os.environ.get('OAUTH_STATE_MAX_AGE', '600'))  # seconds

    JSON_SORT_KEYS = False

    @classmethod
    def init_app(cls, app):
        """Initialize application with this config"""
        if not app.config.get('TOKEN_ENCRYPTION_KEY'):
            import logging
            logging.getLogger(__name__).warning(
                "TOKEN_ENCRYPTION_KEY not set; integration tokens cannot be stored"
            )


class DevelopmentConfig(Config):
    """Development environment configuration"""
    DEBUG = True
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        Config.SQLALCHEMY_DATABASE_URI

    @classmethod
    def init_app(cls, app):
        """Development-specific initialization"""
        Config.init_app(app)

        import logging
        from logging import StreamHandler
        stream_handler = StreamHandler()
        stream_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(stream_handler)


class TestingConfig(Config):
    """Testing environment configuration"""
    TESTING = True
    DEBUG = True

    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    # Throwaway key so encrypted columns work in tests
    TOKEN_ENCRYPTION_KEY = Fernet.generate_key().decode()
    SECRET_KEY = 'test-secret-key'

    GOOGLE_CLIENT_ID = 'test-google-client-id'
    GOOGLE_CLIENT_SECRET = 'test-google-client-secret'
    SQUARE_CLIENT_ID = 'test-square-client-id'
    SQUARE_CLIENT_SECRET = 'test-square-client-secret'
    GEMINI_API_KEY = 'test-gemini-key'

    CELERY_BROKER_URL = 'redis://localhost:6379/1'
    CELERY_RESULT_BACKEND = 'redis://localhost:6379/1'

    # Sends run inline-fast in tests
    SEND_MAX_WORKERS = 2
    EXTERNAL_CALL_TIMEOUT = 5.0

    @classmethod
    def init_app(cls, app):
        """Testing-specific initialization"""
        # Do NOT call Config.init_app for testing
        pass


class ProductionConfig(Config):
    """Production environment configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', '')

    REDIS_URL = os.environ.get('REDIS_URL', '')
    CELERY_BROKER_URL = os.environ.get('REDIS_URL', '')
    CELERY_RESULT_BACKEND = os.environ.get('REDIS_URL', '')

    @classmethod
    def init_app(cls, app):
        """Production-specific initialization"""
        cls.validate_required_config()
        Config.init_app(app)

        if not cls.CELERY_BROKER_URL:
            raise ConfigurationError("REDIS_URL is required in production for background jobs")

        import logging
        from logging.handlers import SysLogHandler
        syslog_handler = SysLogHandler()
        syslog_handler.setLevel(logging.WARNING)
        app.logger.addHandler(syslog_handler)


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name: Optional[str] = None) -> type[Config]:
    """Get configuration class based on environment"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    return config.get(config_name, DevelopmentConfig)
