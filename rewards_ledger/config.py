"""
Configuration management for the rewards ledger.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).lower() in ('1', 'true', 'yes')


class BaseConfig:
    """Base configuration."""
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity provider (bearer tokens)
    JWT_ALGORITHM = 'HS256'
    JWT_AUDIENCE = os.getenv('JWT_AUDIENCE') or None
    AUTH_DEV_MODE = _env_flag('AUTH_DEV_MODE')

    # Store transactions
    LEDGER_TRANSACTION_RETRIES = int(os.getenv('LEDGER_TRANSACTION_RETRIES', '3'))
    LEDGER_RETRY_BACKOFF = float(os.getenv('LEDGER_RETRY_BACKOFF', '0.05'))  # seconds, linear
    LEDGER_TRANSACTION_TIMEOUT = float(os.getenv('LEDGER_TRANSACTION_TIMEOUT', '10'))  # seconds

    # Points history paging
    HISTORY_DEFAULT_LIMIT = 50
    HISTORY_MAX_LIMIT = 500

    # Note written on a request whose approval was reversed automatically
    AUTO_REVERSAL_NOTE = 'Automatic redemption failed; approval reversed. Contact the user.'

    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv('CORS_ORIGINS', 'http://localhost:5173').split(',')
        if origin.strip()
    ]


class DevelopmentConfig(BaseConfig):
    """Development configuration."""
    DEBUG = True
    AUTH_DEV_MODE = _env_flag('AUTH_DEV_MODE', 'true')
    SQLALCHEMY_DATABASE_URI = os.getenv(
        'DATABASE_URL',
        'sqlite:///rewards_ledger_dev.db'  # SQLite fallback for local dev
    )
    SQLALCHEMY_ENGINE_OPTIONS = {
        'connect_args': {'timeout': 30},
    }


class ProductionConfig(BaseConfig):
    """Production configuration."""
    DEBUG = False
    AUTH_DEV_MODE = False

    _db_url = os.getenv('DATABASE_URL', '')
    if _db_url.startswith('postgres://'):
        # SQLAlchemy requires postgresql:// not postgres://
        _db_url = _db_url.replace('postgres://', 'postgresql://', 1)

    SQLALCHEMY_DATABASE_URI = _db_url

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 5,
        'pool_recycle': 300,
        'pool_pre_ping': True,  # Verify connections before using
    }

    _secret_key = os.getenv('SECRET_KEY', '')

    @classmethod
    def validate_secret_key(cls) -> str:
        """
        Validate SECRET_KEY in production environment.

        The key also signs the bearer tokens checked by the auth middleware,
        so a weak key means forged administrator tokens.

        Raises:
            RuntimeError: If SECRET_KEY is missing, empty, or contains unsafe values
        """
        if not cls._secret_key:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY environment variable is not set!\n"
                "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
            )

        insecure_patterns = ['dev', 'change', 'default', 'test', 'secret', 'password']
        lower_key = cls._secret_key.lower()
        for pattern in insecure_patterns:
            if pattern in lower_key:
                raise RuntimeError(
                    f"CRITICAL: SECRET_KEY contains '{pattern}' which suggests it's not secure!\n"
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )

        if len(cls._secret_key) < 32:
            raise RuntimeError(
                "CRITICAL: SECRET_KEY is too short (minimum 32 characters required)!"
            )

        return cls._secret_key

    SECRET_KEY = _secret_key  # Will be validated at app startup


class TestingConfig(BaseConfig):
    """Testing configuration."""
    TESTING = True
    SECRET_KEY = 'testing-secret-key-not-for-production-use'
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    AUTH_DEV_MODE = False
    LEDGER_RETRY_BACKOFF = 0.0


config_map = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig
}


def get_config(config_name: str = 'development'):
    """Get configuration class by name."""
    return config_map.get(config_name, DevelopmentConfig)


def validate_config(config_name: str = 'development') -> None:
    """
    Validate configuration before app startup.

    Args:
        config_name: The configuration environment name

    Raises:
        RuntimeError: If validation fails in production
    """
    if config_name == 'production':
        ProductionConfig.validate_secret_key()
        if not ProductionConfig.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("CRITICAL: DATABASE_URL environment variable is not set!")
