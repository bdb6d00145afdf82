import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_flag(name, default="false"):
    return os.environ.get(name, default).lower() == "true"


class Config:
    """Base configuration for the application."""

    # Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-please-change-in-production'
    DEBUG = False
    TESTING = False

    # Application settings
    VERSION = '1.0.0'
    APP_IDENTIFIER = os.environ.get('APP_IDENTIFIER', 'PasskeyArweaveMapper')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'json')
    LOG_DIR = os.environ.get('LOG_DIR')

    # Mapping encryption (hex encoded, 32 bytes)
    ENCRYPTION_KEY = os.environ.get('ENCRYPTION_KEY')
    ALLOW_EPHEMERAL_KEY = False

    # WebAuthn relying party
    WEBAUTHN_RP_ID = os.environ.get('WEBAUTHN_RP_ID', 'localhost')
    WEBAUTHN_RP_NAME = os.environ.get('WEBAUTHN_RP_NAME', 'Passkey to Arweave Wallet')
    WEBAUTHN_ORIGIN = os.environ.get('WEBAUTHN_ORIGIN') or f"https://{WEBAUTHN_RP_ID}"
    CHALLENGE_TIMEOUT_MS = int(os.environ.get('CHALLENGE_TIMEOUT_MS', 60000))

    # Credential storage: "memory" or "sqlalchemy"
    CREDENTIAL_BACKEND = os.environ.get('CREDENTIAL_BACKEND', 'memory')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///passkeys.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Ledger: "memory" or "arweave"
    LEDGER_BACKEND = os.environ.get('LEDGER_BACKEND', 'arweave')
    ARWEAVE_GATEWAY_URL = os.environ.get('ARWEAVE_GATEWAY_URL', 'https://arweave.net')
    ARWEAVE_UPLOAD_URL = os.environ.get('ARWEAVE_UPLOAD_URL')
    ARWEAVE_API_KEY = os.environ.get('ARWEAVE_API_KEY')
    ARWEAVE_OWNER_ADDRESS = os.environ.get('ARWEAVE_OWNER_ADDRESS')
    LEDGER_TIMEOUT = float(os.environ.get('LEDGER_TIMEOUT', 10))


class DevelopmentConfig(Config):
    """Development configuration, selected only by FLASK_ENV=development.

    Without ENCRYPTION_KEY a random key is generated at startup, so every
    mapping written in a previous run becomes unrecoverable.
    """

    DEBUG = True
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'standard')
    ALLOW_EPHEMERAL_KEY = _env_flag('ALLOW_EPHEMERAL_KEY', 'true')
    WEBAUTHN_ORIGIN = os.environ.get('WEBAUTHN_ORIGIN', 'http://localhost:5000')
    LEDGER_BACKEND = os.environ.get('LEDGER_BACKEND', 'memory')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or 'sqlite:///dev.db'


class TestingConfig(Config):
    """Testing configuration."""

    TESTING = True
    DEBUG = True
    LOG_FORMAT = 'standard'
    ALLOW_EPHEMERAL_KEY = True
    WEBAUTHN_RP_ID = 'localhost'
    WEBAUTHN_ORIGIN = 'http://localhost:5000'
    CREDENTIAL_BACKEND = 'memory'
    LEDGER_BACKEND = 'memory'

    # Use in-memory SQLite for testing
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'


class ProductionConfig(Config):
    """Production configuration."""

    # Ensure proper secret key is set
    SECRET_KEY = os.environ.get('SECRET_KEY')
    ALLOW_EPHEMERAL_KEY = False


# Configuration dictionary
config_dict = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    # Development and testing must be selected explicitly
    'default': ProductionConfig
}


def get_config(config_name=None):
    """Get configuration class based on environment."""
    if not config_name:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config_dict.get(config_name, config_dict['default'])
