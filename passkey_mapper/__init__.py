import os

from flask import Flask

from passkey_mapper.commands import register_commands
from passkey_mapper.errors import register_error_handlers
from passkey_mapper.extensions import init_extensions
from passkey_mapper.logger import setup_logging
from passkey_mapper.services.container import init_container


def create_app(test_config=None):
    """Application factory function.

    Raises ConfigurationError when the mapping key or ledger settings are
    unusable, so a misconfigured process never starts serving.
    """
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration
    from passkey_mapper.config import get_config
    if test_config is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
        app.config.from_object(get_config(config_name))
    else:
        # Test configs start from the testing defaults
        app.config.from_object(get_config('testing'))
        app.config.from_mapping(test_config)

    # Configure logging in non-testing environments; tests rely on pytest's capture
    if not app.config.get('TESTING'):
        setup_logging(app)

    # Initialize extensions
    init_extensions(app)

    # Build shared stores and services
    init_container(app)

    # Register error handlers
    register_error_handlers(app)

    register_blueprints(app)
    register_commands(app)

    return app


def register_blueprints(app):
    """Register all blueprints with the application."""
    from passkey_mapper.web.health import health_bp
    from passkey_mapper.web.mapping import mapping_bp
    from passkey_mapper.web.passkey import passkey_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(passkey_bp, url_prefix='/api/passkey')
    app.register_blueprint(mapping_bp, url_prefix='/api/mapping')
