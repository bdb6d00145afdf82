"""
Initialize Flask extensions for the application.

These extensions are instantiated here and initialized in the application factory.
"""

from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy for the persistent credential backend
db = SQLAlchemy()


def init_extensions(app):
    """Initialize all Flask extensions."""
    db.init_app(app)

    if app.config.get('CREDENTIAL_BACKEND') == 'sqlalchemy':
        # Import models so their tables are registered before create_all
        from passkey_mapper.models import webauthn  # noqa: F401

        with app.app_context():
            db.create_all()
