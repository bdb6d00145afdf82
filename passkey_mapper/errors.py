"""Application error hierarchy and JSON error handlers."""

import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

log = logging.getLogger(__name__)


class AppError(Exception):
    """Base exception class for application-specific errors."""

    kind = "app_error"
    default_message = "An unexpected error occurred"
    default_status = 500
    retryable = False
    log_level = "error"

    def __init__(self, message=None, details=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details
        self.status_code = status_code or self.default_status

    def to_dict(self):
        payload = {"error": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        if self.retryable:
            payload["retryable"] = True
        return payload


class ConfigurationError(AppError):
    """Raised when the application cannot start with the supplied settings."""

    kind = "configuration_error"
    default_message = "Invalid configuration"
    log_level = "critical"


# Client errors

class ValidationError(AppError):
    """Exception for missing or malformed request data."""

    kind = "validation_error"
    default_message = "Validation error"
    default_status = 400
    log_level = "info"


class CredentialConflict(ValidationError):
    """A credential id is already registered to a different identity."""

    default_message = "Credential already registered to another identity"
    default_status = 409
    log_level = "warning"


class NotFoundError(AppError):
    """Exception for requests to non-existent resources."""

    kind = "not_found"
    default_message = "Resource not found"
    default_status = 404
    log_level = "info"


class IdentityNotFound(NotFoundError):
    default_message = "Identity not found"


class UnknownCredential(NotFoundError):
    default_message = "Credential not found"


class NoBindingFound(NotFoundError):
    default_message = "No mapping found for this credential"


class EntryNotFound(NotFoundError):
    default_message = "Ledger entry not found"


# Security violations

class SecurityViolation(AppError):
    """Base class for ceremony failures that must never be retried blindly."""

    kind = "security_violation"
    default_message = "Ceremony verification failed"
    default_status = 401
    log_level = "warning"


class NoPendingChallenge(SecurityViolation):
    default_message = "No pending challenge for this ceremony"


class AttestationInvalid(SecurityViolation):
    default_message = "Ceremony response could not be verified"


class CounterRegression(SecurityViolation):
    """Signature counter did not increase: the authenticator may be cloned."""

    default_message = "Signature counter did not increase; credential flagged for review"
    default_status = 403
    log_level = "critical"


class CredentialFlagged(SecurityViolation):
    """The credential was flagged for review and is refused until cleared."""

    default_message = "Credential is flagged for review"
    default_status = 403


# Server-side failures

class IntegrityFailure(AppError):
    """An encrypted record failed authentication or could not be recovered."""

    kind = "integrity_failure"
    default_message = "Record failed integrity verification"
    log_level = "critical"


class MalformedPayload(IntegrityFailure):
    default_message = "Decrypted record is not a well-formed binding"


class LedgerUnavailable(AppError):
    """Transient failure talking to the ledger."""

    kind = "ledger_unavailable"
    default_message = "Ledger is unavailable"
    default_status = 503
    retryable = True
    log_level = "warning"


def log_app_error(e):
    """Log an application error at the severity it declares."""
    message = f"{e.__class__.__name__}: {e.message}"
    if e.log_level == "critical":
        log.critical(message)
    elif e.log_level == "error":
        log.error(message)
    elif e.log_level == "warning":
        log.warning(message)
    else:
        log.info(message)


def register_error_handlers(app):
    """Register application error handlers."""

    @app.errorhandler(AppError)
    def handle_app_error(e):
        """Handle application specific errors."""
        log_app_error(e)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """Handle Werkzeug HTTP exceptions."""
        return jsonify({"error": e.name.lower().replace(" ", "_"), "message": e.description}), e.code

    @app.errorhandler(Exception)
    def internal_server_error(e):
        """Handle unexpected errors."""
        log.exception(f"Uncaught exception: {e}")
        return jsonify({"error": "internal_error", "message": "An unexpected error occurred"}), 500
