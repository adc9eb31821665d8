"""
Typed failures raised by the service layer.

Every error carries the HTTP status the REST layer answers with, so the
single exception handler in ``app.main`` can translate them without
knowing about individual services.
"""
from sqlalchemy.exc import DBAPIError, IntegrityError


class ServiceError(Exception):
    """Base class for all service-level failures."""

    status_code: int = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


# --- Missing resources ---

class NotFoundError(ServiceError):
    """Raised when a slug, user or profile does not resolve to a row."""

    status_code = 404

    def __init__(self, resource: str, identifier):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} '{identifier}' not found")


# --- Unique constraint violations ---

class ConflictError(ServiceError):
    """Raised when a write violates a unique constraint."""

    status_code = 409


class TagConflictError(ConflictError):
    """A tag name was inserted concurrently outside the conflict-safe path."""

    def __init__(self, names):
        self.names = list(names)
        super().__init__(f"Tag name conflict for {self.names}")


# --- Input errors ---

class ValidationError(ServiceError):
    """Raised when a required input field is missing or unusable."""

    status_code = 422

    def __init__(self, field: str, reason: str = "is required"):
        self.field = field
        super().__init__(f"{field} {reason}")


class ForbiddenError(ServiceError):
    status_code = 403


# --- Store failures ---

class TransientStoreError(ServiceError):
    """Connection or transaction failure; the caller may retry."""

    status_code = 503


def translate_db_error(exc: DBAPIError) -> ServiceError:
    """
    Map a SQLAlchemy DBAPI error onto the service taxonomy.

    Integrity errors become ``ConflictError``; everything else (dropped
    connections, serialization failures, lock timeouts) is reported as
    ``TransientStoreError``.
    """
    if isinstance(exc, IntegrityError):
        return ConflictError(f"Unique constraint violated: {exc.orig}")
    return TransientStoreError(f"Database unavailable: {exc.orig}")
