"""
Error taxonomy.

Each error carries the HTTP status it is rendered with. Routes never build
error responses by hand; the exception handlers in main.py turn any
EntityError into `{"success": false, "message": ...}`.
"""


class EntityError(Exception):
    """Base class for failures surfaced to the caller."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EntityError):
    """A required field is missing or malformed."""

    status_code = 400


class NotFound(EntityError):
    """The operation targets an identifier that does not exist."""

    status_code = 404


class DuplicateKeyError(EntityError):
    """A unique constraint (e.g. profile email) was violated."""

    status_code = 409


class StoreUnavailable(EntityError):
    """The datastore is not configured or could not be reached."""

    status_code = 500


class BroadcastFailure(Exception):
    """Delivery to observers failed. Logged, never surfaced."""
