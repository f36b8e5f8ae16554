class AppError(Exception):
    """Base for errors that carry an HTTP status."""

    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    status_code = 400


class IntegrityError(AppError):
    """A cluster broke its invariants (no primary, or more than one)."""

    status_code = 500


class StorageError(AppError):
    """Raised when the contact store fails."""

    status_code = 500
