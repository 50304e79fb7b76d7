class FinanceError(Exception):
    """Base class for errors reported back to the person using the app."""

    default_message = "Something went wrong."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(FinanceError):
    default_message = "Invalid input."


class DuplicateError(FinanceError):
    default_message = "Already exists."


class NotFoundError(FinanceError):
    default_message = "Not found."


class AuthError(FinanceError):
    default_message = "Incorrect email or password."


class StorageError(FinanceError):
    default_message = "Database operation failed."


class DatabaseInitError(RuntimeError):
    """Raised when the database cannot be opened or migrated."""
