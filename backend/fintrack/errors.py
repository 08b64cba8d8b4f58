"""
Error taxonomy shared by services and routes.

Services raise these deliberately; the FastAPI exception handler in
``fintrack.main`` renders them as ``{"detail": message}`` with ``status_code``.
Anything else escaping a handler is converted to ``InternalError`` by
``error_boundary``.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class FintrackError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def detail(self) -> str:
        return self.message


class ValidationError(FintrackError):
    """Malformed or missing field in a client payload."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuthError(FintrackError):
    status_code = 401

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message)


class NotFoundError(FintrackError):
    """Entity is absent or not owned by the caller."""

    status_code = 404


class InternalError(FintrackError):
    status_code = 500

    def __init__(self, message: str = "Internal server error."):
        super().__init__(message)


class ConfigurationError(FintrackError):
    """A required integration setting (e.g. aggregator credentials) is missing."""

    status_code = 503


class EncryptionConfigError(ConfigurationError):
    """The data encryption key is missing or invalid."""


@contextmanager
def error_boundary(action: str) -> Iterator[None]:
    """
    Wrap a request handler body.

    Deliberate ``FintrackError``s pass through untouched. Unexpected
    exceptions are logged with their traceback and replaced by a generic
    ``InternalError`` so no internal detail reaches the client.
    """
    try:
        yield
    except FintrackError:
        raise
    except Exception as exc:
        logger.exception(f"Unexpected error while {action}")
        raise InternalError() from exc
