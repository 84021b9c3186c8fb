"""Error taxonomy for kinvey-request.

Every error raised by the request pipeline derives from KinveyError. Errors
raised while building a request (InvalidArgumentError, SizeLimitExceededError)
surface synchronously; the rest surface from ``await request.execute()``.
"""

from __future__ import annotations


class KinveyError(Exception):
    """Base class for all kinvey-request errors.

    Attributes:
        message: Human-readable description.
        debug: Extra diagnostic text (usually echoed from the backend).
        status_code: HTTP status code when the error came from a response.
    """

    default_message = "An error occurred."

    def __init__(
        self,
        message: str | None = None,
        debug: str = "",
        status_code: int | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.debug = debug
        self.status_code = status_code
        super().__init__(self.message)


# =============================================================================
# Request construction / execution errors
# =============================================================================


class InvalidArgumentError(KinveyError):
    """Raised when a method, header, or option value is malformed."""

    default_message = "An invalid argument was provided."


class AlreadyExecutingError(KinveyError):
    """Raised when execute() is called while the same request is in flight."""

    default_message = "Unable to execute the request. The request is already executing."


class SizeLimitExceededError(KinveyError):
    """Raised when serialized custom properties reach the header byte cap."""

    def __init__(self, byte_count: int, max_bytes: int) -> None:
        self.byte_count = byte_count
        self.max_bytes = max_bytes
        super().__init__(
            f"The custom properties are {byte_count} bytes. "
            f"It must be less than {max_bytes} bytes.",
            debug="Please remove some custom properties.",
        )


class NoResponseError(KinveyError):
    """Raised when the rack settles without producing a response."""

    default_message = "No response was provided for the request."


class RequestCancelledError(KinveyError):
    """Raised by a stage whose in-flight work was aborted through cancel()."""

    default_message = "The request was cancelled."


class TransportError(KinveyError):
    """Raised when the transport fails (connection error, protocol error, etc.)."""

    default_message = "The request could not be sent."


class RequestTimeoutError(TransportError):
    """Raised when the transport gives up waiting for a response."""

    default_message = "The request timed out."


# =============================================================================
# Server-classified errors (see Response.error)
# =============================================================================


class InvalidCredentialsError(KinveyError):
    default_message = "Invalid credentials. Please retry your request with correct credentials."


class InsufficientCredentialsError(KinveyError):
    default_message = "The credentials used to authenticate this request are not authorized."


class NotFoundError(KinveyError):
    default_message = "The item was not found."


class FeatureUnavailableError(KinveyError):
    default_message = "Requested functionality is unavailable in this API version."


class BusinessLogicError(KinveyError):
    default_message = "The business logic script did not complete."


class ServerError(KinveyError):
    default_message = "An error occurred on the server."
