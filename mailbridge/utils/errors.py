"""Error taxonomy and centralised error handling."""

from enum import Enum
from typing import Any, Dict

from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)


## Error Categories


class ErrorCategory(Enum):
    """Coarse error classes reported to tool callers."""

    NETWORK = "network"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


## Custom Exceptions


class MailBridgeError(Exception):
    """Base exception for all mailbridge errors."""

    category = ErrorCategory.UNKNOWN
    user_message = "An error occurred"

    def __init__(
        self, message: str | None = None, details: Dict[str, Any] | None = None
    ):
        """Initialise MailBridgeError with optional message and details."""
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used in tool error payloads."""
        return {
            "error_type": self.__class__.__name__,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
        }


## Network Errors


class NetworkError(MailBridgeError):
    """The mailbox server or SMTP transport failed or could not be reached."""

    category = ErrorCategory.NETWORK
    user_message = "A network error occurred"


class IMAPError(NetworkError):
    """Exception for IMAP protocol errors.

    ``details["response"]`` carries the server's response text when the
    server rejected a command.
    """

    user_message = "Mailbox server error"


class SMTPError(NetworkError):
    """The SMTP transport rejected or failed a delivery."""

    user_message = "Failed to send email"


class NetworkTimeoutError(NetworkError):
    """A server call exceeded its timeout."""

    user_message = "The connection timed out"


class NotConnectedError(NetworkError):
    """Raised when the mailbox session is down and cannot be re-established."""

    user_message = "IMAP client not connected"


## Not Found Errors


class NotFoundError(MailBridgeError):
    """Base exception for missing resources."""

    category = ErrorCategory.NOT_FOUND
    user_message = "Resource not found"


class MessageNotFoundError(NotFoundError):
    """Exception when a message cannot be resolved in any folder."""

    user_message = "Email not found"


## Folder Errors


class ProtectedFolderError(MailBridgeError):
    """Attempt to delete or rename a system folder."""

    category = ErrorCategory.PERMISSION
    user_message = "Folder is protected"


class FolderConflictError(MailBridgeError):
    """Base exception for folder CRUD conflicts reported by the server."""

    category = ErrorCategory.CONFLICT
    user_message = "Folder operation conflict"


class FolderExistsError(FolderConflictError):
    """The folder being created (or renamed to) already exists."""

    user_message = "Folder already exists"


class FolderNotFoundError(FolderConflictError):
    """The folder being deleted or renamed does not exist."""

    user_message = "Folder does not exist"


class FolderNotEmptyError(FolderConflictError):
    """The folder being deleted still has messages or children."""

    user_message = "Folder is not empty"


## Validation Errors


class ValidationError(MailBridgeError):
    """Caller input or server data failed validation."""

    category = ErrorCategory.VALIDATION
    user_message = "Invalid input"


class MessageParseError(ValidationError):
    """A raw message could not be parsed."""

    user_message = "Failed to parse email"


class InvalidEmailAddressError(ValidationError):
    """A recipient address is malformed."""

    user_message = "Invalid email address"


class MissingRequiredFieldError(ValidationError):
    """A required argument or field was not supplied."""

    user_message = "A required field is missing"


class InvalidParameterError(ValidationError):
    """A tool parameter has the wrong type or value."""

    user_message = "Invalid parameter"


## Configuration Errors


class ConfigurationError(MailBridgeError):
    """The process cannot start with the given settings."""

    category = ErrorCategory.CONFIGURATION
    user_message = "A configuration error occurred"


class MissingConfigError(ConfigurationError):
    """A required setting such as the bridge username is absent."""

    user_message = "Missing configuration settings"


class InvalidConfigError(ConfigurationError):
    """A setting could not be parsed or is out of range."""

    user_message = "Invalid configuration settings"


## Error Handler


class ErrorHandler:
    """Centralised error handling and logging."""

    @staticmethod
    def handle(
        error: Exception, context: str = "", log_traceback: bool = False
    ) -> Dict[str, Any]:
        """Log an error and return its structured representation."""
        if isinstance(error, MailBridgeError):
            logger.error(
                f"{context}: {error.message}", extra={"data": error.details}
            )
            if log_traceback:
                logger.exception(error)
            return error.to_dict()

        logger.error(f"{context}: {error}", extra={"data": {"type": type(error).__name__}})
        if log_traceback:
            logger.exception(error)
        return {
            "error_type": type(error).__name__,
            "category": ErrorCategory.UNKNOWN.value,
            "message": str(error) or "Unknown error occurred",
            "details": {"context": context},
        }


def format_error_message(error: Exception) -> str:
    """Message text suitable for a tool result."""
    if isinstance(error, MailBridgeError):
        return error.message
    return str(error) or "Unknown error occurred"
