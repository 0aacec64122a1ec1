"""
Error taxonomy for gitrelay.

Every failure reported to a caller is one of these classes so the outer
layer can tell apart:
- bad input (ValidationError) from missing rights (AuthorizationError)
- missing resources (NotFoundError) from unreachable infrastructure
  (TransientError and subclasses)
- forged or tampered events (InvariantViolationError), which are logged
  on the security logger and never retried

Messages are sanitized before they leave the process: see
``security.sanitize_error``.
"""

from typing import Any, Dict, Optional


class GitRelayError(Exception):
    """Base class for all gitrelay errors."""

    kind = "error"
    retryable = False

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        from .security import sanitize_error

        result = {
            'error': self.kind,
            'message': sanitize_error(self.message),
        }
        if self.operation:
            result['operation'] = self.operation
        if self.context:
            result['context'] = {
                key: sanitize_error(str(value)) for key, value in self.context.items()
            }
        return result


class ValidationError(GitRelayError):
    """Malformed or missing input. Never retried."""

    kind = "validation"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        if field:
            self.context.setdefault('field', field)


class MalformedEventError(ValidationError):
    """An event does not have the shape its kind requires."""

    kind = "malformed_event"


class AuthenticationError(GitRelayError):
    """No identity was supplied where one is required."""

    kind = "authentication"


class AuthorizationError(GitRelayError):
    """The identity is known but lacks the required rights."""

    kind = "authorization"


class NotFoundError(GitRelayError):
    """Repository, announcement or local clone does not exist."""

    kind = "not_found"


class TransientError(GitRelayError):
    """Infrastructure failure that may succeed on a later attempt."""

    kind = "transient"
    retryable = True


class RelayUnavailableError(TransientError):
    """No relay could be reached."""

    kind = "relay_unavailable"


class GitCommandError(TransientError):
    """A git subprocess failed."""

    kind = "git"

    def __init__(self, message: str, returncode: int = -1, stderr: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.returncode = returncode
        self.stderr = stderr


class InvariantViolationError(GitRelayError):
    """A forged signature or a mismatched repository address."""

    kind = "invariant_violation"


class InternalError(GitRelayError):
    """Unexpected failure, reported with a sanitized message."""

    kind = "internal"
