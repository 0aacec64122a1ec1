"""
Standard exit codes for gitrelay commands.

Following Unix/POSIX conventions for command-line tools.
"""

# Standard POSIX exit codes
SUCCESS = 0              # Successful termination
GENERAL_ERROR = 1        # General errors
USAGE_ERROR = 2          # Misuse of shell command (wrong arguments, etc.)

# Application-specific exit codes (64-113 are typically available)
NOT_FOUND = 64           # Repository or announcement not found
RELAY_ERROR = 65         # No relay answered or accepted an event
CONFIG_ERROR = 66        # Configuration file error
PERMISSION_ERROR = 67    # Insufficient permissions / access level
NETWORK_ERROR = 68       # Network connection failed
AUTH_ERROR = 69          # Authentication required
DATA_ERROR = 70          # Data format or validation error
PARTIAL_SUCCESS = 71     # Some targets succeeded, some failed
SECURITY_ERROR = 72      # Forged or tampered event rejected
INTERRUPTED = 130        # Terminated by Ctrl+C (SIGINT)

# Exit code mappings for common exceptions
EXCEPTION_EXIT_CODES = {
    'FileNotFoundError': GENERAL_ERROR,
    'PermissionError': PERMISSION_ERROR,
    'ConnectionError': NETWORK_ERROR,
    'TimeoutError': NETWORK_ERROR,
    'ValueError': DATA_ERROR,
    'KeyError': DATA_ERROR,
    'JSONDecodeError': DATA_ERROR,
    'ValidationError': DATA_ERROR,
    'MalformedEventError': DATA_ERROR,
    'AuthenticationError': AUTH_ERROR,
    'AuthorizationError': PERMISSION_ERROR,
    'NotFoundError': NOT_FOUND,
    'RelayUnavailableError': RELAY_ERROR,
    'GitCommandError': GENERAL_ERROR,
    'TransientError': NETWORK_ERROR,
    'InvariantViolationError': SECURITY_ERROR,
    'KeyboardInterrupt': INTERRUPTED,
}


def get_exit_code_for_exception(exc: Exception) -> int:
    """
    Get the appropriate exit code for an exception.

    Walks the exception's class hierarchy so subclasses inherit the
    code of their nearest mapped ancestor.

    Args:
        exc: The exception that occurred

    Returns:
        Appropriate exit code
    """
    for cls in type(exc).__mro__:
        code = EXCEPTION_EXIT_CODES.get(cls.__name__)
        if code is not None:
            return code
    return GENERAL_ERROR
