"""
Composable decorator stages for facade operations.

Each public operation of ``GitRelay`` is an async method wrapped in a few
stages:

    @operation('fork')
    @requires_level(UNLIMITED)
    async def fork(self, owner, repo_id, signer, fork_name=None):
        ...

``operation`` logs start and finish, stamps the operation name on raised
errors, optionally writes an audit record, and turns anything unexpected
into a sanitized ``InternalError``. ``requires_level`` gates the call on
the caller's access level.
"""

from functools import wraps
import asyncio
import inspect
import logging
import time

from .errors import AuthenticationError, AuthorizationError, GitRelayError, InternalError
from .keys import try_normalize_pubkey
from .security import sanitize_error, truncate_pubkey
from .services.audit import DENIED, FAILURE, SUCCESS
from .services.user_level import level_satisfies

logger = logging.getLogger(__name__)

_PASSTHROUGH = (KeyboardInterrupt, SystemExit, asyncio.CancelledError)


def _bind(func, args, kwargs):
    bound = inspect.signature(func).bind(*args, **kwargs)
    bound.apply_defaults()
    return bound.arguments


def requester_of(arguments) -> str:
    """Pubkey of the caller: a ``signer`` argument wins over ``requester``."""
    signer = arguments.get('signer')
    if signer is not None:
        return signer.pubkey
    return arguments.get('requester')


def operation(name: str, audit: bool = False):
    """
    Decorator for async facade methods.

    Args:
        name: operation name stamped on errors and log lines
        audit: if True, write an audit record through ``self.audit``
    """
    def decorator(func):

        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            started = time.monotonic()
            user = None
            if audit:
                user = requester_of(_bind(func, (self,) + args, kwargs))
            logger.debug(f"{name}: started")

            try:
                result = await func(self, *args, **kwargs)
            except _PASSTHROUGH:
                raise
            except GitRelayError as e:
                if e.operation is None:
                    e.operation = name
                logger.info(f"{name}: {e.kind} error: {sanitize_error(e.message)}")
                if audit:
                    denied = isinstance(e, (AuthenticationError, AuthorizationError))
                    self.audit.log(name, DENIED if denied else FAILURE, user=user, error=e.message)
                raise
            except Exception as e:
                logger.exception(f"{name}: unexpected error")
                if audit:
                    self.audit.log(name, FAILURE, user=user, error=e)
                raise InternalError(
                    f"Internal error during {name}: {sanitize_error(e)}",
                    operation=name,
                ) from e

            logger.debug(f"{name}: finished in {time.monotonic() - started:.2f}s")
            if audit:
                self.audit.log(name, SUCCESS, user=user)
            return result

        return wrapper
    return decorator


def requires_level(level: str):
    """
    Decorator gating an async facade method on the caller's access level.

    The caller is taken from a ``signer`` or ``requester`` argument and its
    level from ``self.user_levels``.

    Raises:
        AuthenticationError: no caller identity
        AuthorizationError: the caller's level is too low
    """
    def decorator(func):

        @wraps(func)
        async def wrapper(self, *args, **kwargs):
            requester = try_normalize_pubkey(requester_of(_bind(func, (self,) + args, kwargs)) or '')
            if requester is None:
                raise AuthenticationError("Authentication required")

            current = self.user_levels.get_level(requester)
            if not level_satisfies(current, level):
                logger.info(
                    f"{func.__name__} denied for {truncate_pubkey(requester)}: "
                    f"level {current}, needs {level}"
                )
                raise AuthorizationError(
                    f"This operation requires {level} access",
                    context={'level': current},
                )
            return await func(self, *args, **kwargs)

        return wrapper
    return decorator
