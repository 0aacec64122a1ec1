"""
Common CLI utilities and decorators for consistent command behavior.
"""

from functools import wraps
import asyncio
import logging
import os
import sys

import click

from .api import GitRelay
from .config import load_config
from .crypto import LocalKeySigner
from .errors import AuthenticationError, GitRelayError
from .exit_codes import INTERRUPTED, SUCCESS, get_exit_code_for_exception
from .output import emit_error

SECRET_KEY_ENV = 'GITRELAY_SECRET_KEY'


def standard_command(func):
    """
    Decorator that provides standard CLI behavior:
    - Runs the (possibly async) command body to completion
    - Builds one GitRelay from the loaded configuration and injects it
    - -v/--verbose raises log output to DEBUG
    - Errors go to stderr as JSON, with an exit code from exit_codes

    The command returns an exit code (or None for success).
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        if kwargs.get('verbose'):
            logging.getLogger().setLevel(logging.DEBUG)

        relay = None
        try:
            relay = GitRelay(config=load_config())
            kwargs['relay'] = relay
            result = func(*args, **kwargs)
            if asyncio.iscoroutine(result):
                result = asyncio.run(result)
            sys.exit(result if result is not None else SUCCESS)

        except KeyboardInterrupt:
            emit_error("Interrupted by user")
            sys.exit(INTERRUPTED)
        except click.ClickException:
            # Click exceptions already have their exit code
            raise
        except GitRelayError as e:
            emit_error(e)
            sys.exit(get_exit_code_for_exception(e))
        except (OSError, ValueError) as e:
            emit_error(e)
            sys.exit(get_exit_code_for_exception(e))
        finally:
            if relay is not None:
                relay.close()

    return wrapper


def load_signer() -> LocalKeySigner:
    """Signer from the secret key in the environment (hex or nsec)."""
    secret = os.environ.get(SECRET_KEY_ENV, '').strip()
    if not secret:
        raise AuthenticationError(f"Set {SECRET_KEY_ENV} to sign events")
    return LocalKeySigner(secret)


# Standard options that many commands share
common_options = {
    'verbose': click.option('-v', '--verbose', is_flag=True,
                            help='Show debug logging on stderr'),
    'pretty': click.option('--pretty', is_flag=True,
                           help='Display as a formatted table instead of JSONL'),
}


def add_common_options(*option_names):
    """
    Decorator to add common options to a command.

    Example:
        @add_common_options('verbose', 'pretty')
        def my_command(verbose, pretty):
            ...
    """
    def decorator(func):
        for name in reversed(option_names):
            if name in common_options:
                func = common_options[name](func)
        return func
    return decorator
