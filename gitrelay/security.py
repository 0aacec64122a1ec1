"""
Security helpers for gitrelay.

Log-safe rendering of identities and errors, and validation of
attacker-influenced names before they reach the filesystem or git.
"""

import re
from typing import Mapping, Optional
from urllib.parse import urlsplit, urlunsplit

from .errors import ValidationError

HEX64_RE = re.compile(r'^[0-9a-f]{64}$')
REPO_NAME_RE = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9._-]*[a-zA-Z0-9]$|^[a-zA-Z0-9]$')
MAX_REPO_NAME_LENGTH = 100

# An absolute path not preceded by a URL scheme or host
ABSOLUTE_PATH_RE = re.compile(r'(?<![\w:/.~-])/(?:[^\s\'"/]+/)+[^\s\'":]*')


def truncate_pubkey(pubkey: Optional[str]) -> str:
    """Shorten a hex pubkey or npub for logs: first 8 and last 4 characters."""
    if not pubkey:
        return 'unknown'
    if len(pubkey) <= 16:
        return pubkey
    return f"{pubkey[:8]}...{pubkey[-4:]}"


def truncate_npub(npub: Optional[str]) -> str:
    """Shorten an npub for display: first 12 characters."""
    if not npub:
        return 'unknown'
    if len(npub) <= 16:
        return npub
    return f"{npub[:12]}..."


def sanitize_error(error, paths: Optional[Mapping[str, str]] = None) -> str:
    """
    Render an error (or message) without private material.

    Removes nsec keys, 64-char hex strings, passwords and URL credentials,
    replaces local filesystem paths and shortens long npubs.

    Args:
        error: Exception or message
        paths: Known local paths mapped to the label shown in their place;
            any other absolute path becomes ``<path>``
    """
    message = str(error)
    for path in sorted(paths or {}, key=len, reverse=True):
        if path:
            message = message.replace(path, paths[path])
    message = ABSOLUTE_PATH_RE.sub('<path>', message)
    message = re.sub(r'nsec1[0-9a-z]+', '[REDACTED]', message, flags=re.IGNORECASE)
    message = re.sub(r'[0-9a-fA-F]{64}', '[REDACTED]', message)
    message = re.sub(r'(password|pwd|token)[=:]\s*\S+', r'\1=[REDACTED]', message, flags=re.IGNORECASE)
    message = re.sub(r'(://)[^/@\s]+@', r'\1[REDACTED]@', message)
    message = re.sub(r'npub1[0-9a-z]{50,}', lambda m: truncate_npub(m.group(0)), message)
    return message


def redact_url(url: str) -> str:
    """Strip user info from a URL before it is logged or reported."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return sanitize_error(url)
    if parts.username or parts.password:
        host = parts.hostname or ''
        if parts.port:
            host = f"{host}:{parts.port}"
        return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))
    return url


def validate_repo_name(name: Optional[str], field: str = 'repo') -> str:
    """
    Validate a repository name and return it trimmed.

    Names are alphanumeric with hyphens, underscores and dots, may not start
    or end with a dot and may not contain path separators or "..".

    Raises:
        ValidationError: naming the offending field
    """
    if not name or not isinstance(name, str):
        raise ValidationError("Repository name is required", field=field)

    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("Repository name cannot be empty", field=field)
    if len(trimmed) > MAX_REPO_NAME_LENGTH:
        raise ValidationError(
            f"Repository name must be {MAX_REPO_NAME_LENGTH} characters or less", field=field
        )
    if '..' in trimmed or '/' in trimmed or '\\' in trimmed:
        raise ValidationError("Repository name cannot contain path separators", field=field)
    if not REPO_NAME_RE.match(trimmed):
        raise ValidationError(
            "Repository name must contain only alphanumeric characters, hyphens, "
            "underscores, and dots, and cannot start or end with a dot",
            field=field,
        )
    return trimmed


def is_hex_pubkey(value: Optional[str]) -> bool:
    """True for a lowercase 64-character hex string."""
    return bool(value) and bool(HEX64_RE.match(value))
