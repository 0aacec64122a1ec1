"""
Per-remote git transport configuration.

Remotes on an anonymizing network (``.onion`` hosts) are reached through
a SOCKS proxy. The proxy settings are returned as a scoped ``Transport``
(``-c`` pairs plus an environment overlay) for one git invocation; the
process environment and global git config are never touched.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit
import re

from ..errors import ValidationError

ALLOWED_SCHEMES = ('http', 'https', 'ssh', 'git', 'file')

# user@host:path (scp-like ssh syntax)
_SCP_LIKE = re.compile(r'^(?:[A-Za-z0-9._-]+@)?(?P<host>[A-Za-z0-9.-]+):(?!//)(?P<path>.+)$')


@dataclass(frozen=True)
class Transport:
    """Scoped git configuration for one remote."""
    config: Tuple[Tuple[str, str], ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    via_proxy: bool = False


DIRECT = Transport()


def url_host(url: str) -> Optional[str]:
    """Hostname of a git URL, including scp-like ``user@host:path``."""
    if '://' in url:
        try:
            return urlsplit(url).hostname
        except ValueError:
            return None
    match = _SCP_LIKE.match(url)
    if match:
        return match.group('host').lower()
    return None


def url_scheme(url: str) -> str:
    if '://' in url:
        return url.split('://', 1)[0].lower()
    if _SCP_LIKE.match(url):
        return 'ssh'
    return 'file'


def is_onion_address(url: str) -> bool:
    host = url_host(url)
    if host:
        return host.endswith('.onion')
    return '.onion' in url


def parse_tor_proxy(value: Optional[str]) -> Optional[Tuple[str, int]]:
    """
    Parse ``host:port``. Empty disables the proxy.

    Raises:
        ValidationError: for a non-empty value that is not host:port
    """
    if not value or not value.strip():
        return None
    host, sep, port = value.strip().rpartition(':')
    if not sep or not host or not port.isdigit() or not 0 < int(port) < 65536:
        raise ValidationError(f"Invalid SOCKS proxy {value!r}, expected host:port", field='tor.socks_proxy')
    return host, int(port)


def validate_remote_url(url: str) -> str:
    """
    Reject URLs git could be tricked into executing or misreading.

    Raises:
        ValidationError: for empty URLs, option-looking URLs, ``ext::`` or
            ``fd::`` transports and unknown schemes
    """
    if not url or not isinstance(url, str) or not url.strip():
        raise ValidationError("Remote URL is required", field='url')
    url = url.strip()
    if url.startswith('-'):
        raise ValidationError("Remote URL cannot start with '-'", field='url')
    lowered = url.lower()
    if lowered.startswith('ext::') or lowered.startswith('fd::') or '::' in lowered.split('/', 1)[0]:
        raise ValidationError("Remote helper transports are not allowed", field='url')
    if '://' in url:
        scheme = url_scheme(url)
        if scheme not in ALLOWED_SCHEMES:
            raise ValidationError(f"Unsupported URL scheme: {scheme}", field='url')
    elif not _SCP_LIKE.match(url) and not url.startswith('/'):
        raise ValidationError("Unsupported remote URL", field='url')
    return url


def transport_for_url(url: str, socks_proxy: Optional[str]) -> Transport:
    """
    Transport settings for ``url``.

    Raises:
        ValidationError: if the URL is an onion address but no proxy is set
    """
    if not is_onion_address(url):
        return DIRECT

    proxy = parse_tor_proxy(socks_proxy)
    if proxy is None:
        raise ValidationError("Onion remote requires a SOCKS proxy (tor.socks_proxy)", field='url')
    host, port = proxy

    scheme = url_scheme(url)
    if scheme in ('http', 'https'):
        return Transport(config=(('http.proxy', f"socks5h://{host}:{port}"),), via_proxy=True)
    if scheme == 'ssh':
        command = f"ssh -o ProxyCommand='nc -X 5 -x {host}:{port} %h %p'"
        return Transport(env={'GIT_SSH_COMMAND': command}, via_proxy=True)
    raise ValidationError(f"Onion remotes over {scheme} are not supported", field='url')
