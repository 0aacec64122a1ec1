"""
Audit log for security-relevant actions.

Records are single-line JSON objects on the ``gitrelay.audit`` logger,
optionally mirrored to a file. Pubkeys are truncated and errors sanitized
before they are written.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging

from ..security import sanitize_error, truncate_pubkey

AUDIT_LOGGER_NAME = 'gitrelay.audit'

SUCCESS = 'success'
FAILURE = 'failure'
DENIED = 'denied'


class AuditLogger:
    """
    Writes structured audit records.

    Example:
        audit = AuditLogger()
        audit.log('fork', user=pubkey, resource='npub1.../demo', result='success')
    """

    def __init__(self, enabled: bool = True, log_file: Optional[str] = None):
        self.enabled = enabled
        self.logger = logging.getLogger(AUDIT_LOGGER_NAME)
        self._handler: Optional[logging.Handler] = None

        # Audit records are emitted whatever the root level is
        if enabled and self.logger.level == logging.NOTSET:
            self.logger.setLevel(logging.INFO)

        if enabled and log_file:
            path = Path(log_file).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self._handler = logging.FileHandler(path, encoding='utf-8')
            self._handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(self._handler)

    def log(
        self,
        action: str,
        result: str,
        user: Optional[str] = None,
        resource: Optional[str] = None,
        error: Optional[Any] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Emit one record. Returns it (or None when disabled)."""
        if not self.enabled:
            return None

        record: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'action': action,
            'result': result,
        }
        if user:
            record['user'] = truncate_pubkey(user)
        if resource:
            record['resource'] = sanitize_error(resource)
        if error is not None:
            record['error'] = sanitize_error(error)
        if metadata:
            record['metadata'] = {k: sanitize_error(v) if isinstance(v, str) else v for k, v in metadata.items()}

        level = logging.INFO if result == SUCCESS else logging.WARNING
        self.logger.log(level, json.dumps(record, default=str))
        return record

    def close(self) -> None:
        if self._handler is not None:
            self.logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None
