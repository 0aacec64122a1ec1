"""
Output module for gitrelay.

Every command writes its results one way:
- JSONL (default): one JSON object per line on stdout, for piping
- Pretty (--pretty): a Rich table, with pubkeys and event ids shortened

Errors always go to stderr as a single JSON object.

Usage:
    from gitrelay.output import emit, emit_error

    emit([ownership_info], pretty=pretty)
    emit_error(error)
"""

import json
import sys
from typing import Iterable, Any, Dict, Optional, List

from rich.console import Console
from rich.table import Table

from .errors import GitRelayError
from .security import HEX64_RE, sanitize_error, truncate_pubkey

# Column order used when a command does not name its columns
PREFERRED_COLUMNS = ['type', 'success', 'repo', 'owner', 'address', 'target', 'status', 'action']
MAX_AUTO_COLUMNS = 8


def _to_dict(item: Any) -> Dict[str, Any]:
    if hasattr(item, 'to_dict'):
        return item.to_dict()
    if isinstance(item, dict):
        return item
    return {'value': str(item)}


def emit(items: Iterable[Any], pretty: bool = False, columns: Optional[List[str]] = None) -> None:
    """
    Write results to stdout.

    Args:
        items: Objects with ``to_dict()``, or plain dicts
        pretty: Render a table instead of JSONL
        columns: Table columns (derived from the first row if None)
    """
    if pretty:
        _emit_table(items, columns)
    else:
        _emit_jsonl(items)


def _emit_jsonl(items: Iterable[Any]) -> None:
    for item in items:
        print(json.dumps(_to_dict(item), ensure_ascii=False, default=str), file=sys.stdout, flush=True)


def _emit_table(items: Iterable[Any], columns: Optional[List[str]] = None) -> None:
    rows = [_to_dict(item) for item in items]
    console = Console(file=sys.stdout)

    if not rows:
        console.print("No results found")
        return

    table = Table(show_header=True, header_style="bold")
    columns = columns or _auto_columns(rows[0])
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*[_format_cell(row.get(col)) for col in columns])

    console.print(table)


def _auto_columns(row: Dict[str, Any]) -> List[str]:
    columns = [col for col in PREFERRED_COLUMNS if col in row]
    columns.extend(sorted(key for key in row if key not in columns))
    return columns[:MAX_AUTO_COLUMNS]


def _format_cell(value: Any, max_len: int = 50) -> str:
    """Render one table cell. Hex keys and ids are shortened; an address keeps its kind and identifier."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    if isinstance(value, list):
        shown = ', '.join(_format_cell(v, max_len=20) for v in value[:3])
        return shown + (f' (+{len(value) - 3} more)' if len(value) > 3 else '')
    if isinstance(value, dict):
        return '{...}'

    text = str(value)
    if HEX64_RE.match(text):
        return truncate_pubkey(text)
    parts = text.split(':')
    if len(parts) == 3 and HEX64_RE.match(parts[1]):
        return f"{parts[0]}:{truncate_pubkey(parts[1])}:{parts[2]}"
    if len(text) > max_len:
        return text[:max_len - 3] + '...'
    return text


def emit_details(summary: Any, pretty: bool = False) -> None:
    """Emit each per-target detail of a summary, then the summary itself."""
    details = [d.to_dict() for d in getattr(summary, 'details', [])]
    if pretty:
        _emit_table(details, ['target', 'status', 'action', 'attempts', 'error'])
        _emit_table([summary], ['operation', 'success', 'total', 'successful', 'failed'])
    else:
        _emit_jsonl(details + [summary])


def emit_error(error: Any, context: Optional[Dict[str, Any]] = None) -> None:
    """
    Write an error to stderr as one JSON object.

    Args:
        error: A GitRelayError, another exception or a message
        context: Extra fields merged into the object's ``context``
    """
    if isinstance(error, GitRelayError):
        obj = error.to_dict()
    else:
        obj = {
            'error': type(error).__name__ if isinstance(error, Exception) else 'error',
            'message': sanitize_error(error),
        }
    if context:
        obj.setdefault('context', {}).update(context)

    print(json.dumps(obj, ensure_ascii=False), file=sys.stderr, flush=True)
