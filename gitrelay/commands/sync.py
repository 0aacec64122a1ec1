"""
Handles the 'sync' command group: fetch from, or push to, every remote of
a local bare repository.

Remotes are independent: the command reports each one and exits with
PARTIAL_SUCCESS when only some of them worked.
"""

import click

from ..cli_utils import standard_command, add_common_options
from ..exit_codes import GENERAL_ERROR, PARTIAL_SUCCESS, SUCCESS
from ..output import emit_details


def _exit_code(summary) -> int:
    if summary.failed == 0:
        return SUCCESS
    return PARTIAL_SUCCESS if summary.successful > 0 else GENERAL_ERROR


@click.group("sync")
def sync_cmd():
    """Mirror a bare repository to and from its remotes."""
    pass


@sync_cmd.command("from")
@click.argument('path', type=click.Path(file_okay=False))
@click.argument('urls', nargs=-1, required=True)
@add_common_options('verbose', 'pretty')
@standard_command
async def sync_from(path, urls, pretty, relay, **kwargs):
    """Fetch every branch and tag of URLS into the repository at PATH."""
    summary = await relay.sync_from_remotes(path, list(urls))
    emit_details(summary, pretty=pretty)
    return _exit_code(summary)


@sync_cmd.command("to")
@click.argument('path', type=click.Path(file_okay=False))
@click.argument('urls', nargs=-1, required=True)
@add_common_options('verbose', 'pretty')
@standard_command
async def sync_to(path, urls, pretty, relay, **kwargs):
    """Push every branch and tag of the repository at PATH to URLS."""
    summary = await relay.sync_to_remotes(path, list(urls))
    emit_details(summary, pretty=pretty)
    return _exit_code(summary)
