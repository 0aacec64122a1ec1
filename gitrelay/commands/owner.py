"""
Handles the 'owner' command: current owner and transfer history of a
repository, resolved from the signed transfer chain on the relays.
"""

import click

from ..cli_utils import standard_command, add_common_options
from ..output import emit


@click.command(name='owner')
@click.argument('owner')
@click.argument('repo')
@click.option('--fresh', is_flag=True, help='Bypass caches and query the relays')
@click.option('--history', is_flag=True, help='Emit each transfer as its own line')
@add_common_options('verbose', 'pretty')
@standard_command
async def owner_handler(owner, repo, fresh, history, pretty, relay, **kwargs):
    """Show who owns a repository.

    OWNER is the original author (hex pubkey or npub), REPO the repository
    identifier.

    Examples:

    \b
        gitrelay owner npub1... my-repo
        gitrelay owner npub1... my-repo --history --pretty
    """
    info = await relay.ownership(owner, repo, fresh=fresh)
    if history:
        emit(info.history, pretty=pretty, columns=['timestamp', 'from', 'to', 'eventId'])
    else:
        emit([info], pretty=pretty, columns=['address', 'owner', 'original_owner', 'transferred'])
