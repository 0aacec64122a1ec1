"""
Handles the 'access' command: would a given identity be allowed to read
(or write) a repository?

Exit code 0 means allowed, PERMISSION_ERROR means denied.
"""

import click

from ..cli_utils import standard_command, add_common_options
from ..exit_codes import PERMISSION_ERROR, SUCCESS
from ..output import emit


@click.command(name='access')
@click.argument('owner')
@click.argument('repo')
@click.option('--requester', default=None, help='Pubkey (hex or npub) to check; anonymous if omitted')
@click.option('--write', is_flag=True, help='Check write access instead of read access')
@add_common_options('verbose', 'pretty')
@standard_command
async def access_handler(owner, repo, requester, write, pretty, relay, **kwargs):
    """Check access to a repository.

    Examples:

    \b
        gitrelay access npub1... my-repo
        gitrelay access npub1... my-repo --requester npub1... --write
    """
    decision = await relay.check_access(requester, owner, repo, write=write)
    emit([decision], pretty=pretty)
    return SUCCESS if decision.allowed else PERMISSION_ERROR
