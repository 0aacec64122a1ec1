"""
Handles the 'maintainers' command.
"""

import click

from ..cli_utils import standard_command, add_common_options
from ..output import emit


@click.command(name='maintainers')
@click.argument('owner')
@click.argument('repo')
@add_common_options('verbose', 'pretty')
@standard_command
async def maintainers_handler(owner, repo, pretty, relay, **kwargs):
    """List the maintainers of a repository, current owner first.

    Examples:

    \b
        gitrelay maintainers npub1... my-repo
    """
    info = await relay.maintainers(owner, repo)
    emit([info], pretty=pretty)
