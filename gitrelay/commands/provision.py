"""
Handles the 'provision' command: create the local repository a signed
announcement points at this host for, and mirror its other clone URLs.
"""

import json

import click

from ..cli_utils import standard_command, add_common_options
from ..errors import ValidationError
from ..output import emit


@click.command(name='provision')
@click.argument('announcement_file', type=click.File('r'), default='-')
@add_common_options('verbose', 'pretty')
@standard_command
async def provision_handler(announcement_file, pretty, relay, **kwargs):
    """Provision from a signed announcement in ANNOUNCEMENT_FILE (default: stdin).

    Safe to repeat: an existing repository is left in place.
    """
    try:
        announcement = json.load(announcement_file)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Announcement is not valid JSON: {e}", field='event') from e

    result = await relay.provision(announcement)
    emit([result], pretty=pretty)
