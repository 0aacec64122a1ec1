"""
Handles the 'transfer' command group.

- ``transfer send`` builds and signs a transfer with the local secret key
  (GITRELAY_SECRET_KEY) and submits it.
- ``transfer submit`` submits an event that was signed elsewhere.
"""

import json

import click

from ..cli_utils import standard_command, add_common_options, load_signer
from ..errors import ValidationError
from ..output import emit


@click.group("transfer")
def transfer_cmd():
    """Ownership transfer commands."""
    pass


@transfer_cmd.command("send")
@click.argument('owner')
@click.argument('repo')
@click.argument('new_owner')
@click.option('--dry-run', is_flag=True, help='Print the signed event without publishing it')
@add_common_options('verbose', 'pretty')
@standard_command
async def send_transfer(owner, repo, new_owner, dry_run, pretty, relay, **kwargs):
    """Transfer REPO (originally by OWNER) to NEW_OWNER.

    You must be the current owner. Both OWNER and NEW_OWNER may be hex
    pubkeys or npubs.

    Examples:

    \b
        GITRELAY_SECRET_KEY=nsec1... gitrelay transfer send npub1... my-repo npub1...
    """
    signer = load_signer()
    template = relay.ownership_service.create_transfer_event(signer.pubkey, new_owner, owner, repo)
    event = await signer.sign(template)
    if dry_run:
        print(event.to_json())
        return None

    result = await relay.submit_transfer(event, signer.pubkey)
    emit([result], pretty=pretty)


@transfer_cmd.command("submit")
@click.argument('event_file', type=click.File('r'), default='-')
@add_common_options('verbose', 'pretty')
@standard_command
async def submit_transfer(event_file, pretty, relay, **kwargs):
    """Submit a pre-signed transfer event read from EVENT_FILE (default: stdin).

    The submitter is the event's author.
    """
    try:
        event = json.load(event_file)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Event is not valid JSON: {e}", field='event') from e

    result = await relay.submit_transfer(event, event.get('pubkey') if isinstance(event, dict) else None)
    emit([result], pretty=pretty)
