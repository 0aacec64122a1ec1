"""
Handles the 'fork' command.

Forking needs unlimited access: either the key is listed in
``access.unlimited_pubkeys`` or ``--prove`` publishes a short-lived proof
event to the default relays first.
"""

import click

from ..cli_utils import standard_command, add_common_options, load_signer
from ..errors import AuthorizationError
from ..exit_codes import GENERAL_ERROR, SUCCESS
from ..output import emit
from ..services.user_level import create_proof_event


@click.command(name='fork')
@click.argument('owner')
@click.argument('repo')
@click.option('--name', 'fork_name', default=None, help='Name of the fork (default: same as REPO)')
@click.option('--prove', is_flag=True, help='Prove relay write access before forking')
@add_common_options('verbose', 'pretty')
@standard_command
async def fork_handler(owner, repo, fork_name, prove, pretty, relay, **kwargs):
    """Fork OWNER's REPO under your own key.

    The clone, the fork announcement and the ownership anchor are created
    in that order; if a later step fails, earlier ones are undone and the
    failed step is reported.

    Examples:

    \b
        GITRELAY_SECRET_KEY=nsec1... gitrelay fork npub1... my-repo --prove
        GITRELAY_SECRET_KEY=nsec1... gitrelay fork npub1... my-repo --name my-copy
    """
    signer = load_signer()

    if prove:
        proof = await signer.sign(create_proof_event(signer.pubkey))
        await relay.client.publish_event(proof, relay.default_relays)
        check = await relay.prove_write_access(proof, signer.pubkey)
        if not check.valid:
            raise AuthorizationError(f"Write proof rejected: {check.error}")

    result = await relay.fork(owner, repo, signer, fork_name=fork_name)
    emit([result], pretty=pretty)
    return SUCCESS if result.success else GENERAL_ERROR
