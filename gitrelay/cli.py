#!/usr/bin/env python3

import click

from gitrelay.commands.owner import owner_handler
from gitrelay.commands.maintainers import maintainers_handler
from gitrelay.commands.access import access_handler
from gitrelay.commands.fork import fork_handler
from gitrelay.commands.provision import provision_handler

# Command groups
from gitrelay.commands.transfer import transfer_cmd
from gitrelay.commands.sync import sync_cmd
from gitrelay.commands.config import config_cmd


@click.group()
@click.version_option(package_name='gitrelay')
def cli():
    """gitrelay - Git hosting where ownership lives in signed relay events.

    Repository ownership, maintainers and privacy are derived from signed
    events published to relays; this tool resolves them, submits transfers,
    forks repositories and mirrors bare repositories across remotes.
    """
    pass


# Core commands (flat, top-level)
cli.add_command(owner_handler, name='owner')
cli.add_command(maintainers_handler, name='maintainers')
cli.add_command(access_handler, name='access')
cli.add_command(fork_handler, name='fork')
cli.add_command(provision_handler, name='provision')

# Command groups
cli.add_command(transfer_cmd)
cli.add_command(sync_cmd)
cli.add_command(config_cmd)


def main():
    cli()

if __name__ == "__main__":
    main()
