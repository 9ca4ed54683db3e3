"""Unified CLI for rtc-rendezvous using Click."""

import sys

import click
from loguru import logger

from rtc_rendezvous.config import get_config
from rtc_rendezvous.rtc_client import run_rendezvous_client


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


@click.group()
def cli():
    pass


@cli.command()
@click.option(
    "--api-url",
    "-u",
    type=str,
    required=False,
    help="Rendezvous gateway URL. Can also use RTC_RENDEZVOUS_API_URL env var.",
)
@click.option(
    "--name",
    "-n",
    type=str,
    required=False,
    help="Display name announced to the gateway.",
)
@click.option(
    "--id",
    "session_id",
    type=str,
    required=False,
    help="Resume an existing session id instead of having one assigned.",
)
@click.option(
    "--peer",
    "-p",
    type=str,
    required=False,
    help="Peer id to connect to once it is matched. Omit to wait for an offer.",
)
@click.option("--passphrase", type=str, required=False, help="Matching passphrase.")
@click.option(
    "--friend",
    "friends",
    multiple=True,
    help="Preferred peer id for matching (repeatable).",
)
@click.option("--global-ip", type=str, required=False, help="Global IP to report.")
@click.option(
    "--interval",
    type=int,
    required=False,
    help="Polling interval in milliseconds (default: 2000).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def connect(api_url, name, session_id, peer, passphrase, friends, global_ip, interval, verbose):
    """Register with the gateway and open a data channel to a matched peer.

    Once connected, each line typed on stdin is sent to the peer and every
    received message is printed.

    Examples:

        # Wait for someone to offer a connection
        rtc-rendezvous connect --api-url https://example.com/exec --name alice

        # Connect to a specific peer once the gateway matches it
        rtc-rendezvous connect -u https://example.com/exec -n bob --peer u1
    """
    _configure_logging(verbose)

    try:
        options = get_config().client_options(
            api_url=api_url,
            name=name,
            id=session_id,
            passphrase=passphrase,
            friend_list=list(friends) or None,
            global_ip=global_ip,
            polling_interval=interval,
        )
    except ValueError as e:
        logger.error(f"Invalid options: {e}")
        sys.exit(1)

    try:
        run_rendezvous_client(options, peer_id=peer)
    except Exception:
        sys.exit(1)


@cli.command(name="config")
def show_config():
    """Show the effective configuration."""
    config = get_config()
    click.echo(f"Config file:      {config.config_file or '(none)'}")
    click.echo(f"API URL:          {config.api_url or '(not set)'}")
    click.echo(f"Name:             {config.name or '(not set)'}")
    click.echo(f"Polling interval: {config.polling_interval} ms")
    click.echo(f"Gather timeout:   {config.gather_timeout} ms")
    for server in config.ice_servers:
        click.echo(f"ICE server:       {server.get('urls')}")
