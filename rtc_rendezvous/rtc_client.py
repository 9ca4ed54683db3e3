import asyncio
import sys
from typing import Optional

import click
from loguru import logger

from rtc_rendezvous.client.client_class import RendezvousClient
from rtc_rendezvous.config import ClientOptions
from rtc_rendezvous.events import EventKind
from rtc_rendezvous.exceptions import ChannelClosedError


async def run_client(
    options: ClientOptions,
    peer_id: Optional[str] = None,
    forward_stdin: bool = True,
    client: Optional[RendezvousClient] = None,
) -> None:
    """Register, connect, and relay messages until the session ends.

    Args:
        options: Client options.
        peer_id: Peer to offer a connection to once it appears in the match
            list. When None, wait for an inbound offer.
        forward_stdin: Send each stdin line to the peer once connected.
        client: Pre-built client (used by tests).
    """
    client = client or RendezvousClient(options)
    tasks: set = set()
    registered = False
    lost: list = []

    def spawn(coro) -> None:
        task = asyncio.ensure_future(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def connect_to(target: str) -> None:
        try:
            await client.connect(target)
        except Exception as e:
            logger.error(f"Could not connect to {target}: {e}")

    def on_registered(event):
        nonlocal registered
        registered = True
        click.echo(f"Registered as {options.name} (id: {event.id})")

    def on_match_found(event):
        names = ", ".join(f"{m.name or '?'} [{m.id}]" for m in event.match_list)
        click.echo(f"Match candidates: {names}")
        if (
            peer_id
            and client.peer_id is None
            and any(m.id == peer_id for m in event.match_list)
        ):
            spawn(connect_to(peer_id))

    def on_offer(event):
        click.echo(f"Incoming offer from {event.peer_name or event.peer_id}")

    def on_connected(event):
        click.echo(f"Connected to {event.peer_name or event.peer_id}")
        if forward_stdin:
            spawn(relay_stdin())

    def on_message(event):
        click.echo(f"< {event.data}")

    def on_disconnected(event):
        if event.reason != "user":
            click.echo(f"Connection lost ({event.reason})")
            spawn(client.disconnect())

    def on_reset(event):
        click.echo(f"Gateway reset the session: {event.message}")
        spawn(client.disconnect())

    def on_error(event):
        click.echo(f"Error: {event.error}", err=True)
        # Re-registration after a lost session failed: polling has stopped.
        if registered and client.id is None and not client.polling.running:
            lost.append(event.error)
            spawn(client.disconnect())

    async def relay_stdin() -> None:
        loop = asyncio.get_running_loop()
        while client.is_connected:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                await client.disconnect()
                return
            try:
                client.send(line.rstrip("\n"))
            except ChannelClosedError as e:
                logger.warning(f"Message not sent: {e}")

    client.on(EventKind.REGISTERED, on_registered)
    client.on(EventKind.MATCH_FOUND, on_match_found)
    client.on(EventKind.OFFER, on_offer)
    client.on(EventKind.CONNECTED, on_connected)
    client.on(EventKind.MESSAGE, on_message)
    client.on(EventKind.DISCONNECTED, on_disconnected)
    client.on(EventKind.RESET, on_reset)
    client.on(EventKind.ERROR, on_error)

    try:
        async with client:
            # A non-empty initial match list is delivered through on_match_found.
            await client.register()
            await client.wait_closed()
    finally:
        for task in list(tasks):
            task.cancel()

    if lost:
        raise lost[0]


def run_rendezvous_client(options: ClientOptions, peer_id: Optional[str] = None):
    """Standalone function to run the rendezvous client with CLI arguments."""
    try:
        asyncio.run(run_client(options, peer_id=peer_id))
    except KeyboardInterrupt:
        logger.info("Client interrupted by user. Shutting down...")
    except Exception as e:
        logger.error(f"Client error: {e}")
        raise
