"""Rendezvous client and its signaling components."""

from rtc_rendezvous.client.client_class import RendezvousClient
from rtc_rendezvous.client.session import Session

__all__ = ["RendezvousClient", "Session"]
