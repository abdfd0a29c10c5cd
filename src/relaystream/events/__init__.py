"""Observability events for relaystream."""

from relaystream.events.bus import EventBus

__all__ = ["EventBus"]
