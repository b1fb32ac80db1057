"""Adapters package - Bridge between the engine and UI frontends.

Holds the notice types, the event bus, and the replay transport used for
offline runs.
"""
from __future__ import annotations

__all__ = [
    "EventBus",
    "EngineNotice",
    "ReplayTransport",
    "dict_to_event",
    "event_to_dict",
]

from potato.adapters.event_bus import EventBus
from potato.adapters.events import EngineNotice, dict_to_event, event_to_dict
from potato.adapters.replay import ReplayTransport
