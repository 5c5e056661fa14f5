"""Client-side Matrix engine: sync, history, media and a command dispatcher."""

__version__ = "0.1.0"

from .backend import Backend, BackendThread
from .config import EngineSettings, load_settings
from .types import Member, Message, Protocol, Room

__all__ = [
    "Backend",
    "BackendThread",
    "EngineSettings",
    "Member",
    "Message",
    "Protocol",
    "Room",
    "load_settings",
]
