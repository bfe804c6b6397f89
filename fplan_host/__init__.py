"""Host-side session lifecycle for the embedded floor plan."""

from .config import load_kit_config, save_kit_config
from .session import FloorplanHost, FloorplanSession, SessionRegistry, SessionToken

__all__ = [
    "FloorplanHost",
    "FloorplanSession",
    "SessionRegistry",
    "SessionToken",
    "load_kit_config",
    "save_kit_config",
]
