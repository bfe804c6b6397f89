"""Offline asset cache for the floor-plan renderer."""

from .bootstrap import default_template, load_template, render_bootstrap, write_bootstrap
from .fetcher import HttpFetcher
from .models import (
    AssetDescriptor,
    Configuration,
    ConfigurationError,
    EventContext,
    normalize_event_address,
)
from .resolver import ConfigurationResolver, default_configuration
from .server import ContentRequestError, ContentResponse, ContentServer
from .sync import AssetSyncEngine, SyncHandle, SyncReport

__all__ = [
    "AssetDescriptor",
    "AssetSyncEngine",
    "Configuration",
    "ConfigurationError",
    "ConfigurationResolver",
    "ContentRequestError",
    "ContentResponse",
    "ContentServer",
    "EventContext",
    "HttpFetcher",
    "SyncHandle",
    "SyncReport",
    "default_configuration",
    "default_template",
    "load_template",
    "normalize_event_address",
    "render_bootstrap",
    "write_bootstrap",
]
