"""Topic constants for the event bus."""

# Asset sync
SYNC_STARTED = "fplan.sync.started"
SYNC_COMPLETED = "fplan.sync.completed"
SYNC_ASSET_FAILED = "fplan.sync.asset_failed"

# Configuration / bootstrap
CONFIG_FALLBACK = "fplan.config.fallback"
BOOTSTRAP_FALLBACK = "fplan.bootstrap.fallback"

# Content serving
CONTENT_FETCHED = "fplan.content.fetched"
CONTENT_FETCH_FAILED = "fplan.content.fetch_failed"

# Bridge
BRIDGE_MESSAGE = "fplan.bridge.message"
BRIDGE_DROPPED = "fplan.bridge.dropped"
BRIDGE_COMMAND = "fplan.bridge.command"

# Session lifecycle
SESSION_PHASE = "fplan.session.phase"

__all__ = [
    "SYNC_STARTED",
    "SYNC_COMPLETED",
    "SYNC_ASSET_FAILED",
    "CONFIG_FALLBACK",
    "BOOTSTRAP_FALLBACK",
    "CONTENT_FETCHED",
    "CONTENT_FETCH_FAILED",
    "BRIDGE_MESSAGE",
    "BRIDGE_DROPPED",
    "BRIDGE_COMMAND",
    "SESSION_PHASE",
]
