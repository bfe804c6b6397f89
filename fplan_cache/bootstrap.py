from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from diagnostics.fs_ops import ensure_parent
from diagnostics.telemetry import emit_metric
from fplan_bus import topics
from fplan_bus.bus import EventBus, publish_safely

from .fetcher import Fetcher, fetch_text

logger = logging.getLogger(__name__)

TEMPLATE_PATH = Path(__file__).resolve().parent / "templates" / "index.html"

PLACEHOLDER_URL = "$url#"
PLACEHOLDER_EVENT_ID = "$eventId#"
PLACEHOLDER_NO_OVERLAY = "$noOverlay#"
PLACEHOLDER_AUTO_INIT = "$autoInit#"


def _js_bool(value: bool) -> str:
    return "true" if value else "false"


def default_template() -> str:
    return TEMPLATE_PATH.read_text(encoding="utf-8")


def render_bootstrap(
    template: str,
    *,
    base_url: str,
    event_id: str,
    no_overlay: bool,
    auto_init: bool,
) -> str:
    return (
        template.replace(PLACEHOLDER_URL, base_url)
        .replace(PLACEHOLDER_EVENT_ID, event_id)
        .replace(PLACEHOLDER_NO_OVERLAY, _js_bool(no_overlay))
        .replace(PLACEHOLDER_AUTO_INIT, _js_bool(auto_init))
    )


def write_bootstrap(path: Path, html: str) -> Path:
    target = ensure_parent(path)
    target.write_text(html, encoding="utf-8")
    return target


def load_template(
    fetcher: Fetcher,
    override_url: Optional[str],
    online: bool,
    *,
    bus: Optional[EventBus] = None,
) -> str:
    """Return the platform override template when reachable, else the bundled one."""
    if not (online and override_url):
        return default_template()
    try:
        text = fetch_text(fetcher, override_url)
    except Exception as exc:
        logger.warning("bootstrap fetch raised url=%s error=%s", override_url, exc)
        text = None
    if text and text.strip():
        return text
    logger.warning("bootstrap fallback url=%s", override_url)
    emit_metric("bootstrap.fallback", url=override_url)
    publish_safely(bus, topics.BOOTSTRAP_FALLBACK, {"url": override_url}, "fplan_cache.bootstrap")
    return default_template()
