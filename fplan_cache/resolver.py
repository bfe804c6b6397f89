from __future__ import annotations

import json
import logging
from typing import List, Optional, Tuple

from diagnostics.telemetry import emit_metric
from fplan_bus import topics
from fplan_bus.bus import EventBus, publish_safely

from .fetcher import Fetcher
from .models import AssetDescriptor, Configuration, ConfigurationError

logger = logging.getLogger(__name__)

CONFIGURATION_PATH = "fplan-configuration.json"

# (name, server path relative to the event url, cache path)
_DATA_FILES: List[Tuple[str, str]] = [
    ("fp.svg.js", "data/fp.svg.js"),
    ("data.js", "data/data.js"),
    ("wf.data.js", "data/wf.data.js"),
    ("demo.png", "data/demo.png"),
]
_PACKAGE_FILES: List[str] = [
    "expofp.js",
    "floorplan.js",
    "vendors~floorplan.js",
    "expofp-overlay.png",
    "free.js",
    "slider.js",
    "fonts/oswald-v17-cyrillic_latin-300.woff2",
    "fonts/oswald-v17-cyrillic_latin-500.woff2",
    "vendor/fa/css/fontawesome-all.min.css",
    "vendor/fa/webfonts/fa-brands-400.woff2",
    "vendor/fa/webfonts/fa-light-300.woff2",
    "vendor/fa/webfonts/fa-regular-400.woff2",
    "vendor/fa/webfonts/fa-solid-900.woff2",
    "vendor/perfect-scrollbar/css/perfect-scrollbar.css",
    "vendor/sanitize-css/sanitize.css",
]
LOCALES = ("ar", "de", "es", "fr", "it", "ko", "nl", "pt", "ru", "sv", "th", "tr", "vi", "zh")
PACKAGE_PREFIX = "packages/master"


def default_configuration(base_url: str) -> Configuration:
    """Built-in asset list used whenever the remote document is unusable."""
    base = base_url.rstrip("/")
    files: List[AssetDescriptor] = []
    for name, path in _DATA_FILES:
        files.append(AssetDescriptor(name, f"{base}/{path}", path, "1"))
    package_paths = _PACKAGE_FILES + [f"locales/{locale}.json" for locale in LOCALES]
    for path in package_paths:
        name = path.rsplit("/", 1)[-1]
        files.append(AssetDescriptor(name, f"{base}/{PACKAGE_PREFIX}/{path}", path, "1"))
    return Configuration(
        suppress_overlay=True,
        platform_html_override_url=None,
        files=tuple(files),
    )


class ConfigurationResolver:
    def __init__(
        self,
        fetcher: Fetcher,
        *,
        configuration_path: str = CONFIGURATION_PATH,
        platform: str = "ios",
        bus: Optional[EventBus] = None,
    ):
        self._fetcher = fetcher
        self._configuration_path = configuration_path.lstrip("/")
        self._platform = platform
        self._bus = bus

    def configuration_url(self, event_base_url: str) -> str:
        return f"{event_base_url.rstrip('/')}/{self._configuration_path}"

    def resolve(
        self,
        event_base_url: str,
        local_override: Optional[Configuration] = None,
    ) -> Configuration:
        if local_override is not None:
            return local_override

        url = self.configuration_url(event_base_url)
        try:
            data = self._fetcher.fetch(url)
        except Exception as exc:
            # Fetchers other than HttpFetcher may raise; resolution must not.
            logger.warning("configuration fetch raised url=%s error=%s", url, exc)
            data = None
        if not data:
            return self._fallback(event_base_url, url, "unreachable")
        try:
            document = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            return self._fallback(event_base_url, url, f"invalid json: {exc}")
        try:
            configuration = Configuration.from_dict(document, platform=self._platform)
        except ConfigurationError as exc:
            return self._fallback(event_base_url, url, f"invalid document: {exc}")
        logger.info("configuration resolved url=%s files=%d", url, len(configuration.files))
        return configuration

    def _fallback(self, event_base_url: str, url: str, reason: str) -> Configuration:
        logger.warning("configuration fallback url=%s reason=%s", url, reason)
        emit_metric("config.fallback", url=url, reason=reason)
        publish_safely(
            self._bus,
            topics.CONFIG_FALLBACK,
            {"url": url, "reason": reason},
            "fplan_cache.resolver",
        )
        return default_configuration(event_base_url)
