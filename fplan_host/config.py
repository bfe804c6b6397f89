# =============================================================================
# NAV INDEX (search these tags)
# [NAV-00] Imports / constants
# [NAV-10] Config loading (defaults/roaming/env)
# [NAV-20] Public getters
# [NAV-99] End
# =============================================================================

# === [NAV-00] Imports / constants ============================================
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("data/roaming/fplan_config.json")
CONFIG_ENV_VAR = "FPLAN_CONFIG_PATH"
HTML_PLATFORMS = ["ios", "android"]
_DEFAULT_KIT_CONFIG = {
    "cache_root": "data/cache",
    "scheme": "fplan",
    "request_timeout": 30,
    "max_workers": 8,
    "html_platform": "ios",
    "configuration_path": "fplan-configuration.json",
    "wipe_staging_root": True,
    "telemetry_enabled": True,
}


# === [NAV-10] Config loading (defaults/roaming/env) ==========================
def config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    return Path(override) if override else CONFIG_PATH


def default_kit_config() -> Dict:
    return dict(_DEFAULT_KIT_CONFIG)


def load_kit_config(path: Optional[Path] = None) -> Dict:
    path = path or config_path()
    if not path.exists():
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(_DEFAULT_KIT_CONFIG, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("could not write default config path=%s error=%s", path, exc)
        return default_kit_config()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("config unreadable, using defaults path=%s error=%s", path, exc)
        return default_kit_config()
    if not isinstance(data, dict):
        return default_kit_config()
    for key, value in _DEFAULT_KIT_CONFIG.items():
        data.setdefault(key, value)
    if data.get("html_platform") not in HTML_PLATFORMS:
        data["html_platform"] = _DEFAULT_KIT_CONFIG["html_platform"]
    return data


def save_kit_config(data: Dict, path: Optional[Path] = None) -> None:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


# === [NAV-20] Public getters ==================================================
def get_cache_root(config: Optional[Dict] = None) -> Path:
    config = config if config is not None else load_kit_config()
    return Path(config.get("cache_root") or _DEFAULT_KIT_CONFIG["cache_root"])


# === [NAV-99] End =============================================================
__all__ = [
    "CONFIG_PATH",
    "CONFIG_ENV_VAR",
    "HTML_PLATFORMS",
    "config_path",
    "default_kit_config",
    "load_kit_config",
    "save_kit_config",
    "get_cache_root",
]
