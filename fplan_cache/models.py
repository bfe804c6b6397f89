from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

STAGING_DIR_NAME = "fplan"


class ConfigurationError(ValueError):
    """Raised when a configuration document does not match the expected shape."""


@dataclass(frozen=True, slots=True)
class AssetDescriptor:
    """One remote file mirrored into the event cache."""

    name: str
    server_url: str
    cache_path: str
    version: str = "1"

    @classmethod
    def from_dict(cls, data: Any) -> "AssetDescriptor":
        if not isinstance(data, dict):
            raise ConfigurationError("file entry must be an object")
        values: Dict[str, str] = {}
        for key in ("name", "serverUrl", "cachePath", "version"):
            value = data.get(key)
            if not isinstance(value, str):
                raise ConfigurationError(f"file entry field {key!r} must be a string")
            values[key] = value
        cache_path = values["cachePath"].strip().lstrip("/")
        if not cache_path or ".." in Path(cache_path).parts:
            raise ConfigurationError(f"invalid cachePath: {values['cachePath']!r}")
        return cls(
            name=values["name"],
            server_url=values["serverUrl"],
            cache_path=cache_path,
            version=values["version"],
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "serverUrl": self.server_url,
            "cachePath": self.cache_path,
            "version": self.version,
        }


@dataclass(frozen=True, slots=True)
class Configuration:
    """Resolved description of what backs one floor-plan load."""

    suppress_overlay: bool
    platform_html_override_url: Optional[str]
    files: Tuple[AssetDescriptor, ...] = field(default_factory=tuple)
    android_html_url: Optional[str] = None
    ios_html_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, *, platform: str = "ios") -> "Configuration":
        if not isinstance(data, dict):
            raise ConfigurationError("configuration document must be an object")
        no_overlay = data.get("noOverlay")
        if not isinstance(no_overlay, bool):
            raise ConfigurationError("noOverlay must be a boolean")
        android = _optional_str(data, "androidHtmlUrl")
        ios = _optional_str(data, "iosHtmlUrl")
        raw_files = data.get("files")
        if not isinstance(raw_files, list):
            raise ConfigurationError("files must be an array")
        files = tuple(AssetDescriptor.from_dict(entry) for entry in raw_files)
        seen: set[str] = set()
        for descriptor in files:
            if descriptor.cache_path in seen:
                raise ConfigurationError(f"duplicate cachePath: {descriptor.cache_path}")
            seen.add(descriptor.cache_path)
        override = android if platform == "android" else ios
        return cls(
            suppress_overlay=no_overlay,
            platform_html_override_url=override or None,
            files=files,
            android_html_url=android,
            ios_html_url=ios,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "noOverlay": self.suppress_overlay,
            "androidHtmlUrl": self.android_html_url,
            "iosHtmlUrl": self.ios_html_url,
            "files": [descriptor.to_dict() for descriptor in self.files],
        }

    def remote_urls(self) -> Dict[str, str]:
        return {descriptor.cache_path: descriptor.server_url for descriptor in self.files}


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a string or null")
    return value


def normalize_event_address(url: str) -> str:
    """Reduce a floor-plan URL to its host+path cache-partition key."""
    text = (url or "").strip()
    if not text:
        raise ValueError("event url is required")
    if "://" not in text:
        text = f"https://{text}"
    parts = urlsplit(text)
    host = (parts.hostname or "").lower()
    if host.startswith("www."):
        host = host[len("www."):]
    if not host:
        raise ValueError(f"event url has no host: {url!r}")
    segments = [segment for segment in parts.path.split("/") if segment not in ("", ".", "..")]
    return "/".join([host, *segments])


def event_id_for(address: str) -> str:
    host = address.split("/", 1)[0]
    if "." not in host:
        return ""
    return host.split(".", 1)[0]


@dataclass(frozen=True, slots=True)
class EventContext:
    event_address: str
    event_id: str
    cache_directory: Path

    @classmethod
    def from_url(cls, url: str, cache_root: Path) -> "EventContext":
        address = normalize_event_address(url)
        directory = Path(cache_root).resolve() / STAGING_DIR_NAME / address
        return cls(
            event_address=address,
            event_id=event_id_for(address),
            cache_directory=directory,
        )

    @property
    def event_url(self) -> str:
        return f"https://{self.event_address}"

    @property
    def staging_root(self) -> Path:
        return self.cache_directory.parents[len(Path(self.event_address).parts) - 1]

    @property
    def index_path(self) -> Path:
        return self.cache_directory / "index.html"
