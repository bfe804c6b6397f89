from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from diagnostics.logging_setup import configure_logging
from fplan_cache.fetcher import Fetcher, HttpFetcher
from fplan_cache.models import EventContext
from fplan_cache.resolver import ConfigurationResolver
from fplan_cache.sync import AssetSyncEngine, SyncReport
from fplan_host.config import get_cache_root, load_kit_config

logger = logging.getLogger("fplankit")


def prefetch(
    url: str,
    config: dict,
    *,
    fetcher: Optional[Fetcher] = None,
    timeout: Optional[float] = None,
) -> Optional[SyncReport]:
    """Resolve and mirror one event into the cache without a web view."""
    fetcher = fetcher or HttpFetcher(timeout=config.get("request_timeout", 30))
    context = EventContext.from_url(url, get_cache_root(config))
    resolver = ConfigurationResolver(
        fetcher,
        configuration_path=config.get("configuration_path") or "fplan-configuration.json",
        platform=config.get("html_platform") or "ios",
    )
    configuration = resolver.resolve(context.event_url)
    engine = AssetSyncEngine(
        fetcher,
        max_workers=int(config.get("max_workers") or 8),
        wipe_staging_root=bool(config.get("wipe_staging_root", True)),
    )
    logger.info("prefetch start address=%s files=%d", context.event_address, len(configuration.files))
    report = engine.sync(
        configuration,
        context.cache_directory,
        online=True,
        timeout=timeout,
        staging_root=context.staging_root,
    )
    if report is None:
        logger.warning("prefetch timed out address=%s", context.event_address)
    return report


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Mirror a floor plan event into the offline cache.")
    parser.add_argument("url", help="Event address, e.g. https://demo.expofp.com")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Kit config JSON (default: data/roaming/fplan_config.json or $FPLAN_CONFIG_PATH).",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Give up waiting after N seconds.")
    args = parser.parse_args(argv)

    info = configure_logging()
    config = load_kit_config(args.config)
    try:
        report = prefetch(args.url, config, timeout=args.timeout)
    except ValueError as exc:
        sys.stderr.write(f"Invalid event address: {exc}\n")
        return 2

    if report is None:
        sys.stderr.write("Prefetch did not finish in time.\n")
        return 1
    sys.stdout.write(
        f"Cached {report.written}/{report.total} files ({len(report.failed)} failed); log: {info['log_path']}\n"
    )
    return 0 if not report.failed else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
