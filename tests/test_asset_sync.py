import random
import threading
import time
from pathlib import Path

from conftest import FakeFetcher
from diagnostics import telemetry
from fplan_bus import EventBus, topics
from fplan_cache.models import AssetDescriptor, Configuration, EventContext
from fplan_cache.sync import AssetSyncEngine

BASE = "https://acme.expofp.com"


def _config(*paths: str) -> Configuration:
    files = tuple(AssetDescriptor(p.rsplit("/", 1)[-1], f"{BASE}/{p}", p, "1") for p in paths)
    return Configuration(suppress_overlay=True, platform_html_override_url=None, files=files)


class _Token:
    def __init__(self) -> None:
        self.current = True

    def is_current(self) -> bool:
        return self.current


def test_online_sync_writes_every_cache_path(tmp_path: Path) -> None:
    target = tmp_path / "fplan" / "acme.expofp.com"
    config = _config("expofp.js", "data/data.js", "vendor/fa/css/all.css")
    fetcher = FakeFetcher({f"{BASE}/expofp.js": b"js", f"{BASE}/data/data.js": b"data"})
    report = AssetSyncEngine(fetcher).sync(config, target, online=True, timeout=5)

    assert report is not None
    assert report.total == 3
    assert report.written == 2
    assert report.failed == ("vendor/fa/css/all.css",)
    assert (target / "expofp.js").read_bytes() == b"js"
    assert (target / "data" / "data.js").read_bytes() == b"data"
    # a failed download still leaves an empty file behind
    assert (target / "vendor" / "fa" / "css" / "all.css").read_bytes() == b""
    assert telemetry.count_metric("sync.asset_failed") == 1


def test_online_sync_removes_stale_files(tmp_path: Path) -> None:
    staging = tmp_path / "fplan"
    target = staging / "acme.expofp.com"
    (target / "old").mkdir(parents=True)
    (target / "old" / "stale.js").write_text("stale", encoding="utf-8")
    (staging / "other.expofp.com").mkdir()
    fetcher = FakeFetcher(default=b"fresh")

    AssetSyncEngine(fetcher).sync(_config("new.js"), target, online=True, timeout=5)

    assert not (target / "old").exists()
    assert not (staging / "other.expofp.com").exists()
    assert (target / "new.js").read_bytes() == b"fresh"


def test_staging_root_kept_when_wipe_disabled(tmp_path: Path) -> None:
    staging = tmp_path / "fplan"
    target = staging / "acme.expofp.com"
    (staging / "other.expofp.com").mkdir(parents=True)
    (target).mkdir(parents=True)
    (target / "stale.js").write_text("stale", encoding="utf-8")
    engine = AssetSyncEngine(FakeFetcher(default=b"x"), wipe_staging_root=False)

    engine.sync(_config("a.js"), target, online=True, timeout=5)

    assert (staging / "other.expofp.com").is_dir()
    assert not (target / "stale.js").exists()


def test_offline_sync_touches_nothing(tmp_path: Path) -> None:
    target = tmp_path / "fplan" / "acme.expofp.com"
    target.mkdir(parents=True)
    (target / "expofp.js").write_bytes(b"cached")
    fetcher = FakeFetcher(default=b"remote")
    completions = []

    handle = AssetSyncEngine(fetcher).start(
        _config("expofp.js", "floorplan.js"), target, online=False, on_complete=completions.append
    )

    assert handle.done()
    assert fetcher.calls == []
    assert (target / "expofp.js").read_bytes() == b"cached"
    assert not (target / "floorplan.js").exists()
    assert len(completions) == 1
    assert completions[0].cache_present is True
    assert completions[0].online is False


def test_offline_sync_reports_missing_cache(tmp_path: Path) -> None:
    report = AssetSyncEngine(FakeFetcher()).sync(_config("a.js"), tmp_path / "missing", online=False)
    assert report.cache_present is False
    assert not (tmp_path / "missing").exists()


def test_empty_configuration_completes_immediately(tmp_path: Path) -> None:
    completions = []
    handle = AssetSyncEngine(FakeFetcher()).start(
        _config(), tmp_path / "fplan" / "x", online=True, on_complete=completions.append
    )
    assert handle.done()
    assert len(completions) == 1
    assert (tmp_path / "fplan" / "x").is_dir()


def test_fifty_assets_random_order_completes_exactly_once(tmp_path: Path) -> None:
    paths = [f"assets/file_{i:02d}.bin" for i in range(50)]
    for seed in range(5):
        rng = random.Random(seed)
        delays = {f"{BASE}/{p}": rng.uniform(0, 0.02) for p in paths}
        settled = []
        settled_lock = threading.Lock()

        def _sleep(url: str) -> None:
            time.sleep(delays[url])
            with settled_lock:
                settled.append(url)

        fetcher = FakeFetcher(default=b"payload", before_return=_sleep)
        completions = []
        seen_at_completion = []

        def _done(report) -> None:
            with settled_lock:
                seen_at_completion.append(len(settled))
            completions.append(report)

        target = tmp_path / f"run{seed}" / "fplan" / "acme.expofp.com"
        handle = AssetSyncEngine(fetcher, max_workers=16).start(
            _config(*paths), target, online=True, on_complete=_done
        )
        report = handle.wait(timeout=10)

        assert report is not None
        assert len(completions) == 1
        assert seen_at_completion == [50]
        assert report.written == 50
        assert handle.pending == 0
        assert all((target / p).read_bytes() == b"payload" for p in paths)


def test_superseded_sync_discards_completion(tmp_path: Path) -> None:
    token = _Token()
    release = threading.Event()
    fetcher = FakeFetcher(default=b"late", before_return=lambda _url: release.wait(5))
    completions = []
    target = tmp_path / "fplan" / "acme.expofp.com"

    handle = AssetSyncEngine(fetcher).start(
        _config("a.js", "b.js"), target, online=True, on_complete=completions.append, token=token
    )
    token.current = False
    release.set()
    report = handle.wait(timeout=5)

    assert report is not None
    assert report.superseded is True
    assert completions == []
    assert not (target / "a.js").exists()


def test_sync_publishes_lifecycle_topics(tmp_path: Path) -> None:
    bus = EventBus()
    started, completed = [], []
    bus.subscribe(topics.SYNC_STARTED, started.append)
    bus.subscribe(topics.SYNC_COMPLETED, completed.append)

    AssetSyncEngine(FakeFetcher(default=b"x"), bus=bus).sync(
        _config("a.js"), tmp_path / "fplan" / "e", online=True, timeout=5
    )

    assert len(started) == 1
    assert started[0].payload["total"] == 1
    assert len(completed) == 1
    assert completed[0].payload["written"] == 1


def test_raising_fetcher_counts_as_failure(tmp_path: Path) -> None:
    class _Boom:
        def fetch(self, url):
            raise RuntimeError("boom")

    target = tmp_path / "fplan" / "e"
    report = AssetSyncEngine(_Boom()).sync(_config("a.js"), target, online=True, timeout=5)
    assert report.failed == ("a.js",)
    assert (target / "a.js").read_bytes() == b""


def test_prepare_wipes_explicit_staging_root(tmp_path: Path) -> None:
    staging = tmp_path / "fplan"
    target = staging / "acme.expofp.com" / "2024"
    (staging / "other.expofp.com").mkdir(parents=True)
    engine = AssetSyncEngine(FakeFetcher())

    engine.prepare(target, True, staging)
    engine.prepare(tmp_path / "offline", False)

    assert not (staging / "other.expofp.com").exists()
    assert target.is_dir()
    assert not (tmp_path / "offline").exists()


def test_path_address_wipes_whole_staging_root(tmp_path: Path) -> None:
    context = EventContext.from_url("https://acme.expofp.com/floor", tmp_path)
    other = tmp_path.resolve() / "fplan" / "other.expofp.com"
    other.mkdir(parents=True)
    engine = AssetSyncEngine(FakeFetcher(default=b"x"))

    engine.sync(_config("a.js"), context.cache_directory, True, timeout=5, staging_root=context.staging_root)

    assert context.staging_root == tmp_path.resolve() / "fplan"
    assert not other.exists()
    assert (context.cache_directory / "a.js").read_bytes() == b"x"


def test_sync_outside_staging_root_keeps_siblings(tmp_path: Path) -> None:
    documents = tmp_path / "user_docs"
    target = documents / "cache"
    target.mkdir(parents=True)
    (target / "stale.js").write_text("stale", encoding="utf-8")
    (documents / "important.txt").write_text("keep me", encoding="utf-8")
    engine = AssetSyncEngine(FakeFetcher(default=b"x"))

    report = engine.sync(_config("a.js"), target, True, timeout=5)

    assert report is not None and report.ok
    assert (documents / "important.txt").read_text(encoding="utf-8") == "keep me"
    assert not (target / "stale.js").exists()
    assert (target / "a.js").read_bytes() == b"x"
    assert telemetry.count_metric("sync.wipe_refused") == 1


def test_explicit_root_must_contain_target(tmp_path: Path) -> None:
    unrelated = tmp_path / "elsewhere" / "fplan"
    (unrelated / "keep").mkdir(parents=True)
    target = tmp_path / "fplan" / "acme.expofp.com"
    engine = AssetSyncEngine(FakeFetcher(default=b"x"))

    engine.prepare(target, True, unrelated)

    assert (unrelated / "keep").is_dir()
    assert target.is_dir()
    assert telemetry.count_metric("sync.wipe_refused") == 1


def test_file_callback_fires_per_asset_before_completion(tmp_path: Path) -> None:
    events = []
    events_lock = threading.Lock()

    def _on_file(cache_path: str, ok: bool) -> None:
        with events_lock:
            events.append((cache_path, ok))

    def _on_complete(report) -> None:
        with events_lock:
            events.append(("complete", report.written))

    fetcher = FakeFetcher({f"{BASE}/a.js": b"a", f"{BASE}/b.js": b"b"})
    handle = AssetSyncEngine(fetcher).start(
        _config("a.js", "b.js", "missing.js"),
        tmp_path / "fplan" / "e",
        online=True,
        on_complete=_on_complete,
        on_file=_on_file,
    )
    handle.wait(timeout=5)

    assert events[-1] == ("complete", 2)
    assert sorted(events[:-1]) == [("a.js", True), ("b.js", True), ("missing.js", False)]


def test_superseded_sync_skips_file_callback(tmp_path: Path) -> None:
    token = _Token()
    release = threading.Event()
    fetcher = FakeFetcher(default=b"late", before_return=lambda _url: release.wait(5))
    settled = []

    handle = AssetSyncEngine(fetcher).start(
        _config("a.js", "b.js"),
        tmp_path / "fplan" / "e",
        online=True,
        token=token,
        on_file=lambda path, ok: settled.append(path),
    )
    token.current = False
    release.set()
    handle.wait(timeout=5)

    assert settled == []
