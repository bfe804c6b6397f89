import json
import logging
from pathlib import Path

from conftest import FakeFetcher
from diagnostics import fs_ops, telemetry
from diagnostics.logging_setup import configure_logging
from fplan_bus import EventBus, topics
from fplan_bus.bus import publish_safely
from fplan_host import config as kit_config
from tools.fplan_prefetch import prefetch


def test_logging_baseline_writes_kv_lines(tmp_path: Path) -> None:
    info = configure_logging(tmp_path)
    logger = logging.getLogger(info["logger_name"])
    logger.info("cache warm address=%s", "acme.expofp.com")
    for handler in logger.handlers:
        handler.flush()

    log_path = Path(info["log_path"])
    assert log_path.parent == tmp_path / "logs"
    line = log_path.read_text(encoding="utf-8").strip().splitlines()[-1]
    assert line.startswith("ts=")
    assert "level=INFO" in line
    assert "msg=cache warm address=acme.expofp.com" in line


def test_telemetry_ring_is_bounded_and_toggleable() -> None:
    for index in range(600):
        telemetry.emit_metric("fetch.failed", url=f"u{index}")
    recent = telemetry.get_recent_metrics()
    assert len(recent) == 512
    assert recent[-1]["attrs"] == {"url": "u599"}

    telemetry.set_telemetry_enabled(False)
    assert telemetry.emit_metric("fetch.failed") is False
    telemetry.set_telemetry_enabled(True)


def test_bus_delivers_and_survives_failing_handler() -> None:
    bus = EventBus()
    seen = []

    def _boom(_envelope):
        raise RuntimeError("handler bug")

    bus.subscribe(topics.SYNC_COMPLETED, _boom)
    sub_id = bus.subscribe(topics.SYNC_COMPLETED, seen.append)
    envelope = bus.publish(topics.SYNC_COMPLETED, {"written": 3}, "test", session_key="acme.expofp.com")

    assert seen == [envelope]
    assert envelope.to_dict()["session_key"] == "acme.expofp.com"
    assert envelope.payload == {"written": 3}
    assert envelope.sequence == 1
    assert bus.publish(topics.SYNC_STARTED, None, "test").sequence == 2
    assert "topic=fplan.sync.completed seq=1" in envelope.describe()

    bus.unsubscribe(sub_id)
    assert bus.subscriber_count(topics.SYNC_COMPLETED) == 1
    publish_safely(None, topics.SYNC_COMPLETED, {}, "test")


def test_fs_ops_helpers(tmp_path: Path) -> None:
    target = tmp_path / "a" / "b" / "c.bin"
    assert fs_ops.write_bytes(target, b"abc") == 3
    assert target.read_bytes() == b"abc"
    assert list(target.parent.iterdir()) == [target]
    assert fs_ops.is_within(target, tmp_path / "a")
    assert not fs_ops.is_within(tmp_path / "a" / ".." / "x", tmp_path / "a")

    fs_ops.safe_rmtree(tmp_path / "a")
    assert not (tmp_path / "a").exists()
    fs_ops.safe_rmtree(tmp_path / "a")


def test_kit_config_defaults_are_written(tmp_path: Path) -> None:
    path = tmp_path / "roaming" / "fplan_config.json"
    loaded = kit_config.load_kit_config(path)
    assert loaded == kit_config.default_kit_config()
    assert json.loads(path.read_text(encoding="utf-8"))["scheme"] == "fplan"


def test_kit_config_merges_and_validates(tmp_path: Path) -> None:
    path = tmp_path / "fplan_config.json"
    kit_config.save_kit_config({"cache_root": str(tmp_path / "cache"), "html_platform": "tizen"}, path)
    loaded = kit_config.load_kit_config(path)
    assert loaded["html_platform"] == "ios"
    assert loaded["max_workers"] == 8
    assert kit_config.get_cache_root(loaded) == tmp_path / "cache"


def test_kit_config_unreadable_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "fplan_config.json"
    path.write_text("{oops", encoding="utf-8")
    assert kit_config.load_kit_config(path) == kit_config.default_kit_config()


def test_kit_config_path_env_override(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv(kit_config.CONFIG_ENV_VAR, str(tmp_path / "custom.json"))
    assert kit_config.config_path() == tmp_path / "custom.json"


def test_prefetch_mirrors_event(tmp_path: Path) -> None:
    base = "https://acme.expofp.com"
    document = {
        "noOverlay": True,
        "files": [{"name": "expofp.js", "serverUrl": f"{base}/expofp.js", "cachePath": "expofp.js", "version": "1"}],
    }
    fetcher = FakeFetcher(
        {f"{base}/fplan-configuration.json": json.dumps(document).encode("utf-8"), f"{base}/expofp.js": b"js"}
    )
    config = kit_config.default_kit_config()
    config["cache_root"] = str(tmp_path)

    report = prefetch("acme.expofp.com", config, fetcher=fetcher, timeout=5)

    assert report is not None and report.ok
    assert (tmp_path / "fplan" / "acme.expofp.com" / "expofp.js").read_bytes() == b"js"
