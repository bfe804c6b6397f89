from pathlib import Path

import pytest

from fplan_cache.models import STAGING_DIR_NAME, EventContext, normalize_event_address


def test_www_scheme_and_query_do_not_change_partition_key(tmp_path: Path) -> None:
    a = EventContext.from_url("https://www.acme.expofp.com/floor?x=1", tmp_path)
    b = EventContext.from_url("https://acme.expofp.com/floor", tmp_path)
    assert a.event_address == b.event_address == "acme.expofp.com/floor"
    assert a.cache_directory == b.cache_directory


def test_address_normalization_variants() -> None:
    assert normalize_event_address("http://www.demo.expofp.com/") == "demo.expofp.com"
    assert normalize_event_address("demo.expofp.com") == "demo.expofp.com"
    assert normalize_event_address("https://Demo.ExpoFP.com#top") == "demo.expofp.com"
    assert normalize_event_address("https://demo.expofp.com/../../etc") == "demo.expofp.com/etc"


def test_event_id_is_leading_label(tmp_path: Path) -> None:
    context = EventContext.from_url("https://www.acme.expofp.com/floor", tmp_path)
    assert context.event_id == "acme"
    assert EventContext.from_url("http://localhost/x", tmp_path).event_id == ""


def test_cache_directory_layout(tmp_path: Path) -> None:
    context = EventContext.from_url("https://acme.expofp.com/floor", tmp_path)
    assert context.cache_directory == tmp_path.resolve() / STAGING_DIR_NAME / "acme.expofp.com" / "floor"
    assert context.staging_root == tmp_path.resolve() / STAGING_DIR_NAME
    assert context.index_path == context.cache_directory / "index.html"
    assert context.event_url == "https://acme.expofp.com/floor"


def test_blank_url_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        EventContext.from_url("   ", tmp_path)
