import json

import pytest

from runner.errors import ConfigError
from runner.ingest.registry import FeedSource, load_outlet_registry, load_signals_config


def write(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_signals_config_normalizes_languages(tmp_path, monkeypatch):
    monkeypatch.setenv("SIGNALS_RETRY_CEILING", "5")
    path = write(tmp_path, "feeds.json", [
        {
            "feed_group": "td_press",
            "urls": {"en": "https://td/en.xml", "zh-TW": "https://td/tc.xml"},
            "required_languages": ["en", "zh-TW"],
            "content_selectors": {"body": ".content"},
        },
        {"feed_group": "off", "enabled": False, "urls": {"en": "https://x/en.xml"}},
    ])
    config = load_signals_config(path)

    assert config.retry_ceiling == 5
    feed = config.feed("td_press")
    assert set(feed.urls) == {"en", "zh-Hant"}
    assert feed.required_languages == ("en", "zh-Hant")
    assert feed.merge_family == "td_press"
    assert feed.body_selectors == ".content"
    assert [f.feed_group for f in config.enabled_feeds()] == ["td_press"]


def test_missing_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_signals_config(tmp_path / "nope.json")


def test_feed_without_urls_is_config_error(tmp_path):
    path = write(tmp_path, "feeds.json", [{"feed_group": "empty", "urls": {}}])
    with pytest.raises(ConfigError):
        load_signals_config(path)


def test_derive_language_urls():
    feed = FeedSource(
        feed_group="td_notices",
        urls={"en": "https://td/en.xml"},
        required_languages=("en", "zh-Hant", "zh-Hans"),
        language_url_map={"en": "/en/", "zh-Hant": "/tc/", "zh-Hans": "/sc/"},
    )
    urls = feed.derive_language_urls({"en": "https://www.td.gov.hk/en/traffic_notices/index_id_1.html"})
    assert urls == {
        "en": "https://www.td.gov.hk/en/traffic_notices/index_id_1.html",
        "zh-Hant": "https://www.td.gov.hk/tc/traffic_notices/index_id_1.html",
        "zh-Hans": "https://www.td.gov.hk/sc/traffic_notices/index_id_1.html",
    }


def test_bundled_configs_load(monkeypatch):
    monkeypatch.delenv("SIGNAL_FEEDS_PATH", raising=False)
    monkeypatch.delenv("OUTLETS_PATH", raising=False)
    config = load_signals_config()
    assert config.feed("td_notices").required_languages == ("en", "zh-Hant", "zh-Hans")
    assert config.feed("td_special_traffic").merge_family == config.feed("td_road_closure").merge_family
    assert not config.feed("chp_press").enabled

    registry = load_outlet_registry()
    assert "hkfp" in registry.keys()
    assert registry.get("singtao").timeout_sec > registry.get("hkfp").timeout_sec
