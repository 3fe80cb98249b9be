from datetime import datetime

import pytest
from pydantic import ValidationError

from runner.ingest.models import (
    ERROR_LOG_LIMIT,
    LanguageContent,
    RawItem,
    Signal,
    normalize_language,
)
from tests.fakes import T0


@pytest.mark.parametrize(
    "raw,expected",
    [("en", "en"), ("EN", "en"), ("zh-TW", "zh-Hant"), ("zh-HK", "zh-Hant"), ("tc", "zh-Hant"), ("zh-CN", "zh-Hans"), ("sc", "zh-Hans")],
)
def test_language_aliases(raw, expected):
    assert normalize_language(raw) == expected


def test_raw_item_rejects_empty_title():
    with pytest.raises(ValidationError):
        RawItem(source_id="s", feed_group="g", language="en", title="  ", link="https://a/b", published_at=T0)


def test_raw_item_naive_datetime_becomes_utc():
    item = RawItem(
        source_id="s", feed_group="g", language="zh-TW", title="t", link="https://a/b",
        published_at=datetime(2024, 6, 1, 8, 0),
    )
    assert item.published_at.tzinfo is not None
    assert item.language == "zh-Hant"
    assert item.body == ""


def test_scraped_at_requires_body():
    with pytest.raises(ValueError):
        LanguageContent(title="t", body="   ", scraped_at=T0)
    assert LanguageContent(title="t", body="text", scraped_at=T0).has_body


def test_from_dict_drops_scraped_at_without_body():
    content = LanguageContent.from_dict({"title": "t", "body": "", "scraped_at": T0.isoformat()})
    assert content.scraped_at is None


def test_signal_row_shape():
    signal = Signal(
        source_identifier="td_press_x1",
        feed_group="td_press",
        notice_id="x1",
        languages={"en": LanguageContent(title="Flood warning", body="Heavy rain", link="https://a/en", scraped_at=T0)},
        meta_urls={"en": "https://a/en", "zh-Hant": "https://a/tc"},
        retry_count=2,
        published_at=T0,
        updated_at=T0,
    )
    row = signal.to_row()
    assert row["scraping_attempts"] == 2
    assert row["content"]["meta"]["urls"]["zh-Hant"] == "https://a/tc"
    assert row["content"]["languages"]["en"]["body"] == "Heavy rain"

    back = Signal.from_row(row)
    assert back.missing_languages() == ["zh-Hant"]
    assert back.published_at == T0


def test_error_log_is_capped():
    signal = Signal(source_identifier="s", feed_group="g")
    for i in range(ERROR_LOG_LIMIT + 5):
        signal.log_error(f"boom {i}", "content_scraping", "en")
    assert len(signal.error_log) == ERROR_LOG_LIMIT
    assert signal.error_log[-1]["error"] == f"boom {ERROR_LOG_LIMIT + 4}"
    assert signal.error_log[0]["language"] == "en"
