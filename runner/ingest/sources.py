import hashlib
import re
import sys
from datetime import datetime, timezone
from urllib.parse import urlparse

import feedparser
from bs4 import BeautifulSoup
from pydantic import ValidationError

from runner.errors import AdapterFetchError, ConfigError
from runner.ingest.extract import (
    HEADERS,
    clean_feed_text,
    extract_by_selectors,
    extract_main_text,
    fetch_url,
)
from runner.ingest.models import LANG_EN, LANG_ZH_HANS, LANG_ZH_HANT, RawItem, utc_now
from runner.ingest.registry import FeedSource

_GENERIC_STEMS = {"index", "default", "main", "home"}
_EXT_RE = re.compile(r"\.(htm|html|xml|php|aspx?)$", re.IGNORECASE)

XML_LANG_SUFFIXES = {"EN": LANG_EN, "TC": LANG_ZH_HANT, "SC": LANG_ZH_HANS}


def struct_to_dt(value) -> datetime | None:
    if not value:
        return None
    try:
        return datetime(*value[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _parse_pubdate(raw: str | None) -> datetime | None:
    if not raw:
        return None
    raw = raw.strip()
    for fmt in ("%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y/%m/%d %H:%M", "%Y-%m-%d"):
        try:
            return datetime.strptime(raw, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def notice_id_from_link(link: str, feed: FeedSource) -> str:
    """Stable per-notice id shared by every language variant of one notice."""
    if feed.notice_id_regex:
        try:
            m = re.search(feed.notice_id_regex, link)
        except re.error:
            print(f"FEED_BAD_REGEX feed_group={feed.feed_group} regex={feed.notice_id_regex}", file=sys.stderr)
            m = None
        if m and m.groups() and m.group(1):
            return m.group(1)

    path = urlparse(link).path or ""
    parts = [p for p in path.split("/") if p]
    if not parts:
        return ""
    stem = _EXT_RE.sub("", parts[-1])
    if len(stem) < 3 or stem.lower() in _GENERIC_STEMS:
        # language segments would split the group, so skip them
        lang_segments = {v.strip("/") for v in feed.language_url_map.values()}
        tail = [p for p in parts[-3:-1] if p not in lang_segments]
        stem = "_".join(tail + [stem])
        stem = re.sub(r"[^a-zA-Z0-9_]", "", stem)
    return stem if len(stem) >= 3 else ""


class SourceAdapter:
    """Reach one kind of source and parse the minimum RawItem fields."""

    name = "base"

    def __init__(self, fetch=fetch_url):
        self.fetch = fetch

    def fetch_raw_items(self, feed: FeedSource) -> list[RawItem]:
        raise NotImplementedError

    def fetch_content(self, url: str, language: str, feed: FeedSource, min_body: int = 20) -> tuple[str, str]:
        html, err = self.fetch(url, HEADERS)
        if err:
            raise AdapterFetchError(feed.feed_group, f"{language} {err}")
        if feed.body_selectors:
            title, body = extract_by_selectors(
                html or "", feed.title_selectors, feed.body_selectors, min_body=max(min_body, 50)
            )
        else:
            title, body = "", extract_main_text(html or "")
        if len(body) < min_body:
            raise AdapterFetchError(feed.feed_group, f"{language} no meaningful body content")
        return title, body

    def _to_raw_item(self, feed: FeedSource, **fields) -> RawItem | None:
        try:
            return RawItem(feed_group=feed.feed_group, **fields)
        except ValidationError as e:
            print(
                f"FEED_ITEM_REJECTED feed_group={feed.feed_group} "
                f"link={fields.get('link')} errors={e.error_count()}",
                file=sys.stderr,
            )
            return None


class RssFeedAdapter(SourceAdapter):
    name = "rss"

    def fetch_raw_items(self, feed: FeedSource) -> list[RawItem]:
        items: list[RawItem] = []
        errors: list[str] = []
        for language, url in feed.urls.items():
            text, err = self.fetch(url, HEADERS)
            if err:
                errors.append(f"{language}:{err}")
                print(f"FEED_LANG_FAIL feed_group={feed.feed_group} lang={language} err={err}", file=sys.stderr)
                continue
            parsed = feedparser.parse(text or "")
            if parsed.bozo and not parsed.entries:
                errors.append(f"{language}:parse_error")
                continue
            for entry in parsed.entries:
                link = entry.get("link") or ""
                body = entry.get("description") or entry.get("summary") or ""
                if not body and entry.get("content"):
                    body = entry["content"][0].get("value") or ""
                published = (
                    struct_to_dt(entry.get("published_parsed"))
                    or struct_to_dt(entry.get("updated_parsed"))
                    or utc_now()
                )
                item = self._to_raw_item(
                    feed,
                    source_id=f"{feed.feed_group}:{language}",
                    language=language,
                    title=clean_feed_text(entry.get("title")),
                    link=link,
                    body=clean_feed_text(body),
                    published_at=published,
                    external_id=notice_id_from_link(link, feed) if link else "",
                )
                if item is not None:
                    items.append(item)
        if errors and len(errors) == len(feed.urls):
            raise AdapterFetchError(feed.feed_group, "; ".join(errors))
        return items


class XmlDataFeedAdapter(SourceAdapter):
    """Single multilingual XML document with ``Title_EN``/``Detail_TC`` style fields."""

    name = "xml_data"

    def fetch_raw_items(self, feed: FeedSource) -> list[RawItem]:
        url = feed.urls.get("multilingual")
        if not url:
            raise ConfigError(f"{feed.feed_group}: xml_data feed needs a multilingual url")
        text, err = self.fetch(url, HEADERS)
        if err:
            raise AdapterFetchError(feed.feed_group, err)

        soup = BeautifulSoup(text or "", "xml")
        items: list[RawItem] = []
        for node in soup.find_all("item"):
            link = self._field(node, "Link")
            published = _parse_pubdate(self._field(node, "PublicationDate")) or utc_now()
            anchor = link or self._field(node, "Title_EN") or self._field(node, "Title_TC")
            if not anchor:
                continue
            external_id = hashlib.md5(f"{anchor}|{published.date().isoformat()}".encode("utf-8")).hexdigest()[:12]
            for suffix, language in XML_LANG_SUFFIXES.items():
                title = clean_feed_text(self._field(node, f"Title_{suffix}"))
                if not title:
                    continue
                item = self._to_raw_item(
                    feed,
                    source_id=f"{feed.feed_group}:xml",
                    language=language,
                    title=title,
                    link=link or url,
                    body=clean_feed_text(self._field(node, f"Detail_{suffix}")),
                    published_at=published,
                    external_id=external_id,
                )
                if item is not None:
                    items.append(item)
        return items

    @staticmethod
    def _field(node, name: str) -> str:
        el = node.find(name)
        return el.get_text().strip() if el is not None else ""


def default_adapters(fetch=fetch_url) -> dict[str, SourceAdapter]:
    return {
        RssFeedAdapter.name: RssFeedAdapter(fetch),
        XmlDataFeedAdapter.name: XmlDataFeedAdapter(fetch),
    }
