"""Fingerprinting, grouping and monotonic merging of raw feed items into signals."""

import copy
import hashlib
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import urlparse

from runner.ingest.extract import content_hash, word_count
from runner.ingest.models import (
    LANG_EN,
    STATUS_COMPLETE,
    STATUS_ENGLISH_ONLY,
    STATUS_PARTIAL,
    LanguageContent,
    RawItem,
    Signal,
)
from runner.ingest.registry import FeedSource

_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)


def normalize_title(title: str) -> str:
    text = unicodedata.normalize("NFKC", title or "").lower()
    text = _PUNCT_RE.sub(" ", text)
    return " ".join(text.split())


class FingerprintStrategy:
    """Maps a RawItem to the id part of its grouping key.

    Prefers the adapter's ``external_id``; otherwise hashes the normalized
    title, the link host and the publication day.
    """

    def item_id(self, item: RawItem) -> str:
        if item.external_id:
            return item.external_id
        host = (urlparse(item.link).hostname or "").lower()
        day = item.published_at.date().isoformat()
        raw = f"{normalize_title(item.title)}|{host}|{day}"
        return "h" + hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]

    def key(self, item: RawItem, feed: FeedSource | None) -> str:
        family = feed.merge_family if feed else item.feed_group
        return f"{family}_{self.item_id(item)}"


@dataclass
class SignalUpdate:
    fingerprint: str
    feed_group: str
    items: list[RawItem] = field(default_factory=list)

    def languages(self) -> dict[str, RawItem]:
        """Winner per language: newest ``published_at``, then non-empty body."""
        winners: dict[str, RawItem] = {}
        for item in self.items:
            current = winners.get(item.language)
            if current is None or _rank(item) > _rank(current):
                winners[item.language] = item
        return winners

    def published_at(self) -> datetime:
        return min(item.published_at for item in self.items)

    def notice_id(self) -> str:
        for item in self.items:
            if item.external_id:
                return item.external_id
        return self.fingerprint.rsplit("_", 1)[-1]


def _rank(item: RawItem) -> tuple:
    return (item.published_at, bool(item.body))


def group(
    items: list[RawItem],
    feeds: dict[str, FeedSource],
    strategy: FingerprintStrategy | None = None,
) -> list[SignalUpdate]:
    strategy = strategy or FingerprintStrategy()
    grouped: dict[str, SignalUpdate] = {}
    for item in items:
        key = strategy.key(item, feeds.get(item.feed_group))
        update = grouped.get(key)
        if update is None:
            update = SignalUpdate(fingerprint=key, feed_group=item.feed_group)
            grouped[key] = update
        update.items.append(item)
        if item.feed_group < update.feed_group:
            update.feed_group = item.feed_group
    return list(grouped.values())


def required_languages(signal: Signal, feed: FeedSource | None = None) -> list[str]:
    """Languages a signal needs a body in: its known URLs plus the feed's configured set."""
    langs = list(signal.meta_urls)
    if feed is not None:
        langs += [lang for lang in feed.required_languages if lang not in langs]
    return langs


def compute_status(signal: Signal, feed: FeedSource | None = None) -> str:
    required = required_languages(signal, feed)
    if required and all(signal.has_body(lang) for lang in required):
        return STATUS_COMPLETE
    with_body = [lang for lang in signal.languages if signal.has_body(lang)]
    if feed is not None and feed.english_only and with_body == [LANG_EN]:
        return STATUS_ENGLISH_ONLY
    return STATUS_PARTIAL


def language_content(title: str, body: str, link: str, now: datetime) -> LanguageContent:
    body = body or ""
    return LanguageContent(
        title=title,
        body=body,
        link=link,
        scraped_at=now if body.strip() else None,
        content_hash=content_hash(title, body),
        word_count=word_count(f"{title} {body}"),
    )


def merge_update(
    existing: Signal | None,
    update: SignalUpdate,
    feed: FeedSource | None,
    now: datetime,
) -> tuple[Signal, bool]:
    """Fold one group into a stored signal (or a fresh one).

    Merging only adds: a language is added when absent, a body only fills an
    empty one, and URLs are only added. Returns ``(signal, changed)``.
    """
    if existing is None:
        signal = Signal(
            source_identifier=update.fingerprint,
            feed_group=update.feed_group,
            category=feed.category if feed else "administrative",
            notice_id=update.notice_id(),
            published_at=update.published_at(),
            discovered_at=now,
            created_at=now,
            updated_at=now,
        )
        changed = True
    else:
        signal = copy.deepcopy(existing)
        changed = False
        published = update.published_at()
        if signal.published_at is None or published < signal.published_at:
            signal.published_at = published
            changed = True

    for lang, item in update.languages().items():
        current = signal.languages.get(lang)
        if current is None:
            signal.languages[lang] = language_content(item.title, item.body, item.link, now)
            changed = True
        elif not current.has_body and item.body:
            signal.languages[lang] = language_content(
                current.title or item.title, item.body, current.link or item.link, now
            )
            changed = True
        if lang not in signal.meta_urls:
            signal.meta_urls[lang] = item.link
            changed = True

    if feed is not None:
        derived = feed.derive_language_urls(signal.meta_urls)
        if derived != signal.meta_urls:
            signal.meta_urls = derived
            changed = True

    status = compute_status(signal, feed)
    if status != signal.processing_status:
        signal.processing_status = status
        changed = True
    if changed and existing is not None:
        signal.updated_at = now
    return signal, changed
