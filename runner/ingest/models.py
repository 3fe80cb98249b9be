"""Typed records shared by the aggregator, the enricher and the outlet orchestrator.

Raw adapter output crosses into the typed model through :class:`RawItem`
(pydantic validation); persisted signal rows go through
:meth:`Signal.from_row` / :meth:`Signal.to_row`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, field_validator

LANG_EN = "en"
LANG_ZH_HANT = "zh-Hant"
LANG_ZH_HANS = "zh-Hans"

_LANG_ALIASES = {
    "en": LANG_EN,
    "eng": LANG_EN,
    "en-us": LANG_EN,
    "en-gb": LANG_EN,
    "zh-hant": LANG_ZH_HANT,
    "zh-tw": LANG_ZH_HANT,
    "zh-hk": LANG_ZH_HANT,
    "tc": LANG_ZH_HANT,
    "zh-hans": LANG_ZH_HANS,
    "zh-cn": LANG_ZH_HANS,
    "sc": LANG_ZH_HANS,
}

STATUS_PARTIAL = "content_partial"
STATUS_ENGLISH_ONLY = "english_only"
STATUS_COMPLETE = "content_complete"
INCOMPLETE_STATUSES = (STATUS_PARTIAL, STATUS_ENGLISH_ONLY)

ERROR_LOG_LIMIT = 20


def normalize_language(code: str | None) -> str:
    raw = (code or "").strip()
    if not raw:
        raise ValueError("language is required")
    return _LANG_ALIASES.get(raw.lower(), raw)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat()


def parse_ts(val: Any) -> datetime | None:
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        dt = val
    else:
        try:
            dt = datetime.fromisoformat(str(val).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class RawItem(BaseModel):
    source_id: str
    feed_group: str
    language: str
    title: str
    link: str
    body: str = ""
    published_at: datetime
    external_id: str = ""

    @field_validator("language", mode="before")
    @classmethod
    def _language(cls, v):
        return normalize_language(v)

    @field_validator("title", "link")
    @classmethod
    def _required_text(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("body", "external_id", mode="before")
    @classmethod
    def _optional_text(cls, v):
        return (v or "").strip()

    @field_validator("published_at")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


@dataclass
class LanguageContent:
    title: str
    body: str = ""
    link: str = ""
    scraped_at: datetime | None = None
    content_hash: str | None = None
    word_count: int = 0

    def __post_init__(self):
        self.body = self.body or ""
        if self.scraped_at is not None and not self.body.strip():
            raise ValueError("scraped_at set on a language with an empty body")

    @property
    def has_body(self) -> bool:
        return bool(self.body.strip())

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "link": self.link,
            "scraped_at": iso(self.scraped_at),
            "content_hash": self.content_hash,
            "word_count": self.word_count,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LanguageContent":
        body = data.get("body") or ""
        scraped_at = parse_ts(data.get("scraped_at"))
        # older rows may carry scraped_at on an empty body
        if not body.strip():
            scraped_at = None
        return cls(
            title=data.get("title") or "",
            body=body,
            link=data.get("link") or "",
            scraped_at=scraped_at,
            content_hash=data.get("content_hash"),
            word_count=int(data.get("word_count") or 0),
        )


@dataclass
class Signal:
    source_identifier: str
    feed_group: str
    category: str = "administrative"
    notice_id: str = ""
    languages: dict[str, LanguageContent] = field(default_factory=dict)
    meta_urls: dict[str, str] = field(default_factory=dict)
    processing_status: str = STATUS_PARTIAL
    retry_count: int = 0
    published_at: datetime | None = None
    discovered_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    error_log: list[dict] = field(default_factory=list)

    def has_body(self, lang: str) -> bool:
        content = self.languages.get(lang)
        return content is not None and content.has_body

    def missing_languages(self) -> list[str]:
        return [lang for lang in self.meta_urls if not self.has_body(lang)]

    def log_error(self, error: str, context: str, language: str | None = None) -> None:
        entry = {"timestamp": iso(utc_now()), "error": error, "context": context}
        if language:
            entry["language"] = language
        self.error_log = (self.error_log + [entry])[-ERROR_LOG_LIMIT:]

    def content_payload(self) -> dict:
        return {
            "meta": {
                "notice_id": self.notice_id,
                "urls": dict(self.meta_urls),
                "published_at": iso(self.published_at),
                "discovered_at": iso(self.discovered_at),
            },
            "languages": {lang: c.to_dict() for lang, c in self.languages.items()},
        }

    def to_row(self) -> dict:
        return {
            "source_identifier": self.source_identifier,
            "feed_group": self.feed_group,
            "category": self.category,
            "content": self.content_payload(),
            "processing_status": self.processing_status,
            "scraping_attempts": self.retry_count,
            "error_log": list(self.error_log),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: dict) -> "Signal":
        content = row.get("content") or {}
        meta = content.get("meta") or {}
        languages = {}
        for lang, data in (content.get("languages") or {}).items():
            if isinstance(data, dict):
                languages[normalize_language(lang)] = LanguageContent.from_dict(data)
        urls = {
            normalize_language(lang): url
            for lang, url in (meta.get("urls") or {}).items()
            if url
        }
        return cls(
            source_identifier=row["source_identifier"],
            feed_group=row.get("feed_group") or "",
            category=row.get("category") or "administrative",
            notice_id=meta.get("notice_id") or "",
            languages=languages,
            meta_urls=urls,
            processing_status=row.get("processing_status") or STATUS_PARTIAL,
            retry_count=int(row.get("scraping_attempts") or 0),
            published_at=parse_ts(meta.get("published_at")),
            discovered_at=parse_ts(meta.get("discovered_at")),
            created_at=parse_ts(row.get("created_at")),
            updated_at=parse_ts(row.get("updated_at")),
            error_log=list(row.get("error_log") or []),
        )


@dataclass
class ScrapeAttemptResult:
    source_identifier: str
    success: bool
    languages_processed: list[str] = field(default_factory=list)
    error: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "source_identifier": self.source_identifier,
            "success": self.success,
            "languages_processed": list(self.languages_processed),
            "error": self.error,
            "details": dict(self.details),
        }


@dataclass
class OutletScrapeResult:
    outlet: str
    articles_found: int = 0
    articles_saved: int = 0
    duration_ms: int = 0
    success: bool = True
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "outlet": self.outlet,
            "articles_found": self.articles_found,
            "articles_saved": self.articles_saved,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error": self.error,
        }
