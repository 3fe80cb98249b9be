import json
from dataclasses import dataclass, field
from pathlib import Path

from backend.config import get_float, get_int, get_str
from runner.errors import ConfigError
from runner.ingest.models import LANG_EN, normalize_language

FEEDS_PATH = Path(__file__).parent / "signal_feeds.json"
OUTLETS_PATH = Path(__file__).parent / "outlets.json"


@dataclass
class FeedSource:
    feed_group: str
    urls: dict[str, str]
    department: str = ""
    category: str = "administrative"
    adapter: str = "rss"
    enabled: bool = True
    required_languages: tuple[str, ...] = (LANG_EN,)
    english_only: bool = False
    merge_family: str = ""
    notice_id_regex: str | None = None
    language_url_map: dict[str, str] = field(default_factory=dict)
    title_selectors: str | None = None
    body_selectors: str | None = None

    def __post_init__(self):
        if not self.merge_family:
            self.merge_family = self.feed_group

    def derive_language_urls(self, known: dict[str, str]) -> dict[str, str]:
        """Fill sibling-language article URLs by swapping the language path fragment.

        ``{"en": ".../en/traffic_notices/index_id_1.html"}`` with a map of
        ``{"en": "/en/", "zh-Hant": "/tc/"}`` gains the ``/tc/`` variant.
        """
        urls = dict(known)
        if not self.language_url_map:
            return urls
        for lang in self.required_languages:
            if lang in urls:
                continue
            target = self.language_url_map.get(lang)
            if not target:
                continue
            for src_lang, src_url in known.items():
                fragment = self.language_url_map.get(src_lang)
                if fragment and fragment in src_url:
                    urls[lang] = src_url.replace(fragment, target, 1)
                    break
        return urls


@dataclass
class SignalsConfig:
    feeds: dict[str, FeedSource]
    retry_ceiling: int = 3
    enrich_limit: int = 15
    rate_limit_sec: float = 1.0
    min_body_chars: int = 20
    feed_workers: int = 4

    def enabled_feeds(self) -> list[FeedSource]:
        return [f for f in self.feeds.values() if f.enabled]

    def feed(self, feed_group: str) -> FeedSource | None:
        return self.feeds.get(feed_group)


@dataclass
class OutletConfig:
    key: str
    name: str
    category: str = "General"
    feeds: list[str] = field(default_factory=list)
    home_url: str | None = None
    link_pattern: str | None = None
    title_selectors: str | None = "h1"
    body_selectors: str | None = "article"
    max_items: int = 10
    timeout_sec: int = 120
    enabled: bool = True


@dataclass
class OutletRegistry:
    outlets: dict[str, OutletConfig]
    workers: int = 5

    def get(self, key: str) -> OutletConfig | None:
        return self.outlets.get(key)

    def keys(self) -> list[str]:
        return [k for k, o in self.outlets.items() if o.enabled]


def _load_json_list(path: Path) -> list[dict]:
    if not path.is_file():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in {path}: {e}") from e
    if not isinstance(data, list):
        raise ConfigError(f"{path} must hold a list")
    return data


def feed_from_dict(row: dict) -> FeedSource:
    feed_group = row.get("feed_group")
    if not feed_group:
        raise ConfigError("feed entry missing feed_group")
    urls = {}
    for lang, url in (row.get("urls") or {}).items():
        if not url:
            continue
        key = lang if lang == "multilingual" else normalize_language(lang)
        urls[key] = url
    if not urls:
        raise ConfigError(f"feed {feed_group} has no urls")
    selectors = row.get("content_selectors") or {}
    required = tuple(normalize_language(x) for x in row.get("required_languages") or [LANG_EN])
    if row.get("english_only"):
        required = (LANG_EN,)
    return FeedSource(
        feed_group=feed_group,
        urls=urls,
        department=row.get("department") or "",
        category=row.get("category") or "administrative",
        adapter=(row.get("adapter") or "rss").strip().lower(),
        enabled=bool(row.get("enabled", True)),
        required_languages=required,
        english_only=bool(row.get("english_only", False)),
        merge_family=row.get("merge_family") or "",
        notice_id_regex=row.get("notice_id_regex"),
        language_url_map={
            normalize_language(k): v for k, v in (row.get("language_url_map") or {}).items()
        },
        title_selectors=selectors.get("title"),
        body_selectors=selectors.get("body"),
    )


def load_signals_config(path: Path | None = None) -> SignalsConfig:
    path = path or Path(get_str("SIGNAL_FEEDS_PATH") or FEEDS_PATH)
    feeds = {}
    for row in _load_json_list(path):
        feed = feed_from_dict(row)
        feeds[feed.feed_group] = feed
    return SignalsConfig(
        feeds=feeds,
        retry_ceiling=get_int("SIGNALS_RETRY_CEILING", 3),
        enrich_limit=get_int("SIGNALS_ENRICH_LIMIT", 15) or 15,
        rate_limit_sec=get_float("SIGNALS_RATE_LIMIT_SEC", 1.0),
        min_body_chars=get_int("SIGNALS_MIN_BODY_CHARS", 20),
        feed_workers=get_int("FEED_WORKERS", 4) or 4,
    )


def load_outlet_registry(path: Path | None = None) -> OutletRegistry:
    path = path or Path(get_str("OUTLETS_PATH") or OUTLETS_PATH)
    default_timeout = get_int("OUTLET_TIMEOUT_SEC", 120) or 120
    outlets = {}
    for row in _load_json_list(path):
        key = row.get("key")
        if not key:
            raise ConfigError("outlet entry missing key")
        selectors = row.get("content_selectors") or {}
        outlets[key] = OutletConfig(
            key=key,
            name=row.get("name") or key,
            category=row.get("category") or "General",
            feeds=list(row.get("feeds") or []),
            home_url=row.get("home_url"),
            link_pattern=row.get("link_pattern"),
            title_selectors=selectors.get("title") or "h1",
            body_selectors=selectors.get("body") or "article",
            max_items=int(row.get("max_items") or 10),
            timeout_sec=int(row.get("timeout_sec") or default_timeout),
            enabled=bool(row.get("enabled", True)),
        )
    return OutletRegistry(outlets=outlets, workers=get_int("OUTLET_WORKERS", 5) or 5)
