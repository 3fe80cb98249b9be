import hashlib
import html as _html
import os
import re
import time
from typing import Optional

import requests
from urllib3.util.retry import Retry
from requests.adapters import HTTPAdapter
from bs4 import BeautifulSoup


HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; HKSignals/2.0; +https://hki.zone)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "zh-TW,zh;q=0.9,en;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "close",
}

DEFAULT_CONNECT_TIMEOUT = float(os.getenv("FETCH_CONNECT_TIMEOUT", "10"))
DEFAULT_READ_TIMEOUT = float(os.getenv("FETCH_READ_TIMEOUT", "20"))
FETCH_LOG = os.getenv("FETCH_LOG", "0") == "1"

RETRY_BACKOFFS = [0, 1, 3]
RETRY_STATUSES = {429, 500, 502, 503, 504}

_CJK_RE = re.compile(r"[\u4e00-\u9fff]")
_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")

_session = None


def _get_session() -> requests.Session:
    global _session
    if _session is not None:
        return _session

    session = requests.Session()
    retries = Retry(
        total=0,
        status_forcelist=[],
        allowed_methods=["GET", "HEAD"],
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retries)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    _session = session
    return _session


def _log_response(url: str, response, elapsed_ms: int) -> None:
    if not FETCH_LOG:
        return
    print(
        f"GET {url} status={response.status_code} "
        f"content-type={response.headers.get('content-type')} "
        f"bytes={len(response.content)} elapsed={elapsed_ms}ms"
    )


def fetch_url(url: str, headers: dict | None = None) -> tuple[Optional[str], Optional[str]]:
    """GET a page with a short backoff ladder.

    Returns ``(text, None)`` on success or ``(None, error_code)`` where the code
    is ``blocked:<status>`` for 401/403/429 and ``request_error:<kind>`` for the rest.
    """
    session = _get_session()
    last_response = None
    try:
        for attempt, delay in enumerate(RETRY_BACKOFFS):
            if delay:
                time.sleep(delay)
            start_ts = time.monotonic()
            response = session.get(
                url,
                timeout=(DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT),
                headers=headers or HEADERS,
            )
            last_response = response
            _log_response(url, response, int((time.monotonic() - start_ts) * 1000))
            if response.status_code in RETRY_STATUSES and attempt < len(RETRY_BACKOFFS) - 1:
                retry_after = response.headers.get("retry-after")
                if retry_after:
                    try:
                        time.sleep(min(float(retry_after), 30.0))
                    except ValueError:
                        pass
                continue
            if response.status_code in (401, 403, 429):
                return None, f"blocked:{response.status_code}"
            response.raise_for_status()
            if response.encoding is None or response.encoding.lower() == "iso-8859-1":
                response.encoding = response.apparent_encoding
            return response.text, None
        if last_response is not None:
            return None, f"request_error:HTTP{last_response.status_code}"
        return None, "request_error:unknown"
    except requests.exceptions.Timeout:
        if FETCH_LOG:
            print(f"GET {url} status=timeout")
        return None, "request_error:timeout"
    except requests.exceptions.HTTPError:
        code = last_response.status_code if last_response is not None else "unknown"
        return None, f"request_error:HTTP{code}"
    except requests.exceptions.RequestException as e:
        if FETCH_LOG:
            print(f"GET {url} status=error err={type(e).__name__}")
        return None, f"request_error:{type(e).__name__}"


def extract_main_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    text = soup.get_text(separator=" ")
    text = re.sub(r"\s+", " ", text).strip()
    return text


def extract_by_selectors(
    html: str, title_selectors: str | None, body_selectors: str | None, min_body: int = 50
) -> tuple[str, str]:
    """Pull title and body using comma-separated CSS selector lists.

    Body selectors are tried in order until one yields at least ``min_body``
    characters; the longest candidate seen is kept otherwise.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    title = ""
    for selector in _split_selectors(title_selectors):
        el = soup.select_one(selector)
        if el is not None:
            title = clean_text(el.get_text(separator=" "))
            if title:
                break

    body = ""
    for selector in _split_selectors(body_selectors):
        el = soup.select_one(selector)
        if el is None:
            continue
        text = clean_text(el.get_text(separator=" "))
        if len(text) > len(body):
            body = text
        if len(body) >= min_body:
            break
    return title, body


def _split_selectors(raw: str | None) -> list[str]:
    return [s.strip() for s in (raw or "").split(",") if s.strip()]


def clean_text(text: str | None) -> str:
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()


def clean_feed_text(text: str | None) -> str:
    """Strip markup and entities from feed titles/descriptions."""
    if not text:
        return ""
    text = _TAG_RE.sub("", text)
    text = _html.unescape(text).replace("\xa0", " ")
    return clean_text(text)


def word_count(text: str | None) -> int:
    # CJK characters count as words
    if not text or not text.strip():
        return 0
    cjk = len(_CJK_RE.findall(text))
    latin = len([w for w in _CJK_RE.sub(" ", text).split() if w])
    return cjk + latin


def content_hash(title: str, body: str) -> str:
    return hashlib.sha256(((title or "") + (body or "")).encode("utf-8")).hexdigest()
