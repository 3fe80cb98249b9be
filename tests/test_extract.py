import requests

from runner.ingest import extract
from runner.ingest.extract import clean_feed_text, content_hash, extract_by_selectors, word_count


class _Response:
    def __init__(self, status_code, text="", headers=None):
        self.status_code = status_code
        self.text = text
        self.content = text.encode("utf-8")
        self.headers = headers or {}
        self.encoding = "utf-8"
        self.apparent_encoding = "utf-8"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(str(self.status_code))


class _Session:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    def get(self, url, timeout=None, headers=None):
        self.calls += 1
        return self.responses.pop(0)


def test_clean_feed_text_strips_markup_and_entities():
    assert clean_feed_text("<p>Road&nbsp;closure &amp; diversion</p>\n ") == "Road closure & diversion"
    assert clean_feed_text(None) == ""


def test_word_count_counts_cjk_characters():
    assert word_count("Flood warning") == 2
    assert word_count("暴雨警告") == 4
    assert word_count("Amber 暴雨") == 3
    assert word_count("   ") == 0


def test_content_hash_is_stable():
    assert content_hash("a", "b") == content_hash("a", "b")
    assert content_hash("a", "b") != content_hash("a", "c")


def test_extract_by_selectors_falls_through_to_next_selector():
    html = """
    <html><body>
      <h1 class="page-title">Notice</h1>
      <div class="short">tiny</div>
      <div class="main-content"><p>The lane will be closed from 10pm to 6am for works.</p>
      <script>ignored()</script></div>
    </body></html>
    """
    title, body = extract_by_selectors(html, ".page-title, h1", ".short, .main-content", min_body=30)
    assert title == "Notice"
    assert body == "The lane will be closed from 10pm to 6am for works."


def test_fetch_url_retries_transient_status(monkeypatch):
    session = _Session([_Response(503), _Response(200, "<html>ok</html>")])
    monkeypatch.setattr(extract, "_get_session", lambda: session)
    monkeypatch.setattr(extract.time, "sleep", lambda s: None)
    text, err = extract.fetch_url("https://example.gov.hk/a")
    assert err is None
    assert text == "<html>ok</html>"
    assert session.calls == 2


def test_fetch_url_reports_blocked(monkeypatch):
    monkeypatch.setattr(extract, "_get_session", lambda: _Session([_Response(403)]))
    text, err = extract.fetch_url("https://example.gov.hk/a")
    assert text is None
    assert err == "blocked:403"


def test_fetch_url_reports_http_error(monkeypatch):
    monkeypatch.setattr(extract, "_get_session", lambda: _Session([_Response(404)]))
    assert extract.fetch_url("https://example.gov.hk/a") == (None, "request_error:HTTP404")
