"""
Feed parsing and HTTP source tests.

Verifies RSS 2.0 and Atom extraction, encoding handling and that the
HTTP source raises on failures instead of returning partial data.
"""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from newsrelay.contracts import ParseError
from newsrelay.fetcher import HttpFeedSource, RSSParser


RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <item>
      <title>Article 1</title>
      <link>http://example.com/1</link>
      <description>Summary of article 1</description>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Article 2</title>
      <link>http://example.com/2</link>
      <!-- Missing Description and date -->
    </item>
    <item>
      <title>No Link</title>
    </item>
  </channel>
</rss>
"""

ATOM_XML = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Feed</title>
  <entry>
    <title>Entry 1</title>
    <link rel="alternate" href="http://example.com/atom/1"/>
    <summary>First entry</summary>
    <updated>2024-01-02T08:30:00Z</updated>
  </entry>
  <entry>
    <title>Entry 2</title>
    <link rel="self" href="http://example.com/atom/2"/>
    <published>2024-01-03T08:30:00+00:00</published>
  </entry>
</feed>
"""


class TestRSSParser:

    def test_rss2_items(self):
        """RSS 2.0 items are extracted with dates and descriptions."""
        parsed = RSSParser().parse(RSS_XML.encode('utf-8'))

        assert parsed.title == "Test Feed"
        assert len(parsed.items) == 2

        first, second = parsed.items
        assert first.title == "Article 1"
        assert first.url == "http://example.com/1"
        assert first.description == "Summary of article 1"
        assert first.published_at == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

        assert second.description is None
        assert second.published_at is None

    def test_items_without_link_become_warnings(self):
        """Entries without a link are skipped, not fatal."""
        parsed = RSSParser().parse(RSS_XML.encode('utf-8'))
        assert len(parsed.warnings) == 1
        assert "No Link" in parsed.warnings[0]

    def test_atom_entries(self):
        """Atom entries use the alternate link, falling back to any link."""
        parsed = RSSParser().parse(ATOM_XML.encode('utf-8'))

        assert parsed.title == "Atom Feed"
        assert [item.url for item in parsed.items] == [
            "http://example.com/atom/1",
            "http://example.com/atom/2",
        ]
        assert parsed.items[0].description == "First entry"
        assert parsed.items[0].published_at == datetime(2024, 1, 2, 8, 30, tzinfo=timezone.utc)
        assert parsed.items[1].published_at == datetime(2024, 1, 3, 8, 30, tzinfo=timezone.utc)

    def test_declared_encoding_used(self):
        """Payloads are decoded with the source's encoding."""
        xml = (
            '<?xml version="1.0" encoding="ISO-8859-1"?>'
            '<rss version="2.0"><channel><title>Caf\xe9</title>'
            '<item><title>Cr\xe8me</title><link>http://example.com/c</link></item>'
            '</channel></rss>'
        )
        parsed = RSSParser().parse(xml.encode('iso-8859-1'), "ISO-8859-1")

        assert parsed.title == "Caf\xe9"
        assert parsed.items[0].title == "Cr\xe8me"

    def test_unparseable_date_is_none(self):
        xml = (
            '<rss version="2.0"><channel><item><title>x</title>'
            '<link>http://example.com/x</link><pubDate>sometime soon</pubDate>'
            '</item></channel></rss>'
        )
        parsed = RSSParser().parse(xml.encode('utf-8'))
        assert parsed.items[0].published_at is None

    def test_invalid_xml_raises_parse_error(self):
        with pytest.raises(ParseError):
            RSSParser().parse(b"<rss><channel>")

    def test_unknown_root_raises_parse_error(self):
        with pytest.raises(ParseError):
            RSSParser().parse(b"<html><body>Not a feed</body></html>")


class TestHttpFeedSource:

    def test_fetch_parses_response(self):
        """A 200 response is parsed into a ParsedFeed."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen['user_agent'] = request.headers['user-agent']
            return httpx.Response(200, content=RSS_XML.encode('utf-8'))

        source = HttpFeedSource(user_agent="relay-test", transport=httpx.MockTransport(handler))
        parsed = asyncio.run(source.fetch("http://example.com/rss"))

        assert len(parsed.items) == 2
        assert seen['user_agent'] == "relay-test"

    def test_http_error_status_raises(self):
        """Non-2xx responses raise HTTPStatusError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        source = HttpFeedSource(transport=transport)

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(source.fetch("http://example.com/rss"))

    def test_garbage_body_raises_parse_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"{}"))
        source = HttpFeedSource(transport=transport)

        with pytest.raises(ParseError):
            asyncio.run(source.fetch("http://example.com/rss"))
