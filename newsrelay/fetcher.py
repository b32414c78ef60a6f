"""
Feed Fetcher

Fetches feed payloads over HTTP and parses them into items.

PRINCIPLES:
===========
1. Fetch failures are raised, classification happens in one place
2. Parse with maximum tolerance, skip entries without a link
3. Decode with the source's declared encoding
"""

from __future__ import annotations
from typing import List, Optional
from datetime import datetime
import re
import socket
import xml.etree.ElementTree as ET
from email.utils import parsedate_to_datetime

import httpx

from .contracts import (
    DEFAULT_ENCODING, ErrorKind, FetchError, Item, ParseError, ParsedFeed
)
from .log import get_logger

logger = get_logger(__name__)


ATOM_NS = {'atom': 'http://www.w3.org/2005/Atom'}

_NOT_FOUND_MARKERS = (
    'name or service not known',
    'nodename nor servname',
    'getaddrinfo failed',
    'temporary failure in name resolution',
    'no address associated',
)


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

def _error_chain(error: BaseException):
    seen = set()
    current = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_fetch_error(error: BaseException) -> ErrorKind:
    """
    Map a fetch/parse failure to an ErrorKind.

    Resolution failures and refused connections are recognised anywhere
    in the exception chain, since httpx wraps the socket errors.
    """
    if isinstance(error, FetchError):
        return error.kind
    if isinstance(error, ParseError):
        return ErrorKind.PARSE_ERROR

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if 400 <= status < 500:
            return ErrorKind.CLIENT_ERROR
        if status >= 500:
            return ErrorKind.SERVER_ERROR
        return ErrorKind.UNKNOWN_FETCH_ERROR

    for link in _error_chain(error):
        if isinstance(link, socket.gaierror):
            return ErrorKind.SOURCE_NOT_FOUND
        if isinstance(link, ConnectionRefusedError):
            return ErrorKind.CONNECTION_REFUSED
        message = str(link).lower()
        if any(marker in message for marker in _NOT_FOUND_MARKERS):
            return ErrorKind.SOURCE_NOT_FOUND
        if 'connection refused' in message:
            return ErrorKind.CONNECTION_REFUSED

    return ErrorKind.UNKNOWN_FETCH_ERROR


# =============================================================================
# PARSER
# =============================================================================

class RSSParser:
    """
    Parses RSS 2.0 and Atom payloads.

    GUARANTEES:
    ===========
    1. Returns a ParsedFeed or raises ParseError, nothing else
    2. Entries without a link are skipped and reported as warnings
    3. Dates that cannot be parsed become None
    """

    def parse(self, raw_bytes: bytes, encoding: str = DEFAULT_ENCODING) -> ParsedFeed:
        """Parse a payload decoded with encoding."""
        content = self._decode(raw_bytes, encoding)

        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise ParseError(f"Invalid XML: {e}") from e

        # Detect format (RSS 2.0 vs Atom)
        if root.tag == 'rss' or root.tag.endswith('rss'):
            return self._parse_rss2(root)
        elif 'Atom' in root.tag or 'atom' in root.tag or root.tag == 'feed':
            return self._parse_atom(root)

        raise ParseError(f"Unsupported feed root element: {root.tag}")

    def _decode(self, raw_bytes: bytes, encoding: str) -> str:
        try:
            content = raw_bytes.decode(encoding or DEFAULT_ENCODING)
        except (UnicodeDecodeError, LookupError):
            content = raw_bytes.decode('latin-1')

        # ElementTree refuses str input carrying an encoding declaration
        return re.sub(r'^\s*<\?xml[^>]*\?>', '', content, count=1)

    def _parse_rss2(self, root: ET.Element) -> ParsedFeed:
        """Parse RSS 2.0 format."""
        channel = root.find('channel')
        if channel is None:
            channel = root

        feed_title = self._get_text(channel, 'title', None)
        items: List[Item] = []
        warnings: List[str] = []

        entries = channel.findall('item')
        for entry in entries:
            title = self._get_text(entry, 'title', '')
            link = self._get_text(entry, 'link', '')

            if not link:
                warnings.append(f"Skipping item without link: {title!r}")
                continue

            items.append(Item(
                title=title,
                url=link,
                published_at=self._parse_date(self._get_text(entry, 'pubDate', '')),
                description=self._get_text(entry, 'description', None)
            ))

        return ParsedFeed(title=feed_title, items=tuple(items), warnings=tuple(warnings))

    def _parse_atom(self, root: ET.Element) -> ParsedFeed:
        """Parse Atom format."""
        feed_title = self._get_text(root, 'atom:title', None, ATOM_NS) or self._get_text(root, 'title', None)
        items: List[Item] = []
        warnings: List[str] = []

        for entry in root.findall('atom:entry', ATOM_NS) or root.findall('entry'):
            title = self._get_text(entry, 'atom:title', '', ATOM_NS) or self._get_text(entry, 'title', '')

            # Get link (prefer alternate)
            links = entry.findall('atom:link', ATOM_NS) or entry.findall('link')
            link = ''
            for link_elem in links:
                if link_elem.get('rel', 'alternate') == 'alternate':
                    link = link_elem.get('href', '')
                    break
            if not link and links:
                link = links[0].get('href', '')

            if not link:
                warnings.append(f"Skipping entry without link: {title!r}")
                continue

            description = (
                self._get_text(entry, 'atom:summary', None, ATOM_NS) or
                self._get_text(entry, 'summary', None) or
                self._get_text(entry, 'atom:content', None, ATOM_NS) or
                self._get_text(entry, 'content', None)
            )

            published = (
                self._get_text(entry, 'atom:published', '', ATOM_NS) or
                self._get_text(entry, 'published', '') or
                self._get_text(entry, 'atom:updated', '', ATOM_NS) or
                self._get_text(entry, 'updated', '')
            )

            items.append(Item(
                title=title,
                url=link,
                published_at=self._parse_date(published),
                description=description
            ))

        return ParsedFeed(title=feed_title, items=tuple(items), warnings=tuple(warnings))

    def _get_text(self, elem: ET.Element, tag: str, default: Optional[str], ns: dict = None) -> Optional[str]:
        """Get text from child element."""
        child = elem.find(tag, ns) if ns else elem.find(tag)
        if child is not None and child.text:
            return child.text.strip()
        return default

    def _parse_date(self, date_str: str) -> Optional[datetime]:
        """Parse RFC 2822 or ISO 8601 dates."""
        if not date_str:
            return None

        try:
            return parsedate_to_datetime(date_str)
        except (TypeError, ValueError, IndexError):
            pass

        try:
            clean = re.sub(r'[Zz]$', '+00:00', date_str)
            return datetime.fromisoformat(clean)
        except ValueError:
            pass

        return None


# =============================================================================
# HTTP SOURCE
# =============================================================================

class HttpFeedSource:
    """
    Content source used by pollers: HTTP GET followed by parse.

    use_proxy lets httpx honour proxy environment variables, and routes
    through proxy_url when one is configured.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "newsrelay/1.0",
        proxy_url: Optional[str] = None,
        parser: Optional[RSSParser] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._timeout = timeout
        self._user_agent = user_agent
        self._proxy_url = proxy_url
        self._parser = parser or RSSParser()
        self._transport = transport

    def _client(self, use_proxy: bool) -> httpx.AsyncClient:
        kwargs = {
            'timeout': self._timeout,
            'headers': {'User-Agent': self._user_agent},
            'follow_redirects': True,
            'trust_env': use_proxy,
        }
        if use_proxy and self._proxy_url:
            kwargs['proxy'] = self._proxy_url
        if self._transport is not None:
            kwargs['transport'] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def fetch_bytes(self, address: str, use_proxy: bool = True) -> bytes:
        """Fetch raw bytes, raising httpx.HTTPStatusError on non-2xx."""
        async with self._client(use_proxy) as client:
            response = await client.get(address)
            response.raise_for_status()
            return response.content

    async def fetch(
        self,
        address: str,
        encoding: str = DEFAULT_ENCODING,
        use_proxy: bool = True,
        log_warnings: bool = False
    ) -> ParsedFeed:
        """Fetch and parse one feed. Raises on any failure."""
        raw_bytes = await self.fetch_bytes(address, use_proxy)
        parsed = self._parser.parse(raw_bytes, encoding)

        if log_warnings:
            for warning in parsed.warnings:
                logger.warning("Feed %s: %s", address, warning)

        return parsed
