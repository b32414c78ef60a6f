"""
Source Key Normalizer

Derives the deduplication key for a feed from its address.
Two addresses are the same source iff they are the same string.
"""

from __future__ import annotations
from urllib.parse import urlsplit
import re

from .contracts import MalformedSourceError


_FORBIDDEN = re.compile(r'[\s\x00-\x1f\x7f]')


def normalize(address: str) -> str:
    """
    Return the source key for address.

    Raises MalformedSourceError unless address is an absolute URL
    (scheme and host present, no whitespace or control characters).
    """
    if not isinstance(address, str) or not address:
        raise MalformedSourceError(f"Malformed feed URL: {address!r}")

    if _FORBIDDEN.search(address):
        raise MalformedSourceError(f"Malformed feed URL: {address!r}")

    try:
        parts = urlsplit(address)
        # port is parsed lazily and raises on garbage like "host:abc"
        parts.port
    except ValueError as e:
        raise MalformedSourceError(f"Malformed feed URL: {address!r}") from e

    if not parts.scheme or not parts.netloc or not parts.hostname:
        raise MalformedSourceError(f"Malformed feed URL: {address!r}")

    return address
