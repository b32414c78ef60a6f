"""
Relay Contracts

Data structures, error taxonomy and message types for the polling engine.

BOUNDARY: everything that crosses between the engine and a consumer,
or between a poller and the aggregator, is declared here.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple
from datetime import datetime
from enum import Enum


DEFAULT_ENCODING = "UTF-8"
DEFAULT_RELOAD_INTERVAL_MS = 5 * 60 * 1000


# =============================================================================
# ERROR TAXONOMY
# =============================================================================

class ErrorKind(Enum):
    """
    Classification of a failed registration, fetch or image request.

    Values are the consumer-side translation keys.
    """
    INVALID_FEED = "MODULE_ERROR_INVALID_FEED"
    MALFORMED_SOURCE = "MODULE_ERROR_MALFORMED_URL"
    SOURCE_NOT_FOUND = "MODULE_ERROR_FEED_NOT_FOUND"
    CONNECTION_REFUSED = "MODULE_ERROR_CONNECTION_REFUSED"
    CLIENT_ERROR = "MODULE_ERROR_CLIENT_ERROR"
    SERVER_ERROR = "MODULE_ERROR_SERVER_ERROR"
    UNKNOWN_FETCH_ERROR = "MODULE_ERROR_UNKNOWN"
    PARSE_ERROR = "MODULE_ERROR_PARSE_ERROR"
    IMAGE_GENERATION_ERROR = "MODULE_ERROR_IMAGE_GENERATION"


class NewsRelayError(Exception):
    """Base class for all relay errors."""
    kind: ErrorKind = ErrorKind.UNKNOWN_FETCH_ERROR


class InvalidFeedError(NewsRelayError):
    """Feed entry is missing its url or carries unusable settings."""
    kind = ErrorKind.INVALID_FEED


class MalformedSourceError(NewsRelayError):
    """Source address is missing or not an absolute URL."""
    kind = ErrorKind.MALFORMED_SOURCE


class FetchError(NewsRelayError):
    """A fetch failed with an already-known classification."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN_FETCH_ERROR):
        super().__init__(message)
        self.kind = kind


class ParseError(NewsRelayError):
    """Payload could not be interpreted as a feed."""
    kind = ErrorKind.PARSE_ERROR


class ImageGenerationError(NewsRelayError):
    """Image backend could not produce an artifact."""
    kind = ErrorKind.IMAGE_GENERATION_ERROR


# =============================================================================
# SOURCE CONFIGURATION
# =============================================================================

def _interval_ms(value: Any) -> int:
    # bool is an int subclass; true would poll every millisecond
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise InvalidFeedError(f"reloadInterval must be a number, got {value!r}")
    try:
        return int(value)
    except (ValueError, OverflowError) as e:
        raise InvalidFeedError(f"reloadInterval must be a number, got {value!r}") from e


@dataclass(frozen=True)
class SourceDescriptor:
    """
    Configuration for a single feed source.

    Only reload_interval_ms and use_proxy may change after a poller
    has been created from it.
    """
    address: str
    encoding: str = DEFAULT_ENCODING
    reload_interval_ms: int = DEFAULT_RELOAD_INTERVAL_MS
    use_proxy: bool = True
    log_warnings: bool = False
    title: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.reload_interval_ms, int) or self.reload_interval_ms <= 0:
            raise ValueError(
                f"reload_interval_ms must be a positive integer, got {self.reload_interval_ms!r}"
            )

    @classmethod
    def from_config(
        cls,
        feed: Mapping[str, Any],
        defaults: Optional[Mapping[str, Any]] = None
    ) -> 'SourceDescriptor':
        """
        Build from a consumer feed entry.

        Interval falls back feed -> module config -> 5 minutes.
        Raises InvalidFeedError for a missing url, a non-numeric interval
        or a non-boolean useCorsProxy.
        """
        defaults = defaults or {}
        if not isinstance(feed, Mapping) or not feed.get('url'):
            raise InvalidFeedError(f"Feed entry has no 'url': {feed!r}")

        reload_interval = (
            feed.get('reloadInterval')
            or defaults.get('reloadInterval')
            or DEFAULT_RELOAD_INTERVAL_MS
        )
        use_proxy = feed.get('useCorsProxy')
        if use_proxy is None:
            use_proxy = True
        elif not isinstance(use_proxy, bool):
            raise InvalidFeedError(f"useCorsProxy must be true or false, got {use_proxy!r}")

        return cls(
            address=feed['url'],
            encoding=feed.get('encoding') or DEFAULT_ENCODING,
            reload_interval_ms=_interval_ms(reload_interval),
            use_proxy=use_proxy,
            log_warnings=bool(defaults.get('logFeedWarnings', False)),
            title=feed.get('title')
        )


# =============================================================================
# ITEM CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class Item:
    """
    A single feed entry as delivered to consumers.

    source_title and image_artifact are attached by the engine,
    the rest comes from the parser.
    """
    title: str
    url: str
    published_at: Optional[datetime] = None
    description: Optional[str] = None
    source_title: str = ""
    image_artifact: Optional[str] = None

    def with_source_title(self, source_title: str) -> 'Item':
        return replace(self, source_title=source_title)

    def with_artifact(self, artifact: Optional[str]) -> 'Item':
        return replace(self, image_artifact=artifact)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'url': self.url,
            'pubdate': self.published_at.isoformat() if self.published_at else None,
            'description': self.description,
            'sourceTitle': self.source_title,
            'imageUrl': self.image_artifact,
        }


@dataclass(frozen=True)
class ParsedFeed:
    """Parser output for one payload."""
    title: Optional[str]
    items: Tuple[Item, ...]
    warnings: Tuple[str, ...] = field(default_factory=tuple)


# =============================================================================
# POLLER EVENTS (poller -> aggregator)
# =============================================================================

@dataclass(frozen=True)
class ItemsUpdated:
    """A poller has a new (or re-announced) item cache."""
    source_key: str


@dataclass(frozen=True)
class FetchFailed:
    """A poller's fetch cycle failed; its cache is untouched."""
    source_key: str
    kind: ErrorKind
    message: str = ""


# =============================================================================
# INBOUND COMMANDS (consumer -> engine)
# =============================================================================

@dataclass(frozen=True)
class RegisterSource:
    """Register (or re-register) a feed. Wire name ADD_FEED."""
    feed: Mapping[str, Any]
    config: Mapping[str, Any] = field(default_factory=dict)

    notification = "ADD_FEED"

    def descriptor(self, defaults: Optional[Mapping[str, Any]] = None) -> SourceDescriptor:
        """Descriptor for the feed; the message config overrides defaults."""
        merged = dict(defaults or {})
        merged.update(self.config)
        return SourceDescriptor.from_config(self.feed, merged)


@dataclass(frozen=True)
class RequestImage:
    """Ask for one image artifact. Wire name REQUEST_QR_CODE."""
    url: str

    notification = "REQUEST_QR_CODE"


INBOUND_ALIASES = {
    "ADD_FEED": "ADD_FEED",
    "REQUEST_QR_CODE": "REQUEST_QR_CODE",
    "GENERATE_QR_CODE": "REQUEST_QR_CODE",
}


def command_from_message(notification: str, payload: Any):
    """
    Decode an inbound wire message.

    Returns None for messages that cannot be acted upon.
    ADD_FEED accepts either {"feed": ..., "config": ...} or a bare feed mapping.
    """
    name = INBOUND_ALIASES.get(notification)
    if name is None or payload is None:
        return None

    if name == "ADD_FEED":
        if not isinstance(payload, Mapping):
            return None
        if 'feed' in payload:
            return RegisterSource(
                feed=payload.get('feed') or {},
                config=payload.get('config') or {}
            )
        return RegisterSource(feed=payload)

    if isinstance(payload, Mapping):
        payload = payload.get('url')
    if not isinstance(payload, str):
        return None
    return RequestImage(url=payload)


# =============================================================================
# OUTBOUND EVENTS (engine -> consumer)
# =============================================================================

@dataclass(frozen=True)
class ItemsSnapshot:
    """Every source's current items. Consumers replace their view wholesale."""
    feeds: Mapping[str, Tuple[Item, ...]]

    notification = "NEWS_ITEMS"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'notification': self.notification,
            'payload': {
                key: [item.to_dict() for item in items]
                for key, items in self.feeds.items()
            }
        }


@dataclass(frozen=True)
class SourceError:
    """A registration or fetch failed."""
    kind: ErrorKind
    source_key: Optional[str] = None

    notification = "NEWSFEED_ERROR"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'notification': self.notification,
            'payload': {'error_type': self.kind.value, 'source': self.source_key}
        }


@dataclass(frozen=True)
class ImageReady:
    """An image artifact is available for url."""
    url: str
    image_artifact: str

    notification = "QR_CODE_IMAGE"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'notification': self.notification,
            'payload': {'url': self.url, 'imageUrl': self.image_artifact}
        }
