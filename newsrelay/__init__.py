"""
newsrelay

Background feed polling shared by any number of display consumers.

ARCHITECTURE:
=============
consumer -> NotificationBridge -> FetcherRegistry -> SourcePoller
         <- NotificationBridge <- BroadcastAggregator (<- ImageEnricher)

One poller per distinct feed address, however many consumers register it.
"""

from .contracts import (
    ErrorKind,
    NewsRelayError,
    InvalidFeedError,
    MalformedSourceError,
    FetchError,
    ParseError,
    ImageGenerationError,
    SourceDescriptor,
    Item,
    ParsedFeed,
    ItemsUpdated,
    FetchFailed,
    RegisterSource,
    RequestImage,
    ItemsSnapshot,
    SourceError,
    ImageReady,
)
from .normalizer import normalize
from .fetcher import RSSParser, HttpFeedSource, classify_fetch_error
from .poller import SourcePoller, PollerState, sort_items
from .registry import FetcherRegistry
from .aggregator import BroadcastAggregator
from .imaging import ImageEnricher, QRCodeBackend
from .bridge import NotificationBridge
from .config import Settings, load_settings
from .service import NewsRelayService, create_service

__all__ = [
    'ErrorKind',
    'NewsRelayError',
    'InvalidFeedError',
    'MalformedSourceError',
    'FetchError',
    'ParseError',
    'ImageGenerationError',
    'SourceDescriptor',
    'Item',
    'ParsedFeed',
    'ItemsUpdated',
    'FetchFailed',
    'RegisterSource',
    'RequestImage',
    'ItemsSnapshot',
    'SourceError',
    'ImageReady',
    'normalize',
    'RSSParser',
    'HttpFeedSource',
    'classify_fetch_error',
    'SourcePoller',
    'PollerState',
    'sort_items',
    'FetcherRegistry',
    'BroadcastAggregator',
    'ImageEnricher',
    'QRCodeBackend',
    'NotificationBridge',
    'Settings',
    'load_settings',
    'NewsRelayService',
    'create_service',
]
