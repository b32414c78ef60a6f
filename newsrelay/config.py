"""
Configuration

Static settings read once at process start from a JSON file shaped like
the consumer module config:

    {
        "feeds": [{"title": "...", "url": "...", "encoding": "UTF-8"}],
        "reloadInterval": 300000,
        "showQRCode": true,
        "logFeedWarnings": false,
        "proxyUrl": null,
        "port": 8000
    }
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
import json
import os

from .contracts import DEFAULT_RELOAD_INTERVAL_MS, InvalidFeedError, SourceDescriptor
from .log import get_logger

logger = get_logger(__name__)


CONFIG_ENV = "NEWSRELAY_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / 'config' / 'feeds.json'

DEFAULT_FEEDS = (
    {
        'title': "New York Times",
        'url': "https://rss.nytimes.com/services/xml/rss/nyt/HomePage.xml",
        'encoding': "UTF-8",
    },
)


@dataclass(frozen=True)
class Settings:
    """Service settings."""
    feeds: Tuple[SourceDescriptor, ...] = field(default_factory=tuple)
    reload_interval_ms: int = DEFAULT_RELOAD_INTERVAL_MS
    show_images: bool = True
    log_feed_warnings: bool = False
    proxy_url: Optional[str] = None
    user_agent: str = "newsrelay/1.0"
    timeout_seconds: float = 30.0
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> 'Settings':
        """
        Build settings from a config mapping.

        Feed entries that cannot be turned into a descriptor are logged
        and skipped.
        """
        module_defaults = {
            'reloadInterval': config.get('reloadInterval', DEFAULT_RELOAD_INTERVAL_MS),
            'logFeedWarnings': config.get('logFeedWarnings', False),
        }

        feeds: List[SourceDescriptor] = []
        entries = config.get('feeds')
        if entries is None:
            entries = DEFAULT_FEEDS

        for feed in entries:
            try:
                feeds.append(SourceDescriptor.from_config(feed, module_defaults))
            except (InvalidFeedError, ValueError) as e:
                logger.error("Skipping invalid feed entry %r: %s", feed, e)

        return cls(
            feeds=tuple(feeds),
            reload_interval_ms=int(module_defaults['reloadInterval']),
            show_images=bool(config.get('showQRCode', True)),
            log_feed_warnings=bool(module_defaults['logFeedWarnings']),
            proxy_url=config.get('proxyUrl'),
            user_agent=config.get('userAgent', cls.user_agent),
            timeout_seconds=float(config.get('timeoutSeconds', cls.timeout_seconds)),
            host=config.get('host', cls.host),
            port=int(config.get('port', cls.port)),
            log_level=config.get('logLevel', cls.log_level)
        )

    def module_config(self) -> Dict[str, Any]:
        """Module-level defaults in the consumer's key names."""
        return {
            'reloadInterval': self.reload_interval_ms,
            'logFeedWarnings': self.log_feed_warnings,
        }


def resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from JSON; a missing file gives the defaults."""
    config_path = resolve_config_path(path)

    if not config_path.exists():
        logger.info("No config at %s, using defaults", config_path)
        return Settings.from_dict({})

    with open(config_path, 'r', encoding='utf-8') as f:
        config = json.load(f)

    return Settings.from_dict(config)
