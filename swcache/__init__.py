"""
Offline-first response caching for the requests library, organised the way a
browser service worker organises it: named caches, per-route strategies, and
install/activate lifecycle steps.
"""

from .adapter import ServiceWorkerAdapter, create, mount
from .config import Config, ConfigError, load_config
from .errors import (CacheWriteError, InstallError, NetworkError, NoCachedResponse, NoResponseAvailable,
                     StrategyError, SwCacheError)
from .messages import Command, JsonLinesPort, QueuePort
from .model import CacheEntry, CacheNames, Request, Response, StrategyKind, StrategyRule
from .worker import ServiceWorker

__all__ = [
    'CacheEntry',
    'CacheNames',
    'CacheWriteError',
    'Command',
    'Config',
    'ConfigError',
    'InstallError',
    'JsonLinesPort',
    'NetworkError',
    'NoCachedResponse',
    'NoResponseAvailable',
    'QueuePort',
    'Request',
    'Response',
    'ServiceWorker',
    'ServiceWorkerAdapter',
    'StrategyError',
    'StrategyKind',
    'StrategyRule',
    'SwCacheError',
    'create',
    'mount',
    'load_config',
]
