"""
Defines the types that flow through the caching layer.

These types are as simple as possible in order to most conveniently consume and
produce instances of them. They deliberately do not depend on `requests`; the
adapter converts to and from them at the edge.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import FrozenSet, Mapping, Optional

from .util import CACHE_DATE_HEADER, parse_cache_date


@dataclass
class Request:
    """
    Represents an outgoing request, excluding parts not used for caching.

    The body and the HTTP version do not affect caching, and so we exclude
    them.
    """

    method: str
    """
    The HTTP method of the request. E.g., "GET".
    """

    uri: str
    """
    The absolute URL of the resource being requested.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    """
    All the headers being sent with the request.
    """

    destination: str = ''
    """
    What the response will be used for: "document", "image", "style", "script",
    "font", or "" when unknown. Decides which fallback is served on failure.
    """


@dataclass
class Response:
    """
    Represents an arbitrary response, without any bells and whistles.

    The body is held in memory. A response handed to the cache is always a
    `clone()`, so that the caller and the cache never share a mutable header
    mapping.
    """

    status: int
    """
    The status code of the response. E.g., 200 or 400.
    """

    reason: str
    """
    The reason string, which relates to the status code.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    """
    All the headers sent with the response.
    """

    body: bytes = field(default=b'', compare=False)
    """
    The response payload.
    """

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def clone(self) -> 'Response':
        return replace(self, headers=dict(self.headers))


@dataclass
class CacheEntry:
    """
    A cache entry.

    Every entry written by this package carries a `sw-cache-date` header with
    the time it was stored. An entry without one (say, seeded by some other
    writer) has no `stored_at` and is treated as expired, although it is still
    served when nothing better is available.
    """

    key: str
    request: Request
    response: Response

    @property
    def stored_at(self) -> Optional[datetime]:
        return parse_cache_date(self.response.headers.get(CACHE_DATE_HEADER))

    def is_fresh(self, now: datetime, max_age: timedelta) -> bool:
        stored_at = self.stored_at
        if stored_at is None:
            return False
        return now - stored_at < max_age

    @property
    def size(self) -> int:
        return len(self.response.body)


class StrategyKind(Enum):
    CACHE_FIRST = 'cacheFirst'
    NETWORK_FIRST = 'networkFirst'
    STALE_WHILE_REVALIDATE = 'staleWhileRevalidate'


class CachePurpose(Enum):
    STATIC = 'static'
    DYNAMIC = 'dynamic'
    IMAGES = 'images'


@dataclass(frozen=True)
class StrategyRule:
    """
    Maps a family of requests onto a caching strategy.

    A rule matches when `pattern` matches the URL path, or when the request's
    destination is one of `destinations`. Rules flagged `cross_origin_only`
    never match requests for the worker's own origin.
    """

    name: str
    pattern: str
    kind: StrategyKind
    max_age: timedelta
    cache: CachePurpose = CachePurpose.DYNAMIC
    destinations: FrozenSet[str] = frozenset()
    cross_origin_only: bool = False
    max_entries: Optional[int] = None


@dataclass
class PerformanceMetrics:
    cache_hits: int = 0
    cache_misses: int = 0
    network_requests: int = 0
    offline_requests: int = 0
    last_updated: Optional[datetime] = None


@dataclass(frozen=True)
class MetricsSnapshot:
    cache_hits: int
    cache_misses: int
    network_requests: int
    offline_requests: int
    last_updated: Optional[datetime]
    cache_size: int
    """
    Sum of the body sizes of every entry in every cache, in bytes.
    """
    timestamp: datetime

    def to_message(self) -> dict:
        return {
            'cacheHits': self.cache_hits,
            'cacheMisses': self.cache_misses,
            'networkRequests': self.network_requests,
            'offlineRequests': self.offline_requests,
            'lastUpdated': self.last_updated.isoformat() if self.last_updated else None,
            'cacheSize': self.cache_size,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class CacheNames:
    """
    The version-tagged names of the three current caches.

    Any cache whose name is not one of these belongs to an older version.
    """

    prefix: str = 'swcache'
    version: str = 'v1'

    def for_purpose(self, purpose: CachePurpose) -> str:
        return '{}-{}-{}'.format(self.prefix, purpose.value, self.version)

    @property
    def static(self) -> str:
        return self.for_purpose(CachePurpose.STATIC)

    @property
    def dynamic(self) -> str:
        return self.for_purpose(CachePurpose.DYNAMIC)

    @property
    def images(self) -> str:
        return self.for_purpose(CachePurpose.IMAGES)

    def current(self) -> FrozenSet[str]:
        return frozenset(self.for_purpose(purpose) for purpose in CachePurpose)
