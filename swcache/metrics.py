from datetime import datetime
from enum import Enum
import logging
import threading
from typing import Callable

from .cache import CacheStorage
from .model import MetricsSnapshot, PerformanceMetrics
from .util import utcnow


logger = logging.getLogger(__name__)


class MetricKind(Enum):
    CACHE_HIT = 'cache_hits'
    CACHE_MISS = 'cache_misses'
    NETWORK_REQUEST = 'network_requests'
    OFFLINE_REQUEST = 'offline_requests'


class MetricsCounter:
    """
    Advisory counters over the worker's request handling.

    The `PerformanceMetrics` record is owned by whoever composes the worker and
    is mutated in place, so the same record can be inspected from outside.
    """

    def __init__(self,
                 metrics: PerformanceMetrics,
                 storage: CacheStorage,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.__metrics = metrics
        self.__storage = storage
        self.__clock = clock
        self.__lock = threading.Lock()

    def record(self, kind: MetricKind) -> None:
        with self.__lock:
            setattr(self.__metrics, kind.value, getattr(self.__metrics, kind.value) + 1)
            self.__metrics.last_updated = self.__clock()

    def reset(self) -> None:
        with self.__lock:
            self.__metrics.cache_hits = 0
            self.__metrics.cache_misses = 0
            self.__metrics.network_requests = 0
            self.__metrics.offline_requests = 0
            self.__metrics.last_updated = self.__clock()
        logger.info('Performance metrics reset')

    def cache_size(self) -> int:
        return sum(self.__storage.open(name).size() for name in self.__storage.keys())

    def snapshot(self) -> MetricsSnapshot:
        with self.__lock:
            cache_hits = self.__metrics.cache_hits
            cache_misses = self.__metrics.cache_misses
            network_requests = self.__metrics.network_requests
            offline_requests = self.__metrics.offline_requests
            last_updated = self.__metrics.last_updated

        return MetricsSnapshot(
            cache_hits=cache_hits,
            cache_misses=cache_misses,
            network_requests=network_requests,
            offline_requests=offline_requests,
            last_updated=last_updated,
            cache_size=self.cache_size(),
            timestamp=self.__clock(),
        )
