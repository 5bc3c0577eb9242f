"""
The three fetch/cache algorithms, and the registry of background refreshes
that stale-while-revalidate leaves behind.
"""

from concurrent.futures import Future, ThreadPoolExecutor
import concurrent.futures
from datetime import datetime, timezone
from functools import partial
import logging
import threading
from typing import Callable, Dict, List, Optional

from .cache import Cache, CacheStorage
from .errors import CacheWriteError, NetworkError, NoCachedResponse, NoResponseAvailable
from .metrics import MetricKind, MetricsCounter
from .model import CacheEntry, CacheNames, Request, Response, StrategyKind, StrategyRule
from .util import CACHE_DATE_HEADER, cache_key, format_cache_date, utcnow


logger = logging.getLogger(__name__)


Fetch = Callable[[Request], Response]
"""
Sends a request over the network. Raises `NetworkError` when no response could
be obtained at all.
"""


class RevalidationRegistry:
    """
    Detached background refreshes, tracked by cache key.

    A refresh requested while another one for the same key is still running is
    coalesced onto the running one. Failures are logged and never reach the
    request that triggered the refresh.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self.__executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='swcache-revalidate')
        self.__in_flight: Dict[str, Future] = {}
        self.__lock = threading.Lock()

    def revalidate(self, key: str, task: Callable[[], None]) -> Future:
        with self.__lock:
            future = self.__in_flight.get(key)
            if future is not None and not future.done():
                logger.info('Revalidation of {} already in flight. Coalescing.'.format(key))
                return future
            future = self.__executor.submit(self._run, key, task)
            self.__in_flight[key] = future
        future.add_done_callback(partial(self._forget, key))
        return future

    def _run(self, key: str, task: Callable[[], None]) -> None:
        try:
            task()
            logger.info('Revalidated {}'.format(key))
        except NetworkError as e:
            logger.warning('Background revalidation of {} failed: {}'.format(key, e))
        except Exception:
            logger.exception('Unexpected error while revalidating {}'.format(key))

    def _forget(self, key: str, future: Future) -> None:
        with self.__lock:
            if self.__in_flight.get(key) is future:
                del self.__in_flight[key]

    def in_flight(self) -> List[str]:
        with self.__lock:
            return [key for key, future in self.__in_flight.items() if not future.done()]

    def wait(self, timeout: Optional[float] = None) -> None:
        """
        Block until every refresh that is currently in flight has finished.
        """
        with self.__lock:
            futures = list(self.__in_flight.values())
        concurrent.futures.wait(futures, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self.__executor.shutdown(wait=wait)


class StrategyExecutor:
    """
    Runs a request through the strategy its rule names.

    `execute()` either returns a usable response or raises a `StrategyError`;
    turning that error into a fallback response is the caller's job.
    """

    def __init__(self,
                 storage: CacheStorage,
                 names: CacheNames,
                 fetch: Fetch,
                 counter: MetricsCounter,
                 revalidator: RevalidationRegistry,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.__storage = storage
        self.__names = names
        self.__fetch = fetch
        self.__counter = counter
        self.__revalidator = revalidator
        self.__clock = clock
        self.__strategies = {
            StrategyKind.CACHE_FIRST: self.cache_first,
            StrategyKind.NETWORK_FIRST: self.network_first,
            StrategyKind.STALE_WHILE_REVALIDATE: self.stale_while_revalidate,
        }

    def execute(self, request: Request, rule: StrategyRule, fetch: Optional[Fetch] = None) -> Response:
        key = cache_key(request.method, request.uri)
        cache = self.__storage.open(self.__names.for_purpose(rule.cache))
        logger.info('Handling {} with {} (rule {})'.format(key, rule.kind.value, rule.name))
        return self.__strategies[rule.kind](request, key, cache, rule, fetch or self.__fetch)

    def cache_first(self, request: Request, key: str, cache: Cache, rule: StrategyRule,
                    fetch: Fetch) -> Response:
        entry = cache.match(key)
        if entry is not None and entry.is_fresh(self.__clock(), rule.max_age):
            logger.info('Fresh cache hit for {}'.format(key))
            self.__counter.record(MetricKind.CACHE_HIT)
            return entry.response.clone()

        if entry is None:
            logger.info('Cache miss for {}'.format(key))
            self.__counter.record(MetricKind.CACHE_MISS)
        else:
            logger.info('Cached entry for {} has expired. Going to the network.'.format(key))

        try:
            response = fetch(request)
        except NetworkError:
            if entry is not None:
                logger.warning('Network failed for {}. Serving the stale cached entry.'.format(key))
                self.__counter.record(MetricKind.CACHE_HIT)
                return entry.response.clone()
            entry = self._match_anywhere(key)
            if entry is not None:
                return entry.response.clone()
            raise NoCachedResponse(key)

        self.__counter.record(MetricKind.NETWORK_REQUEST)
        return self._store(cache, key, request, response, rule)

    def network_first(self, request: Request, key: str, cache: Cache, rule: StrategyRule,
                      fetch: Fetch) -> Response:
        try:
            response = fetch(request)
        except NetworkError:
            entry = cache.match(key)
            if entry is not None:
                logger.info('Network failed for {}. Serving the cached entry.'.format(key))
                self.__counter.record(MetricKind.CACHE_HIT)
                return entry.response.clone()
            entry = self._match_anywhere(key)
            if entry is not None:
                return entry.response.clone()
            logger.warning('Network failed for {} and nothing is cached. The request is offline.'.format(key))
            self.__counter.record(MetricKind.OFFLINE_REQUEST)
            raise NoResponseAvailable(key)

        self.__counter.record(MetricKind.NETWORK_REQUEST)
        return self._store(cache, key, request, response, rule)

    def stale_while_revalidate(self, request: Request, key: str, cache: Cache, rule: StrategyRule,
                               fetch: Fetch) -> Response:
        entry = cache.match(key)
        if entry is not None:
            logger.info('Cache hit for {}. Revalidating in the background.'.format(key))
            self.__counter.record(MetricKind.CACHE_HIT)
            self.__revalidator.revalidate(key, partial(self._refresh, request, key, cache, rule, fetch))
            return entry.response.clone()

        logger.info('Cache miss for {}. Waiting on the network.'.format(key))
        self.__counter.record(MetricKind.CACHE_MISS)
        try:
            response = fetch(request)
        except NetworkError:
            entry = self._match_anywhere(key)
            if entry is not None:
                return entry.response.clone()
            self.__counter.record(MetricKind.OFFLINE_REQUEST)
            raise NoResponseAvailable(key)

        self.__counter.record(MetricKind.NETWORK_REQUEST)
        return self._store(cache, key, request, response, rule)

    def _match_anywhere(self, key: str) -> Optional[CacheEntry]:
        """
        Look `key` up in every cache. The shell stored at install lives in the
        static cache whatever rule its requests later fall under.
        """
        entry = self.__storage.match(key)
        if entry is not None:
            logger.info('Network failed for {}. Serving the copy found in another cache.'.format(key))
            self.__counter.record(MetricKind.CACHE_HIT)
        return entry

    def _refresh(self, request: Request, key: str, cache: Cache, rule: StrategyRule, fetch: Fetch) -> None:
        response = fetch(request)
        self.__counter.record(MetricKind.NETWORK_REQUEST)
        self._store(cache, key, request, response, rule)

    def _store(self, cache: Cache, key: str, request: Request, response: Response, rule: StrategyRule) -> Response:
        """
        Write a clone of `response` to `cache`, stamped with the current time,
        and hand the original back. Responses that are not ok are never cached.
        """
        if not response.ok:
            logger.info('Refusing to cache {}. Status code {} is not ok.'.format(key, response.status))
            return response

        stamped = response.clone()
        stamped.headers[CACHE_DATE_HEADER] = format_cache_date(self.__clock())
        try:
            cache.put(key, CacheEntry(key=key, request=request, response=stamped))
        except CacheWriteError as e:
            logger.warning('Could not cache {}: {}'.format(key, e))
            return response

        if rule.max_entries is not None:
            trim_cache(cache, rule.max_entries)
        return response


def _age_order(entry: CacheEntry):
    stored_at = entry.stored_at
    if stored_at is None:
        return (0, datetime.min.replace(tzinfo=timezone.utc))
    return (1, stored_at)


def trim_cache(cache: Cache, max_entries: int) -> int:
    """
    Evict the oldest entries of `cache` until at most `max_entries` remain.
    Entries without a `sw-cache-date` are the first to go.

    @return
      The number of evicted entries.
    """
    keys = cache.keys()
    if len(keys) <= max_entries:
        return 0

    entries = sorted(cache.entries(), key=_age_order)
    excess = entries[:max(len(entries) - max_entries, 0)]
    for entry in excess:
        logger.info('Evicting {} to keep the cache at {} entries'.format(entry.key, max_entries))
        cache.delete(entry.key)
    return len(excess)
