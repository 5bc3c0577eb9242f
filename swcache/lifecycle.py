"""
One-off work done at install and activate, and the periodic expiry sweep.

The host decides *when* a transition happens. This module only does the work
that belongs to each one.
"""

from datetime import datetime, timedelta
from enum import Enum
import logging
import threading
from typing import Callable, List, Optional, Sequence
from urllib.parse import urljoin
import weakref

from .cache import CacheStorage
from .errors import CacheWriteError, InstallError, NetworkError
from .fallback import offline_page_response
from .model import CacheEntry, CacheNames, Request, Response
from .strategies import Fetch
from .util import CACHE_DATE_HEADER, FALLBACK_HEADER, cache_key, format_cache_date, utcnow


logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    PARSED = 'parsed'
    INSTALLING = 'installing'
    INSTALLED = 'installed'
    ACTIVATING = 'activating'
    ACTIVATED = 'activated'
    REDUNDANT = 'redundant'


class ClientRegistry:
    """
    The clients (adapters) a worker may control.

    Clients are held weakly so that a discarded session does not linger here.
    A client exposes a writable `controlled` flag and, optionally, a `port`
    with a `post_message()` method.
    """

    def __init__(self) -> None:
        self.__clients = weakref.WeakSet()
        self.__lock = threading.Lock()

    def register(self, client) -> None:
        with self.__lock:
            self.__clients.add(client)

    def unregister(self, client) -> None:
        with self.__lock:
            self.__clients.discard(client)

    def all(self) -> List:
        with self.__lock:
            return list(self.__clients)

    def claim(self) -> int:
        clients = self.all()
        for client in clients:
            client.controlled = True
        return len(clients)

    def notify(self, message: dict) -> None:
        for client in self.all():
            port = getattr(client, 'port', None)
            if port is not None:
                port.post_message(message)


class LifecycleManager:
    def __init__(self,
                 storage: CacheStorage,
                 names: CacheNames,
                 fetch: Fetch,
                 origin: str,
                 clients: ClientRegistry,
                 offline_url: str = '/offline.html',
                 title: str = 'swcache',
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.__storage = storage
        self.__names = names
        self.__fetch = fetch
        self.__origin = origin
        self.__clients = clients
        self.__offline_url = offline_url
        self.__title = title
        self.__clock = clock
        self.__state = LifecycleState.PARSED
        self.__waiting_skipped = False

    @property
    def state(self) -> LifecycleState:
        return self.__state

    @property
    def waiting_skipped(self) -> bool:
        return self.__waiting_skipped

    def skip_waiting(self) -> None:
        logger.info('Skipping the waiting phase')
        self.__waiting_skipped = True

    def _stamp(self, response: Response) -> Response:
        stamped = response.clone()
        stamped.headers[CACHE_DATE_HEADER] = format_cache_date(self.__clock())
        return stamped

    def install(self, manifest: Sequence[str]) -> None:
        """
        Populate the static cache with the shell assets in `manifest`, then
        store the offline page next to them.

        Fetching the shell is all-or-nothing: if any asset cannot be fetched,
        nothing is written and `InstallError` is raised. Once everything has
        been fetched, a failure to store one asset is logged and the rest are
        still stored.

        Installing again on an activated worker refreshes the shell and leaves
        the worker activated, whether or not the refresh succeeds.
        """
        was_active = self.__state is LifecycleState.ACTIVATED
        if not was_active:
            self.__state = LifecycleState.INSTALLING
        logger.info('Installing {} ({} shell assets)'.format(self.__names.version, len(manifest)))

        fetched = []
        failed = []
        for path in manifest:
            url = urljoin(self.__origin, path)
            request = Request(method='GET', uri=url, headers={})
            try:
                response = self.__fetch(request)
            except NetworkError as e:
                logger.warning('Failed to fetch shell asset {}: {}'.format(url, e))
                failed.append(url)
                continue
            if not response.ok:
                logger.warning('Failed to fetch shell asset {}: status {}'.format(url, response.status))
                failed.append(url)
                continue
            fetched.append((request, response))

        if failed:
            if not was_active:
                self.__state = LifecycleState.REDUNDANT
            raise InstallError(failed)

        cache = self.__storage.open(self.__names.static)
        for request, response in fetched:
            key = cache_key(request.method, request.uri)
            try:
                cache.put(key, CacheEntry(key=key, request=request, response=self._stamp(response)))
            except CacheWriteError as e:
                logger.warning('Could not store shell asset {}: {}'.format(request.uri, e))

        offline_request = Request(method='GET', uri=urljoin(self.__origin, self.__offline_url),
                                  headers={}, destination='document')
        offline_key = cache_key(offline_request.method, offline_request.uri)
        offline_page = self._stamp(offline_page_response(self.__title))
        offline_page.headers.pop(FALLBACK_HEADER)
        try:
            cache.put(offline_key, CacheEntry(key=offline_key, request=offline_request, response=offline_page))
        except CacheWriteError as e:
            logger.warning('Could not store the offline page: {}'.format(e))

        if not was_active:
            self.__state = LifecycleState.INSTALLED
        logger.info('Installed {}'.format(self.__names.version))
        self.skip_waiting()

    def activate(self) -> List[str]:
        """
        Delete every cache left behind by other versions, make sure the current
        ones exist, then take control of every registered client.

        @return
          The names of the deleted caches.
        """
        self.__state = LifecycleState.ACTIVATING
        current = self.__names.current()
        deleted = []
        for name in self.__storage.keys():
            if name not in current:
                logger.info('Deleting old cache {}'.format(name))
                self.__storage.delete(name)
                deleted.append(name)
        for name in sorted(current):
            self.__storage.open(name)

        claimed = self.__clients.claim()
        self.__state = LifecycleState.ACTIVATED
        logger.info('Activated {}. Deleted {} old caches and claimed {} clients.'.format(
            self.__names.version, len(deleted), claimed))
        self.__clients.notify({'type': 'SW_ACTIVATED', 'version': self.__names.version})
        return deleted

    def sweep(self, max_age: timedelta) -> int:
        """
        Evict every entry, in every cache, stored longer ago than `max_age`.
        Entries without a `sw-cache-date` are evicted too.

        @return
          The number of evicted entries.
        """
        now = self.__clock()
        evicted = 0
        for name in self.__storage.keys():
            cache = self.__storage.open(name)
            for entry in list(cache.entries()):
                if not entry.is_fresh(now, max_age):
                    logger.info('Sweeping expired entry {} from {}'.format(entry.key, name))
                    cache.delete(entry.key)
                    evicted += 1
        logger.info('Sweep evicted {} entries'.format(evicted))
        return evicted


class PeriodicSweep:
    """
    Runs a sweep every `interval` seconds on a daemon thread.
    """

    def __init__(self, sweep: Callable[[], int], interval: float) -> None:
        self.__sweep = sweep
        self.__interval = interval
        self.__stop = threading.Event()
        self.__thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.__thread is not None and self.__thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self.__stop.clear()
        self.__thread = threading.Thread(target=self._loop, name='swcache-sweep', daemon=True)
        self.__thread.start()
        logger.info('Periodic sweep started (every {} seconds)'.format(self.__interval))

    def _loop(self) -> None:
        while not self.__stop.wait(self.__interval):
            try:
                self.__sweep()
            except Exception:
                logger.exception('Periodic sweep failed')

    def stop(self) -> None:
        self.__stop.set()
        if self.__thread is not None:
            self.__thread.join()
            self.__thread = None
        logger.info('Periodic sweep stopped')
