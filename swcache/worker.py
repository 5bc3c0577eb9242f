"""
The composition root: one `ServiceWorker` owns the caches, the metrics and
every component that touches them.
"""

from dataclasses import replace
from datetime import datetime
import logging
from typing import Callable, List, Optional, Sequence
from urllib.parse import urljoin

from .cache import CacheStorage
from .config import Config
from .errors import StrategyError
from .fallback import FallbackProvider
from .lifecycle import ClientRegistry, LifecycleManager, LifecycleState, PeriodicSweep
from .messages import MessageDispatcher, MessagePort
from .metrics import MetricsCounter
from .model import CacheNames, MetricsSnapshot, PerformanceMetrics, Request, Response
from .network import RequestsFetch
from .registry import StrategyRegistry
from .strategies import Fetch, RevalidationRegistry, StrategyExecutor
from .util import FALLBACK_HEADER, infer_destination, utcnow


logger = logging.getLogger(__name__)


class ServiceWorker:
    def __init__(self,
                 config: Optional[Config] = None,
                 storage: Optional[CacheStorage] = None,
                 fetch: Optional[Fetch] = None,
                 metrics: Optional[PerformanceMetrics] = None,
                 clock: Callable[[], datetime] = utcnow) -> None:
        """
        @param config
          Defaults to `Config()`.
        @param storage
          Defaults to the storage described by `config.cache`.
        @param fetch
          How to reach the network when a request does not bring its own way
          (installing, prefetching). Defaults to a `requests.Session`.
        @param metrics
          The record to count into. Pass one in to observe it from outside.
        """
        self.config = config or Config()
        self.names = CacheNames(self.config.cache.prefix, self.config.cache.version)
        self.storage = storage or self.config.cache.create_storage()
        self.metrics = metrics if metrics is not None else PerformanceMetrics()
        self.clients = ClientRegistry()

        self.__owned_fetch = None
        if fetch is None:
            fetch = self.__owned_fetch = RequestsFetch()
        self.__fetch = fetch

        offline_url = urljoin(self.config.origin, self.config.shell.offline_page)
        self.counter = MetricsCounter(self.metrics, self.storage, clock)
        self.revalidator = RevalidationRegistry(self.config.revalidation_workers)
        self.registry = StrategyRegistry(self.config.origin, self.config.rules)
        self.executor = StrategyExecutor(self.storage, self.names, fetch, self.counter, self.revalidator, clock)
        self.fallbacks = FallbackProvider(self.storage, self.names, offline_url, self.config.shell.title)
        self.lifecycle = LifecycleManager(self.storage, self.names, fetch, self.config.origin, self.clients,
                                          offline_url=self.config.shell.offline_page,
                                          title=self.config.shell.title,
                                          clock=clock)
        self.messages = MessageDispatcher(self)
        self.__sweeper = PeriodicSweep(self.sweep, self.config.sweep.interval)

    # region Lifecycle

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    @property
    def active(self) -> bool:
        return self.lifecycle.state is LifecycleState.ACTIVATED

    def start(self, sweep: bool = True) -> None:
        """
        Install, activate as soon as install asks to skip waiting, and start
        the periodic sweep.

        @throws InstallError
          If the shell could not be fetched.
        """
        self.install()
        if self.lifecycle.waiting_skipped:
            self.activate()
        if sweep:
            self.__sweeper.start()

    def install(self) -> None:
        self.lifecycle.install(self.config.shell.assets)

    def activate(self) -> List[str]:
        return self.lifecycle.activate()

    def skip_waiting(self) -> None:
        self.lifecycle.skip_waiting()
        if self.lifecycle.state is LifecycleState.INSTALLED:
            self.activate()

    def sweep(self) -> int:
        return self.lifecycle.sweep(self.config.sweep.max_age_delta)

    def register_client(self, client) -> None:
        """
        Register a client. Clients that appear while the worker is active are
        controlled straight away; the others wait to be claimed on activation.
        """
        self.clients.register(client)
        if self.active:
            client.controlled = True

    def unregister_client(self, client) -> None:
        self.clients.unregister(client)

    # endregion

    # region Requests

    def handle_fetch(self, request: Request, fetch: Optional[Fetch] = None) -> Response:
        """
        Answer `request`, from the caches where its rule allows.

        Non-GET requests go straight to `fetch`, untouched; network errors for
        them propagate. For GET requests this never raises: when every option
        is exhausted a fallback response is returned instead.
        """
        fetch = fetch or self.__fetch
        if request.method.upper() != 'GET':
            logger.info('Passing {} {} straight to the network'.format(request.method, request.uri))
            return fetch(request)

        if not request.destination:
            request = replace(request, destination=infer_destination(request.uri, request.headers))

        rule = self.registry.classify(request)
        try:
            return self.executor.execute(request, rule, fetch)
        except StrategyError as e:
            logger.warning('{} exhausted every option for {}. Serving a fallback.'.format(
                type(e).__name__, request.uri))
            return self.fallbacks.for_request(request)

    def prefetch(self, urls: Sequence[str]) -> List[str]:
        """
        Warm the caches by sending each URL through its normal strategy.

        @return
          The URLs that could only be answered with a fallback.
        """
        failed = []
        for url in urls:
            request = Request(method='GET', uri=urljoin(self.config.origin, str(url)), headers={})
            response = self.handle_fetch(request)
            if FALLBACK_HEADER in response.headers:
                failed.append(str(url))
        logger.info('Prefetched {} resources ({} failed)'.format(len(urls), len(failed)))
        return failed

    # endregion

    # region Control

    def post_message(self, data, ports: Sequence[MessagePort] = ()) -> bool:
        return self.messages.dispatch(data, ports)

    def metrics_snapshot(self) -> MetricsSnapshot:
        return self.counter.snapshot()

    def clear_cache(self, name: Optional[str] = None) -> None:
        """
        Delete every cache and reset the metrics, or delete only the cache
        called `name`.
        """
        if name is not None:
            logger.info('Clearing cache {}'.format(name))
            self.storage.delete(name)
            return

        for cache_name in self.storage.keys():
            logger.info('Clearing cache {}'.format(cache_name))
            self.storage.delete(cache_name)
        self.counter.reset()

    def close(self) -> None:
        self.__sweeper.stop()
        self.revalidator.shutdown()
        self.storage.close()
        if self.__owned_fetch is not None:
            self.__owned_fetch.close()

    # endregion
