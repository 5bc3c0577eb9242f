class SwCacheError(Exception):
    """
    Base class for every error raised by this package.
    """


class NetworkError(SwCacheError):
    """
    The network could not produce a response at all (connection refused, DNS
    failure, timeout, ...). A response with an error status is *not* a
    `NetworkError`.
    """

    def __init__(self, url: str, cause: Exception = None) -> None:
        super().__init__('Network request for {} failed: {}'.format(url, cause))
        self.url = url
        self.cause = cause


class StrategyError(SwCacheError):
    """
    A caching strategy ran out of options for a request.
    """

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key


class NoCachedResponse(StrategyError):
    """
    Cache-first found nothing in the cache and the network failed too.
    """


class NoResponseAvailable(StrategyError):
    """
    Network-first or stale-while-revalidate exhausted both the network and the
    cache. This is counted as an offline request.
    """


class CacheWriteError(SwCacheError):
    """
    A store could not persist an entry.
    """


class InstallError(SwCacheError):
    """
    The shell could not be fetched in full, so nothing was installed.
    """

    def __init__(self, failed_urls) -> None:
        super().__init__('Failed to fetch shell assets: {}'.format(', '.join(failed_urls)))
        self.failed_urls = list(failed_urls)
