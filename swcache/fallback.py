"""
Responses synthesized when every strategy has failed.

Nothing in here touches the network, so building a fallback cannot fail for
the same reason the request did.
"""

import logging

from .cache import CacheStorage
from .model import CacheNames, Request, Response
from .util import FALLBACK_HEADER, cache_key


logger = logging.getLogger(__name__)


OFFLINE_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title} - Offline</title>
<style>
body {{ margin: 0; min-height: 100vh; display: flex; align-items: center; justify-content: center;
       font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
       background: #0f172a; color: #e2e8f0; text-align: center; }}
main {{ max-width: 28rem; padding: 2rem; }}
h1 {{ font-size: 1.5rem; margin-bottom: 0.5rem; }}
p {{ color: #94a3b8; line-height: 1.5; }}
button {{ margin-top: 1.5rem; padding: 0.75rem 1.5rem; border: 0; border-radius: 0.5rem;
         background: #38bdf8; color: #0f172a; font-weight: 600; cursor: pointer; }}
</style>
</head>
<body>
<main>
<h1>You are offline</h1>
<p>{title} could not be reached. Pages you have already visited are still available.
Check your connection and try again.</p>
<button onclick="window.location.reload()">Try again</button>
</main>
</body>
</html>
"""

PLACEHOLDER_IMAGE = """<svg xmlns="http://www.w3.org/2000/svg" width="400" height="300" viewBox="0 0 400 300">
<rect width="400" height="300" fill="#e2e8f0"/>
<path d="M160 190l30-40 25 30 15-20 30 30z" fill="#94a3b8"/>
<circle cx="235" cy="120" r="12" fill="#94a3b8"/>
<text x="200" y="240" font-family="sans-serif" font-size="16" fill="#64748b" text-anchor="middle">Image unavailable offline</text>
</svg>
"""

NETWORK_ERROR_TEXT = 'Network error happened'


def build_offline_page(title: str) -> str:
    return OFFLINE_PAGE_TEMPLATE.format(title=title)


def offline_page_response(title: str) -> Response:
    return Response(
        status=200,
        reason='OK',
        headers={
            'Content-Type': 'text/html; charset=utf-8',
            FALLBACK_HEADER: 'offline',
        },
        body=build_offline_page(title).encode('utf-8'),
    )


def placeholder_image_response() -> Response:
    return Response(
        status=200,
        reason='OK',
        headers={
            'Content-Type': 'image/svg+xml',
            'Cache-Control': 'no-store',
            FALLBACK_HEADER: 'image',
        },
        body=PLACEHOLDER_IMAGE.encode('utf-8'),
    )


def network_error_response() -> Response:
    return Response(
        status=408,
        reason='Request Timeout',
        headers={
            'Content-Type': 'text/plain; charset=utf-8',
            FALLBACK_HEADER: 'error',
        },
        body=NETWORK_ERROR_TEXT.encode('utf-8'),
    )


class FallbackProvider:
    """
    Picks the fallback for a request by its destination: the offline page for
    navigations, a placeholder for images, and a plain 408 for anything else.
    """

    def __init__(self, storage: CacheStorage, names: CacheNames, offline_url: str, title: str) -> None:
        self.__storage = storage
        self.__names = names
        self.__offline_key = cache_key('GET', offline_url)
        self.__title = title

    def for_request(self, request: Request) -> Response:
        if request.destination == 'document':
            return self.offline_page()
        if request.destination == 'image':
            logger.info('Serving placeholder image for {}'.format(request.uri))
            return placeholder_image_response()
        logger.info('Serving network error for {}'.format(request.uri))
        return network_error_response()

    def offline_page(self) -> Response:
        try:
            entry = self.__storage.open(self.__names.static).match(self.__offline_key)
        except Exception:
            logger.exception('Could not read the installed offline page. Synthesizing a new one.')
            entry = None

        if entry is not None:
            logger.info('Serving installed offline page')
            response = entry.response.clone()
            response.headers[FALLBACK_HEADER] = 'offline'
            return response

        logger.info('No installed offline page. Synthesizing one.')
        return offline_page_response(self.__title)
