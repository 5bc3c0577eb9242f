import logging
from typing import Optional

import requests

from .errors import NetworkError
from .model import Request, Response


logger = logging.getLogger(__name__)

# Headers describing the wire encoding of a body. `requests` hands us the
# decoded body, so these no longer describe what we store.
_WIRE_HEADERS = {'content-encoding', 'transfer-encoding', 'content-length'}


def from_requests_response(requests_response: requests.Response) -> Response:
    """
    Read a `requests` response in full and convert it to our `Response`.
    """
    body = requests_response.content
    headers = {name: value for name, value in requests_response.headers.items()
               if name.lower() not in _WIRE_HEADERS}
    headers['Content-Length'] = str(len(body))
    return Response(status=requests_response.status_code,
                    reason=requests_response.reason or '',
                    headers=headers,
                    body=body)


class RequestsFetch:
    """
    Fetches requests over the network with a `requests.Session`.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: Optional[float] = 30) -> None:
        self.__session = session or requests.Session()
        self.__timeout = timeout

    def __call__(self, request: Request) -> Response:
        logger.info('Fetching {} {} from the network'.format(request.method, request.uri))
        try:
            requests_response = self.__session.request(request.method,
                                                       request.uri,
                                                       headers=dict(request.headers),
                                                       timeout=self.__timeout)
            return from_requests_response(requests_response)
        except requests.RequestException as e:
            raise NetworkError(request.uri, e) from e

    def close(self) -> None:
        self.__session.close()
