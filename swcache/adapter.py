from functools import partial
from io import BytesIO
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from .errors import NetworkError
from .messages import MessagePort
from .model import Request, Response
from .network import from_requests_response
from .worker import ServiceWorker


class ServiceWorkerAdapter(HTTPAdapter):
    """
    A transport adapter that lets a `ServiceWorker` answer the requests a
    session sends.

    The adapter is one of the worker's clients. Until the worker has claimed it
    (on activation), and for every non-GET request, it behaves exactly like a
    plain `HTTPAdapter`.
    """

    def __init__(self, worker: ServiceWorker, *args, port: Optional[MessagePort] = None, **kw) -> None:
        super().__init__(*args, **kw)
        self.worker = worker
        self.port = port
        self.controlled = False
        worker.register_client(self)

    def send(self, requests_request: requests.PreparedRequest, **kw) -> requests.Response:
        """
        Send a request. If the worker controls this adapter, the worker decides
        whether the answer comes from a cache, the network, or a fallback.
        """
        if not self.controlled or requests_request.method.upper() != 'GET':
            return super().send(requests_request, **kw)

        request = Request(method=requests_request.method,
                          uri=requests_request.url,
                          headers=dict(requests_request.headers))
        response = self.worker.handle_fetch(request, fetch=partial(self._send_over_network, requests_request, kw))
        return self._to_requests_response(requests_request, response)

    def _send_over_network(self, requests_request: requests.PreparedRequest, kw: dict, request: Request) -> Response:
        try:
            requests_response = super().send(requests_request, **kw)
        except requests.RequestException as e:
            raise NetworkError(request.uri, e) from e
        return from_requests_response(requests_response)

    def _to_requests_response(self, requests_request: requests.PreparedRequest, response: Response) -> requests.Response:
        result = requests.Response()
        result.status_code = response.status
        result.reason = response.reason
        result.headers = CaseInsensitiveDict(response.headers)
        result.raw = BytesIO(response.body)
        result.encoding = get_encoding_from_headers(result.headers)
        result.url = requests_request.url
        result.request = requests_request
        result.connection = self
        return result

    def close(self):
        self.worker.unregister_client(self)
        super().close()


def mount(session: requests.Session, worker: ServiceWorker, port: Optional[MessagePort] = None) -> ServiceWorkerAdapter:
    adapter = ServiceWorkerAdapter(worker, port=port)
    session.mount('http://', adapter)
    session.mount('https://', adapter)
    return adapter


def create(worker: ServiceWorker, port: Optional[MessagePort] = None) -> requests.Session:
    session = requests.Session()
    mount(session, worker, port)
    return session
