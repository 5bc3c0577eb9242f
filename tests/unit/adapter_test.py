from io import BytesIO
from unittest import TestCase

from mockito import unstub, verify, when
import requests
from requests.adapters import HTTPAdapter

from swcache import adapter
from swcache.cache import MemoryCacheStorage
from swcache.config import CacheConfig, Config, ShellConfig
from swcache.messages import QueuePort
from swcache.model import CacheNames
from swcache.util import CACHE_DATE_HEADER, FALLBACK_HEADER, cache_key
from swcache.worker import ServiceWorker

from fakes import FakeClock, FakeNetwork, ok


ORIGIN = 'https://shop.example.com'
NAMES = CacheNames(prefix='shop', version='v1')


def wire_response(status_code: int, body: bytes, content_type: str) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.reason = 'OK' if status_code == 200 else 'Server Error'
    response.headers['Content-Type'] = content_type
    response.raw = BytesIO(body)
    return response


class TestServiceWorkerAdapter(TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.storage = MemoryCacheStorage()
        config = Config(origin=ORIGIN,
                        cache=CacheConfig(prefix='shop', version='v1'),
                        shell=ShellConfig(assets=('/',), title='Shop'))
        self.worker = ServiceWorker(config=config,
                                    storage=self.storage,
                                    fetch=FakeNetwork({ORIGIN + '/': ok(b'<html>home</html>', 'text/html')}),
                                    clock=self.clock)
        self.port = QueuePort()
        self.session = requests.Session()
        self.adapter = adapter.mount(self.session, self.worker, self.port)

    def tearDown(self):
        unstub()
        self.session.close()
        self.worker.close()

    def test_an_uncontrolled_adapter_is_a_plain_adapter(self):
        when(HTTPAdapter).send(...).thenReturn(wire_response(200, b'body {}', 'text/css'))

        response = self.session.get(ORIGIN + '/assets/css/styles.css')

        self.assertFalse(self.adapter.controlled)
        self.assertEqual('body {}', response.text)
        self.assertEqual([], self.storage.keys())

    def test_activation_claims_the_adapter(self):
        self.worker.start(sweep=False)

        self.assertTrue(self.adapter.controlled)
        self.assertEqual({'type': 'SW_ACTIVATED', 'version': 'v1'}, self.port.receive(timeout=1))

    def test_a_controlled_adapter_serves_from_the_cache(self):
        self.worker.start(sweep=False)
        when(HTTPAdapter).send(...).thenReturn(wire_response(200, b'body {}', 'text/css; charset=utf-8'))

        first = self.session.get(ORIGIN + '/assets/css/styles.css')
        second = self.session.get(ORIGIN + '/assets/css/styles.css')

        verify(HTTPAdapter, times=1).send(...)
        for response in (first, second):
            self.assertEqual(200, response.status_code)
            self.assertEqual('body {}', response.text)
            self.assertEqual('utf-8', response.encoding)
            self.assertEqual(ORIGIN + '/assets/css/styles.css', response.url)
        self.assertIn(CACHE_DATE_HEADER, self.storage.open(NAMES.static).match(
            cache_key('GET', ORIGIN + '/assets/css/styles.css')).response.headers)
        self.assertEqual(1, self.worker.metrics.cache_hits)

    def test_a_connection_error_becomes_a_fallback(self):
        self.worker.start(sweep=False)
        when(HTTPAdapter).send(...).thenRaise(requests.ConnectionError('offline'))

        page = self.session.get(ORIGIN + '/pages/about.html')
        image = self.session.get(ORIGIN + '/assets/images/hero.png')
        api = self.session.get(ORIGIN + '/api/products')

        self.assertEqual(200, page.status_code)
        self.assertEqual('offline', page.headers[FALLBACK_HEADER])
        self.assertIn('You are offline', page.text)
        self.assertEqual('image/svg+xml', image.headers['Content-Type'])
        self.assertEqual(408, api.status_code)
        self.assertEqual('Network error happened', api.text)

    def test_other_methods_pass_through(self):
        self.worker.start(sweep=False)
        when(HTTPAdapter).send(...).thenReturn(wire_response(201, b'{"id": 1}', 'application/json'))

        response = self.session.post(ORIGIN + '/api/orders', json={'item': 'cup'})

        self.assertEqual(201, response.status_code)
        self.assertEqual({'id': 1}, response.json())
        self.assertEqual([], self.storage.open(NAMES.dynamic).keys())

    def test_other_methods_still_raise(self):
        self.worker.start(sweep=False)
        when(HTTPAdapter).send(...).thenRaise(requests.ConnectionError('offline'))

        with self.assertRaises(requests.ConnectionError):
            self.session.delete(ORIGIN + '/api/orders/1')

    def test_close_unregisters(self):
        self.adapter.close()

        self.assertNotIn(self.adapter, self.worker.clients.all())

    def test_create(self):
        session = adapter.create(self.worker)
        try:
            mounted = session.get_adapter(ORIGIN + '/')
            self.assertIsInstance(mounted, adapter.ServiceWorkerAdapter)
            self.assertIn(mounted, self.worker.clients.all())
        finally:
            session.close()
