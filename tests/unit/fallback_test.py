from unittest import TestCase

from ddt import ddt, data, unpack
from mockito import mock, unstub, when

from swcache.cache import CacheStorage, MemoryCacheStorage
from swcache.fallback import FallbackProvider, build_offline_page
from swcache.model import CacheEntry, CacheNames, Request, Response
from swcache.util import FALLBACK_HEADER, cache_key


NAMES = CacheNames(prefix='shop', version='v1')
OFFLINE_URL = 'https://shop.example.com/offline.html'


@ddt
class TestFallbackProvider(TestCase):
    def setUp(self):
        self.storage = MemoryCacheStorage()
        self.sut = FallbackProvider(self.storage, NAMES, OFFLINE_URL, 'Shop')

    def tearDown(self):
        unstub()

    @data(
        ('document', 200, 'text/html; charset=utf-8', 'offline'),
        ('image', 200, 'image/svg+xml', 'image'),
        ('script', 408, 'text/plain; charset=utf-8', 'error'),
        ('', 408, 'text/plain; charset=utf-8', 'error'),
    )
    @unpack
    def test_fallback_by_destination(self, destination, status, content_type, marker):
        response = self.sut.for_request(Request(method='GET', uri='https://shop.example.com/x', headers={},
                                                destination=destination))

        self.assertEqual(status, response.status)
        self.assertEqual(content_type, response.headers['Content-Type'])
        self.assertEqual(marker, response.headers[FALLBACK_HEADER])

    def test_the_installed_offline_page_is_preferred(self):
        key = cache_key('GET', OFFLINE_URL)
        installed = Response(status=200, reason='OK', headers={'Content-Type': 'text/html'}, body=b'<p>custom</p>')
        self.storage.open(NAMES.static).put(key, CacheEntry(
            key=key, request=Request(method='GET', uri=OFFLINE_URL, headers={}), response=installed))

        response = self.sut.offline_page()

        self.assertEqual(b'<p>custom</p>', response.body)
        self.assertEqual('offline', response.headers[FALLBACK_HEADER])
        self.assertNotIn(FALLBACK_HEADER, installed.headers, 'The cached copy must not be modified')

    def test_a_broken_storage_still_gets_an_offline_page(self):
        storage = mock(CacheStorage)
        when(storage).open(NAMES.static).thenRaise(OSError('disk gone'))
        sut = FallbackProvider(storage, NAMES, OFFLINE_URL, 'Shop')

        response = sut.offline_page()

        self.assertEqual(build_offline_page('Shop').encode('utf-8'), response.body)

    def test_the_offline_page_is_synthesized_when_nothing_is_installed(self):
        response = self.sut.for_request(Request(method='GET', uri='https://shop.example.com/', headers={},
                                                destination='document'))

        self.assertEqual(build_offline_page('Shop').encode('utf-8'), response.body)
