from datetime import timedelta
import os
from pathlib import Path
from tempfile import TemporaryDirectory
import textwrap
from unittest import TestCase
from unittest.mock import patch

from ddt import ddt, data, unpack

from swcache.cache import FileCacheStorage, MemoryCacheStorage
from swcache.config import (DEFAULT_SHELL_ASSETS, CacheConfig, Config, ConfigError, ShellConfig, SweepConfig,
                            load_config)
from swcache.model import CachePurpose, StrategyKind
from swcache.registry import DEFAULT_RULES


@ddt
class TestLoadConfig(TestCase):
    def setUp(self):
        self.__directory = TemporaryDirectory()
        self.__path = Path(self.__directory.name) / 'swcache.yaml'
        environment = patch.dict(os.environ)
        environment.start()
        self.addCleanup(environment.stop)
        for name in ('SWCACHE_VERSION', 'SWCACHE_CACHE_DIR', 'SWCACHE_SWEEP_INTERVAL'):
            os.environ.pop(name, None)

    def tearDown(self):
        self.__directory.cleanup()

    def load(self, contents: str) -> Config:
        self.__path.write_text(textwrap.dedent(contents), encoding='utf-8')
        return load_config(str(self.__path))

    def test_full_config(self):
        config = self.load("""
            origin: https://shop.example.com
            cache:
              prefix: shop
              version: v3
              directory: /var/cache/shop
              directory_levels: 3
            sweep:
              interval: 600
              max_age: 86400
            shell:
              assets: [/, /assets/css/styles.css]
              offline_page: /offline/index.html
              title: Shop
            revalidation_workers: 2
            rules:
              - name: api
                pattern: ^/api/
                strategy: networkFirst
                max_age: 60
                max_entries: 10
              - name: avatars
                strategy: cacheFirst
                cache: images
                max_age: 3600
                destinations: [image]
              - name: cdn
                pattern: .*
                strategy: staleWhileRevalidate
                max_age: 86400
                cross_origin_only: true
            """)

        self.assertEqual('https://shop.example.com', config.origin)
        self.assertEqual(CacheConfig(prefix='shop', version='v3', directory='/var/cache/shop', directory_levels=3),
                         config.cache)
        self.assertEqual(SweepConfig(interval=600, max_age=86400), config.sweep)
        self.assertEqual(timedelta(days=1), config.sweep.max_age_delta)
        self.assertEqual(ShellConfig(assets=('/', '/assets/css/styles.css'), offline_page='/offline/index.html',
                                     title='Shop'), config.shell)
        self.assertEqual(2, config.revalidation_workers)

        api, avatars, cdn = config.rules
        self.assertEqual(('api', '^/api/', StrategyKind.NETWORK_FIRST, timedelta(minutes=1), CachePurpose.DYNAMIC, 10),
                         (api.name, api.pattern, api.kind, api.max_age, api.cache, api.max_entries))
        self.assertEqual((StrategyKind.CACHE_FIRST, CachePurpose.IMAGES, frozenset({'image'}), ''),
                         (avatars.kind, avatars.cache, avatars.destinations, avatars.pattern))
        self.assertTrue(cdn.cross_origin_only)
        self.assertEqual(StrategyKind.STALE_WHILE_REVALIDATE, cdn.kind)

    @data('', '# nothing here\n', '{}')
    def test_empty_config_uses_defaults(self, contents):
        config = self.load(contents)

        self.assertEqual('http://localhost', config.origin)
        self.assertEqual(CacheConfig(), config.cache)
        self.assertEqual(SweepConfig(interval=3600, max_age=7 * 24 * 3600), config.sweep)
        self.assertEqual(DEFAULT_SHELL_ASSETS, config.shell.assets)
        self.assertEqual(DEFAULT_RULES, config.rules)

    def test_environment_overrides(self):
        os.environ['SWCACHE_VERSION'] = 'v9'
        os.environ['SWCACHE_CACHE_DIR'] = '/tmp/swcache'
        os.environ['SWCACHE_SWEEP_INTERVAL'] = '120'

        config = self.load("""
            cache:
              prefix: shop
              version: v1
            """)

        self.assertEqual('shop', config.cache.prefix)
        self.assertEqual('v9', config.cache.version)
        self.assertEqual('/tmp/swcache', config.cache.directory)
        self.assertEqual(120, config.sweep.interval)

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_config(str(self.__path))

    @data(
        ('origin: [unclosed', 'Failed to parse YAML'),
        ('- just\n- a list\n', 'must be a YAML dictionary'),
        ('origin: ftp://shop.example.com', 'Origin must start with'),
        ('cache: nope', "'cache' must be a dictionary"),
        ('cache: {version: ""}', 'version cannot be empty'),
        ('sweep: {interval: 5}', 'at least 60 seconds'),
        ('sweep: {max_age: 0}', 'max age must be positive'),
        ('shell: {offline_page: offline.html}', 'absolute path'),
        ('shell: {assets: /index.html}', "'shell.assets' must be a list"),
        ('rules: {name: api}', "'rules' must be a list"),
        ('rules: [api]', 'must be a dictionary'),
        ('rules: [{strategy: cacheFirst, max_age: 60}]', "missing 'name'"),
        ('rules: [{name: api, strategy: cacheLast, max_age: 60}]', 'unknown strategy'),
        ('rules: [{name: api, strategy: cacheFirst, max_age: 60, cache: videos}]', 'unknown cache'),
        ('rules: [{name: api, strategy: cacheFirst}]', "'max_age'"),
        ('rules: [{name: api, strategy: cacheFirst, max_age: 60, max_entries: 0}]', "'max_entries'"),
        ('rules: [{name: api, strategy: cacheFirst, max_age: 60},'
         ' {name: api, strategy: networkFirst, max_age: 60}]', 'Duplicate rule names: api'),
        ('revalidation_workers: 0', 'at least 1'),
        ('revalidation_workers: many', 'Invalid configuration value'),
    )
    @unpack
    def test_invalid_config(self, contents, message):
        with self.assertRaises(ConfigError) as raised:
            self.load(contents)

        self.assertIn(message, str(raised.exception))

    def test_invalid_environment_override(self):
        os.environ['SWCACHE_SWEEP_INTERVAL'] = 'hourly'

        with self.assertRaises(ConfigError):
            self.load('{}')


class TestCacheConfig(TestCase):
    def test_memory_storage_by_default(self):
        self.assertIsInstance(CacheConfig().create_storage(), MemoryCacheStorage)

    def test_file_storage_with_a_directory(self):
        with TemporaryDirectory() as directory:
            self.assertIsInstance(CacheConfig(directory=directory).create_storage(), FileCacheStorage)
