from datetime import timedelta
from unittest import TestCase

from ddt import ddt, data, unpack

from swcache.model import CachePurpose, Request, StrategyKind, StrategyRule
from swcache.registry import DEFAULT_RULE, StrategyRegistry


@ddt
class TestStrategyRegistry(TestCase):
    def setUp(self):
        self.__sut = StrategyRegistry('https://shop.example.com')

    @data(
        # Static assets by extension.
        ('https://shop.example.com/assets/css/styles.css', '', 'static'),
        ('https://shop.example.com/assets/js/main.js', '', 'static'),
        ('https://shop.example.com/fonts/brand.woff2', '', 'static'),
        # A stylesheet on a CDN is still a static asset; extension rules come first.
        ('https://cdn.example.net/lib/reset.css', '', 'static'),
        # Images by extension or destination.
        ('https://shop.example.com/assets/images/logo.png', '', 'images'),
        ('https://shop.example.com/assets/images/hero.JPG', '', 'images'),
        ('https://shop.example.com/thumbnail', 'image', 'images'),
        # Pages.
        ('https://shop.example.com/pages/about.html', '', 'pages'),
        ('https://shop.example.com/', '', 'pages'),
        ('https://shop.example.com/products/cup', 'document', 'pages'),
        # API paths.
        ('https://shop.example.com/api/products', '', 'api'),
        ('https://shop.example.com/api/products?page=2', '', 'api'),
        # Anything else from another origin.
        ('https://fonts.example.org/css2?family=Inter', '', 'external'),
    )
    @unpack
    def test_classify(self, uri, destination, expected_rule):
        rule = self.__sut.classify(Request(method='GET', uri=uri, headers={}, destination=destination))

        self.assertEqual(expected_rule, rule.name)

    @data(
        'https://shop.example.com/manifest.json',
        'https://shop.example.com/robots.txt',
        'https://shop.example.com/apiary',
    )
    def test_unmatched_requests_get_the_default_rule(self, uri):
        rule = self.__sut.classify(Request(method='GET', uri=uri, headers={}))

        self.assertIs(DEFAULT_RULE, rule)
        self.assertEqual(StrategyKind.NETWORK_FIRST, rule.kind)
        self.assertEqual(timedelta(hours=1), rule.max_age)

    def test_default_rules_use_the_expected_strategies(self):
        expected = {
            'static': (StrategyKind.CACHE_FIRST, timedelta(days=7), CachePurpose.STATIC),
            'images': (StrategyKind.CACHE_FIRST, timedelta(days=30), CachePurpose.IMAGES),
            'pages': (StrategyKind.NETWORK_FIRST, timedelta(days=1), CachePurpose.DYNAMIC),
            'api': (StrategyKind.NETWORK_FIRST, timedelta(minutes=5), CachePurpose.DYNAMIC),
            'external': (StrategyKind.STALE_WHILE_REVALIDATE, timedelta(days=1), CachePurpose.DYNAMIC),
        }

        actual = {rule.name: (rule.kind, rule.max_age, rule.cache) for rule in self.__sut.rules}

        self.assertEqual(expected, actual)
        self.assertEqual(['static', 'images', 'pages', 'api', 'external'], [rule.name for rule in self.__sut.rules])

    def test_first_matching_rule_wins(self):
        broad = StrategyRule(name='broad', pattern=r'^/', kind=StrategyKind.CACHE_FIRST, max_age=timedelta(days=1))
        narrow = StrategyRule(name='narrow', pattern=r'^/api/', kind=StrategyKind.NETWORK_FIRST,
                              max_age=timedelta(minutes=1))
        sut = StrategyRegistry('https://shop.example.com', rules=[broad, narrow])

        rule = sut.classify(Request(method='GET', uri='https://shop.example.com/api/products', headers={}))

        self.assertEqual('broad', rule.name)

    def test_cross_origin_rules_ignore_the_own_origin(self):
        rule = StrategyRule(name='external', pattern='.*', kind=StrategyKind.STALE_WHILE_REVALIDATE,
                            max_age=timedelta(days=1), cross_origin_only=True)
        sut = StrategyRegistry('https://shop.example.com', rules=[rule])

        own = sut.classify(Request(method='GET', uri='https://SHOP.example.com:443/data', headers={}))
        other = sut.classify(Request(method='GET', uri='https://api.example.org/data', headers={}))

        self.assertEqual('default', own.name)
        self.assertEqual('external', other.name)
