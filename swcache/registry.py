"""
Classification of outgoing requests into caching strategies.
"""

from datetime import timedelta
import logging
import re
from typing import Pattern, Sequence, Tuple

from .model import CachePurpose, Request, StrategyKind, StrategyRule
from .util import origin_of, url_path


logger = logging.getLogger(__name__)


DEFAULT_RULES = (
    StrategyRule(
        name='static',
        pattern=r'\.(?:css|js|mjs|woff2?|ttf|otf|eot)$',
        kind=StrategyKind.CACHE_FIRST,
        max_age=timedelta(days=7),
        cache=CachePurpose.STATIC,
        destinations=frozenset({'style', 'script', 'font'}),
    ),
    StrategyRule(
        name='images',
        pattern=r'\.(?:png|jpe?g|gif|svg|webp|avif|ico)$',
        kind=StrategyKind.CACHE_FIRST,
        max_age=timedelta(days=30),
        cache=CachePurpose.IMAGES,
        destinations=frozenset({'image'}),
        max_entries=200,
    ),
    StrategyRule(
        name='pages',
        pattern=r'(?:\.html?|/)$',
        kind=StrategyKind.NETWORK_FIRST,
        max_age=timedelta(days=1),
        cache=CachePurpose.DYNAMIC,
        destinations=frozenset({'document'}),
        max_entries=50,
    ),
    StrategyRule(
        name='api',
        pattern=r'^/api/',
        kind=StrategyKind.NETWORK_FIRST,
        max_age=timedelta(minutes=5),
        cache=CachePurpose.DYNAMIC,
        max_entries=100,
    ),
    StrategyRule(
        name='external',
        pattern=r'.*',
        kind=StrategyKind.STALE_WHILE_REVALIDATE,
        max_age=timedelta(days=1),
        cache=CachePurpose.DYNAMIC,
        cross_origin_only=True,
        max_entries=50,
    ),
)

DEFAULT_RULE = StrategyRule(
    name='default',
    pattern='',
    kind=StrategyKind.NETWORK_FIRST,
    max_age=timedelta(hours=1),
    cache=CachePurpose.DYNAMIC,
)


class StrategyRegistry:
    """
    An ordered, immutable set of rules. The first matching rule wins.

    Non-GET requests are not this registry's concern: the worker sends them
    straight to the network before ever classifying them.
    """

    def __init__(self,
                 origin: str,
                 rules: Sequence[StrategyRule] = DEFAULT_RULES,
                 default: StrategyRule = DEFAULT_RULE) -> None:
        self.__origin = origin_of(origin)
        self.__rules: Tuple[Tuple[StrategyRule, Pattern], ...] = tuple(
            (rule, re.compile(rule.pattern, re.IGNORECASE)) for rule in rules
        )
        self.__default = default

    @property
    def rules(self) -> Tuple[StrategyRule, ...]:
        return tuple(rule for rule, _ in self.__rules)

    @property
    def default(self) -> StrategyRule:
        return self.__default

    def classify(self, request: Request) -> StrategyRule:
        path = url_path(request.uri)
        cross_origin = origin_of(request.uri) != self.__origin

        for rule, pattern in self.__rules:
            if rule.cross_origin_only and not cross_origin:
                continue
            if pattern.search(path) or request.destination in rule.destinations:
                logger.debug('{} matched rule {}'.format(request.uri, rule.name))
                return rule

        logger.debug('{} matched no rule. Using the default rule.'.format(request.uri))
        return self.__default
