"""Configuration loader with type-safe dataclasses."""

from dataclasses import dataclass, field
from datetime import timedelta
import os
from pathlib import Path
from typing import Optional, Tuple

import yaml

from .cache import CacheStorage, FileCacheStorage, MemoryCacheStorage
from .errors import SwCacheError
from .model import CachePurpose, StrategyKind, StrategyRule
from .registry import DEFAULT_RULES


class ConfigError(SwCacheError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# A sweep more often than this would spend more time walking the caches than serving from them.
MIN_SWEEP_INTERVAL = 60

DEFAULT_SHELL_ASSETS = (
    '/',
    '/index.html',
    '/assets/css/styles.css',
    '/assets/js/main.js',
    '/assets/images/logo/icon.png',
    '/manifest.json',
)


@dataclass(frozen=True)
class CacheConfig:
    """Where and under which names the caches live."""

    prefix: str = 'swcache'
    version: str = 'v1'
    directory: Optional[str] = None  # None keeps every cache in memory
    directory_levels: int = 2

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ConfigError('Cache prefix cannot be empty')
        if not self.version:
            raise ConfigError('Cache version cannot be empty')
        if not 0 <= self.directory_levels <= 20:
            raise ConfigError('Cache directory levels must be between 0 and 20 (got {})'.format(self.directory_levels))

    def create_storage(self) -> CacheStorage:
        if self.directory:
            return FileCacheStorage(Path(self.directory), self.directory_levels)
        return MemoryCacheStorage()


@dataclass(frozen=True)
class SweepConfig:
    """Configuration for the periodic expiry sweep."""

    interval: int = 3600  # seconds between sweeps
    max_age: int = 7 * 24 * 3600  # entries older than this are evicted, whichever rule wrote them

    def __post_init__(self) -> None:
        if self.interval < MIN_SWEEP_INTERVAL:
            raise ConfigError('Sweep interval must be at least {} seconds (got {})'.format(
                MIN_SWEEP_INTERVAL, self.interval))
        if self.max_age <= 0:
            raise ConfigError('Sweep max age must be positive (got {})'.format(self.max_age))

    @property
    def max_age_delta(self) -> timedelta:
        return timedelta(seconds=self.max_age)


@dataclass(frozen=True)
class ShellConfig:
    """The assets cached at install, and the offline page served when navigation fails."""

    assets: Tuple[str, ...] = DEFAULT_SHELL_ASSETS
    offline_page: str = '/offline.html'
    title: str = 'swcache'

    def __post_init__(self) -> None:
        if not self.offline_page.startswith('/'):
            raise ConfigError("Offline page must be an absolute path (got '{}')".format(self.offline_page))
        for asset in self.assets:
            if not isinstance(asset, str) or not asset:
                raise ConfigError('Shell assets must be non-empty strings (got {!r})'.format(asset))


@dataclass(frozen=True)
class Config:
    origin: str = 'http://localhost'
    cache: CacheConfig = field(default_factory=CacheConfig)
    sweep: SweepConfig = field(default_factory=SweepConfig)
    shell: ShellConfig = field(default_factory=ShellConfig)
    rules: Tuple[StrategyRule, ...] = DEFAULT_RULES
    revalidation_workers: int = 4

    def __post_init__(self) -> None:
        if not self.origin.startswith(('http://', 'https://')):
            raise ConfigError("Origin must start with http:// or https:// (got '{}')".format(self.origin))
        names = [rule.name for rule in self.rules]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ConfigError('Duplicate rule names: {}'.format(', '.join(duplicates)))
        if self.revalidation_workers < 1:
            raise ConfigError('Revalidation workers must be at least 1 (got {})'.format(self.revalidation_workers))


def _parse_rule(data: dict, index: int) -> StrategyRule:
    if not isinstance(data, dict):
        raise ConfigError('Rule at index {} must be a dictionary'.format(index))

    name = data.get('name')
    if not name:
        raise ConfigError("Rule at index {} is missing 'name'".format(index))

    try:
        kind = StrategyKind(data.get('strategy'))
    except ValueError:
        choices = ', '.join(kind.value for kind in StrategyKind)
        raise ConfigError("Rule '{}' has unknown strategy {!r} (expected one of {})".format(
            name, data.get('strategy'), choices))

    try:
        cache = CachePurpose(data.get('cache', CachePurpose.DYNAMIC.value))
    except ValueError:
        raise ConfigError("Rule '{}' has unknown cache {!r}".format(name, data.get('cache')))

    max_age = data.get('max_age')
    if not isinstance(max_age, int) or isinstance(max_age, bool) or max_age <= 0:
        raise ConfigError("Rule '{}' needs a positive integer 'max_age' in seconds".format(name))

    max_entries = data.get('max_entries')
    if max_entries is not None and (not isinstance(max_entries, int) or max_entries < 1):
        raise ConfigError("Rule '{}' has invalid 'max_entries' {!r}".format(name, max_entries))

    destinations = data.get('destinations') or []
    if not isinstance(destinations, list):
        raise ConfigError("Rule '{}' 'destinations' must be a list".format(name))

    return StrategyRule(
        name=str(name),
        pattern=str(data.get('pattern', '')),
        kind=kind,
        max_age=timedelta(seconds=max_age),
        cache=cache,
        destinations=frozenset(str(destination) for destination in destinations),
        cross_origin_only=bool(data.get('cross_origin_only', False)),
        max_entries=max_entries,
    )


def _parse_cache_config(data: Optional[dict]) -> CacheConfig:
    if data is None:
        return CacheConfig()
    if not isinstance(data, dict):
        raise ConfigError("'cache' must be a dictionary")
    return CacheConfig(
        prefix=str(data.get('prefix', 'swcache')),
        version=str(data.get('version', 'v1')),
        directory=data.get('directory') or None,
        directory_levels=int(data.get('directory_levels', 2)),
    )


def _parse_sweep_config(data: Optional[dict]) -> SweepConfig:
    if data is None:
        return SweepConfig()
    if not isinstance(data, dict):
        raise ConfigError("'sweep' must be a dictionary")
    return SweepConfig(
        interval=int(data.get('interval', 3600)),
        max_age=int(data.get('max_age', 7 * 24 * 3600)),
    )


def _parse_shell_config(data: Optional[dict]) -> ShellConfig:
    if data is None:
        return ShellConfig()
    if not isinstance(data, dict):
        raise ConfigError("'shell' must be a dictionary")
    assets = data.get('assets', list(DEFAULT_SHELL_ASSETS))
    if not isinstance(assets, list):
        raise ConfigError("'shell.assets' must be a list")
    return ShellConfig(
        assets=tuple(assets),
        offline_page=str(data.get('offline_page', '/offline.html')),
        title=str(data.get('title', 'swcache')),
    )


def _apply_env_overrides(config_data: dict) -> dict:
    """
    Apply environment variable overrides to the raw configuration.

      SWCACHE_VERSION         overrides cache.version
      SWCACHE_CACHE_DIR       overrides cache.directory
      SWCACHE_SWEEP_INTERVAL  overrides sweep.interval

    @param config_data
      The parsed YAML document. It is updated in place.
    @return
      `config_data`, with the overrides applied.
    @throws ConfigError
      If a section is not a dictionary, or SWCACHE_SWEEP_INTERVAL is not an
      integer.
    """
    for section in ('cache', 'sweep'):
        if config_data.get(section) is None:
            config_data[section] = {}
        elif not isinstance(config_data[section], dict):
            raise ConfigError("'{}' must be a dictionary".format(section))

    version = os.environ.get('SWCACHE_VERSION')
    if version is not None:
        config_data['cache']['version'] = version

    cache_dir = os.environ.get('SWCACHE_CACHE_DIR')
    if cache_dir is not None:
        config_data['cache']['directory'] = cache_dir

    sweep_interval = os.environ.get('SWCACHE_SWEEP_INTERVAL')
    if sweep_interval is not None:
        try:
            config_data['sweep']['interval'] = int(sweep_interval)
        except ValueError:
            raise ConfigError('SWCACHE_SWEEP_INTERVAL must be an integer (got {!r})'.format(sweep_interval))

    return config_data


def load_config(config_path: str) -> Config:
    """
    Load and validate configuration from a YAML file.

    @param config_path
      Path to the YAML configuration file.
    @return
      The validated `Config`.
    @throws ConfigError
      If the file cannot be read or the configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError('Configuration file not found: {}'.format(config_path))

    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError('Failed to parse YAML configuration: {}'.format(e))
    except OSError as e:
        raise ConfigError('Failed to read configuration file: {}'.format(e))

    if data is None:
        data = {}

    if not isinstance(data, dict):
        raise ConfigError('Configuration must be a YAML dictionary')

    data = _apply_env_overrides(data)

    rules = DEFAULT_RULES
    rules_data = data.get('rules')
    if rules_data is not None:
        if not isinstance(rules_data, list):
            raise ConfigError("'rules' must be a list")
        rules = tuple(_parse_rule(rule_data, i) for i, rule_data in enumerate(rules_data))

    try:
        return Config(
            origin=str(data.get('origin', 'http://localhost')),
            cache=_parse_cache_config(data['cache']),
            sweep=_parse_sweep_config(data['sweep']),
            shell=_parse_shell_config(data.get('shell')),
            rules=rules,
            revalidation_workers=int(data.get('revalidation_workers', 4)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError('Invalid configuration value: {}'.format(e))
