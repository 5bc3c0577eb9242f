from abc import ABC, abstractmethod
from dataclasses import dataclass
import hashlib
import json
import logging
import os
from pathlib import Path
import shutil
import tempfile
import threading
from typing import Dict, Iterator, List, Mapping, Optional
from urllib.parse import quote, unquote

from .errors import CacheWriteError
from .util import clamp
from .model import CacheEntry, Request, Response


logger = logging.getLogger(__name__)


class Cache(ABC):
    """
    An abstraction of a single named response cache.

    A cache has a relatively narrow scope: to remember a response under a key such that it can be recalled later.
    Note that this deliberately precludes certain responsibilities such as expiry. The strategies decide when an entry
    is stale, and also how to replace it.

    Each operation is atomic on its own. Nothing here offers read-modify-write atomicity across operations.
    """

    @abstractmethod
    def match(self, key: str) -> Optional[CacheEntry]:
        """
        Retrieve the entry stored under `key`.

        @param key
          The canonical request key, as built by `util.cache_key()`.
        @return
          The cached entry, or `None` if there is none.
        """

    @abstractmethod
    def put(self, key: str, entry: CacheEntry) -> None:
        """
        Store `entry` under `key`, replacing any entry already there.

        @throws CacheWriteError
          If the entry could not be persisted.
        """

    @abstractmethod
    def delete(self, key: str) -> bool:
        """
        Delete the entry stored under `key`.

        @return
          Whether there was an entry to delete.
        """

    @abstractmethod
    def keys(self) -> List[str]:
        """
        List the keys of every entry in the cache.
        """

    def entries(self) -> Iterator[CacheEntry]:
        for key in self.keys():
            entry = self.match(key)
            if entry is not None:
                yield entry

    def size(self) -> int:
        """
        The total size of every stored body, in bytes.
        """
        return sum(entry.size for entry in self.entries())

    def close(self):
        """
        Close any resources associated with the cache.
        """


class CacheStorage(ABC):
    """
    The set of named caches available to the worker.
    """

    @abstractmethod
    def open(self, name: str) -> Cache:
        """
        Open the cache called `name`, creating it if it does not exist yet.
        """

    @abstractmethod
    def has(self, name: str) -> bool:
        pass

    @abstractmethod
    def delete(self, name: str) -> bool:
        """
        Delete the cache called `name` and everything in it.

        @return
          Whether the cache existed.
        """

    @abstractmethod
    def keys(self) -> List[str]:
        """
        List the names of every cache.
        """

    def match(self, key: str) -> Optional[CacheEntry]:
        """
        Look `key` up in every cache, in name order, returning the first hit.
        """
        for name in self.keys():
            entry = self.open(name).match(key)
            if entry is not None:
                return entry
        return None

    def close(self):
        pass


class MemoryCache(Cache):
    def __init__(self) -> None:
        self.__entries: Dict[str, CacheEntry] = {}
        self.__lock = threading.Lock()

    def match(self, key: str) -> Optional[CacheEntry]:
        with self.__lock:
            return self.__entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        with self.__lock:
            self.__entries[key] = entry

    def delete(self, key: str) -> bool:
        with self.__lock:
            return self.__entries.pop(key, None) is not None

    def keys(self) -> List[str]:
        with self.__lock:
            return list(self.__entries)


class MemoryCacheStorage(CacheStorage):
    def __init__(self) -> None:
        self.__caches: Dict[str, MemoryCache] = {}
        self.__lock = threading.Lock()

    def open(self, name: str) -> Cache:
        with self.__lock:
            if name not in self.__caches:
                logger.info('Creating in-memory cache {}'.format(name))
                self.__caches[name] = MemoryCache()
            return self.__caches[name]

    def has(self, name: str) -> bool:
        with self.__lock:
            return name in self.__caches

    def delete(self, name: str) -> bool:
        with self.__lock:
            return self.__caches.pop(name, None) is not None

    def keys(self) -> List[str]:
        with self.__lock:
            return sorted(self.__caches)


@dataclass
class FileCacheEntryModel:
    entry_path: Path
    key: str
    request: Request
    status: int
    reason: str
    headers: Mapping[str, str]
    body_path: Path


class CorruptEntry(Exception):
    def __init__(self, entry_path: Path):
        super().__init__()
        self.__entry_path = entry_path

    @property
    def entry_path(self) -> Path:
        return self.__entry_path


class FileCache(Cache):
    def __init__(self, directory: Path, cache_directory_levels: int) -> None:
        """
        Initialize the file cache.

        @param directory
          The path to the root directory of the cache.
        @param cache_directory_levels
          The number of subdirectory levels to use in the cache directory. This
          will be clamped to be between 0 and 20, respectively.
        """
        self.__entry_directory = directory / 'entries'
        self.__body_directory = directory / 'bodies'
        self.__cache_directory_levels = clamp(cache_directory_levels, 0, 20)
        self.__lock = threading.RLock()

    def _get_path(self, key: str) -> Path:
        hashed = hashlib.sha256(key.encode('utf-8')).hexdigest()
        return self._split_path(hashed)

    def _split_path(self, path: str) -> Path:
        subdirectories = (list(path[:self.__cache_directory_levels])
                          + [path[self.__cache_directory_levels:]])
        return Path(*subdirectories)

    def _load_entry(self, entry_path: Path) -> FileCacheEntryModel:
        """
        Read a cache entry from a file.

        @param entry_path
            The path to the entry file.
        @return
            The decoded contents of the entry file.
        @throws FileNotFoundError
            If there is no entry file.
        @throws CorruptEntry
            If the entry file could not be parsed.
        """
        try:
            with open(entry_path, 'r', encoding='utf-8') as f:
                entry = json.load(f)
            return FileCacheEntryModel(entry_path=entry_path,
                                       key=entry['key'],
                                       request=Request(
                                           method=entry['request']['method'],
                                           uri=entry['request']['uri'],
                                           headers=entry['request']['headers'],
                                           destination=entry['request'].get('destination', ''),
                                       ),
                                       status=entry['response']['status'],
                                       reason=entry['response']['reason'],
                                       headers=entry['response']['headers'],
                                       body_path=self.__body_directory / Path(entry['response']['body']))
        except (KeyError, TypeError, ValueError):
            raise CorruptEntry(entry_path)

    def _discard(self, paths: List[Path]) -> None:
        for path in paths:
            try:
                logger.info('Deleting {}'.format(path))
                path.unlink()
            except FileNotFoundError:
                pass
            except OSError:
                logger.exception('Unexpected error occurred while deleting {}'.format(path))

    def match(self, key: str) -> Optional[CacheEntry]:
        entry_path = self.__entry_directory / self._get_path(key)
        with self.__lock:
            try:
                entry_model = self._load_entry(entry_path)
                with open(entry_model.body_path, 'rb') as f:
                    body = f.read()
            except CorruptEntry as e:
                logger.warning('Found a corrupt cache entry. Deleting the entry file.')
                self._discard([e.entry_path])
                return None
            except FileNotFoundError:
                if entry_path.exists():
                    logger.warning('Cache entry for {} points at a missing body. Deleting the entry file.'.format(key))
                    self._discard([entry_path])
                return None

        return CacheEntry(
            key=entry_model.key,
            request=entry_model.request,
            response=Response(
                status=entry_model.status,
                reason=entry_model.reason,
                headers=entry_model.headers,
                body=body,
            )
        )

    def put(self, key: str, entry: CacheEntry) -> None:
        entry_path = self.__entry_directory / self._get_path(key)
        # We use a randomized body path as the entry points to it anyways. Replacing an entry never touches the body
        # that a concurrent reader may be about to open.
        body_path = self.__body_directory / self._split_path(os.urandom(32).hex())

        serialized = {
            'key': key,
            'request': {
                'method': entry.request.method,
                'uri': entry.request.uri,
                'headers': dict(entry.request.headers),
                'destination': entry.request.destination,
            },
            'response': {
                'status': entry.response.status,
                'reason': entry.response.reason,
                'headers': dict(entry.response.headers),
                'body': str(body_path.relative_to(self.__body_directory)),
            }
        }

        with self.__lock:
            try:
                previous = self._load_entry(entry_path)
            except (CorruptEntry, FileNotFoundError):
                previous = None

            try:
                with tempfile.NamedTemporaryFile(mode='wb', delete=False) as temp_body_file:
                    temp_body_file.write(entry.response.body)
                body_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(temp_body_file.name, str(body_path))

                entry_path.parent.mkdir(parents=True, exist_ok=True)
                with open(entry_path, 'w', encoding='utf-8') as f:
                    json.dump(serialized, f)
            except (OSError, TypeError, ValueError) as e:
                raise CacheWriteError('Could not write cache entry for {}: {}'.format(key, e)) from e

            if previous is not None:
                self._discard([previous.body_path])

    def delete(self, key: str) -> bool:
        entry_path = self.__entry_directory / self._get_path(key)
        with self.__lock:
            try:
                entry_model = self._load_entry(entry_path)
                paths_to_delete = [entry_model.entry_path, entry_model.body_path]
            except CorruptEntry as e:
                logger.warning('Found a corrupt cache entry. Marking only the entry file for deletion.')
                paths_to_delete = [e.entry_path]
            except FileNotFoundError:
                logger.info('No matching cache entry found. Nothing to delete.')
                return False

            self._discard(paths_to_delete)
        return True

    def keys(self) -> List[str]:
        if not self.__entry_directory.exists():
            return []

        keys = []
        with self.__lock:
            for entry_path in sorted(self.__entry_directory.rglob('*')):
                if not entry_path.is_file():
                    continue
                try:
                    keys.append(self._load_entry(entry_path).key)
                except CorruptEntry as e:
                    logger.warning('Found a corrupt cache entry. Deleting the entry file.')
                    self._discard([e.entry_path])
                except FileNotFoundError:
                    pass
        return keys


class FileCacheStorage(CacheStorage):
    """
    Caches persisted below a directory, one subdirectory per cache name.
    """

    def __init__(self, directory: Path, cache_directory_levels: int = 2) -> None:
        self.__directory = Path(directory)
        self.__cache_directory_levels = cache_directory_levels
        self.__caches: Dict[str, FileCache] = {}
        self.__lock = threading.Lock()

    def _cache_directory(self, name: str) -> Path:
        return self.__directory / quote(name, safe='')

    def open(self, name: str) -> Cache:
        with self.__lock:
            if name not in self.__caches:
                directory = self._cache_directory(name)
                logger.info('Opening file cache {} at {}'.format(name, directory))
                directory.mkdir(parents=True, exist_ok=True)
                self.__caches[name] = FileCache(directory, self.__cache_directory_levels)
            return self.__caches[name]

    def has(self, name: str) -> bool:
        return self._cache_directory(name).is_dir()

    def delete(self, name: str) -> bool:
        with self.__lock:
            self.__caches.pop(name, None)
            directory = self._cache_directory(name)
            if not directory.is_dir():
                return False
            logger.info('Deleting file cache {}'.format(name))
            shutil.rmtree(directory)
            return True

    def keys(self) -> List[str]:
        if not self.__directory.is_dir():
            return []
        return sorted(unquote(path.name) for path in self.__directory.iterdir() if path.is_dir())
