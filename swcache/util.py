import dataclasses
from datetime import datetime, timezone
from enum import Enum
import json
import os
from typing import Mapping, Optional
from urllib.parse import urlsplit, urlunsplit


CACHE_DATE_HEADER = 'sw-cache-date'
FALLBACK_HEADER = 'sw-fallback'

_DEFAULT_PORTS = {'http': 80, 'https': 443}

_DESTINATIONS_BY_EXTENSION = {
    '.html': 'document',
    '.htm': 'document',
    '.css': 'style',
    '.js': 'script',
    '.mjs': 'script',
    '.woff': 'font',
    '.woff2': 'font',
    '.ttf': 'font',
    '.otf': 'font',
    '.eot': 'font',
    '.png': 'image',
    '.jpg': 'image',
    '.jpeg': 'image',
    '.gif': 'image',
    '.svg': 'image',
    '.webp': 'image',
    '.avif': 'image',
    '.ico': 'image',
}


def clamp(value, min, max):
    return sorted((min, value, max))[1]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_cache_date(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()


def parse_cache_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a `sw-cache-date` header value.

    @return
      An aware datetime, or `None` if the value is missing or unparsable.
    """
    if not value:
        return None
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def canonical_url(url: str) -> str:
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or '').lower()
    netloc = host
    if parts.port is not None and parts.port != _DEFAULT_PORTS.get(scheme):
        netloc = '{}:{}'.format(host, parts.port)
    if parts.username:
        credentials = parts.username
        if parts.password:
            credentials += ':' + parts.password
        netloc = credentials + '@' + netloc
    return urlunsplit((scheme, netloc, parts.path or '/', parts.query, ''))


def cache_key(method: str, url: str) -> str:
    return '{} {}'.format(method.upper(), canonical_url(url))


def origin_of(url: str) -> str:
    parts = urlsplit(canonical_url(url))
    return '{}://{}'.format(parts.scheme, parts.netloc.rpartition('@')[2])


def url_path(url: str) -> str:
    return urlsplit(url).path or '/'


def infer_destination(url: str, headers: Mapping[str, str]) -> str:
    """
    Guess what a request is for, much like a browser's `Request.destination`.

    The path extension wins; otherwise the `Accept` header decides. A path
    without an extension that accepts HTML is a navigation.
    """
    extension = os.path.splitext(url_path(url))[1].lower()
    if extension in _DESTINATIONS_BY_EXTENSION:
        return _DESTINATIONS_BY_EXTENSION[extension]

    accept = ''
    for name, value in headers.items():
        if name.lower() == 'accept':
            accept = value.lower()
            break
    if 'text/html' in accept:
        return 'document'
    if accept.startswith('image/'):
        return 'image'
    return ''


class DataclassJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if dataclasses.is_dataclass(o):
            return dataclasses.asdict(o)
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        return super().default(o)
