"""
The control channel between a host and its worker.

A host posts a message `{'type': ..., 'payload': {...}}` together with zero or
more reply ports. Replies are posted to the first port.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
import json
import logging
import queue
import threading
from typing import TYPE_CHECKING, Any, Mapping, Optional, Sequence, TextIO

from .util import DataclassJSONEncoder

if TYPE_CHECKING:
    from .worker import ServiceWorker


logger = logging.getLogger(__name__)


class Command(Enum):
    GET_PERFORMANCE_METRICS = 'GET_PERFORMANCE_METRICS'
    SKIP_WAITING = 'SKIP_WAITING'
    CLEAR_CACHE = 'CLEAR_CACHE'
    PREFETCH_RESOURCES = 'PREFETCH_RESOURCES'


class MessagePort(ABC):
    @abstractmethod
    def post_message(self, message: Mapping[str, Any]) -> None:
        pass


class QueuePort(MessagePort):
    """
    A port whose messages are collected on an in-process queue.
    """

    def __init__(self) -> None:
        self.__queue = queue.Queue()

    def post_message(self, message: Mapping[str, Any]) -> None:
        self.__queue.put(message)

    def receive(self, timeout: Optional[float] = None) -> Mapping[str, Any]:
        """
        @throws queue.Empty
          If no message arrives within `timeout` seconds.
        """
        return self.__queue.get(timeout=timeout)

    def empty(self) -> bool:
        return self.__queue.empty()


class JsonLinesPort(MessagePort):
    """
    A port that writes each message as one line of JSON to a text stream.
    """

    def __init__(self, stream: TextIO) -> None:
        self.__stream = stream
        self.__lock = threading.Lock()

    def post_message(self, message: Mapping[str, Any]) -> None:
        line = json.dumps(message, cls=DataclassJSONEncoder, sort_keys=True)
        with self.__lock:
            self.__stream.write(line + '\n')
            self.__stream.flush()


@dataclass
class Message:
    command: Command
    payload: Mapping[str, Any] = field(default_factory=dict)
    ports: Sequence[MessagePort] = ()

    @classmethod
    def parse(cls, data: Any, ports: Sequence[MessagePort] = ()) -> Optional['Message']:
        """
        @return
          The parsed message, or `None` if `data` is not a message this worker understands.
        """
        if not isinstance(data, Mapping):
            return None
        try:
            command = Command(data.get('type'))
        except ValueError:
            return None
        payload = data.get('payload') or {}
        if not isinstance(payload, Mapping):
            return None
        return cls(command=command, payload=payload, ports=tuple(ports))

    def reply(self, message: Mapping[str, Any]) -> None:
        if self.ports:
            self.ports[0].post_message(message)


class MessageDispatcher:
    def __init__(self, worker: 'ServiceWorker') -> None:
        self.__worker = worker
        self.__handlers = {
            Command.GET_PERFORMANCE_METRICS: self._get_performance_metrics,
            Command.SKIP_WAITING: self._skip_waiting,
            Command.CLEAR_CACHE: self._clear_cache,
            Command.PREFETCH_RESOURCES: self._prefetch_resources,
        }

    def dispatch(self, data: Any, ports: Sequence[MessagePort] = ()) -> bool:
        """
        Handle one message from a host.

        @return
          Whether the message was understood. Anything else is logged and ignored.
        """
        message = Message.parse(data, ports)
        if message is None:
            logger.warning('Ignoring unknown message: {!r}'.format(data))
            return False

        logger.info('Handling {} message'.format(message.command.value))
        self.__handlers[message.command](message)
        return True

    def _get_performance_metrics(self, message: Message) -> None:
        snapshot = self.__worker.metrics_snapshot()
        message.reply({'type': 'PERFORMANCE_METRICS', 'metrics': snapshot.to_message()})

    def _skip_waiting(self, message: Message) -> None:
        self.__worker.skip_waiting()

    def _clear_cache(self, message: Message) -> None:
        self.__worker.clear_cache(message.payload.get('cacheName'))
        message.reply({'type': 'CACHE_CLEARED', 'success': True})

    def _prefetch_resources(self, message: Message) -> None:
        urls = message.payload.get('urls') or []
        if isinstance(urls, str) or not isinstance(urls, Sequence):
            logger.warning('PREFETCH_RESOURCES expects a list of URLs, got {!r}'.format(urls))
            urls = []
        failed = self.__worker.prefetch(urls)
        message.reply({'type': 'RESOURCES_PREFETCHED', 'urls': list(urls), 'failed': failed})
