"""In-process publish/subscribe channel keyed by translation job id."""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union


logger = logging.getLogger(__name__)


class Topic(enum.Enum):
    CHUNK = "chunk"
    PROGRESS = "progress"
    FINAL = "final"
    DONE = "done"


@dataclass(frozen=True)
class ChannelKey:
    """Namespace for every event published about a single job."""

    job_id: str

    def topic_name(self, topic: Topic) -> str:
        return f"translate:{self.job_id}:{topic.value}"


Handler = Callable[[Any], Union[None, Awaitable[None]]]
_Route = Tuple[ChannelKey, Topic]


class Subscription:
    """Handle returned by :meth:`EventChannel.subscribe`."""

    def __init__(self, channel: "EventChannel", key: ChannelKey, topic: Topic, handler: Handler) -> None:
        self._channel: Optional[EventChannel] = channel
        self.key = key
        self.topic = topic
        self.handler = handler

    @property
    def active(self) -> bool:
        return self._channel is not None

    def release(self) -> None:
        """Detach the handler. Releasing twice is harmless."""

        channel, self._channel = self._channel, None
        if channel is not None:
            channel._remove(self)


class EventChannel:
    """Deliver job events to subscribers in the order they are emitted."""

    def __init__(self) -> None:
        self._routes: Dict[_Route, List[Subscription]] = {}

    async def subscribe(self, key: ChannelKey, topic: Topic, handler: Handler) -> Subscription:
        subscription = Subscription(self, key, topic, handler)
        self._routes.setdefault((key, topic), []).append(subscription)
        logger.debug("Subscribed to %s", key.topic_name(topic))
        # The handler is live before this returns.
        await asyncio.sleep(0)
        return subscription

    def subscriber_count(self, key: ChannelKey, topic: Optional[Topic] = None) -> int:
        topics = [topic] if topic is not None else list(Topic)
        return sum(len(self._routes.get((key, item), ())) for item in topics)

    async def emit(self, key: ChannelKey, topic: Topic, payload: Any = None) -> None:
        subscribers = list(self._routes.get((key, topic), ()))
        if not subscribers:
            logger.debug("No subscriber for %s; event dropped", key.topic_name(topic))
            return
        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                result = subscription.handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler for %s failed", key.topic_name(topic))

    def _remove(self, subscription: Subscription) -> None:
        route = (subscription.key, subscription.topic)
        subscribers = self._routes.get(route)
        if not subscribers:
            return
        try:
            subscribers.remove(subscription)
        except ValueError:
            return
        if not subscribers:
            del self._routes[route]
        logger.debug("Released %s", subscription.key.topic_name(subscription.topic))
