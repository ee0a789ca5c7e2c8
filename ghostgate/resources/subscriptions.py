"""
SubscriptionManager - observers on resource URI patterns.

Subscribers are notified in two ways:
- Pushed: ``notify`` fans an event out to every subscription whose
  pattern is related to the changed URI (bidirectional prefix match)
- Polled: a polling subscription re-fetches its pattern on an interval
  and emits an update only when the value's signature changes

Usage:
    manager = SubscriptionManager(fetch, poller)
    sub_id = await manager.subscribe("ghost/post/1", on_event, enable_polling=True)
    manager.unsubscribe(sub_id)
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from loguru import logger

from ghostgate.resources.scheduler import Poller
from ghostgate.resources.uri import uri_matches
from ghostgate.services.errors import NotFoundError, ValidationError
from ghostgate.utils import generate_subscription_id, value_signature


@dataclass
class ResourceEvent:
    """Notification delivered to subscribers."""

    type: str  # "update", "delete" or "error"
    uri: str
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        event: dict[str, Any] = {"type": self.type, "uri": self.uri}
        if self.data is not None:
            event["data"] = self.data
        if self.error is not None:
            event["error"] = self.error
        return event


SubscriptionCallback = Callable[[ResourceEvent], None]


@dataclass
class Subscription:
    id: str
    uri_pattern: str
    callback: SubscriptionCallback
    polling_enabled: bool = False
    polling_interval: timedelta | None = None
    last_signature: str | None = None


class SubscriptionManager:
    """
    Registry of subscriptions plus their polling jobs.

    ``fetch(uri, bypass_cache=False)`` loads the current value of a URI;
    polling ticks pass ``bypass_cache=True`` so each tick reaches the
    upstream unless another path refreshed the cache in the meantime.
    """

    def __init__(
        self,
        fetch: Callable[..., Awaitable[Any]],
        poller: Poller,
        default_interval: timedelta = timedelta(seconds=60),
        clock: Callable[[], float] = time.time,
    ):
        self._fetch = fetch
        self._poller = poller
        self._default_interval = default_interval
        self._clock = clock
        self._subscriptions: dict[str, Subscription] = {}

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, subscription_id: str) -> bool:
        return subscription_id in self._subscriptions

    def get(self, subscription_id: str) -> Subscription | None:
        return self._subscriptions.get(subscription_id)

    async def subscribe(
        self,
        uri_pattern: str,
        callback: SubscriptionCallback,
        enable_polling: bool = False,
        polling_interval: timedelta | None = None,
    ) -> str:
        """
        Register ``callback`` for events on ``uri_pattern``.

        With polling enabled the current value is fetched and emitted
        before this returns, then re-checked every ``polling_interval``.
        """
        if polling_interval is None:
            polling_interval = self._default_interval
        elif polling_interval <= timedelta(0):
            raise ValidationError("Polling interval must be positive")

        subscription = Subscription(
            id=generate_subscription_id(self._clock),
            uri_pattern=uri_pattern,
            callback=callback,
            polling_enabled=enable_polling,
            polling_interval=polling_interval,
        )
        self._subscriptions[subscription.id] = subscription
        logger.info(f"Subscription {subscription.id} created for {uri_pattern}")

        if enable_polling:
            await self._poll(subscription.id, bypass_cache=False)
            if subscription.id in self._subscriptions:

                async def tick() -> None:
                    await self._poll(subscription.id, bypass_cache=True)

                self._poller.schedule(subscription.id, subscription.polling_interval, tick)
                logger.debug(
                    f"Polling {uri_pattern} every {subscription.polling_interval.total_seconds()}s"
                )

        return subscription.id

    def unsubscribe(self, subscription_id: str) -> None:
        """Cancel polling (if any) and remove the subscription."""
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            raise NotFoundError("Subscription", subscription_id)

        if subscription.polling_enabled:
            self._poller.cancel(subscription_id)
        del self._subscriptions[subscription_id]
        logger.info(f"Subscription {subscription_id} removed")

    async def _poll(self, subscription_id: str, bypass_cache: bool) -> None:
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None:
            return

        uri = subscription.uri_pattern
        try:
            value = await self._fetch(uri, bypass_cache=bypass_cache)
        except Exception as e:
            # Unsubscribed while the fetch was in flight
            if subscription_id not in self._subscriptions:
                return
            logger.warning(f"Polling {uri} failed: {e}")
            self._emit(subscription, ResourceEvent(type="error", uri=uri, error=str(e)))
            return

        if subscription_id not in self._subscriptions:
            return

        signature = value_signature(value)
        if signature == subscription.last_signature:
            return
        subscription.last_signature = signature
        self._emit(subscription, ResourceEvent(type="update", uri=uri, data=value))

    def notify(self, uri: str, data: Any = None, event_type: str = "update") -> int:
        """
        Push an event to every subscription related to ``uri``.

        Returns:
            Number of subscriptions notified
        """
        event = ResourceEvent(type=event_type, uri=uri, data=data)
        matching = [
            s for s in list(self._subscriptions.values()) if uri_matches(s.uri_pattern, uri)
        ]
        for subscription in matching:
            self._emit(subscription, event)
        return len(matching)

    @staticmethod
    def _emit(subscription: Subscription, event: ResourceEvent) -> None:
        try:
            subscription.callback(event)
        except Exception as e:
            logger.error(f"Subscriber {subscription.id} failed on {event.type} {event.uri}: {e}")

    def close(self) -> None:
        """Cancel every polling job and drop all subscriptions."""
        for subscription in self._subscriptions.values():
            if subscription.polling_enabled:
                self._poller.cancel(subscription.id)
        count = len(self._subscriptions)
        self._subscriptions.clear()
        self._poller.shutdown()
        if count:
            logger.info(f"Closed {count} subscriptions")
