"""Outbound chain event publishing.

Chain events are handed to registered sinks after the decision that
produced them has been committed. Delivery is best-effort: a failing sink
is logged and never affects the decision.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

import httpx

from opsflow.core.approval.machine import ChainEvent

logger = logging.getLogger(__name__)

EventSink = Callable[[ChainEvent], None]


class EventPublisher:
    """Fans chain events out to registered sinks."""

    def __init__(self, sinks: Optional[Iterable[EventSink]] = None):
        self._sinks: List[EventSink] = list(sinks or [])

    def register_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    @property
    def sinks(self) -> List[EventSink]:
        return list(self._sinks)

    def publish(self, events: Iterable[ChainEvent]) -> int:
        """
        Deliver events to every sink.

        Returns:
            Number of successful deliveries
        """
        delivered = 0
        for event in events:
            for sink in self._sinks:
                try:
                    sink(event)
                    delivered += 1
                except Exception:
                    logger.exception(
                        "Event sink %r failed for %s on chain %s",
                        sink, event.event_type, event.chain_id,
                    )
        return delivered


class WebhookSink:
    """
    Posts each event as JSON to a webhook URL.

    Non-2xx responses raise, which the publisher logs.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = client or httpx.Client(timeout=timeout)

    def __call__(self, event: ChainEvent) -> None:
        response = self._client.post(self.url, json=event.to_dict(), headers=self.headers)
        response.raise_for_status()

    def __repr__(self) -> str:
        return f"<WebhookSink {self.url}>"

    def close(self) -> None:
        self._client.close()
