"""Subscriber interface for realtime event delivery.

The broadcaster only needs a handle it can push events to. The transport
(WebSocket, SSE, ...) lives outside the core.
"""

from abc import ABC, abstractmethod

from holohost.core.events import ServerEvent


class Subscriber(ABC):
    """Delivery handle for one connected client.

    Handles are compared by identity, so one connection registers one handle.
    """

    @abstractmethod
    async def deliver(self, event: ServerEvent) -> None: ...
