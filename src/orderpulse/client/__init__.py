"""Client side of the real-time layer.

ReconnectingSubscriber holds the WebSocket, LiveFeed buffers what it
receives, OptimisticMutationTracker applies local edits ahead of the
OrdersClient round trip.
"""

from orderpulse.client.cache import BoundedExpiringCache
from orderpulse.client.feed import LiveFeed
from orderpulse.client.http import OrdersClient
from orderpulse.client.optimistic import (
    ItemNotFoundError,
    MutationInProgressError,
    OptimisticMutationTracker,
    OptimisticOperation,
)
from orderpulse.client.subscriber import (
    ConnectionState,
    ReconnectingSubscriber,
    SubscriberConnectionError,
)
from orderpulse.client.transport import TransportClosed, TransportError, WebSocketTransport
