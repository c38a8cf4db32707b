"""OrderPulse — real-time order updates for the order dashboard.

The server side fans order events out to connected browsers over
WebSockets; the client side keeps one reconnecting subscription alive,
buffers what it receives, and applies optimistic order mutations.
"""

__version__ = "0.1.0"
