"""Channel transports: the Transport protocol plus in-memory and Redis backends."""

from hederaintel.agent.transport.base import ChannelInfo, ChannelMessage, Subscription, Transport
from hederaintel.agent.transport.memory import InMemoryTransport

__all__ = ["ChannelInfo", "ChannelMessage", "InMemoryTransport", "Subscription", "Transport"]
