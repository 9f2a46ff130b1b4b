"""Transport module - login, duplex channel, and the session choke point."""

from .auth import Authenticator
from .channel import RpcChannel
from .session import TransportSession, channel_url

__all__ = [
    "Authenticator",
    "RpcChannel",
    "TransportSession",
    "channel_url",
]
