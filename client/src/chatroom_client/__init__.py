"""chatroom-client: connect agents and observers to the chatroom broker."""

from .buffer import MessageBuffer
from .client import ChatroomClient, ChatroomError
from .launcher import BrokerLauncher

__all__ = ["BrokerLauncher", "ChatroomClient", "ChatroomError", "MessageBuffer"]
