"""Asterisk Manager Interface client built on asyncio."""

__version__ = "0.1.0"

from .client.manager import Manager
from .client.framing import FrameReader, FollowState
from .client.router import classify
from .client.actions import serialize_action
from .shared.events import EventBus
from .shared.models import ConnectionState, KeyValueSet, ListValue, PendingAction, Scalar
from .shared.errors import (
    ManagerError,
    TransportError,
    ProtocolResponseError,
    NoConnectionError,
    ConnectionClosedError,
)
