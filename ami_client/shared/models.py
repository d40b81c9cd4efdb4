"""
MODULE OVERVIEW:
This module defines the typed data structures used by the client, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
Inbound items stay plain `dict[str, str]` (the protocol is opaque key/value text), but
everything the client itself creates is modelled here: the three shapes an action field
value can take on the wire, a pending action waiting for its response, and the stats
snapshot a Manager reports about itself.
"""
from enum import Enum
from typing import Annotated, Any, Callable, Literal, Union
from datetime import datetime
from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"


# WHAT IS HAPPENING HERE:
# An action field is rendered as `Name: <value>`. The value is one of three tagged
# variants, each with its own rendering rule, instead of guessing from the Python type
# at write time.
class Scalar(BaseModel):
    kind: Literal["scalar"] = "scalar"
    value: str

    def render(self) -> str:
        return self.value


class ListValue(BaseModel):
    kind: Literal["list"] = "list"
    items: list[str]

    def render(self) -> str:
        return ",".join(self.items)


class KeyValueSet(BaseModel):
    kind: Literal["keyvalue"] = "keyvalue"
    pairs: dict[str, str]

    def render(self) -> str:
        return ",".join(f"{name}={value}" for name, value in self.pairs.items())


FieldValue = Annotated[Union[Scalar, ListValue, KeyValueSet], Field(discriminator="kind")]


# WHAT IS HAPPENING HERE:
# An action that has been accepted by `Manager.action()` but not answered yet.
# It sits either in the held queue (before login) or in the correlation table.
class PendingAction(BaseModel):
    action_id: str
    payload: dict[str, Any]
    callback: Callable[..., Any]


class ClientStats(BaseModel):
    state: ConnectionState
    authenticated: bool
    items_received: int
    bytes_received: int
    actions_sent: int
    reconnect_count: int
    pending_actions: int
    held_actions: int
    last_item_at: datetime | None
    connected_at: datetime | None
