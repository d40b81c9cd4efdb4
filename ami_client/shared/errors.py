"""
MODULE OVERVIEW:
The error vocabulary of the client.

WHAT IS HAPPENING HERE:
None of these are meant to crash the process. Transport errors travel on the `error`
channel, protocol errors travel to the one callback they concern, and the connection
errors are what a pending action resolves with when it can never be answered.
"""
from typing import Optional


class ManagerError(Exception):
    """Base class for everything the client reports."""


class TransportError(ManagerError):
    """Socket-level failure: refused connection, reset, timeout while opening."""


class ProtocolResponseError(ManagerError):
    """The server answered an action with `Response: Error`."""

    def __init__(self, response: dict):
        self.response = response
        message = response.get("message") or "action failed"
        super().__init__(message)

    @property
    def action_id(self) -> Optional[str]:
        return self.response.get("actionid")


class NoConnectionError(ManagerError):
    """An action was dispatched while no transport was open."""

    def __init__(self, action_id: str):
        self.action_id = action_id
        super().__init__(f"no connection to send action {action_id}")


class ConnectionClosedError(ManagerError):
    """The connection was torn down before the action was answered."""

    def __init__(self, action_id: str):
        self.action_id = action_id
        super().__init__(f"connection closed before action {action_id} was answered")
