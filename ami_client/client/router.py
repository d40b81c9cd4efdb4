"""
MODULE OVERVIEW:
The item classifier.

WHAT IS HAPPENING HERE:
Given one parsed item, decide which channels it must be published on and with which
arguments. This is a pure function: the Manager does the actual (deferred) publishing,
so the precedence rules can be tested without a socket.

Precedence:
  1. `response` + `actionid`  -> the action's own channel, then "response"
  2. `response` + `content`   -> the last dispatched action's channel, then "response"
  3. `event`                  -> "managerevent", the lowercased event name,
                                 and "userevent-<type>" for UserEvent
  4. anything else            -> "asterisk"
"""
from typing import Any, Optional

from ami_client.shared.errors import ProtocolResponseError

MANAGER_EVENT = "managerevent"
RESPONSE = "response"
CATCH_ALL = "asterisk"

Emission = tuple[str, tuple[Any, ...]]


def classify(item: dict, last_action_id: Optional[str] = None) -> list[Emission]:
    emissions: list[Emission] = []

    if item.get("response") and item.get("actionid"):
        error = None
        if item["response"].lower() == "error":
            error = ProtocolResponseError(item)
        emissions.append((item["actionid"], (error, item)))
        emissions.append((RESPONSE, (item,)))

    elif item.get("response") and item.get("content"):
        # A follows body without an ActionID belongs to whatever we sent last
        if last_action_id is not None:
            emissions.append((last_action_id, (None, item)))
        emissions.append((RESPONSE, (item,)))

    elif item.get("event"):
        event_name = item["event"].lower()
        emissions.append((MANAGER_EVENT, (item,)))
        emissions.append((event_name, (item,)))
        if event_name == "userevent" and item.get("userevent"):
            emissions.append((f"userevent-{item['userevent'].lower()}", (item,)))

    else:
        emissions.append((CATCH_ALL, (item,)))

    return emissions
