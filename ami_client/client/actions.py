"""
MODULE OVERVIEW:
Outbound action helpers: correlation IDs and wire serialization.

WHAT IS HAPPENING HERE:
An action is a plain dict such as {"action": "Originate", "variable": {"a": "1"}}.
Before it hits the socket we:
  1. pick an ActionID that no other outstanding action uses,
  2. turn every value into one of the tagged field variants (Scalar, ListValue,
     KeyValueSet),
  3. render `Name: value` lines, sort them, and close the block with a blank line.

    ActionID: 1718000000000
    Action: Originate
    Variable: a=1
"""
import random
import time
from collections.abc import Mapping
from typing import Any, Callable, Optional

from ami_client.shared.client_utils import trim
from ami_client.shared.models import FieldValue, KeyValueSet, ListValue, Scalar

CRLF = "\r\n"


def new_action_id(is_taken: Callable[[str], bool], requested: Optional[str] = None) -> str:
    """
    Use `requested` when given, otherwise the current epoch time in milliseconds.
    While the candidate is already outstanding, append random decimal digits.
    """
    action_id = str(requested) if requested else str(int(time.time() * 1000))
    while is_taken(action_id):
        action_id += str(random.randrange(10))
    return action_id


def normalize_field_name(name: str) -> str:
    """' CallerID ' -> 'Callerid'"""
    name = trim(name).lower()
    return name[:1].upper() + name[1:]


def is_login_action(payload: Mapping) -> bool:
    for name, value in payload.items():
        if trim(name).lower() == "action":
            return str(value).lower() == "login"
    return False


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_field_value(value: Any) -> Optional[FieldValue]:
    """Map a Python value onto its wire variant. `None` means: drop the field."""
    if value is None:
        return None
    if isinstance(value, (Scalar, ListValue, KeyValueSet)):
        return value
    if isinstance(value, (list, tuple)):
        return ListValue(items=[_scalar_text(element) for element in value])
    if isinstance(value, Mapping):
        return KeyValueSet(pairs={str(name): _scalar_text(element) for name, element in value.items()})
    return Scalar(value=_scalar_text(value))


def serialize_action(payload: Mapping, action_id: str) -> str:
    lines = []
    for name, value in payload.items():
        field_name = normalize_field_name(name)
        if not field_name or field_name == "Actionid":
            continue
        field_value = to_field_value(value)
        if field_value is None:
            continue
        lines.append(f"{field_name}: {field_value.render()}")

    lines.sort()
    return f"ActionID: {action_id}{CRLF}" + "".join(line + CRLF for line in lines) + CRLF
