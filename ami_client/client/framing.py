"""
MODULE OVERVIEW:
The streaming AMI frame reader.

WHAT IS HAPPENING HERE:
TCP gives us bytes, not messages. A single `read()` can return half a line, three
complete items, or the middle of a `Response: Follows` command dump. The FrameReader
keeps just enough state between reads to turn that stream back into items:

  - `leftover`: the trailing partial line of the previous chunk (never a full line),
  - `lines`: the lines of the item currently being assembled,
  - `follow`: where we are inside a multi-line "follows" body.

A normal item is a block of `Key: Value` lines ended by a blank line:

    Event: Newchannel
    Channel: PJSIP/100-00000001

A follows item is raw command output ended by a sentinel line and then a blank line:

    Response: Follows
    Privilege: Command
    ActionID: 1718000000000
    ...output...
    --END COMMAND--

Feeding the same stream in one chunk or byte by byte yields the same items.
"""
import codecs
import re
from enum import Enum
from typing import Callable, Optional

from ami_client.shared.client_utils import is_non_empty, trim

GREETING_PREFIX = "Asterisk Call Manager"
END_COMMAND = "--END COMMAND--"

_LINE_BREAK = re.compile(r"\r?\n")
_FOLLOWS_ACTIONID = re.compile(r"actionid: ([^\r\n]+)", re.IGNORECASE)


class FollowState(Enum):
    NONE = 0
    IN_FOLLOW = 1
    FOLLOW_ENDED = 2


class FrameReader:
    def __init__(self, on_item: Optional[Callable[[dict], None]] = None):
        self.on_item = on_item
        self.leftover = ""
        self.lines: list[str] = []
        self.follow = FollowState.NONE
        self._first_line_seen = False
        # Multi-byte UTF-8 characters may be split across two reads
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes | str) -> list[dict]:
        """
        Consume one chunk. Every item completed by this chunk is handed to `on_item`
        as soon as it is parsed and is also returned, in arrival order.
        """
        if isinstance(data, bytes):
            data = self._decoder.decode(data)

        fragments = _LINE_BREAK.split(self.leftover + data)
        self.leftover = fragments.pop()

        items = []
        for line in fragments:
            item = self._consume_line(line)
            if item is None:
                continue
            items.append(item)
            if self.on_item is not None:
                self.on_item(item)
        return items

    def _consume_line(self, line: str) -> Optional[dict]:
        if not self._first_line_seen:
            self._first_line_seen = True
            if not self.lines and line.startswith(GREETING_PREFIX):
                return None

        if not self.lines and self._opens_follows(line):
            self.follow = FollowState.IN_FOLLOW
            self.lines.append(line)
        elif self.follow is FollowState.IN_FOLLOW and line == END_COMMAND:
            self.follow = FollowState.FOLLOW_ENDED
            self.lines.append(line)
        elif self.follow is FollowState.FOLLOW_ENDED and not line:
            return self._finish_follows()
        elif self.follow is FollowState.NONE and not line:
            return self._finish_item()
        else:
            self.lines.append(line)
        return None

    @staticmethod
    def _opens_follows(line: str) -> bool:
        return line[:9].lower() == "response:" and "follow" in line.lower()

    def _finish_follows(self) -> dict:
        lines = self.lines
        # Drop the sentinel; anything after it is still command output
        for index in range(len(lines) - 1, -1, -1):
            if lines[index] == END_COMMAND:
                del lines[index]
                break

        content = "\n".join(lines)
        item = {"response": "follows", "content": content}
        match = _FOLLOWS_ACTIONID.search(content)
        if match:
            item["actionid"] = trim(match.group(1))

        self.lines = []
        self.follow = FollowState.NONE
        return item

    def _finish_item(self) -> dict:
        item = {}
        for line in filter(is_non_empty, self.lines):
            name, _, value = line.partition(":")
            item[trim(name).lower()] = trim(value)
        self.lines = []
        return item
