"""Frame reader tests: byte stream in, items out."""

import pytest

from ami_client.client.framing import FollowState, FrameReader

STREAM = (
    "Asterisk Call Manager/5.0.1\r\n"
    "Response: Success\r\n"
    "ActionID: 100\r\n"
    "Message: Authentication accepted\r\n"
    "\r\n"
    "Event: FullyBooted\r\n"
    "Privilege: system,all\r\n"
    "Status: Fully Booted\r\n"
    "\r\n"
    "Response: Follows\r\n"
    "Privilege: Command\r\n"
    "ActionID: 101\r\n"
    "Channel              Location\r\n"
    "\r\n"
    "0 active channels\r\n"
    "--END COMMAND--\r\n"
    "\r\n"
    "Event: UserEvent\r\n"
    "UserEvent: Ping\r\n"
    "Uniqueid: 1718000000.12\r\n"
    "\r\n"
)

EXPECTED = [
    {"response": "Success", "actionid": "100", "message": "Authentication accepted"},
    {"event": "FullyBooted", "privilege": "system,all", "status": "Fully Booted"},
    {
        "response": "follows",
        "content": (
            "Response: Follows\nPrivilege: Command\nActionID: 101\n"
            "Channel              Location\n\n0 active channels"
        ),
        "actionid": "101",
    },
    {"event": "UserEvent", "userevent": "Ping", "uniqueid": "1718000000.12"},
]


def feed_in_chunks(data: bytes, size: int) -> list:
    reader = FrameReader()
    items = []
    for start in range(0, len(data), size):
        items.extend(reader.feed(data[start:start + size]))
    return items


class TestWholeStream:
    def test_parses_every_item(self):
        assert FrameReader().feed(STREAM.encode()) == EXPECTED

    def test_accepts_text_chunks(self):
        assert FrameReader().feed(STREAM) == EXPECTED

    def test_bare_lf_line_endings(self):
        assert FrameReader().feed(STREAM.replace("\r\n", "\n")) == EXPECTED

    def test_items_are_handed_to_callback_in_order(self):
        seen = []
        reader = FrameReader(on_item=seen.append)
        returned = reader.feed(STREAM.encode())
        assert seen == returned == EXPECTED


class TestFragmentation:
    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 13, 64])
    def test_any_chunk_size_yields_same_items(self, size):
        assert feed_in_chunks(STREAM.encode(), size) == EXPECTED

    def test_split_between_sentinel_and_blank_line(self):
        head, tail = STREAM.split("--END COMMAND--\r\n", 1)
        reader = FrameReader()
        first = reader.feed(head + "--END COMMAND--\r\n")
        assert reader.follow is FollowState.FOLLOW_ENDED
        second = reader.feed(tail)
        assert first + second == EXPECTED

    def test_line_buffer_keeps_only_partial_line(self):
        reader = FrameReader()
        reader.feed("Event: Hangup\r\nChan")
        assert reader.leftover == "Chan"
        assert reader.lines == ["Event: Hangup"]

    def test_crlf_split_across_chunks(self):
        reader = FrameReader()
        items = reader.feed("Event: Hangup\r") + reader.feed("\n\r") + reader.feed("\n")
        assert items == [{"event": "Hangup"}]

    def test_multibyte_character_split_across_chunks(self):
        data = "Event: Newcallerid\r\nCallerIDName: Zoë\r\n\r\n".encode("utf-8")
        cut = data.index("ë".encode("utf-8")) + 1
        reader = FrameReader()
        items = reader.feed(data[:cut]) + reader.feed(data[cut:])
        assert items == [{"event": "Newcallerid", "calleridname": "Zoë"}]


class TestNormalItems:
    def test_field_names_trimmed_and_lowercased(self):
        items = FrameReader().feed("  CallerIDNum :  100  \r\nEVENT: Newchannel\r\n\r\n")
        assert items == [{"calleridnum": "100", "event": "Newchannel"}]

    def test_duplicate_fields_keep_last(self):
        items = FrameReader().feed("Event: VarSet\r\nValue: one\r\nvalue: two\r\n\r\n")
        assert items == [{"event": "VarSet", "value": "two"}]

    def test_value_may_contain_colons(self):
        items = FrameReader().feed("Event: Dial\r\nDestination: SIP/100:5060\r\n\r\n")
        assert items[0]["destination"] == "SIP/100:5060"

    def test_empty_block_is_emitted_as_empty_mapping(self):
        items = FrameReader().feed("Event: Hangup\r\n\r\n\r\n")
        assert items == [{"event": "Hangup"}, {}]


class TestGreeting:
    def test_dropped_at_session_start(self):
        items = FrameReader().feed("Asterisk Call Manager/5.0.1\r\nEvent: FullyBooted\r\n\r\n")
        assert items == [{"event": "FullyBooted"}]

    def test_only_dropped_once(self):
        reader = FrameReader()
        reader.feed("Asterisk Call Manager/5.0.1\r\n")
        items = reader.feed("Asterisk Call Manager/5.0.1\r\n\r\n")
        assert items == [{"asterisk call manager/5.0.1": ""}]

    def test_stream_without_greeting(self):
        items = FrameReader().feed("Event: FullyBooted\r\n\r\n")
        assert items == [{"event": "FullyBooted"}]


class TestFollows:
    def test_minimal_follows_block(self):
        items = FrameReader().feed(
            "Response: Follows\r\nline one\r\nline two\r\n--END COMMAND--\r\n\r\n"
        )
        assert items == [{"response": "follows", "content": "Response: Follows\nline one\nline two"}]

    def test_blank_lines_inside_body_do_not_end_item(self):
        reader = FrameReader()
        assert reader.feed("Response: Follows\r\nfirst\r\n\r\nsecond\r\n") == []
        assert reader.follow is FollowState.IN_FOLLOW
        items = reader.feed("--END COMMAND--\r\n\r\n")
        assert items[0]["content"] == "Response: Follows\nfirst\n\nsecond"
        assert reader.follow is FollowState.NONE

    def test_actionid_found_case_insensitively(self):
        items = FrameReader().feed(
            "Response: Follows\r\nactionID: 42 \r\nok\r\n--END COMMAND--\r\n\r\n"
        )
        assert items[0]["actionid"] == "42"

    def test_follow_state_survives_between_reads(self):
        reader = FrameReader()
        reader.feed("Response: Follows\r\n")
        assert reader.follow is FollowState.IN_FOLLOW
        reader.feed("output\r\n--END COMMAND--\r\n")
        assert reader.follow is FollowState.FOLLOW_ENDED

    def test_normal_item_after_follows(self):
        items = FrameReader().feed(
            "Response: Follows\r\nok\r\n--END COMMAND--\r\n\r\nEvent: Reload\r\n\r\n"
        )
        assert items[1] == {"event": "Reload"}
