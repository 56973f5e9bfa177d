"""Tests for wire message parsing and builders."""

import json

import pytest

from keyrelay import messages
from keyrelay.errors import MalformedMessage


class TestParseFrame:
    """Tests for parse_frame()."""

    def test_parse_object(self):
        message = messages.parse_frame('{"type": "heartbeat"}')
        assert message == {"type": "heartbeat"}

    def test_parse_bytes(self):
        message = messages.parse_frame(b'{"type": "heartbeat"}')
        assert message["type"] == "heartbeat"

    @pytest.mark.parametrize(
        "frame", ["not json", "[]", "42", '{"type": 5}', '{"deviceKey": "X"}']
    )
    def test_rejects_malformed(self, frame):
        with pytest.raises(MalformedMessage):
            messages.parse_frame(frame)

    def test_rejects_oversized(self):
        frame = json.dumps({"type": "offer", "offer": "x" * messages.MAX_FRAME_SIZE})
        with pytest.raises(MalformedMessage, match="too large"):
            messages.parse_frame(frame)

    def test_size_counts_encoded_bytes(self):
        """Multi-byte text is measured after UTF-8 encoding."""
        frame = json.dumps(
            {"type": "offer", "offer": "é" * (messages.MAX_FRAME_SIZE // 2 + 16)},
            ensure_ascii=False,
        )
        assert len(frame) < messages.MAX_FRAME_SIZE

        with pytest.raises(MalformedMessage, match="too large"):
            messages.parse_frame(frame)


class TestRequireFields:
    """Tests for require_fields()."""

    def test_returns_values_in_order(self):
        message = {"type": "offer", "targetKey": "B", "offer": {"sdp": "x"}}
        assert messages.require_fields(message, "targetKey", "offer") == (
            "B",
            {"sdp": "x"},
        )

    def test_missing_fields_named(self):
        with pytest.raises(MalformedMessage, match="targetKey, offer"):
            messages.require_fields({"type": "offer"}, "targetKey", "offer")

    def test_empty_values_count_as_missing(self):
        with pytest.raises(MalformedMessage):
            messages.require_fields({"type": "offer", "offer": {}}, "offer")

    def test_false_counts_as_present(self):
        message = {"type": "connection-response", "accepted": False}
        assert messages.require_fields(message, "accepted") == (False,)


class TestRequireKeys:
    """Tests for require_keys()."""

    def test_returns_well_formed_keys(self):
        message = {
            "type": "connection-request",
            "sourceKey": "AAAA111111",
            "targetKey": "BBBB222222",
        }
        assert messages.require_keys(message, "sourceKey", "targetKey") == (
            "AAAA111111",
            "BBBB222222",
        )

    @pytest.mark.parametrize("value", ["not a key!", "aaaa111111", 42, {"x": 1}, ["B"]])
    def test_malformed_key_rejected(self, value):
        with pytest.raises(MalformedMessage, match="malformed targetKey"):
            messages.require_keys({"type": "offer", "targetKey": value}, "targetKey")

    def test_missing_key_reported_as_missing(self):
        with pytest.raises(MalformedMessage, match="missing targetKey"):
            messages.require_keys({"type": "offer"}, "targetKey")


class TestBuilders:
    """Payloads pass through untouched."""

    def test_offer_passthrough(self):
        payload = {"sdp": "v=0\r\n", "type": "offer"}
        assert messages.offer("AAAA111111", payload) == {
            "type": "offer",
            "sourceKey": "AAAA111111",
            "offer": payload,
        }

    def test_connection_rejected_default_reason(self):
        assert messages.connection_rejected("B", None)["reason"] == "Connection rejected"

    def test_encode_frame_compact(self):
        assert messages.encode_frame({"type": "error"}) == '{"type":"error"}'
