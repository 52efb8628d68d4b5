"""Tests for the event-stream frame parser."""

import pytest

from hackhelper.client.frames import (
    DoneFrame,
    FrameParser,
    MessageIdFrame,
    StatusFrame,
    StepFrame,
    parse_block,
)

from tests.conftest import sse, status_event, step_event

STREAM = (
    sse({"type": "step", "stepId": "extractBrief", "status": "running"}, message_id="m-1")
    + step_event("extractBrief", "success")
    + sse({"type": "step", "stepId": "createPlan", "status": "running", "note": "plan für 🚀"})
    + status_event("completed")
).encode("utf-8")

EXPECTED = [
    MessageIdFrame("m-1"),
    StepFrame("extractBrief", "running"),
    StepFrame("extractBrief", "success"),
    StepFrame("createPlan", "running"),
    StatusFrame("completed"),
]


def _feed_chunks(data: bytes, chunks: list[int]) -> list:
    parser = FrameParser()
    frames = []
    start = 0
    for end in chunks + [len(data)]:
        frames.extend(parser.feed(data[start:end]))
        start = end
    frames.extend(parser.close())
    return frames


class TestChunking:
    def test_single_chunk(self):
        assert _feed_chunks(STREAM, []) == EXPECTED

    def test_every_two_way_split(self):
        for split in range(1, len(STREAM)):
            assert _feed_chunks(STREAM, [split]) == EXPECTED, f"split at byte {split}"

    def test_byte_at_a_time(self):
        assert _feed_chunks(STREAM, list(range(1, len(STREAM)))) == EXPECTED

    @pytest.mark.parametrize("size", [3, 7, 16, 64])
    def test_fixed_size_chunks(self, size):
        assert _feed_chunks(STREAM, list(range(size, len(STREAM), size))) == EXPECTED

    def test_multibyte_character_split_across_chunks(self):
        data = sse({"type": "step", "stepId": "createPlan", "status": "running", "x": "🚀"}).encode()
        rocket = data.index("🚀".encode())
        frames = _feed_chunks(data, [rocket + 1, rocket + 3])
        assert frames == [StepFrame("createPlan", "running")]

    def test_crlf_line_endings(self):
        data = STREAM.replace(b"\n", b"\r\n")
        assert _feed_chunks(data, list(range(5, len(data), 5))) == EXPECTED

    def test_incomplete_block_stays_pending(self):
        parser = FrameParser()
        assert parser.feed(b'data: {"type": "status", "status": "running"}\n') == []
        assert parser.pending.startswith("data:")
        assert parser.feed(b"\n") == [StatusFrame("running")]
        assert parser.pending == ""

    def test_close_flushes_unterminated_block(self):
        parser = FrameParser()
        assert parser.feed(b'data: {"type": "status", "status": "failed"}') == []
        assert parser.close() == [StatusFrame("failed")]

    def test_accepts_text_chunks(self):
        parser = FrameParser()
        assert parser.feed(status_event("running")) == [StatusFrame("running")]


class TestMalformedInput:
    def test_bad_json_is_skipped_and_parsing_continues(self):
        data = b"data: {not json\n\n" + step_event("parseBrief", "running").encode()
        assert _feed_chunks(data, []) == [StepFrame("parseBrief", "running")]

    def test_unknown_type_is_ignored(self):
        data = (sse({"type": "telemetry", "value": 1}) + status_event("running")).encode()
        assert _feed_chunks(data, []) == [StatusFrame("running")]

    def test_step_without_status_is_skipped(self):
        assert parse_block('data: {"type": "step", "stepId": "x"}') == []

    def test_non_object_payload_is_skipped(self):
        assert parse_block("data: [1, 2, 3]") == []

    def test_comments_and_blank_blocks_are_ignored(self):
        data = b": keep-alive\n\n\n\n" + status_event("running").encode()
        assert _feed_chunks(data, []) == [StatusFrame("running")]


class TestPayloads:
    def test_id_only_block(self):
        assert parse_block("id: 42") == [MessageIdFrame("42")]

    def test_done_sentinel(self):
        assert parse_block("data: [DONE]") == [DoneFrame()]

    def test_legacy_workflow_tag_is_a_status_frame(self):
        block = 'data: {"type": "workflow", "status": "COMPLETED"}'
        assert parse_block(block) == [StatusFrame("COMPLETED")]

    def test_step_id_fallback_field(self):
        block = 'data: {"type": "step", "id": "scaffoldProject", "status": "success"}'
        assert parse_block(block) == [StepFrame("scaffoldProject", "success")]

    def test_event_name_supplies_missing_type(self):
        block = 'event: status\ndata: {"status": "running"}'
        assert parse_block(block) == [StatusFrame("running")]

    def test_multiline_data_is_joined(self):
        block = 'data: {"type": "status",\ndata:  "status": "failed"}'
        assert parse_block(block) == [StatusFrame("failed")]
