import json
import os
import sys
from datetime import datetime, timedelta, timezone

# Add scripts to path so we can import the module
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "scripts"))
from call_transcript import format_transcript, parse_transcript_lines

from salescall.states import Speaker
from salescall.transcript import Turn, chunk_transcript_dump, to_timestamped_dump


def _dump(call_id="CA_test", entries=None):
    return {
        "call_id": call_id,
        "phone": "+15125551234",
        "final_phase": "qualification",
        "end_reason": "customer-requested",
        "duration_s": 52,
        "entries": entries if entries is not None else [
            {"t": 0.0, "role": "agent", "content": "Hello."},
            {"t": 2.3, "role": "customer", "content": "Hi."},
        ],
    }


class TestParseTranscriptLines:
    def test_single_chunk(self):
        lines = [f"2026-03-11 INFO salescall.post_call: TRANSCRIPT_DUMP|1/1|{json.dumps(_dump())}"]
        result = parse_transcript_lines(lines)
        assert len(result) == 1
        assert result[0]["call_id"] == "CA_test"
        assert len(result[0]["entries"]) == 2

    def test_reassembles_chunks_from_logger(self):
        t0 = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)
        turns = [
            Turn(Speaker.AGENT if i % 2 == 0 else Speaker.CUSTOMER, "word " * 80, t0 + timedelta(seconds=i))
            for i in range(40)
        ]
        dump = to_timestamped_dump(turns, t0, call_id="CA_multi", phone="+1", final_phase="closing")
        chunks = chunk_transcript_dump(dump, max_bytes=1500)
        assert len(chunks) > 1

        result = parse_transcript_lines([f"INFO {c}" for c in chunks])
        assert len(result) == 1
        assert result[0]["call_id"] == "CA_multi"
        assert len(result[0]["entries"]) == 40

    def test_call_id_filter(self):
        lines = [
            f"TRANSCRIPT_DUMP|1/1|{json.dumps(_dump('CA_first', []))}",
            f"TRANSCRIPT_DUMP|1/1|{json.dumps(_dump('CA_second', []))}",
        ]
        result = parse_transcript_lines(lines, call_id="CA_first")
        assert len(result) == 1
        assert result[0]["call_id"] == "CA_first"

    def test_no_transcript_lines_returns_empty(self):
        assert parse_transcript_lines(["some random log line", "another line"]) == []

    def test_corrupted_json_skipped(self):
        lines = [
            "TRANSCRIPT_DUMP|1/1|{not valid json",
            f"TRANSCRIPT_DUMP|1/1|{json.dumps(_dump('CA_ok', []))}",
        ]
        result = parse_transcript_lines(lines)
        assert len(result) == 1
        assert result[0]["call_id"] == "CA_ok"


class TestFormatTranscript:
    def test_basic_formatting(self):
        output = format_transcript(_dump("CA_fmt"), gap_threshold=2.0)
        assert "CA_fmt" in output
        assert "+15125551234" in output
        assert "qualification" in output
        assert "customer-requested" in output
        assert "Agent:    Hello." in output
        assert "Customer: Hi." in output

    def test_gap_annotation_shown_for_notable_gap(self):
        dump = _dump(entries=[
            {"t": 0.0, "role": "agent", "content": "Hello."},
            {"t": 3.5, "role": "customer", "content": "Hi."},
        ])
        assert "+3.5s" in format_transcript(dump, gap_threshold=2.0)

    def test_slow_annotation_for_large_gap(self):
        dump = _dump(entries=[
            {"t": 0.0, "role": "agent", "content": "Hello."},
            {"t": 30.0, "role": "customer", "content": "Hi."},
        ])
        assert "SLOW" in format_transcript(dump, gap_threshold=2.0)

    def test_custom_gap_threshold(self):
        dump = _dump(entries=[
            {"t": 0.0, "role": "agent", "content": "Hello."},
            {"t": 2.5, "role": "customer", "content": "Hi."},
        ])
        assert "+2.5s" in format_transcript(dump, gap_threshold=2.0)
        gap_lines = [l for l in format_transcript(dump, gap_threshold=3.0).split("\n") if l.strip().startswith("┆")]
        assert len(gap_lines) == 0

    def test_call_ended_marker(self):
        assert "Call ended" in format_transcript(_dump(), gap_threshold=2.0)
