import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from clawmeter.errors import DecodeError, FileUnreadable, ScanCancelled, TimestampUnparsable
from clawmeter.models import RecordKind, UsageRecord
from clawmeter.parser import decode_line, decode_record, parse_timestamp, scan_log_file
from helpers import message_line


class TestParseTimestamp:
    def test_parses_zulu(self) -> "None":
        ts = parse_timestamp("2024-05-01T12:00:00Z")
        assert ts == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    def test_converts_offsets_to_utc(self) -> "None":
        ts = parse_timestamp("2024-05-01T14:00:00.250+02:00")
        assert ts == datetime(2024, 5, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)
        assert ts.tzinfo == timezone.utc

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "",
            "   ",
            "yesterday",
            "2024-05-01T12:00:00",
            "2024-13-01T00:00:00Z",
            # valid offsets that fall outside the datetime range in UTC
            "9999-12-31T23:59:59-01:00",
            "0001-01-01T00:00:00+01:00",
        ],
    )
    def test_rejects_missing_naive_or_malformed(self, raw: "str | None") -> "None":
        assert parse_timestamp(raw) is None


class TestDecodeRecord:
    def test_decodes_message_with_usage(self) -> "None":
        record = decode_record(
            {
                "type": "message",
                "timestamp": "2024-05-01T12:00:00Z",
                "message": {
                    "provider": "OpenAI",
                    "model": "openai/gpt-4o",
                    "stopReason": "stop",
                    "usage": {
                        "input": 10,
                        "output": 5,
                        "cacheRead": 3,
                        "cacheWrite": 2,
                        "totalTokens": 20,
                        "cost": {"total": 0.25},
                    },
                },
            }
        )
        assert record.kind is RecordKind.MESSAGE
        assert record.provider == "openai"
        assert record.model == "gpt-4o"
        assert record.model_key == "openai/gpt-4o"
        assert record.stop_reason == "stop"
        assert record.has_message is True
        assert record.usage is not None
        assert record.usage.input == 10
        assert record.usage.output == 5
        assert record.usage.cache_read == 3
        assert record.usage.cache_write == 2
        assert record.usage.cost == 0.25
        assert record.usage.total_tokens == 20

    def test_clamps_negative_counters(self) -> "None":
        record = decode_record(
            {
                "type": "message",
                "timestamp": "2024-05-01T12:00:00Z",
                "message": {
                    "usage": {"input": -4, "output": 7, "cost": {"total": -1.0}},
                },
            }
        )
        assert record.usage is not None
        assert record.usage.input == 0
        assert record.usage.output == 7
        assert record.usage.cost == 0.0

    def test_zero_fills_missing_counters(self) -> "None":
        record = decode_record(
            {
                "type": "message",
                "timestamp": "2024-05-01T12:00:00Z",
                "message": {"usage": {}},
            }
        )
        assert record.usage is not None
        assert record.usage.input == 0
        assert record.usage.cost == 0.0
        assert record.provider == "unknown"
        assert record.model == "unknown"

    def test_record_without_message(self) -> "None":
        record = decode_record({"type": "error", "timestamp": "2024-05-01T12:00:00Z"})
        assert record.kind is RecordKind.ERROR
        assert record.has_message is False
        assert record.usage is None
        assert record.model_key == "unknown/unknown"

    def test_unrecognized_type_is_other(self) -> "None":
        record = decode_record({"type": "session", "timestamp": "2024-05-01T12:00:00Z"})
        assert record.kind is RecordKind.OTHER

    def test_missing_timestamp_raises(self) -> "None":
        with pytest.raises(TimestampUnparsable):
            decode_record({"type": "message", "message": {"usage": {"output": 1}}})

    @pytest.mark.parametrize(
        "obj",
        [
            [1, 2, 3],
            "message",
            {"type": 3, "timestamp": "2024-05-01T12:00:00Z"},
            {"type": "message", "timestamp": "2024-05-01T12:00:00Z", "message": "hi"},
            {
                "type": "message",
                "timestamp": "2024-05-01T12:00:00Z",
                "message": {"usage": {"output": "12"}},
            },
            {
                "type": "message",
                "timestamp": "2024-05-01T12:00:00Z",
                "message": {"usage": {"output": True}},
            },
            {
                "type": "message",
                "timestamp": "2024-05-01T12:00:00Z",
                "message": {"usage": {"cost": 0.5}},
            },
        ],
    )
    def test_wrong_shape_raises_decode_error(self, obj: "object") -> "None":
        with pytest.raises(DecodeError):
            decode_record(obj)

    def test_keeps_raw_object(self) -> "None":
        obj = {"type": "error", "timestamp": "2024-05-01T12:00:00Z", "error": "429"}
        assert decode_record(obj).raw == obj

    def test_invalid_json_raises_decode_error(self) -> "None":
        with pytest.raises(DecodeError):
            decode_line(b'{"type": "message", "timest')

    @pytest.mark.parametrize("total", ["1e400", "-1e400", "NaN", "Infinity"])
    def test_non_finite_cost_raises_decode_error(self, total: "str") -> "None":
        line = (
            '{"type":"message","timestamp":"2024-05-01T12:00:00Z",'
            '"message":{"usage":{"output":1,"cost":{"total":' + total + "}}}}"
        )
        with pytest.raises(DecodeError):
            decode_line(line)

    def test_huge_integer_cost_raises_decode_error(self) -> "None":
        with pytest.raises(DecodeError):
            decode_record(
                {
                    "type": "message",
                    "timestamp": "2024-05-01T12:00:00Z",
                    "message": {"usage": {"cost": {"total": 10**400}}},
                }
            )

    def test_deeply_nested_line_raises_decode_error(self) -> "None":
        with pytest.raises(DecodeError):
            decode_line("[" * 200_000)


class TestScanLogFile:
    def _scan(self, path: "Path", **kwargs: "object") -> "tuple[list[UsageRecord], object]":
        records: "list[UsageRecord]" = []
        stats = scan_log_file(path, records.append, **kwargs)
        return records, stats

    def test_invalid_line_between_valid_lines_is_skipped(self, tmp_path: "Path") -> "None":
        ts = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        path = tmp_path / "s.jsonl"
        path.write_text(
            message_line(ts, output=1)
            + "\n"
            + '{"type":"message","timestamp":"2024-05-01T12:'
            + "\n"
            + message_line(ts + timedelta(minutes=1), output=2)
            + "\n"
        )

        records, stats = self._scan(path)

        assert [r.usage.output for r in records] == [1, 2]
        assert stats.records == 2
        assert stats.decode_errors == 1

    def test_skips_blank_lines(self, tmp_path: "Path") -> "None":
        ts = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        path = tmp_path / "s.jsonl"
        path.write_text("\n   \n" + message_line(ts) + "\n\t\n")

        records, stats = self._scan(path)

        assert len(records) == 1
        assert stats.lines == 1
        assert stats.decode_errors == 0

    def test_last_line_without_newline(self, tmp_path: "Path") -> "None":
        ts = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        path = tmp_path / "s.jsonl"
        path.write_text(message_line(ts))

        records, _ = self._scan(path)

        assert len(records) == 1

    def test_counts_unparsable_timestamps(self, tmp_path: "Path") -> "None":
        path = tmp_path / "s.jsonl"
        path.write_text(message_line("not-a-time") + "\n")

        records, stats = self._scan(path)

        assert records == []
        assert stats.timestamp_errors == 1

    def test_overlong_line_is_skipped(self, tmp_path: "Path") -> "None":
        ts = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        padding = json.dumps({"type": "other", "blob": "x" * 500})
        path = tmp_path / "s.jsonl"
        path.write_text(padding + "\n" + message_line(ts, output=3) + "\n")

        records, stats = self._scan(path, max_line_bytes=256)

        assert [r.usage.output for r in records] == [3]
        assert stats.too_long == 1

    def test_deeply_nested_line_is_skipped(self, tmp_path: "Path") -> "None":
        ts = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        path = tmp_path / "s.jsonl"
        nested = "[" * 200_000
        path.write_text(
            message_line(ts, output=1) + "\n" + nested + "\n" + message_line(ts, output=2) + "\n"
        )

        records, stats = self._scan(path)

        assert [r.usage.output for r in records] == [1, 2]
        assert stats.decode_errors == 1

    def test_non_finite_cost_line_is_skipped(self, tmp_path: "Path") -> "None":
        ts = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        bad = message_line(ts, output=9).replace(
            '"output": 9', '"output": 9, "cost": {"total": 1e400}'
        )
        path = tmp_path / "s.jsonl"
        path.write_text(bad + "\n" + message_line(ts, output=4, cost=0.25) + "\n")

        records, stats = self._scan(path)

        assert [r.usage.output for r in records] == [4]
        assert stats.decode_errors == 1

    def test_timestamp_past_datetime_range_is_skipped(self, tmp_path: "Path") -> "None":
        ts = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        path = tmp_path / "s.jsonl"
        path.write_text(
            message_line("9999-12-31T23:59:59-01:00", output=1)
            + "\n"
            + message_line(ts, output=2)
            + "\n"
        )

        records, stats = self._scan(path)

        assert [r.usage.output for r in records] == [2]
        assert stats.timestamp_errors == 1

    def test_missing_file_raises_file_unreadable(self, tmp_path: "Path") -> "None":
        with pytest.raises(FileUnreadable):
            self._scan(tmp_path / "missing.jsonl")

    def test_past_deadline_raises_scan_cancelled(self, tmp_path: "Path") -> "None":
        ts = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        path = tmp_path / "s.jsonl"
        path.write_text(message_line(ts) + "\n")

        with pytest.raises(ScanCancelled):
            self._scan(path, deadline=0.0)
