from datetime import datetime, timedelta, timezone

import pytest

from clawmeter.models import RecordKind, Usage, UsageRecord
from clawmeter.token_usage import MAX_HOURS, TokenUsageCounter

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def record(
    age: "timedelta",
    total: "int",
    provider: "str" = "anthropic",
    model: "str" = "claude-sonnet-4",
) -> "UsageRecord":
    return UsageRecord(
        kind=RecordKind.MESSAGE,
        timestamp=NOW - age,
        provider=provider,
        model=model,
        usage=Usage(total_tokens=total),
        has_message=True,
    )


class TestTokenUsageCounter:
    def test_sums_since_cutoff(self) -> "None":
        counter = TokenUsageCounter(NOW, hours=1)
        counter.add(record(timedelta(minutes=10), 123))
        counter.add(record(timedelta(minutes=59), 7))
        counter.add(record(timedelta(hours=1), 1))
        counter.add(record(timedelta(hours=2), 999))
        counter.end_file()

        report = counter.report()

        assert report.used_tokens == 131
        assert report.period == "1h"

    def test_negative_totals_are_skipped(self) -> "None":
        counter = TokenUsageCounter(NOW, hours=1)
        assert counter.add(record(timedelta(minutes=1), -5)) is False
        assert counter.report().used_tokens == 0

    def test_breakdown_sorted_by_usage(self) -> "None":
        counter = TokenUsageCounter(NOW, hours=24)
        counter.add(record(timedelta(hours=1), 10, "openai", "gpt-4o"))
        counter.add(record(timedelta(hours=1), 50))
        counter.add(record(timedelta(hours=2), 30, "openai", "gpt-4o"))
        counter.end_file()

        report = counter.report(limit_tokens=1000)

        assert [b.to_dict() for b in report.breakdown] == [
            {"provider": "anthropic", "model": "claude-sonnet-4", "usedTokens": 50},
            {"provider": "openai", "model": "gpt-4o", "usedTokens": 40},
        ]
        assert report.limit_tokens == 1000

    def test_file_count_only_counts_contributing_files(self) -> "None":
        counter = TokenUsageCounter(NOW, hours=1)
        counter.start_file()
        counter.add(record(timedelta(minutes=1), 5))
        counter.end_file()
        counter.start_file()
        counter.add(record(timedelta(days=1), 5))
        counter.end_file()

        assert counter.report().file_count == 1

    def test_file_that_fails_partway_contributes_nothing(self) -> "None":
        counter = TokenUsageCounter(NOW, hours=1)
        counter.start_file()
        counter.add(record(timedelta(minutes=1), 5))
        counter.end_file()
        counter.start_file()
        counter.add(record(timedelta(minutes=2), 100))
        counter.end_file(complete=False)

        report = counter.report()

        assert report.used_tokens == 5
        assert report.file_count == 1
        assert [b.used_tokens for b in report.breakdown] == [5]

    def test_hours_capped_at_a_week(self) -> "None":
        counter = TokenUsageCounter(NOW, hours=1000)
        assert counter.hours == MAX_HOURS
        assert counter.report().period == "168h"

    @pytest.mark.parametrize("hours", [0, -3])
    def test_rejects_non_positive_hours(self, hours: "int") -> "None":
        with pytest.raises(ValueError):
            TokenUsageCounter(NOW, hours=hours)
