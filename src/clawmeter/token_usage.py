from datetime import datetime, timedelta

from clawmeter.models import ModelTokenUsage, RecordKind, TokenUsageReport, UsageRecord

MAX_HOURS = 24 * 7


class TokenUsageCounter:
    """
    TokenUsageCounter sums the reported totalTokens of message records
    since a cutoff, per provider/model. Records reporting a negative
    total are ignored outright.
    """

    def __init__(self, now: "datetime", hours: "int") -> "None":
        if hours <= 0:
            raise ValueError("hours must be positive")
        self.hours = min(hours, MAX_HOURS)
        self.since = now - timedelta(hours=self.hours)
        self.used_tokens = 0
        self.file_count = 0
        self._breakdown: "dict[tuple[str, str], int]" = {}
        # totals of the file being read, committed by end_file
        self._pending: "dict[tuple[str, str], int]" = {}

    def start_file(self) -> "None":
        self._pending = {}

    def end_file(self, complete: "bool" = True) -> "None":
        """
        commits the current file's totals. A file that failed partway
        through contributes nothing.
        """
        pending, self._pending = self._pending, {}
        if not complete or not pending:
            return
        self.file_count += 1
        for key, total in pending.items():
            self.used_tokens += total
            self._breakdown[key] = self._breakdown.get(key, 0) + total

    def add(self, record: "UsageRecord") -> "bool":
        if record.kind is not RecordKind.MESSAGE or record.usage is None:
            return False
        if record.timestamp < self.since:
            return False
        total = record.usage.total_tokens
        if total < 0:
            return False

        key = (record.provider, record.model)
        self._pending[key] = self._pending.get(key, 0) + total
        return True

    def report(self, limit_tokens: "int" = 0) -> "TokenUsageReport":
        breakdown = [
            ModelTokenUsage(provider=p, model=m, used_tokens=n)
            for (p, m), n in self._breakdown.items()
        ]
        breakdown.sort(key=lambda u: (-u.used_tokens, u.provider, u.model))
        return TokenUsageReport(
            period=f"{self.hours}h",
            used_tokens=self.used_tokens,
            limit_tokens=limit_tokens,
            file_count=self.file_count,
            breakdown=breakdown,
        )
