from datetime import UTC, datetime, timedelta


class SystemClock:
    """TimePort backed by the system clock."""

    def now_utc(self) -> datetime:
        return datetime.now(UTC)


class FixedClock:
    """TimePort pinned to a given instant. Used by seed scripts and tests."""

    def __init__(self, at: datetime):
        self._at = at if at.tzinfo else at.replace(tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._at

    def advance(self, **delta: float) -> None:
        self._at = self._at + timedelta(**delta)
