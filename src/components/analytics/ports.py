"""
Analytics component port definitions.

Storage ports return raw driver values (dicts, scalars that may be None or
strings); the aggregation layer normalizes them.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

from .models import (
    Granularity,
    NewExpressCheck,
    NewPageView,
    NewVisit,
    VisitDimension,
)


class TrackingRepoPort(Protocol):
    """Write side: one row or one atomic counter update per call."""

    def insert_visit(self, visit: NewVisit) -> int:
        """Insert a visit with page_count = 0. Returns the new id."""
        ...

    def insert_page_view(self, page_view: NewPageView) -> int:
        """
        Insert a page view. Returns the new id.

        When page_view.visit_id is set, the visit's page_count is incremented
        by exactly one with a single server-side update.
        """
        ...

    def close_page_view(
        self,
        page_view_id: int,
        exited_at: datetime,
        duration_seconds: int,
        scroll_depth_percent: int,
    ) -> bool:
        """Overwrite exit metrics. Returns False if the row does not exist."""
        ...

    def close_visit(
        self,
        visit_id: int,
        ended_at: datetime,
        total_duration_seconds: int,
    ) -> bool:
        """Overwrite end metrics. Returns False if the row does not exist."""
        ...

    def insert_express_check(self, check: NewExpressCheck) -> int:
        """Insert a completed express check. Returns the new id."""
        ...


class AnalyticsRepoPort(Protocol):
    """Read side. Windows are inclusive on both ends."""

    # Overview scalars
    def count_visits(self, start: datetime, end: datetime) -> Any: ...

    def count_unique_visitors(self, start: datetime, end: datetime) -> Any: ...

    def count_page_views(self, start: datetime, end: datetime) -> Any: ...

    def avg_session_duration(self, start: datetime, end: datetime) -> Any:
        """AVG(total_duration_seconds) over visits with a positive duration."""
        ...

    def count_new_users(self, start: datetime, end: datetime) -> Any: ...

    def count_express_checks(self, start: datetime, end: datetime) -> Any: ...

    def count_express_report_orders(self, start: datetime, end: datetime) -> Any: ...

    def count_full_audit_orders(self, start: datetime, end: datetime) -> Any: ...

    # Grouped reads
    def page_stats(self, start: datetime, end: datetime, limit: int) -> list[dict[str, Any]]: ...

    def visitor_rollups(
        self, start: datetime, end: datetime, limit: int, offset: int
    ) -> list[dict[str, Any]]: ...

    def list_express_checks(
        self, start: datetime, end: datetime, limit: int, offset: int
    ) -> list[dict[str, Any]]: ...

    def website_rollups(self, start: datetime, end: datetime, limit: int) -> list[dict[str, Any]]: ...

    def express_report_orders_by_status(
        self, start: datetime, end: datetime
    ) -> list[dict[str, Any]]: ...

    def full_audit_orders_by_status(self, start: datetime, end: datetime) -> list[dict[str, Any]]: ...

    def succeeded_payments(self, start: datetime, end: datetime) -> dict[str, Any]: ...

    def visits_timeline(
        self, start: datetime, end: datetime, granularity: Granularity
    ) -> list[dict[str, Any]]: ...

    def express_checks_timeline(
        self, start: datetime, end: datetime, granularity: Granularity
    ) -> list[dict[str, Any]]: ...

    def visits_breakdown(
        self,
        start: datetime,
        end: datetime,
        dimension: VisitDimension,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    # Batch detail: one query per call, never per row
    def recent_users(self, limit: int) -> list[dict[str, Any]]: ...

    def express_check_counts_by_user(self, user_ids: Sequence[int]) -> list[dict[str, Any]]: ...

    def express_report_order_counts_by_user(
        self, user_ids: Sequence[int]
    ) -> list[dict[str, Any]]: ...

    def recent_express_checks(self, limit: int) -> list[dict[str, Any]]: ...

    def users_by_ids(self, user_ids: Sequence[int]) -> list[dict[str, Any]]: ...


class RateLimiterPort(Protocol):
    """Rate limiter interface."""

    def try_acquire(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Atomically admit and record one request. Returns False when over the limit."""
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
