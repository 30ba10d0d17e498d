"""
AggregationService - Windowed read queries over tracked events.

Key behaviors:
- Every query takes a resolved, inclusive [start, end] window
- Driver values (None, numeric strings) are normalized through to_number
- Overview runs its eight reads concurrently; any failure fails the call
- Batch detail listings fetch the top-level rows once, then issue one
  IN (...) query per related dimension and join in memory
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from .models import (
    BreakdownItem,
    ConversionsReport,
    DateRange,
    DevicesReport,
    ExpressCheckRecord,
    ExpressChecksQuery,
    ExpressChecksReport,
    ExpressDetail,
    OverviewMetrics,
    PagesQuery,
    PageStat,
    PaymentsTotal,
    StatusRollup,
    TimelineCheckPoint,
    TimelineQuery,
    TimelineReport,
    TimelineVisitPoint,
    UserDetail,
    VisitDimension,
    VisitorRollup,
    VisitorsQuery,
    WebsiteRollup,
)
from .ports import AnalyticsRepoPort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class AggregateConfig:
    """Aggregation limits."""

    top_websites: int = 20
    top_browsers: int = 10
    top_os: int = 10
    detail_limit: int = 500
    max_limit: int = 1000

    # Overview fan-out
    overview_workers: int = 8


DEFAULT_CONFIG = AggregateConfig()


# --- Normalization ---


def to_number(value: Any) -> int | float:
    """
    Normalize a driver value to a number.

    None and blank strings become 0; numeric strings are parsed.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int | float):
        return value
    text = str(value).strip()
    if not text:
        return 0
    try:
        return int(text)
    except ValueError:
        return float(text)


def round_half_up(value: Any) -> int:
    """Round to the nearest integer with halves rounded up."""
    return int(math.floor(to_number(value) + 0.5))


def to_int(value: Any) -> int:
    return int(to_number(value))


def to_datetime(value: Any) -> datetime | None:
    """Parse a stored timestamp (ISO text or datetime) into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_result(value: Any) -> Any:
    """Decode a stored JSON payload. Undecodable text is returned as-is."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def _clamp_limit(limit: int, config: AggregateConfig) -> int:
    return max(1, min(limit, config.max_limit))


# --- Aggregation Service ---


class AggregationService:
    """Read-only aggregation over the analytics store."""

    def __init__(
        self,
        repo: AnalyticsRepoPort,
        config: AggregateConfig | None = None,
    ) -> None:
        self._repo = repo
        self._config = config or DEFAULT_CONFIG

    def overview(self, date_range: DateRange) -> OverviewMetrics:
        """
        Headline metrics for the window.

        The eight reads run on a thread pool. Exceptions from any of them
        propagate; partial metrics are never returned.
        """
        start, end = date_range.start, date_range.end
        reads: dict[str, Callable[[datetime, datetime], Any]] = {
            "total_visits": self._repo.count_visits,
            "unique_visitors": self._repo.count_unique_visitors,
            "total_page_views": self._repo.count_page_views,
            "avg_session_duration_seconds": self._repo.avg_session_duration,
            "new_users": self._repo.count_new_users,
            "express_checks": self._repo.count_express_checks,
            "express_report_orders": self._repo.count_express_report_orders,
            "full_audit_orders": self._repo.count_full_audit_orders,
        }

        with ThreadPoolExecutor(
            max_workers=self._config.overview_workers,
            thread_name_prefix="overview",
        ) as pool:
            futures = {name: pool.submit(read, start, end) for name, read in reads.items()}
            values = {name: future.result() for name, future in futures.items()}

        return OverviewMetrics(
            total_visits=to_int(values["total_visits"]),
            unique_visitors=to_int(values["unique_visitors"]),
            total_page_views=to_int(values["total_page_views"]),
            avg_session_duration_seconds=round_half_up(values["avg_session_duration_seconds"]),
            new_users=to_int(values["new_users"]),
            express_checks=to_int(values["express_checks"]),
            express_report_orders=to_int(values["express_report_orders"]),
            full_audit_orders=to_int(values["full_audit_orders"]),
        )

    def pages(self, query: PagesQuery) -> tuple[PageStat, ...]:
        rows = self._repo.page_stats(
            query.date_range.start,
            query.date_range.end,
            _clamp_limit(query.limit, self._config),
        )
        return tuple(
            PageStat(
                page_path=r["page_path"],
                views=to_int(r.get("views")),
                unique_visitors=to_int(r.get("unique_visitors")),
                avg_duration=round_half_up(r.get("avg_duration")),
                avg_scroll_depth=round_half_up(r.get("avg_scroll_depth")),
            )
            for r in rows
        )

    def visitors(self, query: VisitorsQuery) -> tuple[VisitorRollup, ...]:
        rows = self._repo.visitor_rollups(
            query.date_range.start,
            query.date_range.end,
            _clamp_limit(query.limit, self._config),
            max(0, query.offset),
        )
        return tuple(
            VisitorRollup(
                visitor_id=r["visitor_id"],
                user_id=r.get("user_id"),
                device_type=r.get("device_type"),
                browser=r.get("browser"),
                os=r.get("os"),
                country=r.get("country"),
                city=r.get("city"),
                sessions_count=to_int(r.get("sessions_count")),
                total_page_views=to_int(r.get("total_page_views")),
                total_duration=to_int(r.get("total_duration")),
                first_visit=to_datetime(r.get("first_visit")),
                last_visit=to_datetime(r.get("last_visit")),
            )
            for r in rows
        )

    def express_checks(self, query: ExpressChecksQuery) -> ExpressChecksReport:
        start, end = query.date_range.start, query.date_range.end
        rows = self._repo.list_express_checks(
            start,
            end,
            _clamp_limit(query.limit, self._config),
            max(0, query.offset),
        )
        websites = self._repo.website_rollups(start, end, self._config.top_websites)
        total = self._repo.count_express_checks(start, end)

        checks = tuple(
            ExpressCheckRecord(
                id=r["id"],
                website_url=r["website_url"],
                created_at=to_datetime(r["created_at"]),  # type: ignore[arg-type]
                visitor_id=r.get("visitor_id"),
                user_id=r.get("user_id"),
                website_url_normalized=r.get("website_url_normalized"),
                company_name=r.get("company_name"),
                email=r.get("email"),
                phone=r.get("phone"),
                inn=r.get("inn"),
                score_percent=r.get("score_percent"),
                severity=r.get("severity"),
                result=parse_result(r.get("result_json")),
                ip_address=r.get("ip_address"),
                user_agent=r.get("user_agent"),
                conversion_type=r.get("conversion_type"),
            )
            for r in rows
        )
        by_website = tuple(
            WebsiteRollup(
                website_url=w.get("website_url"),
                checks_count=to_int(w.get("checks_count")),
                avg_score=round_half_up(w.get("avg_score")),
            )
            for w in websites
        )
        return ExpressChecksReport(total=to_int(total), checks=checks, by_website=by_website)

    def conversions(self, date_range: DateRange) -> ConversionsReport:
        start, end = date_range.start, date_range.end
        express = self._repo.express_report_orders_by_status(start, end)
        full = self._repo.full_audit_orders_by_status(start, end)
        payments = self._repo.succeeded_payments(start, end)

        return ConversionsReport(
            express_reports=tuple(
                StatusRollup(
                    status=r["status"],
                    count=to_int(r.get("count")),
                    revenue=to_int(r.get("revenue")),
                )
                for r in express
            ),
            full_audits=tuple(
                StatusRollup(status=r["status"], count=to_int(r.get("count"))) for r in full
            ),
            total_paid_payments=PaymentsTotal(
                count=to_int(payments.get("count")),
                revenue=to_int(payments.get("revenue")),
            ),
        )

    def timeline(self, query: TimelineQuery) -> TimelineReport:
        start, end = query.date_range.start, query.date_range.end
        visits = self._repo.visits_timeline(start, end, query.group_by)
        checks = self._repo.express_checks_timeline(start, end, query.group_by)

        return TimelineReport(
            group_by=query.group_by,
            visits=tuple(
                TimelineVisitPoint(
                    period=r["period"],
                    visits=to_int(r.get("visits")),
                    unique_visitors=to_int(r.get("unique_visitors")),
                )
                for r in visits
            ),
            express_checks=tuple(
                TimelineCheckPoint(period=r["period"], checks=to_int(r.get("checks")))
                for r in checks
            ),
        )

    def devices(self, date_range: DateRange) -> DevicesReport:
        start, end = date_range.start, date_range.end

        def breakdown(dimension: VisitDimension, limit: int | None) -> tuple[BreakdownItem, ...]:
            rows = self._repo.visits_breakdown(start, end, dimension, limit)
            return tuple(
                BreakdownItem(
                    value=r.get("value"),
                    count=to_int(r.get("count")),
                    unique_visitors=to_int(r.get("unique_visitors")),
                )
                for r in rows
            )

        return DevicesReport(
            by_device=breakdown(VisitDimension.DEVICE_TYPE, None),
            by_browser=breakdown(VisitDimension.BROWSER, self._config.top_browsers),
            by_os=breakdown(VisitDimension.OS, self._config.top_os),
        )

    def users_detail(self) -> tuple[UserDetail, ...]:
        """
        Most recent users with their activity counts.

        Three queries total regardless of the number of users.
        """
        users = self._repo.recent_users(self._config.detail_limit)
        if not users:
            return ()

        user_ids = [u["id"] for u in users]
        checks_by_user = {
            r["user_id"]: to_int(r.get("count"))
            for r in self._repo.express_check_counts_by_user(user_ids)
        }
        orders_by_user = {
            r["user_id"]: to_int(r.get("count"))
            for r in self._repo.express_report_order_counts_by_user(user_ids)
        }

        return tuple(
            UserDetail(
                id=u["id"],
                email=u["email"],
                name=u.get("name"),
                phone=u.get("phone"),
                role=u.get("role") or "user",
                email_verified=bool(u.get("email_verified_at")),
                created_at=to_datetime(u.get("created_at")),
                express_checks_count=checks_by_user.get(u["id"], 0),
                orders_count=orders_by_user.get(u["id"], 0),
            )
            for u in users
        )

    def express_detail(self) -> tuple[ExpressDetail, ...]:
        """
        Most recent express checks with the identity of their owners.

        Two queries total regardless of the number of checks.
        """
        checks = self._repo.recent_express_checks(self._config.detail_limit)
        if not checks:
            return ()

        user_ids = sorted({c["user_id"] for c in checks if c.get("user_id") is not None})
        users_by_id: dict[int, dict[str, Any]] = {}
        if user_ids:
            users_by_id = {u["id"]: u for u in self._repo.users_by_ids(user_ids)}

        details = []
        for c in checks:
            owner = users_by_id.get(c.get("user_id"))  # type: ignore[arg-type]
            details.append(
                ExpressDetail(
                    id=c["id"],
                    website_url=c["website_url"],
                    score_percent=c.get("score_percent"),
                    severity=c.get("severity"),
                    created_at=to_datetime(c.get("created_at")),
                    user_id=c.get("user_id"),
                    user_name=owner.get("name") if owner else None,
                    user_email=owner.get("email") if owner else None,
                    full_report_purchased=c.get("conversion_type") == "paid_report",
                )
            )
        return tuple(details)
