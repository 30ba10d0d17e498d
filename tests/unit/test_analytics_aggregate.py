"""
Tests for AggregationService.

Value normalization, rounding, overview failure semantics and the
in-memory joins behind the batch detail listings.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import pytest

from src.components.analytics import (
    AggregateConfig,
    AggregationService,
    DateRange,
    ExpressChecksQuery,
    Granularity,
    PagesQuery,
    StorageError,
    TimelineQuery,
    VisitDimension,
    VisitorsQuery,
    round_half_up,
    to_number,
)
from src.components.analytics._aggregate import parse_result, to_datetime

WINDOW = DateRange(
    start=datetime(2026, 3, 8, tzinfo=UTC),
    end=datetime(2026, 3, 15, 23, 59, 59, 999999, tzinfo=UTC),
)


class StubAnalyticsRepo:
    """AnalyticsRepoPort returning canned driver values and recording calls."""

    def __init__(self, **canned: Any) -> None:
        self.canned = canned
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def _answer(self, name: str, *args: Any) -> Any:
        self.calls.append((name, args))
        value = self.canned.get(name)
        if isinstance(value, Exception):
            raise value
        return value

    def count_visits(self, start: datetime, end: datetime) -> Any:
        return self._answer("count_visits", start, end)

    def count_unique_visitors(self, start: datetime, end: datetime) -> Any:
        return self._answer("count_unique_visitors", start, end)

    def count_page_views(self, start: datetime, end: datetime) -> Any:
        return self._answer("count_page_views", start, end)

    def avg_session_duration(self, start: datetime, end: datetime) -> Any:
        return self._answer("avg_session_duration", start, end)

    def count_new_users(self, start: datetime, end: datetime) -> Any:
        return self._answer("count_new_users", start, end)

    def count_express_checks(self, start: datetime, end: datetime) -> Any:
        return self._answer("count_express_checks", start, end)

    def count_express_report_orders(self, start: datetime, end: datetime) -> Any:
        return self._answer("count_express_report_orders", start, end)

    def count_full_audit_orders(self, start: datetime, end: datetime) -> Any:
        return self._answer("count_full_audit_orders", start, end)

    def page_stats(self, start: datetime, end: datetime, limit: int) -> list[dict[str, Any]]:
        return self._answer("page_stats", start, end, limit) or []

    def visitor_rollups(
        self, start: datetime, end: datetime, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        return self._answer("visitor_rollups", start, end, limit, offset) or []

    def list_express_checks(
        self, start: datetime, end: datetime, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        return self._answer("list_express_checks", start, end, limit, offset) or []

    def website_rollups(self, start: datetime, end: datetime, limit: int) -> list[dict[str, Any]]:
        return self._answer("website_rollups", start, end, limit) or []

    def express_report_orders_by_status(
        self, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        return self._answer("express_report_orders_by_status", start, end) or []

    def full_audit_orders_by_status(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return self._answer("full_audit_orders_by_status", start, end) or []

    def succeeded_payments(self, start: datetime, end: datetime) -> dict[str, Any]:
        return self._answer("succeeded_payments", start, end) or {}

    def visits_timeline(
        self, start: datetime, end: datetime, granularity: Granularity
    ) -> list[dict[str, Any]]:
        return self._answer("visits_timeline", start, end, granularity) or []

    def express_checks_timeline(
        self, start: datetime, end: datetime, granularity: Granularity
    ) -> list[dict[str, Any]]:
        return self._answer("express_checks_timeline", start, end, granularity) or []

    def visits_breakdown(
        self,
        start: datetime,
        end: datetime,
        dimension: VisitDimension,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = self._answer("visits_breakdown", start, end, dimension, limit) or {}
        return rows.get(dimension, [])

    def recent_users(self, limit: int) -> list[dict[str, Any]]:
        return self._answer("recent_users", limit) or []

    def express_check_counts_by_user(self, user_ids: Sequence[int]) -> list[dict[str, Any]]:
        return self._answer("express_check_counts_by_user", tuple(user_ids)) or []

    def express_report_order_counts_by_user(
        self, user_ids: Sequence[int]
    ) -> list[dict[str, Any]]:
        return self._answer("express_report_order_counts_by_user", tuple(user_ids)) or []

    def recent_express_checks(self, limit: int) -> list[dict[str, Any]]:
        return self._answer("recent_express_checks", limit) or []

    def users_by_ids(self, user_ids: Sequence[int]) -> list[dict[str, Any]]:
        return self._answer("users_by_ids", tuple(user_ids)) or []

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]


# --- Normalization ---


class TestToNumber:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, 0), ("", 0), ("  ", 0), ("42", 42), ("12.5", 12.5), (7, 7), (2.5, 2.5), (True, 1)],
    )
    def test_normalizes_driver_values(self, value: Any, expected: int | float) -> None:
        assert to_number(value) == expected

    def test_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            to_number("n/a")


class TestRoundHalfUp:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(0.5, 1), (1.5, 2), (2.5, 3), (2.49, 2), ("14.5", 15), (None, 0), (15, 15)],
    )
    def test_halves_round_up(self, value: Any, expected: int) -> None:
        assert round_half_up(value) == expected


class TestStoredValues:
    def test_to_datetime_assumes_utc(self) -> None:
        assert to_datetime("2026-03-15T10:00:00") == datetime(2026, 3, 15, 10, tzinfo=UTC)

    def test_to_datetime_empty(self) -> None:
        assert to_datetime(None) is None
        assert to_datetime("") is None

    def test_parse_result(self) -> None:
        assert parse_result('{"passed": 3}') == {"passed": 3}
        assert parse_result("not json") == "not json"
        assert parse_result(None) is None


# --- Overview ---


def overview_repo(**overrides: Any) -> StubAnalyticsRepo:
    canned = {
        "count_visits": 10,
        "count_unique_visitors": "4",
        "count_page_views": 25,
        "avg_session_duration": 14.5,
        "count_new_users": None,
        "count_express_checks": 3,
        "count_express_report_orders": "2",
        "count_full_audit_orders": 1,
    }
    canned.update(overrides)
    return StubAnalyticsRepo(**canned)


class TestOverview:
    def test_normalizes_every_metric(self) -> None:
        metrics = AggregationService(overview_repo()).overview(WINDOW)

        assert metrics.total_visits == 10
        assert metrics.unique_visitors == 4
        assert metrics.total_page_views == 25
        assert metrics.avg_session_duration_seconds == 15
        assert metrics.new_users == 0
        assert metrics.express_checks == 3
        assert metrics.express_report_orders == 2
        assert metrics.full_audit_orders == 1

    def test_no_visits_averages_to_zero(self) -> None:
        metrics = AggregationService(overview_repo(avg_session_duration=None)).overview(WINDOW)
        assert metrics.avg_session_duration_seconds == 0

    def test_every_read_uses_the_window(self) -> None:
        repo = overview_repo()
        AggregationService(repo).overview(WINDOW)

        assert len(repo.calls) == 8
        assert all(args == (WINDOW.start, WINDOW.end) for _, args in repo.calls)

    def test_failing_read_fails_the_call(self) -> None:
        repo = overview_repo(count_page_views=StorageError("disk I/O error"))

        with pytest.raises(StorageError):
            AggregationService(repo).overview(WINDOW)


# --- Listings ---


class TestPages:
    def test_rounds_averages(self) -> None:
        repo = StubAnalyticsRepo(
            page_stats=[
                {
                    "page_path": "/",
                    "views": 9,
                    "unique_visitors": "3",
                    "avg_duration": 12.5,
                    "avg_scroll_depth": None,
                }
            ]
        )

        [stat] = AggregationService(repo).pages(PagesQuery(WINDOW, limit=20))

        assert (stat.views, stat.unique_visitors) == (9, 3)
        assert stat.avg_duration == 13
        assert stat.avg_scroll_depth == 0

    def test_limit_clamped_to_max(self) -> None:
        repo = StubAnalyticsRepo()
        service = AggregationService(repo, AggregateConfig(max_limit=100))

        service.pages(PagesQuery(WINDOW, limit=5000))

        assert repo.called("page_stats")[0][2] == 100


class TestVisitors:
    def test_offset_never_negative(self) -> None:
        repo = StubAnalyticsRepo()
        AggregationService(repo).visitors(VisitorsQuery(WINDOW, limit=10, offset=-5))

        assert repo.called("visitor_rollups")[0][2:] == (10, 0)

    def test_parses_visit_bounds(self) -> None:
        repo = StubAnalyticsRepo(
            visitor_rollups=[
                {
                    "visitor_id": "v1",
                    "sessions_count": 2,
                    "total_page_views": "5",
                    "total_duration": None,
                    "first_visit": "2026-03-10T09:00:00.000000+00:00",
                    "last_visit": "2026-03-12T09:00:00.000000+00:00",
                }
            ]
        )

        [visitor] = AggregationService(repo).visitors(VisitorsQuery(WINDOW))

        assert visitor.total_page_views == 5
        assert visitor.total_duration == 0
        assert visitor.first_visit == datetime(2026, 3, 10, 9, tzinfo=UTC)
        assert visitor.user_id is None


class TestExpressChecks:
    def test_report_combines_page_rollup_and_total(self) -> None:
        repo = StubAnalyticsRepo(
            list_express_checks=[
                {
                    "id": 7,
                    "website_url": "shop.ru",
                    "created_at": "2026-03-14T10:00:00.000000+00:00",
                    "result_json": '{"failed": 2}',
                    "score_percent": 40,
                }
            ],
            website_rollups=[
                {"website_url": "https://shop.ru", "checks_count": "3", "avg_score": 66.5}
            ],
            count_express_checks=12,
        )

        report = AggregationService(repo).express_checks(ExpressChecksQuery(WINDOW, limit=1))

        assert report.total == 12
        assert report.checks[0].result == {"failed": 2}
        assert report.by_website[0].checks_count == 3
        assert report.by_website[0].avg_score == 67

    def test_website_rollup_uses_configured_top(self) -> None:
        repo = StubAnalyticsRepo()
        AggregationService(repo, AggregateConfig(top_websites=5)).express_checks(
            ExpressChecksQuery(WINDOW)
        )

        assert repo.called("website_rollups")[0][2] == 5


class TestConversions:
    def test_revenue_and_payments(self) -> None:
        repo = StubAnalyticsRepo(
            express_report_orders_by_status=[
                {"status": "paid", "count": 3, "revenue": "2700"},
                {"status": "pending", "count": 1, "revenue": None},
            ],
            full_audit_orders_by_status=[{"status": "new", "count": "2"}],
            succeeded_payments={"count": None, "revenue": None},
        )

        report = AggregationService(repo).conversions(WINDOW)

        assert report.express_reports[0].revenue == 2700
        assert report.express_reports[1].revenue == 0
        assert report.full_audits[0].count == 2
        assert report.full_audits[0].revenue is None
        assert (report.total_paid_payments.count, report.total_paid_payments.revenue) == (0, 0)


class TestTimeline:
    def test_passes_granularity(self) -> None:
        repo = StubAnalyticsRepo(
            visits_timeline=[{"period": "2026-W11", "visits": 4, "unique_visitors": "2"}],
            express_checks_timeline=[{"period": "2026-W11", "checks": None}],
        )

        report = AggregationService(repo).timeline(TimelineQuery(WINDOW, Granularity.WEEK))

        assert report.group_by is Granularity.WEEK
        assert report.visits[0].unique_visitors == 2
        assert report.express_checks[0].checks == 0
        assert repo.called("visits_timeline")[0][2] is Granularity.WEEK


class TestDevices:
    def test_breakdowns_use_top_limits(self) -> None:
        repo = StubAnalyticsRepo(
            visits_breakdown={
                VisitDimension.DEVICE_TYPE: [{"value": "mobile", "count": 5, "unique_visitors": 3}],
                VisitDimension.OS: [{"value": None, "count": "1", "unique_visitors": 1}],
            }
        )
        service = AggregationService(repo, AggregateConfig(top_browsers=3, top_os=4))

        report = service.devices(WINDOW)

        assert report.by_device[0].value == "mobile"
        assert report.by_browser == ()
        assert report.by_os[0].count == 1
        limits = {args[2]: args[3] for args in repo.called("visits_breakdown")}
        assert limits == {
            VisitDimension.DEVICE_TYPE: None,
            VisitDimension.BROWSER: 3,
            VisitDimension.OS: 4,
        }


# --- Batch detail ---


class TestUsersDetail:
    def test_joins_counts_in_memory(self) -> None:
        repo = StubAnalyticsRepo(
            recent_users=[
                {
                    "id": 2,
                    "email": "b@example.com",
                    "name": "B",
                    "role": "user",
                    "email_verified_at": "2026-03-01T00:00:00+00:00",
                    "created_at": "2026-03-01T00:00:00+00:00",
                },
                {"id": 1, "email": "a@example.com", "name": None, "role": None},
            ],
            express_check_counts_by_user=[{"user_id": 2, "count": 4}],
            express_report_order_counts_by_user=[{"user_id": 1, "count": "1"}],
        )

        users = AggregationService(repo).users_detail()

        assert [(u.id, u.express_checks_count, u.orders_count) for u in users] == [
            (2, 4, 0),
            (1, 0, 1),
        ]
        assert users[0].email_verified is True
        assert users[1].email_verified is False
        assert users[1].role == "user"

    def test_three_reads_regardless_of_size(self) -> None:
        users = [{"id": i, "email": f"u{i}@example.com"} for i in range(1, 501)]
        repo = StubAnalyticsRepo(recent_users=users)

        AggregationService(repo).users_detail()

        assert len(repo.calls) == 3
        assert repo.called("express_check_counts_by_user")[0][0] == tuple(range(1, 501))

    def test_no_users(self) -> None:
        repo = StubAnalyticsRepo()
        assert AggregationService(repo).users_detail() == ()
        assert len(repo.calls) == 1

    def test_uses_detail_limit(self) -> None:
        repo = StubAnalyticsRepo()
        AggregationService(repo, AggregateConfig(detail_limit=50)).users_detail()
        assert repo.called("recent_users") == [(50,)]


class TestExpressDetail:
    def test_attaches_owner_identity(self) -> None:
        repo = StubAnalyticsRepo(
            recent_express_checks=[
                {"id": 3, "website_url": "a.ru", "user_id": 5, "conversion_type": "paid_report"},
                {"id": 2, "website_url": "b.ru", "user_id": None},
                {"id": 1, "website_url": "c.ru", "user_id": 5},
            ],
            users_by_ids=[{"id": 5, "name": "Owner", "email": "owner@example.com"}],
        )

        details = AggregationService(repo).express_detail()

        assert details[0].user_email == "owner@example.com"
        assert details[0].full_report_purchased is True
        assert details[1].user_name is None
        assert details[2].full_report_purchased is False
        assert repo.called("users_by_ids") == [((5,),)]

    def test_anonymous_checks_need_one_read(self) -> None:
        repo = StubAnalyticsRepo(
            recent_express_checks=[{"id": 1, "website_url": "a.ru", "user_id": None}]
        )

        AggregationService(repo).express_detail()

        assert len(repo.calls) == 1
