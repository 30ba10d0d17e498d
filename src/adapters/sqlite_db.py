"""
SQLite Database Adapter for the analytics component.

Implements TrackingRepoPort and AnalyticsRepoPort using SQLite.
Timestamps are stored as UTC ISO-8601 text with fixed microsecond precision,
so lexical comparison matches chronological order.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from src.components.analytics.models import (
    Granularity,
    NewExpressCheck,
    NewPageView,
    NewVisit,
    StorageError,
    VisitDimension,
)

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def to_db_ts(dt: datetime) -> str:
    """Serialize a datetime for storage. Naive values are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


# Closed maps: callers choose an enum member, never a SQL string.

_BUCKET_SQL: dict[Granularity, str] = {
    Granularity.HOUR: "strftime('%Y-%m-%d %H:00', {col})",
    Granularity.DAY: "strftime('%Y-%m-%d', {col})",
    # ISO week: the Thursday of the week decides the year and week number
    Granularity.WEEK: (
        "printf('%s-%02d', "
        "strftime('%Y', date({col}, '-3 days', 'weekday 4')), "
        "(CAST(strftime('%j', date({col}, '-3 days', 'weekday 4')) AS INTEGER) - 1) / 7 + 1)"
    ),
    Granularity.MONTH: "strftime('%Y-%m', {col})",
}

_DIMENSION_SQL: dict[VisitDimension, str] = {
    VisitDimension.DEVICE_TYPE: "device_type",
    VisitDimension.BROWSER: "browser",
    VisitDimension.OS: "os",
}


def bucket_expression(granularity: Granularity, column: str) -> str:
    return _BUCKET_SQL[granularity].format(col=column)


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """
    Base class for SQLite repositories.

    Every call opens its own connection. `timeout` is how long a writer waits
    on a locked database before failing. `trace`, when given, receives every
    SQL statement executed.
    """

    # Passed to sqlite3.connect; "" is a deferred BEGIN
    isolation_level: str = ""

    def __init__(
        self,
        db_path: str,
        timeout: float = 30.0,
        trace: Callable[[str], None] | None = None,
    ):
        self.db_path = db_path
        self.timeout = timeout
        self._trace = trace

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Connection scoped to one unit of work; committed on success."""
        try:
            conn = sqlite3.connect(
                self.db_path, timeout=self.timeout, isolation_level=self.isolation_level
            )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database: {e}") from e

        conn.row_factory = dict_factory
        if self._trace is not None:
            conn.set_trace_callback(self._trace)
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        with self._connection() as conn:
            return conn.execute(sql, tuple(params)).fetchall()

    def _fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict[str, Any]:
        with self._connection() as conn:
            row = conn.execute(sql, tuple(params)).fetchone()
            return row or {}

    def _scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        return self._fetch_one(sql, params).get("value")


# -----------------------------------------------------------------------------
# Tracking Repository (write side)
# -----------------------------------------------------------------------------


class SQLiteTrackingRepo(SQLiteRepoBase):
    """SQLite implementation of TrackingRepoPort."""

    # Writers take the RESERVED lock at BEGIN and queue on the busy timeout
    isolation_level = "IMMEDIATE"

    def insert_visit(self, visit: NewVisit) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO site_visits (
                    visitor_id, session_id, user_id, ip_address, user_agent,
                    referrer, utm_source, utm_medium, utm_campaign,
                    device_type, browser, os, country, city,
                    started_at, page_count, total_duration_seconds
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0)
                """,
                (
                    visit.visitor_id,
                    visit.session_id,
                    visit.user_id,
                    visit.ip_address,
                    visit.user_agent,
                    visit.referrer,
                    visit.utm_source,
                    visit.utm_medium,
                    visit.utm_campaign,
                    visit.device_type,
                    visit.browser,
                    visit.os,
                    visit.country,
                    visit.city,
                    to_db_ts(visit.started_at),
                ),
            )
            return int(cursor.lastrowid)  # type: ignore[arg-type]

    def insert_page_view(self, page_view: NewPageView) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO page_views (
                    visit_id, visitor_id, session_id, user_id,
                    page_path, page_title, referrer_path, entered_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    page_view.visit_id,
                    page_view.visitor_id,
                    page_view.session_id,
                    page_view.user_id,
                    page_view.page_path,
                    page_view.page_title,
                    page_view.referrer_path,
                    to_db_ts(page_view.entered_at),
                ),
            )
            if page_view.visit_id is not None:
                conn.execute(
                    "UPDATE site_visits SET page_count = page_count + 1 WHERE id = ?",
                    (page_view.visit_id,),
                )
            return int(cursor.lastrowid)  # type: ignore[arg-type]

    def close_page_view(
        self,
        page_view_id: int,
        exited_at: datetime,
        duration_seconds: int,
        scroll_depth_percent: int,
    ) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE page_views
                SET exited_at = ?, duration_seconds = ?, scroll_depth_percent = ?
                WHERE id = ?
                """,
                (to_db_ts(exited_at), duration_seconds, scroll_depth_percent, page_view_id),
            )
            return cursor.rowcount > 0

    def close_visit(
        self,
        visit_id: int,
        ended_at: datetime,
        total_duration_seconds: int,
    ) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                """
                UPDATE site_visits
                SET ended_at = ?, total_duration_seconds = ?
                WHERE id = ?
                """,
                (to_db_ts(ended_at), total_duration_seconds, visit_id),
            )
            return cursor.rowcount > 0

    def insert_express_check(self, check: NewExpressCheck) -> int:
        # Every payload, strings included, is stored as JSON text
        result_json = (
            json.dumps(check.result_json, ensure_ascii=False)
            if check.result_json is not None
            else None
        )

        with self._connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO express_checks (
                    visitor_id, user_id, website_url, website_url_normalized,
                    company_name, email, phone, inn, score_percent, severity,
                    result_json, ip_address, user_agent, conversion_type, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    check.visitor_id,
                    check.user_id,
                    check.website_url,
                    check.website_url_normalized,
                    check.company_name,
                    check.email,
                    check.phone,
                    check.inn,
                    check.score_percent,
                    check.severity,
                    result_json,
                    check.ip_address,
                    check.user_agent,
                    check.conversion_type,
                    to_db_ts(check.created_at),
                ),
            )
            return int(cursor.lastrowid)  # type: ignore[arg-type]


# -----------------------------------------------------------------------------
# Analytics Repository (read side)
# -----------------------------------------------------------------------------


class SQLiteAnalyticsRepo(SQLiteRepoBase):
    """SQLite implementation of AnalyticsRepoPort. Windows are inclusive."""

    def _window(self, start: datetime, end: datetime) -> tuple[str, str]:
        return to_db_ts(start), to_db_ts(end)

    # --- Overview scalars ---

    def count_visits(self, start: datetime, end: datetime) -> Any:
        return self._scalar(
            "SELECT COUNT(*) AS value FROM site_visits WHERE started_at >= ? AND started_at <= ?",
            self._window(start, end),
        )

    def count_unique_visitors(self, start: datetime, end: datetime) -> Any:
        return self._scalar(
            """
            SELECT COUNT(DISTINCT visitor_id) AS value
            FROM site_visits WHERE started_at >= ? AND started_at <= ?
            """,
            self._window(start, end),
        )

    def count_page_views(self, start: datetime, end: datetime) -> Any:
        return self._scalar(
            "SELECT COUNT(*) AS value FROM page_views WHERE entered_at >= ? AND entered_at <= ?",
            self._window(start, end),
        )

    def avg_session_duration(self, start: datetime, end: datetime) -> Any:
        return self._scalar(
            """
            SELECT AVG(total_duration_seconds) AS value
            FROM site_visits
            WHERE started_at >= ? AND started_at <= ? AND total_duration_seconds > 0
            """,
            self._window(start, end),
        )

    def count_new_users(self, start: datetime, end: datetime) -> Any:
        return self._scalar(
            "SELECT COUNT(*) AS value FROM users WHERE created_at >= ? AND created_at <= ?",
            self._window(start, end),
        )

    def count_express_checks(self, start: datetime, end: datetime) -> Any:
        return self._scalar(
            """
            SELECT COUNT(*) AS value FROM express_checks
            WHERE created_at >= ? AND created_at <= ?
            """,
            self._window(start, end),
        )

    def count_express_report_orders(self, start: datetime, end: datetime) -> Any:
        return self._scalar(
            """
            SELECT COUNT(*) AS value FROM express_report_orders
            WHERE created_at >= ? AND created_at <= ?
            """,
            self._window(start, end),
        )

    def count_full_audit_orders(self, start: datetime, end: datetime) -> Any:
        return self._scalar(
            """
            SELECT COUNT(*) AS value FROM full_audit_orders
            WHERE created_at >= ? AND created_at <= ?
            """,
            self._window(start, end),
        )

    # --- Grouped reads ---

    def page_stats(self, start: datetime, end: datetime, limit: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT page_path,
                   COUNT(*) AS views,
                   COUNT(DISTINCT visitor_id) AS unique_visitors,
                   AVG(duration_seconds) AS avg_duration,
                   AVG(scroll_depth_percent) AS avg_scroll_depth
            FROM page_views
            WHERE entered_at >= ? AND entered_at <= ?
            GROUP BY page_path
            ORDER BY views DESC, page_path
            LIMIT ?
            """,
            (*self._window(start, end), limit),
        )

    def visitor_rollups(
        self, start: datetime, end: datetime, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT visitor_id, user_id, device_type, browser, os, country, city,
                   COUNT(*) AS sessions_count,
                   SUM(page_count) AS total_page_views,
                   SUM(total_duration_seconds) AS total_duration,
                   MIN(started_at) AS first_visit,
                   MAX(started_at) AS last_visit
            FROM site_visits
            WHERE started_at >= ? AND started_at <= ?
            GROUP BY visitor_id, user_id, device_type, browser, os, country, city
            ORDER BY last_visit DESC
            LIMIT ? OFFSET ?
            """,
            (*self._window(start, end), limit, offset),
        )

    def list_express_checks(
        self, start: datetime, end: datetime, limit: int, offset: int
    ) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT * FROM express_checks
            WHERE created_at >= ? AND created_at <= ?
            ORDER BY created_at DESC, id DESC
            LIMIT ? OFFSET ?
            """,
            (*self._window(start, end), limit, offset),
        )

    def website_rollups(self, start: datetime, end: datetime, limit: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT website_url_normalized AS website_url,
                   COUNT(*) AS checks_count,
                   AVG(score_percent) AS avg_score
            FROM express_checks
            WHERE created_at >= ? AND created_at <= ?
            GROUP BY website_url_normalized
            ORDER BY checks_count DESC, website_url
            LIMIT ?
            """,
            (*self._window(start, end), limit),
        )

    def express_report_orders_by_status(
        self, start: datetime, end: datetime
    ) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT status, COUNT(*) AS "count", SUM(price) AS revenue
            FROM express_report_orders
            WHERE created_at >= ? AND created_at <= ?
            GROUP BY status
            ORDER BY status
            """,
            self._window(start, end),
        )

    def full_audit_orders_by_status(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT status, COUNT(*) AS "count"
            FROM full_audit_orders
            WHERE created_at >= ? AND created_at <= ?
            GROUP BY status
            ORDER BY status
            """,
            self._window(start, end),
        )

    def succeeded_payments(self, start: datetime, end: datetime) -> dict[str, Any]:
        return self._fetch_one(
            """
            SELECT COUNT(*) AS "count", SUM(amount) AS revenue
            FROM payments
            WHERE status = 'succeeded' AND created_at >= ? AND created_at <= ?
            """,
            self._window(start, end),
        )

    def visits_timeline(
        self, start: datetime, end: datetime, granularity: Granularity
    ) -> list[dict[str, Any]]:
        bucket = bucket_expression(granularity, "started_at")
        return self._fetch_all(
            f"""
            SELECT {bucket} AS period,
                   COUNT(*) AS visits,
                   COUNT(DISTINCT visitor_id) AS unique_visitors
            FROM site_visits
            WHERE started_at >= ? AND started_at <= ?
            GROUP BY period
            ORDER BY period
            """,
            self._window(start, end),
        )

    def express_checks_timeline(
        self, start: datetime, end: datetime, granularity: Granularity
    ) -> list[dict[str, Any]]:
        bucket = bucket_expression(granularity, "created_at")
        return self._fetch_all(
            f"""
            SELECT {bucket} AS period, COUNT(*) AS checks
            FROM express_checks
            WHERE created_at >= ? AND created_at <= ?
            GROUP BY period
            ORDER BY period
            """,
            self._window(start, end),
        )

    def visits_breakdown(
        self,
        start: datetime,
        end: datetime,
        dimension: VisitDimension,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        column = _DIMENSION_SQL[dimension]
        sql = f"""
            SELECT {column} AS value,
                   COUNT(*) AS "count",
                   COUNT(DISTINCT visitor_id) AS unique_visitors
            FROM site_visits
            WHERE started_at >= ? AND started_at <= ?
            GROUP BY {column}
            ORDER BY "count" DESC, value
        """
        params: tuple[Any, ...] = self._window(start, end)
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        return self._fetch_all(sql, params)

    # --- Batch detail ---

    def recent_users(self, limit: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT id, name, email, phone, role, email_verified_at, created_at
            FROM users
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )

    def express_check_counts_by_user(self, user_ids: Sequence[int]) -> list[dict[str, Any]]:
        if not user_ids:
            return []
        return self._fetch_all(
            f"""
            SELECT user_id, COUNT(*) AS "count"
            FROM express_checks
            WHERE user_id IN ({_placeholders(user_ids)})
            GROUP BY user_id
            """,
            user_ids,
        )

    def express_report_order_counts_by_user(
        self, user_ids: Sequence[int]
    ) -> list[dict[str, Any]]:
        if not user_ids:
            return []
        return self._fetch_all(
            f"""
            SELECT user_id, COUNT(*) AS "count"
            FROM express_report_orders
            WHERE user_id IN ({_placeholders(user_ids)})
            GROUP BY user_id
            """,
            user_ids,
        )

    def recent_express_checks(self, limit: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT id, website_url, score_percent, severity, created_at,
                   user_id, conversion_type
            FROM express_checks
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )

    def users_by_ids(self, user_ids: Sequence[int]) -> list[dict[str, Any]]:
        if not user_ids:
            return []
        return self._fetch_all(
            f"SELECT id, name, email FROM users WHERE id IN ({_placeholders(user_ids)})",
            user_ids,
        )
