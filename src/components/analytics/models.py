"""
Analytics component input/output models.

Records written by ingest, query inputs, report outputs, and the error
taxonomy shared by the component, its adapters and the HTTP layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# --- Errors ---


@dataclass(frozen=True)
class AnalyticsValidationError:
    """Analytics validation error. Reported before any write happens."""

    code: str
    message: str
    field_name: str | None = None


class StorageError(Exception):
    """Underlying persistence failure. Never retried by the component."""


class NotFoundError(Exception):
    """Referenced visit or page view does not exist."""

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


# --- Enums ---


class Period(str, Enum):
    """Named reporting periods, resolved relative to now."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @classmethod
    def parse(cls, value: str | None, default: Period | None = None) -> Period:
        """Unknown or missing values fall back to the default (week)."""
        fallback = default or cls.WEEK
        if not value:
            return fallback
        try:
            return cls(value.lower())
        except ValueError:
            return fallback


class Granularity(str, Enum):
    """Timeline bucket sizes."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @classmethod
    def parse(cls, value: str | None, default: Granularity | None = None) -> Granularity:
        fallback = default or cls.DAY
        if not value:
            return fallback
        try:
            return cls(value.lower())
        except ValueError:
            return fallback


class VisitDimension(str, Enum):
    """Visit columns a breakdown may group by."""

    DEVICE_TYPE = "device_type"
    BROWSER = "browser"
    OS = "os"


# --- Caller context ---


@dataclass(frozen=True)
class Principal:
    """Caller identity supplied by the auth layer. Anonymous when user_id is None."""

    user_id: int | None = None
    role: str | None = None


ANONYMOUS = Principal()


@dataclass(frozen=True)
class ClientInfo:
    """Network metadata derived server-side from the request, never from the body."""

    ip_address: str = ""
    user_agent: str = ""


@dataclass(frozen=True)
class DateRange:
    """Resolved reporting window. Both ends are inclusive and timezone-aware."""

    start: datetime
    end: datetime


# --- Ingest inputs ---


@dataclass(frozen=True)
class BeginVisitInput:
    """Input for starting a visit."""

    visitor_id: str | None = None
    session_id: str | None = None
    referrer: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    country: str | None = None
    city: str | None = None


@dataclass(frozen=True)
class RecordPageViewInput:
    """Input for recording a page render. visit_id may be missing."""

    visitor_id: str | None = None
    session_id: str | None = None
    page_path: str | None = None
    visit_id: int | None = None
    page_title: str | None = None
    referrer_path: str | None = None


@dataclass(frozen=True)
class ClosePageViewInput:
    """Input for closing a page view. Missing metrics default to 0."""

    page_view_id: int
    duration_seconds: int | None = None
    scroll_depth_percent: int | None = None


@dataclass(frozen=True)
class CloseVisitInput:
    """Input for closing a visit. Missing duration defaults to 0."""

    visit_id: int
    total_duration_seconds: int | None = None


@dataclass(frozen=True)
class RecordExpressCheckInput:
    """Input for recording a completed express compliance check."""

    website_url: str | None = None
    visitor_id: str | None = None
    website_url_normalized: str | None = None
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None
    inn: str | None = None
    score_percent: int | None = None
    severity: str | None = None
    result_json: Any = None
    conversion_type: str | None = None


# --- Rows written by ingest ---


@dataclass(frozen=True)
class NewVisit:
    visitor_id: str
    session_id: str
    started_at: datetime
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    referrer: str | None = None
    utm_source: str | None = None
    utm_medium: str | None = None
    utm_campaign: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    country: str | None = None
    city: str | None = None


@dataclass(frozen=True)
class NewPageView:
    visitor_id: str
    session_id: str
    page_path: str
    entered_at: datetime
    visit_id: int | None = None
    user_id: int | None = None
    page_title: str | None = None
    referrer_path: str | None = None


@dataclass(frozen=True)
class NewExpressCheck:
    website_url: str
    created_at: datetime
    visitor_id: str | None = None
    user_id: int | None = None
    website_url_normalized: str | None = None
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None
    inn: str | None = None
    score_percent: int | None = None
    severity: str | None = None
    result_json: Any = None
    ip_address: str | None = None
    user_agent: str | None = None
    conversion_type: str | None = None


# --- Ingest outputs ---


@dataclass(frozen=True)
class IngestOutput:
    """Result of an insert-style ingest call."""

    record_id: int | None
    errors: list[AnalyticsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class CloseOutput:
    """Result of a close (update-by-id) call."""

    errors: list[AnalyticsValidationError] = field(default_factory=list)
    success: bool = True


# --- Query inputs ---


@dataclass(frozen=True)
class PagesQuery:
    date_range: DateRange
    limit: int = 20


@dataclass(frozen=True)
class VisitorsQuery:
    date_range: DateRange
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class ExpressChecksQuery:
    date_range: DateRange
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class TimelineQuery:
    date_range: DateRange
    group_by: Granularity = Granularity.DAY


# --- Report outputs ---


@dataclass(frozen=True)
class OverviewMetrics:
    total_visits: int
    unique_visitors: int
    total_page_views: int
    avg_session_duration_seconds: int
    new_users: int
    express_checks: int
    express_report_orders: int
    full_audit_orders: int


@dataclass(frozen=True)
class PageStat:
    page_path: str
    views: int
    unique_visitors: int
    avg_duration: int
    avg_scroll_depth: int


@dataclass(frozen=True)
class VisitorRollup:
    visitor_id: str
    user_id: int | None
    device_type: str | None
    browser: str | None
    os: str | None
    country: str | None
    city: str | None
    sessions_count: int
    total_page_views: int
    total_duration: int
    first_visit: datetime | None
    last_visit: datetime | None


@dataclass(frozen=True)
class ExpressCheckRecord:
    id: int
    website_url: str
    created_at: datetime
    visitor_id: str | None = None
    user_id: int | None = None
    website_url_normalized: str | None = None
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None
    inn: str | None = None
    score_percent: int | None = None
    severity: str | None = None
    result: Any = None
    ip_address: str | None = None
    user_agent: str | None = None
    conversion_type: str | None = None


@dataclass(frozen=True)
class WebsiteRollup:
    website_url: str | None
    checks_count: int
    avg_score: int


@dataclass(frozen=True)
class ExpressChecksReport:
    total: int
    checks: tuple[ExpressCheckRecord, ...]
    by_website: tuple[WebsiteRollup, ...]


@dataclass(frozen=True)
class StatusRollup:
    status: str
    count: int
    revenue: int | None = None


@dataclass(frozen=True)
class PaymentsTotal:
    count: int
    revenue: int


@dataclass(frozen=True)
class ConversionsReport:
    express_reports: tuple[StatusRollup, ...]
    full_audits: tuple[StatusRollup, ...]
    total_paid_payments: PaymentsTotal


@dataclass(frozen=True)
class TimelineVisitPoint:
    period: str
    visits: int
    unique_visitors: int


@dataclass(frozen=True)
class TimelineCheckPoint:
    period: str
    checks: int


@dataclass(frozen=True)
class TimelineReport:
    group_by: Granularity
    visits: tuple[TimelineVisitPoint, ...]
    express_checks: tuple[TimelineCheckPoint, ...]


@dataclass(frozen=True)
class BreakdownItem:
    value: str | None
    count: int
    unique_visitors: int


@dataclass(frozen=True)
class DevicesReport:
    by_device: tuple[BreakdownItem, ...]
    by_browser: tuple[BreakdownItem, ...]
    by_os: tuple[BreakdownItem, ...]


@dataclass(frozen=True)
class UserDetail:
    id: int
    email: str
    name: str | None
    phone: str | None
    role: str
    email_verified: bool
    created_at: datetime | None
    express_checks_count: int
    orders_count: int
    last_active_at: datetime | None = None


@dataclass(frozen=True)
class ExpressDetail:
    id: int
    website_url: str
    score_percent: int | None
    severity: str | None
    created_at: datetime | None
    user_id: int | None
    user_name: str | None
    user_email: str | None
    full_report_purchased: bool
    token: str = ""
    status: str = "completed"
    passed_count: int | None = None
    warning_count: int | None = None
    failed_count: int | None = None
