from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """JSON uses camelCase keys; Python code uses snake_case names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Errors ---
class ErrorItem(BaseModel):
    code: str
    message: str
    field: str | None = None


class ErrorResponse(BaseModel):
    ok: bool = False
    errors: list[ErrorItem]


# --- Ingest Requests ---
# Required identifiers are optional here so that missing ones surface as
# component validation errors (400) instead of schema errors.
class VisitRequest(CamelModel):
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


class PageViewRequest(CamelModel):
    visitor_id: str | None = None
    session_id: str | None = None
    visit_id: int | None = None
    page_path: str | None = None
    page_title: str | None = None
    referrer_path: str | None = None


class PageViewUpdateRequest(CamelModel):
    duration_seconds: int | None = None
    scroll_depth_percent: int | None = None


class VisitEndRequest(CamelModel):
    total_duration_seconds: int | None = None


class ExpressCheckRequest(CamelModel):
    visitor_id: str | None = None
    website_url: str | None = None
    website_url_normalized: str | None = None
    company_name: str | None = None
    email: str | None = None
    phone: str | None = None
    inn: str | None = None
    score_percent: int | None = None
    severity: str | None = None
    result_json: Any = None
    conversion_type: str | None = None


# --- Ingest Responses ---
class VisitResponse(CamelModel):
    visit_id: int


class PageViewResponse(CamelModel):
    page_view_id: int


class ExpressCheckResponse(CamelModel):
    check_id: int


class SuccessResponse(CamelModel):
    success: bool = True


# --- Read Responses ---
class PeriodModel(CamelModel):
    start: datetime
    end: datetime


class OverviewMetricsModel(CamelModel):
    total_visits: int
    unique_visitors: int
    total_page_views: int
    avg_session_duration_seconds: int
    new_users: int
    express_checks: int
    express_report_orders: int
    full_audit_orders: int


class OverviewResponse(CamelModel):
    period: PeriodModel
    metrics: OverviewMetricsModel


class PageStatModel(CamelModel):
    page_path: str
    views: int
    unique_visitors: int
    avg_duration: int
    avg_scroll_depth: int


class PagesResponse(CamelModel):
    period: PeriodModel
    pages: list[PageStatModel]


class VisitorModel(CamelModel):
    visitor_id: str
    user_id: int | None = None
    sessions_count: int
    total_page_views: int
    total_duration: int
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    country: str | None = None
    city: str | None = None
    first_visit: datetime | None = None
    last_visit: datetime | None = None


class VisitorsResponse(CamelModel):
    period: PeriodModel
    visitors: list[VisitorModel]


class ExpressCheckModel(CamelModel):
    id: int
    visitor_id: str | None = None
    user_id: int | None = None
    website_url: str
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
    created_at: datetime


class WebsiteModel(CamelModel):
    website_url: str | None = None
    checks_count: int
    avg_score: int


class ExpressChecksResponse(CamelModel):
    period: PeriodModel
    total: int
    checks: list[ExpressCheckModel]
    by_website: list[WebsiteModel]


class ExpressReportStatusModel(CamelModel):
    status: str
    count: int
    revenue: int


class FullAuditStatusModel(CamelModel):
    status: str
    count: int


class PaymentsTotalModel(CamelModel):
    count: int
    revenue: int


class ConversionsResponse(CamelModel):
    period: PeriodModel
    express_reports: list[ExpressReportStatusModel]
    full_audits: list[FullAuditStatusModel]
    total_paid_payments: PaymentsTotalModel


class TimelineVisitModel(CamelModel):
    period: str
    visits: int
    unique_visitors: int


class TimelineCheckModel(CamelModel):
    period: str
    checks: int


class TimelineResponse(CamelModel):
    period: PeriodModel
    group_by: str
    visits: list[TimelineVisitModel]
    express_checks: list[TimelineCheckModel]


class DeviceModel(CamelModel):
    device_type: str | None = None
    count: int
    unique_visitors: int


class BrowserModel(CamelModel):
    browser: str | None = None
    count: int
    unique_visitors: int


class OSModel(CamelModel):
    os: str | None = None
    count: int
    unique_visitors: int


class DevicesResponse(CamelModel):
    period: PeriodModel
    by_device: list[DeviceModel]
    by_browser: list[BrowserModel]
    by_os: list[OSModel] = Field(alias="byOS")


class UserDetailModel(CamelModel):
    id: int
    email: str
    name: str | None = None
    phone: str | None = None
    role: str
    email_verified: bool
    created_at: datetime | None = None
    express_checks_count: int
    orders_count: int
    last_active_at: datetime | None = None


class UsersDetailResponse(CamelModel):
    period: PeriodModel
    users: list[UserDetailModel]


class ExpressDetailModel(CamelModel):
    id: int
    token: str
    website_url: str
    status: str
    score_percent: int | None = None
    severity: str | None = None
    passed_count: int | None = None
    warning_count: int | None = None
    failed_count: int | None = None
    created_at: datetime | None = None
    user_id: int | None = None
    user_name: str | None = None
    user_email: str | None = None
    full_report_purchased: bool


class ExpressDetailResponse(CamelModel):
    period: PeriodModel
    checks: list[ExpressDetailModel]
