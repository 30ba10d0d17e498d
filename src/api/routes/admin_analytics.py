"""
Admin Analytics API.

Read-only endpoints over tracked analytics. Every endpoint resolves the
reporting window from startDate/endDate/period, runs one aggregation (or the
fixed overview fan-out) and echoes the resolved window as `period`.

Requires an admin principal.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.adapters.clock import SystemClock
from src.adapters.sqlite_db import SQLiteAnalyticsRepo
from src.api.deps import get_analytics_repo, get_clock, get_rules, require_admin
from src.api.schemas import (
    BrowserModel,
    ConversionsResponse,
    DeviceModel,
    DevicesResponse,
    ExpressCheckModel,
    ExpressChecksResponse,
    ExpressDetailModel,
    ExpressDetailResponse,
    ExpressReportStatusModel,
    FullAuditStatusModel,
    OSModel,
    OverviewMetricsModel,
    OverviewResponse,
    PageStatModel,
    PagesResponse,
    PaymentsTotalModel,
    PeriodModel,
    TimelineCheckModel,
    TimelineResponse,
    TimelineVisitModel,
    UserDetailModel,
    UsersDetailResponse,
    VisitorModel,
    VisitorsResponse,
    WebsiteModel,
)
from src.components.analytics import (
    DateRangeError,
    DateRange,
    ExpressChecksQuery,
    Granularity,
    PagesQuery,
    Principal,
    TimelineQuery,
    VisitorsQuery,
    run_conversions,
    run_devices,
    run_express_checks,
    run_express_detail,
    run_overview,
    run_pages,
    run_resolve_range,
    run_timeline,
    run_users_detail,
    run_visitors,
)
from src.rules.models import Rules

router = APIRouter()


# --- Helper Functions ---


def get_date_range(
    start_date: str | None = Query(None, alias="startDate", description="YYYY-MM-DD"),
    end_date: str | None = Query(None, alias="endDate", description="YYYY-MM-DD"),
    period: str | None = Query(None, description="day, week, month or year"),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> DateRange:
    """Resolve the reporting window. Explicit dates win when both are present."""
    try:
        return run_resolve_range(
            start_date,
            end_date,
            period,
            now=clock.now_utc(),
            rules=rules,
        )
    except DateRangeError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "ok": False,
                "errors": [{"code": "invalid_date", "message": str(e), "field": e.field_name}],
            },
        ) from e


def period_of(date_range: DateRange) -> PeriodModel:
    return PeriodModel(start=date_range.start, end=date_range.end)


def limit_or_default(limit: int | None, default: int) -> int:
    """Missing or non-positive limits use the configured default."""
    return limit if limit and limit > 0 else default


# --- Routes ---


@router.get("/overview", response_model=OverviewResponse)
def get_overview(
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> OverviewResponse:
    """Headline metrics for the window."""
    metrics = run_overview(date_range, repo=repo, rules=rules)
    return OverviewResponse(
        period=period_of(date_range),
        metrics=OverviewMetricsModel(
            total_visits=metrics.total_visits,
            unique_visitors=metrics.unique_visitors,
            total_page_views=metrics.total_page_views,
            avg_session_duration_seconds=metrics.avg_session_duration_seconds,
            new_users=metrics.new_users,
            express_checks=metrics.express_checks,
            express_report_orders=metrics.express_report_orders,
            full_audit_orders=metrics.full_audit_orders,
        ),
    )


@router.get("/pages", response_model=PagesResponse)
def get_pages(
    limit: int | None = Query(None, description="Max pages"),
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> PagesResponse:
    """Most viewed pages."""
    pages = run_pages(
        PagesQuery(
            date_range=date_range,
            limit=limit_or_default(limit, rules.analytics.limits.pages_limit),
        ),
        repo=repo,
        rules=rules,
    )
    return PagesResponse(
        period=period_of(date_range),
        pages=[
            PageStatModel(
                page_path=p.page_path,
                views=p.views,
                unique_visitors=p.unique_visitors,
                avg_duration=p.avg_duration,
                avg_scroll_depth=p.avg_scroll_depth,
            )
            for p in pages
        ],
    )


@router.get("/visitors", response_model=VisitorsResponse)
def get_visitors(
    limit: int | None = Query(None, description="Page size"),
    offset: int | None = Query(None, description="Rows to skip"),
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> VisitorsResponse:
    """Per-visitor rollups, most recently active first."""
    visitors = run_visitors(
        VisitorsQuery(
            date_range=date_range,
            limit=limit_or_default(limit, rules.analytics.limits.visitors_limit),
            offset=max(offset or 0, 0),
        ),
        repo=repo,
        rules=rules,
    )
    return VisitorsResponse(
        period=period_of(date_range),
        visitors=[
            VisitorModel(
                visitor_id=v.visitor_id,
                user_id=v.user_id,
                sessions_count=v.sessions_count,
                total_page_views=v.total_page_views,
                total_duration=v.total_duration,
                device_type=v.device_type,
                browser=v.browser,
                os=v.os,
                country=v.country,
                city=v.city,
                first_visit=v.first_visit,
                last_visit=v.last_visit,
            )
            for v in visitors
        ],
    )


@router.get("/express-checks", response_model=ExpressChecksResponse)
def get_express_checks(
    limit: int | None = Query(None, description="Page size"),
    offset: int | None = Query(None, description="Rows to skip"),
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> ExpressChecksResponse:
    """Recent express checks plus the per-website rollup."""
    report = run_express_checks(
        ExpressChecksQuery(
            date_range=date_range,
            limit=limit_or_default(limit, rules.analytics.limits.express_checks_limit),
            offset=max(offset or 0, 0),
        ),
        repo=repo,
        rules=rules,
    )
    return ExpressChecksResponse(
        period=period_of(date_range),
        total=report.total,
        checks=[
            ExpressCheckModel(
                id=c.id,
                visitor_id=c.visitor_id,
                user_id=c.user_id,
                website_url=c.website_url,
                website_url_normalized=c.website_url_normalized,
                company_name=c.company_name,
                email=c.email,
                phone=c.phone,
                inn=c.inn,
                score_percent=c.score_percent,
                severity=c.severity,
                result_json=c.result,
                ip_address=c.ip_address,
                user_agent=c.user_agent,
                conversion_type=c.conversion_type,
                created_at=c.created_at,
            )
            for c in report.checks
        ],
        by_website=[
            WebsiteModel(
                website_url=w.website_url,
                checks_count=w.checks_count,
                avg_score=w.avg_score,
            )
            for w in report.by_website
        ],
    )


@router.get("/conversions", response_model=ConversionsResponse)
def get_conversions(
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> ConversionsResponse:
    """Order status rollups and succeeded payments."""
    report = run_conversions(date_range, repo=repo, rules=rules)
    return ConversionsResponse(
        period=period_of(date_range),
        express_reports=[
            ExpressReportStatusModel(status=r.status, count=r.count, revenue=r.revenue or 0)
            for r in report.express_reports
        ],
        full_audits=[
            FullAuditStatusModel(status=r.status, count=r.count) for r in report.full_audits
        ],
        total_paid_payments=PaymentsTotalModel(
            count=report.total_paid_payments.count,
            revenue=report.total_paid_payments.revenue,
        ),
    )


@router.get("/timeline", response_model=TimelineResponse)
def get_timeline(
    group_by: str | None = Query(None, alias="groupBy", description="hour, day, week or month"),
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> TimelineResponse:
    """Sparse time series; buckets without activity are omitted."""
    granularity = Granularity.parse(group_by, Granularity.parse(rules.analytics.default_group_by))
    report = run_timeline(
        TimelineQuery(date_range=date_range, group_by=granularity),
        repo=repo,
        rules=rules,
    )
    return TimelineResponse(
        period=period_of(date_range),
        group_by=report.group_by.value,
        visits=[
            TimelineVisitModel(
                period=p.period,
                visits=p.visits,
                unique_visitors=p.unique_visitors,
            )
            for p in report.visits
        ],
        express_checks=[
            TimelineCheckModel(period=p.period, checks=p.checks) for p in report.express_checks
        ],
    )


@router.get("/devices", response_model=DevicesResponse)
def get_devices(
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> DevicesResponse:
    """Visits by device type, browser and OS."""
    report = run_devices(date_range, repo=repo, rules=rules)
    return DevicesResponse(
        period=period_of(date_range),
        by_device=[
            DeviceModel(device_type=b.value, count=b.count, unique_visitors=b.unique_visitors)
            for b in report.by_device
        ],
        by_browser=[
            BrowserModel(browser=b.value, count=b.count, unique_visitors=b.unique_visitors)
            for b in report.by_browser
        ],
        by_os=[
            OSModel(os=b.value, count=b.count, unique_visitors=b.unique_visitors)
            for b in report.by_os
        ],
    )


@router.get("/users-detail", response_model=UsersDetailResponse)
def get_users_detail(
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> UsersDetailResponse:
    """Most recent users with express check and order counts."""
    users = run_users_detail(repo=repo, rules=rules)
    return UsersDetailResponse(
        period=period_of(date_range),
        users=[
            UserDetailModel(
                id=u.id,
                email=u.email,
                name=u.name,
                phone=u.phone,
                role=u.role,
                email_verified=u.email_verified,
                created_at=u.created_at,
                express_checks_count=u.express_checks_count,
                orders_count=u.orders_count,
                last_active_at=u.last_active_at,
            )
            for u in users
        ],
    )


@router.get("/express-detail", response_model=ExpressDetailResponse)
def get_express_detail(
    _admin: Principal = Depends(require_admin),
    date_range: DateRange = Depends(get_date_range),
    repo: SQLiteAnalyticsRepo = Depends(get_analytics_repo),
    rules: Rules = Depends(get_rules),
) -> ExpressDetailResponse:
    """Most recent express checks with their owners' name and email."""
    checks = run_express_detail(repo=repo, rules=rules)
    return ExpressDetailResponse(
        period=period_of(date_range),
        checks=[
            ExpressDetailModel(
                id=c.id,
                token=c.token,
                website_url=c.website_url,
                status=c.status,
                score_percent=c.score_percent,
                severity=c.severity,
                passed_count=c.passed_count,
                warning_count=c.warning_count,
                failed_count=c.failed_count,
                created_at=c.created_at,
                user_id=c.user_id,
                user_name=c.user_name,
                user_email=c.user_email,
                full_report_purchased=c.full_report_purchased,
            )
            for c in checks
        ],
    )
