"""
Analytics component - Event ingestion and aggregation.

Ingests visit, page view and express check events from anonymous and
authenticated visitors, correlates page views into visits, and serves
windowed aggregate reports.

Invariants:
- I1: A rejected ingest call writes nothing
- I2: Network metadata comes from the request, never the payload
- I3: page_count grows by exactly one per attributed page view
- I4: Close operations overwrite; they never create rows
- I5: Overview fails as a whole when any of its reads fails
- I6: Batch detail reads issue one query per related dimension
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from src.rules.models import Rules

from ._aggregate import AggregateConfig, AggregationService
from ._impl import AnalyticsIngestionService, IngestionConfig
from ._range import resolve_date_range
from .models import (
    ANONYMOUS,
    AnalyticsValidationError,
    BeginVisitInput,
    ClientInfo,
    CloseOutput,
    ClosePageViewInput,
    CloseVisitInput,
    ConversionsReport,
    DateRange,
    DevicesReport,
    ExpressChecksQuery,
    ExpressChecksReport,
    ExpressDetail,
    IngestOutput,
    OverviewMetrics,
    PagesQuery,
    PageStat,
    Period,
    Principal,
    RecordExpressCheckInput,
    RecordPageViewInput,
    TimelineQuery,
    TimelineReport,
    UserDetail,
    VisitorRollup,
    VisitorsQuery,
)
from .ports import AnalyticsRepoPort, RateLimiterPort, TimePort, TrackingRepoPort


def _build_config(rules: Rules | None) -> IngestionConfig:
    """Build ingestion config from rules."""
    if rules is None:
        return IngestionConfig()

    ingest = rules.analytics.ingest
    rate_limit = ingest.rate_limit
    return IngestionConfig(
        enabled=ingest.enabled,
        parse_user_agent=ingest.parse_user_agent,
        rate_limit_window_seconds=rate_limit.window_seconds,
        rate_limit_max_requests=rate_limit.max_requests,
    )


def _build_aggregate_config(rules: Rules | None) -> AggregateConfig:
    """Build aggregation config from rules."""
    if rules is None:
        return AggregateConfig()

    limits = rules.analytics.limits
    return AggregateConfig(
        top_websites=limits.top_websites,
        top_browsers=limits.top_browsers,
        top_os=limits.top_os,
        detail_limit=limits.detail_limit,
        max_limit=limits.max_limit,
    )


def _ingestion_service(
    repo: TrackingRepoPort,
    rate_limiter: RateLimiterPort | None,
    time_port: TimePort | None,
    rules: Rules | None,
) -> AnalyticsIngestionService:
    return AnalyticsIngestionService(
        repo=repo,
        rate_limiter=rate_limiter,
        time_port=time_port,
        config=_build_config(rules),
    )


def _ingest_output(
    record_id: int | None, errors: list[AnalyticsValidationError]
) -> IngestOutput:
    return IngestOutput(record_id=record_id, errors=errors, success=len(errors) == 0)


# --- Date range ---


def run_resolve_range(
    start_date: str | None,
    end_date: str | None,
    period: str | None,
    *,
    now: datetime,
    rules: Rules | None = None,
) -> DateRange:
    """
    Resolve the reporting window using the configured timezone.

    Raises ValueError for invalid explicit dates.
    """
    analytics = (rules or Rules()).analytics
    return resolve_date_range(
        start_date,
        end_date,
        period,
        now=now,
        tz=ZoneInfo(analytics.timezone),
        default_period=Period.parse(analytics.default_period),
    )


# --- Ingest Entry Points ---


def run_begin_visit(
    inp: BeginVisitInput,
    *,
    repo: TrackingRepoPort,
    client: ClientInfo,
    principal: Principal = ANONYMOUS,
    rate_limiter: RateLimiterPort | None = None,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> IngestOutput:
    """
    Start a visit.

    Args:
        inp: Visit fields reported by the client.
        repo: Tracking repository port.
        client: Server-derived IP and user agent.
        principal: Caller identity; anonymous by default.
        rate_limiter: Optional rate limiter port.
        time_port: Optional time port.
        rules: Optional rules for configuration.

    Returns:
        IngestOutput with the new visit id or rejection errors.
    """
    service = _ingestion_service(repo, rate_limiter, time_port, rules)
    visit_id, errors = service.begin_visit(inp, client, principal)
    return _ingest_output(visit_id, errors)


def run_record_page_view(
    inp: RecordPageViewInput,
    *,
    repo: TrackingRepoPort,
    client: ClientInfo,
    principal: Principal = ANONYMOUS,
    rate_limiter: RateLimiterPort | None = None,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> IngestOutput:
    """Record a page view, attributing it to a visit when visit_id is given."""
    service = _ingestion_service(repo, rate_limiter, time_port, rules)
    page_view_id, errors = service.record_page_view(inp, client, principal)
    return _ingest_output(page_view_id, errors)


def run_record_express_check(
    inp: RecordExpressCheckInput,
    *,
    repo: TrackingRepoPort,
    client: ClientInfo,
    principal: Principal = ANONYMOUS,
    rate_limiter: RateLimiterPort | None = None,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> IngestOutput:
    """Record a completed express check."""
    service = _ingestion_service(repo, rate_limiter, time_port, rules)
    check_id, errors = service.record_express_check(inp, client, principal)
    return _ingest_output(check_id, errors)


def run_close_page_view(
    inp: ClosePageViewInput,
    *,
    repo: TrackingRepoPort,
    client: ClientInfo,
    rate_limiter: RateLimiterPort | None = None,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> CloseOutput:
    """
    Close a page view.

    Raises:
        NotFoundError: The page view does not exist. Nothing is written.
    """
    service = _ingestion_service(repo, rate_limiter, time_port, rules)
    errors = service.close_page_view(inp, client)
    return CloseOutput(errors=errors, success=len(errors) == 0)


def run_close_visit(
    inp: CloseVisitInput,
    *,
    repo: TrackingRepoPort,
    client: ClientInfo,
    rate_limiter: RateLimiterPort | None = None,
    time_port: TimePort | None = None,
    rules: Rules | None = None,
) -> CloseOutput:
    """
    Close a visit. Re-closing overwrites the previous values.

    Raises:
        NotFoundError: The visit does not exist. Nothing is written.
    """
    service = _ingestion_service(repo, rate_limiter, time_port, rules)
    errors = service.close_visit(inp, client)
    return CloseOutput(errors=errors, success=len(errors) == 0)


# --- Query Entry Points ---


def _aggregation(repo: AnalyticsRepoPort, rules: Rules | None) -> AggregationService:
    return AggregationService(repo=repo, config=_build_aggregate_config(rules))


def run_overview(
    date_range: DateRange,
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> OverviewMetrics:
    """Headline metrics. Any failing sub-read fails the call."""
    return _aggregation(repo, rules).overview(date_range)


def run_pages(
    inp: PagesQuery,
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> tuple[PageStat, ...]:
    """Per-page stats ordered by views descending."""
    return _aggregation(repo, rules).pages(inp)


def run_visitors(
    inp: VisitorsQuery,
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> tuple[VisitorRollup, ...]:
    """Per-visitor rollups, most recently active first."""
    return _aggregation(repo, rules).visitors(inp)


def run_express_checks(
    inp: ExpressChecksQuery,
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> ExpressChecksReport:
    """Paginated express checks plus the per-website rollup."""
    return _aggregation(repo, rules).express_checks(inp)


def run_conversions(
    date_range: DateRange,
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> ConversionsReport:
    return _aggregation(repo, rules).conversions(date_range)


def run_timeline(
    inp: TimelineQuery,
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> TimelineReport:
    """Sparse time series of visits and express checks."""
    return _aggregation(repo, rules).timeline(inp)


def run_devices(
    date_range: DateRange,
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> DevicesReport:
    return _aggregation(repo, rules).devices(date_range)


def run_users_detail(
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> tuple[UserDetail, ...]:
    """Most recent users with activity counts, joined in memory."""
    return _aggregation(repo, rules).users_detail()


def run_express_detail(
    *,
    repo: AnalyticsRepoPort,
    rules: Rules | None = None,
) -> tuple[ExpressDetail, ...]:
    """Most recent express checks with owner identity, joined in memory."""
    return _aggregation(repo, rules).express_detail()
