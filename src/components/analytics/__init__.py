"""
Analytics component - Event ingestion and aggregation.
"""

from ._aggregate import (
    AggregateConfig,
    AggregationService,
    round_half_up,
    to_number,
)
from ._impl import (
    AnalyticsIngestionService,
    DefaultTimePort,
    InMemoryRateLimiter,
    IngestionConfig,
    create_analytics_ingestion_service,
)
from ._range import DateRangeError, resolve_date_range
from ._urls import derive_severity, normalize_website_url
from ._useragent import UAClass, UserAgentInfo, classify_user_agent, parse_user_agent
from .component import (
    run_begin_visit,
    run_close_page_view,
    run_close_visit,
    run_conversions,
    run_devices,
    run_express_checks,
    run_express_detail,
    run_overview,
    run_pages,
    run_record_express_check,
    run_record_page_view,
    run_resolve_range,
    run_timeline,
    run_users_detail,
    run_visitors,
)
from .models import (
    ANONYMOUS,
    AnalyticsValidationError,
    BeginVisitInput,
    ClientInfo,
    CloseOutput,
    ClosePageViewInput,
    CloseVisitInput,
    DateRange,
    ExpressChecksQuery,
    Granularity,
    IngestOutput,
    NotFoundError,
    PagesQuery,
    Period,
    Principal,
    RecordExpressCheckInput,
    RecordPageViewInput,
    StorageError,
    TimelineQuery,
    VisitDimension,
    VisitorsQuery,
)
from .ports import AnalyticsRepoPort, RateLimiterPort, TimePort, TrackingRepoPort

__all__ = [
    # Entry points
    "run_resolve_range",
    "run_begin_visit",
    "run_record_page_view",
    "run_record_express_check",
    "run_close_page_view",
    "run_close_visit",
    "run_overview",
    "run_pages",
    "run_visitors",
    "run_express_checks",
    "run_conversions",
    "run_timeline",
    "run_devices",
    "run_users_detail",
    "run_express_detail",
    # Services
    "AnalyticsIngestionService",
    "AggregationService",
    "IngestionConfig",
    "AggregateConfig",
    "InMemoryRateLimiter",
    "DefaultTimePort",
    "create_analytics_ingestion_service",
    # Helpers
    "resolve_date_range",
    "DateRangeError",
    "normalize_website_url",
    "derive_severity",
    "parse_user_agent",
    "classify_user_agent",
    "UAClass",
    "UserAgentInfo",
    "to_number",
    "round_half_up",
    # Models
    "ANONYMOUS",
    "AnalyticsValidationError",
    "BeginVisitInput",
    "ClientInfo",
    "CloseOutput",
    "ClosePageViewInput",
    "CloseVisitInput",
    "DateRange",
    "ExpressChecksQuery",
    "Granularity",
    "IngestOutput",
    "NotFoundError",
    "PagesQuery",
    "Period",
    "Principal",
    "RecordExpressCheckInput",
    "RecordPageViewInput",
    "StorageError",
    "TimelineQuery",
    "VisitDimension",
    "VisitorsQuery",
    # Ports
    "AnalyticsRepoPort",
    "TrackingRepoPort",
    "RateLimiterPort",
    "TimePort",
]
