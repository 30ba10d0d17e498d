"""
AnalyticsIngestionService - Event ingest and visit correlation.

Key behaviors:
- Required identifiers checked before any write; a rejected call writes nothing
- IP and user agent come from ClientInfo, never from the payload
- The authenticated principal, if any, is attached to every row
- Page views with a visit_id bump that visit's page_count atomically
- Close operations overwrite exit metrics; missing metrics default to 0
- Per-client sliding-window rate limiting on every ingest call
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Any

from ._urls import derive_severity, normalize_website_url
from ._useragent import parse_user_agent
from .models import (
    ANONYMOUS,
    AnalyticsValidationError,
    BeginVisitInput,
    ClientInfo,
    ClosePageViewInput,
    CloseVisitInput,
    NewExpressCheck,
    NewPageView,
    NewVisit,
    NotFoundError,
    Principal,
    RecordExpressCheckInput,
    RecordPageViewInput,
)
from .ports import RateLimiterPort, TimePort, TrackingRepoPort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class IngestionConfig:
    """Analytics ingestion configuration."""

    enabled: bool = True

    # Rate limiting
    rate_limit_window_seconds: int = 60
    rate_limit_max_requests: int = 600

    # Fill device/browser/os from the User-Agent header when the client omits them
    parse_user_agent: bool = True


DEFAULT_CONFIG = IngestionConfig()


# --- Default Implementations ---


class InMemoryRateLimiter:
    """In-memory sliding-window rate limiter."""

    def __init__(self, time_port: TimePort | None = None) -> None:
        self._requests: dict[str, list[datetime]] = {}
        self._time = time_port or DefaultTimePort()
        self._lock = Lock()

    def try_acquire(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """
        Admit and record one request for key if the window has room.

        Pruning, counting and recording happen under one lock so concurrent
        callers for the same key cannot overshoot max_requests.
        """
        now = self._time.now_utc()
        cutoff = now - timedelta(seconds=window_seconds)

        with self._lock:
            recent = [t for t in self._requests.get(key, []) if t > cutoff]
            if len(recent) >= max_requests:
                self._requests[key] = recent
                return False
            recent.append(now)
            self._requests[key] = recent
            return True


class DefaultTimePort:
    """Default time provider."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        return datetime.now(UTC)


# --- Validation Functions ---


def validate_required(data: dict[str, Any]) -> list[AnalyticsValidationError]:
    """Every key in data must hold a non-blank value."""
    errors: list[AnalyticsValidationError] = []

    for field_name, value in data.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            errors.append(
                AnalyticsValidationError(
                    code="required",
                    message=f"Field '{field_name}' is required",
                    field_name=field_name,
                )
            )

    return errors


def validate_non_negative(data: dict[str, int | None]) -> list[AnalyticsValidationError]:
    """Numeric metrics may be missing but never negative."""
    errors: list[AnalyticsValidationError] = []

    for field_name, value in data.items():
        if value is not None and value < 0:
            errors.append(
                AnalyticsValidationError(
                    code="negative_value",
                    message=f"Field '{field_name}' must not be negative",
                    field_name=field_name,
                )
            )

    return errors


def validate_score(score_percent: int | None) -> list[AnalyticsValidationError]:
    if score_percent is None or 0 <= score_percent <= 100:
        return []
    return [
        AnalyticsValidationError(
            code="out_of_range",
            message="Field 'score_percent' must be between 0 and 100",
            field_name="score_percent",
        )
    ]


def clamp_percent(value: int) -> int:
    return max(0, min(100, value))


# --- Analytics Ingestion Service ---


class AnalyticsIngestionService:
    """
    Analytics ingestion service.

    Each public method is one independent unit of work. Validation errors are
    returned, storage failures propagate as StorageError.
    """

    def __init__(
        self,
        repo: TrackingRepoPort,
        rate_limiter: RateLimiterPort | None = None,
        time_port: TimePort | None = None,
        config: IngestionConfig | None = None,
    ) -> None:
        """Initialize service."""
        self._repo = repo
        self._time = time_port or DefaultTimePort()
        self._rate_limiter = rate_limiter or InMemoryRateLimiter(self._time)
        self._config = config or DEFAULT_CONFIG

    def _admit(self, client: ClientInfo) -> list[AnalyticsValidationError]:
        """Apply the per-client rate limit. Records the request when allowed."""
        if not self._config.enabled:
            return [
                AnalyticsValidationError(
                    code="ingest_disabled",
                    message="Analytics ingestion is disabled",
                )
            ]

        key = client.ip_address
        if not key:
            return []

        allowed = self._rate_limiter.try_acquire(
            key=key,
            max_requests=self._config.rate_limit_max_requests,
            window_seconds=self._config.rate_limit_window_seconds,
        )
        if not allowed:
            return [
                AnalyticsValidationError(
                    code="rate_limit_exceeded",
                    message="Too many requests",
                )
            ]
        return []

    def begin_visit(
        self,
        inp: BeginVisitInput,
        client: ClientInfo,
        principal: Principal = ANONYMOUS,
    ) -> tuple[int | None, list[AnalyticsValidationError]]:
        """Start a visit. Returns (visit_id, errors)."""
        errors = self._admit(client)
        if errors:
            return None, errors

        errors = validate_required({"visitor_id": inp.visitor_id, "session_id": inp.session_id})
        if errors:
            logger.info("Rejected visit: %s", ", ".join(e.code for e in errors))
            return None, errors

        device_type, browser, os_name = inp.device_type, inp.browser, inp.os
        if self._config.parse_user_agent and not (device_type and browser and os_name):
            ua = parse_user_agent(client.user_agent)
            device_type = device_type or ua.device_type
            browser = browser or ua.browser
            os_name = os_name or ua.os

        visit = NewVisit(
            visitor_id=inp.visitor_id,  # type: ignore[arg-type]
            session_id=inp.session_id,  # type: ignore[arg-type]
            started_at=self._time.now_utc(),
            user_id=principal.user_id,
            ip_address=client.ip_address or None,
            user_agent=client.user_agent or None,
            referrer=inp.referrer,
            utm_source=inp.utm_source,
            utm_medium=inp.utm_medium,
            utm_campaign=inp.utm_campaign,
            device_type=device_type,
            browser=browser,
            os=os_name,
            country=inp.country,
            city=inp.city,
        )
        visit_id = self._repo.insert_visit(visit)
        logger.debug("Visit %s started for visitor %s", visit_id, visit.visitor_id)
        return visit_id, []

    def record_page_view(
        self,
        inp: RecordPageViewInput,
        client: ClientInfo,
        principal: Principal = ANONYMOUS,
    ) -> tuple[int | None, list[AnalyticsValidationError]]:
        """Record a page render. Returns (page_view_id, errors)."""
        errors = self._admit(client)
        if errors:
            return None, errors

        errors = validate_required(
            {
                "visitor_id": inp.visitor_id,
                "session_id": inp.session_id,
                "page_path": inp.page_path,
            }
        )
        if errors:
            logger.info("Rejected page view: %s", ", ".join(e.code for e in errors))
            return None, errors

        page_view = NewPageView(
            visitor_id=inp.visitor_id,  # type: ignore[arg-type]
            session_id=inp.session_id,  # type: ignore[arg-type]
            page_path=inp.page_path,  # type: ignore[arg-type]
            entered_at=self._time.now_utc(),
            visit_id=inp.visit_id or None,
            user_id=principal.user_id,
            page_title=inp.page_title,
            referrer_path=inp.referrer_path,
        )
        page_view_id = self._repo.insert_page_view(page_view)
        logger.debug("Page view %s recorded (visit %s)", page_view_id, page_view.visit_id)
        return page_view_id, []

    def close_page_view(
        self,
        inp: ClosePageViewInput,
        client: ClientInfo,
    ) -> list[AnalyticsValidationError]:
        """
        Close a page view with the reported metrics.

        Raises NotFoundError when the page view does not exist.
        """
        errors = self._admit(client)
        if errors:
            return errors

        errors = validate_non_negative(
            {
                "duration_seconds": inp.duration_seconds,
                "scroll_depth_percent": inp.scroll_depth_percent,
            }
        )
        if errors:
            return errors

        found = self._repo.close_page_view(
            inp.page_view_id,
            exited_at=self._time.now_utc(),
            duration_seconds=inp.duration_seconds or 0,
            scroll_depth_percent=clamp_percent(inp.scroll_depth_percent or 0),
        )
        if not found:
            raise NotFoundError("page_view", inp.page_view_id)
        return []

    def close_visit(
        self,
        inp: CloseVisitInput,
        client: ClientInfo,
    ) -> list[AnalyticsValidationError]:
        """
        Close a visit. A second close overwrites the first.

        Raises NotFoundError when the visit does not exist.
        """
        errors = self._admit(client)
        if errors:
            return errors

        errors = validate_non_negative({"total_duration_seconds": inp.total_duration_seconds})
        if errors:
            return errors

        found = self._repo.close_visit(
            inp.visit_id,
            ended_at=self._time.now_utc(),
            total_duration_seconds=inp.total_duration_seconds or 0,
        )
        if not found:
            raise NotFoundError("visit", inp.visit_id)
        return []

    def record_express_check(
        self,
        inp: RecordExpressCheckInput,
        client: ClientInfo,
        principal: Principal = ANONYMOUS,
    ) -> tuple[int | None, list[AnalyticsValidationError]]:
        """Record a completed express check. Returns (check_id, errors)."""
        errors = self._admit(client)
        if errors:
            return None, errors

        errors = validate_required({"website_url": inp.website_url})
        errors.extend(validate_score(inp.score_percent))
        if errors:
            logger.info("Rejected express check: %s", ", ".join(e.code for e in errors))
            return None, errors

        website_url: str = inp.website_url  # type: ignore[assignment]
        check = NewExpressCheck(
            website_url=website_url,
            created_at=self._time.now_utc(),
            visitor_id=inp.visitor_id,
            user_id=principal.user_id,
            website_url_normalized=(
                inp.website_url_normalized or normalize_website_url(website_url)
            ),
            company_name=inp.company_name,
            email=inp.email,
            phone=inp.phone,
            inn=inp.inn,
            score_percent=inp.score_percent,
            severity=inp.severity or derive_severity(inp.score_percent),
            result_json=inp.result_json,
            ip_address=client.ip_address or None,
            user_agent=client.user_agent or None,
            conversion_type=inp.conversion_type,
        )
        check_id = self._repo.insert_express_check(check)
        logger.debug("Express check %s recorded for %s", check_id, check.website_url_normalized)
        return check_id, []


# --- Factory ---


def create_analytics_ingestion_service(
    repo: TrackingRepoPort,
    rate_limiter: RateLimiterPort | None = None,
    time_port: TimePort | None = None,
    config: IngestionConfig | None = None,
) -> AnalyticsIngestionService:
    """Create an AnalyticsIngestionService."""
    return AnalyticsIngestionService(
        repo=repo,
        rate_limiter=rate_limiter,
        time_port=time_port,
        config=config,
    )
