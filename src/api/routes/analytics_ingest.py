"""
Analytics Ingestion API Routes.

Public endpoints for visit, page view and express check tracking. Open to
anonymous traffic; an authenticated caller's user id is attached to rows.

Rate limited per client (first X-Forwarded-For entry or socket address).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.adapters.clock import SystemClock
from src.adapters.sqlite_db import SQLiteTrackingRepo
from src.api.deps import (
    get_client_info,
    get_clock,
    get_principal,
    get_rate_limiter,
    get_rules,
    get_tracking_repo,
)
from src.api.errors import validation_http_error
from src.api.schemas import (
    ErrorResponse,
    ExpressCheckRequest,
    ExpressCheckResponse,
    PageViewRequest,
    PageViewResponse,
    PageViewUpdateRequest,
    SuccessResponse,
    VisitEndRequest,
    VisitRequest,
    VisitResponse,
)
from src.components.analytics import (
    BeginVisitInput,
    ClientInfo,
    ClosePageViewInput,
    CloseVisitInput,
    InMemoryRateLimiter,
    Principal,
    RecordExpressCheckInput,
    RecordPageViewInput,
    run_begin_visit,
    run_close_page_view,
    run_close_visit,
    run_record_express_check,
    run_record_page_view,
)
from src.rules.models import Rules

router = APIRouter()

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse},
    429: {"description": "Rate limit exceeded"},
}


@router.post("/track/visit", response_model=VisitResponse, responses=_ERROR_RESPONSES)
def track_visit(
    body: VisitRequest,
    client: ClientInfo = Depends(get_client_info),
    principal: Principal = Depends(get_principal),
    repo: SQLiteTrackingRepo = Depends(get_tracking_repo),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> VisitResponse:
    """Begin a visit. Requires visitorId and sessionId."""
    result = run_begin_visit(
        BeginVisitInput(**body.model_dump()),
        repo=repo,
        client=client,
        principal=principal,
        rate_limiter=rate_limiter,
        time_port=clock,
        rules=rules,
    )
    if not result.success or result.record_id is None:
        raise validation_http_error(result.errors)
    return VisitResponse(visit_id=result.record_id)


@router.post("/track/pageview", response_model=PageViewResponse, responses=_ERROR_RESPONSES)
def track_pageview(
    body: PageViewRequest,
    client: ClientInfo = Depends(get_client_info),
    principal: Principal = Depends(get_principal),
    repo: SQLiteTrackingRepo = Depends(get_tracking_repo),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> PageViewResponse:
    """Record a page view. Requires visitorId, sessionId and pagePath."""
    result = run_record_page_view(
        RecordPageViewInput(**body.model_dump()),
        repo=repo,
        client=client,
        principal=principal,
        rate_limiter=rate_limiter,
        time_port=clock,
        rules=rules,
    )
    if not result.success or result.record_id is None:
        raise validation_http_error(result.errors)
    return PageViewResponse(page_view_id=result.record_id)


@router.post(
    "/track/pageview/{page_view_id}/update",
    response_model=SuccessResponse,
    responses={**_ERROR_RESPONSES, 404: {"model": ErrorResponse}},
)
def update_pageview(
    page_view_id: int,
    body: PageViewUpdateRequest | None = None,
    client: ClientInfo = Depends(get_client_info),
    repo: SQLiteTrackingRepo = Depends(get_tracking_repo),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> SuccessResponse:
    """Close a page view with its duration and scroll depth."""
    result = run_close_page_view(
        ClosePageViewInput(
            page_view_id=page_view_id,
            duration_seconds=body.duration_seconds if body else None,
            scroll_depth_percent=body.scroll_depth_percent if body else None,
        ),
        repo=repo,
        client=client,
        rate_limiter=rate_limiter,
        time_port=clock,
        rules=rules,
    )
    if not result.success:
        raise validation_http_error(result.errors)
    return SuccessResponse()


@router.post(
    "/track/visit/{visit_id}/end",
    response_model=SuccessResponse,
    responses={**_ERROR_RESPONSES, 404: {"model": ErrorResponse}},
)
def end_visit(
    visit_id: int,
    body: VisitEndRequest | None = None,
    client: ClientInfo = Depends(get_client_info),
    repo: SQLiteTrackingRepo = Depends(get_tracking_repo),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> SuccessResponse:
    """Close a visit. A repeated close overwrites the earlier one."""
    result = run_close_visit(
        CloseVisitInput(
            visit_id=visit_id,
            total_duration_seconds=body.total_duration_seconds if body else None,
        ),
        repo=repo,
        client=client,
        rate_limiter=rate_limiter,
        time_port=clock,
        rules=rules,
    )
    if not result.success:
        raise validation_http_error(result.errors)
    return SuccessResponse()


@router.post(
    "/track/express-check",
    response_model=ExpressCheckResponse,
    responses=_ERROR_RESPONSES,
)
def track_express_check(
    body: ExpressCheckRequest,
    client: ClientInfo = Depends(get_client_info),
    principal: Principal = Depends(get_principal),
    repo: SQLiteTrackingRepo = Depends(get_tracking_repo),
    rate_limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> ExpressCheckResponse:
    """Record a completed express check. Requires websiteUrl."""
    result = run_record_express_check(
        RecordExpressCheckInput(**body.model_dump()),
        repo=repo,
        client=client,
        principal=principal,
        rate_limiter=rate_limiter,
        time_port=clock,
        rules=rules,
    )
    if not result.success or result.record_id is None:
        raise validation_http_error(result.errors)
    return ExpressCheckResponse(check_id=result.record_id)
