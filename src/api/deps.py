import os
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from src.adapters.clock import SystemClock
from src.adapters.sqlite_db import SQLiteAnalyticsRepo, SQLiteTrackingRepo
from src.api.auth_utils import SECRET_KEY, decode_access_token
from src.components.analytics import (
    ANONYMOUS,
    ClientInfo,
    InMemoryRateLimiter,
    Principal,
)
from src.rules.loader import load_rules
from src.rules.models import Rules


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("ANALYTICS_DATA_DIR", "./data"))
        self.db_path = os.environ.get("ANALYTICS_DB_PATH") or str(self.data_dir / "analytics.db")
        self.rules_path = Path(os.environ.get("ANALYTICS_RULES_PATH", self.base_dir / "rules.yaml"))
        self.migrations_dir = Path(
            os.environ.get("ANALYTICS_MIGRATIONS_DIR", self.base_dir / "migrations")
        )
        self.secret_key = os.environ.get("ANALYTICS_SECRET_KEY", SECRET_KEY)
        # Only safe behind a reverse proxy that overwrites X-Forwarded-For
        self.trust_forwarded_for = os.environ.get(
            "ANALYTICS_TRUST_FORWARDED_FOR", "true"
        ).lower() in ("1", "true", "yes")


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules(settings: Settings = Depends(get_settings)) -> Rules:
    return load_rules(settings.rules_path)


# --- Repos ---
def get_tracking_repo(settings: Settings = Depends(get_settings)) -> SQLiteTrackingRepo:
    return SQLiteTrackingRepo(settings.db_path)


def get_analytics_repo(settings: Settings = Depends(get_settings)) -> SQLiteAnalyticsRepo:
    return SQLiteAnalyticsRepo(settings.db_path)


# Time adapter for deterministic time operations
_clock_instance: SystemClock | None = None


def get_clock() -> SystemClock:
    """Get clock singleton."""
    global _clock_instance
    if _clock_instance is None:
        _clock_instance = SystemClock()
    return _clock_instance


# Rate limiter state must outlive a single request
_rate_limiter_instance: InMemoryRateLimiter | None = None


def get_rate_limiter() -> InMemoryRateLimiter:
    """Get ingest rate limiter singleton."""
    global _rate_limiter_instance
    if _rate_limiter_instance is None:
        _rate_limiter_instance = InMemoryRateLimiter(get_clock())
    return _rate_limiter_instance


# --- Request context ---
def get_client_key(request: Request, settings: Settings = Depends(get_settings)) -> str:
    """
    Client address used for attribution and the ingest rate limit.

    The first X-Forwarded-For entry when the proxy is trusted, else the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for") if settings.trust_forwarded_for else None
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else ""


def get_client_info(request: Request, client_key: str = Depends(get_client_key)) -> ClientInfo:
    """Network metadata for ingest, taken from the request and never the body."""
    return ClientInfo(
        ip_address=client_key,
        user_agent=request.headers.get("user-agent", ""),
    )


# --- Auth ---
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _resolve_token(request: Request, token: str | None) -> str | None:
    # Cookie first (HttpOnly), then the Authorization header
    cookie_token = request.cookies.get("access_token")
    if cookie_token and cookie_token.startswith("Bearer "):
        return cookie_token.split(" ")[1]
    return token


def _principal_from_token(token: str, settings: Settings, rules: Rules) -> Principal | None:
    payload = decode_access_token(
        token, secret_key=settings.secret_key, algorithm=rules.auth.token_algorithm
    )
    if not payload:
        return None

    sub = payload.get("sub")
    try:
        user_id = int(sub) if sub is not None else None
    except (TypeError, ValueError):
        return None
    if user_id is None:
        return None

    role = payload.get("role")
    return Principal(user_id=user_id, role=role if isinstance(role, str) else None)


def get_principal(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
) -> Principal:
    """Caller identity for ingest. Missing or invalid credentials mean anonymous."""
    token = _resolve_token(request, token)
    if not token:
        return ANONYMOUS
    return _principal_from_token(token, settings, rules) or ANONYMOUS


def require_admin(
    request: Request,
    token: Annotated[str | None, Depends(oauth2_scheme)],
    settings: Settings = Depends(get_settings),
    rules: Rules = Depends(get_rules),
) -> Principal:
    """Caller identity for read endpoints. Requires an admin role."""
    token = _resolve_token(request, token)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    principal = _principal_from_token(token, settings, rules)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if principal.role not in rules.auth.admin_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )

    return principal
