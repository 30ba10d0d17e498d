import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.adapters.clock import FixedClock
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite_db import SQLiteAnalyticsRepo, SQLiteTrackingRepo, to_db_ts
from src.api import deps
from src.api.auth_utils import create_access_token
from src.api.errors import install_error_handlers
from src.api.routes import admin_analytics, analytics_ingest
from src.components.analytics import InMemoryRateLimiter
from src.rules.loader import load_rules
from src.rules.models import Rules

ROOT = Path(__file__).resolve().parent.parent
MIGRATIONS_DIR = ROOT / "migrations"

# Sunday of ISO week 2026-11
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
TEST_SECRET = "test-secret"


class Seeder:
    """Direct inserts with explicit timestamps for aggregation tests."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _insert(self, table: str, values: dict[str, Any]) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            conn.commit()
            return int(cursor.lastrowid)  # type: ignore[arg-type]
        finally:
            conn.close()

    def user(
        self,
        email: str,
        created_at: datetime = NOW,
        name: str = "User",
        role: str = "user",
        verified: bool = False,
        phone: str | None = None,
    ) -> int:
        return self._insert(
            "users",
            {
                "name": name,
                "email": email,
                "phone": phone,
                "role": role,
                "email_verified_at": to_db_ts(created_at) if verified else None,
                "created_at": to_db_ts(created_at),
            },
        )

    def visit(
        self,
        visitor_id: str,
        started_at: datetime = NOW,
        total_duration_seconds: int = 0,
        page_count: int = 0,
        **fields: Any,
    ) -> int:
        return self._insert(
            "site_visits",
            {
                "visitor_id": visitor_id,
                "session_id": fields.pop("session_id", f"s-{visitor_id}"),
                "started_at": to_db_ts(started_at),
                "total_duration_seconds": total_duration_seconds,
                "page_count": page_count,
                **fields,
            },
        )

    def page_view(
        self,
        visitor_id: str,
        page_path: str,
        entered_at: datetime = NOW,
        duration_seconds: int = 0,
        scroll_depth_percent: int = 0,
    ) -> int:
        return self._insert(
            "page_views",
            {
                "visitor_id": visitor_id,
                "session_id": f"s-{visitor_id}",
                "page_path": page_path,
                "entered_at": to_db_ts(entered_at),
                "duration_seconds": duration_seconds,
                "scroll_depth_percent": scroll_depth_percent,
            },
        )

    def express_check(
        self,
        website_url: str,
        created_at: datetime = NOW,
        **fields: Any,
    ) -> int:
        return self._insert(
            "express_checks",
            {
                "website_url": website_url,
                "website_url_normalized": fields.pop("website_url_normalized", website_url),
                "created_at": to_db_ts(created_at),
                **fields,
            },
        )

    def express_report_order(
        self,
        status: str,
        price: int = 900,
        created_at: datetime = NOW,
        user_id: int | None = None,
    ) -> int:
        return self._insert(
            "express_report_orders",
            {
                "user_id": user_id,
                "email": "buyer@example.com",
                "website_url": "https://example.ru",
                "price": price,
                "status": status,
                "created_at": to_db_ts(created_at),
            },
        )

    def full_audit_order(self, status: str, created_at: datetime = NOW) -> int:
        return self._insert(
            "full_audit_orders",
            {
                "email": "buyer@example.com",
                "website_url": "https://example.ru",
                "package_type": "standard",
                "status": status,
                "created_at": to_db_ts(created_at),
            },
        )

    def payment(
        self,
        user_id: int,
        amount: int,
        status: str = "succeeded",
        created_at: datetime = NOW,
    ) -> int:
        return self._insert(
            "payments",
            {
                "user_id": user_id,
                "amount": amount,
                "status": status,
                "created_at": to_db_ts(created_at),
            },
        )

    def count(self, table: str) -> int:
        conn = sqlite3.connect(self.db_path)
        try:
            return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
        finally:
            conn.close()

    def row(self, table: str, row_id: int) -> dict[str, Any]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            found = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
            return dict(found) if found else {}
        finally:
            conn.close()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Temporary database with all migrations applied."""
    path = str(tmp_path / "analytics.db")
    SQLiteMigrator(path, str(MIGRATIONS_DIR)).run_migrations()
    return path


@pytest.fixture
def seed(db_path: str) -> Seeder:
    return Seeder(db_path)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def rules() -> Rules:
    return load_rules(ROOT / "rules.yaml")


@pytest.fixture
def tracking_repo(db_path: str) -> SQLiteTrackingRepo:
    return SQLiteTrackingRepo(db_path)


@pytest.fixture
def analytics_repo(db_path: str) -> SQLiteAnalyticsRepo:
    return SQLiteAnalyticsRepo(db_path)


@pytest.fixture
def app(db_path: str, clock: FixedClock, rules: Rules) -> FastAPI:
    """Analytics routes wired to the temporary database and fixed clock."""
    settings = deps.Settings()
    settings.db_path = db_path
    settings.secret_key = TEST_SECRET
    rate_limiter = InMemoryRateLimiter(clock)

    app = FastAPI()
    install_error_handlers(app)
    app.include_router(analytics_ingest.router, prefix="/api/analytics")
    app.include_router(admin_analytics.router, prefix="/api/analytics")

    app.dependency_overrides[deps.get_settings] = lambda: settings
    app.dependency_overrides[deps.get_rules] = lambda: rules
    app.dependency_overrides[deps.get_clock] = lambda: clock
    app.dependency_overrides[deps.get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[deps.get_tracking_repo] = lambda: SQLiteTrackingRepo(db_path)
    app.dependency_overrides[deps.get_analytics_repo] = lambda: SQLiteAnalyticsRepo(db_path)
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def make_token(user_id: int, role: str) -> str:
    return create_access_token(
        {"sub": str(user_id), "role": role},
        expires_delta=timedelta(hours=1),
        secret_key=TEST_SECRET,
    )


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(1, 'admin')}"}


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(2, 'user')}"}
