import os
import sqlite3
import sys
from datetime import UTC, datetime, timedelta

# Add root to pythonpath
sys.path.append(os.getcwd())

from src.adapters.clock import FixedClock
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.adapters.sqlite_db import SQLiteTrackingRepo, to_db_ts
from src.api.auth_utils import create_access_token
from src.components.analytics import (
    AnalyticsIngestionService,
    BeginVisitInput,
    ClientInfo,
    ClosePageViewInput,
    CloseVisitInput,
    IngestionConfig,
    Principal,
    RecordExpressCheckInput,
    RecordPageViewInput,
)

DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
MOBILE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1"
)
PATHS = ["/", "/pricing", "/express-check", "/blog/152-fz"]
SITES = ["shop.ru", "www.shop.ru/", "clinic.example.ru", "https://law-firm.ru"]


def ensure_admin(db_path: str, email: str) -> int:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
        if row:
            print(f"User {email} already exists")
            return int(row[0])
        cursor = conn.execute(
            "INSERT INTO users (name, email, role, created_at) VALUES (?, ?, ?, ?)",
            ("Admin", email, "admin", to_db_ts(datetime.now(UTC))),
        )
        conn.commit()
        print(f"Created user: {email}")
        return int(cursor.lastrowid)  # type: ignore[arg-type]
    finally:
        conn.close()


def seed_traffic(db_path: str, days: int = 14) -> None:
    """Replay a small amount of traffic per day through the ingest service."""
    clock = FixedClock(datetime.now(UTC) - timedelta(days=days))
    service = AnalyticsIngestionService(
        repo=SQLiteTrackingRepo(db_path),
        time_port=clock,
        config=IngestionConfig(rate_limit_max_requests=100_000),
    )

    checks = 0
    for day in range(days):
        for n in range(day % 4 + 1):
            visitor = f"demo-{day}-{n}"
            client = ClientInfo(
                ip_address=f"198.51.100.{n + 1}",
                user_agent=MOBILE_UA if n % 2 else DESKTOP_UA,
            )
            visit_id, _ = service.begin_visit(
                BeginVisitInput(visitor_id=visitor, session_id=f"{visitor}-s", utm_source="seed"),
                client,
            )
            for i, path in enumerate(PATHS[: n + 2]):
                page_view_id, _ = service.record_page_view(
                    RecordPageViewInput(
                        visitor_id=visitor,
                        session_id=f"{visitor}-s",
                        page_path=path,
                        visit_id=visit_id,
                    ),
                    client,
                )
                clock.advance(seconds=20 + 5 * i)
                service.close_page_view(
                    ClosePageViewInput(
                        page_view_id=page_view_id,  # type: ignore[arg-type]
                        duration_seconds=20 + 5 * i,
                        scroll_depth_percent=40 + 15 * i,
                    ),
                    client,
                )
            service.close_visit(
                CloseVisitInput(visit_id=visit_id, total_duration_seconds=60 * (n + 1)),  # type: ignore[arg-type]
                client,
            )
            if n == 0:
                service.record_express_check(
                    RecordExpressCheckInput(
                        website_url=SITES[day % len(SITES)],
                        visitor_id=visitor,
                        score_percent=(day * 17) % 101,
                    ),
                    client,
                    Principal(),
                )
                checks += 1
        clock.advance(days=1)

    print(f"Seeded {days} days of traffic ({checks} express checks)")


def seed():
    data_dir = os.environ.get("ANALYTICS_DATA_DIR", "./data")
    os.makedirs(data_dir, exist_ok=True)

    db_path = os.environ.get("ANALYTICS_DB_PATH") or f"{data_dir}/analytics.db"
    print(f"Seeding to {db_path}")

    applied = SQLiteMigrator(db_path, "migrations").run_migrations()
    print(f"Applied {len(applied)} migrations")

    admin_id = ensure_admin(db_path, "admin@example.com")
    seed_traffic(db_path)

    token = create_access_token({"sub": str(admin_id), "role": "admin"})
    print(f"Admin bearer token (24h): {token}")


if __name__ == "__main__":
    seed()
