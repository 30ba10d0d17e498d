from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator


class ProjectRules(BaseModel):
    slug: str = "audit-analytics"
    rules_version: str = "1"


class RateLimitWindow(BaseModel):
    window_seconds: int = Field(60, gt=0)
    max_requests: int = Field(600, gt=0)


class IngestRules(BaseModel):
    enabled: bool = True
    parse_user_agent: bool = True
    rate_limit: RateLimitWindow = Field(default_factory=RateLimitWindow)


class LimitsRules(BaseModel):
    pages_limit: int = Field(20, gt=0)
    visitors_limit: int = Field(50, gt=0)
    express_checks_limit: int = Field(50, gt=0)
    top_websites: int = Field(20, gt=0)
    top_browsers: int = Field(10, gt=0)
    top_os: int = Field(10, gt=0)
    detail_limit: int = Field(500, gt=0)
    max_limit: int = Field(1000, gt=0)


class AnalyticsRules(BaseModel):
    timezone: str = "UTC"
    default_period: str = "week"
    default_group_by: str = "day"
    limits: LimitsRules = Field(default_factory=LimitsRules)
    ingest: IngestRules = Field(default_factory=IngestRules)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value


class AuthRules(BaseModel):
    admin_roles: list[str] = Field(default_factory=lambda: ["admin", "superadmin"])
    token_algorithm: str = "HS256"


class Rules(BaseModel):
    project: ProjectRules = Field(default_factory=ProjectRules)
    analytics: AnalyticsRules = Field(default_factory=AnalyticsRules)
    auth: AuthRules = Field(default_factory=AuthRules)
