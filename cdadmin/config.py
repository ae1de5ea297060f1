from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal

MIN_ADMIN_TOKEN_LENGTH = 32


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 2
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000

    # Security
    admin_token: str | None = None
    allowed_origins: list[str] = ["*"]
    admin_host: str | None = None  # e.g., "cd-admin.example.com" - admin endpoints only accessible on this host

    # Org roles allowed to manage provider tokens
    owner_role_keys: list[str] = ["owner", "admin"]

    # Function Compute (worker function that runs the pipeline)
    fc_account_id: str | None = None
    fc_region: str = "cn-hangzhou"
    fc_access_key_id: str | None = None
    fc_access_key_secret: str | None = None
    fc_security_token: str | None = None  # STS token when running with a temporary role
    fc_api_version: str = "2016-08-15"
    fc_worker_service: str = "serverless-cd"
    fc_worker_function: str = "engine"
    fc_endpoint: str | None = None  # Override, e.g. https://123.cn-hangzhou-internal.fc.aliyuncs.com

    # Source providers
    github_api_url: str = "https://api.github.com"
    gitee_api_url: str = "https://gitee.com/api/v5"

    # Outbound HTTP timeouts (seconds)
    fc_timeout_seconds: float = 30.0
    provider_timeout_seconds: float = 15.0

    # Feature Flags
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def database_dsn(self) -> str:
        if self.database_url:
            return self.database_url

        return (
            f"postgresql://{self.pguser}:{self.pgpassword}@{self.pghost}:{self.pgport}/{self.pgdatabase}"
        )

    @property
    def fc_endpoint_url(self) -> str:
        """Function Compute endpoint for the configured account and region"""
        if self.fc_endpoint:
            return self.fc_endpoint.rstrip("/")
        return f"https://{self.fc_account_id}.{self.fc_region}.fc.aliyuncs.com"

    @property
    def fc_enabled(self) -> bool:
        """Check if Function Compute credentials are configured"""
        return bool(
            (self.fc_account_id or self.fc_endpoint)
            and self.fc_access_key_id
            and self.fc_access_key_secret
        )

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("admin_token", self.admin_token),
            ("database_url", self.database_url),
            ("fc_account_id or fc_endpoint", self.fc_account_id or self.fc_endpoint),
            ("fc_access_key_id", self.fc_access_key_id),
            ("fc_access_key_secret", self.fc_access_key_secret),
        ]

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    # --- Admin / Security ---
    if s.is_production and not s.admin_token:
        warnings.append("prod: admin_token is missing (admin auth will be broken).")

    if s.admin_token and len(s.admin_token) < MIN_ADMIN_TOKEN_LENGTH:
        warnings.append(f"admin_token is shorter than {MIN_ADMIN_TOKEN_LENGTH} chars.")

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if not s.admin_host:
        warnings.append("admin_host is not set (admin endpoints are served on every host).")

    # --- Function Compute ---
    if not s.fc_enabled:
        warnings.append("Function Compute is not configured (dispatch operations will fail).")
    elif s.fc_endpoint and not s.fc_endpoint.startswith("https://"):
        warnings.append("fc_endpoint is not https (signed requests travel in clear text).")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    from cdadmin.infra.logging_config import get_logger

    logger = get_logger("cdadmin.config")
    for msg in warn_on_risky_config(s):
        logger.warning(f"[config] {msg}")


settings = Settings()
