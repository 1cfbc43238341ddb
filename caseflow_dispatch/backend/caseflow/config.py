from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./caseflow.db"
    engine_version: str = "2026-10-19.v1"

    # ---- Logging ----
    log_level: str = "INFO"
    sql_log_level: str = "WARNING"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Dispatch policy defaults (used when an org has no active policy) ----
    default_involvement_mode: str = "balanced"
    default_auto_approve_cost_limit: float = 500.0
    default_auto_approve_emergencies: bool = True

    # Recommendations endpoint shortlist size
    recommendation_limit: int = 3

    # ---- Quotes ----
    default_quote_expiry_days: int = 30

    # Contractors who have not confirmed an approved job get nudged after this many hours
    unconfirmed_nudge_hours: int = 48

    # ---- Notifications ----
    notifier_webhook_url: str | None = None
    notifier_timeout_seconds: float = 5.0

    # ---- Auth / tenancy ----
    auth_mode: str = "dev"  # dev only; real auth lives in front of this service
    dev_auto_provision: bool = True

    # Dev header names
    dev_header_org_slug: str = "X-Org-Slug"
    dev_header_user_email: str = "X-User-Email"
    dev_header_user_role: str = "X-User-Role"

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")

        mode = (self.default_involvement_mode or "").strip().lower()
        if mode not in ("hands-off", "balanced", "hands-on"):
            raise ValueError(f"default_involvement_mode must be hands-off|balanced|hands-on, got {mode!r}")
        object.__setattr__(self, "default_involvement_mode", mode)


settings = Settings()
