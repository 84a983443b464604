"""Application configuration."""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, computed_field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///./data/plex-donate.db"
    pool_size: int = 5
    max_overflow: int = 10


class AppSettings(BaseModel):
    """Public-facing application settings."""

    # Used to build dashboard links in emails
    public_base_url: str = ""


class PayPalSettings(BaseModel):
    """PayPal REST configuration."""

    client_id: str = ""
    client_secret: str = ""
    webhook_id: str = ""
    api_base: str = "https://api-m.sandbox.paypal.com"
    plan_id: str = ""
    product_id: str = ""
    subscription_price: float = 0
    currency: str = "USD"
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class StripeSettings(BaseModel):
    """Stripe configuration."""

    secret_key: str = ""
    webhook_secret: str = ""
    price_id: str = ""
    success_url: str = ""
    cancel_url: str = ""
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)


class PlexSettings(BaseModel):
    """Plex server and plex.tv configuration."""

    base_url: str = ""
    token: str = ""
    # 40-char machine identifier; auto-detected when empty
    server_identifier: str = ""
    # Comma separated, e.g. "1,2,5"
    library_section_ids: str = ""
    allow_sync: bool = False
    allow_camera_upload: bool = False
    allow_channels: bool = False
    timeout_seconds: float = 30.0

    @field_validator("library_section_ids", mode="before")
    @classmethod
    def join_section_ids(cls, v: object) -> object:
        """Accept a list of section ids as well as a string."""
        if isinstance(v, (list, tuple)):
            return ",".join(str(part).strip() for part in v)
        if isinstance(v, int):
            return str(v)
        return v

    @property
    def section_ids(self) -> list[str]:
        return [
            part.strip() for part in self.library_section_ids.split(",") if part.strip()
        ]

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.token)


class SmtpSettings(BaseModel):
    """Outbound mail configuration."""

    host: str = ""
    port: int = 587
    # True means implicit TLS (port 465); otherwise STARTTLS when offered
    secure: bool = False
    user: str = ""
    password: str = ""
    from_address: str = ""
    support_notification_email: str = ""
    timeout_seconds: float = 30.0


class NotificationSettings(BaseModel):
    """Admin notification toggles."""

    admin_email: str = ""
    on_donor_created: bool = True
    on_subscription_started: bool = True
    on_plex_revoked: bool = True
    on_trial_started: bool = False


class ReconcilerSettings(BaseModel):
    """Reconciler configuration."""

    # Max wait for the per-subscription lock before answering 503
    lock_timeout_seconds: float = 60.0


class SweeperSettings(BaseModel):
    """Background sweeper configuration."""

    enabled: bool = True
    interval_seconds: float = 300.0
    refresh_interval_seconds: float = 300.0
    shutdown_grace_seconds: float = 15.0
    drift_repair: bool = True
    # Trial donors whose access ends within this window get one reminder
    trial_reminder_window_seconds: float = 86400.0


class RateLimitSettings(BaseModel):
    """Webhook rate limit configuration."""

    enabled: bool = True
    requests_per_minute: int = 100


class ObservabilitySettings(BaseModel):
    """Observability configuration for Logfire."""

    # Logfire API token (optional - if not set, logs only go to console)
    # Can be set via OBSERVABILITY__LOGFIRE_TOKEN env var
    logfire_token: str | None = None

    # If None, sends when a token is present
    send_to_logfire: bool | None = None


class Settings(BaseSettings):
    """Application settings.

    Loaded from environment variables and ``.env``. Nested groups use the
    ``__`` delimiter, e.g. ``PLEX__TOKEN`` or ``SMTP__HOST``. A handful of
    flat variables are honoured for compatibility with existing deployments:

        DATABASE_FILE=/data/plex-donate.db
        SESSION_SECRET=...
        PLEX_INVITE_STALE_DAYS=14
        LOG_LEVEL=info
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Literal["test", "development", "staging", "production"] = (
        "development"
    )
    debug: bool = False
    log_level: str | None = None

    git_sha: str = "unknown"

    host: str = "localhost"
    port: int = 3000

    database_file: str | None = None
    session_secret: str = "change-me"
    plex_invite_stale_days: int = 0

    database: DatabaseSettings = DatabaseSettings()
    app: AppSettings = AppSettings()
    paypal: PayPalSettings = PayPalSettings()
    stripe: StripeSettings = StripeSettings()
    plex: PlexSettings = PlexSettings()
    smtp: SmtpSettings = SmtpSettings()
    notifications: NotificationSettings = NotificationSettings()
    reconciler: ReconcilerSettings = ReconcilerSettings()
    sweeper: SweeperSettings = SweeperSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()
    observability: ObservabilitySettings = ObservabilitySettings()

    @model_validator(mode="after")
    def initialize_derived_settings(self) -> "Settings":
        """Derive the database URL and test-mode toggles."""
        if self.database_file:
            self.database.url = f"sqlite+aiosqlite:///{self.database_file}"

        if self.environment == "test":
            self.rate_limit.enabled = False

        self.git_sha = self._load_git_sha()
        return self

    @computed_field
    @property
    def invite_stale_seconds(self) -> int:
        """Stale invite threshold in seconds (0 disables staleness)."""
        if self.plex_invite_stale_days <= 0:
            return 0
        return self.plex_invite_stale_days * 24 * 60 * 60

    @staticmethod
    def _load_git_sha() -> str:
        """Load git SHA from version file.

        Returns:
            Git SHA if version file exists, otherwise "unknown"
        """
        version_file = Path("/app/version.txt")
        if version_file.exists():
            try:
                return version_file.read_text().strip()
            except OSError:
                return "unknown"
        return "unknown"

    @property
    def database_url(self) -> str:
        return self.database.url
