"""
Configuration management for HealthChain Notify.
"""

from pathlib import Path
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from ruamel.yaml import YAML


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field("INFO", description="Log level")
    file: Optional[Path] = Field(None, description="Log file path")
    format: str = Field("json", description="Log format: 'json' or 'text'")


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: Optional[str] = Field(None, description="Database URL (defaults to SQLite in data_dir)")
    echo: bool = Field(False, description="Echo SQL statements")


class QueueConfig(BaseModel):
    """Dispatch queue and worker configuration."""

    max_attempts: int = Field(5, ge=1, description="Maximum delivery attempts per job")
    backoff: Literal["exponential", "fixed"] = Field("exponential", description="Backoff between attempts")
    base_delay_ms: int = Field(2000, ge=0, description="Delay before the first retry in milliseconds")
    concurrency: int = Field(5, ge=1, description="Maximum concurrent deliveries per worker")
    poll_interval_seconds: float = Field(1.0, gt=0, description="Worker poll interval")
    send_timeout_seconds: float = Field(30.0, gt=0, description="Per-attempt provider timeout")
    lease_seconds: int = Field(60, ge=1, description="Claim lease before a job becomes visible again")
    retention_hours: int = Field(24, ge=1, description="Age after which finished jobs are purged")

    @model_validator(mode="after")
    def _lease_outlasts_send(self) -> "QueueConfig":
        if self.lease_seconds <= self.send_timeout_seconds:
            raise ValueError("lease_seconds must be greater than send_timeout_seconds")
        return self


class NotificationsConfig(BaseModel):
    """Notification acceptance behaviour."""

    send_policy: Literal["partial", "atomic"] = Field(
        "partial",
        description="'partial' keeps channels processed before a failure, 'atomic' validates all channels first",
    )
    autoescape: bool = Field(False, description="HTML-escape substituted variables")


class HttpServerConfig(BaseModel):
    """HTTP server configuration."""

    enabled: bool = Field(True, description="Enable HTTP server")
    host: str = Field("0.0.0.0", description="Server host")
    port: int = Field(8100, description="Server port")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")


class SmsConfig(BaseModel):
    """Africa's Talking SMS configuration."""

    api_key: Optional[str] = Field(None, description="Africa's Talking API key (dry-run when unset)")
    username: str = Field("sandbox", description="Africa's Talking username")
    sender_id: Optional[str] = Field(None, description="Registered sender ID / short code")
    timeout_seconds: int = Field(30, description="Request timeout in seconds")


class EmailConfig(BaseModel):
    """SMTP email configuration."""

    smtp_host: Optional[str] = Field(None, description="SMTP host (dry-run when unset)")
    smtp_port: int = Field(587, description="SMTP port")
    username: Optional[str] = Field(None, description="SMTP username (dry-run when unset)")
    password: Optional[str] = Field(None, description="SMTP password")
    from_email: str = Field("noreply@example.com", description="Sender address")
    from_name: str = Field("HealthChain", description="Sender display name")
    use_tls: bool = Field(True, description="Use STARTTLS")
    use_ssl: bool = Field(False, description="Use implicit SSL (port 465)")
    default_subject: str = Field("HealthChain notification", description="Subject when none is supplied")
    timeout_seconds: int = Field(30, description="SMTP timeout in seconds")


class PushConfig(BaseModel):
    """Firebase Cloud Messaging configuration."""

    fcm_server_key: Optional[str] = Field(None, description="FCM server key (dry-run when unset)")
    default_title: str = Field("HealthChain", description="Title when none is supplied")
    timeout_seconds: int = Field(30, description="Request timeout in seconds")


class AppConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="allow",
        case_sensitive=False,
    )

    data_dir: Path = Field(Path("data"), description="Data directory")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    http_server: HttpServerConfig = Field(default_factory=HttpServerConfig)
    sms: SmsConfig = Field(default_factory=SmsConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    push: PushConfig = Field(default_factory=PushConfig)

    @property
    def database_url(self) -> str:
        """Configured database URL, or SQLite inside the data directory."""
        if self.database.url:
            return self.database.url
        return f"sqlite+aiosqlite:///{self.data_dir / 'healthchain_notify.db'}"

    @classmethod
    def from_yaml(cls, config_path=None) -> "AppConfig":
        """Load configuration from YAML file."""
        if config_path is None:
            config_path = Path("config/default.yaml")
        elif isinstance(config_path, str):
            config_path = Path(config_path)

        if not config_path.exists():
            # Return default config if file doesn't exist
            return cls()

        yaml = YAML(typ='safe')
        with open(config_path, 'r') as f:
            yaml_data = yaml.load(f) or {}

        return cls(**yaml_data)
