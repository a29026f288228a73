import logging
import logging.handlers
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/review-mails.sqlite"
    secret_key: str = "change-me"

    # Admin bootstrap
    admin_email: str = ""
    admin_password: str = ""

    # Queue / scheduling
    review_delay_days: int = 14
    reminder_min_days: int = 7
    reminder_max_days: int = 14
    reminder_whitelist: str = ""
    reminder_whitelist_enabled: bool = True
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 60

    # Mandrill
    mailer_enabled: bool = False
    mandrill_api_key: str = ""
    mandrill_api_url: str = "https://mandrillapp.com/api/1.0"
    from_email: str = "femstjerner@smartphoneshop.dk"
    from_name: str = ""
    google_url: str = ""
    pricerunner_url: str = ""
    trustpilot_url: str = ""

    # DanDomain
    dandomain_shop_id: str = ""
    dandomain_graphql_url: str = ""
    dandomain_oauth_url: str = ""
    dandomain_client_id: str = ""
    dandomain_client_secret: str = ""
    dandomain_verify_signature: bool = False
    dandomain_webhook_token: str = ""
    webhook_log_dir: str = "/data/webhook-logs"

    # Backfill
    backfill_delay_days: int = 5
    backfill_allowed_status_ids: str = "3"

    # HTTP
    cors_origins: str = ""
    cors_allow_credentials: bool = False
    trusted_hosts: str = "*"

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_max_bytes: int = 10_485_760  # 10 MB
    log_backup_count: int = 5

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def effective_graphql_url(self) -> str:
        if self.dandomain_graphql_url:
            return self.dandomain_graphql_url
        if self.dandomain_shop_id:
            return f"https://{self.dandomain_shop_id}.mywebshop.io/api/graphql"
        return ""

    @property
    def effective_oauth_url(self) -> str:
        if self.dandomain_oauth_url:
            return self.dandomain_oauth_url
        if self.dandomain_shop_id:
            return f"https://{self.dandomain_shop_id}.mywebshop.io/auth/oauth/token"
        return ""

    @property
    def reminder_whitelist_set(self) -> frozenset[str]:
        return frozenset(s.strip().lower() for s in self.reminder_whitelist.split(",") if s.strip())

    @property
    def allowed_status_ids(self) -> frozenset[int]:
        return frozenset(int(s) for s in self.backfill_allowed_status_ids.split(",") if s.strip())

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def trusted_hosts_list(self) -> list[str]:
        return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()] or ["*"]


settings = Settings()


def setup_logging() -> None:
    """Configure application-wide logging with rotating file handlers.

    Creates three handlers:
    - Console: INFO+ with brief format (for container logs)
    - app.log: DEBUG+ with detailed format, rotated at 10 MB x 5 backups
    - error.log: ERROR+ only, rotated at 10 MB x 5 backups
    """
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    # --- Console handler ---
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    root.addHandler(console)

    detail_fmt = logging.Formatter(
        "%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    app_handler = logging.handlers.RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    app_handler.setLevel(logging.DEBUG)
    app_handler.setFormatter(detail_fmt)
    root.addHandler(app_handler)

    err_handler = logging.handlers.RotatingFileHandler(
        log_dir / "error.log",
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    err_handler.setLevel(logging.ERROR)
    err_handler.setFormatter(detail_fmt)
    root.addHandler(err_handler)

    # --- Quiet noisy third-party loggers ---
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, dir=%s, max=%s MB x %d backup",
        settings.log_level, log_dir, settings.log_max_bytes // 1_048_576, settings.log_backup_count,
    )
