from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "sqlite:///./data/tourdesk.db"

    scheduler_enabled: bool = True
    scheduler_interval_minutes: int = 60
    # Wall-clock zone used when comparing reminder send times
    scheduler_timezone: str = "UTC"

    default_payment_deadline_days: int = 30
    auto_cancel_grace_hours: int = 24
    reminder_window_minutes: int = 60
    admin_alert_days_before: int = 3
    trip_reminder_days_before: int = 7

    min_deposit_percentage: float = 30.0
    default_installments: int = 3
    installment_interval_days: int = 30

    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    email_api_url: str = "https://api.resend.com/emails"
    email_api_key: str = ""
    from_email: str = "noreply@tudestino.tours"
    admin_email: str = "admin@tudestino.tours"
    base_url: str = "http://localhost:8000"

    redis_url: str = "redis://localhost:6379/0"

    def model_post_init(self, __context):
        if self.env == "prod" and self.database_url.startswith("sqlite"):
            raise ValueError(
                "Production requires explicit DATABASE_URL (not SQLite)"
            )

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
