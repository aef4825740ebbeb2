from pydantic_settings import BaseSettings
from pathlib import Path


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Learning Plan Tracker"
    SECRET_KEY: str = "change-me-in-production"
    DATABASE_URL: str = "sqlite:///data/learning_plan.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://localhost:8050",
        "https://localhost:8050",
    ]
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY_HOURS: int = 72
    AUTH_COOKIE_NAME: str = "learning_plan_session"
    AUTH_COOKIE_SECURE: bool = False
    AUTH_COOKIE_HTTPONLY: bool = True
    AUTH_COOKIE_SAMESITE: str = "lax"  # strict | lax | none
    AUTH_COOKIE_DOMAIN: str | None = None
    AUTH_COOKIE_PATH: str = "/"
    SECURITY_HEADERS_ENABLED: bool = True
    SECURITY_CSP: str = "default-src 'self'; frame-ancestors 'none'; object-src 'none'; base-uri 'self'"
    LOG_LEVEL: str = "INFO"
    DEFAULT_TIMEZONE: str = "UTC"
    SYNC_LOOKBACK_DAYS: int = 7
    SYNC_LOOKBACK_DAYS_EXTENDED: int = 14  # calendar + streak reads
    SCHEDULER_ENABLED: bool = True
    REMINDER_HOURS_LOCAL: list[int] = [17, 22]
    LATE_REMINDER_HOUR_LOCAL: int = 20
    WEEKLY_SUMMARY_WEEKDAY_LOCAL: int = 0  # Monday
    WEEKLY_SUMMARY_HOUR_LOCAL: int = 9
    STREAK_MILESTONES: list[int] = [3, 5, 7, 14, 21, 30, 50, 100]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    def validate_security_configuration(self) -> None:
        if not self.is_production_like:
            return

        errors: list[str] = []
        if self.SECRET_KEY == "change-me-in-production":
            errors.append("SECRET_KEY must be changed from the default value")
        if not self.AUTH_COOKIE_SECURE:
            errors.append("AUTH_COOKIE_SECURE must be true in production-like environments")
        if (self.AUTH_COOKIE_SAMESITE or "").strip().lower() == "none" and not self.AUTH_COOKIE_SECURE:
            errors.append("AUTH_COOKIE_SAMESITE=none requires AUTH_COOKIE_SECURE=true")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Insecure production configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
