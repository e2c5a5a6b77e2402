import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./scheduler.db"
    secret_key: str = "your-secret-key"
    access_token_expire_minutes: int = 60
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_backend_url: str = "redis://localhost:6379/0"
    celery_task_always_eager: bool = False
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    log_level: str = "INFO"
    alert_horizon_days: int = 3

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            secret_key=os.getenv("SECRET_KEY", cls.secret_key),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", cls.access_token_expire_minutes)),
            celery_broker_url=os.getenv("CELERY_BROKER_URL", cls.celery_broker_url),
            celery_backend_url=os.getenv("CELERY_BACKEND_URL", cls.celery_backend_url),
            celery_task_always_eager=_env_bool("CELERY_TASK_ALWAYS_EAGER"),
            smtp_server=os.getenv("SMTP_SERVER", cls.smtp_server),
            smtp_port=int(os.getenv("SMTP_PORT", cls.smtp_port)),
            smtp_user=os.getenv("SMTP_USER", cls.smtp_user),
            smtp_password=os.getenv("SMTP_PASSWORD", cls.smtp_password),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            alert_horizon_days=int(os.getenv("ALERT_HORIZON_DAYS", cls.alert_horizon_days)),
        )

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
