from __future__ import annotations
from typing import Optional

from pydantic import Field, AliasChoices, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-me"


class Settings(BaseSettings):
    # === Storage / DB ===
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./unicornx.db",
        validation_alias=AliasChoices("DATABASE_URL", "POSTGRES_DSN"),
    )
    SQL_ECHO: bool = False
    # dev: create_all на старте; в проде alembic upgrade head
    DB_AUTO_CREATE: bool = True

    # === Сессии (выдаёт внешний провайдер, мы только проверяем) ===
    JWT_SECRET: str = DEFAULT_JWT_SECRET
    JWT_ALGORITHM: str = "HS256"
    JWT_TTL_DAYS: int = 7

    # === Платёжный провайдер ===
    PAYMENT_PROVIDER: str = Field("fake", description="fake | stripe")
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    BASE_CURRENCY: str = "usd"
    # фейковый провайдер не проверяет подписи: вебхуки только по явному флагу
    FAKE_WEBHOOKS_ENABLED: bool = False

    # === Веб-приложение ===
    PUBLIC_BASE_URL: str = "http://localhost:3000"
    WEBAPP_HOST: str = "0.0.0.0"
    WEBAPP_PORT: int = 8080

    # === Подписка / триал ===
    TRIAL_DAYS: int = 7
    ACTIVATION_FALLBACK_DAYS: int = 30

    # === Планировщик ===
    SCHEDULER_ENABLED: bool = False
    SCHEDULER_TZ: str = "UTC"
    EXPIRE_SWEEP_MINUTES: int = 10

    # === Логи ===
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    log_sql: str = Field(default="WARNING", alias="LOG_SQL")

    @field_validator("PAYMENT_PROVIDER", mode="before")
    @classmethod
    def _v_provider(cls, v):
        return (v or "fake").strip().lower()

    def model_post_init(self, __context) -> None:
        # stripe без ключа не взлетит
        if self.PAYMENT_PROVIDER == "stripe" and not self.STRIPE_SECRET_KEY:
            raise ValueError("PAYMENT_PROVIDER=stripe, но STRIPE_SECRET_KEY не задан.")
        if self.PAYMENT_PROVIDER not in {"fake", "stripe"}:
            raise ValueError(f"Неизвестный PAYMENT_PROVIDER={self.PAYMENT_PROVIDER!r}")
        # дефолтным секретом токены подделываются, допустимо только с фейковым провайдером
        if self.JWT_SECRET == DEFAULT_JWT_SECRET and self.PAYMENT_PROVIDER != "fake":
            raise ValueError("JWT_SECRET не задан: дефолтный секрет разрешён только с PAYMENT_PROVIDER=fake.")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


settings = Settings()
