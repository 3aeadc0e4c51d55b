"""
Конфигурация приложения с валидацией через Pydantic.
"""
from typing import List, Optional
from pathlib import Path
from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Config(BaseSettings):
    """Конфигурация приложения с валидацией."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    DB_DIALECT: str = Field(default="sqlite", description="Тип БД: postgres или sqlite")
    DB_POOL_SIZE: int = Field(default=10, description="Размер пула соединений PostgreSQL")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Доп. соединений поверх pool_size")
    DB_USER: str = Field(default="postgres", description="Пользователь БД")
    DB_PASS: str = Field(default="postgres", description="Пароль БД")
    DB_HOST: str = Field(default="localhost", description="Хост БД")
    DB_PORT: str = Field(default="5432", description="Порт БД")
    DB_NAME: str = Field(default="marketplace", description="Имя БД")
    SQLITE_PATH: str = Field(default="marketplace.sqlite3", description="Путь к SQLite файлу")
    # Railway и др. платформы передают один DATABASE_URL; если задан, используем его
    DATABASE_URL_OVERRIDE: Optional[str] = Field(default=None, description="URL БД", validation_alias="DATABASE_URL")

    @field_validator("DB_DIALECT")
    @classmethod
    def validate_db_dialect(cls, v: str) -> str:
        """Валидация типа БД."""
        v = v.lower()
        if v not in ("postgres", "postgresql", "sqlite", "sqlite3"):
            raise ValueError(f"Неподдерживаемый тип БД: {v}")
        return v

    @computed_field
    @property
    def DATABASE_URL(self) -> str:
        """URL подключения к БД. Если задан DATABASE_URL — используем его."""
        raw = self.DATABASE_URL_OVERRIDE
        if raw:
            raw = raw.strip()
            if raw.startswith("postgresql://") and "+asyncpg" not in raw:
                return raw.replace("postgresql://", "postgresql+asyncpg://", 1)
            return raw
        if self.DB_DIALECT in ("sqlite", "sqlite3"):
            base_dir = Path(__file__).resolve().parent
            db_path = Path(self.SQLITE_PATH)
            if not db_path.is_absolute():
                db_path = base_dir / db_path
            return f"sqlite+aiosqlite:///{db_path.resolve().as_posix()}"
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASS}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Bot
    BOT_TOKEN: str = Field(default="", description="Токен Telegram бота")
    ADMIN_IDS: str = Field(default="", description="Telegram ID супер-админов через запятую")

    @field_validator("BOT_TOKEN")
    @classmethod
    def validate_bot_token(cls, v: str) -> str:
        """Валидация токена бота."""
        if not v:
            raise ValueError("BOT_TOKEN обязателен для работы бота")
        return v

    @computed_field
    @property
    def ADMIN_IDS_LIST(self) -> List[int]:
        """Список ID супер-админов."""
        if not self.ADMIN_IDS:
            return []
        return [int(id_str.strip()) for id_str in self.ADMIN_IDS.split(",") if id_str.strip()]

    # HTTP API
    API_HOST: str = Field(default="0.0.0.0", description="Хост HTTP API")
    API_PORT: int = Field(default=8000, description="Порт HTTP API")
    API_TOKEN_SECRET: str = Field(default="", description="Секрет для подписи bearer-токенов")
    CORS_ORIGIN: str = Field(default="http://localhost:3000", description="Разрешённый origin фронтенда")

    @field_validator("API_TOKEN_SECRET")
    @classmethod
    def validate_token_secret(cls, v: str) -> str:
        if v and len(v) < 16:
            raise ValueError("API_TOKEN_SECRET должен быть не короче 16 символов")
        return v

    # Redis
    REDIS_HOST: str = Field(default="localhost", description="Хост Redis")
    REDIS_PORT: int = Field(default=6379, description="Порт Redis")
    REDIS_DB: int = Field(default=0, description="Номер БД Redis")
    REDIS_PASSWORD: Optional[str] = Field(default=None, description="Пароль Redis")
    REDIS_CACHE_TTL: int = Field(default=300, description="TTL кеша в секундах")

    # Notifications
    NOTIFY_TELEGRAM_ENABLED: bool = Field(default=True, description="Отправлять уведомления в Telegram")
    NOTIFY_IN_APP_ENABLED: bool = Field(default=True, description="Публиковать in-app уведомления в Redis")
    NOTIFY_PARSE_MODE: str = Field(default="Markdown", description="parse_mode для сообщений")
    NOTIFY_SEND_TIMEOUT: float = Field(default=10.0, description="Таймаут одной отправки в секундах")
    NOTIFY_MAX_CONCURRENCY: int = Field(default=5, description="Одновременных отправок (лимит Telegram ~30/сек)")
    NOTIFY_CHANNEL_PREFIX: str = Field(default="notifications:", description="Префикс Redis pub/sub каналов")

    @field_validator("NOTIFY_MAX_CONCURRENCY")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1 or v > 30:
            raise ValueError(f"NOTIFY_MAX_CONCURRENCY должен быть от 1 до 30, получено: {v}")
        return v

    # Pagination
    ORDERS_PER_PAGE: int = Field(default=25, description="Количество заказов на странице")

    # Rate Limiting (лимит на одного пользователя за период)
    RATE_LIMIT_MESSAGE_MAX: int = Field(default=60, description="Максимум сообщений за период (на пользователя)")
    RATE_LIMIT_CALLBACK_MAX: int = Field(default=200, description="Максимум callback за период (на пользователя)")
    RATE_LIMIT_PERIOD: float = Field(default=60.0, description="Период rate limit в секундах")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Уровень логирования")
    LOG_FILE: str = Field(default="bot.log", description="Файл лога (ротация по 10 МБ)")
    POLL_RESTART_SECONDS: float = Field(default=5.0, description="Пауза перед перезапуском polling")
    DEBUG: bool = Field(default=False, description="Режим отладки")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Валидация уровня логирования."""
        v = v.upper()
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if v not in valid_levels:
            raise ValueError(f"Неподдерживаемый уровень логирования: {v}. Допустимые: {valid_levels}")
        return v


# Создаем экземпляр конфигурации с валидацией
try:
    config = Config()
except Exception as e:
    import sys
    print(f"❌ Ошибка загрузки конфигурации: {e}", file=sys.stderr)
    sys.exit(1)
