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

    # Database (используется только сервером доставки)
    DB_DIALECT: str = Field(default="sqlite", description="Тип БД: postgres или sqlite")
    DB_POOL_SIZE: int = Field(default=10, description="Размер пула соединений PostgreSQL")
    DB_MAX_OVERFLOW: int = Field(default=10, description="Доп. соединений поверх pool_size")
    DB_USER: str = Field(default="postgres", description="Пользователь БД")
    DB_PASS: str = Field(default="postgres", description="Пароль БД")
    DB_HOST: str = Field(default="localhost", description="Хост БД")
    DB_PORT: str = Field(default="5432", description="Порт БД")
    DB_NAME: str = Field(default="delivery", description="Имя БД")
    SQLITE_PATH: str = Field(default="delivery.sqlite3", description="Путь к SQLite файлу")
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
        """URL подключения к БД. Если задан DATABASE_URL, используем его."""
        raw = self.DATABASE_URL_OVERRIDE
        if raw:
            raw = raw.strip()
            # postgresql://... → для asyncpg нужен postgresql+asyncpg://
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

    # Delivery API server
    API_HOST: str = Field(default="0.0.0.0", description="Адрес, на котором слушает сервер доставки")
    API_PORT: int = Field(default=8080, description="Порт сервера доставки")

    # Delivery API client (бот курьера)
    DELIVERY_API_URL: str = Field(default="http://localhost:8080", description="Базовый URL сервера доставки")
    DELIVERY_API_PATH: str = Field(default="/delivery", description="Путь эндпоинта доставки")
    ADMIN_ID: str = Field(default="", description="Идентификатор администратора, передаётся в X-Admin-ID")
    HTTP_TIMEOUT: float = Field(default=10.0, description="Таймаут HTTP-запросов к серверу доставки в секундах")
    LOCATION_PERMISSION_TIMEOUT: float = Field(
        default=120.0,
        description="Сколько секунд ждать, пока курьер поделится геопозицией"
    )

    @field_validator("HTTP_TIMEOUT", "LOCATION_PERMISSION_TIMEOUT")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        """Таймауты должны быть положительными."""
        if v <= 0:
            raise ValueError("Таймаут должен быть положительным числом")
        return v

    # Bot
    BOT_TOKEN: str = Field(default="", description="Токен Telegram бота")
    COURIER_IDS: str = Field(default="", description="Telegram ID курьеров через запятую (пусто: все)")

    @computed_field
    @property
    def COURIER_IDS_LIST(self) -> List[int]:
        """Список Telegram ID курьеров."""
        if not self.COURIER_IDS:
            return []
        return [int(id_str.strip()) for id_str in self.COURIER_IDS.split(",") if id_str.strip()]

    # Redis (FSM storage бота)
    REDIS_HOST: str = Field(default="localhost", description="Хост Redis")
    REDIS_PORT: int = Field(default=6379, description="Порт Redis")
    REDIS_DB: int = Field(default=0, description="Номер БД Redis")
    REDIS_PASSWORD: Optional[str] = Field(default=None, description="Пароль Redis")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Уровень логирования")
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
