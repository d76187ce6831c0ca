from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Конфигурация WebSub приемника."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    SERVICE_NAME: str = Field(
        default="websub-receiver", description="Имя сервиса для логов и трассировки"
    )

    # Webhook endpoint
    WEBHOOK_PATH: str = Field(
        default="/websub/callback",
        description="Путь callback URL, зарегистрированного в хабе"
    )
    HOST: str = Field(default="0.0.0.0", description="Адрес для uvicorn")
    PORT: int = Field(default=8000, description="Порт для uvicorn")

    # Хранилище уведомлений
    STORAGE_BACKEND: str = Field(
        default="filesystem", description="Бэкенд хранилища: filesystem или memory"
    )
    STORAGE_PATH: str = Field(
        default="data/notifications", description="Каталог для XML уведомлений"
    )
    STORAGE_CHUNK_SIZE: int = Field(
        default=65536, description="Размер блока при потоковой записи"
    )

    # OpenTelemetry
    TRACING_ENABLED: bool = Field(
        default=True, description="Включить трассировку запросов"
    )
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = Field(
        default=None, description="OTLP gRPC endpoint экспортера"
    )
    OTEL_EXPORTER_OTLP_HEADERS: str | None = Field(
        default=None, description="Заголовки экспортера (ключи доступа) в формате k=v,k2=v2"
    )
    OTEL_EXPORTER_OTLP_INSECURE: bool = Field(
        default=False, description="Соединение с экспортером без TLS"
    )
    OTEL_CONSOLE_EXPORT: bool = Field(
        default=False, description="Дублировать спаны в консоль"
    )

    # Логирование
    LOG_LEVEL: str = Field(default="INFO", description="Уровень логирования")
    LOG_FORMAT: str = Field(default="json", description="Формат логов")

    # Debug режим
    DEBUG: bool = Field(default=False, description="Режим отладки")


def get_settings() -> Settings:
    """Получение настроек."""
    return Settings()


# Настройки создаются только при первом обращении к атрибуту
class LazySettings:
    _instance = None

    def __getattr__(self, name):
        if self._instance is None:
            self._instance = Settings()
        return getattr(self._instance, name)

    def reset(self) -> None:
        """Сброс кэша, следующее обращение перечитает окружение."""
        self._instance = None


settings = LazySettings()
