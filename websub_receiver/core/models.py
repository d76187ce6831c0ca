import time
from collections.abc import Mapping
from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from .validators import extract_channel_id

STORAGE_KEY_SUFFIX = ".xml"


def generate_storage_key(now_ms: int | None = None) -> str:
    """Генерация ключа для XML уведомления.

    Формат: {unix-millis}.{uuid4}.xml

    Уникальность обеспечивает uuid4, метка времени нужна только для
    сортировки и не обязана быть уникальной.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000

    return f"{now_ms}.{uuid4()}{STORAGE_KEY_SUFFIX}"


def _first_value(params: Mapping[str, str], name: str) -> str:
    """Первое значение параметра, при повторах тоже первое."""
    # QueryParams.get у Starlette возвращает последнее значение
    getlist = getattr(params, "getlist", None)
    if getlist is not None:
        values = getlist(name)
        return values[0] if values else ""

    return params.get(name) or ""


class SubscriptionVerificationRequest(BaseModel):
    """Параметры запроса подтверждения подписки от хаба."""

    challenge: str = Field(..., min_length=1, description="Токен hub.challenge")
    mode: str = Field(default="", description="hub.mode (subscribe/unsubscribe/...)")
    lease_seconds: str = Field(default="", description="hub.lease_seconds как строка")
    topic: str = Field(default="", description="hub.topic (percent-encoded URL)")

    @computed_field
    @property
    def channel_id(self) -> str:
        """channel_id из строки запроса топика."""
        return extract_channel_id(self.topic)

    @classmethod
    def from_query_params(
        cls,
        params: Mapping[str, str]
    ) -> "SubscriptionVerificationRequest | None":
        """
        Построение запроса из query параметров.

        Args:
            params: Параметры строки запроса

        Returns:
            SubscriptionVerificationRequest | None: None если нет hub.challenge
        """
        challenge = _first_value(params, "hub.challenge")
        if not challenge:
            return None

        return cls(
            challenge=challenge,
            mode=_first_value(params, "hub.mode"),
            lease_seconds=_first_value(params, "hub.lease_seconds"),
            topic=_first_value(params, "hub.topic")
        )

    def span_attributes(self) -> dict[str, str]:
        """Атрибуты для текущего спана."""
        return {
            "mode": self.mode,
            "lease_seconds": self.lease_seconds,
            "channel_id": self.channel_id
        }


class StoredObject(BaseModel):
    """Подтверждение записи объекта в хранилище."""

    key: str = Field(..., description="Ключ объекта")
    size: int = Field(default=0, description="Размер в байтах")
    stored_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Время записи (UTC)"
    )
