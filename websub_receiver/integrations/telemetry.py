"""OpenTelemetry трассировка и атрибуты спанов.

Обработчик webhook не обращается к глобальному контексту трассировки
напрямую: атрибуты передаются через SpanAttributeSink, по умолчанию no-op.
"""

from abc import ABC, abstractmethod

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer

from ..utils.logger import get_logger

logger = get_logger(__name__)

# Провайдер, установленный setup_tracing
_provider: TracerProvider | None = None


class SpanAttributeSink(ABC):
    """Приемник строковых атрибутов для текущего спана."""

    @abstractmethod
    def set_attributes(self, attributes: dict[str, str]) -> None:
        """Запись атрибутов. Не должна влиять на обработку запроса."""


class NoopSpanAttributeSink(SpanAttributeSink):
    """Ничего не записывает."""

    def set_attributes(self, attributes: dict[str, str]) -> None:
        return None


class CurrentSpanAttributeSink(SpanAttributeSink):
    """Записывает атрибуты в активный OpenTelemetry спан, если он есть."""

    def set_attributes(self, attributes: dict[str, str]) -> None:
        try:
            span = trace.get_current_span()
            if not span.is_recording():
                return

            for key, value in attributes.items():
                span.set_attribute(key, value)

        except Exception as e:
            # Аннотация спана необязательна
            logger.warning(
                "Failed to set span attributes",
                attributes=list(attributes),
                error=str(e),
                error_type=type(e).__name__
            )


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    """
    Разбор заголовков экспортера.

    Args:
        raw: Строка вида "x-api-key=secret,x-dataset=websub"

    Returns:
        dict[str, str]: Заголовки, некорректные пары пропускаются
    """
    headers: dict[str, str] = {}
    if not raw:
        return headers

    for pair in raw.split(","):
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            logger.warning("Skipping malformed OTLP header", header=name or pair.strip())
            continue
        headers[name.lower()] = value.strip()

    return headers


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    otlp_headers: str | None = None,
    insecure: bool = False,
    console_export: bool = False,
) -> Tracer:
    """
    Инициализация OpenTelemetry трассировки.

    Args:
        service_name: Имя сервиса в трейсах
        otlp_endpoint: OTLP gRPC endpoint, без него спаны не экспортируются
        otlp_headers: Заголовки экспортера с ключами доступа
        insecure: Соединение без TLS
        console_export: Дублировать спаны в консоль

    Returns:
        Tracer: Настроенный tracer
    """
    global _provider

    resource = Resource.create({SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        exporter = OTLPSpanExporter(
            endpoint=otlp_endpoint,
            headers=parse_otlp_headers(otlp_headers),
            insecure=insecure
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
        logger.info("OTLP span exporter configured", endpoint=otlp_endpoint)

    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _provider = provider

    return provider.get_tracer(service_name)


def instrument_app(app: FastAPI) -> None:
    """Серверный спан на каждый запрос к приложению.

    Провайдер берется из глобального прокси, поэтому setup_tracing можно
    вызвать позже, при старте приложения.
    """
    FastAPIInstrumentor.instrument_app(app)
    logger.info("OpenTelemetry instrumentation enabled")


def shutdown_tracing() -> None:
    """Сброс буферов и остановка провайдера."""
    global _provider

    if _provider is not None:
        _provider.shutdown()
        _provider = None
