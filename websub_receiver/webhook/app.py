"""FastAPI приложение для WebSub callback endpoint."""

from contextlib import asynccontextmanager
from datetime import datetime
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from ..config import settings
from ..integrations.storage import ObjectStore, close_object_store, get_object_store
from ..integrations.telemetry import (
    CurrentSpanAttributeSink,
    SpanAttributeSink,
    instrument_app,
    setup_tracing,
    shutdown_tracing,
)
from ..utils.logger import configure_logging, get_logger
from .handlers import WebSubWebhookHandler

# Настройка логирования
configure_logging()
logger = get_logger(__name__)

SERVICE_VERSION = "1.0.0"

WEBHOOK_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения."""

    logger.info("Starting WebSub receiver", webhook_path=settings.WEBHOOK_PATH)

    # Глобальный провайдер ставится только при реальном запуске,
    # не при импорте модуля
    if app.state.tracing_enabled:
        setup_tracing(
            service_name=settings.SERVICE_NAME,
            otlp_endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
            otlp_headers=settings.OTEL_EXPORTER_OTLP_HEADERS,
            insecure=settings.OTEL_EXPORTER_OTLP_INSECURE,
            console_export=settings.OTEL_CONSOLE_EXPORT
        )

    try:
        yield

    finally:
        logger.info("Shutting down WebSub receiver")
        await close_object_store(app.state.object_store)
        if app.state.tracing_enabled:
            shutdown_tracing()
        logger.info("WebSub receiver stopped")


def create_app(
    object_store: ObjectStore | None = None,
    span_sink: SpanAttributeSink | None = None,
    enable_tracing: bool | None = None
) -> FastAPI:
    """
    Создание FastAPI приложения.

    Args:
        object_store: Хранилище уведомлений (по умолчанию из настроек)
        span_sink: Приемник атрибутов спана (по умолчанию текущий спан)
        enable_tracing: Включить трассировку (по умолчанию TRACING_ENABLED)

    Returns:
        FastAPI: Настроенное приложение
    """

    if enable_tracing is None:
        enable_tracing = settings.TRACING_ENABLED

    app = FastAPI(
        title="WebSub Receiver",
        description="Callback endpoint для подписок WebSub",
        version=SERVICE_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan
    )

    store = object_store if object_store is not None else get_object_store()
    app.state.object_store = store
    app.state.webhook_handler = WebSubWebhookHandler(
        store,
        span_sink if span_sink is not None else CurrentSpanAttributeSink()
    )

    _register_routes(app)

    # Обработчик глобальных ошибок
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Все сбои отдаются с пустым телом."""

        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__
        )

        return Response(status_code=500)

    # Middleware добавляется до старта, провайдер - в lifespan
    app.state.tracing_enabled = enable_tracing
    if enable_tracing:
        instrument_app(app)

    return app


def _register_routes(app: FastAPI) -> None:
    """Регистрация маршрутов."""

    @app.get("/")
    async def root():
        """Корневая страница."""
        return {
            "service": settings.SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "running",
            "timestamp": datetime.now().isoformat()
        }

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""

        try:
            writable = await request.app.state.object_store.check()
            status = "healthy" if writable else "degraded"

            return JSONResponse(
                status_code=200 if status == "healthy" else 503,
                content={
                    "status": status,
                    "timestamp": datetime.now().isoformat(),
                    "services": {
                        "storage": "writable" if writable else "unavailable"
                    }
                }
            )

        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "error": str(e),
                    "timestamp": datetime.now().isoformat()
                }
            )

    @app.get("/ready")
    async def readiness_check(request: Request):
        """Readiness check endpoint."""

        try:
            if not await request.app.state.object_store.check():
                raise Exception("Object store is not writable")

            return JSONResponse(
                status_code=200,
                content={
                    "status": "ready",
                    "timestamp": datetime.now().isoformat()
                }
            )

        except Exception as e:
            logger.error("Readiness check failed", error=str(e))
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "error": str(e),
                    "timestamp": datetime.now().isoformat()
                }
            )

    @app.api_route(settings.WEBHOOK_PATH, methods=WEBHOOK_METHODS)
    async def websub_callback(request: Request) -> Response:
        """
        WebSub callback.

        Подписи доставок хаб не присылает (HMAC не проверяется),
        безопасность обеспечивается секретностью callback URL.
        """

        request_id = f"req_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:8]}"

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            return await request.app.state.webhook_handler.handle(request)


def main() -> None:
    """Запуск сервера."""

    import uvicorn

    logger.info("Starting WebSub receiver server", host=settings.HOST, port=settings.PORT)

    uvicorn.run(
        "websub_receiver.webhook.app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )


app = create_app()


if __name__ == "__main__":
    main()
