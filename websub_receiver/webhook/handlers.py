"""Обработчик WebSub callback запросов."""

from collections.abc import Callable

from fastapi import Request, Response
from starlette.requests import ClientDisconnect

from ..core.exceptions import StorageError
from ..core.models import SubscriptionVerificationRequest, generate_storage_key
from ..integrations.storage import ObjectStore
from ..integrations.telemetry import NoopSpanAttributeSink, SpanAttributeSink
from ..utils.logger import get_logger

logger = get_logger(__name__)


class WebSubWebhookHandler:
    """
    Прием WebSub callback запросов.

    GET - подтверждение подписки (эхо hub.challenge), POST - сохранение
    уведомления в хранилище, остальные методы - 405. Состояния между
    запросами нет.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        span_sink: SpanAttributeSink | None = None,
        key_factory: Callable[[], str] = generate_storage_key
    ):
        self.object_store = object_store
        self.span_sink = span_sink if span_sink is not None else NoopSpanAttributeSink()
        self.key_factory = key_factory

    async def handle(self, request: Request) -> Response:
        """Маршрутизация по HTTP методу."""

        if request.method == "GET":
            return await self.handle_verification(request)

        if request.method == "POST":
            return await self.handle_notification(request)

        logger.debug("Method not allowed", method=request.method)
        return Response(status_code=405)

    async def handle_verification(self, request: Request) -> Response:
        """
        Подтверждение подписки.

        Хаб проверяет callback, сравнивая тело ответа с отправленным
        hub.challenge, поэтому токен возвращается без изменений.
        """

        verification = SubscriptionVerificationRequest.from_query_params(
            request.query_params
        )
        if verification is None:
            return Response(status_code=400)

        attributes = verification.span_attributes()
        try:
            self.span_sink.set_attributes(attributes)
        except Exception as e:
            # Аннотация спана не влияет на ответ хабу
            logger.warning(
                "Span attribute sink failed",
                sink=type(self.span_sink).__name__,
                error=str(e),
                error_type=type(e).__name__
            )

        logger.info("Subscription verification", **attributes)

        return Response(
            content=verification.challenge,
            status_code=200,
            media_type="text/plain"
        )

    async def handle_notification(self, request: Request) -> Response:
        """
        Сохранение уведомления.

        Тело пишется в хранилище потоком под новым ключом. Повторов нет:
        при ошибке возвращаем 500, хаб повторит доставку сам.
        """

        key = self.key_factory()

        try:
            stored = await self.object_store.put(key, request.stream())

        except ClientDisconnect:
            logger.warning("Client disconnected during upload", key=key)
            raise

        except StorageError as e:
            logger.error(
                "Failed to store notification",
                key=key,
                error=e.message,
                details=e.details
            )
            return Response(status_code=500)

        except Exception as e:
            logger.error(
                "Unexpected error storing notification",
                key=key,
                error=str(e),
                error_type=type(e).__name__
            )
            return Response(status_code=500)

        if not stored:
            logger.error("Object store returned no confirmation", key=key)
            return Response(status_code=500)

        logger.info("Created notification object", key=stored.key, size=stored.size)
        return Response(status_code=200)
