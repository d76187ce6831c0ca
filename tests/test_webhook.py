"""Тесты WebSub callback endpoint."""

import importlib
from unittest.mock import AsyncMock, Mock, patch
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from websub_receiver.config import settings
from websub_receiver.core.exceptions import StorageWriteError
from websub_receiver.integrations.storage import MemoryObjectStore, ObjectStore
from websub_receiver.integrations.telemetry import SpanAttributeSink
from websub_receiver.webhook.app import create_app
from websub_receiver.webhook.handlers import WebSubWebhookHandler

FEED = (
    b"<?xml version='1.0' encoding='UTF-8'?>"
    b"<feed xmlns:yt='http://www.youtube.com/xml/schemas/2015' xmlns='http://www.w3.org/2005/Atom'>"
    b"<entry><yt:videoId>dQw4w9WgXcQ</yt:videoId><title>\xd0\xbf\xd1\x80\xd0\xb8\xd0\xb2\xd0\xb5\xd1\x82</title></entry>"
    b"</feed>"
)


@pytest.fixture
def object_store():
    """Хранилище в памяти."""
    return MemoryObjectStore()


@pytest.fixture
def span_sink():
    """Мок приемника атрибутов."""
    return Mock(spec=SpanAttributeSink)


@pytest.fixture
def path():
    return settings.WEBHOOK_PATH


def make_client(store, sink=None):
    app = create_app(object_store=store, span_sink=sink, enable_tracing=False)
    return TestClient(app)


@pytest.fixture
def client(object_store, span_sink):
    """Клиент приложения с моками."""
    return make_client(object_store, span_sink)


class TestVerification:
    """Тесты подтверждения подписки (GET)."""

    def test_echoes_challenge(self, client, path, span_sink):
        """hub.challenge возвращается без изменений."""
        response = client.get(path, params={
            "hub.challenge": "14942345067138744453",
            "hub.mode": "subscribe",
            "hub.lease_seconds": "432000",
        })

        assert response.status_code == 200
        assert response.content == b"14942345067138744453"
        assert response.headers["content-type"].startswith("text/plain")

    def test_echoes_challenge_byte_for_byte(self, client, path):
        """Спецсимволы и юникод не преобразуются."""
        challenge = "a+b c/=&?Ω"
        response = client.get(f"{path}?hub.challenge={quote(challenge, safe='')}")

        assert response.status_code == 200
        assert response.content == challenge.encode("utf-8")

    def test_missing_challenge(self, client, path, span_sink):
        """Без hub.challenge - 400 с пустым телом."""
        response = client.get(path, params={"hub.mode": "subscribe", "hub.topic": "https://example.com"})

        assert response.status_code == 400
        assert response.content == b""
        span_sink.set_attributes.assert_not_called()

    def test_empty_challenge(self, client, path):
        """Пустой hub.challenge - тоже 400."""
        response = client.get(f"{path}?hub.challenge=&hub.mode=subscribe")

        assert response.status_code == 400
        assert response.content == b""

    def test_records_span_attributes(self, client, path, span_sink):
        """mode, lease_seconds и channel_id записываются в спан."""
        topic = quote("https://example.com/feed?channel_id=ABC123", safe="")
        response = client.get(
            f"{path}?hub.challenge=abc&hub.mode=subscribe&hub.lease_seconds=86400&hub.topic={topic}"
        )

        assert response.status_code == 200
        span_sink.set_attributes.assert_called_once_with({
            "mode": "subscribe",
            "lease_seconds": "86400",
            "channel_id": "ABC123",
        })

    def test_missing_optional_params(self, client, path, span_sink):
        """Отсутствующие параметры записываются пустыми строками."""
        response = client.get(path, params={"hub.challenge": "abc"})

        assert response.status_code == 200
        span_sink.set_attributes.assert_called_once_with({
            "mode": "",
            "lease_seconds": "",
            "channel_id": "",
        })

    def test_invalid_topic_still_verifies(self, client, path, span_sink):
        """Невалидный топик не ломает подтверждение."""
        response = client.get(path, params={"hub.challenge": "abc", "hub.topic": "not a url"})

        assert response.status_code == 200
        assert response.content == b"abc"
        assert span_sink.set_attributes.call_args.args[0]["channel_id"] == ""

    def test_default_sink_without_tracing(self, object_store, path):
        """Приемник текущего спана без активной трассировки не влияет на ответ."""
        client = make_client(object_store)

        response = client.get(path, params={"hub.challenge": "abc"})

        assert response.status_code == 200
        assert response.content == b"abc"

    def test_does_not_store_anything(self, client, path, object_store):
        """GET ничего не пишет в хранилище."""
        client.get(path, params={"hub.challenge": "abc"})

        assert len(object_store) == 0

    def test_failing_sink_does_not_affect_response(self, object_store, path):
        """Сбой приемника атрибутов не меняет ответ хабу."""
        sink = Mock(spec=SpanAttributeSink)
        sink.set_attributes.side_effect = RuntimeError("exporter down")

        response = make_client(object_store, sink).get(path, params={"hub.challenge": "t"})

        assert response.status_code == 200
        assert response.content == b"t"
        sink.set_attributes.assert_called_once()

    def test_repeated_challenge_first_wins(self, client, path, span_sink):
        """При повторе параметров берется первое значение."""
        response = client.get(
            f"{path}?hub.challenge=first&hub.challenge=second"
            f"&hub.mode=subscribe&hub.mode=unsubscribe"
        )

        assert response.status_code == 200
        assert response.content == b"first"
        assert span_sink.set_attributes.call_args.args[0]["mode"] == "subscribe"

    def test_malformed_topic_escape(self, client, path, span_sink):
        """Битая escape-последовательность в топике - пустой channel_id."""
        topic = quote("https://example.com/feed?channel_id=AB%E0%A4%A", safe="")
        response = client.get(f"{path}?hub.challenge=abc&hub.topic={topic}")

        assert response.status_code == 200
        assert response.content == b"abc"
        assert span_sink.set_attributes.call_args.args[0]["channel_id"] == ""


class TestNotification:
    """Тесты приема уведомлений (POST)."""

    def test_stores_body(self, client, path, object_store):
        """Тело сохраняется побайтово под новым ключом."""
        response = client.post(path, content=FEED, headers={"Content-Type": "application/atom+xml"})

        assert response.status_code == 200
        assert response.content == b""
        assert len(object_store) == 1

        key = object_store.keys()[0]
        assert key.endswith(".xml")
        assert object_store.get(key) == FEED

    def test_distinct_keys_for_repeated_delivery(self, client, path, object_store):
        """Повторная доставка того же тела - отдельный объект."""
        client.post(path, content=FEED)
        client.post(path, content=FEED)

        keys = object_store.keys()
        assert len(keys) == 2
        assert keys[0] != keys[1]

    def test_distinct_keys_in_same_millisecond(self, object_store, path):
        """Одинаковая метка времени не приводит к коллизии."""
        from websub_receiver.core.models import generate_storage_key

        app = create_app(object_store=object_store, enable_tracing=False)
        app.state.webhook_handler.key_factory = lambda: generate_storage_key(now_ms=1700000000000)
        client = TestClient(app)

        client.post(path, content=b"<feed>1</feed>")
        client.post(path, content=b"<feed>2</feed>")

        keys = sorted(object_store.keys())
        assert len(keys) == 2
        assert all(key.startswith("1700000000000.") for key in keys)

    def test_empty_body(self, client, path, object_store):
        """Пустое тело тоже сохраняется."""
        response = client.post(path)

        assert response.status_code == 200
        assert object_store.get(object_store.keys()[0]) == b""

    def test_storage_failure(self, path):
        """Ошибка записи - 500 с пустым телом."""
        store = Mock(spec=ObjectStore)
        store.put = AsyncMock(side_effect=StorageWriteError("disk full", {"key": "k"}))

        response = make_client(store).post(path, content=FEED)

        assert response.status_code == 500
        assert response.content == b""
        store.put.assert_awaited_once()

    def test_no_confirmation(self, path):
        """Хранилище не подтвердило запись - 500."""
        store = Mock(spec=ObjectStore)
        store.put = AsyncMock(return_value=None)

        response = make_client(store).post(path, content=FEED)

        assert response.status_code == 500
        assert response.content == b""

    def test_unexpected_store_error(self, path):
        """Неожиданная ошибка хранилища - тоже 500, без повтора."""
        store = Mock(spec=ObjectStore)
        store.put = AsyncMock(side_effect=RuntimeError("connection reset"))

        response = make_client(store).post(path, content=FEED)

        assert response.status_code == 500
        assert response.content == b""
        assert store.put.await_count == 1


class TestOtherMethods:
    """Тесты неподдерживаемых методов."""

    @pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH", "OPTIONS"])
    def test_method_not_allowed(self, client, path, object_store, method):
        """Прочие методы - 405 с пустым телом, без записи."""
        response = client.request(method, path, content=FEED)

        assert response.status_code == 405
        assert response.content == b""
        assert len(object_store) == 0

    def test_head_not_allowed(self, client, path):
        """HEAD тоже отклоняется."""
        response = client.head(path)

        assert response.status_code == 405


class TestHandlerDirect:
    """Тесты обработчика без HTTP слоя."""

    def test_default_sink_is_noop(self, object_store):
        """Без приемника используется no-op."""
        handler = WebSubWebhookHandler(object_store)

        handler.span_sink.set_attributes({"mode": "subscribe"})

    @pytest.mark.asyncio
    async def test_unknown_method(self, object_store):
        """Метод проверяется до чтения тела."""
        request = Mock()
        request.method = "TRACE"

        response = await WebSubWebhookHandler(object_store).handle(request)

        assert response.status_code == 405
        request.stream.assert_not_called()


class TestServiceEndpoints:
    """Тесты служебных endpoint."""

    def test_root(self, client):
        """Информация о сервисе."""
        data = client.get("/").json()

        assert data["service"] == settings.SERVICE_NAME
        assert data["status"] == "running"

    def test_health(self, client):
        """Хранилище доступно - healthy."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_degraded(self):
        """Хранилище недоступно - 503 degraded."""
        store = Mock(spec=ObjectStore)
        store.check = AsyncMock(return_value=False)

        response = make_client(store).get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    def test_health_error(self):
        """Ошибка проверки - 503 unhealthy."""
        store = Mock(spec=ObjectStore)
        store.check = AsyncMock(side_effect=RuntimeError("boom"))

        response = make_client(store).get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    def test_ready(self, client):
        """Готовность."""
        assert client.get("/ready").status_code == 200

    def test_not_ready(self):
        """Хранилище недоступно - 503."""
        store = Mock(spec=ObjectStore)
        store.check = AsyncMock(return_value=False)

        response = make_client(store).get("/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestLifecycle:
    """Тесты жизненного цикла приложения."""

    def test_injected_store_closed_on_shutdown(self):
        """Переданное хранилище закрывается при остановке."""
        store = Mock(spec=ObjectStore)
        store.close = AsyncMock()
        app = create_app(object_store=store, enable_tracing=False)

        with TestClient(app):
            store.close.assert_not_awaited()

        store.close.assert_awaited_once()

    def test_tracing_installed_on_startup_not_on_create(self, object_store):
        """Глобальный провайдер ставится в lifespan, а не при создании приложения."""
        app_module = importlib.import_module("websub_receiver.webhook.app")

        with patch.object(app_module, "setup_tracing") as setup_mock, \
                patch.object(app_module, "shutdown_tracing") as shutdown_mock:
            app = create_app(object_store=object_store, enable_tracing=True)
            setup_mock.assert_not_called()

            with TestClient(app):
                setup_mock.assert_called_once()
                shutdown_mock.assert_not_called()

            shutdown_mock.assert_called_once()

    def test_tracing_disabled_skips_provider(self, object_store):
        """Без трассировки провайдер не трогается."""
        app_module = importlib.import_module("websub_receiver.webhook.app")

        with patch.object(app_module, "setup_tracing") as setup_mock, \
                patch.object(app_module, "shutdown_tracing") as shutdown_mock:
            with TestClient(create_app(object_store=object_store, enable_tracing=False)):
                pass

        setup_mock.assert_not_called()
        shutdown_mock.assert_not_called()
