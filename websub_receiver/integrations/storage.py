"""Объектное хранилище для входящих WebSub уведомлений."""

import asyncio
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path

from ..config import settings
from ..core.exceptions import ConfigurationError, StorageWriteError
from ..core.models import StoredObject
from ..core.validators import validate_storage_key
from ..utils.logger import get_logger

logger = get_logger(__name__)

Body = bytes | AsyncIterable[bytes]


async def iter_chunks(body: Body) -> AsyncIterator[bytes]:
    """Единый поток блоков для bytes и асинхронных источников."""
    if isinstance(body, (bytes, bytearray, memoryview)):
        if body:
            yield bytes(body)
        return

    async for chunk in body:
        if chunk:
            yield chunk


def _discard(path: Path) -> None:
    """Удаление недописанного временного файла."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to remove partial object", path=str(path), error=str(e))


class ObjectStore(ABC):
    """Хранилище blob объектов по ключу."""

    @abstractmethod
    async def put(self, key: str, body: Body) -> StoredObject | None:
        """
        Запись объекта.

        Args:
            key: Ключ объекта
            body: Содержимое, bytes или асинхронный поток блоков

        Returns:
            StoredObject | None: Подтверждение записи

        Raises:
            StorageWriteError: При ошибке записи
        """

    @abstractmethod
    async def check(self) -> bool:
        """Готово ли хранилище принимать записи."""

    async def close(self) -> None:
        """Освобождение ресурсов."""
        return None


class FileSystemObjectStore(ObjectStore):
    """Хранилище в локальном каталоге, один файл на объект.

    Тело пишется блоками во временный файл `.{key}.part` и атомарно
    переименовывается в `{key}` после полной записи. Блокирующий I/O
    выполняется в отдельном потоке.
    """

    def __init__(self, root: str | Path, chunk_size: int = 65536):
        self.root = Path(root)
        self.chunk_size = chunk_size

    def _path_for(self, key: str) -> Path:
        if not validate_storage_key(key):
            raise StorageWriteError(f"Invalid storage key: {key!r}", {"key": key})
        return self.root / key

    async def put(self, key: str, body: Body) -> StoredObject | None:
        target = self._path_for(key)
        tmp = target.with_name(f".{target.name}.part")
        size = 0
        published = False

        try:
            await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)
            handle = await asyncio.to_thread(tmp.open, "xb", buffering=self.chunk_size)
            try:
                async for chunk in iter_chunks(body):
                    await asyncio.to_thread(handle.write, chunk)
                    size += len(chunk)
                await asyncio.to_thread(handle.flush)
                await asyncio.to_thread(os.fsync, handle.fileno())
            finally:
                await asyncio.to_thread(handle.close)

            await asyncio.to_thread(os.replace, tmp, target)
            published = True

        except OSError as e:
            logger.error(
                "Failed to write object",
                key=key,
                path=str(target),
                error=str(e),
                error_type=type(e).__name__
            )
            raise StorageWriteError(
                f"Failed to write object {key}: {e}",
                {"key": key, "path": str(target)}
            ) from e

        finally:
            if not published:
                _discard(tmp)

        logger.debug("Object written", key=key, size=size, path=str(target))
        return StoredObject(key=key, size=size)

    async def check(self) -> bool:
        def _writable() -> bool:
            self.root.mkdir(parents=True, exist_ok=True)
            return os.access(self.root, os.W_OK)

        try:
            return await asyncio.to_thread(_writable)
        except OSError as e:
            logger.warning("Storage root is not available", path=str(self.root), error=str(e))
            return False


class MemoryObjectStore(ObjectStore):
    """Хранилище в памяти процесса. Для разработки и тестов."""

    def __init__(self):
        self._objects: dict[str, bytes] = {}

    async def put(self, key: str, body: Body) -> StoredObject | None:
        if not validate_storage_key(key):
            raise StorageWriteError(f"Invalid storage key: {key!r}", {"key": key})

        data = bytearray()
        async for chunk in iter_chunks(body):
            data.extend(chunk)

        self._objects[key] = bytes(data)
        return StoredObject(key=key, size=len(data))

    async def check(self) -> bool:
        return True

    def get(self, key: str) -> bytes | None:
        return self._objects.get(key)

    def keys(self) -> list[str]:
        return list(self._objects)

    def __len__(self) -> int:
        return len(self._objects)


def create_object_store() -> ObjectStore:
    """Создание хранилища согласно STORAGE_BACKEND."""
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "filesystem":
        return FileSystemObjectStore(settings.STORAGE_PATH, settings.STORAGE_CHUNK_SIZE)

    if backend == "memory":
        return MemoryObjectStore()

    raise ConfigurationError(
        f"Unknown storage backend: {settings.STORAGE_BACKEND}",
        {"backend": settings.STORAGE_BACKEND}
    )


# Глобальный экземпляр хранилища
_object_store: ObjectStore | None = None


def get_object_store() -> ObjectStore:
    """Получение глобального хранилища."""
    global _object_store

    if _object_store is None:
        _object_store = create_object_store()
        logger.info(
            "Object store initialized",
            backend=type(_object_store).__name__
        )

    return _object_store


async def close_object_store(store: ObjectStore | None = None) -> None:
    """
    Закрытие хранилища.

    Args:
        store: Хранилище приложения, по умолчанию глобальное
    """
    global _object_store

    if store is None:
        store = _object_store

    if store is None:
        return

    await store.close()
    if store is _object_store:
        _object_store = None
