"""Кастомные исключения приемника."""


class WebSubReceiverError(Exception):
    """Базовое исключение для всех ошибок сервиса."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(WebSubReceiverError):
    """Ошибка конфигурации."""
    pass


class StorageError(WebSubReceiverError):
    """Ошибка объектного хранилища."""
    pass


class StorageWriteError(StorageError):
    """Запись объекта не подтверждена хранилищем."""
    pass
