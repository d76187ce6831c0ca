"""Разбор и проверка входных данных WebSub."""

from urllib.parse import parse_qs, unquote, urlsplit


def extract_channel_id(topic: str | None) -> str:
    """Извлечение channel_id из hub.topic.

    Топик приходит как percent-encoded URL, у которого в собственной строке
    запроса лежит channel_id:

        https%3A%2F%2Fwww.youtube.com%2Ffeeds%2Fvideos.xml%3Fchannel_id%3DUC123

    Функция никогда не бросает исключений: пустой топик, невалидный URL или
    отсутствующий параметр дают пустую строку.
    """
    if not topic:
        return ""

    try:
        # Битые escape-последовательности (неполный UTF-8) - невалидный топик.
        # UnicodeDecodeError наследует ValueError
        parsed = urlsplit(unquote(topic, errors="strict"))
        # Допускаем только абсолютные URL
        if not parsed.scheme or not parsed.netloc:
            return ""

        values = parse_qs(
            parsed.query, keep_blank_values=True, errors="strict"
        ).get("channel_id")
    except (ValueError, TypeError):
        return ""

    return values[0] if values else ""


def validate_storage_key(key: str) -> bool:
    """Проверка, что ключ объекта - один сегмент пути без разделителей."""
    if not key or key in (".", ".."):
        return False

    if "/" in key or "\\" in key or "\x00" in key:
        return False

    return True
