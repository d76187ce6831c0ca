"""WebSub callback endpoint: подтверждение подписки и прием уведомлений."""

from .app import app, create_app
from .handlers import WebSubWebhookHandler

__all__ = [
    "app",
    "create_app",
    "WebSubWebhookHandler"
]
