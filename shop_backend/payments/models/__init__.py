from .webhook_event import WebhookEvent

__all__ = ["WebhookEvent"]
