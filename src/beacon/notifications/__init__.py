"""Downstream notification delivery: webhooks and Web Push."""

from beacon.notifications.push import PushNotificationService, VapidConfig, build_event_payload
from beacon.notifications.webhooks import (
    WebhookDeliveryError,
    WebhookTarget,
    dispatch_webhooks,
    send_webhook,
    validate_webhook_url,
)

__all__ = [
    "PushNotificationService",
    "VapidConfig",
    "build_event_payload",
    "WebhookDeliveryError",
    "WebhookTarget",
    "dispatch_webhooks",
    "send_webhook",
    "validate_webhook_url",
]
