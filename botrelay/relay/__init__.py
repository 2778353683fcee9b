"""Outbound relay to bot automation webhooks."""

from .webhook import RelayResult, WebhookRelay, extract_reply

__all__ = ["RelayResult", "WebhookRelay", "extract_reply"]
