"""Notification helpers for delivering sync results to external channels."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol

import requests

from .models import RunResult

logger = logging.getLogger(__name__)

MAX_LISTINGS_PER_MESSAGE = 5


class Notifier(Protocol):
    """Protocol defining the notifier contract."""

    def send(self, message: str) -> None:
        ...


@dataclass
class SlackNotifier:
    """Send messages to Slack via Incoming Webhook."""

    webhook_url: str
    timeout: int = 10

    def send(self, message: str) -> None:
        payload = {"text": message}
        response = requests.post(
            self.webhook_url,
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()


@dataclass
class CompositeNotifier:
    """Fan-out notifier that forwards messages to multiple channels."""

    notifiers: List[Notifier]

    def send(self, message: str) -> None:
        for notifier in self.notifiers:
            try:
                notifier.send(message)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to deliver notification via %s", type(notifier).__name__)


def build_notifier_from_env() -> CompositeNotifier | None:
    """Construct a notifier from environment configuration."""
    notifiers: list[Notifier] = []

    slack_webhook = (os.getenv("SLACK_WEBHOOK") or "").strip()
    if slack_webhook:
        notifiers.append(SlackNotifier(webhook_url=slack_webhook))

    if not notifiers:
        return None
    return CompositeNotifier(notifiers=notifiers)


def format_notifications(result: RunResult) -> List[str]:
    """Render a sync result into notification payloads."""
    if not result.success:
        return [f":x: Listing sync failed\nError: {result.error}"]
    if result.dry_run or result.added <= 0:
        return []

    shown = result.new_listings[: min(result.added, MAX_LISTINGS_PER_MESSAGE)]
    lines = [f":new: {result.added} new listing(s) added"]
    lines.extend(_summarize_listing(listing) for listing in shown)
    remaining = result.added - len(shown)
    if remaining > 0:
        lines.append(f"...and {remaining} more")
    return ["\n".join(lines)]


def _summarize_listing(listing: Dict[str, Any]) -> str:
    fields = listing.get("properties", listing)
    title = fields.get("title") or fields.get("listingId")
    price = _format_price(fields.get("price"))
    bedrooms = fields.get("bedrooms")
    layout = f"{bedrooms} bd" if bedrooms is not None else "N/A"
    return f"- {title} | {price} | {layout} | {fields.get('url') or ''}"


def _format_price(price: Any) -> str:
    if isinstance(price, (int, float)) and not isinstance(price, bool):
        return f"${price:,.0f}"
    return "N/A"


__all__ = [
    "CompositeNotifier",
    "Notifier",
    "SlackNotifier",
    "build_notifier_from_env",
    "format_notifications",
]
