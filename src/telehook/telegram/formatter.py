"""Webhook payload to Telegram HTML message formatting."""

from __future__ import annotations

import html
import json
from typing import Any


def _pre_json(value: Any) -> str:
    """Render a value as indented JSON inside a <pre> block."""
    text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    return f"<pre>{html.escape(text, quote=False)}</pre>"


def format_webhook_message(payload: dict[str, Any]) -> str:
    """Format a webhook payload for Telegram's HTML parse mode.

    The message text comes first. A non-empty ``data`` mapping is appended
    as JSON; without one, the whole payload is appended instead so no
    field is silently lost.

    Args:
        payload: Alert payload with optional ``message`` and ``data`` keys.

    Returns:
        HTML-formatted message text.
    """
    text = ""

    message = payload.get("message")
    if isinstance(message, str) and message:
        text = f"{message}\n\n"

    data = payload.get("data")
    if isinstance(data, dict) and data:
        text += _pre_json(data)
    elif len(payload) > 1 or (len(payload) == 1 and payload.get("message") is None):
        text += "<b>Payload:</b>\n" + _pre_json(payload)

    return text
