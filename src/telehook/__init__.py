"""Telehook - webhook-to-Telegram alert relay."""

__version__ = "0.1.0"
