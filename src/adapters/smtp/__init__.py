"""Notification adapters."""

from .console import ConsoleNotificationChannel

__all__ = ["ConsoleNotificationChannel"]
