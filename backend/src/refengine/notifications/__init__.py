"""Notification dispatch."""

from refengine.notifications.service import Notifier

__all__ = ["Notifier"]
