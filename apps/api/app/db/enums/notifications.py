"""Notification enums."""

from enum import Enum


class NotificationType(str, Enum):
    """In-app notification kinds."""

    MENTION = "MENTION"
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
