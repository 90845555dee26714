"""Collaborators the engine talks to: notification scheduling and audit logging."""

from habitcore.integrations.audit import AuditLogger, DatabaseAuditLogger, InMemoryAuditLogger
from habitcore.integrations.notifications import InMemoryNotificationScheduler, NotificationScheduler

__all__ = [
    "AuditLogger",
    "DatabaseAuditLogger",
    "InMemoryAuditLogger",
    "InMemoryNotificationScheduler",
    "NotificationScheduler",
]
