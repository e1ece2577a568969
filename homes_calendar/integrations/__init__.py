"""
External calendar integrations.

Google Calendar and ICS subscriptions are imported read-only into a
child's calendar; see ``reconcile`` for how upstream events become rows.
"""

from homes_calendar.integrations.base import ExternalEvent, SourceSyncer, SyncResult

__all__ = ["ExternalEvent", "SourceSyncer", "SyncResult"]
