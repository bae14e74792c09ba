"""Activity tracking for PMCR-O cycles."""

from .activity_logger import ActivityEvent, ActivityLogger, EventType, new_session_id

__all__ = ["ActivityEvent", "ActivityLogger", "EventType", "new_session_id"]
