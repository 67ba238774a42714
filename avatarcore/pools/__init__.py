from .connection_manager import ThreadSafeConnectionManager
from .event_broadcaster import EventBroadcaster
from .job_manager import Job, JobManager
from .periodic import PeriodicTask
from .session_manager import AvatarConfig, AvatarSession, ThreadSafeSessionManager
from .session_metrics import PerformanceSnapshot, ThreadSafeSessionMetrics

__all__ = [
    "AvatarConfig",
    "AvatarSession",
    "EventBroadcaster",
    "Job",
    "JobManager",
    "PerformanceSnapshot",
    "PeriodicTask",
    "ThreadSafeConnectionManager",
    "ThreadSafeSessionManager",
    "ThreadSafeSessionMetrics",
]
