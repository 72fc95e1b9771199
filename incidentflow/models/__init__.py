"""SQLAlchemy models package."""

from .base import Base
from .user import User
from .incident import Incident, IncidentStatus, SeverityLevel
from .incident_log import IncidentLog
from .comment import Comment

__all__ = [
    "Base",
    "User",
    "Incident",
    "IncidentStatus",
    "SeverityLevel",
    "IncidentLog",
    "Comment",
]
