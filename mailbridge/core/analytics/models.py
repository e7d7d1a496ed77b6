"""Result types produced by the analytics service."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List


@dataclass
class EmailStats:
    total_emails: int = 0
    unread_emails: int = 0
    starred_emails: int = 0
    total_folders: int = 0
    total_contacts: int = 0
    average_emails_per_day: int = 0
    most_active_contact: str = "N/A"
    most_used_folder: str = "INBOX"
    storage_used_mb: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VolumePoint:
    """Message counts for one UTC calendar day (``YYYY-MM-DD``)."""

    date: str
    received: int = 0
    sent: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ContactRanking:
    email: str
    count: int
    last_contact: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"email": self.email, "count": self.count, "last_contact": self.last_contact.isoformat()}


@dataclass
class ResponseTimeStats:
    """Reply latency in hours, measured over reply pairs in the snapshot."""

    average: float = 0.0
    median: float = 0.0
    fastest: float = 0.0
    slowest: float = 0.0
    sample_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HourActivity:
    hour: int
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TypeCount:
    type: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AttachmentStats:
    total_attachments: int = 0
    total_size_mb: float = 0.0
    average_size_mb: float = 0.0
    most_common_types: List[TypeCount] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EmailAnalytics:
    volume_trends: List[VolumePoint] = field(default_factory=list)
    top_senders: List[ContactRanking] = field(default_factory=list)
    top_recipients: List[ContactRanking] = field(default_factory=list)
    response_time_stats: ResponseTimeStats = field(default_factory=ResponseTimeStats)
    peak_activity_hours: List[HourActivity] = field(default_factory=list)
    attachment_stats: AttachmentStats = field(default_factory=AttachmentStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "volume_trends": [p.to_dict() for p in self.volume_trends],
            "top_senders": [r.to_dict() for r in self.top_senders],
            "top_recipients": [r.to_dict() for r in self.top_recipients],
            "response_time_stats": self.response_time_stats.to_dict(),
            "peak_activity_hours": [h.to_dict() for h in self.peak_activity_hours],
            "attachment_stats": self.attachment_stats.to_dict(),
        }
