"""Analytics over a snapshot of messages.

The service knows nothing about the mailbox; it only knows the last list
of messages it was handed. ``update_emails`` replaces that list wholesale,
drops both derived caches and rebuilds the contact map. Statistics and
analytics results are cached under one shared timer and stay valid for
five minutes.

Usage Examples
--------------

    >>> analytics = AnalyticsService()
    >>> analytics.update_emails(await session.get_emails("INBOX", limit=500))
    >>> analytics.get_email_stats().total_emails
    >>> analytics.get_contacts(limit=10)
    >>> analytics.get_volume_trends(days=7)
"""

import math
import statistics
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from mailbridge.core.analytics.models import (
    AttachmentStats,
    ContactRanking,
    EmailAnalytics,
    EmailStats,
    HourActivity,
    ResponseTimeStats,
    TypeCount,
    VolumePoint,
)
from mailbridge.core.models.email import Contact, Message
from mailbridge.core.validation import EmailValidator
from mailbridge.utils.helpers import bytes_to_mb
from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)

CACHE_VALIDITY = timedelta(minutes=5)
TREND_DAYS = 30
TOP_CONTACTS = 10
TOP_HOURS = 10
TOP_ATTACHMENT_TYPES = 5


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class AnalyticsService:
    """Derived statistics, contacts and trends for a message snapshot."""

    def __init__(
        self,
        clock: Callable[[], datetime] = _utc_now,
        cache_validity: timedelta = CACHE_VALIDITY,
    ):
        self._clock = clock
        self.cache_validity = cache_validity
        self.emails: List[Message] = []
        self.contacts: Dict[str, Contact] = {}
        self._stats_cache: Optional[EmailStats] = None
        self._analytics_cache: Optional[EmailAnalytics] = None
        self._last_cache_update: Optional[datetime] = None

    ## Snapshot

    def update_emails(self, emails: List[Message]) -> None:
        """Replace the snapshot and rebuild contacts."""
        logger.debug(f"Updating analytics with {len(emails)} emails")
        self.emails = list(emails)
        self._invalidate_cache()
        self._process_contacts()

    def _invalidate_cache(self) -> None:
        self._stats_cache = None
        self._analytics_cache = None
        self._last_cache_update = None

    def _is_cache_valid(self) -> bool:
        if self._last_cache_update is None:
            return False
        return self._clock() - self._last_cache_update < self.cache_validity

    def _process_contacts(self) -> None:
        self.contacts.clear()

        for email in self.emails:
            when = _aware(email.date)

            sender = EmailValidator.extract_email_address(email.sender)
            if sender:
                self._update_contact(sender, when, received=True, name=EmailValidator.extract_name(email.sender))

            for recipient in email.to:
                address = EmailValidator.extract_email_address(recipient)
                if address:
                    self._update_contact(address, when, received=False, name=EmailValidator.extract_name(recipient))

        logger.debug(f"Processed {len(self.contacts)} contacts")

    def _update_contact(self, address: str, when: datetime, received: bool, name: Optional[str] = None) -> None:
        contact = self.contacts.get(address)
        if contact is None:
            contact = Contact(email=address, first_interaction=when, last_interaction=when, name=name)
            self.contacts[address] = contact
        elif name and not contact.name:
            contact.name = name
        contact.record(when, received=received)

    ## Statistics

    def get_email_stats(self) -> EmailStats:
        """Counts and headline figures for the snapshot (cached)."""
        if self._stats_cache is not None and self._is_cache_valid():
            return self._stats_cache

        logger.debug("Calculating email statistics")

        total = len(self.emails)
        stats = EmailStats(
            total_emails=total,
            unread_emails=sum(1 for e in self.emails if not e.is_read),
            starred_emails=sum(1 for e in self.emails if e.is_starred),
            total_folders=len({e.folder for e in self.emails}),
            total_contacts=len(self.contacts),
        )

        if total:
            timestamps = [_aware(e.date).timestamp() for e in self.emails]
            days = max(1.0, (max(timestamps) - min(timestamps)) / 86400)
            stats.average_emails_per_day = _round_half_up(total / days)

        max_interactions = 0
        for address, contact in self.contacts.items():
            if contact.total_interactions > max_interactions:
                max_interactions = contact.total_interactions
                stats.most_active_contact = address

        max_folder_count = 0
        for folder, count in Counter(e.folder for e in self.emails).items():
            if count > max_folder_count:
                max_folder_count = count
                stats.most_used_folder = folder

        total_bytes = sum(len(e.body or "") + sum(a.size for a in e.attachments) for e in self.emails)
        stats.storage_used_mb = bytes_to_mb(total_bytes)

        self._stats_cache = stats
        self._last_cache_update = self._clock()
        return stats

    ## Analytics

    def get_email_analytics(self) -> EmailAnalytics:
        """Trends, rankings, activity and attachment breakdown (cached)."""
        if self._analytics_cache is not None and self._is_cache_valid():
            return self._analytics_cache

        logger.debug("Calculating email analytics")

        contacts = list(self.contacts.values())
        top_senders = [
            ContactRanking(email=c.email, count=c.emails_received, last_contact=c.last_interaction)
            for c in sorted(
                (c for c in contacts if c.emails_received > 0),
                key=lambda c: c.emails_received,
                reverse=True,
            )[:TOP_CONTACTS]
        ]
        top_recipients = [
            ContactRanking(email=c.email, count=c.emails_sent, last_contact=c.last_interaction)
            for c in sorted(
                (c for c in contacts if c.emails_sent > 0),
                key=lambda c: c.emails_sent,
                reverse=True,
            )[:TOP_CONTACTS]
        ]

        analytics = EmailAnalytics(
            volume_trends=self._calculate_volume_trends(TREND_DAYS),
            top_senders=top_senders,
            top_recipients=top_recipients,
            response_time_stats=self._calculate_response_times(),
            peak_activity_hours=self._calculate_peak_activity_hours(),
            attachment_stats=self._calculate_attachment_stats(),
        )

        self._analytics_cache = analytics
        self._last_cache_update = self._clock()
        return analytics

    def _calculate_volume_trends(self, days: int) -> List[VolumePoint]:
        """One point per UTC day in the trailing window, oldest first.

        Every message counts as received; direction is not inferred.
        """
        today = self._clock().astimezone(timezone.utc).date()
        trends: Dict[str, VolumePoint] = {}
        for offset in range(max(days, 0)):
            day = (today - timedelta(days=offset)).isoformat()
            trends[day] = VolumePoint(date=day)

        for email in self.emails:
            day = _aware(email.date).astimezone(timezone.utc).date().isoformat()
            point = trends.get(day)
            if point is not None:
                point.received += 1

        return sorted(trends.values(), key=lambda p: p.date)

    def _calculate_response_times(self) -> ResponseTimeStats:
        """Hours between each reply and the message it answers."""
        by_message_id = {e.message_id.strip(): e for e in self.emails if e.message_id}

        samples = []
        for email in self.emails:
            if not email.in_reply_to:
                continue
            original = by_message_id.get(email.in_reply_to.strip())
            if original is None or original is email:
                continue
            hours = (_aware(email.date) - _aware(original.date)).total_seconds() / 3600
            if hours >= 0:
                samples.append(hours)

        if not samples:
            return ResponseTimeStats()

        return ResponseTimeStats(
            average=round(statistics.mean(samples), 2),
            median=round(statistics.median(samples), 2),
            fastest=round(min(samples), 2),
            slowest=round(max(samples), 2),
            sample_size=len(samples),
        )

    def _calculate_peak_activity_hours(self) -> List[HourActivity]:
        counts = {hour: 0 for hour in range(24)}
        for email in self.emails:
            counts[_aware(email.date).astimezone().hour] += 1

        ranked = sorted(
            (HourActivity(hour=hour, count=count) for hour, count in counts.items()),
            key=lambda h: h.count,
            reverse=True,
        )
        return ranked[:TOP_HOURS]

    def _calculate_attachment_stats(self) -> AttachmentStats:
        total_attachments = 0
        total_bytes = 0
        type_counts: Counter = Counter()

        for email in self.emails:
            for attachment in email.attachments:
                total_attachments += 1
                total_bytes += attachment.size
                coarse = (attachment.content_type or "").split("/")[0] or "other"
                type_counts[coarse] += 1

        most_common = sorted(
            (TypeCount(type=t, count=c) for t, c in type_counts.items()),
            key=lambda t: t.count,
            reverse=True,
        )[:TOP_ATTACHMENT_TYPES]

        return AttachmentStats(
            total_attachments=total_attachments,
            total_size_mb=bytes_to_mb(total_bytes),
            average_size_mb=bytes_to_mb(total_bytes / total_attachments) if total_attachments else 0.0,
            most_common_types=most_common,
        )

    ## Accessors

    def get_contacts(self, limit: int = 100) -> List[Contact]:
        """Contacts by combined interaction count, descending."""
        ranked = sorted(self.contacts.values(), key=lambda c: c.total_interactions, reverse=True)
        return ranked[: max(limit, 0)]

    def get_volume_trends(self, days: int = TREND_DAYS) -> List[VolumePoint]:
        """Trend window of any length, always computed fresh."""
        return self._calculate_volume_trends(days)

    def clear_cache(self) -> None:
        self._invalidate_cache()
        logger.info("Analytics cache cleared")

    def clear_all(self) -> None:
        self.emails = []
        self.contacts.clear()
        self._invalidate_cache()
        logger.info("All analytics data cleared")
