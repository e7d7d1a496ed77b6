"""Email domain models"""

import base64
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from mailbridge.utils.helpers import PREVIEW_LENGTH, truncate_body

DEFAULT_ATTACHMENT_NAME = "unnamed"


@dataclass
class Attachment:
    """Attachment descriptor; ``content`` is only populated in full-detail views."""

    filename: str = DEFAULT_ATTACHMENT_NAME
    content_type: str = "application/octet-stream"
    size: int = 0
    content: Optional[bytes] = None
    content_id: Optional[str] = None

    def __post_init__(self):
        if not self.filename:
            self.filename = DEFAULT_ATTACHMENT_NAME

    def without_content(self) -> "Attachment":
        return replace(self, content=None)

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        data = {
            "filename": self.filename,
            "content_type": self.content_type,
            "size": self.size,
        }
        if self.content_id:
            data["content_id"] = self.content_id
        if include_content and self.content is not None:
            data["content"] = base64.b64encode(self.content).decode("ascii")
        return data


@dataclass
class Message:
    """A message as last observed on the server.

    ``id`` is the server UID, which is only unique within ``folder``.
    ``folder`` always holds the message's last known container.
    """

    id: str
    sender: str
    to: List[str] = field(default_factory=list)
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""
    is_html: bool = False
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    folder: str = "INBOX"
    is_read: bool = False
    is_starred: bool = False
    attachments: List[Attachment] = field(default_factory=list)
    message_id: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: List[str] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def has_attachment(self) -> bool:
        return len(self.attachments) > 0

    def mark_as_read(self, is_read: bool = True) -> None:
        self.is_read = is_read

    def star(self, is_starred: bool = True) -> None:
        self.is_starred = is_starred

    def move_to(self, folder: str) -> None:
        self.folder = folder

    def to_view(self, preview_length: int = PREVIEW_LENGTH) -> "Message":
        """Return the list/search projection: truncated body, no attachment content."""
        return replace(
            self,
            body=truncate_body(self.body, preview_length),
            attachments=[a.without_content() for a in self.attachments],
            to=list(self.to),
            cc=list(self.cc),
            bcc=list(self.bcc),
            references=list(self.references),
            headers=dict(self.headers),
        )

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        """Convert Message to a JSON-ready dictionary.

        Args:
            include_content: Include base64 attachment content when present

        Returns:
            dict: The dictionary representation of the Message.
        """
        data = {
            "id": self.id,
            "from": self.sender,
            "to": list(self.to),
            "subject": self.subject,
            "body": self.body,
            "is_html": self.is_html,
            "date": self.date.isoformat(),
            "folder": self.folder,
            "is_read": self.is_read,
            "is_starred": self.is_starred,
            "has_attachment": self.has_attachment,
            "attachments": [a.to_dict(include_content) for a in self.attachments],
        }
        if self.cc:
            data["cc"] = list(self.cc)
        if self.bcc:
            data["bcc"] = list(self.bcc)
        if self.message_id:
            data["message_id"] = self.message_id
        if self.in_reply_to:
            data["in_reply_to"] = self.in_reply_to
        if self.references:
            data["references"] = list(self.references)
        return data


@dataclass
class Folder:
    """A mailbox folder; ``path`` is the addressing unit."""

    name: str
    path: str
    total_messages: int = 0
    unread_messages: int = 0
    special_use: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "path": self.path,
            "total_messages": self.total_messages,
            "unread_messages": self.unread_messages,
        }
        if self.special_use:
            data["special_use"] = self.special_use
        return data


@dataclass
class Contact:
    """Interaction tallies for one address, derived from a message snapshot."""

    email: str
    first_interaction: datetime
    last_interaction: datetime
    name: Optional[str] = None
    emails_sent: int = 0
    emails_received: int = 0

    @property
    def total_interactions(self) -> int:
        return self.emails_sent + self.emails_received

    def record(self, when: datetime, received: bool) -> None:
        """Fold one interaction into the tallies, widening the time span."""
        if received:
            self.emails_received += 1
        else:
            self.emails_sent += 1
        if when < self.first_interaction:
            self.first_interaction = when
        if when > self.last_interaction:
            self.last_interaction = when

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "email": self.email,
            "emails_sent": self.emails_sent,
            "emails_received": self.emails_received,
            "first_interaction": self.first_interaction.isoformat(),
            "last_interaction": self.last_interaction.isoformat(),
        }
        if self.name:
            data["name"] = self.name
        return data


@dataclass
class SearchOptions:
    """Structured search filter; every criterion is optional.

    Defaults: folder ``INBOX``, limit 100, no other criteria.
    """

    folder: str = "INBOX"
    query: Optional[str] = None
    sender: Optional[str] = None
    to: Optional[str] = None
    subject: Optional[str] = None
    has_attachment: Optional[bool] = None
    is_read: Optional[bool] = None
    is_starred: Optional[bool] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    limit: int = 100


@dataclass
class SendOptions:
    """An outbound message.

    ``to``/``cc``/``bcc`` accept a comma-separated string or a list.
    ``priority`` is one of ``high``, ``normal`` or ``low``.
    """

    to: Union[str, List[str]]
    subject: str
    body: str
    cc: Union[str, List[str], None] = None
    bcc: Union[str, List[str], None] = None
    is_html: bool = False
    priority: str = "normal"
    reply_to: Optional[str] = None
    in_reply_to: Optional[str] = None
    references: List[str] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    attachments: List[Attachment] = field(default_factory=list)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.message_id:
            data["message_id"] = self.message_id
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class BulkResult:
    """Aggregate outcome of a bulk mutation."""

    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def add_success(self) -> None:
        self.succeeded += 1

    def add_failure(self, message: str) -> None:
        self.failed += 1
        self.errors.append(message)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": list(self.errors),
        }
