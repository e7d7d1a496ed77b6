"""Shared constants for the mailbox and transport clients.

Centralised configuration for:
- IMAP response codes and flags
- Timeout settings
- Protected system folders and path prefixes
- Markers used to recognise folder conflicts in server responses
"""

from enum import Enum


class IMAPResponse(str, Enum):
    "IMAP server response codes."

    OK = "OK"
    NO = "NO"
    BAD = "BAD"


class Timeouts:
    """Timeout settings for email operations (in seconds)."""

    # IMAP
    IMAP_CONNECT = 30.0
    IMAP_COMMAND = 30.0

    # SMTP
    SMTP_CONNECT = 30.0
    SMTP_SEND = 30.0


class IMAPFlags:
    """Standard IMAP flags."""

    SEEN = "\\Seen"
    FLAGGED = "\\Flagged"
    DELETED = "\\Deleted"


class Folders:
    """Standard folder names and path conventions."""

    INBOX = "INBOX"
    LABEL_PREFIX = "Labels/"
    FOLDER_PREFIX = "Folders/"

    # Compared case-insensitively
    PROTECTED = frozenset(
        name.lower()
        for name in ("INBOX", "Sent", "Drafts", "Trash", "Spam", "Archive", "All Mail")
    )

    # LIST attribute -> special-use marker
    SPECIAL_USE = {
        "\\inbox": "inbox",
        "\\sent": "sent",
        "\\drafts": "drafts",
        "\\trash": "trash",
        "\\junk": "spam",
        "\\archive": "archive",
        "\\all": "all",
        "\\flagged": "starred",
    }


class ConflictMarkers:
    """Substrings of server responses that identify folder CRUD conflicts."""

    EXISTS = ("ALREADYEXISTS", "already exists")
    NONEXISTENT = ("NONEXISTENT", "does not exist", "doesn't exist", "no such mailbox")
    NOT_EMPTY = ("HASCHILDREN", "not empty")


class Limits:
    """Default sizes for listings and snapshots."""

    DEFAULT_PAGE = 50
    DEFAULT_SEARCH = 100
    SYNC_BATCH = 100
    ANALYTICS_SNAPSHOT = 500
