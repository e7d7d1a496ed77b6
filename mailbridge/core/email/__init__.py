"""Email protocol handling for IMAP, SMTP, and parsing.

This module provides:
- IMAP: MailboxSession (fetch, search, flag, move, delete, folder CRUD)
- SMTP: TransmissionClient (compose and send with retry for transient errors)
- Parser: Parse RFC822 email messages into Message objects

Usage Examples
----------------

Read the newest messages:
    >>> from mailbridge.core.email.imap import MailboxSession
    >>>
    >>> session = MailboxSession()
    >>> await session.connect("localhost", 1143, "me@proton.me", "bridge-password")
    >>> emails = await session.get_emails("INBOX", limit=20)

Send email via SMTP:
    >>> from mailbridge.core.email.smtp import TransmissionClient
    >>>
    >>> smtp = TransmissionClient(config.smtp)
    >>> await smtp.send_email(SendOptions(to="user@proton.me", subject="Hi", body="Hello"))

Notes
-----
- All network operations are asynchronous and require 'await'
- A dropped IMAP connection is re-established once per operation
- Malformed emails are logged and skipped
"""

from .imap import MailboxSession
from .parser import EmailParser
from .smtp import TransmissionClient

__all__ = [
    "EmailParser",
    "MailboxSession",
    "TransmissionClient",
]
