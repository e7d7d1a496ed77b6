"""Raw message parsing.

Turns the RFC 822 bytes and flags returned by a FETCH into a ``Message``.
"""

import email
from email import policy
from email.message import EmailMessage
from email.utils import getaddresses
from typing import Iterable, List, Optional

from mailbridge.core.email.constants import IMAPFlags
from mailbridge.core.models.email import Attachment, Message
from mailbridge.utils.errors import MailBridgeError, MessageParseError
from mailbridge.utils.helpers import parse_date
from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)

NO_SUBJECT = "(No Subject)"


class EmailParser:
    """Parse MIME email messages into ``Message`` objects"""

    @staticmethod
    def parse_from_bytes(
        raw_email: bytes,
        uid: str,
        folder: str,
        flags: Iterable[str] = (),
    ) -> Message:
        """Parse raw email bytes.

        Args:
            raw_email: RFC 822 message
            uid: Server UID
            folder: Folder the message was fetched from
            flags: IMAP flags reported alongside the message

        Returns:
            Parsed Message

        Raises:
            MessageParseError: If the bytes cannot be parsed
        """
        if not raw_email:
            raise MessageParseError(f"Empty message body for UID {uid}")

        try:
            parsed = email.message_from_bytes(bytes(raw_email), policy=policy.default)
            return EmailParser._to_message(parsed, uid, folder, set(flags))

        except MailBridgeError:
            raise

        except Exception as e:
            raise MessageParseError(
                f"Failed to parse email {uid}", details={"error": str(e)}
            ) from e

    @staticmethod
    def _to_message(
        parsed: EmailMessage, uid: str, folder: str, flags: set
    ) -> Message:
        body, is_html = EmailParser._extract_body(parsed)
        date = parse_date(parsed.get("Date"))

        message = Message(
            id=str(uid),
            sender=EmailParser._header(parsed, "From"),
            to=EmailParser._addresses(parsed, "To"),
            cc=EmailParser._addresses(parsed, "Cc"),
            bcc=EmailParser._addresses(parsed, "Bcc"),
            subject=EmailParser._header(parsed, "Subject") or NO_SUBJECT,
            body=body,
            is_html=is_html,
            folder=folder,
            is_read=IMAPFlags.SEEN in flags,
            is_starred=IMAPFlags.FLAGGED in flags,
            attachments=EmailParser._extract_attachments(parsed),
            message_id=EmailParser._header(parsed, "Message-ID") or None,
            in_reply_to=EmailParser._header(parsed, "In-Reply-To") or None,
            references=EmailParser._header(parsed, "References").split(),
        )
        if date is not None:
            message.date = date
        return message

    @staticmethod
    def _header(parsed: EmailMessage, name: str) -> str:
        value = parsed.get(name)
        return str(value).strip() if value is not None else ""

    @staticmethod
    def _addresses(parsed: EmailMessage, name: str) -> List[str]:
        values = parsed.get_all(name) or []
        addresses = []
        for display, address in getaddresses([str(v) for v in values]):
            if not address:
                continue
            addresses.append(f"{display} <{address}>" if display else address)
        return addresses

    @staticmethod
    def _extract_body(parsed: EmailMessage):
        """Prefer text/plain, fall back to text/html."""
        part: Optional[EmailMessage] = parsed.get_body(preferencelist=("plain", "html"))
        if part is None:
            return "", False

        try:
            content = part.get_content()
        except (LookupError, UnicodeDecodeError):
            payload = part.get_payload(decode=True) or b""
            content = payload.decode("utf-8", errors="replace")

        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        return content, part.get_content_type() == "text/html"

    @staticmethod
    def _extract_attachments(parsed: EmailMessage) -> List[Attachment]:
        attachments = []
        for part in parsed.iter_attachments():
            payload = part.get_payload(decode=True) or b""
            content_id = part.get("Content-ID")
            attachments.append(
                Attachment(
                    filename=part.get_filename() or "",
                    content_type=part.get_content_type(),
                    size=len(payload),
                    content=payload,
                    content_id=str(content_id).strip("<> ") if content_id else None,
                )
            )
        return attachments
