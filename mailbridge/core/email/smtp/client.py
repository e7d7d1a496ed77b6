"""SMTP client for sending emails via the outbound transport"""

import asyncio
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Callable, Dict, List, Optional, Union

import aiosmtplib

from mailbridge.core.email.constants import Timeouts
from mailbridge.core.models.email import SendOptions, SendResult
from mailbridge.core.validation import EmailValidator
from mailbridge.utils.config import SMTPConfig
from mailbridge.utils.errors import (
    InvalidParameterError,
    MissingRequiredFieldError,
    SMTPError,
    format_error_message,
)
from mailbridge.utils.helpers import format_bytes, retry, sanitize_for_log
from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)

LOCAL_HOSTS = ("localhost", "127.0.0.1", "::1")

TRANSIENT_ERRORS = [
    421,  # Service not available, closing transmission channel
    450,  # Mailbox unavailable (e.g. busy)
    451,  # Local error in processing
    452,  # Insufficient system storage
]

PRIORITY_HEADERS = {
    "high": {"X-Priority": "1 (Highest)", "X-MSMail-Priority": "High", "Importance": "High"},
    "normal": {},
    "low": {"X-Priority": "5 (Lowest)", "X-MSMail-Priority": "Low", "Importance": "Low"},
}

TEST_SUBJECT = "Test Email from mailbridge"
TEST_BODY = """
<h2>Test Email Successful!</h2>
<p>This is a test email from the mailbridge server.</p>
<p><strong>Timestamp:</strong> {timestamp}</p>
<p><strong>From:</strong> {sender}</p>
<p>If you received this email, your SMTP configuration is working correctly.</p>
"""


def is_transient_error(error: BaseException) -> bool:
    """Check if an error is transient and worth retrying."""
    if isinstance(error, aiosmtplib.SMTPResponseException):
        return error.code in TRANSIENT_ERRORS

    if isinstance(
        error,
        (aiosmtplib.SMTPServerDisconnected, aiosmtplib.SMTPConnectError, ConnectionError, asyncio.TimeoutError),
    ):
        return True

    return False


class TransmissionClient:
    """Composes outbound messages and hands them to the SMTP transport."""

    def __init__(
        self,
        config: SMTPConfig,
        client_factory: Optional[Callable[[], aiosmtplib.SMTP]] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """Initialise the client.

        Args:
            config: SMTP settings
            client_factory: Builds an unconnected aiosmtplib client
            max_retries: Attempts per send for transient errors
            retry_delay: Initial backoff in seconds
        """
        self.config = config
        self._client_factory = client_factory or self._create_client
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._closed = False
        self.connected = False
        self.last_check: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.emails_sent = 0
        self.send_failures = 0

    def _create_client(self) -> aiosmtplib.SMTP:
        local = self.config.host in LOCAL_HOSTS
        return aiosmtplib.SMTP(
            hostname=self.config.host,
            port=self.config.port,
            username=self.config.username or None,
            password=self.config.password or None,
            use_tls=self.config.secure,
            # Local bridges require STARTTLS with a self-signed certificate
            start_tls=True if local and not self.config.secure else None,
            validate_certs=not local,
            timeout=Timeouts.SMTP_CONNECT,
        )

    def _ensure_open(self) -> None:
        if self._closed:
            raise SMTPError("SMTP transporter not initialized")

    ## Verification

    async def verify_connection(self) -> bool:
        """Connect and authenticate once, recording the outcome.

        Raises:
            SMTPError: If the server cannot be reached or rejects the login
        """
        self._ensure_open()
        logger.debug("Verifying SMTP connection")
        self.last_check = datetime.now(timezone.utc)

        client = self._client_factory()
        try:
            await asyncio.wait_for(client.connect(), timeout=Timeouts.SMTP_CONNECT)
            await client.quit()
        except Exception as e:
            self.connected = False
            self.last_error = str(e)
            logger.error("SMTP connection verification failed", extra={"data": {"error": str(e)}})
            raise SMTPError(
                f"SMTP connection verification failed: {e}",
                details={"host": self.config.host, "port": self.config.port},
            ) from e

        self.connected = True
        self.last_error = None
        logger.info("SMTP connection verified successfully")
        return True

    def status(self) -> Dict:
        status = {
            "connected": self.connected and not self._closed,
            "host": self.config.host,
            "port": self.config.port,
            "last_check": self.last_check.isoformat() if self.last_check else None,
        }
        if self.last_error:
            status["error"] = self.last_error
        return status

    ## Sending

    @staticmethod
    def _addresses(value: Union[str, List[str], None]) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            return EmailValidator.parse_emails(value)
        return [str(v).strip() for v in value if str(v).strip()]

    def build_message(self, options: SendOptions) -> EmailMessage:
        """Compose the MIME message for ``options`` (recipients already validated)."""
        priority = (options.priority or "normal").lower()
        if priority not in PRIORITY_HEADERS:
            raise InvalidParameterError(
                f"Invalid priority: {options.priority}", details={"allowed": list(PRIORITY_HEADERS)}
            )

        to = self._addresses(options.to)
        cc = self._addresses(options.cc)
        sender = self.config.username
        domain = sender.split("@", 1)[1] if "@" in sender else None

        msg = EmailMessage()
        msg["From"] = sender
        msg["To"] = ", ".join(to)
        if cc:
            msg["Cc"] = ", ".join(cc)
        msg["Subject"] = options.subject or ""
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=domain)

        if options.reply_to:
            msg["Reply-To"] = options.reply_to
        if options.in_reply_to:
            msg["In-Reply-To"] = options.in_reply_to
        if options.references:
            msg["References"] = " ".join(options.references)

        for name, value in {**PRIORITY_HEADERS[priority], **(options.headers or {})}.items():
            if name in msg:
                msg.replace_header(name, value)
            else:
                msg[name] = value

        if options.is_html:
            msg.set_content(options.body or "", subtype="html")
        else:
            msg.set_content(options.body or "")

        for attachment in options.attachments:
            maintype, _, subtype = (attachment.content_type or "application/octet-stream").partition("/")
            msg.add_attachment(
                attachment.content or b"",
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
                cid=f"<{attachment.content_id}>" if attachment.content_id else None,
            )

        return msg

    async def send_email(self, options: SendOptions) -> SendResult:
        """Validate recipients, compose and send.

        Raises:
            MissingRequiredFieldError: If there is no ``to`` recipient
            InvalidEmailAddressError: If any recipient is malformed
            InvalidParameterError: If the priority is unknown

        Returns:
            SendResult; transport failures are reported here, not raised
        """
        self._ensure_open()
        to = self._addresses(options.to)
        cc = self._addresses(options.cc)
        bcc = self._addresses(options.bcc)

        logger.debug("Sending email", extra={"data": {"to": to, "subject": sanitize_for_log(options.subject, 50)}})

        if not to:
            raise MissingRequiredFieldError("At least one recipient is required")

        recipients = [EmailValidator.validate_recipient(address) for address in to + cc + bcc]
        message = self.build_message(options)
        if options.attachments:
            total = sum(len(attachment.content or b"") for attachment in options.attachments)
            logger.debug(f"Attaching {len(options.attachments)} file(s), {format_bytes(total)}")

        async def deliver():
            client = self._client_factory()
            async with client:
                return await asyncio.wait_for(
                    client.send_message(message, recipients=recipients),
                    timeout=Timeouts.SMTP_SEND,
                )

        try:
            await retry(
                deliver,
                max_retries=self.max_retries,
                delay=self.retry_delay,
                retry_if=is_transient_error,
            )
        except Exception as e:
            error = format_error_message(e)
            self.send_failures += 1
            self.last_error = error
            logger.error("Failed to send email", extra={"data": {"recipients": recipients, "error": error}})
            return SendResult(success=False, error=error)

        self.emails_sent += 1
        message_id = message["Message-ID"]
        logger.info("Email sent successfully", extra={"data": {"message_id": message_id}})
        return SendResult(success=True, message_id=message_id)

    async def send_test_email(self, to: str, custom_message: Optional[str] = None) -> SendResult:
        logger.debug("Sending test email", extra={"data": {"to": to}})
        body = custom_message or TEST_BODY.format(
            timestamp=datetime.now(timezone.utc).isoformat(), sender=self.config.username
        )
        return await self.send_email(SendOptions(to=to, subject=TEST_SUBJECT, body=body, is_html=True))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.connected = False
        logger.info("SMTP transporter closed")
