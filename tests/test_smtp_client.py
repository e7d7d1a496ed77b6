"""
Tests for the SMTP transmission client
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiosmtplib
import pytest

from mailbridge.core.email.smtp.client import TEST_SUBJECT, TransmissionClient, is_transient_error
from mailbridge.core.models.email import Attachment, SendOptions
from mailbridge.utils.config import SMTPConfig
from mailbridge.utils.errors import (
    InvalidEmailAddressError,
    InvalidParameterError,
    MissingRequiredFieldError,
    SMTPError,
)


def make_smtp_mock():
    """An aiosmtplib.SMTP stand-in usable as an async context manager"""
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    client.connect = AsyncMock()
    client.quit = AsyncMock()
    client.send_message = AsyncMock(return_value=({}, "OK"))
    return client


@pytest.fixture
def smtp_mock():
    return make_smtp_mock()


@pytest.fixture
def client(smtp_mock):
    config = SMTPConfig(host="smtp.example.com", port=587, username="me@example.com", password="secret")
    return TransmissionClient(config, client_factory=lambda: smtp_mock, retry_delay=0)


def sent_message(smtp_mock):
    return smtp_mock.send_message.call_args[0][0]


class TestTransientErrors:
    """Test retry classification"""

    @pytest.mark.parametrize("code", [421, 450, 451, 452])
    def test_transient_codes(self, code):
        assert is_transient_error(aiosmtplib.SMTPResponseException(code, "try later"))

    def test_permanent_code(self):
        assert not is_transient_error(aiosmtplib.SMTPResponseException(550, "no such user"))

    def test_network_errors(self):
        assert is_transient_error(aiosmtplib.SMTPServerDisconnected("gone"))
        assert is_transient_error(ConnectionResetError())
        assert is_transient_error(asyncio.TimeoutError())

    def test_other_errors(self):
        assert not is_transient_error(ValueError("bad"))


class TestSendEmail:
    """Test sending through the transport"""

    @pytest.mark.asyncio
    async def test_send_success(self, client, smtp_mock):
        """Test basic email sending success"""
        # Setup
        options = SendOptions(to="bob@example.com", subject="Hi", body="Hello Bob")

        # Test
        result = await client.send_email(options)

        # Verify
        assert result.success is True
        assert result.message_id.startswith("<")
        smtp_mock.send_message.assert_awaited_once()
        msg = sent_message(smtp_mock)
        assert msg["From"] == "me@example.com"
        assert msg["To"] == "bob@example.com"
        assert msg["Subject"] == "Hi"
        assert msg["Message-ID"] == result.message_id
        assert client.emails_sent == 1

    @pytest.mark.asyncio
    async def test_cc_and_bcc_recipients(self, client, smtp_mock):
        """Test BCC recipients receive the message but are not in the headers"""
        # Setup
        options = SendOptions(
            to="bob@example.com, carol@example.com",
            cc=["dave@example.com"],
            bcc="eve@example.com",
            subject="Team",
            body="Hello all",
        )

        # Test
        await client.send_email(options)

        # Verify
        recipients = smtp_mock.send_message.call_args.kwargs["recipients"]
        assert recipients == ["bob@example.com", "carol@example.com", "dave@example.com", "eve@example.com"]
        msg = sent_message(smtp_mock)
        assert msg["Cc"] == "dave@example.com"
        assert msg["Bcc"] is None

    @pytest.mark.asyncio
    async def test_missing_recipient(self, client, smtp_mock):
        """Test a send with no valid recipient is rejected before dispatch"""
        with pytest.raises(MissingRequiredFieldError):
            await client.send_email(SendOptions(to="not-an-address", subject="Hi", body="x"))

        smtp_mock.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_recipient(self, client, smtp_mock):
        """Test a malformed recipient in a list is rejected"""
        with pytest.raises(InvalidEmailAddressError):
            await client.send_email(SendOptions(to=["bob@@example"], subject="Hi", body="x"))

        smtp_mock.send_message.assert_not_called()

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, client, smtp_mock):
        """Test a 421 response is retried and the send succeeds"""
        # Setup
        smtp_mock.send_message.side_effect = [
            aiosmtplib.SMTPResponseException(421, "Service not available"),
            ({}, "OK"),
        ]

        # Test
        result = await client.send_email(SendOptions(to="bob@example.com", subject="Hi", body="x"))

        # Verify
        assert result.success is True
        assert smtp_mock.send_message.await_count == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_is_reported(self, client, smtp_mock):
        """Test a permanent rejection returns a failed result after one attempt"""
        # Setup
        smtp_mock.send_message.side_effect = aiosmtplib.SMTPResponseException(550, "Mailbox rejected")

        # Test
        result = await client.send_email(SendOptions(to="bob@example.com", subject="Hi", body="x"))

        # Verify
        assert result.success is False
        assert "Mailbox rejected" in result.error
        assert smtp_mock.send_message.await_count == 1
        assert client.send_failures == 1

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client, smtp_mock):
        """Test a transport that keeps dropping fails after max_retries attempts"""
        smtp_mock.send_message.side_effect = aiosmtplib.SMTPServerDisconnected("Connection lost")

        result = await client.send_email(SendOptions(to="bob@example.com", subject="Hi", body="x"))

        assert result.success is False
        assert smtp_mock.send_message.await_count == 3

    @pytest.mark.asyncio
    async def test_send_test_email(self, client, smtp_mock):
        """Test the test email is an HTML message with the fixed subject"""
        result = await client.send_test_email("bob@example.com")

        assert result.success is True
        msg = sent_message(smtp_mock)
        assert msg["Subject"] == TEST_SUBJECT
        assert msg.get_content_subtype() == "html"
        assert "me@example.com" in msg.get_content()

    @pytest.mark.asyncio
    async def test_send_after_close(self, client):
        """Test sending on a closed client raises"""
        await client.close()

        with pytest.raises(SMTPError):
            await client.send_email(SendOptions(to="bob@example.com", subject="Hi", body="x"))


class TestBuildMessage:
    """Test MIME composition"""

    def test_high_priority_headers(self, client):
        msg = client.build_message(SendOptions(to="bob@example.com", subject="Urgent", body="x", priority="high"))

        assert msg["X-Priority"] == "1 (Highest)"
        assert msg["Importance"] == "High"

    def test_normal_priority_has_no_headers(self, client):
        msg = client.build_message(SendOptions(to="bob@example.com", subject="Hi", body="x"))

        assert msg["X-Priority"] is None

    def test_invalid_priority(self, client):
        with pytest.raises(InvalidParameterError):
            client.build_message(SendOptions(to="bob@example.com", subject="Hi", body="x", priority="urgent"))

    def test_reply_headers(self, client):
        msg = client.build_message(
            SendOptions(
                to="bob@example.com",
                subject="Re: Hi",
                body="x",
                reply_to="team@example.com",
                in_reply_to="<abc@example.com>",
                references=["<root@example.com>", "<abc@example.com>"],
            )
        )

        assert msg["Reply-To"] == "team@example.com"
        assert msg["In-Reply-To"] == "<abc@example.com>"
        assert msg["References"] == "<root@example.com> <abc@example.com>"

    def test_html_body_with_attachment(self, client):
        # Setup
        attachment = Attachment(filename="report.pdf", content_type="application/pdf", size=3, content=b"PDF")

        # Test
        msg = client.build_message(
            SendOptions(to="bob@example.com", subject="Report", body="<p>See attached</p>", is_html=True,
                        attachments=[attachment])
        )

        # Verify
        assert msg.is_multipart()
        body = msg.get_body(preferencelist=("html",))
        assert "See attached" in body.get_content()
        [part] = list(msg.iter_attachments())
        assert part.get_filename() == "report.pdf"
        assert part.get_content() == b"PDF"


class TestVerifyConnection:
    """Test connection verification and status"""

    @pytest.mark.asyncio
    async def test_verify_success(self, client, smtp_mock):
        assert await client.verify_connection() is True

        smtp_mock.connect.assert_awaited_once()
        smtp_mock.quit.assert_awaited_once()
        status = client.status()
        assert status["connected"] is True
        assert status["host"] == "smtp.example.com"
        assert status["last_check"] is not None
        assert "error" not in status

    @pytest.mark.asyncio
    async def test_verify_failure(self, client, smtp_mock):
        smtp_mock.connect.side_effect = aiosmtplib.SMTPAuthenticationError(535, "Authentication failed")

        with pytest.raises(SMTPError):
            await client.verify_connection()

        status = client.status()
        assert status["connected"] is False
        assert "Authentication failed" in status["error"]

    @pytest.mark.asyncio
    async def test_close_marks_disconnected(self, client):
        await client.verify_connection()
        await client.close()
        await client.close()

        assert client.status()["connected"] is False
