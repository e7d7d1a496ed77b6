"""
Tests for MIME parsing and the message model projections
"""
from email.message import EmailMessage

import pytest

from mailbridge.core.email.parser import EmailParser
from mailbridge.core.models.email import Attachment, BulkResult, Message
from mailbridge.utils.errors import MessageParseError
from .test_helpers import BASE_DATE, make_raw


class TestEmailParser:
    """Test parsing raw RFC 822 messages"""

    def test_headers_and_flags(self):
        # Setup
        raw = make_raw(
            subject="Quarterly report",
            to="Bob <bob@example.com>, carol@example.com",
            message_id="<q3@example.com>",
            in_reply_to="<q2@example.com>",
        )

        # Test
        message = EmailParser.parse_from_bytes(raw, "42", "INBOX", ["\\Seen"])

        # Verify
        assert message.id == "42"
        assert message.folder == "INBOX"
        assert message.sender == "Alice <alice@example.com>"
        assert message.to == ["Bob <bob@example.com>", "carol@example.com"]
        assert message.subject == "Quarterly report"
        assert message.date == BASE_DATE
        assert message.message_id == "<q3@example.com>"
        assert message.in_reply_to == "<q2@example.com>"
        assert message.is_read is True
        assert message.is_starred is False

    def test_missing_subject(self):
        msg = EmailMessage()
        msg["From"] = "alice@example.com"
        msg.set_content("no subject here")

        message = EmailParser.parse_from_bytes(msg.as_bytes(), "1", "INBOX")

        assert message.subject == "(No Subject)"

    def test_prefers_plain_text(self):
        msg = EmailMessage()
        msg["From"] = "alice@example.com"
        msg.set_content("plain version")
        msg.add_alternative("<p>html version</p>", subtype="html")

        message = EmailParser.parse_from_bytes(msg.as_bytes(), "1", "INBOX")

        assert message.body.strip() == "plain version"
        assert message.is_html is False

    def test_html_only(self):
        msg = EmailMessage()
        msg["From"] = "alice@example.com"
        msg.set_content("<p>only html</p>", subtype="html")

        message = EmailParser.parse_from_bytes(msg.as_bytes(), "1", "INBOX")

        assert message.is_html is True
        assert "only html" in message.body

    def test_attachments(self):
        message = EmailParser.parse_from_bytes(make_raw(attachment=b"%PDF-1.4"), "1", "INBOX")

        [attachment] = message.attachments
        assert attachment.filename == "report.pdf"
        assert attachment.content_type == "application/pdf"
        assert attachment.size == 8
        assert attachment.content == b"%PDF-1.4"

    def test_empty_input(self):
        with pytest.raises(MessageParseError):
            EmailParser.parse_from_bytes(b"", "1", "INBOX")


class TestMessageModel:
    """Test message projections"""

    @pytest.fixture
    def message(self, sample_attachment):
        return Message(
            id="7",
            sender="alice@example.com",
            to=["bob@example.com"],
            subject="Hi",
            body="word " * 100,
            attachments=[sample_attachment],
        )

    def test_view_strips_content_and_truncates(self, message):
        view = message.to_view(preview_length=20)

        assert view.body.endswith("...")
        assert len(view.body) <= 23
        assert view.attachments[0].content is None
        assert message.attachments[0].content == b"hello"

    def test_view_is_independent_copy(self, message):
        view = message.to_view()
        view.to.append("eve@example.com")
        view.mark_as_read()

        assert message.to == ["bob@example.com"]
        assert message.is_read is False

    def test_to_dict(self, message):
        data = message.to_dict()

        assert data["from"] == "alice@example.com"
        assert data["has_attachment"] is True
        assert "content" not in data["attachments"][0]
        assert data["attachments"][0]["filename"] == "notes.txt"
        assert "cc" not in data

    def test_to_dict_with_content(self, message):
        data = message.to_dict(include_content=True)

        assert data["attachments"][0]["content"] == "aGVsbG8="

    def test_attachment_default_name(self):
        assert Attachment(filename="").filename != ""


class TestBulkResult:
    def test_tallies(self):
        result = BulkResult()
        result.add_success()
        result.add_failure("Email 3 not found")

        assert (result.succeeded, result.failed, result.total) == (1, 1, 2)
        assert result.to_dict()["errors"] == ["Email 3 not found"]
