"""
Tests for the tool handlers, exercised end to end through the registry

The mailbox is the in-memory fake from the shared fixtures; the SMTP
transport is mocked.
"""
import base64
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from mailbridge.core.analytics import AnalyticsService
from mailbridge.core.models.email import BulkResult, SendResult
from mailbridge.server.handlers import (
    MailToolHandlers,
    decode_attachments,
    format_bulk_summary,
    label_path,
    register_tools,
)
from mailbridge.server.tools import ToolRegistry
from mailbridge.utils.config import FeaturesConfig
from mailbridge.utils.errors import InvalidParameterError
from mailbridge.utils.logging import LogManager, get_logger
from .test_helpers import make_raw


@pytest.fixture
def transmission():
    transmission = MagicMock()
    transmission.send_email = AsyncMock(return_value=SendResult(success=True, message_id="<abc@example.com>"))
    transmission.send_test_email = AsyncMock(return_value=SendResult(success=True, message_id="<t@example.com>"))
    transmission.status = MagicMock(return_value={"connected": True, "host": "smtp.example.com", "port": 587})
    return transmission


@pytest.fixture
def log_manager():
    manager = LogManager(buffer_size=50, console=False)
    yield manager
    manager.close()


@pytest.fixture
def features():
    return FeaturesConfig()


@pytest.fixture
def handlers(session, transmission, log_manager, features):
    return MailToolHandlers(session, transmission, AnalyticsService(), log_manager, features=features)


@pytest.fixture
def registry(handlers):
    return register_tools(ToolRegistry(), handlers)


async def call(registry, name, **arguments):
    return await registry.dispatch(name, arguments)


async def call_json(registry, name, **arguments):
    result = await call(registry, name, **arguments)
    return json.loads(result.text)


class TestHelpers:
    """Test the module-level helpers"""

    def test_bulk_summary_lists_first_errors(self):
        # Setup
        result = BulkResult()
        result.add_success()
        for i in range(12):
            result.add_failure(f"Email {i} not found")

        # Test
        text = format_bulk_summary("Bulk move", result)

        # Verify
        assert text.startswith("Bulk move completed: 1 succeeded, 12 failed\n\nErrors:\n")
        assert "Email 9 not found" in text
        assert "Email 10 not found" not in text
        assert text.endswith("\n... and 2 more")

    def test_bulk_summary_without_errors(self):
        result = BulkResult()
        result.add_success()

        assert format_bulk_summary("Bulk delete", result) == "Bulk delete completed: 1 succeeded, 0 failed"

    def test_decode_attachments(self):
        [attachment] = decode_attachments([
            {"filename": "a.txt", "content": base64.b64encode(b"hello").decode(), "content_type": "text/plain"},
        ])

        assert attachment.content == b"hello"
        assert attachment.size == 5
        assert attachment.content_type == "text/plain"

    def test_decode_invalid_base64(self):
        with pytest.raises(InvalidParameterError) as exc_info:
            decode_attachments([{"filename": "a.txt", "content": "not base64!"}])

        assert exc_info.value.message == "Attachment 0 is not valid base64"

    def test_label_path(self):
        assert label_path("Work") == "Labels/Work"
        with pytest.raises(InvalidParameterError):
            label_path("  ")


class TestRegistration:
    def test_every_tool_registered(self, registry):
        assert len(registry) == 26
        assert registry.get_tools_by_category() == {
            "sending": ["send_email", "send_test_email"],
            "reading": ["get_email_by_id", "get_emails", "search_emails"],
            "folders": ["create_folder", "delete_folder", "get_folders", "rename_folder", "sync_folders"],
            "actions": [
                "add_label", "bulk_add_label", "bulk_delete_emails", "bulk_move_emails",
                "delete_email", "mark_email_read", "move_email", "star_email",
            ],
            "analytics": ["get_contacts", "get_email_analytics", "get_email_stats", "get_volume_trends"],
            "system": ["clear_cache", "get_connection_status", "get_logs", "sync_emails"],
        }


class TestSendingTools:
    """Test the sending tools"""

    @pytest.mark.asyncio
    async def test_send_email(self, registry, transmission):
        """Test a successful send reports the message ID"""
        # Setup
        content = base64.b64encode(b"PDF").decode()

        # Test
        result = await call(
            registry, "send_email",
            to="bob@example.com", subject="Hi", body="Hello",
            attachments=[{"filename": "r.pdf", "content": content, "content_type": "application/pdf"}],
        )

        # Verify
        assert not result.is_error
        assert result.text == "Email sent successfully! Message ID: <abc@example.com>"
        options = transmission.send_email.call_args[0][0]
        assert options.priority == "normal"
        assert options.is_html is False
        assert options.attachments[0].content == b"PDF"

    @pytest.mark.asyncio
    async def test_send_failure_is_error(self, registry, transmission):
        transmission.send_email.return_value = SendResult(success=False, error="Connection refused")

        result = await call(registry, "send_email", to="bob@example.com", subject="Hi", body="Hello")

        assert result.is_error
        assert result.text == "Failed to send email: Connection refused"

    @pytest.mark.asyncio
    async def test_send_requires_fields(self, registry, transmission):
        payload = await call_json(registry, "send_email", to="bob@example.com")

        assert payload["error"] == "Missing required arguments: subject, body"
        transmission.send_email.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_test_email(self, registry, transmission):
        result = await call(registry, "send_test_email", to="bob@example.com")

        assert result.text == "Test email sent successfully! Message ID: <t@example.com>"
        transmission.send_test_email.assert_awaited_once_with("bob@example.com", None)


class TestReadingTools:
    """Test the reading tools"""

    @pytest.mark.asyncio
    async def test_get_emails(self, registry, inbox):
        emails = await call_json(registry, "get_emails", limit=2)

        assert [e["subject"] for e in emails] == ["Message 5", "Message 4"]
        assert emails[0]["from"] == "Alice <alice@example.com>"

    @pytest.mark.asyncio
    async def test_get_email_by_id_includes_content(self, registry, protocol):
        uid = protocol.add("INBOX", make_raw(attachment=b"PDF"))

        email = await call_json(registry, "get_email_by_id", email_id=uid)

        assert email["id"] == uid
        assert email["attachments"][0]["content"] == base64.b64encode(b"PDF").decode()

    @pytest.mark.asyncio
    async def test_get_email_by_id_not_found(self, registry, inbox):
        result = await call(registry, "get_email_by_id", email_id="999")

        assert not result.is_error
        assert result.text == "Email not found"

    @pytest.mark.asyncio
    async def test_search_maps_from_filter(self, registry, protocol, inbox):
        results = await call_json(registry, "search_emails", **{"from": "alice", "is_read": False, "limit": 3})

        assert len(results) == 3
        assert protocol.last_criteria == ["FROM", '"alice"', "UNSEEN"]


class TestFolderTools:
    """Test the folder tools"""

    @pytest.mark.asyncio
    async def test_get_and_sync_folders(self, registry):
        folders = await call_json(registry, "get_folders")

        assert {f["path"] for f in folders} == {"INBOX", "Sent", "Trash"}
        assert (await call(registry, "sync_folders")).text == "Synchronized 3 folders"

    @pytest.mark.asyncio
    async def test_create_rename_delete(self, registry, protocol):
        assert (await call(registry, "create_folder", folder_name="Folders/Work")).text == \
            "Folder 'Folders/Work' created successfully"
        assert (await call(registry, "rename_folder", old_name="Folders/Work", new_name="Folders/Jobs")).text == \
            "Folder 'Folders/Work' renamed to 'Folders/Jobs'"
        assert (await call(registry, "delete_folder", folder_name="Folders/Jobs")).text == \
            "Folder 'Folders/Jobs' deleted successfully"
        assert set(protocol.mailboxes) == {"INBOX", "Sent", "Trash"}

    @pytest.mark.asyncio
    async def test_create_existing_folder(self, registry):
        payload = await call_json(registry, "create_folder", folder_name="Sent")

        assert payload["error"] == "Folder 'Sent' already exists"
        assert payload["category"] == "conflict"

    @pytest.mark.asyncio
    async def test_delete_protected_folder(self, registry, protocol):
        payload = await call_json(registry, "delete_folder", folder_name="INBOX")

        assert payload["error_type"] == "ProtectedFolderError"
        assert payload["category"] == "permission"
        assert protocol.calls == []


class TestActionTools:
    """Test the message action tools"""

    @pytest.mark.asyncio
    async def test_mark_and_star(self, registry, inbox):
        assert (await call(registry, "mark_email_read", email_id=inbox[0])).text == "Email marked as read"
        assert (await call(registry, "mark_email_read", email_id=inbox[0], is_read=False)).text == \
            "Email marked as unread"
        assert (await call(registry, "star_email", email_id=inbox[0])).text == "Email starred"

    @pytest.mark.asyncio
    async def test_action_on_missing_email(self, registry, inbox):
        payload = await call_json(registry, "move_email", email_id="999", target_folder="Trash")

        assert payload["error"] == "Email 999 not found"
        assert payload["category"] == "not_found"

    @pytest.mark.asyncio
    async def test_add_label_moves_to_label_folder(self, registry, protocol, inbox):
        protocol.mailboxes["Labels/Work"] = []

        result = await call(registry, "add_label", email_id=inbox[0], label="Work")

        assert result.text == "Label 'Work' added to email"
        assert protocol.find(inbox[0])[0] == "Labels/Work"

    @pytest.mark.asyncio
    async def test_bulk_add_label_requires_name(self, registry, inbox):
        payload = await call_json(registry, "bulk_add_label", email_ids=inbox, label="")

        assert payload["error"] == "Label name is required"

    @pytest.mark.asyncio
    async def test_bulk_move_summary(self, registry, inbox):
        result = await call(registry, "bulk_move_emails", email_ids=inbox[:2] + ["999"], target_folder="Trash")

        assert not result.is_error
        assert result.text == "Bulk move completed: 2 succeeded, 1 failed\n\nErrors:\nEmail 999 not found"

    @pytest.mark.asyncio
    async def test_bulk_ids_must_be_strings(self, registry, inbox):
        payload = await call_json(registry, "bulk_delete_emails", email_ids=[1, 2])

        assert payload["error"] == "Parameter 'email_ids' must be of type array"

    @pytest.mark.asyncio
    async def test_delete(self, registry, protocol, inbox):
        assert (await call(registry, "delete_email", email_id=inbox[0])).text == "Email deleted successfully"
        result = await call(registry, "bulk_delete_emails", email_ids=inbox[1:])
        assert result.text == "Bulk delete completed: 4 succeeded, 0 failed"
        assert protocol.mailboxes["INBOX"] == []


class TestAnalyticsTools:
    """Test the analytics tools"""

    @pytest.mark.asyncio
    async def test_stats_refresh_from_inbox(self, registry, inbox):
        stats = await call_json(registry, "get_email_stats")

        assert stats["total_emails"] == 5
        assert stats["unread_emails"] == 5

    @pytest.mark.asyncio
    async def test_contacts_and_trends(self, registry, inbox):
        contacts = await call_json(registry, "get_contacts", limit=1)
        trends = await call_json(registry, "get_volume_trends", days=3)

        assert len(contacts) == 1
        assert contacts[0]["emails_received"] + contacts[0]["emails_sent"] == 5
        assert len(trends) == 3

    @pytest.mark.asyncio
    async def test_analytics_shape(self, registry, inbox):
        analytics = await call_json(registry, "get_email_analytics")

        assert analytics["top_senders"][0]["email"] == "alice@example.com"
        assert len(analytics["volume_trends"]) == 30

    @pytest.mark.asyncio
    async def test_disabled_analytics(self, registry, features, inbox):
        features.analytics_enabled = False

        payload = await call_json(registry, "get_email_stats")

        assert payload["error"] == "Analytics are disabled"
        assert payload["category"] == "configuration"


class TestSystemTools:
    """Test the system tools"""

    @pytest.mark.asyncio
    async def test_connection_status(self, registry):
        status = await call_json(registry, "get_connection_status")

        assert status["smtp"]["connected"] is True
        assert status["imap"]["connected"] is True
        assert "cache" in status["imap"]

    @pytest.mark.asyncio
    async def test_sync_emails_feeds_analytics(self, registry, handlers, inbox):
        result = await call(registry, "sync_emails")

        assert result.text == "Synchronized 5 emails from INBOX"
        assert len(handlers.analytics.emails) == 5

    @pytest.mark.asyncio
    async def test_clear_cache(self, registry, session, inbox):
        await call(registry, "get_emails")
        assert len(session.messages) == 5

        result = await call(registry, "clear_cache")

        assert result.text == "All caches cleared successfully"
        assert len(session.messages) == 0

    @pytest.mark.asyncio
    async def test_get_logs(self, registry):
        get_logger("mailbridge.tests").warning("Bridge password rejected")

        entries = await call_json(registry, "get_logs", level="warn", limit=5)

        assert entries[-1]["message"] == "Bridge password rejected"
        assert entries[-1]["level"] == "warn"
        assert entries[-1]["context"] == "tests"
