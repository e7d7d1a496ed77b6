"""Tool handlers binding the registry to the mailbox, transport and analytics.

Each handler receives arguments already checked and defaulted by the
registry. Handlers raise on failure; the registry converts the exception
into an error result.
"""

import base64
import binascii
from typing import Any, Dict, List, Optional

from mailbridge.core.analytics import AnalyticsService
from mailbridge.core.email.constants import Folders, Limits
from mailbridge.core.email.imap import MailboxSession
from mailbridge.core.email.smtp import TransmissionClient
from mailbridge.core.models.email import Attachment, BulkResult, SearchOptions, SendOptions
from mailbridge.server.tools import ToolParam, ToolRegistry, ToolResult
from mailbridge.utils.config import FeaturesConfig
from mailbridge.utils.errors import ConfigurationError, InvalidParameterError
from mailbridge.utils.logging import LogManager, get_logger

logger = get_logger(__name__)

MAX_LISTED_ERRORS = 10


def format_bulk_summary(title: str, result: BulkResult) -> str:
    """Summary line plus the first few per-message failures."""
    text = f"{title} completed: {result.succeeded} succeeded, {result.failed} failed"
    if result.errors:
        text += "\n\nErrors:\n" + "\n".join(result.errors[:MAX_LISTED_ERRORS])
        remaining = len(result.errors) - MAX_LISTED_ERRORS
        if remaining > 0:
            text += f"\n... and {remaining} more"
    return text


def decode_attachments(raw: Optional[List[Dict[str, Any]]]) -> List[Attachment]:
    """Build attachments from ``{filename, content, content_type, content_id}``
    objects whose ``content`` is base64 text."""
    attachments = []
    for index, item in enumerate(raw or []):
        try:
            content = base64.b64decode(item.get("content") or "", validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidParameterError(
                f"Attachment {index} is not valid base64",
                details={"filename": item.get("filename")},
            ) from e
        attachments.append(
            Attachment(
                filename=item.get("filename") or "",
                content_type=item.get("content_type") or "application/octet-stream",
                size=len(content),
                content=content,
                content_id=item.get("content_id"),
            )
        )
    return attachments


def label_path(label: str) -> str:
    label = (label or "").strip()
    if not label:
        raise InvalidParameterError("Label name is required")
    return f"{Folders.LABEL_PREFIX}{label}"


class MailToolHandlers:
    """Handlers for every tool the server exposes."""

    def __init__(
        self,
        session: MailboxSession,
        transmission: TransmissionClient,
        analytics: AnalyticsService,
        log_manager: LogManager,
        features: Optional[FeaturesConfig] = None,
    ):
        self.session = session
        self.transmission = transmission
        self.analytics = analytics
        self.log_manager = log_manager
        self.features = features or FeaturesConfig()

    ## Sending

    async def send_email(self, args: Dict[str, Any]) -> ToolResult:
        options = SendOptions(
            to=args["to"],
            cc=args["cc"],
            bcc=args["bcc"],
            subject=args["subject"],
            body=args["body"],
            is_html=args["is_html"],
            priority=args["priority"],
            reply_to=args["reply_to"],
            attachments=decode_attachments(args["attachments"]),
        )
        result = await self.transmission.send_email(options)
        if result.success:
            return ToolResult(f"Email sent successfully! Message ID: {result.message_id}", data=result)
        return ToolResult(f"Failed to send email: {result.error}", is_error=True, data=result)

    async def send_test_email(self, args: Dict[str, Any]) -> ToolResult:
        result = await self.transmission.send_test_email(args["to"], args["custom_message"])
        if result.success:
            return ToolResult(f"Test email sent successfully! Message ID: {result.message_id}", data=result)
        return ToolResult(f"Failed to send test email: {result.error}", is_error=True, data=result)

    ## Reading

    async def get_emails(self, args: Dict[str, Any]) -> List:
        return await self.session.get_emails(args["folder"], int(args["limit"]), int(args["offset"]))

    async def get_email_by_id(self, args: Dict[str, Any]):
        email = await self.session.get_email_by_id(args["email_id"], folder_hint=args["folder"])
        if email is None:
            return "Email not found"
        return email.to_dict(include_content=True)

    async def search_emails(self, args: Dict[str, Any]) -> List:
        options = SearchOptions(
            folder=args["folder"],
            query=args["query"],
            sender=args["from"],
            to=args["to"],
            subject=args["subject"],
            has_attachment=args["has_attachment"],
            is_read=args["is_read"],
            is_starred=args["is_starred"],
            date_from=args["date_from"],
            date_to=args["date_to"],
            limit=int(args["limit"]),
        )
        return await self.session.search_emails(options)

    ## Folders

    async def get_folders(self, args: Dict[str, Any]) -> List:
        return await self.session.get_folders()

    async def sync_folders(self, args: Dict[str, Any]) -> str:
        folders = await self.session.get_folders()
        return f"Synchronized {len(folders)} folders"

    async def create_folder(self, args: Dict[str, Any]) -> str:
        await self.session.create_folder(args["folder_name"])
        return f"Folder '{args['folder_name']}' created successfully"

    async def delete_folder(self, args: Dict[str, Any]) -> str:
        await self.session.delete_folder(args["folder_name"])
        return f"Folder '{args['folder_name']}' deleted successfully"

    async def rename_folder(self, args: Dict[str, Any]) -> str:
        await self.session.rename_folder(args["old_name"], args["new_name"])
        return f"Folder '{args['old_name']}' renamed to '{args['new_name']}'"

    ## Actions

    async def mark_email_read(self, args: Dict[str, Any]) -> str:
        await self.session.mark_email_read(args["email_id"], args["is_read"])
        return f"Email marked as {'read' if args['is_read'] else 'unread'}"

    async def star_email(self, args: Dict[str, Any]) -> str:
        await self.session.star_email(args["email_id"], args["is_starred"])
        return f"Email {'starred' if args['is_starred'] else 'unstarred'}"

    async def move_email(self, args: Dict[str, Any]) -> str:
        await self.session.move_email(args["email_id"], args["target_folder"])
        return f"Email moved to {args['target_folder']}"

    async def bulk_move_emails(self, args: Dict[str, Any]) -> ToolResult:
        result = await self.session.bulk_move_emails(args["email_ids"], args["target_folder"])
        return ToolResult(format_bulk_summary("Bulk move", result), data=result)

    async def add_label(self, args: Dict[str, Any]) -> str:
        await self.session.move_email(args["email_id"], label_path(args["label"]))
        return f"Label '{args['label']}' added to email"

    async def bulk_add_label(self, args: Dict[str, Any]) -> ToolResult:
        result = await self.session.bulk_move_emails(args["email_ids"], label_path(args["label"]))
        return ToolResult(format_bulk_summary(f"Bulk label '{args['label']}'", result), data=result)

    async def delete_email(self, args: Dict[str, Any]) -> str:
        await self.session.delete_email(args["email_id"])
        return "Email deleted successfully"

    async def bulk_delete_emails(self, args: Dict[str, Any]) -> ToolResult:
        result = await self.session.bulk_delete_emails(args["email_ids"])
        return ToolResult(format_bulk_summary("Bulk delete", result), data=result)

    ## Analytics

    async def _refresh_analytics(self) -> None:
        if not self.features.analytics_enabled:
            raise ConfigurationError("Analytics are disabled")
        emails = await self.session.get_emails(Folders.INBOX, Limits.ANALYTICS_SNAPSHOT)
        self.analytics.update_emails(emails)

    async def get_email_stats(self, args: Dict[str, Any]):
        await self._refresh_analytics()
        return self.analytics.get_email_stats()

    async def get_email_analytics(self, args: Dict[str, Any]):
        await self._refresh_analytics()
        return self.analytics.get_email_analytics()

    async def get_contacts(self, args: Dict[str, Any]) -> List:
        await self._refresh_analytics()
        return self.analytics.get_contacts(int(args["limit"]))

    async def get_volume_trends(self, args: Dict[str, Any]) -> List:
        await self._refresh_analytics()
        return self.analytics.get_volume_trends(int(args["days"]))

    ## System

    async def get_connection_status(self, args: Dict[str, Any]) -> Dict[str, Any]:
        return {"smtp": self.transmission.status(), "imap": self.session.status()}

    async def sync(self, folder: str = Folders.INBOX) -> int:
        """Pull the newest messages of ``folder`` and hand them to analytics."""
        emails = await self.session.get_emails(folder, Limits.SYNC_BATCH)
        if self.features.analytics_enabled:
            self.analytics.update_emails(emails)
        logger.info(f"Synchronized {len(emails)} emails from {folder}")
        return len(emails)

    async def sync_emails(self, args: Dict[str, Any]) -> str:
        folder = args["folder"] or Folders.INBOX
        count = await self.sync(folder)
        return f"Synchronized {count} emails from {folder}"

    async def clear_cache(self, args: Dict[str, Any]) -> str:
        self.session.clear_cache()
        self.analytics.clear_cache()
        return "All caches cleared successfully"

    async def get_logs(self, args: Dict[str, Any]) -> List:
        return self.log_manager.get_logs(args["level"], int(args["limit"]))


## Registration

EMAIL_ID = ToolParam("email_id", "string", "Email ID", required=True)
EMAIL_IDS = ToolParam("email_ids", "array", "Email IDs", required=True, items="string")


def register_tools(registry: ToolRegistry, handlers: MailToolHandlers) -> ToolRegistry:
    """Register every tool against ``handlers``."""

    # Sending
    registry.register(
        "send_email",
        handlers.send_email,
        "Send an email with optional CC/BCC, priority, reply-to and attachments",
        category="sending",
        params=[
            ToolParam("to", "string", "Recipient email address(es), comma-separated", required=True),
            ToolParam("cc", "string", "CC recipients, comma-separated"),
            ToolParam("bcc", "string", "BCC recipients, comma-separated"),
            ToolParam("subject", "string", "Email subject", required=True),
            ToolParam("body", "string", "Email body content", required=True),
            ToolParam("is_html", "boolean", "Whether body is HTML", default=False),
            ToolParam("priority", "string", "Email priority", default="normal", enum=["high", "normal", "low"]),
            ToolParam("reply_to", "string", "Reply-to email address"),
            ToolParam(
                "attachments", "array",
                "Attachments as objects with filename, base64 content, content_type and optional content_id",
                items="object",
            ),
        ],
    )
    registry.register(
        "send_test_email",
        handlers.send_test_email,
        "Send a test email to verify SMTP functionality",
        category="sending",
        params=[
            ToolParam("to", "string", "Test recipient email address", required=True),
            ToolParam("custom_message", "string", "Custom test message"),
        ],
    )

    # Reading
    registry.register(
        "get_emails",
        handlers.get_emails,
        "Get emails from a folder with pagination (truncated body preview, attachment metadata only)",
        category="reading",
        params=[
            ToolParam("folder", "string", "Folder path (e.g. 'INBOX', 'Sent', 'Folders/MyFolder')", default=Folders.INBOX),
            ToolParam("limit", "number", "Number of emails to fetch", default=Limits.DEFAULT_PAGE),
            ToolParam("offset", "number", "Pagination offset", default=0),
        ],
    )
    registry.register(
        "get_email_by_id",
        handlers.get_email_by_id,
        "Get a specific email by its ID (full body and attachments)",
        category="reading",
        params=[
            ToolParam("email_id", "string", "Email ID to retrieve", required=True),
            ToolParam("folder", "string", "Folder the email is in; all folders are searched when omitted"),
        ],
    )
    registry.register(
        "search_emails",
        handlers.search_emails,
        "Search emails with filters (truncated body preview, attachment metadata only)",
        category="reading",
        params=[
            ToolParam("query", "string", "Free-text search query"),
            ToolParam("folder", "string", "Folder path to search in", default=Folders.INBOX),
            ToolParam("from", "string", "Filter by sender"),
            ToolParam("to", "string", "Filter by recipient"),
            ToolParam("subject", "string", "Filter by subject"),
            ToolParam("has_attachment", "boolean", "Filter emails with attachments"),
            ToolParam("is_read", "boolean", "Filter by read status"),
            ToolParam("is_starred", "boolean", "Filter starred emails"),
            ToolParam("date_from", "string", "Start date (ISO format)"),
            ToolParam("date_to", "string", "End date (ISO format)"),
            ToolParam("limit", "number", "Max results", default=Limits.DEFAULT_SEARCH),
        ],
    )

    # Folders
    registry.register(
        "get_folders",
        handlers.get_folders,
        "Get all folders with message counts. Labels appear as folders with the 'Labels/' prefix",
        category="folders",
    )
    registry.register(
        "sync_folders",
        handlers.sync_folders,
        "Synchronize the folder structure from the server",
        category="folders",
    )
    registry.register(
        "create_folder",
        handlers.create_folder,
        "Create a folder. Use 'Folders/Name' for custom folders or 'Labels/Name' for labels",
        category="folders",
        params=[ToolParam("folder_name", "string", "Folder path to create", required=True)],
    )
    registry.register(
        "delete_folder",
        handlers.delete_folder,
        "Delete an empty folder or label. System folders cannot be deleted",
        category="folders",
        params=[ToolParam("folder_name", "string", "Folder path to delete", required=True)],
    )
    registry.register(
        "rename_folder",
        handlers.rename_folder,
        "Rename a folder or label. System folders cannot be renamed",
        category="folders",
        params=[
            ToolParam("old_name", "string", "Current folder path", required=True),
            ToolParam("new_name", "string", "New folder path", required=True),
        ],
    )

    # Actions
    registry.register(
        "mark_email_read",
        handlers.mark_email_read,
        "Mark an email as read or unread",
        category="actions",
        params=[EMAIL_ID, ToolParam("is_read", "boolean", "Read status", default=True)],
    )
    registry.register(
        "star_email",
        handlers.star_email,
        "Star or unstar an email",
        category="actions",
        params=[EMAIL_ID, ToolParam("is_starred", "boolean", "Star status", default=True)],
    )
    registry.register(
        "move_email",
        handlers.move_email,
        "Move an email to another folder (e.g. 'Trash', 'Folders/Archive')",
        category="actions",
        params=[EMAIL_ID, ToolParam("target_folder", "string", "Target folder path", required=True)],
    )
    registry.register(
        "bulk_move_emails",
        handlers.bulk_move_emails,
        "Move several emails to a folder at once",
        category="actions",
        params=[EMAIL_IDS, ToolParam("target_folder", "string", "Target folder path", required=True)],
    )
    registry.register(
        "add_label",
        handlers.add_label,
        "Label an email by moving it to 'Labels/<label>'. The label folder must already exist",
        category="actions",
        params=[EMAIL_ID, ToolParam("label", "string", "Label name without prefix (e.g. 'Work')", required=True)],
    )
    registry.register(
        "bulk_add_label",
        handlers.bulk_add_label,
        "Label several emails by moving them to 'Labels/<label>'",
        category="actions",
        params=[EMAIL_IDS, ToolParam("label", "string", "Label name without prefix (e.g. 'Work')", required=True)],
    )
    registry.register(
        "delete_email",
        handlers.delete_email,
        "Delete an email permanently",
        category="actions",
        params=[ToolParam("email_id", "string", "Email ID to delete", required=True)],
    )
    registry.register(
        "bulk_delete_emails",
        handlers.bulk_delete_emails,
        "Delete several emails at once",
        category="actions",
        params=[EMAIL_IDS],
    )

    # Analytics
    registry.register(
        "get_email_stats",
        handlers.get_email_stats,
        "Get email statistics for the newest inbox messages",
        category="analytics",
    )
    registry.register(
        "get_email_analytics",
        handlers.get_email_analytics,
        "Get volume trends, top contacts, response times, peak hours and attachment breakdown",
        category="analytics",
    )
    registry.register(
        "get_contacts",
        handlers.get_contacts,
        "Get contacts with interaction statistics",
        category="analytics",
        params=[ToolParam("limit", "number", "Max contacts to return", default=100)],
    )
    registry.register(
        "get_volume_trends",
        handlers.get_volume_trends,
        "Get daily email volume over a trailing window",
        category="analytics",
        params=[ToolParam("days", "number", "Number of days to analyze", default=30)],
    )

    # System
    registry.register(
        "get_connection_status",
        handlers.get_connection_status,
        "Check SMTP and IMAP connection status",
        category="system",
    )
    registry.register(
        "sync_emails",
        handlers.sync_emails,
        "Fetch the newest emails from a folder and refresh analytics",
        category="system",
        params=[ToolParam("folder", "string", "Folder path to sync", default=Folders.INBOX)],
    )
    registry.register(
        "clear_cache",
        handlers.clear_cache,
        "Clear the email cache and the analytics cache",
        category="system",
    )
    registry.register(
        "get_logs",
        handlers.get_logs,
        "Get recent log entries",
        category="system",
        params=[
            ToolParam("level", "string", "Log level filter", enum=["debug", "info", "warn", "error"]),
            ToolParam("limit", "number", "Max log entries", default=100),
        ],
    )

    logger.debug(f"Registered {len(registry)} tools")
    return registry
