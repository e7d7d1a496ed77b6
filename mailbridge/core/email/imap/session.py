"""Mailbox session: connection lifecycle, caches and every mailbox operation.

Read paths (listing, lookup, search, folders) degrade when the connection is
down and the single reconnect attempt fails: they return empty results (or
cached folders) instead of raising. Mutations and folder CRUD fail loudly.

Message identifiers are IMAP UIDs, which are only unique within a folder.
The message cache is keyed by UID alone, so a lookup that knows the folder
should pass it as ``folder_hint``; a lookup without one scans every folder
and returns the first match.
"""

from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from mailbridge.core.cache import KeyedCache
from mailbridge.core.email.constants import ConflictMarkers, Folders, IMAPFlags, Limits
from mailbridge.core.email.imap.connection import ConnectionParams, IMAPConnection
from mailbridge.core.email.imap.locks import FolderLocks
from mailbridge.core.email.imap.protocol import FetchedMessage, IMAPProtocol, quote
from mailbridge.core.email.parser import EmailParser
from mailbridge.core.models.email import BulkResult, Folder, Message, SearchOptions
from mailbridge.utils.errors import (
    FolderExistsError,
    FolderNotEmptyError,
    FolderNotFoundError,
    IMAPError,
    InvalidParameterError,
    MailBridgeError,
    MessageNotFoundError,
    ProtectedFolderError,
)
from mailbridge.utils.helpers import parse_date
from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def is_protected_folder(path: str) -> bool:
    """Whether ``path`` names a system folder (case-insensitive)."""
    return (path or "").strip().lower() in Folders.PROTECTED


def imap_date(value: datetime) -> str:
    return f"{value.day}-{MONTHS[value.month - 1]}-{value.year}"


def build_search_criteria(options: SearchOptions) -> List[str]:
    """Translate a structured filter into IMAP SEARCH keys."""
    criteria: List[str] = []

    if options.query:
        criteria += ["TEXT", quote(options.query)]
    if options.sender:
        criteria += ["FROM", quote(options.sender)]
    if options.to:
        criteria += ["TO", quote(options.to)]
    if options.subject:
        criteria += ["SUBJECT", quote(options.subject)]

    for key, raw in (("SINCE", options.date_from), ("BEFORE", options.date_to)):
        if not raw:
            continue
        parsed = parse_date(raw)
        if parsed is None:
            raise InvalidParameterError(f"Invalid date: {raw}", details={"value": raw})
        criteria += [key, imap_date(parsed)]

    if options.is_read is not None:
        criteria.append("SEEN" if options.is_read else "UNSEEN")
    if options.is_starred is not None:
        criteria.append("FLAGGED" if options.is_starred else "UNFLAGGED")

    return criteria or ["ALL"]


def _response_text(error: IMAPError) -> str:
    return str(error.details.get("response", "")) or error.message


def _has_marker(text: str, markers: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(marker.lower() in lowered for marker in markers)


class MailboxSession:
    """Owns the IMAP connection, the message and folder caches, and all
    read and mutating mailbox operations."""

    def __init__(
        self,
        connection: Optional[IMAPConnection] = None,
        protocol: Optional[IMAPProtocol] = None,
        cache_enabled: bool = True,
        max_cached_messages: Optional[int] = None,
        parser: Callable[..., Message] = EmailParser.parse_from_bytes,
    ):
        """Initialise the session.

        Args:
            connection: Connection manager; a new one is created if omitted
            protocol: Command layer; built over ``connection`` if omitted
            cache_enabled: When False every lookup goes to the server
            max_cached_messages: Optional LRU bound for the message cache
            parser: ``(raw, uid, folder, flags) -> Message``
        """
        self.connection = connection or IMAPConnection()
        self.protocol = protocol or IMAPProtocol(self.connection)
        self.locks = FolderLocks()
        self.messages: KeyedCache[str, Message] = KeyedCache(
            "message", max_entries=max_cached_messages, enabled=cache_enabled
        )
        self.folders: KeyedCache[str, Folder] = KeyedCache("folder")
        self._unselectable: set = set()
        self._parse = parser

    ## Connection

    async def connect(
        self,
        host: str = "localhost",
        port: int = 1143,
        username: Optional[str] = None,
        password: Optional[str] = None,
        secure: bool = False,
    ) -> None:
        await self.connection.connect(
            ConnectionParams(host=host, port=port, username=username, password=password, secure=secure)
        )

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    def is_active(self) -> bool:
        return self.connection.is_active()

    async def _connected_for_read(self, operation: str) -> bool:
        try:
            await self.connection.ensure_connected()
            return True
        except MailBridgeError as e:
            logger.warning(
                f"IMAP not connected, {operation} degraded",
                extra={"data": {"error": e.message}},
            )
            return False

    ## Folders

    async def get_folders(self) -> List[Folder]:
        """List folders with their counts, refreshing the folder cache.

        Returns the cached folders when the server cannot be reached.
        """
        logger.debug("Fetching folders")

        if not await self._connected_for_read("folder listing"):
            return self.folders.values()

        try:
            async with self.locks.hold("*"):
                mailboxes = await self.protocol.list_mailboxes()
                folders = []
                for mailbox in mailboxes:
                    total = unseen = 0
                    if mailbox.selectable:
                        total, unseen = await self.protocol.folder_status(mailbox.path)
                    folders.append(
                        Folder(
                            name=mailbox.name,
                            path=mailbox.path,
                            total_messages=total,
                            unread_messages=unseen,
                            special_use=self._special_use(mailbox.flags, mailbox.path),
                        )
                    )
        except Exception as e:
            logger.error("Failed to fetch folders", extra={"data": {"error": str(e)}})
            raise

        self.folders.invalidate_all()
        self._unselectable = {m.path for m in mailboxes if not m.selectable}
        for folder in folders:
            self.folders.put(folder.path, folder)

        logger.info(f"Retrieved {len(folders)} folders")
        return folders

    @staticmethod
    def _special_use(flags: List[str], path: str) -> Optional[str]:
        for flag in flags:
            marker = Folders.SPECIAL_USE.get(flag.lower())
            if marker:
                return marker
        if path.upper() == Folders.INBOX:
            return "inbox"
        return None

    ## Reading

    async def get_emails(
        self, folder: str = Folders.INBOX, limit: int = Limits.DEFAULT_PAGE, offset: int = 0
    ) -> List[Message]:
        """Fetch a page of messages, newest first.

        Offset 0 returns the ``limit`` most recently arrived messages. Each
        full message is cached; the returned views carry a truncated body
        and no attachment content.
        """
        logger.debug("Fetching emails", extra={"data": {"folder": folder, "limit": limit, "offset": offset}})

        if limit <= 0:
            return []
        offset = max(offset, 0)

        if not await self._connected_for_read("email listing"):
            return []

        views: List[Message] = []
        try:
            async with self.locks.hold(folder):
                total = await self.protocol.select_folder(folder)
                start = max(1, total - offset - limit + 1)
                end = max(1, total - offset)
                if start > end or total == 0 or offset >= total:
                    return []

                async for fetched in self.protocol.fetch_range(start, end):
                    try:
                        message = self._parse_fetched(fetched, folder)
                    except Exception as e:
                        logger.warning(
                            "Failed to parse email",
                            extra={"data": {"uid": fetched.uid, "folder": folder, "error": str(e)}},
                        )
                        continue

                    self.messages.put(message.id, message)
                    views.append(message.to_view())
        except Exception as e:
            logger.error("Failed to fetch emails", extra={"data": {"folder": folder, "error": str(e)}})
            raise

        views.reverse()
        logger.info(f"Retrieved {len(views)} emails from {folder}")
        return views

    def _parse_fetched(self, fetched: FetchedMessage, folder: str) -> Message:
        return self._parse(fetched.raw, fetched.uid, folder, fetched.flags)

    async def get_email_by_id(self, email_id: str, folder_hint: Optional[str] = None) -> Optional[Message]:
        """Resolve a message with full body and attachment content.

        Serves from cache when possible, otherwise searches ``folder_hint``
        alone when given, or every known folder in listing order. Returns None when the message
        is not found anywhere or the server cannot be reached.
        """
        email_id = str(email_id)
        logger.debug("Fetching email by ID", extra={"data": {"email_id": email_id}})

        cached = self.messages.get(email_id)
        if cached is not None and (folder_hint is None or cached.folder == folder_hint):
            return cached

        if not await self._connected_for_read("email lookup"):
            return None

        try:
            if folder_hint:
                candidates = [folder_hint]
            else:
                candidates = [f.path for f in await self.get_folders()]

            for path in candidates:
                if path in self._unselectable:
                    continue
                async with self.locks.hold(path):
                    await self.protocol.select_folder(path)
                    fetched = await self.protocol.fetch_uid(email_id)
                    if fetched is None:
                        continue
                    message = self._parse_fetched(fetched, path)

                self.messages.put(message.id, message)
                return message
        except Exception as e:
            logger.error("Failed to fetch email by ID", extra={"data": {"email_id": email_id, "error": str(e)}})
            raise

        return None

    async def search_emails(self, options: Optional[SearchOptions] = None) -> List[Message]:
        """Search one folder and return list views of the matches."""
        options = options or SearchOptions()
        folder = options.folder or Folders.INBOX
        limit = options.limit if options.limit and options.limit > 0 else Limits.DEFAULT_SEARCH
        criteria = build_search_criteria(options)

        logger.debug("Searching emails", extra={"data": {"folder": folder, "criteria": " ".join(criteria)}})

        if not await self._connected_for_read("search"):
            return []

        try:
            async with self.locks.hold(folder):
                await self.protocol.select_folder(folder)
                uids = await self.protocol.search_uids(criteria)
        except Exception as e:
            logger.error("Failed to search emails", extra={"data": {"folder": folder, "error": str(e)}})
            raise

        results: List[Message] = []
        for uid in uids[:limit]:
            message = await self.get_email_by_id(uid, folder_hint=folder)
            if message is None:
                continue
            if options.has_attachment is not None and message.has_attachment != options.has_attachment:
                continue
            results.append(message.to_view())

        logger.info(f"Search found {len(results)} emails")
        return results

    ## Mutations

    async def _resolve(self, email_id: str) -> Message:
        await self.connection.ensure_connected()
        message = await self.get_email_by_id(email_id)
        if message is None:
            raise MessageNotFoundError(f"Email {email_id} not found", details={"email_id": email_id})
        return message

    def _cached_in(self, email_id: str, folder: str) -> Optional[Message]:
        cached = self.messages.get(email_id)
        if cached is not None and cached.folder == folder:
            return cached
        return None

    def _invalidate_folder_counts(self, *paths: str) -> None:
        for path in paths:
            self.folders.invalidate(path)

    async def mark_email_read(self, email_id: str, is_read: bool = True) -> bool:
        """Set or clear ``\\Seen``; the cached copy follows the server."""
        email_id = str(email_id)
        message = await self._resolve(email_id)
        folder = message.folder

        async with self.locks.hold(folder):
            await self.protocol.select_folder(folder)
            await self.protocol.set_flags(email_id, [IMAPFlags.SEEN], add=is_read)

        message.mark_as_read(is_read)
        cached = self._cached_in(email_id, folder)
        if cached is not None:
            cached.mark_as_read(is_read)
        self._invalidate_folder_counts(folder)

        logger.info(f"Email {email_id} marked as {'read' if is_read else 'unread'}")
        return True

    async def star_email(self, email_id: str, is_starred: bool = True) -> bool:
        """Set or clear ``\\Flagged``; the cached copy follows the server."""
        email_id = str(email_id)
        message = await self._resolve(email_id)
        folder = message.folder

        async with self.locks.hold(folder):
            await self.protocol.select_folder(folder)
            await self.protocol.set_flags(email_id, [IMAPFlags.FLAGGED], add=is_starred)

        message.star(is_starred)
        cached = self._cached_in(email_id, folder)
        if cached is not None:
            cached.star(is_starred)

        logger.info(f"Email {email_id} {'starred' if is_starred else 'unstarred'}")
        return True

    async def move_email(self, email_id: str, target_folder: str) -> bool:
        """Move a message; its cached copy is reassigned to ``target_folder``."""
        email_id = str(email_id)
        if not target_folder:
            raise InvalidParameterError("Target folder is required")

        message = await self._resolve(email_id)
        source = message.folder

        async with self.locks.hold(source):
            await self.protocol.select_folder(source)
            await self.protocol.move_message(email_id, target_folder)

        self._record_move(email_id, source, target_folder, message)
        logger.info(f"Email {email_id} moved to {target_folder}")
        return True

    def _record_move(self, email_id: str, source: str, target: str, message: Optional[Message] = None) -> None:
        cached = self._cached_in(email_id, source)
        if cached is not None:
            cached.move_to(target)
        if message is not None and message is not cached:
            message.move_to(target)
        self._invalidate_folder_counts(source, target)

    async def delete_email(self, email_id: str) -> bool:
        """Delete a message and evict it from the cache."""
        email_id = str(email_id)
        message = await self._resolve(email_id)
        folder = message.folder

        async with self.locks.hold(folder):
            await self.protocol.select_folder(folder)
            await self.protocol.delete_message(email_id)

        self._record_delete(email_id, folder)
        logger.info(f"Email {email_id} deleted")
        return True

    def _record_delete(self, email_id: str, folder: str) -> None:
        if self._cached_in(email_id, folder) is not None:
            self.messages.invalidate(email_id)
        self._invalidate_folder_counts(folder)

    ## Bulk operations

    async def _partition_by_folder(self, email_ids: Iterable[str], result: BulkResult) -> Dict[str, List[str]]:
        by_folder: Dict[str, List[str]] = OrderedDict()
        for email_id in email_ids:
            email_id = str(email_id)
            try:
                message = await self.get_email_by_id(email_id)
            except Exception as e:
                result.add_failure(f"Error fetching email {email_id}: {e}")
                continue
            if message is None:
                result.add_failure(f"Email {email_id} not found")
                continue
            by_folder.setdefault(message.folder, []).append(email_id)
        return by_folder

    async def bulk_move_emails(self, email_ids: List[str], target_folder: str) -> BulkResult:
        """Move many messages; individual failures are recorded, not raised."""
        if not target_folder:
            raise InvalidParameterError("Target folder is required")

        logger.debug("Bulk moving emails", extra={"data": {"count": len(email_ids), "target": target_folder}})
        await self.connection.ensure_connected()

        result = BulkResult()
        by_folder = await self._partition_by_folder(email_ids, result)

        for source, ids in by_folder.items():
            async with self.locks.hold(source):
                try:
                    await self.protocol.select_folder(source)
                except Exception as e:
                    for email_id in ids:
                        result.add_failure(f"Failed to move email {email_id}: {e}")
                    continue

                for email_id in ids:
                    try:
                        await self.protocol.move_message(email_id, target_folder)
                    except Exception as e:
                        result.add_failure(f"Failed to move email {email_id}: {e}")
                        logger.warning(f"Failed to move email {email_id}", extra={"data": {"error": str(e)}})
                        continue
                    self._record_move(email_id, source, target_folder)
                    result.add_success()

        logger.info(f"Bulk move completed: {result.succeeded} succeeded, {result.failed} failed")
        return result

    async def bulk_delete_emails(self, email_ids: List[str]) -> BulkResult:
        """Delete many messages; individual failures are recorded, not raised."""
        logger.debug("Bulk deleting emails", extra={"data": {"count": len(email_ids)}})
        await self.connection.ensure_connected()

        result = BulkResult()
        by_folder = await self._partition_by_folder(email_ids, result)

        for folder, ids in by_folder.items():
            async with self.locks.hold(folder):
                try:
                    await self.protocol.select_folder(folder)
                except Exception as e:
                    for email_id in ids:
                        result.add_failure(f"Failed to delete email {email_id}: {e}")
                    continue

                for email_id in ids:
                    try:
                        await self.protocol.delete_message(email_id)
                    except Exception as e:
                        result.add_failure(f"Failed to delete email {email_id}: {e}")
                        logger.warning(f"Failed to delete email {email_id}", extra={"data": {"error": str(e)}})
                        continue
                    self._record_delete(email_id, folder)
                    result.add_success()

        logger.info(f"Bulk delete completed: {result.succeeded} succeeded, {result.failed} failed")
        return result

    ## Folder CRUD

    async def create_folder(self, path: str) -> bool:
        """Create a folder.

        Raises:
            FolderExistsError: If the server reports the folder exists
        """
        path = self._require_path(path)
        await self.connection.ensure_connected()
        logger.debug(f"Creating folder: {path}")

        try:
            async with self.locks.hold(path):
                await self.protocol.create_mailbox(path)
        except IMAPError as e:
            if _has_marker(_response_text(e), ConflictMarkers.EXISTS):
                logger.warning(f"Folder already exists: {path}")
                raise FolderExistsError(f"Folder '{path}' already exists", details={"folder": path}) from e
            logger.error("Failed to create folder", extra={"data": {"folder": path, "error": str(e)}})
            raise

        self.folders.invalidate_all()
        logger.info(f"Folder created: {path}")
        return True

    async def delete_folder(self, path: str) -> bool:
        """Delete an empty, non-system folder.

        Raises:
            ProtectedFolderError: For system folders, before any server call
            FolderNotFoundError: If the folder does not exist
            FolderNotEmptyError: If it still has messages or children
        """
        path = self._require_path(path)
        if is_protected_folder(path):
            raise ProtectedFolderError(f"Cannot delete protected folder: {path}", details={"folder": path})

        await self.connection.ensure_connected()
        logger.debug(f"Deleting folder: {path}")

        try:
            async with self.locks.hold(path):
                await self.protocol.delete_mailbox(path)
        except IMAPError as e:
            text = _response_text(e)
            if _has_marker(text, ConflictMarkers.NONEXISTENT):
                raise FolderNotFoundError(f"Folder '{path}' does not exist", details={"folder": path}) from e
            if _has_marker(text, ConflictMarkers.NOT_EMPTY):
                raise FolderNotEmptyError(
                    f"Folder '{path}' is not empty. Move or delete emails first.",
                    details={"folder": path},
                ) from e
            logger.error("Failed to delete folder", extra={"data": {"folder": path, "error": str(e)}})
            raise

        self.folders.invalidate_all()
        for email_id, message in self.messages.items():
            if message.folder == path:
                self.messages.invalidate(email_id)
        logger.info(f"Folder deleted: {path}")
        return True

    async def rename_folder(self, old_path: str, new_path: str) -> bool:
        """Rename a non-system folder.

        Raises:
            ProtectedFolderError: For system folders, before any server call
            FolderNotFoundError: If ``old_path`` does not exist
            FolderExistsError: If ``new_path`` already exists
        """
        old_path = self._require_path(old_path)
        new_path = self._require_path(new_path)
        if is_protected_folder(old_path):
            raise ProtectedFolderError(f"Cannot rename protected folder: {old_path}", details={"folder": old_path})

        await self.connection.ensure_connected()
        logger.debug(f"Renaming folder: {old_path} -> {new_path}")

        try:
            async with self.locks.hold(old_path):
                await self.protocol.rename_mailbox(old_path, new_path)
        except IMAPError as e:
            text = _response_text(e)
            if _has_marker(text, ConflictMarkers.NONEXISTENT):
                raise FolderNotFoundError(f"Folder '{old_path}' does not exist", details={"folder": old_path}) from e
            if _has_marker(text, ConflictMarkers.EXISTS):
                raise FolderExistsError(f"Folder '{new_path}' already exists", details={"folder": new_path}) from e
            logger.error("Failed to rename folder", extra={"data": {"folder": old_path, "error": str(e)}})
            raise

        self.folders.invalidate_all()
        for _, message in self.messages.items():
            if message.folder == old_path:
                message.move_to(new_path)
        logger.info(f"Folder renamed: {old_path} -> {new_path}")
        return True

    @staticmethod
    def _require_path(path: str) -> str:
        path = (path or "").strip()
        if not path:
            raise InvalidParameterError("Folder name is required")
        return path

    ## Cache

    def clear_cache(self) -> None:
        self.messages.invalidate_all()
        self.folders.invalidate_all()
        logger.info("IMAP cache cleared")

    def status(self) -> Dict:
        status = self.connection.status()
        status["cache"] = {
            "messages": self.messages.stats(),
            "folders": self.folders.stats(),
        }
        return status
