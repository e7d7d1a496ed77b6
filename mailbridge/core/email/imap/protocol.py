"""IMAP protocol operations - low-level IMAP command interface."""

import re
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from mailbridge.core.email.constants import IMAPFlags
from mailbridge.core.email.imap.connection import IMAPConnection, check_response
from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)

FETCH_LINE = re.compile(r"^\d+ FETCH", re.IGNORECASE)
UID_FIELD = re.compile(r"\bUID (\d+)", re.IGNORECASE)
FLAGS_FIELD = re.compile(r"\bFLAGS \(([^)]*)\)", re.IGNORECASE)
EXISTS_LINE = re.compile(r"^(\d+) EXISTS", re.IGNORECASE)
LIST_LINE = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?P<delimiter>"[^"]*"|NIL)\s+(?P<name>.+)$')
STATUS_FIELD = re.compile(r"\b(MESSAGES|UNSEEN) (\d+)", re.IGNORECASE)
SEARCH_LINE = re.compile(r"^(?:\* )?SEARCH((?: \d+)*)\s*$", re.IGNORECASE)

FETCH_PARTS = "(UID FLAGS RFC822)"


@dataclass
class FetchedMessage:
    """One message as returned by FETCH, before MIME parsing."""

    uid: Optional[str] = None
    flags: List[str] = field(default_factory=list)
    raw: Optional[bytes] = None


@dataclass
class ListedMailbox:
    """One LIST response entry."""

    path: str
    delimiter: Optional[str]
    flags: List[str]

    @property
    def name(self) -> str:
        if self.delimiter and self.delimiter in self.path:
            return self.path.rsplit(self.delimiter, 1)[-1]
        return self.path

    @property
    def selectable(self) -> bool:
        return "\\noselect" not in {f.lower() for f in self.flags}


def quote(value: str) -> str:
    """Quote a mailbox name or search string for the wire."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _decode(line) -> str:
    if isinstance(line, (bytes, bytearray)):
        return bytes(line).decode("utf-8", errors="replace")
    return str(line)


def parse_fetch_lines(lines: Sequence) -> List[FetchedMessage]:
    """Split a FETCH response into messages.

    aioimaplib returns each message as a ``n FETCH (...)`` line, the
    RFC 822 literal as a ``bytearray``, then a closing line that may carry
    fields the server emitted after the literal.
    """
    messages: List[FetchedMessage] = []
    current: Optional[FetchedMessage] = None

    for line in lines:
        if isinstance(line, bytearray):
            if current is not None and current.raw is None:
                current.raw = bytes(line)
            continue

        text = _decode(line)
        if FETCH_LINE.match(text):
            current = FetchedMessage()
            messages.append(current)
        if current is None:
            continue

        uid_match = UID_FIELD.search(text)
        if uid_match:
            current.uid = uid_match.group(1)
        flags_match = FLAGS_FIELD.search(text)
        if flags_match:
            current.flags = flags_match.group(1).split()

    return [m for m in messages if m.uid and m.raw is not None]


class IMAPProtocol:
    """Low-level IMAP protocol operations.

    Every method expects the caller to hold the lock for the folder it
    operates on; ``select_folder`` must have been issued for that folder.
    """

    def __init__(self, connection: IMAPConnection):
        """Initialise IMAP protocol handler.

        Args:
            connection: IMAPConnection instance for connection management
        """
        self.connection = connection
        self.selected_folder: Optional[str] = None

    async def select_folder(self, folder: str) -> int:
        """Select a folder and return its message count.

        Raises:
            IMAPError: If folder selection fails
        """
        client = await self.connection.get_client()
        response = await client.select(quote(folder))
        check_response(response, f"select {folder}", folder=folder)

        self.selected_folder = folder
        total = 0
        for line in response.lines:
            match = EXISTS_LINE.match(_decode(line))
            if match:
                total = int(match.group(1))
        logger.debug(f"Selected IMAP folder: {folder} ({total} messages)")
        return total

    async def fetch_range(self, start: int, end: int) -> AsyncIterator[FetchedMessage]:
        """Yield the messages in sequence range ``start:end`` (oldest first).

        The iterator is single-use.
        """
        client = await self.connection.get_client()
        response = await client.fetch(f"{start}:{end}", FETCH_PARTS)
        check_response(response, f"fetch {start}:{end}")

        for message in parse_fetch_lines(response.lines):
            yield message

    async def fetch_uid(self, uid: str) -> Optional[FetchedMessage]:
        """Fetch one message by UID from the selected folder."""
        client = await self.connection.get_client()
        response = await client.uid("fetch", str(uid), FETCH_PARTS)
        check_response(response, f"uid fetch {uid}", uid=uid)

        for message in parse_fetch_lines(response.lines):
            if message.uid == str(uid):
                return message
        return None

    async def search_uids(self, criteria: Sequence[str]) -> List[str]:
        """Search the selected folder and return matching UIDs (ascending)."""
        client = await self.connection.get_client()
        query = " ".join(criteria) if criteria else "ALL"
        response = await client.uid_search(query)
        check_response(response, "uid search", criteria=query)

        uids: List[int] = []
        for line in response.lines:
            match = SEARCH_LINE.match(_decode(line).strip())
            if match:
                uids.extend(int(token) for token in match.group(1).split())

        logger.debug("UID search completed", extra={"data": {"criteria": query, "count": len(uids)}})
        return [str(uid) for uid in sorted(uids)]

    async def set_flags(self, uid: str, flags: List[str], add: bool = True) -> None:
        """Add or remove flags on a message in the selected folder."""
        client = await self.connection.get_client()
        operation = "+FLAGS" if add else "-FLAGS"
        response = await client.uid("store", str(uid), operation, "(" + " ".join(flags) + ")")
        check_response(response, f"uid store {uid} {operation}", uid=uid)

    async def move_message(self, uid: str, dest_folder: str) -> None:
        """Move a message, falling back to COPY + delete without MOVE support."""
        client = await self.connection.get_client()

        if client.has_capability("MOVE"):
            response = await client.uid("move", str(uid), quote(dest_folder))
            check_response(response, f"uid move {uid}", uid=uid, folder=dest_folder)
            return

        response = await client.uid("copy", str(uid), quote(dest_folder))
        check_response(response, f"uid copy {uid}", uid=uid, folder=dest_folder)
        await self.delete_message(uid)

    async def delete_message(self, uid: str) -> None:
        """Flag a message deleted and expunge it.

        With UIDPLUS only this UID is expunged; otherwise a plain EXPUNGE
        also removes any other message already flagged \\Deleted.
        """
        await self.set_flags(uid, [IMAPFlags.DELETED], add=True)
        client = await self.connection.get_client()
        if client.has_capability("UIDPLUS"):
            response = await client.uid("expunge", str(uid))
        else:
            logger.warning("Server lacks UIDPLUS, expunging the whole folder", extra={"data": {"uid": uid}})
            response = await client.expunge()
        check_response(response, f"expunge {uid}", uid=uid)

    async def list_mailboxes(self) -> List[ListedMailbox]:
        client = await self.connection.get_client()
        response = await client.list('""', "*")
        check_response(response, "list")

        mailboxes = []
        for line in response.lines:
            match = LIST_LINE.match(_decode(line).strip())
            if not match:
                continue
            delimiter = match.group("delimiter")
            delimiter = None if delimiter == "NIL" else delimiter.strip('"')
            name = match.group("name").strip()
            if name.startswith('"') and name.endswith('"'):
                name = name[1:-1].replace('\\"', '"').replace("\\\\", "\\")
            mailboxes.append(ListedMailbox(path=name, delimiter=delimiter, flags=match.group("flags").split()))
        return mailboxes

    async def folder_status(self, path: str) -> Tuple[int, int]:
        """Return ``(messages, unseen)`` for a folder."""
        client = await self.connection.get_client()
        response = await client.status(quote(path), "(MESSAGES UNSEEN)")
        check_response(response, f"status {path}", folder=path)

        counts = {"MESSAGES": 0, "UNSEEN": 0}
        for line in response.lines:
            for key, value in STATUS_FIELD.findall(_decode(line)):
                counts[key.upper()] = int(value)
        return counts["MESSAGES"], counts["UNSEEN"]

    async def create_mailbox(self, path: str) -> None:
        client = await self.connection.get_client()
        response = await client.create(quote(path))
        check_response(response, f"create {path}", folder=path)

    async def delete_mailbox(self, path: str) -> None:
        client = await self.connection.get_client()
        response = await client.delete(quote(path))
        check_response(response, f"delete {path}", folder=path)

    async def rename_mailbox(self, old_path: str, new_path: str) -> None:
        client = await self.connection.get_client()
        response = await client.rename(quote(old_path), quote(new_path))
        check_response(response, f"rename {old_path}", folder=old_path, new_folder=new_path)
