"""
Shared test fixtures and configuration for pytest
"""
from datetime import timedelta

import pytest

from mailbridge.core.email.imap.session import MailboxSession
from mailbridge.core.models.email import Attachment

from .test_helpers import BASE_DATE, FakeConnection, FakeProtocol, make_raw


@pytest.fixture
def protocol():
    return FakeProtocol()


@pytest.fixture
def connection():
    return FakeConnection()


@pytest.fixture
def session(protocol, connection):
    """MailboxSession over the in-memory mailbox; provider calls must hold a folder lock."""
    mailbox = MailboxSession(connection=connection, protocol=protocol)
    protocol.locks = mailbox.locks
    return mailbox


@pytest.fixture
def inbox(protocol):
    """Five INBOX messages, oldest first; returns their UIDs."""
    return [
        protocol.add(
            "INBOX",
            make_raw(subject=f"Message {i}", body=f"Body {i}", date=BASE_DATE + timedelta(hours=i)),
        )
        for i in range(1, 6)
    ]


@pytest.fixture
def sample_attachment():
    return Attachment(filename="notes.txt", content_type="text/plain", size=5, content=b"hello")
