from .connection import ConnectionParams, ConnectionState, IMAPConnection
from .protocol import IMAPProtocol
from .session import MailboxSession

__all__ = ['ConnectionParams', 'ConnectionState', 'IMAPConnection', 'IMAPProtocol', 'MailboxSession']
