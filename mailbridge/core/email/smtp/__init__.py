"""SMTP transmission.

    >>> client = TransmissionClient(config.smtp)
    >>> await client.verify_connection()
    >>> result = await client.send_email(SendOptions(to="a@proton.me", subject="Hi", body="Hello"))
    >>> await client.close()
"""

from .client import TransmissionClient

__all__ = [
    "TransmissionClient",
]
