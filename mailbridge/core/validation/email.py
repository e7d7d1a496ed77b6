"""Email address validation utilities."""

import re
from typing import Iterable, List, Optional, Union

from email_validator import EmailNotValidError, validate_email

from mailbridge.utils.errors import InvalidEmailAddressError
from mailbridge.utils.logging import get_logger

logger = get_logger(__name__)

ADDRESS_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
ANGLE_ADDRESS = re.compile(r"<([^>]+)>")
DISPLAY_NAME = re.compile(r"^([^<]+)<")


class EmailValidator:
    """Validate and normalise email addresses"""

    @staticmethod
    def is_valid_email(email_address: str) -> bool:
        """Validate email address format"""
        if not email_address or not isinstance(email_address, str):
            return False
        return bool(ADDRESS_PATTERN.match(email_address.strip()))

    @staticmethod
    def extract_email_address(value: str) -> str:
        """Return the bare address from ``Name <addr>``, or the trimmed input."""
        if not value:
            return ""
        match = ANGLE_ADDRESS.search(value)
        return match.group(1).strip() if match else value.strip()

    @staticmethod
    def extract_name(value: str) -> Optional[str]:
        """Return the display name from ``Name <addr>``, if there is one."""
        if not value:
            return None
        match = DISPLAY_NAME.match(value)
        if not match:
            return None
        name = match.group(1).strip().strip('"').strip()
        return name or None

    @staticmethod
    def parse_emails(value: Union[str, Iterable[str], None]) -> List[str]:
        """Split a comma-separated string (or list) into valid addresses.

        Invalid entries are dropped silently.
        """
        if not value:
            return []

        parts = value.split(",") if isinstance(value, str) else list(value)
        addresses = []
        for part in parts:
            candidate = str(part).strip()
            if candidate and EmailValidator.is_valid_email(candidate):
                addresses.append(candidate)
        return addresses

    @staticmethod
    def validate_recipient(address: str) -> str:
        """Validate a recipient before dispatch and return its normalised form.

        Raises:
            InvalidEmailAddressError: If the address is not deliverable syntax
        """
        bare = EmailValidator.extract_email_address(address or "")
        if not bare:
            raise InvalidEmailAddressError("Email address is required.")

        try:
            valid = validate_email(bare, check_deliverability=False)
        except EmailNotValidError as e:
            logger.warning(f"Rejected recipient {bare}: {e}")
            raise InvalidEmailAddressError(
                f"Invalid email address: {bare}", details={"reason": str(e)}
            ) from e
        return valid.normalized
