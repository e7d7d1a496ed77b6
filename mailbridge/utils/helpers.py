"""Small pure helpers shared across the core and the tool surface."""

import asyncio
import math
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]
PREVIEW_LENGTH = 300
_WHITESPACE = re.compile(r"\s+")


## Sizes


def format_bytes(num_bytes: int) -> str:
    """Format a byte count as a human-readable size, e.g. ``1.5 KB``."""
    if num_bytes <= 0:
        return "0 Bytes"

    k = 1024
    index = min(int(math.floor(math.log(num_bytes, k))), len(SIZE_UNITS) - 1)
    value = round(num_bytes / (k**index), 2)
    return f"{value:g} {SIZE_UNITS[index]}"


def bytes_to_mb(num_bytes: int) -> float:
    return round(num_bytes / (1024 * 1024), 2)


## Text


def sanitize_for_log(text: Optional[str], max_length: int = 100) -> str:
    """Flatten control whitespace and cap length so text is safe in a log line."""
    if not text:
        return ""

    sanitized = re.sub(r"[\r\n\t]", " ", text).strip()
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."
    return sanitized


def truncate_body(body: Optional[str], max_length: int = PREVIEW_LENGTH) -> str:
    """Build the list-view preview of a message body.

    Whitespace runs are collapsed first. When the result is longer than
    ``max_length`` it is cut at the last space inside the window, provided
    that space falls within the final 20% of the window; otherwise the cut is
    made at ``max_length``. A truncated preview always ends with ``...``.

    Args:
        body: Full message body
        max_length: Preview window in characters

    Returns:
        Preview text
    """
    if not body:
        return ""

    text = _WHITESPACE.sub(" ", body).strip()
    if len(text) <= max_length:
        return text

    window = text[:max_length]
    last_space = window.rfind(" ")
    if last_space > max_length * 0.8:
        window = window[:last_space]
    return window.rstrip() + "..."


## Dates


def parse_date(value) -> Optional[datetime]:
    """Parse an RFC 2822 or ISO 8601 date into an aware datetime.

    Naive values are assumed to be UTC. Returns None when the value cannot
    be parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


## Retry


async def retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    retry_if: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """Await ``func`` until it succeeds, backing off exponentially.

    Args:
        func: Zero-argument coroutine factory
        max_retries: Total number of attempts
        delay: Seconds before the second attempt; doubled after each failure
        retry_on: Exception types that trigger another attempt
        retry_if: Optional predicate; errors it rejects are raised at once

    Returns:
        The first successful result

    Raises:
        The last exception once every attempt has failed
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    for attempt in range(max_retries):
        try:
            return await func()
        except retry_on as e:
            if attempt == max_retries - 1 or (retry_if is not None and not retry_if(e)):
                raise
            wait = delay * (2**attempt)
            logger.debug(
                f"Attempt {attempt + 1}/{max_retries} failed, retrying in {wait:.2f}s",
                extra={"data": {"error": str(e)}},
            )
            await asyncio.sleep(wait)

    raise RuntimeError("unreachable")
