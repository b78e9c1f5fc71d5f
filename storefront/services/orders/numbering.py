"""Human-readable order numbers of the form ``BW-YYYYMMDD-XXXXXX``."""

import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

ORDER_NUMBER_PREFIX = "BW"
SUFFIX_LENGTH = 6
SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

ORDER_NUMBER_PATTERN = re.compile(r"^BW-(\d{8})-([A-Z0-9]{6})$")


def generate_order_number(now: Optional[datetime] = None) -> str:
    """
    Generate an order number for the given instant.

    The date part is the UTC calendar date; the suffix is drawn from a
    cryptographically secure source. Collisions are possible in principle and
    are handled by the caller retrying against the store's unique index.

    Args:
        now: Instant to stamp into the number, defaults to the current time

    Returns:
        Order number such as ``BW-20240611-7K2QZ9``
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)

    suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{ORDER_NUMBER_PREFIX}-{now:%Y%m%d}-{suffix}"


def is_valid_order_number(value: str) -> bool:
    """Check whether a string is a well-formed order number."""
    match = ORDER_NUMBER_PATTERN.match(value)
    if match is None:
        return False
    try:
        datetime.strptime(match.group(1), "%Y%m%d")
    except ValueError:
        return False
    return True
