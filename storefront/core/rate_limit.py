"""Shared slowapi limiter, keyed by client address."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from storefront.core.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def webhook_rate_limit() -> str:
    return get_settings().webhook_rate_limit
