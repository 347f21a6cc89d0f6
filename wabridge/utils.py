"""
Utility functions for the bridge API.
"""

import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    """
    Pull the token out of an Authorization header.

    Returns:
        The token, or None if the header is missing or not a Bearer header
    """
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    return header[len(BEARER_PREFIX):].strip()


def verify_secret(token: str, secret: str) -> bool:
    """
    Compare a presented token with the shared secret.

    Uses constant-time comparison to prevent timing attacks.
    """
    is_valid = hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))
    logger.debug(f"Bearer token verification: {'valid' if is_valid else 'invalid'}")
    return is_valid


def parse_int(value: Optional[str], default: int, minimum: int = 0) -> int:
    """
    Parse a query string integer, falling back to default.

    Non-numeric values and values below minimum yield the default.
    """
    if value is None:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    if parsed < minimum:
        return default
    return parsed
