"""
Utility functions for ContentProof.

Provides time formatting and hex handling shared by the protocol modules.
"""

import re
import time
from datetime import datetime, timezone

HEX_PATTERN = re.compile(r'^[a-fA-F0-9]*$')


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def utc_rfc3339(ts_epoch: int) -> str:
    """Convert Unix timestamp to RFC3339 UTC string."""
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def strip_0x(value: str) -> str:
    """Remove a leading 0x/0X prefix."""
    if value[:2] in ("0x", "0X"):
        return value[2:]
    return value


def is_hex(value: str) -> bool:
    """Check that a string (without prefix) is hexadecimal."""
    return bool(HEX_PATTERN.match(value))
