"""
Identifier generation

Two flavours:
- ``generate_id``: UUIDv7-like, time-ordered, used for events and notifications
- ``generate_reference``: human-legible entity references such as
  ``PRJ-1736942400000-K3F9Q`` (timestamp + random suffix)

Fun fact: Base36 (0-9 + A-Z) is the largest case-insensitive alphanumeric
alphabet, which is why it keeps turning up in order numbers and tracking codes.
"""

import secrets
import string
import time
from datetime import datetime

_BASE36_ALPHABET = string.digits + string.ascii_uppercase


def generate_id() -> str:
    """
    Generate a UUIDv7-like identifier (time-ordered UUID)

    Format: 8-4-4-4-12 hex characters (36 chars with hyphens)
    First 48 bits: Unix timestamp in milliseconds
    Next 12 bits: Random
    Remaining 62 bits: Random

    Returns:
        Sortable UUID string (e.g., "01908e9a-3b87-7000-8000-123456789abc")
    """
    timestamp_ms = int(time.time() * 1000)
    timestamp_48 = timestamp_ms & 0xFFFFFFFFFFFF

    rand_12 = secrets.randbits(12)
    rand_62 = secrets.randbits(62)

    # Version 7 (0111) in bits 48-51, variant (10) in bits 64-65
    time_high = (timestamp_48 >> 32) & 0xFFFF
    time_mid = (timestamp_48 >> 16) & 0xFFFF
    time_low_and_version = ((timestamp_48 & 0xFFFF) << 16) | (0x7000 | rand_12)
    clock_seq_and_variant = 0x8000 | ((rand_62 >> 48) & 0x3FFF)
    node = rand_62 & 0xFFFFFFFFFFFF

    return (
        f"{time_high:04x}{time_mid:04x}-"
        f"{(time_low_and_version >> 16) & 0xFFFF:04x}-"
        f"{time_low_and_version & 0xFFFF:04x}-"
        f"{clock_seq_and_variant:04x}-"
        f"{node:012x}"
    )


def random_suffix(length: int = 5) -> str:
    """Random upper-case base36 string"""
    return "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(length))


def generate_reference(prefix: str, at: datetime | None = None) -> str:
    """
    Generate a human-legible reference: ``<PREFIX>-<epoch ms>-<5 base36 chars>``

    Args:
        prefix: Entity prefix, e.g. "PRJ" or "PRP"
        at: Timestamp to embed (defaults to the system clock)

    Returns:
        Reference string, e.g. "PRJ-1736942400000-K3F9Q"
    """
    timestamp_ms = int((at.timestamp() if at else time.time()) * 1000)
    return f"{prefix}-{timestamp_ms}-{random_suffix()}"

