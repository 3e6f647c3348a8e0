"""
Utility functions for tonelink.
"""

from typing import Optional, Sequence


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = seconds % 60
        return f"{minutes}m {secs:.0f}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def format_bytes(num_bytes: int) -> str:
    """Format a byte count, e.g. 12 -> '12 bytes'."""
    return f"{num_bytes} byte" if num_bytes == 1 else f"{num_bytes} bytes"


def format_hex(payload: Optional[Sequence[int]], group: int = 0) -> str:
    """
    Format a payload as hexadecimal.

    Args:
        payload: Payload bytes, or None
        group: Put a space after every `group` bytes (0 for none)

    Returns:
        Lowercase hex string, or "<none>" for a missing payload
    """
    if payload is None:
        return "<none>"
    text = bytes(payload).hex()
    if group <= 0:
        return text
    step = 2 * group
    return " ".join(text[i:i + step] for i in range(0, len(text), step))


def parse_hex(text: str) -> bytes:
    """
    Parse a hexadecimal payload, ignoring spaces, colons and a 0x prefix.

    Raises:
        ValueError: If the text is not valid hexadecimal
    """
    cleaned = text.strip().lower()
    if cleaned.startswith("0x"):
        cleaned = cleaned[2:]
    cleaned = cleaned.replace(" ", "").replace(":", "")
    return bytes.fromhex(cleaned)
