"""Human-readable file sizes.

Sizes are stored on records as display strings ("2.4 MB"), and quota usage is
recomputed by parsing them back. Formatting rounds to two decimals, so
``parse_size(format_size(n))`` is only guaranteed to land within
``0.01 * unit`` bytes of ``n``. That loss is accepted.
"""
import math
from typing import Dict

from file_vault.logger_config import setup_logger

logger = setup_logger()

KILOBYTE = 1024
SIZE_UNITS = ("Bytes", "KB", "MB", "GB")
UNIT_FACTORS: Dict[str, int] = {
    unit: KILOBYTE ** power for power, unit in enumerate(SIZE_UNITS)
}


def _trim(value: float) -> str:
    """Format with two decimals, dropping trailing zeros ("2.50" -> "2.5")."""
    return f"{value:.2f}".rstrip("0").rstrip(".")


def format_size(num_bytes: int) -> str:
    """Convert a byte count into a string such as ``"1.5 KB"``."""
    if num_bytes < 0:
        raise ValueError(f"Byte count must be non-negative, got {num_bytes}")
    if num_bytes == 0:
        return "0 Bytes"

    power = 0
    while power < len(SIZE_UNITS) - 1 and num_bytes >= KILOBYTE ** (power + 1):
        power += 1

    return f"{_trim(num_bytes / KILOBYTE ** power)} {SIZE_UNITS[power]}"


def parse_size(text: str) -> int:
    """Convert a size string produced by :func:`format_size` back into bytes.

    Unknown units and unreadable values count as 0 bytes.
    """
    parts = text.split()
    if len(parts) < 2:
        logger.warning(f"Size string without unit: {text!r}, counting as 0 bytes")
        return 0

    factor = UNIT_FACTORS.get(parts[1])
    if factor is None:
        logger.debug(f"Unknown size unit in {text!r}, counting as 0 bytes")
        return 0

    try:
        value = float(parts[0])
    except ValueError:
        value = math.nan
    if not math.isfinite(value) or value < 0:
        logger.warning(f"Unreadable size value: {text!r}, counting as 0 bytes")
        return 0

    return int(round(value * factor))


def bytes_to_gb(num_bytes: int) -> str:
    return f"{num_bytes / UNIT_FACTORS['GB']:.2f}"
