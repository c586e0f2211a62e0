"""
Short prefixed ID generator for records whose store does not assign keys.

Format: {prefix}_{base36_random}
- car_x5b8r2yj
- ph_0k3m9q2a

8 chars base36 = 36^8 = 2.8 trillion unique IDs per prefix
"""
import re
import secrets
from typing import Optional

# Base36 alphabet (lowercase letters + digits)
ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
BASE = len(ALPHABET)  # 36

RANDOM_LENGTH = 8

PREFIX_PATTERN = re.compile(r'^[a-z][a-z0-9]{0,7}$')
ID_PATTERN = re.compile(r'^([a-z][a-z0-9]{0,7})_[0-9a-z]{8}$')


def _random_base36(length: int = RANDOM_LENGTH) -> str:
    """Generate random base36 string"""
    result = []
    for _ in range(length):
        result.append(ALPHABET[secrets.randbelow(BASE)])
    return ''.join(result)


def generate_id(prefix: str) -> str:
    """
    Generate a new short ID with the given prefix.

    Args:
        prefix: 1-8 lowercase alphanumerics, starting with a letter

    Returns:
        Short ID like 'car_x5b8r2yj'

    Raises:
        ValueError: If prefix is invalid
    """
    if not PREFIX_PATTERN.match(prefix or ''):
        raise ValueError(f"Invalid id prefix: {prefix!r}")
    return f"{prefix}_{_random_base36()}"


def validate_id(id_str: str, prefix: Optional[str] = None) -> bool:
    """
    Check if a string is a valid short ID (optionally for one prefix).

    Args:
        id_str: String to validate
        prefix: Expected prefix, any prefix if None

    Returns:
        True if valid, False otherwise
    """
    if not id_str or not isinstance(id_str, str):
        return False
    match = ID_PATTERN.match(id_str)
    if not match:
        return False
    return prefix is None or match.group(1) == prefix


def get_id_prefix(id_str: str) -> Optional[str]:
    """Extract the prefix from a short ID, None if invalid"""
    match = ID_PATTERN.match(id_str or '')
    return match.group(1) if match else None
