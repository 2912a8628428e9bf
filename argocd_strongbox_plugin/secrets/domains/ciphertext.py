"""Ciphertext markers for the two supported encryption formats."""
from typing import Union

# strongbox (symmetric keyring) files start with this line
STRONGBOX_MARKER = b"# STRONGBOX ENCRYPTED RESOURCE"

# age armored files start with this header line
AGE_ARMOR_HEADER = b"-----BEGIN AGE ENCRYPTED FILE-----"

CIPHERTEXT_MARKERS = (STRONGBOX_MARKER, AGE_ARMOR_HEADER)


def _as_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    return value


def is_ciphertext(value: Union[bytes, str]) -> bool:
    """Return True if value starts with either ciphertext marker."""
    return _as_bytes(value).startswith(CIPHERTEXT_MARKERS)


def is_age_armored(value: Union[bytes, str]) -> bool:
    """Return True if value starts with the age armor header."""
    return _as_bytes(value).startswith(AGE_ARMOR_HEADER)


def contains_marker(chunk: bytes) -> bool:
    """Return True if either marker occurs anywhere in chunk."""
    return any(marker in chunk for marker in CIPHERTEXT_MARKERS)
