"""age (asymmetric) backend on top of pyrage."""
import logging
from typing import List

import pyrage

from argocd_strongbox_plugin.secrets.domains.errors import ConfigError, DecryptionError

logger = logging.getLogger(__name__)


def parse_identities(data: bytes) -> List[pyrage.x25519.Identity]:
    """
    Parse an age identity file.

    Blank lines and '#' comments are ignored, every other line must be an
    AGE-SECRET-KEY-1... identity.

    Raises:
        ConfigError: If a line is not a valid identity or none were found
    """
    identities = []
    for lineno, line in enumerate(data.decode("utf-8", errors="replace").splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            identities.append(pyrage.x25519.Identity.from_str(line))
        except pyrage.IdentityError as e:
            raise ConfigError(f"invalid age identity on line {lineno}: {e}") from e

    if not identities:
        raise ConfigError("no age identities found in identity data")
    logger.debug(f"Parsed {len(identities)} age identities")
    return identities


def decrypt_armored(data: bytes, identities: List[pyrage.x25519.Identity]) -> bytes:
    """
    Decrypt an armored age file.

    Raises:
        DecryptionError: If the armor is malformed or no identity matches
    """
    try:
        return pyrage.decrypt(data, identities)
    except pyrage.DecryptError as e:
        raise DecryptionError(f"age decryption failed: {e}") from e
