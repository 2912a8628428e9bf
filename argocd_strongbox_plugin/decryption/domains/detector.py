"""Detect encrypted files in an application source tree."""
import os
import stat
import logging

from argocd_strongbox_plugin.secrets.domains.ciphertext import contains_marker

logger = logging.getLogger(__name__)

VCS_DIR = ".git"

# big enough to hold either ciphertext marker
HEADER_CHUNK_SIZE = 100


class _CiphertextFound(Exception):
    """Stops the walk on the first encrypted file."""
    pass


def _raise(err: OSError) -> None:
    raise err


def iter_files(root: str):
    """
    Yield paths of all regular files under root, skipping the .git directory.

    Any error while listing a directory or reading file status is raised,
    not skipped, so a file removed during the walk surfaces as an error.
    """
    for dirpath, dirnames, filenames in os.walk(root, onerror=_raise):
        if VCS_DIR in dirnames:
            dirnames.remove(VCS_DIR)
        for filename in filenames:
            path = os.path.join(dirpath, filename)
            if stat.S_ISREG(os.lstat(path).st_mode):
                yield path


def _check_file(path: str) -> None:
    with open(path, "rb") as f:
        chunk = f.read(HEADER_CHUNK_SIZE)
    if contains_marker(chunk):
        raise _CiphertextFound(path)


def has_ciphertext(root: str) -> bool:
    """
    Check whether any file under root starts with a ciphertext marker.

    Only the first HEADER_CHUNK_SIZE bytes of each file are read. The walk
    stops at the first encrypted file.

    Args:
        root: Application source directory

    Returns:
        True if at least one encrypted file was found

    Raises:
        OSError: On any error reading the tree
    """
    try:
        for path in iter_files(root):
            _check_file(path)
    except _CiphertextFound as found:
        logger.debug(f"Encrypted file found: {found}")
        return True
    return False
