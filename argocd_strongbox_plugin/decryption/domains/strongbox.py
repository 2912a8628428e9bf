"""strongbox (symmetric keyring) backend."""
import os
import logging
from typing import Dict, Optional

from argocd_strongbox_plugin.process import run_command

logger = logging.getLogger(__name__)

KEYRING_FILENAME = ".strongbox_keyring"
IDENTITY_FILENAME = ".strongbox_identity"


def write_key_file(path: str, data: bytes) -> None:
    """Write key material readable by the owner only."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    os.chmod(path, 0o600)


def run_recursive_decryption(
    root: str,
    keyring_path: str,
    binary: str = "strongbox",
    timeout: Optional[float] = None,
) -> None:
    """
    Decrypt all strongbox files under root in place.

    Raises:
        ExternalToolError: If strongbox exits non-zero (message has its output)
        OperationCancelledError: If the deadline expired
    """
    logger.info(f"Running strongbox decryption in {root}")
    run_command(
        [binary, "-keyring", keyring_path, "-decrypt", "-recursive", root],
        timeout=timeout,
        merge_output=True,
    )


def setup_git_config(
    root: str,
    env: Dict[str, str],
    binary: str = "strongbox",
    timeout: Optional[float] = None,
) -> None:
    """
    Install strongbox git filters into the git config under HOME=root.

    kustomize fetches remote bases with git, the filters let those bases be
    decrypted on checkout.
    """
    run_command([binary, "-git-config"], cwd=root, env=env, timeout=timeout, merge_output=True)
