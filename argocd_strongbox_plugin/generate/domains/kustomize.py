"""Locate kustomization files and run kustomize build."""
import os
import logging
from typing import Dict, List, Optional

from argocd_strongbox_plugin.decryption.domains.detector import iter_files
from argocd_strongbox_plugin.gitssh.domains.rewriter import KUSTOMIZATION_FILENAMES, has_private_url
from argocd_strongbox_plugin.process import run_command

logger = logging.getLogger(__name__)

YAML_EXTENSIONS = (".yaml", ".yml")


def find_kustomize_files(root: str) -> List[str]:
    """Return paths of all kustomization files under root, each exactly once."""
    return sorted(
        path for path in iter_files(root)
        if os.path.basename(path) in KUSTOMIZATION_FILENAMES
    )


def has_ssh_remote_base(kustomize_files: List[str]) -> bool:
    """Return True if any of the files references a remote base over ssh."""
    for path in kustomize_files:
        with open(path, "r", encoding="utf-8", errors="surrogateescape") as f:
            if has_private_url(f.read()):
                logger.debug(f"Found ssh remote base in {path}")
                return True
    return False


def read_yaml_files(root: str) -> bytes:
    """
    Concatenate all YAML files under root into one multi-document stream.

    Used for plain manifest directories without a kustomization file.
    """
    content = b""
    for path in sorted(iter_files(root)):
        if not path.endswith(YAML_EXTENSIONS):
            continue
        with open(path, "rb") as f:
            content += f.read() + b"\n---\n"
    return content


def run_kustomize_build(
    root: str,
    env: Dict[str, str],
    binary: str = "kustomize",
    timeout: Optional[float] = None,
) -> bytes:
    """
    Run `kustomize build .` in root and return the generated YAML.

    Raises:
        ExternalToolError: If kustomize exits non-zero (message has its stderr)
        OperationCancelledError: If the deadline expired
    """
    result = run_command([binary, "build", "."], cwd=root, env=env, timeout=timeout)
    return result.stdout
