"""Workflow for generating manifests with kustomize."""
import os
import shutil
import logging
from typing import Dict, Optional

from argocd_strongbox_plugin.decryption.domains import strongbox
from argocd_strongbox_plugin.gitssh.domains.ssh_config import DEFAULT_GIT_SSH_COMMAND
from argocd_strongbox_plugin.gitssh.workflows.setup_operations import SSH_DIR, setup_git_ssh
from argocd_strongbox_plugin.secrets.domains.config_loader import Settings
from argocd_strongbox_plugin.secrets.domains.errors import FilesystemError, PluginError
from argocd_strongbox_plugin.secrets.domains.models import ApplicationContext, SecretReference
from argocd_strongbox_plugin.secrets.workflows.secret_operations import SecretResolver

from ..domains.kustomize import (
    find_kustomize_files,
    has_ssh_remote_base,
    read_yaml_files,
    run_kustomize_build,
)
from ..domains.output_scanner import check_secrets

logger = logging.getLogger(__name__)

GIT_SSH_COMMAND_ENV = "GIT_SSH_COMMAND"


def build_env(root: str, git_ssh_command: str) -> Dict[str, str]:
    """
    Environment for kustomize and strongbox.

    HOME points at the source directory so ssh can't pick up local keys and
    git config is written next to the sources.
    """
    return {
        "HOME": root,
        "PATH": os.environ.get("PATH", ""),
        GIT_SSH_COMMAND_ENV: git_ssh_command,
    }


def has_key_material(root: str) -> bool:
    return (
        os.path.exists(os.path.join(root, strongbox.KEYRING_FILENAME))
        or os.path.exists(os.path.join(root, strongbox.IDENTITY_FILENAME))
    )


def ensure_build(
    root: str,
    app: ApplicationContext,
    ssh_ref: Optional[SecretReference],
    resolver: SecretResolver,
    settings: Optional[Settings] = None,
) -> bytes:
    """
    Generate the application manifests.

    Directories without a kustomization file are treated as plain manifests
    and concatenated. Otherwise ssh access is set up if any remote base uses
    ssh, strongbox git filters are installed if key material was written by
    the decrypt step, and `kustomize build` is run.

    Args:
        root: Application source directory
        app: Application being processed
        ssh_ref: Secret holding git ssh keys, or None
        resolver: SecretResolver for this invocation
        settings: Plugin settings (defaults if None)

    Returns:
        Generated multi-document YAML

    Raises:
        PluginError: If any step fails or the output contains ciphertext
    """
    settings = settings or Settings()
    root = os.path.abspath(root)

    try:
        kustomize_files = find_kustomize_files(root)
        if not kustomize_files:
            logger.info(f"No kustomization file in {root}, reading plain YAML files")
            manifests = read_yaml_files(root)
            check_secrets(manifests)
            return manifests
        has_remote_base = has_ssh_remote_base(kustomize_files)
    except OSError as e:
        raise FilesystemError(f"unable to read manifests under {root}: {e}") from e

    git_ssh_command = DEFAULT_GIT_SSH_COMMAND
    if has_remote_base:
        git_ssh_command = setup_git_ssh(root, app, ssh_ref, resolver, settings)

    env = build_env(root, git_ssh_command)

    if has_key_material(root):
        env["STRONGBOX_HOME"] = root
        try:
            strongbox.setup_git_config(
                root, env, binary=settings.strongbox_binary, timeout=settings.command_timeout
            )
        except PluginError as e:
            raise e.with_context("unable to set up git config for strongbox") from e

    try:
        manifests = run_kustomize_build(
            root, env, binary=settings.kustomize_binary, timeout=settings.command_timeout
        )
    except PluginError as e:
        raise e.with_context(f"kustomize build of {app.name} failed") from e

    check_secrets(manifests)
    return manifests


def cleanup_credentials(root: str) -> None:
    """Remove key material written into the source directory."""
    ssh_dir = os.path.join(root, SSH_DIR)
    if os.path.isdir(ssh_dir):
        shutil.rmtree(ssh_dir)
    for filename in (strongbox.KEYRING_FILENAME, strongbox.IDENTITY_FILENAME):
        path = os.path.join(root, filename)
        if os.path.exists(path):
            os.remove(path)
    logger.debug(f"Removed credentials from {root}")
