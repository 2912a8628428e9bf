"""Workflow for preparing ssh access to private remote bases."""
import os
import logging
from typing import Dict, Optional, Tuple

from argocd_strongbox_plugin.decryption.domains.strongbox import write_key_file
from argocd_strongbox_plugin.generate.domains.kustomize import find_kustomize_files
from argocd_strongbox_plugin.secrets.domains.config_loader import DEFAULT_ANNOTATION_MARKER, Settings
from argocd_strongbox_plugin.secrets.domains.errors import (
    ConfigError,
    FilesystemError,
    ManifestParseError,
    PluginError,
)
from argocd_strongbox_plugin.secrets.domains.models import (
    ApplicationContext,
    AuthorizedSecret,
    IdentityFileSet,
    KeyedDomain,
    SecretReference,
)
from argocd_strongbox_plugin.secrets.workflows.secret_operations import SecretResolver

from ..domains.rewriter import update_repo_base_addresses
from ..domains.ssh_config import (
    DEFAULT_GIT_SSH_COMMAND,
    NO_HOST_KEY_CHECKING,
    construct_ssh_config,
    git_ssh_command,
)

logger = logging.getLogger(__name__)

SSH_DIR = ".ssh"
KNOWN_HOSTS_KEY = "known_hosts"


def process_kustomize_files(root: str, marker: str = DEFAULT_ANNOTATION_MARKER) -> KeyedDomain:
    """
    Rewrite annotated remote base URLs in every kustomization file under root.

    Each file is read and rewritten once; files without annotations are left
    untouched.

    Returns:
        Merged key name -> host map of all files

    Raises:
        ManifestParseError: If a file has a malformed annotation (names the file)
        FilesystemError: On I/O errors
    """
    keyed_domain: KeyedDomain = {}
    try:
        for path in find_kustomize_files(root):
            with open(path, "r", encoding="utf-8", errors="surrogateescape") as f:
                content = f.read()
            try:
                file_keys, rewritten = update_repo_base_addresses(content, marker)
            except PluginError as e:
                raise e.with_context(f"unable to update {path}") from e
            if not file_keys:
                continue

            with open(path, "w", encoding="utf-8", errors="surrogateescape") as f:
                f.write(rewritten)
            logger.debug(f"Rewrote remote bases in {path} for keys {sorted(file_keys)}")

            for key_name, domain in file_keys.items():
                if keyed_domain.get(key_name, domain) != domain:
                    raise ManifestParseError(
                        f"key '{key_name}' is used for host {keyed_domain[key_name]} and {domain} "
                        f"in different kustomization files, use a separate key per host"
                    )
                keyed_domain[key_name] = domain
    except OSError as e:
        raise FilesystemError(f"unable to update kustomization files under {root}: {e}") from e

    return keyed_domain


def write_ssh_material(ssh_dir: str, secret: AuthorizedSecret) -> Tuple[IdentityFileSet, str]:
    """
    Write private keys and known_hosts from the git ssh secret.

    Every key other than known_hosts is treated as a private key. ssh accepts
    a key file without a trailing newline but authentication with it fails,
    so one is appended when missing.

    Returns:
        (key name -> key file path, known hosts ssh option)

    Raises:
        ConfigError: If a key name can't be used as a file name
        OSError: On write errors
    """
    identity_files: Dict[str, str] = {}
    known_hosts_option = NO_HOST_KEY_CHECKING

    for key_name, value in secret.data.items():
        if key_name in ("", ".", "..") or "/" in key_name or key_name == "config":
            raise ConfigError(
                f"secret {secret.namespace}/{secret.name} has key '{key_name}' which can't be used as an ssh key file name"
            )

        path = os.path.join(ssh_dir, key_name)
        if key_name == KNOWN_HOSTS_KEY:
            write_key_file(path, value)
            known_hosts_option = f"-o UserKnownHostsFile={path}"
            continue

        if not value.endswith(b"\n"):
            value += b"\n"
        write_key_file(path, value)
        identity_files[key_name] = path

    return identity_files, known_hosts_option


def setup_git_ssh(
    root: str,
    app: ApplicationContext,
    ssh_ref: Optional[SecretReference],
    resolver: SecretResolver,
    settings: Optional[Settings] = None,
) -> str:
    """
    Prepare ssh keys and config so kustomize can fetch private remote bases.

    Even without an ssh secret the returned command stops ssh from using keys
    in default locations, so misconfigured ssh bases fail with a clear error.

    Args:
        root: Application source directory
        app: Application being processed
        ssh_ref: Secret with private keys (and optionally known_hosts), or None
        resolver: SecretResolver for this invocation
        settings: Plugin settings (defaults if None)

    Returns:
        Value for the GIT_SSH_COMMAND environment variable

    Raises:
        PluginError: If the secret can't be used, a kustomization file is
            malformed or a referenced key is missing from the secret
    """
    settings = settings or Settings()

    if ssh_ref is None or not ssh_ref.name:
        logger.debug("No git ssh secret configured, using default ssh command")
        return DEFAULT_GIT_SSH_COMMAND

    try:
        secret = resolver.resolve(app.destination_namespace, ssh_ref)
    except PluginError as e:
        raise e.with_context("unable to get git ssh secret") from e

    ssh_dir = os.path.abspath(os.path.join(root, SSH_DIR))
    try:
        os.makedirs(ssh_dir, mode=0o700, exist_ok=True)
        identity_files, known_hosts_option = write_ssh_material(ssh_dir, secret)
    except OSError as e:
        raise FilesystemError(f"unable to write ssh keys to {ssh_dir}: {e}") from e

    keyed_domain = process_kustomize_files(root, settings.annotation_marker)

    body = construct_ssh_config(identity_files, keyed_domain)
    config_path = os.path.join(ssh_dir, "config")
    try:
        write_key_file(config_path, body.encode("utf-8"))
    except OSError as e:
        raise FilesystemError(f"unable to write ssh config {config_path}: {e}") from e

    logger.info(f"Configured git ssh with {len(identity_files)} key(s) for {app.name}")
    return git_ssh_command(config_path, known_hosts_option)
