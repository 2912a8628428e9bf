"""Build ssh client config for remote base fetches."""
from typing import Dict

from argocd_strongbox_plugin.secrets.domains.errors import ConfigError

from .rewriter import keyed_host

HOST_BLOCK = """Host {alias}
    HostName {domain}
    IdentitiesOnly yes
    IdentityFile {identity_file}
    User git
"""

SINGLE_KEY_HOST_BLOCK = """Host *
    IdentitiesOnly yes
    IdentityFile {identity_file}
    User git
"""

# Used when no ssh secret is configured: never pick up keys from default
# locations, so any ssh remote base fails loudly.
DEFAULT_GIT_SSH_COMMAND = (
    "ssh -q -F none -o IdentitiesOnly=yes -o IdentityFile=/dev/null "
    "-o UserKnownHostsFile=/dev/null -o StrictHostKeyChecking=no"
)

NO_HOST_KEY_CHECKING = "-o UserKnownHostsFile=/dev/null -o StrictHostKeyChecking=no"


def construct_ssh_config(identity_files: Dict[str, str], keyed_domain: Dict[str, str]) -> str:
    """
    Build ssh_config content.

    With exactly one identity a single `Host *` block is returned and key
    references are not needed. Otherwise there is one block per referenced
    key, matching the alias injected into the remote base URL. Keys in the
    secret that no kustomization file references are ignored.

    Args:
        identity_files: key name -> path of the private key file
        keyed_domain: key name -> real host, from the rewritten kustomization files

    Returns:
        ssh_config text

    Raises:
        ConfigError: If a referenced key has no identity file, or there are
            several identities and none is referenced
    """
    if len(identity_files) == 1:
        (identity_file,) = identity_files.values()
        return SINGLE_KEY_HOST_BLOCK.format(identity_file=identity_file)

    blocks = []
    for key_name, domain in keyed_domain.items():
        identity_file = identity_files.get(key_name)
        if identity_file is None:
            raise ConfigError(
                f"unable to find path for key:{key_name}, please make sure all referenced "
                f"keys are added to git ssh secret"
            )
        blocks.append(HOST_BLOCK.format(
            alias=keyed_host(key_name, domain),
            domain=domain,
            identity_file=identity_file,
        ))

    if not blocks:
        if not identity_files:
            raise ConfigError("git ssh secret has no private keys")
        raise ConfigError(
            "keys are not referenced, please reference keys on remote base url in kustomize file"
        )

    return "\n".join(blocks)


def git_ssh_command(config_path: str, known_hosts_option: str = NO_HOST_KEY_CHECKING) -> str:
    """Value for GIT_SSH_COMMAND using the generated config."""
    return f"ssh -q -F {config_path} {known_hosts_option}"
