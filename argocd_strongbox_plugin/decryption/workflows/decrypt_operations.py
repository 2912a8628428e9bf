"""Workflow for decrypting an application source tree in place."""
import os
import logging
from typing import Optional

from argocd_strongbox_plugin.secrets.domains.ciphertext import is_age_armored
from argocd_strongbox_plugin.secrets.domains.config_loader import Settings
from argocd_strongbox_plugin.secrets.domains.errors import (
    FilesystemError,
    PluginError,
    SecretNotFoundError,
)
from argocd_strongbox_plugin.secrets.domains.models import (
    ApplicationContext,
    KeyMaterial,
    SecretReference,
)
from argocd_strongbox_plugin.secrets.workflows.secret_operations import SecretResolver

from ..domains import age_identity, strongbox
from ..domains.detector import has_ciphertext, iter_files

logger = logging.getLogger(__name__)


def resolve_key_material(
    resolver: SecretResolver,
    app: ApplicationContext,
    keyring_ref: SecretReference,
    identity_ref: SecretReference,
) -> KeyMaterial:
    """
    Look up keyring and identity data for the application.

    When both references point to the same secret it is fetched only once.
    Either key may be missing from the secret.

    Raises:
        SecretNotFoundError: If a secret doesn't exist or holds neither key
        ForbiddenError, ContentSafetyError, SecretStoreError: From the resolver
    """
    namespace = app.destination_namespace
    keyring_key = keyring_ref.key or strongbox.KEYRING_FILENAME
    identity_key = identity_ref.key or strongbox.IDENTITY_FILENAME

    keyring_secret = resolver.resolve(namespace, keyring_ref)
    if identity_ref.coordinates(namespace) == keyring_ref.coordinates(namespace):
        identity_secret = keyring_secret
    else:
        identity_secret = resolver.resolve(namespace, identity_ref)

    material = KeyMaterial(
        keyring=keyring_secret.data.get(keyring_key),
        identity=identity_secret.data.get(identity_key),
    )
    if material.is_empty:
        raise SecretNotFoundError(
            f"encrypted files found but secret {keyring_ref.coordinates(namespace)} has no "
            f"'{keyring_key}' key and secret {identity_ref.coordinates(namespace)} has no "
            f"'{identity_key}' key"
        )
    return material


def decrypt_age_files(root: str, identity_data: bytes) -> int:
    """
    Decrypt every armored age file under root in place.

    Each file is read, decrypted and rewritten through the same handle, so
    path and permissions stay the same. Files already decrypted by an earlier
    failed run are plaintext and are skipped.

    Returns:
        Number of files decrypted

    Raises:
        ConfigError: If the identity data can't be parsed
        DecryptionError: If a file can't be decrypted (message names the file)
        FilesystemError: On I/O errors
    """
    identities = age_identity.parse_identities(identity_data)

    count = 0
    try:
        for path in iter_files(root):
            with open(path, "r+b") as f:
                content = f.read()
                if not is_age_armored(content):
                    continue
                try:
                    plaintext = age_identity.decrypt_armored(content, identities)
                except PluginError as e:
                    raise e.with_context(f"unable to decrypt {path}") from e
                f.truncate(0)
                f.seek(0)
                f.write(plaintext)
            logger.debug(f"Decrypted {path}")
            count += 1
    except OSError as e:
        raise FilesystemError(f"unable to decrypt age files under {root}: {e}") from e

    return count


def ensure_decryption(
    root: str,
    app: ApplicationContext,
    keyring_ref: SecretReference,
    identity_ref: SecretReference,
    resolver: SecretResolver,
    settings: Optional[Settings] = None,
) -> None:
    """
    Decrypt all encrypted files in the application source tree.

    The secret store is only contacted if the tree contains encrypted files.
    strongbox files are decrypted with the keyring, age files with the
    identity; both can be present at once.

    A failure part way through leaves already decrypted files as they are,
    callers must discard the working tree instead of retrying on it.

    Args:
        root: Application source directory
        app: Application being processed
        keyring_ref: Secret holding the strongbox keyring
        identity_ref: Secret holding the age identity
        resolver: SecretResolver for this invocation
        settings: Plugin settings (defaults if None)

    Raises:
        PluginError: Any failure, wrapped with the path that failed
    """
    settings = settings or Settings()

    try:
        found = has_ciphertext(root)
    except OSError as e:
        raise FilesystemError(f"unable to check {root} for encrypted files: {e}") from e

    if not found:
        logger.info(f"No encrypted files found in {root}")
        return

    material = resolve_key_material(resolver, app, keyring_ref, identity_ref)

    if material.keyring is not None:
        keyring_path = os.path.join(root, strongbox.KEYRING_FILENAME)
        try:
            strongbox.write_key_file(keyring_path, material.keyring)
        except OSError as e:
            raise FilesystemError(f"unable to write keyring file {keyring_path}: {e}") from e
        try:
            strongbox.run_recursive_decryption(
                root,
                keyring_path,
                binary=settings.strongbox_binary,
                timeout=settings.command_timeout,
            )
        except PluginError as e:
            raise e.with_context(f"strongbox decryption of {root} failed") from e

    if material.identity is not None:
        identity_path = os.path.join(root, strongbox.IDENTITY_FILENAME)
        try:
            strongbox.write_key_file(identity_path, material.identity)
        except OSError as e:
            raise FilesystemError(f"unable to write identity file {identity_path}: {e}") from e
        try:
            count = decrypt_age_files(root, material.identity)
        except PluginError as e:
            raise e.with_context(f"age decryption of {root} failed") from e
        logger.info(f"Decrypted {count} age file(s) in {root}")
