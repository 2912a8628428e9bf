"""Workflow for resolving secrets with namespace policy and content checks."""
import logging
from typing import Dict, Protocol

from ..domains.ciphertext import is_ciphertext
from ..domains.config_loader import DEFAULT_ALLOWED_NAMESPACES_ANNOTATION
from ..domains.errors import ContentSafetyError, ForbiddenError
from ..domains.models import AuthorizedSecret, SecretRecord, SecretReference

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    """Anything that can look up a secret by namespace and name."""

    def get(self, namespace: str, name: str) -> SecretRecord:
        ...


def allowed_namespaces(annotations: Dict[str, str], annotation_key: str) -> list:
    """Return the trimmed entries of the comma-separated allow-list annotation."""
    raw = annotations.get(annotation_key, "")
    return [entry.strip() for entry in raw.split(",") if entry.strip()]


def verify_secret_decrypted(secret: SecretRecord) -> None:
    """
    Make sure no value of the secret is still encrypted.

    Raises:
        ContentSafetyError: If any data value starts with a ciphertext marker
    """
    for key, value in secret.data.items():
        if is_ciphertext(value):
            raise ContentSafetyError(
                f"secret {secret.namespace}/{secret.name} has encrypted data for the key {key}"
            )


class SecretResolver:
    """
    Resolves secret references for one invocation.

    Holds the secret store client and the allow-list annotation key so they
    can be passed explicitly to every workflow that needs key material.
    """

    def __init__(self, store: SecretStore, annotation_key: str = DEFAULT_ALLOWED_NAMESPACES_ANNOTATION):
        self.store = store
        self.annotation_key = annotation_key

    def resolve(self, working_namespace: str, ref: SecretReference) -> AuthorizedSecret:
        """
        Fetch a secret and check it may be used by the working namespace.

        Args:
            working_namespace: Destination namespace of the application
            ref: Secret to fetch; empty namespace means working_namespace

        Returns:
            AuthorizedSecret

        Raises:
            SecretNotFoundError: If the secret does not exist
            SecretStoreError: On other secret store failures
            ForbiddenError: If the secret lives in another namespace that didn't
                list working_namespace in its allow-list annotation
            ContentSafetyError: If any value of the secret is still encrypted
        """
        namespace = ref.namespace or working_namespace
        secret = self.store.get(namespace, ref.name)

        if namespace != working_namespace:
            if working_namespace not in allowed_namespaces(secret.annotations, self.annotation_key):
                raise ForbiddenError(
                    f'secret "{namespace}/{ref.name}" cannot be used in namespace "{working_namespace}", '
                    f"the destination namespace must be listed in the '{self.annotation_key}' annotation"
                )
            logger.debug(f"Namespace {working_namespace} allowed to read secret {namespace}/{ref.name}")

        verify_secret_decrypted(secret)

        return AuthorizedSecret(
            name=secret.name,
            namespace=secret.namespace,
            data=dict(secret.data),
            annotations=dict(secret.annotations),
        )
