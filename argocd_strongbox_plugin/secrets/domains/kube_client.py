"""Kubernetes Secret client wrapper."""
import base64
import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .errors import SecretNotFoundError, SecretStoreError
from .models import SecretRecord

logger = logging.getLogger(__name__)


def _load_kube_config() -> None:
    """
    Load cluster credentials.

    The plugin normally runs inside the Argo CD repo server pod, so the
    in-cluster service account is tried first. Outside a cluster (local
    debugging) the default kubeconfig is used instead.
    """
    try:
        config.load_incluster_config()
        logger.debug("Using in-cluster kube config")
    except config.ConfigException:
        config.load_kube_config()
        logger.debug("Using kube config from default location")


class KubeSecretClient:
    """Wrapper around the Kubernetes CoreV1 API, read-only access to Secrets."""

    def __init__(self, api: Optional[client.CoreV1Api] = None):
        self._api = api

    @property
    def api(self) -> client.CoreV1Api:
        """Lazy-initialize client."""
        if self._api is None:
            _load_kube_config()
            self._api = client.CoreV1Api()
        return self._api

    def get(self, namespace: str, name: str) -> SecretRecord:
        """
        Fetch a secret from the cluster.

        Args:
            namespace: Namespace the secret lives in
            name: Name of the secret

        Returns:
            SecretRecord with base64-decoded data values

        Raises:
            SecretNotFoundError: If the secret does not exist
            SecretStoreError: On any other API failure
        """
        try:
            secret = self.api.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise SecretNotFoundError(f"secret {namespace}/{name} not found") from e
            raise SecretStoreError(
                f"unable to get secret {namespace}/{name}: {e.status} {e.reason}"
            ) from e

        metadata = secret.metadata
        data = {
            key: base64.b64decode(value) if value else b""
            for key, value in (secret.data or {}).items()
        }
        return SecretRecord(
            name=metadata.name or name,
            namespace=metadata.namespace or namespace,
            data=data,
            annotations=dict(metadata.annotations or {}),
        )
