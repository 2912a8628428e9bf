"""Shared fixtures for the argocd-strongbox-plugin test suite."""
import pytest

from argocd_strongbox_plugin.secrets.domains.config_loader import CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH
from argocd_strongbox_plugin.secrets.domains.errors import SecretNotFoundError
from argocd_strongbox_plugin.secrets.domains.models import ApplicationContext, SecretRecord
from argocd_strongbox_plugin.secrets.workflows.secret_operations import SecretResolver

ANNOTATION = "argocd-strongbox.plugin.io/allowed-namespaces"


class FakeSecretStore:
    """In-memory secret store that records every lookup."""

    def __init__(self):
        self.secrets = {}
        self.calls = []

    def add(self, namespace, name, data=None, annotations=None):
        self.secrets[(namespace, name)] = SecretRecord(
            name=name,
            namespace=namespace,
            data=dict(data or {}),
            annotations=dict(annotations or {}),
        )

    def get(self, namespace, name):
        self.calls.append((namespace, name))
        try:
            return self.secrets[(namespace, name)]
        except KeyError:
            raise SecretNotFoundError(f"secret {namespace}/{name} not found")


@pytest.fixture
def store():
    """Empty fake secret store."""
    return FakeSecretStore()


@pytest.fixture
def resolver(store):
    """SecretResolver backed by the fake store."""
    return SecretResolver(store, ANNOTATION)


@pytest.fixture
def app():
    """Application deployed to namespace 'bar'."""
    return ApplicationContext(name="foo", destination_namespace="bar")


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Remove plugin environment variables and hide any system config file."""
    for name in (
        CONFIG_PATH_ENV,
        "STRONGBOX_ALLOWED_NAMESPACES_ANNOTATION",
        "STRONGBOX_BINARY",
        "KUSTOMIZE_BINARY",
        "STRONGBOX_COMMAND_TIMEOUT",
        "STRONGBOX_PLUGIN_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    from argocd_strongbox_plugin.secrets.domains import config_loader
    monkeypatch.setattr(config_loader, "DEFAULT_CONFIG_PATH", tmp_path / "missing" / DEFAULT_CONFIG_PATH.name)
    return monkeypatch
