"""Domain models for secret resolution."""
from dataclasses import dataclass, field
from typing import Dict, Optional

# alias -> real hostname, built while rewriting kustomization files
KeyedDomain = Dict[str, str]

# alias -> absolute path of the private key written under <root>/.ssh
IdentityFileSet = Dict[str, str]


@dataclass(frozen=True)
class ApplicationContext:
    """Tenant whose source tree is being processed."""
    name: str
    destination_namespace: str


@dataclass(frozen=True)
class SecretReference:
    """Pointer to key material.

    An empty namespace means the application's destination namespace, an
    empty key means the consumer's default key.
    """
    name: str
    namespace: str = ""
    key: str = ""

    def coordinates(self, working_namespace: str) -> str:
        return f"{self.namespace or working_namespace}/{self.name}"


@dataclass
class SecretRecord:
    """Raw secret as returned by the secret store, before any checks."""
    name: str
    namespace: str
    data: Dict[str, bytes] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass
class AuthorizedSecret:
    """Secret that passed the namespace policy and content-safety check."""
    name: str
    namespace: str
    data: Dict[str, bytes] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)


@dataclass
class KeyMaterial:
    """Decryption keys found for an application."""
    keyring: Optional[bytes] = None
    identity: Optional[bytes] = None

    @property
    def is_empty(self) -> bool:
        return self.keyring is None and self.identity is None
