"""Error kinds raised by argocd-strongbox-plugin.

Every error carries the operation and the entity it concerns in its message,
so the CLI can print it as-is and exit non-zero.
"""
import copy


class PluginError(Exception):
    """Base class for all plugin errors."""

    def with_context(self, context: str) -> "PluginError":
        """Return a copy of this error with context prepended to the message."""
        wrapped = copy.copy(self)
        wrapped.args = (f"{context}: {self}",)
        return wrapped


class SecretNotFoundError(PluginError):
    """Secret, or a required key inside it, does not exist."""
    pass


class SecretStoreError(PluginError):
    """Secret store API failure other than not-found."""
    pass


class ForbiddenError(PluginError):
    """Cross-namespace secret access not allowed by the secret's annotation."""
    pass


class ContentSafetyError(PluginError):
    """Ciphertext found where plaintext was required."""
    pass


class ManifestParseError(PluginError):
    """Malformed key annotation / remote base URL pairing in a kustomization file."""
    pass


class ConfigError(PluginError):
    """Configuration error exception."""
    pass


class ExternalToolError(PluginError):
    """External decryption or build step failed.

    Attributes:
        output: Diagnostic output captured from the tool, if any
    """

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output


class DecryptionError(ExternalToolError):
    """In-process age decryption failed."""
    pass


class FilesystemError(PluginError):
    """Reading or writing the working tree failed."""
    pass


class OperationCancelledError(PluginError):
    """Invocation was cancelled or hit its deadline while a tool was running."""
    pass
