"""Input validation for CLI arguments."""
import re
import sys

# Kubernetes object names (DNS-1123 subdomain) and namespaces (DNS-1123 label)
_SUBDOMAIN_PATTERN = r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$'
_LABEL_PATTERN = r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$'


def validate_secret_name(name: str, flag: str = "--secret-name") -> None:
    """
    Validate secret name matches Kubernetes requirements.

    Args:
        name: Secret name to validate
        flag: CLI flag the value came from, used in the error message

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name:
        print(f"Error: {flag} cannot be empty", file=sys.stderr)
        sys.exit(2)

    if len(name) > 253 or not re.match(_SUBDOMAIN_PATTERN, name):
        print(f"Error: Invalid secret name '{name}' for {flag}", file=sys.stderr)
        print("\nAllowed characters: lowercase letters, numbers, hyphens (-) and dots (.)", file=sys.stderr)
        print("The name must start and end with a letter or number, max 253 characters.", file=sys.stderr)
        print("\nExamples of valid names:", file=sys.stderr)
        print("  ✓ argocd-strongbox-secret", file=sys.stderr)
        print("  ✓ git-ssh.team-a", file=sys.stderr)
        print("\nExamples of invalid names:", file=sys.stderr)
        print("  ✗ Strongbox_Secret (uppercase, underscore)", file=sys.stderr)
        print("  ✗ -secret (starts with hyphen)", file=sys.stderr)
        sys.exit(2)


def validate_namespace(namespace: str, flag: str = "--app-namespace", allow_empty: bool = False) -> None:
    """
    Validate namespace matches Kubernetes requirements.

    Args:
        namespace: Namespace to validate
        flag: CLI flag the value came from, used in the error message
        allow_empty: If True, an empty value (meaning "use the default") is accepted

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not namespace:
        if allow_empty:
            return
        print(f"Error: {flag} cannot be empty", file=sys.stderr)
        sys.exit(2)

    if len(namespace) > 63 or not re.match(_LABEL_PATTERN, namespace):
        print(f"Error: Invalid namespace '{namespace}' for {flag}", file=sys.stderr)
        print("\nNamespaces may only contain lowercase letters, numbers and hyphens (-),", file=sys.stderr)
        print("must start and end with a letter or number, max 63 characters.", file=sys.stderr)
        sys.exit(2)
