"""CLI entrypoint for argocd-strongbox-plugin."""
import os
import sys
import signal
import argparse
import logging

from .validators import validate_namespace, validate_secret_name

VERSION = "0.1.0"

# argo-cd adds this prefix to all plugin envs configured in Applications
ARGOCD_APP_ENV_PREFIX = "ARGOCD_ENV_"

DEFAULT_SECRET_NAME = "argocd-strongbox-secret"
DEFAULT_KEYRING_KEY = ".strongbox_keyring"

# Configure logging to stderr. argo-cd only shows plugin output when a
# command fails, so only errors are logged unless configured otherwise.
logging.basicConfig(
    level=logging.ERROR,
    format="%(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def _handle_sigterm(signum, frame):
    raise KeyboardInterrupt


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default)


def _load_context(args):
    """Build settings, application and resolver for one invocation."""
    from argocd_strongbox_plugin.secrets.domains.config_loader import load_config
    from argocd_strongbox_plugin.secrets.domains.kube_client import KubeSecretClient
    from argocd_strongbox_plugin.secrets.domains.models import ApplicationContext
    from argocd_strongbox_plugin.secrets.workflows.secret_operations import SecretResolver

    if not args.app_name:
        print("Error: --app-name (or ARGOCD_APP_NAME) is required", file=sys.stderr)
        sys.exit(2)
    validate_namespace(args.app_namespace)

    settings = load_config(args.config)
    logging.getLogger().setLevel(settings.log_level)

    app = ApplicationContext(name=args.app_name, destination_namespace=args.app_namespace)
    resolver = SecretResolver(KubeSecretClient(), settings.allowed_namespaces_annotation)
    return settings, app, resolver


def _working_dir(args) -> str:
    cwd = os.path.abspath(args.cwd or os.getcwd())
    if not os.path.isdir(cwd):
        print(f"Error: Working directory does not exist: {cwd}", file=sys.stderr)
        sys.exit(2)
    return cwd


def cmd_version(args):
    """Show version information."""
    print(f"argocd-strongbox-plugin {VERSION}")


def cmd_decrypt(args):
    """Decrypt all encrypted files under the application source directory."""
    from argocd_strongbox_plugin.decryption.workflows.decrypt_operations import ensure_decryption
    from argocd_strongbox_plugin.secrets.domains.models import SecretReference

    validate_secret_name(args.secret_name)
    validate_namespace(args.secret_namespace, "--secret-namespace", allow_empty=True)

    cwd = _working_dir(args)
    settings, app, resolver = _load_context(args)

    keyring_ref = SecretReference(name=args.secret_name, namespace=args.secret_namespace, key=args.keyring_key)
    identity_ref = SecretReference(name=args.secret_name, namespace=args.secret_namespace)

    ensure_decryption(cwd, app, keyring_ref, identity_ref, resolver, settings)


def cmd_generate(args):
    """Generate manifests with kustomize and print them to stdout."""
    from argocd_strongbox_plugin.generate.workflows.build_operations import cleanup_credentials, ensure_build
    from argocd_strongbox_plugin.secrets.domains.models import SecretReference

    ssh_ref = None
    if args.git_ssh_secret_name:
        validate_secret_name(args.git_ssh_secret_name, "--git-ssh-secret-name")
        validate_namespace(args.git_ssh_secret_namespace, "--git-ssh-secret-namespace", allow_empty=True)
        ssh_ref = SecretReference(name=args.git_ssh_secret_name, namespace=args.git_ssh_secret_namespace)

    cwd = _working_dir(args)
    settings, app, resolver = _load_context(args)

    try:
        manifests = ensure_build(cwd, app, ssh_ref, resolver, settings)
    finally:
        cleanup_credentials(cwd)

    sys.stdout.write(f"{manifests.decode('utf-8')}\n---\n")


def _add_common_arguments(parser):
    # following envs are set by argo-cd while running plugin commands
    parser.add_argument(
        "--app-name",
        default=_env("ARGOCD_APP_NAME"),
        help="Name of the application (env: ARGOCD_APP_NAME)"
    )
    parser.add_argument(
        "--app-namespace",
        default=_env("ARGOCD_APP_NAMESPACE"),
        help="Destination namespace of the application (env: ARGOCD_APP_NAMESPACE)"
    )
    parser.add_argument(
        "--config",
        help="Path to plugin config file (env: ARGOCD_STRONGBOX_PLUGIN_CONFIG)"
    )
    parser.add_argument(
        "--cwd",
        help="Application source directory (default: current directory)"
    )


def build_parser():
    parser = argparse.ArgumentParser(
        prog="argocd-strongbox-plugin",
        description="Argo CD plugin to decrypt strongbox/age encrypted files and build manifests with kustomize",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (secret not found or forbidden, decryption failed, kustomize failed, etc.)
  2 - Usage error (missing or invalid arguments)

Environment variables (set in the Application plugin env, argo-cd adds the ARGOCD_ENV_ prefix):
  STRONGBOX_SECRET_NAME              - Secret with keyring and/or age identity
  STRONGBOX_SECRET_NAMESPACE         - Namespace of that secret (default: app namespace)
  STRONGBOX_KEYRING_KEY              - Key of the keyring in the secret
  STRONGBOX_GIT_SSH_SECRET_NAME      - Secret with git ssh keys and known_hosts
  STRONGBOX_GIT_SSH_SECRET_NAMESPACE - Namespace of that secret (default: app namespace)
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # version command
    _version_parser = subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of argocd-strongbox-plugin"
    )

    # decrypt command
    decrypt_parser = subparsers.add_parser(
        "decrypt",
        help="Decrypt all encrypted files under the application source directory",
        description="""
Decrypt strongbox and age encrypted files in place.

The secret is only read if encrypted files are found. strongbox files are
decrypted with the keyring key of the secret, age files with its
'.strongbox_identity' key.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_common_arguments(decrypt_parser)
    decrypt_parser.add_argument(
        "--secret-name",
        default=_env(ARGOCD_APP_ENV_PREFIX + "STRONGBOX_SECRET_NAME", DEFAULT_SECRET_NAME),
        help=f"Secret with strongbox keyring and/or age identity (default: {DEFAULT_SECRET_NAME})"
    )
    decrypt_parser.add_argument(
        "--secret-namespace",
        default=_env(ARGOCD_APP_ENV_PREFIX + "STRONGBOX_SECRET_NAMESPACE"),
        help="Namespace of the secret, must allow the app namespace in its annotation if different"
    )
    decrypt_parser.add_argument(
        "--keyring-key",
        default=_env(ARGOCD_APP_ENV_PREFIX + "STRONGBOX_KEYRING_KEY", DEFAULT_KEYRING_KEY),
        help=f"Key of the secret which contains the strongbox keyring (default: {DEFAULT_KEYRING_KEY})"
    )

    # generate command
    generate_parser = subparsers.add_parser(
        "generate",
        help="Run kustomize build to generate kube manifests",
        description="""
Generate manifests with 'kustomize build' and print them to stdout.

Remote bases over ssh use the keys from the git ssh secret. A key is bound
to a remote base with a comment on the line above it:

  # argocd-strongbox-plugin: key_a
  - ssh://github.com/org/repo//manifests?ref=main
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_common_arguments(generate_parser)
    generate_parser.add_argument(
        "--git-ssh-secret-name",
        default=_env(ARGOCD_APP_ENV_PREFIX + "STRONGBOX_GIT_SSH_SECRET_NAME"),
        help="Secret with git ssh private keys and optional known_hosts"
    )
    generate_parser.add_argument(
        "--git-ssh-secret-namespace",
        default=_env(ARGOCD_APP_ENV_PREFIX + "STRONGBOX_GIT_SSH_SECRET_NAMESPACE"),
        help="Namespace of the git ssh secret"
    )

    return parser


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (secret not found, decryption failed, kustomize failed, etc.)
        2 - Usage errors (invalid arguments)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # If no command provided, show help and exit with usage error code
    if not args.command:
        parser.print_help()
        sys.exit(2)

    # argo-cd terminates plugin commands with SIGTERM on timeout
    signal.signal(signal.SIGTERM, _handle_sigterm)

    # Route to command handlers
    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "decrypt":
            cmd_decrypt(args)
        elif args.command == "generate":
            cmd_generate(args)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.debug("command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
