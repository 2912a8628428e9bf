"""Rewrite private remote base URLs in kustomization files.

A key is bound to a remote base with a comment on the line above it:

    resources:
      # argocd-strongbox-plugin: key_a
      - ssh://github.com/org/repo//manifests?ref=main

The host of the URL is replaced with `<key>_<host with dots as underscores>`
(`key_a_github_com` above). The generated ssh config maps that alias back to
the real host with the right identity file, which lets several keys be used
against the same host. Dots can't be kept in the alias as they break `Host`
matching in ssh config.
"""
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from argocd_strongbox_plugin.secrets.domains.config_loader import DEFAULT_ANNOTATION_MARKER
from argocd_strongbox_plugin.secrets.domains.errors import ManifestParseError

KUSTOMIZATION_FILENAMES = ("kustomization.yaml", "kustomization.yml", "Kustomization")

_HOST = r"(?P<host>[A-Za-z0-9][A-Za-z0-9.-]*)"
_USER = r"(?P<user>[A-Za-z0-9._-]+@)"
_ITEM = r"(?P<prefix>^\s*-\s*)"

# Supported private git URL forms, tried in order. Each pattern splits the
# line into the text before the host, the host itself and the rest.
PRIVATE_URL_FORMS = (
    # ssh://[user@]host:port/path
    ("ssh-port", re.compile(_ITEM + r"(?P<scheme>ssh://)" + _USER + "?" + _HOST + r"(?P<rest>:\d+/.*)$")),
    # ssh://[user@]host/path
    ("ssh", re.compile(_ITEM + r"(?P<scheme>ssh://)" + _USER + "?" + _HOST + r"(?P<rest>/.*)$")),
    # ssh://[user@]host:path
    ("ssh-scp", re.compile(_ITEM + r"(?P<scheme>ssh://)" + _USER + "?" + _HOST + r"(?P<rest>:[^\d/].*)$")),
    # user@host:path
    ("scp", re.compile(_ITEM + r"(?P<scheme>)" + _USER + _HOST + r"(?P<rest>:[^/].*)$")),
)


def annotation_pattern(marker: str = DEFAULT_ANNOTATION_MARKER) -> "re.Pattern":
    """Pattern of the `# ... <marker>: <keyName>` comment."""
    return re.compile(r"#.*?" + re.escape(marker) + r":\s*(?P<key>\w+)")


@dataclass
class PrivateURL:
    """A remote base line split around its host."""
    form: str
    prefix: str
    scheme: str
    user: str
    host: str
    rest: str

    def with_host(self, host: str) -> str:
        return f"{self.prefix}{self.scheme}{self.user}{host}{self.rest}"


def parse_private_url(line: str) -> Optional[PrivateURL]:
    """Return the parsed URL if line is a list entry with a private git URL."""
    for form, pattern in PRIVATE_URL_FORMS:
        m = pattern.match(line)
        if m:
            return PrivateURL(
                form=form,
                prefix=m.group("prefix"),
                scheme=m.group("scheme") or "",
                user=m.group("user") or "",
                host=m.group("host"),
                rest=m.group("rest"),
            )
    return None


def keyed_host(key_name: str, domain: str) -> str:
    """`key_a` + `github.com` -> `key_a_github_com`"""
    return f"{key_name}_{domain.replace('.', '_')}"


def update_repo_base_addresses(
    text: str,
    marker: str = DEFAULT_ANNOTATION_MARKER,
) -> Tuple[Dict[str, str], str]:
    """
    Inject key names into the hosts of annotated remote base URLs.

    State machine over lines:
        idle        annotation comment -> key-pending, anything else passes through
        key-pending private URL -> rewrite host, back to idle; anything else is an error

    Args:
        text: Content of a kustomization file
        marker: Annotation marker token

    Returns:
        (keyed_domain, rewritten text). keyed_domain maps key name to the real
        host and is empty if nothing was rewritten.

    Raises:
        ManifestParseError: If an annotation isn't directly followed by a
            private git URL, or a key is bound to two different hosts
    """
    annotation = annotation_pattern(marker)
    keyed_domain: Dict[str, str] = {}
    out = []
    pending_key = ""
    pending_lineno = 0

    for lineno, line in enumerate(text.splitlines(), start=1):
        if not pending_key:
            m = annotation.search(line)
            if m:
                pending_key = m.group("key")
                pending_lineno = lineno
            out.append(line)
            continue

        url = parse_private_url(line)
        if url is None:
            raise ManifestParseError(
                f"found key reference '{pending_key}' in comment on line {pending_lineno} "
                f"but line {lineno} is not a private git URL (ssh://host/path or user@host:path)"
            )

        bound = keyed_domain.get(pending_key)
        if bound is not None and bound != url.host:
            raise ManifestParseError(
                f"key '{pending_key}' on line {pending_lineno} is already used for host "
                f"{bound}, it can't also be used for {url.host}"
            )
        keyed_domain[pending_key] = url.host
        out.append(url.with_host(keyed_host(pending_key, url.host)))
        pending_key = ""

    if pending_key:
        raise ManifestParseError(
            f"found key reference '{pending_key}' in comment on line {pending_lineno} "
            f"but no remote base URL follows it"
        )

    return keyed_domain, "\n".join(out) + "\n"


def has_private_url(text: str) -> bool:
    """Return True if any line of text is a private git URL list entry."""
    return any(parse_private_url(line) for line in text.splitlines())
