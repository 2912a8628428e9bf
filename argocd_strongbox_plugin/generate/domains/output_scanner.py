"""Last check on generated manifests: no ciphertext may reach a Secret."""
import base64
import binascii
import logging
import re
from typing import Any, Dict, Iterator, Tuple

import yaml

from argocd_strongbox_plugin.secrets.domains.ciphertext import is_ciphertext
from argocd_strongbox_plugin.secrets.domains.errors import ContentSafetyError

logger = logging.getLogger(__name__)

_DOCUMENT_SEPARATOR = re.compile(rb"^---[ \t]*\r?$", re.MULTILINE)


def split_documents(stream: bytes) -> Iterator[bytes]:
    """Yield the non-empty documents of a multi-document YAML stream."""
    for doc in _DOCUMENT_SEPARATOR.split(stream):
        if doc.strip():
            yield doc


def iter_resources(rendered: bytes) -> Iterator[Any]:
    """
    Yield every parsed document of a multi-document YAML stream.

    The stream is split on bare separator lines first, so one broken
    document doesn't hide the others. Each chunk is still parsed as a
    stream, since separators carrying a comment, tag or inline content
    aren't split on.
    """
    for chunk in split_documents(rendered):
        try:
            for resource in yaml.safe_load_all(chunk):
                yield resource
        except yaml.YAMLError:
            logger.debug("Skipping rest of chunk that is not valid YAML")


def _data_value_candidates(value: Any) -> Tuple[bytes, ...]:
    raw = str(value).encode("utf-8")
    try:
        return (base64.b64decode(raw), raw)
    except (binascii.Error, ValueError):
        return (raw,)


def _secret_values(doc: Dict[str, Any]) -> Iterator[Tuple[str, Tuple[bytes, ...]]]:
    """Yield (key, candidate values) for data and stringData of a Secret.

    data values are checked decoded and as written, since a plain text
    marker can survive lenient base64 decoding as garbage.
    """
    data = doc.get("data")
    if isinstance(data, dict):
        for key, value in data.items():
            if value is not None:
                yield key, _data_value_candidates(value)

    string_data = doc.get("stringData")
    if isinstance(string_data, dict):
        for key, value in string_data.items():
            if value is not None:
                yield key, (str(value).encode("utf-8"),)


def check_secrets(rendered: bytes) -> None:
    """
    Make sure no Secret in the rendered manifests holds encrypted data.

    Documents that aren't valid YAML mappings are skipped, only resources of
    kind Secret are inspected.

    Args:
        rendered: Multi-document YAML output of the build

    Raises:
        ContentSafetyError: If a Secret value starts with a ciphertext marker
    """
    for resource in iter_resources(rendered):
        if not isinstance(resource, dict) or resource.get("kind") != "Secret":
            continue

        metadata = resource.get("metadata") or {}
        name = metadata.get("name", "") if isinstance(metadata, dict) else ""
        for key, candidates in _secret_values(resource):
            if any(is_ciphertext(value) for value in candidates):
                raise ContentSafetyError(f"found ciphertext in Secret: secret={name} key={key}")
