"""Test suite for in-place decryption of application source trees.

This test suite validates:
- Secrets are only read when encrypted files exist
- Key material lookup (single fetch, missing keys)
- strongbox decryption through the external binary
- age decryption with pyrage
- Failure behavior part way through a tree
"""
import os
import subprocess
from unittest import mock

import pyrage
import pytest

from argocd_strongbox_plugin.decryption.domains import age_identity
from argocd_strongbox_plugin.decryption.domains.detector import has_ciphertext
from argocd_strongbox_plugin.decryption.domains.strongbox import IDENTITY_FILENAME, KEYRING_FILENAME
from argocd_strongbox_plugin.decryption.workflows.decrypt_operations import (
    decrypt_age_files,
    ensure_decryption,
    resolve_key_material,
)
from argocd_strongbox_plugin.secrets.domains.ciphertext import is_age_armored
from argocd_strongbox_plugin.secrets.domains.config_loader import Settings
from argocd_strongbox_plugin.secrets.domains.errors import (
    ConfigError,
    ContentSafetyError,
    DecryptionError,
    ExternalToolError,
    ForbiddenError,
    SecretNotFoundError,
)
from argocd_strongbox_plugin.secrets.domains.models import SecretReference

STRONGBOX_FILE = b"# STRONGBOX ENCRYPTED RESOURCE ; See https://github.com/uw-labs/strongbox\nZGF0YQ==\n"
PLAINTEXT = b"apiVersion: v1\nkind: Secret\nstringData:\n  password: hunter2\n"

KEYRING_REF = SecretReference(name="argocd-strongbox-secret", key=KEYRING_FILENAME)
IDENTITY_REF = SecretReference(name="argocd-strongbox-secret")


def age_encrypt(identity, plaintext: bytes) -> bytes:
    return pyrage.encrypt(plaintext, [identity.to_public()], armored=True)


@pytest.fixture
def identity():
    """Fresh age identity."""
    return pyrage.x25519.Identity.generate()


@pytest.fixture
def identity_data(identity):
    """Identity file content with a comment line, as written by age-keygen."""
    return f"# created: 2024-01-01T00:00:00Z\n{identity}\n".encode()


def completed(returncode=0, stdout=b""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=None)


class TestResolveKeyMaterial:
    """Test key material lookup."""

    def test_same_secret_is_fetched_once(self, store, resolver, app):
        """Test that keyring and identity from one secret cost one lookup."""
        store.add("bar", "argocd-strongbox-secret", {KEYRING_FILENAME: b"kr", IDENTITY_FILENAME: b"id"})

        material = resolve_key_material(resolver, app, KEYRING_REF, IDENTITY_REF)

        assert material.keyring == b"kr"
        assert material.identity == b"id"
        assert store.calls == [("bar", "argocd-strongbox-secret")]

    def test_explicit_namespace_matching_default_is_fetched_once(self, store, resolver, app):
        """Test that '' and the destination namespace are the same coordinates."""
        store.add("bar", "argocd-strongbox-secret", {KEYRING_FILENAME: b"kr"})
        keyring_ref = SecretReference(name="argocd-strongbox-secret", namespace="bar", key=KEYRING_FILENAME)

        resolve_key_material(resolver, app, keyring_ref, IDENTITY_REF)

        assert len(store.calls) == 1

    def test_only_identity(self, store, resolver, app):
        """Test that a missing keyring key is allowed."""
        store.add("bar", "argocd-strongbox-secret", {IDENTITY_FILENAME: b"id"})

        material = resolve_key_material(resolver, app, KEYRING_REF, IDENTITY_REF)

        assert material.keyring is None
        assert material.identity == b"id"

    def test_custom_keyring_key(self, store, resolver, app):
        """Test that the keyring key name comes from the reference."""
        store.add("bar", "argocd-strongbox-secret", {"my-keyring": b"kr"})
        keyring_ref = SecretReference(name="argocd-strongbox-secret", key="my-keyring")

        assert resolve_key_material(resolver, app, keyring_ref, IDENTITY_REF).keyring == b"kr"

    def test_neither_key_present(self, store, resolver, app):
        """Test that a secret without keyring and identity is not found."""
        store.add("bar", "argocd-strongbox-secret", {"other": b"x"})

        with pytest.raises(SecretNotFoundError) as exc_info:
            resolve_key_material(resolver, app, KEYRING_REF, IDENTITY_REF)

        assert KEYRING_FILENAME in str(exc_info.value)
        assert IDENTITY_FILENAME in str(exc_info.value)


class TestAgeIdentity:
    """Test age identity parsing and armor handling."""

    def test_parse_identities_skips_comments(self, identity_data):
        """Test that comment and blank lines are ignored."""
        assert len(age_identity.parse_identities(identity_data + b"\n\n")) == 1

    def test_parse_invalid_identity(self):
        """Test that a malformed identity is a config error."""
        with pytest.raises(ConfigError) as exc_info:
            age_identity.parse_identities(b"AGE-SECRET-KEY-1NOTVALID\n")

        assert "line 1" in str(exc_info.value)

    def test_parse_no_identity(self):
        """Test that an identity file with only comments is a config error."""
        with pytest.raises(ConfigError):
            age_identity.parse_identities(b"# nothing here\n")

    def test_decrypt_armored(self, identity):
        """Test decryption of an armored file."""
        encrypted = age_encrypt(identity, PLAINTEXT)

        assert is_age_armored(encrypted)
        assert age_identity.decrypt_armored(encrypted, [identity]) == PLAINTEXT

    def test_decrypt_with_wrong_identity(self, identity):
        """Test that a non matching identity fails with DecryptionError."""
        encrypted = age_encrypt(pyrage.x25519.Identity.generate(), PLAINTEXT)

        with pytest.raises(DecryptionError):
            age_identity.decrypt_armored(encrypted, [identity])


class TestDecryptAgeFiles:
    """Test in-place age decryption."""

    def test_decrypts_only_armored_files(self, tmp_path, identity, identity_data):
        """Test that armored files are replaced and others untouched."""
        (tmp_path / "secret.yaml").write_bytes(age_encrypt(identity, PLAINTEXT))
        (tmp_path / "deploy.yaml").write_bytes(b"kind: Deployment\n")

        count = decrypt_age_files(str(tmp_path), identity_data)

        assert count == 1
        assert (tmp_path / "secret.yaml").read_bytes() == PLAINTEXT
        assert (tmp_path / "deploy.yaml").read_bytes() == b"kind: Deployment\n"

    def test_keeps_file_mode(self, tmp_path, identity, identity_data):
        """Test that decrypted files keep their permissions."""
        path = tmp_path / "secret.yaml"
        path.write_bytes(age_encrypt(identity, PLAINTEXT))
        os.chmod(path, 0o640)

        decrypt_age_files(str(tmp_path), identity_data)

        assert os.stat(path).st_mode & 0o777 == 0o640

    def test_shorter_plaintext_is_not_padded(self, tmp_path, identity, identity_data):
        """Test that no ciphertext remains after the plaintext."""
        (tmp_path / "s.yaml").write_bytes(age_encrypt(identity, b"x"))

        decrypt_age_files(str(tmp_path), identity_data)

        assert (tmp_path / "s.yaml").read_bytes() == b"x"

    def test_error_names_file(self, tmp_path, identity_data):
        """Test that a failing file is named in the error."""
        (tmp_path / "other.yaml").write_bytes(age_encrypt(pyrage.x25519.Identity.generate(), PLAINTEXT))

        with pytest.raises(DecryptionError) as exc_info:
            decrypt_age_files(str(tmp_path), identity_data)

        assert "other.yaml" in str(exc_info.value)


class TestEnsureDecryption:
    """Test suite for ensure_decryption."""

    def test_plain_tree_makes_no_secret_lookup(self, tmp_path, store, resolver, app):
        """Test that a tree without encrypted files never reads the secret."""
        (tmp_path / "deploy.yaml").write_text("kind: Deployment\n")

        ensure_decryption(str(tmp_path), app, KEYRING_REF, IDENTITY_REF, resolver)

        assert store.calls == []
        assert not (tmp_path / KEYRING_FILENAME).exists()

    def test_missing_secret(self, tmp_path, resolver, app):
        """Test that encrypted files without a secret fail."""
        (tmp_path / "secret.yaml").write_bytes(STRONGBOX_FILE)

        with pytest.raises(SecretNotFoundError):
            ensure_decryption(str(tmp_path), app, KEYRING_REF, IDENTITY_REF, resolver)

    def test_forbidden_secret(self, tmp_path, store, resolver, app):
        """Test that a secret from another namespace needs the annotation."""
        (tmp_path / "secret.yaml").write_bytes(STRONGBOX_FILE)
        store.add("foo", "argocd-strongbox-secret", {KEYRING_FILENAME: b"kr"})
        keyring_ref = SecretReference(name="argocd-strongbox-secret", namespace="foo", key=KEYRING_FILENAME)
        identity_ref = SecretReference(name="argocd-strongbox-secret", namespace="foo")

        with pytest.raises(ForbiddenError):
            ensure_decryption(str(tmp_path), app, keyring_ref, identity_ref, resolver)

    def test_encrypted_keyring_is_rejected(self, tmp_path, store, resolver, app):
        """Test that key material which is itself encrypted is never used."""
        (tmp_path / "secret.yaml").write_bytes(STRONGBOX_FILE)
        store.add("bar", "argocd-strongbox-secret", {KEYRING_FILENAME: STRONGBOX_FILE})

        with pytest.raises(ContentSafetyError):
            ensure_decryption(str(tmp_path), app, KEYRING_REF, IDENTITY_REF, resolver)

        assert not (tmp_path / KEYRING_FILENAME).exists()

    def test_strongbox_decryption(self, tmp_path, store, resolver, app):
        """Test that the keyring is written and strongbox run over the tree."""
        secret_file = tmp_path / "secret.yaml"
        secret_file.write_bytes(STRONGBOX_FILE)
        store.add("bar", "argocd-strongbox-secret", {KEYRING_FILENAME: b"keyring-data"})
        root = str(tmp_path)

        def fake_strongbox(cmd, **kwargs):
            secret_file.write_bytes(PLAINTEXT)
            return completed()

        with mock.patch("argocd_strongbox_plugin.process.subprocess.run", side_effect=fake_strongbox) as run:
            ensure_decryption(root, app, KEYRING_REF, IDENTITY_REF, resolver, Settings(strongbox_binary="sb"))

        keyring_path = os.path.join(root, KEYRING_FILENAME)
        cmd = run.call_args[0][0]
        assert cmd == ["sb", "-keyring", keyring_path, "-decrypt", "-recursive", root]
        assert run.call_args[1]["timeout"] == 300.0
        assert (tmp_path / KEYRING_FILENAME).read_bytes() == b"keyring-data"
        assert os.stat(keyring_path).st_mode & 0o777 == 0o600
        assert secret_file.read_bytes() == PLAINTEXT
        assert has_ciphertext(root) is False

    def test_strongbox_failure_includes_output(self, tmp_path, store, resolver, app):
        """Test that strongbox output is part of the error."""
        (tmp_path / "secret.yaml").write_bytes(STRONGBOX_FILE)
        store.add("bar", "argocd-strongbox-secret", {KEYRING_FILENAME: b"kr"})

        with mock.patch(
            "argocd_strongbox_plugin.process.subprocess.run",
            return_value=completed(returncode=1, stdout=b"no matching key found"),
        ):
            with pytest.raises(ExternalToolError) as exc_info:
                ensure_decryption(str(tmp_path), app, KEYRING_REF, IDENTITY_REF, resolver)

        assert "no matching key found" in str(exc_info.value)
        assert "strongbox decryption" in str(exc_info.value)
        assert exc_info.value.output == "no matching key found"

    def test_age_decryption(self, tmp_path, store, resolver, app, identity, identity_data):
        """Test that age files are decrypted without any external tool."""
        (tmp_path / "secret.yaml").write_bytes(age_encrypt(identity, PLAINTEXT))
        store.add("bar", "argocd-strongbox-secret", {IDENTITY_FILENAME: identity_data})

        with mock.patch("argocd_strongbox_plugin.process.subprocess.run") as run:
            ensure_decryption(str(tmp_path), app, KEYRING_REF, IDENTITY_REF, resolver)

        run.assert_not_called()
        assert (tmp_path / "secret.yaml").read_bytes() == PLAINTEXT
        assert (tmp_path / IDENTITY_FILENAME).read_bytes() == identity_data

    def test_both_formats(self, tmp_path, store, resolver, app, identity, identity_data):
        """Test that a tree with strongbox and age files is fully decrypted."""
        sb_file = tmp_path / "sb.yaml"
        sb_file.write_bytes(STRONGBOX_FILE)
        (tmp_path / "age.yaml").write_bytes(age_encrypt(identity, PLAINTEXT))
        store.add(
            "bar", "argocd-strongbox-secret",
            {KEYRING_FILENAME: b"kr", IDENTITY_FILENAME: identity_data},
        )

        def fake_strongbox(cmd, **kwargs):
            sb_file.write_bytes(b"kind: ConfigMap\n")
            return completed()

        with mock.patch("argocd_strongbox_plugin.process.subprocess.run", side_effect=fake_strongbox) as run:
            ensure_decryption(str(tmp_path), app, KEYRING_REF, IDENTITY_REF, resolver)

        assert run.call_count == 1
        assert sb_file.read_bytes() == b"kind: ConfigMap\n"
        assert (tmp_path / "age.yaml").read_bytes() == PLAINTEXT
        assert store.calls == [("bar", "argocd-strongbox-secret")]

    def test_partial_decryption_is_not_rolled_back(self, tmp_path, store, resolver, app, identity, identity_data):
        """Test that files decrypted before a failure stay decrypted."""
        (tmp_path / "a.yaml").write_bytes(age_encrypt(identity, PLAINTEXT))
        (tmp_path / "nested").mkdir()
        foreign = age_encrypt(pyrage.x25519.Identity.generate(), PLAINTEXT)
        (tmp_path / "nested" / "b.yaml").write_bytes(foreign)
        store.add("bar", "argocd-strongbox-secret", {IDENTITY_FILENAME: identity_data})

        with pytest.raises(DecryptionError) as exc_info:
            ensure_decryption(str(tmp_path), app, KEYRING_REF, IDENTITY_REF, resolver)

        assert "b.yaml" in str(exc_info.value)
        assert (tmp_path / "a.yaml").read_bytes() == PLAINTEXT
        assert (tmp_path / "nested" / "b.yaml").read_bytes() == foreign
