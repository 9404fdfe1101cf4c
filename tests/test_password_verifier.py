import pytest

from boardaccess.service.passwords import PasswordVerifier


@pytest.fixture(scope="module")
def digest():
    return PasswordVerifier().hash_secret("s3cret-admin-pass")


def test_hash_secret_produces_argon2id_digest(digest):
    assert digest.startswith("$argon2id$")


def test_verify_accepts_matching_secret(digest):
    verifier = PasswordVerifier(digest)
    assert verifier.verify("s3cret-admin-pass") is True


def test_verify_rejects_wrong_secret(digest):
    verifier = PasswordVerifier(digest)
    assert verifier.verify("not-the-secret") is False


def test_verify_explicit_hash_overrides_configured_one(digest):
    verifier = PasswordVerifier(PasswordVerifier().hash_secret("other"))
    assert verifier.verify("s3cret-admin-pass", digest) is True
    assert verifier.verify("s3cret-admin-pass") is False


@pytest.mark.parametrize("stored", [None, ""])
def test_verify_fails_closed_without_configured_hash(stored):
    verifier = PasswordVerifier(stored)
    assert verifier.verify("anything") is False


def test_verify_fails_closed_on_malformed_hash():
    verifier = PasswordVerifier("$2b$10$not-an-argon2-digest")
    assert verifier.verify("anything") is False


@pytest.mark.parametrize("secret", [None, ""])
def test_verify_rejects_empty_secret(digest, secret):
    assert PasswordVerifier(digest).verify(secret) is False
