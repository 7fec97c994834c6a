"""
Unit tests for the secret cipher and versioned key set.
"""

import base64

import pytest

from nodrake_vault.exceptions import DecryptionError, ServiceError, ValidationError
from nodrake_vault.utils.encryption_utils import (
    NONCE_BYTES,
    TAG_BYTES,
    EncryptionKeySet,
    SecretCipher,
)


class TestSecretCipherRoundTrip:
    def test_encrypt_then_decrypt_returns_plaintext(self, cipher):
        ciphertext, version = cipher.encrypt(b"BQD-spotify-access-token")

        assert version == 1
        assert cipher.decrypt(ciphertext, version) == b"BQD-spotify-access-token"

    def test_ciphertext_layout_is_nonce_body_tag(self, cipher):
        ciphertext, _ = cipher.encrypt(b"abc")
        assert len(ciphertext) == NONCE_BYTES + 3 + TAG_BYTES

    def test_same_plaintext_encrypts_differently(self, cipher):
        first, _ = cipher.encrypt_token("same-token")
        second, _ = cipher.encrypt_token("same-token")
        assert first != second

    def test_plaintext_does_not_appear_in_ciphertext(self, cipher):
        ciphertext, _ = cipher.encrypt_token("ya29.very-recognizable-token")
        assert b"very-recognizable" not in ciphertext

    def test_empty_and_unicode_tokens(self, cipher):
        for token in ("", "tökén-🎵"):
            ciphertext, version = cipher.encrypt_token(token)
            assert cipher.decrypt_token(ciphertext, version) == token


class TestSecretCipherFailures:
    def test_tampered_ciphertext_fails_authentication(self, cipher):
        ciphertext, version = cipher.encrypt(b"secret")
        tampered = bytearray(ciphertext)
        tampered[NONCE_BYTES] ^= 0x01

        with pytest.raises(DecryptionError) as exc_info:
            cipher.decrypt(bytes(tampered), version)
        assert exc_info.value.context["reason"] == "authentication_failed"

    def test_unknown_key_version(self, cipher):
        ciphertext, _ = cipher.encrypt(b"secret")
        with pytest.raises(DecryptionError) as exc_info:
            cipher.decrypt(ciphertext, 99)
        assert exc_info.value.context["reason"] == "unknown_key_version"

    def test_key_version_is_bound_to_ciphertext(self, key_set, cipher):
        key_set.add_key()
        ciphertext, _ = cipher.encrypt(b"secret", key_version=1)

        with pytest.raises(DecryptionError):
            cipher.decrypt(ciphertext, 2)

    def test_truncated_blob(self, cipher):
        with pytest.raises(DecryptionError) as exc_info:
            cipher.decrypt(b"short", 1)
        assert exc_info.value.context["reason"] == "truncated"

    def test_encrypt_under_unknown_version_is_rejected(self, cipher):
        with pytest.raises(ValidationError):
            cipher.encrypt(b"secret", key_version=7)

    def test_errors_never_carry_plaintext(self, cipher):
        ciphertext, _ = cipher.encrypt(b"plaintext-marker")
        with pytest.raises(DecryptionError) as exc_info:
            cipher.decrypt(ciphertext[:-1] + bytes([ciphertext[-1] ^ 0xFF]), 1)
        assert "plaintext-marker" not in str(exc_info.value.to_dict(include_cause=True))


class TestKeyRotation:
    def test_new_key_becomes_current_and_old_still_decrypts(self, key_set, cipher):
        old_ciphertext, old_version = cipher.encrypt_token("before-rotation")

        new_version = key_set.add_key()

        assert new_version == 2
        assert cipher.current_key_version() == 2
        assert cipher.decrypt_token(old_ciphertext, old_version) == "before-rotation"
        assert cipher.encrypt_token("after-rotation")[1] == 2

    def test_needs_reencryption(self, key_set, cipher):
        assert not cipher.needs_reencryption(1)
        key_set.add_key()
        assert cipher.needs_reencryption(1)

    def test_reencrypt_moves_blob_to_current_version(self, key_set, cipher):
        ciphertext, _ = cipher.encrypt_token("rotate-me")
        key_set.add_key()

        new_ciphertext, version = cipher.reencrypt(ciphertext, 1)

        assert version == 2
        assert cipher.decrypt_token(new_ciphertext, 2) == "rotate-me"

    def test_retire_old_version(self, key_set, cipher):
        ciphertext, _ = cipher.encrypt_token("orphaned")
        key_set.add_key()

        key_set.retire(1)

        assert key_set.versions() == [2]
        with pytest.raises(DecryptionError):
            cipher.decrypt_token(ciphertext, 1)

    def test_current_version_cannot_be_retired(self, key_set):
        with pytest.raises(ValidationError):
            key_set.retire(1)

    def test_retiring_unknown_version_is_noop(self, key_set):
        key_set.retire(42)
        assert key_set.versions() == [1]


class TestEncryptionKeySet:
    def test_encoded_round_trip(self):
        first, second = EncryptionKeySet.generate_key(), EncryptionKeySet.generate_key()
        encoded = (
            f"1:{base64.b64encode(first).decode()}, 2:{base64.b64encode(second).decode()}"
        )

        key_set = EncryptionKeySet.from_encoded(encoded)

        assert key_set.current_version == 2
        assert key_set.get(1) == first
        assert EncryptionKeySet.from_encoded(key_set.to_encoded()).get(2) == second

    @pytest.mark.parametrize(
        "encoded",
        [
            "no-separator",
            "x:AAAA",
            "1:not base64!!",
            f"1:{base64.b64encode(b'too-short').decode()}",
            f"0:{base64.b64encode(bytes(32)).decode()}",
        ],
    )
    def test_malformed_entries_are_rejected(self, encoded):
        with pytest.raises(ValidationError):
            EncryptionKeySet.from_encoded(encoded)

    def test_empty_key_set_has_no_current_version(self):
        with pytest.raises(ServiceError):
            EncryptionKeySet().current_version

    def test_add_key_to_empty_set_starts_at_one(self):
        key_set = EncryptionKeySet()
        assert key_set.add_key() == 1
        assert len(key_set) == 1

    def test_cipher_is_usable_with_explicit_key(self):
        key = bytes(range(32))
        cipher = SecretCipher(EncryptionKeySet({3: key}))
        ciphertext, version = cipher.encrypt(b"x")
        assert version == 3
        assert cipher.decrypt(ciphertext, 3) == b"x"
