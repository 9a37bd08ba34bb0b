"""
Tests for the envelope codec.

Tests cover:
- Round-trip of empty, unicode and colon-bearing secrets
- Envelope layout (three lowercase hex segments, nonce and tag sizes)
- Fresh nonce per encryption
- Tamper detection on ciphertext and tag
- Malformed envelopes
- Key derivation and the process-wide codec
"""
import re

import pytest

from credential_vault.exceptions import (
    DecryptionError,
    KeyDerivationError,
    MalformedEnvelopeError,
)
from credential_vault.vault import crypto
from credential_vault.vault.config import VaultConfig
from credential_vault.vault.crypto import (
    EnvelopeCodec,
    NONCE_SIZE,
    TAG_SIZE,
    derive_key,
    get_codec,
    unpack_envelope,
)

HEX_SEGMENT = re.compile(r"^[0-9a-f]*$")


def _flip(hex_text: str, index: int) -> str:
    """Replace one hex character with a different one."""
    replacement = "0" if hex_text[index] != "0" else "1"
    return hex_text[:index] + replacement + hex_text[index + 1:]


class TestRoundTrip:
    """Decrypt(Encrypt(s)) == s."""

    @pytest.mark.parametrize("secret", [
        "",
        "hunter2",
        "pässwörd-ß-日本語-🔐",
        "a:b:c",
        ":::",
        "x" * 4096,
    ])
    def test_round_trip(self, codec, secret):
        """Test every secret comes back unchanged."""
        assert codec.decrypt(codec.encrypt(secret)) == secret

    def test_codecs_from_same_secret_interoperate(self, codec):
        """Test a second codec derived from the same secret opens envelopes."""
        other = EnvelopeCodec.from_secret("test-server-secret")
        assert other.decrypt(codec.encrypt("shared")) == "shared"

    def test_codec_from_other_secret_fails_closed(self, codec):
        """Test a key mismatch surfaces as DecryptionError."""
        other = EnvelopeCodec.from_secret("a-different-secret")
        with pytest.raises(DecryptionError):
            other.decrypt(codec.encrypt("secret"))


class TestEnvelopeLayout:
    """Tests for the serialized envelope format."""

    def test_three_lowercase_hex_segments(self, codec):
        """Test envelope is nonce:ciphertext:tag in lowercase hex."""
        segments = codec.encrypt("hello world").split(":")
        assert len(segments) == 3
        for segment in segments:
            assert HEX_SEGMENT.match(segment)

    def test_segment_sizes(self, codec):
        """Test nonce and tag sizes; ciphertext matches plaintext length."""
        nonce, ciphertext, tag = unpack_envelope(codec.encrypt("hello"))
        assert len(nonce) == NONCE_SIZE
        assert len(tag) == TAG_SIZE
        assert len(ciphertext) == len("hello")

    def test_empty_secret_has_empty_ciphertext_segment(self, codec):
        """Test an empty secret yields 'nonce::tag'."""
        nonce_hex, ciphertext_hex, tag_hex = codec.encrypt("").split(":")
        assert ciphertext_hex == ""
        assert len(nonce_hex) == NONCE_SIZE * 2
        assert len(tag_hex) == TAG_SIZE * 2

    def test_repr_does_not_leak_key(self, codec):
        """Test the codec repr names the algorithm only."""
        assert repr(codec) == "<EnvelopeCodec aes-256-gcm>"


class TestNonceUniqueness:
    """Tests that every encryption draws a fresh nonce."""

    def test_same_plaintext_different_envelopes(self, codec):
        """Test nonce and ciphertext differ for the same plaintext."""
        first = codec.encrypt("same secret").split(":")
        second = codec.encrypt("same secret").split(":")
        assert first[0] != second[0]
        assert first[1] != second[1]

    def test_no_repeated_nonces(self, codec):
        """Test a batch of envelopes never repeats a nonce."""
        nonces = {codec.encrypt("x").split(":")[0] for _ in range(200)}
        assert len(nonces) == 200


class TestTamperDetection:
    """Flipping a single hex character must fail closed."""

    def test_flip_every_ciphertext_character(self, codec):
        """Test each ciphertext position is covered by the tag."""
        nonce_hex, ciphertext_hex, tag_hex = codec.encrypt("secret!").split(":")
        for index in range(len(ciphertext_hex)):
            tampered = ":".join((nonce_hex, _flip(ciphertext_hex, index), tag_hex))
            with pytest.raises(DecryptionError):
                codec.decrypt(tampered)

    def test_flip_every_tag_character(self, codec):
        """Test each tag position is checked."""
        nonce_hex, ciphertext_hex, tag_hex = codec.encrypt("secret!").split(":")
        for index in range(len(tag_hex)):
            tampered = ":".join((nonce_hex, ciphertext_hex, _flip(tag_hex, index)))
            with pytest.raises(DecryptionError):
                codec.decrypt(tampered)

    def test_flip_nonce_character(self, codec):
        """Test a modified nonce does not authenticate."""
        nonce_hex, ciphertext_hex, tag_hex = codec.encrypt("secret!").split(":")
        tampered = ":".join((_flip(nonce_hex, 3), ciphertext_hex, tag_hex))
        with pytest.raises(DecryptionError):
            codec.decrypt(tampered)

    def test_swapped_ciphertexts(self, codec):
        """Test ciphertext from one envelope cannot ride on another's tag."""
        a = codec.encrypt("alpha").split(":")
        b = codec.encrypt("bravo").split(":")
        with pytest.raises(DecryptionError):
            codec.decrypt(":".join((a[0], b[1], a[2])))


class TestMalformedEnvelopes:
    """Tests for envelopes that cannot be parsed."""

    @pytest.mark.parametrize("envelope", [
        "not-a-valid-envelope",
        "",
        "abcd:ef",
        "a:b:c:d",
        "zz" * 16 + ":00:" + "00" * 16,
        "0" * 31 + ":00:" + "00" * 16,
        "00" * 16 + ":00:" + "00" * 8,
        "00" * 4 + ":00:" + "00" * 16,
    ])
    def test_malformed(self, codec, envelope):
        """Test bad serialization raises MalformedEnvelopeError."""
        with pytest.raises(MalformedEnvelopeError):
            codec.decrypt(envelope)

    def test_non_string_envelope(self, codec):
        """Test a missing envelope is malformed, not a crash."""
        with pytest.raises(MalformedEnvelopeError):
            codec.decrypt(None)


class TestKeyDerivation:
    """Tests for scrypt key derivation and the process-wide codec."""

    def test_derived_key_is_deterministic(self):
        """Test the same secret and salt give the same key."""
        assert derive_key("secret", b"sel") == derive_key("secret", b"sel")
        assert len(derive_key("secret")) == 32

    def test_salt_changes_key(self):
        """Test the salt participates in derivation."""
        assert derive_key("secret", b"sel") != derive_key("secret", b"other")

    def test_empty_secret_rejected(self):
        """Test an empty secret is a fatal key derivation error."""
        with pytest.raises(KeyDerivationError):
            derive_key("")

    def test_wrong_key_length_rejected(self):
        """Test the codec refuses keys that are not 32 bytes."""
        with pytest.raises(KeyDerivationError):
            EnvelopeCodec(b"short")

    def test_get_codec_derives_once(self, monkeypatch):
        """Test the process-wide codec is built once and then reused."""
        monkeypatch.setattr(crypto, "_codec", None)
        calls = []
        real_derive = crypto.derive_key

        def counting_derive(secret, salt=b"sel"):
            calls.append(secret)
            return real_derive(secret, salt)

        monkeypatch.setattr(crypto, "derive_key", counting_derive)
        config = VaultConfig(server_secret="process-secret")
        first = get_codec(config)
        second = get_codec(config)
        assert first is second
        assert len(calls) == 1
        assert first.decrypt(second.encrypt("ok")) == "ok"

    def test_get_codec_without_secret(self, monkeypatch):
        """Test a missing server secret prevents building the codec."""
        monkeypatch.setattr(crypto, "_codec", None)
        monkeypatch.delenv("VAULT_SERVER_SECRET", raising=False)
        monkeypatch.delenv("JWT_SECRET", raising=False)
        with pytest.raises(KeyDerivationError):
            get_codec()
