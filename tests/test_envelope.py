"""Tests for the streaming AES-256-GCM envelope."""

from __future__ import annotations

import io
import os
from pathlib import Path

import pytest

from scanvault.core.crypto.envelope import PARTIAL_SUFFIX, CryptoEnvelope, derive_key
from scanvault.core.errors import ConfigurationError, DecryptionFailed, OperationTimeout


@pytest.fixture
def envelope() -> CryptoEnvelope:
    return CryptoEnvelope.from_secret("unit-test-secret", chunk_size=7)


def _seal(envelope: CryptoEnvelope, data: bytes) -> bytes:
    sink = io.BytesIO()
    envelope.seal(io.BytesIO(data), sink)
    return sink.getvalue()


def _open(envelope: CryptoEnvelope, blob: bytes) -> bytes:
    sink = io.BytesIO()
    envelope.open(io.BytesIO(blob), sink)
    return sink.getvalue()


class TestDeriveKey:
    def test_key_is_sha256_length(self):
        assert len(derive_key("anything")) == 32

    def test_same_secret_same_key(self):
        assert derive_key("s3cret") == derive_key("s3cret")

    def test_empty_secret_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            derive_key("")

    def test_wrong_key_length_rejected(self):
        with pytest.raises(ValueError):
            CryptoEnvelope(b"short")


class TestStreaming:
    @pytest.mark.parametrize("size", [0, 1, 6, 7, 8, 16, 17, 100, 4096])
    def test_round_trip_across_chunk_boundaries(self, envelope, size):
        data = os.urandom(size)
        blob = _seal(envelope, data)
        assert len(blob) == size + envelope.overhead
        assert _open(envelope, blob) == data

    def test_fresh_nonce_per_seal(self, envelope):
        data = b"same plaintext"
        first, second = _seal(envelope, data), _seal(envelope, data)
        assert first[:12] != second[:12]
        assert first != second

    def test_ciphertext_does_not_contain_plaintext(self, envelope):
        data = b"highly recognisable plaintext marker"
        assert data not in _seal(envelope, data)

    def test_tampered_body_fails_and_discards_output(self, envelope):
        blob = bytearray(_seal(envelope, b"x" * 50))
        blob[20] ^= 0x01
        sink = io.BytesIO()
        with pytest.raises(DecryptionFailed):
            envelope.open(io.BytesIO(bytes(blob)), sink)
        assert sink.getvalue() == b""

    def test_tampered_tag_fails(self, envelope):
        blob = bytearray(_seal(envelope, b"payload"))
        blob[-1] ^= 0xFF
        with pytest.raises(DecryptionFailed):
            _open(envelope, bytes(blob))

    @pytest.mark.parametrize("length", [0, 5, 12, 27])
    def test_truncated_envelope_fails(self, envelope, length):
        blob = _seal(envelope, b"payload")[:length]
        with pytest.raises(DecryptionFailed):
            _open(envelope, blob)

    def test_wrong_key_fails(self, envelope):
        blob = _seal(envelope, b"payload")
        other = CryptoEnvelope.from_secret("another-secret")
        with pytest.raises(DecryptionFailed):
            _open(other, blob)

    def test_expired_deadline_raises_timeout(self):
        envelope = CryptoEnvelope.from_secret("s", timeout_seconds=-1)
        with pytest.raises(OperationTimeout) as info:
            _seal(envelope, b"data")
        assert info.value.retryable

    def test_repr_hides_key(self, envelope):
        assert "secret" not in repr(envelope)
        assert derive_key("unit-test-secret").hex() not in repr(envelope)


class TestFiles:
    def test_seal_and_open_file(self, envelope, tmp_path: Path):
        plain = tmp_path / "plain.bin"
        sealed = tmp_path / "sealed.bin"
        restored = tmp_path / "restored.bin"
        plain.write_bytes(os.urandom(1000))

        assert envelope.seal_file(plain, sealed) == 1000
        assert envelope.open_file(sealed, restored) == 1000
        assert restored.read_bytes() == plain.read_bytes()
        assert not list(tmp_path.glob(f"*{PARTIAL_SUFFIX}"))

    def test_failed_open_leaves_no_output(self, envelope, tmp_path: Path):
        plain = tmp_path / "plain.bin"
        sealed = tmp_path / "sealed.bin"
        restored = tmp_path / "restored.bin"
        plain.write_bytes(b"secret contents")
        envelope.seal_file(plain, sealed)
        sealed.write_bytes(sealed.read_bytes()[:-1] + b"\x00")

        with pytest.raises(DecryptionFailed):
            envelope.open_file(sealed, restored)
        assert not restored.exists()
        assert not list(tmp_path.glob(f"*{PARTIAL_SUFFIX}"))

    def test_stale_partial_is_overwritten(self, envelope, tmp_path: Path):
        plain = tmp_path / "plain.bin"
        sealed = tmp_path / "sealed.bin"
        plain.write_bytes(b"data")
        (tmp_path / f"sealed.bin{PARTIAL_SUFFIX}").write_bytes(b"leftover")

        envelope.seal_file(plain, sealed)
        assert sealed.exists()
        assert not (tmp_path / f"sealed.bin{PARTIAL_SUFFIX}").exists()
