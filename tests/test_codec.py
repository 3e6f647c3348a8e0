"""Tests for the payload codec."""

import random

import numpy as np
import pytest

from tonelink.core.errors import ErrorCode, PayloadError
from tonelink.core.profile import MARKER_A, MARKER_B, PREAMBLE
from tonelink.protocol.codec import PayloadCodec

from conftest import make_profile


def _corrupt_byte(symbols: np.ndarray, index: int) -> None:
    """Flip the low nibble of one codeword byte in place."""
    position = 8 + 2 * index + 1
    symbols[position] = (int(symbols[position]) + 1) % 16


class TestFrameLayout:
    """Tests for the frame produced by encode."""

    def test_frame_layout(self, codec):
        """Test preamble, header and body sizes."""
        frame = codec.encode(b"\x12\x34")

        assert frame.payload == b"\x12\x34"
        assert frame.length == 2
        assert len(frame) == 28
        assert tuple(frame.symbols[:4]) == PREAMBLE
        assert list(frame.symbols[4:8]) == [0x0, 0x2, 0xF, 0xD]
        assert frame.symbols.dtype == np.uint8

    def test_body_starts_with_payload(self, codec):
        """Test the RS code is systematic: payload nibbles lead the body."""
        frame = codec.encode(b"\xab\x0c")

        assert list(frame.symbols[8:12]) == [0xA, 0xB, 0x0, 0xC]

    def test_body_uses_data_symbols_only(self, codec):
        """Test marker symbols appear only in the preamble."""
        frame = codec.encode(bytes(range(4)))

        assert np.all(frame.symbols[4:] < 16)
        assert codec.frame_symbol_count(4) == len(frame)

    def test_frames_are_independent(self, codec):
        """Test each encode returns its own symbol array."""
        first = codec.encode(b"\x01")
        second = codec.encode(b"\x01")

        first.symbols[-1] = MARKER_B
        assert second.symbols[-1] != MARKER_B


class TestValidate:
    """Tests for payload validation."""

    def test_accepts_bytes_like(self, codec):
        """Test bytes, bytearray and int lists are accepted."""
        assert codec.validate(b"\x01") == b"\x01"
        assert codec.validate(bytearray(b"\x01\x02")) == b"\x01\x02"
        assert codec.validate([1, 2, 3]) == b"\x01\x02\x03"

    @pytest.mark.parametrize("payload,code", [
        (None, ErrorCode.PAYLOAD_INVALID_MESSAGE),
        ("text", ErrorCode.PAYLOAD_INVALID_MESSAGE),
        ([256], ErrorCode.PAYLOAD_INVALID_MESSAGE),
        (b"", ErrorCode.PAYLOAD_EMPTY_MESSAGE),
        (bytes(5), ErrorCode.PAYLOAD_TOO_LONG),
    ])
    def test_rejects_invalid(self, codec, payload, code):
        """Test invalid payloads are rejected with their code."""
        with pytest.raises(PayloadError) as exc:
            codec.validate(payload)
        assert exc.value.code == code

    def test_encode_validates(self, codec):
        """Test encode rejects invalid payloads."""
        with pytest.raises(PayloadError):
            codec.encode(b"")


class TestDecode:
    """Tests for decode."""

    @pytest.mark.parametrize("payload", [b"\x00", b"\xff", b"\x01\x02\x03", b"\xde\xad\xbe\xef"])
    def test_round_trip(self, codec, payload):
        """Test encoded frames decode to the sent payload."""
        assert codec.decode(codec.encode(payload).symbols) == payload

    def test_corrects_errors(self, codec):
        """Test up to ecc_bytes / 2 corrupted bytes are repaired."""
        symbols = codec.encode(b"\x10\x20\x30").symbols.copy()
        _corrupt_byte(symbols, 0)
        _corrupt_byte(symbols, 5)

        assert codec.decode(symbols) == b"\x10\x20\x30"

    def test_too_many_errors(self, codec):
        """Test frames beyond correction fail without returning bytes."""
        symbols = codec.encode(b"\x10\x20\x30").symbols.copy()
        for index in (0, 2, 4):
            _corrupt_byte(symbols, index)

        with pytest.raises(PayloadError) as exc:
            codec.decode(symbols)
        assert exc.value.code == ErrorCode.PAYLOAD_DECODE_FAILED

    def test_marker_symbols_are_erasures(self, codec):
        """Test marker symbols in the body are repaired as erasures."""
        symbols = codec.encode(b"\x10\x20").symbols.copy()
        for index in range(4):
            symbols[8 + 2 * index] = MARKER_A

        assert codec.decode(symbols) == b"\x10\x20"

    def test_too_many_erasures(self, codec):
        """Test more erasures than ecc_bytes."""
        symbols = codec.encode(b"\x10\x20").symbols.copy()
        for index in range(5):
            symbols[8 + 2 * index] = MARKER_B

        with pytest.raises(PayloadError) as exc:
            codec.decode(symbols)
        assert exc.value.code == ErrorCode.PAYLOAD_UNKNOWN_SYMBOLS

    def test_out_of_alphabet_symbol(self, codec):
        """Test symbols outside the alphabet."""
        symbols = codec.encode(b"\x01").symbols.copy()
        symbols[10] = 18

        with pytest.raises(PayloadError) as exc:
            codec.decode(symbols)
        assert exc.value.code == ErrorCode.PAYLOAD_UNKNOWN_SYMBOLS

    def test_preamble_mismatch(self, codec):
        """Test a frame without the marker preamble."""
        symbols = codec.encode(b"\x01").symbols.copy()
        symbols[1] = MARKER_A

        with pytest.raises(PayloadError) as exc:
            codec.decode(symbols)
        assert exc.value.code == ErrorCode.PAYLOAD_DECODE_FAILED

    def test_length_mismatch(self, codec):
        """Test a frame shorter than its header announces."""
        symbols = codec.encode(b"\x01\x02").symbols[:-2]

        with pytest.raises(PayloadError) as exc:
            codec.decode(symbols)
        assert exc.value.code == ErrorCode.PAYLOAD_INVALID_MESSAGE


class TestHeaderLength:
    """Tests for header parsing."""

    def test_valid_header(self, codec):
        """Test a valid header."""
        assert codec.header_length([0x0, 0x3, 0xF, 0xC]) == 3

    @pytest.mark.parametrize("header,code", [
        ([0x0, 0x3, 0xF, 0xD], ErrorCode.PAYLOAD_DECODE_FAILED),
        ([0x0, 0x0, 0xF, 0xF], ErrorCode.PAYLOAD_TOO_SHORT),
        ([0x0, 0x5, 0xF, 0xA], ErrorCode.PAYLOAD_TOO_LONG),
        ([MARKER_A, 0x3, 0xF, 0xC], ErrorCode.PAYLOAD_UNKNOWN_SYMBOLS),
        ([0x0, 0x3], ErrorCode.PAYLOAD_INVALID_MESSAGE),
    ])
    def test_invalid_header(self, codec, header, code):
        """Test invalid headers are rejected with their code."""
        with pytest.raises(PayloadError) as exc:
            codec.header_length(header)
        assert exc.value.code == code


class TestPayloadFactories:
    """Tests for new_payload and random_payload."""

    def test_new_payload(self, codec):
        """Test zero-filled payloads."""
        assert codec.new_payload(3) == bytes(3)

    @pytest.mark.parametrize("length,code", [
        (0, ErrorCode.PAYLOAD_EMPTY_MESSAGE),
        (5, ErrorCode.PAYLOAD_TOO_LONG),
    ])
    def test_new_payload_invalid(self, codec, length, code):
        """Test new_payload rejects invalid lengths."""
        with pytest.raises(PayloadError) as exc:
            codec.new_payload(length)
        assert exc.value.code == code

    def test_random_payload_length(self, codec):
        """Test random payloads of a fixed length."""
        assert len(codec.random_payload(3)) == 3

    def test_random_payload_any_length(self, codec):
        """Test length 0 picks a valid random length."""
        for _ in range(20):
            assert 1 <= len(codec.random_payload()) <= 4

    def test_random_payload_reproducible(self, codec):
        """Test a seeded generator gives the same payload."""
        first = codec.random_payload(4, rng=random.Random(7))
        second = codec.random_payload(4, rng=random.Random(7))

        assert first == second

    @pytest.mark.parametrize("length,code", [
        (-1, ErrorCode.PAYLOAD_INVALID_MESSAGE),
        (5, ErrorCode.PAYLOAD_TOO_LONG),
    ])
    def test_random_payload_invalid(self, codec, length, code):
        """Test random_payload rejects invalid lengths."""
        with pytest.raises(PayloadError) as exc:
            codec.random_payload(length)
        assert exc.value.code == code

    def test_random_payloads_decode(self):
        """Test random payloads survive a round trip on a larger profile."""
        codec = PayloadCodec(make_profile(max_payload_bytes=64, ecc_bytes=8))
        rng = random.Random(3)
        for _ in range(10):
            payload = codec.random_payload(rng=rng)
            assert codec.decode(codec.encode(payload).symbols) == payload
