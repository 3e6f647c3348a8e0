"""
Payload codec for tonelink.
Converts byte payloads to symbol-domain frames and back, with
Reed-Solomon protection and a CRC32 integrity check.
"""

import os
import random
import zlib
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from reedsolo import RSCodec, ReedSolomonError

from tonelink.core.errors import ErrorCode, PayloadError
from tonelink.core.profile import (
    ALPHABET_SIZE,
    CRC_BYTES,
    DATA_SYMBOLS,
    HEADER_SYMBOLS,
    PREAMBLE,
    ConfigProfile,
)


@dataclass(frozen=True)
class Frame:
    """Symbol-domain representation of a payload."""
    payload: bytes
    symbols: np.ndarray

    @property
    def length(self) -> int:
        return len(self.payload)

    def __len__(self) -> int:
        return len(self.symbols)


class PayloadCodec:
    """
    Encodes payloads into frames and decodes frames into payloads.

    Frame layout (one symbol per nibble):
    - Preamble: marker symbols
    - Header: length byte followed by its bitwise complement
    - Body: Reed-Solomon codeword of payload + CRC32
    """

    def __init__(self, profile: ConfigProfile):
        """
        Initialize the codec.

        Args:
            profile: Transmission profile
        """
        self.profile = profile
        self._rs = RSCodec(profile.ecc_bytes)

    @property
    def max_payload_bytes(self) -> int:
        return self.profile.max_payload_bytes

    def validate(self, payload: Optional[Sequence[int]]) -> bytes:
        """
        Validate a payload and return it as bytes.

        Raises:
            PayloadError: If the payload is empty, too long or malformed
        """
        if payload is None:
            raise PayloadError(ErrorCode.PAYLOAD_INVALID_MESSAGE, "Payload is missing")
        if isinstance(payload, str):
            raise PayloadError(ErrorCode.PAYLOAD_INVALID_MESSAGE, "Payload must be bytes, not str")
        try:
            data = bytes(payload)
        except (TypeError, ValueError) as e:
            raise PayloadError(ErrorCode.PAYLOAD_INVALID_MESSAGE, str(e)) from e
        if len(data) == 0:
            raise PayloadError(ErrorCode.PAYLOAD_EMPTY_MESSAGE)
        if len(data) > self.profile.max_payload_bytes:
            raise PayloadError(ErrorCode.PAYLOAD_TOO_LONG)
        return data

    def frame_symbol_count(self, length: int) -> int:
        """Total number of symbols in a frame carrying `length` bytes."""
        return self.profile.symbol_count(length)

    def encode(self, payload: Sequence[int]) -> Frame:
        """
        Encode a payload into a frame.

        Args:
            payload: Payload bytes (1 to max_payload_bytes)

        Returns:
            A new Frame owned by the caller
        """
        data = self.validate(payload)
        crc = zlib.crc32(data).to_bytes(CRC_BYTES, "big")
        codeword = bytes(self._rs.encode(bytearray(data + crc)))

        length = len(data)
        inverted = ~length & 0xFF
        symbols: List[int] = list(PREAMBLE)
        symbols.extend([length >> 4, length & 0x0F, inverted >> 4, inverted & 0x0F])
        for byte in codeword:
            symbols.append((byte >> 4) & 0x0F)
            symbols.append(byte & 0x0F)

        return Frame(payload=data, symbols=np.array(symbols, dtype=np.uint8))

    def header_length(self, header: Sequence[int]) -> int:
        """
        Read the payload length from the header symbols.

        Args:
            header: The HEADER_SYMBOLS symbols following the preamble

        Returns:
            Payload length in bytes
        """
        if len(header) != HEADER_SYMBOLS:
            raise PayloadError(ErrorCode.PAYLOAD_INVALID_MESSAGE, "Truncated header")
        if any(int(s) >= DATA_SYMBOLS for s in header):
            raise PayloadError(ErrorCode.PAYLOAD_UNKNOWN_SYMBOLS)
        length = (int(header[0]) << 4) | int(header[1])
        inverted = (int(header[2]) << 4) | int(header[3])
        if length ^ inverted != 0xFF:
            raise PayloadError(ErrorCode.PAYLOAD_DECODE_FAILED, "Header check failed")
        if length < 1:
            raise PayloadError(ErrorCode.PAYLOAD_TOO_SHORT)
        if length > self.profile.max_payload_bytes:
            raise PayloadError(ErrorCode.PAYLOAD_TOO_LONG)
        return length

    def decode(self, symbols: Sequence[int]) -> bytes:
        """
        Decode a complete frame of symbols into the payload.

        Marker symbols found in the body are treated as erasures and
        repaired by Reed-Solomon when possible. No bytes are ever returned
        from a frame that fails its integrity check.

        Args:
            symbols: All symbols of the frame, preamble included

        Returns:
            Payload bytes

        Raises:
            PayloadError: With the specific decode failure code
        """
        values = [int(s) for s in symbols]
        if any(s < 0 or s >= ALPHABET_SIZE for s in values):
            raise PayloadError(ErrorCode.PAYLOAD_UNKNOWN_SYMBOLS)

        preamble_end = len(PREAMBLE)
        if tuple(values[:preamble_end]) != PREAMBLE:
            raise PayloadError(ErrorCode.PAYLOAD_DECODE_FAILED, "Preamble mismatch")

        length = self.header_length(values[preamble_end:preamble_end + HEADER_SYMBOLS])
        body = values[preamble_end + HEADER_SYMBOLS:]
        codeword_len = length + CRC_BYTES + self.profile.ecc_bytes
        if len(body) != 2 * codeword_len:
            raise PayloadError(ErrorCode.PAYLOAD_INVALID_MESSAGE, "Frame length does not match header")

        codeword = bytearray(codeword_len)
        erasures = []
        for i in range(codeword_len):
            high, low = body[2 * i], body[2 * i + 1]
            if high >= DATA_SYMBOLS or low >= DATA_SYMBOLS:
                erasures.append(i)
                continue
            codeword[i] = (high << 4) | low

        if len(erasures) > self.profile.ecc_bytes:
            raise PayloadError(ErrorCode.PAYLOAD_UNKNOWN_SYMBOLS)

        try:
            message = bytes(self._rs.decode(codeword, erase_pos=erasures or None)[0])
        except ReedSolomonError as e:
            raise PayloadError(ErrorCode.PAYLOAD_DECODE_FAILED, str(e)) from e

        data, crc = message[:-CRC_BYTES], message[-CRC_BYTES:]
        if zlib.crc32(data).to_bytes(CRC_BYTES, "big") != crc:
            raise PayloadError(ErrorCode.PAYLOAD_DECODE_FAILED, "CRC mismatch")
        return data

    def new_payload(self, length: int) -> bytes:
        """Create a zero-filled payload of a valid length."""
        if length < 1:
            raise PayloadError(ErrorCode.PAYLOAD_EMPTY_MESSAGE)
        if length > self.profile.max_payload_bytes:
            raise PayloadError(ErrorCode.PAYLOAD_TOO_LONG)
        return bytes(length)

    def random_payload(self, length: int = 0, rng: Optional[random.Random] = None) -> bytes:
        """
        Generate a random payload.

        Args:
            length: Payload length; 0 randomises the length as well
            rng: Optional random generator for reproducible payloads

        Returns:
            Random payload bytes
        """
        if length < 0:
            raise PayloadError(ErrorCode.PAYLOAD_INVALID_MESSAGE, "Length must not be negative")
        if length > self.profile.max_payload_bytes:
            raise PayloadError(ErrorCode.PAYLOAD_TOO_LONG)
        if rng is None:
            if length == 0:
                length = random.randint(1, self.profile.max_payload_bytes)
            return os.urandom(length)
        if length == 0:
            length = rng.randint(1, self.profile.max_payload_bytes)
        return bytes(rng.getrandbits(8) for _ in range(length))
