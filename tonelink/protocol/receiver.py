"""
Demodulator for tonelink protocol.
Detects, synchronises and decodes frames from a continuous stream of samples.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import numpy as np

from tonelink.audio.fsk import FrequencyDetector
from tonelink.core.errors import ErrorCode, PayloadError
from tonelink.core.profile import HEADER_SYMBOLS, MARKER_A, PREAMBLE
from tonelink.protocol.codec import PayloadCodec

logger = logging.getLogger(__name__)


class ReceiverState(Enum):
    """Demodulator state for one channel."""
    SCANNING = "scanning"
    SYNCHRONIZING = "synchronizing"
    RECEIVING = "receiving"


class ReceiverEventType(Enum):
    RECEIVING = "receiving"
    RECEIVED = "received"


@dataclass(frozen=True)
class ReceiverEvent:
    """Event produced by a demodulator."""
    kind: ReceiverEventType
    channel: int
    payload: Optional[bytes] = None
    error: ErrorCode = ErrorCode.OK
    confidence: float = 0.0


@dataclass
class ReceptionProgress:
    """Tracks reception progress of the frame being assembled."""
    state: ReceiverState = ReceiverState.SCANNING
    received_symbols: int = 0
    expected_symbols: int = 0
    frame_start: int = 0
    confidence: float = 0.0

    @property
    def progress_percent(self) -> float:
        """Get progress as percentage."""
        if self.expected_symbols == 0:
            return 0.0
        return (self.received_symbols / self.expected_symbols) * 100


class Demodulator:
    """
    Streaming demodulator for one channel.

    Evaluation points are fixed absolute sample positions, so the way the
    input is split into feed() calls never changes what is detected.

    - Scanning: every symbol/8 samples, score the first preamble marker
      over a full-symbol window and track its energy peak to find the
      symbol grid.
    - Synchronizing: check the rest of the preamble on that grid.
    - Receiving: read the header, then the body, and hand the frame to
      the payload codec.
    """

    MIN_MARKER_SHARE = 0.5

    def __init__(
        self,
        codec: PayloadCodec,
        detector: FrequencyDetector,
        channel: int = 0,
        sink: Optional[Callable[[ReceiverEvent], None]] = None,
    ):
        """
        Initialize the demodulator.

        Args:
            codec: Payload codec of the active profile
            detector: Tone detector for this channel and input sample rate
            channel: Channel index
            sink: Called with every event produced while feeding
        """
        self.codec = codec
        self.channel = channel
        self._detector = detector
        self._sink = sink or (lambda event: None)

        size = detector.config.symbol_samples
        self._symbol_samples = size
        self._hop = max(1, size // 8)
        self._threshold = codec.profile.detection_threshold

        self._history = np.zeros(6 * size, dtype=np.float64)
        self._history_len = 0
        self._silence = np.zeros(size, dtype=np.float64)
        self._received = 0  # Absolute index of the next sample to arrive

        max_symbols = codec.frame_symbol_count(codec.max_payload_bytes)
        self._symbols = np.zeros(max_symbols, dtype=np.uint8)
        self._confidence_sum = 0.0

        self._progress = ReceptionProgress()
        self._reset_scan(size)

    @property
    def detector(self) -> FrequencyDetector:
        return self._detector

    def set_detector(self, detector: FrequencyDetector) -> None:
        """Swap in a detector for the same tone layout (e.g. new frequency correction)."""
        if detector.config.symbol_samples != self._symbol_samples:
            raise ValueError("Detector symbol size does not match demodulator")
        self._detector = detector

    @property
    def state(self) -> ReceiverState:
        return self._progress.state

    def get_progress(self) -> ReceptionProgress:
        """Get current reception progress."""
        return self._progress

    def is_receiving(self) -> bool:
        """Check if a committed frame is being assembled."""
        return self._progress.state == ReceiverState.RECEIVING

    # ------------------------------------------------------------------ input

    def feed(self, samples: np.ndarray) -> int:
        """
        Consume one chunk of input samples.

        Args:
            samples: Float samples in [-1, 1]

        Returns:
            Number of events emitted while consuming the chunk
        """
        emitted = 0
        pos = 0
        total = len(samples)
        capacity = len(self._history)
        while pos < total:
            if self._history_len == capacity:
                self._compact(force=True)
            take = min(total - pos, capacity - self._history_len)
            self._history[self._history_len:self._history_len + take] = samples[pos:pos + take]
            self._history_len += take
            self._received += take
            pos += take
            emitted += self._run()
            self._compact()
        return emitted

    def feed_silence(self, count: int) -> int:
        """Advance the stream by `count` samples of silence."""
        emitted = 0
        while count > 0:
            step = min(count, len(self._silence))
            emitted += self.feed(self._silence[:step])
            count -= step
        return emitted

    def abort(self) -> bool:
        """
        Abandon the frame in progress.

        A committed frame is reported as a decode failure before the
        channel returns to scanning.

        Returns:
            True if a committed frame was abandoned
        """
        committed = self.is_receiving()
        if committed:
            self._emit_received(None, ErrorCode.PAYLOAD_DECODE_FAILED)
        self._reset_scan(self._received + self._hop)
        return committed

    # --------------------------------------------------------------- internals

    def _history_start(self) -> int:
        return self._received - self._history_len

    def _window(self, end: int) -> np.ndarray:
        start = end - self._symbol_samples - self._history_start()
        return self._history[start:start + self._symbol_samples]

    def _compact(self, force: bool = False) -> None:
        needed = self._next_eval - self._symbol_samples
        if self._progress.state == ReceiverState.SYNCHRONIZING:
            # Keep what a rescan after a preamble mismatch would need
            needed = min(needed, self._progress.frame_start + self._hop)
        drop = min(self._history_len, needed - self._history_start())
        if drop <= 0:
            if force:
                raise RuntimeError("Demodulator history overflow")
            return
        if not force and self._history_len < 2 * self._symbol_samples:
            return
        keep = self._history_len - drop
        self._history[:keep] = self._history[drop:self._history_len]
        self._history_len = keep

    def _reset_scan(self, next_eval: int) -> None:
        self._progress = ReceptionProgress()
        self._peak_level = 0.0
        self._peak_pos = -1
        self._next_eval = max(next_eval, self._symbol_samples)
        self._symbol_count = 0
        self._expected = 0
        self._confidence_sum = 0.0

    def _run(self) -> int:
        emitted = 0
        while self._next_eval <= self._received:
            if self._progress.state == ReceiverState.SCANNING:
                emitted += self._scan_step()
            else:
                emitted += self._symbol_step()
        return emitted

    def _scan_step(self) -> int:
        position = self._next_eval
        level, share = self._detector.marker_level(self._window(position))
        detected = level >= self._threshold and share >= self.MIN_MARKER_SHARE

        if detected and level > self._peak_level:
            self._peak_level = level
            self._peak_pos = position
            self._next_eval = position + self._hop
            return 0

        if self._peak_pos >= 0:
            # The marker energy has passed its peak: the grid is found
            frame_start = self._peak_pos - self._symbol_samples
            self._progress.state = ReceiverState.SYNCHRONIZING
            self._progress.frame_start = frame_start
            self._symbols[0] = MARKER_A
            self._symbol_count = 1
            self._next_eval = frame_start + 2 * self._symbol_samples
            return 0

        self._next_eval = position + self._hop
        return 0

    def _symbol_step(self) -> int:
        position = self._next_eval
        symbol, confidence = self._detector.classify(self._window(position))
        index = self._symbol_count
        self._symbol_count += 1
        self._next_eval = position + self._symbol_samples

        if self._progress.state == ReceiverState.SYNCHRONIZING:
            if symbol != PREAMBLE[index]:
                logger.debug(
                    "[Demodulator] ch%d preamble mismatch at symbol %d", self.channel, index,
                )
                self._reset_scan(self._progress.frame_start + self._symbol_samples + self._hop)
                return 0
            self._symbols[index] = symbol
            if self._symbol_count == len(PREAMBLE):
                self._progress.state = ReceiverState.RECEIVING
                self._progress.expected_symbols = len(PREAMBLE) + HEADER_SYMBOLS
                self._sink(ReceiverEvent(ReceiverEventType.RECEIVING, self.channel))
                return 1
            return 0

        self._symbols[index] = symbol
        self._confidence_sum += confidence
        self._progress.received_symbols = self._symbol_count
        header_end = len(PREAMBLE) + HEADER_SYMBOLS

        if self._symbol_count == header_end:
            try:
                length = self.codec.header_length(self._symbols[len(PREAMBLE):header_end])
            except PayloadError as e:
                self._emit_received(None, e.code)
                return 1
            self._expected = self.codec.frame_symbol_count(length)
            self._progress.expected_symbols = self._expected
            return 0

        if self._expected and self._symbol_count == self._expected:
            try:
                payload = self.codec.decode(self._symbols[:self._expected])
            except PayloadError as e:
                self._emit_received(None, e.code)
                return 1
            self._emit_received(payload, ErrorCode.OK)
            return 1
        return 0

    def _emit_received(self, payload: Optional[bytes], error: ErrorCode) -> None:
        data_symbols = max(1, self._symbol_count - len(PREAMBLE))
        confidence = self._confidence_sum / data_symbols
        if payload is None:
            logger.info("[Demodulator] ch%d decode failed: %s", self.channel, error.name)
        else:
            logger.debug("[Demodulator] ch%d decoded %d bytes", self.channel, len(payload))
        next_eval = self._next_eval - self._symbol_samples + self._hop
        self._reset_scan(next_eval)
        self._sink(ReceiverEvent(
            ReceiverEventType.RECEIVED,
            self.channel,
            payload=payload,
            error=error,
            confidence=confidence,
        ))
