"""
Modulator for tonelink protocol.
Streams the samples of a queued frame into caller-provided buffers.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from tonelink.audio.fsk import SignalGenerator
from tonelink.protocol.codec import Frame


@dataclass
class TransmissionProgress:
    """Tracks transmission progress."""
    total_samples: int = 0
    sent_samples: int = 0

    @property
    def progress_percent(self) -> float:
        """Get progress as percentage."""
        if self.total_samples == 0:
            return 0.0
        return (self.sent_samples / self.total_samples) * 100


class Modulator:
    """
    Turns a frame into a restartable stream of audio samples.

    The modulator owns no sample buffer, only a cursor into the frame.
    Any sequence of fill() calls produces exactly the samples a single
    call with the combined length would.
    """

    def __init__(self, generator: SignalGenerator, channel: int = 0):
        """
        Initialize the modulator.

        Args:
            generator: Tone generator of the transmit channel
            channel: Transmit channel index
        """
        self.generator = generator
        self.channel = channel
        self._frame: Optional[Frame] = None
        self._progress = TransmissionProgress()

    @property
    def frame(self) -> Optional[Frame]:
        return self._frame

    @property
    def sample_rate(self) -> int:
        return self.generator.config.sample_rate

    def begin(self, frame: Frame) -> int:
        """
        Queue a frame for streaming.

        Args:
            frame: Frame to send

        Returns:
            The initial cursor position
        """
        self._frame = frame
        self._progress = TransmissionProgress(
            total_samples=len(frame) * self.generator.config.symbol_samples,
        )
        return self._progress.sent_samples

    def fill(self, buffer: np.ndarray, volume: float = 1.0) -> int:
        """
        Fill a buffer with the next frame samples.

        When the frame runs out, the tail of the buffer is set to silence.

        Args:
            buffer: Destination float buffer
            volume: Output gain in [0, 1]

        Returns:
            Number of frame samples written
        """
        if self._frame is None or not self.is_active():
            buffer[:] = 0.0
            return 0
        written = self.generator.render(self._frame.symbols, self._progress.sent_samples, buffer)
        if volume != 1.0:
            buffer[:written] *= volume
        self._progress.sent_samples += written
        return written

    def is_active(self) -> bool:
        """Check if a frame is still being streamed."""
        return self._frame is not None and self._progress.sent_samples < self._progress.total_samples

    def get_progress(self) -> TransmissionProgress:
        """Get current transmission progress."""
        return self._progress

    @property
    def duration_seconds(self) -> float:
        """Duration of the queued frame in seconds."""
        return self._progress.total_samples / self.sample_rate
