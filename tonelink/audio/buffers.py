"""
Streaming buffer bridge for tonelink.
Moves fixed-size platform sample buffers in and out of the engine.
"""

from enum import Enum
from typing import Optional

import numpy as np

from tonelink.core.state import EngineSnapshot


class SampleFormat(Enum):
    """Platform sample formats accepted by the processing entry points."""
    FLOAT32 = "float32"
    INT16 = "int16"

    def accepts(self, buffer) -> bool:
        """Check a buffer can be used with this format."""
        if not isinstance(buffer, np.ndarray) or buffer.ndim != 1:
            return False
        if self is SampleFormat.FLOAT32:
            return buffer.dtype.kind == "f"
        return buffer.dtype == np.int16


class StreamingBufferBridge:
    """
    Adapts per-call sample buffers to the continuous modulator and
    demodulator streams.

    Internally every sample is a float64 in [-1, 1]. Scratch space is
    owned by the bridge and only grows when a larger block than any
    seen before arrives, so steady-state calls do not allocate.
    """

    INT16_IN_SCALE = 1.0 / 32768.0
    INT16_OUT_SCALE = 32767.0

    def __init__(self, initial_size: int = 4096):
        self._input = np.zeros(0, dtype=np.float64)
        self._output = np.zeros(0, dtype=np.float64)
        self._work = np.zeros(0, dtype=np.float64)
        self.ensure_capacity(initial_size)

    @property
    def capacity(self) -> int:
        return len(self._input)

    def ensure_capacity(self, size: int) -> None:
        """Grow the scratch buffers to hold at least `size` samples."""
        if size <= len(self._input):
            return
        self._input = np.zeros(size, dtype=np.float64)
        self._output = np.zeros(size, dtype=np.float64)
        self._work = np.zeros(size, dtype=np.float64)

    def read_input(self, buffer: np.ndarray, fmt: SampleFormat) -> np.ndarray:
        """
        Convert a platform input buffer to internal samples.

        Args:
            buffer: Input samples in the platform format
            fmt: Sample format of the buffer

        Returns:
            A view on bridge scratch space, valid until the next call
        """
        samples = self._input[:len(buffer)]
        if fmt is SampleFormat.INT16:
            np.multiply(buffer, self.INT16_IN_SCALE, out=samples)
        else:
            np.clip(buffer, -1.0, 1.0, out=samples)
        return samples

    def write_output(self, samples: np.ndarray, buffer: np.ndarray, fmt: SampleFormat) -> None:
        """Convert internal samples into a platform output buffer, clamping on the way."""
        if fmt is SampleFormat.INT16:
            scratch = self._work[:len(samples)]
            np.multiply(samples, self.INT16_OUT_SCALE, out=scratch)
            np.clip(scratch, -32768.0, 32767.0, out=scratch)
            np.rint(scratch, out=scratch)
            np.copyto(buffer, scratch, casting="unsafe")
        else:
            np.clip(samples, -1.0, 1.0, out=buffer)

    @staticmethod
    def silence(buffer: Optional[np.ndarray]) -> None:
        """Set an output buffer to silence."""
        if buffer is not None:
            buffer[:] = 0

    def process(
        self,
        snapshot: EngineSnapshot,
        input_buffer: Optional[np.ndarray],
        output_buffer: Optional[np.ndarray],
        fmt: SampleFormat,
    ) -> bool:
        """
        Run one block through the engine.

        Output is produced first, so in combined mode the loopback copy of
        our own signal lines up sample for sample with the input block.

        Args:
            snapshot: Committed engine state to process with
            input_buffer: Captured samples, or None for output-only calls
            output_buffer: Buffer to fill, or None for input-only calls
            fmt: Sample format of both buffers

        Returns:
            True if the modulator ran out of frame during this block
        """
        source = input_buffer if input_buffer is not None else output_buffer
        length = len(source)
        self.ensure_capacity(length)

        finished = False
        produced = None
        if output_buffer is not None:
            produced = self._output[:length]
            modulator = snapshot.modulator
            if modulator is not None and modulator.is_active():
                modulator.fill(produced, snapshot.volume)
                finished = not modulator.is_active()
            else:
                produced[:] = 0.0

        if input_buffer is not None:
            samples = self.read_input(input_buffer, fmt)
            loopback = None
            if produced is not None and snapshot.is_sending and snapshot.listen_to_self:
                loopback = self._work[:length]
                np.add(samples, produced, out=loopback)
                np.clip(loopback, -1.0, 1.0, out=loopback)
            for channel, demodulator in enumerate(snapshot.demodulators):
                if snapshot.is_muted(channel):
                    # Keep the stream clock running without our own signal
                    demodulator.feed_silence(length)
                elif loopback is not None and channel == snapshot.sending_channel:
                    demodulator.feed(loopback)
                else:
                    demodulator.feed(samples)

        if produced is not None:
            self.write_output(produced, output_buffer, fmt)
        return finished
