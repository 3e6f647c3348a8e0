"""
Audio device glue for tonelink.
Drives a session's processing entry points from a sounddevice stream.
"""

import logging
from typing import List, Optional

import numpy as np

from tonelink.core.errors import ErrorCode, ResourceError
from tonelink.core.session import Session

# Try to import sounddevice, handle gracefully if not available
try:
    import sounddevice as sd
    SOUNDDEVICE_AVAILABLE = True
except (ImportError, OSError):
    SOUNDDEVICE_AVAILABLE = False
    sd = None

logger = logging.getLogger(__name__)


def _require_sounddevice() -> None:
    if not SOUNDDEVICE_AVAILABLE:
        raise ResourceError(
            ErrorCode.AUDIO_IO_ERROR,
            "sounddevice is not available. Please install it with: pip install sounddevice",
        )


def list_devices() -> List[dict]:
    """List available audio devices."""
    if not SOUNDDEVICE_AVAILABLE:
        return []

    devices = sd.query_devices()
    return [
        {
            "index": i,
            "name": d["name"],
            "inputs": d["max_input_channels"],
            "outputs": d["max_output_channels"],
            "default_samplerate": d["default_samplerate"],
        }
        for i, d in enumerate(devices)
    ]


class AudioStream:
    """
    Full-duplex audio stream feeding a session.

    Every block captured from the input device and every block requested
    by the output device goes through Session.process in the stream's
    callback thread. The session must be configured before opening.
    """

    def __init__(
        self,
        session: Session,
        buffer_size: int = 1024,
        input_device: Optional[int] = None,
        output_device: Optional[int] = None,
        duplex: bool = True,
    ):
        """
        Initialize the stream.

        Args:
            session: Configured session to drive
            buffer_size: Block size in samples
            input_device: Input device index (None for default)
            output_device: Output device index (None for default)
            duplex: Open input and output; otherwise output only
        """
        _require_sounddevice()
        self.session = session
        self.buffer_size = buffer_size
        self.input_device = input_device
        self.output_device = output_device
        self.duplex = duplex
        self._stream = None
        self.last_error = ErrorCode.OK
        self.status_count = 0

    def _duplex_callback(self, indata, outdata, frames, time_info, status):
        if status:
            self.status_count += 1
        code = self.session.process(indata[:, 0], outdata[:, 0], frames)
        if code != ErrorCode.OK:
            self.last_error = code

    def _output_callback(self, outdata, frames, time_info, status):
        if status:
            self.status_count += 1
        code = self.session.process_output(outdata[:, 0], frames)
        if code != ErrorCode.OK:
            self.last_error = code

    def open(self) -> None:
        """Open and start the device stream."""
        if self._stream is not None:
            return
        sample_rate = self.session.get_output_sample_rate()
        if self.duplex and self.session.get_input_sample_rate() != sample_rate:
            raise ResourceError(
                ErrorCode.INVALID_SAMPLE_RATE,
                "Duplex streams need equal input and output sample rates",
            )
        try:
            if self.duplex:
                self._stream = sd.Stream(
                    samplerate=sample_rate,
                    blocksize=self.buffer_size,
                    channels=1,
                    dtype=np.float32,
                    device=(self.input_device, self.output_device),
                    callback=self._duplex_callback,
                )
            else:
                self._stream = sd.OutputStream(
                    samplerate=sample_rate,
                    blocksize=self.buffer_size,
                    channels=1,
                    dtype=np.float32,
                    device=self.output_device,
                    callback=self._output_callback,
                )
            self._stream.start()
        except sd.PortAudioError as e:
            self._stream = None
            raise ResourceError(ErrorCode.AUDIO_IO_ERROR, str(e)) from e
        logger.info("[AudioStream] Opened at %d Hz, %d samples per block", sample_rate, self.buffer_size)

    def close(self) -> None:
        """Stop and close the device stream."""
        if self._stream is None:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        if self.status_count:
            logger.warning("[AudioStream] %d blocks reported over/underflow", self.status_count)

    def is_open(self) -> bool:
        return self._stream is not None

    def __enter__(self) -> "AudioStream":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
