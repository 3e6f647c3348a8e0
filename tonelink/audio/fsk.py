"""
FSK (Frequency-Shift Keying) primitives for tonelink.
Provides tone synthesis and tone detection shared by the modulator and demodulator.
"""

import numpy as np
from typing import Tuple
from dataclasses import dataclass

from tonelink.core.profile import ALPHABET_SIZE, MARKER_A, ConfigProfile


@dataclass(frozen=True)
class FSKConfig:
    """Tone layout of one channel at one sample rate."""
    sample_rate: int = 44100
    base_frequency: float = 1000.0
    frequency_step: float = 100.0
    num_frequencies: int = ALPHABET_SIZE
    symbol_duration_ms: float = 40.0
    fade_ms: float = 2.0
    frequency_correction: float = 1.0

    @classmethod
    def from_profile(
        cls,
        profile: ConfigProfile,
        channel: int,
        sample_rate: int,
        frequency_correction: float = 1.0,
    ) -> "FSKConfig":
        """
        Create the tone layout of a profile channel.

        Args:
            profile: Transmission profile
            channel: Channel index
            sample_rate: Sample rate in Hz
            frequency_correction: Detected-frequency correction coefficient

        Returns:
            FSKConfig for that channel
        """
        return cls(
            sample_rate=sample_rate,
            base_frequency=profile.tone_frequency(channel, 0),
            frequency_step=profile.frequency_step,
            symbol_duration_ms=profile.symbol_duration_ms,
            frequency_correction=frequency_correction,
        )

    @property
    def symbol_samples(self) -> int:
        return max(8, int(round(self.sample_rate * self.symbol_duration_ms / 1000)))

    @property
    def frequencies(self) -> np.ndarray:
        """Nominal tone frequencies, one per symbol."""
        return self.base_frequency + np.arange(self.num_frequencies) * self.frequency_step


class SignalGenerator:
    """
    Generates symbol tones.

    Every symbol waveform is precomputed once, so rendering a frame is a
    pure table lookup on the absolute sample index.
    """

    def __init__(self, config: FSKConfig):
        self.config = config
        self._table = np.stack([
            self.generate_tone(freq, config.symbol_samples)
            for freq in config.frequencies
        ])

    def generate_tone(self, frequency: float, num_samples: int) -> np.ndarray:
        """
        Generate a tone at the given frequency.

        Args:
            frequency: Frequency in Hz
            num_samples: Exact number of samples

        Returns:
            Audio samples as numpy array
        """
        t = np.arange(num_samples) / self.config.sample_rate
        signal = np.sin(2 * np.pi * frequency * t)

        # Apply fade in/out to reduce clicks
        fade_samples = int(self.config.sample_rate * self.config.fade_ms / 1000)
        if 0 < fade_samples < num_samples // 4:
            ramp = 0.5 - 0.5 * np.cos(np.pi * np.arange(fade_samples) / fade_samples)
            signal[:fade_samples] *= ramp
            signal[-fade_samples:] *= ramp[::-1]

        return signal.astype(np.float32)

    def render(self, symbols: np.ndarray, start: int, out: np.ndarray) -> int:
        """
        Render part of a symbol sequence.

        Writes frame samples [start, start + len(out)) into `out`; positions
        past the end of the frame are filled with silence.

        Args:
            symbols: Frame symbols
            start: Absolute sample index inside the frame
            out: Destination buffer

        Returns:
            Number of frame samples written
        """
        size = self.config.symbol_samples
        total = len(symbols) * size
        pos = start
        written = 0
        length = len(out)
        while written < length and pos < total:
            index, offset = divmod(pos, size)
            count = min(size - offset, length - written)
            out[written:written + count] = self._table[symbols[index], offset:offset + count]
            written += count
            pos += count
        if written < length:
            out[written:] = 0.0
        return written


class FrequencyDetector:
    """
    Detects symbol tones in audio.

    Detection uses precomputed single-bin DFT (Goertzel-equivalent)
    vectors for every tone so a whole window is scored with one product.
    """

    def __init__(self, config: FSKConfig):
        self.config = config
        size = config.symbol_samples
        targets = config.frequencies / config.frequency_correction

        n = np.arange(size)
        self._full_basis = np.exp(-2j * np.pi * np.outer(targets, n) / config.sample_rate)

        # Symbols are classified on the middle half of their window
        self.inner_offset = size // 4
        inner = size // 2
        m = np.arange(inner)
        window = np.hanning(inner)
        self._inner_basis = (
            np.exp(-2j * np.pi * np.outer(targets, m) / config.sample_rate) * window
        )
        self._inner_len = inner

    @staticmethod
    def _pick(magnitudes: np.ndarray) -> Tuple[int, float]:
        best_idx = int(np.argmax(magnitudes))
        ordered = np.sort(magnitudes)[::-1]
        if ordered[0] <= 1e-12:
            return best_idx, 0.0
        if len(ordered) > 1:
            return best_idx, float(ordered[0] / (ordered[0] + ordered[1]))
        return best_idx, 1.0

    def marker_level(self, window: np.ndarray) -> Tuple[float, float]:
        """
        Score the first preamble marker over a full symbol window.

        Args:
            window: Exactly symbol_samples samples

        Returns:
            Tuple of (marker amplitude estimate, marker share of tone energy)
        """
        energies = np.abs(self._full_basis @ window) ** 2
        total = float(energies.sum())
        if total <= 1e-20:
            return 0.0, 0.0
        amplitude = 2.0 * np.sqrt(energies[MARKER_A]) / len(window)
        return float(amplitude), float(energies[MARKER_A] / total)

    def classify(self, window: np.ndarray) -> Tuple[int, float]:
        """
        Classify one symbol window.

        Args:
            window: Exactly symbol_samples samples aligned on the symbol

        Returns:
            Tuple of (symbol, confidence)
        """
        start = self.inner_offset
        segment = window[start:start + self._inner_len]
        return self._pick(np.abs(self._inner_basis @ segment))
