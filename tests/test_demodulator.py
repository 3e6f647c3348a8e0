"""Tests for the streaming Demodulator."""

import numpy as np
import pytest

from tonelink.audio.fsk import FSKConfig, FrequencyDetector, SignalGenerator
from tonelink.core.errors import ErrorCode
from tonelink.protocol.codec import PayloadCodec
from tonelink.protocol.receiver import (
    Demodulator,
    ReceiverEventType,
    ReceiverState,
    ReceptionProgress,
)
from tonelink.protocol.transmitter import Modulator

from conftest import make_profile, render_frame


def _demodulator(profile, channel=0, correction=1.0):
    events = []
    detector = FrequencyDetector(FSKConfig.from_profile(profile, channel, 48000, correction))
    demod = Demodulator(PayloadCodec(profile), detector, channel, sink=events.append)
    return demod, events


def _received(events):
    return [e for e in events if e.kind == ReceiverEventType.RECEIVED]


class TestDemodulator:
    """Tests for frame detection and decoding."""

    def test_initial_state(self, profile):
        """Test a new demodulator is scanning."""
        demod, _ = _demodulator(profile)

        assert demod.state == ReceiverState.SCANNING
        assert not demod.is_receiving()
        assert demod.get_progress().progress_percent == 0.0

    def test_receive_frame(self, profile):
        """Test a clean frame is received."""
        demod, events = _demodulator(profile)

        demod.feed(render_frame(profile, b"\x42\x17"))

        assert [e.kind for e in events] == [ReceiverEventType.RECEIVING, ReceiverEventType.RECEIVED]
        assert events[1].payload == b"\x42\x17"
        assert events[1].error == ErrorCode.OK
        assert events[1].confidence > 0.8
        assert demod.state == ReceiverState.SCANNING

    def test_receive_on_second_channel(self, profile):
        """Test channels are independent tone bands."""
        ch0, events0 = _demodulator(profile, channel=0)
        ch1, events1 = _demodulator(profile, channel=1)
        signal = render_frame(profile, b"\x01\x02\x03", channel=1)

        ch0.feed(signal)
        ch1.feed(signal)

        assert not any(e.payload for e in _received(events0))
        assert [e.payload for e in _received(events1)] == [b"\x01\x02\x03"]
        assert events1[0].channel == 1

    def test_simultaneous_channels(self, profile):
        """Test two channels sending at once."""
        ch0, events0 = _demodulator(profile, channel=0)
        ch1, events1 = _demodulator(profile, channel=1)
        first = render_frame(profile, b"\xaa", channel=0)
        second = render_frame(profile, b"\xbb\xcc", channel=1, lead=3000)
        size = max(len(first), len(second))
        mixed = np.zeros(size)
        mixed[:len(first)] += 0.5 * first
        mixed[:len(second)] += 0.5 * second

        ch0.feed(mixed)
        ch1.feed(mixed)

        assert [e.payload for e in _received(events0)] == [b"\xaa"]
        assert [e.payload for e in _received(events1)] == [b"\xbb\xcc"]

    @pytest.mark.parametrize("chunk", [1, 17, 128, 480, 1000, 4096])
    def test_chunking_independence(self, profile, chunk):
        """Test the split of the input never changes the result."""
        demod, events = _demodulator(profile)
        signal = render_frame(profile, b"\x10\x20\x30")

        for start in range(0, len(signal), chunk):
            demod.feed(signal[start:start + chunk])

        assert [e.payload for e in _received(events)] == [b"\x10\x20\x30"]

    def test_two_frames(self, profile):
        """Test back-to-back frames are both received."""
        demod, events = _demodulator(profile)
        signal = np.concatenate([
            render_frame(profile, b"\x01", tail=500),
            render_frame(profile, b"\x02\x03", lead=200),
        ])

        demod.feed(signal)

        assert [e.payload for e in _received(events)] == [b"\x01", b"\x02\x03"]

    def test_unaligned_start(self, profile):
        """Test frames starting at arbitrary offsets."""
        for lead in (0, 1, 239, 481, 1313):
            demod, events = _demodulator(profile)
            demod.feed(render_frame(profile, b"\x5a", lead=lead))
            assert [e.payload for e in _received(events)] == [b"\x5a"], lead

    def test_attenuated_signal(self, profile):
        """Test quiet frames above the detection threshold."""
        demod, events = _demodulator(profile)

        demod.feed(0.05 * render_frame(profile, b"\x33"))

        assert [e.payload for e in _received(events)] == [b"\x33"]

    def test_noisy_signal(self, profile):
        """Test a frame in moderate noise."""
        demod, events = _demodulator(profile)
        rng = np.random.default_rng(42)
        signal = render_frame(profile, b"\x9c\x4e")

        demod.feed(0.5 * signal + rng.normal(0, 0.01, len(signal)))

        assert [e.payload for e in _received(events)] == [b"\x9c\x4e"]

    def test_noise_only(self, profile):
        """Test noise alone never produces a payload."""
        demod, events = _demodulator(profile)
        rng = np.random.default_rng(5)

        demod.feed(rng.normal(0, 0.01, 48000))

        assert not any(e.payload for e in _received(events))

    def test_silence(self, profile):
        """Test silence produces no events."""
        demod, events = _demodulator(profile)

        assert demod.feed(np.zeros(20000)) == 0
        assert demod.feed_silence(20000) == 0
        assert events == []

    def test_corrupted_frame_then_good_frame(self, profile):
        """Test a corrupted body is reported and the next frame still decodes."""
        demod, events = _demodulator(profile)
        bad = render_frame(profile, b"\x01\x02\x03\x04", tail=500)
        # Wipe most of the body so neither RS nor CRC can recover it
        bad[1000 + 10 * 480:1000 + 30 * 480] = 0.0
        good = render_frame(profile, b"\x05", lead=200)

        demod.feed(np.concatenate([bad, good]))

        received = _received(events)
        assert received[0].payload is None
        assert received[0].error in (ErrorCode.PAYLOAD_DECODE_FAILED, ErrorCode.PAYLOAD_UNKNOWN_SYMBOLS)
        assert received[-1].payload == b"\x05"

    def test_event_order(self, profile):
        """Test receiving always precedes received."""
        demod, events = _demodulator(profile)
        signal = render_frame(profile, b"\x07")
        counts = []
        for start in range(0, len(signal), 480):
            counts.append(demod.feed(signal[start:start + 480]))

        assert sum(counts) == 2
        assert events[0].kind == ReceiverEventType.RECEIVING
        assert events[1].kind == ReceiverEventType.RECEIVED

    def test_progress_while_receiving(self, profile):
        """Test progress counts symbols of a committed frame."""
        demod, _ = _demodulator(profile)
        signal = render_frame(profile, b"\x01\x02")

        demod.feed(signal[:1000 + 14 * 480])

        assert demod.is_receiving()
        progress = demod.get_progress()
        assert progress.expected_symbols == 28
        assert 0 < progress.progress_percent < 100
        assert ReceptionProgress().progress_percent == 0.0

    def test_abort_committed_frame(self, profile):
        """Test abort reports a committed frame as failed."""
        demod, events = _demodulator(profile)
        demod.feed(render_frame(profile, b"\x01\x02")[:1000 + 14 * 480])

        assert demod.abort()
        assert events[-1].kind == ReceiverEventType.RECEIVED
        assert events[-1].payload is None
        assert events[-1].error == ErrorCode.PAYLOAD_DECODE_FAILED
        assert demod.state == ReceiverState.SCANNING

    def test_abort_idle(self, profile):
        """Test abort without a frame in progress."""
        demod, events = _demodulator(profile)

        assert not demod.abort()
        assert events == []

    def test_frequency_correction(self, profile):
        """Test a corrected demodulator receives frequency-shifted frames."""
        nominal = FSKConfig.from_profile(profile, 0, 48000)
        shifted = FSKConfig(
            sample_rate=48000,
            base_frequency=nominal.base_frequency * 1.25,
            frequency_step=nominal.frequency_step * 1.25,
            symbol_duration_ms=nominal.symbol_duration_ms,
        )
        modulator = Modulator(SignalGenerator(shifted))
        modulator.begin(PayloadCodec(profile).encode(b"\x21"))
        body = np.zeros(modulator.get_progress().total_samples)
        modulator.fill(body)
        signal = np.concatenate([np.zeros(1000), body, np.zeros(2000)])

        demod, events = _demodulator(profile, correction=0.8)
        demod.feed(signal)

        assert [e.payload for e in _received(events)] == [b"\x21"]

    def test_set_detector(self, profile):
        """Test swapping detectors of the same symbol size."""
        demod, _ = _demodulator(profile)
        detector = FrequencyDetector(FSKConfig.from_profile(profile, 0, 48000, 0.9))

        demod.set_detector(detector)

        assert demod.detector is detector

    def test_set_detector_size_mismatch(self, profile):
        """Test a detector for another symbol size is rejected."""
        demod, _ = _demodulator(profile)

        with pytest.raises(ValueError):
            demod.set_detector(FrequencyDetector(FSKConfig.from_profile(profile, 0, 44100)))

    def test_long_stream(self):
        """Test a long stream with many frames keeps bounded history."""
        profile = make_profile(max_payload_bytes=2)
        demod, events = _demodulator(profile)
        payloads = [bytes([i]) for i in range(6)]
        signal = np.concatenate([render_frame(profile, p, lead=700, tail=300) for p in payloads])

        for start in range(0, len(signal), 256):
            demod.feed(signal[start:start + 256])

        assert [e.payload for e in _received(events)] == payloads
