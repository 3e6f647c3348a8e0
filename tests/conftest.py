"""Shared fixtures for tonelink tests."""

from typing import List, Optional

import numpy as np
import pytest

from tonelink.audio.fsk import FSKConfig, SignalGenerator
from tonelink.core.events import SessionListener
from tonelink.core.profile import ConfigProfile
from tonelink.protocol.codec import PayloadCodec
from tonelink.protocol.transmitter import Modulator


def make_profile(**overrides) -> ConfigProfile:
    """Small, fast profile: 10 ms symbols at 48 kHz with two channels."""
    fields = dict(
        name="test",
        max_payload_bytes=4,
        channel_count=2,
        sample_rate_in=48000,
        sample_rate_out=48000,
        base_frequency=1000.0,
        frequency_step=400.0,
        channel_spacing=8000.0,
        symbol_duration_ms=10.0,
        ecc_bytes=4,
    )
    fields.update(overrides)
    return ConfigProfile(**fields)


def render_frame(profile: ConfigProfile, payload: bytes, channel: int = 0,
                 lead: int = 1000, tail: int = 2000) -> np.ndarray:
    """Render a payload to float samples with silence around it."""
    frame = PayloadCodec(profile).encode(payload)
    generator = SignalGenerator(FSKConfig.from_profile(profile, channel, profile.sample_rate_out))
    modulator = Modulator(generator, channel)
    modulator.begin(frame)
    body = np.zeros(modulator.get_progress().total_samples, dtype=np.float64)
    modulator.fill(body)
    return np.concatenate([np.zeros(lead), body, np.zeros(tail)])


class RecordingListener(SessionListener):
    """Collects every notification as a tuple."""

    def __init__(self):
        self.events: List[tuple] = []

    def on_state_changed(self, user_data, old, new):
        self.events.append(("state", old, new))

    def on_sending(self, user_data, payload, channel):
        self.events.append(("sending", payload, channel))

    def on_sent(self, user_data, payload, channel):
        self.events.append(("sent", payload, channel))

    def on_receiving(self, user_data, channel):
        self.events.append(("receiving", channel))

    def on_received(self, user_data, payload: Optional[bytes], channel):
        self.events.append(("received", payload, channel))

    def of_kind(self, kind: str) -> List[tuple]:
        return [e for e in self.events if e[0] == kind]

    def states(self) -> List[tuple]:
        return [(e[1], e[2]) for e in self.events if e[0] == "state"]


@pytest.fixture
def profile() -> ConfigProfile:
    return make_profile()


@pytest.fixture
def codec(profile) -> PayloadCodec:
    return PayloadCodec(profile)


@pytest.fixture
def recorder() -> RecordingListener:
    return RecordingListener()
