"""Tests for auto-mute and listen-to-self."""

import numpy as np

from tonelink.core.errors import ErrorCode
from tonelink.core.session import Session

from conftest import render_frame

BLOCK = 480


def _started(profile, recorder, auto_mute=True) -> Session:
    session = Session.from_config(profile, listener=recorder)
    session.set_auto_mute(auto_mute)
    session.start()
    return session


def _echo(session: Session, blocks: int = 40) -> None:
    """Play each output block back into the input, like a speaker next to the mic."""
    for _ in range(blocks):
        out = np.zeros(BLOCK, dtype=np.float32)
        assert session.process_output(out) == ErrorCode.OK
        assert session.process_input(out) == ErrorCode.OK


def _combined(session: Session, inputs=None, blocks: int = 40) -> None:
    """Run combined calls with the given input stream (silence by default)."""
    for i in range(blocks):
        if inputs is not None and (i + 1) * BLOCK <= len(inputs):
            block = inputs[i * BLOCK:(i + 1) * BLOCK]
        else:
            block = np.zeros(BLOCK, dtype=np.float32)
        out = np.zeros(BLOCK, dtype=np.float32)
        assert session.process(block, out) == ErrorCode.OK


class TestAutoMute:
    """Tests for muting our own transmission."""

    def test_echo_is_muted(self, profile, recorder):
        """Test our own echo is not decoded while auto-mute is on."""
        session = _started(profile, recorder)
        session.send(b"\x42")

        _echo(session)

        assert recorder.of_kind("sent") == [("sent", b"\x42", 0)]
        assert recorder.of_kind("receiving") == []
        assert recorder.of_kind("received") == []

    def test_echo_without_auto_mute(self, profile, recorder):
        """Test our own echo is decoded when auto-mute is off."""
        session = _started(profile, recorder, auto_mute=False)
        session.send(b"\x42")

        _echo(session)

        assert recorder.of_kind("received") == [("received", b"\x42", 0)]

    def test_other_channel_not_muted(self, profile, recorder):
        """Test frames on other channels are heard while sending."""
        session = _started(profile, recorder)
        incoming = render_frame(profile, b"\x44", channel=1).astype(np.float32)
        session.send(b"\x42")

        _combined(session, 0.5 * incoming)

        assert recorder.of_kind("sent") == [("sent", b"\x42", 0)]
        assert recorder.of_kind("received") == [("received", b"\x44", 1)]


class TestListenToSelf:
    """Tests for the internal loopback in combined calls."""

    def test_loopback(self, profile, recorder):
        """Test combined calls hear our own output when auto-mute is off."""
        session = _started(profile, recorder, auto_mute=False)
        session.send(b"\x0f\xf0")

        _combined(session)

        assert recorder.of_kind("received") == [("received", b"\x0f\xf0", 0)]

    def test_no_loopback_with_auto_mute(self, profile, recorder):
        """Test combined calls with auto-mute hear nothing of our own frame."""
        session = _started(profile, recorder)
        session.send(b"\x0f\xf0")

        _combined(session)

        assert recorder.of_kind("received") == []

    def test_loopback_on_channel_one(self, profile, recorder):
        """Test the loopback follows the sending channel."""
        session = _started(profile, recorder, auto_mute=False)
        session.set_transmission_channel(1)
        session.send(b"\x5a")

        _combined(session)

        assert recorder.of_kind("received") == [("received", b"\x5a", 1)]
