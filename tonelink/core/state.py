"""
Session states for tonelink.
"""

from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Optional, Tuple

from tonelink.core.profile import ConfigProfile


class SessionState(IntEnum):
    """Observable states of a session or of one of its channels."""
    NOT_CREATED = 0
    STOPPED = 1
    RUNNING = 2
    SENDING = 3
    RECEIVING = 4


@dataclass(frozen=True)
class EngineSnapshot:
    """
    Immutable view of everything the audio context needs.

    The control context never mutates a snapshot; it builds a new one and
    swaps the session reference, so processing always sees a consistent
    committed state.
    """
    core_state: SessionState = SessionState.NOT_CREATED
    profile: Optional[ConfigProfile] = None
    receiving: Tuple[bool, ...] = ()
    is_sending: bool = False
    sending_channel: int = 0
    paused: bool = False
    transmit_channel: int = 0
    volume: float = 1.0
    frequency_correction: float = 1.0
    listen_to_self: bool = False
    sample_rate_in: int = 0
    sample_rate_out: int = 0
    generation: int = 0  # Bumped whenever demodulators are replaced
    modulator: Optional[object] = field(default=None, compare=False)
    demodulators: Tuple[object, ...] = field(default=(), compare=False)

    def evolve(self, **changes) -> "EngineSnapshot":
        """Create a new snapshot with some fields replaced."""
        return replace(self, **changes)

    @property
    def is_running(self) -> bool:
        return self.core_state == SessionState.RUNNING

    @property
    def state(self) -> SessionState:
        """Aggregated session state."""
        if self.core_state != SessionState.RUNNING:
            return self.core_state
        if self.is_sending:
            return SessionState.SENDING
        if any(self.receiving):
            return SessionState.RECEIVING
        return SessionState.RUNNING

    def channel_state(self, channel: int) -> SessionState:
        """State of one channel."""
        if self.core_state != SessionState.RUNNING:
            return self.core_state
        if self.is_sending and channel == self.sending_channel:
            return SessionState.SENDING
        if channel < len(self.receiving) and self.receiving[channel]:
            return SessionState.RECEIVING
        return SessionState.RUNNING

    def is_muted(self, channel: int) -> bool:
        """Check if own output must be kept out of a channel's decoder."""
        return self.is_sending and not self.listen_to_self and channel == self.sending_channel
