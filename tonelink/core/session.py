"""
Session for tonelink.
Owns the engine state machine and exposes the control surface and the
real-time processing entry points.
"""

import logging
import threading
from collections import deque
from contextlib import contextmanager
from functools import partial
from typing import Any, List, Optional, Sequence, Tuple, Union

import numpy as np

from tonelink.audio.buffers import SampleFormat, StreamingBufferBridge
from tonelink.audio.fsk import FrequencyDetector, FSKConfig, SignalGenerator
from tonelink.core.errors import ArgumentError, ErrorCode, LifecycleError, PayloadError
from tonelink.core.events import SessionListener
from tonelink.core.profile import ConfigProfile, ProfileLoader
from tonelink.core.state import EngineSnapshot, SessionState
from tonelink.protocol.codec import PayloadCodec
from tonelink.protocol.receiver import Demodulator, ReceiverEvent, ReceiverEventType
from tonelink.protocol.transmitter import Modulator, TransmissionProgress

logger = logging.getLogger(__name__)

MIN_FREQUENCY_CORRECTION = 0.5
MAX_FREQUENCY_CORRECTION = 1.5

_SENT = "sent"
_RECEIVER = "receiver"

Notification = Tuple[str, tuple]


class Session:
    """
    An acoustic modem session.

    The control context (configuration, start/stop, send, settings)
    serialises on a short lock and publishes an immutable EngineSnapshot.
    The audio context only reads the latest snapshot; transitions it
    discovers are queued and committed without ever waiting on the lock.
    """

    def __init__(
        self,
        listener: Optional[SessionListener] = None,
        user_data: Any = None,
        loader: Optional[ProfileLoader] = None,
    ):
        """
        Create a session in the NOT_CREATED state.

        Args:
            listener: Receives session notifications
            user_data: Opaque value handed to every notification
            loader: Resolves config strings into profiles
        """
        self._lock = threading.Lock()
        self._snapshot = EngineSnapshot()
        self._listener = listener or SessionListener()
        self._user_data = user_data
        self._loader = loader or ProfileLoader()
        self._pending: deque = deque()
        self._bridge = StreamingBufferBridge()
        self._codec: Optional[PayloadCodec] = None
        self._generators: List[SignalGenerator] = []
        self._destroyed = False

    @classmethod
    def from_config(
        cls,
        config: Union[ConfigProfile, str],
        listener: Optional[SessionListener] = None,
        user_data: Any = None,
        loader: Optional[ProfileLoader] = None,
    ) -> "Session":
        """Create a session and apply a profile or config string."""
        session = cls(listener=listener, user_data=user_data, loader=loader)
        session.set_config(config)
        return session

    # ----------------------------------------------------------- notifications

    def set_listener(self, listener: Optional[SessionListener]) -> None:
        """Replace the notification listener."""
        self._listener = listener or SessionListener()

    def set_user_data(self, user_data: Any) -> None:
        """Set the opaque value delivered with every notification."""
        self._user_data = user_data

    def get_user_data(self) -> Any:
        return self._user_data

    def _notify(self, notes: List[Notification]) -> None:
        listener = self._listener
        for name, args in notes:
            getattr(listener, name)(self._user_data, *args)

    def _state_note(self, old: SessionState, new: SessionState) -> Notification:
        logger.debug("[Session] State %s -> %s", old.name, new.name)
        return "on_state_changed", (old, new)

    # ------------------------------------------------------------ control core

    @contextmanager
    def _control(self):
        """
        Run a control operation under the session lock.

        Transitions queued by the audio context are committed first.
        Notifications collected in the yielded list are delivered after the
        lock is released, even if the operation raises.
        """
        notes: List[Notification] = []
        try:
            with self._lock:
                self._check_alive()
                notes.extend(self._commit_pending())
                yield notes
        finally:
            self._notify(notes)

    def _check_alive(self) -> None:
        if self._destroyed:
            raise LifecycleError(ErrorCode.NOT_INITIALISED, "Session has been destroyed")

    def _require_profile(self) -> EngineSnapshot:
        self._check_alive()
        snapshot = self._snapshot
        if snapshot.profile is None:
            raise LifecycleError(ErrorCode.NOT_INITIALISED, "No config has been set")
        return snapshot

    def _queue_receiver_event(self, generation: int, event: ReceiverEvent) -> None:
        self._pending.append((_RECEIVER, generation, event))

    def _commit_pending(self) -> List[Notification]:
        """Apply queued audio-context transitions. Caller holds the lock."""
        notes: List[Notification] = []
        snapshot = self._snapshot
        while self._pending:
            kind, generation, item = self._pending.popleft()
            if snapshot.core_state != SessionState.RUNNING:
                continue

            if kind == _SENT:
                if not snapshot.is_sending or snapshot.modulator is not item:
                    continue
                channel = snapshot.sending_channel
                snapshot = self._transition(notes, snapshot, is_sending=False, modulator=None)
                notes.append(("on_sent", (item.frame.payload, channel)))
                continue

            if generation != snapshot.generation:
                continue
            channel = item.channel
            receiving = list(snapshot.receiving)
            if item.kind == ReceiverEventType.RECEIVING:
                receiving[channel] = True
                snapshot = self._transition(notes, snapshot, receiving=tuple(receiving))
                notes.append(("on_receiving", (channel,)))
            else:
                if receiving[channel]:
                    receiving[channel] = False
                    snapshot = self._transition(notes, snapshot, receiving=tuple(receiving))
                notes.append(("on_received", (item.payload, channel)))
        self._snapshot = snapshot
        return notes

    def _transition(self, notes: List[Notification], snapshot: EngineSnapshot, **changes) -> EngineSnapshot:
        """Evolve the snapshot, noting the aggregate state change if there is one."""
        evolved = snapshot.evolve(**changes)
        if evolved.state != snapshot.state:
            notes.append(self._state_note(snapshot.state, evolved.state))
        return evolved

    def _build_generators(self, snapshot: EngineSnapshot) -> List[SignalGenerator]:
        profile = snapshot.profile
        return [
            SignalGenerator(FSKConfig.from_profile(profile, channel, snapshot.sample_rate_out))
            for channel in range(profile.channel_count)
        ]

    def _build_detector(self, snapshot: EngineSnapshot, channel: int) -> FrequencyDetector:
        return FrequencyDetector(FSKConfig.from_profile(
            snapshot.profile,
            channel,
            snapshot.sample_rate_in,
            snapshot.frequency_correction,
        ))

    def _build_demodulators(self, snapshot: EngineSnapshot) -> Tuple[Demodulator, ...]:
        sink = partial(self._queue_receiver_event, snapshot.generation)
        return tuple(
            Demodulator(self._codec, self._build_detector(snapshot, channel), channel, sink=sink)
            for channel in range(snapshot.profile.channel_count)
        )

    # --------------------------------------------------------------- lifecycle

    def set_config(self, config: Union[ConfigProfile, str]) -> None:
        """
        Apply a transmission profile.

        Args:
            config: A ConfigProfile, a built-in profile name or a signed config string

        Raises:
            LifecycleError: ALREADY_RUNNING if the session is running
            ConfigError: If the config string is rejected (state is unchanged)
        """
        with self._control() as notes:
            current = self._snapshot
            if current.core_state == SessionState.RUNNING:
                raise LifecycleError(ErrorCode.ALREADY_RUNNING)
            profile = config if isinstance(config, ConfigProfile) else self._loader.load(config)

            channel = current.transmit_channel
            if channel >= profile.channel_count:
                channel = 0
            self._codec = PayloadCodec(profile)
            self._generators = []
            self._snapshot = current.evolve(
                core_state=SessionState.STOPPED,
                profile=profile,
                transmit_channel=channel,
                sample_rate_in=profile.sample_rate_in,
                sample_rate_out=profile.sample_rate_out,
                generation=current.generation + 1,
            )
            logger.info("[Session] Config set: %s", profile.describe())
            if current.core_state != SessionState.STOPPED:
                notes.append(self._state_note(current.core_state, SessionState.STOPPED))

    def get_profile(self) -> Optional[ConfigProfile]:
        return self._snapshot.profile

    def start(self) -> None:
        """
        Start processing.

        Raises:
            LifecycleError: NOT_INITIALISED without a config, ALREADY_RUNNING if running
        """
        with self._control() as notes:
            current = self._snapshot
            if current.core_state == SessionState.NOT_CREATED:
                raise LifecycleError(ErrorCode.NOT_INITIALISED)
            if current.core_state == SessionState.RUNNING:
                raise LifecycleError(ErrorCode.ALREADY_RUNNING)

            snapshot = current.evolve(
                core_state=SessionState.RUNNING,
                receiving=(False,) * current.profile.channel_count,
                is_sending=False,
                paused=False,
                modulator=None,
                generation=current.generation + 1,
            )
            self._generators = self._build_generators(snapshot)
            self._pending.clear()
            self._snapshot = snapshot.evolve(demodulators=self._build_demodulators(snapshot))
            notes.append(self._state_note(SessionState.STOPPED, SessionState.RUNNING))

    def stop(self) -> None:
        """
        Stop processing, discarding any partial send or receive.

        Raises:
            LifecycleError: NOT_INITIALISED without a config, ALREADY_STOPPED if stopped
        """
        with self._control() as notes:
            current = self._snapshot
            if current.core_state == SessionState.NOT_CREATED:
                raise LifecycleError(ErrorCode.NOT_INITIALISED)
            if current.core_state == SessionState.STOPPED:
                raise LifecycleError(ErrorCode.ALREADY_STOPPED)

            if current.is_sending:
                logger.debug("[Session] Stop abandons frame in progress")
            self._snapshot = self._stopped(current)
            self._pending.clear()
            notes.append(self._state_note(current.state, SessionState.STOPPED))

    @staticmethod
    def _stopped(current: EngineSnapshot) -> EngineSnapshot:
        return current.evolve(
            core_state=SessionState.STOPPED,
            receiving=(),
            is_sending=False,
            paused=False,
            modulator=None,
            demodulators=(),
            generation=current.generation + 1,
        )

    def pause(self, paused: bool = True) -> None:
        """
        Pause or resume processing without discarding frames in progress.

        Raises:
            LifecycleError: NOT_RUNNING if the session is not running
        """
        with self._control():
            current = self._snapshot
            if current.core_state != SessionState.RUNNING:
                raise LifecycleError(ErrorCode.NOT_RUNNING)
            if current.paused != paused:
                self._snapshot = current.evolve(paused=paused)
                logger.debug("[Session] %s", "Paused" if paused else "Resumed")

    def is_paused(self) -> bool:
        return self._snapshot.paused

    def destroy(self) -> None:
        """Tear the session down. Every later control call raises NOT_INITIALISED."""
        with self._control() as notes:
            current = self._snapshot
            self._destroyed = True
            self._pending.clear()
            self._snapshot = EngineSnapshot(generation=current.generation + 1)
            self._codec = None
            self._generators = []
            if current.core_state != SessionState.NOT_CREATED:
                notes.append(self._state_note(current.state, SessionState.NOT_CREATED))

    # ------------------------------------------------------------------- state

    def get_state(self) -> SessionState:
        return self._snapshot.state

    def get_state_for_channel(self, channel: int) -> SessionState:
        """
        Get the state of one channel.

        Raises:
            ArgumentError: CHANNEL_NOT_SUPPORTED for an unknown channel
        """
        snapshot = self._snapshot
        if snapshot.profile is None:
            return snapshot.core_state
        self._check_channel(snapshot, channel)
        return snapshot.channel_state(channel)

    def get_info(self) -> str:
        """Get a short description of the active profile."""
        return self._require_profile().profile.describe()

    # --------------------------------------------------------------- transmit

    def send(self, payload: Sequence[int]) -> None:
        """
        Queue a payload for transmission on the transmission channel.

        Raises:
            LifecycleError: NOT_RUNNING or ALREADY_SENDING
            PayloadError: If the payload is not valid
        """
        with self._control() as notes:
            current = self._snapshot
            if current.core_state == SessionState.NOT_CREATED:
                raise LifecycleError(ErrorCode.NOT_INITIALISED)
            if current.core_state != SessionState.RUNNING:
                raise LifecycleError(ErrorCode.NOT_RUNNING)
            if current.is_sending:
                raise LifecycleError(ErrorCode.ALREADY_SENDING)

            frame = self._codec.encode(payload)
            channel = current.transmit_channel
            modulator = Modulator(self._generators[channel], channel)
            modulator.begin(frame)
            self._snapshot = self._transition(
                notes,
                current,
                is_sending=True,
                sending_channel=channel,
                modulator=modulator,
            )
            logger.info(
                "[Session] Sending %d bytes on channel %d (%.2fs)",
                frame.length, channel, modulator.duration_seconds,
            )
            notes.append(("on_sending", (frame.payload, channel)))

    def get_send_progress(self) -> Optional[TransmissionProgress]:
        """Progress of the frame being sent, or None when idle."""
        modulator = self._snapshot.modulator
        return modulator.get_progress() if modulator is not None else None

    @staticmethod
    def _check_channel(snapshot: EngineSnapshot, channel: int) -> None:
        if not 0 <= channel < snapshot.profile.channel_count:
            raise ArgumentError(
                ErrorCode.CHANNEL_NOT_SUPPORTED,
                f"Channel {channel} not in [0, {snapshot.profile.channel_count})",
            )

    def set_transmission_channel(self, channel: int) -> None:
        """
        Select the channel used by the next send.

        Raises:
            ArgumentError: CHANNEL_NOT_SUPPORTED for an unknown channel
        """
        with self._control():
            current = self._require_profile()
            self._check_channel(current, channel)
            self._snapshot = current.evolve(transmit_channel=channel)

    def get_transmission_channel(self) -> int:
        return self._require_profile().transmit_channel

    def get_channel_count(self) -> int:
        return self._require_profile().profile.channel_count

    # ---------------------------------------------------------------- settings

    def set_volume(self, volume: float) -> None:
        """
        Set the output volume.

        Raises:
            ArgumentError: INVALID_VOLUME outside [0, 1]
        """
        if not 0.0 <= volume <= 1.0:
            raise ArgumentError(ErrorCode.INVALID_VOLUME, f"Volume {volume} not in [0, 1]")
        with self._control():
            self._snapshot = self._snapshot.evolve(volume=float(volume))

    def get_volume(self) -> float:
        return self._snapshot.volume

    def set_frequency_correction(self, correction: float) -> None:
        """
        Set the correction coefficient applied to detected frequencies.

        Raises:
            ArgumentError: INVALID_FREQUENCY_CORRECTION outside [0.5, 1.5]
        """
        if not MIN_FREQUENCY_CORRECTION <= correction <= MAX_FREQUENCY_CORRECTION:
            raise ArgumentError(
                ErrorCode.INVALID_FREQUENCY_CORRECTION,
                f"Frequency correction {correction} not in "
                f"[{MIN_FREQUENCY_CORRECTION}, {MAX_FREQUENCY_CORRECTION}]",
            )
        with self._control():
            current = self._snapshot.evolve(frequency_correction=float(correction))
            for demodulator in current.demodulators:
                demodulator.set_detector(self._build_detector(current, demodulator.channel))
            self._snapshot = current

    def get_frequency_correction(self) -> float:
        return self._snapshot.frequency_correction

    def set_auto_mute(self, enabled: bool) -> None:
        """Enable or disable muting of our own signal while sending."""
        with self._control():
            self._snapshot = self._snapshot.evolve(listen_to_self=not enabled)

    def get_auto_mute(self) -> bool:
        return not self._snapshot.listen_to_self

    def set_input_sample_rate(self, sample_rate: int) -> None:
        """
        Set the sample rate of input buffers.

        While running, the demodulators are replaced; a frame being
        received is reported as failed.

        Raises:
            ArgumentError: INVALID_SAMPLE_RATE if the rate cannot carry the profile tones
        """
        with self._control() as notes:
            current = self._require_profile()
            self._check_sample_rate(current, sample_rate)
            if current.core_state == SessionState.RUNNING:
                for demodulator in current.demodulators:
                    demodulator.abort()
                notes.extend(self._commit_pending())
                current = self._snapshot
            snapshot = current.evolve(sample_rate_in=int(sample_rate))
            if current.core_state == SessionState.RUNNING:
                snapshot = snapshot.evolve(
                    receiving=(False,) * current.profile.channel_count,
                    generation=current.generation + 1,
                )
                snapshot = snapshot.evolve(demodulators=self._build_demodulators(snapshot))
            self._snapshot = snapshot

    def get_input_sample_rate(self) -> int:
        return self._require_profile().sample_rate_in

    def set_output_sample_rate(self, sample_rate: int) -> None:
        """
        Set the sample rate of output buffers.

        Raises:
            ArgumentError: INVALID_SAMPLE_RATE if the rate cannot carry the profile tones
            LifecycleError: ALREADY_SENDING while a frame is being sent
        """
        with self._control():
            current = self._require_profile()
            self._check_sample_rate(current, sample_rate)
            if current.is_sending:
                raise LifecycleError(ErrorCode.ALREADY_SENDING)
            snapshot = current.evolve(sample_rate_out=int(sample_rate))
            if current.core_state == SessionState.RUNNING:
                self._generators = self._build_generators(snapshot)
            self._snapshot = snapshot

    def get_output_sample_rate(self) -> int:
        return self._require_profile().sample_rate_out

    @staticmethod
    def _check_sample_rate(snapshot: EngineSnapshot, sample_rate: int) -> None:
        if not snapshot.profile.supports_sample_rate(sample_rate):
            raise ArgumentError(ErrorCode.INVALID_SAMPLE_RATE, f"Unsupported sample rate {sample_rate}")

    # ---------------------------------------------------------------- payloads

    def get_max_payload_length(self) -> int:
        return self._require_profile().profile.max_payload_bytes

    def get_duration_for_length(self, length: int) -> float:
        """Duration in seconds of a transmission of `length` bytes at the output rate."""
        snapshot = self._require_profile()
        return snapshot.profile.duration_for_length(length, snapshot.sample_rate_out)

    def validate_payload(self, payload: Sequence[int]) -> bytes:
        """
        Check a payload can be sent with the active profile.

        Raises:
            PayloadError: With the specific validation failure
        """
        self._require_profile()
        return self._codec.validate(payload)

    def is_valid(self, payload: Sequence[int]) -> bool:
        self._require_profile()
        try:
            self._codec.validate(payload)
        except PayloadError as e:
            logger.debug("[Session] Invalid payload: %s", e)
            return False
        return True

    def random_payload(self, length: int = 0) -> bytes:
        """Generate a random payload; length 0 randomises the length too."""
        self._require_profile()
        return self._codec.random_payload(length)

    def new_payload(self, length: int) -> bytes:
        """Create a zero-filled payload."""
        self._require_profile()
        return self._codec.new_payload(length)

    @staticmethod
    def as_string(payload: Sequence[int]) -> str:
        """Hexadecimal representation of a payload."""
        return bytes(payload).hex()

    # -------------------------------------------------------------- processing

    def process(self, input_buffer: np.ndarray, output_buffer: np.ndarray, length: Optional[int] = None) -> ErrorCode:
        """Decode a block of float input and fill a block of float output."""
        return self._process(input_buffer, output_buffer, length, SampleFormat.FLOAT32, True, True)

    def process_input(self, input_buffer: np.ndarray, length: Optional[int] = None) -> ErrorCode:
        """Decode a block of float input."""
        return self._process(input_buffer, None, length, SampleFormat.FLOAT32, True, False)

    def process_output(self, output_buffer: np.ndarray, length: Optional[int] = None) -> ErrorCode:
        """Fill a block of float output."""
        return self._process(None, output_buffer, length, SampleFormat.FLOAT32, False, True)

    def process_shorts(self, input_buffer: np.ndarray, output_buffer: np.ndarray, length: Optional[int] = None) -> ErrorCode:
        """Decode a block of int16 input and fill a block of int16 output."""
        return self._process(input_buffer, output_buffer, length, SampleFormat.INT16, True, True)

    def process_shorts_input(self, input_buffer: np.ndarray, length: Optional[int] = None) -> ErrorCode:
        """Decode a block of int16 input."""
        return self._process(input_buffer, None, length, SampleFormat.INT16, True, False)

    def process_shorts_output(self, output_buffer: np.ndarray, length: Optional[int] = None) -> ErrorCode:
        """Fill a block of int16 output."""
        return self._process(None, output_buffer, length, SampleFormat.INT16, False, True)

    @staticmethod
    def _check_buffers(
        input_buffer,
        output_buffer,
        length: Optional[int],
        fmt: SampleFormat,
        uses_input: bool,
        uses_output: bool,
    ) -> ErrorCode:
        used = []
        if uses_input:
            used.append(input_buffer)
        if uses_output:
            used.append(output_buffer)
        for buffer in used:
            if buffer is None or not fmt.accepts(buffer):
                return ErrorCode.NULL_BUFFER
        if uses_output and not output_buffer.flags.writeable:
            return ErrorCode.NULL_BUFFER
        expected = len(used[0]) if length is None else length
        if expected <= 0 or any(len(buffer) != expected for buffer in used):
            return ErrorCode.INVALID_LENGTH
        return ErrorCode.OK

    def _process(
        self,
        input_buffer: Optional[np.ndarray],
        output_buffer: Optional[np.ndarray],
        length: Optional[int],
        fmt: SampleFormat,
        uses_input: bool,
        uses_output: bool,
    ) -> ErrorCode:
        snapshot = self._snapshot
        writable = (
            output_buffer
            if uses_output and fmt.accepts(output_buffer) and output_buffer.flags.writeable
            else None
        )

        code = self._check_buffers(input_buffer, output_buffer, length, fmt, uses_input, uses_output)
        if code == ErrorCode.OK and snapshot.core_state != SessionState.RUNNING:
            code = (
                ErrorCode.NOT_INITIALISED
                if snapshot.core_state == SessionState.NOT_CREATED
                else ErrorCode.NOT_RUNNING
            )
        if code != ErrorCode.OK or snapshot.paused:
            self._bridge.silence(writable)
            return code

        try:
            finished = self._bridge.process(snapshot, input_buffer, writable, fmt)
        except Exception:
            logger.exception("[Session] Processing failed")
            self._bridge.silence(writable)
            return ErrorCode.PROCESSING_ERROR
        if finished:
            self._pending.append((_SENT, snapshot.generation, snapshot.modulator))
        return self._flush_pending()

    def _flush_pending(self) -> ErrorCode:
        """Commit queued transitions from the audio context without blocking."""
        if not self._pending:
            return ErrorCode.OK
        if not self._lock.acquire(blocking=False):
            logger.debug("[Session] Control call in progress, deferring %d events", len(self._pending))
            return ErrorCode.OK
        try:
            notes = self._commit_pending()
        finally:
            self._lock.release()
        try:
            self._notify(notes)
        except Exception:
            logger.exception("[Session] Listener raised during processing")
            return ErrorCode.PROCESSING_ERROR
        return ErrorCode.OK
