"""
Command-line interface for tonelink.
"""

import logging
import sys
import threading
import time
from datetime import date
from math import gcd
from typing import List, Optional

import click
import numpy as np
from scipy.io import wavfile
from scipy.signal import resample_poly

from tonelink import __version__
from tonelink.core.config import Config
from tonelink.core.errors import ErrorCode, ToneLinkError, error_description
from tonelink.core.events import ListenerGroup, SessionListener
from tonelink.core.logger import EventLogger
from tonelink.core.profile import encode_profile
from tonelink.core.session import Session
from tonelink.core.state import SessionState
from tonelink.ui.interface import ConsoleListener, RichInterface, create_interface
from tonelink.utils.helpers import format_duration, parse_hex


def _load_config(config: Optional[str], profile: Optional[str] = None) -> Config:
    """Load settings, falling back to defaults when the file is missing."""
    try:
        cfg = Config(config) if config else Config()
    except FileNotFoundError:
        cfg = Config()
    if profile:
        cfg.set("profile.config", profile)
    return cfg


def _create_session(cfg: Config, ui: RichInterface, *extra: SessionListener) -> Session:
    """Build a session that reports to the console and, if enabled, the event log."""
    listener = ListenerGroup(ConsoleListener(ui), *extra)
    log_config = cfg.logging_config
    if log_config.get("enabled", False):
        listener.add(EventLogger(
            log_file=log_config.get("file", "tonelink_events.log"),
            log_format=log_config.get("format", "text"),
            include_timestamps=log_config.get("timestamps", True),
            log_level=log_config.get("level", "info"),
        ))
    return cfg.create_session(listener=listener)


def _parse_payload(payload: str, text: bool) -> bytes:
    if text:
        return payload.encode("utf-8")
    try:
        return parse_hex(payload)
    except ValueError as e:
        raise click.BadParameter(f"not a hexadecimal payload: {e}", param_hint="PAYLOAD")


def _fail(ui: RichInterface, error: ToneLinkError) -> None:
    ui.print_error(f"{error} [{error.code.name}]")
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Show engine debug logging')
def main(verbose: bool):
    """tonelink - Send and receive data over sound."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


@main.command()
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--profile', '-p', type=str, default=None, help='Profile name or config string')
def info(config: Optional[str], profile: Optional[str]):
    """Show the active transmission profile."""
    cfg = _load_config(config, profile)
    ui = create_interface(cfg.ui)
    try:
        session = cfg.create_session()
    except ToneLinkError as e:
        _fail(ui, e)
    ui.show_profile(session.get_profile())
    ui.print_info(session.get_info())


@main.command()
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--profile', '-p', type=str, default=None, help='Profile name or config string')
@click.option('--length', '-l', type=int, default=0, help='Payload length (0 for a random length)')
def random(config: Optional[str], profile: Optional[str], length: int):
    """Print a random payload as hexadecimal."""
    cfg = _load_config(config, profile)
    ui = create_interface(cfg.ui)
    try:
        session = cfg.create_session()
        payload = session.random_payload(length)
    except ToneLinkError as e:
        _fail(ui, e)
    click.echo(session.as_string(payload))


@main.command()
@click.argument('payload')
@click.option('--output', '-o', type=str, default='output.wav', help='Output WAV file path')
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--profile', '-p', type=str, default=None, help='Profile name or config string')
@click.option('--text', '-t', is_flag=True, help='Treat PAYLOAD as UTF-8 text instead of hex')
@click.option('--volume', type=float, default=None, help='Output volume (0.0 to 1.0)')
@click.option('--channel', type=int, default=None, help='Transmission channel')
@click.option('--padding', type=float, default=0.25, help='Silence before and after the frame, in seconds')
def encode(payload: str, output: str, config: Optional[str], profile: Optional[str], text: bool,
           volume: Optional[float], channel: Optional[int], padding: float):
    """Encode a payload into a WAV file.

    PAYLOAD is hexadecimal (e.g. 0102ff) unless --text is given.

    Examples:
        tonelink encode 48656c6c6f -o hello.wav
        tonelink encode "Hello" --text -o hello.wav --profile compact
    """
    cfg = _load_config(config, profile)
    ui = create_interface(cfg.ui)
    data = _parse_payload(payload, text)

    try:
        session = _create_session(cfg, ui)
        if volume is not None:
            session.set_volume(volume)
        if channel is not None:
            session.set_transmission_channel(channel)
        session.start()
        session.send(data)
    except ToneLinkError as e:
        _fail(ui, e)

    sample_rate = session.get_output_sample_rate()
    block_size = cfg.audio.get("buffer_size", 1024)
    silence = np.zeros(int(sample_rate * padding), dtype=np.int16)
    blocks: List[np.ndarray] = [silence]
    while session.get_state() == SessionState.SENDING:
        block = np.zeros(block_size, dtype=np.int16)
        code = session.process_shorts_output(block, block_size)
        if code != ErrorCode.OK:
            ui.print_error(error_description(code))
            sys.exit(1)
        blocks.append(block)
    blocks.append(silence)
    session.stop()

    audio = np.concatenate(blocks)
    wavfile.write(output, sample_rate, audio)
    ui.print_success(f"Sound wave saved to: {output}")
    ui.print_info(f"Duration: {format_duration(len(audio) / sample_rate)} at {sample_rate} Hz")


def _read_wav(input_file: str) -> tuple:
    """Read a WAV file as mono float32 in [-1, 1]."""
    sample_rate, audio_data = wavfile.read(input_file)
    if audio_data.dtype == np.int16:
        samples = audio_data.astype(np.float32) / 32768.0
    elif audio_data.dtype == np.int32:
        samples = audio_data.astype(np.float32) / 2147483648.0
    elif audio_data.dtype == np.uint8:
        samples = (audio_data.astype(np.float32) - 128) / 128.0
    else:
        samples = audio_data.astype(np.float32)
    if samples.ndim > 1:
        samples = samples[:, 0]
    return sample_rate, np.ascontiguousarray(samples)


@main.command()
@click.argument('input_file', type=click.Path(exists=True))
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--profile', '-p', type=str, default=None, help='Profile name or config string')
@click.option('--correction', type=float, default=None, help='Frequency correction (0.5 to 1.5)')
def decode(input_file: str, config: Optional[str], profile: Optional[str], correction: Optional[float]):
    """Decode the payloads contained in a WAV file.

    Examples:
        tonelink decode hello.wav
        tonelink decode hello.wav --profile compact
    """
    cfg = _load_config(config, profile)
    ui = create_interface(cfg.ui)

    try:
        sample_rate, samples = _read_wav(input_file)
    except (OSError, ValueError) as e:
        ui.print_error(f"Failed to read WAV file: {e}")
        sys.exit(1)

    console = ConsoleListener(ui)
    try:
        session = cfg.create_session(listener=console)
        if correction is not None:
            session.set_frequency_correction(correction)
        target_rate = session.get_input_sample_rate()
        if sample_rate != target_rate:
            divisor = gcd(sample_rate, target_rate)
            samples = resample_poly(samples, target_rate // divisor, sample_rate // divisor)
            samples = samples.astype(np.float32)
            ui.print_info(f"Resampled {sample_rate} Hz -> {target_rate} Hz")
            sample_rate = target_rate
        session.start()
    except ToneLinkError as e:
        _fail(ui, e)

    ui.print_info(f"Decoding {format_duration(len(samples) / sample_rate)} of audio at {sample_rate} Hz")
    block_size = cfg.audio.get("buffer_size", 1024)
    # Trailing silence lets a frame that ends with the file finish
    tail = np.zeros(2 * session.get_profile().symbol_samples(sample_rate), dtype=np.float32)
    stream = np.concatenate([samples, tail])
    for start in range(0, len(stream), block_size):
        block = stream[start:start + block_size]
        code = session.process_input(block, len(block))
        if code != ErrorCode.OK:
            ui.print_error(error_description(code))
            sys.exit(1)
    session.stop()

    if console.received == 0:
        ui.print_warning("No payload decoded")
        sys.exit(1)
    ui.print_success(f"Decoded {console.received} payload(s), {console.failed} failed")


class _SentWaiter(SessionListener):
    def __init__(self):
        self.done = threading.Event()

    def on_sent(self, user_data, payload, channel):
        self.done.set()


@main.command()
@click.argument('payload', required=False)
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--profile', '-p', type=str, default=None, help='Profile name or config string')
@click.option('--text', '-t', is_flag=True, help='Treat PAYLOAD as UTF-8 text instead of hex')
@click.option('--random', 'use_random', is_flag=True, help='Send a random payload')
def send(payload: Optional[str], config: Optional[str], profile: Optional[str], text: bool, use_random: bool):
    """Send a payload through the speaker."""
    from tonelink.audio.device import AudioStream

    cfg = _load_config(config, profile)
    ui = create_interface(cfg.ui)
    if payload is None and not use_random:
        raise click.UsageError("Give a PAYLOAD or --random")

    waiter = _SentWaiter()
    try:
        session = _create_session(cfg, ui, waiter)
        data = session.random_payload() if use_random else _parse_payload(payload, text)
        session.start()
        with AudioStream(
            session,
            buffer_size=cfg.audio.get("buffer_size", 1024),
            output_device=cfg.audio.get("output_device"),
            duplex=False,
        ):
            session.send(data)
            timeout = session.get_duration_for_length(len(data)) + 2.0
            if not waiter.done.wait(timeout):
                ui.print_error("Timed out waiting for the frame to play")
                sys.exit(1)
            # Let the device drain its last buffers
            time.sleep(0.2)
        session.stop()
    except ToneLinkError as e:
        _fail(ui, e)


@main.command()
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--profile', '-p', type=str, default=None, help='Profile name or config string')
@click.option('--timeout', type=float, default=30.0, help='Listen time in seconds')
def listen(config: Optional[str], profile: Optional[str], timeout: float):
    """Listen for payloads through the microphone."""
    from tonelink.audio.device import AudioStream

    cfg = _load_config(config, profile)
    ui = create_interface(cfg.ui)
    ui.print_header()
    try:
        session = _create_session(cfg, ui)
        session.start()
        ui.print_info(f"Listening for {format_duration(timeout)}... (Ctrl+C to stop)")
        with AudioStream(
            session,
            buffer_size=cfg.audio.get("buffer_size", 1024),
            input_device=cfg.audio.get("input_device"),
            output_device=cfg.audio.get("output_device"),
        ):
            try:
                time.sleep(timeout)
            except KeyboardInterrupt:
                ui.print_info("Stopped")
        session.stop()
    except ToneLinkError as e:
        _fail(ui, e)


@main.command()
def devices():
    """List available audio devices."""
    from tonelink.audio.device import list_devices

    found = list_devices()
    if not found:
        click.echo("No audio devices found (sounddevice may not be available)")
        return

    click.echo("\nAvailable audio devices:")
    click.echo("-" * 60)
    for d in found:
        inputs = f"{d['inputs']} in" if d['inputs'] > 0 else ""
        outputs = f"{d['outputs']} out" if d['outputs'] > 0 else ""
        channels = ", ".join(filter(None, [inputs, outputs]))
        click.echo(f"  [{d['index']}] {d['name']}")
        click.echo(f"      {channels}, {int(d['default_samplerate'])} Hz")


@main.command()
@click.option('--config', '-c', type=str, default=None, help='Path to configuration file')
@click.option('--profile', '-p', type=str, default=None, help='Profile name or config string')
@click.option('--secret', type=str, default=None, help='Secret used to sign the config string')
@click.option('--project', type=str, default=None, help='Project key the config is bound to')
@click.option('--expires', type=click.DateTime(formats=["%Y-%m-%d"]), default=None, help='Expiry date (YYYY-MM-DD)')
def sign(config: Optional[str], profile: Optional[str], secret: Optional[str],
         project: Optional[str], expires):
    """Print a signed config string for a profile."""
    cfg = _load_config(config, profile)
    ui = create_interface(cfg.ui)
    try:
        resolved = cfg.create_profile()
    except ToneLinkError as e:
        _fail(ui, e)
    expiry: Optional[date] = expires.date() if expires else None
    click.echo(encode_profile(resolved, secret=secret, project=project, expires=expiry))


@main.command()
@click.option('--output', '-o', type=str, default='tonelink.yaml', help='Output file path')
def init(output: str):
    """Initialize a new configuration file."""
    config = Config()
    config.save(output)

    click.echo(f"Configuration saved to {output}")
    click.echo("Edit this file to customize tonelink settings.")


if __name__ == "__main__":
    main()
