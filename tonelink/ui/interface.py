"""
Rich text interface for tonelink.
Provides color-coded session status and event output.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tonelink.core.events import SessionListener
from tonelink.core.profile import ConfigProfile
from tonelink.core.state import SessionState
from tonelink.utils.helpers import format_bytes, format_duration, format_hex


@dataclass
class ColorScheme:
    """Color scheme for the interface."""
    waiting: str = "yellow"
    sending: str = "blue"
    sent: str = "green"
    receiving: str = "cyan"
    error: str = "red"
    info: str = "white"
    highlight: str = "magenta"

    @classmethod
    def from_dict(cls, d: Dict[str, str]) -> "ColorScheme":
        """Create ColorScheme from dictionary."""
        return cls(
            waiting=d.get("waiting", "yellow"),
            sending=d.get("sending", "blue"),
            sent=d.get("sent", "green"),
            receiving=d.get("receiving", "cyan"),
            error=d.get("error", "red"),
        )


class RichInterface:
    """
    Rich text interface for tonelink.

    Provides:
    - Color-coded state display (yellow=waiting, blue=sending, green=sent)
    - Payload panels for sent and received frames
    - Profile summary tables
    """

    def __init__(self, colors: Optional[ColorScheme] = None, console: Optional[Console] = None):
        """
        Initialize the rich interface.

        Args:
            colors: Color scheme to use
            console: Console to print to (a new one by default)
        """
        self.colors = colors or ColorScheme()
        self.console = console or Console()
        self._lock = threading.Lock()

    def state_color(self, state: SessionState) -> str:
        """Get color for a session state."""
        if state == SessionState.SENDING:
            return self.colors.sending
        if state == SessionState.RECEIVING:
            return self.colors.receiving
        if state == SessionState.RUNNING:
            return self.colors.sent
        return self.colors.waiting

    def print_header(self, text: str = "tonelink - acoustic data modem") -> None:
        """Print application header."""
        self.console.print(Panel(
            Text(text, style="bold white"),
            style="blue",
        ))

    def print_info(self, message: str) -> None:
        self.console.print(f"[{self.colors.info}]ℹ {escape(message)}[/]")

    def print_success(self, message: str) -> None:
        self.console.print(f"[{self.colors.sent}]✓ {escape(message)}[/]")

    def print_error(self, message: str) -> None:
        self.console.print(f"[{self.colors.error}]✗ {escape(message)}[/]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[{self.colors.waiting}]⚠ {escape(message)}[/]")

    def show_state(self, old: SessionState, new: SessionState) -> None:
        """Print a state transition."""
        with self._lock:
            self.console.print(
                f"[{self.state_color(old)}]{old.name}[/] → [{self.state_color(new)}]{new.name}[/]"
            )

    def show_payload(self, label: str, payload: Optional[bytes], channel: int, color: str) -> None:
        """
        Display a payload in a panel.

        Args:
            label: Panel title (e.g. "Sent", "Received")
            payload: Payload bytes, or None for a failed decode
            channel: Channel the payload travelled on
            color: Border and text color
        """
        if payload is None:
            body = Text("decode failed", style=self.colors.error)
        else:
            body = Text(format_hex(payload, group=4), style=color)
        size = format_bytes(len(payload)) if payload is not None else "-"
        with self._lock:
            self.console.print(Panel(
                body,
                title=f"[{color}]{label}[/] ch{channel} ({size})",
                border_style=color,
            ))

    def show_profile(self, profile: ConfigProfile) -> None:
        """Display the parameters of a profile."""
        table = Table(show_header=True, header_style="bold")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Name", f"{profile.name} v{profile.version}")
        table.add_row("Max payload", format_bytes(profile.max_payload_bytes))
        table.add_row("Max duration", format_duration(profile.duration_for_length(profile.max_payload_bytes)))
        table.add_row("Channels", str(profile.channel_count))
        table.add_row("Sample rate in/out", f"{profile.sample_rate_in} / {profile.sample_rate_out} Hz")
        table.add_row(
            "Band",
            f"{profile.tone_frequency(0, 0):.0f} - {profile.highest_frequency:.0f} Hz",
        )
        table.add_row("Symbol", f"{profile.symbol_duration_ms:g} ms")
        table.add_row("ECC bytes", str(profile.ecc_bytes))

        self.console.print(Panel(table, title=escape(profile.describe())))


class ConsoleListener(SessionListener):
    """Session listener that prints events through a RichInterface."""

    def __init__(self, ui: RichInterface, show_states: bool = False):
        self.ui = ui
        self.show_states = show_states
        self.received = 0
        self.failed = 0

    def on_state_changed(self, user_data: Any, old: SessionState, new: SessionState) -> None:
        if self.show_states:
            self.ui.show_state(old, new)

    def on_sending(self, user_data: Any, payload: bytes, channel: int) -> None:
        self.ui.show_payload("Sending", payload, channel, self.ui.colors.sending)

    def on_sent(self, user_data: Any, payload: bytes, channel: int) -> None:
        self.ui.print_success(f"Sent {format_bytes(len(payload))} on channel {channel}")

    def on_receiving(self, user_data: Any, channel: int) -> None:
        self.ui.console.print(f"[{self.ui.colors.receiving}]… receiving on channel {channel}[/]")

    def on_received(self, user_data: Any, payload: Optional[bytes], channel: int) -> None:
        if payload is None:
            self.failed += 1
            self.ui.show_payload("Received", None, channel, self.ui.colors.error)
        else:
            self.received += 1
            self.ui.show_payload("Received", payload, channel, self.ui.colors.sent)


def create_interface(config_dict: Dict[str, Any], console: Optional[Console] = None) -> RichInterface:
    """
    Create a RichInterface from configuration.

    Args:
        config_dict: UI configuration dictionary
        console: Optional console to print to

    Returns:
        Configured RichInterface
    """
    colors = ColorScheme.from_dict(config_dict.get("colors", {}))
    return RichInterface(colors=colors, console=console)
