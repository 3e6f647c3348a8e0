"""
Event logger for tonelink.
Writes session events to a log file, one line per event.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import threading

from tonelink.core.events import SessionListener
from tonelink.core.state import SessionState


class EventLogger(SessionListener):
    """
    Logger for tonelink session events.

    Attach it to a session (directly or through a ListenerGroup) to keep a
    text or JSON-lines record of everything sent and received.
    """

    LEVELS = ["debug", "info", "warning", "error"]

    def __init__(
        self,
        log_file: str = "tonelink_events.log",
        log_format: str = "text",
        include_timestamps: bool = True,
        log_level: str = "info",
        session_id: str = "session",
    ):
        """
        Initialize the event logger.

        Args:
            log_file: Path to the log file
            log_format: Log format (text or json)
            include_timestamps: Whether to include timestamps
            log_level: Logging level (debug, info, warning, error)
            session_id: Name written with every entry
        """
        if log_level not in self.LEVELS:
            raise ValueError(f"Unknown log level: {log_level}")
        self.log_file = Path(log_file)
        self.log_format = log_format
        self.include_timestamps = include_timestamps
        self.log_level = log_level
        self.session_id = session_id
        self._lock = threading.Lock()
        self._ensure_log_file()

    def _ensure_log_file(self) -> None:
        """Ensure log file directory exists."""
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        if not self.log_file.exists():
            self.log_file.touch()

    def _get_timestamp(self) -> str:
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    def _format_text(
        self,
        level: str,
        event: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        parts = []
        if self.include_timestamps:
            parts.append(f"[{self._get_timestamp()}]")
        parts.append(f"[{level.upper()}]")
        parts.append(f"[{self.session_id}]")
        parts.append(f"{event}:")
        parts.append(content)
        if metadata:
            parts.append(f"| {metadata}")
        return " ".join(parts)

    def _format_json(
        self,
        level: str,
        event: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        entry = {
            "level": level,
            "event": event,
            "session": self.session_id,
            "content": content,
        }
        if self.include_timestamps:
            entry["timestamp"] = self._get_timestamp()
        if metadata:
            entry["metadata"] = metadata
        return json.dumps(entry)

    def _write(self, entry: str) -> None:
        with self._lock:
            with open(self.log_file, "a") as f:
                f.write(entry + "\n")

    def _should_log(self, level: str) -> bool:
        return self.LEVELS.index(level) >= self.LEVELS.index(self.log_level)

    def log(
        self,
        event: str,
        content: str,
        level: str = "info",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an event.

        Args:
            event: Event type (e.g., "sent", "received")
            content: Content of the log entry
            level: Log level
            metadata: Optional additional metadata
        """
        if not self._should_log(level):
            return

        if self.log_format == "json":
            entry = self._format_json(level, event, content, metadata)
        else:
            entry = self._format_text(level, event, content, metadata)

        self._write(entry)

    # SessionListener

    def on_state_changed(self, user_data, old: SessionState, new: SessionState) -> None:
        self.log("state_changed", f"{old.name} -> {new.name}", "debug")

    def on_sending(self, user_data, payload: bytes, channel: int) -> None:
        self.log("sending", payload.hex(), "debug", {"channel": channel, "length": len(payload)})

    def on_sent(self, user_data, payload: bytes, channel: int) -> None:
        self.log("sent", payload.hex(), "info", {"channel": channel, "length": len(payload)})

    def on_receiving(self, user_data, channel: int) -> None:
        self.log("receiving", f"Frame detected on channel {channel}", "debug")

    def on_received(self, user_data, payload: Optional[bytes], channel: int) -> None:
        if payload is None:
            self.log("decode_failed", f"Frame on channel {channel} failed to decode", "warning")
        else:
            self.log("received", payload.hex(), "info", {"channel": channel, "length": len(payload)})

    def log_error(self, error: str) -> None:
        """Log an error."""
        self.log("error", error, "error")

    def get_history(self) -> List[str]:
        """Read and return all log entries."""
        if not self.log_file.exists():
            return []
        with open(self.log_file, "r") as f:
            return f.readlines()

    def clear_log(self) -> None:
        """Clear the log file."""
        with self._lock:
            self.log_file.write_text("")
