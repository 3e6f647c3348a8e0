"""
Notification interface for tonelink sessions.
"""

from typing import Any, Callable, Optional

from tonelink.core.state import SessionState


class SessionListener:
    """
    Receives session notifications.

    Subclass and override the methods of interest. Every method gets the
    user data registered on the session as its first argument. Methods are
    called synchronously from the control call or processing call that
    caused the event, so they should return quickly.
    """

    def on_state_changed(self, user_data: Any, old: SessionState, new: SessionState) -> None:
        pass

    def on_sending(self, user_data: Any, payload: bytes, channel: int) -> None:
        pass

    def on_sent(self, user_data: Any, payload: bytes, channel: int) -> None:
        pass

    def on_receiving(self, user_data: Any, channel: int) -> None:
        pass

    def on_received(self, user_data: Any, payload: Optional[bytes], channel: int) -> None:
        """
        A frame finished on a channel.

        Args:
            user_data: Session user data
            payload: Decoded bytes, or None if the frame failed to decode
            channel: Receive channel
        """
        pass


class CallbackListener(SessionListener):
    """Listener that forwards notifications to plain callables."""

    def __init__(self):
        self._on_state_changed: Optional[Callable[[Any, SessionState, SessionState], None]] = None
        self._on_sending: Optional[Callable[[Any, bytes, int], None]] = None
        self._on_sent: Optional[Callable[[Any, bytes, int], None]] = None
        self._on_receiving: Optional[Callable[[Any, int], None]] = None
        self._on_received: Optional[Callable[[Any, Optional[bytes], int], None]] = None

    def set_state_changed_callback(self, callback: Callable[[Any, SessionState, SessionState], None]) -> None:
        self._on_state_changed = callback

    def set_sending_callback(self, callback: Callable[[Any, bytes, int], None]) -> None:
        self._on_sending = callback

    def set_sent_callback(self, callback: Callable[[Any, bytes, int], None]) -> None:
        self._on_sent = callback

    def set_receiving_callback(self, callback: Callable[[Any, int], None]) -> None:
        self._on_receiving = callback

    def set_received_callback(self, callback: Callable[[Any, Optional[bytes], int], None]) -> None:
        self._on_received = callback

    def on_state_changed(self, user_data, old, new):
        if self._on_state_changed:
            self._on_state_changed(user_data, old, new)

    def on_sending(self, user_data, payload, channel):
        if self._on_sending:
            self._on_sending(user_data, payload, channel)

    def on_sent(self, user_data, payload, channel):
        if self._on_sent:
            self._on_sent(user_data, payload, channel)

    def on_receiving(self, user_data, channel):
        if self._on_receiving:
            self._on_receiving(user_data, channel)

    def on_received(self, user_data, payload, channel):
        if self._on_received:
            self._on_received(user_data, payload, channel)


class ListenerGroup(SessionListener):
    """Fans notifications out to several listeners, in registration order."""

    def __init__(self, *listeners: SessionListener):
        self.listeners = list(listeners)

    def add(self, listener: SessionListener) -> None:
        self.listeners.append(listener)

    def on_state_changed(self, user_data, old, new):
        for listener in self.listeners:
            listener.on_state_changed(user_data, old, new)

    def on_sending(self, user_data, payload, channel):
        for listener in self.listeners:
            listener.on_sending(user_data, payload, channel)

    def on_sent(self, user_data, payload, channel):
        for listener in self.listeners:
            listener.on_sent(user_data, payload, channel)

    def on_receiving(self, user_data, channel):
        for listener in self.listeners:
            listener.on_receiving(user_data, channel)

    def on_received(self, user_data, payload, channel):
        for listener in self.listeners:
            listener.on_received(user_data, payload, channel)
