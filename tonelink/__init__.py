"""
tonelink - Send and receive short binary payloads over sound
Compatible with Linux and macOS
"""

__version__ = "0.2.0"
__author__ = "tonelink contributors"

from tonelink.core.config import Config
from tonelink.core.errors import ErrorCode, ToneLinkError, error_description
from tonelink.core.events import CallbackListener, ListenerGroup, SessionListener
from tonelink.core.profile import ConfigProfile, ProfileLoader, builtin_profile, encode_profile
from tonelink.core.session import Session
from tonelink.core.state import SessionState

__all__ = [
    "Config",
    "ConfigProfile",
    "ProfileLoader",
    "builtin_profile",
    "encode_profile",
    "ErrorCode",
    "ToneLinkError",
    "error_description",
    "Session",
    "SessionState",
    "SessionListener",
    "CallbackListener",
    "ListenerGroup",
    "__version__",
]
