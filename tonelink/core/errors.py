"""
Error codes and exceptions for tonelink.
One tagged error set shared by every entry point of the engine.
"""

from enum import IntEnum
from typing import Optional


class ErrorCode(IntEnum):
    """Result codes returned by processing entry points and carried by exceptions."""
    OK = 0
    OUT_OF_MEMORY = 1
    NOT_INITIALISED = 2
    INTERNAL_ERROR = 3
    NOT_RUNNING = 6
    ALREADY_RUNNING = 7
    ALREADY_STOPPED = 8
    ALREADY_SENDING = 9

    INVALID_SAMPLE_RATE = 20
    NULL_BUFFER = 21
    NULL_POINTER = 22
    CHANNEL_NOT_SUPPORTED = 23
    INVALID_FREQUENCY_CORRECTION = 24
    PROCESSING_ERROR = 25
    INVALID_LENGTH = 26

    INVALID_CREDENTIALS = 42
    MISSING_SIGNATURE = 43
    INVALID_SIGNATURE = 44
    MISSING_CONFIG = 45
    INVALID_CONFIG = 46
    EXPIRED_CONFIG = 47
    INVALID_VERSION = 48
    INVALID_PROJECT = 49
    INVALID_CONFIG_CHARACTER = 50

    PAYLOAD_EMPTY_MESSAGE = 80
    PAYLOAD_INVALID_MESSAGE = 81
    PAYLOAD_UNKNOWN_SYMBOLS = 82
    PAYLOAD_DECODE_FAILED = 83
    PAYLOAD_TOO_LONG = 84
    PAYLOAD_TOO_SHORT = 85

    INVALID_VOLUME = 99
    UNKNOWN_ERROR = 100
    AUDIO_IO_ERROR = 204


_DESCRIPTIONS = {
    ErrorCode.OK: "No error.",
    ErrorCode.OUT_OF_MEMORY: "The engine ran out of memory.",
    ErrorCode.NOT_INITIALISED: "The session hasn't been initialised, did you forget to set the config?",
    ErrorCode.INTERNAL_ERROR: "An internal error prevented the engine from initialising correctly.",
    ErrorCode.NOT_RUNNING: "The session is not running.",
    ErrorCode.ALREADY_RUNNING: "The session is already running.",
    ErrorCode.ALREADY_STOPPED: "The session has already stopped.",
    ErrorCode.ALREADY_SENDING: "The session is already sending.",
    ErrorCode.INVALID_SAMPLE_RATE: "The sample rate is invalid (it must respect the Nyquist limit).",
    ErrorCode.NULL_BUFFER: "One of the parameters is a missing buffer.",
    ErrorCode.NULL_POINTER: "One of the parameters is missing.",
    ErrorCode.CHANNEL_NOT_SUPPORTED: "The channel is not supported by the profile being used.",
    ErrorCode.INVALID_FREQUENCY_CORRECTION: "Invalid frequency correction value.",
    ErrorCode.PROCESSING_ERROR: "An internal issue happened when processing.",
    ErrorCode.INVALID_LENGTH: "The buffer length does not match the requested length.",
    ErrorCode.INVALID_CREDENTIALS: "Invalid application credentials.",
    ErrorCode.MISSING_SIGNATURE: "Signature is missing from the config.",
    ErrorCode.INVALID_SIGNATURE: "Signature couldn't be verified.",
    ErrorCode.MISSING_CONFIG: "Config information is missing.",
    ErrorCode.INVALID_CONFIG: "Config information is invalid.",
    ErrorCode.EXPIRED_CONFIG: "This config has expired.",
    ErrorCode.INVALID_VERSION: "This config was generated for a different version.",
    ErrorCode.INVALID_PROJECT: "This config was generated for a different project.",
    ErrorCode.INVALID_CONFIG_CHARACTER: "Your config contains one or many unknown character(s).",
    ErrorCode.PAYLOAD_EMPTY_MESSAGE: "The payload is empty.",
    ErrorCode.PAYLOAD_INVALID_MESSAGE: "The payload is invalid.",
    ErrorCode.PAYLOAD_UNKNOWN_SYMBOLS: "The payload contains unknown symbols.",
    ErrorCode.PAYLOAD_DECODE_FAILED: "Couldn't decode the payload.",
    ErrorCode.PAYLOAD_TOO_LONG: "The payload is longer than the maximum allowed by the profile.",
    ErrorCode.PAYLOAD_TOO_SHORT: "The payload is shorter than the minimum allowed by the profile.",
    ErrorCode.INVALID_VOLUME: "Volume value is incorrect.",
    ErrorCode.UNKNOWN_ERROR: "The engine has reported an unknown error.",
    ErrorCode.AUDIO_IO_ERROR: "Audio IO error.",
}


def error_description(code: ErrorCode) -> str:
    """Get a human-readable description of an error code."""
    return _DESCRIPTIONS.get(ErrorCode(code), _DESCRIPTIONS[ErrorCode.UNKNOWN_ERROR])


class ToneLinkError(Exception):
    """Base exception for tonelink errors."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(self, code: Optional[ErrorCode] = None, message: Optional[str] = None):
        self.code = ErrorCode(code if code is not None else self.default_code)
        super().__init__(message or error_description(self.code))


class LifecycleError(ToneLinkError):
    """A call was made in a session state that does not allow it."""
    default_code = ErrorCode.NOT_INITIALISED


class ArgumentError(ToneLinkError):
    """A call was made with an invalid argument."""
    default_code = ErrorCode.NULL_POINTER


class PayloadError(ToneLinkError):
    """A payload failed validation, encoding or decoding."""
    default_code = ErrorCode.PAYLOAD_INVALID_MESSAGE


class ConfigError(ToneLinkError):
    """A config descriptor could not be turned into a profile."""
    default_code = ErrorCode.INVALID_CONFIG


class ResourceError(ToneLinkError):
    """An internal or audio resource failed."""
    default_code = ErrorCode.INTERNAL_ERROR
