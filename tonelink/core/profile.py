"""
Transmission profiles for tonelink.

A ConfigProfile is the immutable, already-validated parameter set that
drives modulation, demodulation and payload limits. ProfileLoader turns a
config descriptor (a built-in profile name or a signed config string)
into a ConfigProfile.
"""

import base64
import binascii
import dataclasses
import hashlib
import hmac
import re
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Any, Dict, Optional

import yaml

from tonelink.core.errors import ConfigError, ErrorCode, PayloadError


# Symbol alphabet: 16 data tones carry one nibble each, 2 marker tones frame the preamble
DATA_SYMBOLS = 16
MARKER_A = 16
MARKER_B = 17
ALPHABET_SIZE = 18
PREAMBLE = (MARKER_A, MARKER_B, MARKER_A, MARKER_B)
HEADER_SYMBOLS = 4
CRC_BYTES = 4

CONFIG_FORMAT_VERSION = 1


@dataclass(frozen=True)
class ConfigProfile:
    """Immutable transmission profile shared read-only by all engine components."""
    name: str = "standard"
    version: int = 1
    max_payload_bytes: int = 32
    channel_count: int = 1
    sample_rate_in: int = 44100
    sample_rate_out: int = 44100
    base_frequency: float = 1000.0
    frequency_step: float = 100.0
    channel_spacing: float = 2000.0
    symbol_duration_ms: float = 40.0
    ecc_bytes: int = 8
    detection_threshold: float = 0.005  # Minimum marker amplitude to start a detection

    def __post_init__(self):
        """Validate profile values."""
        if self.max_payload_bytes < 1:
            raise ConfigError(ErrorCode.INVALID_CONFIG, "max_payload_bytes must be at least 1")
        if self.ecc_bytes < 2 or self.ecc_bytes % 2:
            raise ConfigError(ErrorCode.INVALID_CONFIG, "ecc_bytes must be an even number >= 2")
        # Reed-Solomon over GF(256) limits a codeword to 255 bytes
        if self.max_payload_bytes + CRC_BYTES + self.ecc_bytes > 255:
            raise ConfigError(ErrorCode.INVALID_CONFIG, "max_payload_bytes too large for a single codeword")
        if self.channel_count < 1:
            raise ConfigError(ErrorCode.INVALID_CONFIG, "channel_count must be at least 1")
        if self.symbol_duration_ms <= 0 or self.frequency_step <= 0 or self.base_frequency <= 0:
            raise ConfigError(ErrorCode.INVALID_CONFIG, "symbol duration and frequencies must be positive")
        if self.channel_count > 1 and self.channel_spacing < ALPHABET_SIZE * self.frequency_step:
            raise ConfigError(ErrorCode.INVALID_CONFIG, "channel_spacing overlaps adjacent channel bands")
        for rate in (self.sample_rate_in, self.sample_rate_out):
            if not self.supports_sample_rate(rate):
                raise ConfigError(
                    ErrorCode.INVALID_CONFIG,
                    f"sample rate {rate} cannot carry tones up to {self.highest_frequency:.0f} Hz",
                )

    @property
    def highest_frequency(self) -> float:
        """Highest tone frequency used on any channel."""
        return self.tone_frequency(self.channel_count - 1, ALPHABET_SIZE - 1)

    def tone_frequency(self, channel: int, symbol: int) -> float:
        """Get the nominal frequency of a symbol tone on a channel."""
        return self.base_frequency + channel * self.channel_spacing + symbol * self.frequency_step

    def supports_sample_rate(self, sample_rate: int) -> bool:
        """Check a sample rate respects the Nyquist limit for every tone."""
        return sample_rate > 0 and self.highest_frequency < sample_rate / 2

    def symbol_samples(self, sample_rate: int) -> int:
        """Number of samples per symbol at the given sample rate."""
        return max(8, int(round(sample_rate * self.symbol_duration_ms / 1000)))

    def symbol_count(self, length: int) -> int:
        """Number of symbols in the frame of a payload of the given length."""
        return len(PREAMBLE) + HEADER_SYMBOLS + 2 * (length + CRC_BYTES + self.ecc_bytes)

    def duration_for_length(self, length: int, sample_rate: Optional[int] = None) -> float:
        """
        Get the duration, in seconds, of a transmission of the given length.

        Args:
            length: Payload length in bytes
            sample_rate: Output sample rate (defaults to the profile's)

        Returns:
            Duration in seconds
        """
        if length < 1:
            raise PayloadError(ErrorCode.PAYLOAD_TOO_SHORT)
        if length > self.max_payload_bytes:
            raise PayloadError(ErrorCode.PAYLOAD_TOO_LONG)
        rate = sample_rate or self.sample_rate_out
        return self.symbol_count(length) * self.symbol_samples(rate) / rate

    def describe(self) -> str:
        """Short description of the profile."""
        duration = self.duration_for_length(self.max_payload_bytes)
        return (
            f'tonelink "{self.name}" profile v{self.version} '
            f"[max {self.max_payload_bytes} bytes in {duration:.2f}s]"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert profile to dictionary."""
        return asdict(self)


BUILTIN_PROFILES: Dict[str, Dict[str, Any]] = {
    "standard": {},
    "multichannel": {
        "max_payload_bytes": 16,
        "channel_count": 2,
        "sample_rate_in": 48000,
        "sample_rate_out": 48000,
        "base_frequency": 1200.0,
        "frequency_step": 100.0,
        "channel_spacing": 2400.0,
        "ecc_bytes": 4,
    },
    "compact": {
        "max_payload_bytes": 8,
        "sample_rate_in": 16000,
        "sample_rate_out": 16000,
        "base_frequency": 800.0,
        "frequency_step": 200.0,
        "symbol_duration_ms": 20.0,
        "ecc_bytes": 4,
    },
}

_CONFIG_PART = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")


def builtin_profile(name: str) -> ConfigProfile:
    """Create one of the built-in profiles by name."""
    if name not in BUILTIN_PROFILES:
        raise ConfigError(ErrorCode.INVALID_CONFIG, f"Unknown profile: {name}")
    return ConfigProfile(name=name, **BUILTIN_PROFILES[name])


def _sign(secret: Optional[str], body: bytes) -> bytes:
    key = (secret or "").encode("utf-8")
    return hmac.new(key, body, hashlib.sha256).digest()


def encode_profile(
    profile: ConfigProfile,
    secret: Optional[str] = None,
    project: Optional[str] = None,
    expires: Optional[date] = None,
) -> str:
    """
    Encode a profile into a signed config string.

    Args:
        profile: Profile to encode
        secret: Application secret used to sign the body
        project: Project key the config is bound to
        expires: Optional expiry date

    Returns:
        Config string accepted by ProfileLoader.load
    """
    document: Dict[str, Any] = {
        "format": CONFIG_FORMAT_VERSION,
        "profile": profile.to_dict(),
    }
    if project:
        document["project"] = project
    if expires:
        document["expires"] = expires.isoformat()
    body = yaml.safe_dump(document, sort_keys=True).encode("utf-8")
    encoded_body = base64.urlsafe_b64encode(body).decode("ascii")
    encoded_sig = base64.urlsafe_b64encode(_sign(secret, body)).decode("ascii")
    return f"{encoded_body}.{encoded_sig}"


class ProfileLoader:
    """
    Reference config descriptor provider.

    Accepts a built-in profile name or a signed config string and yields a
    validated ConfigProfile. Failures raise ConfigError with the specific code.
    """

    def __init__(self, key: Optional[str] = None, secret: Optional[str] = None):
        """
        Initialize the loader.

        Args:
            key: Application key (project the configs must belong to)
            secret: Application secret used to verify signatures
        """
        self.key = key
        self.secret = secret

    def load(self, config: Optional[str]) -> ConfigProfile:
        """
        Turn a config descriptor into a profile.

        Args:
            config: Built-in profile name or signed config string

        Returns:
            The validated profile
        """
        if config is None or not config.strip():
            raise ConfigError(ErrorCode.MISSING_CONFIG)
        config = config.strip()
        if config in BUILTIN_PROFILES:
            return builtin_profile(config)

        parts = config.split(".")
        if len(parts) == 1:
            self._check_characters(parts[0])
            raise ConfigError(ErrorCode.MISSING_SIGNATURE)
        if len(parts) != 2:
            raise ConfigError(ErrorCode.INVALID_CONFIG)
        for part in parts:
            self._check_characters(part)

        body = self._decode_part(parts[0])
        signature = self._decode_part(parts[1])
        if not signature:
            raise ConfigError(ErrorCode.MISSING_SIGNATURE)
        if self.secret is not None and not hmac.compare_digest(signature, _sign(self.secret, body)):
            raise ConfigError(ErrorCode.INVALID_SIGNATURE)

        try:
            document = yaml.safe_load(body.decode("utf-8"))
        except (yaml.YAMLError, UnicodeDecodeError) as e:
            raise ConfigError(ErrorCode.INVALID_CONFIG, f"Config body is not valid YAML: {e}") from e
        if not isinstance(document, dict) or not isinstance(document.get("profile"), dict):
            raise ConfigError(ErrorCode.INVALID_CONFIG)

        if document.get("format") != CONFIG_FORMAT_VERSION:
            raise ConfigError(ErrorCode.INVALID_VERSION)
        project = document.get("project")
        if self.key is not None and project is not None and project != self.key:
            raise ConfigError(ErrorCode.INVALID_PROJECT)
        expires = document.get("expires")
        if expires is not None and self._parse_date(expires) < date.today():
            raise ConfigError(ErrorCode.EXPIRED_CONFIG)

        return self._build_profile(document["profile"])

    @staticmethod
    def _check_characters(part: str) -> None:
        if not _CONFIG_PART.match(part):
            raise ConfigError(ErrorCode.INVALID_CONFIG_CHARACTER)

    @staticmethod
    def _decode_part(part: str) -> bytes:
        try:
            return base64.urlsafe_b64decode(part + "=" * (-len(part) % 4))
        except (binascii.Error, ValueError) as e:
            raise ConfigError(ErrorCode.INVALID_CONFIG_CHARACTER) from e

    @staticmethod
    def _parse_date(value: Any) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError as e:
            raise ConfigError(ErrorCode.INVALID_CONFIG, f"Invalid expiry date: {value}") from e

    @staticmethod
    def _build_profile(fields: Dict[str, Any]) -> ConfigProfile:
        known = {f.name for f in dataclasses.fields(ConfigProfile)}
        unknown = set(fields) - known
        if unknown:
            raise ConfigError(ErrorCode.INVALID_CONFIG, f"Unknown profile fields: {sorted(unknown)}")
        try:
            return ConfigProfile(**fields)
        except (TypeError, ValueError) as e:
            raise ConfigError(ErrorCode.INVALID_CONFIG, str(e)) from e
