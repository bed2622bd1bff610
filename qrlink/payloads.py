"""Decoded payload model, classified actions and join results."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Union

WIFI_PREFIX = "WIFI:"

# Structured payloads that are neither plain text nor Wi-Fi credentials.
TYPED_PREFIXES = (
    "HTTP://",
    "HTTPS://",
    "URLTO:",
    "MAILTO:",
    "MATMSG:",
    "TEL:",
    "SMSTO:",
    "SMS:",
    "MMSTO:",
    "GEO:",
    "BEGIN:VCARD",
    "MECARD:",
    "BEGIN:VEVENT",
    "BEGIN:VCALENDAR",
)


class ValueType(str, enum.Enum):
    TEXT = "text"
    WIFI = "wifi"
    OTHER = "other"


class SecurityType(str, enum.Enum):
    OPEN = "open"
    WPA = "wpa"
    WPA2 = "wpa2"
    WPA3 = "wpa3"
    UNKNOWN = "unknown"


_SECURITY_ALIASES: Dict[str, SecurityType] = {
    "NOPASS": SecurityType.OPEN,
    "NONE": SecurityType.OPEN,
    "OPEN": SecurityType.OPEN,
    "WPA": SecurityType.WPA,
    "WPA-PSK": SecurityType.WPA,
    "WPA2": SecurityType.WPA2,
    "WPA2-PSK": SecurityType.WPA2,
    "WPA3": SecurityType.WPA3,
    "SAE": SecurityType.WPA3,
}


@dataclass(frozen=True)
class WifiCredentials:
    """Credentials carried by a Wi-Fi payload; either field may be missing in a raw decode."""

    ssid: Optional[str]
    passphrase: Optional[str]
    security_type: SecurityType = SecurityType.UNKNOWN
    hidden: bool = False

    def __repr__(self) -> str:
        # Keeps passphrases out of logs and tracebacks.
        return (
            f"WifiCredentials(ssid={self.ssid!r}, passphrase={'***' if self.passphrase else None}, "
            f"security_type={self.security_type.value})"
        )


@dataclass(frozen=True)
class DecodedPayload:
    raw_value_type: ValueType
    raw_text: Optional[str] = None
    wifi: Optional[WifiCredentials] = None


@dataclass(frozen=True)
class ShowText:
    text: str


@dataclass(frozen=True)
class JoinNetwork:
    credentials: WifiCredentials

    @property
    def ssid(self) -> str:
        return self.credentials.ssid or ""


Action = Union[ShowText, JoinNetwork]


class JoinStrategyKind(str, enum.Enum):
    EPHEMERAL_REQUEST = "ephemeral_request"
    LEGACY_PROFILE = "legacy_profile"


@dataclass(frozen=True)
class JoinRequest:
    credentials: WifiCredentials
    strategy: JoinStrategyKind

    @property
    def ssid(self) -> str:
        return self.credentials.ssid or ""


class JoinResult(str, enum.Enum):
    JOINED = "joined"
    FAILED = "failed"


@dataclass(frozen=True)
class JoinOutcome:
    result: JoinResult
    ssid: str
    reason: Optional[str] = None

    @property
    def joined(self) -> bool:
        return self.result is JoinResult.JOINED

    @property
    def message(self) -> str:
        if self.joined:
            return f"Connected to {self.ssid}"
        return f"Failed to connect to {self.ssid}"


def normalize_security(value: Optional[str]) -> SecurityType:
    if value is None:
        return SecurityType.UNKNOWN
    key = value.strip().upper()
    if not key:
        return SecurityType.OPEN
    return _SECURITY_ALIASES.get(key, SecurityType.UNKNOWN)


def _split_fields(body: str) -> Dict[str, str]:
    """Split ``K:value;K:value;;`` honouring backslash escapes."""
    fields: Dict[str, str] = {}
    current = []
    escaped = False
    for ch in body:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ";":
            _store_field(fields, "".join(current))
            current = []
        else:
            current.append(ch)
    if current:
        _store_field(fields, "".join(current))
    return fields


def _store_field(fields: Dict[str, str], chunk: str) -> None:
    key, sep, value = chunk.partition(":")
    if not sep:
        return
    key = key.strip().upper()
    # First occurrence wins.
    if key and key not in fields:
        fields[key] = value


def parse_wifi_payload(text: str) -> Optional[WifiCredentials]:
    """Parse a ``WIFI:`` QR payload; returns None when *text* is not one."""
    if text[: len(WIFI_PREFIX)].upper() != WIFI_PREFIX:
        return None
    fields = _split_fields(text[len(WIFI_PREFIX):])
    ssid = fields.get("S") or None
    passphrase = fields.get("P")
    if "T" in fields:
        security = normalize_security(fields["T"])
    else:
        security = SecurityType.OPEN if passphrase is None else SecurityType.UNKNOWN
    hidden = fields.get("H", "").strip().lower() == "true"
    return WifiCredentials(ssid=ssid, passphrase=passphrase, security_type=security, hidden=hidden)


def payload_from_text(text: str) -> DecodedPayload:
    """Build the payload a decoder reports for a decoded string."""
    wifi = parse_wifi_payload(text)
    if wifi is not None:
        return DecodedPayload(raw_value_type=ValueType.WIFI, raw_text=text, wifi=wifi)
    if text.lstrip().upper().startswith(TYPED_PREFIXES):
        return DecodedPayload(raw_value_type=ValueType.OTHER, raw_text=text)
    return DecodedPayload(raw_value_type=ValueType.TEXT, raw_text=text)


__all__ = [
    "Action",
    "DecodedPayload",
    "JoinNetwork",
    "JoinOutcome",
    "JoinRequest",
    "JoinResult",
    "JoinStrategyKind",
    "SecurityType",
    "ShowText",
    "ValueType",
    "WifiCredentials",
    "normalize_security",
    "parse_wifi_payload",
    "payload_from_text",
]
