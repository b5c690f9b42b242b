from __future__ import annotations

import hashlib
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

RISK_WEIGHTS: dict[str, int] = {
    "suspicious_fingerprint": 30,
    "velocity_violation": 50,
    "fast_completion": 40,
    "duplicate_device": 60,
    "vpn_detected": 20,
    "proxy_detected": 25,
    "tor_detected": 40,
    "known_bad_ip": 100,
}
MAX_RISK_SCORE = 100
HIGH_RISK_THRESHOLD = 50

BOT_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (r"headless", r"phantom", r"selenium", r"webdriver", r"puppeteer", r"playwright")
)
MIN_USER_AGENT_LENGTH = 20

_REQUEST_FINGERPRINT_HEADERS = (
    "user-agent",
    "accept-language",
    "accept-encoding",
    "accept",
)
_CLIENT_HINT_HEADERS = (
    "sec-ch-ua",
    "sec-ch-ua-platform",
    "sec-ch-ua-mobile",
)
_CLIENT_FINGERPRINT_FIELDS = (
    "screenResolution",
    "timezone",
    "language",
    "platform",
    "cookiesEnabled",
    "canvas",
    "webgl",
    "fonts",
)


def calculate_risk_score(checks: Mapping[str, Any]) -> int:
    """Additive score over the truthy checks, capped at 100. Unknown keys are ignored."""
    score = sum(weight for key, weight in RISK_WEIGHTS.items() if checks.get(key))
    return min(score, MAX_RISK_SCORE)


def is_high_risk(score: int) -> bool:
    return score >= HIGH_RISK_THRESHOLD


def _hash32(components: list[str]) -> str:
    raw = "|".join(components)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _header(headers: Mapping[str, str], name: str) -> str:
    # Accept both werkzeug Headers (case-insensitive) and plain dicts.
    value = headers.get(name)
    if value is None and isinstance(headers, dict):
        for k, v in headers.items():
            if k.lower() == name:
                value = v
                break
    return str(value) if value else ""


def generate_fingerprint(headers: Mapping[str, str], ip: str | None) -> str:
    components = [_header(headers, h) for h in _REQUEST_FINGERPRINT_HEADERS]
    components.append(ip or "")
    components.extend(_header(headers, h) for h in _CLIENT_HINT_HEADERS)
    return _hash32(components)


def _client_value(value: Any) -> str:
    # Falsy values (0, False, "", None) all hash as an empty component.
    if not value:
        return ""
    if value is True:
        return "true"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def generate_client_fingerprint(client_data: Mapping[str, Any] | None) -> str | None:
    if client_data is None:
        return None
    return _hash32([_client_value(client_data.get(f)) for f in _CLIENT_FINGERPRINT_FIELDS])


@dataclass(frozen=True)
class FingerprintCheck:
    suspicious: bool
    reason: str | None = None


def is_suspicious_fingerprint(fingerprint: str | None, user_agent: str | None) -> FingerprintCheck:
    if user_agent and any(p.search(user_agent) for p in BOT_PATTERNS):
        return FingerprintCheck(True, "bot_user_agent")
    if not user_agent or len(user_agent) < MIN_USER_AGENT_LENGTH:
        return FingerprintCheck(True, "missing_user_agent")
    return FingerprintCheck(False)


@dataclass(frozen=True)
class CompletionCheck:
    passed: bool
    completion_time: float
    expected_min: float | None = None
    reason: str | None = None


def _as_seconds(value: datetime | float | int) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


def check_completion_time(start: datetime | float, end: datetime | float, expected_min_time: float = 30) -> CompletionCheck:
    """
    start/end are datetimes or epoch seconds. Finishing in exactly expected_min_time passes.
    """
    completion_time = _as_seconds(end) - _as_seconds(start)
    if completion_time < expected_min_time:
        return CompletionCheck(False, completion_time, expected_min_time, "too_fast")
    return CompletionCheck(True, completion_time)


@dataclass(frozen=True)
class DuplicateCheck:
    found: bool
    other_user_id: str | int | None = None


class DeviceTracker:
    """In-process registry of fingerprints per user."""

    def __init__(self) -> None:
        self._devices: dict[Any, set[str]] = {}

    def check_duplicate_device(self, user_id: Any, fingerprint: str) -> DuplicateCheck:
        for existing_user, fingerprints in self._devices.items():
            if existing_user != user_id and fingerprint in fingerprints:
                return DuplicateCheck(True, existing_user)
        self._devices.setdefault(user_id, set()).add(fingerprint)
        return DuplicateCheck(False)

    def reset(self) -> None:
        self._devices.clear()
