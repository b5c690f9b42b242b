from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import Flask, current_app
from sqlalchemy import select

from app.modulekit.modules.fraud.models import DeviceFingerprint
from app.modulekit.modules.fraud.scoring import (
    DuplicateCheck,
    calculate_risk_score,
    check_completion_time,
    generate_client_fingerprint,
    generate_fingerprint,
    is_high_risk,
    is_suspicious_fingerprint,
)
from app.modulekit.modules.fraud.velocity import VelocityTracker, tracker_from_config

if TYPE_CHECKING:
    from flask import Request
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


@dataclass
class Assessment:
    score: int
    high_risk: bool
    reasons: list[str] = field(default_factory=list)
    checks: dict[str, bool] = field(default_factory=dict)
    fingerprint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "highRisk": self.high_risk, "reasons": list(self.reasons)}


def get_velocity_tracker(app: Flask | None = None) -> VelocityTracker:
    app = app or current_app._get_current_object()  # type: ignore[attr-defined]
    tracker = app.extensions.get("velocity_tracker")
    if tracker is None:
        tracker = tracker_from_config(app.config)
        app.extensions["velocity_tracker"] = tracker
    return tracker


def check_duplicate_device_db(s: "Session", user_id: int, fingerprint: str) -> DuplicateCheck:
    """DB-backed variant of DeviceTracker: same semantics, survives restarts and spans workers."""
    other = s.execute(
        select(DeviceFingerprint.user_id)
        .where(DeviceFingerprint.fingerprint == fingerprint, DeviceFingerprint.user_id != user_id)
        .limit(1)
    ).scalar_one_or_none()
    if other is not None:
        return DuplicateCheck(True, other)

    now = datetime.utcnow()
    row = s.execute(
        select(DeviceFingerprint).where(DeviceFingerprint.user_id == user_id, DeviceFingerprint.fingerprint == fingerprint)
    ).scalar_one_or_none()
    if row is None:
        s.add(DeviceFingerprint(user_id=user_id, fingerprint=fingerprint, first_seen_at=now, last_seen_at=now))
    else:
        row.last_seen_at = now
    s.flush()
    return DuplicateCheck(False)


def assess_request(
    s: "Session",
    *,
    user_id: int,
    req: "Request",
    action: str,
    client_data: dict | None = None,
    started_at: datetime | float | None = None,
    expected_min_seconds: float = 30,
    tracker: VelocityTracker | None = None,
    record: bool = True,
) -> Assessment:
    """
    Score one request. When `record` is set the action is counted toward velocity
    limits after the check, so the request being assessed does not count against itself.
    """
    config = current_app.config
    tracker = tracker or get_velocity_tracker()
    checks: dict[str, bool] = {}
    reasons: list[str] = []

    fingerprint = generate_client_fingerprint(client_data) or generate_fingerprint(req.headers, req.remote_addr)

    fp_check = is_suspicious_fingerprint(fingerprint, req.headers.get("User-Agent"))
    checks["suspicious_fingerprint"] = fp_check.suspicious
    if fp_check.suspicious and fp_check.reason:
        reasons.append(fp_check.reason)

    limits = tracker.check_limits(
        user_id,
        action=action,
        max_per_hour=int(config.get("FRAUD_MAX_PER_HOUR") or 20),
        max_per_day=int(config.get("FRAUD_MAX_PER_DAY") or 100),
    )
    checks["velocity_violation"] = not limits.allowed
    reasons.extend(v.type for v in limits.violations)

    if started_at is not None:
        now: datetime | float = time.time() if isinstance(started_at, (int, float)) else datetime.utcnow()
        completion = check_completion_time(started_at, now, expected_min_seconds)
        checks["fast_completion"] = not completion.passed
        if completion.reason:
            reasons.append(completion.reason)

    dup = check_duplicate_device_db(s, user_id, fingerprint)
    checks["duplicate_device"] = dup.found
    if dup.found:
        reasons.append("duplicate_device")

    bad_ips = config.get("FRAUD_KNOWN_BAD_IPS") or ()
    checks["known_bad_ip"] = bool(req.remote_addr and req.remote_addr in bad_ips)
    if checks["known_bad_ip"]:
        reasons.append("known_bad_ip")

    score = calculate_risk_score(checks)
    if record:
        tracker.increment(user_id, action)

    assessment = Assessment(score=score, high_risk=is_high_risk(score), reasons=reasons, checks=checks, fingerprint=fingerprint)
    if assessment.high_risk:
        logger.warning("High-risk %s for user=%s score=%s reasons=%s", action, user_id, score, ",".join(reasons))
    return assessment
