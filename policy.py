# policy.py
"""Retention and moderation rules. No I/O here: handlers fetch, these decide."""

import math
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from errors import AuthorizationError, ValidationError

BASE_RETENTION = timedelta(days=4)
PRIVILEGED_RETENTION = timedelta(days=31)

REPORT_THRESHOLD = int(os.getenv("REPORT_THRESHOLD", "150"))
CHAT_WINDOW_SIZE = int(os.getenv("CHAT_WINDOW_SIZE", "100"))
DEFAULT_BLOCK_MINUTES = int(os.getenv("DEFAULT_BLOCK_MINUTES", "10"))


class Role(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"
    BOSS = "boss"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        try:
            return cls((value or "").strip().lower())
        except (ValueError, AttributeError):
            return cls.STANDARD

    def is_privileged(self) -> bool:
        return self in (Role.PREMIUM, Role.BOSS)


# ---------- Retention ----------

def retention_delay(is_privileged: bool) -> timedelta:
    return PRIVILEGED_RETENTION if is_privileged else BASE_RETENTION


def should_delete(created_at: Optional[datetime], now: datetime, is_privileged: bool) -> bool:
    # no timestamp -> never eligible
    if created_at is None:
        return False
    return now - created_at > retention_delay(is_privileged)


def build_role_snapshot(users: Iterable[Mapping[str, Any]]) -> Dict[str, Role]:
    """Maps user_id -> Role for one sweep."""
    return {
        str(u["user_id"]): Role.parse(u.get("role"))
        for u in users
        if u.get("user_id")
    }


def is_owner_privileged(snapshot: Mapping[str, Role], owner_id: Optional[str]) -> bool:
    if not owner_id:
        return False
    role = snapshot.get(str(owner_id))
    return bool(role and role.is_privileged())


def calendar_owner(calendar: Mapping[str, Any]) -> Optional[str]:
    return calendar.get("owner_id") or calendar.get("user_id") or None


# ---------- Moderation ----------

@dataclass(frozen=True)
class ModerationDecision:
    delete_target: bool
    report_count: int


def evaluate_reports(report_count: int, threshold: int = REPORT_THRESHOLD) -> ModerationDecision:
    return ModerationDecision(delete_target=report_count >= threshold, report_count=report_count)


# ---------- Chat window ----------

def trim_window(messages_newest_first: List[Mapping[str, Any]], window_size: int = CHAT_WINDOW_SIZE,
                id_field: str = "message_id") -> List[Any]:
    """Ids of every message past the newest `window_size`."""
    if window_size < 0:
        raise ValueError("window_size must be >= 0")
    return [m[id_field] for m in messages_newest_first[window_size:]]


# ---------- Temporary blocks ----------

@dataclass(frozen=True)
class BlockRecord:
    user_id: str
    chat_id: str
    blocked_until: datetime

    def to_response(self) -> Dict[str, Any]:
        return {"ok": True, "blocked_until": self.blocked_until.strftime("%Y-%m-%dT%H:%M:%SZ")}


@dataclass(frozen=True)
class BlockRefusal:
    reason: str

    def to_response(self) -> Dict[str, Any]:
        return {"ok": False, "reason": self.reason}


def normalize_channel_id(channel_id: str) -> str:
    return channel_id.strip().lower()


def parse_block_minutes(minutes: Any) -> float:
    if minutes is None or minutes == "" or minutes == 0:
        return DEFAULT_BLOCK_MINUTES
    if isinstance(minutes, bool):
        raise ValidationError("minutes must be a number")
    try:
        value = float(minutes)
    except (TypeError, ValueError):
        raise ValidationError("minutes must be a number")
    if not math.isfinite(value):
        raise ValidationError("minutes must be a finite number")
    if value < 0:
        raise ValidationError("minutes must be positive")
    return value


def issue_block(
    actor_role: Optional[Role],
    target_role: Optional[Role],
    user_id: Optional[str],
    channel_id: Optional[str],
    minutes: Any,
    now: datetime,
):
    """Returns a BlockRecord to persist, or a BlockRefusal when the target is immune.

    `actor_role` is None when the caller has no user record.
    Raises AuthorizationError / ValidationError for hard failures.
    """
    if actor_role is not Role.BOSS:
        raise AuthorizationError("Only boss users can block.")
    if not user_id or not channel_id or not str(channel_id).strip():
        raise ValidationError("Missing arguments: userId and cityId are required.")
    if target_role is Role.BOSS:
        return BlockRefusal(reason="A boss cannot be blocked.")
    duration = parse_block_minutes(minutes)
    try:
        blocked_until = now + timedelta(minutes=duration)
    except OverflowError:
        raise ValidationError("minutes is out of range")
    return BlockRecord(
        user_id=str(user_id),
        chat_id=normalize_channel_id(str(channel_id)),
        blocked_until=blocked_until,
    )
