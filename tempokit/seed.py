"""Cluster seed shared by all members of a cluster for usage reporting."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

VERSION_KEYS = ("version", "revision", "branch", "buildUser", "buildDate", "goVersion")

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIME_RE = re.compile(
    r"^(?P<base>\d{4,}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>Z|[+-]\d{2}:\d{2})?$"
)


def _format_time(moment: datetime) -> str:
    """Render a timestamp in RFC 3339 form with trailing zeros trimmed."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    text = moment.isoformat()
    match = _TIME_RE.match(text)
    if match and match.group("frac"):
        frac = match.group("frac").rstrip("0")
        tz = match.group("tz") or ""
        text = match.group("base") + (f".{frac}" if frac else "") + tz
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _parse_time(text: str) -> datetime:
    """Parse an RFC 3339 timestamp, truncating sub-microsecond precision."""
    match = _TIME_RE.match(text)
    if match is None:
        raise ValueError(f"invalid timestamp {text!r}")
    frac = (match.group("frac") or "")[:6].ljust(6, "0")
    tz = match.group("tz") or ""
    if tz == "Z":
        tz = "+00:00"
    return datetime.fromisoformat(f"{match.group('base')}.{frac}{tz}")


def _normalise_version(version: Any) -> dict[str, str]:
    version = version or {}
    return {key: str(version.get(key, "")) for key in VERSION_KEYS}


@dataclass
class ClusterSeed:
    """Unique identity of a cluster, created once and shared by its members."""

    uid: str = ""
    created_at: datetime = _ZERO_TIME
    version: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.version = _normalise_version(self.version)

    def merge(self, other: Any, local_cas: bool = False) -> ClusterSeed | None:
        """Keep the oldest seed; return the other seed if this one changed.

        On equal creation times the smaller UID wins, for stability.
        """
        if other is None:
            return None
        if not isinstance(other, ClusterSeed):
            raise TypeError(f"expected ClusterSeed, got {type(other).__name__}")
        if self.created_at < other.created_at:
            return None
        if self.created_at == other.created_at and self.uid <= other.uid:
            return None
        self.uid = other.uid
        self.created_at = other.created_at
        self.version = dict(other.version)
        return other

    def merge_content(self) -> list[str]:
        """Content that identifies this seed when comparing merges."""
        return [self.uid]

    def remove_tombstones(self, limit: datetime) -> tuple[int, int]:
        """Return (total, removed) tombstones; a seed never holds any.

        Raises TypeError if limit is not a datetime.
        """
        if not isinstance(limit, datetime):
            raise TypeError(f"expected datetime, got {type(limit).__name__}")
        tombstones: list[str] = []
        total = len(tombstones)
        removed = sum(1 for _ in tombstones)
        return total, removed

    def clone(self) -> ClusterSeed:
        return replace(self, version=dict(self.version))


class JSONCodec:
    """JSON encoding of cluster seeds."""

    def decode(self, data: bytes | str) -> ClusterSeed:
        """Decode a seed; raises ValueError on malformed input."""
        obj = json.loads(data)
        if obj is None:
            return ClusterSeed()
        if not isinstance(obj, dict):
            raise ValueError(f"cannot decode {type(obj).__name__} into a cluster seed")
        uid = obj.get("UID", "")
        if not isinstance(uid, str):
            raise ValueError("UID must be a string")
        created = obj.get("created_at")
        if created is None:
            created_at = _ZERO_TIME
        elif isinstance(created, str):
            created_at = _parse_time(created)
        else:
            raise ValueError("created_at must be a string")
        version = obj.get("version") or {}
        if not isinstance(version, dict):
            raise ValueError("version must be an object")
        if any(not isinstance(version.get(key, ""), str) for key in VERSION_KEYS):
            raise ValueError("version fields must be strings")
        return ClusterSeed(uid=uid, created_at=created_at, version=version)

    def encode(self, seed: ClusterSeed) -> bytes:
        payload = {
            "UID": seed.uid,
            "created_at": _format_time(seed.created_at),
            "version": _normalise_version(seed.version),
        }
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")

    def codec_id(self) -> str:
        return "usagestats.jsonCodec"


JSON_CODEC = JSONCodec()