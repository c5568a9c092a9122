"""Record kinds stored in tables and their field-level merge rules."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any, ClassVar, Protocol, Self, TypeVar

EPOCH = datetime.min.replace(tzinfo=UTC)
STAMP_STEP = timedelta(microseconds=1)


class Record(Protocol):
    """Capability every storable record kind provides."""

    table_name: ClassVar[str]
    merge_fields: ClassVar[tuple[str, ...]]
    id: str
    updated_at: datetime | None
    stamps: dict[str, datetime]

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Self:
        raise NotImplementedError

    def merge(self, other: Self) -> Self:
        raise NotImplementedError


R = TypeVar("R", bound=Record)


@dataclass(slots=True)
class Feed:
    """Subscribed feed; id is derived from the canonical source URL."""

    table_name: ClassVar[str] = "feeds"
    merge_fields: ClassVar[tuple[str, ...]] = (
        "url",
        "shorthand",
        "title",
        "site_url",
        "description",
    )

    id: str
    url: str
    shorthand: str | None = None
    title: str = ""
    site_url: str = ""
    description: str = ""
    updated_at: datetime | None = None
    stamps: dict[str, datetime] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "id": self.id,
            "url": self.url,
            "shorthand": self.shorthand,
            "title": self.title,
            "site_url": self.site_url,
            "description": self.description,
            "updated_at": format_timestamp(self.updated_at),
        }
        return _with_stamps(payload, self.stamps)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Feed:
        return cls(
            id=str(payload["id"]),
            url=str(payload.get("url") or ""),
            shorthand=payload.get("shorthand") or None,
            title=str(payload.get("title") or ""),
            site_url=str(payload.get("site_url") or ""),
            description=str(payload.get("description") or ""),
            updated_at=parse_timestamp(payload.get("updated_at")),
            stamps=_parse_stamps(payload.get("stamps"), cls.merge_fields),
        )

    def merge(self, other: Feed) -> Feed:
        return _union(self, other)

    @property
    def label(self) -> str:
        return self.title or self.url


@dataclass(slots=True)
class Post:
    """Feed item; ``link`` is the owning feed id."""

    table_name: ClassVar[str] = "posts"
    merge_fields: ClassVar[tuple[str, ...]] = ("link", "title", "url", "published_at")

    id: str
    link: str
    title: str = ""
    url: str = ""
    published_at: datetime | None = None
    updated_at: datetime | None = None
    fallback: bool = False
    fallback_attempts: int = 0
    stamps: dict[str, datetime] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "id": self.id,
            "link": self.link,
            "title": self.title,
            "url": self.url,
            "published_at": format_timestamp(self.published_at),
            "updated_at": format_timestamp(self.updated_at),
            "fallback": self.fallback,
            "fallback_attempts": self.fallback_attempts,
        }
        return _with_stamps(payload, self.stamps)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Post:
        return cls(
            id=str(payload["id"]),
            link=str(payload.get("link") or ""),
            title=str(payload.get("title") or ""),
            url=str(payload.get("url") or ""),
            published_at=parse_timestamp(payload.get("published_at")),
            updated_at=parse_timestamp(payload.get("updated_at")),
            fallback=bool(payload.get("fallback", False)),
            fallback_attempts=int(payload.get("fallback_attempts") or 0),
            stamps=_parse_stamps(payload.get("stamps"), cls.merge_fields),
        )

    def merge(self, other: Post) -> Post:
        return replace(
            _union(self, other),
            fallback=self.fallback and other.fallback,
            fallback_attempts=max(self.fallback_attempts, other.fallback_attempts),
        )


def _union(left: R, right: R) -> R:
    """Merge two versions of one record without losing set fields.

    Every field is resolved on its own: an empty value never overwrites a set
    one, otherwise the value carrying the newer stamp wins and equal stamps
    fall back to the larger value. Each winner keeps the stamp it came with,
    so the merge is commutative, associative and idempotent.
    """

    if left.id != right.id:
        raise ValueError(f"Cannot merge records with different ids: {left.id} != {right.id}")

    changes: dict[str, Any] = {}
    stamps: dict[str, datetime] = {}
    for name in left.merge_fields:
        value, stamp = max(_version(left, name), _version(right, name), key=_version_order)
        changes[name] = value
        if stamp is not None:
            stamps[name] = stamp
    changes["stamps"] = stamps
    changes["updated_at"] = _latest(left.updated_at, right.updated_at)
    return replace(left, **changes)


def stamp_observed(candidate: R, stored: R | None, observed_at: datetime) -> R:
    """Stamp the candidate's set fields with the time they were observed.

    A value equal to the stored one keeps the stored stamp, so re-reading
    unchanged data writes nothing. A changed value is stamped after the stored
    one even when the local clock lags behind it.
    """

    stamps: dict[str, datetime] = {}
    for name in candidate.merge_fields:
        value = getattr(candidate, name)
        if _is_empty(value):
            continue
        previous = stored.stamps.get(name) if stored is not None else None
        if stored is not None and getattr(stored, name) == value:
            if previous is not None:
                stamps[name] = previous
            continue
        if previous is not None and previous >= observed_at:
            stamps[name] = previous + STAMP_STEP
        else:
            stamps[name] = observed_at
    return replace(candidate, stamps=stamps)


def _version(record: Record, name: str) -> tuple[Any, datetime | None]:
    value = getattr(record, name)
    if _is_empty(value):
        return value, None
    return value, record.stamps.get(name)


def _version_order(version: tuple[Any, datetime | None]) -> tuple[bool, datetime, Any]:
    value, stamp = version
    if _is_empty(value):
        return False, EPOCH, ""
    return True, stamp or EPOCH, value


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def _latest(left: datetime | None, right: datetime | None) -> datetime | None:
    if left is None:
        return right
    if right is None:
        return left
    return max(left, right)


def _with_stamps(payload: dict[str, Any], stamps: dict[str, datetime]) -> dict[str, Any]:
    if stamps:
        payload["stamps"] = {name: format_timestamp(stamps[name]) for name in sorted(stamps)}
    return payload


def _parse_stamps(raw: object, names: tuple[str, ...]) -> dict[str, datetime]:
    if not isinstance(raw, dict):
        return {}
    stamps: dict[str, datetime] = {}
    for name, value in raw.items():
        parsed = parse_timestamp(value)
        if name in names and parsed is not None:
            stamps[name] = parsed
    return stamps


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def parse_timestamp(raw: object) -> datetime | None:
    if raw is None or raw == "":
        return None
    parsed = datetime.fromisoformat(str(raw))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
