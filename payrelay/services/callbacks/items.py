from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Sequence


# Network timestamps are East Africa Time without an offset.
NETWORK_TZ = timezone(timedelta(hours=3), "EAT")


class Absent:
    """Marker returned for keys a callback did not carry."""

    _instance: "Absent | None" = None

    def __new__(cls) -> "Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = Absent()


@dataclass(frozen=True)
class CallbackItem:
    name: str
    value: Any = ABSENT


class CallbackItems:
    """Ordered name/value pairs scanned by key name.

    The set of keys varies by callback type, so lookups never raise: a missing
    key, or an item without a value, yields ``ABSENT``.
    """

    def __init__(self, items: Sequence[CallbackItem] = ()) -> None:
        self._items = tuple(items)

    @classmethod
    def from_pairs(cls, raw: Any, *, name_key: str = "Name", value_key: str = "Value") -> "CallbackItems":
        # Some callbacks send a single object instead of a one-element list.
        if isinstance(raw, dict):
            raw = [raw]
        if not isinstance(raw, (list, tuple)):
            return cls()
        items: list[CallbackItem] = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            name = entry.get(name_key)
            if not isinstance(name, str) or not name:
                continue
            items.append(CallbackItem(name=name, value=entry.get(value_key, ABSENT)))
        return cls(items)

    def get(self, name: str) -> Any:
        for item in self._items:
            if item.name == name:
                return item.value
        return ABSENT

    def text(self, name: str) -> str | None:
        value = self.get(name)
        if value is ABSENT or value is None:
            return None
        rendered = str(value).strip()
        return rendered or None

    def __contains__(self, name: object) -> bool:
        return any(item.name == name for item in self._items)

    def __iter__(self) -> Iterator[CallbackItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def names(self) -> list[str]:
        return [item.name for item in self._items]


def parse_compact_timestamp(value: Any) -> datetime | None:
    # YYYYMMDDHHMMSS, sent as a string or an integer.
    if value is ABSENT or value is None:
        return None
    raw = str(value).strip()
    if len(raw) != 14 or not raw.isdigit():
        return None
    try:
        return datetime.strptime(raw, "%Y%m%d%H%M%S").replace(tzinfo=NETWORK_TZ)
    except ValueError:
        return None


def parse_network_datetime(value: Any) -> datetime | None:
    # Disbursement results use "DD.MM.YYYY HH:MM:SS"; accept ISO-8601 and compact forms too.
    if value is ABSENT or value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    compact = parse_compact_timestamp(raw)
    if compact is not None:
        return compact
    for fmt in ("%d.%m.%Y %H:%M:%S", "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(raw, fmt).replace(tzinfo=NETWORK_TZ)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=NETWORK_TZ)
    return parsed
