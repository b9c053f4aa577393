import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeVar

from img2prompt.constants import (
    DEFAULT_MAX_HISTORY_ITEMS,
    MSG_IMPORT_FAILED,
    MSG_INVALID_MAX_ITEMS,
    MSG_RECORD_SKIPPED,
    MSG_STORAGE_QUOTA,
    MSG_STORAGE_READ_FAILED,
    MSG_STORAGE_WRITE_FAILED,
    STORAGE_KEY_API_CONFIG,
    STORAGE_KEY_HISTORY,
    STORAGE_KEY_SETTINGS,
    STORAGE_QUOTA_BYTES,
)
from img2prompt.errors import StorageQuotaExceededError
from img2prompt.models import (
    AnalysisRecord,
    ApiCredentials,
    StorageStats,
    UserPreferences,
    as_utc,
    format_bytes,
)

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = Path(".img2prompt")

T = TypeVar("T")


# ── pure helpers ──────────────────────────────────────────────────────────────


def unique_by_id(records: Iterable[AnalysisRecord]) -> list[AnalysisRecord]:
    """Drop repeated ids, keeping the first occurrence and the original order."""
    unique: dict[str, AnalysisRecord] = {}
    list(map(lambda r: unique.setdefault(r.id, r), records))
    return list(unique.values())


def sort_records(records: list[AnalysisRecord], by: str = "newest") -> list[AnalysisRecord]:
    match by:
        case "newest":
            return sorted(records, key=lambda r: r.timestamp, reverse=True)
        case "oldest":
            return sorted(records, key=lambda r: r.timestamp)
        case "name":
            return sorted(records, key=lambda r: r.image_name.lower())
        case _:
            raise ValueError(f"unknown sort order: {by}")


def records_since(
    records: list[AnalysisRecord], period: str = "all", now: Optional[datetime] = None
) -> list[AnalysisRecord]:
    """Keep records from today, the last week or the last month.

    Days start at local midnight; an aware ``now`` fixes the zone used.
    """
    current = now or datetime.now().astimezone()
    match current.tzinfo:
        case None:
            current = current.astimezone()
        case _:
            pass
    today = current.replace(hour=0, minute=0, second=0, microsecond=0)
    match period:
        case "all":
            return list(records)
        case "today":
            cutoff = today
        case "week":
            cutoff = today - timedelta(days=7)
        case "month":
            cutoff = today - timedelta(days=30)
        case _:
            raise ValueError(f"unknown period: {period}")
    return list(filter(lambda r: r.timestamp >= cutoff, records))


def _serialize(records: Iterable[AnalysisRecord]) -> list[dict[str, Any]]:
    return list(map(lambda r: r.to_dict(), records))


# ── durable medium ────────────────────────────────────────────────────────────


class LocalStorage:
    """JSON documents on disk, one ``<key>.json`` per key, under a shared quota."""

    def __init__(self, directory: Path = DEFAULT_STORAGE_DIR, quota_bytes: int = STORAGE_QUOTA_BYTES) -> None:
        self._dir = directory
        self._quota = quota_bytes

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def get_item(self, key: str, default: Any) -> Any:
        path = self.path_for(key)
        match path.exists():
            case True:
                try:
                    with open(path, encoding="utf-8") as f:
                        return json.load(f)
                except Exception as e:
                    logger.warning(MSG_STORAGE_READ_FAILED, key, e)
                    return default
            case False:
                return default

    def set_item(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False, indent=2).encode("utf-8")
            needed = self._used_bytes(excluding=key) + len(payload)
            match needed > self._quota:
                case True:
                    raise StorageQuotaExceededError(MSG_STORAGE_QUOTA % (key, needed, self._quota))
                case False:
                    pass
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(self.path_for(key), "wb") as f:
                f.write(payload)
        except Exception as e:
            logger.warning(MSG_STORAGE_WRITE_FAILED, key, e)

    def _used_bytes(self, excluding: str) -> int:
        match self._dir.is_dir():
            case False:
                return 0
            case True:
                others = filter(lambda p: p.stem != excluding, self._dir.glob("*.json"))
                return sum(map(lambda p: p.stat().st_size, others))


# ── settings/history contract ─────────────────────────────────────────────────


class StorageManager:
    """Owns the three durable tables: api config, user settings and history.

    Reads never raise: a missing or corrupt document yields the documented
    default. Writes never raise either; a rejected write is logged and dropped.
    """

    def __init__(self, storage: LocalStorage) -> None:
        self._storage = storage
        self._max_items = DEFAULT_MAX_HISTORY_ITEMS

    def _read(self, key: str, parse: Callable[[Any], T], default: T) -> T:
        raw = self._storage.get_item(key, None)
        match raw:
            case None:
                return default
            case _:
                try:
                    return parse(raw)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(MSG_STORAGE_READ_FAILED, key, e)
                    return default

    def _write_records(self, records: Iterable[AnalysisRecord]) -> None:
        self._storage.set_item(STORAGE_KEY_HISTORY, _serialize(records))

    # ── credentials / preferences ─────────────────────────────────────────────

    def get_credentials(self) -> ApiCredentials:
        return self._read(STORAGE_KEY_API_CONFIG, ApiCredentials.from_dict, ApiCredentials())

    def save_credentials(self, credentials: ApiCredentials) -> None:
        self._storage.set_item(STORAGE_KEY_API_CONFIG, credentials.to_dict())

    def get_preferences(self) -> UserPreferences:
        return self._read(STORAGE_KEY_SETTINGS, UserPreferences.from_dict, UserPreferences())

    def save_preferences(self, preferences: UserPreferences) -> None:
        self._storage.set_item(STORAGE_KEY_SETTINGS, preferences.to_dict())

    def history_limit(self) -> int:
        """Current max history size; invalid settings keep the last valid value."""
        match self.get_preferences().max_history_items:
            case bool() as invalid:
                logger.warning(MSG_INVALID_MAX_ITEMS, invalid, self._max_items)
            case int() as n if n > 0:
                self._max_items = n
            case invalid:
                logger.warning(MSG_INVALID_MAX_ITEMS, invalid, self._max_items)
        return self._max_items

    # ── history ───────────────────────────────────────────────────────────────

    def list_records(self) -> list[AnalysisRecord]:
        raw = self._storage.get_item(STORAGE_KEY_HISTORY, [])
        match raw:
            case list():
                return list(filter(None, map(self._parse_record, raw)))
            case _:
                logger.warning(MSG_STORAGE_READ_FAILED, STORAGE_KEY_HISTORY, "not a list")
                return []

    @staticmethod
    def _parse_record(raw: Any) -> Optional[AnalysisRecord]:
        try:
            return AnalysisRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(MSG_RECORD_SKIPPED, e)
            return None

    def save_record(self, record: AnalysisRecord) -> None:
        limit = self.history_limit()
        self._write_records([record, *self.list_records()][:limit])

    def delete_record(self, record_id: str) -> None:
        self.delete_records([record_id])

    def delete_records(self, record_ids: Iterable[str]) -> None:
        doomed = set(record_ids)
        history = self.list_records()
        remaining = list(filter(lambda r: r.id not in doomed, history))
        match len(remaining) == len(history):
            case True:
                pass
            case False:
                self._write_records(remaining)

    def clear_records(self) -> None:
        self._write_records([])

    def search_records(self, query: str) -> list[AnalysisRecord]:
        history = self.list_records()
        match query.strip():
            case "":
                return history
            case _:
                needle = query.lower()
                return list(filter(
                    lambda r: needle in r.prompt.lower() or needle in r.image_name.lower(),
                    history,
                ))

    def filter_records_by_date_range(self, start: datetime, end: datetime) -> list[AnalysisRecord]:
        low, high = as_utc(start), as_utc(end)
        return list(filter(lambda r: low <= r.timestamp <= high, self.list_records()))

    def export_records(self) -> str:
        return json.dumps(_serialize(self.list_records()), ensure_ascii=False, indent=2)

    def import_records(self, text: str) -> bool:
        """Merge an export into history; imported entries win on id clashes.

        Malformed entries are skipped. Returns False and leaves history
        untouched when the payload is not a JSON array.
        """
        try:
            raw = json.loads(text)
            match raw:
                case list():
                    imported = list(filter(None, map(self._parse_record, raw)))
                case _:
                    raise ValueError("Invalid data format")
        except (KeyError, TypeError, ValueError) as e:
            logger.error(MSG_IMPORT_FAILED, e)
            return False
        self._write_records(unique_by_id([*imported, *self.list_records()]))
        return True

    def storage_stats(self) -> StorageStats:
        history = self.list_records()
        compact = json.dumps(_serialize(history), ensure_ascii=False, separators=(",", ":"))
        total = len(compact.encode("utf-8"))
        return StorageStats(
            count=len(history),
            total_bytes=total,
            formatted_size=format_bytes(total),
            oldest=history[-1].timestamp if history else None,
            newest=history[0].timestamp if history else None,
        )
