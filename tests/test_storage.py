import json
import logging
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from img2prompt.models import AnalysisRecord, ApiCredentials, UserPreferences, format_bytes
from img2prompt.storage import (
    LocalStorage,
    StorageManager,
    records_since,
    sort_records,
    unique_by_id,
)


# --- Helpers ---

def _record(n: int, name: str = "", prompt: str = "", day: int = 1) -> AnalysisRecord:
    return AnalysisRecord(
        id=f"img_{n}",
        image_name=name or f"photo_{n}.jpg",
        prompt=prompt or f"prompt {n}",
        timestamp=datetime(2024, 1, day, 12, 0, tzinfo=timezone.utc),
    )


def _manager(tmp_path: Path, quota: int = 5 * 1024 * 1024) -> StorageManager:
    return StorageManager(LocalStorage(tmp_path, quota))


def _history_file(tmp_path: Path) -> Path:
    return tmp_path / "analysis_history.json"


# --- LocalStorage ---

def test_get_item_missing_returns_default(tmp_path):
    storage = LocalStorage(tmp_path)
    assert storage.get_item("nothing", {"a": 1}) == {"a": 1}


def test_get_item_corrupt_returns_default(tmp_path, caplog):
    (tmp_path / "api_config.json").write_text("{not json")
    storage = LocalStorage(tmp_path)

    with caplog.at_level(logging.WARNING):
        assert storage.get_item("api_config", None) is None
    assert "api_config" in caplog.text


def test_set_item_creates_directory(tmp_path):
    storage = LocalStorage(tmp_path / "nested")
    storage.set_item("user_settings", {"language": "en"})
    assert json.loads((tmp_path / "nested" / "user_settings.json").read_text()) == {"language": "en"}


def test_set_item_over_quota_is_dropped(tmp_path, caplog):
    storage = LocalStorage(tmp_path, quota_bytes=16)

    with caplog.at_level(logging.WARNING):
        storage.set_item("api_config", {"openRouterKey": "x" * 100})

    assert not (tmp_path / "api_config.json").exists()
    assert "quota" in caplog.text


def test_quota_counts_other_documents(tmp_path):
    storage = LocalStorage(tmp_path, quota_bytes=200)
    storage.set_item("a", "x" * 150)
    storage.set_item("b", "y" * 100)
    assert not (tmp_path / "b.json").exists()
    # rewriting the same key does not count its own old size
    storage.set_item("a", "z" * 150)
    assert "z" in (tmp_path / "a.json").read_text()


# --- credentials / preferences ---

def test_credentials_default_when_missing(tmp_path):
    assert _manager(tmp_path).get_credentials() == ApiCredentials()


def test_credentials_round_trip_uses_camel_case(tmp_path):
    store = _manager(tmp_path)
    store.save_credentials(ApiCredentials(openrouter_key="sk-or", imgbb_key="bb"))

    assert store.get_credentials() == ApiCredentials(openrouter_key="sk-or", imgbb_key="bb")
    raw = json.loads((tmp_path / "api_config.json").read_text())
    assert raw == {"openRouterKey": "sk-or", "imgbbKey": "bb"}


def test_credentials_not_an_object_returns_default(tmp_path):
    (tmp_path / "api_config.json").write_text("[1, 2]")
    assert _manager(tmp_path).get_credentials() == ApiCredentials()


def test_preferences_default_when_corrupt(tmp_path):
    (tmp_path / "user_settings.json").write_text("nope")
    prefs = _manager(tmp_path).get_preferences()
    assert prefs == UserPreferences()
    assert prefs.language == "zh"
    assert prefs.max_history_items == 9000


def test_preferences_unknown_values_fall_back(tmp_path):
    (tmp_path / "user_settings.json").write_text(
        json.dumps({"language": "fr", "outputFormat": "concise", "autoSave": "yes"})
    )
    prefs = _manager(tmp_path).get_preferences()
    assert prefs.language == "zh"
    assert prefs.output_format == "concise"
    assert prefs.auto_save is True


# --- history ---

def test_list_records_empty_when_missing(tmp_path):
    assert _manager(tmp_path).list_records() == []


def test_list_records_corrupt_file_is_empty(tmp_path):
    _history_file(tmp_path).write_text("[{broken")
    assert _manager(tmp_path).list_records() == []


def test_list_records_skips_malformed_entries(tmp_path):
    good = _record(1).to_dict()
    _history_file(tmp_path).write_text(json.dumps([good, {"id": "x"}, 42]))
    assert _manager(tmp_path).list_records() == [_record(1)]


def test_list_records_accepts_javascript_timestamps(tmp_path):
    raw = {"id": "img_1", "imageName": "a.png", "prompt": "p", "timestamp": "2024-03-01T10:00:00.000Z"}
    _history_file(tmp_path).write_text(json.dumps([raw]))

    (record,) = _manager(tmp_path).list_records()
    assert record.timestamp == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_save_record_prepends(tmp_path):
    store = _manager(tmp_path)
    store.save_record(_record(1))
    store.save_record(_record(2))
    assert [r.id for r in store.list_records()] == ["img_2", "img_1"]


def test_save_record_truncates_to_max_items(tmp_path):
    store = _manager(tmp_path)
    store.save_preferences(UserPreferences(max_history_items=3))

    list(map(store.save_record, map(_record, range(1, 6))))

    assert [r.id for r in store.list_records()] == ["img_5", "img_4", "img_3"]


@pytest.mark.parametrize("invalid", [0, -4, "lots", True])
def test_invalid_max_items_keeps_last_valid_value(tmp_path, invalid):
    store = _manager(tmp_path)
    store.save_preferences(UserPreferences(max_history_items=2))
    store.save_record(_record(1))

    (tmp_path / "user_settings.json").write_text(json.dumps({"maxHistoryItems": invalid}))
    list(map(store.save_record, [_record(2), _record(3)]))

    assert [r.id for r in store.list_records()] == ["img_3", "img_2"]


def test_delete_record(tmp_path):
    store = _manager(tmp_path)
    list(map(store.save_record, [_record(1), _record(2)]))
    store.delete_record("img_1")
    assert [r.id for r in store.list_records()] == ["img_2"]


def test_delete_unknown_record_leaves_file_untouched(tmp_path):
    store = _manager(tmp_path)
    list(map(store.save_record, [_record(1), _record(2)]))
    before = _history_file(tmp_path).read_bytes()

    store.delete_record("img_404")

    assert _history_file(tmp_path).read_bytes() == before


def test_delete_records_batch(tmp_path):
    store = _manager(tmp_path)
    list(map(store.save_record, map(_record, range(1, 5))))
    store.delete_records(["img_1", "img_3", "img_404"])
    assert [r.id for r in store.list_records()] == ["img_4", "img_2"]


def test_clear_records(tmp_path):
    store = _manager(tmp_path)
    store.save_record(_record(1))
    store.clear_records()
    assert store.list_records() == []
    assert json.loads(_history_file(tmp_path).read_text()) == []


def test_search_is_case_insensitive_over_prompt_and_name(tmp_path):
    store = _manager(tmp_path)
    list(map(store.save_record, [
        _record(1, name="Beach.JPG", prompt="waves at dusk"),
        _record(2, name="city.png", prompt="Neon STREET at night"),
        _record(3, name="forest.png", prompt="tall pines"),
    ]))

    assert [r.id for r in store.search_records("street")] == ["img_2"]
    assert [r.id for r in store.search_records("beach")] == ["img_1"]
    assert {r.id for r in store.search_records("AT")} == {"img_1", "img_2"}


def test_search_blank_query_returns_everything(tmp_path):
    store = _manager(tmp_path)
    list(map(store.save_record, [_record(1), _record(2)]))
    assert len(store.search_records("   ")) == 2


def test_filter_by_date_range_is_inclusive(tmp_path):
    store = _manager(tmp_path)
    list(map(store.save_record, [_record(1, day=1), _record(2, day=5), _record(3, day=10)]))

    start = datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc)
    end = datetime(2024, 1, 10, 12, 0)  # naive bounds are read as UTC

    assert [r.id for r in store.filter_records_by_date_range(start, end)] == ["img_3", "img_2"]


def test_export_is_pretty_printed_json(tmp_path):
    store = _manager(tmp_path)
    store.save_record(_record(1, prompt="日落"))
    text = store.export_records()

    assert "\n  " in text
    assert "日落" in text
    assert json.loads(text)[0]["imageName"] == "photo_1.jpg"


def test_export_then_import_into_empty_store(tmp_path):
    source = _manager(tmp_path / "a")
    list(map(source.save_record, [_record(1), _record(2)]))
    target = _manager(tmp_path / "b")

    assert target.import_records(source.export_records()) is True
    assert target.list_records() == source.list_records()


def test_import_is_idempotent(tmp_path):
    store = _manager(tmp_path)
    list(map(store.save_record, [_record(1), _record(2)]))
    exported = store.export_records()

    assert store.import_records(exported) is True
    assert store.import_records(exported) is True
    assert [r.id for r in store.list_records()] == ["img_2", "img_1"]


def test_import_prefers_imported_record_on_id_clash(tmp_path):
    store = _manager(tmp_path)
    store.save_record(_record(1, prompt="old"))
    payload = json.dumps([_record(1, prompt="new").to_dict(), _record(9).to_dict()])

    assert store.import_records(payload) is True
    records = {r.id: r for r in store.list_records()}
    assert records["img_1"].prompt == "new"
    assert set(records) == {"img_1", "img_9"}


@pytest.mark.parametrize("payload", ['{"id": "x"}', "not json", '"records"'])
def test_import_rejects_bad_payload_without_writing(tmp_path, payload):
    store = _manager(tmp_path)
    store.save_record(_record(1))
    before = _history_file(tmp_path).read_bytes()

    assert store.import_records(payload) is False
    assert _history_file(tmp_path).read_bytes() == before


def test_storage_stats_empty(tmp_path):
    stats = _manager(tmp_path).storage_stats()
    assert stats.count == 0
    assert stats.total_bytes == 2
    assert stats.oldest is None and stats.newest is None


def test_storage_stats_counts_compact_json(tmp_path):
    store = _manager(tmp_path)
    list(map(store.save_record, [_record(1, day=1), _record(2, day=3)]))
    stats = store.storage_stats()

    compact = json.dumps([r.to_dict() for r in store.list_records()], separators=(",", ":"))
    assert stats.count == 2
    assert stats.total_bytes == len(compact.encode("utf-8"))
    assert stats.newest == _record(2, day=3).timestamp
    assert stats.oldest == _record(1, day=1).timestamp


# --- pure helpers ---

def test_unique_by_id_keeps_first():
    a, b = _record(1, prompt="first"), _record(1, prompt="second")
    assert unique_by_id([a, b, _record(2)]) == [a, _record(2)]


def test_sort_records():
    records = [_record(1, name="b.png", day=2), _record(2, name="A.png", day=1), _record(3, name="c.png", day=3)]

    assert [r.id for r in sort_records(records, "newest")] == ["img_3", "img_1", "img_2"]
    assert [r.id for r in sort_records(records, "oldest")] == ["img_2", "img_1", "img_3"]
    assert [r.id for r in sort_records(records, "name")] == ["img_2", "img_1", "img_3"]
    with pytest.raises(ValueError):
        sort_records(records, "random")


def test_records_since():
    now = datetime(2024, 1, 20, 15, 0, tzinfo=timezone.utc)
    records = [
        _record(1, day=20),
        _record(2, day=15),
        _record(3, day=1),
    ]
    old = AnalysisRecord("img_4", "x.png", "p", now - timedelta(days=90))

    assert [r.id for r in records_since([*records, old], "today", now)] == ["img_1"]
    assert [r.id for r in records_since([*records, old], "week", now)] == ["img_1", "img_2"]
    assert [r.id for r in records_since([*records, old], "month", now)] == ["img_1", "img_2", "img_3"]
    assert len(records_since([*records, old], "all", now)) == 4


@pytest.mark.parametrize(
    "size, expected",
    [(0, "0 Bytes"), (512, "512 Bytes"), (1536, "1.5 KB"), (1048576, "1 MB"), (10 * 1024 ** 3, "10 GB")],
)
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected


def test_import_skips_malformed_entries(tmp_path):
    store = _manager(tmp_path)
    payload = json.dumps([_record(1).to_dict(), {"foo": 1}, 7])

    assert store.import_records(payload) is True
    assert store.list_records() == [_record(1)]


def test_records_since_uses_local_day_boundary():
    tz = timezone(timedelta(hours=8))
    now = datetime(2024, 1, 20, 1, 0, tzinfo=tz)
    # 16:30 UTC on the 19th is already the 20th at +08:00
    late = AnalysisRecord("img_late", "a.png", "p", datetime(2024, 1, 19, 16, 30, tzinfo=timezone.utc))
    early = AnalysisRecord("img_early", "b.png", "p", datetime(2024, 1, 19, 15, 30, tzinfo=timezone.utc))

    assert [r.id for r in records_since([late, early], "today", now)] == ["img_late"]


def test_records_since_defaults_to_local_now():
    fresh = AnalysisRecord("img_now", "a.png", "p", datetime.now(timezone.utc))
    assert records_since([fresh], "today") == [fresh]
