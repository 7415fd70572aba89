import json

from drillsync.infrastructure.local_store import InMemoryKeyValueStore, JsonFileKeyValueStore


def test_in_memory_store():
    store = InMemoryKeyValueStore({"a": "1"})
    store.set_item("b", "2")
    store.remove_item("a")
    store.remove_item("missing")

    assert store.get_item("a") is None
    assert list(store.keys()) == ["b"]


def test_json_file_store_round_trip(tmp_path):
    path = tmp_path / "nested" / "go-course.json"
    store = JsonFileKeyValueStore(path)
    store.set_item("go-course-srs", '{"a": 1}')

    reopened = JsonFileKeyValueStore(path)
    assert reopened.get_item("go-course-srs") == '{"a": 1}'
    assert json.loads(path.read_text()) == {"go-course-srs": '{"a": 1}'}


def test_json_file_store_remove(tmp_path):
    path = tmp_path / "state.json"
    store = JsonFileKeyValueStore(path)
    store.set_item("k", "v")
    store.remove_item("k")

    assert JsonFileKeyValueStore(path).get_item("k") is None


def test_missing_file_reads_empty(tmp_path):
    store = JsonFileKeyValueStore(tmp_path / "absent.json")
    assert list(store.keys()) == []
    assert not (tmp_path / "absent.json").exists()


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    store = JsonFileKeyValueStore(path)

    assert store.get_item("anything") is None
    store.set_item("k", "v")
    assert json.loads(path.read_text()) == {"k": "v"}


def test_non_string_values_are_dropped(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"good": "x", "bad": 3}))
    assert list(JsonFileKeyValueStore(path).keys()) == ["good"]


def test_no_temp_files_left_behind(tmp_path):
    store = JsonFileKeyValueStore(tmp_path / "state.json")
    store.set_item("k", "v")
    assert [p.name for p in tmp_path.iterdir()] == ["state.json"]
