import json

import pytest

from mcp_mermaid_live.models.export import ExportConfig
from mcp_mermaid_live.preferences import (
    SCALE_KEY,
    TRANSPARENT_KEY,
    JsonFilePreferenceStore,
    MemoryPreferenceStore,
    load_export_config,
    save_export_config,
)


def test_defaults_without_a_store():
    config = load_export_config(None)
    assert config.scale == 3.0
    assert config.transparent_background is False


def test_defaults_from_an_empty_store():
    assert load_export_config(MemoryPreferenceStore()) == ExportConfig()


def test_stored_values_are_used():
    store = MemoryPreferenceStore({SCALE_KEY: 2, TRANSPARENT_KEY: True})
    config = load_export_config(store)
    assert config.scale == 2.0
    assert config.transparent_background is True


@pytest.mark.parametrize(
    "values,expected",
    [
        ({SCALE_KEY: 0, TRANSPARENT_KEY: True}, ExportConfig(transparent_background=True)),
        ({SCALE_KEY: "huge"}, ExportConfig()),
        ({SCALE_KEY: True}, ExportConfig()),
        ({SCALE_KEY: 4, TRANSPARENT_KEY: "yes"}, ExportConfig(scale=4)),
    ],
)
def test_invalid_values_fall_back(values, expected):
    assert load_export_config(MemoryPreferenceStore(values)) == expected


def test_save_then_load():
    store = MemoryPreferenceStore()
    save_export_config(store, ExportConfig(scale=1, transparent_background=True))
    assert store.get(SCALE_KEY) == 1.0
    assert store.get(TRANSPARENT_KEY) is True
    assert load_export_config(store) == ExportConfig(scale=1, transparent_background=True)


class TestJsonFileStore:
    def test_missing_file_reads_empty(self, tmp_path):
        store = JsonFilePreferenceStore(tmp_path / "nope.json")
        assert store.get(SCALE_KEY) is None

    def test_set_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "nested" / "prefs.json"
        store = JsonFilePreferenceStore(path)
        store.set(SCALE_KEY, 2.0)
        store.set(TRANSPARENT_KEY, False)
        assert json.loads(path.read_text(encoding="utf-8")) == {SCALE_KEY: 2.0, TRANSPARENT_KEY: False}
        assert not path.with_suffix(".json.tmp").exists()
        assert JsonFilePreferenceStore(path).get(SCALE_KEY) == 2.0

    def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "prefs.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFilePreferenceStore(path)
        assert store.get(SCALE_KEY) is None
        assert load_export_config(store) == ExportConfig()

    def test_non_object_file_reads_empty(self, tmp_path):
        path = tmp_path / "prefs.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert JsonFilePreferenceStore(path).get(SCALE_KEY) is None

    def test_corrupt_file_is_replaced_on_save(self, tmp_path):
        path = tmp_path / "prefs.json"
        path.write_text("garbage", encoding="utf-8")
        store = JsonFilePreferenceStore(path)
        save_export_config(store, ExportConfig(scale=4))
        assert load_export_config(store) == ExportConfig(scale=4)
