"""Tests for userpool.core.datastore module.

Covers:
- open(): file creation from defaults, no overwrite on reopen, corrupt files
- get_root()/get(): fresh reads, dotted and segmented paths, misses
- set()/set_root()/update()/delete(): atomic whole-document writes
- failure modes: unwritable directory, failed replace, unserializable values
"""

import gc
import json
import os
import stat
import threading
from pathlib import Path

import pytest

from userpool.core import datastore
from userpool.core.datastore import DataStore, create_data_store
from userpool.core.errors import (
    CorruptDataError,
    StorageError,
    StoreNotFoundError,
    ValidationError,
)


def read_file(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


class TestOpen:
    """Tests for creating and opening stores."""

    def test_creates_file_with_defaults(self, data_dir):
        store = create_data_store("local", {"Users": {}, "Options": {"a": 1}}, data_dir)

        assert store.path == (data_dir / "local.json").resolve()
        assert read_file(data_dir / "local.json") == {"Users": {}, "Options": {"a": 1}}

    def test_creates_empty_document_without_defaults(self, data_dir):
        create_data_store("local", None, data_dir)
        assert read_file(data_dir / "local.json") == {}

    def test_creates_missing_directory(self, tmp_path):
        directory = tmp_path / "nested" / "db"
        create_data_store("local", {}, directory)
        assert (directory / "local.json").exists()

    def test_reopen_never_overwrites_existing_content(self, data_dir):
        store = create_data_store("local", {"Users": {}}, data_dir)
        store.set("Users.1", {"Username": "1"})

        reopened = create_data_store("local", {"Users": {}, "Other": True}, data_dir)

        assert reopened.get_root() == {"Users": {"1": {"Username": "1"}}}

    def test_defaults_are_copied(self, data_dir):
        defaults = {"Users": {}}
        store = create_data_store("local", defaults, data_dir)
        store.set("Users.1", {"Username": "1"})
        assert defaults == {"Users": {}}

    def test_corrupt_file_raises_and_is_left_alone(self, data_dir):
        (data_dir / "local.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(CorruptDataError) as exc_info:
            create_data_store("local", {"Users": {}}, data_dir)

        assert exc_info.value.context.store == "local"
        assert (data_dir / "local.json").read_text(encoding="utf-8") == "{not json"

    def test_non_object_document_is_corrupt(self, data_dir):
        (data_dir / "local.json").write_text("[1, 2, 3]", encoding="utf-8")
        with pytest.raises(CorruptDataError):
            create_data_store("local", {}, data_dir)

    def test_unusable_directory_raises_not_found(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory", encoding="utf-8")

        with pytest.raises(StoreNotFoundError) as exc_info:
            create_data_store("local", {}, blocker / "db")

        assert isinstance(exc_info.value.cause, OSError)
        assert exc_info.value.context.operation == "open"

    @pytest.mark.parametrize("name", ["", "a/b"])
    def test_invalid_store_name(self, data_dir, name):
        with pytest.raises(ValueError):
            DataStore.open(name, {}, data_dir)


class TestReads:
    """Tests for get_root() and get()."""

    @pytest.fixture
    def store(self, data_dir):
        return create_data_store(
            "local",
            {"Options": {"UsernameAttributes": ["email"]}, "Users": {"a.b@example.com": {"x": 1}}},
            data_dir,
        )

    def test_get_root_returns_whole_document(self, store):
        assert store.get_root() == {
            "Options": {"UsernameAttributes": ["email"]},
            "Users": {"a.b@example.com": {"x": 1}},
        }

    def test_get_dotted_path(self, store):
        assert store.get("Options.UsernameAttributes") == ["email"]

    def test_get_segmented_path_with_dots_in_key(self, store):
        assert store.get(["Users", "a.b@example.com", "x"]) == 1

    def test_get_missing_returns_none(self, store):
        assert store.get("Users.nobody") is None
        assert store.get("Nothing.at.all") is None
        assert store.get("Options.UsernameAttributes.deeper") is None

    def test_get_missing_returns_default(self, store):
        assert store.get("Users.nobody", {}) == {}

    def test_reads_see_writes_from_another_handle(self, store, data_dir):
        other = create_data_store("local", None, data_dir)
        other.set(["Users", "2"], {"x": 2})
        assert store.get(["Users", "2"]) == {"x": 2}

    def test_reads_see_external_file_changes(self, store):
        store.path.write_text(json.dumps({"Replaced": True}), encoding="utf-8")
        assert store.get_root() == {"Replaced": True}

    def test_invalid_path_segment(self, store):
        with pytest.raises(ValueError):
            store.get("Users..x")


class TestWrites:
    """Tests for set(), set_root(), update() and delete()."""

    @pytest.fixture
    def store(self, data_dir):
        return create_data_store("local", {"Users": {}}, data_dir)

    def test_set_persists_whole_document(self, store):
        store.set(["Users", "1"], {"Username": "1"})
        assert read_file(store.path) == {"Users": {"1": {"Username": "1"}}}

    def test_set_creates_intermediate_objects(self, store):
        store.set("A.B.C", 3)
        assert store.get_root() == {"Users": {}, "A": {"B": {"C": 3}}}

    def test_set_replaces_non_object_intermediate(self, store):
        store.set("A", 1)
        store.set("A.B", 2)
        assert store.get("A") == {"B": 2}

    def test_set_replaces_value(self, store):
        store.set(["Users", "1"], {"old": True, "keep": 1})
        store.set(["Users", "1"], {"keep": 2})
        assert store.get(["Users", "1"]) == {"keep": 2}

    def test_set_root(self, store):
        store.set_root({"Fresh": []})
        assert read_file(store.path) == {"Fresh": []}

    def test_set_root_rejects_non_object(self, store):
        with pytest.raises(ValidationError):
            store.set_root(["not", "an", "object"])

    def test_set_with_empty_path_replaces_root(self, store):
        store.set([], {"Root": 1})
        assert store.get_root() == {"Root": 1}

    def test_update_applies_function(self, store):
        store.set("Counter", 1)
        assert store.update("Counter", lambda v: v + 1) == 2
        assert store.get("Counter") == 2

    def test_update_missing_entry_receives_none(self, store):
        seen = []
        store.update("Missing", lambda v: seen.append(v) or "set")
        assert seen == [None]
        assert store.get("Missing") == "set"

    def test_delete(self, store):
        store.set(["Users", "1"], {"Username": "1"})
        assert store.delete(["Users", "1"]) is True
        assert store.get_root() == {"Users": {}}

    def test_delete_missing(self, store):
        assert store.delete(["Users", "1"]) is False
        assert store.delete("No.Such.Path") is False

    def test_delete_root_is_rejected(self, store):
        with pytest.raises(ValueError):
            store.delete([])

    def test_output_is_utf8_json(self, store):
        store.set(["Users", "zoë"], {"name": "Zoë"})
        assert "Zoë" in store.path.read_text(encoding="utf-8")


class TestWriteFailures:
    """A failed write leaves the previous document intact."""

    @pytest.fixture
    def store(self, data_dir):
        store = create_data_store("local", {"Users": {}}, data_dir)
        store.set(["Users", "1"], {"Username": "1"})
        return store

    def test_unserializable_value(self, store, data_dir):
        before = store.path.read_text(encoding="utf-8")

        with pytest.raises(ValidationError):
            store.set(["Users", "2"], object())

        assert store.path.read_text(encoding="utf-8") == before
        assert sorted(p.name for p in data_dir.iterdir()) == ["local.json"]

    def test_lone_surrogate_on_disk_is_a_typed_error(self, data_dir):
        # Escaped lone surrogates are valid JSON but cannot be written back as UTF-8
        path = data_dir / "local.json"
        data_dir.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"Users": {"\ud800": {"Username": "\ud800"}}}), encoding="utf-8")
        before = path.read_text(encoding="utf-8")
        store = create_data_store("local", {}, data_dir)

        with pytest.raises(ValidationError) as exc_info:
            store.set(["Users", "1"], {"Username": "1"})

        assert isinstance(exc_info.value.cause, UnicodeEncodeError)
        assert path.read_text(encoding="utf-8") == before
        assert sorted(p.name for p in data_dir.iterdir()) == ["local.json"]

    def test_failed_replace_keeps_old_file_and_cleans_temp(self, store, data_dir, monkeypatch):
        before = store.path.read_text(encoding="utf-8")

        def boom(src, dst):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr("userpool.core.datastore.os.replace", boom)

        with pytest.raises(StorageError) as exc_info:
            store.set(["Users", "2"], {"Username": "2"})

        assert not isinstance(exc_info.value, StoreNotFoundError)
        assert store.path.read_text(encoding="utf-8") == before
        assert sorted(p.name for p in data_dir.iterdir()) == ["local.json"]

    def test_permission_error_on_write_is_not_found(self, store, monkeypatch):
        def denied(*args, **kwargs):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr("userpool.core.datastore.tempfile.mkstemp", denied)

        with pytest.raises(StoreNotFoundError):
            store.set(["Users", "2"], {"Username": "2"})

    def test_file_removed_after_open(self, store):
        store.path.unlink()
        with pytest.raises(StoreNotFoundError):
            store.get_root()


class TestConcurrency:
    """Writers in one process are serialized per file."""

    def test_concurrent_updates_do_not_lose_writes(self, data_dir):
        stores = [create_data_store("local", {"Counter": 0}, data_dir) for _ in range(4)]
        errors = []

        def worker(store):
            try:
                for _ in range(5):
                    store.update("Counter", lambda v: v + 1)
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(s,)) for s in stores for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert stores[0].get("Counter") == 40

    def test_handles_on_one_file_share_a_lock(self, data_dir):
        first = create_data_store("local", {}, data_dir)
        second = create_data_store("local", {}, data_dir)
        other = create_data_store("other", {}, data_dir)

        assert first._lock is second._lock
        assert first._lock is not other._lock

    def test_lock_released_with_last_handle(self, data_dir):
        store = create_data_store("local", {}, data_dir)
        path = store.path
        assert path in datastore._file_locks

        del store
        gc.collect()

        assert path not in datastore._file_locks


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
class TestFileMode:
    """Atomic replace keeps the permission bits a plain write would give."""

    @pytest.fixture
    def umask_022(self):
        previous = os.umask(0o022)
        yield
        os.umask(previous)

    def test_new_file_honours_umask(self, data_dir, umask_022):
        store = create_data_store("local", {}, data_dir)
        assert stat.S_IMODE(store.path.stat().st_mode) == 0o644

    @pytest.mark.parametrize("mode", [0o644, 0o640, 0o600])
    def test_existing_mode_survives_set(self, data_dir, umask_022, mode):
        store = create_data_store("local", {}, data_dir)
        os.chmod(store.path, mode)

        store.set("A", 1)

        assert stat.S_IMODE(store.path.stat().st_mode) == mode
        assert read_file(store.path) == {"A": 1}
