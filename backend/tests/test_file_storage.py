import pytest

from app.core.errors import StorageKeyError


def test_artifact_visible_after_clean_exit(storage):
    with storage.open_for_write("exports/a.csv") as handle:
        handle.write("x;y\r\n")
        assert not storage.exists("exports/a.csv")

    assert storage.exists("exports/a.csv")
    with storage.resolve("exports/a.csv") as stream:
        assert stream.read() == b"x;y\r\n"
    assert storage.size("exports/a.csv") == 5


def test_partial_artifact_discarded_on_error(storage):
    with pytest.raises(RuntimeError):
        with storage.open_for_write("exports/b.csv") as handle:
            handle.write("partial")
            raise RuntimeError("disk went away")

    assert not storage.exists("exports/b.csv")
    assert list((storage.root / "exports").iterdir()) == []


@pytest.mark.parametrize("key", ["", "/etc/passwd", "../outside.csv", "a/../../b", "a\\b"])
def test_rejects_keys_outside_root(storage, key):
    with pytest.raises(StorageKeyError):
        storage.path_for(key)


def test_resolve_missing_key(storage):
    with pytest.raises(FileNotFoundError):
        storage.resolve("exports/missing.csv")


def test_delete_is_idempotent(storage):
    with storage.open_for_write("exports/c.csv") as handle:
        handle.write("c")

    storage.delete("exports/c.csv")
    storage.delete("exports/c.csv")

    assert not storage.exists("exports/c.csv")
