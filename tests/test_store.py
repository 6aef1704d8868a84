"""Tests for the compiled-template store."""

import os
import zlib

import pytest

from tagl.exceptions import StoreIOError
from tagl.store import ArtifactStore


def test_record_name_formula():
    key = "pages/home.tpl:128"

    name = ArtifactStore.record_name("pages/home.tpl", 128)

    assert name == f"home.tpl.{zlib.crc32(key.encode())}.{len(key)}.py"


def test_distinct_options_distinct_paths(tmp_path):
    store = ArtifactStore(tmp_path)

    assert store.path_for("a.tpl", 0) != store.path_for("a.tpl", 0x10)
    assert store.path_for("a.tpl", 0x10) == store.path_for("a.tpl", 0x10)


def test_write_then_read(tmp_path):
    store = ArtifactStore(tmp_path / "nested" / "dir")

    path = store.write("a.tpl", 0, "NAME = 'a.tpl'\n")

    assert path.parent == tmp_path / "nested" / "dir"
    assert store.exists("a.tpl", 0)
    assert store.read("a.tpl", 0) == "NAME = 'a.tpl'\n"
    assert store.read("a.tpl", 0x80) is None


def test_write_leaves_no_temporary_files(tmp_path):
    store = ArtifactStore(tmp_path)

    store.write("a.tpl", 0, "one")
    store.write("a.tpl", 0, "two")

    assert [p.name for p in tmp_path.iterdir()] == [store.record_name("a.tpl", 0)]
    assert store.read("a.tpl", 0) == "two"


@pytest.mark.skipif(os.geteuid() == 0, reason="root ignores directory permissions")
def test_write_to_readonly_directory_fails(tmp_path):
    tmp_path.chmod(0o500)
    store = ArtifactStore(tmp_path)
    try:
        with pytest.raises(StoreIOError) as exc_info:
            store.write("a.tpl", 0, "code")
    finally:
        tmp_path.chmod(0o700)

    assert exc_info.value.directory == str(tmp_path)


def test_write_when_directory_is_a_file(tmp_path):
    blocker = tmp_path / "compiled"
    blocker.write_text("not a directory")

    with pytest.raises(StoreIOError, match="writable"):
        ArtifactStore(blocker).write("a.tpl", 0, "code")


def test_delete_is_idempotent(tmp_path):
    store = ArtifactStore(tmp_path)
    store.write("a.tpl", 0, "code")

    assert store.delete("a.tpl", 0) is True
    assert store.delete("a.tpl", 0) is False
    assert not store.exists("a.tpl", 0)
