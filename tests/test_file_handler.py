"""Tests for file_handler module: encoding-aware reads, atomic writes, removal."""

import pytest

from issue_sync.errors import StorageError
from issue_sync.file_handler import (
    read_file_with_encoding,
    read_json,
    read_text,
    remove_path,
    write_file_atomic,
    write_json_atomic,
)

# =============================================================================
# read_file_with_encoding
# =============================================================================


class TestReadFileWithEncoding:
    """Tests for read_file_with_encoding(path)."""

    def test_utf8_file(self, tmp_path):
        f = tmp_path / "1_-_Fix_login.md"
        f.write_text("- [ ] Fix login\n", encoding="utf-8")
        content, encoding = read_file_with_encoding(f)
        assert content == "- [ ] Fix login\n"
        assert encoding == "utf-8"

    def test_empty_file(self, tmp_path):
        f = tmp_path / "empty.md"
        f.write_bytes(b"")
        assert read_file_with_encoding(f) == ("", "utf-8")

    def test_non_utf8_file(self, tmp_path):
        """Latin-1 bytes are decoded rather than rejected."""
        f = tmp_path / "latin1.md"
        f.write_bytes("- [ ] Café résumé naïve\n".encode("latin-1"))
        content, encoding = read_file_with_encoding(f)
        assert "Caf" in content
        assert isinstance(encoding, str)

    def test_missing_file_raises_storage_error(self, tmp_path):
        with pytest.raises(StorageError, match="Cannot read"):
            read_text(tmp_path / "missing.md")


# =============================================================================
# write_file_atomic
# =============================================================================


class TestWriteFileAtomic:
    """Tests for write_file_atomic(path, content, encoding)."""

    def test_write_returns_byte_count(self, tmp_path):
        f = tmp_path / "out.md"
        count = write_file_atomic(f, "héllo")
        assert f.read_text(encoding="utf-8") == "héllo"
        assert count == len("héllo".encode("utf-8"))

    def test_creates_parent_directories(self, tmp_path):
        f = tmp_path / "octo" / "tools" / "1_-_Root" / "__main__.md"
        write_file_atomic(f, "- [ ] Root\n")
        assert f.read_text(encoding="utf-8") == "- [ ] Root\n"

    def test_replaces_existing_content(self, tmp_path):
        f = tmp_path / "out.md"
        f.write_text("old")
        write_file_atomic(f, "new")
        assert f.read_text() == "new"

    def test_leaves_no_temp_files(self, tmp_path):
        write_file_atomic(tmp_path / "out.md", "content")
        assert [p.name for p in tmp_path.iterdir()] == ["out.md"]

    def test_unwritable_parent_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        with pytest.raises(StorageError, match="Cannot write"):
            write_file_atomic(blocker / "out.md", "content")


# =============================================================================
# JSON helpers
# =============================================================================


class TestJson:
    def test_round_trip(self, tmp_path):
        f = tmp_path / ".meta.json"
        write_json_atomic(f, {"owner": "octo", "next": 3})
        assert read_json(f) == {"owner": "octo", "next": 3}
        assert f.read_text().endswith("\n")

    def test_missing_file_is_none(self, tmp_path):
        assert read_json(tmp_path / "missing.json") is None

    def test_corrupt_json_raises(self, tmp_path):
        f = tmp_path / "bad.json"
        f.write_text("{not json")
        with pytest.raises(StorageError, match="Corrupt JSON"):
            read_json(f)


# =============================================================================
# remove_path
# =============================================================================


class TestRemovePath:
    def test_removes_file(self, tmp_path):
        f = tmp_path / "old.md"
        f.write_text("x")
        remove_path(f)
        assert not f.exists()

    def test_removes_directory_tree(self, tmp_path):
        d = tmp_path / "5_-_Parent"
        (d / "6_-_Child").mkdir(parents=True)
        (d / "__main__.md").write_text("x")
        remove_path(d)
        assert not d.exists()

    def test_missing_path_is_noop(self, tmp_path):
        remove_path(tmp_path / "nothing")
