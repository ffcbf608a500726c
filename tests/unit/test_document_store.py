"""Unit tests for the directory-backed document store."""

import pytest

from bookbatch.core.exceptions import UnsafePathError
from bookbatch.documents.store import DocumentStore, safe_join, validate_relative_path


class TestValidateRelativePath:
    """Test path-safety rules."""

    @pytest.mark.parametrize("path", ["text/ch1.xhtml", "ch1.xhtml", "OEBPS/text/part..1.xhtml"])
    def test_valid(self, path):
        assert validate_relative_path(path) == (True, "")

    @pytest.mark.parametrize("path", [
        "", ".", "/etc/passwd", "C:/Windows/x.xhtml", "file:///etc/passwd",
        "../outside.xhtml", "text/../../outside.xhtml", "text\\..\\..\\outside.xhtml",
    ])
    def test_invalid(self, path):
        is_valid, error = validate_relative_path(path)
        assert not is_valid
        assert error

    def test_safe_join_raises(self, tmp_path):
        with pytest.raises(UnsafePathError) as exc_info:
            safe_join(tmp_path, "../escape.xhtml")
        assert exc_info.value.path == "../escape.xhtml"

    def test_safe_join_rejects_symlink_escape(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        root = tmp_path / "root"
        root.mkdir()
        (root / "link").symlink_to(outside)

        with pytest.raises(UnsafePathError):
            safe_join(root, "link/secret.xhtml")


class TestDocumentSession:
    """Test reading, buffering and building."""

    def test_open_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            DocumentStore().open(tmp_path / "missing")

    def test_content_paths_in_natural_order(self, tmp_path):
        for name in ("ch10.xhtml", "ch2.xhtml", "ch1.html", "cover.jpg"):
            (tmp_path / name).write_text("<p/>", encoding="utf-8")

        session = DocumentStore().open(tmp_path)
        assert session.content_paths() == ["ch1.html", "ch2.xhtml", "ch10.xhtml"]

    def test_reads_see_pending_writes(self, docs_dir):
        session = DocumentStore().open(docs_dir)
        session.write_file("text/ch1.xhtml", "<p>changed</p>")

        assert session.read_file("text/ch1.xhtml") == b"<p>changed</p>"
        assert b"First" in (docs_dir / "text" / "ch1.xhtml").read_bytes()

    def test_identical_write_is_not_a_change(self, docs_dir):
        session = DocumentStore().open(docs_dir)
        original = session.read_file("text/ch2.xhtml")
        session.write_file("text/ch2.xhtml", "x")
        session.write_file("text/ch2.xhtml", original)

        assert session.changes == {}

    def test_write_outside_root_is_rejected(self, docs_dir):
        session = DocumentStore().open(docs_dir)
        with pytest.raises(UnsafePathError):
            session.write_file("../evil.xhtml", "x")

    def test_build_copies_tree_with_changes(self, docs_dir, tmp_path):
        session = DocumentStore().open(docs_dir)
        session.write_file("text/ch1.xhtml", "<p>translated</p>")

        output = session.build(tmp_path / "out")

        assert (output / "text" / "ch1.xhtml").read_text(encoding="utf-8") == "<p>translated</p>"
        assert (output / "styles.css").exists()
        assert b"First" in (docs_dir / "text" / "ch1.xhtml").read_bytes()

    def test_build_refuses_output_inside_source(self, docs_dir):
        session = DocumentStore().open(docs_dir)
        with pytest.raises(UnsafePathError):
            session.build(docs_dir / "out")
