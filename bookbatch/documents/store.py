"""
Directory-backed document store with path-safety guarantees.

A session wraps one extracted document tree. Reads see pending writes
first, writes are buffered until :meth:`DocumentSession.build` copies the
tree to its destination with the changes applied.
"""
import logging
import re
import shutil
from pathlib import Path, PurePosixPath
from typing import Dict, List, Tuple, Union
from urllib.parse import urlparse

from bookbatch.core.exceptions import UnsafePathError

logger = logging.getLogger(__name__)

CONTENT_EXTENSIONS = ('.xhtml', '.html', '.htm')

_WINDOWS_DRIVE = re.compile(r'^[A-Za-z]:')


def validate_relative_path(path: str) -> Tuple[bool, str]:
    """
    Validate a document-relative path for security issues

    Returns:
        Tuple of (is_valid, error_message)
    """
    normalized = (path or "").replace("\\", "/")

    if normalized in ("", "."):
        return False, "Path cannot be empty"

    # Prevent absolute paths
    if normalized.startswith("/") or _WINDOWS_DRIVE.match(normalized) or urlparse(normalized).scheme:
        return False, "Absolute paths not allowed"

    # Prevent directory traversal
    if any(part == ".." for part in normalized.split("/")):
        return False, "Invalid path: directory traversal not allowed"

    return True, ""


def safe_join(root: Path, path: str) -> Path:
    """
    Join ``path`` under ``root`` and make sure the result stays inside it.

    Raises:
        UnsafePathError: If the path is absolute, traverses upward or escapes root
    """
    is_valid, error = validate_relative_path(path)
    if not is_valid:
        raise UnsafePathError(error, path=path)

    base = root.resolve()
    full_path = (base / path.replace("\\", "/")).resolve()
    if full_path != base and base not in full_path.parents:
        raise UnsafePathError("Path escapes the document root", path=path)
    return full_path


class DocumentSession:
    """Open document tree with buffered changes."""

    def __init__(self, root: Path):
        self.root = root
        self.changes: Dict[str, bytes] = {}

    def content_paths(self) -> List[str]:
        """Relative paths of every markup file, in reading order."""
        paths = [
            PurePosixPath(path.relative_to(self.root).as_posix())
            for path in self.root.rglob("*")
            if path.is_file() and path.suffix.lower() in CONTENT_EXTENSIONS
        ]
        return [str(path) for path in sorted(paths, key=_natural_key)]

    def read_file(self, relpath: str) -> bytes:
        if relpath in self.changes:
            return self.changes[relpath]
        return safe_join(self.root, relpath).read_bytes()

    def write_file(self, relpath: str, content: Union[bytes, str]):
        full_path = safe_join(self.root, relpath)
        if isinstance(content, str):
            content = content.encode('utf-8')

        original = full_path.read_bytes() if full_path.exists() else None
        if original == content:
            self.changes.pop(relpath, None)
        else:
            self.changes[relpath] = content

    def build(self, output_path: Union[str, Path]) -> Path:
        """
        Copy the document tree to ``output_path`` with pending changes applied.

        Returns:
            The output directory
        """
        output = Path(output_path).resolve()
        if output == self.root.resolve() or self.root.resolve() in output.parents:
            raise UnsafePathError("Output directory cannot be inside the source tree", path=str(output))

        if output.exists():
            shutil.rmtree(output)
        shutil.copytree(self.root, output)

        for relpath, content in self.changes.items():
            target = safe_join(output, relpath)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)

        logger.info(f"Built {output} ({len(self.changes)} changed file(s))")
        return output


def _natural_key(path: PurePosixPath):
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r'(\d+)', str(path))]


class DocumentStore:
    """Opens document trees as sessions."""

    def open(self, path: Union[str, Path]) -> DocumentSession:
        """
        Open an extracted document directory.

        Raises:
            FileNotFoundError: If the directory does not exist
        """
        root = Path(path).expanduser().resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Document directory not found: {root}")
        return DocumentSession(root)
