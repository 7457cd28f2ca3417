"""Tests for file utility functions."""

from __future__ import annotations

import hashlib
from pathlib import Path

from repoaudit.utils.files import compute_sha256, is_binary_file, iter_source_paths, to_relative


class TestIterSourcePaths:
    """Test iter_source_paths function."""

    def test_single_source_file(self, tmp_path: Path) -> None:
        """Should yield a single source file."""
        source = tmp_path / "app.ts"
        source.write_text("export {}")

        assert list(iter_source_paths([source])) == [source]

    def test_directory_filters_extensions(self, tmp_path: Path) -> None:
        """Should skip files with unknown extensions."""
        (tmp_path / "a.ts").write_text("a")
        (tmp_path / "b.py").write_text("b")
        (tmp_path / "notes.txt").write_text("text")

        paths = list(iter_source_paths([tmp_path]))

        assert sorted(p.name for p in paths) == ["a.ts", "b.py"]

    def test_excluded_directories(self, tmp_path: Path) -> None:
        """Should not descend into excluded directories."""
        vendored = tmp_path / "node_modules" / "lib"
        vendored.mkdir(parents=True)
        (vendored / "index.js").write_text("module.exports = {}")
        nested = tmp_path / "src" / "api"
        nested.mkdir(parents=True)
        (nested / "route.ts").write_text("export {}")

        paths = list(iter_source_paths([tmp_path]))

        assert paths == [nested / "route.ts"]

    def test_skips_oversized_and_binary(self, tmp_path: Path) -> None:
        """Should skip files over the size limit and files with NUL bytes."""
        (tmp_path / "big.js").write_text("x" * 50)
        (tmp_path / "blob.js").write_bytes(b"abc\x00def")
        (tmp_path / "ok.js").write_text("ok")

        paths = list(iter_source_paths([tmp_path], max_file_bytes=20))

        assert [p.name for p in paths] == ["ok.js"]

    def test_missing_path(self, tmp_path: Path) -> None:
        """Should yield nothing for paths that do not exist."""
        assert list(iter_source_paths([tmp_path / "missing.ts"])) == []


class TestComputeSha256:
    """Test compute_sha256 function."""

    def test_hash_matches_hashlib(self, tmp_path: Path) -> None:
        target = tmp_path / "file.ts"
        target.write_bytes(b"hello")

        assert compute_sha256(target) == hashlib.sha256(b"hello").hexdigest()


class TestHelpers:
    """Test small path helpers."""

    def test_is_binary_file(self, tmp_path: Path) -> None:
        text = tmp_path / "a.ts"
        text.write_text("plain")
        binary = tmp_path / "b.ts"
        binary.write_bytes(b"\x00\x01")

        assert not is_binary_file(text)
        assert is_binary_file(binary)

    def test_to_relative(self, tmp_path: Path) -> None:
        target = tmp_path / "src" / "app.ts"
        target.parent.mkdir()
        target.write_text("")

        assert to_relative(tmp_path, target) == "src/app.ts"
