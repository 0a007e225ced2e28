"""Tests for directory and in-memory stores."""

from __future__ import annotations

from pathlib import Path

import pytest

from scripts.store import (
    ArtifactStore,
    DirectoryArtifactStore,
    DirectorySourceStore,
    MemoryArtifactStore,
    Source,
)


class TestDirectorySourceStore:
    def test_iterates_txt_files_sorted(self, src_dir: Path):
        (src_dir / "notes.md").write_text("ignored", encoding="utf-8")
        sources = list(DirectorySourceStore(src_dir))
        assert [s.name for s in sources] == ["annoyances", "myfilter"]
        assert sources[0] == Source("annoyances", "||popup.example.com^\n")
        assert sources[0].filename == "annoyances.txt"

    def test_strips_bom(self, src_dir: Path):
        (src_dir / "bom.txt").write_bytes(b"\xef\xbb\xbf||a.com^")
        texts = {s.name: s.text for s in DirectorySourceStore(src_dir)}
        assert texts["bom"] == "||a.com^"

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            list(DirectorySourceStore(tmp_path / "nope"))


class TestDirectoryArtifactStore:
    def test_write_and_read(self, tmp_path: Path):
        store = DirectoryArtifactStore(tmp_path / "filters")
        assert not store.exists("f")

        store.write("f", "! Version: 1\n!\n||a.com^")

        assert store.exists("f")
        assert store.read("f") == "! Version: 1\n!\n||a.com^"
        assert (tmp_path / "filters" / "f.txt").read_bytes() == b"! Version: 1\n!\n||a.com^"
        assert not (tmp_path / "filters" / "f.tmp").exists()

    def test_names(self, tmp_path: Path):
        store = DirectoryArtifactStore(tmp_path / "filters")
        assert store.names() == []
        store.write("b", "x")
        store.write("a", "y")
        assert store.names() == ["a", "b"]

    def test_read_missing(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            DirectoryArtifactStore(tmp_path).read("missing")


class TestMemoryArtifactStore:
    def test_records_writes(self):
        store = MemoryArtifactStore({"a": "old"})
        store.write("a", "new")
        assert store.read("a") == "new"
        assert store.writes == ["a"]

    def test_read_missing(self):
        with pytest.raises(FileNotFoundError):
            MemoryArtifactStore().read("missing")


class TestDirectorySourceStoreLineEndings:
    def test_line_endings_kept(self, tmp_path: Path):
        (tmp_path / "crlf.txt").write_bytes(b"||a.com^\r\n||b.com^\r\n")
        (tmp_path / "cr.txt").write_bytes(b"||a.com^\r||b.com^")
        texts = {s.name: s.text for s in DirectorySourceStore(tmp_path)}
        assert texts == {"cr": "||a.com^\r||b.com^", "crlf": "||a.com^\r\n||b.com^\r\n"}

    def test_artifact_read_keeps_line_endings(self, tmp_path: Path):
        store = DirectoryArtifactStore(tmp_path)
        store.write("f", "!\n||a.com^\r\n||b.com^")
        assert store.read("f") == "!\n||a.com^\r\n||b.com^"


def test_stores_satisfy_artifact_store(tmp_path: Path):
    assert isinstance(DirectoryArtifactStore(tmp_path), ArtifactStore)
    assert isinstance(MemoryArtifactStore(), ArtifactStore)
    assert not isinstance(DirectorySourceStore(tmp_path), ArtifactStore)
