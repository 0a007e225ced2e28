#!/usr/bin/env python3
"""
store.py - Source and Artifact Storage

The builder never touches the filesystem directly. Sources are read from a
source store and published filters live in an artifact store, so tests can
swap both for in-memory versions.

Layout on disk:
    src/<name>.txt       → source rules (one file per filter)
    filters/<name>.txt   → published filter with header and checksum
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, NamedTuple, Protocol, runtime_checkable


FILTER_SUFFIX = ".txt"


class Source(NamedTuple):
    """
    A source rule file.

    Attributes:
        name: Filter identifier (file name without .txt)
        text: Raw file content
    """
    name: str
    text: str

    @property
    def filename(self) -> str:
        return f"{self.name}{FILTER_SUFFIX}"


@runtime_checkable
class ArtifactStore(Protocol):
    """Where published filters are read from and written to."""

    def exists(self, name: str) -> bool: ...

    def read(self, name: str) -> str: ...

    def write(self, name: str, text: str) -> None: ...

    def names(self) -> list[str]: ...


# =============================================================================
# FILESYSTEM STORES
# =============================================================================

class DirectorySourceStore:
    """Iterates the *.txt files of a source directory in name order."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def __iter__(self) -> Iterator[Source]:
        if not self.path.is_dir():
            raise FileNotFoundError(f"Source directory not found: {self.path}")

        for file in sorted(self.path.glob(f"*{FILTER_SUFFIX}")):
            with open(file, encoding="utf-8-sig", newline="") as f:
                yield Source(file.stem, f.read())

    def names(self) -> list[str]:
        return [source.name for source in self]


class DirectoryArtifactStore:
    """
    Published filters in an output directory.

    Writes go to a temp file first and are moved into place, so an
    interrupted run never leaves a half-written filter behind.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _path(self, name: str) -> Path:
        return self.path / f"{name}{FILTER_SUFFIX}"

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def read(self, name: str) -> str:
        with open(self._path(name), encoding="utf-8-sig", newline="") as f:
            return f.read()

    def write(self, name: str, text: str) -> None:
        target = self._path(name)
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
        temp_path.replace(target)

    def names(self) -> list[str]:
        if not self.path.is_dir():
            return []
        return [file.stem for file in sorted(self.path.glob(f"*{FILTER_SUFFIX}"))]


# =============================================================================
# IN-MEMORY STORES
# =============================================================================

class MemorySourceStore:
    """Sources held in a dict (name -> text), iterated in name order."""

    def __init__(self, sources: dict[str, str] | None = None) -> None:
        self.sources = dict(sources or {})

    def __iter__(self) -> Iterator[Source]:
        for name in sorted(self.sources):
            yield Source(name, self.sources[name])

    def names(self) -> list[str]:
        return sorted(self.sources)


class MemoryArtifactStore:
    """Artifacts held in a dict. Every write is appended to `writes`."""

    def __init__(self, artifacts: dict[str, str] | None = None) -> None:
        self.artifacts = dict(artifacts or {})
        self.writes: list[str] = []

    def exists(self, name: str) -> bool:
        return name in self.artifacts

    def read(self, name: str) -> str:
        try:
            return self.artifacts[name]
        except KeyError:
            raise FileNotFoundError(f"No artifact named {name!r}") from None

    def write(self, name: str, text: str) -> None:
        self.artifacts[name] = text
        self.writes.append(name)

    def names(self) -> list[str]:
        return sorted(self.artifacts)
