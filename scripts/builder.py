#!/usr/bin/env python3
"""
builder.py - Versioned Filter Builder

Turns source rule files into published filters with a versioned header and
a checksum line.

Usage:
    python -m scripts.builder [--src src] [--out filters]

REBUILD DETECTION:
    A filter is only rewritten when its rules change. The rules of the
    previously published filter are compared to the source:

        no published filter          → build v1            (new)
        rules differ                 → build v(old + 1)    (changed)
        rules equal, no checksum     → build v(old + 1)    (missing_checksum)
        rules equal, checksum line   → skip                (unchanged)

    A published filter without a version line counts as version 0, so the
    next build is v1. Versions never go down.

Each run is all-or-nothing: any error aborts the whole batch.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, NamedTuple

from scripts.header import (
    COMMENT_MARKER,
    checksum,
    checksum_line,
    extract_version,
    has_checksum,
    parse,
    verify_checksum,
)
from scripts.store import ArtifactStore, DirectoryArtifactStore, DirectorySourceStore, Source

# ============================================================================
# CONFIGURATION
# ============================================================================

SOURCE_DIR = "src"
OUTPUT_DIR = "filters"

TITLE_PREFIX = "SpicySpaceman - "
TITLE_SUFFIX = " Filter"
EXPIRES = "4 hours (update frequency)"
HOMEPAGE_URL = "https://github.com/SpicySpaceman/FilterList"
LICENSE_URL = "https://github.com/SpicySpaceman/FilterList/blob/main/LICENSE"

# Build reasons
REASON_NEW = "new"
REASON_CHANGED = "changed"
REASON_MISSING_CHECKSUM = "missing_checksum"
REASON_UNCHANGED = "unchanged"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class BuildDecision(NamedTuple):
    """Whether to rebuild a filter, and with which version."""
    version: int
    should_build: bool
    reason: str


class VerifyResult(NamedTuple):
    """Checksum verification result for one published filter."""
    name: str
    valid: bool


@dataclass
class BuildStats:
    """Statistics from a build run."""
    files_processed: int = 0
    built: int = 0
    skipped: int = 0

    # By reason
    new: int = 0
    changed: int = 0
    repaired: int = 0  # Rebuilt only to add a missing checksum


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds, e.g. 2026-01-01T00:00:00.000Z"""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def make_title(name: str) -> str:
    """
    Human-readable filter title. Only the first character is upper-cased.

    Example:
        >>> make_title("myfilter")
        'SpicySpaceman - Myfilter Filter'
    """
    return f"{TITLE_PREFIX}{name[:1].upper()}{name[1:]}{TITLE_SUFFIX}"


# ============================================================================
# CORE
# ============================================================================

def decide(source_body: str, existing: str | None) -> BuildDecision:
    """
    Decide whether a filter needs rebuilding.

    Args:
        source_body: Trimmed source rules
        existing: Previously published filter text, or None if there is none

    Returns:
        BuildDecision with the version to write and the reason
    """
    if existing is None:
        return BuildDecision(1, True, REASON_NEW)

    current_version = extract_version(existing) or 0

    if parse(existing).body == source_body:
        if has_checksum(existing):
            return BuildDecision(current_version, False, REASON_UNCHANGED)
        return BuildDecision(current_version + 1, True, REASON_MISSING_CHECKSUM)

    return BuildDecision(current_version + 1, True, REASON_CHANGED)


def render(name: str, source_body: str, version: int, timestamp: str) -> str:
    """
    Render a published filter.

    The checksum is computed over the header block plus rules and
    prepended as the first line. No trailing newline is added.

    Args:
        name: Filter identifier (used for the title)
        source_body: Trimmed source rules
        version: Version number to stamp
        timestamp: Last-modified timestamp

    Returns:
        Complete filter text
    """
    header_lines = [
        f"! Title: {make_title(name)}",
        f"! Version: {version}",
        f"! Last modified: {timestamp}",
        f"! Expires: {EXPIRES}",
        f"! Homepage: {HOMEPAGE_URL}",
        f"! License: {LICENSE_URL}",
        COMMENT_MARKER,
    ]
    body = "\n".join(header_lines) + "\n" + source_body
    return checksum_line(checksum(body)) + "\n" + body


def build_filter(source: Source, artifacts: ArtifactStore, timestamp: str) -> BuildDecision:
    """
    Build a single filter if its rules changed.

    Reads the previous artifact (if any), decides, and writes the new
    artifact only when a rebuild is needed.

    Returns:
        The BuildDecision that was applied
    """
    source_body = source.text.strip()
    existing = artifacts.read(source.name) if artifacts.exists(source.name) else None

    decision = decide(source_body, existing)

    if decision.reason == REASON_NEW:
        print(f"Building {source.filename} (New filter)")
    elif decision.reason == REASON_CHANGED:
        print(f"Building {source.filename} (Changes detected)")
    elif decision.reason == REASON_MISSING_CHECKSUM:
        print(f"Updating {source.filename} (Missing checksum)")
    else:
        print(f"Skipping {source.filename} (No changes detected)")

    if decision.should_build:
        artifacts.write(
            source.name,
            render(source.name, source_body, decision.version, timestamp),
        )
        print(f"-> Built {source.filename} (v{decision.version})")

    return decision


def build_all(
    sources: Iterable[Source],
    artifacts: ArtifactStore,
    now: Callable[[], str] | None = None,
) -> BuildStats:
    """
    Build every source, one at a time.

    Args:
        sources: Iterable of Source documents
        artifacts: Artifact store with exists/read/write
        now: Timestamp factory (defaults to the current UTC time)

    Returns:
        BuildStats for the run
    """
    now = now or utc_timestamp
    stats = BuildStats()

    for source in sources:
        stats.files_processed += 1
        decision = build_filter(source, artifacts, now())

        if not decision.should_build:
            stats.skipped += 1
            continue

        stats.built += 1
        if decision.reason == REASON_NEW:
            stats.new += 1
        elif decision.reason == REASON_CHANGED:
            stats.changed += 1
        else:
            stats.repaired += 1

    return stats


def verify_artifacts(artifacts: ArtifactStore) -> list[VerifyResult]:
    """Check the checksum line of every published filter."""
    return [
        VerifyResult(name, verify_checksum(artifacts.read(name)))
        for name in artifacts.names()
    ]


# ============================================================================
# MAIN
# ============================================================================

def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Build versioned filter lists")
    parser.add_argument("--src", default=SOURCE_DIR, help="Directory with source rule files")
    parser.add_argument("--out", default=OUTPUT_DIR, help="Directory for published filters")
    args = parser.parse_args(argv)

    try:
        stats = build_all(
            DirectorySourceStore(args.src),
            DirectoryArtifactStore(args.out),
        )
    except Exception as e:
        print(f"\n❌ ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1

    print(f"\nBuild complete: {stats.built} built, {stats.skipped} unchanged "
          f"({stats.files_processed} files)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
