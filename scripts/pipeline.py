#!/usr/bin/env python3
"""
pipeline.py

Main processing pipeline for filter publishing.

Usage:
    python -m scripts.pipeline [--src src] [--out filters] [--fetch] [--lint]

Pipeline stages:
1. Fetch published filters (optional) so versions continue from them
2. Lint source rules (optional, report only)
3. Build changed filters with new version and checksum
4. Verify the checksum of every published filter
"""
from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

from scripts.builder import OUTPUT_DIR, SOURCE_DIR, build_all, verify_artifacts
from scripts.fetcher import (
    DEFAULT_BASE_URL,
    DEFAULT_CACHE_DIR,
    fetch_published,
    print_results,
    too_many_failures,
)
from scripts.linter import lint_sources, print_report
from scripts.store import DirectoryArtifactStore, DirectorySourceStore


def run_pipeline(
    src_dir: str,
    out_dir: str,
    *,
    fetch: bool = False,
    base_url: str = DEFAULT_BASE_URL,
    cache_dir: str = DEFAULT_CACHE_DIR,
    lint: bool = False,
    verify: bool = True,
) -> dict[str, int]:
    """
    Run the full pipeline.

    Args:
        src_dir: Directory containing source rule files
        out_dir: Directory for published filters
        fetch: Fetch published filters before building
        base_url: URL the filters are published under
        cache_dir: Cache directory for fetch state
        lint: Lint sources before building
        verify: Verify checksums after building

    Returns:
        Statistics dictionary
    """
    sources = DirectorySourceStore(src_dir)
    artifacts = DirectoryArtifactStore(out_dir)

    if not sources.path.is_dir():
        raise FileNotFoundError(f"Source directory not found: {src_dir}")

    stats = {
        "fetched": 0,
        "fetch_failed": 0,
        "seeded": 0,
        "lint_issues": 0,
        "files_processed": 0,
        "built": 0,
        "skipped": 0,
        "new": 0,
        "changed": 0,
        "repaired": 0,
        "verified": 0,
        "verify_failed": 0,
    }

    # =========================================================================
    # Stage 1: Fetch published filters
    # =========================================================================
    if fetch:
        print("🌐 Stage 1: Fetching published filters...")
        stage_start = time.time()

        results = asyncio.run(fetch_published(
            sources.names(), base_url, artifacts.path, Path(cache_dir),
        ))
        print_results(results)

        stats["fetched"] = sum(1 for r in results if r.success)
        stats["fetch_failed"] = sum(1 for r in results if not r.success)
        stats["seeded"] = sum(1 for r in results if r.seeded)

        if results and too_many_failures(results):
            raise RuntimeError(f"{stats['fetch_failed']} of {len(results)} fetches failed")

        print(f"   Done ({time.time() - stage_start:.1f}s)\n")

    # =========================================================================
    # Stage 2: Lint sources
    # =========================================================================
    if lint:
        print("🔍 Stage 2: Linting sources...")
        report = lint_sources(sources)
        print_report(report)
        stats["lint_issues"] = sum(len(issues) for issues in report.values())
        print(f"   {stats['lint_issues']} issue(s)\n")

    # =========================================================================
    # Stage 3: Build
    # =========================================================================
    print("⚙️  Stage 3: Building filters...")
    stage_start = time.time()

    build_stats = build_all(sources, artifacts)

    stats["files_processed"] = build_stats.files_processed
    stats["built"] = build_stats.built
    stats["skipped"] = build_stats.skipped
    stats["new"] = build_stats.new
    stats["changed"] = build_stats.changed
    stats["repaired"] = build_stats.repaired

    print(f"   Built {stats['built']} of {stats['files_processed']} "
          f"({time.time() - stage_start:.1f}s)")

    # =========================================================================
    # Stage 4: Verify
    # =========================================================================
    if verify:
        print("\n🔐 Stage 4: Verifying checksums...")
        for result in verify_artifacts(artifacts):
            if result.valid:
                stats["verified"] += 1
            else:
                stats["verify_failed"] += 1
                print(f"   ❌ {result.name}.txt: checksum mismatch", file=sys.stderr)
        print(f"   {stats['verified']} valid, {stats['verify_failed']} invalid")

    return stats


def print_summary(stats: dict[str, int]) -> None:
    """Print formatted summary."""
    print("\n" + "=" * 60)
    print("📊 PIPELINE SUMMARY")
    print("=" * 60)

    print(f"\n📁 Files:  {stats['files_processed']}")

    if stats["fetched"] or stats["fetch_failed"]:
        print(f"\n🌐 Fetch:")
        print(f"   Fetched:      {stats['fetched']:>6}")
        print(f"   Failed:       {stats['fetch_failed']:>6}")
        print(f"   Seeded:       {stats['seeded']:>6}")

    print(f"\n⚙️  Build:")
    print(f"   New:          {stats['new']:>6}")
    print(f"   Changed:      {stats['changed']:>6}")
    print(f"   Repaired:     {stats['repaired']:>6}")
    print(f"   Unchanged:    {stats['skipped']:>6}")

    print(f"\n🔍 Lint issues:  {stats['lint_issues']}")
    print(f"🔐 Checksums:    {stats['verified']} valid, {stats['verify_failed']} invalid")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Build and publish filter lists")
    parser.add_argument("--src", default=SOURCE_DIR, help="Directory with source rule files")
    parser.add_argument("--out", default=OUTPUT_DIR, help="Directory for published filters")
    parser.add_argument("--fetch", action="store_true", help="Fetch published filters first")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help="URL the filters are published under")
    parser.add_argument("--cache", default=DEFAULT_CACHE_DIR, help="Cache directory for fetch state")
    parser.add_argument("--lint", action="store_true", help="Lint source rules before building")
    parser.add_argument("--no-verify", action="store_true", help="Skip checksum verification")
    args = parser.parse_args(argv)

    try:
        print("🚀 Starting filter pipeline...")
        print("-" * 60)

        start_time = time.time()
        stats = run_pipeline(
            args.src,
            args.out,
            fetch=args.fetch,
            base_url=args.base_url,
            cache_dir=args.cache,
            lint=args.lint,
            verify=not args.no_verify,
        )
        total_time = time.time() - start_time

        print_summary(stats)
        print(f"\n⏱️  Total time: {total_time:.1f}s")

        if stats["verify_failed"]:
            print("❌ Checksum verification failed", file=sys.stderr)
            return 1

        print("✅ Pipeline completed successfully!")
        return 0

    except Exception as e:
        print(f"\n❌ ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
