#!/usr/bin/env python3
"""
fetcher.py - Async Published Filter Fetcher with Smart Caching

Downloads the currently published version of each filter so a build on a
fresh checkout continues from the published version instead of restarting
at v1. Uses ETag/Last-Modified caching and concurrent fetching, and falls
back to cached copies if a download fails.

A fetched filter is only copied into the output directory when there is no
local filter yet, or when the published version is higher than the local
one. Local versions therefore never go down.

Usage:
    python -m scripts.fetcher --base-url URL --src src/ --out filters/ --cache .cache
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from pathlib import Path
from typing import NamedTuple

import aiohttp
import aiofiles

from scripts.header import extract_version
from scripts.store import FILTER_SUFFIX, DirectorySourceStore


# Default configuration
DEFAULT_BASE_URL = "https://raw.githubusercontent.com/SpicySpaceman/FilterList/main/filters/"
DEFAULT_CACHE_DIR = ".cache"
DEFAULT_TIMEOUT = 30
DEFAULT_RETRIES = 3
DEFAULT_CONCURRENCY = 8

# State file for ETag/Last-Modified tracking
STATE_FILE = "state.json"


class FetchResult(NamedTuple):
    """Result of fetching one published filter."""
    name: str
    success: bool
    changed: bool
    seeded: bool = False  # Copied into the output directory
    error: str | None = None


def filter_url(base_url: str, name: str) -> str:
    """Published URL of a filter."""
    return f"{base_url.rstrip('/')}/{name}{FILTER_SUFFIX}"


def load_state(cache_dir: Path) -> dict:
    """Load state.json containing ETag/Last-Modified cache."""
    state_path = cache_dir / STATE_FILE
    if state_path.exists():
        try:
            with open(state_path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            print(f"Warning: Could not load state.json: {e}", file=sys.stderr)
    return {}


def save_state(cache_dir: Path, state: dict) -> None:
    """Save state.json atomically."""
    state_path = cache_dir / STATE_FILE
    temp_path = state_path.with_suffix(".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)
        temp_path.replace(state_path)
    except OSError as e:
        print(f"Warning: Could not save state.json: {e}", file=sys.stderr)


async def seed_output(content: bytes, output_path: Path) -> bool:
    """
    Copy a published filter into the output directory if it is newer.

    Returns:
        True if the local filter was written
    """
    published = extract_version(content.decode("utf-8-sig", errors="replace"))

    if output_path.exists():
        async with aiofiles.open(output_path, "r", encoding="utf-8-sig") as f:
            local = extract_version(await f.read())
        if published is None or (local is not None and local >= published):
            return False

    async with aiofiles.open(output_path, "wb") as f:
        await f.write(content)
    return True


async def read_cache(cache_path: Path) -> bytes | None:
    """Read a cached copy, or None if there is none."""
    if not cache_path.exists():
        return None
    async with aiofiles.open(cache_path, "rb") as f:
        return await f.read()


async def fetch_filter(
    session: aiohttp.ClientSession,
    name: str,
    base_url: str,
    output_dir: Path,
    cache_dir: Path,
    state: dict,
    timeout: int,
    retries: int,
) -> FetchResult:
    """
    Fetch a single published filter with ETag/Last-Modified caching.

    A 404 means the filter has not been published yet; that is a success
    with nothing to seed.

    Returns:
        FetchResult with success/changed/seeded status
    """
    url = filter_url(base_url, name)
    filename = f"{name}{FILTER_SUFFIX}"
    output_path = output_dir / filename
    cache_path = cache_dir / filename

    # Get cached headers
    url_state = state.get(url, {})
    headers = {}
    if url_state.get("etag"):
        headers["If-None-Match"] = url_state["etag"]
    if url_state.get("last_modified"):
        headers["If-Modified-Since"] = url_state["last_modified"]

    last_error = "Max retries exceeded"

    for attempt in range(retries):
        try:
            async with session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:

                # 304 Not Modified - use cached version
                if response.status == 304:
                    content = await read_cache(cache_path)
                    if content is not None:
                        seeded = await seed_output(content, output_path)
                        return FetchResult(name, success=True, changed=False, seeded=seeded)
                    # Cache file missing, need to re-download
                    headers = {}
                    continue

                # Not published yet
                if response.status == 404:
                    return FetchResult(name, success=True, changed=False)

                if response.status >= 400:
                    last_error = f"HTTP {response.status}"
                    if attempt < retries - 1:
                        await asyncio.sleep(2 ** attempt)  # Exponential backoff
                        continue
                    break

                content = await response.read()

                async with aiofiles.open(cache_path, "wb") as f:
                    await f.write(content)

                # Update state with new ETag/Last-Modified
                new_state = {}
                if "ETag" in response.headers:
                    new_state["etag"] = response.headers["ETag"]
                if "Last-Modified" in response.headers:
                    new_state["last_modified"] = response.headers["Last-Modified"]
                new_state["fetched_at"] = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
                state[url] = new_state

                seeded = await seed_output(content, output_path)
                return FetchResult(name, success=True, changed=True, seeded=seeded)

        except asyncio.TimeoutError:
            last_error = "Timeout"
        except aiohttp.ClientError as e:
            last_error = str(e) or type(e).__name__

        if attempt < retries - 1:
            await asyncio.sleep(2 ** attempt)

    # Fallback to cache
    content = await read_cache(cache_path)
    if content is not None:
        seeded = await seed_output(content, output_path)
        return FetchResult(
            name,
            success=True,
            changed=False,
            seeded=seeded,
            error=f"{last_error}, using cached version",
        )
    return FetchResult(name, success=False, changed=False, error=last_error)


async def fetch_published(
    names: list[str],
    base_url: str,
    output_dir: Path,
    cache_dir: Path,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: int = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
) -> list[FetchResult]:
    """Fetch all published filters concurrently with rate limiting."""
    output_dir.mkdir(parents=True, exist_ok=True)
    cache_dir.mkdir(parents=True, exist_ok=True)

    state = load_state(cache_dir)
    semaphore = asyncio.Semaphore(concurrency)

    async def fetch_with_semaphore(name: str) -> FetchResult:
        async with semaphore:
            return await fetch_filter(
                session, name, base_url, output_dir, cache_dir, state, timeout, retries
            )

    connector = aiohttp.TCPConnector(limit=concurrency, limit_per_host=2)
    async with aiohttp.ClientSession(connector=connector) as session:
        tasks = [fetch_with_semaphore(name) for name in names]
        results = await asyncio.gather(*tasks, return_exceptions=True)

    final_results = []
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            final_results.append(FetchResult(name, success=False, changed=False, error=str(result)))
        else:
            final_results.append(result)

    save_state(cache_dir, state)

    return final_results


def too_many_failures(results: list[FetchResult]) -> bool:
    """More than half of the fetches failed."""
    failed = sum(1 for r in results if not r.success)
    return failed > len(results) // 2


def print_results(results: list[FetchResult]) -> None:
    """Print fetch summary."""
    success = sum(1 for r in results if r.success)
    changed = sum(1 for r in results if r.changed)
    seeded = sum(1 for r in results if r.seeded)

    print(f"✅ Fetched: {success}/{len(results)} (changed: {changed}, seeded: {seeded})")

    for r in results:
        if not r.success:
            print(f"   - {r.name}: {r.error}")
        elif r.error:
            print(f"   ~ {r.name}: {r.error}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Fetch published filters with caching")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL, help="URL the filters are published under")
    parser.add_argument("--src", default="src", help="Directory with source rule files")
    parser.add_argument("--out", default="filters", help="Directory for published filters")
    parser.add_argument("--cache", default=DEFAULT_CACHE_DIR, help="Cache directory for ETag state")
    parser.add_argument("--concurrency", type=int, default=DEFAULT_CONCURRENCY, help="Max concurrent downloads")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Request timeout in seconds")
    parser.add_argument("--retries", type=int, default=DEFAULT_RETRIES, help="Number of retries per filter")
    args = parser.parse_args(argv)

    try:
        names = DirectorySourceStore(args.src).names()
    except OSError as e:
        print(f"❌ ERROR: {e}", file=sys.stderr)
        return 1

    if not names:
        print("No source filters found", file=sys.stderr)
        return 1

    print(f"🔄 Fetching {len(names)} published filters...")

    results = asyncio.run(fetch_published(
        names,
        args.base_url,
        Path(args.out),
        Path(args.cache),
        args.concurrency,
        args.timeout,
        args.retries,
    ))

    print_results(results)

    return 1 if too_many_failures(results) else 0


if __name__ == "__main__":
    sys.exit(main())
