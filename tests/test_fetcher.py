"""Tests for fetching published filters against a local aiohttp server."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from aiohttp import web
from aiohttp.test_utils import TestServer as LocalServer

from scripts.builder import build_all, render
from scripts.fetcher import (
    STATE_FILE,
    FetchResult,
    fetch_published,
    filter_url,
    too_many_failures,
)
from scripts.header import extract_version
from scripts.store import DirectoryArtifactStore, MemorySourceStore

from tests.conftest import TIMESTAMP

PUBLISHED = render("myfilter", "||ads.example.com^", 5, TIMESTAMP)


def make_app(published: dict[str, str], requests: list, status: int | None = None) -> web.Application:
    """Serve `published` under /filters/, honouring If-None-Match."""

    async def handler(request: web.Request) -> web.Response:
        filename = request.match_info["filename"]
        requests.append((filename, request.headers.get("If-None-Match")))
        if status is not None:
            return web.Response(status=status)
        if filename not in published:
            return web.Response(status=404)
        etag = f'"{filename}-v1"'
        if request.headers.get("If-None-Match") == etag:
            return web.Response(status=304)
        return web.Response(text=published[filename], headers={"ETag": etag})

    app = web.Application()
    app.router.add_get("/filters/{filename}", handler)
    return app


def run_fetch(app_factory, names: list[str], out: Path, cache: Path, **kwargs) -> list[FetchResult]:
    async def _run() -> list[FetchResult]:
        server = LocalServer(app_factory())
        await server.start_server()
        try:
            base_url = str(server.make_url("/filters/"))
            return await fetch_published(names, base_url, out, cache, **kwargs)
        finally:
            await server.close()

    return asyncio.run(_run())


def run_fetch_twice(app_factory, names: list[str], out: Path, cache: Path, between=None) -> list[list[FetchResult]]:
    """Fetch twice from the same server, so the URLs (and cached ETags) match."""
    async def _run() -> list[list[FetchResult]]:
        server = LocalServer(app_factory())
        await server.start_server()
        try:
            base_url = str(server.make_url("/filters/"))
            first = await fetch_published(names, base_url, out, cache)
            if between is not None:
                between()
            second = await fetch_published(names, base_url, out, cache)
            return [first, second]
        finally:
            await server.close()

    return asyncio.run(_run())


class TestFetchPublished:
    def test_seeds_missing_local_filter(self, tmp_path: Path):
        out, cache = tmp_path / "filters", tmp_path / ".cache"
        requests: list = []

        results = run_fetch(lambda: make_app({"myfilter.txt": PUBLISHED}, requests), ["myfilter"], out, cache)

        assert results == [FetchResult("myfilter", success=True, changed=True, seeded=True)]
        assert (out / "myfilter.txt").read_text(encoding="utf-8") == PUBLISHED
        assert (cache / "myfilter.txt").exists()

    def test_unpublished_filter_is_not_an_error(self, tmp_path: Path):
        out = tmp_path / "filters"
        results = run_fetch(lambda: make_app({}, []), ["brandnew"], out, tmp_path / ".cache")

        assert results[0].success
        assert not results[0].seeded
        assert not (out / "brandnew.txt").exists()

    def test_never_downgrades_local_filter(self, tmp_path: Path):
        out = tmp_path / "filters"
        out.mkdir()
        local = render("myfilter", "||ads.example.com^\n||more.example.com^", 7, TIMESTAMP)
        (out / "myfilter.txt").write_text(local, encoding="utf-8")

        results = run_fetch(lambda: make_app({"myfilter.txt": PUBLISHED}, []), ["myfilter"], out, tmp_path / ".cache")

        assert results[0].success
        assert not results[0].seeded
        assert (out / "myfilter.txt").read_text(encoding="utf-8") == local

    def test_replaces_older_local_filter(self, tmp_path: Path):
        out = tmp_path / "filters"
        out.mkdir()
        (out / "myfilter.txt").write_text(render("myfilter", "||old.com^", 2, TIMESTAMP), encoding="utf-8")

        results = run_fetch(lambda: make_app({"myfilter.txt": PUBLISHED}, []), ["myfilter"], out, tmp_path / ".cache")

        assert results[0].seeded
        assert extract_version((out / "myfilter.txt").read_text(encoding="utf-8")) == 5

    def test_conditional_request_served_from_cache(self, tmp_path: Path):
        out, cache = tmp_path / "filters", tmp_path / ".cache"
        requests: list = []
        factory = lambda: make_app({"myfilter.txt": PUBLISHED}, requests)

        first, second = run_fetch_twice(
            factory, ["myfilter"], out, cache,
            between=(out / "myfilter.txt").unlink,
        )

        state = json.loads((cache / STATE_FILE).read_text(encoding="utf-8"))
        assert [entry["etag"] for entry in state.values()] == ['"myfilter.txt-v1"']

        assert requests == [
            ("myfilter.txt", None),
            ("myfilter.txt", '"myfilter.txt-v1"'),
        ]
        assert first[0].changed is True
        assert second == [FetchResult("myfilter", success=True, changed=False, seeded=True)]
        assert (out / "myfilter.txt").read_text(encoding="utf-8") == PUBLISHED

    def test_server_error_without_cache_fails(self, tmp_path: Path):
        results = run_fetch(
            lambda: make_app({}, [], status=500), ["myfilter"],
            tmp_path / "filters", tmp_path / ".cache", retries=1,
        )
        assert results == [FetchResult("myfilter", success=False, changed=False, error="HTTP 500")]

    def test_server_error_falls_back_to_cache(self, tmp_path: Path):
        out, cache = tmp_path / "filters", tmp_path / ".cache"
        cache.mkdir()
        (cache / "myfilter.txt").write_text(PUBLISHED, encoding="utf-8")

        results = run_fetch(lambda: make_app({}, [], status=503), ["myfilter"], out, cache, retries=1)

        assert results[0].success
        assert results[0].seeded
        assert results[0].error == "HTTP 503, using cached version"

    def test_build_continues_from_published_version(self, tmp_path: Path):
        out = tmp_path / "filters"
        run_fetch(lambda: make_app({"myfilter.txt": PUBLISHED}, []), ["myfilter"], out, tmp_path / ".cache")

        artifacts = DirectoryArtifactStore(out)
        sources = MemorySourceStore({"myfilter": "||ads.example.com^\n||new.example.com^"})
        build_all(sources, artifacts, now=lambda: TIMESTAMP)

        assert extract_version(artifacts.read("myfilter")) == 6


def test_filter_url():
    assert filter_url("https://example.com/filters/", "a") == "https://example.com/filters/a.txt"
    assert filter_url("https://example.com/filters", "a") == "https://example.com/filters/a.txt"


def test_too_many_failures():
    ok = FetchResult("a", success=True, changed=False)
    bad = FetchResult("b", success=False, changed=False, error="x")
    assert not too_many_failures([ok, bad])
    assert too_many_failures([ok, bad, bad])
    assert not too_many_failures([])
