"""Shared fixtures: a local aiohttp server playing the monitored endpoints."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer


@dataclass
class LocalEndpoints:
    server: TestServer
    requests: list[dict] = field(default_factory=list)

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))


def _build_app(seen: list[dict]) -> web.Application:
    async def ok(request: web.Request) -> web.Response:
        return web.Response(text="ok")

    async def no_content(request: web.Request) -> web.Response:
        return web.Response(status=204)

    async def missing(request: web.Request) -> web.Response:
        return web.Response(status=404, text="Not Found")

    async def slow(request: web.Request) -> web.Response:
        await asyncio.sleep(1.0)
        return web.Response(text="too late")

    async def echo(request: web.Request) -> web.Response:
        seen.append(
            {
                "method": request.method,
                "headers": request.headers.copy(),
                "body": await request.text(),
            }
        )
        return web.Response(text="echo")

    app = web.Application()
    app.router.add_get("/ok", ok)
    app.router.add_get("/other", ok)
    app.router.add_get("/no-content", no_content)
    app.router.add_get("/missing", missing)
    app.router.add_get("/slow", slow)
    app.router.add_route("*", "/echo", echo)
    return app


@pytest_asyncio.fixture
async def local_endpoints():
    seen: list[dict] = []
    async with TestServer(_build_app(seen), host="127.0.0.1") as server:
        yield LocalEndpoints(server=server, requests=seen)


@pytest.fixture
def write_config(tmp_path: Path):
    def _write(text: str) -> str:
        path = tmp_path / "endpoints.yaml"
        path.write_text(text, encoding="utf-8")
        return str(path)

    return _write
