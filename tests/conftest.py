"""Shared test fixtures for artipack."""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest
import yaml

from artipack.config import Settings
from artipack.core.hasher import sha256_hex
from artipack.core.pipeline import BuildPipeline
from artipack.core.tool_cache import ToolCache
from artipack.core.tool_fetcher import ToolFetcher

TOOL_BASE_URL = "https://tools.example.test"


class DroppedConnection:
    """A reply that sends *body* up to byte *after*, then resets the connection."""

    def __init__(self, body: bytes, after: int) -> None:
        self.body = body
        self.after = after


class _ResettingStream(httpx.SyncByteStream):
    def __init__(self, chunk: bytes, request: httpx.Request) -> None:
        self._chunk = chunk
        self._request = request

    def __iter__(self) -> Iterator[bytes]:
        if self._chunk:
            yield self._chunk
        raise httpx.ReadError("connection reset by peer", request=self._request)


class FakeToolServer:
    """In-process HTTP server for tool downloads, built on httpx.MockTransport.

    Each URL is served a sequence of responses; the last one repeats. A
    response is ``bytes`` (200 with that body), an ``int`` (bare status
    code), a ``DroppedConnection`` or an httpx exception class (raised).
    Byte bodies honour ``Range: bytes=<n>-`` with a 206 unless
    ``honor_ranges`` is off.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[Any]] = {}
        self.calls: dict[str, int] = defaultdict(int)
        self.ranges: dict[str, list[str | None]] = defaultdict(list)
        self.sleeps: list[float] = []
        self.active = 0
        self.max_active = 0
        self.delay = 0.0
        self.honor_ranges = True
        self._lock = threading.Lock()

    def serve(self, url: str, *responses: Any) -> None:
        self.routes[url] = list(responses)

    @staticmethod
    def dropped(body: bytes, after: int) -> DroppedConnection:
        return DroppedConnection(body, after)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        with self._lock:
            self.calls[url] += 1
            self.ranges[url].append(request.headers.get("Range"))
            attempt = self.calls[url]
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            responses = self.routes.get(url)
            if not responses:
                return httpx.Response(404)
            item = responses[min(attempt, len(responses)) - 1]
            if isinstance(item, type) and issubclass(item, Exception):
                raise item("simulated network failure", request=request)
            if isinstance(item, int):
                return httpx.Response(item)
            return self._body(request, item)
        finally:
            with self._lock:
                self.active -= 1

    def _body(self, request: httpx.Request, item: bytes | DroppedConnection) -> httpx.Response:
        body = item.body if isinstance(item, DroppedConnection) else item
        offset = 0
        requested = request.headers.get("Range", "")
        if self.honor_ranges and requested.startswith("bytes="):
            offset = int(requested[len("bytes="):].split("-")[0])
            if offset >= len(body):
                return httpx.Response(416)

        status, headers = 200, {}
        if offset:
            status = 206
            headers["Content-Range"] = f"bytes {offset}-{len(body) - 1}/{len(body)}"
        if isinstance(item, DroppedConnection):
            stream = _ResettingStream(body[offset:item.after], request)
            return httpx.Response(status, headers=headers, stream=stream)
        return httpx.Response(status, headers=headers, content=body[offset:])

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def tool_cache(tmp_dir: Path) -> ToolCache:
    """Provide a fresh ToolCache in a temp directory."""
    return ToolCache(tmp_dir / "cache")


@pytest.fixture
def tool_server() -> FakeToolServer:
    return FakeToolServer()


@pytest.fixture
def fetcher(tool_cache: ToolCache, tool_server: FakeToolServer) -> ToolFetcher:
    """A ToolFetcher wired to the fake server, recording backoff sleeps."""
    return ToolFetcher(
        tool_cache,
        max_workers=2,
        retry_attempts=3,
        backoff_base=0.5,
        backoff_max=8.0,
        client=tool_server.client(),
        sleep=tool_server.sleeps.append,
    )


@pytest.fixture
def pipeline(tmp_dir: Path, tool_cache: ToolCache, fetcher: ToolFetcher) -> BuildPipeline:
    settings = Settings(cache_dir=tmp_dir / "cache")
    return BuildPipeline(settings, cache=tool_cache, fetcher=fetcher)


# ---------------------------------------------------------------------------
# Definition factories: shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_tool() -> Callable[..., tuple[dict[str, Any], bytes]]:
    """Factory fixture: a tool declaration and the bytes it should hash to."""

    def _factory(
        name: str,
        content: bytes | None = None,
        **overrides: Any,
    ) -> tuple[dict[str, Any], bytes]:
        body = content if content is not None else f"{name} binary v1".encode()
        spec: dict[str, Any] = {
            "name": name,
            "url": f"{TOOL_BASE_URL}/{name}.exe",
            "expected_hash": sha256_hex(body),
        }
        spec.update(overrides)
        return spec, body

    return _factory


@pytest.fixture
def artifact_document() -> Callable[..., str]:
    """Factory fixture: YAML text of an artifact definition."""

    def _factory(
        name: str,
        tools: Iterable[dict[str, Any]] = (),
        *,
        kind: str = "CLIENT",
        parameters: list[dict[str, Any]] | None = None,
        description: str | None = None,
    ) -> str:
        document: dict[str, Any] = {
            "name": name,
            "description": description if description is not None else f"Collect {name}",
            "type": kind,
            "sources": [{"query": f"SELECT * FROM info() WHERE artifact = '{name}'"}],
        }
        if parameters:
            document["parameters"] = parameters
        tools = list(tools)
        if tools:
            document["tools"] = tools
        return yaml.safe_dump(document, sort_keys=False)

    return _factory


@pytest.fixture
def definitions_dir(tmp_dir: Path) -> Path:
    path = tmp_dir / "definitions"
    path.mkdir()
    return path


@pytest.fixture
def write_definition(
    definitions_dir: Path, artifact_document: Callable[..., str]
) -> Callable[..., Path]:
    """Factory fixture: write an artifact definition file and return its path."""

    def _factory(name: str, tools: Iterable[dict[str, Any]] = (), **kwargs: Any) -> Path:
        path = definitions_dir / f"{name}.yaml"
        path.write_text(artifact_document(name, tools, **kwargs), encoding="utf-8")
        return path

    return _factory


@pytest.fixture
def publish(
    make_tool: Callable[..., tuple[dict[str, Any], bytes]],
    tool_server: FakeToolServer,
) -> Callable[..., dict[str, Any]]:
    """Factory fixture: declare a tool and serve its bytes from the fake server."""

    def _factory(name: str, content: bytes | None = None, **overrides: Any) -> dict[str, Any]:
        spec, body = make_tool(name, content, **overrides)
        tool_server.serve(spec["url"], body)
        return spec

    return _factory
