import asyncio

import httpx
import pytest
from fakes import FakeProbeTransport

from f95catalog.schemas import DownloadLink
from f95catalog.services.size_resolver import (
    HttpxProbeTransport,
    SizeResolver,
    parse_content_length,
    parse_content_range,
)

GIB = 1024**3


def _link(url, provider="MEGA"):
    return DownloadLink(provider=provider, url=url)


@pytest.mark.parametrize(
    "value, expected",
    [("1048576", 1048576), (" 42 ", 42), ("0", None), ("-5", None), ("abc", None), (None, None)],
)
def test_parse_content_length(value, expected):
    assert parse_content_length(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [
        ("bytes 0-1/2147483648", 2147483648),
        ("bytes */512", 512),
        ("bytes 0-1/*", None),
        ("bytes 0-1/0", None),
        ("", None),
    ],
)
def test_parse_content_range(value, expected):
    assert parse_content_range(value) == expected


def test_aggregates_resolved_sizes_and_skips_unknown():
    links = [
        _link("https://mega.nz/file/a"),
        _link("https://pixeldrain.com/u/b", "PixelDrain"),
        _link("https://gofile.io/d/c", "GoFile"),
    ]
    transport = FakeProbeTransport(
        head={
            "https://mega.nz/file/a": {"content-length": str(GIB)},
            "https://gofile.io/d/c": {"content-type": "text/html"},
        },
        ranged={"https://pixeldrain.com/u/b": {"content-range": f"bytes 0-1/{2 * GIB}"}},
    )
    resolver = SizeResolver(transport, max_concurrency=2)

    summary = asyncio.run(resolver.resolve_sizes(links))

    assert summary.total_size_bytes == 3221225472
    assert summary.total_size_gb == "3.00"
    assert [item.url for item in summary.individual_sizes] == [links[0].url, links[1].url]
    assert summary.individual_sizes[1].size_gb == "2.00"
    assert summary.individual_sizes[1].provider == "PixelDrain"
    # HEAD without a length falls through to the range probe.
    assert "RANGE https://gofile.io/d/c" in transport.calls


def test_empty_input_is_zero_summary():
    resolver = SizeResolver(FakeProbeTransport())
    for links in ([], None):
        summary = asyncio.run(resolver.resolve_sizes(links))
        assert summary.total_size_bytes == 0
        assert summary.total_size_gb == "0.00"
        assert summary.individual_sizes == []


def test_crashing_transport_is_isolated_per_link():
    class ExplodingTransport(FakeProbeTransport):
        async def head(self, url, timeout):
            if "boom" in url:
                raise RuntimeError("unexpected")
            return {"content-length": "1024"}

    resolver = SizeResolver(ExplodingTransport())
    summary = asyncio.run(resolver.resolve_sizes([_link("https://mega.nz/boom"), _link("https://mega.nz/ok")]))

    assert summary.total_size_bytes == 1024
    assert len(summary.individual_sizes) == 1


def test_httpx_transport_falls_back_to_range_request():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.headers.get("range")))
        if request.method == "HEAD":
            return httpx.Response(405)
        assert request.headers["range"] == "bytes=0-1"
        return httpx.Response(206, headers={"Content-Range": "bytes 0-1/5368709120"}, content=b"PK")

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxProbeTransport(client=client)
        try:
            return await SizeResolver(transport).resolve_sizes([_link("https://mega.nz/file/big")])
        finally:
            await transport.aclose()

    summary = asyncio.run(scenario())

    assert summary.total_size_bytes == 5 * GIB
    assert summary.total_size_gb == "5.00"
    assert seen == [("HEAD", None), ("GET", "bytes=0-1")]


def test_httpx_transport_reads_head_length():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "HEAD"
        return httpx.Response(200, headers={"Content-Length": "734003200"})

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxProbeTransport(client=client)
        try:
            return await SizeResolver(transport).resolve_sizes([_link("https://mega.nz/file/x")])
        finally:
            await transport.aclose()

    summary = asyncio.run(scenario())
    assert summary.total_size_bytes == 734003200
    assert summary.total_size_gb == "0.68"


def test_httpx_transport_errors_resolve_to_unknown():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxProbeTransport(client=client)
        try:
            return await SizeResolver(transport).resolve_sizes([_link("https://mega.nz/file/x")])
        finally:
            await transport.aclose()

    summary = asyncio.run(scenario())
    assert summary.total_size_bytes == 0
    assert summary.individual_sizes == []
