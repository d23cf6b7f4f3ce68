"""Unit tests for the APKPure catalog client against a mocked transport."""

import httpx
import pytest

from apkpure_client import RetrievalError, SizeLimitExceeded, format_size
from pages import BINARY_URL, DETAIL_PAGE, INTERMEDIARY_PAGE, MB, search_item, search_page

INTERMEDIARY_PATH = "/whatsapp-messenger/com.whatsapp/download"
INTERMEDIARY_URL = "https://apkpure.com" + INTERMEDIARY_PATH


def serve_download(catalog, binary_response):
    catalog.add("apkpure.com", INTERMEDIARY_PATH, httpx.Response(200, text=INTERMEDIARY_PAGE))
    catalog.add("d.apkpure.com", "/b/APK/com.whatsapp", binary_response)


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_query_and_cap(self, catalog, make_client):
        catalog.add("apkpure.com", "/search", httpx.Response(200, text=search_page(*(search_item(i) for i in range(8)))))
        client = make_client(search_limit=5)

        results = await client.search("whatsapp")

        assert len(results) == 5
        request = catalog.requests[0]
        assert request.method == "GET"
        assert request.url.params["q"] == "whatsapp"
        assert request.url.params["page"] == "1"
        assert request.headers["User-Agent"].startswith("Mozilla/5.0")

    @pytest.mark.asyncio
    async def test_explicit_limit_overrides_default(self, catalog, make_client):
        catalog.add("apkpure.com", "/search", httpx.Response(200, text=search_page(*(search_item(i) for i in range(8)))))
        client = make_client(search_limit=5)

        assert len(await client.search("whatsapp", limit=8)) == 8

    @pytest.mark.asyncio
    async def test_zero_limit_is_not_the_default(self, catalog, make_client):
        catalog.add("apkpure.com", "/search", httpx.Response(200, text=search_page(*(search_item(i) for i in range(3)))))

        assert await make_client().search("whatsapp", limit=0) == []

    @pytest.mark.asyncio
    async def test_non_2xx_is_retrieval_error(self, catalog, make_client):
        catalog.add("apkpure.com", "/search", httpx.Response(503, text="busy"))

        with pytest.raises(RetrievalError, match="503"):
            await make_client().search("whatsapp")

    @pytest.mark.asyncio
    async def test_network_error_is_retrieval_error(self, catalog, make_client):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        catalog.add("apkpure.com", "/search", boom)

        with pytest.raises(RetrievalError):
            await make_client().search("whatsapp")

    @pytest.mark.asyncio
    async def test_timeout_is_retrieval_error(self, catalog, make_client):
        def slow(request):
            raise httpx.ReadTimeout("too slow", request=request)

        catalog.add("apkpure.com", "/search", slow)

        with pytest.raises(RetrievalError, match="too long"):
            await make_client().search("whatsapp")


class TestFetchDetails:
    @pytest.mark.asyncio
    async def test_package_detail_page(self, catalog, make_client):
        catalog.add("apkpure.com", "/com.whatsapp", httpx.Response(200, text=DETAIL_PAGE))

        details = await make_client().fetch_details("com.whatsapp")

        assert details.found
        assert details.title == "WhatsApp Messenger"
        assert details.download_link == INTERMEDIARY_URL
        assert len(catalog.requests) == 1

    @pytest.mark.asyncio
    async def test_not_found_page_is_retrieval_error(self, catalog, make_client):
        with pytest.raises(RetrievalError, match="404"):
            await make_client().fetch_details("com.missing.app")

    def test_details_url(self, make_client):
        client = make_client()

        assert client.details_url("com.whatsapp") == "https://apkpure.com/com.whatsapp"
        assert client.details_url("/whatsapp/com.whatsapp") == "https://apkpure.com/whatsapp/com.whatsapp"
        assert client.details_url("https://apkpure.com/x/y") == "https://apkpure.com/x/y"

    @pytest.mark.parametrize("target", [
        "http://169.254.169.254/latest/meta-data",
        "https://evil.example.org/com.whatsapp",
        "//evil.example.org/app",
    ])
    def test_details_url_stays_on_catalog(self, make_client, target):
        with pytest.raises(RetrievalError, match="catalog"):
            make_client().details_url(target)

    @pytest.mark.asyncio
    async def test_off_catalog_lookup_sends_nothing(self, catalog, make_client):
        with pytest.raises(RetrievalError):
            await make_client().fetch_details("http://169.254.169.254/latest/meta-data")

        assert catalog.requests == []


class TestFetchBinary:
    @pytest.mark.asyncio
    async def test_streams_binary_after_two_hops(self, catalog, make_client):
        payload = b"PK\x03\x04" + b"0" * 2048
        serve_download(catalog, httpx.Response(
            200,
            headers={"Content-Type": "application/vnd.android.package-archive"},
            content=payload,
        ))

        transfer = await make_client().fetch_binary(INTERMEDIARY_URL, max_bytes=50 * MB)
        async with transfer:
            received = b"".join([chunk async for chunk in transfer.iter_chunks()])

        assert received == payload
        assert transfer.content_length == len(payload)
        assert transfer.url == BINARY_URL
        assert [r.url.host for r in catalog.requests] == ["apkpure.com", "d.apkpure.com"]

    @pytest.mark.asyncio
    async def test_declared_size_over_limit_fails_before_body(self, catalog, make_client):
        body_read = []

        async def body():
            body_read.append(True)
            yield b"x" * 1024

        serve_download(catalog, httpx.Response(
            200,
            headers={"Content-Length": str(60 * MB), "Content-Type": "application/octet-stream"},
            content=body(),
        ))

        with pytest.raises(SizeLimitExceeded) as excinfo:
            await make_client().fetch_binary(INTERMEDIARY_URL, max_bytes=50 * MB)

        assert excinfo.value.size == 60 * MB
        assert excinfo.value.limit == 50 * MB
        assert excinfo.value.declared is True
        assert body_read == []

    @pytest.mark.asyncio
    async def test_running_byte_count_cutoff(self, catalog, make_client):
        async def body():
            for _ in range(3):
                yield b"y" * 8

        serve_download(catalog, httpx.Response(200, headers={"Content-Type": "application/octet-stream"}, content=body()))

        transfer = await make_client().fetch_binary(INTERMEDIARY_URL, max_bytes=10)
        assert transfer.content_length is None

        with pytest.raises(SizeLimitExceeded) as excinfo:
            async for _chunk in transfer.iter_chunks():
                pass

        assert excinfo.value.declared is False
        assert excinfo.value.limit == 10

    @pytest.mark.asyncio
    async def test_interrupted_transfer_is_retrieval_error(self, catalog, make_client):
        async def body():
            yield b"z" * 100
            raise httpx.ReadError("connection reset")

        serve_download(catalog, httpx.Response(200, headers={"Content-Type": "application/octet-stream"}, content=body()))

        transfer = await make_client().fetch_binary(INTERMEDIARY_URL, max_bytes=50 * MB)
        received = []
        with pytest.raises(RetrievalError, match="interrupted"):
            async for chunk in transfer.iter_chunks():
                received.append(chunk)

        assert b"".join(received) == b"z" * 100

    @pytest.mark.asyncio
    async def test_transfer_is_single_use(self, catalog, make_client):
        serve_download(catalog, httpx.Response(200, headers={"Content-Type": "application/octet-stream"}, content=b"abc"))

        transfer = await make_client().fetch_binary(INTERMEDIARY_URL)
        async for _chunk in transfer.iter_chunks():
            pass

        with pytest.raises(RuntimeError):
            async for _chunk in transfer.iter_chunks():
                pass

    @pytest.mark.asyncio
    async def test_missing_binary_link(self, catalog, make_client):
        catalog.add("apkpure.com", INTERMEDIARY_PATH, httpx.Response(200, text="<html><body>Expired</body></html>"))

        with pytest.raises(RetrievalError, match="download link"):
            await make_client().fetch_binary(INTERMEDIARY_URL)

        assert len(catalog.requests) == 1

    @pytest.mark.asyncio
    async def test_html_instead_of_file(self, catalog, make_client):
        serve_download(catalog, httpx.Response(200, headers={"Content-Type": "text/html; charset=utf-8"}, text="<html></html>"))

        with pytest.raises(RetrievalError, match="web page"):
            await make_client().fetch_binary(INTERMEDIARY_URL)

    @pytest.mark.asyncio
    async def test_binary_error_status(self, catalog, make_client):
        serve_download(catalog, httpx.Response(403, text="forbidden"))

        with pytest.raises(RetrievalError, match="403"):
            await make_client().fetch_binary(INTERMEDIARY_URL)


def test_format_size():
    assert format_size(None) == "Unknown"
    assert format_size(0) == "Unknown"
    assert format_size(512 * 1024) == "512 KB"
    assert format_size(60 * MB) == "60.0 MB"
    assert format_size(2 * 1024 * MB) == "2.00 GB"
