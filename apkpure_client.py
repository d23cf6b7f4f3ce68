"""
APKPure Client - async catalog client for search, app details and binary transfer
Every call is a plain GET with a bounded timeout; failures surface as RetrievalError
"""

import sys
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from apkpure_parser import (
    BASE_URL,
    AppDetails,
    SearchResult,
    absolutize,
    extract_app_details,
    extract_direct_download_link,
    extract_search_results,
)

MB = 1024 * 1024


class RetrievalError(Exception):
    """The catalog could not be reached, answered with an error, or had nothing usable"""


class SizeLimitExceeded(Exception):
    def __init__(self, size: int, limit: int, declared: bool = True):
        self.size = size
        self.limit = limit
        self.declared = declared
        if declared:
            super().__init__(f"File is {format_size(size)}, limit is {format_size(limit)}")
        else:
            super().__init__(f"File is larger than the {format_size(limit)} limit")


def format_size(num_bytes: Optional[int]) -> str:
    if not num_bytes or num_bytes <= 0:
        return "Unknown"
    if num_bytes >= 1024 * MB:
        return f"{num_bytes / (1024 * MB):.2f} GB"
    if num_bytes >= MB:
        return f"{num_bytes / MB:.1f} MB"
    return f"{num_bytes / 1024:.0f} KB"


@dataclass
class FileTransfer:
    """A single-use binary stream from the catalog"""
    byte_stream: AsyncIterator[bytes]
    content_length: Optional[int] = None
    content_type: Optional[str] = None
    url: str = ""
    max_bytes: Optional[int] = None
    response: Optional[httpx.Response] = field(default=None, repr=False)
    consumed: bool = False

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        if self.consumed:
            raise RuntimeError("File transfer was already consumed")
        self.consumed = True

        received = 0
        try:
            async for chunk in self.byte_stream:
                received += len(chunk)
                if self.max_bytes is not None and received > self.max_bytes:
                    raise SizeLimitExceeded(received, self.max_bytes, declared=False)
                yield chunk
        except httpx.HTTPError as e:
            raise RetrievalError(f"Transfer interrupted: {e}") from e
        finally:
            await self.aclose()

    async def aclose(self):
        if self.response is not None:
            await self.response.aclose()

    async def __aenter__(self) -> "FileTransfer":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()


class APKPureClient:
    """Catalog client: search, app details and binary resolution against APKPure"""

    USER_AGENT = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36'

    HEADERS = {
        'User-Agent': USER_AGENT,
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.9',
        'Referer': 'https://apkpure.com/',
    }

    def __init__(
        self,
        base_url: str = BASE_URL,
        search_limit: int = 5,
        page_timeout: float = 10.0,
        binary_timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        debug: bool = True,
    ):
        self.base_url = base_url.rstrip("/")
        self.search_limit = search_limit
        self.page_timeout = page_timeout
        self.binary_timeout = binary_timeout
        self.debug = debug
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            follow_redirects=True,
            headers=self.HEADERS,
        )

    def log(self, message: str, level: str = "INFO"):
        if self.debug:
            print(f"[APKPure {level}] {message}", file=sys.stderr)

    async def aclose(self):
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "APKPureClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _get_page(self, url: str, params: Optional[Dict[str, Any]] = None) -> str:
        try:
            response = await self._http.get(
                url,
                params=params,
                headers=self.HEADERS,
                timeout=self.page_timeout,
            )
        except httpx.TimeoutException as e:
            self.log(f"Timeout fetching {url}: {e}", "WARN")
            raise RetrievalError("The catalog took too long to answer. Please try again.") from e
        except httpx.HTTPError as e:
            self.log(f"GET {url} failed: {e}", "WARN")
            raise RetrievalError("Could not reach the catalog. Please try again.") from e

        if not response.is_success:
            self.log(f"GET {url} returned {response.status_code}", "WARN")
            raise RetrievalError(f"The catalog answered with HTTP {response.status_code}.")

        return response.text

    def details_url(self, package_or_url: str) -> str:
        target = package_or_url.strip()
        if target.startswith(("http://", "https://", "/")):
            url = absolutize(target, self.base_url)
        else:
            url = f"{self.base_url}/{target}"

        if urlparse(url).netloc != urlparse(self.base_url).netloc:
            self.log(f"Refusing off-catalog URL: {url}", "WARN")
            raise RetrievalError("Only catalog pages can be looked up.")
        return url

    async def search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        """Search APKPure by keyword, first page only"""
        if limit is None:
            limit = self.search_limit
        self.log(f"Searching APKPure: {query}")

        html = await self._get_page(f"{self.base_url}/search", params={"q": query, "page": 1})
        results = extract_search_results(html, limit, origin=self.base_url)

        self.log(f"Found {len(results)} apps for '{query}'")
        return results

    async def fetch_details(self, package_or_url: str) -> AppDetails:
        url = self.details_url(package_or_url)
        self.log(f"Getting app details from: {url}")

        html = await self._get_page(url)
        details = extract_app_details(html, origin=self.base_url)

        if details.found:
            self.log(f"{package_or_url}: {details.title} {details.version} -> {details.download_link}")
        else:
            self.log(f"{package_or_url}: no download page link", "WARN")
        return details

    async def resolve_binary_url(self, intermediary_url: str) -> str:
        html = await self._get_page(absolutize(intermediary_url, self.base_url))
        binary_url = extract_direct_download_link(html, origin=self.base_url)
        if not binary_url:
            self.log(f"No binary link on {intermediary_url}", "WARN")
            raise RetrievalError("Could not find a download link for this app.")
        return binary_url

    async def fetch_binary(self, intermediary_url: str, max_bytes: Optional[int] = None) -> FileTransfer:
        """
        Follow the download page to the binary and open it as a stream.
        The declared Content-Length is checked against max_bytes before any
        body bytes are read; the returned transfer keeps a running count too.
        """
        binary_url = await self.resolve_binary_url(intermediary_url)
        self.log(f"Opening binary stream: {binary_url}")

        request = self._http.build_request(
            "GET",
            binary_url,
            headers=self.HEADERS,
            timeout=httpx.Timeout(self.binary_timeout, connect=self.page_timeout),
        )
        try:
            response = await self._http.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise RetrievalError("The download timed out. Please try again.") from e
        except httpx.HTTPError as e:
            raise RetrievalError("Could not start the download. Please try again.") from e

        if not response.is_success:
            await response.aclose()
            self.log(f"Binary GET returned {response.status_code}", "WARN")
            raise RetrievalError(f"The download server answered with HTTP {response.status_code}.")

        content_type = response.headers.get("Content-Type")
        if content_type and "html" in content_type.lower():
            await response.aclose()
            self.log(f"Got HTML instead of a file from {binary_url}", "WARN")
            raise RetrievalError("The download server returned a web page instead of a file.")

        content_length = None
        raw_length = response.headers.get("Content-Length")
        if raw_length and raw_length.isdigit():
            content_length = int(raw_length)

        if max_bytes is not None and content_length is not None and content_length > max_bytes:
            await response.aclose()
            self.log(f"Declared size {format_size(content_length)} exceeds {format_size(max_bytes)}", "WARN")
            raise SizeLimitExceeded(content_length, max_bytes)

        return FileTransfer(
            byte_stream=response.aiter_bytes(chunk_size=131072),
            content_length=content_length,
            content_type=content_type,
            url=str(response.url),
            max_bytes=max_bytes,
            response=response,
        )
