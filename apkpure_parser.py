"""
APKPure page parsers - pull search results, app details and the direct binary
link out of APKPure markup using ordered selector strategies
"""

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

BASE_URL = "https://apkpure.com"
UNKNOWN = "Unknown"

# (name, css) pairs, tried in order until one yields something non-empty
Strategy = Tuple[str, str]

SEARCH_CONTAINERS = ".search-item, .gd, .apk-item, #search-res li, .search-res li"

SEARCH_TITLE_STRATEGIES: Tuple[Strategy, ...] = (
    ("p1", ".p1"),
    ("title", ".title"),
    ("title-like", "h2[class*=title], h3[class*=title], [class*=name]"),
)

SEARCH_LINK_STRATEGIES: Tuple[Strategy, ...] = (
    ("dd-anchor", "a.dd[href]"),
    ("first-anchor", "a[href]"),
)

DETAIL_TITLE_STRATEGIES: Tuple[Strategy, ...] = (
    ("title-like", ".title-like h1, .title_link h1"),
    ("h1", "h1"),
    ("og-title", "meta[property='og:title']"),
)

DETAIL_VERSION_STRATEGIES: Tuple[Strategy, ...] = (
    ("details-sdk", ".details-sdk span"),
    ("itemprop", "[itemprop=softwareVersion]"),
    ("version", ".version-name, span.version, .ver"),
)

DETAIL_SIZE_STRATEGIES: Tuple[Strategy, ...] = (
    ("details-size", ".details-size"),
    ("fsize", ".fsize span, .fsize"),
    ("size", "span.size, .file-size"),
)

DETAIL_DATE_STRATEGIES: Tuple[Strategy, ...] = (
    ("itemprop", "[itemprop=datePublished]"),
    ("date", ".date, .update-on"),
)

DETAIL_DOWNLOADS_STRATEGIES: Tuple[Strategy, ...] = (
    ("details-download", ".details-download, .download-count"),
    ("itemprop", "[itemprop=interactionCount]"),
)

INTERMEDIARY_LINK_STRATEGIES: Tuple[Strategy, ...] = (
    ("download-path", "a[href$='/download'], a[href*='/download/'], a[href*='/download?']"),
    ("download-button", "a.download-start-btn[href], a.download-btn[href], a.da[href], a#download_button[href]"),
)

BINARY_PATH_PATTERN = re.compile(
    r"(/b/X?APKS?/|d\.apkpure\.com|download\.apkpure\.com|\.x?apks?(\?|$))", re.I
)

BINARY_ATTRIBUTE_STRATEGIES: Tuple[Tuple[str, str, str], ...] = (
    ("download-link-id", "a#download_link[href]", "href"),
    ("file-type-attr", "a[data-dt-file-type][href]", "href"),
    ("iframe", "iframe#iframe_download[src]", "src"),
)

META_REFRESH_URL = re.compile(r"url=(.+)", re.I)


@dataclass
class SearchResult:
    title: str
    package: str
    link: str
    icon: Optional[str] = None


@dataclass
class AppDetails:
    title: str = UNKNOWN
    version: str = UNKNOWN
    size: str = UNKNOWN
    update_date: str = UNKNOWN
    download_count: str = UNKNOWN
    download_link: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.download_link is not None


def absolutize(href: str, origin: str = BASE_URL) -> str:
    """Resolve a relative or protocol-relative link against the catalog origin"""
    href = href.strip()
    if href.startswith(("http://", "https://")):
        return href
    return urljoin(origin.rstrip("/") + "/", href)


def package_from_link(link: str) -> str:
    path = urlparse(link).path.rstrip("/")
    return path.rsplit("/", 1)[-1]


def _text(node: Optional[Tag]) -> str:
    if node is None:
        return ""
    if node.name == "meta":
        return str(node.get("content", "")).strip()
    return node.get_text(" ", strip=True)


def _first_text(scope: Tag, strategies: Iterable[Strategy]) -> str:
    for _name, css in strategies:
        for node in scope.select(css):
            text = _text(node)
            if text:
                return text
    return ""


def _first_href(scope: Tag, strategies: Iterable[Strategy]) -> str:
    for _name, css in strategies:
        for node in scope.select(css):
            href = str(node.get("href", "")).strip()
            if href and not href.startswith(("#", "javascript:")):
                return href
    return ""


def _icon(scope: Tag) -> str:
    img = scope.find("img")
    if not img:
        return ""
    return str(img.get("data-original", "") or img.get("src", "") or img.get("data-src", "")).strip()


def extract_search_results(html: str, max_results: int, origin: str = BASE_URL) -> List[SearchResult]:
    """
    Walk result containers in document order and collect at most max_results
    entries. Containers without a title or a link are skipped and do not count.
    """
    soup = BeautifulSoup(html, "html.parser")
    results: List[SearchResult] = []
    seen_links = set()

    for container in soup.select(SEARCH_CONTAINERS):
        if len(results) >= max_results:
            break

        title = _first_text(container, SEARCH_TITLE_STRATEGIES)
        href = _first_href(container, SEARCH_LINK_STRATEGIES)
        if not href and container.name == "a":
            href = str(container.get("href", "")).strip()

        if not title or not href:
            continue

        link = absolutize(href, origin)
        if link in seen_links:
            continue
        seen_links.add(link)

        icon = _icon(container)
        results.append(SearchResult(
            title=title,
            package=package_from_link(link),
            link=link,
            icon=absolutize(icon, origin) if icon else None,
        ))

    return results


def _clean_title(title: str) -> str:
    title = re.sub(r"\s*[-|]\s*APKPure(\.com)?\s*$", "", title, flags=re.I)
    title = re.sub(r"^Download\s+", "", title, flags=re.I)
    title = re.sub(r"\s+(X?APK)(\s+.*)?$", "", title, flags=re.I)
    return title.strip()


def extract_app_details(html: str, origin: str = BASE_URL) -> AppDetails:
    """Parse an app detail page. Absent fields fall back to "Unknown"."""
    soup = BeautifulSoup(html, "html.parser")

    title = _first_text(soup, DETAIL_TITLE_STRATEGIES)
    if not title and soup.title:
        title = _clean_title(soup.title.get_text(strip=True))

    version = _first_text(soup, DETAIL_VERSION_STRATEGIES)
    version = re.sub(r"^Version:?\s*", "", version, flags=re.I)

    href = _first_href(soup, INTERMEDIARY_LINK_STRATEGIES)

    return AppDetails(
        title=title or UNKNOWN,
        version=version or UNKNOWN,
        size=_first_text(soup, DETAIL_SIZE_STRATEGIES) or UNKNOWN,
        update_date=_first_text(soup, DETAIL_DATE_STRATEGIES) or UNKNOWN,
        download_count=_first_text(soup, DETAIL_DOWNLOADS_STRATEGIES) or UNKNOWN,
        download_link=absolutize(href, origin) if href else None,
    )


def extract_direct_download_link(html: str, origin: str = BASE_URL) -> Optional[str]:
    """
    Find the binary link on a download intermediary page.
    Returns None when the page has no recognizable link.
    """
    soup = BeautifulSoup(html, "html.parser")

    for a_tag in soup.find_all("a", href=True):
        href = str(a_tag.get("href", "")).strip()
        if href and BINARY_PATH_PATTERN.search(href):
            return absolutize(href, origin)

    for _name, css, attr in BINARY_ATTRIBUTE_STRATEGIES:
        node = soup.select_one(css)
        if node:
            value = str(node.get(attr, "")).strip()
            if value:
                return absolutize(value, origin)

    meta_refresh = soup.find("meta", attrs={"http-equiv": re.compile(r"^refresh$", re.I)})
    if meta_refresh:
        match = META_REFRESH_URL.search(str(meta_refresh.get("content", "")))
        if match:
            return absolutize(match.group(1).strip().strip("'\""), origin)

    return None
