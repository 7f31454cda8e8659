"""Fetch vendor documents and normalize them into comparison-ready text.

Normalization removes everything that changes between two fetches of an
unchanged policy: layout chrome, tracking pixels, and volatile tokens such as
session IDs or timestamps.
"""

import logging
import re

import httpx
from bs4 import BeautifulSoup, Tag

from stackdrift.config import Settings

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Network failure, timeout or non-2xx response while fetching a document."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(f"Failed to fetch {url}: {message}")
        self.url = url
        self.status_code = status_code


# Structural elements that never carry policy text
STRUCTURAL_TAGS = ["script", "style", "nav", "footer", "header", "aside"]

# Content containers, most specific first; body is the fallback
CONTENT_SELECTORS = ["main", "article", ".content", ".legal", ".terms", "body"]

TRACKING_MARKERS = ("tracking", "beacon", "pixel")

UUID_PATTERN = re.compile(
    r"\b[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\b", re.I
)
ISO_TIMESTAMP_PATTERN = re.compile(
    r"\b\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?"
)
LONG_HEX_PATTERN = re.compile(r"\b[0-9a-f]{20,}\b", re.I)  # session/CSRF tokens
QUERY_STRING_PATTERN = re.compile(r"\?[^\s?#=&]+=[^\s&#]*(?:&[^\s&#=]+=[^\s&#]*){2,}")

_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|"
    r"aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
)
_DATE = (
    rf"(?:{_MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}"
    rf"|\d{{1,2}}\s+{_MONTH}\s+\d{{4}}"
    r"|\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}/\d{1,2}/\d{2,4})"
)
EFFECTIVE_DATE_PATTERN = re.compile(
    r"(?:effective(?:\s+date)?|last\s+(?:updated|modified|revised)(?:\s+on)?)"
    rf"\s*(?:as\s+of|on)?\s*[:\-–]?\s*({_DATE})",
    re.I,
)


def strip_volatile_tokens(text: str) -> str:
    """Remove tokens that change on every fetch and collapse whitespace."""
    text = UUID_PATTERN.sub("", text)
    text = ISO_TIMESTAMP_PATTERN.sub("", text)
    text = LONG_HEX_PATTERN.sub("", text)
    text = QUERY_STRING_PATTERN.sub("", text)
    return re.sub(r"\s+", " ", text).strip()


def _is_tracking_element(element: Tag) -> bool:
    """Check for 1x1 images, zero-sized/hidden iframes and tracking markers."""
    attrs = element.attrs or {}

    identity = " ".join(
        [
            str(attrs.get("id", "")),
            " ".join(attrs.get("class", []) or []),
            str(attrs.get("src", "")),
        ]
    ).lower()
    if any(marker in identity for marker in TRACKING_MARKERS):
        return True

    width = str(attrs.get("width", "")).strip()
    height = str(attrs.get("height", "")).strip()
    if element.name == "img" and width == "1" and height == "1":
        return True

    if element.name == "iframe":
        style = str(attrs.get("style", "")).replace(" ", "").lower()
        if width == "0" or height == "0":
            return True
        if "hidden" in attrs or "display:none" in style or "visibility:hidden" in style:
            return True

    return False


def normalize_html(html: str) -> str:
    """Extract normalized plain text from a legal document's HTML."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in STRUCTURAL_TAGS:
        for element in soup.find_all(tag):
            element.decompose()

    for element in soup.find_all(True):
        # Children of an already removed tracking wrapper are gone too
        if element.decomposed:
            continue
        if _is_tracking_element(element):
            element.decompose()

    container = None
    for selector in CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break

    text = (container or soup).get_text(separator=" ", strip=True)
    return strip_volatile_tokens(text)


def extract_effective_date(text: str) -> str | None:
    """Find an "effective" / "last updated" date in document text, if any."""
    match = EFFECTIVE_DATE_PATTERN.search(text)
    if not match:
        return None
    return match.group(1).strip()


class ContentFetcher:
    """Fetch a document URL and return its normalized text."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None):
        self.timeout = settings.fetch_timeout_seconds
        self.headers = {
            "User-Agent": settings.fetch_user_agent,
            # Pin the language so vendors can't rotate translations between fetches
            "Accept-Language": settings.fetch_accept_language,
            "Accept": "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8",
        }
        self._client = client

    def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return self._client.get(url, headers=self.headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            return client.get(url, headers=self.headers)

    def fetch_html(self, url: str) -> str:
        """Fetch raw HTML, raising FetchError on any transport or HTTP failure."""
        try:
            response = self._get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.warning(f"Fetch of {url} returned HTTP {status_code}")
            raise FetchError(url, f"HTTP {status_code}", status_code=status_code) from e
        except httpx.TimeoutException as e:
            logger.warning(f"Fetch of {url} timed out after {self.timeout}s")
            raise FetchError(url, "timeout") from e
        except httpx.RequestError as e:
            logger.warning(f"Fetch of {url} failed: {e}")
            raise FetchError(url, str(e) or type(e).__name__) from e

        return response.text

    def fetch(self, url: str) -> str:
        """Fetch a document and return comparison-ready plain text."""
        html = self.fetch_html(url)
        content = normalize_html(html)
        logger.debug(f"Fetched {url}: {len(html)} bytes HTML -> {len(content)} chars text")
        return content
