"""
Listing parser: scraped markdown/HTML to a structured product record.

Each field is recovered by an ordered cascade of independent extractor
functions. An extractor takes ``(markdown, html)`` and returns a value or
None; the first usable value wins and later extractors are not run. An
extractor that raises is treated exactly like one that found nothing, so a
quirk in one page section never costs the rest of the record.

Features:
    - Title from the productTitle element, a long markdown heading, or the
      first long line of text
    - Price, rating and review count from English listing phrasing, with 0
      as the "unknown" sentinel
    - Feature bullets from the HTML bullet container, falling back to
      filtered markdown bullets
    - Description from a labeled heading block
    - Deduplicated, role-classified images (see image_extractor)

Example:
    >>> result = parse_listing(markdown, html, "B0CX23V2ZK")
    >>> if result.success:
    ...     print(result.data.title, result.data.price)
"""

import re
from typing import Any, Callable, Optional, Sequence

from selectolax.parser import HTMLParser, Node

from listing_analysis.models.schemas import (
    MAX_BULLETS,
    MAX_DESCRIPTION_LENGTH,
    UNKNOWN_TITLE,
    ParsedListing,
    ParseResult,
)
from listing_analysis.parsers.image_extractor import extract_images
from listing_analysis.utils.logger import get_logger

logger = get_logger(__name__)

Extractor = Callable[[str, str], Optional[Any]]


# =============================================================================
# Constants
# =============================================================================

MIN_TITLE_LENGTH = 50
MIN_BULLET_LENGTH = 20
MAX_BULLET_LENGTH = 500

TITLE_DENYLIST = (
    "Product summary",
    "Keyboard shortcut",
    "Skip to main content",
    "Navigation",
    "Menu",
)

TITLE_SELECTOR = "#productTitle"

BULLET_SELECTORS = (
    "#feature-bullets .a-list-item",
    "#productFactsDesktopExpander .a-list-item",
)

BULLET_EXCLUDE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^Customer Questions",
        r"^Product Details",
        r"^Technical Details",
        r"^Additional Information",
        r"^See more product details",
        r"^\d+\.\d+\s*out of",
        r"^Reviewed in",
        r"^Read more$",
        r"^Show more$",
    )
)

_HEADING_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_MARKDOWN_BULLET_RE = re.compile(r"^[*\-]\s+(.+)$", re.MULTILINE)
_DESCRIPTION_RE = re.compile(
    r"^#{0,6}[ \t]*\**[ \t]*(?:Product Description|Description|About this item)"
    r"[ \t]*\**[ \t]*:?[ \t]*\n+((?:.+\n?)+)",
    re.IGNORECASE | re.MULTILINE,
)

# Amounts allow thousands separators: 1,299.00
_AMOUNT = r"(\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})"
# Counts must not start inside a longer number
_COUNT = r"(?<![\d,.])(\d{1,3}(?:,\d{3})+|\d+)"


# =============================================================================
# Cascade helpers
# =============================================================================

def _is_usable(value: Any) -> bool:
    return value is not None and value != "" and value != []


def first_match(extractors: Sequence[Extractor], markdown: str, html: str) -> Optional[Any]:
    """Run extractors in order and return the first usable value."""
    for extractor in extractors:
        try:
            value = extractor(markdown, html)
        except Exception as e:
            logger.debug(
                "Extractor failed, treating as no match",
                extractor=getattr(extractor, "__name__", repr(extractor)),
                error=str(e),
            )
            continue
        if _is_usable(value):
            return value
    return None


def regex_extractor(
    pattern: str,
    convert: Callable[[str], Any],
    flags: int = re.IGNORECASE,
    name: Optional[str] = None,
) -> Extractor:
    """Build an extractor converting the first group of a markdown match."""
    compiled = re.compile(pattern, flags)

    def extract(markdown: str, html: str) -> Optional[Any]:
        match = compiled.search(markdown)
        return convert(match.group(1)) if match else None

    extract.__name__ = name or f"regex:{pattern}"
    return extract


def _to_amount(raw: str) -> float:
    return float(raw.replace(",", ""))


def _to_count(raw: str) -> int:
    return int(raw.replace(",", ""))


def _to_rating(raw: str) -> Optional[float]:
    value = float(raw)
    return value if 0 <= value <= 5 else None


def _is_bullet_length(text: str) -> bool:
    return MIN_BULLET_LENGTH <= len(text) < MAX_BULLET_LENGTH


def _node_text(node: Node) -> str:
    """Text of an element and its descendants, whitespace-collapsed."""
    return " ".join(node.text(deep=True, separator=" ").split())


# =============================================================================
# Field extractors
# =============================================================================

def title_from_product_title(markdown: str, html: str) -> Optional[str]:
    node = HTMLParser(html).css_first(TITLE_SELECTOR)
    return _node_text(node) if node is not None else None


def title_from_heading(markdown: str, html: str) -> Optional[str]:
    """First long '# ' heading that isn't page chrome."""
    for match in _HEADING_RE.finditer(markdown):
        heading = match.group(1).strip()
        if any(phrase in heading for phrase in TITLE_DENYLIST):
            continue
        if len(heading) > MIN_TITLE_LENGTH:
            return heading
    return None


def title_from_long_line(markdown: str, html: str) -> Optional[str]:
    for line in markdown.splitlines():
        stripped = line.strip()
        if len(stripped) > MIN_TITLE_LENGTH:
            return stripped
    return None


def bullets_from_html(markdown: str, html: str) -> list[str]:
    """List items of the feature bullet container."""
    tree = HTMLParser(html)
    bullets: list[str] = []
    for selector in BULLET_SELECTORS:
        for node in tree.css(selector):
            text = _node_text(node)
            if _is_bullet_length(text) and text not in bullets:
                bullets.append(text)
        if bullets:
            break
    return bullets[:MAX_BULLETS]


def bullets_from_markdown(markdown: str, html: str) -> list[str]:
    bullets: list[str] = []
    for match in _MARKDOWN_BULLET_RE.finditer(markdown):
        text = match.group(1).strip()
        if any(pattern.search(text) for pattern in BULLET_EXCLUDE_PATTERNS):
            continue
        if _is_bullet_length(text) and text not in bullets:
            bullets.append(text)
    return bullets[:MAX_BULLETS]


def description_from_heading(markdown: str, html: str) -> Optional[str]:
    match = _DESCRIPTION_RE.search(markdown)
    if not match:
        return None
    return match.group(1).strip()[:MAX_DESCRIPTION_LENGTH].strip()


TITLE_EXTRACTORS: tuple[Extractor, ...] = (
    title_from_product_title,
    title_from_heading,
    title_from_long_line,
)

PRICE_EXTRACTORS: tuple[Extractor, ...] = (
    regex_extractor(rf"\$\s?{_AMOUNT}", _to_amount, name="price_dollar"),
    regex_extractor(rf"Price:\s*\$\s?{_AMOUNT}", _to_amount, name="price_label"),
    regex_extractor(rf"{_AMOUNT}\s*USD", _to_amount, name="price_usd"),
)

RATING_EXTRACTORS: tuple[Extractor, ...] = (
    regex_extractor(r"(\d+\.\d+)\s*out\s*of\s*5\s*stars", _to_rating, name="rating_out_of_5"),
    regex_extractor(r"(\d+\.\d+)\s*★", _to_rating, flags=0, name="rating_glyph"),
    regex_extractor(r"(\d+\.\d+)\s*stars", _to_rating, name="rating_stars"),
)

REVIEW_COUNT_EXTRACTORS: tuple[Extractor, ...] = (
    regex_extractor(rf"{_COUNT}\s*ratings", _to_count, name="reviews_ratings"),
    regex_extractor(rf"{_COUNT}\s*reviews", _to_count, name="reviews_reviews"),
    regex_extractor(rf"{_COUNT}\s*customer\s*reviews", _to_count, name="reviews_customer"),
)

BULLET_EXTRACTORS: tuple[Extractor, ...] = (
    bullets_from_html,
    bullets_from_markdown,
)

DESCRIPTION_EXTRACTORS: tuple[Extractor, ...] = (
    description_from_heading,
)

IMAGE_EXTRACTORS: tuple[Extractor, ...] = (
    extract_images,
)


# =============================================================================
# Parser
# =============================================================================

class ListingParser:
    """
    Pure listing parser. Holds no state between calls.

    Example:
        >>> parser = ListingParser()
        >>> result = parser.parse(raw.markdown, raw.html, raw.identifier)
    """

    def parse(self, markdown: Optional[str], html: Optional[str], identifier: str) -> ParseResult:
        """
        Parse one listing.

        Never raises. Malformed-but-present input yields a success with
        sentinel values; a missing view (None) yields a failure result.
        """
        try:
            if not isinstance(markdown, str) or not isinstance(html, str):
                raise TypeError(
                    f"markdown and html must be strings, got "
                    f"{type(markdown).__name__} and {type(html).__name__}"
                )

            listing = ParsedListing(
                identifier=identifier,
                title=first_match(TITLE_EXTRACTORS, markdown, html) or UNKNOWN_TITLE,
                price=first_match(PRICE_EXTRACTORS, markdown, html) or 0.0,
                rating=first_match(RATING_EXTRACTORS, markdown, html) or 0.0,
                review_count=first_match(REVIEW_COUNT_EXTRACTORS, markdown, html) or 0,
                bullets=(first_match(BULLET_EXTRACTORS, markdown, html) or [])[:MAX_BULLETS],
                description=first_match(DESCRIPTION_EXTRACTORS, markdown, html) or "",
                images=first_match(IMAGE_EXTRACTORS, markdown, html) or [],
            )
        except Exception as e:
            logger.warning("Listing parse failed", identifier=identifier, error=str(e))
            return ParseResult.failure(str(e))

        logger.debug(
            "Listing parsed",
            identifier=listing.identifier,
            bullets=len(listing.bullets),
            images=len(listing.images),
        )
        return ParseResult.ok(listing)


_default_parser = ListingParser()


def parse_listing(markdown: Optional[str], html: Optional[str], identifier: str) -> ParseResult:
    """Module-level convenience wrapper around ``ListingParser.parse``."""
    return _default_parser.parse(markdown, html, identifier)
