"""
Product image discovery for scraped listing pages.

Every listing image is served from one asset path,
``https://m.media-amazon.com/images/I/<base-id><suffix>``, where the base id
names the asset and the suffix carries resolution tokens and the file
extension. The same asset shows up many times per page (thumbnails, zoom
variants, lazy-load JSON), so images are deduplicated on the base id.

Rules:
    - HTML is scanned before markdown; first occurrence of a base id wins.
    - Script, stylesheet and font bundles served from the same path are
      rejected.
    - The main image is the ``landingImage`` element when present, else the
      first discovered image.
    - Images inside A+ content containers are classified as enrichment.
    - Every URL is rewritten to the ``_AC_SL1500_`` variant.
"""

import re
from typing import Optional

from selectolax.parser import HTMLParser

from listing_analysis.models.schemas import ImageRef, ImageRole

IMAGE_HOST = "https://m.media-amazon.com/images/I/"
HIGH_RES_TOKEN = "_AC_SL1500_"
DEFAULT_EXTENSION = "jpg"

IMAGE_URL_PATTERN = re.compile(
    r"https?://m\.media-amazon\.com/images/I/([A-Za-z0-9+_-]+)((?:\.[A-Za-z0-9_,%+|-]*)*)"
)

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp"})
NON_IMAGE_EXTENSIONS = frozenset({"js", "css", "svg", "mp4", "m3u8", "json", "woff", "woff2", "ico"})

MAIN_IMAGE_SELECTOR = "#landingImage"
# A+ (enhanced brand content) containers
ENRICHMENT_SELECTOR = '[id^="aplus"], .aplus-v2, .aplus-module'


def _extension(suffix: str) -> Optional[str]:
    """Last dotted segment of the suffix, lowercased, if it looks like an extension."""
    if not suffix:
        return None
    last = suffix.rsplit(".", 1)[-1].lower()
    if last in IMAGE_EXTENSIONS or last in NON_IMAGE_EXTENSIONS:
        return last
    return None


def is_image_candidate(suffix: str) -> bool:
    """Reject combined resource bundles (``._RC|...``) and non-image assets."""
    if "|" in suffix:
        return False
    return _extension(suffix) not in NON_IMAGE_EXTENSIONS


def to_high_res_url(base_id: str, suffix: str = "") -> str:
    """
    Canonical high-resolution URL for an asset.

    Any existing resolution token is replaced; truncated or extension-less
    URLs get the default extension.

    Example:
        >>> to_high_res_url("71Qk2xYz9UL", "._AC_US40_.jpg")
        'https://m.media-amazon.com/images/I/71Qk2xYz9UL._AC_SL1500_.jpg'
        >>> to_high_res_url("71Qk2xYz9UL")
        'https://m.media-amazon.com/images/I/71Qk2xYz9UL._AC_SL1500_.jpg'
    """
    extension = _extension(suffix) or DEFAULT_EXTENSION
    return f"{IMAGE_HOST}{base_id}.{HIGH_RES_TOKEN}.{extension}"


def discover_images(markdown: str, html: str) -> dict[str, str]:
    """Insertion-ordered map of base id to suffix across both views."""
    discovered: dict[str, str] = {}
    for view in (html, markdown):
        for match in IMAGE_URL_PATTERN.finditer(view):
            base_id, suffix = match.group(1), match.group(2)
            if base_id in discovered or not is_image_candidate(suffix):
                continue
            discovered[base_id] = suffix
    return discovered


def _image_ids(markup: str) -> list[str]:
    return [
        match.group(1)
        for match in IMAGE_URL_PATTERN.finditer(markup)
        if is_image_candidate(match.group(2))
    ]


def find_main_image_id(html: str) -> Optional[str]:
    """Base id referenced by the landing image element, if any."""
    node = HTMLParser(html).css_first(MAIN_IMAGE_SELECTOR)
    if node is None:
        return None
    ids = _image_ids(node.html or "")
    return ids[0] if ids else None


def find_enrichment_ids(html: str) -> set[str]:
    """Base ids that appear inside A+ content containers."""
    ids: set[str] = set()
    for node in HTMLParser(html).css(ENRICHMENT_SELECTOR):
        ids.update(_image_ids(node.html or ""))
    return ids


def extract_images(markdown: str, html: str) -> list[ImageRef]:
    """Deduplicated, role-classified, high-resolution image list. No cap."""
    discovered = discover_images(markdown, html)
    if not discovered:
        return []

    main_id = find_main_image_id(html)
    if main_id not in discovered:
        main_id = next(iter(discovered))
    enrichment_ids = find_enrichment_ids(html)

    images = []
    for position, (base_id, suffix) in enumerate(discovered.items(), start=1):
        if base_id == main_id:
            role = ImageRole.MAIN
        elif base_id in enrichment_ids:
            role = ImageRole.ENRICHMENT
        else:
            role = ImageRole.SECONDARY
        images.append(
            ImageRef(url=to_high_res_url(base_id, suffix), role=role, position=position)
        )
    return images
