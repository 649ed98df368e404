"""
RSS 2.0 rendering with the Google Shopping ``g`` namespace.

``XmlFeedRenderer`` is a pure function of the site and its items. The
"generating" and error envelopes are static documents built without the
renderer, so a broken renderer can never produce a malformed fallback.
"""

from __future__ import annotations

from xml.etree import ElementTree as ET
from xml.sax.saxutils import escape

from shardfeed.models import FeedItem, Site

G_NAMESPACE = "http://base.google.com/ns/1.0"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

ET.register_namespace("g", G_NAMESPACE)

# Rendered first, in this order; everything else follows alphabetically.
FIELD_ORDER = (
    "id",
    "title",
    "description",
    "link",
    "image_link",
    "additional_image_link",
    "price",
    "sale_price",
    "availability",
    "condition",
    "sku",
    "item_group_id",
    "product_type",
)


def _g(name: str) -> str:
    return f"{{{G_NAMESPACE}}}{name}"


def channel_title(site: Site) -> str:
    return f"{site.name} - Product Feed"


class XmlFeedRenderer:
    """Renders feed items to an RSS document."""

    def __init__(self, description: str = "Product feed"):
        self.description = description

    def __call__(self, site: Site, items: list[FeedItem]) -> bytes:
        rss = ET.Element("rss", {"version": "2.0"})
        channel = ET.SubElement(rss, "channel")
        ET.SubElement(channel, "title").text = channel_title(site)
        ET.SubElement(channel, "link").text = site.base_url
        ET.SubElement(channel, "description").text = self.description

        for item in items:
            self._render_item(channel, item)

        body = ET.tostring(rss, encoding="unicode")
        return f"{XML_DECLARATION}\n{body}".encode("utf-8")

    def _render_item(self, channel: ET.Element, item: FeedItem) -> None:
        node = ET.SubElement(channel, "item")
        fields = item.model_dump(exclude_none=True, exclude={"extensions"})
        fields.update(item.extensions)

        ordered = [name for name in FIELD_ORDER if name in fields]
        ordered += sorted(name for name in fields if name not in FIELD_ORDER)

        for name in ordered:
            value = fields[name]
            values = value if isinstance(value, (list, tuple)) else [value]
            for single in values:
                ET.SubElement(node, _g(name)).text = str(single)


def generating_envelope(site: Site) -> bytes:
    """Empty but valid feed served while a rebuild is in flight."""
    return (
        f"{XML_DECLARATION}"
        f'<rss version="2.0" xmlns:g="{G_NAMESPACE}">'
        "<channel>"
        f"<title>{escape(channel_title(site))}</title>"
        f"<link>{escape(site.base_url)}</link>"
        "<description>Feed is currently being generated. Please try again shortly.</description>"
        "</channel></rss>"
    ).encode("utf-8")


ERROR_ENVELOPE = (
    f"{XML_DECLARATION}"
    f'<rss version="2.0" xmlns:g="{G_NAMESPACE}">'
    "<channel><title>Feed Error</title><description>Feed generation failed</description></channel>"
    "</rss>"
).encode("utf-8")
