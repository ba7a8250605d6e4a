"""
Local redirect resources.

A ``$redirect=name`` rule substitutes one of these payloads for the network
fetch, so pages that check for their ads or trackers keep working.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedirectResource:
    """A named payload served instead of a blocked request."""

    name: str
    body: bytes
    content_type: str


_JS_NOOP = b"(function(){})();"

_RESOURCES: dict[str, RedirectResource] = {}
_ALIASES: dict[str, str] = {}


def register_resource(
    name: str, body: bytes, content_type: str, aliases: tuple[str, ...] = ()
) -> RedirectResource:
    """Register (or replace) a redirect resource and its aliases."""
    resource = RedirectResource(name=name, body=body, content_type=content_type)
    _RESOURCES[name] = resource
    for alias in aliases:
        _ALIASES[alias] = name
    return resource


register_resource(
    "1x1.gif",
    base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"),
    "image/gif",
    aliases=("1x1-transparent.gif", "1x1.transparent.gif", "noop-1x1.gif"),
)
register_resource(
    "2x2.png",
    base64.b64decode(
        "iVBORw0KGgoAAAANSUhEUgAAAAIAAAACCAYAAABytg0kAAAAC0lEQVQI12NgAAIAAAUAAeImBZsAAAAASUVORK5CYII="
    ),
    "image/png",
    aliases=("2x2-transparent.png", "2x2.transparent.png", "noop-2x2.png"),
)
register_resource(
    "noopjs",
    _JS_NOOP,
    "application/javascript",
    aliases=(
        "noop.js",
        "noopjs.js",
        "googlesyndication_adsbygoogle.js",
        "googletagservices_gpt.js",
        "scorecardresearch_beacon.js",
        "amazon_ads.js",
    ),
)
register_resource("noopjson", b"{}", "application/json", aliases=("noop.json",))
register_resource("nooptext", b"", "text/plain", aliases=("noop.txt", "noop-vmap1.0.xml"))
register_resource(
    "noopframe",
    b"<!DOCTYPE html><html><head></head><body></body></html>",
    "text/html",
    aliases=("noop.html", "noopframe.html"),
)
register_resource(
    "google-analytics_analytics.js",
    b"(function(){var a=window.GoogleAnalyticsObject='ga';window[a]=window[a]||function(){"
    b"(window[a].q=window[a].q||[]).push(arguments)};window[a].l=+new Date;})();",
    "application/javascript",
    aliases=("google-analytics.com/analytics.js",),
)
register_resource(
    "googletagmanager_gtm.js",
    _JS_NOOP,
    "application/javascript",
    aliases=("googletagmanager.com/gtm.js",),
)


def get_redirect_resource(name: str) -> RedirectResource | None:
    """Get a redirect resource by name or alias.

    A uBlock-style priority suffix (``noopjs:10``) is ignored.
    """
    name = name.strip().split(":", 1)[0]
    name = _ALIASES.get(name, name)
    resource = _RESOURCES.get(name)
    if resource is None:
        logger.debug("Unknown redirect resource: %s", name)
    return resource


def list_resources() -> list[str]:
    """Names of all registered resources (aliases excluded)."""
    return sorted(_RESOURCES)
