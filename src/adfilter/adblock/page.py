"""
Playwright integration for the adblock engine.

Routes every page request through the engine (block, redirect, or strip
query parameters) and injects element-hiding CSS on navigation. This is the
request and style pipeline: it is the only place that increments the
engine's blocked counters.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .cosmetic import build_hiding_css, reconcile_selectors
from .matcher import normalize_domain
from .resources import get_redirect_resource
from .rules import RequestType

if TYPE_CHECKING:
    from playwright.async_api import Frame, Page, Route

    from .engine import AdblockEngine

logger = logging.getLogger(__name__)

# Map Playwright resource types to our RequestType enum
PLAYWRIGHT_TYPE_MAP = {
    "document": RequestType.DOCUMENT,
    "stylesheet": RequestType.STYLESHEET,
    "image": RequestType.IMAGE,
    "media": RequestType.MEDIA,
    "font": RequestType.FONT,
    "script": RequestType.SCRIPT,
    "texttrack": RequestType.OTHER,
    "xhr": RequestType.XMLHTTPREQUEST,
    "fetch": RequestType.XMLHTTPREQUEST,
    "eventsource": RequestType.OTHER,
    "websocket": RequestType.WEBSOCKET,
    "manifest": RequestType.OTHER,
    "ping": RequestType.PING,
    "other": RequestType.OTHER,
}


def strip_query_params(url: str, params: list[str]) -> str:
    """Remove the named query parameters from a URL.

    The URL is returned unchanged if none of the parameters are present.
    """
    if not params:
        return url

    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(k, v) for k, v in query if k not in params]
    if len(kept) == len(query):
        return url

    return urlunsplit(parts._replace(query=urlencode(kept)))


class PageFilter:
    """Applies an AdblockEngine to Playwright pages."""

    def __init__(self, engine: AdblockEngine) -> None:
        self._engine = engine

        # Statistics
        self._requests_checked = 0
        self._requests_redirected = 0
        self._requests_stripped = 0

    async def setup_page(self, page: Page) -> None:
        """Setup adblock filtering for a page.

        This installs route handlers for network blocking and sets up
        event handlers for cosmetic injection on navigation.

        Args:
            page: The Playwright page to setup.
        """
        # Install route handler for network blocking
        await page.route("**/*", self.handle_route)

        # Setup cosmetic injection on navigation
        page.on(
            "framenavigated",
            lambda frame: asyncio.create_task(self.on_frame_navigated(frame)),
        )

        logger.debug("Adblock setup complete for page")

    async def handle_route(self, route: Route) -> None:
        """Handle a route (network request).

        This is called for every network request and decides whether to
        block, redirect, strip parameters from, or allow the request.
        """
        request = route.request
        url = request.url

        # Skip non-http(s) URLs
        if not url.startswith(("http://", "https://")):
            await route.continue_()
            return

        self._requests_checked += 1

        # Get source hostname from frame
        source_hostname = ""
        try:
            frame = request.frame
            if frame and frame.url:
                source_hostname = normalize_domain(frame.url)
        except Exception as e:
            # Service worker requests have no frame
            logger.debug("No frame for request %s: %s", url[:80], e)

        resource_type = PLAYWRIGHT_TYPE_MAP.get(request.resource_type, RequestType.OTHER)
        engine = self._engine

        if not engine.should_block_request(url, resource_type, source_hostname):
            await self._continue(route)
            return

        # Requests blocked only by $removeparam rules are rewritten, not aborted
        if engine.is_rewrite_only(url, resource_type, source_hostname):
            params = engine.get_remove_params(url, resource_type, source_hostname)
            stripped = strip_query_params(url, params)
            if stripped != url:
                self._requests_stripped += 1
                logger.debug("Stripping params %s from %s", params, url[:80])
                await self._continue(route, stripped)
            else:
                await self._continue(route)
            return

        engine.increment_blocked_request_count()

        redirect = engine.get_redirect_resource(url, resource_type, source_hostname)
        resource = get_redirect_resource(redirect) if redirect else None
        if resource:
            # Serve redirect resource instead of blocking
            self._requests_redirected += 1
            logger.debug("Redirecting: %s -> %s", url[:80], resource.name)
            try:
                await route.fulfill(
                    body=resource.body,
                    content_type=resource.content_type,
                    status=200,
                )
                return
            except Exception as e:
                logger.debug("Failed to fulfill redirect: %s", e)

        # Block the request
        logger.debug("Blocking: %s", url[:80])
        try:
            await route.abort("blockedbyclient")
        except Exception as e:
            logger.debug("Failed to abort: %s", e)

    async def _continue(self, route: Route, url: str | None = None) -> None:
        try:
            if url is None:
                await route.continue_()
            else:
                await route.continue_(url=url)
        except Exception as e:
            # Route may already be handled
            logger.debug("Failed to continue route: %s", e)

    def get_selectors_for_domain(self, hostname: str) -> list[str]:
        """Get hiding selectors for a domain, with exception selectors removed."""
        return reconcile_selectors(
            self._engine.get_cosmetic_filters_for_domain(hostname),
            self._engine.get_cosmetic_exceptions_for_domain(hostname),
        )

    def get_css_for_domain(self, hostname: str) -> str:
        return build_hiding_css(self.get_selectors_for_domain(hostname))

    async def on_frame_navigated(self, frame: Frame) -> None:
        """Handle frame navigation for cosmetic injection."""
        # Only handle main frame
        if frame.parent_frame is not None:
            return

        url = frame.url
        if not url or not url.startswith(("http://", "https://")):
            return

        hostname = normalize_domain(url)
        selectors = self.get_selectors_for_domain(hostname)
        css = build_hiding_css(selectors)
        if not css:
            return

        try:
            await frame.page.add_style_tag(content=css)
        except Exception as e:
            logger.debug("Failed to inject cosmetic CSS: %s", e)
            return

        self._engine.increment_blocked_element_count(len(selectors))
        logger.debug("Injected cosmetic CSS for %s (%d selectors)", hostname, len(selectors))

    def get_stats(self) -> dict[str, int]:
        """Get routing statistics."""
        return {
            "requests_checked": self._requests_checked,
            "requests_blocked": self._engine.blocked_requests_count(),
            "requests_redirected": self._requests_redirected,
            "requests_stripped": self._requests_stripped,
        }
