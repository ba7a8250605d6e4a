"""
Main adblock engine that owns the rule set and answers filtering queries.

Rules live in an immutable snapshot that every mutation replaces with a
single reference swap, so a query never sees new rules paired with a stale
index. The domain index is compiled lazily by the first query after a
mutation. Decisions are memoized in a bounded cache that every mutation
clears.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from adfilter.config import AdfilterConfig, configure_logging
from adfilter.exceptions import FilterListLoadError

from .cache import DEFAULT_MAX_ENTRIES, DecisionCache
from .cosmetic import CosmeticIndex
from .filter_lists import DEFAULT_FILTERS, DEFAULT_LIST_NAME, read_filter_list
from .index import DomainIndex, get_hostname_variants
from .matcher import NetworkFilterMatcher, build_request, normalize_domain
from .parser import parse_filter_list
from .rules import (
    CosmeticFilter,
    NetworkFilter,
    ParsedFilters,
    RequestType,
    ScriptletFilter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadResult:
    """Outcome of loading one filter list."""

    name: str
    parsed: int
    errors: int
    network: int
    cosmetic: int
    scriptlet: int


@dataclass(frozen=True)
class FilterSet:
    """All compiled rules loaded so far."""

    network_filters: tuple[NetworkFilter, ...] = ()
    cosmetic_filters: tuple[CosmeticFilter, ...] = ()
    scriptlet_filters: tuple[ScriptletFilter, ...] = ()

    def extended(self, parsed: ParsedFilters) -> FilterSet:
        return FilterSet(
            network_filters=self.network_filters + tuple(parsed.network_filters),
            cosmetic_filters=self.cosmetic_filters + tuple(parsed.cosmetic_filters),
            scriptlet_filters=self.scriptlet_filters + tuple(parsed.scriptlet_filters),
        )


@dataclass(frozen=True)
class CompiledRules:
    """Lookup structures derived from one FilterSet."""

    network: NetworkFilterMatcher
    cosmetic: CosmeticIndex
    scriptlets: dict[str, tuple[ScriptletFilter, ...]]

    @classmethod
    def build(cls, filters: FilterSet) -> CompiledRules:
        scriptlets: dict[str, list[ScriptletFilter]] = {}
        for s in filters.scriptlet_filters:
            scriptlets.setdefault(s.domain, []).append(s)

        return cls(
            network=NetworkFilterMatcher(
                filters.network_filters, DomainIndex.build(filters.network_filters)
            ),
            cosmetic=CosmeticIndex.build(filters.cosmetic_filters),
            scriptlets={k: tuple(v) for k, v in scriptlets.items()},
        )


@dataclass(frozen=True)
class _Snapshot:
    filters: FilterSet
    compiled: CompiledRules | None = None  # None until the first query


def _coerce_request_type(request_type: RequestType | str) -> RequestType:
    if isinstance(request_type, RequestType):
        return request_type
    return RequestType.from_string(request_type)


class AdblockEngine:
    """Filtering engine for network requests and cosmetic rules.

    Safe to query from many threads. Mutations are serialized by a lock and
    published atomically.
    """

    def __init__(
        self,
        enabled: bool = True,
        cache_max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        """Initialize an empty engine.

        Args:
            enabled: Whether filtering starts enabled.
            cache_max_entries: Entry limit of each decision cache map.
        """
        self._enabled = enabled
        self._snapshot = _Snapshot(FilterSet())
        self._patterns: tuple[str, ...] = ()
        self._lists: list[LoadResult] = []
        self._write_lock = threading.Lock()
        self._cache = DecisionCache(cache_max_entries)

        # Statistics
        self._stats_lock = threading.Lock()
        self._blocked_requests = 0
        self._blocked_elements = 0

    @classmethod
    def from_config(cls, config: AdfilterConfig) -> AdblockEngine:
        """Create an engine and load the lists named by the configuration.

        Configured files that cannot be read are logged and skipped.
        """
        engine = cls(enabled=config.enabled, cache_max_entries=config.cache_max_entries)

        if config.load_default_lists:
            engine.load_default_filter_lists()

        for path in config.filter_list_paths():
            try:
                engine.load_filter_list_file(path)
            except FilterListLoadError as e:
                logger.warning("Skipping filter list: %s", e)

        return engine

    # -- Administration -------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable filtering.

        Caches are dropped either way; compiled rules and the index are kept.
        """
        with self._write_lock:
            self._enabled = enabled
            self._cache.clear()
        logger.info("Adblock filtering %s", "enabled" if enabled else "disabled")

    def load_filter_list(self, name: str, content: str) -> LoadResult:
        """Parse filter-list text and append its rules.

        Bad lines are skipped and counted; they never abort the load.
        """
        logger.debug("Loading filter list '%s'", name)
        parsed = parse_filter_list(content)

        with self._write_lock:
            self._snapshot = _Snapshot(self._snapshot.filters.extended(parsed))
            self._cache.clear()
            result = LoadResult(
                name=name,
                parsed=parsed.parsed_count,
                errors=parsed.error_count,
                network=len(parsed.network_filters),
                cosmetic=len(parsed.cosmetic_filters),
                scriptlet=len(parsed.scriptlet_filters),
            )
            self._lists.append(result)

        logger.info(
            "Loaded %d filters from '%s' (%d errors)", result.parsed, name, result.errors
        )
        return result

    def load_filter_list_file(self, path: str | Path, name: str | None = None) -> LoadResult:
        """Read a UTF-8 filter list file and load it.

        Raises:
            FilterListLoadError: If the file cannot be read.
        """
        content = read_filter_list(path)
        return self.load_filter_list(name or Path(path).stem, content)

    def load_default_filter_lists(self) -> LoadResult:
        """Load the built-in conservative default list."""
        return self.load_filter_list(DEFAULT_LIST_NAME, DEFAULT_FILTERS)

    def clear_filter_lists(self) -> None:
        """Discard every loaded rule and reset statistics."""
        with self._write_lock:
            self._snapshot = _Snapshot(FilterSet())
            self._lists.clear()
            self._cache.clear()
        self.reset_statistics()
        logger.info("Cleared all filter lists")

    def set_patterns(self, patterns: Iterable[str]) -> None:
        """Replace the plain URL-substring patterns used by is_filtered."""
        with self._write_lock:
            self._patterns = tuple(p for p in patterns if p)
            self._snapshot = _Snapshot(self._snapshot.filters)
            self._cache.clear()

    def optimize_filters(self) -> CompiledRules:
        """Compile the domain index for the current rules if not done yet."""
        compiled = self._snapshot.compiled
        if compiled is not None:
            return compiled

        with self._write_lock:
            snapshot = self._snapshot
            compiled = snapshot.compiled
            if compiled is None:
                logger.debug(
                    "Optimizing %d network filters", len(snapshot.filters.network_filters)
                )
                compiled = CompiledRules.build(snapshot.filters)
                self._snapshot = _Snapshot(snapshot.filters, compiled)
            return compiled

    # -- Network queries ------------------------------------------------

    def should_block_request(
        self,
        url: str,
        request_type: RequestType | str = RequestType.OTHER,
        origin_domain: str | None = None,
    ) -> bool:
        """Check if a request should be blocked.

        Args:
            url: The URL being requested.
            request_type: Type of request (script, image, etc.).
            origin_domain: Domain of the page making the request.

        Returns:
            True if a blocking rule matches and no exception rule does.
        """
        if not self._enabled:
            return False

        request_type = _coerce_request_type(request_type)
        origin = normalize_domain(origin_domain)
        cache = self._cache.requests
        key = DecisionCache.request_key(url, request_type.value, origin)

        generation = cache.generation
        cached = cache.check(key)
        if cached is not None:
            return cached

        compiled = self.optimize_filters()
        request = build_request(url, request_type, origin)
        blocked = request is not None and compiled.network.should_block(request).blocked

        cache.insert(key, blocked, generation)
        return blocked

    def get_redirect_resource(
        self,
        url: str,
        request_type: RequestType | str = RequestType.OTHER,
        origin_domain: str | None = None,
    ) -> str | None:
        """Get the redirect resource named by the first matching blocking rule."""
        if not self._enabled:
            return None

        request = build_request(url, _coerce_request_type(request_type), origin_domain)
        if request is None:
            return None
        return self.optimize_filters().network.find_redirect(request)

    def get_remove_params(
        self,
        url: str,
        request_type: RequestType | str = RequestType.OTHER,
        origin_domain: str | None = None,
    ) -> list[str]:
        """Get query parameters to strip, merged from every matching rule."""
        if not self._enabled:
            return []

        request = build_request(url, _coerce_request_type(request_type), origin_domain)
        if request is None:
            return []
        return self.optimize_filters().network.find_remove_params(request)

    def is_rewrite_only(
        self,
        url: str,
        request_type: RequestType | str = RequestType.OTHER,
        origin_domain: str | None = None,
    ) -> bool:
        """Whether only $removeparam rules make the request blocked.

        Such a request should be rewritten with get_remove_params instead of
        being aborted. Not cached.
        """
        if not self._enabled:
            return False

        request = build_request(url, _coerce_request_type(request_type), origin_domain)
        if request is None:
            return False

        network = self.optimize_filters().network
        if not network.should_block(request).blocked:
            return False
        return not network.should_block(request, include_rewrites=False).blocked

    def is_filtered(self, url: str) -> bool:
        """Check a URL against plain patterns and type-agnostic rules."""
        if not self._enabled:
            return False
        if any(pattern in url for pattern in self._patterns):
            return True
        return self.should_block_request(url, RequestType.OTHER, "")

    # -- Cosmetic queries -----------------------------------------------

    def get_cosmetic_filters_for_domain(self, domain: str) -> list[str]:
        """Get CSS selectors to hide on a domain.

        Exception selectors are not subtracted; see
        get_cosmetic_exceptions_for_domain.
        """
        if not self._enabled:
            return []

        domain = normalize_domain(domain)
        if not domain:
            return []

        cache = self._cache.domains
        generation = cache.generation
        if cache.check(domain) is False:
            return []

        selectors = self.optimize_filters().cosmetic.get_selectors_for_domain(domain)
        cache.insert(domain, bool(selectors), generation)
        return selectors

    def get_cosmetic_exceptions_for_domain(self, domain: str) -> list[str]:
        """Get selectors that ``#@#`` rules exempt from hiding on a domain."""
        if not self._enabled:
            return []

        domain = normalize_domain(domain)
        if not domain:
            return []
        return self.optimize_filters().cosmetic.get_exception_selectors_for_domain(domain)

    def get_script_filters_for_domain(self, domain: str) -> list[str]:
        """Get scriptlet snippets (``+js(...)``) for a domain, best-effort."""
        if not self._enabled:
            return []

        domain = normalize_domain(domain)
        if not domain:
            return []

        scriptlets = self.optimize_filters().scriptlets
        snippets: list[str] = []
        excepted: set[str] = set()
        for key in ("", *get_hostname_variants(domain)):
            for s in scriptlets.get(key, ()):
                if s.is_exception:
                    excepted.add(s.snippet)
                elif s.snippet not in snippets:
                    snippets.append(s.snippet)

        return [s for s in snippets if s not in excepted]

    # -- Statistics -----------------------------------------------------

    def increment_blocked_request_count(self) -> None:
        with self._stats_lock:
            self._blocked_requests += 1

    def increment_blocked_element_count(self, count: int = 1) -> None:
        with self._stats_lock:
            self._blocked_elements += count

    def reset_statistics(self) -> None:
        with self._stats_lock:
            self._blocked_requests = 0
            self._blocked_elements = 0

    def blocked_requests_count(self) -> int:
        return self._blocked_requests

    def blocked_elements_count(self) -> int:
        return self._blocked_elements

    @property
    def filter_set(self) -> FilterSet:
        """The current rules (read-only snapshot)."""
        return self._snapshot.filters

    @property
    def loaded_lists(self) -> list[LoadResult]:
        with self._write_lock:
            return list(self._lists)

    def get_stats(self) -> dict[str, Any]:
        """Get rule counts, blocking statistics and cache statistics."""
        filters = self._snapshot.filters
        return {
            "enabled": self._enabled,
            "lists": len(self._lists),
            "network_filters": len(filters.network_filters),
            "cosmetic_filters": len(filters.cosmetic_filters),
            "scriptlet_filters": len(filters.scriptlet_filters),
            "blocked_requests": self._blocked_requests,
            "blocked_elements": self._blocked_elements,
            "cache": self._cache.get_stats(),
        }


# Shared instance for callers that want one engine per process
_adblock_engine: AdblockEngine | None = None
_engine_lock = threading.Lock()


def get_adblock_engine(config: AdfilterConfig | None = None) -> AdblockEngine:
    """Get or create the shared AdblockEngine instance.

    The first call also applies the configured log level.

    Args:
        config: Configuration used on first call. Defaults to AdfilterConfig.load().

    Returns:
        The AdblockEngine instance.
    """
    global _adblock_engine

    with _engine_lock:
        if _adblock_engine is None:
            if config is None:
                config = AdfilterConfig.load()
            configure_logging(config)
            _adblock_engine = AdblockEngine.from_config(config)

    return _adblock_engine


def reset_adblock_engine() -> None:
    """Reset the shared engine (for testing)."""
    global _adblock_engine
    with _engine_lock:
        _adblock_engine = None
