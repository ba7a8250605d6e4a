"""
URL matching engine for adblock network filters.

Candidates come from a DomainIndex (hostname buckets first, then the generic
bucket). A request is blocked when a blocking filter matches and no exception
filter does; exceptions win regardless of the order rules were loaded in.
Malformed input never raises: it simply matches nothing.
"""

from __future__ import annotations

import logging
import string
from collections.abc import Sequence
from dataclasses import dataclass
from urllib.parse import urlsplit

from .index import DomainIndex, get_hostname_variants
from .rules import (
    REQUEST_TYPE_OPTION,
    AnchorKind,
    FilterOption,
    NetworkFilter,
    RequestType,
)

logger = logging.getLogger(__name__)

# Characters that are never a ^ separator
_NON_SEPARATORS = frozenset(string.ascii_letters + string.digits + "_-.%")


@dataclass(frozen=True)
class MatchResult:
    """Result of URL matching."""

    blocked: bool
    filter: NetworkFilter | None
    exception: NetworkFilter | None = None

    @property
    def redirect(self) -> str | None:
        if self.blocked and self.filter is not None:
            return self.filter.redirect_resource
        return None


NO_MATCH = MatchResult(blocked=False, filter=None)


@dataclass(frozen=True)
class Request:
    """A request normalized once for matching against many filters."""

    url: str
    url_lower: str
    hostname: str
    # URL text after scheme://host[:port]
    tail: str
    tail_lower: str
    request_type: RequestType
    origin: str
    is_third_party: bool

    @property
    def type_bit(self) -> FilterOption:
        return REQUEST_TYPE_OPTION.get(self.request_type, FilterOption.NONE)


def normalize_domain(value: str | None) -> str:
    """Lowercase a domain, dropping any scheme, port and trailing dot."""
    if not value:
        return ""
    value = value.strip().lower()
    if "://" in value:
        try:
            value = urlsplit(value).hostname or ""
        except ValueError:
            return ""
    elif ":" in value and not value.startswith("["):
        value = value.split(":")[0]
    return value.rstrip(".")


def is_subdomain_of(hostname: str, domain: str) -> bool:
    """Whether ``hostname`` equals ``domain`` or is a subdomain of it."""
    if not hostname or not domain:
        return False
    return hostname == domain or hostname.endswith("." + domain)


def is_third_party(hostname: str, origin: str) -> bool:
    """Check if a request is third-party.

    Without an origin a request counts as first-party. Otherwise it is
    third-party unless one host is the other or a subdomain of it.
    """
    if not origin:
        return False
    return not (is_subdomain_of(hostname, origin) or is_subdomain_of(origin, hostname))


def build_request(
    url: str,
    request_type: RequestType = RequestType.OTHER,
    origin_domain: str | None = None,
) -> Request | None:
    """Normalize a request, or return None if the URL has no usable host."""
    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
    except ValueError:
        return None

    if not hostname:
        return None

    tail = ""
    netloc_pos = url.find(parsed.netloc, url.find("//") + 2) if parsed.netloc else -1
    if netloc_pos != -1:
        tail = url[netloc_pos + len(parsed.netloc) :]

    hostname = hostname.rstrip(".")
    origin = normalize_domain(origin_domain)

    return Request(
        url=url,
        url_lower=url.lower(),
        hostname=hostname,
        tail=tail,
        tail_lower=tail.lower(),
        request_type=request_type,
        origin=origin,
        is_third_party=is_third_party(hostname, origin),
    )


def _match_segment_at(text: str, segment: str, pos: int) -> int | None:
    """Match ``segment`` at ``pos``; return the end index or None.

    ``^`` matches one separator character, or nothing at the end of text.
    """
    i = pos
    n = len(text)
    for c in segment:
        if c == "^":
            if i == n:
                continue
            if text[i] in _NON_SEPARATORS:
                return None
            i += 1
            continue
        if i >= n or text[i] != c:
            return None
        i += 1
    return i


def _find_segment(text: str, segment: str, start: int) -> int | None:
    """Find the first match of ``segment`` at or after ``start``; return its end."""
    if "^" not in segment:
        idx = text.find(segment, start)
        return None if idx == -1 else idx + len(segment)

    for i in range(start, len(text) + 1):
        end = _match_segment_at(text, segment, i)
        if end is not None:
            return end
    return None


def glob_match(
    text: str,
    pattern: str,
    anchor_start: bool = False,
    anchor_end: bool = False,
) -> bool:
    """Match a filter pattern with ``*`` wildcards against text.

    Segments between wildcards must appear in order, each found greedily at
    the leftmost position after the previous one. There is no backtracking
    across segments.
    """
    segments = pattern.split("*")
    last = len(segments) - 1
    pos = 0

    for n, segment in enumerate(segments):
        if n == last and anchor_end:
            if n == 0 and anchor_start:
                return _match_segment_at(text, segment, 0) == len(text)
            if not segment:
                return True
            return any(
                _match_segment_at(text, segment, i) == len(text)
                for i in range(pos, len(text) + 1)
            )

        if n == 0 and anchor_start:
            end = _match_segment_at(text, segment, 0)
        elif not segment:
            continue
        else:
            end = _find_segment(text, segment, pos)

        if end is None:
            return False
        pos = end

    return True


def _host_matches_literal(hostname: str, literal: str) -> bool:
    """Check a || domain literal against a host at a label boundary."""
    if "*" not in literal:
        return is_subdomain_of(hostname, literal)
    return any(
        glob_match(variant, literal, anchor_start=True, anchor_end=True)
        for variant in get_hostname_variants(hostname)
    )


def pattern_matches(f: NetworkFilter, request: Request) -> bool:
    """Check if the filter pattern matches the request URL."""
    if f.is_regex:
        return False

    text = f.match_text

    if f.anchor_kind is AnchorKind.DOMAIN:
        if not _host_matches_literal(request.hostname, f.domain_literal or ""):
            return False
        if not text:
            return True
        tail = request.tail if f.case_sensitive else request.tail_lower
        anchor_end = text.endswith("|")
        if anchor_end:
            text = text[:-1]
        return glob_match(tail, text, anchor_start=True, anchor_end=anchor_end)

    url = request.url if f.case_sensitive else request.url_lower

    if f.anchor_kind is AnchorKind.EXACT:
        return glob_match(url, text, anchor_start=True, anchor_end=True)
    if f.anchor_kind is AnchorKind.START:
        return glob_match(url, text, anchor_start=True)
    if f.anchor_kind is AnchorKind.END:
        return glob_match(url, text, anchor_end=True)
    return glob_match(url, text)


def _domain_matches(f: NetworkFilter, request: Request) -> bool:
    """Check $domain= constraints against the initiator and target host."""
    hosts = (request.origin, request.hostname)

    for excluded in f.domains_exclude:
        if any(is_subdomain_of(host, excluded) for host in hosts):
            return False

    if not f.domains_include:
        return True

    return any(
        is_subdomain_of(host, included) for included in f.domains_include for host in hosts
    )


def filter_matches(f: NetworkFilter, request: Request) -> bool:
    """Check if a filter matches the request."""
    # Check request type constraints
    type_bit = request.type_bit
    if f.type_mask and not (f.type_mask & type_bit):
        return False
    if f.excluded_type_mask & type_bit:
        return False

    # Check third-party constraint; both bits set means either party
    if f.party_mask == FilterOption.THIRD_PARTY and not request.is_third_party:
        return False
    if f.party_mask == FilterOption.FIRST_PARTY and request.is_third_party:
        return False

    # Check domain constraints
    if not _domain_matches(f, request):
        return False

    # Check URL pattern
    return pattern_matches(f, request)


class NetworkFilterMatcher:
    """Matches requests against one immutable rule set and its index."""

    def __init__(self, filters: Sequence[NetworkFilter], index: DomainIndex | None = None) -> None:
        self._filters = filters
        self._index = index if index is not None else DomainIndex.build(filters)

    @property
    def index(self) -> DomainIndex:
        return self._index

    def _candidates(self, request: Request) -> list[NetworkFilter]:
        filters = self._filters
        return [filters[i] for i in self._index.candidates(request.hostname)]

    def should_block(self, request: Request, include_rewrites: bool = True) -> MatchResult:
        """Check if a request should be blocked.

        One ordered pass over the host buckets then the generic bucket. A
        matching exception ends the scan immediately; blocking filters are
        only evaluated until the first one matches. With ``include_rewrites``
        off, $removeparam rules do not count as blocking.
        """
        blocking: NetworkFilter | None = None

        for f in self._candidates(request):
            if not f.is_exception and (
                blocking is not None or (f.remove_params and not include_rewrites)
            ):
                continue
            if not filter_matches(f, request):
                continue
            if f.is_exception:
                logger.debug("Exception rule matched for %s: %s", request.url[:80], f.raw)
                return MatchResult(blocked=False, filter=None, exception=f)
            blocking = f

        if blocking is None:
            return NO_MATCH

        logger.debug("Blocking rule matched for %s: %s", request.url[:80], blocking.raw)
        return MatchResult(blocked=True, filter=blocking)

    def find_redirect(self, request: Request) -> str | None:
        """Return the redirect resource of the first matching blocking filter."""
        for f in self._candidates(request):
            if f.is_exception or not f.redirect_resource:
                continue
            if filter_matches(f, request):
                logger.debug(
                    "Redirect rule matched for %s -> %s", request.url[:80], f.redirect_resource
                )
                return f.redirect_resource
        return None

    def find_remove_params(self, request: Request) -> list[str]:
        """Return the union of removeparam names from all matching blocking filters."""
        params: list[str] = []
        for f in self._candidates(request):
            if f.is_exception or not f.remove_params:
                continue
            if filter_matches(f, request):
                for param in f.remove_params:
                    if param not in params:
                        params.append(param)
        return params
