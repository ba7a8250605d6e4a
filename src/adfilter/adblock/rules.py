"""
Compiled rule model for ABP/uBlock style filters.

These are plain data: the parser builds them, the matcher reads them. Nothing
here is mutated after parsing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntFlag


class RequestType(Enum):
    """Types of requests for network filtering."""

    DOCUMENT = "document"
    SUBDOCUMENT = "subdocument"
    STYLESHEET = "stylesheet"
    SCRIPT = "script"
    IMAGE = "image"
    FONT = "font"
    OBJECT = "object"
    XMLHTTPREQUEST = "xmlhttprequest"
    PING = "ping"
    CSP = "csp"
    MEDIA = "media"
    WEBSOCKET = "websocket"
    OTHER = "other"

    @classmethod
    def from_string(cls, value: str) -> RequestType:
        """Map a resource-type tag to a RequestType, defaulting to OTHER."""
        return REQUEST_TYPE_MAP.get(value.strip().lower(), cls.OTHER)


# Map resource type tags (filter options and browser resource types)
REQUEST_TYPE_MAP = {
    "document": RequestType.DOCUMENT,
    "subdocument": RequestType.SUBDOCUMENT,
    "stylesheet": RequestType.STYLESHEET,
    "script": RequestType.SCRIPT,
    "image": RequestType.IMAGE,
    "font": RequestType.FONT,
    "object": RequestType.OBJECT,
    "xmlhttprequest": RequestType.XMLHTTPREQUEST,
    "xhr": RequestType.XMLHTTPREQUEST,
    "fetch": RequestType.XMLHTTPREQUEST,
    "ping": RequestType.PING,
    "csp": RequestType.CSP,
    "media": RequestType.MEDIA,
    "websocket": RequestType.WEBSOCKET,
    "other": RequestType.OTHER,
}


class FilterOption(IntFlag):
    """Option bits carried by a network filter."""

    NONE = 0
    SCRIPT = 1 << 0
    IMAGE = 1 << 1
    STYLESHEET = 1 << 2
    OBJECT = 1 << 3
    XMLHTTPREQUEST = 1 << 4
    SUBDOCUMENT = 1 << 5
    DOCUMENT = 1 << 6
    FONT = 1 << 7
    MEDIA = 1 << 8
    WEBSOCKET = 1 << 9
    PING = 1 << 10
    CSP = 1 << 11
    THIRD_PARTY = 1 << 12
    MATCH_CASE = 1 << 13
    IMPORTANT = 1 << 14
    POPUP = 1 << 15
    GENERICHIDE = 1 << 16
    GENERICBLOCK = 1 << 17
    INLINE_SCRIPT = 1 << 18
    INLINE_FONT = 1 << 19
    BADFILTER = 1 << 20
    REDIRECT = 1 << 21
    REDIRECT_RULE = 1 << 22
    REMOVEPARAM = 1 << 23
    HEADER = 1 << 24
    FIRST_PARTY = 1 << 25


PARTY_OPTIONS = FilterOption.THIRD_PARTY | FilterOption.FIRST_PARTY

# RequestType -> option bit. OTHER has no bit: it only matches type-agnostic rules.
REQUEST_TYPE_OPTION = {
    RequestType.SCRIPT: FilterOption.SCRIPT,
    RequestType.IMAGE: FilterOption.IMAGE,
    RequestType.STYLESHEET: FilterOption.STYLESHEET,
    RequestType.OBJECT: FilterOption.OBJECT,
    RequestType.XMLHTTPREQUEST: FilterOption.XMLHTTPREQUEST,
    RequestType.SUBDOCUMENT: FilterOption.SUBDOCUMENT,
    RequestType.DOCUMENT: FilterOption.DOCUMENT,
    RequestType.FONT: FilterOption.FONT,
    RequestType.MEDIA: FilterOption.MEDIA,
    RequestType.WEBSOCKET: FilterOption.WEBSOCKET,
    RequestType.PING: FilterOption.PING,
    RequestType.CSP: FilterOption.CSP,
}


class AnchorKind(Enum):
    """How a network filter pattern is anchored against the URL."""

    NONE = "none"
    DOMAIN = "domain"  # ||
    START = "start"  # |...
    END = "end"  # ...|
    EXACT = "exact"  # |...|


@dataclass(frozen=True)
class NetworkFilter:
    """Compiled network filter rule."""

    raw: str
    pattern: str
    is_exception: bool = False
    anchor_kind: AnchorKind = AnchorKind.NONE

    # Cached domain key for || rules, never includes a path segment
    domain_literal: str | None = None
    # Text compared against the URL; for || rules, the part after the domain literal
    match_text: str = ""

    # Modifiers
    options: FilterOption = FilterOption.NONE
    type_mask: FilterOption = FilterOption.NONE
    excluded_type_mask: FilterOption = FilterOption.NONE
    party_mask: FilterOption = FilterOption.NONE
    domains_include: tuple[str, ...] = ()
    domains_exclude: tuple[str, ...] = ()
    redirect_resource: str | None = None
    remove_params: tuple[str, ...] = ()
    case_sensitive: bool = False

    # /regex/ patterns are kept but never match
    is_regex: bool = False

    @property
    def is_domain_indexable(self) -> bool:
        """Whether the rule can live in a domain bucket of the index."""
        return (
            self.anchor_kind is AnchorKind.DOMAIN
            and bool(self.domain_literal)
            and "*" not in (self.domain_literal or "")
        )


@dataclass(frozen=True)
class CosmeticFilter:
    """Compiled cosmetic (element hiding) filter rule."""

    raw: str
    selector: str
    is_exception: bool = False
    is_procedural: bool = False  # #?#
    domains_include: tuple[str, ...] = ()
    domains_exclude: tuple[str, ...] = ()

    @property
    def is_generic(self) -> bool:
        return not self.domains_include


@dataclass(frozen=True)
class ScriptletFilter:
    """Scriptlet injection rule, stored verbatim."""

    raw: str
    domain: str
    snippet: str
    is_exception: bool = False


@dataclass
class ParsedFilters:
    """Collection of parsed filters with parse counters."""

    network_filters: list[NetworkFilter] = field(default_factory=list)
    cosmetic_filters: list[CosmeticFilter] = field(default_factory=list)
    scriptlet_filters: list[ScriptletFilter] = field(default_factory=list)
    parsed_count: int = 0
    error_count: int = 0

    def extend(self, other: ParsedFilters) -> None:
        self.network_filters.extend(other.network_filters)
        self.cosmetic_filters.extend(other.cosmetic_filters)
        self.scriptlet_filters.extend(other.scriptlet_filters)
        self.parsed_count += other.parsed_count
        self.error_count += other.error_count
