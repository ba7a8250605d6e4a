"""
Filter syntax parser for ABP/uBlock format.

Parses network filters, cosmetic filters, and scriptlet filters from
EasyList and uBlock Origin style filter lists. A line that cannot be
compiled raises FilterParseError; parse_filter_list skips and counts it.
"""

from __future__ import annotations

import logging

from ..exceptions import FilterParseError
from .rules import (
    PARTY_OPTIONS,
    REQUEST_TYPE_MAP,
    REQUEST_TYPE_OPTION,
    AnchorKind,
    CosmeticFilter,
    FilterOption,
    NetworkFilter,
    ParsedFilters,
    ScriptletFilter,
)

logger = logging.getLogger(__name__)

FilterRule = NetworkFilter | CosmeticFilter | ScriptletFilter

# Keyword options that only set a bit
KEYWORD_OPTIONS = {
    "third-party": FilterOption.THIRD_PARTY,
    "3p": FilterOption.THIRD_PARTY,
    "first-party": FilterOption.FIRST_PARTY,
    "1p": FilterOption.FIRST_PARTY,
    "match-case": FilterOption.MATCH_CASE,
    "important": FilterOption.IMPORTANT,
    "popup": FilterOption.POPUP,
    "generichide": FilterOption.GENERICHIDE,
    "genericblock": FilterOption.GENERICBLOCK,
    "inline-script": FilterOption.INLINE_SCRIPT,
    "inline-font": FilterOption.INLINE_FONT,
    "badfilter": FilterOption.BADFILTER,
}

COSMETIC_SEPARATORS = ("#@?#", "#@#", "#?#", "##")
SCRIPTLET_SEPARATORS = ("#@#+js(", "##+js(")

# Characters that end the domain literal of a || rule
_DOMAIN_LITERAL_END = "/^?"


def _parse_domain_list(domain_str: str, sep: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Parse a domain list like ``a.com|~b.com``.

    Returns (included_domains, excluded_domains), each in source order
    without duplicates.
    """
    included: list[str] = []
    excluded: list[str] = []

    for domain in domain_str.split(sep):
        domain = domain.strip().lower()
        if not domain:
            continue
        if domain.startswith("~"):
            domain = domain[1:]
            if domain and domain not in excluded:
                excluded.append(domain)
        elif domain not in included:
            included.append(domain)

    return tuple(included), tuple(excluded)


def _split_options(line: str) -> tuple[str, str]:
    """Split a network rule into (pattern, options) on the first ``$``.

    A ``/regex/`` may itself contain ``$``, so for those the split happens
    right after the closing slash.
    """
    if line.startswith("/") and len(line) > 2:
        close = line.find("/$", 1)
        if close != -1:
            return line[: close + 1], line[close + 2 :]
        if line.endswith("/"):
            return line, ""

    pos = line.find("$")
    if pos == -1:
        return line, ""
    return line[:pos], line[pos + 1 :]


class _OptionState:
    """Accumulates parsed option values for one rule."""

    def __init__(self) -> None:
        self.options = FilterOption.NONE
        self.type_mask = FilterOption.NONE
        self.excluded_type_mask = FilterOption.NONE
        self.party_mask = FilterOption.NONE
        self.domains_include: tuple[str, ...] = ()
        self.domains_exclude: tuple[str, ...] = ()
        self.redirect: str | None = None
        self.remove_params: list[str] = []


def _parse_options(option_str: str) -> _OptionState:
    """Parse filter options like ``third-party,script,domain=example.com``."""
    state = _OptionState()

    for option in option_str.split(","):
        option = option.strip()
        if not option:
            continue

        name, has_value, value = option.partition("=")
        name = name.lower()

        if has_value:
            if name == "domain":
                state.domains_include, state.domains_exclude = _parse_domain_list(value, "|")
            elif name in ("redirect", "redirect-rule"):
                state.redirect = value.strip()
                state.options |= (
                    FilterOption.REDIRECT if name == "redirect" else FilterOption.REDIRECT_RULE
                )
            elif name == "removeparam":
                for param in value.split("|"):
                    param = param.strip()
                    if param and param not in state.remove_params:
                        state.remove_params.append(param)
                state.options |= FilterOption.REMOVEPARAM
            else:
                logger.debug("Ignoring unsupported option: %s", option)
            continue

        # Handle negation
        negated = name.startswith("~")
        if negated:
            name = name[1:]

        req_type = REQUEST_TYPE_MAP.get(name)
        type_bit = REQUEST_TYPE_OPTION.get(req_type) if req_type else None
        if type_bit is not None:
            if negated:
                state.excluded_type_mask |= type_bit
            else:
                state.type_mask |= type_bit
                state.options |= type_bit
            continue

        bit = KEYWORD_OPTIONS.get(name)
        if bit is None:
            logger.debug("Ignoring unsupported option: %s", option)
            continue

        if bit & PARTY_OPTIONS:
            if negated:
                bit = (
                    FilterOption.FIRST_PARTY
                    if bit == FilterOption.THIRD_PARTY
                    else FilterOption.THIRD_PARTY
                )
            state.party_mask |= bit
        elif negated:
            continue
        state.options |= bit

    return state


def _detect_anchor(pattern: str) -> tuple[AnchorKind, str | None, str]:
    """Derive (anchor kind, domain literal, match text) from a raw pattern."""
    if pattern.startswith("||"):
        body = pattern[2:]

        end = len(body)
        for i, c in enumerate(body):
            if c in _DOMAIN_LITERAL_END:
                end = i
                break

        domain_literal = body[:end].lower()
        if not domain_literal:
            raise FilterParseError(pattern, "Domain anchor without a domain")

        # ^ right after the host or after a trailing / adds nothing
        match_text = body[end:]
        if match_text == "^" or match_text.endswith("/^"):
            match_text = match_text[:-1]
        return AnchorKind.DOMAIN, domain_literal, match_text

    if len(pattern) >= 2 and pattern.startswith("|") and pattern.endswith("|"):
        return AnchorKind.EXACT, None, pattern[1:-1]
    if pattern.startswith("|"):
        return AnchorKind.START, None, pattern[1:]
    if pattern.endswith("|"):
        return AnchorKind.END, None, pattern[:-1]

    return AnchorKind.NONE, None, pattern


def parse_network_filter(line: str) -> NetworkFilter:
    """Parse a network filter rule."""
    raw = line

    # Check for exception
    is_exception = line.startswith("@@")
    if is_exception:
        line = line[2:]

    pattern, option_str = _split_options(line)
    if not pattern and not option_str:
        raise FilterParseError(raw, "Empty network filter")
    if pattern == "|":
        raise FilterParseError(raw, "Anchor without a pattern")

    state = _parse_options(option_str) if option_str else _OptionState()
    case_sensitive = bool(state.options & FilterOption.MATCH_CASE)

    # Check for regex
    is_regex = pattern.startswith("/") and pattern.endswith("/") and len(pattern) > 2
    if is_regex:
        anchor_kind, domain_literal, match_text = AnchorKind.NONE, None, pattern[1:-1]
        logger.debug("Regex filter kept but inactive: %s", raw)
    else:
        anchor_kind, domain_literal, match_text = _detect_anchor(pattern)

    if not case_sensitive:
        match_text = match_text.lower()

    return NetworkFilter(
        raw=raw,
        pattern=pattern,
        is_exception=is_exception,
        anchor_kind=anchor_kind,
        domain_literal=domain_literal,
        match_text=match_text,
        options=state.options,
        type_mask=state.type_mask,
        excluded_type_mask=state.excluded_type_mask,
        party_mask=state.party_mask,
        domains_include=state.domains_include,
        domains_exclude=state.domains_exclude,
        redirect_resource=state.redirect,
        remove_params=tuple(state.remove_params),
        case_sensitive=case_sensitive,
        is_regex=is_regex,
    )


def _find_separator(line: str, separators: tuple[str, ...]) -> tuple[int, str] | None:
    """Find the earliest separator occurrence in a line."""
    best: tuple[int, str] | None = None
    for sep in separators:
        idx = line.find(sep)
        if idx != -1 and (best is None or idx < best[0]):
            best = (idx, sep)
    return best


def parse_cosmetic_filter(line: str) -> CosmeticFilter:
    """Parse a cosmetic filter rule."""
    found = _find_separator(line, COSMETIC_SEPARATORS)
    if found is None:
        raise FilterParseError(line, "Missing cosmetic separator")

    idx, sep = found
    domain_part = line[:idx]
    selector = line[idx + len(sep) :].strip()

    if not selector:
        raise FilterParseError(line, "Empty cosmetic selector")

    included, excluded = _parse_domain_list(domain_part, ",")

    return CosmeticFilter(
        raw=line,
        selector=selector,
        is_exception="@" in sep,
        is_procedural="?" in sep,
        domains_include=included,
        domains_exclude=excluded,
    )


def parse_scriptlet_filter(line: str) -> ScriptletFilter:
    """Parse a scriptlet injection filter rule.

    Format: ``domain##+js(scriptlet-name, arg1, arg2)``. The snippet is
    stored verbatim; only the domain is interpreted.
    """
    found = _find_separator(line, SCRIPTLET_SEPARATORS)
    if found is None:
        raise FilterParseError(line, "Missing scriptlet separator")

    idx, sep = found
    snippet = line[idx + len(sep) - len("+js(") :]
    if not snippet.endswith(")") or snippet == "+js()":
        raise FilterParseError(line, "Malformed scriptlet")

    return ScriptletFilter(
        raw=line,
        domain=line[:idx].strip().lower(),
        snippet=snippet,
        is_exception=sep.startswith("#@#"),
    )


def parse_filter_line(line: str) -> FilterRule:
    """Classify and parse one trimmed, non-comment filter line."""
    if "+js(" in line and _find_separator(line, SCRIPTLET_SEPARATORS):
        return parse_scriptlet_filter(line)
    if _find_separator(line, COSMETIC_SEPARATORS):
        return parse_cosmetic_filter(line)
    return parse_network_filter(line)


def is_comment(line: str) -> bool:
    """Whether a trimmed line is blank, a comment, or a list header."""
    return not line or line.startswith("!") or line.startswith("[")


def parse_filter_list(content: str) -> ParsedFilters:
    """Parse a filter list and return categorized filters."""
    result = ParsedFilters()

    for line in content.splitlines():
        line = line.strip()

        # Skip empty lines and comments
        if is_comment(line):
            continue

        try:
            parsed = parse_filter_line(line)
        except FilterParseError as e:
            logger.debug("Skipping filter line: %s", e)
            result.error_count += 1
            continue

        if isinstance(parsed, NetworkFilter):
            result.network_filters.append(parsed)
        elif isinstance(parsed, CosmeticFilter):
            result.cosmetic_filters.append(parsed)
        else:
            result.scriptlet_filters.append(parsed)
        result.parsed_count += 1

    logger.debug(
        "Parsed filters: %d network, %d cosmetic, %d scriptlet, %d errors",
        len(result.network_filters),
        len(result.cosmetic_filters),
        len(result.scriptlet_filters),
        result.error_count,
    )

    return result


def parse_all_filter_lists(lists: dict[str, str]) -> ParsedFilters:
    """Parse multiple filter lists and merge results."""
    result = ParsedFilters()

    for name, content in lists.items():
        logger.debug("Parsing filter list: %s", name)
        result.extend(parse_filter_list(content))

    return result
