"""
Cosmetic filter handling for element hiding.

Indexes cosmetic filters by domain and answers which selectors apply to a
page. Exception filters are reported separately; reconciling them against
hiding selectors is left to the caller (see reconcile_selectors).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .index import get_hostname_variants
from .matcher import is_subdomain_of
from .rules import CosmeticFilter

logger = logging.getLogger(__name__)

CSS_BATCH_SIZE = 100


def applies_to_domain(f: CosmeticFilter, hostname: str) -> bool:
    """Check if a cosmetic filter applies to a hostname."""
    # Check exclusions first
    if any(is_subdomain_of(hostname, d) for d in f.domains_exclude):
        return False

    if f.is_generic:
        return True

    return any(is_subdomain_of(hostname, d) for d in f.domains_include)


def _unique(selectors: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for sel in selectors:
        if sel not in seen:
            seen.add(sel)
            result.append(sel)
    return result


@dataclass(frozen=True)
class CosmeticIndex:
    """Cosmetic filters split into global and per-domain buckets."""

    global_filters: tuple[CosmeticFilter, ...]
    global_exceptions: tuple[CosmeticFilter, ...]
    domain_filters: dict[str, tuple[CosmeticFilter, ...]]
    domain_exceptions: dict[str, tuple[CosmeticFilter, ...]]

    @classmethod
    def build(cls, filters: Sequence[CosmeticFilter]) -> CosmeticIndex:
        global_filters: list[CosmeticFilter] = []
        global_exceptions: list[CosmeticFilter] = []
        domain_filters: dict[str, list[CosmeticFilter]] = {}
        domain_exceptions: dict[str, list[CosmeticFilter]] = {}

        for f in filters:
            if f.is_generic:
                # Filters with only exclusions are global with exclusions
                (global_exceptions if f.is_exception else global_filters).append(f)
                continue

            index = domain_exceptions if f.is_exception else domain_filters
            for domain in f.domains_include:
                index.setdefault(domain, []).append(f)

        logger.debug(
            "Indexed %d cosmetic filters (%d global, %d domain-specific)",
            len(filters),
            len(global_filters),
            sum(len(v) for v in domain_filters.values()),
        )

        return cls(
            global_filters=tuple(global_filters),
            global_exceptions=tuple(global_exceptions),
            domain_filters={k: tuple(v) for k, v in domain_filters.items()},
            domain_exceptions={k: tuple(v) for k, v in domain_exceptions.items()},
        )

    def _collect(
        self,
        hostname: str,
        global_bucket: tuple[CosmeticFilter, ...],
        domain_index: dict[str, tuple[CosmeticFilter, ...]],
    ) -> list[str]:
        selectors = [f.selector for f in global_bucket if applies_to_domain(f, hostname)]
        for variant in get_hostname_variants(hostname):
            for f in domain_index.get(variant, ()):
                if applies_to_domain(f, hostname):
                    selectors.append(f.selector)
        return _unique(selectors)

    def get_selectors_for_domain(self, hostname: str) -> list[str]:
        """Get hiding selectors (non-exception) that apply to a hostname.

        Global selectors come first, then domain-specific ones; duplicates
        are dropped.
        """
        return self._collect(hostname.lower(), self.global_filters, self.domain_filters)

    def get_exception_selectors_for_domain(self, hostname: str) -> list[str]:
        """Get selectors that exception (``#@#``) filters allow on a hostname."""
        return self._collect(hostname.lower(), self.global_exceptions, self.domain_exceptions)


def reconcile_selectors(selectors: Iterable[str], exceptions: Iterable[str]) -> list[str]:
    """Drop hiding selectors that an exception names verbatim."""
    excepted = set(exceptions)
    return [sel for sel in selectors if sel not in excepted]


def build_hiding_css(selectors: Sequence[str]) -> str:
    """Build CSS rules that hide the given selectors.

    Selectors are batched to avoid overly long rules.
    """
    if not selectors:
        return ""

    css_rules: list[str] = []

    for i in range(0, len(selectors), CSS_BATCH_SIZE):
        batch = selectors[i : i + CSS_BATCH_SIZE]
        # Braces in a selector would break out of the rule
        safe_selectors = [sel for sel in batch if "{" not in sel and "}" not in sel]

        if safe_selectors:
            selector_str = ", ".join(safe_selectors)
            css_rules.append(f"{selector_str} {{ display: none !important; }}")

    return "\n".join(css_rules)
